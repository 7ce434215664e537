# Copyright 2024 Michael Maillet, Damien Davison, Sacha Davison
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Pruning of unused networks and volumes, and the podman bind-mount rewrite
for volumes backed by a host device path.
"""
import logging
from typing import List, Tuple

from ..MODELS.unit_model import Container, ContainerRuntime, Network, Volume

logger = logging.getLogger(__name__)


def rewrite_bind_volumes(
    containers: List[Container],
    volumes: List[Volume],
    runtime: ContainerRuntime,
) -> List[Volume]:
    """
    Rewrites device-backed volumes into direct bind mounts.

    Podman does not reliably mount network filesystems through a volume
    with the default driver. For every such volume, each container mount of
    it is rewritten to bind the device path directly, and the volume is
    dropped. Must run before pruning.

    :param containers: All containers. Their mounts are rewritten in place.
    :param volumes: All volume records.
    :param runtime: The target runtime. Only podman is patched.
    :return: The volumes that remain.
    """
    if runtime != ContainerRuntime.PODMAN:
        return list(volumes)

    remaining = []
    for volume in volumes:
        device = volume.path
        if volume.external or volume.driver or not device:
            remaining.append(volume)
            continue

        prefix = volume.name + ":"
        for c in containers:
            if volume.name not in c.named_volumes():
                continue
            c.volumes = {
                target: device + spec[len(volume.name):] if spec.startswith(prefix) else spec
                for target, spec in c.volumes.items()
            }
        logger.debug("Rewrote volume %s into bind mounts of %s", volume.name, device)
    return remaining


def prune_resources(
    networks: List[Network],
    volumes: List[Volume],
    containers: List[Container],
    keep_unused: bool = False,
) -> Tuple[List[Network], List[Volume]]:
    """
    Drops networks and volumes that are external or, unless ``keep_unused``
    is set, not referenced by any container. Re-running it on its own
    output is a no-op.

    :return: The managed networks and volumes, sorted by name.
    """
    used_networks = {name for c in containers for name in c.networks}
    used_volumes = {name for c in containers for name in c.named_volumes()}

    kept_networks = []
    for n in networks:
        if n.external:
            continue
        if not keep_unused and n.name not in used_networks:
            logger.debug("Pruning unused network %s", n.name)
            continue
        kept_networks.append(n)

    kept_volumes = []
    for v in volumes:
        if v.external:
            continue
        if not keep_unused and v.name not in used_volumes:
            logger.debug("Pruning unused volume %s", v.name)
            continue
        kept_volumes.append(v)

    kept_networks.sort(key=lambda n: n.name)
    kept_volumes.sort(key=lambda v: v.name)
    return kept_networks, kept_volumes
