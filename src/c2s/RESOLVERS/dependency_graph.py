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
Construction and validation of the systemd unit relationships between
containers, networks, volumes, host mounts and the root target.
"""
import json
import logging
import subprocess
from typing import Dict, Iterable, List, Optional, Protocol, Set

from ..errors import DependencyCycleError, MissingInputError, UnresolvedReferenceError
from ..MODELS.generator_options import GeneratorOptions
from ..MODELS.unit_model import Container, Network, UnitRelations, Volume, root_target_name
from .systemd_labels import apply_overrides

logger = logging.getLogger(__name__)


class MountProvider(Protocol):
    """
    Source of the systemd mount units present on the host.
    """
    def find_mount_for_path(self, path: str) -> Optional[str]:
        """
        Returns the mount unit a path lives on, or None if there is none.
        """
        ...


class SystemctlMountProvider:
    """
    Finds mount units by asking the local systemd instance.
    """
    def __init__(self, systemctl: str = "systemctl"):
        self.systemctl = systemctl
        self._units: Optional[List[Dict[str, str]]] = None

    def _list_units(self) -> List[Dict[str, str]]:
        if self._units is None:
            cmd = [self.systemctl, "list-units", "--type=mount", "--output=json"]
            try:
                result = subprocess.run(cmd, capture_output=True, text=True, check=True)
            except (OSError, subprocess.CalledProcessError) as e:
                raise MissingInputError(f'failed to run "systemctl list-units": {e}') from e
            try:
                self._units = json.loads(result.stdout)
            except json.JSONDecodeError as e:
                raise MissingInputError(f"failed to decode systemctl output: {e}") from e
        return self._units

    def find_mount_for_path(self, path: str) -> Optional[str]:
        """
        Returns the active mount unit with the longest mount point containing
        ``path``. A mount unit's description is its mount point.
        """
        best, best_len = None, -1
        for unit in self._list_units():
            if unit.get("active") != "active":
                continue
            mount_point = unit.get("description", "")
            if not mount_point.startswith("/"):
                continue
            prefix = mount_point.rstrip("/") + "/"
            if path != mount_point and not path.startswith(prefix):
                continue
            if len(mount_point) > best_len:
                best, best_len = unit.get("unit"), len(mount_point)
        return best


def resolve_start_order(graph: Dict[str, Iterable[str]]) -> List[str]:
    """
    Determines the order units start in, using a depth-first topological sort.

    :param graph: Each unit mapped to the units it starts after.
    :return: Unit names, dependencies first.
    :raises DependencyCycleError: If units depend on each other in a cycle.
    """
    ordered = []
    visited = set()

    for root in sorted(graph):
        if root in visited:
            continue
        # The path being explored, each unit with its pending dependencies.
        processing = [root]
        pending = [iter(sorted(graph[root]))]
        while processing:
            dep = next((d for d in pending[-1] if d in graph and d not in visited), None)
            if dep is None:
                unit = processing.pop()
                pending.pop()
                visited.add(unit)
                ordered.append(unit)
            elif dep in processing:
                cycle = processing[processing.index(dep):] + [dep]
                raise DependencyCycleError(
                    f"circular dependency detected: {' -> '.join(cycle)}",
                    field="depends_on",
                    value=cycle,
                )
            else:
                processing.append(dep)
                pending.append(iter(sorted(graph[dep])))

    return ordered


class DependencyGraphBuilder:
    """
    Wires the unit relationships of a resolved project.

    Structural edges are generated first and validated, then the label
    overrides of each container are layered on top.
    """
    def __init__(self, options: GeneratorOptions, mount_provider: Optional[MountProvider] = None):
        self.options = options
        self.mount_provider = mount_provider
        if options.check_systemd_mounts and mount_provider is None:
            self.mount_provider = SystemctlMountProvider()
        self.root_target = None
        if options.create_root_target:
            self.root_target = root_target_name(options.runtime, options.project)
        self._mount_units: Set[str] = set()

    def build(self, containers: List[Container], networks: List[Network], volumes: List[Volume]) -> None:
        """
        Adds every relationship to the given records in place.

        :param containers: The generated containers.
        :param networks: The managed networks, after pruning.
        :param volumes: The managed volumes, after pruning.
        :raises DependencyCycleError: On a cycle between containers.
        :raises UnresolvedReferenceError: On an edge to a unit that is not generated.
        """
        self._mount_units = set()
        by_name = {c.name: c for c in containers}
        network_units = {n.name: n.unit for n in networks if not n.external}
        volume_units = {v.name: v.unit for v in volumes if not v.external}

        for c in containers:
            self._link_container(c, by_name, network_units, volume_units)
        for v in volumes:
            if not v.external and v.path:
                self._link_mount(v.relations, v.path)
        if self.root_target:
            for record in [*networks, *volumes]:
                if not record.external:
                    record.relations.add("part_of", self.root_target)
                    record.relations.add("wanted_by", self.root_target)

        resolve_start_order({c.unit: c.relations.after for c in containers})

        known = {c.unit for c in containers}
        known.update(network_units.values())
        known.update(volume_units.values())
        known.update(self._mount_units)
        if self.root_target:
            known.add(self.root_target)
        for record in [*containers, *networks, *volumes]:
            self._validate(record.name, record.relations, known)

        for c in containers:
            apply_overrides(c)

    def _link_container(
        self,
        c: Container,
        by_name: Dict[str, Container],
        network_units: Dict[str, str],
        volume_units: Dict[str, str],
    ):
        relations = c.relations

        for dep in c.depends_on:
            unit = self._container_unit(c, dep, by_name)
            relations.add("after", unit)
            relations.add("requires", unit)
            if self.options.supports_uphold:
                # The dependency restarts this container whenever it comes back.
                relations.add("upheld_by", unit)

        if c.network_peer:
            unit = self._container_unit(c, c.network_peer, by_name)
            c.depends_on = c.depends_on + [c.network_peer]
            relations.add("after", unit)
            relations.add("requires", unit)

        for name in c.networks:
            if name in network_units:
                relations.add("after", network_units[name])
                relations.add("requires", network_units[name])
        for name in c.named_volumes():
            if name in volume_units:
                relations.add("after", volume_units[name])
                relations.add("requires", volume_units[name])

        for path in c.bind_sources():
            self._link_mount(relations, path)

        if self.root_target:
            relations.add("part_of", self.root_target)
            relations.add("wanted_by", self.root_target)

    def _container_unit(self, c: Container, name: str, by_name: Dict[str, Container]) -> str:
        if name not in by_name:
            raise UnresolvedReferenceError(
                f"service {c.service_name} depends on non-existent container {name}",
                service=c.service_name,
                field="depends_on",
                value=name,
            )
        return by_name[name].unit

    def _link_mount(self, relations: UnitRelations, path: str):
        if not self.options.check_systemd_mounts or not self.mount_provider:
            return
        unit = self.mount_provider.find_mount_for_path(path)
        if not unit:
            return
        logger.debug("Path %s is on mount unit %s", path, unit)
        self._mount_units.add(unit)
        relations.add("after", unit)
        relations.add("requires", unit)
        relations.add("requires_mounts_for", path)

    def _validate(self, name: str, relations: UnitRelations, known: Set[str]):
        for unit in sorted(relations.units()):
            if unit not in known:
                raise UnresolvedReferenceError(
                    f"{name} refers to unit {unit}, which is not generated",
                    service=name,
                    field="relations",
                    value=unit,
                )
