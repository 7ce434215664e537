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
Resolution of the final, project-scoped names of services, networks and
volumes.
"""
from typing import Dict, Optional

from ..errors import UnresolvedReferenceError, UnsupportedValueError
from ..MODELS.compose_project import ComposeProject
from ..MODELS.unit_model import Project


class ResolvedNames:
    """
    Lookup tables from manifest-local names to resolved resource names.
    """
    def __init__(
        self,
        containers: Dict[str, str],
        networks: Dict[str, str],
        volumes: Dict[str, str],
    ):
        self.containers = containers
        self.networks = networks
        self.volumes = volumes

    def container(self, service: str, referrer: Optional[str] = None) -> str:
        """
        Returns the resolved container name of a service.

        :param service: The service name in the manifest.
        :param referrer: The service making the reference, for error context.
        :raises UnresolvedReferenceError: If the service is not declared.
        """
        try:
            return self.containers[service]
        except KeyError:
            raise UnresolvedReferenceError(
                f"service {referrer} depends on non-existent service {service}",
                service=referrer,
                field="depends_on",
                value=service,
            ) from None

    def network(self, key: str, referrer: Optional[str] = None) -> str:
        try:
            return self.networks[key]
        except KeyError:
            raise UnresolvedReferenceError(
                f"service {referrer} refers to undefined network {key}",
                service=referrer,
                field="networks",
                value=key,
            ) from None

    def volume(self, key: str, referrer: Optional[str] = None) -> str:
        try:
            return self.volumes[key]
        except KeyError:
            raise UnresolvedReferenceError(
                f"service {referrer} refers to undefined volume {key}",
                service=referrer,
                field="volumes",
                value=key,
            ) from None


class NameResolver:
    """
    Computes the resolved name of every service, network and volume.

    Containers and networks are scoped to the project. Volumes are not, so
    they can be shared the same way Compose shares them. An explicit
    ``name:`` always wins, and external resources keep their manifest name.
    """
    def __init__(self, project: Project):
        self.project = project

    def resolve(self, compose_project: ComposeProject) -> ResolvedNames:
        containers = {
            name: svc.container_name or self.project.scoped(name)
            for name, svc in compose_project.services.items()
        }
        owners: Dict[str, str] = {}
        for service in sorted(containers):
            name = containers[service]
            if name in owners:
                raise UnsupportedValueError(
                    f"services {owners[name]} and {service} both resolve to container name {name}",
                    service=service,
                    field="container_name",
                    value=name,
                )
            owners[name] = service

        networks = {}
        for key, net in compose_project.networks.items():
            if net.name:
                networks[key] = net.name
            elif net.external:
                networks[key] = key
            else:
                networks[key] = self.project.scoped(key)

        volumes = {key: vol.name or key for key, vol in compose_project.volumes.items()}

        return ResolvedNames(containers, networks, volumes)
