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
The resolved intermediate model handed to the renderer: containers, networks,
volumes and the systemd unit relationships between them.

Every exported list and mapping is typed as sorted, so output stays stable
no matter what order the manifest was read in.
"""
from enum import Enum
from typing import Annotated, Any, Dict, List, Optional, Set, Union

from pydantic import AfterValidator, BaseModel, ConfigDict, Field

# Compose v2 uses "-" between the project and service names.
DEFAULT_PROJECT_SEPARATOR = "-"
DEFAULT_LOG_DRIVER = "journald"

# Relation fields holding unit names, as opposed to mount paths.
UNIT_RELATION_FIELDS = ("after", "requires", "part_of", "wanted_by", "upheld_by")


def _sorted(values: List[str]) -> List[str]:
    return sorted(values)


def _sorted_unique(values: List[str]) -> List[str]:
    return sorted(set(values))


def _sorted_dict(values: Dict[str, Any]) -> Dict[str, Any]:
    return dict(sorted(values.items()))


SortedList = Annotated[List[str], AfterValidator(_sorted)]
SortedUniqueList = Annotated[List[str], AfterValidator(_sorted_unique)]
SortedDict = Annotated[Dict[str, str], AfterValidator(_sorted_dict)]


class ContainerRuntime(str, Enum):
    """
    The container runtime the generated units invoke.
    """
    DOCKER = "docker"
    PODMAN = "podman"


class Project(BaseModel):
    """
    Project identity used to prefix every generated resource name.
    """
    name: str = ""
    separator: str = DEFAULT_PROJECT_SEPARATOR

    def scoped(self, name: str) -> str:
        """
        Returns ``name`` prefixed with the project, or unchanged if the
        project has no name.
        """
        if not self.name:
            return name
        return f"{self.name}{self.separator}{name}"


class UnitRelations(BaseModel):
    """
    systemd relationships of one generated unit.
    """
    model_config = ConfigDict(validate_assignment=True)

    after: SortedUniqueList = []
    requires: SortedUniqueList = []
    part_of: SortedUniqueList = []
    wanted_by: SortedUniqueList = []
    upheld_by: SortedUniqueList = []
    requires_mounts_for: SortedUniqueList = []

    def add(self, field: str, *values: str) -> None:
        """
        Adds values to one relation set, keeping it sorted and unique.

        :param field: One of the relation field names.
        :param values: Unit names (or mount paths for ``requires_mounts_for``).
        """
        setattr(self, field, getattr(self, field) + list(values))

    def units(self) -> Set[str]:
        """
        Returns every unit name referenced by this record. Mount paths are
        not units and are excluded.
        """
        units = set()
        for field in UNIT_RELATION_FIELDS:
            units.update(getattr(self, field))
        return units


class LabelOverride(BaseModel):
    """
    One typed systemd directive supplied through a service label.
    """
    section: str  # "service" or "unit"
    key: str
    value: Any


class SystemdConfig(BaseModel):
    """
    systemd [Service] and [Unit] directives of a container unit, including
    its restart policy.
    """
    service: Dict[str, Any] = {}
    unit: Dict[str, Any] = {}
    start_limit_burst: Optional[int] = None
    start_limit_interval_sec: Optional[Union[int, str]] = None
    overrides: List[LabelOverride] = []


class Container(BaseModel):
    """
    A fully resolved container, one per Compose service.
    """
    model_config = ConfigDict(validate_assignment=True)

    runtime: ContainerRuntime
    name: str
    service_name: str
    image: str
    environment: SortedDict = {}
    env_files: SortedUniqueList = []
    # Mount specs keyed by container path.
    volumes: SortedDict = {}
    ports: List[str] = []
    labels: SortedDict = {}
    user: Optional[str] = None
    networks: SortedUniqueList = []
    depends_on: SortedUniqueList = []
    network_peer: Optional[str] = None
    log_driver: str = DEFAULT_LOG_DRIVER
    extra_options: SortedList = []
    command: Optional[List[str]] = None
    systemd: SystemdConfig = Field(default_factory=SystemdConfig)
    relations: UnitRelations = Field(default_factory=UnitRelations)
    auto_start: bool = True

    @property
    def unit(self) -> str:
        return f"{self.runtime.value}-{self.name}.service"

    def add_options(self, *options: str) -> None:
        self.extra_options = self.extra_options + list(options)

    def mount_sources(self) -> List[str]:
        """
        Returns the source of every mount: a volume name or a host path.
        """
        return [spec.split(":", 1)[0] for spec in self.volumes.values()]

    def bind_sources(self) -> List[str]:
        """
        Returns the host paths bind-mounted into this container.
        """
        return [s for s in self.mount_sources() if s.startswith("/")]

    def named_volumes(self) -> List[str]:
        """
        Returns the resolved names of the named volumes this container mounts.
        """
        return [s for s in self.mount_sources() if not s.startswith("/")]


class IpamPool(BaseModel):
    subnet: Optional[str] = None
    ip_range: Optional[str] = None
    gateway: Optional[str] = None
    # Only honoured by docker.
    aux_addresses: SortedList = []


class Network(BaseModel):
    """
    A resolved network.
    """
    model_config = ConfigDict(validate_assignment=True)

    runtime: ContainerRuntime
    name: str
    original_name: str
    driver: Optional[str] = None
    driver_opts: SortedDict = {}
    external: bool = False
    labels: SortedDict = {}
    ipam_driver: Optional[str] = None
    ipam_configs: List[IpamPool] = []
    extra_options: SortedList = []
    relations: UnitRelations = Field(default_factory=UnitRelations)

    @property
    def unit(self) -> str:
        return f"{self.runtime.value}-network-{self.name}.service"


class Volume(BaseModel):
    """
    A resolved named volume.
    """
    model_config = ConfigDict(validate_assignment=True)

    runtime: ContainerRuntime
    name: str
    original_name: str
    driver: Optional[str] = None
    driver_opts: SortedDict = {}
    external: bool = False
    labels: SortedDict = {}
    remove_on_stop: bool = False
    relations: UnitRelations = Field(default_factory=UnitRelations)

    @property
    def path(self) -> Optional[str]:
        return self.driver_opts.get("device")

    @property
    def requires_mounts_for(self) -> List[str]:
        return self.relations.requires_mounts_for

    @property
    def unit(self) -> str:
        return f"{self.runtime.value}-volume-{self.name}.service"


def root_target_name(runtime: ContainerRuntime, project: Project) -> str:
    """
    Returns the name of the aggregate target that owns every generated unit.
    """
    return f"{runtime.value}-compose-{project.scoped('root')}.target"


class ContainerConfig(BaseModel):
    """
    The complete resolved model, plus the global switches the renderer needs.
    """
    project: Project = Field(default_factory=Project)
    runtime: ContainerRuntime
    containers: List[Container] = []
    networks: List[Network] = []
    volumes: List[Volume] = []
    create_root_target: bool = True
    auto_start: bool = True
    write_runtime_setup: bool = False

    @property
    def root_target(self) -> Optional[str]:
        if not self.create_root_target:
            return None
        return root_target_name(self.runtime, self.project)
