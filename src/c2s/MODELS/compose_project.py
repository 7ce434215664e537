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
Models for a parsed Compose project: services, networks and volumes.

These are produced by the compose parser with every short syntax already
normalized, and consumed read-only by the resolvers.
"""
from typing import List, Dict, Optional, Union
from pydantic import BaseModel, Field


class ServicePortConfig(BaseModel):
    """
    A single published or exposed port.
    """
    target: str
    published: Optional[str] = None
    host_ip: Optional[str] = None
    protocol: Optional[str] = None

    def to_port_string(self) -> str:
        """
        Formats the port as ``[host-ip:][host-port:]container-port[/protocol]``.
        """
        parts = []
        if self.host_ip:
            # An empty host port keeps its slot: "127.0.0.1::80".
            parts.extend([self.host_ip, self.published or ""])
        elif self.published:
            parts.append(self.published)
        parts.append(self.target)
        port = ":".join(parts)
        if self.protocol:
            port = f"{port}/{self.protocol}"
        return port


class ServiceVolumeConfig(BaseModel):
    """
    A mount declared on a service.
    """
    type: str = "volume"  # volume, bind or tmpfs
    source: Optional[str] = None
    target: str
    read_only: bool = False
    propagation: Optional[str] = None
    selinux: Optional[str] = None
    nocopy: bool = False

    def options(self) -> List[str]:
        """
        Returns the mount options in the order the runtimes expect them.
        """
        opts = ["ro" if self.read_only else "rw"]
        if self.selinux:
            opts.append(self.selinux)
        if self.propagation:
            opts.append(self.propagation)
        if self.nocopy:
            opts.append("nocopy")
        return opts


class ServiceNetworkConfig(BaseModel):
    """
    Per-network attachment settings of a service.
    """
    aliases: List[str] = []
    ipv4_address: Optional[str] = None
    ipv6_address: Optional[str] = None


class DependsOnConfig(BaseModel):
    condition: str = "service_started"
    required: bool = True


class HealthCheckConfig(BaseModel):
    """
    Defines a command to run to check the health of a service.
    """
    test: List[str] = []
    interval: Optional[str] = None
    timeout: Optional[str] = None
    retries: Optional[int] = None
    start_period: Optional[str] = None
    start_interval: Optional[str] = None
    disable: bool = False


class LoggingConfig(BaseModel):
    driver: Optional[str] = None
    options: Dict[str, str] = {}


class RestartPolicyConfig(BaseModel):
    """
    The ``deploy.restart_policy`` block.
    """
    condition: Optional[str] = None
    delay: Optional[str] = None
    max_attempts: Optional[int] = None
    window: Optional[str] = None


class DeviceRequest(BaseModel):
    """
    A device reservation, e.g. a GPU.
    """
    driver: Optional[str] = None
    count: Optional[Union[int, str]] = None
    device_ids: List[str] = []
    capabilities: List[str] = []


class ResourceSpec(BaseModel):
    cpus: Optional[float] = None
    memory: Optional[str] = None
    devices: List[DeviceRequest] = []


class ResourcesConfig(BaseModel):
    limits: Optional[ResourceSpec] = None
    reservations: Optional[ResourceSpec] = None


class DeployConfig(BaseModel):
    restart_policy: Optional[RestartPolicyConfig] = None
    resources: Optional[ResourcesConfig] = None


class ServiceConfig(BaseModel):
    """
    The full definition of a single Compose service.
    """
    name: str
    image: Optional[str] = None
    build: Optional[str] = None
    container_name: Optional[str] = None
    hostname: Optional[str] = None
    user: Optional[str] = None

    # Execution
    command: Optional[List[str]] = None
    entrypoint: Optional[List[str]] = None
    working_dir: Optional[str] = None
    init: bool = False
    stop_signal: Optional[str] = None

    # Environment. A None value means "declared but unset".
    environment: Dict[str, Optional[str]] = {}
    env_file: List[str] = []

    # Networking
    ports: List[ServicePortConfig] = []
    networks: Dict[str, ServiceNetworkConfig] = {}
    network_mode: Optional[str] = None
    dns: List[str] = []
    dns_search: List[str] = []
    dns_opt: List[str] = []
    extra_hosts: Dict[str, str] = {}
    mac_address: Optional[str] = None

    # Storage
    volumes: List[ServiceVolumeConfig] = []
    tmpfs: List[str] = []

    # Lifecycle
    restart: Optional[str] = None
    deploy: Optional[DeployConfig] = None
    depends_on: Dict[str, DependsOnConfig] = {}
    healthcheck: Optional[HealthCheckConfig] = None

    # Privileges and kernel
    privileged: bool = False
    cap_add: List[str] = []
    cap_drop: List[str] = []
    devices: List[str] = []
    security_opt: List[str] = []
    sysctls: Dict[str, str] = {}
    shm_size: Optional[str] = None

    # Resources (legacy top-level fields)
    cpus: Optional[float] = None
    mem_limit: Optional[str] = None
    mem_reservation: Optional[str] = None

    # Logging
    logging: Optional[LoggingConfig] = None
    log_driver: Optional[str] = None
    log_opt: Dict[str, str] = {}

    # Metadata
    labels: Dict[str, str] = {}


class IpamPoolConfig(BaseModel):
    subnet: Optional[str] = None
    ip_range: Optional[str] = None
    gateway: Optional[str] = None
    aux_addresses: Dict[str, str] = {}


class IpamConfig(BaseModel):
    driver: Optional[str] = None
    config: List[IpamPoolConfig] = []


class NetworkConfig(BaseModel):
    """
    A top-level network definition.
    """
    name: Optional[str] = None
    driver: Optional[str] = None
    driver_opts: Dict[str, str] = {}
    external: bool = False
    internal: bool = False
    enable_ipv6: bool = False
    ipam: Optional[IpamConfig] = None
    labels: Dict[str, str] = {}


class VolumeConfig(BaseModel):
    """
    A top-level volume definition.
    """
    name: Optional[str] = None
    driver: Optional[str] = None
    driver_opts: Dict[str, str] = {}
    external: bool = False
    labels: Dict[str, str] = {}


class ComposeProject(BaseModel):
    """
    Complete configuration for a multi-service stack.
    Equivalent to one or more merged compose files.
    """
    name: Optional[str] = None
    working_dir: str = "."
    services: Dict[str, ServiceConfig] = {}
    networks: Dict[str, NetworkConfig] = {}
    volumes: Dict[str, VolumeConfig] = {}
    # Environment used for interpolation and for resolving unset variables.
    environment: Dict[str, str] = Field(default_factory=dict)
