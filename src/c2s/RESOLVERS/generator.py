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
The resolution pipeline: turns a parsed Compose project into the resolved
container, network and volume model.
"""
import logging
import re
from typing import List, Optional, Set, Union

from ..errors import UnsupportedValueError
from ..MODELS.compose_project import ComposeProject, NetworkConfig, VolumeConfig
from ..MODELS.generator_options import GeneratorOptions
from ..MODELS.unit_model import (
    Container,
    ContainerConfig,
    ContainerRuntime,
    IpamPool,
    Network,
    Project,
    Volume,
)
from ..PARSERS.compose_parser import ComposeParser, build_environment
from .attribute_mapper import AttributeMapper
from .dependency_graph import DependencyGraphBuilder, MountProvider
from .name_resolver import NameResolver, ResolvedNames
from .resource_pruner import prune_resources, rewrite_bind_volumes

logger = logging.getLogger(__name__)


class Generator:
    """
    Resolves Compose projects into systemd-ready models.

    Stages run in a fixed order: names, containers, the podman bind-volume
    rewrite, pruning, then the dependency graph and label overrides.
    """
    def __init__(self, options: GeneratorOptions, mount_provider: Optional[MountProvider] = None):
        """
        :param options: The generator options.
        :param mount_provider: Source of host mount units, used when
            ``check_systemd_mounts`` is set. Defaults to asking systemctl.
        """
        self.options = options
        self.mount_provider = mount_provider
        self._include = None
        if options.service_include:
            try:
                self._include = re.compile(options.service_include)
            except re.error as e:
                raise UnsupportedValueError(
                    f"invalid service include pattern {options.service_include!r}: {e}",
                    field="service_include",
                    value=options.service_include,
                ) from e

    def load(self, compose_paths: Union[str, List[str]]) -> ComposeProject:
        """
        Parses compose files, interpolating them against the configured env
        files and, unless ``env_files_only`` is set, the process environment.
        """
        env = build_environment(
            self.options.env_files,
            include_os_environ=not self.options.env_files_only,
            ignore_missing=self.options.ignore_missing_env_files,
        )
        return ComposeParser(env).parse(compose_paths)

    def generate(self, compose_paths: Union[str, List[str]]) -> ContainerConfig:
        """
        Loads compose files and resolves them.
        """
        return self.run(self.load(compose_paths))

    def run(self, compose_project: ComposeProject) -> ContainerConfig:
        """
        Resolves a parsed project.

        :param compose_project: The parsed project.
        :return: The resolved model.
        :raises ResolutionError: If the project cannot be resolved.
        """
        options = self.options
        if not options.project.name and compose_project.name:
            options = options.model_copy(
                update={"project": Project(name=compose_project.name, separator=options.project.separator)}
            )

        names = NameResolver(options.project).resolve(compose_project)
        excluded = self._excluded_services(compose_project)

        mapper = AttributeMapper(options, names, compose_project, excluded_services=excluded)
        containers: List[Container] = []
        for name in sorted(compose_project.services):
            if name in excluded:
                continue
            containers.append(mapper.map_service(compose_project.services[name]))
        containers.sort(key=lambda c: c.name)

        networks = [
            self._build_network(options.runtime, names, key, net)
            for key, net in sorted(compose_project.networks.items())
        ]
        volumes = [
            self._build_volume(options, names, key, vol)
            for key, vol in sorted(compose_project.volumes.items())
        ]

        volumes = rewrite_bind_volumes(containers, volumes, options.runtime)
        networks, volumes = prune_resources(
            networks, volumes, containers, keep_unused=options.keep_unused_resources
        )

        DependencyGraphBuilder(options, self.mount_provider).build(containers, networks, volumes)

        return ContainerConfig(
            project=options.project,
            runtime=options.runtime,
            containers=containers,
            networks=networks,
            volumes=volumes,
            create_root_target=options.create_root_target,
            auto_start=options.auto_start,
            write_runtime_setup=options.write_runtime_setup,
        )

    def _excluded_services(self, compose_project: ComposeProject) -> Set[str]:
        if self._include is None:
            return set()
        excluded = set()
        for name in sorted(compose_project.services):
            if not self._include.search(name):
                logger.info("Skipping service %s: does not match the include pattern", name)
                excluded.add(name)
        return excluded

    def _build_network(
        self,
        runtime: ContainerRuntime,
        names: ResolvedNames,
        key: str,
        net: NetworkConfig,
    ) -> Network:
        network = Network(
            runtime=runtime,
            name=names.networks[key],
            original_name=key,
            driver=net.driver,
            driver_opts=net.driver_opts,
            external=net.external,
            labels=net.labels,
        )
        if net.internal:
            network.extra_options = network.extra_options + ["--internal"]
        if net.enable_ipv6:
            network.extra_options = network.extra_options + ["--ipv6"]

        if net.ipam:
            network.ipam_driver = net.ipam.driver
            pools = []
            for pool in net.ipam.config:
                aux_addresses = [f"{host}={ip}" for host, ip in pool.aux_addresses.items()]
                if aux_addresses and runtime == ContainerRuntime.PODMAN:
                    logger.warning(
                        "Network %s: podman does not support IPAM aux addresses, ignoring them", key
                    )
                    aux_addresses = []
                pools.append(IpamPool(
                    subnet=pool.subnet,
                    ip_range=pool.ip_range,
                    gateway=pool.gateway,
                    aux_addresses=aux_addresses,
                ))
            network.ipam_configs = pools
        return network

    def _build_volume(
        self,
        options: GeneratorOptions,
        names: ResolvedNames,
        key: str,
        vol: VolumeConfig,
    ) -> Volume:
        return Volume(
            runtime=options.runtime,
            name=names.volumes[key],
            original_name=key,
            driver=vol.driver,
            driver_opts=vol.driver_opts,
            external=vol.external,
            labels=vol.labels,
            remove_on_stop=options.remove_volumes,
        )
