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
Mapping of a Compose service's fields onto a container record and the extra
flags passed to the container runtime.
"""
import json
import logging
import os
import shlex
from typing import Dict, Optional, Set

from ..errors import UnresolvedReferenceError, UnsupportedValueError
from ..MODELS.compose_project import ComposeProject, DeviceRequest, ServiceConfig
from ..MODELS.generator_options import GeneratorOptions
from ..MODELS.unit_model import Container, ContainerRuntime
from ..PARSERS.env_parser import EnvParser
from ..UTILS.helpers import map_to_repeated_key_val_flag
from .name_resolver import ResolvedNames
from .restart_policy import RestartPolicyTranslator
from .systemd_labels import parse_labels

logger = logging.getLogger(__name__)

# Compose defaults to "json-file", so any "json-file" setting is treated as
# the default unless the caller asks to keep the Compose log driver.
COMPOSE_DEFAULT_LOG_DRIVER = "json-file"

# network_mode values handed to the runtime as-is.
# https://docs.podman.io/en/latest/markdown/podman-run.1.html#network-mode-net
_PODMAN_NETWORK_MODE_PREFIXES = ("bridge", "slirp4netns", "pasta", "private", "ns:")
_DOCKER_NETWORK_MODES = ("bridge", "default")


def _format_number(value: float) -> str:
    return f"{value:g}"


class AttributeMapper:
    """
    Maps each service of a project into a container record.
    """
    def __init__(
        self,
        options: GeneratorOptions,
        names: ResolvedNames,
        compose_project: ComposeProject,
        excluded_services: Optional[Set[str]] = None,
        env_reader: type = EnvParser,
    ):
        """
        :param options: The generator options.
        :param names: Resolved names of every project resource.
        :param compose_project: The project the services belong to.
        :param excluded_services: Services skipped by the include pattern.
        :param env_reader: Reader for env files.
        """
        self.options = options
        self.runtime = options.runtime
        self.names = names
        self.project = compose_project
        self.excluded_services = excluded_services or set()
        self.env_reader = env_reader
        self.restart_translator = RestartPolicyTranslator(options.runtime)

    def map_service(self, service: ServiceConfig) -> Container:
        """
        Builds the container record of a single service.

        :param service: The service definition.
        :return: The container, without unit relations.
        """
        if not service.image:
            raise UnsupportedValueError(
                f"service {service.name} has no image; building images is not supported",
                service=service.name,
                field="image",
                value=service.build,
            )

        parsed_labels = parse_labels(service.name, service.labels)
        systemd = self.restart_translator.translate(service)
        systemd.overrides = parsed_labels.overrides

        auto_start = self.options.auto_start
        if parsed_labels.auto_start is not None:
            auto_start = parsed_labels.auto_start

        c = Container(
            runtime=self.runtime,
            name=self.names.container(service.name),
            service_name=service.name,
            image=service.image,
            ports=[p.to_port_string() for p in service.ports],
            labels=parsed_labels.labels,
            user=service.user,
            command=service.command,
            systemd=systemd,
            auto_start=auto_start,
        )

        self._map_environment(c, service)
        self._map_volumes(c, service)
        self._map_entrypoint(c, service)
        self._map_networks(c, service)
        self._map_runtime_flags(c, service)
        self._map_logging(c, service)
        self._map_healthcheck(c, service)
        self._map_resources(c, service)
        self._map_dependencies(c, service)
        return c

    def _peer_container(self, service: str, referrer: str, field: str) -> str:
        if service in self.excluded_services:
            raise UnresolvedReferenceError(
                f"service {referrer} depends on service {service}, which is excluded by the include pattern",
                service=referrer,
                field=field,
                value=service,
            )
        return self.names.container(service, referrer)

    def _resolve_environment(self, service: ServiceConfig) -> Dict[str, str]:
        """
        Resolves declared variables. A variable without a value takes it from
        the project environment, and is dropped if that has none either.
        """
        env = {}
        for key, value in service.environment.items():
            if value is None:
                value = self.project.environment.get(key)
            if value is None:
                continue
            env[key] = value
        return env

    def _map_environment(self, c: Container, service: ServiceConfig):
        ignore_missing = self.options.ignore_missing_env_files
        if self.options.include_env_files:
            c.env_files = self.env_reader.existing_files(
                list(service.env_file) + list(self.options.env_files),
                ignore_missing=ignore_missing,
            )
            if not self.options.env_files_only:
                c.environment = self._resolve_environment(service)
            return

        env = self.env_reader.read_files(service.env_file, ignore_missing=ignore_missing)
        env.update(self._resolve_environment(service))
        c.environment = env

    def _resolve_bind_source(self, source: str) -> str:
        source = os.path.expanduser(source)
        if not os.path.isabs(source):
            root = self.options.root_path or self.project.working_dir
            source = os.path.join(root, source)
        return os.path.normpath(source)

    def _map_volumes(self, c: Container, service: ServiceConfig):
        volumes = {}
        for mount in service.volumes:
            if mount.type == "tmpfs":
                c.add_options(f"--tmpfs={mount.target}")
                continue
            if mount.type == "bind":
                source = self._resolve_bind_source(mount.source or "")
            elif mount.type == "volume":
                if not mount.source:
                    # Anonymous volume, owned by the container.
                    c.add_options(f"--volume={mount.target}")
                    continue
                source = self.names.volume(mount.source, service.name)
            else:
                raise UnsupportedValueError(
                    f"unsupported volume type {mount.type!r} for service {service.name}",
                    service=service.name,
                    field="volumes",
                    value=mount.type,
                )
            if mount.target in volumes:
                raise UnsupportedValueError(
                    f"service {service.name} mounts {mount.target} more than once",
                    service=service.name,
                    field="volumes",
                    value=mount.target,
                )
            volumes[mount.target] = ":".join([source, mount.target, ",".join(mount.options())])
        c.volumes = volumes

        for target in service.tmpfs:
            c.add_options(f"--tmpfs={target}")

    def _map_entrypoint(self, c: Container, service: ServiceConfig):
        entrypoint = service.entrypoint
        if not entrypoint:
            return
        if len(entrypoint) == 1:
            c.add_options(f"--entrypoint={entrypoint[0]}")
        else:
            c.add_options(f"--entrypoint={json.dumps(entrypoint)}")

    def _is_passthrough_network_mode(self, mode: str) -> bool:
        if self.runtime == ContainerRuntime.PODMAN:
            return mode == "private" or any(
                mode == prefix or mode.startswith(prefix if prefix.endswith(":") else prefix + ":")
                for prefix in _PODMAN_NETWORK_MODE_PREFIXES
            )
        return mode in _DOCKER_NETWORK_MODES

    def _map_networks(self, c: Container, service: ServiceConfig):
        networks = []
        for key in sorted(service.networks):
            attachment = service.networks[key]
            name = self.names.network(key, service.name)
            networks.append(name)
            c.add_options(f"--network={name}")
            for alias in attachment.aliases:
                c.add_options(f"--network-alias={alias}")
            if attachment.ipv4_address:
                c.add_options(f"--ip={attachment.ipv4_address}")
            if attachment.ipv6_address:
                c.add_options(f"--ip6={attachment.ipv6_address}")
        c.networks = networks

        # https://docs.docker.com/compose/compose-file/05-services/#network_mode
        in_bridge_network = bool(networks)
        mode = (service.network_mode or "").strip()
        if not mode:
            pass
        elif mode in ("none", "host"):
            c.add_options(f"--network={mode}")
        elif self._is_passthrough_network_mode(mode):
            c.add_options(f"--network={mode}")
            in_bridge_network = in_bridge_network or mode.split(":", 1)[0] in ("bridge", "default")
        elif mode.startswith("service:"):
            target = mode.split(":", 1)[1].strip()
            peer = self._peer_container(target, service.name, "network_mode")
            c.add_options(f"--network=container:{peer}")
            c.network_peer = peer
        elif mode.startswith("container:"):
            # The container may live outside this project, so it is not validated.
            target = mode.split(":", 1)[1].strip()
            c.add_options(f"--network=container:{target}")
            generated = {
                name for svc, name in self.names.containers.items()
                if svc not in self.excluded_services
            }
            if target in generated:
                c.network_peer = target
        else:
            raise UnsupportedValueError(
                f"unsupported network_mode {mode!r} for service {service.name}",
                service=service.name,
                field="network_mode",
                value=mode,
            )

        # Allow other containers to use the service name as an alias.
        if in_bridge_network:
            c.add_options(f"--network-alias={service.name}")

    def _map_runtime_flags(self, c: Container, service: ServiceConfig):
        # https://docs.docker.com/engine/reference/run/#runtime-privilege-and-linux-capabilities
        if service.privileged:
            c.add_options("--privileged")
        if service.init:
            c.add_options("--init")
        c.add_options(*[f"--cap-add={cap}" for cap in service.cap_add])
        c.add_options(*[f"--cap-drop={cap}" for cap in service.cap_drop])
        c.add_options(*[f"--device={device}" for device in service.devices])
        c.add_options(*[f"--security-opt={opt}" for opt in service.security_opt])
        c.add_options(*[f"--add-host={host}:{ip}" for host, ip in service.extra_hosts.items()])
        c.add_options(*map_to_repeated_key_val_flag("--sysctl", service.sysctls))
        c.add_options(*[f"--dns={ip}" for ip in service.dns])
        c.add_options(*[f"--dns-search={domain}" for domain in service.dns_search])
        c.add_options(*[f"--dns-option={opt}" for opt in service.dns_opt])
        if service.shm_size:
            c.add_options(f"--shm-size={service.shm_size}")
        if service.mac_address:
            c.add_options(f"--mac-address={service.mac_address}")
        if service.hostname:
            c.add_options(f"--hostname={service.hostname}")
        if service.working_dir:
            c.add_options(f"--workdir={service.working_dir}")
        if service.stop_signal:
            c.add_options(f"--stop-signal={service.stop_signal}")

    def _map_logging(self, c: Container, service: ServiceConfig):
        # https://docs.docker.com/config/containers/logging/configure/
        # https://docs.podman.io/en/latest/markdown/podman-run.1.html#log-driver-driver
        def use_driver(driver: Optional[str]) -> bool:
            return bool(driver) and (
                driver != COMPOSE_DEFAULT_LOG_DRIVER or self.options.use_compose_log_driver
            )

        if use_driver(service.log_driver):
            c.log_driver = service.log_driver
        log_opts = dict(service.log_opt)

        # The logging block always overrides the legacy settings.
        if service.logging is not None:
            if use_driver(service.logging.driver):
                c.log_driver = service.logging.driver
            log_opts.update(service.logging.options)

        # Log options are always passed through.
        c.add_options(*map_to_repeated_key_val_flag("--log-opt", log_opts))

    def _map_healthcheck(self, c: Container, service: ServiceConfig):
        hc = service.healthcheck
        if hc is None:
            return
        if hc.disable or (hc.test and hc.test[0] == "NONE"):
            c.add_options("--no-healthcheck")
            return

        if hc.test:
            kind, args = hc.test[0], hc.test[1:]
            if kind == "CMD":
                cmd = shlex.join(args)
            elif kind == "CMD-SHELL":
                cmd = " ".join(args)
            else:
                raise UnsupportedValueError(
                    f"unsupported healthcheck test {kind!r} for service {service.name}",
                    service=service.name,
                    field="healthcheck.test",
                    value=kind,
                )
            c.add_options(f"--health-cmd={cmd}")
        if hc.timeout:
            c.add_options(f"--health-timeout={hc.timeout}")
        if hc.interval:
            c.add_options(f"--health-interval={hc.interval}")
        if hc.retries is not None:
            c.add_options(f"--health-retries={hc.retries}")
        if hc.start_period:
            c.add_options(f"--health-start-period={hc.start_period}")
        if hc.start_interval:
            if self.runtime == ContainerRuntime.PODMAN:
                c.add_options(f"--health-startup-interval={hc.start_interval}")
            else:
                c.add_options(f"--health-start-interval={hc.start_interval}")

    def _map_resources(self, c: Container, service: ServiceConfig):
        resources = service.deploy.resources if service.deploy else None
        limits = resources.limits if resources else None
        reservations = resources.reservations if resources else None

        cpus = limits.cpus if limits and limits.cpus is not None else service.cpus
        if cpus is not None:
            c.add_options(f"--cpus={_format_number(cpus)}")
        memory = (limits.memory if limits else None) or service.mem_limit
        if memory:
            c.add_options(f"--memory={memory}")

        memory_reservation = (reservations.memory if reservations else None) or service.mem_reservation
        if memory_reservation:
            c.add_options(f"--memory-reservation={memory_reservation}")
        if reservations and reservations.cpus is not None:
            c.add_options(f"--cpu-shares={int(reservations.cpus * 1024)}")
        if reservations:
            for device in reservations.devices:
                c.add_options(*self._device_flags(device, service.name))

    def _device_flags(self, device: DeviceRequest, service: str):
        driver = device.driver
        if driver == "cdi":
            return [f"--device={device_id}" for device_id in device.device_ids]
        if driver == "nvidia" or (driver is None and "gpu" in device.capabilities):
            if self.runtime == ContainerRuntime.PODMAN:
                ids = device.device_ids or ["all"]
                return [f"--device=nvidia.com/gpu={device_id}" for device_id in ids]
            if device.device_ids:
                return [f'--gpus="device={",".join(device.device_ids)}"']
            if device.count is None or device.count == "all":
                return ["--gpus=all"]
            return [f"--gpus={device.count}"]
        raise UnsupportedValueError(
            f"unsupported device reservation driver {driver!r} for service {service}",
            service=service,
            field="deploy.resources.reservations.devices",
            value=driver,
        )

    def _map_dependencies(self, c: Container, service: ServiceConfig):
        c.depends_on = [
            self._peer_container(dep, service.name, "depends_on")
            for dep in service.depends_on
        ]
