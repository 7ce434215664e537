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
Parsers for Docker Compose YAML files.

The parser merges one or more compose files, interpolates variables and
normalizes every short syntax into the models of ``compose_project``.
"""
import logging
import os
import shlex
from typing import Any, Dict, List, Optional, Union

import yaml

from ..MODELS.compose_project import (
    ComposeProject,
    DependsOnConfig,
    DeployConfig,
    DeviceRequest,
    HealthCheckConfig,
    IpamConfig,
    IpamPoolConfig,
    LoggingConfig,
    NetworkConfig,
    ResourceSpec,
    ResourcesConfig,
    RestartPolicyConfig,
    ServiceConfig,
    ServiceNetworkConfig,
    ServicePortConfig,
    ServiceVolumeConfig,
    VolumeConfig,
)
from ..UTILS.string_interpolation import EnvironmentInterpolator
from .env_parser import EnvParser

logger = logging.getLogger(__name__)

DEFAULT_NETWORK = "default"

_PROPAGATION_MODES = {"shared", "rshared", "slave", "rslave", "private", "rprivate"}


def build_environment(
    env_files: List[str],
    include_os_environ: bool = True,
    ignore_missing: bool = False,
) -> Dict[str, str]:
    """
    Builds the interpolation environment from env files and, optionally, the
    process environment. The process environment takes precedence.

    :param env_files: Paths to .env files, read in order.
    :param include_os_environ: Whether to merge in ``os.environ``.
    :param ignore_missing: Skip missing env files with a warning.
    :return: The merged environment.
    """
    env = EnvParser.read_files(env_files, ignore_missing=ignore_missing)
    if include_os_environ:
        env.update(os.environ)
    return env


def _merge(base: Any, override: Any) -> Any:
    """
    Deep-merges two compose documents. Mappings merge key by key, anything
    else is replaced by the override.
    """
    if isinstance(base, dict) and isinstance(override, dict):
        merged = dict(base)
        for key, value in override.items():
            merged[key] = _merge(base.get(key), value) if key in base else value
        return merged
    return override


def _interpolate(value: Any, context: Dict[str, str]) -> Any:
    """
    Interpolates every string value of a parsed document. Keys are left as
    they are.
    """
    if isinstance(value, str):
        return EnvironmentInterpolator.interpolate(value, context)
    if isinstance(value, dict):
        return {k: _interpolate(v, context) for k, v in value.items()}
    if isinstance(value, list):
        return [_interpolate(v, context) for v in value]
    return value


def _to_bool(val: Any) -> bool:
    """
    Reads a boolean that may have arrived as a string through interpolation.
    """
    if isinstance(val, str):
        return val.strip().lower() in ("true", "yes", "on", "1")
    return bool(val)


def _to_str(val: Any) -> str:
    """
    Converts a YAML scalar to the string Compose would see.
    """
    if isinstance(val, bool):
        return "true" if val else "false"
    return str(val)


def _opt_str(val: Any) -> Optional[str]:
    return None if val is None else _to_str(val)


def _to_list(val: Any) -> List[str]:
    """
    Helper to ensure a value is a list of strings.

    :param val: The value to convert.
    :return: A list of strings.
    """
    if val is None:
        return []
    if isinstance(val, (str, int, float)):
        return [_to_str(val)]
    return [_to_str(v) for v in val]


def _to_command(val: Any) -> Optional[List[str]]:
    if val is None:
        return None
    if isinstance(val, str):
        return shlex.split(val)
    return [_to_str(v) for v in val]


def _to_mapping(val: Any, sep: str = "=") -> Dict[str, Optional[str]]:
    """
    Normalizes the list and mapping forms of labels, environment and sysctls.
    A list entry without a separator maps to None.
    """
    if not val:
        return {}
    if isinstance(val, dict):
        return {str(k): (None if v is None else _to_str(v)) for k, v in val.items()}
    result: Dict[str, Optional[str]] = {}
    for entry in val:
        entry = _to_str(entry)
        if sep in entry:
            k, v = entry.split(sep, 1)
            result[k] = v
        else:
            result[entry] = None
    return result


def _to_str_mapping(val: Any, sep: str = "=") -> Dict[str, str]:
    return {k: ("" if v is None else v) for k, v in _to_mapping(val, sep).items()}


def parse_port(spec: Any) -> ServicePortConfig:
    """
    Parses a port in short (``[ip:][host:]container[/proto]``) or long syntax.

    :param spec: The port entry from the compose file.
    :return: The parsed port.
    """
    if isinstance(spec, dict):
        published = spec.get("published")
        return ServicePortConfig(
            target=_to_str(spec["target"]),
            published=_to_str(published) if published not in (None, "") else None,
            host_ip=spec.get("host_ip"),
            protocol=spec.get("protocol"),
        )

    text = _to_str(spec)
    protocol = None
    if "/" in text:
        text, protocol = text.rsplit("/", 1)

    host_ip = None
    if text.startswith("["):
        # IPv6 host address, e.g. [::1]:8080:80
        end = text.index("]")
        host_ip = text[: end + 1]
        text = text[end + 2:]

    parts = text.split(":")
    if host_ip is not None:
        parts = [host_ip] + parts
    if len(parts) == 1:
        return ServicePortConfig(target=parts[0], protocol=protocol)
    if len(parts) == 2:
        return ServicePortConfig(target=parts[1], published=parts[0] or None, protocol=protocol)
    if len(parts) == 3:
        return ServicePortConfig(
            target=parts[2],
            published=parts[1] or None,
            host_ip=parts[0] or None,
            protocol=protocol,
        )
    raise ValueError(f"invalid port specification {spec!r}")


def _is_bind_source(source: str) -> bool:
    return source.startswith(("/", ".", "~"))


def parse_volume(spec: Any) -> ServiceVolumeConfig:
    """
    Parses a service volume in short (``src:dst[:mode]``) or long syntax.

    :param spec: The volume entry from the compose file.
    :return: The parsed mount.
    """
    if isinstance(spec, dict):
        bind = spec.get("bind") or {}
        volume = spec.get("volume") or {}
        source = spec.get("source")
        return ServiceVolumeConfig(
            type=spec.get("type", "volume"),
            source=_to_str(source) if source is not None else None,
            target=spec["target"],
            read_only=_to_bool(spec.get("read_only", False)),
            propagation=bind.get("propagation"),
            selinux=bind.get("selinux"),
            nocopy=_to_bool(volume.get("nocopy", False)),
        )

    parts = _to_str(spec).split(":")
    if len(parts) == 1:
        # Anonymous volume.
        return ServiceVolumeConfig(type="volume", target=parts[0])
    if len(parts) > 3:
        raise ValueError(f"invalid volume specification {spec!r}")

    source, target = parts[0], parts[1]
    mount = ServiceVolumeConfig(
        type="bind" if _is_bind_source(source) else "volume",
        source=source,
        target=target,
    )
    if len(parts) == 3:
        for opt in parts[2].split(","):
            if opt in ("ro", "rw"):
                mount.read_only = opt == "ro"
            elif opt in ("z", "Z"):
                mount.selinux = opt
            elif opt in _PROPAGATION_MODES:
                mount.propagation = opt
            elif opt == "nocopy":
                mount.nocopy = True
            else:
                raise ValueError(f"invalid volume option {opt!r} in {spec!r}")
    return mount


def _parse_healthcheck(spec: Dict[str, Any]) -> HealthCheckConfig:
    test = spec.get("test", [])
    if isinstance(test, str):
        test = ["CMD-SHELL", test]
    return HealthCheckConfig(
        test=[_to_str(t) for t in test],
        interval=_opt_str(spec.get("interval")),
        timeout=_opt_str(spec.get("timeout")),
        retries=spec.get("retries"),
        start_period=_opt_str(spec.get("start_period")),
        start_interval=_opt_str(spec.get("start_interval")),
        disable=_to_bool(spec.get("disable", False)),
    )


def _parse_depends_on(spec: Any) -> Dict[str, DependsOnConfig]:
    if not spec:
        return {}
    if isinstance(spec, dict):
        return {name: DependsOnConfig(**(cfg or {})) for name, cfg in spec.items()}
    return {name: DependsOnConfig() for name in spec}


def _parse_service_networks(spec: Any) -> Dict[str, ServiceNetworkConfig]:
    if not spec:
        return {}
    if isinstance(spec, dict):
        return {name: ServiceNetworkConfig(**(cfg or {})) for name, cfg in spec.items()}
    return {name: ServiceNetworkConfig() for name in spec}


def _parse_external(spec: Dict[str, Any]) -> Dict[str, Any]:
    """
    Handles the legacy ``external: {name: foo}`` form.
    """
    external = spec.get("external", False)
    if isinstance(external, dict):
        spec = dict(spec)
        spec["external"] = True
        if external.get("name"):
            spec["name"] = external["name"]
    return spec


class ComposeParser:
    """
    Parser for docker-compose.yml files.
    """
    def __init__(self, context: Optional[Dict[str, str]] = None):
        """
        Initializes the parser with an optional environment context for interpolation.

        :param context: A dictionary of environment variables for interpolation.
        """
        self.context = dict(os.environ) if context is None else context

    def parse(self, compose_paths: Union[str, List[str]]) -> ComposeProject:
        """
        Parses and merges one or more compose files. Later files override
        earlier ones.

        :param compose_paths: Path(s) to the compose file(s).
        :return: Parsed project.
        """
        if isinstance(compose_paths, str):
            compose_paths = [compose_paths]
        if not compose_paths:
            raise ValueError("at least one compose file is required")

        data: Dict[str, Any] = {}
        for path in compose_paths:
            with open(path, "r") as f:
                content = f.read()
            data = _merge(data, self._load(content))

        working_dir = os.path.dirname(os.path.abspath(compose_paths[0]))
        return self._build_project(data, working_dir)

    def parse_from_string(self, content: str, working_dir: str = ".") -> ComposeProject:
        """
        Parses a compose file from a string.

        :param content: YAML content of the compose file.
        :param working_dir: Directory relative paths are resolved against.
        :return: Parsed project.
        """
        return self._build_project(self._load(content), os.path.abspath(working_dir))

    def _load(self, content: str) -> Dict[str, Any]:
        data = yaml.safe_load(content)
        if not data:
            return {}
        if not isinstance(data, dict):
            raise ValueError("compose file must contain a mapping at the top level")
        return _interpolate(data, self.context)

    def _build_project(self, data: Dict[str, Any], working_dir: str) -> ComposeProject:
        services = {}
        for name, spec in (data.get("services") or {}).items():
            services[name] = self._parse_service(name, spec or {}, working_dir)

        networks = {}
        for name, spec in (data.get("networks") or {}).items():
            networks[name] = self._parse_network(spec or {})

        volumes = {}
        for name, spec in (data.get("volumes") or {}).items():
            volumes[name] = self._parse_volume(spec or {})

        # Services without networks join the implicit default network.
        for svc in services.values():
            if not svc.networks and not svc.network_mode:
                svc.networks = {DEFAULT_NETWORK: ServiceNetworkConfig()}
                networks.setdefault(DEFAULT_NETWORK, NetworkConfig())

        return ComposeProject(
            name=data.get("name"),
            working_dir=working_dir,
            services=services,
            networks=networks,
            volumes=volumes,
            environment=dict(self.context),
        )

    def _parse_network(self, spec: Dict[str, Any]) -> NetworkConfig:
        spec = _parse_external(spec)
        ipam = None
        if spec.get("ipam"):
            ipam_spec = spec["ipam"]
            ipam = IpamConfig(
                driver=ipam_spec.get("driver"),
                config=[IpamPoolConfig(**pool) for pool in ipam_spec.get("config") or []],
            )
        return NetworkConfig(
            name=spec.get("name"),
            driver=spec.get("driver"),
            driver_opts=_to_str_mapping(spec.get("driver_opts")),
            external=_to_bool(spec.get("external", False)),
            internal=_to_bool(spec.get("internal", False)),
            enable_ipv6=_to_bool(spec.get("enable_ipv6", False)),
            ipam=ipam,
            labels=_to_str_mapping(spec.get("labels")),
        )

    def _parse_volume(self, spec: Dict[str, Any]) -> VolumeConfig:
        spec = _parse_external(spec)
        return VolumeConfig(
            name=spec.get("name"),
            driver=spec.get("driver"),
            driver_opts=_to_str_mapping(spec.get("driver_opts")),
            external=_to_bool(spec.get("external", False)),
            labels=_to_str_mapping(spec.get("labels")),
        )

    def _parse_service(self, name: str, spec: Dict[str, Any], working_dir: str) -> ServiceConfig:
        """
        Parses a single service definition from a compose file.

        :param name: The name of the service.
        :param spec: The service specification dictionary.
        :param working_dir: Directory env files are resolved against.
        :return: A ServiceConfig instance.
        """
        restart = spec.get("restart")
        if restart is False:
            # YAML 1.1 reads a bare "no" as false.
            restart = "no"

        build = spec.get("build")
        if isinstance(build, dict):
            build = build.get("context", ".")

        env_files = []
        for entry in _to_list_of_env_files(spec.get("env_file")):
            env_files.append(os.path.normpath(os.path.join(working_dir, os.path.expanduser(entry))))

        logging_spec = spec.get("logging")
        deploy_spec = spec.get("deploy")

        return ServiceConfig(
            name=name,
            image=spec.get("image"),
            build=build,
            container_name=spec.get("container_name"),
            hostname=spec.get("hostname"),
            user=_opt_str(spec.get("user")),
            command=_to_command(spec.get("command")),
            entrypoint=_to_command(spec.get("entrypoint")),
            working_dir=spec.get("working_dir"),
            init=_to_bool(spec.get("init", False)),
            stop_signal=spec.get("stop_signal"),
            environment=_to_mapping(spec.get("environment")),
            env_file=env_files,
            ports=[parse_port(p) for p in spec.get("ports") or []],
            networks=_parse_service_networks(spec.get("networks")),
            network_mode=spec.get("network_mode"),
            dns=_to_list(spec.get("dns")),
            dns_search=_to_list(spec.get("dns_search")),
            dns_opt=_to_list(spec.get("dns_opt")),
            extra_hosts=_to_str_mapping(_normalize_extra_hosts(spec.get("extra_hosts"))),
            mac_address=spec.get("mac_address"),
            volumes=[parse_volume(v) for v in spec.get("volumes") or []],
            tmpfs=_to_list(spec.get("tmpfs")),
            restart=restart,
            deploy=_parse_deploy(deploy_spec) if deploy_spec else None,
            depends_on=_parse_depends_on(spec.get("depends_on")),
            healthcheck=_parse_healthcheck(spec["healthcheck"]) if spec.get("healthcheck") else None,
            privileged=_to_bool(spec.get("privileged", False)),
            cap_add=_to_list(spec.get("cap_add")),
            cap_drop=_to_list(spec.get("cap_drop")),
            devices=_to_list(spec.get("devices")),
            security_opt=_to_list(spec.get("security_opt")),
            sysctls=_to_str_mapping(spec.get("sysctls")),
            shm_size=_opt_str(spec.get("shm_size")),
            cpus=spec.get("cpus"),
            mem_limit=_opt_str(spec.get("mem_limit")),
            mem_reservation=_opt_str(spec.get("mem_reservation")),
            logging=LoggingConfig(
                driver=logging_spec.get("driver"),
                options=_to_str_mapping(logging_spec.get("options")),
            ) if logging_spec else None,
            log_driver=spec.get("log_driver"),
            log_opt=_to_str_mapping(spec.get("log_opt")),
            labels=_to_str_mapping(spec.get("labels")),
        )


def _to_list_of_env_files(val: Any) -> List[str]:
    if val is None:
        return []
    if isinstance(val, str):
        return [val]
    return [entry["path"] if isinstance(entry, dict) else entry for entry in val]


def _normalize_extra_hosts(val: Any) -> Any:
    """
    Accepts ``host:ip``, ``host=ip`` and mapping forms.
    """
    if not val or isinstance(val, dict):
        return val
    normalized = []
    for entry in val:
        if "=" not in entry:
            host, ip = entry.split(":", 1)
            entry = f"{host}={ip}"
        normalized.append(entry)
    return normalized


def _parse_resource_spec(spec: Optional[Dict[str, Any]]) -> Optional[ResourceSpec]:
    if not spec:
        return None
    devices = []
    for device in spec.get("devices") or []:
        count = device.get("count")
        devices.append(DeviceRequest(
            driver=device.get("driver"),
            count=count if isinstance(count, int) or count is None else _to_str(count),
            device_ids=_to_list(device.get("device_ids")),
            capabilities=_to_list(device.get("capabilities")),
        ))
    cpus = spec.get("cpus")
    return ResourceSpec(
        cpus=float(cpus) if cpus is not None else None,
        memory=_opt_str(spec.get("memory")),
        devices=devices,
    )


def _parse_deploy(spec: Dict[str, Any]) -> DeployConfig:
    """
    Parses the parts of the ``deploy`` block that apply to a single host.
    """
    restart_policy = None
    if spec.get("restart_policy") is not None:
        policy = spec["restart_policy"] or {}
        restart_policy = RestartPolicyConfig(
            condition=policy.get("condition"),
            delay=_opt_str(policy.get("delay")),
            max_attempts=policy.get("max_attempts"),
            window=_opt_str(policy.get("window")),
        )
    resources = None
    if spec.get("resources"):
        resources = ResourcesConfig(
            limits=_parse_resource_spec(spec["resources"].get("limits")),
            reservations=_parse_resource_spec(spec["resources"].get("reservations")),
        )
    return DeployConfig(restart_policy=restart_policy, resources=resources)
