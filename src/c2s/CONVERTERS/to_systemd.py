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
Converters for generating systemd unit files from a resolved project.
"""
import logging
import os
import re
import shlex
from typing import Any, Dict, List

from jinja2 import Environment

from ..MODELS.unit_model import Container, ContainerConfig, ContainerRuntime, Network, Volume

logger = logging.getLogger(__name__)

SETUP_SCRIPT_NAME = "setup.sh"

CONTAINER_TEMPLATE = """\
[Unit]
Description={{ runtime }} container {{ c.name }}
{% for key, values in relations %}
{% if values %}
{{ key }}={{ values | join(' ') }}
{% endif %}
{% endfor %}
{% if c.systemd.start_limit_burst is not none %}
StartLimitBurst={{ c.systemd.start_limit_burst }}
{% endif %}
{% if c.systemd.start_limit_interval_sec is not none %}
StartLimitIntervalSec={{ c.systemd.start_limit_interval_sec }}
{% endif %}
{% for key, value in c.systemd.unit.items() %}
{{ key }}={{ value | directive }}
{% endfor %}

[Service]
{% for key, value in service.items() %}
{{ key }}={{ value | directive }}
{% endfor %}
ExecStartPre=-{{ pre_start | exec_args }}
ExecStart={{ exec_start | exec_args }}
ExecStop={{ stop | exec_args }}

{% if install %}
[Install]
{% for key, values in install %}
{% if values %}
{{ key }}={{ values | join(' ') }}
{% endif %}
{% endfor %}
{% endif %}
"""

RESOURCE_TEMPLATE = """\
[Unit]
Description={{ runtime }} {{ kind }} {{ r.name }}
{% for key, values in relations %}
{% if values %}
{{ key }}={{ values | join(' ') }}
{% endif %}
{% endfor %}

[Service]
Type=oneshot
RemainAfterExit=true
ExecStart={{ create | exec_args }}
{% if remove %}
ExecStop={{ remove | exec_args }}
{% endif %}

{% if wanted_by %}
[Install]
WantedBy={{ wanted_by | join(' ') }}
{% endif %}
"""

TARGET_TEMPLATE = """\
[Unit]
Description=Root target for {{ description }}

{% if auto_start %}
[Install]
WantedBy=multi-user.target
{% endif %}
"""

SETUP_TEMPLATE = """\
#!/bin/sh
# Installs the generated units and enables them.
set -e

UNIT_DIR="${UNIT_DIR:-/etc/systemd/system}"
cd "$(dirname "$0")"

{% for unit in units %}
install -m 0644 {{ unit }} "$UNIT_DIR/{{ unit }}"
{% endfor %}

systemctl daemon-reload
{% for unit in enable %}
systemctl enable {{ unit }}
{% endfor %}
"""

# Characters that force an ExecStart= word to be quoted.
_NEEDS_QUOTING = re.compile(r"[\s\"'\\;\x00-\x1f\x7f]")
_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")
_C_ESCAPES = {"\n": "\\n", "\r": "\\r", "\t": "\\t"}


def _escape_control(match) -> str:
    char = match.group(0)
    return _C_ESCAPES.get(char, "\\x%02x" % ord(char))


def escape_systemd_arg(arg: str) -> str:
    """
    Escapes one command-line argument for ExecStart= and friends.

    Specifiers (%) and variable references ($) are doubled, and words with
    whitespace, quotes or backslashes are double-quoted. Control characters
    become C escapes, so a value never spans more than one line.
    """
    arg = arg.replace("%", "%%").replace("$", "$$")
    if arg and not _NEEDS_QUOTING.search(arg):
        return arg
    arg = arg.replace("\\", "\\\\").replace('"', '\\"')
    return '"' + _CONTROL_CHARS.sub(_escape_control, arg) + '"'


def format_directive(value: Any) -> str:
    """
    Formats a typed directive value as it appears in a unit file.
    """
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, list):
        return " ".join(str(v) for v in value)
    return str(value)


def _exec_args(args: List[str]) -> str:
    return " ".join(escape_systemd_arg(a) for a in args)


def _shell_script(*commands: List[str]) -> List[str]:
    """
    Joins commands with ``||`` into a single ``/bin/sh -c`` invocation.
    """
    script = " || ".join(" ".join(shlex.quote(a) for a in cmd) for cmd in commands)
    return ["/bin/sh", "-c", script]


def _key_val_flags(flag: str, values: Dict[str, str]) -> List[str]:
    return [f"{flag}={k}={v}" for k, v in values.items()]


class SystemdConverter:
    """
    Converts a resolved project into systemd unit files.
    """

    def __init__(self, config: ContainerConfig):
        """
        Initializes the systemd converter.

        :param config: The resolved project.
        """
        self.config = config
        self.runtime = config.runtime.value
        env = Environment(trim_blocks=True, lstrip_blocks=True, keep_trailing_newline=True)
        env.filters["exec_args"] = _exec_args
        env.filters["directive"] = format_directive
        self.container_template = env.from_string(CONTAINER_TEMPLATE)
        self.resource_template = env.from_string(RESOURCE_TEMPLATE)
        self.target_template = env.from_string(TARGET_TEMPLATE)
        self.setup_template = env.from_string(SETUP_TEMPLATE)

    def render(self) -> Dict[str, str]:
        """
        Renders every unit.

        :return: File names mapped to their contents.
        """
        files = {}
        for network in self.config.networks:
            files[network.unit] = self._render_network(network)
        for volume in self.config.volumes:
            files[volume.unit] = self._render_volume(volume)
        for c in self.config.containers:
            files[c.unit] = self._render_container(c)

        root_target = self.config.root_target
        if root_target:
            files[root_target] = self.target_template.render(
                description=self.config.project.name or "the Compose project",
                auto_start=self.config.auto_start,
            )

        if self.config.write_runtime_setup:
            files[SETUP_SCRIPT_NAME] = self.setup_template.render(
                units=sorted(files),
                enable=self._units_to_enable(),
            )
        return files

    def convert(self, output_dir: str = "systemd") -> str:
        """
        Writes the systemd unit files.

        :param output_dir: The directory where unit files will be created.
        :return: The path to the output directory.
        """
        os.makedirs(output_dir, exist_ok=True)

        files = self.render()
        for name, content in files.items():
            path = os.path.join(output_dir, name)
            with open(path, "w") as f:
                f.write(content)
            if name == SETUP_SCRIPT_NAME:
                os.chmod(path, 0o755)

        logger.debug("Wrote %d files to %s", len(files), output_dir)
        return output_dir

    def _units_to_enable(self) -> List[str]:
        if self.config.root_target:
            return [self.config.root_target]
        units = [c.unit for c in self.config.containers if c.auto_start]
        units += [n.unit for n in self.config.networks]
        units += [v.unit for v in self.config.volumes]
        return sorted(units)

    def _run_args(self, c: Container) -> List[str]:
        args = [self.runtime, "run", "--rm", f"--name={c.name}", f"--log-driver={c.log_driver}"]
        if self.config.runtime == ContainerRuntime.PODMAN:
            args += ["--cgroups=no-conmon", "--sdnotify=conmon"]
        args += _key_val_flags("--env", c.environment)
        args += [f"--env-file={path}" for path in c.env_files]
        args += [f"--volume={spec}" for spec in c.volumes.values()]
        args += [f"--publish={port}" for port in c.ports]
        args += _key_val_flags("--label", c.labels)
        if c.user:
            args.append(f"--user={c.user}")
        args += c.extra_options
        args.append(c.image)
        args += c.command or []
        return args

    def _render_container(self, c: Container) -> str:
        r = c.relations
        relations = [
            ("After", r.after),
            ("Requires", r.requires),
            ("PartOf", r.part_of),
            ("RequiresMountsFor", r.requires_mounts_for),
        ]

        service: Dict[str, Any] = {}
        if self.config.runtime == ContainerRuntime.PODMAN:
            service.update({"Type": "notify", "NotifyAccess": "all"})
        else:
            service["Type"] = "simple"
        service.update(c.systemd.service)

        install = []
        if c.auto_start:
            wanted_by = r.wanted_by or ([] if self.config.root_target else ["multi-user.target"])
            install = [("WantedBy", wanted_by), ("UpheldBy", r.upheld_by)]
            if not any(values for _, values in install):
                install = []

        rm = [self.runtime, "rm", "-f", c.name]
        return self.container_template.render(
            runtime=self.runtime,
            c=c,
            relations=relations,
            service=service,
            pre_start=rm,
            exec_start=self._run_args(c),
            stop=[self.runtime, "stop", c.name],
            install=install,
        )

    def _render_resource(self, kind: str, r, create: List[str], remove: List[str]) -> str:
        relations = [
            ("After", r.relations.after),
            ("Requires", r.relations.requires),
            ("PartOf", r.relations.part_of),
            ("RequiresMountsFor", r.relations.requires_mounts_for),
        ]
        wanted_by = r.relations.wanted_by
        if not wanted_by and not self.config.root_target and self.config.auto_start:
            wanted_by = ["multi-user.target"]
        inspect = [self.runtime, kind, "inspect", r.name]
        return self.resource_template.render(
            runtime=self.runtime,
            kind=kind,
            r=r,
            relations=relations,
            create=_shell_script(inspect, create),
            remove=remove,
            wanted_by=wanted_by,
        )

    def _render_network(self, n: Network) -> str:
        create = [self.runtime, "network", "create", n.name]
        if n.driver:
            create.append(f"--driver={n.driver}")
        create += _key_val_flags("--opt", n.driver_opts)
        if n.ipam_driver:
            create.append(f"--ipam-driver={n.ipam_driver}")
        for pool in n.ipam_configs:
            if pool.subnet:
                create.append(f"--subnet={pool.subnet}")
            if pool.ip_range:
                create.append(f"--ip-range={pool.ip_range}")
            if pool.gateway:
                create.append(f"--gateway={pool.gateway}")
            create += [f"--aux-address={aux}" for aux in pool.aux_addresses]
        create += _key_val_flags("--label", n.labels)
        create += n.extra_options
        return self._render_resource("network", n, create, [self.runtime, "network", "rm", "-f", n.name])

    def _render_volume(self, v: Volume) -> str:
        create = [self.runtime, "volume", "create", v.name]
        if v.driver:
            create.append(f"--driver={v.driver}")
        create += _key_val_flags("--opt", v.driver_opts)
        create += _key_val_flags("--label", v.labels)
        remove = [self.runtime, "volume", "rm", "-f", v.name] if v.remove_on_stop else []
        return self._render_resource("volume", v, create, remove)
