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
The label-based override channel.

Service labels of the form ``c2s.systemd.<service|unit>.<Key>`` inject
systemd directives into a container's unit, and ``c2s.settings.autoStart``
overrides its auto-start flag. Consumed labels are removed from the labels
passed to the runtime.

Examples:
    c2s.systemd.service.RuntimeMaxSec=100
    c2s.systemd.unit.StartLimitBurst=10
    c2s.systemd.unit.After=foo.service
"""
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..errors import MalformedLabelError, UnsupportedValueError
from ..MODELS.unit_model import Container, LabelOverride

LABEL_PREFIX = "c2s"
AUTO_START_LABEL = f"{LABEL_PREFIX}.settings.autoStart"

_SYSTEMD_LABEL = re.compile(rf"^{LABEL_PREFIX}\.systemd\.(\w+)\.(\w+)$")

# https://www.freedesktop.org/software/systemd/man/latest/systemd.syntax.html
SYSTEMD_TRUE = ("true", "yes", "on")
SYSTEMD_FALSE = ("false", "no", "off")

# [Unit] keys that are merged into the relation sets instead of replacing them.
RELATION_KEYS = {
    "After": "after",
    "Requires": "requires",
    "PartOf": "part_of",
    "WantedBy": "wanted_by",
    "UpheldBy": "upheld_by",
    "RequiresMountsFor": "requires_mounts_for",
}


def parse_systemd_value(value: str) -> Any:
    """
    Auto-types a label value: booleans, comma-separated lists, integers,
    else the raw string.
    """
    v = value.strip()
    if v in SYSTEMD_TRUE:
        return True
    if v in SYSTEMD_FALSE:
        return False
    if "," in v:
        return [s.strip() for s in v.split(",")]
    try:
        return int(v)
    except ValueError:
        return v


@dataclass
class ParsedLabels:
    """
    Labels split into the ones passed through and the consumed overrides.
    """
    labels: Dict[str, str] = field(default_factory=dict)
    overrides: List[LabelOverride] = field(default_factory=list)
    auto_start: Optional[bool] = None


def parse_labels(service: str, labels: Dict[str, str]) -> ParsedLabels:
    """
    Extracts c2s labels from a service's labels.

    :param service: The service name, for error context.
    :param labels: All labels of the service.
    :raises MalformedLabelError: On a c2s label that matches no known pattern.
    :raises UnsupportedValueError: On a systemd section other than service or unit.
    """
    parsed = ParsedLabels()
    for label in sorted(labels):
        value = labels[label]
        if not label.startswith(LABEL_PREFIX + "."):
            parsed.labels[label] = value
            continue

        if label == AUTO_START_LABEL:
            if value not in ("true", "false"):
                raise MalformedLabelError(
                    f'label {label} of service {service} must be "true" or "false", got {value!r}',
                    service=service,
                    field=label,
                    value=value,
                )
            parsed.auto_start = value == "true"
            continue

        m = _SYSTEMD_LABEL.match(label)
        if not m:
            raise MalformedLabelError(
                f"invalid {LABEL_PREFIX} label specified for service {service}: {label!r}",
                service=service,
                field=label,
                value=value,
            )
        section, key = m.group(1), m.group(2)
        if section not in ("service", "unit"):
            raise UnsupportedValueError(
                f'invalid systemd type {section!r} in label {label!r} - must be "service" or "unit"',
                service=service,
                field=label,
                value=section,
            )
        if "\n" in value or "\r" in value:
            raise MalformedLabelError(
                f"label {label!r} of service {service} spans more than one line",
                service=service,
                field=label,
                value=value,
            )
        parsed.overrides.append(LabelOverride(section=section, key=key, value=parse_systemd_value(value)))
    return parsed


def apply_overrides(container: Container) -> None:
    """
    Layers a container's label overrides onto its structural systemd config.
    Must run after every generated relation exists.
    """
    systemd = container.systemd
    for override in systemd.overrides:
        if override.section == "service":
            systemd.service[override.key] = override.value
            continue

        if override.key in RELATION_KEYS:
            values = override.value if isinstance(override.value, list) else [override.value]
            container.relations.add(RELATION_KEYS[override.key], *[str(v) for v in values])
        elif override.key == "StartLimitBurst":
            systemd.start_limit_burst = override.value
        elif override.key == "StartLimitIntervalSec":
            systemd.start_limit_interval_sec = override.value
        else:
            systemd.unit[override.key] = override.value
