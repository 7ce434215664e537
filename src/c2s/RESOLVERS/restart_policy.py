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
Translation of Compose restart semantics into systemd restart directives.

The legacy ``restart`` field and the ``deploy.restart_policy`` block are
both normalized into a single ``RestartPolicy`` variant. When present, the
deploy block replaces the legacy result entirely.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from ..errors import UnsupportedValueError
from ..MODELS.compose_project import RestartPolicyConfig, ServiceConfig
from ..MODELS.unit_model import ContainerRuntime, SystemdConfig
from ..UTILS.durations import parse_duration

# Retry limits for "on-failure:N" reset once per day.
DEFAULT_START_LIMIT_INTERVAL_SEC = 24 * 60 * 60
UNBOUNDED_START_LIMIT_INTERVAL = "infinity"

# dockerd restarts with a delay starting at 100ms, doubling up to one minute.
DOCKER_RESTART_BACKOFF = {
    "RestartSec": "100ms",
    "RestartSteps": 9,
    "RestartMaxDelaySec": "1min",
}


class RestartMode(str, Enum):
    """
    Conditions under which a service should be restarted.
    """
    NO = "no"
    ALWAYS = "always"
    ON_FAILURE = "on-failure"


@dataclass(frozen=True)
class RestartPolicy:
    """
    A normalized restart policy: ``no``, ``always`` or ``on-failure``, with
    optional rate limiting.
    """
    mode: RestartMode = RestartMode.NO
    burst: Optional[int] = None
    window: Optional[Union[int, str]] = None
    delay: Optional[str] = None

    @property
    def restarts_indefinitely(self) -> bool:
        return self.mode != RestartMode.NO and self.burst is None


def parse_legacy_restart(restart: Optional[str], service: Optional[str] = None) -> RestartPolicy:
    """
    Parses the legacy ``restart`` field.

    :param restart: The raw field value, e.g. ``on-failure:3``.
    :param service: The service name, for error context.
    :raises UnsupportedValueError: If the value is outside the Compose grammar.
    """
    value = (restart or "").strip()
    if value in ("", "no"):
        return RestartPolicy(RestartMode.NO)
    if value == "always":
        return RestartPolicy(RestartMode.ALWAYS)
    if value == "on-failure":
        return RestartPolicy(RestartMode.ON_FAILURE)
    if value == "unless-stopped":
        # systemd has no notion of a manual stop surviving reboots.
        return RestartPolicy(RestartMode.ALWAYS)
    if value.startswith("on-failure:"):
        attempts = value.split(":", 1)[1].strip()
        try:
            burst = int(attempts)
        except ValueError:
            raise UnsupportedValueError(
                f"failed to parse on-failure attempts {attempts!r} for service {service}",
                service=service,
                field="restart",
                value=restart,
            ) from None
        if burst < 0:
            raise UnsupportedValueError(
                f"on-failure attempts must not be negative for service {service}: {restart!r}",
                service=service,
                field="restart",
                value=restart,
            )
        return RestartPolicy(RestartMode.ON_FAILURE, burst=burst, window=DEFAULT_START_LIMIT_INTERVAL_SEC)
    raise UnsupportedValueError(
        f"unsupported restart {restart!r} for service {service}",
        service=service,
        field="restart",
        value=restart,
    )


def _parse_duration_field(value: str, field: str, service: Optional[str]) -> float:
    try:
        return parse_duration(value)
    except ValueError:
        raise UnsupportedValueError(
            f"invalid duration {value!r} in {field} of service {service}",
            service=service,
            field=field,
            value=value,
        ) from None


def parse_deploy_restart_policy(
    policy: RestartPolicyConfig, service: Optional[str] = None
) -> RestartPolicy:
    """
    Parses the ``deploy.restart_policy`` block.

    :param policy: The parsed block.
    :param service: The service name, for error context.
    :raises UnsupportedValueError: On an unknown condition or bad duration.
    """
    condition = policy.condition or "any"
    if condition == "none":
        mode = RestartMode.NO
    elif condition == "any":
        mode = RestartMode.ALWAYS
    elif condition == "on-failure":
        mode = RestartMode.ON_FAILURE
    else:
        raise UnsupportedValueError(
            f"unsupported restart condition {condition!r} for service {service}",
            service=service,
            field="deploy.restart_policy.condition",
            value=condition,
        )

    delay = None
    if policy.delay is not None:
        _parse_duration_field(policy.delay, "deploy.restart_policy.delay", service)
        delay = policy.delay

    burst = policy.max_attempts
    window: Optional[Union[int, str]] = None
    if policy.window is not None:
        window = int(_parse_duration_field(policy.window, "deploy.restart_policy.window", service))
    elif burst is not None:
        window = UNBOUNDED_START_LIMIT_INTERVAL

    return RestartPolicy(mode, burst=burst, window=window, delay=delay)


def normalize_restart_policy(
    restart: Optional[str],
    deploy_policy: Optional[RestartPolicyConfig],
    service: Optional[str] = None,
) -> RestartPolicy:
    """
    Normalizes both restart settings of a service into one policy.

    The legacy field is always validated, but a deploy block replaces it.
    """
    legacy = parse_legacy_restart(restart, service)
    if deploy_policy is None:
        return legacy
    return parse_deploy_restart_policy(deploy_policy, service)


class RestartPolicyTranslator:
    """
    Converts a service's restart policy into systemd directives.
    """
    def __init__(self, runtime: ContainerRuntime):
        self.runtime = runtime

    def translate(self, service: ServiceConfig) -> SystemdConfig:
        """
        Builds the systemd config of a service from its restart settings.

        :param service: The service definition.
        :return: A systemd config without any label overrides applied.
        """
        deploy_policy = service.deploy.restart_policy if service.deploy else None
        policy = normalize_restart_policy(service.restart, deploy_policy, service.name)
        return self.to_systemd_config(policy)

    def to_systemd_config(self, policy: RestartPolicy) -> SystemdConfig:
        config = SystemdConfig()
        if policy.mode == RestartMode.NO:
            return config

        config.service["Restart"] = policy.mode.value
        if policy.delay is not None:
            config.service["RestartSec"] = policy.delay
        config.start_limit_burst = policy.burst
        config.start_limit_interval_sec = policy.window

        if (
            self.runtime == ContainerRuntime.DOCKER
            and policy.restarts_indefinitely
            and policy.delay is None
        ):
            config.service.update(DOCKER_RESTART_BACKOFF)
        return config
