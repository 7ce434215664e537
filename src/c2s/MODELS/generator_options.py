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
Options controlling how a Compose project is resolved into systemd units.
"""
from typing import List, Optional
from pydantic import BaseModel, Field

from .unit_model import ContainerRuntime, Project

# UpheldBy= is available starting with this systemd release.
MIN_SYSTEMD_VERSION_FOR_UPHOLD = 249


class GeneratorOptions(BaseModel):
    """
    Global switches for one generator run.
    """
    project: Project = Field(default_factory=Project)
    runtime: ContainerRuntime = ContainerRuntime.PODMAN

    # Environment
    env_files: List[str] = []
    include_env_files: bool = False
    env_files_only: bool = False
    ignore_missing_env_files: bool = False

    # Paths and selection
    root_path: Optional[str] = None
    service_include: Optional[str] = None

    # Container behaviour
    auto_start: bool = True
    use_compose_log_driver: bool = False

    # Resources
    keep_unused_resources: bool = False
    remove_volumes: bool = False

    # Units
    create_root_target: bool = True
    check_systemd_mounts: bool = False
    systemd_version: Optional[int] = None
    write_runtime_setup: bool = False

    @property
    def supports_uphold(self) -> bool:
        """
        Whether the target service manager understands UpheldBy=.
        """
        return (
            self.systemd_version is not None
            and self.systemd_version >= MIN_SYSTEMD_VERSION_FOR_UPHOLD
        )
