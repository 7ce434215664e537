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
Errors raised while resolving a Compose project into systemd units.

Every error is fatal to the current resolution. Each one carries the service,
field and offending value so the manifest location can be found.
"""
from typing import Any, Optional


class ResolutionError(ValueError):
    """
    Base class for all resolution failures.
    """

    def __init__(
        self,
        message: str,
        service: Optional[str] = None,
        field: Optional[str] = None,
        value: Any = None,
    ):
        super().__init__(message)
        self.service = service
        self.field = field
        self.value = value


class UnresolvedReferenceError(ResolutionError):
    """A dependency, network-mode peer, network or volume does not exist."""


class UnsupportedValueError(ResolutionError):
    """A manifest value is outside the supported grammar."""


class MalformedLabelError(ResolutionError):
    """A c2s label does not match any known pattern."""


class MissingInputError(ResolutionError):
    """A referenced input file does not exist."""


class DependencyCycleError(ResolutionError):
    """Services depend on each other in a cycle."""
