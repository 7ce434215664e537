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
Utilities for string interpolation using environment variables.
"""
import logging
import re
from typing import Dict

from ..errors import MissingInputError

logger = logging.getLogger(__name__)

# Group "escaped" matches "$$", "named" a bare $VAR, "braced" a ${...} form
# with an optional modifier (-, :-, +, :+, ?, :?) and its argument.
_PATTERN = re.compile(
    r"""
    \$(?:
        (?P<escaped>\$) |
        (?P<named>[_a-zA-Z][_a-zA-Z0-9]*) |
        \{(?P<braced>[_a-zA-Z][_a-zA-Z0-9]*)(?P<modifier>:?[-+?])?(?P<arg>[^}]*)\}
    )
    """,
    re.VERBOSE,
)


class EnvironmentInterpolator:
    """
    Utility for interpolating environment variables in strings.
    Supports $VAR, ${VAR}, ${VAR:-default}, ${VAR-default}, ${VAR:+value},
    ${VAR+value}, ${VAR:?error}, ${VAR?error} and $$ as a literal dollar.
    """
    @staticmethod
    def interpolate(template: str, context: Dict[str, str]) -> str:
        """
        Interpolates environment variables in the template string using the provided context.

        An unset variable without a modifier resolves to an empty string, as
        Compose does.

        :param template: The string containing ${VAR} placeholders.
        :param context: The environment variables context.
        :return: The interpolated string.
        :raises MissingInputError: If a ${VAR?error} variable is unset.
        """
        def replace(match):
            if match.group("escaped"):
                return "$"
            var_name = match.group("named") or match.group("braced")
            modifier = match.group("modifier")
            arg = match.group("arg") or ""
            value = context.get(var_name)

            if modifier is None:
                if value is None:
                    logger.warning("Variable %s is not set, defaulting to a blank string", var_name)
                    return ""
                return value

            # The ":" variants also treat an empty value as unset.
            is_set = bool(value) if modifier.startswith(":") else value is not None
            op = modifier[-1]
            if op == "-":
                return value if is_set else arg
            if op == "+":
                return arg if is_set else ""
            if not is_set:
                raise MissingInputError(
                    f"required variable {var_name} is missing a value: {arg}",
                    field=var_name,
                )
            return value

        return _PATTERN.sub(replace, template)
