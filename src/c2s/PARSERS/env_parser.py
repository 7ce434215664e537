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
Parsers for .env files, supporting quotes and comments.
"""
import logging
import os
from io import StringIO
from typing import Dict, Iterable, List

from dotenv import dotenv_values

from ..errors import MissingInputError

logger = logging.getLogger(__name__)


class EnvParser:
    """
    Parser for .env files.
    """
    @staticmethod
    def parse(env_path: str) -> Dict[str, str]:
        """
        Parses an .env file from a path.

        Keys declared without a value are skipped.

        Args:
            env_path (str): Path to the .env file.

        Returns:
            Dict[str, str]: Dictionary of environment variables.
        """
        values = dotenv_values(env_path, interpolate=False)
        return {k: v for k, v in values.items() if v is not None}

    @staticmethod
    def parse_from_string(content: str) -> Dict[str, str]:
        """
        Parses environment variables from a string.
        """
        values = dotenv_values(stream=StringIO(content), interpolate=False)
        return {k: v for k, v in values.items() if v is not None}

    @classmethod
    def read_files(cls, paths: Iterable[str], ignore_missing: bool = False) -> Dict[str, str]:
        """
        Reads and merges several env files. Later files override earlier ones.

        :param paths: Paths to the env files. Blank entries are skipped.
        :param ignore_missing: Skip missing files with a warning instead of failing.
        :return: The merged variables.
        :raises MissingInputError: If a file does not exist and ignore_missing is unset.
        """
        env: Dict[str, str] = {}
        for path in paths:
            if not path or not path.strip():
                continue
            if not os.path.exists(path):
                if ignore_missing:
                    logger.warning("Env file %s does not exist, skipping", path)
                    continue
                raise MissingInputError(f"env file {path} does not exist", field="env_file", value=path)
            env.update(cls.parse(path))
        return env

    @staticmethod
    def existing_files(paths: Iterable[str], ignore_missing: bool = False) -> List[str]:
        """
        Returns the env files that exist, as absolute paths.

        :param paths: Paths to check. Blank entries are skipped.
        :param ignore_missing: Skip missing files with a warning instead of failing.
        :raises MissingInputError: If a file does not exist and ignore_missing is unset.
        """
        existing = []
        for path in paths:
            if not path or not path.strip():
                continue
            path = os.path.abspath(path)
            if os.path.exists(path):
                existing.append(path)
            elif ignore_missing:
                logger.warning("Env file %s does not exist, skipping", path)
            else:
                raise MissingInputError(f"env file {path} does not exist", field="env_file", value=path)
        return existing
