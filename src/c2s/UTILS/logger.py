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

"""Console logging for the c2s command line."""
import logging

from rich.console import Console
from rich.logging import RichHandler

ROOT_LOGGER = "c2s"


def setup_logging(verbose: bool = False) -> logging.Logger:
    """Attach a Rich console handler to the package logger.

    Args:
        verbose: Enable debug-level logging

    Returns:
        The package logger

    Note:
        Logs go to stderr so command output on stdout stays machine-readable.
        Calling it again only updates the level.
    """
    logger = logging.getLogger(ROOT_LOGGER)
    level = logging.DEBUG if verbose else logging.INFO

    if not any(isinstance(h, RichHandler) for h in logger.handlers):
        handler = RichHandler(console=Console(stderr=True), show_path=False)
        handler.setFormatter(logging.Formatter("%(message)s"))
        logger.addHandler(handler)

    logger.setLevel(level)
    return logger
