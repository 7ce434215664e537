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
Helpers turning mappings into the sorted flag lists the runtimes accept.
"""
from typing import Dict, List


def map_to_key_val_array(m: Dict[str, str]) -> List[str]:
    """
    Converts a mapping into a sorted list of ``KEY=VAL`` entries.
    """
    return sorted(f"{k}={v}" for k, v in m.items())


def map_to_repeated_key_val_flag(flag: str, m: Dict[str, str]) -> List[str]:
    """
    Converts a mapping into sorted ``flag=KEY=VAL`` entries.

    :param flag: The flag name, e.g. ``--log-opt``.
    :param m: The mapping to convert.
    """
    return [f"{flag}={kv}" for kv in map_to_key_val_array(m)]
