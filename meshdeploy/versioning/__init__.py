# Copyright 2025 Roger Cibrian
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
Version handling for meshdeploy.

Modules
-------
keys : module
    Dotted-integer parsing and comparison, shared DTOs.
exe : module
    Version extraction from an installed client executable.

Examples
--------
    >>> from meshdeploy.versioning import compare_versions
    >>> compare_versions("0.9.9", "0.9.10")
    True
    >>> compare_versions("0.9.10", "0.9.9")
    False
"""

from .exe import parse_version_output, version_from_executable
from .keys import (
    DiscoveredVersion,
    ReleaseInfo,
    compare_versions,
    normalize_version,
    parse_version,
    same_version,
)

__all__ = [
    "DiscoveredVersion",
    "ReleaseInfo",
    "compare_versions",
    "normalize_version",
    "parse_version",
    "parse_version_output",
    "same_version",
    "version_from_executable",
]
