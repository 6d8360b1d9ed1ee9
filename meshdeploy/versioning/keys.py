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

"""Core version comparison utilities for meshdeploy.

This module is format-agnostic: it does NOT run executables or make HTTP
calls. It only normalizes and compares dotted-integer version strings as
reported by release tags ("v0.28.4"), MSI ProductVersion ("0.28.4") and the
client's own ``version`` command ("0.28.4").
"""

from __future__ import annotations

from dataclasses import dataclass
import re

# ----------------------------
# Shared DTOs
# ----------------------------


@dataclass(frozen=True)
class DiscoveredVersion:
    """Container for a version read from an installed executable.

    Attributes:
        version: Normalized version string (e.g., "0.28.4").
        source: How it was obtained (e.g., "command:version", "file_metadata").

    """

    version: str
    source: str


@dataclass(frozen=True)
class ReleaseInfo:
    """Version and package URL for one published release.

    Attributes:
        version: Normalized version (no leading "v"), or None when the
            requested tag does not exist.
        download_url: Installer asset URL, or None when no asset matched.

    """

    version: str | None
    download_url: str | None


# ----------------------------
# Parsing
# ----------------------------

_DOTTED = re.compile(r"^\d+(\.\d+)*$")


def normalize_version(raw: str | None) -> str | None:
    """Strip whitespace and a leading "v"/"V" from a version or tag name.

    Example:
        ```python
        normalize_version("v0.28.4")   # '0.28.4'
        normalize_version(" 1.2 ")     # '1.2'
        normalize_version("")          # None
        ```
    """
    if raw is None:
        return None
    s = raw.strip()
    if s[:1] in ("v", "V"):
        s = s[1:]
    return s or None


def parse_version(raw: str | None) -> tuple[int, ...] | None:
    """Parse a dotted-integer version into a tuple of ints.

    Returns None for anything that is not purely dotted integers after
    normalization (prerelease suffixes, empty strings, None).
    """
    s = normalize_version(raw)
    if s is None or not _DOTTED.match(s):
        return None
    return tuple(int(p) for p in s.split("."))


def _pad_equal(
    a: tuple[int, ...], b: tuple[int, ...]
) -> tuple[tuple[int, ...], tuple[int, ...]]:
    """Pad tuples with zeros so "1.2" and "1.2.0" compare equal."""
    n = max(len(a), len(b))
    return a + (0,) * (n - len(a)), b + (0,) * (n - len(b))


# ----------------------------
# Comparison
# ----------------------------


def compare_versions(current: str | None, candidate: str | None) -> bool:
    """Return True iff 'candidate' is strictly newer than 'current'.

    Components are compared numerically ("0.9.10" is newer than "0.9.9").
    If either side cannot be parsed the answer is True: an unreadable
    version must never leave a machine stuck on an old client.

    Example:
        ```python
        compare_versions("0.9.9", "0.9.10")   # True
        compare_versions("0.9.10", "0.9.9")   # False
        compare_versions("1.2", "1.2.0")      # False
        compare_versions(None, "1.0.0")       # True
        ```
    """
    a = parse_version(current)
    b = parse_version(candidate)
    if a is None or b is None:
        return True
    a, b = _pad_equal(a, b)
    return b > a


def same_version(a: str | None, b: str | None) -> bool:
    """True when both versions parse and are numerically equal."""
    pa = parse_version(a)
    pb = parse_version(b)
    if pa is None or pb is None:
        return False
    pa, pb = _pad_equal(pa, pb)
    return pa == pb
