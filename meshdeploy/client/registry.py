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

"""Windows registry lookups used by installation detection.

Lookups:

- Uninstall entries under
  HKLM\\SOFTWARE\\Microsoft\\Windows\\CurrentVersion\\Uninstall, read through
  both the native (64-bit) and WOW64 (32-bit) registry views
- A service's ImagePath under HKLM\\SYSTEM\\CurrentControlSet\\Services

On hosts without winreg (Linux/macOS CI) every lookup returns nothing, so
callers simply fall through to their next strategy.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass
import re

try:
    import winreg  # type: ignore  # Windows-only standard library module
except ImportError:
    winreg = None  # type: ignore

UNINSTALL_KEY = r"SOFTWARE\Microsoft\Windows\CurrentVersion\Uninstall"
SERVICES_KEY = r"SYSTEM\CurrentControlSet\Services"


@dataclass(frozen=True)
class UninstallEntry:
    """One product entry from the Uninstall key.

    Attributes:
        display_name: DisplayName value.
        display_version: DisplayVersion value, if recorded.
        install_location: InstallLocation value, if recorded.
        view: "native" or "wow64".
    """

    display_name: str
    display_version: str | None
    install_location: str | None
    view: str


def _read_value(key, name: str) -> str | None:
    try:
        value, _ = winreg.QueryValueEx(key, name)
    except OSError:
        return None
    return str(value) if value not in (None, "") else None


def iter_uninstall_entries() -> Iterator[UninstallEntry]:
    """Yield every Uninstall entry from both registry views."""
    if winreg is None:
        return
    views = (("native", winreg.KEY_WOW64_64KEY), ("wow64", winreg.KEY_WOW64_32KEY))
    for view_name, view_flag in views:
        try:
            root = winreg.OpenKey(
                winreg.HKEY_LOCAL_MACHINE, UNINSTALL_KEY, 0, winreg.KEY_READ | view_flag
            )
        except OSError:
            continue
        with root:
            index = 0
            while True:
                try:
                    sub_name = winreg.EnumKey(root, index)
                except OSError:
                    break
                index += 1
                try:
                    sub = winreg.OpenKey(root, sub_name, 0, winreg.KEY_READ | view_flag)
                except OSError:
                    continue
                with sub:
                    display_name = _read_value(sub, "DisplayName")
                    if not display_name:
                        continue
                    yield UninstallEntry(
                        display_name=display_name,
                        display_version=_read_value(sub, "DisplayVersion"),
                        install_location=_read_value(sub, "InstallLocation"),
                        view=view_name,
                    )


def find_uninstall_entry(product_name: str) -> UninstallEntry | None:
    """Return the first entry whose DisplayName matches the product.

    Matching is case-insensitive; an exact name wins over a prefix match
    ("NetBird" beats "NetBird UI").
    """
    wanted = product_name.lower()
    prefix_match: UninstallEntry | None = None
    for entry in iter_uninstall_entries():
        name = entry.display_name.lower()
        if name == wanted:
            return entry
        if prefix_match is None and name.startswith(wanted):
            prefix_match = entry
    return prefix_match


def read_service_image_path(service_name: str) -> str | None:
    """Return the raw ImagePath of a service, or None."""
    if winreg is None:
        return None
    try:
        with winreg.OpenKey(
            winreg.HKEY_LOCAL_MACHINE, rf"{SERVICES_KEY}\{service_name}"
        ) as key:
            return _read_value(key, "ImagePath")
    except OSError:
        return None


_QUOTED = re.compile(r'^\s*"(?P<path>[^"]+)"')
_BARE_EXE = re.compile(r"^\s*(?P<path>.+?\.exe)\b", re.IGNORECASE)


def parse_image_path(raw: str | None) -> str | None:
    """Extract the executable from a service ImagePath.

    Handles quoted paths with arguments and bare paths (which may contain
    spaces when unquoted, so the cut is made after ".exe").

    Example:
        ```python
        parse_image_path('"C:\\\\Program Files\\\\NetBird\\\\netbird.exe" service run')
        # 'C:\\\\Program Files\\\\NetBird\\\\netbird.exe'
        parse_image_path("C:\\\\NetBird\\\\netbird.exe service run")
        # 'C:\\\\NetBird\\\\netbird.exe'
        ```
    """
    if not raw:
        return None
    m = _QUOTED.match(raw) or _BARE_EXE.match(raw)
    if m:
        return m.group("path").strip()
    token = raw.strip().split(" ", 1)[0]
    return token or None
