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

"""Version extraction from an installed client executable.

Different client releases answer different version commands, so this module
tries several backends in order and keeps the first one that produces a
version-shaped line.

Backend Priority:

1. ``<exe> version``
2. ``<exe> --version``
3. ``<exe> -v``
4. ``<exe> status`` (older releases print "Daemon version: x.y.z")
5. File version metadata via PowerShell
   ``(Get-Item <exe>).VersionInfo.ProductVersion``

Example:
    Extract version from the default install path:

        from pathlib import Path
        from meshdeploy.versioning.exe import version_from_executable

        discovered = version_from_executable(Path(r"C:\\Program Files\\NetBird\\netbird.exe"))
        if discovered:
            print(f"{discovered.version} from {discovered.source}")
        # 0.28.4 from command:version

Note:
    A missing file returns None without running anything. A backend that
    fails to start or times out is skipped, never raised.

"""

from __future__ import annotations

from pathlib import Path
import re

from meshdeploy.client.runner import Runner, run_command, run_powershell
from meshdeploy.exceptions import ClientError

from .keys import DiscoveredVersion, normalize_version

VERSION_COMMANDS: tuple[tuple[str, ...], ...] = (
    ("version",),
    ("--version",),
    ("-v",),
    ("status",),
)

# Ordered most to least specific; the first line matching any pattern wins.
VERSION_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"^\s*v?(\d+\.\d+\.\d+(?:\.\d+)?)\s*$"),
    re.compile(r"(?i)\b(?:daemon|cli)\s+version:?\s*v?(\d+\.\d+\.\d+(?:\.\d+)?)"),
    re.compile(r"(?i)\bversion:?\s*v?(\d+\.\d+\.\d+(?:\.\d+)?)"),
    re.compile(r"\bv(\d+\.\d+\.\d+(?:\.\d+)?)\b"),
)


def parse_version_output(text: str) -> str | None:
    """Return the first version found in command output, line by line.

    Example:
        ```python
        parse_version_output("0.28.4\\n")                      # '0.28.4'
        parse_version_output("Daemon version: 0.27.1\\n...")  # '0.27.1'
        parse_version_output("Daemon status: NeedsLogin")    # None
        ```
    """
    for line in text.splitlines():
        for pattern in VERSION_PATTERNS:
            m = pattern.search(line)
            if m:
                return normalize_version(m.group(1))
    return None


def version_from_file_metadata(
    path: Path, runner: Runner = run_command
) -> str | None:
    """Read ProductVersion (or FileVersion) from the PE version resource."""
    literal = str(path).replace("'", "''")
    script = (
        f"$v = (Get-Item -LiteralPath '{literal}').VersionInfo; "
        "if ($v.ProductVersion) { $v.ProductVersion } else { $v.FileVersion }"
    )
    try:
        result = run_powershell(script, runner=runner, timeout=15)
    except ClientError:
        return None
    if not result.ok:
        return None
    raw = result.stdout.strip()
    m = re.search(r"(\d+(?:\.\d+){1,3})", raw.replace(",", "."))
    return normalize_version(m.group(1)) if m else None


def version_from_executable(
    path: Path, runner: Runner = run_command
) -> DiscoveredVersion | None:
    """Ask an executable for its version using every known form.

    Args:
        path: Client executable.
        runner: Command runner (injected in tests).

    Returns:
        Discovered version with source, or None if the file is missing or
        no backend produced a version.
    """
    from meshdeploy.logging import get_global_logger

    logger = get_global_logger()
    if not path.exists():
        logger.debug("VERSION", f"Executable not found: {path}")
        return None

    for args in VERSION_COMMANDS:
        logger.debug("VERSION", f"Trying: {path.name} {' '.join(args)}")
        try:
            result = runner([str(path), *args], timeout=15)
        except ClientError as err:
            logger.debug("VERSION", f"{' '.join(args)} failed: {err}")
            continue
        version = parse_version_output(result.output)
        if version:
            logger.verbose("VERSION", f"Found {version} via '{' '.join(args)}'")
            return DiscoveredVersion(version=version, source=f"command:{args[0]}")

    logger.debug("VERSION", "No command output matched, trying file metadata...")
    version = version_from_file_metadata(path, runner=runner)
    if version:
        logger.verbose("VERSION", f"Found {version} via file metadata")
        return DiscoveredVersion(version=version, source="file_metadata")
    return None
