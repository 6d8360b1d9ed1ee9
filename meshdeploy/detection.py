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

"""Installed-client detection.

This module answers "is the client installed, and which version?" without
caching anything: every probe re-reads the machine, because an install or
uninstall can happen between two calls.

Detection Strategies (first success wins):
    1. Default install path from the configuration
       - File must exist and answer a version query (or carry file
         version metadata)
    2. Uninstall registry entry (native and WOW64 views)
       - DisplayName matches the product name
       - If the entry records a version but its executable is missing or
         unversioned, the install is BROKEN and the probe reports "not
         installed" immediately, so fresh-install logic repairs it
    3. Service ImagePath (HKLM\\SYSTEM\\CurrentControlSet\\Services\\<name>)
       - Quoted or bare path, arguments stripped, then the same version
         query as strategy 1

Example:
    Probe with the default configuration:
        ```python
        from meshdeploy.config import load_deploy_config
        from meshdeploy.detection import InstalledStateProbe

        state = InstalledStateProbe(load_deploy_config()).probe()
        if state.installed:
            print(f"{state.version} at {state.executable_path}")
        ```

"""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

from meshdeploy.client.registry import (
    UninstallEntry,
    find_uninstall_entry,
    parse_image_path,
    read_service_image_path,
)
from meshdeploy.client.runner import Runner, run_command
from meshdeploy.config import DeployConfig
from meshdeploy.logging import Logger, get_global_logger
from meshdeploy.results import NOT_INSTALLED, InstalledState
from meshdeploy.versioning.exe import version_from_executable
from meshdeploy.versioning.keys import DiscoveredVersion


class InstalledStateProbe:
    """Detect the installed client using three fallback strategies.

    Args:
        config: Deployment configuration (product name, service name,
            default executable path).
        runner: Command runner used for version queries.
        find_entry: Uninstall-key lookup, injectable for tests.
        service_path: Service ImagePath lookup, injectable for tests.
        logger: Logger; defaults to the global logger.
    """

    def __init__(
        self,
        config: DeployConfig,
        *,
        runner: Runner = run_command,
        find_entry: Callable[[str], UninstallEntry | None] = find_uninstall_entry,
        service_path: Callable[[str], str | None] = read_service_image_path,
        logger: Logger | None = None,
    ) -> None:
        self.config = config
        self._runner = runner
        self._find_entry = find_entry
        self._service_path = service_path
        self._logger = logger or get_global_logger()

    def _version_of(self, path: Path) -> DiscoveredVersion | None:
        return version_from_executable(path, runner=self._runner)

    def probe(self) -> InstalledState:
        """Return the current installed state (never cached)."""
        state = self._from_default_path()
        if state is not None:
            return state

        state = self._from_registry()
        if state is not None:
            return state

        state = self._from_service()
        if state is not None:
            return state

        self._logger.verbose("PROBE", f"{self.config.product_name} is not installed")
        return NOT_INSTALLED

    def _from_default_path(self) -> InstalledState | None:
        path = self.config.executable_path
        if not path.exists():
            self._logger.debug("PROBE", f"Not at default path: {path}")
            return None
        discovered = self._version_of(path)
        if discovered is None:
            self._logger.warning("PROBE", f"{path} exists but reports no version")
            return None
        self._logger.verbose(
            "PROBE", f"Found {discovered.version} at default path ({discovered.source})"
        )
        return InstalledState(version=discovered.version, executable_path=path)

    def _from_registry(self) -> InstalledState | None:
        entry = self._find_entry(self.config.product_name)
        if entry is None:
            self._logger.debug("PROBE", "No uninstall registry entry")
            return None
        if not entry.display_version:
            self._logger.debug(
                "PROBE", f"Registry entry '{entry.display_name}' has no version"
            )
            return None

        exe_name = self.config.executable_path.name
        if entry.install_location:
            candidate = Path(entry.install_location) / exe_name
        else:
            candidate = self.config.executable_path

        discovered = self._version_of(candidate)
        if discovered is None:
            self._logger.warning(
                "PROBE",
                f"Registry lists {entry.display_name} {entry.display_version} "
                f"but {candidate} is missing or unversioned; treating as broken install",
            )
            return NOT_INSTALLED

        self._logger.verbose(
            "PROBE", f"Found {discovered.version} via registry ({entry.view} view)"
        )
        return InstalledState(version=discovered.version, executable_path=candidate)

    def _from_service(self) -> InstalledState | None:
        raw = self._service_path(self.config.service_name)
        exe = parse_image_path(raw)
        if exe is None:
            self._logger.debug(
                "PROBE", f"No ImagePath for service {self.config.service_name}"
            )
            return None
        path = Path(exe)
        discovered = self._version_of(path)
        if discovered is None:
            self._logger.debug("PROBE", f"Service binary {path} reports no version")
            return None
        self._logger.verbose("PROBE", f"Found {discovered.version} via service path")
        return InstalledState(version=discovered.version, executable_path=path)

