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

"""Registration prerequisites checked after the daemon is up.

Blocking:
    - The management endpoint answers HTTPS (any HTTP status counts; TLS
      and connection errors do not).
    - The client's existing config file does not point at a different
      management server.

Informational:
    - Free disk space on the data-directory volume.
    - Windows Firewall profile state.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
import json
from pathlib import Path
import shutil
from typing import Any
from urllib.parse import urlparse

import requests

from meshdeploy.client.runner import Runner, run_command, run_powershell
from meshdeploy.config import DeployConfig
from meshdeploy.exceptions import ClientError
from meshdeploy.logging import Logger, get_global_logger

HTTP_TIMEOUT = 10


@dataclass(frozen=True)
class PrerequisiteReport:
    """Outcome of the registration prerequisite checks.

    Attributes:
        management_reachable: Management endpoint answered over HTTPS.
        conflicting_state: Existing config points at another server.
        disk_ok: Enough free space (informational).
        firewall_ok: Firewall not obviously blocking (informational).
        issues: Blocking problems, human readable.
        warnings: Non-blocking notes.
    """

    management_reachable: bool
    conflicting_state: bool
    disk_ok: bool = True
    firewall_ok: bool = True
    issues: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def blocking(self) -> bool:
        return not self.management_reachable or self.conflicting_state


def normalize_endpoint(url: str) -> str:
    """Reduce a URL to ``scheme://host:port`` for comparison.

    Example:
        ```python
        normalize_endpoint("https://API.netbird.io/")       # 'https://api.netbird.io:443'
        normalize_endpoint("https://api.netbird.io:443")    # 'https://api.netbird.io:443'
        ```
    """
    parsed = urlparse(url.strip())
    scheme = (parsed.scheme or "https").lower()
    host = (parsed.hostname or "").lower()
    port = parsed.port or (80 if scheme == "http" else 443)
    return f"{scheme}://{host}:{port}"


def _configured_url(value: Any) -> str | None:
    if isinstance(value, str):
        return value or None
    if isinstance(value, dict):
        host = value.get("Host") or value.get("host")
        if not host:
            return None
        scheme = value.get("Scheme") or value.get("scheme") or "https"
        return f"{scheme}://{host}"
    return None


class PrerequisiteValidator:
    """Check the management endpoint, prior state, disk and firewall."""

    def __init__(
        self,
        config: DeployConfig,
        *,
        runner: Runner = run_command,
        disk_usage: Callable[[Path], Any] = shutil.disk_usage,
        logger: Logger | None = None,
    ) -> None:
        self.config = config
        self._runner = runner
        self._disk_usage = disk_usage
        self._logger = logger or get_global_logger()

    def validate(self, management_url: str | None = None) -> PrerequisiteReport:
        """Run every check against 'management_url' (defaults to config)."""
        url = management_url or self.config.management_url
        issues: list[str] = []
        warnings: list[str] = []

        reachable = self.check_management(url)
        if not reachable:
            issues.append(f"Management server {url} is not reachable over HTTPS")

        conflict, note = self.check_conflicting_state(url)
        if conflict:
            issues.append(note)
        elif note:
            warnings.append(note)

        disk_ok = self.check_disk_space()
        if not disk_ok:
            warnings.append(
                f"Less than {self.config.min_free_disk_mb} MB free for client data"
            )

        firewall_ok = self.check_firewall()
        if not firewall_ok:
            warnings.append("Could not confirm firewall state")

        for issue in issues:
            self._logger.error("PREREQ", issue)
        for warning in warnings:
            self._logger.warning("PREREQ", warning)

        return PrerequisiteReport(
            management_reachable=reachable,
            conflicting_state=conflict,
            disk_ok=disk_ok,
            firewall_ok=firewall_ok,
            issues=issues,
            warnings=warnings,
        )

    def check_management(self, url: str) -> bool:
        try:
            response = requests.get(url, timeout=HTTP_TIMEOUT, allow_redirects=False)
        except requests.exceptions.RequestException as err:
            self._logger.debug("PREREQ", f"Management check failed: {err}")
            return False
        self._logger.verbose(
            "PREREQ", f"Management server answered HTTP {response.status_code}"
        )
        return True

    def check_conflicting_state(self, url: str) -> tuple[bool, str]:
        """Return (conflict, message) for the existing client config file."""
        path = self.config.config_file
        if not path.exists():
            return False, ""
        try:
            data = json.loads(path.read_text(encoding="utf-8-sig"))
        except (OSError, ValueError) as err:
            return False, f"Could not parse {path}: {err}"
        if not isinstance(data, dict):
            return False, f"Unexpected content in {path}"

        existing = _configured_url(data.get("ManagementUrl") or data.get("ManagementURL"))
        if existing is None:
            return False, ""
        if normalize_endpoint(existing) != normalize_endpoint(url):
            return True, (
                f"Client is already configured for {existing}; "
                f"run a migration to switch to {url}"
            )
        return False, ""

    def check_disk_space(self) -> bool:
        target = self.config.data_dir
        while not target.exists() and target != target.parent:
            target = target.parent
        if not target.exists():
            target = Path.cwd()
        try:
            free_mb = self._disk_usage(target).free // (1024 * 1024)
        except OSError as err:
            self._logger.debug("PREREQ", f"Disk usage unavailable: {err}")
            return True
        self._logger.verbose("PREREQ", f"{free_mb} MB free on {target}")
        return free_mb >= self.config.min_free_disk_mb

    def check_firewall(self) -> bool:
        try:
            result = run_powershell(
                "@(Get-NetFirewallProfile | Where-Object { $_.Enabled }).Count",
                runner=self._runner,
                timeout=20,
            )
        except ClientError as err:
            self._logger.debug("PREREQ", f"Firewall query unavailable: {err}")
            return False
        if not result.ok:
            return False
        self._logger.verbose(
            "PREREQ", f"Firewall profiles enabled: {result.stdout.strip() or '0'}"
        )
        return True
