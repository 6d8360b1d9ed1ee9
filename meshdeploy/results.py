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

"""Public API return types for meshdeploy.

This module defines the dataclasses returned by the probe, the network
checker and the high-level install/update/migrate functions. All of them
are frozen: each one is produced fresh by a single call and never mutated.

Example:
    Using result types:
        ```python
        from meshdeploy.core import check_network

        result = check_network(config)
        if not result.passed:
            for issue in result.blocking_issues:
                print(issue)
        ```

Note:
    Types that only make sense inside the registration state machine
    (RecoveryAction, RegistrationAttemptResult, VerificationChecklist) live
    next to that logic in ``meshdeploy.registration``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Literal


@dataclass(frozen=True)
class InstalledState:
    """What the probe found on this machine.

    Attributes:
        version: Installed client version, or None when not installed (or
            when the installation is broken).
        executable_path: Path to the working client executable, or None.
    """

    version: str | None = None
    executable_path: Path | None = None

    @property
    def installed(self) -> bool:
        """True when a versioned, working executable was found."""
        return self.version is not None and self.executable_path is not None


NOT_INSTALLED = InstalledState()


class CheckName(str, Enum):
    """Names of the network prerequisite checks."""

    ACTIVE_ADAPTER = "active_adapter"
    DEFAULT_GATEWAY = "default_gateway"
    DNS_SERVERS = "dns_servers"
    DNS_RESOLUTION = "dns_resolution"
    INTERNET = "internet"
    TIME_SYNC = "time_sync"
    NO_PROXY = "no_proxy"
    RELAY_REACHABLE = "relay_reachable"


CRITICAL_CHECKS: tuple[CheckName, ...] = (
    CheckName.ACTIVE_ADAPTER,
    CheckName.DEFAULT_GATEWAY,
    CheckName.DNS_SERVERS,
    CheckName.DNS_RESOLUTION,
    CheckName.INTERNET,
)

ADVISORY_CHECKS: tuple[CheckName, ...] = (
    CheckName.TIME_SYNC,
    CheckName.NO_PROXY,
    CheckName.RELAY_REACHABLE,
)


@dataclass(frozen=True)
class NetworkCheckResult:
    """Outcome of one run of the network prerequisite battery.

    Attributes:
        checks: Result of every check, keyed by CheckName.
        blocking_issues: Human-readable reasons for each failed critical check.
        warnings: Human-readable notes for failed advisory checks and for
            checks that raised while running.
    """

    checks: dict[CheckName, bool]
    blocking_issues: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        """True iff every critical check passed; advisory checks never block."""
        return all(self.checks.get(name, False) for name in CRITICAL_CHECKS)


@dataclass(frozen=True)
class InstallResult:
    """Result from installing or updating the client package.

    Attributes:
        status: "installed", "skipped" (already current) or "failed".
        previous_version: Version found before installation (None if absent).
        installed_version: Version found after installation.
        target_version: Release version that was selected.
        package_path: Downloaded MSI, when a download happened.
        exit_code: msiexec exit code, when the installer ran.
        reboot_required: True when msiexec returned 3010.
    """

    status: Literal["installed", "skipped", "failed"]
    previous_version: str | None
    installed_version: str | None
    target_version: str | None
    package_path: Path | None = None
    exit_code: int | None = None
    reboot_required: bool = False

    @property
    def fresh_install(self) -> bool:
        """True when the package was installed where none existed before."""
        return self.status == "installed" and self.previous_version is None


@dataclass(frozen=True)
class DeployResult:
    """Result from a deploy, update or migrate run.

    Attributes:
        action: Which high-level operation produced this result.
        success: Overall pass/fail.
        install: Installation outcome, if an install step ran.
        registered: Registration outcome, if a registration step ran.
        rolled_back: True when a failed update was rolled back.
        message: One-line summary for the operator.
    """

    action: Literal["install", "deploy", "update", "migrate", "register"]
    success: bool
    install: InstallResult | None = None
    registered: bool | None = None
    rolled_back: bool = False
    message: str = ""


@dataclass(frozen=True)
class ValidationResult:
    """Result from validating a deployment configuration file.

    Attributes:
        status: Validation status ("valid" or "invalid").
        errors: List of error messages (empty if valid).
        warnings: List of warning messages.
        config_path: String path to the validated file.
    """

    status: str
    errors: list[str]
    warnings: list[str]
    config_path: str
