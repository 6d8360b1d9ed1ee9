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

"""MSI package installation through msiexec.

The installer is a black box: we hand it a package and read back an exit
code. 0 and 3010 (success, reboot pending) count as success; everything
else is a failure.

Example:
    Silent per-machine install:
        ```python
        from pathlib import Path
        from meshdeploy.client.installer import (
            MsiInstaller,
            describe_exit_code,
            is_success,
        )

        code = MsiInstaller().install(Path("downloads/netbird_installer_0.28.4_windows_amd64.msi"))
        if not is_success(code):
            print(describe_exit_code(code))
        ```
"""

from __future__ import annotations

from pathlib import Path

from .runner import Runner, run_command

SUCCESS = 0
SUCCESS_REBOOT_REQUIRED = 3010
SUCCESS_EXIT_CODES = frozenset({SUCCESS, SUCCESS_REBOOT_REQUIRED})

INSTALL_TIMEOUT = 900

_EXIT_CODE_MEANINGS: dict[int, str] = {
    0: "Success",
    1602: "User cancelled installation",
    1603: "Fatal error during installation",
    1618: "Another installation is already in progress",
    1619: "Installation package could not be opened",
    1638: "Another version of this product is already installed",
    3010: "Success, reboot required to complete",
}


def is_success(exit_code: int) -> bool:
    return exit_code in SUCCESS_EXIT_CODES


def describe_exit_code(exit_code: int) -> str:
    meaning = _EXIT_CODE_MEANINGS.get(exit_code, "Unknown installer error")
    return f"{meaning} (exit code {exit_code})"


class MsiInstaller:
    """Install and uninstall MSI packages with msiexec."""

    def __init__(self, runner: Runner = run_command) -> None:
        self._runner = runner

    def install(
        self,
        package_path: Path,
        *,
        silent: bool = True,
        no_restart: bool = True,
        all_users: bool = True,
        timeout: float = INSTALL_TIMEOUT,
    ) -> int:
        """Install a package and return msiexec's exit code.

        A verbose MSI log is written next to the package
        (``<package>.install.log``).

        Raises:
            ClientError: If msiexec cannot be started or times out.
        """
        from meshdeploy.logging import get_global_logger

        logger = get_global_logger()
        package_path = Path(package_path)
        log_path = package_path.with_suffix(package_path.suffix + ".install.log")

        cmd = ["msiexec.exe", "/i", str(package_path)]
        if silent:
            cmd.append("/qn")
        if no_restart:
            cmd.append("/norestart")
        if all_users:
            cmd.append("ALLUSERS=1")
        cmd += ["/l*v", str(log_path)]

        logger.info("INSTALL", f"Installing {package_path.name}")
        result = self._runner(cmd, timeout=timeout)
        if is_success(result.exit_code):
            logger.info("INSTALL", describe_exit_code(result.exit_code))
        else:
            logger.error(
                "INSTALL",
                f"{describe_exit_code(result.exit_code)}; see {log_path}",
            )
        return result.exit_code

    def uninstall(self, product: str | Path, *, timeout: float = INSTALL_TIMEOUT) -> int:
        """Uninstall by product code ("{GUID}") or package path."""
        cmd = ["msiexec.exe", "/x", str(product), "/qn", "/norestart"]
        return self._runner(cmd, timeout=timeout).exit_code
