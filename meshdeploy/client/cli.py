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

"""Wrapper around the VPN client's own command-line binary.

Status exit codes:

- 0: daemon reachable and connected
- 1: daemon reachable, valid state but disconnected (e.g. NeedsLogin)
- 2 or higher: daemon-level error (not running, RPC failure)
"""

from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path

from meshdeploy.config import DeployConfig
from meshdeploy.exceptions import ClientError

from .runner import CommandResult, Runner, run_command

JOIN_TIMEOUT = 120
STATUS_TIMEOUT = 30


class ClientCLI:
    """Run commands against the installed client executable."""

    def __init__(self, executable: Path, runner: Runner = run_command) -> None:
        self.executable = Path(executable)
        self._runner = runner

    @classmethod
    def from_config(cls, config: DeployConfig, runner: Runner = run_command) -> ClientCLI:
        return cls(config.executable_path, runner=runner)

    def run(self, args: Sequence[str], timeout: float = 60) -> CommandResult:
        """Run ``<executable> <args...>``.

        Raises:
            ClientError: If the executable is missing or times out.
        """
        return self._runner([str(self.executable), *args], timeout=timeout)

    def up(
        self,
        setup_key: str,
        management_url: str | None = None,
        timeout: float = JOIN_TIMEOUT,
    ) -> CommandResult:
        """Join the mesh with a setup key.

        ``--management-url`` is only passed when a non-default URL is given.
        """
        args = ["up", "--setup-key", setup_key]
        if management_url:
            args += ["--management-url", management_url]
        return self.run(args, timeout=timeout)

    def status(
        self,
        detail: bool = False,
        json_output: bool = False,
        timeout: float = STATUS_TIMEOUT,
    ) -> CommandResult:
        args = ["status"]
        if detail:
            args.append("--detail")
        if json_output:
            args.append("--json")
        return self.run(args, timeout=timeout)

    def is_responding(self) -> bool:
        """True when the daemon answers a status query (exit code 0 or 1)."""
        try:
            result = self.status(timeout=15)
        except ClientError:
            return False
        return result.exit_code in (0, 1)
