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

"""Subprocess execution for external programs.

Every external program meshdeploy touches (the client CLI, msiexec, sc.exe,
PowerShell, ping) goes through run_command, so tests can swap one function
instead of patching subprocess everywhere.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass
import subprocess

from meshdeploy.exceptions import ClientError


@dataclass(frozen=True)
class CommandResult:
    """Captured result of one external command.

    Attributes:
        exit_code: Process exit code.
        stdout: Captured standard output (text).
        stderr: Captured standard error (text).
    """

    exit_code: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    @property
    def output(self) -> str:
        """stdout and stderr joined, for substring scans."""
        return "\n".join(part for part in (self.stdout, self.stderr) if part)


Runner = Callable[..., CommandResult]

# Arguments whose following value must not appear in logs.
SECRET_FLAGS: frozenset[str] = frozenset({"--setup-key"})


def redact_command(cmd: Sequence[str]) -> str:
    """Render a command line for logging with secret values masked."""
    from meshdeploy.logging import mask_secret

    parts = list(cmd)
    for i, arg in enumerate(parts[:-1]):
        if arg in SECRET_FLAGS:
            parts[i + 1] = mask_secret(parts[i + 1])
    return " ".join(parts)


def run_command(cmd: Sequence[str], *, timeout: float = 60) -> CommandResult:
    """Run a command without a shell and capture its output.

    A non-zero exit code is NOT an error here; callers interpret exit codes.

    Args:
        cmd: Program and arguments.
        timeout: Seconds before the process is killed.

    Returns:
        The captured CommandResult.

    Raises:
        ClientError: If the program does not exist or exceeds the timeout.
    """
    from meshdeploy.logging import get_global_logger

    logger = get_global_logger()
    logger.debug("CMD", f"Running: {redact_command(cmd)}")
    try:
        proc = subprocess.run(
            list(cmd),
            capture_output=True,
            text=True,
            check=False,
            timeout=timeout,
        )
    except FileNotFoundError as err:
        raise ClientError(f"Executable not found: {cmd[0]}") from err
    except subprocess.TimeoutExpired as err:
        raise ClientError(f"{cmd[0]} timed out after {err.timeout}s") from err
    except OSError as err:
        raise ClientError(f"Failed to start {cmd[0]}: {err}") from err

    logger.debug("CMD", f"Exit code: {proc.returncode}")
    return CommandResult(proc.returncode, proc.stdout or "", proc.stderr or "")


def run_powershell(
    script: str, *, runner: Runner = run_command, timeout: float = 30
) -> CommandResult:
    """Run a PowerShell snippet non-interactively."""
    return runner(
        ["powershell", "-NoProfile", "-NonInteractive", "-Command", script],
        timeout=timeout,
    )
