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

"""Windows service control through sc.exe.

Example:
    Restart the client service and wait for it:
        ```python
        from meshdeploy.client.service import ServiceController

        svc = ServiceController("netbird")
        if svc.restart():
            print(svc.query())  # 'RUNNING'
        ```
"""

from __future__ import annotations

from collections.abc import Callable
import re
import time
from typing import Literal

from meshdeploy.exceptions import ClientError

from .runner import Runner, run_command

ServiceState = Literal[
    "RUNNING",
    "STOPPED",
    "START_PENDING",
    "STOP_PENDING",
    "PAUSED",
    "NOT_FOUND",
    "UNKNOWN",
]

ERROR_SERVICE_DOES_NOT_EXIST = 1060
ERROR_SERVICE_ALREADY_RUNNING = 1056
ERROR_SERVICE_NOT_ACTIVE = 1062

_STATE_LINE = re.compile(r"STATE\s*:\s*\d+\s+(?P<state>[A-Z_]+)")

POLL_INTERVAL = 2


def parse_sc_state(output: str) -> ServiceState:
    """Extract the service state from ``sc.exe query`` output."""
    m = _STATE_LINE.search(output)
    if not m:
        return "UNKNOWN"
    state = m.group("state")
    if state in ("RUNNING", "STOPPED", "START_PENDING", "STOP_PENDING", "PAUSED"):
        return state  # type: ignore[return-value]
    return "UNKNOWN"


class ServiceController:
    """Query, stop and start one Windows service."""

    def __init__(
        self,
        name: str,
        runner: Runner = run_command,
        *,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self._runner = runner
        self._sleep = sleep
        self._clock = clock

    def query(self) -> ServiceState:
        try:
            result = self._runner(["sc.exe", "query", self.name], timeout=15)
        except ClientError:
            return "UNKNOWN"
        if result.exit_code == ERROR_SERVICE_DOES_NOT_EXIST:
            return "NOT_FOUND"
        return parse_sc_state(result.stdout)

    def wait_for_state(self, state: ServiceState, timeout: float) -> bool:
        """Poll until the service reaches 'state' or 'timeout' seconds pass."""
        deadline = self._clock() + timeout
        while True:
            if self.query() == state:
                return True
            if self._clock() >= deadline:
                return False
            self._sleep(POLL_INTERVAL)

    def stop(self, timeout: float = 30) -> bool:
        """Stop the service and wait for STOPPED.

        Returns True if the service ends up stopped (or does not exist).
        """
        try:
            result = self._runner(["sc.exe", "stop", self.name], timeout=30)
        except ClientError:
            return False
        if result.exit_code == ERROR_SERVICE_DOES_NOT_EXIST:
            return True
        if result.exit_code not in (0, ERROR_SERVICE_NOT_ACTIVE):
            return False
        return self.wait_for_state("STOPPED", timeout)

    def start(self, timeout: float = 30) -> bool:
        """Start the service and wait for RUNNING."""
        try:
            result = self._runner(["sc.exe", "start", self.name], timeout=30)
        except ClientError:
            return False
        if result.exit_code not in (0, ERROR_SERVICE_ALREADY_RUNNING):
            return False
        return self.wait_for_state("RUNNING", timeout)

    def restart(self, timeout: float = 60) -> bool:
        """Stop then start. A failed stop does not prevent the start attempt."""
        from meshdeploy.logging import get_global_logger

        logger = get_global_logger()
        if not self.stop(timeout=timeout / 2):
            logger.warning("SERVICE", f"Service {self.name} did not stop cleanly")
        return self.start(timeout=timeout / 2)
