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

"""Post-registration connectivity verification.

A zero exit code from ``up`` does not prove the peer is connected, so after
every apparently successful join the status command is polled until a
success predicate holds or the timeout expires.

Two predicates exist and are kept separate:

Full (5 of 6):
    ManagementConnected, SignalConnected, HasAssignedAddress,
    DaemonResponding and NoErrorMessages must all be true.
    HasActiveInterface is reported but never required.

OOBE (3 of 3, used before user logon):
    DaemonResponding, connected (management connected OR any standalone
    "Connected" token in the output) and HasAssignedAddress.

Status is read from ``status --json`` when enabled (fields extracted with
jsonpath-ng) and from ``status --detail`` text otherwise, or when the JSON
cannot be parsed. Any ERROR_MARKERS substring in the output forces
NoErrorMessages false.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
import json
import re
import time
from typing import Any

from jsonpath_ng import parse as jsonpath_parse

from meshdeploy.client.cli import ClientCLI
from meshdeploy.client.runner import CommandResult
from meshdeploy.exceptions import ClientError
from meshdeploy.logging import Logger, get_global_logger

POLL_INTERVAL = 5


class VerificationFactor(str, Enum):
    MANAGEMENT_CONNECTED = "ManagementConnected"
    SIGNAL_CONNECTED = "SignalConnected"
    HAS_ASSIGNED_ADDRESS = "HasAssignedAddress"
    DAEMON_RESPONDING = "DaemonResponding"
    HAS_ACTIVE_INTERFACE = "HasActiveInterface"
    NO_ERROR_MESSAGES = "NoErrorMessages"


CRITICAL_FACTORS: frozenset[VerificationFactor] = frozenset(
    {
        VerificationFactor.MANAGEMENT_CONNECTED,
        VerificationFactor.SIGNAL_CONNECTED,
        VerificationFactor.HAS_ASSIGNED_ADDRESS,
        VerificationFactor.DAEMON_RESPONDING,
        VerificationFactor.NO_ERROR_MESSAGES,
    }
)
ADVISORY_FACTORS: frozenset[VerificationFactor] = frozenset(
    {VerificationFactor.HAS_ACTIVE_INTERFACE}
)

ERROR_MARKERS: tuple[str, ...] = (
    "connection refused",
    "rpc error",
    "needslogin",
    "needs login",
    "login required",
    "failed to connect",
    "daemon is not running",
    "context deadline exceeded",
)

_TEXT_MANAGEMENT = re.compile(r"(?im)^\s*management:\s*connected\b")
_TEXT_SIGNAL = re.compile(r"(?im)^\s*signal:\s*connected\b")
_TEXT_ADDRESS = re.compile(r"(?im)^\s*netbird ip:\s*(\d{1,3}(?:\.\d{1,3}){3})")
_TEXT_INTERFACE = re.compile(r"(?im)^\s*interface type:\s*(kernel|userspace)\b")
_CONNECTED_TOKEN = re.compile(r"(?i)\bconnected\b")

_JSON_PATHS = {
    "management": jsonpath_parse("management.connected"),
    "signal": jsonpath_parse("signal.connected"),
    "address": jsonpath_parse("netbirdIp"),
    "interface": jsonpath_parse("usesKernelInterface"),
    "management_error": jsonpath_parse("management.error"),
    "signal_error": jsonpath_parse("signal.error"),
}


@dataclass(frozen=True)
class VerificationChecklist:
    """Factor values read from one status snapshot.

    Attributes:
        factors: Value of each of the six factors.
        connected_token: True when any standalone "connected" token appears
            (only used by the OOBE predicate).
    """

    factors: dict[VerificationFactor, bool]
    connected_token: bool = False

    def __getitem__(self, factor: VerificationFactor) -> bool:
        return self.factors.get(factor, False)

    @property
    def passed(self) -> bool:
        """Full predicate: every critical factor true."""
        return all(self[f] for f in CRITICAL_FACTORS)

    @property
    def oobe_passed(self) -> bool:
        """Simplified predicate for pre-logon deployments."""
        connected = (
            self[VerificationFactor.MANAGEMENT_CONNECTED] or self.connected_token
        )
        return (
            self[VerificationFactor.DAEMON_RESPONDING]
            and connected
            and self[VerificationFactor.HAS_ASSIGNED_ADDRESS]
        )

    def failed_factors(self) -> list[str]:
        return [
            f.value for f in VerificationFactor if f in CRITICAL_FACTORS and not self[f]
        ]

    def advisory_misses(self) -> list[str]:
        return [
            f.value for f in VerificationFactor if f in ADVISORY_FACTORS and not self[f]
        ]


def _first(path: str, data: Any) -> Any:
    matches = _JSON_PATHS[path].find(data)
    return matches[0].value if matches else None


def _has_error_marker(text: str) -> bool:
    lowered = text.lower()
    return any(marker in lowered for marker in ERROR_MARKERS)


def evaluate_status(result: CommandResult) -> VerificationChecklist:
    """Build a checklist from one ``status`` invocation.

    JSON is tried first; output that is not a JSON object is parsed as the
    ``status --detail`` text format.

    Example:
        ```python
        checklist = evaluate_status(CommandResult(0, "Management: Connected\\n..."))
        checklist.passed
        ```
    """
    output = result.output
    responding = result.exit_code in (0, 1)
    no_errors = not _has_error_marker(output)

    data: Any = None
    stripped = result.stdout.strip()
    if stripped.startswith("{"):
        try:
            data = json.loads(stripped)
        except ValueError:
            data = None

    if isinstance(data, dict):
        address = _first("address", data)
        reported_errors = [
            e for e in (_first("management_error", data), _first("signal_error", data)) if e
        ]
        factors = {
            VerificationFactor.MANAGEMENT_CONNECTED: _first("management", data) is True,
            VerificationFactor.SIGNAL_CONNECTED: _first("signal", data) is True,
            VerificationFactor.HAS_ASSIGNED_ADDRESS: bool(address),
            VerificationFactor.DAEMON_RESPONDING: responding,
            VerificationFactor.HAS_ACTIVE_INTERFACE: _first("interface", data)
            is not None,
            VerificationFactor.NO_ERROR_MESSAGES: no_errors and not reported_errors,
        }
        connected_token = factors[VerificationFactor.MANAGEMENT_CONNECTED]
    else:
        factors = {
            VerificationFactor.MANAGEMENT_CONNECTED: bool(_TEXT_MANAGEMENT.search(output)),
            VerificationFactor.SIGNAL_CONNECTED: bool(_TEXT_SIGNAL.search(output)),
            VerificationFactor.HAS_ASSIGNED_ADDRESS: bool(_TEXT_ADDRESS.search(output)),
            VerificationFactor.DAEMON_RESPONDING: responding,
            VerificationFactor.HAS_ACTIVE_INTERFACE: bool(
                _TEXT_INTERFACE.search(output)
            ),
            VerificationFactor.NO_ERROR_MESSAGES: no_errors,
        }
        connected_token = bool(_CONNECTED_TOKEN.search(output))

    return VerificationChecklist(factors=factors, connected_token=connected_token)


class VerificationPoller:
    """Poll the status command until a success predicate holds.

    Args:
        client: Client CLI wrapper.
        logger: Logger; defaults to the global logger.
        poll_interval: Seconds between polls.
        sleep: Sleep function (injected in tests).
        clock: Monotonic clock (injected in tests).
        json_status: Query ``status --json`` instead of ``status --detail``.
    """

    def __init__(
        self,
        client: ClientCLI,
        *,
        logger: Logger | None = None,
        poll_interval: float = POLL_INTERVAL,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        json_status: bool = True,
    ) -> None:
        self.client = client
        self._logger = logger or get_global_logger()
        self.poll_interval = poll_interval
        self._sleep = sleep
        self._clock = clock
        self.json_status = json_status

    def snapshot(self) -> VerificationChecklist:
        """Query status once and evaluate it."""
        try:
            if self.json_status:
                result = self.client.status(json_output=True)
                if not result.stdout.strip().startswith("{"):
                    result = self.client.status(detail=True)
            else:
                result = self.client.status(detail=True)
        except ClientError as err:
            self._logger.debug("VERIFY", f"Status query failed: {err}")
            return VerificationChecklist(
                factors={f: False for f in VerificationFactor}
            )
        return evaluate_status(result)

    def _poll(
        self,
        timeout: float,
        predicate: Callable[[VerificationChecklist], bool],
        label: str,
    ) -> bool:
        logger = self._logger
        deadline = self._clock() + timeout
        polls = 0
        while True:
            polls += 1
            checklist = self.snapshot()
            if predicate(checklist):
                logger.info("VERIFY", f"{label} verification passed after {polls} poll(s)")
                misses = checklist.advisory_misses()
                if misses:
                    logger.verbose("VERIFY", f"Advisory factors not met: {', '.join(misses)}")
                return True
            logger.verbose(
                "VERIFY", f"Not yet connected; failing: {', '.join(checklist.failed_factors())}"
            )
            if self._clock() + self.poll_interval > deadline:
                logger.warning(
                    "VERIFY", f"{label} verification timed out after {timeout:.0f}s"
                )
                return False
            self._sleep(self.poll_interval)

    def verify_success(self, timeout: float) -> bool:
        """Full 5-of-6 verification."""
        return self._poll(timeout, lambda c: c.passed, "Connection")

    def verify_oobe(self, timeout: float = 60) -> bool:
        """Simplified 3-check verification for pre-logon deployments."""
        return self._poll(timeout, lambda c: c.oobe_passed, "OOBE")
