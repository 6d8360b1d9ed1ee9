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

"""Error classification and the recovery-action table.

Both halves are data, not branching code:

- CLASSIFICATION_RULES: ordered (substring, category) pairs matched against
  the join command's output. The first rule that matches wins.
- RECOVERY_TABLE: category -> list of actions indexed by 1-based attempt
  number. The last action of a row also applies to every later attempt.
  Categories without a row get DEFAULT_ACTION.

| Category           | 1        | 2                     | 3                   | 4+          |
|--------------------|----------|-----------------------|---------------------|-------------|
| DeadlineExceeded   | wait 30s | partial reset, 30s    | full reset, 45s     | give up     |
| ConnectionRefused  | wait 30s | restart service, 15s  | full reset, 45s     | give up     |
| VerificationFailed | wait 45s | partial reset, 30s    | full reset, 45s     | give up     |
| InvalidSetupKey    | give up  |                       |                     |             |
| NetworkError       | wait 60s | test connectivity, 30s| give up             |             |
| (other)            | wait 30s |                       |                     |             |

Example:
    ```python
    from meshdeploy.registration.recovery import (
        ErrorCategory, RecoveryKind, classify_error, get_recovery_action,
    )

    category = classify_error("context deadline exceeded")
    action = get_recovery_action(category, attempt=3)
    assert action.kind is RecoveryKind.FULL_RESET
    ```

"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class ErrorCategory(str, Enum):
    """Failure category of one registration attempt."""

    DEADLINE_EXCEEDED = "DeadlineExceeded"
    CONNECTION_REFUSED = "ConnectionRefused"
    NETWORK_ERROR = "NetworkError"
    INVALID_SETUP_KEY = "InvalidSetupKey"
    VERIFICATION_FAILED = "VerificationFailed"
    UNKNOWN = "Unknown"
    NONE = "None"


class RecoveryKind(str, Enum):
    """What to do between two registration attempts."""

    WAIT_LONGER = "WaitLonger"
    PARTIAL_RESET = "PartialReset"
    FULL_RESET = "FullReset"
    RESTART_SERVICE = "RestartService"
    WAIT_AND_VERIFY = "WaitAndVerify"
    TEST_CONNECTIVITY = "TestConnectivity"
    NONE = "None"


@dataclass(frozen=True)
class RecoveryAction:
    """One entry of the recovery table.

    Attributes:
        kind: Action to execute. NONE means "stop retrying".
        description: Operator-facing description for the log.
        wait_seconds: Sleep after the action before the next attempt.
    """

    kind: RecoveryKind
    description: str
    wait_seconds: int = 0

    @property
    def gives_up(self) -> bool:
        return self.kind is RecoveryKind.NONE


@dataclass(frozen=True)
class RegistrationAttemptResult:
    """Outcome of one join attempt.

    Attributes:
        success: True only after verification passed.
        error_category: Classified failure, or NONE on success.
        raw_stderr: Captured output of the join command.
    """

    success: bool
    error_category: ErrorCategory = ErrorCategory.NONE
    raw_stderr: str = ""


def _give_up(description: str) -> RecoveryAction:
    return RecoveryAction(RecoveryKind.NONE, description, 0)


RECOVERY_TABLE: dict[ErrorCategory, tuple[RecoveryAction, ...]] = {
    ErrorCategory.DEADLINE_EXCEEDED: (
        RecoveryAction(RecoveryKind.WAIT_LONGER, "Management server slow; waiting", 30),
        RecoveryAction(RecoveryKind.PARTIAL_RESET, "Clearing connection config", 30),
        RecoveryAction(RecoveryKind.FULL_RESET, "Clearing all client state", 45),
        _give_up("Repeated timeouts; giving up"),
    ),
    ErrorCategory.CONNECTION_REFUSED: (
        RecoveryAction(RecoveryKind.WAIT_LONGER, "Daemon refused connection; waiting", 30),
        RecoveryAction(RecoveryKind.RESTART_SERVICE, "Restarting client service", 15),
        RecoveryAction(RecoveryKind.FULL_RESET, "Clearing all client state", 45),
        _give_up("Daemon keeps refusing connections; giving up"),
    ),
    ErrorCategory.VERIFICATION_FAILED: (
        RecoveryAction(
            RecoveryKind.WAIT_AND_VERIFY, "Waiting for daemon, then re-checking", 45
        ),
        RecoveryAction(RecoveryKind.PARTIAL_RESET, "Clearing connection config", 30),
        RecoveryAction(RecoveryKind.FULL_RESET, "Clearing all client state", 45),
        _give_up("Connection never verified; manual intervention required"),
    ),
    ErrorCategory.INVALID_SETUP_KEY: (
        _give_up("Setup key rejected; retrying cannot help"),
    ),
    ErrorCategory.NETWORK_ERROR: (
        RecoveryAction(RecoveryKind.WAIT_LONGER, "Network error; waiting", 60),
        RecoveryAction(
            RecoveryKind.TEST_CONNECTIVITY, "Re-running network prerequisites", 30
        ),
        _give_up("Network errors persist; giving up"),
    ),
}

DEFAULT_ACTION = RecoveryAction(RecoveryKind.WAIT_LONGER, "Waiting before retry", 30)


def get_recovery_action(category: ErrorCategory, attempt: int) -> RecoveryAction:
    """Look up the action for a category's Nth failure (1-based).

    Attempts past the end of a row reuse the row's last action. Categories
    without a row, including unrecognized strings, get DEFAULT_ACTION.
    """
    try:
        category = ErrorCategory(category)
    except ValueError:
        return DEFAULT_ACTION
    row = RECOVERY_TABLE.get(category)
    if not row:
        return DEFAULT_ACTION
    index = min(max(attempt, 1), len(row)) - 1
    return row[index]


# Evaluated in order; the first matching substring decides the category.
CLASSIFICATION_RULES: tuple[tuple[str, ErrorCategory], ...] = (
    ("deadline exceeded", ErrorCategory.DEADLINE_EXCEEDED),
    ("context deadline", ErrorCategory.DEADLINE_EXCEEDED),
    ("connection refused", ErrorCategory.CONNECTION_REFUSED),
    ("actively refused", ErrorCategory.CONNECTION_REFUSED),
    ("no such host", ErrorCategory.NETWORK_ERROR),
    ("network is unreachable", ErrorCategory.NETWORK_ERROR),
    ("i/o timeout", ErrorCategory.NETWORK_ERROR),
    ("connection reset", ErrorCategory.NETWORK_ERROR),
    ("tls handshake", ErrorCategory.NETWORK_ERROR),
    ("timed out", ErrorCategory.DEADLINE_EXCEEDED),
    ("invalid setup key", ErrorCategory.INVALID_SETUP_KEY),
    ("setup key is invalid", ErrorCategory.INVALID_SETUP_KEY),
    ("setup key expired", ErrorCategory.INVALID_SETUP_KEY),
    ("permissiondenied", ErrorCategory.INVALID_SETUP_KEY),
    ("unauthenticated", ErrorCategory.INVALID_SETUP_KEY),
)


def classify_error(output: str) -> ErrorCategory:
    """Map join-command output to an ErrorCategory (UNKNOWN if nothing matches)."""
    text = output.lower()
    for needle, category in CLASSIFICATION_RULES:
        if needle in text:
            return category
    return ErrorCategory.UNKNOWN
