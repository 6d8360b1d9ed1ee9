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

"""Mesh registration for meshdeploy.

Modules
-------
orchestrator : module
    RegistrationOrchestrator state machine.
recovery : module
    Error classification rules and the recovery-action table.
verification : module
    VerificationPoller and the full/OOBE success predicates.
preflight : module
    Management endpoint, conflicting-state, disk and firewall checks.
"""

from .orchestrator import RegistrationOrchestrator, RegistrationState
from .preflight import PrerequisiteReport, PrerequisiteValidator
from .recovery import (
    ErrorCategory,
    RecoveryAction,
    RecoveryKind,
    RegistrationAttemptResult,
    classify_error,
    get_recovery_action,
)
from .verification import VerificationChecklist, VerificationFactor, VerificationPoller

__all__ = [
    "ErrorCategory",
    "PrerequisiteReport",
    "PrerequisiteValidator",
    "RecoveryAction",
    "RecoveryKind",
    "RegistrationAttemptResult",
    "RegistrationOrchestrator",
    "RegistrationState",
    "VerificationChecklist",
    "VerificationFactor",
    "VerificationPoller",
    "classify_error",
    "get_recovery_action",
]
