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

"""Registration state machine.

States run strictly in sequence; the only loop is the bounded attempt loop:

    START -> NETWORK_CHECK -> DAEMON_READINESS_WAIT -> PREREQ_VALIDATION
          -> STATE_CLEAR -> ATTEMPT (x max_retries) -> SUCCESS | FAILURE

Fatal exits (no attempt budget is spent):
    - Network prerequisites still failing after one 45s retry
    - Daemon not responding after a service restart
    - Management endpoint unreachable, or existing config points elsewhere
    - Partial reset failure on a non-fresh install

A fresh-install full reset that fails is only a warning.

Between attempts the per-category failure count selects a RecoveryAction
from RECOVERY_TABLE. A recovery action that itself fails ends the run.

The public contract is a single bool: every collaborator error is caught,
logged and turned into a failure.

Example:
    Register an installed client:
        ```python
        from meshdeploy.config import load_deploy_config
        from meshdeploy.registration import RegistrationOrchestrator

        config = load_deploy_config()
        orchestrator = RegistrationOrchestrator.from_config(config)
        ok = orchestrator.register(config.setup_key, is_fresh_install=False)
        ```

"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
import time

from meshdeploy.client.cli import ClientCLI
from meshdeploy.client.runner import Runner, run_command
from meshdeploy.client.service import ServiceController
from meshdeploy.config import DeployConfig
from meshdeploy.diagnostics.network import NetworkPrerequisiteChecker
from meshdeploy.exceptions import MeshDeployError
from meshdeploy.logging import Logger, get_global_logger, mask_secret
from meshdeploy.state.reset import StateResetter

from .preflight import PrerequisiteValidator, normalize_endpoint
from .recovery import (
    ErrorCategory,
    RecoveryAction,
    RecoveryKind,
    RegistrationAttemptResult,
    classify_error,
    get_recovery_action,
)
from .verification import VerificationPoller

DEFAULT_MAX_RETRIES = 5
NETWORK_RETRY_WAIT = 45
DAEMON_TIMEOUT_FRESH = 180
DAEMON_TIMEOUT = 120
DAEMON_TIMEOUT_AFTER_RESTART = 120
DAEMON_TIMEOUT_AFTER_RESET = 90
DAEMON_POLL_INTERVAL = 5


class RegistrationState(str, Enum):
    START = "Start"
    NETWORK_CHECK = "NetworkCheck"
    DAEMON_READINESS_WAIT = "DaemonReadinessWait"
    PREREQ_VALIDATION = "PrereqValidation"
    STATE_CLEAR = "StateClear"
    ATTEMPT = "Attempt"
    SUCCESS = "Success"
    FAILURE = "Failure"


TERMINAL_STATES = frozenset({RegistrationState.SUCCESS, RegistrationState.FAILURE})


@dataclass
class _Run:
    """Mutable bookkeeping for one register() call."""

    setup_key: str
    management_url: str
    max_retries: int
    is_fresh_install: bool
    attempts: int = 0
    category_counts: dict[ErrorCategory, int] = field(default_factory=dict)
    failure_reason: str = ""


class RegistrationOrchestrator:
    """Drive registration from network check to verified connection.

    Collaborators are injected so each can be replaced in tests; use
    from_config() to build the production set.
    """

    def __init__(
        self,
        config: DeployConfig,
        *,
        client: ClientCLI,
        service: ServiceController,
        network: NetworkPrerequisiteChecker,
        resetter: StateResetter,
        preflight: PrerequisiteValidator,
        poller: VerificationPoller,
        logger: Logger | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        oobe: bool = False,
    ) -> None:
        self.config = config
        self.client = client
        self.service = service
        self.network = network
        self.resetter = resetter
        self.preflight = preflight
        self.poller = poller
        self.oobe = oobe
        self._logger = logger or get_global_logger()
        self._sleep = sleep
        self._clock = clock
        self.state = RegistrationState.START
        self.history: list[RegistrationState] = []
        self.last_failure: str = ""

    @classmethod
    def from_config(
        cls,
        config: DeployConfig,
        *,
        runner: Runner = run_command,
        logger: Logger | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        oobe: bool = False,
    ) -> RegistrationOrchestrator:
        logger = logger or get_global_logger()
        client = ClientCLI.from_config(config, runner=runner)
        service = ServiceController(
            config.service_name, runner, sleep=sleep, clock=clock
        )
        return cls(
            config,
            client=client,
            service=service,
            network=NetworkPrerequisiteChecker(config, runner=runner, logger=logger),
            resetter=StateResetter(config, service, logger=logger),
            preflight=PrerequisiteValidator(config, runner=runner, logger=logger),
            poller=VerificationPoller(
                client,
                logger=logger,
                sleep=sleep,
                clock=clock,
                json_status=config.status_json,
            ),
            logger=logger,
            sleep=sleep,
            clock=clock,
            oobe=oobe,
        )

    # -------------------------------
    # Public API
    # -------------------------------

    def register(
        self,
        setup_key: str,
        management_url: str | None = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
        is_fresh_install: bool = False,
    ) -> bool:
        """Run the state machine once.

        Args:
            setup_key: Setup key presented to the management server.
            management_url: Target server; defaults to the configured URL.
            max_retries: Upper bound on join attempts.
            is_fresh_install: True right after a first-time install. Selects
                the longer daemon wait and a full (non-fatal) state reset.

        Returns:
            True when a join attempt was verified connected.
        """
        run = _Run(
            setup_key=setup_key,
            management_url=(management_url or self.config.management_url).rstrip("/"),
            max_retries=max(1, max_retries),
            is_fresh_install=is_fresh_install,
        )
        handlers: dict[RegistrationState, Callable[[_Run], RegistrationState]] = {
            RegistrationState.START: self._start,
            RegistrationState.NETWORK_CHECK: self._network_check,
            RegistrationState.DAEMON_READINESS_WAIT: self._daemon_readiness_wait,
            RegistrationState.PREREQ_VALIDATION: self._prereq_validation,
            RegistrationState.STATE_CLEAR: self._state_clear,
            RegistrationState.ATTEMPT: self._attempt,
        }

        self.state = RegistrationState.START
        self.history = [self.state]
        while self.state not in TERMINAL_STATES:
            try:
                next_state = handlers[self.state](run)
            except (MeshDeployError, OSError) as err:
                run.failure_reason = f"{self.state.value} failed: {err}"
                next_state = RegistrationState.FAILURE
            self.state = next_state
            self.history.append(next_state)

        self.last_failure = run.failure_reason
        if self.state is RegistrationState.SUCCESS:
            self._logger.info(
                "REGISTER", f"Registration succeeded after {run.attempts} attempt(s)"
            )
            return True
        self._logger.error("REGISTER", f"Registration failed: {run.failure_reason}")
        return False

    # -------------------------------
    # State handlers
    # -------------------------------

    def _start(self, run: _Run) -> RegistrationState:
        self._logger.info(
            "REGISTER",
            f"Registering with {run.management_url} "
            f"(setup key {mask_secret(run.setup_key)}, "
            f"{'fresh install' if run.is_fresh_install else 'existing install'}, "
            f"max {run.max_retries} attempt(s))",
        )
        return RegistrationState.NETWORK_CHECK

    def _network_check(self, run: _Run) -> RegistrationState:
        if self.network.check_prerequisites().passed:
            return RegistrationState.DAEMON_READINESS_WAIT
        self._logger.warning(
            "REGISTER", f"Network prerequisites failed; retrying in {NETWORK_RETRY_WAIT}s"
        )
        self._sleep(NETWORK_RETRY_WAIT)
        result = self.network.check_prerequisites()
        if result.passed:
            return RegistrationState.DAEMON_READINESS_WAIT
        run.failure_reason = "network unavailable: " + "; ".join(result.blocking_issues)
        return RegistrationState.FAILURE

    def _daemon_readiness_wait(self, run: _Run) -> RegistrationState:
        timeout = DAEMON_TIMEOUT_FRESH if run.is_fresh_install else DAEMON_TIMEOUT
        if self.wait_for_daemon(timeout):
            return RegistrationState.PREREQ_VALIDATION
        self._logger.warning(
            "REGISTER", f"Daemon not responding after {timeout}s; restarting service"
        )
        if not self.service.restart():
            self._logger.warning("REGISTER", "Service restart reported failure")
        if self.wait_for_daemon(DAEMON_TIMEOUT_AFTER_RESTART):
            return RegistrationState.PREREQ_VALIDATION
        run.failure_reason = "daemon not responding after service restart"
        return RegistrationState.FAILURE

    def _prereq_validation(self, run: _Run) -> RegistrationState:
        report = self.preflight.validate(run.management_url)
        if report.blocking:
            run.failure_reason = "prerequisites failed: " + "; ".join(report.issues)
            return RegistrationState.FAILURE
        return RegistrationState.STATE_CLEAR

    def _state_clear(self, run: _Run) -> RegistrationState:
        if run.is_fresh_install:
            if not self.resetter.reset(full=True):
                self._logger.warning(
                    "REGISTER", "Full reset failed; attempting registration anyway"
                )
            if not self.wait_for_daemon(DAEMON_TIMEOUT_AFTER_RESET):
                self._logger.warning(
                    "REGISTER", "Daemon not responding after reset; attempting anyway"
                )
            return RegistrationState.ATTEMPT

        if not self.resetter.reset(full=False):
            run.failure_reason = "partial state reset failed"
            return RegistrationState.FAILURE
        return RegistrationState.ATTEMPT

    def _attempt(self, run: _Run) -> RegistrationState:
        run.attempts += 1
        self._logger.step(run.attempts, run.max_retries, "Joining mesh network")
        result = self.attempt_once(run.setup_key, run.management_url)
        if result.success:
            return RegistrationState.SUCCESS

        category = result.error_category
        count = run.category_counts.get(category, 0) + 1
        run.category_counts[category] = count
        self._logger.warning(
            "REGISTER",
            f"Attempt {run.attempts} failed ({category.value}, occurrence {count})",
        )
        if run.attempts >= run.max_retries:
            run.failure_reason = (
                f"all {run.max_retries} attempt(s) failed, last: {category.value}"
            )
            return RegistrationState.FAILURE

        action = get_recovery_action(category, count)
        if action.gives_up:
            run.failure_reason = f"{category.value}: {action.description}"
            return RegistrationState.FAILURE

        self._logger.info("RECOVERY", f"{action.kind.value}: {action.description}")
        if not self.apply_recovery(action):
            run.failure_reason = f"recovery action {action.kind.value} failed"
            return RegistrationState.FAILURE
        # WaitAndVerify sleeps inside apply_recovery
        if action.wait_seconds and action.kind is not RecoveryKind.WAIT_AND_VERIFY:
            self._logger.verbose("RECOVERY", f"Waiting {action.wait_seconds}s")
            self._sleep(action.wait_seconds)
        return RegistrationState.ATTEMPT

    # -------------------------------
    # Steps
    # -------------------------------

    def wait_for_daemon(self, timeout: float) -> bool:
        """Poll until the daemon answers a status query."""
        deadline = self._clock() + timeout
        while True:
            if self.client.is_responding():
                return True
            if self._clock() >= deadline:
                return False
            self._sleep(DAEMON_POLL_INTERVAL)

    def attempt_once(
        self, setup_key: str, management_url: str
    ) -> RegistrationAttemptResult:
        """Run one join command and verify the result."""
        url_arg = None
        if normalize_endpoint(management_url) != normalize_endpoint(
            self.config.default_management_url
        ):
            url_arg = management_url
        try:
            result = self.client.up(setup_key, management_url=url_arg)
        except MeshDeployError as err:
            category = classify_error(str(err))
            return RegistrationAttemptResult(False, category, str(err))

        if not result.ok:
            output = result.output
            self._logger.debug("REGISTER", f"up exited {result.exit_code}: {output}")
            return RegistrationAttemptResult(False, classify_error(output), output)

        if self.oobe:
            verified = self.poller.verify_oobe(self.config.oobe_verification_timeout)
        else:
            verified = self.poller.verify_success(self.config.verification_timeout)
        if verified:
            return RegistrationAttemptResult(True)
        return RegistrationAttemptResult(
            False, ErrorCategory.VERIFICATION_FAILED, result.output
        )

    def apply_recovery(self, action: RecoveryAction) -> bool:
        """Execute one recovery action; False means the action itself failed."""
        kind = action.kind
        if kind is RecoveryKind.WAIT_LONGER:
            return True
        if kind is RecoveryKind.PARTIAL_RESET:
            return self.resetter.reset(full=False)
        if kind is RecoveryKind.FULL_RESET:
            return self.resetter.reset(full=True)
        if kind is RecoveryKind.RESTART_SERVICE:
            return self.service.restart()
        if kind is RecoveryKind.WAIT_AND_VERIFY:
            self._sleep(action.wait_seconds)
            return self.client.is_responding()
        if kind is RecoveryKind.TEST_CONNECTIVITY:
            return self.network.check_prerequisites().passed
        return False
