"""
Tests for meshdeploy.registration.verification module.

Tests post-registration verification including:
- Text and JSON status parsing
- Error markers forcing NoErrorMessages false
- Full (5-of-6) and OOBE (3-of-3) predicates
- Poller timeout and JSON-to-text fallback
"""

from __future__ import annotations

import json
from unittest.mock import MagicMock

import pytest

from meshdeploy.client.cli import ClientCLI
from meshdeploy.client.runner import CommandResult
from meshdeploy.exceptions import ClientError
from meshdeploy.registration.verification import (
    VerificationFactor,
    VerificationPoller,
    evaluate_status,
)

pytestmark = pytest.mark.unit

CONNECTED_TEXT = """\
Daemon version: 0.28.4
CLI version: 0.28.4
Management: Connected
Signal: Connected
Relays: 2/2 Available
FQDN: host-1.netbird.cloud
NetBird IP: 100.64.0.5/16
Interface type: Kernel
Peers count: 3/3 Connected
"""

NO_INTERFACE_TEXT = CONNECTED_TEXT.replace("Interface type: Kernel\n", "")

SIGNAL_DOWN_TEXT = CONNECTED_TEXT.replace("Signal: Connected", "Signal: Disconnected")

NEEDS_LOGIN_TEXT = """\
Daemon status: NeedsLogin

Run UP command to log in with SSO (interactive login)
"""


def _json_status(
    management=True, signal=True, ip="100.64.0.5/16", kernel=True, error=""
) -> str:
    return json.dumps(
        {
            "management": {
                "url": "https://api.netbird.io:443",
                "connected": management,
                "error": error,
            },
            "signal": {"url": "https://signal.netbird.io:443", "connected": signal},
            "netbirdIp": ip,
            "usesKernelInterface": kernel,
        }
    )


class TestEvaluateText:
    """Tests for the status --detail text format."""

    def test_fully_connected(self):
        checklist = evaluate_status(CommandResult(0, CONNECTED_TEXT))

        assert checklist.passed
        assert checklist.oobe_passed
        assert all(checklist.factors.values())

    def test_missing_interface_does_not_block(self):
        """Test that HasActiveInterface is advisory."""
        checklist = evaluate_status(CommandResult(0, NO_INTERFACE_TEXT))

        assert checklist[VerificationFactor.HAS_ACTIVE_INTERFACE] is False
        assert checklist.passed
        assert checklist.advisory_misses() == ["HasActiveInterface"]

    def test_signal_down_fails(self):
        checklist = evaluate_status(CommandResult(0, SIGNAL_DOWN_TEXT))

        assert not checklist.passed
        assert checklist.failed_factors() == ["SignalConnected"]

    def test_needs_login(self):
        checklist = evaluate_status(CommandResult(1, NEEDS_LOGIN_TEXT))

        assert checklist[VerificationFactor.DAEMON_RESPONDING] is True
        assert checklist[VerificationFactor.NO_ERROR_MESSAGES] is False
        assert not checklist.passed
        assert not checklist.oobe_passed

    def test_error_marker_in_stderr(self):
        """Test that an error marker anywhere forces the check to fail."""
        result = CommandResult(
            0, CONNECTED_TEXT, "rpc error: code = Unavailable desc = connection refused"
        )
        checklist = evaluate_status(result)

        assert checklist[VerificationFactor.NO_ERROR_MESSAGES] is False
        assert not checklist.passed

    def test_daemon_not_responding(self):
        checklist = evaluate_status(CommandResult(2, ""))

        assert checklist[VerificationFactor.DAEMON_RESPONDING] is False

    def test_oobe_with_generic_connected_token(self):
        """Test that OOBE accepts a standalone Connected token."""
        text = "Status: Connected\nNetBird IP: 100.64.0.9/16\n"
        checklist = evaluate_status(CommandResult(0, text))

        assert checklist[VerificationFactor.MANAGEMENT_CONNECTED] is False
        assert not checklist.passed
        assert checklist.oobe_passed

    def test_disconnected_is_not_connected_token(self):
        text = "Management: Disconnected\nNetBird IP: 100.64.0.9/16\n"
        checklist = evaluate_status(CommandResult(0, text))

        assert not checklist.oobe_passed


class TestEvaluateJson:
    """Tests for the status --json format."""

    def test_fully_connected(self):
        checklist = evaluate_status(CommandResult(0, _json_status()))
        assert checklist.passed

    def test_missing_address(self):
        checklist = evaluate_status(CommandResult(0, _json_status(ip="")))

        assert checklist[VerificationFactor.HAS_ASSIGNED_ADDRESS] is False
        assert not checklist.passed
        assert not checklist.oobe_passed

    def test_reported_error_field(self):
        checklist = evaluate_status(
            CommandResult(0, _json_status(error="token invalid"))
        )

        assert checklist[VerificationFactor.NO_ERROR_MESSAGES] is False

    def test_management_disconnected(self):
        checklist = evaluate_status(CommandResult(0, _json_status(management=False)))

        assert checklist.failed_factors() == ["ManagementConnected"]

    def test_malformed_json_falls_back_to_text(self):
        checklist = evaluate_status(CommandResult(0, "{not json\n" + CONNECTED_TEXT))
        assert checklist[VerificationFactor.MANAGEMENT_CONNECTED] is True


@pytest.fixture
def client() -> MagicMock:
    return MagicMock(spec=ClientCLI)


class TestVerificationPoller:
    """Tests for VerificationPoller."""

    def test_passes_on_first_poll(self, client, fake_clock, recording_logger):
        client.status.return_value = CommandResult(0, _json_status())
        poller = VerificationPoller(
            client, logger=recording_logger, sleep=fake_clock.sleep, clock=fake_clock
        )

        assert poller.verify_success(120) is True
        assert fake_clock.sleeps == []
        client.status.assert_called_once_with(json_output=True)

    def test_passes_after_a_few_polls(self, client, fake_clock, recording_logger):
        client.status.side_effect = [
            CommandResult(1, NEEDS_LOGIN_TEXT),
            CommandResult(0, SIGNAL_DOWN_TEXT),
            CommandResult(0, CONNECTED_TEXT),
        ]
        poller = VerificationPoller(
            client,
            logger=recording_logger,
            sleep=fake_clock.sleep,
            clock=fake_clock,
            json_status=False,
        )

        assert poller.verify_success(120) is True
        assert fake_clock.sleeps == [5, 5]

    def test_pass_reports_advisory_misses(self, client, fake_clock, recording_logger):
        client.status.return_value = CommandResult(0, NO_INTERFACE_TEXT)
        poller = VerificationPoller(
            client,
            logger=recording_logger,
            sleep=fake_clock.sleep,
            clock=fake_clock,
            json_status=False,
        )

        assert poller.verify_success(120) is True
        assert "Advisory factors not met: HasActiveInterface" in (
            recording_logger.messages("verbose")
        )

    def test_times_out(self, client, fake_clock, recording_logger):
        client.status.return_value = CommandResult(0, SIGNAL_DOWN_TEXT)
        poller = VerificationPoller(
            client,
            logger=recording_logger,
            sleep=fake_clock.sleep,
            clock=fake_clock,
            json_status=False,
        )

        assert poller.verify_success(30) is False
        assert sum(fake_clock.sleeps) <= 30
        assert any("timed out" in m for m in recording_logger.messages("warning"))

    def test_text_fallback_when_json_unsupported(
        self, client, fake_clock, recording_logger
    ):
        """Test that a client without --json support is read as text."""
        client.status.side_effect = [
            CommandResult(1, "", "unknown flag: --json"),
            CommandResult(0, CONNECTED_TEXT),
        ]
        poller = VerificationPoller(
            client, logger=recording_logger, sleep=fake_clock.sleep, clock=fake_clock
        )

        assert poller.verify_success(60) is True
        assert client.status.call_args_list[1].kwargs == {"detail": True}

    def test_client_error_counts_as_not_connected(
        self, client, fake_clock, recording_logger
    ):
        client.status.side_effect = [
            ClientError("status timed out"),
            CommandResult(0, _json_status()),
        ]
        poller = VerificationPoller(
            client, logger=recording_logger, sleep=fake_clock.sleep, clock=fake_clock
        )

        assert poller.verify_success(60) is True
        assert fake_clock.sleeps == [5]

    def test_oobe(self, client, fake_clock, recording_logger):
        client.status.return_value = CommandResult(
            0, "Status: Connected\nNetBird IP: 100.64.0.9/16\n"
        )
        poller = VerificationPoller(
            client,
            logger=recording_logger,
            sleep=fake_clock.sleep,
            clock=fake_clock,
            json_status=False,
        )

        assert poller.verify_oobe(60) is True
