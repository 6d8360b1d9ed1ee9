"""
Tests for meshdeploy.registration.preflight module.

Tests registration prerequisites including:
- Management endpoint reachability (any HTTP status counts)
- Conflicting management URL in the existing client config
- Informational disk and firewall checks
- Endpoint normalization
"""

from __future__ import annotations

import json
from collections import namedtuple

import pytest
import requests
import requests_mock

from meshdeploy.client.runner import CommandResult
from meshdeploy.registration.preflight import PrerequisiteValidator, normalize_endpoint

pytestmark = pytest.mark.unit

Usage = namedtuple("Usage", "total used free")
PLENTY = Usage(100 * 2**30, 50 * 2**30, 50 * 2**30)


@pytest.fixture
def validator(deploy_config, make_runner, recording_logger):
    return PrerequisiteValidator(
        deploy_config,
        runner=make_runner(lambda cmd: CommandResult(0, "3")),
        disk_usage=lambda path: PLENTY,
        logger=recording_logger,
    )


def _write_client_config(config, payload) -> None:
    config.config_file.parent.mkdir(parents=True, exist_ok=True)
    config.config_file.write_text(json.dumps(payload), encoding="utf-8")


class TestManagementReachability:
    def test_reachable(self, validator, deploy_config):
        with requests_mock.Mocker() as m:
            m.get(deploy_config.management_url, status_code=200)
            report = validator.validate()

        assert report.management_reachable
        assert not report.blocking

    def test_error_status_still_reachable(self, validator, deploy_config):
        """Test that a 404 proves the endpoint answers HTTPS."""
        with requests_mock.Mocker() as m:
            m.get(deploy_config.management_url, status_code=404)
            report = validator.validate()

        assert report.management_reachable

    def test_unreachable_blocks(self, validator, deploy_config):
        with requests_mock.Mocker() as m:
            m.get(deploy_config.management_url, exc=requests.exceptions.SSLError)
            report = validator.validate()

        assert not report.management_reachable
        assert report.blocking
        assert "not reachable" in report.issues[0]

    def test_uses_explicit_url(self, validator):
        url = "https://netbird.corp.example:33073"
        with requests_mock.Mocker() as m:
            m.get(url, status_code=200)
            report = validator.validate(url)

            assert m.request_history[0].url.startswith(url)

        assert report.management_reachable


class TestConflictingState:
    def test_no_config_file(self, validator, deploy_config):
        assert validator.check_conflicting_state(deploy_config.management_url) == (
            False,
            "",
        )

    def test_same_server_string(self, validator, deploy_config):
        _write_client_config(
            deploy_config, {"ManagementURL": "https://API.netbird.io"}
        )
        conflict, _ = validator.check_conflicting_state("https://api.netbird.io:443")
        assert conflict is False

    def test_different_server_blocks(self, validator, deploy_config):
        _write_client_config(
            deploy_config,
            {"ManagementURL": {"Scheme": "https", "Host": "old.example.com:443"}},
        )
        with requests_mock.Mocker() as m:
            m.get(deploy_config.management_url, status_code=200)
            report = validator.validate()

        assert report.conflicting_state
        assert report.blocking
        assert "old.example.com" in report.issues[0]

    def test_unparsable_config_is_warning(self, validator, deploy_config):
        deploy_config.config_file.parent.mkdir(parents=True)
        deploy_config.config_file.write_text("{broken", encoding="utf-8")
        with requests_mock.Mocker() as m:
            m.get(deploy_config.management_url, status_code=200)
            report = validator.validate()

        assert not report.conflicting_state
        assert not report.blocking
        assert any("Could not parse" in w for w in report.warnings)


class TestInformationalChecks:
    def test_low_disk_only_warns(self, deploy_config, make_runner, recording_logger):
        validator = PrerequisiteValidator(
            deploy_config,
            runner=make_runner(lambda cmd: CommandResult(0, "3")),
            disk_usage=lambda path: Usage(2**30, 2**30 - 10 * 2**20, 10 * 2**20),
            logger=recording_logger,
        )
        with requests_mock.Mocker() as m:
            m.get(deploy_config.management_url, status_code=200)
            report = validator.validate()

        assert report.disk_ok is False
        assert not report.blocking

    def test_firewall_query_failure_only_warns(
        self, deploy_config, make_runner, recording_logger
    ):
        validator = PrerequisiteValidator(
            deploy_config,
            runner=make_runner(lambda cmd: CommandResult(1, "", "not recognized")),
            disk_usage=lambda path: PLENTY,
            logger=recording_logger,
        )
        with requests_mock.Mocker() as m:
            m.get(deploy_config.management_url, status_code=200)
            report = validator.validate()

        assert report.firewall_ok is False
        assert not report.blocking
        assert "Could not confirm firewall state" in report.warnings


class TestNormalizeEndpoint:
    @pytest.mark.parametrize(
        "url,expected",
        [
            ("https://API.netbird.io/", "https://api.netbird.io:443"),
            ("https://api.netbird.io:443", "https://api.netbird.io:443"),
            ("http://mgmt.local", "http://mgmt.local:80"),
            ("https://mgmt.local:33073/api", "https://mgmt.local:33073"),
        ],
    )
    def test_normalize(self, url, expected):
        assert normalize_endpoint(url) == expected
