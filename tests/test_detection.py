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

"""Tests for meshdeploy.detection module.

Tests installed-state detection including:
- Default install path strategy
- Uninstall registry strategy, including broken installs
- Service ImagePath strategy
- ImagePath parsing (quoted and bare)
"""

from __future__ import annotations

from dataclasses import replace

import pytest

from meshdeploy.client.registry import UninstallEntry, parse_image_path
from meshdeploy.client.runner import CommandResult
from meshdeploy.detection import InstalledStateProbe
from meshdeploy.results import NOT_INSTALLED

# All tests in this file are unit tests (fast, mocked)
pytestmark = pytest.mark.unit


def _version_runner(make_runner, version: str = "0.28.4"):
    return make_runner(lambda cmd: CommandResult(0, f"{version}\n"))


def _probe(config, runner, entry=None, image_path=None):
    return InstalledStateProbe(
        config,
        runner=runner,
        find_entry=lambda name: entry,
        service_path=lambda name: image_path,
    )


class TestDefaultPath:
    """Tests for strategy 1 (configured executable path)."""

    def test_found_at_default_path(self, deploy_config, make_runner):
        exe = deploy_config.executable_path
        exe.parent.mkdir(parents=True)
        exe.write_bytes(b"MZ")

        state = _probe(deploy_config, _version_runner(make_runner)).probe()

        assert state.installed
        assert state.version == "0.28.4"
        assert state.executable_path == exe

    def test_nothing_installed(self, deploy_config, make_runner):
        """Test that all three strategies failing yields NOT_INSTALLED."""
        runner = _version_runner(make_runner)

        state = _probe(deploy_config, runner).probe()

        assert state == NOT_INSTALLED
        assert not state.installed
        assert runner.calls == []

    def test_probe_is_not_cached(self, deploy_config, make_runner):
        """Test that each probe re-reads the machine."""
        probe = _probe(deploy_config, _version_runner(make_runner))
        assert not probe.probe().installed

        exe = deploy_config.executable_path
        exe.parent.mkdir(parents=True)
        exe.write_bytes(b"MZ")

        assert probe.probe().installed


class TestRegistry:
    """Tests for strategy 2 (uninstall registry entry)."""

    def test_registry_entry_with_working_binary(
        self, deploy_config, make_runner, tmp_test_dir
    ):
        location = tmp_test_dir / "Custom" / "NetBird"
        location.mkdir(parents=True)
        (location / "netbird.exe").write_bytes(b"MZ")
        entry = UninstallEntry("NetBird", "0.28.4", str(location), "native")

        state = _probe(deploy_config, _version_runner(make_runner), entry=entry).probe()

        assert state.version == "0.28.4"
        assert state.executable_path == location / "netbird.exe"

    def test_broken_install_short_circuits(
        self, deploy_config, make_runner, tmp_test_dir
    ):
        """Test that a versioned entry without a binary skips strategy 3."""
        service_exe = tmp_test_dir / "svc" / "netbird.exe"
        service_exe.parent.mkdir(parents=True)
        service_exe.write_bytes(b"MZ")
        entry = UninstallEntry(
            "NetBird", "0.28.4", str(tmp_test_dir / "gone"), "wow64"
        )

        state = _probe(
            deploy_config,
            _version_runner(make_runner),
            entry=entry,
            image_path=f'"{service_exe}" service run',
        ).probe()

        assert state == NOT_INSTALLED

    def test_unversioned_entry_falls_through(
        self, deploy_config, make_runner, tmp_test_dir
    ):
        """Test that an entry without DisplayVersion lets strategy 3 run."""
        service_exe = tmp_test_dir / "svc" / "netbird.exe"
        service_exe.parent.mkdir(parents=True)
        service_exe.write_bytes(b"MZ")
        entry = UninstallEntry("NetBird", None, None, "native")

        state = _probe(
            deploy_config,
            _version_runner(make_runner, "0.27.0"),
            entry=entry,
            image_path=f'"{service_exe}" service run',
        ).probe()

        assert state.version == "0.27.0"
        assert state.executable_path == service_exe


class TestServicePath:
    """Tests for strategy 3 (service ImagePath)."""

    def test_service_image_path(self, deploy_config, make_runner, tmp_test_dir):
        service_exe = tmp_test_dir / "svc" / "netbird.exe"
        service_exe.parent.mkdir(parents=True)
        service_exe.write_bytes(b"MZ")

        state = _probe(
            deploy_config,
            _version_runner(make_runner),
            image_path=f"{service_exe} service run --log-level info",
        ).probe()

        assert state.executable_path == service_exe
        assert state.version == "0.28.4"

    def test_service_binary_without_version(
        self, deploy_config, make_runner, tmp_test_dir
    ):
        service_exe = tmp_test_dir / "svc" / "netbird.exe"
        service_exe.parent.mkdir(parents=True)
        service_exe.write_bytes(b"MZ")

        state = _probe(
            deploy_config,
            make_runner(lambda cmd: CommandResult(1, "")),
            image_path=f'"{service_exe}"',
        ).probe()

        assert state == NOT_INSTALLED

    def test_uses_configured_service_name(self, deploy_config, make_runner):
        config = replace(deploy_config, service_name="wiretrustee")
        asked: list[str] = []

        InstalledStateProbe(
            config,
            runner=_version_runner(make_runner),
            find_entry=lambda name: None,
            service_path=lambda name: asked.append(name),
        ).probe()

        assert asked == ["wiretrustee"]


class TestParseImagePath:
    """Tests for service ImagePath parsing."""

    def test_quoted_with_arguments(self):
        raw = '"C:\\Program Files\\NetBird\\netbird.exe" service run'
        assert parse_image_path(raw) == "C:\\Program Files\\NetBird\\netbird.exe"

    def test_bare_with_spaces_and_arguments(self):
        raw = "C:\\Program Files\\NetBird\\netbird.exe service run"
        assert parse_image_path(raw) == "C:\\Program Files\\NetBird\\netbird.exe"

    def test_bare_without_exe_suffix(self):
        assert parse_image_path("/opt/netbird/netbird service run") == "/opt/netbird/netbird"

    def test_empty(self):
        assert parse_image_path(None) is None
        assert parse_image_path("") is None
