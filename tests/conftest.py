"""
Pytest configuration and shared fixtures for meshdeploy tests.

This module provides reusable fixtures and test utilities used across
the test suite: a DeployConfig rooted in a temporary directory, a fake
clock whose sleep advances time, a logger that records messages, and a
scripted command runner standing in for subprocess.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from pathlib import Path
from typing import Any

import pytest
import yaml

from meshdeploy.client.runner import CommandResult
from meshdeploy.config import DeployConfig


class FakeClock:
    """Monotonic clock whose sleep() advances time instantly."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class RecordingLogger:
    """Logger that keeps (level, prefix, message) tuples."""

    def __init__(self) -> None:
        self.records: list[tuple[str, str, str]] = []

    def step(self, step: int, total: int, message: str) -> None:
        self.records.append(("step", "STEP", f"[{step}/{total}] {message}"))

    def info(self, prefix: str, message: str) -> None:
        self.records.append(("info", prefix, message))

    def warning(self, prefix: str, message: str) -> None:
        self.records.append(("warning", prefix, message))

    def error(self, prefix: str, message: str) -> None:
        self.records.append(("error", prefix, message))

    def verbose(self, prefix: str, message: str) -> None:
        self.records.append(("verbose", prefix, message))

    def debug(self, prefix: str, message: str) -> None:
        self.records.append(("debug", prefix, message))

    def messages(self, level: str | None = None) -> list[str]:
        return [m for lvl, _, m in self.records if level is None or lvl == level]


class ScriptedRunner:
    """Stand-in for run_command driven by a handler function.

    The handler receives the command list and returns a CommandResult (or
    raises ClientError). Every call is recorded.
    """

    def __init__(self, handler: Callable[[list[str]], CommandResult]) -> None:
        self.handler = handler
        self.calls: list[list[str]] = []

    def __call__(self, cmd: Sequence[str], *, timeout: float = 60) -> CommandResult:
        cmd = list(cmd)
        self.calls.append(cmd)
        return self.handler(cmd)

    def calls_with(self, token: str) -> list[list[str]]:
        return [c for c in self.calls if token in c]


@pytest.fixture
def tmp_test_dir(tmp_path: Path) -> Path:
    """
    Provide a temporary directory for test artifacts.

    Automatically cleaned up after test completion.
    """
    return tmp_path


@pytest.fixture
def deploy_config(tmp_test_dir: Path) -> DeployConfig:
    """
    Provide a DeployConfig whose paths all live under the temp directory.

    The client executable is not created; tests that need it create it.
    """
    data_dir = tmp_test_dir / "ProgramData" / "Netbird"
    return DeployConfig(
        executable_path=tmp_test_dir / "Program Files" / "NetBird" / "netbird.exe",
        data_dir=data_dir,
        config_file=data_dir / "config.json",
        download_dir=tmp_test_dir / "downloads",
        management_url="https://api.netbird.io:443",
        default_management_url="https://api.netbird.io:443",
        setup_key="A1B2C3D4-0000-1111-2222-333344445555",
        relay_hosts=("signal.netbird.io", "relay.netbird.io"),
    )


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def recording_logger() -> RecordingLogger:
    return RecordingLogger()


@pytest.fixture
def make_runner():
    """
    Factory fixture for scripted command runners.

    Usage:
        runner = make_runner(lambda cmd: CommandResult(0, "ok"))
    """
    return ScriptedRunner


@pytest.fixture
def create_yaml_file(tmp_test_dir: Path):
    """
    Factory fixture for creating temporary YAML files.

    Usage:
        yaml_path = create_yaml_file("deploy.yaml", {"management": {...}})
    """

    def _create(filename: str, data: dict[str, Any]) -> Path:
        path = tmp_test_dir / filename
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("w", encoding="utf-8") as f:
            yaml.dump(data, f)
        return path

    return _create
