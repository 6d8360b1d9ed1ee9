"""
Tests for meshdeploy.logging module.

Tests console/file output levels and secret masking.
"""

from __future__ import annotations

import pytest

from meshdeploy.logging import DefaultLogger, SilentLogger, get_logger, mask_secret

pytestmark = pytest.mark.unit


class TestDefaultLogger:
    def test_info_always_printed(self, capsys):
        DefaultLogger().info("NETWORK", "All critical network checks passed")

        assert capsys.readouterr().out == "[NETWORK] All critical network checks passed\n"

    def test_verbose_hidden_by_default(self, capsys):
        logger = DefaultLogger()
        logger.verbose("PROBE", "hidden")
        logger.debug("CMD", "hidden")

        assert capsys.readouterr().out == ""

    def test_debug_implies_verbose(self, capsys):
        logger = get_logger(debug=True)
        logger.verbose("PROBE", "shown")

        assert "shown" in capsys.readouterr().out

    def test_error_goes_to_stderr(self, capsys):
        DefaultLogger().error("REGISTER", "Registration failed")

        captured = capsys.readouterr()
        assert captured.out == ""
        assert "[REGISTER] ERROR: Registration failed" in captured.err

    def test_log_file(self, tmp_path, capsys):
        log_file = tmp_path / "logs" / "deploy.log"
        logger = DefaultLogger(log_file=log_file)

        logger.step(1, 4, "Checking installed version...")
        logger.warning("RESET", "Could not stop service netbird")
        logger.verbose("PROBE", "not written")

        lines = log_file.read_text(encoding="utf-8").splitlines()
        assert len(lines) == 2
        assert lines[0].endswith("[STEP] [1/4] Checking installed version...")
        assert "WARNING [RESET] Could not stop service netbird" in lines[1]

    def test_unwritable_log_file_keeps_console(self, tmp_path, capsys):
        blocker = tmp_path / "file"
        blocker.write_text("x")
        logger = DefaultLogger(log_file=blocker / "deploy.log")

        logger.info("DEPLOY", "still printed")

        assert "still printed" in capsys.readouterr().out


def test_silent_logger_prints_nothing(capsys):
    logger = SilentLogger()
    logger.info("X", "y")
    logger.error("X", "y")

    captured = capsys.readouterr()
    assert captured.out == ""
    assert captured.err == ""


@pytest.mark.parametrize(
    "value,expected",
    [
        ("A1B2C3D4-0000-1111-2222-333344445555", "A1B2****"),
        ("ab", "ab****"),
        (None, "<none>"),
        ("", "<none>"),
    ],
)
def test_mask_secret(value, expected):
    assert mask_secret(value) == expected
