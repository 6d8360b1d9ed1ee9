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

"""Logging interface for meshdeploy.

Library modules log through a small Logger protocol instead of printing
directly, so the same code can run silently under test, print to a console
for an operator, or append to a log file collected by Intune or an RMM agent.

Every message carries a source tag (the prefix), e.g. "NETWORK", "REGISTER",
"RESET". Levels:

- step: Progress indicator, always printed
- info / warning / error: Operational messages, always printed
- verbose: Only printed when verbose mode is enabled
- debug: Only printed when debug mode is enabled (implies verbose)

Example:
    Configure the global logger (done by the CLI):
        ```python
        from meshdeploy.logging import get_logger, set_global_logger

        logger = get_logger(verbose=True, log_file=Path("C:/ProgramData/meshdeploy/deploy.log"))
        set_global_logger(logger)
        ```

    Use with dependency injection:
        ```python
        def my_function(logger=None):
            logger = logger or get_global_logger()
            logger.info("MODULE", "Processing...")
        ```

Note:
    The default global logger is silent, so library functions print nothing
    unless the caller configures one.
"""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
import sys
from typing import Protocol


class Logger(Protocol):
    """Protocol for logger implementations."""

    def step(self, step: int, total: int, message: str) -> None:
        """Print a step indicator.

        Args:
            step: Current step number (1-based).
            total: Total number of steps.
            message: Step description.
        """
        ...

    def info(self, prefix: str, message: str) -> None:
        """Log an informational message tagged with its source."""
        ...

    def warning(self, prefix: str, message: str) -> None:
        """Log a warning tagged with its source."""
        ...

    def error(self, prefix: str, message: str) -> None:
        """Log an error tagged with its source."""
        ...

    def verbose(self, prefix: str, message: str) -> None:
        """Log a verbose message (e.g., "RELEASE", "PROBE")."""
        ...

    def debug(self, prefix: str, message: str) -> None:
        """Log a debug message (e.g., "HTTP", "CMD")."""
        ...


class DefaultLogger:
    """Logger that prints to the console and optionally appends to a file.

    Console lines look like ``[NETWORK] DNS servers configured``; warnings
    and errors carry a ``WARNING:``/``ERROR:`` marker and errors go to
    stderr. File lines are timestamped and always include the level, and
    verbose/debug lines are only written when the matching mode is on.
    """

    def __init__(
        self,
        verbose: bool = False,
        debug: bool = False,
        log_file: Path | None = None,
    ) -> None:
        """Initialize logger with verbosity settings.

        Args:
            verbose: If True, print verbose messages.
            debug: If True, print debug messages (implies verbose).
            log_file: Optional file to append every emitted line to. Parent
                directories are created on first write.
        """
        self._verbose = verbose or debug
        self._debug = debug
        self._log_file = log_file

    def _write_file(self, level: str, prefix: str, message: str) -> None:
        if self._log_file is None:
            return
        stamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        try:
            self._log_file.parent.mkdir(parents=True, exist_ok=True)
            with self._log_file.open("a", encoding="utf-8") as f:
                f.write(f"{stamp} {level:<7} [{prefix}] {message}\n")
        except OSError:
            # console only from here on
            self._log_file = None

    def step(self, step: int, total: int, message: str) -> None:
        """Print a step indicator."""
        print(f"[{step}/{total}] {message}")
        self._write_file("INFO", "STEP", f"[{step}/{total}] {message}")

    def info(self, prefix: str, message: str) -> None:
        """Print an informational message."""
        print(f"[{prefix}] {message}")
        self._write_file("INFO", prefix, message)

    def warning(self, prefix: str, message: str) -> None:
        """Print a warning."""
        print(f"[{prefix}] WARNING: {message}")
        self._write_file("WARNING", prefix, message)

    def error(self, prefix: str, message: str) -> None:
        """Print an error to stderr."""
        print(f"[{prefix}] ERROR: {message}", file=sys.stderr)
        self._write_file("ERROR", prefix, message)

    def verbose(self, prefix: str, message: str) -> None:
        """Print a verbose message (only when verbose mode is active)."""
        if self._verbose:
            print(f"[{prefix}] {message}")
            self._write_file("VERBOSE", prefix, message)

    def debug(self, prefix: str, message: str) -> None:
        """Print a debug message (only when debug mode is active)."""
        if self._debug:
            print(f"[{prefix}] {message}")
            self._write_file("DEBUG", prefix, message)


class SilentLogger:
    """Logger that suppresses all output."""

    def step(self, step: int, total: int, message: str) -> None:
        pass

    def info(self, prefix: str, message: str) -> None:
        pass

    def warning(self, prefix: str, message: str) -> None:
        pass

    def error(self, prefix: str, message: str) -> None:
        pass

    def verbose(self, prefix: str, message: str) -> None:
        pass

    def debug(self, prefix: str, message: str) -> None:
        pass


# Global logger instance (defaults to silent)
_global_logger: Logger = SilentLogger()


def get_logger(
    verbose: bool = False, debug: bool = False, log_file: Path | None = None
) -> Logger:
    """Get a console logger with the specified verbosity.

    Args:
        verbose: If True, logger will print verbose messages.
        debug: If True, logger will print debug messages (implies verbose).
        log_file: Optional file that receives a timestamped copy of each line.

    Returns:
        A DefaultLogger configured with the specified settings.
    """
    return DefaultLogger(verbose=verbose, debug=debug, log_file=log_file)


def get_global_logger() -> Logger:
    """Get the global logger instance (silent unless configured)."""
    return _global_logger


def set_global_logger(logger: Logger) -> None:
    """Set the global logger instance.

    Args:
        logger: Logger instance to use as the global logger.

    Note:
        This affects every component constructed without an explicit
        logger. Tests and embedding callers should prefer passing a logger
        to the component constructors instead.
    """
    global _global_logger
    _global_logger = logger


def mask_secret(value: str | None, visible: int = 4) -> str:
    """Mask a secret (setup key, token) for log output.

    Example:
        ```python
        mask_secret("A1B2C3D4-0000-1111-2222-333344445555")  # 'A1B2****'
        mask_secret(None)                                    # '<none>'
        ```
    """
    if not value:
        return "<none>"
    return value[:visible] + "****"
