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

"""Exception hierarchy for meshdeploy.

This module defines the exceptions raised by the collaborators that wrap
external programs and services:

- ConfigError: Deployment configuration problems (YAML parse, bad fields)
- NetworkError: Installer download failures
- InstallError: Release or installer asset not available
- ClientError: The client executable (or an OS tool) is missing or hung

All exceptions inherit from MeshDeployError. The registration orchestrator
never lets any of them escape: it catches, classifies and turns them into a
boolean result plus log output. The high-level functions in
``meshdeploy.core`` do raise them, and the CLI maps them to exit code 1.

Example:
    Catching specific error types:
        ```python
        from meshdeploy.core import install_client
        from meshdeploy.exceptions import InstallError, NetworkError

        try:
            result = install_client(config)
        except NetworkError as e:
            print(f"Download failed: {e}")
        except InstallError as e:
            print(f"No installer available: {e}")
        ```
"""

from __future__ import annotations

__all__ = [
    "MeshDeployError",
    "ConfigError",
    "NetworkError",
    "InstallError",
    "ClientError",
]


class MeshDeployError(Exception):
    """Base exception for all meshdeploy errors."""

    pass


class ConfigError(MeshDeployError):
    """Raised for configuration-related errors.

    This exception is raised when there are problems with:

    - YAML parsing (syntax errors, non-mapping documents)
    - Unknown or invalid configuration fields
    - Missing required values such as the setup key
    """

    pass


class NetworkError(MeshDeployError):
    """Raised for installer download failures.

    This exception is raised when there are problems with:

    - Package download failures (HTTP errors, HTML error pages,
      checksum mismatches)
    """

    pass


class InstallError(MeshDeployError):
    """Raised when a release or its installer cannot be obtained.

    Covers a pinned release that does not exist and a release without an
    installer asset for this platform.

    Attributes:
        exit_code: The msiexec exit code, if the installer ran at all.
    """

    def __init__(self, message: str, exit_code: int | None = None) -> None:
        super().__init__(message)
        self.exit_code = exit_code


class ClientError(MeshDeployError):
    """Raised when an external executable cannot be run.

    Covers a missing client binary, a missing OS tool (sc.exe, msiexec,
    powershell) and commands that exceed their timeout.
    """

    pass
