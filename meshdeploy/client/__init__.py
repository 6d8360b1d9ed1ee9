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

"""Adapters for the external programs meshdeploy drives.

Modules
-------
runner : module
    subprocess wrapper returning CommandResult.
cli : module
    The VPN client's command-line binary (up, status).
installer : module
    msiexec install/uninstall.
service : module
    sc.exe service control.
registry : module
    Uninstall-key and service ImagePath lookups.
"""

from .cli import ClientCLI
from .installer import MsiInstaller, describe_exit_code, is_success
from .runner import CommandResult, run_command, run_powershell
from .service import ServiceController

__all__ = [
    "ClientCLI",
    "CommandResult",
    "MsiInstaller",
    "ServiceController",
    "describe_exit_code",
    "is_success",
    "run_command",
    "run_powershell",
]
