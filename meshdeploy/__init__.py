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

"""
meshdeploy - deployment automation for a VPN mesh client on Windows.

meshdeploy installs, registers, updates and migrates a mesh VPN client
(NetBird by default) on Windows endpoints managed through Intune or an RMM
tool. It wraps the vendor MSI and the vendor CLI with detection, network
prerequisite checks, state resets, a registration state machine with typed
recovery actions, and connection verification.

Quick Start
-----------
Check that the endpoint can register:

    $ meshdeploy check

Install and register in one step:

    $ meshdeploy deploy --config deploy.yaml --setup-key XXXX

For full CLI documentation:

    $ meshdeploy --help

Package Structure
-----------------
cli : module
    Command-line interface with argparse.
core : module
    High-level install/update/deploy/migrate workflows.
config : package
    YAML configuration loading and merging into DeployConfig.
discovery : package
    GitHub release lookup.
versioning : package
    Version comparison and extraction from the client executable.
io : package
    Installer download.
client : package
    Adapters for the client CLI, msiexec, sc.exe and the registry.
diagnostics : package
    Network prerequisite checks.
state : package
    Partial and full state reset.
registration : package
    Registration state machine, recovery table and verification.

Public API
----------
The primary interface is the CLI, but key functions are exported for
programmatic use:

    from meshdeploy.core import deploy, migrate_client, update_client
    from meshdeploy.config import load_deploy_config
    from meshdeploy.registration import RegistrationOrchestrator
"""

__version__ = "0.1.0"
__author__ = "Roger Cibrian"
__license__ = "Apache-2.0"
__description__ = "Deployment automation for a VPN mesh client on Windows"

# Re-export commonly used functions for convenience
from meshdeploy.config import DeployConfig, load_deploy_config
from meshdeploy.core import (
    check_network,
    deploy,
    get_installed_state,
    install_client,
    migrate_client,
    register_client,
    update_client,
)
from meshdeploy.validation import validate_config
from meshdeploy.versioning import compare_versions

__all__ = [
    "DeployConfig",
    "__version__",
    "check_network",
    "compare_versions",
    "deploy",
    "get_installed_state",
    "install_client",
    "load_deploy_config",
    "migrate_client",
    "register_client",
    "update_client",
    "validate_config",
]
