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

"""Command-line interface for meshdeploy.

This module provides the main CLI entry point for the meshdeploy tool, used
by Intune Win32 apps, remediation scripts and RMM jobs.

Commands:

    validate: Validate a deployment file (no network calls)
    check: Run the network prerequisite checks
    status: Show the installed client version and its status output
    install: Install the latest (or a pinned) client release
    update: Update an existing installation, rolling back on failure
    register: Join the mesh with a setup key
    deploy: Install if needed, then register
    migrate: Move the client to another management server

Example:
    Validate a deployment file:
        ```bash
        $ meshdeploy validate deploy.yaml
        ```

    Deploy during Autopilot (pre-logon):
        ```bash
        $ meshdeploy deploy --config deploy.yaml --oobe --log-file C:\\ProgramData\\meshdeploy\\deploy.log
        ```

    Migrate to a self-hosted server:
        ```bash
        $ meshdeploy migrate --management-url https://netbird.example.com:443 --setup-key XXXX
        ```

Exit Codes:

- 0: Success
- 1: Error (configuration, network, installation or registration failure)

Note:
    The CLI uses argparse for command parsing.
    Each command has its own handler function (cmd_<command>).
    Verbose mode shows full tracebacks on errors for debugging.

"""

from __future__ import annotations

import argparse
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path
import sys

from meshdeploy.client.cli import ClientCLI
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
from meshdeploy.exceptions import ConfigError, MeshDeployError
from meshdeploy.logging import get_logger, set_global_logger
from meshdeploy.results import DeployResult
from meshdeploy.validation import validate_config


def _configure(args: argparse.Namespace) -> DeployConfig | None:
    """Set up the global logger and load the deployment configuration."""
    log_file = Path(args.log_file) if args.log_file else None
    set_global_logger(get_logger(verbose=args.verbose, debug=args.debug, log_file=log_file))
    config_path = Path(args.config) if args.config else None
    try:
        return load_deploy_config(config_path)
    except ConfigError as err:
        print(f"Error: {err}")
        return None


def _print_error(args: argparse.Namespace, err: Exception) -> None:
    print(f"Error: {err}")
    if args.verbose or args.debug:
        import traceback

        traceback.print_exc()


def _print_deploy_result(title: str, result: DeployResult) -> int:
    print("=" * 70)
    print(title)
    print("=" * 70)
    if result.install is not None:
        install = result.install
        print(f"Install Status:    {install.status}")
        print(f"Previous Version:  {install.previous_version or '-'}")
        print(f"Installed Version: {install.installed_version or '-'}")
        if install.reboot_required:
            print("Reboot Required:   yes")
    if result.registered is not None:
        print(f"Registered:        {'yes' if result.registered else 'no'}")
    if result.rolled_back:
        print("Rolled Back:       yes")
    print(f"Result:            {result.message}")
    print("=" * 70)
    print()
    if result.success:
        print("[SUCCESS]")
        return 0
    print("[FAILED]")
    return 1


def cmd_validate(args: argparse.Namespace) -> int:
    """Handler for 'meshdeploy validate'.

    Returns:
        Exit code (0 for a valid file, 1 otherwise).
    """
    set_global_logger(get_logger(verbose=args.verbose, debug=args.debug))
    config_path = Path(args.config_file).resolve()

    print(f"Validating configuration: {config_path}")
    print()
    result = validate_config(config_path)

    print("=" * 70)
    print("VALIDATION RESULTS")
    print("=" * 70)
    print(f"Config:      {result.config_path}")
    print(f"Status:      {result.status.upper()}")
    print()

    if result.warnings:
        print(f"Warnings ({len(result.warnings)}):")
        for warning in result.warnings:
            print(f"  [WARNING] {warning}")
        print()

    if result.errors:
        print(f"Errors ({len(result.errors)}):")
        for error in result.errors:
            print(f"  [ERROR] {error}")
        print()

    print("=" * 70)
    if result.status == "valid":
        print()
        print("[SUCCESS] Configuration is valid!")
        return 0
    print()
    print("[FAILED] Configuration validation failed.")
    return 1


def cmd_check(args: argparse.Namespace) -> int:
    """Handler for 'meshdeploy check' (network prerequisites)."""
    config = _configure(args)
    if config is None:
        return 1

    result = check_network(config)
    print("=" * 70)
    print("NETWORK PREREQUISITES")
    print("=" * 70)
    for name, passed in result.checks.items():
        print(f"{name.value:<18} {'OK' if passed else 'FAILED'}")
    print("=" * 70)
    for issue in result.blocking_issues:
        print(f"  [BLOCKING] {issue}")
    for warning in result.warnings:
        print(f"  [WARNING] {warning}")
    print()
    if result.passed:
        print("[SUCCESS] Network prerequisites met")
        return 0
    print("[FAILED] Network prerequisites not met")
    return 1


def cmd_status(args: argparse.Namespace) -> int:
    """Handler for 'meshdeploy status'."""
    config = _configure(args)
    if config is None:
        return 1

    state = get_installed_state(config)
    print("=" * 70)
    print("CLIENT STATUS")
    print("=" * 70)
    print(f"Installed:   {'yes' if state.installed else 'no'}")
    print(f"Version:     {state.version or '-'}")
    print(f"Executable:  {state.executable_path or '-'}")
    print("=" * 70)
    if not state.installed:
        return 1

    try:
        result = ClientCLI(state.executable_path).status(detail=True)
    except MeshDeployError as err:
        _print_error(args, err)
        return 1
    print(result.output)
    return 0 if result.exit_code in (0, 1) else 1


def cmd_install(args: argparse.Namespace) -> int:
    """Handler for 'meshdeploy install'."""
    config = _configure(args)
    if config is None:
        return 1

    try:
        install = install_client(config, args.target_version, force=args.force)
    except MeshDeployError as err:
        _print_error(args, err)
        return 1
    return _print_deploy_result(
        "INSTALL RESULTS",
        DeployResult(
            action="install",
            success=install.status != "failed",
            install=install,
            message=f"Install {install.status}",
        ),
    )


def cmd_update(args: argparse.Namespace) -> int:
    """Handler for 'meshdeploy update'."""
    config = _configure(args)
    if config is None:
        return 1
    return _print_deploy_result("UPDATE RESULTS", update_client(config, args.target_version))


def cmd_register(args: argparse.Namespace) -> int:
    """Handler for 'meshdeploy register'."""
    config = _configure(args)
    if config is None:
        return 1
    try:
        result = register_client(
            config,
            args.setup_key,
            args.management_url,
            is_fresh_install=args.fresh,
            oobe=args.oobe,
        )
    except MeshDeployError as err:
        _print_error(args, err)
        return 1
    return _print_deploy_result("REGISTRATION RESULTS", result)


def cmd_deploy(args: argparse.Namespace) -> int:
    """Handler for 'meshdeploy deploy'."""
    config = _configure(args)
    if config is None:
        return 1
    try:
        result = deploy(config, args.setup_key, args.target_version, oobe=args.oobe)
    except MeshDeployError as err:
        _print_error(args, err)
        return 1
    return _print_deploy_result("DEPLOYMENT RESULTS", result)


def cmd_migrate(args: argparse.Namespace) -> int:
    """Handler for 'meshdeploy migrate'."""
    config = _configure(args)
    if config is None:
        return 1
    try:
        result = migrate_client(config, args.management_url, args.setup_key)
    except MeshDeployError as err:
        _print_error(args, err)
        return 1
    return _print_deploy_result("MIGRATION RESULTS", result)


def _package_version() -> str:
    try:
        return version("meshdeploy")
    except PackageNotFoundError:
        from meshdeploy import __version__

        return __version__


def build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "-c",
        "--config",
        default=None,
        help="Deployment YAML (default: built-in NetBird defaults)",
    )
    common.add_argument(
        "--log-file",
        default=None,
        help="Append a timestamped copy of all output to this file",
    )
    common.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Show progress and high-level status updates",
    )
    common.add_argument(
        "-d",
        "--debug",
        action="store_true",
        help="Show detailed debugging output (implies --verbose)",
    )

    parser = argparse.ArgumentParser(
        prog="meshdeploy",
        description="meshdeploy - install, register and migrate a VPN mesh client on Windows",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"meshdeploy {_package_version()}",
    )
    subparsers = parser.add_subparsers(
        dest="command",
        help="Available commands",
        required=True,
    )

    parser_validate = subparsers.add_parser(
        "validate",
        parents=[common],
        help="Validate a deployment file without network calls",
    )
    parser_validate.add_argument("config_file", help="Path to the deployment YAML")
    parser_validate.set_defaults(func=cmd_validate)

    parser_check = subparsers.add_parser(
        "check", parents=[common], help="Run network prerequisite checks"
    )
    parser_check.set_defaults(func=cmd_check)

    parser_status = subparsers.add_parser(
        "status", parents=[common], help="Show installed version and client status"
    )
    parser_status.set_defaults(func=cmd_status)

    parser_install = subparsers.add_parser(
        "install", parents=[common], help="Install the client package"
    )
    parser_install.add_argument(
        "--version",
        dest="target_version",
        default=None,
        help="Release to install (default: latest)",
    )
    parser_install.add_argument(
        "--force",
        action="store_true",
        help="Install even if the installed version is current",
    )
    parser_install.set_defaults(func=cmd_install)

    parser_update = subparsers.add_parser(
        "update", parents=[common], help="Update the client, rolling back on failure"
    )
    parser_update.add_argument(
        "--version",
        dest="target_version",
        default=None,
        help="Release to update to (default: latest)",
    )
    parser_update.set_defaults(func=cmd_update)

    parser_register = subparsers.add_parser(
        "register", parents=[common], help="Join the mesh with a setup key"
    )
    parser_register.add_argument("--setup-key", default=None, help="Setup key")
    parser_register.add_argument(
        "--management-url", default=None, help="Management server URL"
    )
    parser_register.add_argument(
        "--fresh",
        action="store_true",
        help="Treat as a fresh install (full state reset, longer daemon wait)",
    )
    parser_register.add_argument(
        "--oobe",
        action="store_true",
        help="Use the simplified pre-logon verification",
    )
    parser_register.set_defaults(func=cmd_register)

    parser_deploy = subparsers.add_parser(
        "deploy", parents=[common], help="Install if needed, then register"
    )
    parser_deploy.add_argument("--setup-key", default=None, help="Setup key")
    parser_deploy.add_argument(
        "--version",
        dest="target_version",
        default=None,
        help="Release to install (default: latest)",
    )
    parser_deploy.add_argument(
        "--oobe",
        action="store_true",
        help="Use the simplified pre-logon verification",
    )
    parser_deploy.set_defaults(func=cmd_deploy)

    parser_migrate = subparsers.add_parser(
        "migrate", parents=[common], help="Move the client to another management server"
    )
    parser_migrate.add_argument(
        "--management-url", required=True, help="New management server URL"
    )
    parser_migrate.add_argument("--setup-key", default=None, help="Setup key")
    parser_migrate.set_defaults(func=cmd_migrate)

    return parser


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the meshdeploy CLI.

    This function is registered as the 'meshdeploy' console script in
    pyproject.toml.
    """
    args = build_parser().parse_args(argv)
    exit_code = args.func(args)
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
