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

"""Core orchestration for meshdeploy.

This module provides the high-level functions behind each CLI command. Each
one builds its collaborators from a DeployConfig, runs one workflow and
returns a result dataclass.

Workflows:

- **install_client**: probe -> resolve release -> skip if current ->
    download -> msiexec -> re-probe
- **update_client**: install_client on an existing installation; if the
    installer fails or the daemon does not come back, uninstall the new
    package and reinstall the previous version
- **deploy**: install_client, then register (a first-time install selects
    the fresh-install registration path)
- **migrate_client**: partial reset to drop the old server's connection
    config, then register against the new management URL

Design Principles:

- Installation problems surface as exceptions (InstallError, NetworkError);
  the CLI layer formats them for display
- Registration never raises; its outcome is the orchestrator's bool
- Configuration is immutable once loaded

Example:
    Programmatic usage:
        ```python
        from meshdeploy.config import load_deploy_config
        from meshdeploy.core import deploy

        config = load_deploy_config(Path("deploy.yaml"))
        result = deploy(config)
        print(result.success, result.message)
        ```

"""

from __future__ import annotations

from collections.abc import Callable
import time

from meshdeploy.client.cli import ClientCLI
from meshdeploy.client.installer import MsiInstaller, describe_exit_code, is_success
from meshdeploy.client.runner import Runner, run_command
from meshdeploy.client.service import ServiceController
from meshdeploy.config import DeployConfig
from meshdeploy.detection import InstalledStateProbe
from meshdeploy.diagnostics import NetworkPrerequisiteChecker
from meshdeploy.discovery import ReleaseOracle
from meshdeploy.exceptions import ConfigError, InstallError, MeshDeployError
from meshdeploy.io import download_file
from meshdeploy.logging import get_global_logger
from meshdeploy.registration import RegistrationOrchestrator
from meshdeploy.results import DeployResult, InstalledState, InstallResult, NetworkCheckResult
from meshdeploy.state import StateResetter
from meshdeploy.versioning.keys import compare_versions, same_version

POST_INSTALL_DAEMON_TIMEOUT = 120
DAEMON_POLL_INTERVAL = 5

Sleep = Callable[[float], None]
Clock = Callable[[], float]


def check_network(
    config: DeployConfig, *, runner: Runner = run_command
) -> NetworkCheckResult:
    """Run the network prerequisite battery once."""
    return NetworkPrerequisiteChecker(config, runner=runner).check_prerequisites()


def get_installed_state(
    config: DeployConfig, *, runner: Runner = run_command
) -> InstalledState:
    """Probe the installed client (never cached)."""
    return InstalledStateProbe(config, runner=runner).probe()


def build_orchestrator(
    config: DeployConfig,
    *,
    runner: Runner = run_command,
    sleep: Sleep = time.sleep,
    clock: Clock = time.monotonic,
    oobe: bool = False,
) -> RegistrationOrchestrator:
    return RegistrationOrchestrator.from_config(
        config, runner=runner, sleep=sleep, clock=clock, oobe=oobe
    )


def _wait_for_daemon(
    client: ClientCLI, timeout: float, sleep: Sleep, clock: Clock
) -> bool:
    deadline = clock() + timeout
    while True:
        if client.is_responding():
            return True
        if clock() >= deadline:
            return False
        sleep(DAEMON_POLL_INTERVAL)


def _require_setup_key(config: DeployConfig, setup_key: str | None) -> str:
    key = setup_key or config.setup_key
    if not key:
        raise ConfigError(
            "No setup key: pass --setup-key, set management.setup_key, "
            "or export MESHDEPLOY_SETUP_KEY"
        )
    return key


def install_client(
    config: DeployConfig,
    target_version: str | None = None,
    force: bool = False,
    *,
    runner: Runner = run_command,
    oracle: ReleaseOracle | None = None,
) -> InstallResult:
    """Install the latest (or a pinned) client release if needed.

    Args:
        config: Deployment configuration.
        target_version: Release to install; None means latest.
        force: Install even when the installed version is not older.
        runner: Command runner (msiexec, version queries).
        oracle: Release lookup; built from config when None.

    Returns:
        InstallResult. ``status`` is "skipped" when the installed version
        is already current and "failed" when msiexec reported an error.

    Raises:
        InstallError: If the release or its installer asset does not exist.
        NetworkError: If the download fails or fails validation.
        ClientError: If msiexec cannot be started.

    Example:
        Install a pinned version:
            ```python
            result = install_client(config, target_version="0.28.4")
            if result.reboot_required:
                print("Reboot pending")
            ```

    """
    logger = get_global_logger()
    oracle = oracle or ReleaseOracle.from_config(config)
    probe = InstalledStateProbe(config, runner=runner)

    logger.step(1, 4, "Checking installed version...")
    before = probe.probe()
    logger.info(
        "INSTALL",
        f"Installed: {before.version}" if before.installed else "Client not installed",
    )

    logger.step(2, 4, "Resolving release...")
    release = oracle.fetch_release(target_version)
    if release.version is None:
        raise InstallError(
            f"Release {target_version or 'latest'} not found at {config.releases_api_url}"
        )

    if before.installed and not force and not compare_versions(before.version, release.version):
        if same_version(before.version, release.version):
            logger.info("INSTALL", f"Already at {before.version}; nothing to do")
        else:
            logger.info(
                "INSTALL",
                f"Installed {before.version} is newer than {release.version}; nothing to do",
            )
        return InstallResult(
            status="skipped",
            previous_version=before.version,
            installed_version=before.version,
            target_version=release.version,
        )

    if release.download_url is None:
        raise InstallError(f"No installer asset published for {release.version}")

    logger.step(3, 4, f"Downloading {release.version}...")
    package_path, sha256 = download_file(release.download_url, config.download_dir)
    logger.verbose("INSTALL", f"SHA-256: {sha256}")

    logger.step(4, 4, "Running installer...")
    exit_code = MsiInstaller(runner).install(package_path)
    if not is_success(exit_code):
        return InstallResult(
            status="failed",
            previous_version=before.version,
            installed_version=before.version,
            target_version=release.version,
            package_path=package_path,
            exit_code=exit_code,
        )

    after = probe.probe()
    return InstallResult(
        status="installed",
        previous_version=before.version,
        installed_version=after.version,
        target_version=release.version,
        package_path=package_path,
        exit_code=exit_code,
        reboot_required=exit_code == 3010,
    )


def update_client(
    config: DeployConfig,
    target_version: str | None = None,
    *,
    runner: Runner = run_command,
    oracle: ReleaseOracle | None = None,
    sleep: Sleep = time.sleep,
    clock: Clock = time.monotonic,
) -> DeployResult:
    """Update an existing installation, rolling back on failure.

    Rollback happens when msiexec fails or the daemon does not respond
    within 120s of a successful install: the new package is uninstalled and
    the previously installed version is reinstalled from its release.
    """
    logger = get_global_logger()
    oracle = oracle or ReleaseOracle.from_config(config)

    before = InstalledStateProbe(config, runner=runner).probe()
    if not before.installed:
        return DeployResult(
            action="update",
            success=False,
            message="Client is not installed; use deploy for a first install",
        )

    try:
        install = install_client(config, target_version, runner=runner, oracle=oracle)
    except MeshDeployError as err:
        logger.error("UPDATE", str(err))
        return DeployResult(action="update", success=False, message=str(err))

    if install.status == "skipped":
        return DeployResult(
            action="update",
            success=True,
            install=install,
            message=f"Already up to date ({install.installed_version})",
        )

    if install.status == "installed":
        client = ClientCLI.from_config(config, runner=runner)
        if _wait_for_daemon(client, POST_INSTALL_DAEMON_TIMEOUT, sleep, clock):
            return DeployResult(
                action="update",
                success=True,
                install=install,
                message=f"Updated {before.version} -> {install.installed_version}",
            )
        reason = "daemon did not respond after update"
    else:
        reason = describe_exit_code(install.exit_code or -1)

    logger.warning("UPDATE", f"Update failed ({reason}); rolling back to {before.version}")
    rolled_back = _rollback(config, before, install, runner=runner, oracle=oracle)
    return DeployResult(
        action="update",
        success=False,
        install=install,
        rolled_back=rolled_back,
        message=f"Update failed: {reason}"
        + ("; rolled back" if rolled_back else "; rollback failed"),
    )


def _rollback(
    config: DeployConfig,
    before: InstalledState,
    failed: InstallResult,
    *,
    runner: Runner,
    oracle: ReleaseOracle,
) -> bool:
    logger = get_global_logger()
    if failed.status == "installed" and failed.package_path is not None:
        code = MsiInstaller(runner).uninstall(failed.package_path)
        logger.verbose("ROLLBACK", f"Uninstall of new package: {describe_exit_code(code)}")
    try:
        restored = install_client(
            config, before.version, force=True, runner=runner, oracle=oracle
        )
    except MeshDeployError as err:
        logger.error("ROLLBACK", f"Cannot reinstall {before.version}: {err}")
        return False
    if restored.status != "installed":
        logger.error("ROLLBACK", f"Reinstall of {before.version} failed")
        return False
    logger.info("ROLLBACK", f"Restored {restored.installed_version}")
    return True


def register_client(
    config: DeployConfig,
    setup_key: str | None = None,
    management_url: str | None = None,
    *,
    is_fresh_install: bool = False,
    oobe: bool = False,
    runner: Runner = run_command,
    sleep: Sleep = time.sleep,
    clock: Clock = time.monotonic,
) -> DeployResult:
    """Register the installed client with the management server.

    Raises:
        ConfigError: If no setup key is available.
    """
    key = _require_setup_key(config, setup_key)
    orchestrator = build_orchestrator(
        config, runner=runner, sleep=sleep, clock=clock, oobe=oobe
    )
    ok = orchestrator.register(
        key,
        management_url=management_url,
        max_retries=config.max_retries,
        is_fresh_install=is_fresh_install,
    )
    return DeployResult(
        action="register",
        success=ok,
        registered=ok,
        message="Registered" if ok else f"Registration failed: {orchestrator.last_failure}",
    )


def deploy(
    config: DeployConfig,
    setup_key: str | None = None,
    target_version: str | None = None,
    *,
    oobe: bool = False,
    runner: Runner = run_command,
    oracle: ReleaseOracle | None = None,
    sleep: Sleep = time.sleep,
    clock: Clock = time.monotonic,
) -> DeployResult:
    """Install (if needed) and register the client.

    Raises:
        ConfigError: If no setup key is available.
        InstallError: If the release or its installer asset does not exist.
        NetworkError: If the download fails.
    """
    logger = get_global_logger()
    key = _require_setup_key(config, setup_key)

    install = install_client(config, target_version, runner=runner, oracle=oracle)
    if install.status == "failed":
        return DeployResult(
            action="deploy",
            success=False,
            install=install,
            message=f"Installation failed: {describe_exit_code(install.exit_code or -1)}",
        )

    logger.info(
        "DEPLOY",
        "Fresh install; using full reset path" if install.fresh_install
        else "Existing install; using partial reset path",
    )
    registration = register_client(
        config,
        key,
        is_fresh_install=install.fresh_install,
        oobe=oobe,
        runner=runner,
        sleep=sleep,
        clock=clock,
    )
    return DeployResult(
        action="deploy",
        success=registration.success,
        install=install,
        registered=registration.registered,
        message=registration.message,
    )


def migrate_client(
    config: DeployConfig,
    management_url: str,
    setup_key: str | None = None,
    *,
    runner: Runner = run_command,
    sleep: Sleep = time.sleep,
    clock: Clock = time.monotonic,
) -> DeployResult:
    """Move an installed client to another management server.

    The connection config pointing at the old server is removed first so
    the conflicting-state prerequisite passes for the new URL.

    Raises:
        ConfigError: If no setup key is available.
    """
    logger = get_global_logger()
    key = _require_setup_key(config, setup_key)

    state = InstalledStateProbe(config, runner=runner).probe()
    if not state.installed:
        return DeployResult(
            action="migrate", success=False, message="Client is not installed"
        )

    logger.info("MIGRATE", f"Migrating to {management_url}")
    service = ServiceController(config.service_name, runner, sleep=sleep, clock=clock)
    if not StateResetter(config, service).reset(full=False):
        return DeployResult(
            action="migrate",
            success=False,
            message="Could not clear the existing connection config",
        )

    registration = register_client(
        config,
        key,
        management_url,
        runner=runner,
        sleep=sleep,
        clock=clock,
    )
    return DeployResult(
        action="migrate",
        success=registration.success,
        registered=registration.registered,
        message=registration.message,
    )
