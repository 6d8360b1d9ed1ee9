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

"""Clearing the client's persisted state.

The client keeps its connection settings (management URL, peer keys) in a
JSON config file inside its data directory. Two reset depths exist:

- Partial: stop the service, delete the config file, start the service.
- Full: stop the service, delete everything in the data directory except
  the log subdirectory, start the service and wait until it is RUNNING.

Service stop/start failures are warnings only; the delete is attempted
regardless because it is the step that can unwedge a stuck client.

Example:
    ```python
    from meshdeploy.client.service import ServiceController
    from meshdeploy.config import load_deploy_config
    from meshdeploy.state import StateResetter

    config = load_deploy_config()
    resetter = StateResetter(config, ServiceController(config.service_name))
    ok = resetter.reset(full=False)
    ```

"""

from __future__ import annotations

from pathlib import Path
import shutil

from meshdeploy.client.service import ServiceController
from meshdeploy.config import DeployConfig
from meshdeploy.logging import Logger, get_global_logger

SERVICE_TIMEOUT = 30
FULL_RESET_RUNNING_TIMEOUT = 60


class StateResetter:
    """Delete the client's local state and bounce its service."""

    def __init__(
        self,
        config: DeployConfig,
        service: ServiceController,
        logger: Logger | None = None,
    ) -> None:
        self.config = config
        self.service = service
        self._logger = logger or get_global_logger()

    def reset(self, full: bool) -> bool:
        """Run a partial or full reset.

        Args:
            full: True for a full data-directory wipe, False to delete only
                the connection config file.

        Returns:
            True if the files were deleted (and, for a full reset, the
            service reached RUNNING afterwards).
        """
        logger = self._logger
        kind = "full" if full else "partial"
        logger.info("RESET", f"Starting {kind} state reset")

        if not self.service.stop(timeout=SERVICE_TIMEOUT):
            logger.warning(
                "RESET", f"Could not stop service {self.service.name}; deleting anyway"
            )

        deleted = self._delete_data_dir() if full else self._delete_config_file()

        if full:
            started = self.service.start(timeout=SERVICE_TIMEOUT)
            if not started:
                logger.warning("RESET", f"Could not start service {self.service.name}")
            running = started or self.service.wait_for_state(
                "RUNNING", FULL_RESET_RUNNING_TIMEOUT
            )
            if not running:
                logger.error("RESET", "Service did not reach RUNNING after full reset")
                return False
        elif not self.service.start(timeout=SERVICE_TIMEOUT):
            logger.warning("RESET", f"Could not start service {self.service.name}")

        if deleted:
            logger.info("RESET", f"{kind.capitalize()} state reset complete")
        else:
            logger.error("RESET", f"{kind.capitalize()} state reset failed")
        return deleted

    def _delete_config_file(self) -> bool:
        path = self.config.config_file
        if not path.exists():
            self._logger.verbose("RESET", f"No config file at {path}")
            return True
        try:
            path.unlink()
        except OSError as err:
            self._logger.error("RESET", f"Cannot delete {path}: {err}")
            return False
        self._logger.verbose("RESET", f"Deleted {path}")
        return True

    def _delete_data_dir(self) -> bool:
        data_dir = self.config.data_dir
        if not data_dir.exists():
            self._logger.verbose("RESET", f"No data directory at {data_dir}")
            return True

        ok = True
        for child in data_dir.iterdir():
            if child.is_dir() and child.name.lower() == self.config.log_dir_name.lower():
                continue
            try:
                _remove(child)
            except OSError as err:
                self._logger.error("RESET", f"Cannot delete {child}: {err}")
                ok = False
            else:
                self._logger.debug("RESET", f"Deleted {child}")
        return ok


def _remove(path: Path) -> None:
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    else:
        path.unlink()
