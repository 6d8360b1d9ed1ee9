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

"""GitHub releases lookup for the client installer.

This is a VERSION-FIRST lookup: it asks the GitHub releases API which
version to deploy and where its MSI lives, without downloading anything.

Endpoints:

- Latest:   GET {api_url}/latest
- Pinned:   GET {api_url}/tags/v{version}

Response fields used: ``tag_name`` (optional leading "v") and
``assets[].name`` / ``assets[].browser_download_url``.

Retry Policy:

- Up to 3 attempts, sleeping 5s x attempt number between them
- Connection errors, 5xx/429 responses and unparsable bodies are retried
- A release whose asset list has no installer yet is retried too (assets
  are uploaded after the release is cut)
- 404 for a pinned version is terminal: the tag does not exist, so the
  lookup returns ReleaseInfo(None, None) after a single request

Example:
    Pin a version:
        ```python
        from meshdeploy.config import load_deploy_config
        from meshdeploy.discovery import ReleaseOracle

        oracle = ReleaseOracle.from_config(load_deploy_config())
        release = oracle.fetch_release("0.28.4")
        if release.download_url is None:
            print("No installer published for that version")
        ```

Note:
    Authentication is optional. Without a token the API allows 60
    requests/hour per IP, which a large fleet behind one NAT can exhaust;
    set ``releases.token`` (e.g. "${GITHUB_TOKEN}") in that case.

"""

from __future__ import annotations

from collections.abc import Callable
import re
import time
from typing import Any

import requests

from meshdeploy.config import DeployConfig
from meshdeploy.logging import Logger, get_global_logger
from meshdeploy.versioning.keys import ReleaseInfo, normalize_version

MAX_ATTEMPTS = 3
BACKOFF_SECONDS = 5
REQUEST_TIMEOUT = 10


class ReleaseOracle:
    """Resolve a release version and its installer URL.

    Configuration example:
        releases:
          api_url: "https://api.github.com/repos/netbirdio/netbird/releases"
          asset_pattern: "netbird_installer_[0-9.]+_windows_amd64\\.msi$"
          token: "${GITHUB_TOKEN}"
    """

    def __init__(
        self,
        api_url: str,
        asset_pattern: str,
        *,
        token: str | None = None,
        logger: Logger | None = None,
        sleep: Callable[[float], None] = time.sleep,
        timeout: float = REQUEST_TIMEOUT,
    ) -> None:
        self.api_url = api_url.rstrip("/")
        self.asset_pattern = re.compile(asset_pattern)
        self.token = token
        self.timeout = timeout
        self._logger = logger or get_global_logger()
        self._sleep = sleep

    @classmethod
    def from_config(
        cls, config: DeployConfig, logger: Logger | None = None
    ) -> ReleaseOracle:
        return cls(
            config.releases_api_url,
            config.asset_pattern,
            token=config.github_token,
            logger=logger,
        )

    def _headers(self) -> dict[str, str]:
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        if self.token:
            headers["Authorization"] = f"token {self.token}"
        return headers

    def _match_asset(self, assets: list[dict[str, Any]]) -> str | None:
        for asset in assets:
            name = asset.get("name", "")
            if self.asset_pattern.search(name):
                url = asset.get("browser_download_url")
                if url:
                    self._logger.verbose("RELEASE", f"Matched asset: {name}")
                    return url
        return None

    def fetch_release(self, target_version: str | None = None) -> ReleaseInfo:
        """Fetch version and installer URL for the latest or a pinned release.

        Args:
            target_version: Exact version to look up ("0.28.4" or "v0.28.4").
                None means the latest release.

        Returns:
            ReleaseInfo. ``version`` is None when the pinned tag does not
            exist or no attempt returned usable metadata; ``download_url``
            is None when no asset matched the installer pattern.

        Example:
            Latest release:
                ```python
                release = oracle.fetch_release()
                # ReleaseInfo(version='0.28.4', download_url='https://github.com/...msi')
                ```

        """
        target = normalize_version(target_version)
        if target:
            url = f"{self.api_url}/tags/v{target}"
        else:
            url = f"{self.api_url}/latest"

        version: str | None = None
        for attempt in range(1, MAX_ATTEMPTS + 1):
            self._logger.verbose(
                "RELEASE", f"GET {url} (attempt {attempt}/{MAX_ATTEMPTS})"
            )
            try:
                response = requests.get(url, headers=self._headers(), timeout=self.timeout)
            except requests.exceptions.RequestException as err:
                self._logger.warning("RELEASE", f"Release lookup failed: {err}")
                self._backoff(attempt)
                continue

            if response.status_code == 404 and target:
                self._logger.warning("RELEASE", f"Version {target} does not exist")
                return ReleaseInfo(version=None, download_url=None)

            if not response.ok:
                self._logger.warning(
                    "RELEASE",
                    f"Release API returned {response.status_code} {response.reason}",
                )
                self._backoff(attempt)
                continue

            try:
                data = response.json()
            except ValueError as err:
                self._logger.warning("RELEASE", f"Invalid JSON from release API: {err}")
                self._backoff(attempt)
                continue

            version = normalize_version(data.get("tag_name") or "") or version
            download_url = self._match_asset(data.get("assets") or [])
            if download_url:
                self._logger.info("RELEASE", f"Release {version}: {download_url}")
                return ReleaseInfo(version=version, download_url=download_url)

            self._logger.warning(
                "RELEASE",
                f"Release {version} has no asset matching "
                f"{self.asset_pattern.pattern!r} yet",
            )
            self._backoff(attempt)

        self._logger.error(
            "RELEASE", f"No installer URL after {MAX_ATTEMPTS} attempts"
        )
        return ReleaseInfo(version=version, download_url=None)

    def _backoff(self, attempt: int) -> None:
        if attempt < MAX_ATTEMPTS:
            self._sleep(BACKOFF_SECONDS * attempt)
