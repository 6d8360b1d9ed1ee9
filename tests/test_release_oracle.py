"""
Tests for meshdeploy.discovery.github_release module.

Tests release lookup including:
- Latest and pinned endpoints
- Installer asset selection
- Retry with backoff on transient failures
- 404 on a pinned version short-circuits retries
- Exhausted asset retries return the version without a URL
"""

from __future__ import annotations

import pytest
import requests
import requests_mock

from meshdeploy.discovery import ReleaseOracle
from meshdeploy.discovery.github_release import MAX_ATTEMPTS

pytestmark = pytest.mark.unit

API = "https://api.github.com/repos/netbirdio/netbird/releases"
PATTERN = r"netbird_installer_[0-9.]+_windows_amd64\.msi$"
MSI_URL = (
    "https://github.com/netbirdio/netbird/releases/download/v0.28.4/"
    "netbird_installer_0.28.4_windows_amd64.msi"
)


def _release(tag: str = "v0.28.4", with_msi: bool = True) -> dict:
    assets = [
        {
            "name": "netbird_0.28.4_linux_amd64.tar.gz",
            "browser_download_url": "https://example.com/linux.tar.gz",
        },
        {
            "name": "netbird_installer_0.28.4_windows_amd64.exe",
            "browser_download_url": "https://example.com/setup.exe",
        },
    ]
    if with_msi:
        assets.append(
            {
                "name": "netbird_installer_0.28.4_windows_amd64.msi",
                "browser_download_url": MSI_URL,
            }
        )
    return {"tag_name": tag, "assets": assets}


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def oracle(sleeps) -> ReleaseOracle:
    return ReleaseOracle(API, PATTERN, sleep=sleeps.append)


class TestFetchRelease:
    """Tests for ReleaseOracle.fetch_release."""

    def test_latest_release(self, oracle, sleeps):
        """Test latest release with a matching MSI asset."""
        with requests_mock.Mocker() as m:
            m.get(f"{API}/latest", json=_release())
            release = oracle.fetch_release()

        assert release.version == "0.28.4"
        assert release.download_url == MSI_URL
        assert sleeps == []

    def test_pinned_release_uses_tag_endpoint(self, oracle):
        """Test that a pinned version queries /tags/v<version>."""
        with requests_mock.Mocker() as m:
            m.get(f"{API}/tags/v0.28.4", json=_release())
            release = oracle.fetch_release("v0.28.4")

            assert m.call_count == 1
            assert m.request_history[0].url == f"{API}/tags/v0.28.4"

        assert release.version == "0.28.4"

    def test_pinned_404_makes_one_call(self, oracle, sleeps):
        """Test that a missing pinned version is not retried."""
        with requests_mock.Mocker() as m:
            m.get(f"{API}/tags/v9.9.9", status_code=404, json={"message": "Not Found"})
            release = oracle.fetch_release("9.9.9")

            assert m.call_count == 1

        assert release.version is None
        assert release.download_url is None
        assert sleeps == []

    def test_latest_404_is_retried(self, oracle, sleeps):
        """Test that 404 on the latest endpoint counts as transient."""
        with requests_mock.Mocker() as m:
            m.get(f"{API}/latest", status_code=404)
            release = oracle.fetch_release()

            assert m.call_count == MAX_ATTEMPTS

        assert release.version is None
        assert release.download_url is None
        assert sleeps == [5, 10]

    def test_server_error_then_success(self, oracle, sleeps):
        """Test retry after a 5xx response."""
        with requests_mock.Mocker() as m:
            m.get(
                f"{API}/latest",
                [{"status_code": 502}, {"json": _release()}],
            )
            release = oracle.fetch_release()

            assert m.call_count == 2

        assert release.download_url == MSI_URL
        assert sleeps == [5]

    def test_connection_error_is_retried(self, oracle, sleeps):
        with requests_mock.Mocker() as m:
            m.get(
                f"{API}/latest",
                [
                    {"exc": requests.exceptions.ConnectTimeout},
                    {"json": _release()},
                ],
            )
            release = oracle.fetch_release()

        assert release.version == "0.28.4"
        assert sleeps == [5]

    def test_missing_asset_retries_then_returns_version(self, oracle, sleeps):
        """Test that an incomplete asset list is retried, then URL is None."""
        with requests_mock.Mocker() as m:
            m.get(f"{API}/latest", json=_release(with_msi=False))
            release = oracle.fetch_release()

            assert m.call_count == MAX_ATTEMPTS

        assert release.version == "0.28.4"
        assert release.download_url is None
        assert sleeps == [5, 10]

    def test_asset_appears_on_retry(self, oracle):
        with requests_mock.Mocker() as m:
            m.get(
                f"{API}/latest",
                [{"json": _release(with_msi=False)}, {"json": _release()}],
            )
            release = oracle.fetch_release()

        assert release.download_url == MSI_URL

    def test_token_sent_as_authorization(self, sleeps):
        oracle = ReleaseOracle(API, PATTERN, token="ghp_secret", sleep=sleeps.append)
        with requests_mock.Mocker() as m:
            m.get(f"{API}/latest", json=_release())
            oracle.fetch_release()

            assert m.request_history[0].headers["Authorization"] == "token ghp_secret"

    def test_from_config(self, deploy_config):
        oracle = ReleaseOracle.from_config(deploy_config)
        assert oracle.api_url == deploy_config.releases_api_url
        assert oracle.asset_pattern.pattern == deploy_config.asset_pattern
