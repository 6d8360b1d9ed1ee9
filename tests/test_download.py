"""
Tests for meshdeploy.io.download module.

Tests installer download including:
- Streaming download with SHA-256
- Redirect handling and file naming
- Checksum validation
- HTML error pages and HTTP errors
"""

from __future__ import annotations

import hashlib
from pathlib import Path

import pytest
import requests_mock

from meshdeploy.exceptions import NetworkError
from meshdeploy.io.download import download_file, make_session

pytestmark = pytest.mark.unit


def _sha256(data: bytes) -> str:
    """Helper to compute SHA-256 hash."""
    return hashlib.sha256(data).hexdigest()


def test_download_success(tmp_test_dir: Path) -> None:
    """Test basic successful download."""
    url = "https://example.com/netbird_installer_0.28.4_windows_amd64.msi"
    data = b"fake msi payload"

    with requests_mock.Mocker() as m:
        m.get(url, content=data, headers={"Content-Length": str(len(data))})
        path, digest = download_file(url, tmp_test_dir)

    assert path == tmp_test_dir / "netbird_installer_0.28.4_windows_amd64.msi"
    assert path.read_bytes() == data
    assert digest == _sha256(data)
    assert not path.with_suffix(".msi.part").exists()


def test_follows_redirect_and_uses_final_url_name(tmp_test_dir: Path) -> None:
    """Test that GitHub-style redirects are followed and the final name is used."""
    start = "https://github.com/netbirdio/netbird/releases/download/v0.28.4/asset"
    final = "https://objects.githubusercontent.com/netbird_installer_0.28.4_windows_amd64.msi"

    with requests_mock.Mocker() as m:
        m.get(start, status_code=302, headers={"Location": final})
        m.get(final, content=b"abc")
        path, _ = download_file(start, tmp_test_dir)

    assert path.name == "netbird_installer_0.28.4_windows_amd64.msi"


def test_content_disposition_filename(tmp_test_dir: Path) -> None:
    """Test that Content-Disposition overrides the URL filename."""
    url = "https://example.com/dl"

    with requests_mock.Mocker() as m:
        m.get(
            url,
            content=b"abc",
            headers={"Content-Disposition": 'attachment; filename="netbird.msi"'},
        )
        path, _ = download_file(url, tmp_test_dir)

    assert path.name == "netbird.msi"


def test_checksum_match(tmp_test_dir: Path) -> None:
    url = "https://example.com/netbird.msi"
    data = b"payload"

    with requests_mock.Mocker() as m:
        m.get(url, content=data)
        path, digest = download_file(url, tmp_test_dir, expected_sha256=_sha256(data).upper())

    assert path.exists()
    assert digest == _sha256(data)


def test_checksum_mismatch_raises_and_cleans_file(tmp_test_dir: Path) -> None:
    """Test that checksum mismatches raise and remove the file."""
    url = "https://example.com/netbird.msi"

    with requests_mock.Mocker() as m:
        m.get(url, content=b"wrong")
        with pytest.raises(NetworkError, match="sha256 mismatch"):
            download_file(url, tmp_test_dir, expected_sha256="00" * 32)

    assert not (tmp_test_dir / "netbird.msi").exists()


def test_html_response_rejected(tmp_test_dir: Path) -> None:
    """Test that an HTML error page is not saved as an installer."""
    url = "https://example.com/netbird.msi"

    with requests_mock.Mocker() as m:
        m.get(url, text="<html>login</html>", headers={"Content-Type": "text/html"})
        with pytest.raises(NetworkError, match="content-type"):
            download_file(url, tmp_test_dir)


def test_http_error_raises(tmp_test_dir: Path) -> None:
    url = "https://example.com/netbird.msi"

    with requests_mock.Mocker() as m:
        m.get(url, status_code=403)
        with pytest.raises(NetworkError, match="Download failed"):
            download_file(url, tmp_test_dir)


def test_creates_destination_folder(tmp_test_dir: Path) -> None:
    url = "https://example.com/netbird.msi"
    dest = tmp_test_dir / "nested" / "downloads"

    with requests_mock.Mocker() as m:
        m.get(url, content=b"x")
        path, _ = download_file(url, dest)

    assert path.parent == dest


def test_session_user_agent() -> None:
    from meshdeploy import __version__

    session = make_session()
    assert session.headers["User-Agent"] == f"meshdeploy/{__version__}"
