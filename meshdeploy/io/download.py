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
Installer download for meshdeploy.

Downloads the client MSI selected by the release oracle into a local
staging folder.

Features:
- Retrying session (urllib3 Retry) for transient 429/5xx responses
- Streaming download with SHA-256 computed while writing
- Atomic write: data lands in ``<name>.part`` and is renamed on success,
  so msiexec never sees a truncated package
- Optional checksum validation (file removed on mismatch)
- File name from Content-Disposition, else from the final (post-redirect) URL

Example:
    >>> from pathlib import Path
    >>> from meshdeploy.io import download_file
    >>> path, sha256 = download_file(
    ...     "https://github.com/netbirdio/netbird/releases/download/v0.28.4/netbird_installer_0.28.4_windows_amd64.msi",
    ...     Path("./downloads"),
    ... )

Notes:
- GitHub release assets redirect to objects.githubusercontent.com; the
  final URL's name is the asset name.
- Timeouts are per-request, not total download time.
"""

from __future__ import annotations

import hashlib
from pathlib import Path
from urllib.parse import urlparse

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from meshdeploy import __version__
from meshdeploy.exceptions import NetworkError

# Stream size per chunk (1 MiB).
DEFAULT_CHUNK = 1024 * 1024


def _filename_from_cd(content_disposition: str) -> str | None:
    """
    Extract a filename from a Content-Disposition header if present.

    Example header:
      'attachment; filename="netbird_installer_0.28.4_windows_amd64.msi"'
    """
    if not content_disposition:
        return None
    for part in (s.strip() for s in content_disposition.split(";")):
        if part.lower().startswith("filename="):
            value = part.split("=", 1)[1].strip().strip('"')
            return value or None
    return None


def _filename_from_url(url: str) -> str:
    name = Path(urlparse(url).path).name
    return name or "installer.msi"


def make_session() -> requests.Session:
    """
    Create a requests.Session with retry/backoff defaults.

    - Retries on common transient status codes with exponential backoff.
    - Identifies meshdeploy in the User-Agent.
    """
    s = requests.Session()
    retries = Retry(
        total=5,
        backoff_factor=0.5,
        status_forcelist=(429, 500, 502, 503, 504),
        allowed_methods=("GET", "HEAD"),
        raise_on_status=False,
    )
    s.headers.update({"User-Agent": f"meshdeploy/{__version__}"})
    s.mount("http://", HTTPAdapter(max_retries=retries))
    s.mount("https://", HTTPAdapter(max_retries=retries))
    return s


def download_file(
    url: str,
    destination_folder: Path,
    *,
    expected_sha256: str | None = None,
    timeout: int = 60,
) -> tuple[Path, str]:
    """Download a URL to destination_folder atomically.

    Args:
        url: Source URL.
        destination_folder: Folder to save into (created if missing).
        expected_sha256: Optional known SHA-256 (hex). If set and mismatched,
            the file is deleted and NetworkError is raised.
        timeout: Per-request timeout (seconds).

    Returns:
        A tuple (file_path, sha256_hex).

    Raises:
        NetworkError: For connection errors, non-2xx responses (after
            retries), HTML error pages, or checksum mismatch.
    """
    from meshdeploy.logging import get_global_logger

    logger = get_global_logger()
    destination_folder = Path(destination_folder)
    destination_folder.mkdir(parents=True, exist_ok=True)

    logger.verbose("DOWNLOAD", f"GET {url}")

    with make_session() as session:
        try:
            resp = session.get(url, stream=True, allow_redirects=True, timeout=timeout)
            resp.raise_for_status()
        except requests.RequestException as err:
            raise NetworkError(f"Download failed for {url}: {err}") from err

        for hist in resp.history:
            logger.debug(
                "DOWNLOAD",
                f"Redirect {hist.status_code} -> {hist.headers.get('Location', 'unknown')}",
            )

        ctype = resp.headers.get("Content-Type", "")
        if "text/html" in ctype.lower():
            resp.close()
            raise NetworkError(f"Expected an installer, got content-type={ctype}")

        cd_name = _filename_from_cd(resp.headers.get("Content-Disposition", ""))
        filename = cd_name or _filename_from_url(resp.url)
        target = destination_folder / filename
        tmp = target.with_suffix(target.suffix + ".part")

        sha = hashlib.sha256()
        try:
            with tmp.open("wb") as f:
                for chunk in resp.iter_content(chunk_size=DEFAULT_CHUNK):
                    if not chunk:
                        continue
                    f.write(chunk)
                    sha.update(chunk)
        except requests.RequestException as err:
            tmp.unlink(missing_ok=True)
            raise NetworkError(f"Download interrupted for {url}: {err}") from err
        finally:
            resp.close()

    digest = sha.hexdigest()
    tmp.replace(target)

    if expected_sha256 and digest.lower() != expected_sha256.lower():
        target.unlink(missing_ok=True)
        raise NetworkError(
            f"sha256 mismatch for {filename}: got {digest}, expected {expected_sha256}"
        )

    logger.info("DOWNLOAD", f"Downloaded {target.name} ({digest[:12]}...)")
    return target, digest
