"""
Remote APK fetch for APK Depot.

Lets an operator ingest a binary straight from a URL (a CI artifact, a
vendor release page) instead of uploading it by hand. The fetched file is
only a staging copy: ingestion renames it to the canonical
<package>_<versionCode>.apk name, so the name chosen here does not matter
beyond being unique within the staging directory.

Key Features:

- **Retry Logic with Exponential Backoff** - Retries transient failures (429, 500, 502, 503, 504) via urllib3.util.Retry.
- **Atomic Writes** - Streams into a .part file and renames on success.
- **Integrity Verification** - SHA-256 computed while streaming, with optional expected checksum.
- **Size Cap** - Aborts once the body exceeds the configured upload limit.

Example:
    >>> from pathlib import Path
    >>> from apkdepot.io import fetch_apk
    >>> path, sha256 = fetch_apk(
    ...     "https://ci.example.com/builds/app-release.apk",
    ...     Path("./staging"),
    ... )

Notes:
- All HTTP errors are re-raised as NetworkError, chained for debugging
- Timeouts are per-request, not total download time
"""

from __future__ import annotations

import hashlib
from pathlib import Path
from urllib.parse import urlparse

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from apkdepot import __version__
from apkdepot.exceptions import NetworkError
from apkdepot.logging import get_global_logger

# Stream size per chunk (1 MiB).
DEFAULT_CHUNK = 1024 * 1024


def _filename_from_url(url: str) -> str:
    """
    Derive a filename from the URL path. Fallback to a generic name if empty.
    """
    name = Path(urlparse(url).path).name
    return name or "download.apk"


def make_session() -> requests.Session:
    """
    Create a requests.Session with sane retry/backoff defaults.

    - Retries on common transient status codes.
    - Applies exponential backoff.
    - Sets a User-Agent identifying the depot.
    """
    s = requests.Session()
    retries = Retry(
        total=5,
        backoff_factor=0.5,
        status_forcelist=(429, 500, 502, 503, 504),
        allowed_methods=("GET", "HEAD"),
        raise_on_status=False,
    )
    s.headers.update(
        {
            "User-Agent": f"apkdepot/{__version__}",
            # APKs are already zip-compressed
            "Accept-Encoding": "identity",
        }
    )
    s.mount("http://", HTTPAdapter(max_retries=retries))
    s.mount("https://", HTTPAdapter(max_retries=retries))
    return s


def fetch_apk(
    url: str,
    destination_folder: Path,
    *,
    expected_sha256: str | None = None,
    max_size: int | None = None,
    timeout: int = 60,
) -> tuple[Path, str]:
    """Download a URL into destination_folder for ingestion.

    Follows redirects and retries transient failures. Writes to
    <filename>.part then renames to <filename> on success.

    Args:
        url: Source URL.
        destination_folder: Staging folder (created if missing).
        expected_sha256: Optional known SHA-256 (hex). A mismatch removes
            the file and raises NetworkError.
        max_size: Optional byte limit; larger bodies are rejected.
        timeout: Per-request timeout (seconds).

    Returns:
        A tuple (file_path, sha256_hex).

    Raises:
        NetworkError: On connection failures, non-2xx responses (after
            retries), oversize bodies or checksum mismatch.

    """
    logger = get_global_logger()

    destination_folder = Path(destination_folder)
    destination_folder.mkdir(parents=True, exist_ok=True)

    logger.verbose("HTTP", f"GET {url}")

    with make_session() as session:
        try:
            resp = session.get(url, stream=True, allow_redirects=True, timeout=timeout)
        except requests.RequestException as err:
            raise NetworkError(f"download failed for {url}: {err}") from err

        try:
            resp.raise_for_status()
        except requests.HTTPError as err:
            resp.close()
            raise NetworkError(f"download failed for {url}: {err}") from err

        logger.verbose("HTTP", f"Response: {resp.status_code} {resp.reason}")

        declared = int(resp.headers.get("Content-Length", "0") or 0)
        if max_size is not None and declared > max_size:
            resp.close()
            raise NetworkError(
                f"remote file too big: {declared} bytes (limit {max_size})"
            )

        target = destination_folder / _filename_from_url(resp.url)
        tmp = target.with_suffix(target.suffix + ".part")
        logger.verbose("FILE", f"Downloading to: {tmp}")

        sha = hashlib.sha256()
        downloaded = 0
        try:
            with tmp.open("wb") as f:
                for chunk in resp.iter_content(chunk_size=DEFAULT_CHUNK):
                    if not chunk:
                        continue
                    downloaded += len(chunk)
                    if max_size is not None and downloaded > max_size:
                        raise NetworkError(
                            f"remote file too big: over {max_size} bytes"
                        )
                    f.write(chunk)
                    sha.update(chunk)
        except requests.RequestException as err:
            tmp.unlink(missing_ok=True)
            raise NetworkError(f"download interrupted for {url}: {err}") from err
        except NetworkError:
            tmp.unlink(missing_ok=True)
            raise
        finally:
            resp.close()

    digest = sha.hexdigest()
    if expected_sha256 and digest.lower() != expected_sha256.lower():
        tmp.unlink(missing_ok=True)
        raise NetworkError(
            f"sha256 mismatch for {target.name}: got {digest}, "
            f"expected {expected_sha256}"
        )

    tmp.replace(target)
    logger.verbose("FILE", f"Download complete: {target} ({digest})")
    return target, digest
