"""
Tests for apkdepot.io.download module.

Tests remote APK fetch including:
- Basic downloads and redirects
- Checksum validation
- Size limits
- HTTP and connection errors
"""

from __future__ import annotations

import hashlib
from pathlib import Path

import pytest
import requests
import requests_mock

from apkdepot.exceptions import NetworkError
from apkdepot.io.download import fetch_apk, make_session


def _sha256(data: bytes) -> str:
    """Helper to compute SHA-256 hash."""
    return hashlib.sha256(data).hexdigest()


def test_download_success(tmp_test_dir: Path) -> None:
    """Test basic successful download."""
    url = "https://ci.example.com/builds/app-release.apk"
    data = b"PK\x03\x04apk bytes"

    with requests_mock.Mocker() as m:
        m.get(url, content=data, headers={"Content-Length": str(len(data))})
        path, digest = fetch_apk(url, tmp_test_dir)

    assert path == tmp_test_dir / "app-release.apk"
    assert path.read_bytes() == data
    assert digest == _sha256(data)
    assert not path.with_suffix(".apk.part").exists()


def test_follows_redirect_and_uses_final_url_name(tmp_test_dir: Path) -> None:
    """Test that redirects are followed and final URL name is used."""
    start = "https://ci.example.com/latest"
    final = "https://cdn.example.com/app-1.2.3.apk"

    with requests_mock.Mocker() as m:
        m.get(start, status_code=302, headers={"Location": final})
        m.get(final, content=b"abc", headers={"Content-Length": "3"})
        path, _ = fetch_apk(start, tmp_test_dir)

    assert path.name == "app-1.2.3.apk"


def test_url_without_filename_gets_fallback(tmp_test_dir: Path) -> None:
    with requests_mock.Mocker() as m:
        m.get("https://ci.example.com/", content=b"abc")
        path, _ = fetch_apk("https://ci.example.com/", tmp_test_dir)

    assert path.name == "download.apk"


def test_checksum_match(tmp_test_dir: Path) -> None:
    data = b"abc"

    with requests_mock.Mocker() as m:
        m.get("https://example.com/a.apk", content=data)
        path, digest = fetch_apk(
            "https://example.com/a.apk", tmp_test_dir, expected_sha256=_sha256(data).upper()
        )

    assert path.exists()
    assert digest == _sha256(data)


def test_checksum_mismatch_raises_and_cleans_file(tmp_test_dir: Path) -> None:
    """Test that checksum mismatches raise error and clean up file."""
    url = "https://example.com/a.apk"

    with requests_mock.Mocker() as m:
        m.get(url, content=b"wrong", headers={"Content-Length": "5"})

        with pytest.raises(NetworkError, match="sha256 mismatch"):
            fetch_apk(url, tmp_test_dir, expected_sha256="00" * 32)

    assert list(tmp_test_dir.iterdir()) == []


def test_declared_size_over_limit(tmp_test_dir: Path) -> None:
    url = "https://example.com/big.apk"

    with requests_mock.Mocker() as m:
        m.get(url, content=b"x" * 10, headers={"Content-Length": "10"})

        with pytest.raises(NetworkError, match="too big"):
            fetch_apk(url, tmp_test_dir, max_size=5)

    assert list(tmp_test_dir.iterdir()) == []


def test_streamed_size_over_limit(tmp_test_dir: Path) -> None:
    """Test the limit also applies when no Content-Length is sent."""
    url = "https://example.com/big.apk"

    with requests_mock.Mocker() as m:
        m.get(url, content=b"x" * 10)

        with pytest.raises(NetworkError, match="too big"):
            fetch_apk(url, tmp_test_dir, max_size=5)

    assert list(tmp_test_dir.iterdir()) == []


def test_http_error_raises(tmp_test_dir: Path) -> None:
    url = "https://example.com/missing.apk"

    with requests_mock.Mocker() as m:
        m.get(url, status_code=404)

        with pytest.raises(NetworkError, match="download failed"):
            fetch_apk(url, tmp_test_dir)


def test_connection_error_raises(tmp_test_dir: Path) -> None:
    url = "https://unreachable.example.com/a.apk"

    with requests_mock.Mocker() as m:
        m.get(url, exc=requests.ConnectionError("refused"))

        with pytest.raises(NetworkError, match="refused"):
            fetch_apk(url, tmp_test_dir)


def test_creates_destination_folder(tmp_test_dir: Path) -> None:
    target = tmp_test_dir / "staging" / "nested"

    with requests_mock.Mocker() as m:
        m.get("https://example.com/a.apk", content=b"abc")
        path, _ = fetch_apk("https://example.com/a.apk", target)

    assert path.parent == target


def test_session_headers() -> None:
    session = make_session()

    assert session.headers["User-Agent"].startswith("apkdepot/")
    assert session.headers["Accept-Encoding"] == "identity"
