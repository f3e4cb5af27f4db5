"""
Tests for apkdepot.inspector module.

The pyaxmlparser APK class is replaced with a stub so these tests do not
need real Android binaries.
"""

from __future__ import annotations

from pathlib import Path
import zipfile

import pytest

from apkdepot import inspector as inspector_module
from apkdepot.exceptions import UnparsablePackage
from apkdepot.inspector import ApkInspector, PackageInfo


class _StubAPK:
    """Stand-in for pyaxmlparser.APK with fixed manifest values."""

    manifest: dict = {}

    def __init__(self, path: str):
        self.path = path
        if self.manifest.get("raise"):
            raise self.manifest["raise"]

    def __getattr__(self, name):
        value = self.manifest.get(name)
        if isinstance(value, Exception):
            raise value
        return value


@pytest.fixture
def stub_apk(monkeypatch):
    def _install(**manifest):
        stub = type("StubAPK", (_StubAPK,), {"manifest": manifest})
        monkeypatch.setattr(inspector_module, "APK", stub)

    return _install


@pytest.fixture
def apk_file(tmp_test_dir: Path) -> Path:
    path = tmp_test_dir / "app.apk"
    path.write_bytes(b"PK\x03\x04")
    return path


def test_reads_identity(stub_apk, apk_file):
    stub_apk(
        package="com.example.app",
        version_code="42",
        version_name="4.2.0",
        application="Example",
        icon_data=b"\x89PNG",
    )

    info = ApkInspector().inspect(apk_file)

    assert info == PackageInfo(
        package_name="com.example.app",
        version_code=42,
        version_name="4.2.0",
        app_name="Example",
        icon=b"\x89PNG",
    )
    assert info.icon_base64() == "iVBORw=="


def test_without_icon(stub_apk, apk_file):
    stub_apk(package="p", version_code=1, version_name="1", icon_data=b"x")

    info = ApkInspector(with_icon=False).inspect(apk_file)

    assert info.icon is None
    assert info.icon_base64() == ""


def test_label_failure_is_not_fatal(stub_apk, apk_file):
    """Test that cosmetic fields failing still yields the identity."""
    stub_apk(
        package="p",
        version_code=3,
        version_name="0.3",
        application=KeyError("no resources"),
    )

    info = ApkInspector().inspect(apk_file)

    assert info.version_code == 3
    assert info.app_name == ""


def test_parse_failure_raises_unparsable(stub_apk, apk_file):
    stub_apk(**{"raise": ValueError("bad zip")})

    with pytest.raises(UnparsablePackage, match="bad zip"):
        ApkInspector().inspect(apk_file)


@pytest.mark.parametrize(
    "error", [zipfile.BadZipFile("not a zip"), KeyError("AndroidManifest.xml")]
)
def test_parser_errors_become_unparsable(stub_apk, apk_file, error):
    stub_apk(**{"raise": error})

    with pytest.raises(UnparsablePackage) as exc:
        ApkInspector().inspect(apk_file)

    assert exc.value.__cause__ is error


def test_unexpected_errors_propagate(stub_apk, apk_file):
    """Test that programming errors are not reported as bad uploads."""
    stub_apk(**{"raise": RuntimeError("bug")})

    with pytest.raises(RuntimeError, match="bug"):
        ApkInspector().inspect(apk_file)


def test_missing_package_name(stub_apk, apk_file):
    stub_apk(package="", version_code=1)

    with pytest.raises(UnparsablePackage, match="no package name"):
        ApkInspector().inspect(apk_file)


@pytest.mark.parametrize("code", [None, "1.0", "abc"])
def test_invalid_version_code(stub_apk, apk_file, code):
    stub_apk(package="p", version_code=code)

    with pytest.raises(UnparsablePackage, match="versionCode"):
        ApkInspector().inspect(apk_file)


def test_missing_file(tmp_test_dir):
    with pytest.raises(UnparsablePackage, match="not found"):
        ApkInspector().inspect(tmp_test_dir / "missing.apk")


def test_real_parser_rejects_garbage(apk_file):
    """Test the real pyaxmlparser path on a file that is not an APK."""
    apk_file.write_bytes(b"definitely not a zip archive")

    with pytest.raises(UnparsablePackage):
        ApkInspector().inspect(apk_file)
