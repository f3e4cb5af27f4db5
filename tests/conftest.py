"""
Pytest configuration and shared fixtures for APK Depot tests.

This module provides reusable fixtures and test utilities used across
the test suite. Real APK parsing is covered in test_inspector.py; every
other test uses FakeInspector, which reads a small JSON manifest from the
"APK" file instead of a binary AndroidManifest.xml.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest
import yaml

from apkdepot.exceptions import UnparsablePackage
from apkdepot.inspector import PackageInfo
from apkdepot.io.storage import ArtifactStore
from apkdepot.logging import SilentLogger, set_global_logger
from apkdepot.state import PolicyStore


class FakeInspector:
    """PackageInspector reading JSON manifests written by make_apk."""

    def __init__(self) -> None:
        self.calls: list[Path] = []

    def inspect(self, path: Path) -> PackageInfo:
        self.calls.append(Path(path))
        try:
            data = json.loads(Path(path).read_text(encoding="utf-8"))
            return PackageInfo(
                package_name=data["package"],
                version_code=int(data["versionCode"]),
                version_name=data.get("versionName", ""),
                app_name=data.get("label", ""),
                icon=data.get("icon", "").encode("utf-8") or None,
            )
        except (OSError, ValueError, KeyError, TypeError) as err:
            raise UnparsablePackage(f"could not parse {Path(path).name}: {err}") from err


@pytest.fixture(autouse=True)
def silent_global_logger():
    """Reset the global logger after each test (CLI commands replace it)."""
    yield
    set_global_logger(SilentLogger())


@pytest.fixture
def tmp_test_dir(tmp_path: Path) -> Path:
    """
    Provide a temporary directory for test artifacts.

    Automatically cleaned up after test completion.
    """
    return tmp_path


@pytest.fixture
def inspector() -> FakeInspector:
    return FakeInspector()


@pytest.fixture
def store() -> PolicyStore:
    """Provide an empty policy store."""
    return PolicyStore()


@pytest.fixture
def apk_dir(tmp_test_dir: Path) -> Path:
    path = tmp_test_dir / "apks"
    path.mkdir()
    return path


@pytest.fixture
def artifacts(apk_dir: Path) -> ArtifactStore:
    return ArtifactStore(apk_dir)


@pytest.fixture
def make_apk(tmp_test_dir: Path):
    """
    Factory fixture for creating fake APK files.

    Usage:
        path = make_apk("com.example.app", 42, "4.2.0")
        path = make_apk("com.example.app", 42, directory=apk_dir, filename="x.apk")
    """
    uploads = tmp_test_dir / "uploads"

    def _create(
        package: str,
        version_code: int,
        version_name: str = "",
        *,
        label: str = "",
        icon: str = "",
        directory: Path | None = None,
        filename: str | None = None,
    ) -> Path:
        folder = directory or uploads
        folder.mkdir(parents=True, exist_ok=True)
        path = folder / (filename or f"upload-{package}-{version_code}.apk")
        manifest: dict[str, Any] = {
            "package": package,
            "versionCode": version_code,
            "versionName": version_name or f"{version_code}.0",
            "label": label,
            "icon": icon,
        }
        path.write_text(json.dumps(manifest), encoding="utf-8")
        return path

    return _create


@pytest.fixture
def create_yaml_file(tmp_test_dir: Path):
    """
    Factory fixture for creating temporary YAML files.

    Usage:
        yaml_path = create_yaml_file("depot.yaml", {"server": {"port": 9000}})
    """

    def _create(filename: str, data: dict[str, Any]) -> Path:
        path = tmp_test_dir / filename
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("w", encoding="utf-8") as f:
            yaml.dump(data, f)
        return path

    return _create
