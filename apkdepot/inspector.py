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

"""APK manifest inspection for APK Depot.

This module extracts the package identity (package name, version code,
version name) plus the application label and icon from an APK file. The
binary AndroidManifest.xml decoding itself is delegated to pyaxmlparser.

The rest of the service talks to the PackageInspector protocol rather than
to pyaxmlparser directly, so tests and alternative backends can provide
their own inspector.

Example:
    Inspect an APK:

        from pathlib import Path
        from apkdepot.inspector import ApkInspector

        info = ApkInspector().inspect(Path("apks/com.example.app_102.apk"))
        print(f"{info.package_name} {info.version_name} ({info.version_code})")

    Error handling:

        try:
            info = ApkInspector().inspect(Path("not-an-apk.zip"))
        except UnparsablePackage as e:
            print(f"Rejected: {e}")

Note:
    This is pure file introspection; no network calls are made. Errors from
    the parser are chained for debugging (check 'from err' clause).

"""

from __future__ import annotations

import base64
from dataclasses import dataclass
from pathlib import Path
import struct
from typing import Protocol
import zipfile

from pyaxmlparser import APK
from pyaxmlparser.core import Error as AxmlError

from apkdepot.exceptions import UnparsablePackage
from apkdepot.logging import get_global_logger

# Failures pyaxmlparser surfaces for damaged or non-APK input. lxml's
# XMLSyntaxError derives from SyntaxError.
_PARSE_ERRORS = (
    AxmlError,
    zipfile.BadZipFile,
    OSError,
    KeyError,
    IndexError,
    ValueError,
    struct.error,
    SyntaxError,
)
# Label lookups can hit a missing resource table, which pyaxmlparser
# leaves as None.
_COSMETIC_ERRORS = _PARSE_ERRORS + (AttributeError, TypeError)


@dataclass(frozen=True)
class PackageInfo:
    """Identity and display metadata read from an APK manifest.

    Attributes:
        package_name: Package identifier (e.g., "com.example.app").
        version_code: Integer ordering key of the release.
        version_name: Human-readable version (e.g., "1.0.2").
        app_name: Application label, empty if the manifest has none.
        icon: Raw icon bytes, or None if no icon could be read.

    """

    package_name: str
    version_code: int
    version_name: str
    app_name: str = ""
    icon: bytes | None = None

    def icon_base64(self) -> str:
        """Return the icon as base64 text, or "" when there is none."""
        if not self.icon:
            return ""
        return base64.b64encode(self.icon).decode("ascii")


class PackageInspector(Protocol):
    """Protocol for package inspector implementations."""

    def inspect(self, path: Path) -> PackageInfo:
        """Read package identity from a binary.

        Args:
            path: Path to the binary on disk.

        Returns:
            The package's identity and display metadata.

        Raises:
            UnparsablePackage: If the binary cannot be decoded.
        """
        ...


class ApkInspector:
    """PackageInspector backed by pyaxmlparser.

    Args:
        with_icon: If False, skip icon extraction (cheaper for listings
            that do not show icons).

    """

    def __init__(self, with_icon: bool = True) -> None:
        self.with_icon = with_icon

    def inspect(self, path: Path) -> PackageInfo:
        logger = get_global_logger()
        p = Path(path)
        if not p.is_file():
            raise UnparsablePackage(f"APK not found: {p}")

        logger.debug("INSPECT", f"Parsing manifest: {p.name}")
        try:
            apk = APK(str(p))
            package_name = apk.package
            raw_code = apk.version_code
            version_name = apk.version_name or ""
        except _PARSE_ERRORS as err:
            raise UnparsablePackage(f"could not parse {p.name}: {err}") from err

        if not package_name:
            raise UnparsablePackage(f"{p.name} has no package name")
        try:
            version_code = int(raw_code)
        except (TypeError, ValueError) as err:
            raise UnparsablePackage(
                f"{p.name} has an invalid versionCode: {raw_code!r}"
            ) from err

        app_name = ""
        icon: bytes | None = None
        try:
            app_name = apk.application or ""
            if self.with_icon:
                icon = apk.icon_data
        except _COSMETIC_ERRORS as err:
            # Label and icon are cosmetic; identity was already read.
            logger.debug("INSPECT", f"No label/icon for {p.name}: {err}")

        logger.verbose(
            "INSPECT", f"{p.name}: {package_name} {version_name} ({version_code})"
        )
        return PackageInfo(
            package_name=package_name,
            version_code=version_code,
            version_name=version_name,
            app_name=app_name,
            icon=icon or None,
        )
