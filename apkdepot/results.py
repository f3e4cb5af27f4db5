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

"""Public API return types for APK Depot.

This module defines dataclasses for return values from the query and
ingestion functions in apkdepot.core. Each type knows how to render itself
as the JSON payload served to device and admin clients (to_dict), so the
HTTP and CLI layers never build response dicts by hand.

All dataclasses are frozen (immutable) to prevent accidental mutation of
return values.

Example:
    Using result types:
        ```python
        from apkdepot.core import check_update

        decision = check_update(store, "com.example.app", 9, "device-42")
        if decision.has_update:
            print(decision.version_name, decision.force)
        print(decision.to_dict())  # {"hasUpdate": True, "force": False, ...}
        ```

Note:
    Only public API return types belong in this module. Domain types
    (like ReleasePolicy and PackageInfo) remain co-located with their
    related logic.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class UpdateDecision:
    """Result of a check-update query.

    Attributes:
        has_update: True if this device should be offered an update now.
        force: True if the update is mandatory (client below force baseline).
        version_code: Target version code (None when no update).
        version_name: Target version name (None when no update).
        download_url: Reference to the latest artifact (None when no update).
    """

    has_update: bool
    force: bool = False
    version_code: int | None = None
    version_name: str | None = None
    download_url: str | None = None

    def to_dict(self) -> dict[str, Any]:
        if not self.has_update:
            return {"hasUpdate": False}
        return {
            "hasUpdate": True,
            "force": self.force,
            "versionCode": self.version_code,
            "versionName": self.version_name,
            "downloadUrl": self.download_url,
        }


@dataclass(frozen=True)
class VersionEntry:
    """One stored binary of a package, as shown in the version list.

    Attributes:
        file_name: Canonical artifact name.
        version_code: Version code reported by the package inspector.
        version_name: Version name reported by the package inspector.
        size: Size in bytes.
        file_size: Human-readable size (e.g. "12.34 MB").
        upload_time: Modification date of the stored file (YYYY-MM-DD).
    """

    file_name: str
    version_code: int
    version_name: str
    size: int
    file_size: str
    upload_time: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "fileName": self.file_name,
            "versionCode": self.version_code,
            "versionName": self.version_name,
            "fileSize": self.file_size,
            "uploadTime": self.upload_time,
        }


@dataclass(frozen=True)
class VersionList:
    """Result of a list-versions query.

    Attributes:
        package_name: Package that was listed.
        min_force_version_code: Force baseline from the package's policy
            (0 when no policy exists), so clients can compute forced-update
            status against any listed version.
        versions: Stored binaries, newest version code first.
    """

    package_name: str
    min_force_version_code: int
    versions: list[VersionEntry]

    def to_dict(self) -> dict[str, Any]:
        return {
            "minForceVersionCode": self.min_force_version_code,
            "versions": [v.to_dict() for v in self.versions],
        }


@dataclass(frozen=True)
class CatalogEntry:
    """One stored binary in the admin catalog, enriched with policy info.

    Attributes:
        file_name: Canonical artifact name.
        app_name: Application label from the manifest.
        package_name: Package identifier.
        version_name: Version name.
        version_code: Version code.
        size: Size in bytes.
        file_size: Human-readable size.
        icon_base64: Base64-encoded icon, or empty string when unavailable.
        upload_time: Modification time (YYYY-MM-DD HH:MM:SS).
        modified: Modification time as a POSIX timestamp (sort key).
        rollout_rate: Rollout rate of the package's policy (0 if none).
        min_force_version_code: Force baseline of the package's policy.
    """

    file_name: str
    app_name: str
    package_name: str
    version_name: str
    version_code: int
    size: int
    file_size: str
    icon_base64: str
    upload_time: str
    modified: float
    rollout_rate: int
    min_force_version_code: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "fileName": self.file_name,
            "appName": self.app_name,
            "packageName": self.package_name,
            "versionName": self.version_name,
            "versionCode": self.version_code,
            "fileSize": self.file_size,
            "iconBase64": self.icon_base64,
            "uploadTime": self.upload_time,
            "rolloutRate": self.rollout_rate,
            "minForceVersionCode": self.min_force_version_code,
        }


@dataclass(frozen=True)
class IngestResult:
    """Result from ingesting an uploaded binary.

    Attributes:
        package_name: Package identifier reported by the inspector.
        version_code: Ingested version code.
        version_name: Ingested version name.
        saved_as: Canonical artifact name the binary was stored under.
        became_latest: True if the ingestion moved the latest pointer.
        persisted: False if the policy snapshot could not be written.
    """

    package_name: str
    version_code: int
    version_name: str
    saved_as: str
    became_latest: bool
    persisted: bool

    def to_dict(self) -> dict[str, Any]:
        return {"message": "Upload successful", "savedAs": self.saved_as}
