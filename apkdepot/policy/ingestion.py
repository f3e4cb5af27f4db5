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

"""Artifact identity and latest-pointer policy for APK Depot.

Two rules keep the catalog consistent as binaries are ingested:

1. A stored binary is named from (package name, version code) only, never
   from the uploaded filename. Re-uploading the same pair overwrites the
   previous binary; different version codes never collide.
2. The policy's latest-version fields move only when the ingested version
   code is greater than or equal to the stored one. A package seen for the
   first time has a stored latest of 0, so its first ingestion always wins.

Example:
    Compute a stored name and advance the pointer:

        from apkdepot.policy.ingestion import advance_latest, canonical_artifact_name

        name = canonical_artifact_name("com.example.app", 102)
        # "com.example.app_102.apk"

        store.update_or_create(
            "com.example.app",
            advance_latest(102, "1.0.2", name),
        )

"""

from __future__ import annotations

from dataclasses import replace

from apkdepot.exceptions import ValidationError
from apkdepot.state.store import PolicyMutator, ReleasePolicy

ARTIFACT_SUFFIX = ".apk"


def canonical_artifact_name(package_name: str, version_code: int) -> str:
    """Return the stored artifact name for a (package, version code) pair.

    Args:
        package_name: Package identifier from the manifest.
        version_code: Version code from the manifest.

    Returns:
        "<package_name>_<version_code>.apk".

    Raises:
        ValidationError: If the package name is empty or could escape the
            storage directory, or the version code is negative.

    """
    if not package_name or not package_name.strip():
        raise ValidationError("package name must not be empty")
    if "/" in package_name or "\\" in package_name or ".." in package_name:
        raise ValidationError(f"invalid package name: {package_name!r}")
    if version_code < 0:
        raise ValidationError(f"version code must not be negative: {version_code}")
    return f"{package_name}_{version_code}{ARTIFACT_SUFFIX}"


def is_artifact_name(file_name: str) -> bool:
    """Return True for names the catalog should enumerate."""
    return file_name.endswith(ARTIFACT_SUFFIX) and not file_name.startswith(".")


def advance_latest(
    version_code: int, version_name: str, file_name: str
) -> PolicyMutator:
    """Build a mutator that moves the latest pointer forward only.

    Args:
        version_code: Ingested version code.
        version_name: Ingested version name.
        file_name: Canonical artifact name of the ingested binary.

    Returns:
        A mutator for PolicyStore.update_or_create. Admin fields
        (min_force_version_code, rollout_rate) are never touched.

    """

    def _apply(policy: ReleasePolicy) -> ReleasePolicy:
        if version_code < policy.latest_version_code:
            return policy
        return replace(
            policy,
            latest_version_code=version_code,
            latest_version_name=version_name,
            latest_file_name=file_name,
        )

    return _apply
