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

"""Core orchestration for APK Depot.

This module composes the policy store, the pure policy rules and the
storage/inspection collaborators into the operations served to clients.

Read Paths:

- **check_update**: one package, one device. Looks up the policy and runs
  the gray-scale decision. Never touches the filesystem.
- **list_versions**: every stored binary of one package, newest version
  code first, plus the package's force baseline.
- **list_catalog**: every stored binary, enriched with its package's
  rollout rate and force baseline, most recently modified first.

Write Paths:

- **ingest_package**: inspect -> store under the canonical name -> advance
  the latest pointer -> persist the snapshot.
- **update_policy**: set the admin rollout fields -> persist.

The three ingestion steps are independent. A crash after the binary is
stored but before the policy is updated leaves an enumerable binary that
can simply be ingested again. A persist failure keeps the in-memory change
and logs a warning; the store is then ahead of the snapshot until the next
successful persist.

Design Principles:

- The store, artifact directory and inspector are passed in explicitly;
  nothing here reads global state
- Functions return frozen dataclasses from apkdepot.results
- Errors use the apkdepot.exceptions hierarchy; the CLI and HTTP layers
  format them for display
- A broken binary on a listing path is logged and skipped, never fatal

Example:
    Programmatic usage:
        ```python
        from pathlib import Path
        from apkdepot.core import check_update, ingest_package, open_policy_store
        from apkdepot.inspector import ApkInspector
        from apkdepot.io import ArtifactStore

        store = open_policy_store(Path("metadata.json"))
        artifacts = ArtifactStore(Path("apks"))

        result = ingest_package(
            Path("app-release.apk"),
            store=store,
            artifacts=artifacts,
            inspector=ApkInspector(),
            metadata_file=Path("metadata.json"),
        )
        print(f"Saved as {result.saved_as}")

        decision = check_update(store, result.package_name, 1, "device-42")
        print(decision.to_dict())
        ```

"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from apkdepot.exceptions import StoreIOError, UnparsablePackage, ValidationError
from apkdepot.inspector import PackageInspector
from apkdepot.io.storage import ArtifactStore, format_file_size, format_timestamp
from apkdepot.logging import get_global_logger
from apkdepot.policy.ingestion import advance_latest, canonical_artifact_name
from apkdepot.policy.rollout import DEFAULT_DOWNLOAD_PREFIX, decide_update
from apkdepot.results import (
    CatalogEntry,
    IngestResult,
    UpdateDecision,
    VersionEntry,
    VersionList,
)
from apkdepot.state.store import PolicyStore, ReleasePolicy, with_rollout
from apkdepot.validation import (
    PolicyUpdateRequest,
    parse_version_code,
    require_package_name,
)


def open_policy_store(metadata_file: Path) -> PolicyStore:
    """Create the process-wide policy store and load its snapshot.

    A missing snapshot yields an empty store. An unreadable or corrupt
    snapshot also yields an empty store, with a warning, so the service
    stays available.

    Args:
        metadata_file: Path to the JSON snapshot.

    Returns:
        A loaded PolicyStore.

    """
    logger = get_global_logger()
    store = PolicyStore()
    try:
        store.load(metadata_file)
    except StoreIOError as err:
        logger.warning("STORE", f"{err}; starting with an empty policy store")
    return store


def persist_policies(store: PolicyStore, metadata_file: Path) -> bool:
    """Write the snapshot, logging instead of raising on failure.

    Returns:
        True if the snapshot was written. On False the in-memory store is
        ahead of the file until the next successful persist.

    """
    try:
        store.save(metadata_file)
    except StoreIOError as err:
        get_global_logger().warning(
            "STORE", f"Failed to persist policies (kept in memory): {err}"
        )
        return False
    return True


def ingest_package(
    staged_path: Path,
    *,
    store: PolicyStore,
    artifacts: ArtifactStore,
    inspector: PackageInspector,
    metadata_file: Path | None = None,
) -> IngestResult:
    """Accept a binary into the catalog.

    The stored name comes from the manifest's (package, version code),
    never from the uploaded filename, so uploading the same version twice
    overwrites the first copy. Older versions are stored but do not move
    the latest pointer.

    The staged file itself is left in place; callers own its cleanup.

    Args:
        staged_path: Path of the uploaded binary.
        store: Policy store to update.
        artifacts: Storage the binary is copied into.
        inspector: Package inspector used to read the manifest.
        metadata_file: Snapshot to persist to after the update. None skips
            persistence (tests, dry runs).

    Returns:
        IngestResult describing where the binary went and whether it
        became the latest version.

    Raises:
        UnparsablePackage: If the binary cannot be inspected. Nothing is
            stored and the policy is unchanged.
        ValidationError: If the manifest identity cannot form a safe name.
        StoreIOError: If the binary cannot be written to storage.

    """
    logger = get_global_logger()
    total = 4 if metadata_file is not None else 3

    logger.step(1, total, "Inspecting package...")
    info = inspector.inspect(staged_path)

    name = canonical_artifact_name(info.package_name, info.version_code)
    logger.verbose(
        "INGEST",
        f"{staged_path.name} -> {name} ({info.version_name}, code {info.version_code})",
    )

    logger.step(2, total, "Storing binary...")
    artifacts.write(staged_path, name)

    logger.step(3, total, "Updating release policy...")
    previous = store.get(info.package_name)
    updated = store.update_or_create(
        info.package_name,
        advance_latest(info.version_code, info.version_name, name),
    )
    became_latest = (
        updated.latest_version_code == info.version_code
        and updated.latest_file_name == name
    )
    if became_latest:
        old = previous.latest_version_code if previous else 0
        logger.verbose(
            "INGEST",
            f"Latest for {info.package_name}: {old} -> {info.version_code}",
        )
    else:
        logger.verbose(
            "INGEST",
            f"Kept latest {updated.latest_version_code} for {info.package_name} "
            f"(ingested older {info.version_code})",
        )

    persisted = True
    if metadata_file is not None:
        logger.step(4, total, "Persisting policies...")
        persisted = persist_policies(store, metadata_file)

    return IngestResult(
        package_name=info.package_name,
        version_code=info.version_code,
        version_name=info.version_name,
        saved_as=name,
        became_latest=became_latest,
        persisted=persisted,
    )


def check_update(
    store: PolicyStore,
    package_name: Any,
    client_version_code: Any,
    device_id: Any,
    *,
    download_prefix: str = DEFAULT_DOWNLOAD_PREFIX,
) -> UpdateDecision:
    """Answer a device's update check.

    Args:
        store: Policy store to read.
        package_name: Package the device runs.
        client_version_code: Version code installed on the device (int or
            decimal string).
        device_id: Opaque device identifier (drives the rollout bucket).
        download_prefix: URL prefix of stored binaries.

    Returns:
        UpdateDecision; has_update False when there is no policy, the
        client is current, or the device is outside the rollout.

    Raises:
        ValidationError: If any input is missing or malformed.

    """
    if package_name is None or client_version_code is None or device_id is None:
        raise ValidationError("Missing params")

    package_name = require_package_name(package_name)
    version_code = parse_version_code(client_version_code)
    device_id = str(device_id).strip()
    if not device_id:
        raise ValidationError("Missing params")

    policy = store.get(package_name)
    decision = decide_update(
        device_id, version_code, policy, download_prefix=download_prefix
    )
    get_global_logger().debug(
        "ROLLOUT",
        f"{package_name} client={version_code} device={device_id} "
        f"-> hasUpdate={decision.has_update} force={decision.force}",
    )
    return decision


def list_versions(
    store: PolicyStore,
    artifacts: ArtifactStore,
    inspector: PackageInspector,
    package_name: Any,
) -> VersionList:
    """List every stored binary of one package, newest version first.

    Binaries whose manifest cannot be read are logged and skipped.

    Raises:
        ValidationError: If package_name is missing.
        StoreIOError: If the storage directory cannot be read.

    """
    logger = get_global_logger()
    package_name = require_package_name(package_name)

    versions: list[VersionEntry] = []
    for entry in artifacts.entries():
        try:
            info = inspector.inspect(entry.path)
        except UnparsablePackage as err:
            logger.warning("VERSIONS", f"Skipping {entry.name}: {err}")
            continue
        if info.package_name != package_name:
            continue
        versions.append(
            VersionEntry(
                file_name=entry.name,
                version_code=info.version_code,
                version_name=info.version_name,
                size=entry.size,
                file_size=format_file_size(entry.size),
                upload_time=format_timestamp(entry.modified, with_time=False),
            )
        )

    # Name as secondary key keeps ties in a stable order across calls.
    versions.sort(key=lambda v: (-v.version_code, v.file_name))

    policy = store.get(package_name)
    return VersionList(
        package_name=package_name,
        min_force_version_code=policy.min_force_version_code if policy else 0,
        versions=versions,
    )


def list_catalog(
    store: PolicyStore,
    artifacts: ArtifactStore,
    inspector: PackageInspector,
) -> list[CatalogEntry]:
    """List every stored binary with its package's rollout settings.

    Sorted by modification time, most recent first. A binary that fails to
    parse is logged and skipped; the rest of the listing is still returned.

    Raises:
        StoreIOError: If the storage directory cannot be read.

    """
    logger = get_global_logger()

    catalog: list[CatalogEntry] = []
    for entry in artifacts.entries():
        try:
            info = inspector.inspect(entry.path)
        except UnparsablePackage as err:
            logger.warning("CATALOG", f"Could not parse {entry.name}: {err}")
            continue

        policy = store.get(info.package_name)
        catalog.append(
            CatalogEntry(
                file_name=entry.name,
                app_name=info.app_name,
                package_name=info.package_name,
                version_name=info.version_name,
                version_code=info.version_code,
                size=entry.size,
                file_size=format_file_size(entry.size),
                icon_base64=info.icon_base64(),
                upload_time=format_timestamp(entry.modified),
                modified=entry.modified,
                rollout_rate=policy.rollout_rate if policy else 0,
                min_force_version_code=policy.min_force_version_code if policy else 0,
            )
        )

    catalog.sort(key=lambda c: (-c.modified, c.file_name))
    logger.verbose("CATALOG", f"Listed {len(catalog)} artifact(s)")
    return catalog


def update_policy(
    store: PolicyStore,
    request: PolicyUpdateRequest,
    *,
    metadata_file: Path | None = None,
) -> ReleasePolicy:
    """Apply an admin rollout/force-update change.

    Creates the policy if the package has never been seen. The latest
    version fields are left untouched.

    Args:
        store: Policy store to update.
        request: Validated update request.
        metadata_file: Snapshot to persist to. None skips persistence.

    Returns:
        The stored policy after the update.

    """
    updated = store.update_or_create(
        request.package_name,
        with_rollout(request.min_force_version_code, request.rollout_rate),
    )
    get_global_logger().verbose(
        "POLICY",
        f"{request.package_name}: rolloutRate={updated.rollout_rate} "
        f"minForceVersionCode={updated.min_force_version_code}",
    )
    if metadata_file is not None:
        persist_policies(store, metadata_file)
    return updated
