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

"""Release-policy store for APK Depot.

This module implements the in-memory map from package name to release
policy, guarded by a single readers-writer lock, and its persistence to a
single JSON snapshot (metadata.json by default).

Key Features:

- Immutable ReleasePolicy records; reads never hand out shared mutable state
- Read-modify-write through a mutator applied under the exclusive lock
- Lazy creation of a gated-off default record (rollout rate 0)
- Whole-map snapshot load/persist; there is no per-record persistence
- Atomic, ordered snapshot writes (unique .part file then rename)

Snapshot Format:

The snapshot is a flat JSON object keyed by package name. Field names are
stable so older snapshots reload without migration:

    {
      "com.example.app": {
        "latestFileName": "com.example.app_12.apk",
        "latestVersionCode": 12,
        "latestVersionName": "1.2.0",
        "minForceVersionCode": 10,
        "packageName": "com.example.app",
        "rolloutRate": 2500
      }
    }

Example:
    Basic usage:
        ```python
        from dataclasses import replace
        from pathlib import Path
        from apkdepot.state import PolicyStore

        store = PolicyStore()
        store.load(Path("metadata.json"))

        policy = store.get("com.example.app")

        store.update_or_create(
            "com.example.app",
            lambda p: replace(p, rollout_rate=5000),
        )
        store.save(Path("metadata.json"))
        ```

"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, replace
import json
import os
from pathlib import Path
import tempfile
import threading
from typing import Any

from apkdepot.exceptions import (
    DeserializationError,
    SerializationError,
    StoreIOError,
    ValidationError,
)
from apkdepot.logging import get_global_logger
from apkdepot.state.locks import ReadWriteLock

# Rollout rates are parts-per-ten-thousand of the device population.
ROLLOUT_SCALE = 10000


@dataclass(frozen=True)
class ReleasePolicy:
    """Release policy for one package.

    Attributes:
        package_name: Package identifier (primary key).
        latest_version_code: Highest ingested version code.
        latest_version_name: Version name paired with latest_version_code.
        latest_file_name: Stored artifact name of the latest version.
        min_force_version_code: Clients below this version must update.
        rollout_rate: Parts-per-ten-thousand of devices offered the update.

    """

    package_name: str
    latest_version_code: int = 0
    latest_version_name: str = ""
    latest_file_name: str = ""
    min_force_version_code: int = 0
    rollout_rate: int = 0

    def to_dict(self) -> dict[str, Any]:
        """Return the snapshot representation of this record."""
        return {
            "packageName": self.package_name,
            "latestVersionCode": self.latest_version_code,
            "latestVersionName": self.latest_version_name,
            "latestFileName": self.latest_file_name,
            "minForceVersionCode": self.min_force_version_code,
            "rolloutRate": self.rollout_rate,
        }

    @classmethod
    def from_dict(cls, package_name: str, data: Any) -> ReleasePolicy:
        """Build a record from its snapshot representation.

        Missing fields take their zero values. The map key wins over an
        embedded packageName so records can't drift from their key.

        Raises:
            ValueError: If a field has the wrong type or is out of range.

        """
        if not isinstance(data, dict):
            raise ValueError(f"policy for {package_name!r} must be an object")

        def _uint(key: str) -> int:
            value = data.get(key, 0)
            if isinstance(value, bool) or not isinstance(value, int):
                raise ValueError(f"{package_name}.{key} must be an integer")
            if value < 0:
                raise ValueError(f"{package_name}.{key} must not be negative")
            return value

        def _str(key: str) -> str:
            value = data.get(key, "")
            if not isinstance(value, str):
                raise ValueError(f"{package_name}.{key} must be a string")
            return value

        rate = _uint("rolloutRate")
        if rate > ROLLOUT_SCALE:
            raise ValueError(
                f"{package_name}.rolloutRate must be within [0, {ROLLOUT_SCALE}]"
            )

        return cls(
            package_name=package_name,
            latest_version_code=_uint("latestVersionCode"),
            latest_version_name=_str("latestVersionName"),
            latest_file_name=_str("latestFileName"),
            min_force_version_code=_uint("minForceVersionCode"),
            rollout_rate=rate,
        )


PolicyMutator = Callable[[ReleasePolicy], ReleasePolicy]


class PolicyStore:
    """Concurrent-safe map from package name to ReleasePolicy.

    The whole map is guarded by one readers-writer lock. Lookups share the
    lock; update_or_create and snapshot load/persist take it exclusively.
    Configuration writes are rare compared to update checks, so a single
    store-wide lock is enough.

    Attributes:
        None public. Use get(), update_or_create() and the snapshot methods.

    Example:
        Gate a package to 25% of devices:
            ```python
            store = PolicyStore()
            store.update_or_create(
                "com.example.app",
                lambda p: replace(p, rollout_rate=2500),
            )
            assert store.get("com.example.app").rollout_rate == 2500
            ```

    """

    def __init__(self) -> None:
        self._policies: dict[str, ReleasePolicy] = {}
        self._lock = ReadWriteLock()
        self._persist_lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock.read():
            return len(self._policies)

    def __contains__(self, package_name: object) -> bool:
        with self._lock.read():
            return package_name in self._policies

    def get(self, package_name: str) -> ReleasePolicy | None:
        """Return the policy for a package, or None if none exists."""
        with self._lock.read():
            return self._policies.get(package_name)

    def package_names(self) -> list[str]:
        """Return the known package names in sorted order."""
        with self._lock.read():
            return sorted(self._policies)

    def update_or_create(
        self, package_name: str, mutator: PolicyMutator
    ) -> ReleasePolicy:
        """Apply a mutator to a package's policy under the exclusive lock.

        When no record exists, the mutator receives a fresh default
        (rollout_rate 0, zero latest-version fields). The returned record
        replaces the stored one only after the mutator completes, so
        concurrent readers see either the old or the new record in full.

        The mutator must not call back into this store; the lock is not
        reentrant.

        Args:
            package_name: Package identifier to update.
            mutator: Function mapping the current record to its replacement.

        Returns:
            The record now stored for package_name.

        Raises:
            ValidationError: If the mutator returns a record for another
                package or with a rollout rate outside [0, 10000]. The
                store is left unchanged.

        """
        logger = get_global_logger()

        with self._lock.write():
            current = self._policies.get(package_name)
            if current is None:
                logger.debug("STORE", f"Creating default policy for {package_name}")
                current = ReleasePolicy(package_name=package_name)

            updated = mutator(current)

            if updated.package_name != package_name:
                raise ValidationError(
                    f"mutator changed package name {package_name!r} "
                    f"to {updated.package_name!r}"
                )
            if not 0 <= updated.rollout_rate <= ROLLOUT_SCALE:
                raise ValidationError(
                    f"rolloutRate must be within [0, {ROLLOUT_SCALE}], "
                    f"got {updated.rollout_rate}"
                )

            self._policies[package_name] = updated
            return updated

    def load_snapshot(self, data: bytes) -> int:
        """Replace the whole map with the contents of a snapshot.

        Args:
            data: UTF-8 encoded JSON snapshot.

        Returns:
            Number of policies loaded.

        Raises:
            DeserializationError: If the snapshot is not valid. The current
                map is left untouched.

        """
        try:
            raw = json.loads(data.decode("utf-8"))
            if not isinstance(raw, dict):
                raise ValueError("snapshot must be a JSON object")
            policies = {
                str(name): ReleasePolicy.from_dict(str(name), record)
                for name, record in raw.items()
            }
        except (UnicodeDecodeError, ValueError) as err:
            raise DeserializationError(f"invalid policy snapshot: {err}") from err

        with self._lock.write():
            self._policies = policies
        return len(policies)

    def persist_snapshot(self) -> bytes:
        """Serialize the whole map to a snapshot.

        Keys are sorted so successive snapshots diff cleanly.

        Returns:
            UTF-8 encoded JSON with a trailing newline.

        Raises:
            SerializationError: If the map cannot be encoded.

        """
        with self._lock.write():
            payload = {name: p.to_dict() for name, p in self._policies.items()}
            try:
                text = json.dumps(payload, indent=2, sort_keys=True)
            except (TypeError, ValueError) as err:
                raise SerializationError(
                    f"could not encode policy snapshot: {err}"
                ) from err
        return (text + "\n").encode("utf-8")

    def load(self, snapshot_file: Path) -> int:
        """Load the snapshot file into the store.

        A missing file is not an error; the store simply stays empty.

        Args:
            snapshot_file: Path to the JSON snapshot.

        Returns:
            Number of policies loaded.

        Raises:
            StoreIOError: If the file exists but cannot be read.
            DeserializationError: If the file contents are invalid.

        """
        logger = get_global_logger()
        try:
            data = snapshot_file.read_bytes()
        except FileNotFoundError:
            logger.verbose(
                "STORE", f"Snapshot not found, starting empty: {snapshot_file}"
            )
            return 0
        except OSError as err:
            raise StoreIOError(f"could not read {snapshot_file}: {err}") from err

        count = self.load_snapshot(data)
        logger.verbose("STORE", f"Loaded {count} release policies from {snapshot_file}")
        return count

    def save(self, snapshot_file: Path) -> None:
        """Persist the store to the snapshot file atomically.

        Serializing, writing and renaming happen under one persist lock, so
        concurrent saves land on disk in the order their snapshots were
        taken. Each save writes its own temporary file in the target
        directory and renames it over the target, so readers of the file
        never see a half-written snapshot.

        Raises:
            SerializationError: If the map cannot be encoded.
            StoreIOError: If the file cannot be written.

        """
        with self._persist_lock:
            data = self.persist_snapshot()
            tmp: Path | None = None
            try:
                snapshot_file.parent.mkdir(parents=True, exist_ok=True)
                fd, name = tempfile.mkstemp(
                    dir=snapshot_file.parent,
                    prefix=f".{snapshot_file.name}.",
                    suffix=".part",
                )
                tmp = Path(name)
                with os.fdopen(fd, "wb") as f:
                    f.write(data)
                os.replace(tmp, snapshot_file)
            except OSError as err:
                if tmp is not None:
                    tmp.unlink(missing_ok=True)
                raise StoreIOError(f"could not write {snapshot_file}: {err}") from err

        get_global_logger().verbose("STORE", f"Saved snapshot: {snapshot_file}")


def with_rollout(
    min_force_version_code: int, rollout_rate: int
) -> PolicyMutator:
    """Build a mutator that sets the admin-controlled rollout fields.

    The latest-version fields are left untouched.
    """

    def _apply(policy: ReleasePolicy) -> ReleasePolicy:
        return replace(
            policy,
            min_force_version_code=min_force_version_code,
            rollout_rate=rollout_rate,
        )

    return _apply
