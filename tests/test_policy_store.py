"""
Tests for apkdepot.state module.

Tests the policy store including:
- Lazy creation and mutator semantics
- Snapshot load/persist and file round-trips
- Corrupt or invalid snapshots
- Concurrent access under the readers-writer lock
"""

from __future__ import annotations

from dataclasses import replace
import json
import os
import threading

import pytest

from apkdepot.exceptions import DeserializationError, StoreIOError, ValidationError
from apkdepot.state import PolicyStore, ReleasePolicy, with_rollout
from apkdepot.state.locks import ReadWriteLock


class TestUpdateOrCreate:
    """Tests for PolicyStore.update_or_create."""

    def test_creates_default_record(self, store):
        """Test that a missing package starts from the zero policy."""
        seen = []

        def _mutator(policy):
            seen.append(policy)
            return policy

        result = store.update_or_create("com.example.app", _mutator)

        assert seen == [ReleasePolicy(package_name="com.example.app")]
        assert result.rollout_rate == 0
        assert result.latest_version_code == 0
        assert "com.example.app" in store
        assert len(store) == 1

    def test_get_returns_none_for_unknown(self, store):
        """Test that lookups never create records."""
        assert store.get("com.unknown") is None
        assert len(store) == 0

    def test_with_rollout_keeps_latest_fields(self, store):
        """Test that admin updates do not touch the latest pointer."""
        store.update_or_create(
            "com.example.app",
            lambda p: replace(
                p,
                latest_version_code=7,
                latest_version_name="0.7",
                latest_file_name="com.example.app_7.apk",
            ),
        )

        updated = store.update_or_create("com.example.app", with_rollout(5, 2500))

        assert updated.rollout_rate == 2500
        assert updated.min_force_version_code == 5
        assert updated.latest_version_code == 7
        assert updated.latest_file_name == "com.example.app_7.apk"

    def test_rejects_renaming_mutator(self, store):
        """Test that a mutator cannot move a record to another key."""
        with pytest.raises(ValidationError, match="package name"):
            store.update_or_create(
                "com.example.app", lambda p: replace(p, package_name="com.other")
            )

        assert store.get("com.example.app") is None

    @pytest.mark.parametrize("rate", [-1, 10001])
    def test_rejects_out_of_range_rate(self, store, rate):
        """Test that invalid rates are refused and nothing is stored."""
        with pytest.raises(ValidationError, match="rolloutRate"):
            store.update_or_create("com.example.app", with_rollout(0, rate))

        assert store.get("com.example.app") is None

    def test_mutator_exception_leaves_store_unchanged(self, store):
        """Test that a failing mutator does not half-apply."""
        store.update_or_create("com.example.app", with_rollout(1, 100))

        def _boom(policy):
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            store.update_or_create("com.example.app", _boom)

        assert store.get("com.example.app").rollout_rate == 100
        # Lock was released
        store.update_or_create("com.example.app", with_rollout(1, 200))

    def test_package_names_sorted(self, store):
        for name in ["com.b", "com.a", "com.c"]:
            store.update_or_create(name, lambda p: p)

        assert store.package_names() == ["com.a", "com.b", "com.c"]


class TestSnapshot:
    """Tests for snapshot load/persist."""

    def test_persist_format(self, store):
        """Test the snapshot is a flat map keyed by package name."""
        store.update_or_create("com.example.app", with_rollout(3, 500))

        data = json.loads(store.persist_snapshot())

        assert data == {
            "com.example.app": {
                "packageName": "com.example.app",
                "latestVersionCode": 0,
                "latestVersionName": "",
                "latestFileName": "",
                "minForceVersionCode": 3,
                "rolloutRate": 500,
            }
        }

    def test_persist_then_load_round_trip(self, store):
        """Test that a snapshot reproduces the same records."""
        store.update_or_create("com.a", with_rollout(1, 10000))
        store.update_or_create("com.b", with_rollout(0, 42))

        other = PolicyStore()
        count = other.load_snapshot(store.persist_snapshot())

        assert count == 2
        assert other.get("com.a") == store.get("com.a")
        assert other.get("com.b") == store.get("com.b")

    def test_load_fills_missing_fields(self, store):
        """Test that sparse records take zero values."""
        store.load_snapshot(b'{"com.example.app": {"rolloutRate": 100}}')

        policy = store.get("com.example.app")
        assert policy.rollout_rate == 100
        assert policy.latest_version_code == 0
        assert policy.latest_file_name == ""

    def test_map_key_wins_over_embedded_name(self, store):
        store.load_snapshot(b'{"com.key": {"packageName": "com.other"}}')

        assert store.get("com.key").package_name == "com.key"
        assert store.get("com.other") is None

    def test_load_replaces_whole_map(self, store):
        store.update_or_create("com.old", lambda p: p)

        store.load_snapshot(b'{"com.new": {}}')

        assert store.package_names() == ["com.new"]

    @pytest.mark.parametrize(
        "payload",
        [
            b"not json",
            b"[1, 2, 3]",
            b'{"com.example.app": "oops"}',
            b'{"com.example.app": {"rolloutRate": 10001}}',
            b'{"com.example.app": {"rolloutRate": -1}}',
            b'{"com.example.app": {"latestVersionCode": "7"}}',
            b'{"com.example.app": {"latestVersionName": 7}}',
            b"\xff\xfe",
        ],
    )
    def test_invalid_snapshot_raises_and_keeps_state(self, store, payload):
        """Test that a bad snapshot is rejected without touching the map."""
        store.update_or_create("com.kept", with_rollout(0, 1))

        with pytest.raises(DeserializationError):
            store.load_snapshot(payload)

        assert store.package_names() == ["com.kept"]

    def test_deserialization_error_is_store_error(self):
        assert issubclass(DeserializationError, StoreIOError)


class TestSnapshotFile:
    """Tests for PolicyStore.load and PolicyStore.save."""

    def test_save_and_load(self, store, tmp_test_dir):
        """Test round-trip save and load through a file."""
        snapshot = tmp_test_dir / "metadata.json"
        store.update_or_create("com.example.app", with_rollout(2, 300))

        store.save(snapshot)
        loaded = PolicyStore()
        assert loaded.load(snapshot) == 1

        assert loaded.get("com.example.app") == store.get("com.example.app")
        assert [p.name for p in tmp_test_dir.iterdir()] == ["metadata.json"]

    def test_save_creates_parent_directory(self, store, tmp_test_dir):
        snapshot = tmp_test_dir / "nested" / "dir" / "metadata.json"

        store.save(snapshot)

        assert json.loads(snapshot.read_text(encoding="utf-8")) == {}

    def test_load_missing_file_is_empty(self, store, tmp_test_dir):
        """Test that a missing snapshot is not an error."""
        assert store.load(tmp_test_dir / "missing.json") == 0
        assert len(store) == 0

    def test_load_corrupt_file_raises(self, store, tmp_test_dir):
        snapshot = tmp_test_dir / "metadata.json"
        snapshot.write_text("{broken", encoding="utf-8")

        with pytest.raises(DeserializationError):
            store.load(snapshot)

    def test_save_to_unwritable_location_raises(self, store, tmp_test_dir):
        """Test that a directory in place of the file surfaces StoreIOError."""
        blocker = tmp_test_dir / "blocker"
        blocker.write_text("x", encoding="utf-8")

        with pytest.raises(StoreIOError):
            store.save(blocker / "metadata.json")


class TestConcurrency:
    """Tests for concurrent access."""

    def test_parallel_updates_are_not_lost(self, store):
        """Test that concurrent read-modify-write cycles serialize."""

        def _bump(policy):
            return replace(policy, latest_version_code=policy.latest_version_code + 1)

        def _worker():
            for _ in range(200):
                store.update_or_create("com.example.app", _bump)
                store.get("com.example.app")

        threads = [threading.Thread(target=_worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert store.get("com.example.app").latest_version_code == 1600

    def test_readers_share_the_lock(self):
        """Test that two readers can hold the lock at once."""
        lock = ReadWriteLock()
        both_inside = threading.Barrier(2, timeout=5)

        def _reader():
            with lock.read():
                both_inside.wait()

        threads = [threading.Thread(target=_reader) for _ in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=5)

        assert not any(t.is_alive() for t in threads)

    def test_writer_excludes_readers(self):
        """Test that a reader waits while a writer holds the lock."""
        lock = ReadWriteLock()
        order: list[str] = []
        writer_in = threading.Event()

        def _reader():
            writer_in.wait(5)
            with lock.read():
                order.append("read")

        t = threading.Thread(target=_reader)
        with lock.write():
            t.start()
            writer_in.set()
            t.join(timeout=0.2)
            order.append("write-done")
        t.join(timeout=5)

        assert order == ["write-done", "read"]

    def test_concurrent_saves_keep_latest_update(
        self, store, tmp_test_dir, monkeypatch
    ):
        """Test that a stale snapshot never overwrites a newer one on disk."""
        snapshot = tmp_test_dir / "metadata.json"
        real_replace = os.replace
        first_in_replace = threading.Event()
        second_done = threading.Event()
        calls = []

        def _slow_replace(src, dst):
            calls.append(dst)
            if len(calls) == 1:
                first_in_replace.set()
                second_done.wait(0.5)
            real_replace(src, dst)

        monkeypatch.setattr(os, "replace", _slow_replace)

        def _first():
            store.update_or_create("com.a", with_rollout(0, 1))
            store.save(snapshot)

        def _second():
            first_in_replace.wait(5)
            store.update_or_create("com.b", with_rollout(0, 2))
            store.save(snapshot)
            second_done.set()

        threads = [threading.Thread(target=_first), threading.Thread(target=_second)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=10)

        on_disk = PolicyStore()
        on_disk.load(snapshot)
        assert on_disk.package_names() == ["com.a", "com.b"]
        assert [p.name for p in tmp_test_dir.iterdir()] == ["metadata.json"]
