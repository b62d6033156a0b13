"""Unit tests for contextkeeper.snapshot.rotation module."""

import os
import time

import pytest

from contextkeeper.snapshot import SnapshotRotation, format_bytes

DAY_MS = 24 * 60 * 60 * 1000

# -- Helpers ----------------------------------------------------------------


def write_snapshot_file(state_dir: str, session_id: str, age_ms: int, size: int = 10) -> str:
    """Create a placeholder snapshot file whose name encodes ``now - age_ms``."""
    snapshot_dir = os.path.join(state_dir, "sessions", session_id, "snapshots")
    os.makedirs(snapshot_dir, exist_ok=True)
    stamp = int(time.time() * 1000) - age_ms
    filename = f"snapshot-{stamp}-abc{len(os.listdir(snapshot_dir)):03d}.json.gz"
    with open(os.path.join(snapshot_dir, filename), "wb") as f:
        f.write(b"x" * size)
    return filename


def remaining(state_dir: str, session_id: str) -> list[str]:
    snapshot_dir = os.path.join(state_dir, "sessions", session_id, "snapshots")
    if not os.path.isdir(snapshot_dir):
        return []
    return sorted(os.listdir(snapshot_dir))


# -- Cleanup ----------------------------------------------------------------------


class TestCleanupSessionSnapshots:
    """Tests for per-session cleanup."""

    @pytest.mark.asyncio
    async def test_deletes_aged_snapshots(self, state_dir):
        old = write_snapshot_file(state_dir, "s1", age_ms=40 * DAY_MS, size=7)
        fresh = write_snapshot_file(state_dir, "s1", age_ms=DAY_MS)

        result = await SnapshotRotation(state_dir).cleanup_session_snapshots("s1", max_age="30d")

        assert result.snapshots_deleted == 1
        assert result.bytes_freed == 7
        assert result.sessions_processed == 1
        assert remaining(state_dir, "s1") == [fresh]
        assert old not in remaining(state_dir, "s1")

    @pytest.mark.asyncio
    async def test_keeps_most_recent_by_count(self, state_dir):
        names = [write_snapshot_file(state_dir, "s1", age_ms=(5 - i) * 1000) for i in range(5)]

        result = await SnapshotRotation(state_dir).cleanup_session_snapshots("s1", max_snapshots=2)

        assert result.snapshots_deleted == 3
        assert remaining(state_dir, "s1") == sorted(names[3:])

    @pytest.mark.asyncio
    async def test_missing_directory_is_clean(self, state_dir):
        result = await SnapshotRotation(state_dir).cleanup_session_snapshots("nobody")
        assert result.snapshots_deleted == 0
        assert result.sessions_processed == 0

    @pytest.mark.asyncio
    async def test_ignores_foreign_files(self, state_dir):
        write_snapshot_file(state_dir, "s1", age_ms=40 * DAY_MS)
        foreign = os.path.join(state_dir, "sessions", "s1", "snapshots", "notes.txt")
        with open(foreign, "w") as f:
            f.write("keep me")

        await SnapshotRotation(state_dir).cleanup_session_snapshots("s1", max_age=1)

        assert os.path.exists(foreign)


class TestCleanupOldSnapshots:
    """Tests for cleanup across all sessions."""

    @pytest.mark.asyncio
    async def test_aggregates_sessions(self, state_dir):
        write_snapshot_file(state_dir, "a", age_ms=40 * DAY_MS)
        write_snapshot_file(state_dir, "a", age_ms=0)
        write_snapshot_file(state_dir, "b", age_ms=40 * DAY_MS)

        result = await SnapshotRotation(state_dir).cleanup_old_snapshots()

        assert result.sessions_processed == 2
        assert result.snapshots_deleted == 2
        assert len(remaining(state_dir, "a")) == 1
        assert remaining(state_dir, "b") == []

    @pytest.mark.asyncio
    async def test_no_sessions_directory(self, state_dir):
        result = await SnapshotRotation(state_dir).cleanup_old_snapshots()
        assert result.snapshots_deleted == 0


# -- Deletion -----------------------------------------------------------------------


class TestDeleteSessions:
    """Tests for whole-session deletion."""

    @pytest.mark.asyncio
    async def test_delete_session_snapshots_removes_directory(self, state_dir):
        write_snapshot_file(state_dir, "s1", age_ms=0, size=4)
        write_snapshot_file(state_dir, "s1", age_ms=0, size=6)

        result = await SnapshotRotation(state_dir).delete_session_snapshots("s1")

        assert result.snapshots_deleted == 2
        assert result.bytes_freed == 10
        assert not os.path.exists(os.path.join(state_dir, "sessions", "s1", "snapshots"))

    @pytest.mark.asyncio
    async def test_delete_old_sessions_uses_directory_mtime(self, state_dir):
        write_snapshot_file(state_dir, "stale", age_ms=0)
        write_snapshot_file(state_dir, "active", age_ms=0)
        stale_dir = os.path.join(state_dir, "sessions", "stale")
        two_days_ago = time.time() - 2 * 24 * 60 * 60
        os.utime(stale_dir, (two_days_ago, two_days_ago))

        result = await SnapshotRotation(state_dir).delete_old_sessions("1d")

        assert result.snapshots_deleted == 1
        assert remaining(state_dir, "stale") == []
        assert len(remaining(state_dir, "active")) == 1

    @pytest.mark.asyncio
    async def test_total_disk_usage(self, state_dir):
        write_snapshot_file(state_dir, "a", age_ms=0, size=3)
        write_snapshot_file(state_dir, "b", age_ms=0, size=5)
        assert await SnapshotRotation(state_dir).get_total_disk_usage() == 8


class TestUnreadableSessions:
    """A session whose snapshot path cannot be listed is skipped, not fatal."""

    # -- Helpers --

    @staticmethod
    def make_broken_session(state_dir: str, session_id: str) -> None:
        session_dir = os.path.join(state_dir, "sessions", session_id)
        os.makedirs(session_dir)
        with open(os.path.join(session_dir, "snapshots"), "w") as f:
            f.write("not a directory")

    @staticmethod
    def age_session(state_dir: str, session_id: str, days: int = 2) -> None:
        stamp = time.time() - days * 24 * 60 * 60
        os.utime(os.path.join(state_dir, "sessions", session_id), (stamp, stamp))

    @pytest.mark.asyncio
    async def test_delete_old_sessions_continues_past_broken_session(self, state_dir):
        self.make_broken_session(state_dir, "a-broken")
        write_snapshot_file(state_dir, "b-healthy", age_ms=0, size=4)
        self.age_session(state_dir, "a-broken")
        self.age_session(state_dir, "b-healthy")

        result = await SnapshotRotation(state_dir).delete_old_sessions("1d")

        assert result.snapshots_deleted == 1
        assert result.bytes_freed == 4
        assert remaining(state_dir, "b-healthy") == []
        assert os.path.isfile(os.path.join(state_dir, "sessions", "a-broken", "snapshots"))

    @pytest.mark.asyncio
    async def test_cleanup_of_broken_session_is_empty(self, state_dir):
        self.make_broken_session(state_dir, "s1")

        rotation = SnapshotRotation(state_dir)
        result = await rotation.cleanup_session_snapshots("s1", max_age=1)

        assert result.snapshots_deleted == 0
        assert result.sessions_processed == 0
        assert (await rotation.delete_session_snapshots("s1")).snapshots_deleted == 0

    @pytest.mark.asyncio
    async def test_cleanup_old_snapshots_skips_broken_session(self, state_dir):
        self.make_broken_session(state_dir, "a-broken")
        write_snapshot_file(state_dir, "b-healthy", age_ms=40 * DAY_MS)

        result = await SnapshotRotation(state_dir).cleanup_old_snapshots()

        assert result.snapshots_deleted == 1
        assert remaining(state_dir, "b-healthy") == []

    @pytest.mark.asyncio
    async def test_disk_usage_skips_broken_session(self, state_dir):
        self.make_broken_session(state_dir, "a-broken")
        write_snapshot_file(state_dir, "b-healthy", age_ms=0, size=6)
        assert await SnapshotRotation(state_dir).get_total_disk_usage() == 6


class TestFormatBytes:
    """Tests for format_bytes."""

    @pytest.mark.parametrize(
        "num_bytes, expected",
        [
            (0, "0 Bytes"),
            (512, "512 Bytes"),
            (1536, "1.5 KB"),
            (1024 * 1024, "1 MB"),
            (5 * 1024**3, "5 GB"),
        ],
    )
    def test_format(self, num_bytes, expected):
        assert format_bytes(num_bytes) == expected
