"""Out-of-band snapshot maintenance across sessions."""

from __future__ import annotations

import asyncio
import logging
import os
import time

from ..config import default_state_dir, parse_duration
from ..types import CleanupResult
from .service import (
    SNAPSHOT_PREFIX,
    extract_timestamp,
    is_snapshot_file,
    sort_snapshot_files,
    validate_session_id,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_AGE_S = 30 * 24 * 60 * 60
DEFAULT_MAX_SNAPSHOTS = 10
DEFAULT_MAX_CONCURRENCY = 8


def format_bytes(num_bytes: int) -> str:
    """Human-readable size, e.g. ``1.5 KB``."""
    if num_bytes <= 0:
        return "0 Bytes"
    units = ["Bytes", "KB", "MB", "GB", "TB"]
    value = float(num_bytes)
    i = 0
    while value >= 1024 and i < len(units) - 1:
        value /= 1024
        i += 1
    return f"{round(value, 2):g} {units[i]}"


def _to_seconds(value: float | str) -> float:
    return parse_duration(value) if isinstance(value, str) else float(value)


class SnapshotRotation:
    """Deletes aged and excess snapshots across every session under ``state_dir``.

    Ages come from the timestamps embedded in snapshot filenames. A missing
    directory counts as already clean.
    """

    def __init__(
        self,
        state_dir: str | None = None,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
    ) -> None:
        self.state_dir = state_dir or default_state_dir()
        self.max_concurrency = max_concurrency

    @property
    def sessions_dir(self) -> str:
        return os.path.join(self.state_dir, "sessions")

    # -- Public API --

    async def cleanup_old_snapshots(
        self,
        max_age: float | str = DEFAULT_MAX_AGE_S,
        max_snapshots: int = DEFAULT_MAX_SNAPSHOTS,
    ) -> CleanupResult:
        """Apply age and count limits to every session.

        Args:
            max_age: Seconds, or a duration string like ``"30d"``
            max_snapshots: Most-recent snapshots to keep per session

        Per-session failures are logged and skipped.
        """
        max_age_s = _to_seconds(max_age)
        session_ids = self._list_sessions()
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def _cleanup(session_id: str) -> CleanupResult:
            async with semaphore:
                return await self.cleanup_session_snapshots(session_id, max_age_s, max_snapshots)

        results = await asyncio.gather(
            *(_cleanup(session_id) for session_id in session_ids),
            return_exceptions=True,
        )

        total = CleanupResult()
        for session_id, r in zip(session_ids, results):
            if isinstance(r, Exception):
                logger.warning("Error cleaning snapshots of session %s: %s", session_id, r)
                continue
            total = total.merge(r)

        if total.snapshots_deleted:
            logger.info(
                "Snapshot cleanup: %d deleted across %d sessions, %s freed",
                total.snapshots_deleted,
                total.sessions_processed,
                format_bytes(total.bytes_freed),
            )
        return total

    async def cleanup_session_snapshots(
        self,
        session_id: str,
        max_age: float | str = DEFAULT_MAX_AGE_S,
        max_snapshots: int = DEFAULT_MAX_SNAPSHOTS,
    ) -> CleanupResult:
        """Delete a session's snapshots that are too old or beyond ``max_snapshots``."""
        snapshot_dir = self._snapshot_dir(session_id)
        names = self._list_dir(snapshot_dir)
        if names is None:
            return CleanupResult()

        files = sort_snapshot_files([n for n in names if is_snapshot_file(n)])
        max_age_ms = _to_seconds(max_age) * 1000
        now_ms = time.time() * 1000

        doomed = [
            f
            for i, f in enumerate(files)
            if i >= max_snapshots or now_ms - extract_timestamp(f) > max_age_ms
        ]

        deleted = 0
        bytes_freed = 0
        for filename in doomed:
            freed = self._remove(os.path.join(snapshot_dir, filename))
            if freed is not None:
                deleted += 1
                bytes_freed += freed

        return CleanupResult(
            sessions_processed=1, snapshots_deleted=deleted, bytes_freed=bytes_freed
        )

    async def delete_session_snapshots(self, session_id: str) -> CleanupResult:
        """Delete every snapshot of a session and its snapshot directory."""
        snapshot_dir = self._snapshot_dir(session_id)
        names = self._list_dir(snapshot_dir)
        if names is None:
            return CleanupResult()

        deleted = 0
        bytes_freed = 0
        for filename in names:
            if not filename.startswith(SNAPSHOT_PREFIX):
                continue
            freed = self._remove(os.path.join(snapshot_dir, filename))
            if freed is not None:
                deleted += 1
                bytes_freed += freed

        try:
            os.rmdir(snapshot_dir)
        except FileNotFoundError:
            pass
        except OSError as e:
            # Non-snapshot files left behind
            logger.debug("Kept snapshot directory %s: %s", snapshot_dir, e)

        return CleanupResult(
            sessions_processed=1, snapshots_deleted=deleted, bytes_freed=bytes_freed
        )

    async def delete_old_sessions(self, older_than: float | str) -> CleanupResult:
        """Delete all snapshots of sessions whose directory was last modified before ``older_than``.

        Per-session failures are logged and skipped.
        """
        older_than_s = _to_seconds(older_than)
        now = time.time()
        total = CleanupResult()

        for session_id in self._list_sessions():
            session_dir = os.path.join(self.sessions_dir, session_id)
            try:
                age = now - os.stat(session_dir).st_mtime
            except FileNotFoundError:
                continue
            except OSError as e:
                logger.warning("Cannot stat session directory %s: %s", session_dir, e)
                continue
            if age <= older_than_s:
                continue
            try:
                total = total.merge(await self.delete_session_snapshots(session_id))
            except Exception as e:
                logger.warning("Error deleting snapshots of session %s: %s", session_id, e)
        return total

    async def get_total_disk_usage(self) -> int:
        """Bytes used by snapshot files across all sessions."""
        total = 0
        for session_id in self._list_sessions():
            snapshot_dir = self._snapshot_dir(session_id)
            for filename in self._list_dir(snapshot_dir) or []:
                if not filename.startswith(SNAPSHOT_PREFIX):
                    continue
                try:
                    total += os.path.getsize(os.path.join(snapshot_dir, filename))
                except FileNotFoundError:
                    continue
                except OSError as e:
                    logger.warning("Cannot size snapshot %s: %s", filename, e)
        return total

    # -- Private helpers --

    def _list_sessions(self) -> list[str]:
        names = self._list_dir(self.sessions_dir) or []
        return sorted(
            name for name in names if os.path.isdir(os.path.join(self.sessions_dir, name))
        )

    def _snapshot_dir(self, session_id: str) -> str:
        validate_session_id(session_id)
        return os.path.join(self.sessions_dir, session_id, "snapshots")

    @staticmethod
    def _list_dir(path: str) -> list[str] | None:
        """Directory entries, or ``None`` if the directory is missing or unreadable."""
        try:
            return os.listdir(path)
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.warning("Cannot list %s: %s", path, e)
            return None

    @staticmethod
    def _remove(filepath: str) -> int | None:
        """Delete a file and return its size, or ``None`` if it is gone or cannot be removed."""
        try:
            size = os.path.getsize(filepath)
            os.remove(filepath)
            return size
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.warning("Failed to delete snapshot %s: %s", filepath, e)
            return None
