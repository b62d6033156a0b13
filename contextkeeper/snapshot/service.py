"""Persistence of point-in-time copies of a session's history.

Snapshots live at::

    <state_dir>/sessions/<session_id>/snapshots/snapshot-<epochMillis>-<randomId>.json[.gz]

The millisecond timestamp in the filename orders snapshots and ages them
without reading their contents.
"""

from __future__ import annotations

import asyncio
import gzip
import logging
import os
import random
import re
import string
import threading
import time
from datetime import datetime, timezone
from typing import Any

from pydantic import ValidationError

from ..config import SnapshotsConfig, default_state_dir
from ..errors import SnapshotError
from ..types import ContextMessage, ContextSnapshot, SnapshotInfo, SnapshotTrigger

logger = logging.getLogger(__name__)

SNAPSHOT_PREFIX = "snapshot-"
COMPRESSED_EXT = ".json.gz"
PLAIN_EXT = ".json"

DEFAULT_MAX_SNAPSHOTS = 10

_TIMESTAMP_RE = re.compile(r"snapshot-(\d+)")
_SNAPSHOT_ID_RE = re.compile(r"^snapshot-\d+-[a-z0-9]+$")
_ID_ALPHABET = string.ascii_lowercase + string.digits

# Last issued snapshot millisecond, shared by every service in the process.
_last_snapshot_ms = 0
_id_lock = threading.Lock()


def _next_snapshot_millis() -> int:
    global _last_snapshot_ms
    with _id_lock:
        _last_snapshot_ms = max(int(time.time() * 1000), _last_snapshot_ms + 1)
        return _last_snapshot_ms


def generate_snapshot_id() -> str:
    """``snapshot-<epochMillis>-<6 random chars>``, strictly increasing in time."""
    suffix = "".join(random.choices(_ID_ALPHABET, k=6))
    return f"{SNAPSHOT_PREFIX}{_next_snapshot_millis()}-{suffix}"


def extract_timestamp(filename: str) -> int:
    """Epoch milliseconds embedded in a snapshot filename or id (0 if absent)."""
    match = _TIMESTAMP_RE.search(filename)
    return int(match.group(1)) if match else 0


def is_valid_snapshot_id(snapshot_id: str) -> bool:
    """Whether ``snapshot_id`` has the shape ``generate_snapshot_id`` produces."""
    return bool(_SNAPSHOT_ID_RE.match(snapshot_id))


def is_snapshot_file(filename: str) -> bool:
    return filename.startswith(SNAPSHOT_PREFIX) and filename.endswith(
        (COMPRESSED_EXT, PLAIN_EXT)
    )


def snapshot_id_from_filename(filename: str) -> str:
    if filename.endswith(COMPRESSED_EXT):
        return filename[: -len(COMPRESSED_EXT)]
    if filename.endswith(PLAIN_EXT):
        return filename[: -len(PLAIN_EXT)]
    return filename


def sort_snapshot_files(filenames: list[str]) -> list[str]:
    """Newest first."""
    return sorted(filenames, key=lambda f: (extract_timestamp(f), f), reverse=True)


def validate_session_id(session_id: str) -> None:
    """Reject ids that would escape the sessions directory."""
    if not session_id or session_id in (".", "..") or "/" in session_id or "\\" in session_id:
        raise SnapshotError(f"Invalid session id: {session_id!r}")


class SnapshotService:
    """Creates, lists, reads and deletes session snapshots.

    Writes and rotation for one session are serialized with a per-session
    lock. Sessions own disjoint directories and never contend.
    """

    def __init__(
        self,
        state_dir: str | None = None,
        max_snapshots: int = DEFAULT_MAX_SNAPSHOTS,
        compression: bool = True,
    ) -> None:
        self.state_dir = state_dir or default_state_dir()
        self.max_snapshots = max_snapshots
        self.compression = compression
        self._session_locks: dict[str, asyncio.Lock] = {}

    @classmethod
    def from_config(
        cls, config: SnapshotsConfig, state_dir: str | None = None
    ) -> SnapshotService:
        """Build a service from the ``proactive_history.snapshots`` section.

        ``config.dir`` wins over ``state_dir``.
        """
        return cls(
            state_dir=config.dir or state_dir,
            max_snapshots=config.max_snapshots,
            compression=config.compression,
        )

    # -- Public API --

    async def create_snapshot(
        self,
        session_id: str,
        messages: list[ContextMessage],
        trigger: SnapshotTrigger = "manual",
        metadata: dict[str, Any] | None = None,
        max_snapshots: int | None = None,
    ) -> ContextSnapshot:
        """Persist ``messages`` and rotate the session down to ``max_snapshots``.

        ``max_snapshots`` overrides the service-wide limit for this call.

        Raises:
            SnapshotError: If the snapshot cannot be written
        """
        validate_session_id(session_id)
        snapshot_id = generate_snapshot_id()
        snapshot = ContextSnapshot(
            id=snapshot_id,
            session_id=session_id,
            timestamp=datetime.fromtimestamp(
                extract_timestamp(snapshot_id) / 1000, tz=timezone.utc
            ),
            trigger=trigger,
            message_count=len(messages),
            messages=list(messages),
            metadata=metadata or {},
        )

        async with self._get_session_lock(session_id):
            snapshot_dir = self.get_snapshot_directory(session_id)
            try:
                os.makedirs(snapshot_dir, exist_ok=True)
                self._write_snapshot(snapshot_dir, snapshot)
            except OSError as e:
                raise SnapshotError(f"Failed to write snapshot {snapshot_id}: {e}") from e
            self._rotate(session_id, max_snapshots or self.max_snapshots)

        logger.debug(
            "Created snapshot %s for session %s (%d messages, trigger=%s)",
            snapshot_id,
            session_id,
            len(messages),
            trigger,
        )
        return snapshot

    async def get_snapshot(self, session_id: str, snapshot_id: str) -> ContextSnapshot | None:
        """Load a snapshot by id, or ``None`` if missing, malformed or unreadable."""
        validate_session_id(session_id)
        if not is_valid_snapshot_id(snapshot_id):
            logger.debug("Ignoring malformed snapshot id %r", snapshot_id)
            return None
        snapshot_dir = self.get_snapshot_directory(session_id)
        for ext in self._extensions():
            filepath = os.path.join(snapshot_dir, snapshot_id + ext)
            if os.path.exists(filepath):
                return self._read_snapshot(filepath)
        return None

    async def list_snapshots(
        self, session_id: str, limit: int | None = None, offset: int = 0
    ) -> list[SnapshotInfo]:
        """Snapshot headers, newest first, without message bodies."""
        files = self._list_files(session_id)
        page = files[offset : offset + limit] if limit else files[offset:]

        infos = []
        snapshot_dir = self.get_snapshot_directory(session_id)
        for filename in page:
            info = self._read_snapshot(os.path.join(snapshot_dir, filename), SnapshotInfo)
            if info is not None:
                infos.append(info)
        return infos

    async def get_latest_snapshot(self, session_id: str) -> ContextSnapshot | None:
        """Most recent readable snapshot, with its messages."""
        snapshot_dir = self.get_snapshot_directory(session_id)
        for filename in self._list_files(session_id):
            snapshot = self._read_snapshot(os.path.join(snapshot_dir, filename))
            if snapshot is not None:
                return snapshot
        return None

    async def get_snapshot_count(self, session_id: str) -> int:
        return len(self._list_files(session_id))

    async def delete_snapshot(self, session_id: str, snapshot_id: str) -> bool:
        """Delete one snapshot. Returns ``False`` if it did not exist."""
        validate_session_id(session_id)
        if not is_valid_snapshot_id(snapshot_id):
            return False
        snapshot_dir = self.get_snapshot_directory(session_id)
        deleted = False
        for ext in (COMPRESSED_EXT, PLAIN_EXT):
            try:
                os.remove(os.path.join(snapshot_dir, snapshot_id + ext))
                deleted = True
            except FileNotFoundError:
                continue
        return deleted

    async def delete_all_snapshots(self, session_id: str) -> int:
        """Delete every snapshot of a session. Returns how many were removed."""
        async with self._get_session_lock(session_id):
            snapshot_dir = self.get_snapshot_directory(session_id)
            count = 0
            for filename in self._list_files(session_id):
                try:
                    os.remove(os.path.join(snapshot_dir, filename))
                    count += 1
                except FileNotFoundError:
                    continue
            return count

    async def get_snapshot_disk_usage(self, session_id: str) -> int:
        """Bytes used by a session's snapshot files."""
        snapshot_dir = self.get_snapshot_directory(session_id)
        total = 0
        for filename in self._list_files(session_id):
            try:
                total += os.path.getsize(os.path.join(snapshot_dir, filename))
            except FileNotFoundError:
                continue
        return total

    def get_snapshot_directory(self, session_id: str) -> str:
        validate_session_id(session_id)
        return os.path.join(self.state_dir, "sessions", session_id, "snapshots")

    # -- Private helpers --

    def _get_session_lock(self, session_id: str) -> asyncio.Lock:
        if session_id not in self._session_locks:
            self._session_locks[session_id] = asyncio.Lock()
        return self._session_locks[session_id]

    def _extensions(self) -> tuple[str, str]:
        # Preferred format first, then the other one
        if self.compression:
            return (COMPRESSED_EXT, PLAIN_EXT)
        return (PLAIN_EXT, COMPRESSED_EXT)

    def _list_files(self, session_id: str) -> list[str]:
        snapshot_dir = self.get_snapshot_directory(session_id)
        try:
            names = os.listdir(snapshot_dir)
        except FileNotFoundError:
            return []
        return sort_snapshot_files([n for n in names if is_snapshot_file(n)])

    def _rotate(self, session_id: str, max_snapshots: int) -> None:
        files = self._list_files(session_id)
        if len(files) <= max_snapshots:
            return
        snapshot_dir = self.get_snapshot_directory(session_id)
        for filename in files[max_snapshots:]:
            try:
                os.remove(os.path.join(snapshot_dir, filename))
                logger.debug("Rotated out snapshot %s of session %s", filename, session_id)
            except FileNotFoundError:
                continue
            except OSError as e:
                logger.warning("Failed to rotate snapshot %s: %s", filename, e)

    def _write_snapshot(self, snapshot_dir: str, snapshot: ContextSnapshot) -> None:
        ext = COMPRESSED_EXT if self.compression else PLAIN_EXT
        filepath = os.path.join(snapshot_dir, snapshot.id + ext)
        tmp_path = filepath + ".tmp"
        data = snapshot.model_dump_json(indent=2).encode("utf-8")
        if self.compression:
            data = gzip.compress(data)
        try:
            with open(tmp_path, "wb") as f:
                f.write(data)
            os.replace(tmp_path, filepath)
        except OSError:
            try:
                os.remove(tmp_path)
            except FileNotFoundError:
                pass
            raise

    @staticmethod
    def _read_snapshot(
        filepath: str, model: type[ContextSnapshot] | type[SnapshotInfo] = ContextSnapshot
    ) -> Any:
        """Parse a snapshot file as ``model``.

        ``SnapshotInfo`` ignores the ``messages`` key, so listing never builds
        message models.
        """
        try:
            with open(filepath, "rb") as f:
                data = f.read()
            if filepath.endswith(".gz"):
                data = gzip.decompress(data)
            return model.model_validate_json(data)
        except FileNotFoundError:
            return None
        except (OSError, EOFError, ValidationError, UnicodeDecodeError) as e:
            logger.warning("Failed to read snapshot %s: %s", filepath, e)
            return None
