"""Restoring a session's history from a snapshot."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from pydantic import BaseModel, Field

from ..adapter import MessageAdapter
from ..types import (
    VALID_ROLES,
    ContextMessage,
    ContextSnapshot,
    HostMessage,
    SnapshotInfo,
    ValidationOutcome,
)
from .service import SnapshotService

logger = logging.getLogger(__name__)


class RestoreResult(BaseModel):
    """Outcome of a restore. On failure ``messages`` is always empty."""

    success: bool
    messages: list[HostMessage] = Field(default_factory=list)
    message_count: int = 0
    snapshot: SnapshotInfo | None = None
    error: str | None = None


class SnapshotPreview(BaseModel):
    messages: list[ContextMessage]
    total: int


class SnapshotComparison(BaseModel):
    snapshot1: SnapshotInfo
    snapshot2: SnapshotInfo
    message_difference: int
    time_difference_ms: int


def validate_host_messages(messages: list[HostMessage]) -> ValidationOutcome:
    """Every message needs id, session id, role and content, and a known role."""
    if not messages:
        return ValidationOutcome(valid=False, reason="No messages to restore")
    for msg in messages:
        if not (msg.id and msg.session_id and msg.role and msg.content):
            return ValidationOutcome(valid=False, reason="Invalid message structure")
        if msg.role not in VALID_ROLES:
            return ValidationOutcome(valid=False, reason=f"Invalid role: {msg.role}")
    return ValidationOutcome(valid=True)


class SnapshotRestorer:
    """Loads snapshots back into the host's message format."""

    def __init__(
        self,
        snapshot_service: SnapshotService,
        message_adapter: MessageAdapter | None = None,
    ) -> None:
        self.snapshot_service = snapshot_service
        self.message_adapter = message_adapter or MessageAdapter()

    async def restore(
        self,
        session_id: str,
        snapshot_id: str | None = None,
        validate: bool = True,
    ) -> RestoreResult:
        """Restore from ``snapshot_id``, or from the latest snapshot when omitted.

        Never raises for a missing snapshot or invalid contents; the result
        carries the reason instead.
        """
        if snapshot_id:
            snapshot = await self.snapshot_service.get_snapshot(session_id, snapshot_id)
        else:
            snapshot = await self.snapshot_service.get_latest_snapshot(session_id)

        if snapshot is None:
            error = (
                f"Snapshot {snapshot_id} not found for session {session_id}"
                if snapshot_id
                else f"No snapshots found for session {session_id}"
            )
            return RestoreResult(success=False, error=error)

        messages = self.message_adapter.to_host_messages(snapshot.messages, session_id)

        if validate:
            outcome = validate_host_messages(messages)
            if not outcome.valid:
                logger.warning(
                    "Refusing to restore snapshot %s of session %s: %s",
                    snapshot.id,
                    session_id,
                    outcome.reason,
                )
                return RestoreResult(
                    success=False,
                    snapshot=snapshot.info(),
                    error=f"Validation failed: {outcome.reason}",
                )

        return RestoreResult(
            success=True,
            messages=messages,
            message_count=len(messages),
            snapshot=snapshot.info(),
        )

    async def list_available_snapshots(self, session_id: str) -> list[SnapshotInfo]:
        return await self.snapshot_service.list_snapshots(session_id)

    async def get_snapshot_info(self, session_id: str, snapshot_id: str) -> SnapshotInfo | None:
        snapshot = await self.snapshot_service.get_snapshot(session_id, snapshot_id)
        return snapshot.info() if snapshot else None

    async def preview_snapshot(
        self, session_id: str, snapshot_id: str, limit: int = 10
    ) -> SnapshotPreview | None:
        """First ``limit`` messages of a snapshot and its total count."""
        snapshot = await self.snapshot_service.get_snapshot(session_id, snapshot_id)
        if snapshot is None:
            return None
        return SnapshotPreview(messages=snapshot.messages[:limit], total=snapshot.message_count)

    async def compare_snapshots(
        self, session_id: str, snapshot_id1: str, snapshot_id2: str
    ) -> SnapshotComparison | None:
        """Message-count and time difference from the first snapshot to the second."""
        s1, s2 = await asyncio.gather(
            self.snapshot_service.get_snapshot(session_id, snapshot_id1),
            self.snapshot_service.get_snapshot(session_id, snapshot_id2),
        )
        if s1 is None or s2 is None:
            return None
        return SnapshotComparison(
            snapshot1=s1.info(),
            snapshot2=s2.info(),
            message_difference=s2.message_count - s1.message_count,
            time_difference_ms=_millis_between(s1, s2),
        )


def _millis_between(s1: ContextSnapshot, s2: ContextSnapshot) -> int:
    return int(round((s2.timestamp - s1.timestamp).total_seconds() * 1000))


def restore_payload(result: RestoreResult) -> list[dict[str, Any]]:
    """Restored messages in the host's camelCase wire shape."""
    return [m.to_dict() for m in result.messages]
