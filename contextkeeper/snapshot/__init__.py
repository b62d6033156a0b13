"""Snapshot persistence, rotation and restore."""

from .restore import (
    RestoreResult,
    SnapshotComparison,
    SnapshotPreview,
    SnapshotRestorer,
    restore_payload,
    validate_host_messages,
)
from .rotation import SnapshotRotation, format_bytes
from .service import (
    SnapshotService,
    extract_timestamp,
    generate_snapshot_id,
    is_valid_snapshot_id,
)

__all__ = [
    "RestoreResult",
    "SnapshotComparison",
    "SnapshotPreview",
    "SnapshotRestorer",
    "SnapshotRotation",
    "SnapshotService",
    "extract_timestamp",
    "format_bytes",
    "generate_snapshot_id",
    "is_valid_snapshot_id",
    "restore_payload",
    "validate_host_messages",
]
