"""Unit tests for contextkeeper.snapshot.restore module."""

from datetime import datetime, timezone

import pytest

from contextkeeper.snapshot import (
    SnapshotRestorer,
    SnapshotService,
    restore_payload,
    validate_host_messages,
)
from contextkeeper.types import ContextMessage, HostMessage


def make_messages(count: int) -> list[ContextMessage]:
    return [
        ContextMessage(
            id=f"m{i}",
            role="user" if i % 2 == 0 else "assistant",
            content=f"msg {i}",
            timestamp=datetime(2025, 1, 1, 12, 0, i, tzinfo=timezone.utc),
        )
        for i in range(count)
    ]


@pytest.fixture
def service(state_dir):
    return SnapshotService(state_dir)


@pytest.fixture
def restorer(service):
    return SnapshotRestorer(service)


class TestRestore:
    """Tests for SnapshotRestorer.restore."""

    @pytest.mark.asyncio
    async def test_restore_latest(self, service, restorer):
        await service.create_snapshot("s1", make_messages(2))
        latest = await service.create_snapshot("s1", make_messages(3))

        result = await restorer.restore("s1")

        assert result.success
        assert result.message_count == 3
        assert result.snapshot.id == latest.id
        first = result.messages[0]
        assert first.id == "m0"
        assert first.session_id == "s1"
        assert first.content == "msg 0"
        assert first.created_at == "2025-01-01T12:00:00.000Z"

    @pytest.mark.asyncio
    async def test_restore_by_id(self, service, restorer):
        older = await service.create_snapshot("s1", make_messages(2))
        await service.create_snapshot("s1", make_messages(5))

        result = await restorer.restore("s1", older.id)

        assert result.success
        assert result.message_count == 2

    @pytest.mark.asyncio
    async def test_missing_snapshot_id(self, restorer):
        result = await restorer.restore("s1", "snapshot-1-abcdef")
        assert not result.success
        assert result.messages == []
        assert result.error == "Snapshot snapshot-1-abcdef not found for session s1"

    @pytest.mark.asyncio
    async def test_no_snapshots(self, restorer):
        result = await restorer.restore("s1")
        assert not result.success
        assert result.error == "No snapshots found for session s1"

    @pytest.mark.asyncio
    async def test_validation_failure(self, service, restorer):
        msgs = make_messages(2) + [ContextMessage(role="assistant", content="")]
        await service.create_snapshot("s1", msgs)

        result = await restorer.restore("s1")

        assert not result.success
        assert result.messages == []
        assert result.error == "Validation failed: Invalid message structure"

    @pytest.mark.asyncio
    async def test_validation_can_be_skipped(self, service, restorer):
        await service.create_snapshot("s1", [ContextMessage(role="assistant", content="")])
        result = await restorer.restore("s1", validate=False)
        assert result.success
        assert result.message_count == 1

    @pytest.mark.asyncio
    async def test_payload_uses_host_field_names(self, service, restorer):
        await service.create_snapshot("s1", make_messages(1))
        payload = restore_payload(await restorer.restore("s1"))
        assert payload == [
            {
                "id": "m0",
                "sessionId": "s1",
                "role": "user",
                "content": "msg 0",
                "createdAt": "2025-01-01T12:00:00.000Z",
            }
        ]


class TestValidateHostMessages:
    """Tests for validate_host_messages."""

    def test_empty(self):
        assert validate_host_messages([]).reason == "No messages to restore"

    def test_unknown_role(self):
        msg = HostMessage(id="1", session_id="s", role="robot", content="x")
        assert validate_host_messages([msg]).reason == "Invalid role: robot"

    def test_valid(self):
        msg = HostMessage(id="1", session_id="s", role="tool", content="x")
        assert validate_host_messages([msg]).valid


class TestInspection:
    """Tests for list, info, preview and compare."""

    @pytest.mark.asyncio
    async def test_list_and_info(self, service, restorer):
        created = await service.create_snapshot("s1", make_messages(2), trigger="auto-compaction")
        listed = await restorer.list_available_snapshots("s1")
        assert [s.id for s in listed] == [created.id]
        assert listed[0].trigger == "auto-compaction"
        assert listed[0].message_count == 2
        info = await restorer.get_snapshot_info("s1", created.id)
        assert info.trigger == "auto-compaction"
        assert await restorer.get_snapshot_info("s1", "snapshot-1-zzzzzz") is None

    @pytest.mark.asyncio
    async def test_preview(self, service, restorer):
        created = await service.create_snapshot("s1", make_messages(6))
        preview = await restorer.preview_snapshot("s1", created.id, limit=4)
        assert preview.total == 6
        assert [m.id for m in preview.messages] == ["m0", "m1", "m2", "m3"]

    @pytest.mark.asyncio
    async def test_compare(self, service, restorer):
        first = await service.create_snapshot("s1", make_messages(2))
        second = await service.create_snapshot("s1", make_messages(5))

        comparison = await restorer.compare_snapshots("s1", first.id, second.id)

        assert comparison.message_difference == 3
        assert comparison.time_difference_ms > 0

    @pytest.mark.asyncio
    async def test_compare_missing(self, service, restorer):
        first = await service.create_snapshot("s1", make_messages(2))
        assert await restorer.compare_snapshots("s1", first.id, "snapshot-1-zzzzzz") is None
