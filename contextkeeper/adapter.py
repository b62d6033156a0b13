"""Translation between the host's persisted messages and ``ContextMessage``.

This is the only place that knows the host format. Everything else in the
package works on ``ContextMessage``.
"""

from __future__ import annotations

import logging
import random
import string
import time
from datetime import datetime, timezone
from typing import Any

from pydantic import ValidationError

from .tokens import estimate_message_tokens, estimate_messages_tokens
from .types import ContextMessage, HostMessage, ToolCall, content_to_text

logger = logging.getLogger(__name__)

_ID_ALPHABET = string.ascii_lowercase + string.digits


def generate_message_id() -> str:
    """``msg_<epochMillis>_<9 random chars>``."""
    suffix = "".join(random.choices(_ID_ALPHABET, k=9))
    return f"msg_{int(time.time() * 1000)}_{suffix}"


def parse_timestamp(value: str) -> datetime | None:
    """Parse an ISO-8601 timestamp, accepting a trailing ``Z``."""
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        logger.debug("Unparsable timestamp %r", value)
        return None


def format_timestamp(value: datetime) -> str:
    """Format as ISO-8601 UTC with millisecond precision and a ``Z`` suffix."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


class MessageAdapter:
    """Converts host messages to context messages and back."""

    def to_context_message(self, host: HostMessage | dict[str, Any]) -> ContextMessage:
        """Convert one host message, caching its token estimate."""
        if isinstance(host, dict):
            host = HostMessage.model_validate(host)

        msg = ContextMessage(
            role=host.role,
            content=host.content,
            tool_calls=self._parse_tool_calls(host.tool_calls),
            id=host.id or None,
            timestamp=parse_timestamp(host.created_at),
        )
        return msg.model_copy(update={"token_count": estimate_message_tokens(msg)})

    def to_context_messages(
        self, hosts: list[HostMessage] | list[dict[str, Any]]
    ) -> list[ContextMessage]:
        return [self.to_context_message(h) for h in hosts]

    def to_host_message(self, msg: ContextMessage, session_id: str) -> HostMessage:
        """Convert back to the host format.

        Block content is flattened to text joined by blank lines. A missing
        id is generated and a missing timestamp becomes "now".
        """
        tool_calls = None
        if msg.tool_calls:
            tool_calls = [tc.model_dump(exclude_none=True) for tc in msg.tool_calls]
        return HostMessage(
            id=msg.id or generate_message_id(),
            session_id=session_id,
            role=msg.role,
            content=content_to_text(msg.content),
            tool_calls=tool_calls,
            created_at=format_timestamp(msg.timestamp or datetime.now(timezone.utc)),
        )

    def to_host_messages(
        self, messages: list[ContextMessage], session_id: str
    ) -> list[HostMessage]:
        return [self.to_host_message(m, session_id) for m in messages]

    def estimate_message_tokens(self, msg: ContextMessage) -> int:
        return estimate_message_tokens(msg)

    def estimate_total_tokens(self, messages: list[ContextMessage]) -> int:
        return estimate_messages_tokens(messages)

    @staticmethod
    def _parse_tool_calls(raw: Any) -> list[ToolCall] | None:
        if not raw:
            return None
        items = raw if isinstance(raw, list) else [raw]
        calls = []
        for item in items:
            try:
                calls.append(ToolCall.model_validate(item))
            except ValidationError as e:
                logger.warning("Skipping malformed tool call %r: %s", item, e)
        return calls or None
