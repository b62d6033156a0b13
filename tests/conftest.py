"""Shared pytest configuration and fixtures."""

from unittest.mock import AsyncMock

import pytest

from contextkeeper.summarization import CompletionProvider


class EchoCompletionProvider(CompletionProvider):
    """Returns a fixed reply and records every call."""

    def __init__(self, reply: str = "Summary of earlier conversation."):
        self.reply = reply
        self.calls: list[dict] = []

    async def complete(self, messages, temperature=None, max_tokens=None, timeout=None):
        self.calls.append(
            {
                "messages": messages,
                "temperature": temperature,
                "max_tokens": max_tokens,
                "timeout": timeout,
            }
        )
        return self.reply


@pytest.fixture
def echo_provider():
    """A completion provider answering with a short fixed summary."""
    return EchoCompletionProvider()


@pytest.fixture
def failing_provider():
    """A completion provider whose calls always raise."""
    provider = AsyncMock(spec=CompletionProvider)
    provider.complete.side_effect = RuntimeError("provider unavailable")
    return provider


@pytest.fixture
def state_dir(tmp_path):
    """Empty state directory for snapshot storage."""
    path = tmp_path / "state"
    path.mkdir()
    return str(path)
