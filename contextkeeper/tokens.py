"""Token estimation utilities for context management.

Uses a simple heuristic: ~3.5 characters per token. That is more conservative
than the usual ~4 chars/token rule of thumb and lands within roughly 80-90% of
real tokenizer counts. Exactness is not a goal here.
"""

from __future__ import annotations

import json
import math
from typing import Literal

from pydantic import BaseModel

from .types import (
    ContentBlock,
    ContextMessage,
    ImageBlock,
    TextBlock,
    ToolResultBlock,
    ToolUseBlock,
)

CHARS_PER_TOKEN = 3.5

# Role, separators and other per-message framing.
MESSAGE_OVERHEAD = 4

TOOL_CALL_OVERHEAD = 10

# Typical provider cost of one image attachment.
IMAGE_TOKEN_COST = 1000


class TokenEstimationStats(BaseModel):
    """Token statistics for a set of messages."""

    total_tokens: int
    message_count: int
    avg_tokens_per_message: float
    user_messages: int
    assistant_messages: int
    system_messages: int
    tool_messages: int
    estimated_accuracy: str = "80-90%"
    method: Literal["heuristic", "tiktoken", "provider-api"] = "heuristic"
    chars_per_token: float = CHARS_PER_TOKEN


def estimate_tokens(text: str) -> int:
    """Estimate token count for a string using the ~3.5 chars/token heuristic."""
    if not text:
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def estimate_content_tokens(content: str | list[ContentBlock]) -> int:
    """Estimate token count for message content (plain text or blocks)."""
    if isinstance(content, str):
        return estimate_tokens(content)

    parts = []
    images = 0
    for block in content:
        if isinstance(block, TextBlock):
            parts.append(block.text)
        elif isinstance(block, ToolResultBlock):
            parts.append(block.content)
        elif isinstance(block, ToolUseBlock):
            # Structured input, count the serialized form
            parts.append(json.dumps(block.model_dump(mode="json")))
        elif isinstance(block, ImageBlock):
            images += 1
    return estimate_tokens(" ".join(parts)) + images * IMAGE_TOKEN_COST


def estimate_message_tokens(message: ContextMessage) -> int:
    """Estimate token count for a single message.

    A cached ``token_count`` on the message wins over any estimate.
    """
    if message.token_count is not None:
        return message.token_count

    tokens = estimate_content_tokens(message.content) + MESSAGE_OVERHEAD
    if message.tool_calls:
        tokens += len(message.tool_calls) * TOOL_CALL_OVERHEAD
    return tokens


def estimate_messages_tokens(messages: list[ContextMessage]) -> int:
    """Estimate total token count for a list of messages."""
    total = 0
    for msg in messages:
        total += estimate_message_tokens(msg)
    return total


def estimate_system_prompt_tokens(
    base_prompt: str,
    tool_count: int = 0,
    skill_count: int = 0,
    context_files: list[str] | None = None,
) -> int:
    """Estimate the size of a system prompt from its components.

    Tool schemas are counted at ~500 tokens each and skills at ~50. Context
    file contents use the plain 4 chars/token ratio.
    """
    tokens = estimate_tokens(base_prompt)
    tokens += tool_count * 500
    tokens += skill_count * 50
    for file_content in context_files or []:
        tokens += math.ceil(len(file_content) / 4)
    return tokens


def calculate_accuracy(estimated: int, actual: int) -> float:
    """Accuracy of an estimate against a provider-reported count, in percent (0-100)."""
    if actual == 0:
        return 100.0 if estimated == 0 else 0.0
    error = abs(estimated - actual)
    accuracy = 100 - (error / actual) * 100
    return max(0.0, min(100.0, accuracy))


def get_token_statistics(messages: list[ContextMessage]) -> TokenEstimationStats:
    """Summarize token usage and role breakdown of a message list."""
    total_tokens = estimate_messages_tokens(messages)
    message_count = len(messages)
    roles = [m.role for m in messages]
    return TokenEstimationStats(
        total_tokens=total_tokens,
        message_count=message_count,
        avg_tokens_per_message=total_tokens / message_count if message_count else 0.0,
        user_messages=roles.count("user"),
        assistant_messages=roles.count("assistant"),
        system_messages=roles.count("system"),
        tool_messages=roles.count("tool"),
    )
