"""Prompt templates for history summarization."""

from __future__ import annotations

import json

from ..config import PreserveRules
from ..types import ContextMessage, SummarizationTier

# -- Constants ----------------------------------------------------------------

SYSTEM_PROMPT_BASE = (
    "You are an expert conversation summarizer for an AI assistant system. "
    "Your task is to create {tier} summaries of conversation history that "
    "preserve critical information while reducing length."
)

PRESERVE_RULE_LABELS: dict[str, str] = {
    "decisions": "Key decisions and agreements",
    "tasks": "Action items and TODOs",
    "errors": "Errors and issues encountered",
    "code": "Code examples and technical details",
    "context": "Important context and background",
}

NEVER_SUMMARIZE = [
    "Error messages (preserve verbatim)",
    "Code blocks (preserve structure and key details)",
    "File paths and technical identifiers",
    "User preferences and requirements",
]

TIER_INSTRUCTIONS: dict[str, str] = {
    "condensed": (
        "Create a CONDENSED summary (target: 50% reduction).\n"
        "- Preserve key points and decisions\n"
        "- Keep important details and context\n"
        "- Remove redundant exchanges and small talk\n"
        "- Maintain chronological flow"
    ),
    "compressed": (
        "Create a COMPRESSED summary (target: 80% reduction).\n"
        "- Focus on essential outcomes and decisions\n"
        "- Preserve critical errors and solutions\n"
        "- Combine related topics\n"
        "- Be concise but clear"
    ),
    "archival": (
        "Create an ARCHIVAL summary (target: 95% reduction).\n"
        "- Ultra-brief overview of main topics\n"
        "- Only most critical decisions and outcomes\n"
        "- List format acceptable\n"
        "- Extreme compression while preserving must-know information"
    ),
}

# -- Builders -----------------------------------------------------------------


def build_system_prompt(tier: SummarizationTier, rules: PreserveRules) -> str:
    """System prompt listing what to always preserve and what never to summarize."""
    enabled = [label for key, label in PRESERVE_RULE_LABELS.items() if getattr(rules, key)]
    lines = [SYSTEM_PROMPT_BASE.format(tier=tier), ""]
    if enabled:
        lines.append("CRITICAL: Always preserve:")
        lines.extend(f"- {label}" for label in enabled)
        lines.append("")
    lines.append("NEVER summarize:")
    lines.extend(f"- {item}" for item in NEVER_SUMMARIZE)
    return "\n".join(lines)


def build_tier_prompt(
    tier: SummarizationTier, transcript: str, custom_instructions: str | None = None
) -> str:
    """User prompt carrying the tier instructions and the transcript."""
    parts = [TIER_INSTRUCTIONS[tier]]
    if custom_instructions:
        parts.append(f"Additional instructions:\n{custom_instructions}")
    parts.append(f"CONVERSATION TO SUMMARIZE:\n{transcript}")
    parts.append(f"Generate a {tier.upper()} summary that preserves critical information:")
    return "\n\n".join(parts)


def _blocks_to_text(content: list) -> str:
    # Non-text blocks show up as a "[type]" marker
    parts = []
    for block in content:
        text = getattr(block, "text", None)
        parts.append(text if text else f"[{block.type}]")
    return " ".join(parts)


def format_transcript(messages: list[ContextMessage]) -> str:
    """Render messages as ``[ROLE]: content`` lines, with tool calls indented below."""
    lines = []
    for msg in messages:
        content = msg.content if isinstance(msg.content, str) else _blocks_to_text(msg.content)
        lines.append(f"[{msg.role.upper()}]: {content}")
        for call in msg.tool_calls or []:
            lines.append(f"  → Tool: {call.tool_name}({json.dumps(call.tool_arguments)})")
    return "\n\n".join(lines)
