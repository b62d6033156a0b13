"""Data model for context management.

Messages flow through this package read-only: every operation returns new
lists (and, where needed, new messages) instead of editing its input.
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field

# -- Enumerations --------------------------------------------------------------

MessageRole = Literal["system", "user", "assistant", "tool"]
VALID_ROLES: tuple[str, ...] = ("system", "user", "assistant", "tool")

ContextZone = Literal["green", "yellow", "orange", "red", "critical"]

SlidingActionType = Literal["prune", "compact-light", "compact-aggressive", "compact-emergency"]

SummarizationTier = Literal["condensed", "compressed", "archival"]
SummaryTier = Literal["condensed", "compressed", "archival", "none"]

SnapshotTrigger = Literal["manual", "auto-compaction", "periodic", "memory-flush"]

ExtractedItemType = Literal["decision", "fact", "task", "error", "code", "context"]

# Target summary size as a fraction of the original, per tier.
TIER_COMPRESSION_RATIOS: dict[str, float] = {
    "condensed": 0.5,
    "compressed": 0.2,
    "archival": 0.05,
}

# Absolute tolerance applied on top of the tier ratio when validating.
TIER_TOLERANCE = 0.2


# -- Message content -----------------------------------------------------------


class TextBlock(BaseModel):
    """Plain text content."""

    type: Literal["text"] = "text"
    text: str = ""


class ToolResultBlock(BaseModel):
    """Output of a tool invocation fed back to the model."""

    type: Literal["tool_result"] = "tool_result"
    tool_use_id: str | None = None
    content: str = ""
    is_error: bool = False


class ToolUseBlock(BaseModel):
    """A tool invocation requested by the model."""

    type: Literal["tool_use"] = "tool_use"
    id: str | None = None
    name: str
    input: dict[str, Any] = Field(default_factory=dict)


class ImageBlock(BaseModel):
    """An image attachment (only its presence matters for budgeting)."""

    type: Literal["image"] = "image"
    source: str | None = None
    media_type: str | None = None


ContentBlock = Annotated[
    TextBlock | ToolResultBlock | ToolUseBlock | ImageBlock,
    Field(discriminator="type"),
]


class ToolFunction(BaseModel):
    """OpenAI-style function descriptor of a tool call."""

    name: str
    arguments: dict[str, Any] | str = Field(default_factory=dict)


class ToolCall(BaseModel):
    """A tool call attached to a message.

    Accepts both the flat ``{id, name, input}`` shape and the OpenAI
    ``{id, function: {name, arguments}}`` shape.
    """

    id: str | None = None
    name: str | None = None
    input: dict[str, Any] | None = None
    function: ToolFunction | None = None

    @property
    def tool_name(self) -> str:
        if self.function is not None:
            return self.function.name
        return self.name or "unknown-tool"

    @property
    def tool_arguments(self) -> dict[str, Any] | str:
        if self.function is not None:
            return self.function.arguments
        return self.input if self.input is not None else {}


class ContextMessage(BaseModel):
    """Internal working representation of one conversation message.

    ``token_count`` is a cached estimate. When set it is returned verbatim by
    the token estimator and never recomputed; whoever produces a message with
    different content must produce it without the cache (``model_copy`` with
    ``token_count=None``). Messages are frozen, so in-place edits are rejected.
    """

    model_config = ConfigDict(frozen=True)

    role: MessageRole
    content: str | list[ContentBlock] = ""
    tool_calls: list[ToolCall] | None = None
    id: str | None = None
    timestamp: datetime | None = None
    token_count: int | None = None


def content_to_text(content: str | list[Any], separator: str = "\n\n") -> str:
    """Flatten message content to the text a reader (or a pattern) would see.

    Text and tool-result blocks contribute their text; tool-use and image
    blocks carry no prose and are skipped.
    """
    if isinstance(content, str):
        return content
    parts = []
    for block in content:
        if isinstance(block, TextBlock):
            text = block.text
        elif isinstance(block, ToolResultBlock):
            text = block.content
        else:
            continue
        if text:
            parts.append(text)
    return separator.join(parts)


class HostMessage(BaseModel):
    """The host's persisted message format.

    Fields default to empty values so that structurally incomplete records can
    still be loaded and then rejected by validation instead of at parse time.
    """

    model_config = ConfigDict(populate_by_name=True)

    id: str = ""
    session_id: str = Field(default="", alias="sessionId")
    role: str = ""
    content: str = ""
    tool_calls: Any | None = Field(default=None, alias="toolCalls")
    created_at: str = Field(default="", alias="createdAt")

    def to_dict(self) -> dict[str, Any]:
        """Dump in the host's camelCase wire shape."""
        return self.model_dump(by_alias=True, exclude_none=True)


# -- Budget & sliding ----------------------------------------------------------


class ContextBudget(BaseModel):
    """Point-in-time view of how much of the history budget is used."""

    total: int
    system_prompt: int
    reserved: int
    history_budget: int
    current_usage: int
    utilization_ratio: float
    zone: ContextZone


class SlidingAction(BaseModel):
    """Recommended shrink operation. Targets are advisory estimates."""

    type: SlidingActionType
    zone: ContextZone
    reason: str
    target_drop_count: int | None = None
    target_token_reduction: int | None = None


class SlidingResult(BaseModel):
    """Outcome of a slide: ``messages_kept`` is always a suffix of the input."""

    messages_kept: list[ContextMessage]
    messages_dropped: list[ContextMessage]
    tokens_removed: int
    needs_summarization: bool
    summary_tier: SummaryTier = "none"


class ValidationOutcome(BaseModel):
    """Result of an advisory check."""

    valid: bool
    reason: str | None = None


class ContextCheckResult(BaseModel):
    """Result of the pre-turn check."""

    budget: ContextBudget
    needs_compaction: bool
    action: SlidingAction | None = None


# -- Summarization -------------------------------------------------------------


class SummarizationResult(BaseModel):
    """A generated summary and how much it compressed its input."""

    summary: str
    tier: SummarizationTier
    original_tokens: int
    summary_tokens: int
    compression_ratio: float
    messages_count: int


# -- Extraction ----------------------------------------------------------------


class ExtractedItem(BaseModel):
    """A structured fact recovered from history about to be dropped."""

    type: ExtractedItemType
    content: str
    source_message_id: str | None = None
    timestamp: datetime
    pattern_id: str
    pattern_name: str
    confidence: float
    severity: str | None = None


class ExtractionResult(BaseModel):
    """Extracted items grouped by category."""

    decisions: list[ExtractedItem] = Field(default_factory=list)
    facts: list[ExtractedItem] = Field(default_factory=list)
    tasks: list[ExtractedItem] = Field(default_factory=list)
    issues: list[ExtractedItem] = Field(default_factory=list)
    files: list[ExtractedItem] = Field(default_factory=list)

    @property
    def total(self) -> int:
        return sum(self.statistics().values())

    def statistics(self) -> dict[str, int]:
        """Item count per category."""
        return {
            "decisions": len(self.decisions),
            "facts": len(self.facts),
            "tasks": len(self.tasks),
            "issues": len(self.issues),
            "files": len(self.files),
        }


# -- Snapshots -----------------------------------------------------------------


class SnapshotInfo(BaseModel):
    """Snapshot header without the message bodies."""

    id: str
    session_id: str
    timestamp: datetime
    trigger: SnapshotTrigger
    message_count: int
    metadata: dict[str, Any] = Field(default_factory=dict)


class ContextSnapshot(BaseModel):
    """Immutable point-in-time copy of a session's message history."""

    id: str
    session_id: str
    timestamp: datetime
    trigger: SnapshotTrigger
    message_count: int
    messages: list[ContextMessage] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)

    def info(self) -> SnapshotInfo:
        return SnapshotInfo(
            id=self.id,
            session_id=self.session_id,
            timestamp=self.timestamp,
            trigger=self.trigger,
            message_count=self.message_count,
            metadata=self.metadata,
        )


class CleanupResult(BaseModel):
    """Aggregate counters from a snapshot cleanup pass."""

    sessions_processed: int = 0
    snapshots_deleted: int = 0
    bytes_freed: int = 0

    def merge(self, other: CleanupResult) -> CleanupResult:
        return CleanupResult(
            sessions_processed=self.sessions_processed + other.sessions_processed,
            snapshots_deleted=self.snapshots_deleted + other.snapshots_deleted,
            bytes_freed=self.bytes_freed + other.bytes_freed,
        )


# -- Compaction ----------------------------------------------------------------


class CompactionDetails(BaseModel):
    """Statistics of a completed compaction."""

    description: str
    tokens_before: int
    tokens_after: int
    compression_ratio: float
    messages_dropped: int
    messages_kept: int
    tier: SummaryTier = "none"
    first_kept_message_id: str | None = None


class CompactionResult(BaseModel):
    """Result of ``ContextManager.compact``.

    ``ok=False`` carries a human-readable ``reason`` and no messages.
    ``summary_message`` is ready to be placed in front of ``messages_kept``.
    """

    ok: bool
    compacted: bool = False
    reason: str | None = None
    messages_kept: list[ContextMessage] = Field(default_factory=list)
    messages_dropped: list[ContextMessage] = Field(default_factory=list)
    result: CompactionDetails | None = None
    sliding_result: SlidingResult | None = None
    extracted: ExtractionResult | None = None
    summary: SummarizationResult | None = None
    summary_message: ContextMessage | None = None
    snapshot_id: str | None = None
    budget: ContextBudget | None = None
    validation: ValidationOutcome | None = None


class MemoryFlushResult(BaseModel):
    """Result of ``ContextManager.flush_memory``. ``flushed`` is false when the trigger is off."""

    flushed: bool
    snapshot_id: str | None = None
    extracted: ExtractionResult | None = None
