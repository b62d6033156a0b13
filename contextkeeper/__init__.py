"""contextkeeper: context window management for conversational agents.

Budget accounting, sliding-window compaction, extraction of structured facts
from dropped history, multi-tier summarization and session snapshots.

Usage::

    from contextkeeper import create_context_manager

    manager = create_context_manager(summarization_service=service)
    check = manager.check_before_turn(session_id, messages, 2_000, 128_000, 4_000)
    if check.needs_compaction:
        result = await manager.compact(session_id, messages, check.action, budget=check.budget)
"""

from .adapter import MessageAdapter
from .budget import (
    ContextBudgetCalculator,
    determine_zone,
    format_context_budget,
    get_compaction_urgency,
    should_compact,
)
from .config import (
    ContextManagementConfig,
    ContextZoneThresholds,
    ExtractorsConfig,
    KeepRecentConfig,
    PreserveRules,
    ProactiveHistoryConfig,
    SlidingWindowConfig,
    SnapshotsConfig,
    SummarizationConfig,
    TriggersConfig,
    load_config,
    parse_duration,
)
from .errors import (
    ConfigurationError,
    ContextKeeperError,
    PatternFileError,
    SnapshotError,
    SummarizationDisabledError,
    SummarizationError,
    SummarizationTimeoutError,
)
from .extraction import ExtractionAdapter, PatternFinding, PatternScanner, RegexPatternScanner
from .log import configure_file_logging
from .manager import (
    ContextManager,
    build_compacted_history,
    build_summary_message,
    create_context_manager,
    is_summary_message,
)
from .sliding import (
    MIN_MESSAGES_TO_KEEP,
    MIN_TURNS_TO_KEEP,
    SlidingWindowManager,
    describe_sliding_action,
    estimate_average_tokens_per_message,
    find_turn_boundaries,
)
from .snapshot import (
    RestoreResult,
    SnapshotRestorer,
    SnapshotRotation,
    SnapshotService,
    format_bytes,
)
from .summarization import CompletionProvider, HttpCompletionProvider, SummarizationService
from .tokens import (
    calculate_accuracy,
    estimate_content_tokens,
    estimate_message_tokens,
    estimate_messages_tokens,
    estimate_system_prompt_tokens,
    estimate_tokens,
    get_token_statistics,
)
from .types import (
    CleanupResult,
    CompactionDetails,
    CompactionResult,
    ContextBudget,
    ContextCheckResult,
    ContextMessage,
    ContextSnapshot,
    ExtractedItem,
    ExtractionResult,
    HostMessage,
    MemoryFlushResult,
    ImageBlock,
    SlidingAction,
    SlidingResult,
    SnapshotInfo,
    SummarizationResult,
    TextBlock,
    ToolCall,
    ToolResultBlock,
    ToolUseBlock,
    ValidationOutcome,
)

__version__ = "0.1.0"

__all__ = [
    # Manager
    "ContextManager",
    "create_context_manager",
    "build_summary_message",
    "build_compacted_history",
    "is_summary_message",
    # Budget
    "ContextBudgetCalculator",
    "determine_zone",
    "format_context_budget",
    "get_compaction_urgency",
    "should_compact",
    # Sliding
    "SlidingWindowManager",
    "MIN_MESSAGES_TO_KEEP",
    "MIN_TURNS_TO_KEEP",
    "describe_sliding_action",
    "estimate_average_tokens_per_message",
    "find_turn_boundaries",
    # Tokens
    "calculate_accuracy",
    "estimate_content_tokens",
    "estimate_message_tokens",
    "estimate_messages_tokens",
    "estimate_system_prompt_tokens",
    "estimate_tokens",
    "get_token_statistics",
    # Collaborators
    "MessageAdapter",
    "ExtractionAdapter",
    "PatternFinding",
    "PatternScanner",
    "RegexPatternScanner",
    "CompletionProvider",
    "HttpCompletionProvider",
    "SummarizationService",
    "SnapshotService",
    "SnapshotRotation",
    "SnapshotRestorer",
    "RestoreResult",
    "format_bytes",
    # Config
    "ContextManagementConfig",
    "ContextZoneThresholds",
    "ExtractorsConfig",
    "KeepRecentConfig",
    "PreserveRules",
    "ProactiveHistoryConfig",
    "SlidingWindowConfig",
    "SnapshotsConfig",
    "SummarizationConfig",
    "TriggersConfig",
    "load_config",
    "parse_duration",
    # Errors
    "ContextKeeperError",
    "ConfigurationError",
    "PatternFileError",
    "SnapshotError",
    "SummarizationError",
    "SummarizationDisabledError",
    "SummarizationTimeoutError",
    # Types
    "CleanupResult",
    "CompactionDetails",
    "CompactionResult",
    "ContextBudget",
    "ContextCheckResult",
    "ContextMessage",
    "ContextSnapshot",
    "ExtractedItem",
    "ExtractionResult",
    "HostMessage",
    "MemoryFlushResult",
    "ImageBlock",
    "SlidingAction",
    "SlidingResult",
    "SnapshotInfo",
    "SummarizationResult",
    "TextBlock",
    "ToolCall",
    "ToolResultBlock",
    "ToolUseBlock",
    "ValidationOutcome",
    # Logging
    "configure_file_logging",
]
