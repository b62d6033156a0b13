"""Context manager: pre-turn checks and compaction.

The host calls ``check_before_turn`` before every model request and
``compact`` when the check recommends it. Turns for one session must be
serialized by the caller; the manager does not lock across calls.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import Any

from .adapter import MessageAdapter, generate_message_id
from .budget import ContextBudgetCalculator
from .config import ContextManagementConfig, ContextZoneThresholds, ProactiveHistoryConfig
from .errors import ContextKeeperError
from .extraction import ExtractionAdapter
from .sliding import SlidingWindowManager
from .snapshot import SnapshotService
from .summarization import SummarizationService
from .tokens import estimate_messages_tokens
from .types import (
    CompactionDetails,
    CompactionResult,
    ContextBudget,
    ContextCheckResult,
    ContextMessage,
    ExtractionResult,
    MemoryFlushResult,
    SlidingAction,
    SlidingResult,
    SnapshotTrigger,
    SummarizationResult,
)

logger = logging.getLogger(__name__)

# -- Constants ----------------------------------------------------------------

SUMMARY_USER_PREFIX = "[Prior conversation summary]\n"

# Window assumed for the post-compaction budget when no budget was supplied.
DEFAULT_CONTEXT_WINDOW = 200_000

# -- Helpers ------------------------------------------------------------------


def build_summary_message(summary: str) -> ContextMessage:
    """Wrap a summary as the user message that replaces dropped history."""
    return ContextMessage(
        role="user",
        content=SUMMARY_USER_PREFIX + summary,
        id=generate_message_id(),
        timestamp=datetime.now(timezone.utc),
    )


def is_summary_message(msg: ContextMessage) -> bool:
    """Whether ``msg`` was produced by ``build_summary_message``."""
    return (
        msg.role == "user"
        and isinstance(msg.content, str)
        and msg.content.startswith(SUMMARY_USER_PREFIX)
    )


def build_compacted_history(result: CompactionResult) -> list[ContextMessage]:
    """History to continue with: the summary message (if any) then the kept messages."""
    if not result.ok:
        return []
    if result.summary_message is None:
        return list(result.messages_kept)
    return [result.summary_message, *result.messages_kept]


def _describe(sliding_result: SlidingResult, action: SlidingAction) -> str:
    return (
        f"{action.type} compaction: Dropped {len(sliding_result.messages_dropped)} messages "
        f"({sliding_result.tokens_removed:,} tokens), "
        f"kept {len(sliding_result.messages_kept)} messages"
    )


# -- Manager ------------------------------------------------------------------


class ContextManager:
    """Coordinates budget checks, sliding, extraction, summarization and snapshots.

    Collaborators are injected. Without a summarization service dropped
    history is never summarized, and without a snapshot service nothing is
    persisted. An extraction adapter is built from the proactive history
    config on first use when none is given.
    """

    def __init__(
        self,
        config: ContextManagementConfig,
        summarization_service: SummarizationService | None = None,
        snapshot_service: SnapshotService | None = None,
        extraction_adapter: ExtractionAdapter | None = None,
        message_adapter: MessageAdapter | None = None,
        sliding_manager: SlidingWindowManager | None = None,
    ) -> None:
        self._config = config
        self.summarization_service = summarization_service
        self.snapshot_service = snapshot_service
        self.message_adapter = message_adapter or MessageAdapter()
        self.sliding_manager = sliding_manager or SlidingWindowManager()
        self.budget_calculator = ContextBudgetCalculator(self._thresholds(config))
        self._extraction_adapter = extraction_adapter
        self._owns_extraction_adapter = extraction_adapter is None
        self._last_extraction: dict[str, float] = {}

    @property
    def config(self) -> ContextManagementConfig:
        return self._config

    def update_config(self, config: ContextManagementConfig) -> None:
        """Swap the configuration. A self-built extraction adapter is rebuilt."""
        self._config = config
        self.budget_calculator = ContextBudgetCalculator(self._thresholds(config))
        if self._owns_extraction_adapter:
            self._extraction_adapter = None

    def get_extraction_adapter(
        self, config: ProactiveHistoryConfig | None = None
    ) -> ExtractionAdapter:
        if self._extraction_adapter is None:
            self._extraction_adapter = ExtractionAdapter(
                config=config or self._config.proactive_history
            )
        return self._extraction_adapter

    # -- Public API --

    def check_before_turn(
        self,
        session_id: str,
        messages: list[ContextMessage],
        system_prompt_tokens: int,
        context_window: int,
        reserve_tokens: int,
    ) -> ContextCheckResult:
        """Compute the budget and the action it calls for, if any."""
        sliding_config = self._config.sliding_window
        budget = self.budget_calculator.calculate(
            messages, system_prompt_tokens, context_window, reserve_tokens
        )
        action = None
        if sliding_config is not None:
            action = self.sliding_manager.should_slide(budget, sliding_config)

        if action is not None:
            logger.debug(
                "Session %s at %.1f%% (%s): %s",
                session_id,
                budget.utilization_ratio * 100,
                budget.zone,
                action.type,
            )
        return ContextCheckResult(budget=budget, needs_compaction=action is not None, action=action)

    async def compact(
        self,
        session_id: str,
        messages: list[ContextMessage],
        action: SlidingAction,
        config: ContextManagementConfig | None = None,
        budget: ContextBudget | None = None,
        timeout: float | None = None,
    ) -> CompactionResult:
        """Shrink ``messages`` as ``action`` prescribes.

        Order: snapshot, slide, extract from the dropped messages, then
        summarize them. Extraction runs before summarization so it sees the
        original text. Snapshot and summarization failures are logged and the
        compaction still succeeds.

        Args:
            session_id: Session the history belongs to
            messages: Full current history, oldest first
            action: Action returned by ``check_before_turn``
            config: Overrides the manager's configuration for this call
            budget: Budget from ``check_before_turn``; sizes the post-compaction budget
            timeout: Seconds to wait for the summarizer
        """
        config = config or self._config
        sliding_config = config.sliding_window
        if sliding_config is None:
            return CompactionResult(ok=False, reason="Sliding window not configured")

        try:
            snapshot_id = await self._snapshot(session_id, messages, action, config)

            if sliding_config.slide_strategy == "turn":
                sliding_result = self.sliding_manager.slide_by_turns(
                    messages, action, sliding_config
                )
            else:
                sliding_result = self.sliding_manager.slide(messages, action, sliding_config)

            validation = self.sliding_manager.validate_result(
                sliding_result, action, sliding_config
            )
            if not validation.valid:
                logger.warning(
                    "Compaction of session %s below configured floors: %s",
                    session_id,
                    validation.reason,
                )

            extracted = self._extract(session_id, messages, sliding_result, action, config, budget)
            summary = await self._summarize(session_id, sliding_result, config, timeout)
        except ContextKeeperError as e:
            logger.warning("Compaction of session %s failed: %s", session_id, e.reason)
            return CompactionResult(ok=False, reason=e.reason)

        tokens_before = estimate_messages_tokens(messages)
        tokens_after = estimate_messages_tokens(sliding_result.messages_kept)
        kept = sliding_result.messages_kept

        details = CompactionDetails(
            description=_describe(sliding_result, action),
            tokens_before=tokens_before,
            tokens_after=tokens_after,
            compression_ratio=tokens_after / tokens_before if tokens_before else 1.0,
            messages_dropped=len(sliding_result.messages_dropped),
            messages_kept=len(kept),
            tier=sliding_result.summary_tier,
            first_kept_message_id=kept[0].id if kept else None,
        )

        summary_message = build_summary_message(summary.summary) if summary else None
        after = [summary_message, *kept] if summary_message else kept
        budget_after = self.budget_calculator.calculate(
            after,
            budget.system_prompt if budget else 0,
            budget.total if budget else DEFAULT_CONTEXT_WINDOW,
            budget.reserved if budget else 0,
            thresholds=self._thresholds(config),
        )

        logger.info("Session %s: %s", session_id, details.description)
        return CompactionResult(
            ok=True,
            compacted=True,
            messages_kept=kept,
            messages_dropped=sliding_result.messages_dropped,
            result=details,
            sliding_result=sliding_result,
            extracted=extracted,
            summary=summary,
            summary_message=summary_message,
            snapshot_id=snapshot_id,
            budget=budget_after,
            validation=validation,
        )

    async def flush_memory(
        self, session_id: str, messages: list[ContextMessage]
    ) -> MemoryFlushResult:
        """Handle a host memory flush when ``triggers.on_memory_flush`` is set.

        Snapshots the full history (trigger ``memory-flush``) and extracts
        from it. A snapshot failure is logged and does not stop extraction.
        """
        history = self._config.proactive_history
        if history is None or not history.enabled or not history.triggers.on_memory_flush:
            return MemoryFlushResult(flushed=False)

        snapshot_id = None
        if self.snapshot_service is not None and history.snapshots.enabled:
            snapshot_id = await self._take_snapshot(
                session_id, messages, "memory-flush", {}, history
            )

        extracted = self.get_extraction_adapter(history).extract(messages)
        self._last_extraction[session_id] = time.monotonic()
        logger.debug(
            "Memory flush for session %s: %d items extracted", session_id, extracted.total
        )
        return MemoryFlushResult(flushed=True, snapshot_id=snapshot_id, extracted=extracted)

    # -- Private helpers --

    @staticmethod
    def _thresholds(config: ContextManagementConfig) -> ContextZoneThresholds:
        if config.sliding_window is not None:
            return config.sliding_window.thresholds
        return ContextZoneThresholds()

    async def _snapshot(
        self,
        session_id: str,
        messages: list[ContextMessage],
        action: SlidingAction,
        config: ContextManagementConfig,
    ) -> str | None:
        history = config.proactive_history
        if self.snapshot_service is None or history is None or not history.snapshots.enabled:
            return None
        metadata: dict[str, Any] = {
            "action": action.type,
            "zone": action.zone,
            "reason": action.reason,
        }
        return await self._take_snapshot(
            session_id, messages, "auto-compaction", metadata, history
        )

    async def _take_snapshot(
        self,
        session_id: str,
        messages: list[ContextMessage],
        trigger: SnapshotTrigger,
        metadata: dict[str, Any],
        history: ProactiveHistoryConfig,
    ) -> str | None:
        try:
            snapshot = await self.snapshot_service.create_snapshot(
                session_id,
                messages,
                trigger=trigger,
                metadata=metadata,
                max_snapshots=history.snapshots.max_snapshots,
            )
        except Exception as e:
            logger.warning("Snapshot (%s) of session %s failed: %s", trigger, session_id, e)
            return None
        return snapshot.id

    def _extract(
        self,
        session_id: str,
        messages: list[ContextMessage],
        sliding_result: SlidingResult,
        action: SlidingAction,
        config: ContextManagementConfig,
        budget: ContextBudget | None,
    ) -> ExtractionResult | None:
        history = config.proactive_history
        if history is None or not history.enabled or not sliding_result.messages_dropped:
            return None

        utilization = (
            budget.utilization_ratio
            if budget is not None
            else self._zone_floor(action, config)
        )
        adapter = self.get_extraction_adapter(history)
        last = self._last_extraction.get(session_id)
        since_last = time.monotonic() - last if last is not None else None

        triggered = (
            history.triggers.on_compaction
            or (
                history.triggers.on_threshold is not None
                and utilization >= history.triggers.on_threshold
            )
            or adapter.should_extract(len(messages), utilization, since_last)
        )
        if not triggered:
            return None

        extracted = adapter.extract(sliding_result.messages_dropped)
        self._last_extraction[session_id] = time.monotonic()
        return extracted

    @staticmethod
    def _zone_floor(action: SlidingAction, config: ContextManagementConfig) -> float:
        """Lowest utilization at which ``action`` is recommended."""
        thresholds = ContextManager._thresholds(config)
        return {
            "prune": thresholds.proactive_prune,
            "compact-light": thresholds.light_compaction,
            "compact-aggressive": thresholds.aggressive_compaction,
            "compact-emergency": thresholds.emergency,
        }[action.type]

    async def _summarize(
        self,
        session_id: str,
        sliding_result: SlidingResult,
        config: ContextManagementConfig,
        timeout: float | None,
    ) -> SummarizationResult | None:
        if (
            self.summarization_service is None
            or not sliding_result.needs_summarization
            or sliding_result.summary_tier == "none"
            or not sliding_result.messages_dropped
        ):
            return None
        if config.summarization is not None and not config.summarization.enabled:
            return None

        try:
            return await self.summarization_service.summarize(
                sliding_result.messages_dropped, sliding_result.summary_tier, timeout=timeout
            )
        except Exception as e:
            logger.warning(
                "Summarization for session %s failed, compacting without summary: %s",
                session_id,
                e,
            )
            return None


def create_context_manager(
    config: ContextManagementConfig | dict[str, Any] | None = None,
    summarization_service: SummarizationService | None = None,
    snapshot_service: SnapshotService | None = None,
    extraction_adapter: ExtractionAdapter | None = None,
    message_adapter: MessageAdapter | None = None,
) -> ContextManager:
    """Build a manager with every absent config section filled with defaults.

    Defaults: hybrid mode, turn-aligned slides, keep 10 turns / 20 messages /
    10000 tokens, snapshots on with 10 kept per session. Without an injected
    snapshot service one is built from ``proactive_history.snapshots``.
    """
    if config is None:
        config = ContextManagementConfig()
    elif isinstance(config, dict):
        config = ContextManagementConfig.model_validate(config)
    config = config.with_defaults()

    snapshots_config = config.proactive_history.snapshots
    if snapshot_service is None and snapshots_config.enabled:
        snapshot_service = SnapshotService.from_config(snapshots_config)

    return ContextManager(
        config,
        summarization_service=summarization_service,
        snapshot_service=snapshot_service,
        extraction_adapter=extraction_adapter,
        message_adapter=message_adapter,
    )
