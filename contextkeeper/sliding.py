"""Sliding window decisions and execution.

``should_slide`` decides whether and how hard to shrink history;
``slide`` / ``slide_by_turns`` perform the shrink. Both are pure: the input
list is never modified and the kept messages are always a suffix of it.
"""

from __future__ import annotations

import logging
import math

from .config import SlidingWindowConfig
from .tokens import estimate_message_tokens, estimate_messages_tokens
from .types import (
    ContextBudget,
    ContextMessage,
    SlidingAction,
    SlidingActionType,
    SlidingResult,
    SummaryTier,
    ValidationOutcome,
)

logger = logging.getLogger(__name__)

# -- Constants ----------------------------------------------------------------

# Never keep fewer messages than this after a slide. Milder actions keep more
# because they should disturb the conversation less.
MIN_MESSAGES_TO_KEEP: dict[str, int] = {
    "compact-emergency": 10,
    "compact-aggressive": 15,
    "compact-light": 20,
    "prune": 30,
}

# Same floor for turn-aligned slides, counted in turns.
MIN_TURNS_TO_KEEP: dict[str, int] = {
    "compact-emergency": 5,
    "compact-aggressive": 8,
    "compact-light": 10,
    "prune": 15,
}

# Used only to turn a token target into an advisory message count.
AVG_TOKENS_PER_MESSAGE = 500

SUMMARY_TIERS: dict[str, SummaryTier] = {
    "compact-emergency": "archival",
    "compact-aggressive": "compressed",
    "compact-light": "condensed",
    "prune": "none",
}

# (action, zone, share of current usage to remove, reason), most severe first.
_ACTION_LADDER: list[tuple[SlidingActionType, str, str, float, str]] = [
    (
        "compact-emergency",
        "critical",
        "emergency",
        0.6,
        "Context critically full (>={pct}%), emergency compaction required",
    ),
    (
        "compact-aggressive",
        "red",
        "aggressive_compaction",
        0.4,
        "Context very full (>={pct}%), aggressive compaction recommended",
    ),
    (
        "compact-light",
        "orange",
        "light_compaction",
        0.3,
        "Context filling up (>={pct}%), light compaction recommended",
    ),
    (
        "prune",
        "yellow",
        "proactive_prune",
        0.15,
        "Context growing (>={pct}%), proactive pruning recommended",
    ),
]

_ACTION_DESCRIPTIONS: dict[str, str] = {
    "prune": "Pruning old history",
    "compact-light": "Light compaction",
    "compact-aggressive": "Aggressive compaction",
    "compact-emergency": "Emergency compaction",
}


class SlidingWindowManager:
    """Decides when to slide the window and executes the slide.

    The per-action floors default to ``MIN_MESSAGES_TO_KEEP`` and
    ``MIN_TURNS_TO_KEEP``; pass overrides to tune them.
    """

    def __init__(
        self,
        min_messages_to_keep: dict[str, int] | None = None,
        min_turns_to_keep: dict[str, int] | None = None,
    ) -> None:
        self._min_messages = {**MIN_MESSAGES_TO_KEEP, **(min_messages_to_keep or {})}
        self._min_turns = {**MIN_TURNS_TO_KEEP, **(min_turns_to_keep or {})}

    # -- Decision --

    def should_slide(
        self, budget: ContextBudget, config: SlidingWindowConfig
    ) -> SlidingAction | None:
        """Return the action the budget calls for, or ``None`` if none is needed."""
        if not config.enabled:
            return None

        ratio = budget.utilization_ratio
        for action_type, zone, threshold_name, drop_ratio, reason in _ACTION_LADDER:
            threshold = getattr(config.thresholds, threshold_name)
            if ratio >= threshold:
                return SlidingAction(
                    type=action_type,
                    zone=zone,
                    reason=reason.format(pct=round(threshold * 100)),
                    target_drop_count=self._calculate_drop_count(budget, drop_ratio),
                    target_token_reduction=math.floor(budget.current_usage * drop_ratio),
                )
        return None

    # -- Execution --

    def slide(
        self,
        messages: list[ContextMessage],
        action: SlidingAction,
        config: SlidingWindowConfig,
    ) -> SlidingResult:
        """Drop the oldest messages, keeping a suffix sized by ``config.mode``."""
        keep_count = self.calculate_keep_recent(messages, action, config)
        split_index = max(0, len(messages) - keep_count)
        return self._build_result(messages[:split_index], messages[split_index:], action)

    def calculate_keep_recent(
        self,
        messages: list[ContextMessage],
        action: SlidingAction,
        config: SlidingWindowConfig,
    ) -> int:
        """Number of trailing messages to keep."""
        keep_recent = config.keep_recent
        by_messages = max(keep_recent.messages, self.min_messages_to_keep(action))

        if config.mode == "message-based":
            return by_messages

        by_tokens = self._calculate_keep_by_token_budget(
            messages, action, keep_recent.token_budget
        )
        if config.mode == "token-based":
            return by_tokens

        # hybrid
        return max(by_tokens, by_messages)

    def split_into_turns(self, messages: list[ContextMessage]) -> list[list[ContextMessage]]:
        """Group messages into turns.

        A turn starts at each user message and absorbs everything up to the
        next one. Messages before the first user message form their own turn.
        """
        turns: list[list[ContextMessage]] = []
        current: list[ContextMessage] = []
        for msg in messages:
            if msg.role == "user" and current:
                turns.append(current)
                current = [msg]
            else:
                current.append(msg)
        if current:
            turns.append(current)
        return turns

    def slide_by_turns(
        self,
        messages: list[ContextMessage],
        action: SlidingAction,
        config: SlidingWindowConfig,
    ) -> SlidingResult:
        """Drop the oldest complete turns. A turn is never split."""
        turns = self.split_into_turns(messages)
        turns_to_keep = max(config.keep_recent.turns, self.min_turns_to_keep(action))
        split_index = max(0, len(turns) - turns_to_keep)

        dropped = [msg for turn in turns[:split_index] for msg in turn]
        kept = [msg for turn in turns[split_index:] for msg in turn]
        return self._build_result(dropped, kept, action)

    # -- Validation --

    def validate_result(
        self,
        result: SlidingResult,
        action: SlidingAction,
        config: SlidingWindowConfig,
    ) -> ValidationOutcome:
        """Advisory post-hoc check of a slide against the configured floors."""
        kept = len(result.messages_kept)
        if kept < config.keep_recent.messages:
            return ValidationOutcome(
                valid=False,
                reason=f"Too few messages kept ({kept} < {config.keep_recent.messages})",
            )

        tokens_kept = estimate_messages_tokens(result.messages_kept)
        if tokens_kept < config.keep_recent.token_budget:
            return ValidationOutcome(
                valid=False,
                reason=f"Too few tokens kept ({tokens_kept} < {config.keep_recent.token_budget})",
            )

        if action.target_token_reduction:
            required = action.target_token_reduction * 0.5
            if result.tokens_removed < required:
                return ValidationOutcome(
                    valid=False,
                    reason=f"Insufficient token reduction ({result.tokens_removed} < {required})",
                )

        return ValidationOutcome(valid=True)

    # -- Floors --

    def min_messages_to_keep(self, action: SlidingAction) -> int:
        return self._min_messages.get(action.type, 20)

    def min_turns_to_keep(self, action: SlidingAction) -> int:
        return self._min_turns.get(action.type, 10)

    # -- Private helpers --

    def _calculate_keep_by_token_budget(
        self, messages: list[ContextMessage], action: SlidingAction, token_budget: int
    ) -> int:
        accumulated = 0
        keep_count = 0
        for msg in reversed(messages):
            msg_tokens = estimate_message_tokens(msg)
            if accumulated + msg_tokens > token_budget:
                break
            accumulated += msg_tokens
            keep_count += 1
        return max(keep_count, self.min_messages_to_keep(action))

    @staticmethod
    def _calculate_drop_count(budget: ContextBudget, drop_ratio: float) -> int:
        return math.floor(budget.current_usage * drop_ratio / AVG_TOKENS_PER_MESSAGE)

    @staticmethod
    def _build_result(
        dropped: list[ContextMessage], kept: list[ContextMessage], action: SlidingAction
    ) -> SlidingResult:
        tokens_removed = estimate_messages_tokens(dropped)
        logger.debug(
            "%s: dropping %d messages (%d tokens), keeping %d",
            action.type,
            len(dropped),
            tokens_removed,
            len(kept),
        )
        return SlidingResult(
            messages_kept=kept,
            messages_dropped=dropped,
            tokens_removed=tokens_removed,
            needs_summarization=action.type != "prune",
            summary_tier=SUMMARY_TIERS[action.type],
        )


# -- Utilities ----------------------------------------------------------------


def estimate_average_tokens_per_message(messages: list[ContextMessage]) -> int:
    if not messages:
        return 0
    return estimate_messages_tokens(messages) // len(messages)


def find_turn_boundaries(messages: list[ContextMessage]) -> list[int]:
    """Indexes of the user messages that start each turn."""
    return [i for i, msg in enumerate(messages) if msg.role == "user"]


def describe_sliding_action(action: SlidingAction) -> str:
    """Human-readable action, e.g. ``Light compaction [orange zone] (~12 messages)``."""
    count = f" (~{action.target_drop_count} messages)" if action.target_drop_count else ""
    return f"{_ACTION_DESCRIPTIONS[action.type]} [{action.zone} zone]{count}"
