"""Context budget calculation and pressure zones."""

from __future__ import annotations

import math

from .config import ContextZoneThresholds
from .tokens import estimate_messages_tokens
from .types import ContextBudget, ContextMessage, ContextZone

# Utilization to aim for after compacting from a zone, and the matching drop ratio.
_COMPACTION_TARGETS: dict[str, tuple[float, float]] = {
    "critical": (0.5, 0.6),
    "red": (0.55, 0.4),
    "orange": (0.6, 0.3),
    "yellow": (0.65, 0.2),
    "green": (0.7, 0.15),
}

_ZONE_LABELS: dict[str, str] = {
    "green": "GREEN",
    "yellow": "YELLOW",
    "orange": "ORANGE",
    "red": "RED",
    "critical": "CRITICAL",
}

_URGENCY: dict[str, str] = {
    "critical": "critical",
    "red": "high",
    "orange": "medium",
    "yellow": "low",
    "green": "none",
}


def determine_zone(utilization: float, thresholds: ContextZoneThresholds) -> ContextZone:
    """Map a utilization ratio to its zone. Highest threshold wins."""
    if utilization >= thresholds.emergency:
        return "critical"
    if utilization >= thresholds.aggressive_compaction:
        return "red"
    if utilization >= thresholds.light_compaction:
        return "orange"
    if utilization >= thresholds.proactive_prune:
        return "yellow"
    return "green"


class ContextBudgetCalculator:
    """Turns token counts and model limits into a ``ContextBudget``."""

    def __init__(self, thresholds: ContextZoneThresholds | None = None) -> None:
        self._thresholds = thresholds or ContextZoneThresholds()

    @property
    def thresholds(self) -> ContextZoneThresholds:
        return self._thresholds

    def calculate(
        self,
        messages: list[ContextMessage],
        system_prompt_tokens: int,
        context_window: int,
        reserve_tokens: int,
        thresholds: ContextZoneThresholds | None = None,
    ) -> ContextBudget:
        """Compute the budget for the given history.

        The history budget is what remains of the context window after the
        system prompt and the response reserve. When nothing remains, any
        history at all counts as infinitely over budget.
        """
        current_usage = estimate_messages_tokens(messages)
        history_budget = max(0, context_window - system_prompt_tokens - reserve_tokens)

        if history_budget > 0:
            utilization_ratio = current_usage / history_budget
        else:
            utilization_ratio = math.inf if current_usage > 0 else 0.0

        return ContextBudget(
            total=context_window,
            system_prompt=system_prompt_tokens,
            reserved=reserve_tokens,
            history_budget=history_budget,
            current_usage=current_usage,
            utilization_ratio=utilization_ratio,
            zone=determine_zone(utilization_ratio, thresholds or self._thresholds),
        )

    def determine_zone(
        self, utilization: float, thresholds: ContextZoneThresholds | None = None
    ) -> ContextZone:
        return determine_zone(utilization, thresholds or self._thresholds)

    def tokens_until_next_zone(self, budget: ContextBudget) -> int:
        """Tokens that can still be added before the budget enters the next zone."""
        next_threshold = {
            "green": self._thresholds.proactive_prune,
            "yellow": self._thresholds.light_compaction,
            "orange": self._thresholds.aggressive_compaction,
            "red": self._thresholds.emergency,
        }.get(budget.zone)
        if next_threshold is None:
            return 0
        return max(0, math.floor(budget.history_budget * next_threshold - budget.current_usage))

    def estimate_turns_until_next_zone(
        self, budget: ContextBudget, avg_tokens_per_turn: float
    ) -> float:
        """Rough number of turns before the next zone (``inf`` if turns are free)."""
        remaining = self.tokens_until_next_zone(budget)
        if remaining == 0:
            return 0
        if avg_tokens_per_turn <= 0:
            return math.inf
        return math.floor(remaining / avg_tokens_per_turn)

    def calculate_compaction_target(self, budget: ContextBudget) -> tuple[int, float]:
        """Target token count after compaction and the drop ratio to get there."""
        target_utilization, drop_ratio = _COMPACTION_TARGETS[budget.zone]
        return math.floor(budget.history_budget * target_utilization), drop_ratio

    @staticmethod
    def estimate_system_prompt_tokens(
        tool_count: int,
        skill_count: int,
        workspace_files: int,
        avg_workspace_file_size: int,
    ) -> int:
        """Rough system prompt size when the actual prompt is not at hand.

        Base prompt ~2000, tools ~500 each, skills ~50 each, workspace files
        at 4 chars/token, runtime info ~500.
        """
        base = 2000
        tools = tool_count * 500
        skills = skill_count * 50
        workspace = (workspace_files * avg_workspace_file_size) / 4
        runtime = 500
        return math.ceil(base + tools + skills + workspace + runtime)


def format_context_budget(budget: ContextBudget) -> str:
    """One-line human-readable budget, e.g. ``[ORANGE] 78.2% (7,820/10,000 tokens)``."""
    pct = budget.utilization_ratio * 100
    return (
        f"[{_ZONE_LABELS[budget.zone]}] {pct:.1f}% "
        f"({budget.current_usage:,}/{budget.history_budget:,} tokens)"
    )


def should_compact(budget: ContextBudget, thresholds: ContextZoneThresholds) -> bool:
    """Whether the budget has reached the light compaction threshold."""
    return budget.utilization_ratio >= thresholds.light_compaction


def get_compaction_urgency(budget: ContextBudget) -> str:
    """``none`` / ``low`` / ``medium`` / ``high`` / ``critical`` for the budget's zone."""
    return _URGENCY[budget.zone]
