"""Multi-tier summarization of dropped history."""

from __future__ import annotations

import asyncio
import logging
import math

from ..config import SummarizationConfig
from ..errors import SummarizationDisabledError, SummarizationError, SummarizationTimeoutError
from ..tokens import estimate_messages_tokens, estimate_tokens
from ..types import (
    TIER_COMPRESSION_RATIOS,
    TIER_TOLERANCE,
    ContextMessage,
    SummarizationResult,
    SummarizationTier,
    ValidationOutcome,
)
from .prompts import build_system_prompt, build_tier_prompt, format_transcript
from .providers import CompletionProvider

logger = logging.getLogger(__name__)

# Low temperature keeps summaries consistent between runs.
SUMMARY_TEMPERATURE = 0.3

MIN_SUMMARY_TOKENS = 100

# Every summary uses this tier when ``mode`` is "single".
SINGLE_MODE_TIER: SummarizationTier = "compressed"


def select_tier(target_reduction: float) -> SummarizationTier:
    """Pick the tier for a requested reduction (0..1)."""
    if target_reduction >= 0.9:
        return "archival"
    if target_reduction >= 0.7:
        return "compressed"
    return "condensed"


def max_tokens_for_tier(tier: SummarizationTier, original_tokens: int) -> int:
    return max(MIN_SUMMARY_TOKENS, math.floor(original_tokens * TIER_COMPRESSION_RATIOS[tier]))


class SummarizationService:
    """Summarizes message history through an injected completion provider.

    Args:
        provider: Completion provider to call
        config: Summarization settings; defaults to enabled, all preserve rules on
        timeout: Default seconds to wait for the provider; ``config.timeout`` wins
            when set, and a per-call timeout wins over both
    """

    def __init__(
        self,
        provider: CompletionProvider,
        config: SummarizationConfig | None = None,
        timeout: float | None = None,
    ):
        self.provider = provider
        self.config = config or SummarizationConfig()
        self.timeout = self.config.timeout if self.config.timeout is not None else timeout

    async def summarize(
        self,
        messages: list[ContextMessage],
        tier: SummarizationTier,
        timeout: float | None = None,
    ) -> SummarizationResult:
        """Summarize ``messages`` at ``tier`` (or ``SINGLE_MODE_TIER`` in single mode).

        Raises:
            SummarizationDisabledError: If summarization is disabled
            SummarizationTimeoutError: If the provider does not answer in time
            SummarizationError: If the provider call fails
        """
        if not self.config.enabled:
            raise SummarizationDisabledError("Summarization is disabled")
        if self.config.mode == "single":
            tier = SINGLE_MODE_TIER

        original_tokens = estimate_messages_tokens(messages)
        prompt_messages = [
            {"role": "system", "content": build_system_prompt(tier, self.config.preserve_rules)},
            {
                "role": "user",
                "content": build_tier_prompt(
                    tier, format_transcript(messages), self.config.custom_instructions
                ),
            },
        ]
        max_tokens = max_tokens_for_tier(tier, original_tokens)
        effective_timeout = timeout if timeout is not None else self.timeout

        try:
            summary = await asyncio.wait_for(
                self.provider.complete(
                    prompt_messages,
                    temperature=SUMMARY_TEMPERATURE,
                    max_tokens=max_tokens,
                    timeout=effective_timeout,
                ),
                timeout=effective_timeout,
            )
        except asyncio.TimeoutError as e:
            raise SummarizationTimeoutError(effective_timeout) from e
        except SummarizationError:
            raise
        except Exception as e:
            raise SummarizationError(f"Completion provider failed: {e}") from e

        summary_tokens = estimate_tokens(summary)
        compression_ratio = summary_tokens / original_tokens if original_tokens else 0.0
        logger.debug(
            "Summarized %d messages at %s tier: %d -> %d tokens",
            len(messages),
            tier,
            original_tokens,
            summary_tokens,
        )
        return SummarizationResult(
            summary=summary,
            tier=tier,
            original_tokens=original_tokens,
            summary_tokens=summary_tokens,
            compression_ratio=compression_ratio,
            messages_count=len(messages),
        )

    async def summarize_auto(
        self,
        messages: list[ContextMessage],
        target_reduction: float,
        timeout: float | None = None,
    ) -> SummarizationResult:
        """Summarize with the tier chosen from ``target_reduction``."""
        return await self.summarize(messages, select_tier(target_reduction), timeout=timeout)

    def validate_summary(self, result: SummarizationResult) -> ValidationOutcome:
        """Check that a summary is within tolerance of its tier's target ratio."""
        expected = TIER_COMPRESSION_RATIOS[result.tier]
        limit = expected + TIER_TOLERANCE
        if result.compression_ratio > limit:
            return ValidationOutcome(
                valid=False,
                reason=(
                    f"Insufficient compression for {result.tier} tier: "
                    f"{result.compression_ratio * 100:.1f}% (expected ≤{limit * 100:.1f}%)"
                ),
            )
        return ValidationOutcome(valid=True)
