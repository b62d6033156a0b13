"""Extraction of structured items from history about to be dropped."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from ..config import ProactiveHistoryConfig
from ..types import ContextMessage, ExtractedItem, ExtractionResult, content_to_text
from .scanner import (
    CATEGORY_PREFIXES,
    PatternFinding,
    PatternScanner,
    RegexPatternScanner,
    category_for_pattern,
)

logger = logging.getLogger(__name__)

# Utilization at or above which extraction is always due.
EXTRACTION_UTILIZATION_THRESHOLD = 0.7

# Extract on every Nth message.
EXTRACTION_MESSAGE_INTERVAL = 50

CATEGORIES = list(CATEGORY_PREFIXES.values())

_ITEM_TYPES = {
    "decisions": "decision",
    "tasks": "task",
    "facts": "fact",
    "issues": "error",
    "files": "code",
}


def deduplicate_items(items: list[ExtractedItem]) -> list[ExtractedItem]:
    """Drop items whose lower-cased, trimmed content was already seen. First wins."""
    seen: set[str] = set()
    unique = []
    for item in items:
        key = item.content.lower().strip()
        if key in seen:
            continue
        seen.add(key)
        unique.append(item)
    return unique


class ExtractionAdapter:
    """Routes scanner findings into decisions, tasks, facts, issues and files.

    Without an explicit scanner, a ``RegexPatternScanner`` is built from the
    config's custom pattern files (or the bundled ones) and confidence floor.
    """

    def __init__(
        self,
        scanner: PatternScanner | None = None,
        config: ProactiveHistoryConfig | None = None,
    ):
        self.config = config or ProactiveHistoryConfig()
        self.scanner = scanner or RegexPatternScanner(
            pattern_files=self.config.custom_pattern_files or None,
            min_confidence=self.config.min_confidence,
        )

    def extract(self, messages: list[ContextMessage]) -> ExtractionResult:
        """Extract every enabled category from ``messages``."""
        enabled = set(self.config.extractors.enabled_categories())
        buckets: dict[str, list[ExtractedItem]] = {category: [] for category in CATEGORIES}

        for msg in messages:
            for finding in self._scan_message(msg):
                category = category_for_pattern(finding.pattern_id)
                if category is None or category not in enabled:
                    continue
                buckets[category].append(self._to_item(finding, category, msg))

        result = ExtractionResult(
            **{category: deduplicate_items(items) for category, items in buckets.items()}
        )
        logger.debug("Extracted %d items from %d messages", result.total, len(messages))
        return result

    def extract_category(
        self, messages: list[ContextMessage], category: str
    ) -> list[ExtractedItem]:
        """Extract a single category, regardless of the extractor switches."""
        if category not in CATEGORIES:
            raise ValueError(f"Unknown extraction category: {category}")
        items = []
        for msg in messages:
            for finding in self._scan_message(msg):
                if category_for_pattern(finding.pattern_id) == category:
                    items.append(self._to_item(finding, category, msg))
        return deduplicate_items(items)

    def should_extract(
        self,
        message_count: int,
        utilization_ratio: float,
        seconds_since_last: float | None = None,
    ) -> bool:
        """Whether an extraction is due. Any one condition is enough."""
        if utilization_ratio >= EXTRACTION_UTILIZATION_THRESHOLD:
            return True
        if message_count > 0 and message_count % EXTRACTION_MESSAGE_INTERVAL == 0:
            return True
        return (
            seconds_since_last is not None
            and seconds_since_last > self.config.extraction_interval
        )

    def _scan_message(self, msg: ContextMessage) -> list[PatternFinding]:
        text = content_to_text(msg.content)
        if not text:
            return []
        return self.scanner.scan(text)

    @staticmethod
    def _to_item(finding: PatternFinding, category: str, msg: ContextMessage) -> ExtractedItem:
        return ExtractedItem(
            type=_ITEM_TYPES[category],
            content=finding.match,
            source_message_id=msg.id,
            timestamp=msg.timestamp or datetime.now(timezone.utc),
            pattern_id=finding.pattern_id,
            pattern_name=finding.pattern_name,
            confidence=finding.confidence,
            severity=finding.severity,
        )
