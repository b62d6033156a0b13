"""Pattern-based extraction of decisions, tasks, facts, issues and files."""

from .adapter import ExtractionAdapter, deduplicate_items
from .scanner import (
    BUNDLED_PATTERN_FILE,
    PatternDefinition,
    PatternFinding,
    PatternScanner,
    RegexPatternScanner,
    category_for_pattern,
    load_pattern_file,
)

__all__ = [
    "BUNDLED_PATTERN_FILE",
    "ExtractionAdapter",
    "PatternDefinition",
    "PatternFinding",
    "PatternScanner",
    "RegexPatternScanner",
    "category_for_pattern",
    "deduplicate_items",
    "load_pattern_file",
]
