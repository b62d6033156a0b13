"""Pattern scanners used to find extractable items in message text."""

from __future__ import annotations

import logging
import os
import re
from abc import ABC, abstractmethod
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError

from ..errors import PatternFileError

logger = logging.getLogger(__name__)

BUNDLED_PATTERN_FILE = os.path.join(
    os.path.dirname(os.path.abspath(__file__)), "patterns", "extraction_patterns.yaml"
)

DEFAULT_MIN_CONFIDENCE = 0.5

# Pattern id prefix -> extraction category.
CATEGORY_PREFIXES: dict[str, str] = {
    "decision-": "decisions",
    "task-": "tasks",
    "fact-": "facts",
    "issue-": "issues",
    "file-": "files",
}

_FLAG_NAMES = {
    "ignorecase": re.IGNORECASE,
    "multiline": re.MULTILINE,
    "dotall": re.DOTALL,
}


def category_for_pattern(pattern_id: str) -> str | None:
    """Category a pattern id routes to, or ``None`` for unrouted prefixes."""
    for prefix, category in CATEGORY_PREFIXES.items():
        if pattern_id.startswith(prefix):
            return category
    return None


class PatternFinding(BaseModel):
    """One match reported by a scanner."""

    pattern_id: str
    pattern_name: str
    match: str
    confidence: float
    severity: str | None = None
    start: int | None = None
    end: int | None = None


class PatternDefinition(BaseModel):
    """A pattern as declared in a pattern file."""

    id: str
    name: str
    pattern: str
    confidence: float = Field(default=0.8, ge=0, le=1)
    severity: str | None = None
    flags: list[str] = Field(default_factory=list)


class PatternScanner(ABC):
    """Finds pattern matches in text."""

    @abstractmethod
    def scan(self, text: str) -> list[PatternFinding]:
        pass


def load_pattern_file(path: str) -> list[PatternDefinition]:
    """Read pattern definitions from a YAML file.

    Raises:
        PatternFileError: If the file is missing or malformed
    """
    if not os.path.exists(path):
        raise PatternFileError(f"Pattern file not found: {path}")

    try:
        with open(path, encoding="utf-8") as f:
            data: Any = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise PatternFileError(f"Failed to parse pattern file {path}: {e}") from e

    if not isinstance(data, dict) or not isinstance(data.get("patterns"), list):
        raise PatternFileError(f"Pattern file {path} must contain a 'patterns' list")

    try:
        return [PatternDefinition.model_validate(p) for p in data["patterns"]]
    except ValidationError as e:
        raise PatternFileError(f"Invalid pattern in {path}: {e}") from e


class RegexPatternScanner(PatternScanner):
    """Regex scanner driven by YAML pattern files.

    Args:
        pattern_files: Files to load; defaults to the bundled pattern file
        categories: Only load patterns routed to these categories
        pattern_ids: Only load patterns with these ids
        min_confidence: Drop patterns whose confidence is below this floor
    """

    def __init__(
        self,
        pattern_files: list[str] | None = None,
        categories: list[str] | None = None,
        pattern_ids: list[str] | None = None,
        min_confidence: float = DEFAULT_MIN_CONFIDENCE,
    ):
        self.pattern_files = pattern_files or [BUNDLED_PATTERN_FILE]
        self.min_confidence = min_confidence
        self._patterns: list[tuple[PatternDefinition, re.Pattern[str]]] = []

        for path in self.pattern_files:
            for definition in load_pattern_file(path):
                if definition.confidence < min_confidence:
                    continue
                if pattern_ids is not None and definition.id not in pattern_ids:
                    continue
                if categories is not None and category_for_pattern(definition.id) not in categories:
                    continue
                self._patterns.append((definition, self._compile(definition, path)))

        logger.debug(
            "Loaded %d extraction patterns from %s", len(self._patterns), self.pattern_files
        )

    @property
    def pattern_ids(self) -> list[str]:
        return [definition.id for definition, _ in self._patterns]

    def scan(self, text: str) -> list[PatternFinding]:
        findings = []
        if not text:
            return findings
        for definition, regex in self._patterns:
            for m in regex.finditer(text):
                matched = m.group(0).strip()
                if not matched:
                    continue
                findings.append(
                    PatternFinding(
                        pattern_id=definition.id,
                        pattern_name=definition.name,
                        match=matched,
                        confidence=definition.confidence,
                        severity=definition.severity,
                        start=m.start(),
                        end=m.end(),
                    )
                )
        return findings

    @staticmethod
    def _compile(definition: PatternDefinition, path: str) -> re.Pattern[str]:
        flags = 0
        for name in definition.flags:
            if name.lower() not in _FLAG_NAMES:
                raise PatternFileError(
                    f"Unknown regex flag '{name}' for pattern {definition.id} in {path}"
                )
            flags |= _FLAG_NAMES[name.lower()]
        try:
            return re.compile(definition.pattern, flags)
        except re.error as e:
            raise PatternFileError(
                f"Invalid regex for pattern {definition.id} in {path}: {e}"
            ) from e
