"""Configuration models and loading.

Keys follow the host's config file, which mixes camelCase (``keepRecent``,
``proactivePrune``) and snake_case (``slide_strategy``, ``on_compaction``).
Every field accepts both its alias and its Python name.
"""

from __future__ import annotations

import json
import os
import re
from typing import Any, Literal

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, model_validator

from .errors import ConfigurationError

load_dotenv()

DEFAULT_STATE_DIR = "./data"

# Default extraction interval: 1 hour.
DEFAULT_EXTRACTION_INTERVAL_S = 60 * 60

_DURATION_RE = re.compile(r"^(\d+(?:\.\d+)?)\s*(s|m|h|d)$")


def parse_duration(s: str) -> float:
    """Parse a human-readable duration string to seconds.

    Supports: ``'45s'``, ``'30m'``, ``'1h'``, ``'3d'``.

    Raises:
        ValueError: If the format is invalid.
    """
    match = _DURATION_RE.match(s.strip())
    if not match:
        raise ValueError(f'Invalid duration: "{s}". Expected format: "30m", "1h", "3d", etc.')
    value = float(match.group(1))
    unit = match.group(2)
    if unit == "s":
        return value
    elif unit == "m":
        return value * 60
    elif unit == "h":
        return value * 3600
    return value * 86400


def default_state_dir() -> str:
    """Base directory for persisted session data (``CONTEXTKEEPER_STATE_DIR``)."""
    return os.getenv("CONTEXTKEEPER_STATE_DIR", DEFAULT_STATE_DIR)


class _ConfigModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


# -- Sliding window ------------------------------------------------------------


class ContextZoneThresholds(_ConfigModel):
    """Utilization ratios at which each zone begins."""

    proactive_prune: float = Field(default=0.6, alias="proactivePrune", gt=0, le=1)
    light_compaction: float = Field(default=0.75, alias="lightCompaction", gt=0, le=1)
    aggressive_compaction: float = Field(default=0.85, alias="aggressiveCompaction", gt=0, le=1)
    emergency: float = Field(default=0.95, gt=0, le=1)

    @model_validator(mode="after")
    def _check_ascending(self) -> ContextZoneThresholds:
        ordered = [
            self.proactive_prune,
            self.light_compaction,
            self.aggressive_compaction,
            self.emergency,
        ]
        if any(a >= b for a, b in zip(ordered, ordered[1:])):
            raise ValueError(
                "Zone thresholds must be strictly ascending: "
                "proactivePrune < lightCompaction < aggressiveCompaction < emergency"
            )
        return self


class KeepRecentConfig(_ConfigModel):
    """Hard floors on what a slide must keep."""

    turns: int = Field(default=10, ge=0)
    messages: int = Field(default=20, ge=0)
    token_budget: int = Field(default=10000, alias="tokenBudget", ge=0)


class SlidingWindowConfig(_ConfigModel):
    enabled: bool = True
    mode: Literal["message-based", "token-based", "hybrid"] = "hybrid"
    thresholds: ContextZoneThresholds = Field(default_factory=ContextZoneThresholds)
    keep_recent: KeepRecentConfig = Field(default_factory=KeepRecentConfig, alias="keepRecent")
    slide_strategy: Literal["message", "turn"] = Field(default="turn", alias="slideStrategy")


# -- Summarization -------------------------------------------------------------


class PreserveRules(_ConfigModel):
    """Categories the summarizer is told to always keep."""

    decisions: bool = True
    tasks: bool = True
    errors: bool = True
    code: bool = True
    context: bool = True


class SummarizationConfig(_ConfigModel):
    enabled: bool = True
    mode: Literal["single", "multi-tier"] = "multi-tier"
    preserve_rules: PreserveRules = Field(default_factory=PreserveRules, alias="preserveRules")
    custom_instructions: str | None = Field(default=None, alias="customInstructions")
    timeout: float | None = Field(
        default=None, gt=0, description="Seconds to wait for the completion provider"
    )


# -- Proactive history ---------------------------------------------------------


class ExtractorsConfig(_ConfigModel):
    decisions: bool = True
    facts: bool = True
    tasks: bool = True
    issues: bool = True
    files: bool = True

    def enabled_categories(self) -> list[str]:
        return [name for name, on in self.model_dump().items() if on]


class TriggersConfig(_ConfigModel):
    on_compaction: bool = Field(default=True, alias="onCompaction")
    on_threshold: float | None = Field(default=0.75, alias="onThreshold", gt=0)
    on_memory_flush: bool = Field(default=True, alias="onMemoryFlush")
    periodic: str | None = Field(default=None, description='Extraction interval, e.g. "30m"')

    @model_validator(mode="after")
    def _check_periodic(self) -> TriggersConfig:
        if self.periodic is not None:
            parse_duration(self.periodic)
        return self


class SnapshotsConfig(_ConfigModel):
    enabled: bool = True
    dir: str | None = None
    max_snapshots: int = Field(default=10, alias="maxSnapshots", ge=1)
    compression: bool = True


class ProactiveHistoryConfig(_ConfigModel):
    enabled: bool = True
    extractors: ExtractorsConfig = Field(default_factory=ExtractorsConfig)
    triggers: TriggersConfig = Field(default_factory=TriggersConfig)
    snapshots: SnapshotsConfig = Field(default_factory=SnapshotsConfig)
    custom_pattern_files: list[str] = Field(default_factory=list, alias="customPatternFiles")
    min_confidence: float = Field(default=0.5, alias="minConfidence", ge=0, le=1)

    @property
    def extraction_interval(self) -> float:
        """Seconds after which a new extraction is due."""
        if self.triggers.periodic:
            return parse_duration(self.triggers.periodic)
        return DEFAULT_EXTRACTION_INTERVAL_S


# -- Top level -----------------------------------------------------------------


class ContextManagementConfig(_ConfigModel):
    """Complete context-management configuration. Absent sections are disabled."""

    sliding_window: SlidingWindowConfig | None = Field(default=None, alias="slidingWindow")
    summarization: SummarizationConfig | None = None
    proactive_history: ProactiveHistoryConfig | None = Field(
        default=None, alias="proactiveHistory"
    )

    def with_defaults(self) -> ContextManagementConfig:
        """Fill every absent section with its default configuration."""
        return self.model_copy(
            update={
                "sliding_window": self.sliding_window or SlidingWindowConfig(),
                "summarization": self.summarization or SummarizationConfig(),
                "proactive_history": self.proactive_history or ProactiveHistoryConfig(),
            }
        )


def load_config(path: str) -> ContextManagementConfig:
    """Load configuration from a YAML or JSON file.

    The file may hold the configuration at top level or under a
    ``context_management`` key.

    Raises:
        ConfigurationError: If the file is missing, unparsable or invalid
    """
    if not os.path.exists(path):
        raise ConfigurationError(f"Config file not found: {path}")

    with open(path, encoding="utf-8") as f:
        raw = f.read()

    try:
        if path.endswith((".yaml", ".yml")):
            data: Any = yaml.safe_load(raw) or {}
        else:
            data = json.loads(raw)
    except (yaml.YAMLError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"Failed to parse config file {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {path} must contain a mapping")

    data = data.get("context_management", data.get("contextManagement", data))

    try:
        return ContextManagementConfig.model_validate(data)
    except ValueError as e:
        raise ConfigurationError(f"Invalid configuration in {path}: {e}") from e
