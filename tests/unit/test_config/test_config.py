"""Unit tests for contextkeeper.config and contextkeeper.log modules."""

import json
import logging

import pytest
from pydantic import ValidationError

from contextkeeper.config import (
    ContextManagementConfig,
    ContextZoneThresholds,
    ProactiveHistoryConfig,
    SlidingWindowConfig,
    TriggersConfig,
    default_state_dir,
    load_config,
    parse_duration,
)
from contextkeeper.errors import ConfigurationError
from contextkeeper.log import configure_file_logging

YAML_CONFIG = """
context_management:
  slidingWindow:
    mode: token-based
    slide_strategy: message
    keepRecent:
      messages: 12
      tokenBudget: 4000
    thresholds:
      proactivePrune: 0.5
      lightCompaction: 0.7
      aggressiveCompaction: 0.8
      emergency: 0.9
  summarization:
    customInstructions: Keep ticket numbers.
    preserveRules:
      code: false
  proactiveHistory:
    triggers:
      on_compaction: false
      periodic: 30m
    snapshots:
      maxSnapshots: 3
"""


class TestParseDuration:
    """Tests for parse_duration."""

    @pytest.mark.parametrize(
        "value, seconds",
        [("45s", 45), ("30m", 1800), ("1h", 3600), ("3d", 259200), ("1.5h", 5400)],
    )
    def test_valid(self, value, seconds):
        assert parse_duration(value) == seconds

    @pytest.mark.parametrize("value", ["", "10", "5w", "h1"])
    def test_invalid(self, value):
        with pytest.raises(ValueError, match="Invalid duration"):
            parse_duration(value)


class TestConfigModels:
    """Tests for field aliases, defaults and validation."""

    def test_aliases_and_names_both_accepted(self):
        by_alias = SlidingWindowConfig.model_validate({"slideStrategy": "message"})
        by_name = SlidingWindowConfig.model_validate({"slide_strategy": "message"})
        assert by_alias.slide_strategy == by_name.slide_strategy == "message"

    def test_defaults(self):
        config = SlidingWindowConfig()
        assert config.mode == "hybrid"
        assert config.slide_strategy == "turn"
        assert config.keep_recent.messages == 20
        assert config.thresholds.emergency == 0.95

    def test_thresholds_must_ascend(self):
        with pytest.raises(ValidationError, match="strictly ascending"):
            ContextZoneThresholds(proactive_prune=0.8, light_compaction=0.7)

    def test_threshold_range(self):
        with pytest.raises(ValidationError):
            ContextZoneThresholds(emergency=1.5)

    def test_invalid_periodic(self):
        with pytest.raises(ValidationError):
            TriggersConfig(periodic="soon")

    def test_extraction_interval(self):
        assert ProactiveHistoryConfig().extraction_interval == 3600
        config = ProactiveHistoryConfig(triggers=TriggersConfig(periodic="10m"))
        assert config.extraction_interval == 600

    def test_absent_sections_are_none_until_defaulted(self):
        config = ContextManagementConfig()
        assert config.sliding_window is None
        filled = config.with_defaults()
        assert filled.sliding_window == SlidingWindowConfig()
        assert filled.summarization is not None
        assert filled.proactive_history is not None

    def test_with_defaults_keeps_given_sections(self):
        config = ContextManagementConfig(sliding_window=SlidingWindowConfig(mode="token-based"))
        assert config.with_defaults().sliding_window.mode == "token-based"

    def test_default_state_dir_env(self, monkeypatch):
        monkeypatch.setenv("CONTEXTKEEPER_STATE_DIR", "/var/lib/ck")
        assert default_state_dir() == "/var/lib/ck"


class TestLoadConfig:
    """Tests for load_config."""

    def test_yaml_nested_key(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(YAML_CONFIG)

        config = load_config(str(path))

        sliding = config.sliding_window
        assert sliding.mode == "token-based"
        assert sliding.slide_strategy == "message"
        assert sliding.keep_recent.messages == 12
        assert sliding.keep_recent.token_budget == 4000
        assert sliding.keep_recent.turns == 10
        assert sliding.thresholds.emergency == 0.9
        assert config.summarization.custom_instructions == "Keep ticket numbers."
        assert config.summarization.preserve_rules.code is False
        assert config.proactive_history.triggers.on_compaction is False
        assert config.proactive_history.extraction_interval == 1800
        assert config.proactive_history.snapshots.max_snapshots == 3

    def test_json_top_level(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"summarization": {"enabled": False}}))
        config = load_config(str(path))
        assert config.summarization.enabled is False
        assert config.sliding_window is None

    def test_empty_yaml(self, tmp_path):
        path = tmp_path / "config.yml"
        path.write_text("")
        assert load_config(str(path)) == ContextManagementConfig()

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="not found"):
            load_config(str(tmp_path / "absent.yaml"))

    def test_unparsable(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text("{not json")
        with pytest.raises(ConfigurationError, match="Failed to parse"):
            load_config(str(path))

    def test_not_a_mapping(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ConfigurationError, match="mapping"):
            load_config(str(path))

    def test_invalid_values(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("slidingWindow:\n  mode: sideways\n")
        with pytest.raises(ConfigurationError, match="Invalid configuration"):
            load_config(str(path))


class TestConfigureFileLogging:
    """Tests for configure_file_logging."""

    def test_writes_package_logs_to_file(self, tmp_path):
        log_file = tmp_path / "ck.log"
        handler = configure_file_logging(str(log_file), level=logging.DEBUG)
        package_logger = logging.getLogger("contextkeeper")
        try:
            logging.getLogger("contextkeeper.sliding").debug("slid %d messages", 4)
            handler.flush()
            text = log_file.read_text()
            assert "contextkeeper.sliding: slid 4 messages" in text
            assert "DEBUG" in text
        finally:
            package_logger.removeHandler(handler)
            handler.close()
            package_logger.propagate = True
            package_logger.setLevel(logging.NOTSET)
