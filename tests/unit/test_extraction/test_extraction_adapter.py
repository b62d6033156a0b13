"""Unit tests for contextkeeper.extraction.adapter module."""

from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest

from contextkeeper.config import ExtractorsConfig, ProactiveHistoryConfig, TriggersConfig
from contextkeeper.extraction import ExtractionAdapter, PatternFinding, PatternScanner
from contextkeeper.types import ContextMessage, ImageBlock, TextBlock, ToolResultBlock

# -- Helpers ----------------------------------------------------------------


class KeywordScanner(PatternScanner):
    """Reports every line starting with '<prefix>:' as a finding of pattern '<prefix>-line'."""

    def scan(self, text):
        findings = []
        for line in text.splitlines():
            prefix, sep, rest = line.partition(":")
            if sep:
                findings.append(
                    PatternFinding(
                        pattern_id=f"{prefix.strip()}-line",
                        pattern_name=prefix.strip(),
                        match=rest,
                        confidence=0.9,
                        severity="low",
                    )
                )
        return findings


def make_message(content, msg_id="m1") -> ContextMessage:
    return ContextMessage(
        id=msg_id,
        role="assistant",
        content=content,
        timestamp=datetime(2025, 1, 1, tzinfo=timezone.utc),
    )


# -- extract ----------------------------------------------------------------------


class TestExtract:
    """Tests for ExtractionAdapter.extract."""

    def test_routes_by_prefix(self):
        adapter = ExtractionAdapter(scanner=KeywordScanner())
        msg = make_message(
            "decision: use sqlite\ntask: write docs\nfact: python 3.12\n"
            "issue: tests flaky\nfile: src/app.py\nsecret: tok_abc"
        )
        result = adapter.extract([msg])
        assert [i.content for i in result.decisions] == [" use sqlite"]
        assert [i.type for i in result.tasks] == ["task"]
        assert [i.type for i in result.issues] == ["error"]
        assert [i.type for i in result.files] == ["code"]
        assert result.total == 5
        assert result.statistics() == {
            "decisions": 1,
            "facts": 1,
            "tasks": 1,
            "issues": 1,
            "files": 1,
        }

    def test_item_carries_source(self):
        adapter = ExtractionAdapter(scanner=KeywordScanner())
        item = adapter.extract([make_message("decision: ship", "abc")]).decisions[0]
        assert item.source_message_id == "abc"
        assert item.pattern_id == "decision-line"
        assert item.pattern_name == "decision"
        assert item.confidence == 0.9
        assert item.severity == "low"
        assert item.timestamp == datetime(2025, 1, 1, tzinfo=timezone.utc)

    def test_deduplicates_case_insensitively(self):
        adapter = ExtractionAdapter(scanner=KeywordScanner())
        msgs = [
            make_message("decision: Use Postgres", "a"),
            make_message("decision:   use postgres  ", "b"),
        ]
        decisions = adapter.extract(msgs).decisions
        assert len(decisions) == 1
        assert decisions[0].source_message_id == "a"

    def test_disabled_extractor_skipped(self):
        config = ProactiveHistoryConfig(extractors=ExtractorsConfig(tasks=False))
        adapter = ExtractionAdapter(scanner=KeywordScanner(), config=config)
        result = adapter.extract([make_message("task: a\ndecision: b")])
        assert result.tasks == []
        assert len(result.decisions) == 1

    def test_flattens_blocks(self):
        scanner = MagicMock(spec=PatternScanner)
        scanner.scan.return_value = []
        adapter = ExtractionAdapter(scanner=scanner)
        msg = make_message(
            [TextBlock(text="first"), ImageBlock(), ToolResultBlock(content="second")]
        )
        adapter.extract([msg])
        scanner.scan.assert_called_once_with("first\n\nsecond")

    def test_empty_content_not_scanned(self):
        scanner = MagicMock(spec=PatternScanner)
        adapter = ExtractionAdapter(scanner=scanner)
        adapter.extract([make_message("")])
        scanner.scan.assert_not_called()

    def test_default_scanner_uses_bundled_patterns(self):
        adapter = ExtractionAdapter()
        result = adapter.extract(
            [make_message("We agreed to deploy on Monday. TODO: update the changelog")]
        )
        assert len(result.decisions) == 1
        assert len(result.tasks) >= 1


class TestExtractCategory:
    """Tests for ExtractionAdapter.extract_category."""

    def test_single_category(self):
        adapter = ExtractionAdapter(scanner=KeywordScanner())
        items = adapter.extract_category(
            [make_message("task: a\ntask: A\ndecision: b")], "tasks"
        )
        assert len(items) == 1
        assert items[0].type == "task"

    def test_unknown_category(self):
        adapter = ExtractionAdapter(scanner=KeywordScanner())
        with pytest.raises(ValueError):
            adapter.extract_category([], "secrets")


class TestShouldExtract:
    """Tests for the extraction policy helper."""

    def test_high_utilization(self):
        adapter = ExtractionAdapter(scanner=KeywordScanner())
        assert adapter.should_extract(3, 0.7)

    def test_every_fiftieth_message(self):
        adapter = ExtractionAdapter(scanner=KeywordScanner())
        assert adapter.should_extract(100, 0.1)
        assert not adapter.should_extract(101, 0.1)

    def test_zero_messages_not_a_multiple(self):
        adapter = ExtractionAdapter(scanner=KeywordScanner())
        assert not adapter.should_extract(0, 0.1)

    def test_elapsed_time(self):
        adapter = ExtractionAdapter(scanner=KeywordScanner())
        assert adapter.should_extract(3, 0.1, seconds_since_last=3601)
        assert not adapter.should_extract(3, 0.1, seconds_since_last=3600)

    def test_periodic_overrides_interval(self):
        config = ProactiveHistoryConfig(triggers=TriggersConfig(periodic="10m"))
        adapter = ExtractionAdapter(scanner=KeywordScanner(), config=config)
        assert adapter.should_extract(3, 0.1, seconds_since_last=601)
