"""
Tests for finding_matcher.py

Covers title matching rules, threshold behaviour, greedy clustering and
consensus counting on merged findings.
"""

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent / "scripts"))

from finding_matcher import FindingMatcher, merge_source_tags, normalize_text
from schemas import Finding, Severity


def _finding(title, source="openai", severity=Severity.HIGH, description=""):
    return Finding(title=title, severity=severity, source_tag=source, description=description)


class TestHelpers:
    def test_normalize_text(self):
        assert normalize_text("  Re-entrancy in `withdraw()`!! ") == "re entrancy in withdraw"

    def test_normalize_none(self):
        assert normalize_text(None) == ""

    def test_merge_source_tags_dedupes_in_order(self):
        assert merge_source_tags(["openai, anthropic", "anthropic", "", "deepseek"]) == [
            "openai",
            "anthropic",
            "deepseek",
        ]


class TestMatching:
    def setup_method(self):
        self.matcher = FindingMatcher()

    def test_equal_titles_match(self):
        assert self.matcher.matches(_finding("Reentrancy"), _finding("reentrancy"))

    def test_substring_match(self):
        assert self.matcher.matches(_finding("Reentrancy"), _finding("Reentrancy in withdraw function"))

    def test_short_substring_does_not_match(self):
        assert not self.matcher.matches(_finding("Overflow"), _finding("Integer overflow in mint"))

    def test_similar_titles_match(self):
        assert self.matcher.matches(_finding("Unchecked return value"), _finding("Unchecked return values"))

    def test_unrelated_titles_do_not_match(self):
        assert not self.matcher.matches(_finding("Use of tx.origin"), _finding("Timestamp dependence"))

    def test_identical_descriptions_match(self):
        a = _finding("Issue A", description="The withdraw function sends ether before updating state")
        b = _finding("Problem B", description="The withdraw function sends ether before updating state.")
        assert self.matcher.matches(a, b)

    def test_threshold_is_tunable(self):
        a, b = _finding("Missing access control"), _finding("Missing access check")
        assert FindingMatcher(similarity_threshold=0.7).matches(a, b)
        assert not FindingMatcher(similarity_threshold=0.99).matches(a, b)

    def test_invalid_threshold_rejected(self):
        with pytest.raises(ValueError):
            FindingMatcher(similarity_threshold=0)


class TestDeduplicate:
    def setup_method(self):
        self.matcher = FindingMatcher()

    def test_two_sources_same_finding_consensus_two(self):
        merged = self.matcher.deduplicate(
            [_finding("Reentrancy in withdraw", "openai"), _finding("Reentrancy in withdraw", "anthropic")]
        )
        assert len(merged) == 1
        assert merged[0].consensus_count == 2
        assert merged[0].source_tag == "openai, anthropic"

    def test_same_source_twice_counts_once(self):
        merged = self.matcher.deduplicate([_finding("Reentrancy", "openai"), _finding("Reentrancy", "openai")])
        assert len(merged) == 1
        assert merged[0].consensus_count == 1

    def test_merged_takes_most_severe(self):
        merged = self.matcher.deduplicate(
            [
                _finding("Reentrancy", "openai", Severity.MEDIUM),
                _finding("Reentrancy", "deepseek", Severity.CRITICAL),
            ]
        )
        assert merged[0].severity is Severity.CRITICAL

    def test_higher_priority_member_leads(self):
        merged = self.matcher.deduplicate(
            [
                _finding("Reentrancy", "deepseek", Severity.CRITICAL),
                _finding("Reentrancy", "openai", Severity.LOW),
            ],
            priorities=[0, 3],
        )
        assert len(merged) == 1
        assert merged[0].severity is Severity.LOW
        assert merged[0].source_tag == "deepseek, openai"

    def test_cluster_keeps_priorities(self):
        clusters = self.matcher.cluster([_finding("Reentrancy"), _finding("Reentrancy", "anthropic")], [1, 2])
        assert len(clusters) == 1
        assert clusters[0].priorities == [1, 2]

    def test_idempotent(self):
        findings = [
            _finding("Reentrancy in withdraw", "openai"),
            _finding("Reentrancy in withdraw", "anthropic"),
            _finding("Use of tx.origin", "openai", Severity.MEDIUM),
        ]
        once = self.matcher.deduplicate(findings)
        twice = self.matcher.deduplicate(once)
        assert once == twice

    def test_preserves_first_seen_order(self):
        merged = self.matcher.deduplicate(
            [_finding("Use of tx.origin"), _finding("Reentrancy"), _finding("use of tx.origin", "deepseek")]
        )
        assert [f.title for f in merged] == ["Use of tx.origin", "Reentrancy"]

    def test_supporting_sources(self):
        target = _finding("Reentrancy", "openai")
        candidates = [_finding("Reentrancy", "anthropic"), _finding("Timestamp dependence", "deepseek")]
        assert self.matcher.supporting_sources(target, candidates) == ["openai", "anthropic"]
