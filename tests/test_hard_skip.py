"""
Tests for HardSkipRuleSet

Verifies:
1. Each skip type fires on its canonical inputs
2. Anti-skip dominates any skip match
3. check() is pure: same input, same answer, no history
4. Malformed tables are rejected
"""

import json

import pytest

from oracle_gate.errors import RuleTableError
from oracle_gate.hard_skip import HardSkipRuleSet, SkipType


@pytest.fixture(scope="module")
def rules():
    return HardSkipRuleSet.load()


@pytest.mark.parametrize("text,expected", [
    ("What time is it?", SkipType.FACTUAL),
    ("che ora è", SkipType.FACTUAL),
    ("Will it rain tomorrow?", SkipType.FACTUAL),
    ("run the tests", SkipType.OPERATIONAL),
    ("How do I configure nginx", SkipType.OPERATIONAL),
    ("open the file", SkipType.OPERATIONAL),
    ("ok", SkipType.ACKNOWLEDGMENT),
    ("Thanks.", SkipType.ACKNOWLEDGMENT),
    ("grazie", SkipType.ACKNOWLEDGMENT),
    ("hello", SkipType.GREETING),
    ("Good morning", SkipType.GREETING),
    ("  ciao  ", SkipType.GREETING),
    ("HELLO", SkipType.GREETING),
])
def test_skip_types(rules, text, expected):
    result = rules.check(text)
    assert result.should_skip
    assert result.matched_type is expected
    assert result.pattern is not None
    assert result.vetoed_by is None


@pytest.mark.parametrize("text", [
    "I can't anymore",
    "basta",
    "no more",
    "I'm done",
    "non ce la faccio",
    "I feel empty",
    "help",
])
def test_anti_skip_blocks(rules, text):
    result = rules.check(text)
    assert not result.should_skip
    assert result.vetoed_by is not None


def test_anti_skip_dominates_matching_skip_rule(rules):
    """'What is the point?' fits the definition rule but carries a meaning marker."""
    skip_only = HardSkipRuleSet(list(rules.skip_rules), [], version="skip-only")
    assert skip_only.check("What is the point?").should_skip

    result = rules.check("What is the point?")
    assert not result.should_skip
    assert result.vetoed_by == "meaning"


def test_plain_message_is_not_skipped(rules):
    result = rules.check("I had a long talk with my sister today")
    assert not result.should_skip
    assert result.matched_type is None
    assert result.vetoed_by is None


def test_empty_text_is_not_skipped(rules):
    assert not rules.check("").should_skip


def test_confidence_is_reported(rules):
    result = rules.check("What time is it?")
    assert result.rule_id == "time"
    assert result.confidence == pytest.approx(0.99)


def test_check_is_pure(rules):
    first = rules.check("ok")
    rules.check("I can't anymore")
    assert rules.check("ok") == first


def test_first_matching_rule_wins():
    rules = HardSkipRuleSet.from_table({
        "version": "t",
        "anti_skip": [{"id": "a", "pattern": "never"}],
        "skip": [
            {"id": "first", "type": "greeting", "pattern": "^hi"},
            {"id": "second", "type": "acknowledgment", "pattern": "^hi there$"},
        ],
    })
    assert rules.check("hi there").rule_id == "first"


def test_skip_table_without_anti_skip_rejected():
    with pytest.raises(RuleTableError):
        HardSkipRuleSet.from_table({
            "version": "t",
            "skip": [{"type": "greeting", "pattern": "^hi$"}],
        })


def test_unknown_skip_type_rejected():
    with pytest.raises(RuleTableError):
        HardSkipRuleSet.from_table({
            "version": "t",
            "anti_skip": [{"pattern": "x"}],
            "skip": [{"type": "smalltalk", "pattern": "^hi$"}],
        })


def test_missing_pattern_rejected():
    with pytest.raises(RuleTableError):
        HardSkipRuleSet.from_table({
            "version": "t",
            "anti_skip": [{"id": "a"}],
        })


def test_load_from_path(tmp_path):
    path = tmp_path / "rules.json"
    path.write_text(json.dumps({
        "version": "custom-1",
        "anti_skip": [{"id": "no", "pattern": "no more"}],
        "skip": [{"id": "nm", "type": "acknowledgment", "pattern": "^no more$"}],
    }))
    rules = HardSkipRuleSet.load(path)
    assert rules.version == "custom-1"
    assert rules.check("no more").vetoed_by == "no"


def test_missing_table_file_rejected(tmp_path):
    with pytest.raises(RuleTableError):
        HardSkipRuleSet.load(tmp_path / "missing.json")
