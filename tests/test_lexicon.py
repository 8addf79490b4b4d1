"""
Tests for LexiconBooster

Verifies:
1. Packaged lexicon loads and covers the supported languages
2. Matches are summed, capped, and never lower the base score
3. Malformed tables are rejected
"""

import json
import math

import pytest

from oracle_gate.errors import RuleTableError
from oracle_gate.lexicon import LexiconBooster


def _table(markers, max_total_boost=0.4):
    return {"version": "test", "max_total_boost": max_total_boost, "markers": markers}


def _marker(pattern, weight, language="en", category="meaning"):
    return {"language": language, "pattern": pattern, "weight": weight, "category": category}


@pytest.fixture(scope="module")
def booster():
    return LexiconBooster.load()


def test_packaged_lexicon_loads(booster):
    assert booster.version == "5.1"
    assert booster.max_total_boost == 0.4
    assert set(booster.languages) == {"de", "en", "es", "fr", "it"}


def test_no_match_leaves_score_unchanged(booster):
    result = booster.boost(0.2, "Can you summarize this report?")
    assert result.boosted_score == 0.2
    assert result.lexicon_boost == 0.0
    assert not result.has_signal


def test_single_match_adds_weight(booster):
    result = booster.boost(0.1, "I'm tired of everything")
    assert result.has_signal
    assert result.boosted_score == pytest.approx(0.4)
    assert result.matches[0].label == "tired of everything"


def test_matches_are_summed_and_capped():
    booster = LexiconBooster.from_table(_table([
        _marker(r"\balpha\b", 0.3),
        _marker(r"\bbeta\b", 0.3),
    ]))
    result = booster.boost(0.1, "alpha and beta")
    assert len(result.matches) == 2
    assert result.lexicon_boost == pytest.approx(0.4)


def test_boost_clamps_to_one():
    booster = LexiconBooster.from_table(_table([_marker("x", 0.3)]))
    assert booster.boost(0.9, "x").boosted_score == 1.0


def test_boost_never_decreases(booster):
    for base in (0.0, 0.3, 0.75, 1.0):
        assert booster.boost(base, "What's the point? Nothing matters").boosted_score >= base


def test_nan_base_propagates(booster):
    assert math.isnan(booster.boost(math.nan, "why bother").boosted_score)


def test_scan_can_filter_by_language(booster):
    text = "che senso ha"
    assert booster.scan(text, language="it")
    assert booster.scan(text, language="en") == []


def test_max_total_boost_override():
    booster = LexiconBooster.from_table(_table([_marker("x", 0.3)]), max_total_boost=0.1)
    assert booster.boost(0.0, "x").boosted_score == pytest.approx(0.1)


def test_unknown_category_rejected():
    with pytest.raises(RuleTableError):
        LexiconBooster.from_table(_table([_marker("x", 0.3, category="mood")]))


def test_bad_pattern_rejected():
    with pytest.raises(RuleTableError):
        LexiconBooster.from_table(_table([_marker("(unclosed", 0.3)]))


def test_negative_weight_rejected():
    with pytest.raises(RuleTableError):
        LexiconBooster.from_table(_table([_marker("x", -0.1)]))


def test_load_from_path(tmp_path):
    path = tmp_path / "lexicon.json"
    path.write_text(json.dumps(_table([_marker("custom phrase", 0.2)])))
    booster = LexiconBooster.load(path)
    assert booster.version == "test"
    assert booster.boost(0.0, "a custom phrase here").boosted_score == pytest.approx(0.2)


def test_table_without_version_rejected(tmp_path):
    path = tmp_path / "lexicon.json"
    path.write_text(json.dumps({"markers": []}))
    with pytest.raises(RuleTableError):
        LexiconBooster.load(path)
