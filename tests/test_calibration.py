"""
Tests for ThresholdCalibrator and the Calibration record

Verifies:
1. tau = positives ranked from the top at floor((1 - r) * n)
2. Replaying the calibration positives keeps skip rate <= 1 - r
3. Fast-classifier catches and invalid scores are excluded from S
4. Empty S -> conservative default tau
5. Stability warning levels
6. Persistence (record and labeled cases)
"""

import json
import math

import pytest

from oracle_gate.calibration import (
    Calibration,
    CalibrationConfig,
    LabeledCase,
    ThresholdCalibrator,
    create_demo_cases,
    load_cases,
    quantile_index,
    save_cases,
)
from oracle_gate.errors import CalibrationError
from oracle_gate.scoring import NonconformityScorer
from oracle_gate.signals import Signal


def _case(existential, positive, triggered=False, crisis=False, case_id=""):
    # Single-category signals: no ambiguity penalty, score == 1 - existential
    return LabeledCase(
        text="neutral text",
        language="en",
        signal=Signal(
            category_scores={"EXISTENTIAL": existential},
            high_stakes_triggered=triggered,
            crisis=crisis,
        ),
        is_positive=positive,
        case_id=case_id,
    )


@pytest.fixture
def calibrator():
    return ThresholdCalibrator(scorer=NonconformityScorer(use_lexicon=False))


@pytest.fixture
def ten_positives():
    # scores 0.9, 0.8, ..., 0.0
    positives = [_case(round(0.1 * i, 1), True, case_id=f"P{i}") for i in range(1, 11)]
    negatives = [_case(0.0, False, case_id=f"N{i}") for i in range(5)]
    return positives + negatives


@pytest.mark.parametrize("n,r,expected", [
    (10, 0.9, 1),
    (10, 0.95, 0),
    (20, 0.95, 1),
    (100, 0.95, 5),
    (1, 0.5, 0),
    (5, 1.0, 0),
])
def test_quantile_index(n, r, expected):
    assert quantile_index(n, r) == expected


def test_tau_from_ranked_positives(calibrator, ten_positives):
    calibration = calibrator.calibrate(ten_positives, target_recall=0.9)
    assert calibration.tau == pytest.approx(0.8)
    assert calibration.n_positive_samples == 10
    assert calibration.n_negative_samples == 5
    assert calibration.calibration_cases == 15
    # negatives (1.0) plus one positive (0.9) are above tau
    assert calibration.estimated_skip_rate == pytest.approx(6 / 15)


def test_recall_holds_on_calibration_positives(calibrator, ten_positives):
    for r in (0.5, 0.8, 0.9, 0.95, 1.0):
        calibration = calibrator.calibrate(ten_positives, target_recall=r)
        scored = calibrator.score_cases([c for c in ten_positives if c.is_positive])
        skipped = sum(1 for _, result in scored if result.score > calibration.tau)
        assert skipped / len(scored) <= (1 - r) + 1e-9


def test_full_recall_takes_highest_positive(calibrator, ten_positives):
    calibration = calibrator.calibrate(ten_positives, target_recall=1.0)
    assert calibration.tau == pytest.approx(0.9)


def test_fast_classifier_catches_excluded(calibrator):
    cases = [_case(0.2, True), _case(0.0, True, triggered=True), _case(0.0, True, crisis=True)]
    calibration = calibrator.calibrate(cases, target_recall=0.95)
    assert calibration.n_positive_samples == 1
    assert calibration.tau == pytest.approx(0.8)


def test_invalid_scores_excluded(calibrator):
    cases = [_case(0.2, True), _case(math.nan, True), _case(0.0, False)]
    calibration = calibrator.calibrate(cases, target_recall=0.95)
    assert calibration.n_positive_samples == 1
    assert calibration.tau == pytest.approx(0.8)


def test_empty_positive_set_uses_default_tau(calibrator):
    cases = [_case(0.9, True, triggered=True), _case(0.0, False)]
    calibration = calibrator.calibrate(cases, target_recall=0.95)
    assert calibration.tau == 0.5
    assert calibration.n_positive_samples == 0
    assert calibration.stability_warning.startswith("CRITICAL")


def test_empty_positive_tau_is_configurable():
    calibrator = ThresholdCalibrator(
        scorer=NonconformityScorer(use_lexicon=False),
        config=CalibrationConfig(empty_positive_tau=0.3),
    )
    assert calibrator.calibrate([_case(0.0, False)]).tau == 0.3


def test_stability_warning_levels(calibrator):
    assert calibrator.stability_warning(5).startswith("CRITICAL")
    warning = calibrator.stability_warning(15)
    assert warning is not None and not warning.startswith("CRITICAL")
    assert calibrator.stability_warning(20) is None


def test_large_sample_is_stable(calibrator):
    cases = [_case((i % 10) / 10, True) for i in range(40)]
    calibration = calibrator.calibrate(cases, target_recall=0.95)
    assert calibration.is_stable


@pytest.mark.parametrize("r", [0.0, -0.1, 1.5, "0.9", True])
def test_bad_target_recall_rejected(calibrator, ten_positives, r):
    with pytest.raises(CalibrationError):
        calibrator.calibrate(ten_positives, target_recall=r)


def test_empty_case_set_rejected(calibrator):
    with pytest.raises(CalibrationError):
        calibrator.calibrate([])


def test_default_target_recall_from_config(calibrator, ten_positives):
    assert calibrator.calibrate(ten_positives).target_recall == 0.95


def test_score_stats_recorded(calibrator, ten_positives):
    stats = calibrator.calibrate(ten_positives, target_recall=0.9).score_stats
    assert stats["positive_mean"] == pytest.approx(0.45)
    assert stats["positive_min"] == pytest.approx(0.0)
    assert stats["positive_max"] == pytest.approx(0.9)
    assert stats["negative_mean"] == pytest.approx(1.0)
    assert stats["negative_std"] == pytest.approx(0.0)


def test_demo_corpus_calibration():
    cases = create_demo_cases()
    assert len(cases) == 31
    assert sum(c.caught_by_fast_classifier for c in cases) == 3

    calibrator = ThresholdCalibrator()
    calibration = calibrator.calibrate(cases, target_recall=0.95)
    assert calibration.n_positive_samples == 16
    assert not calibration.is_stable
    assert 0.0 <= calibration.tau <= 1.0

    # floor(0.05 * 16) == 0: no calibration positive may sit above tau
    missed = [
        c.case_id for c, r in calibrator.score_cases(cases)
        if c.is_positive and not c.caught_by_fast_classifier and r.score > calibration.tau
    ]
    assert missed == []


# =============================================================================
# Calibration record
# =============================================================================

def test_calibration_rejects_bad_tau():
    for tau in (-0.1, 1.1, math.nan, math.inf):
        with pytest.raises(CalibrationError):
            Calibration.manual(tau)


def test_calibration_save_load(tmp_path, calibrator, ten_positives):
    calibration = calibrator.calibrate(ten_positives, target_recall=0.9)
    path = tmp_path / "artifacts" / "tau.json"
    calibration.save(path)

    data = json.loads(path.read_text())
    assert data["version"] == "1.0"
    assert data["tau"] == pytest.approx(0.8)

    loaded = Calibration.load(path)
    assert loaded == calibration


def test_calibration_load_errors(tmp_path):
    with pytest.raises(CalibrationError):
        Calibration.load(tmp_path / "missing.json")

    bad_json = tmp_path / "bad.json"
    bad_json.write_text("{not json")
    with pytest.raises(CalibrationError):
        Calibration.load(bad_json)

    with pytest.raises(CalibrationError):
        Calibration.from_dict({"tau": 0.5, "target_recall": 0.95, "n_positive_samples": 3})

    with pytest.raises(CalibrationError):
        Calibration.from_dict({
            "version": "9.9", "tau": 0.5, "target_recall": 0.95,
            "n_positive_samples": 3, "estimated_skip_rate": 0.2,
        })


def test_with_tau_bumps_revision_and_clears_warning(calibrator):
    calibration = calibrator.calibrate([_case(0.2, True)], target_recall=0.95)
    assert not calibration.is_stable

    updated = calibration.with_tau(0.6)
    assert updated.tau == 0.6
    assert updated.revision == calibration.revision + 1
    assert updated.source == "manual"
    assert updated.is_stable
    assert calibration.tau == pytest.approx(0.8)


def test_labeled_cases_save_load(tmp_path):
    cases = create_demo_cases()[:4]
    path = tmp_path / "cases.json"
    save_cases(cases, path)

    loaded = load_cases(path)
    assert [c.case_id for c in loaded] == [c.case_id for c in cases]
    assert loaded[0].signal.high_stakes_triggered
    assert loaded[0].text == cases[0].text


def test_load_cases_accepts_bare_list(tmp_path):
    path = tmp_path / "cases.json"
    path.write_text(json.dumps([
        {"text": "hi", "signal": {"category_scores": {"EXISTENTIAL": 0.0}}, "is_positive": False},
    ]))
    loaded = load_cases(path)
    assert loaded[0].language == "en"
    assert not loaded[0].is_positive


@pytest.mark.parametrize("content,message", [
    ("{not json", "not valid JSON"),
    ('"just a string"', "must hold a list"),
    ('[42]', "not an object"),
    ('[{"text": "hi", "is_positive": false}]', "missing field 'signal'"),
    ('{"cases": [{"text": "hi", "signal": {"category_scores": {"EXISTENTIAL": 0.0}}}]}', "missing field 'is_positive'"),
])
def test_load_cases_rejects_malformed_file(tmp_path, content, message):
    path = tmp_path / "cases.json"
    path.write_text(content)
    with pytest.raises(CalibrationError, match=message):
        load_cases(path)
