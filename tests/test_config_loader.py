"""
Tests for config loading

Verifies:
1. Missing file -> code defaults
2. Sections map onto the config dataclasses; unknown keys are warned about
3. $ORACLE_GATE_CONFIG override
4. build_orchestrator wiring
"""

import json
import logging

import pytest

from oracle_gate.calibration import Calibration
from oracle_gate.config_loader import (
    CONFIG_ENV_VAR,
    DEFAULT_CONFIG_PATH,
    build_calibrator,
    build_orchestrator,
    build_scorer,
    get_config_path,
    load_config,
    load_gate_config,
    load_gating_config,
    save_gate_config,
)
from oracle_gate.errors import CalibrationMissingError


def _write(path, data):
    path.write_text(json.dumps(data))
    return path


def test_missing_file_uses_defaults(tmp_path):
    config = load_gate_config(tmp_path / "missing.json")
    assert config.gating.use_cache is True
    assert config.gating.default_tau is None
    assert config.cache.max_entries == 1000
    assert config.calibration.target_recall == 0.95
    assert config.lexicon.max_total_boost == 0.4


def test_sections_loaded(tmp_path):
    path = _write(tmp_path / "gate.json", {
        "gating": {"use_hard_skip": False, "default_tau": 0.6},
        "cache": {"max_entries": 10, "ttl_seconds": 5},
        "calibration": {"target_recall": 0.9},
        "lexicon": {"max_total_boost": 0.2},
    })
    config = load_gate_config(path)
    assert config.gating.use_hard_skip is False
    assert config.gating.use_cache is True
    assert config.gating.default_tau == 0.6
    assert config.cache.max_entries == 10
    assert config.calibration.target_recall == 0.9
    assert config.calibration.min_positives == 20
    assert config.lexicon.max_total_boost == 0.2
    assert load_gating_config(path).default_tau == 0.6


def test_unknown_keys_warned(tmp_path, caplog):
    path = _write(tmp_path / "gate.json", {
        "gating": {"use_cache": False, "turbo": True},
        "metrics": {},
        "_notes": {"anything": "goes"},
    })
    with caplog.at_level(logging.WARNING, logger="oracle_gate.config_loader"):
        config = load_gate_config(path)
    assert config.gating.use_cache is False
    assert "gating.turbo" in caplog.text
    assert "metrics" in caplog.text
    assert "_notes" not in caplog.text


def test_invalid_values_rejected(tmp_path):
    path = _write(tmp_path / "gate.json", {"cache": {"max_entries": 0}})
    with pytest.raises(ValueError):
        load_gate_config(path)


def test_env_var_override(tmp_path, monkeypatch):
    path = _write(tmp_path / "env.json", {"gating": {"default_tau": 0.42}})
    monkeypatch.setenv(CONFIG_ENV_VAR, str(path))
    assert get_config_path() == path
    assert load_gate_config().gating.default_tau == 0.42


def test_repository_config_loads(monkeypatch):
    monkeypatch.delenv(CONFIG_ENV_VAR, raising=False)
    assert get_config_path() == DEFAULT_CONFIG_PATH
    config = load_gate_config(DEFAULT_CONFIG_PATH)
    assert config.gating.unstable_floor_tau == 0.85
    assert config.gating.default_tau is None


def test_save_preserves_notes(tmp_path):
    path = _write(tmp_path / "gate.json", {"_notes": {"owner": "ops"}, "gating": {"default_tau": 0.5}})
    config = load_gate_config(path)
    config.cache.max_entries = 42
    save_gate_config(config, path)

    raw = load_config(path)
    assert raw["_notes"] == {"owner": "ops"}
    assert raw["cache"]["max_entries"] == 42
    assert load_gate_config(path).gating.default_tau == 0.5


def test_build_orchestrator_requires_threshold(tmp_path):
    with pytest.raises(CalibrationMissingError):
        build_orchestrator(tmp_path / "missing.json")


def test_build_orchestrator_with_default_tau(tmp_path):
    path = _write(tmp_path / "gate.json", {
        "gating": {"default_tau": 0.65},
        "cache": {"max_entries": 7},
        "lexicon": {"max_total_boost": 0.1},
    })
    gate = build_orchestrator(path)
    assert gate.tau == 0.65
    assert gate.cache.config.max_entries == 7
    assert gate.scorer.booster.max_total_boost == 0.1


def test_build_orchestrator_with_calibration_file(tmp_path):
    cal_path = tmp_path / "tau.json"
    Calibration.manual(0.55, target_recall=0.95).save(cal_path)
    gate = build_orchestrator(tmp_path / "missing.json", calibration_path=cal_path)
    assert gate.tau == 0.55


def test_build_orchestrator_without_lexicon(tmp_path):
    path = _write(tmp_path / "gate.json", {"gating": {"default_tau": 0.5, "use_lexicon": False}})
    gate = build_orchestrator(path)
    assert gate.scorer.booster is None


def test_build_scorer_follows_lexicon_settings(tmp_path):
    path = _write(tmp_path / "gate.json", {"lexicon": {"max_total_boost": 0.15}})
    scorer = build_scorer(load_gate_config(path))
    assert scorer.use_lexicon is True
    assert scorer.booster.max_total_boost == 0.15

    path = _write(tmp_path / "off.json", {"gating": {"use_lexicon": False}})
    assert build_scorer(load_gate_config(path)).booster is None


def test_calibrator_and_gate_share_scoring(tmp_path):
    path = _write(tmp_path / "gate.json", {
        "gating": {"default_tau": 0.5},
        "lexicon": {"max_total_boost": 0.1},
        "calibration": {"min_positives": 5},
    })
    config = load_gate_config(path)
    calibrator = build_calibrator(config)
    gate = build_orchestrator(path)
    assert calibrator.config.min_positives == 5
    assert calibrator.scorer.describe() == gate.scorer.describe()
