"""
Config Loader - Load gate settings from config files.

This separates tunable values from source code:
- Source defines structure (dataclass fields and their defaults)
- Config files define values (what this deployment uses)

Sections: "gating", "cache", "calibration", "lexicon". A missing file or
missing key falls back to the code default; unknown keys are logged and
ignored.

Usage:
    from oracle_gate.config_loader import load_gate_config, build_orchestrator, build_calibrator

    config = load_gate_config()                    # default / $ORACLE_GATE_CONFIG
    config = load_gate_config("path/to/gate.json")

    gate = build_orchestrator(calibration_path="artifacts/tau.json")
"""

from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional, Type, TypeVar, Union
import json
import logging
import os

from oracle_gate.cache import CacheConfig, ResultCache
from oracle_gate.calibration import Calibration, CalibrationConfig, ThresholdCalibrator
from oracle_gate.gating import GatingConfig, GatingOrchestrator
from oracle_gate.hard_skip import HardSkipRuleSet
from oracle_gate.lexicon import DEFAULT_MAX_TOTAL_BOOST, LexiconBooster
from oracle_gate.scoring import NonconformityScorer

logger = logging.getLogger(__name__)


# Default config location
DEFAULT_CONFIG_PATH = Path(__file__).parent.parent.parent / "config" / "gate.json"

CONFIG_ENV_VAR = "ORACLE_GATE_CONFIG"

T = TypeVar("T")


@dataclass
class LexiconConfig:
    max_total_boost: float = DEFAULT_MAX_TOTAL_BOOST
    table: Optional[str] = None  # path; None = packaged table


@dataclass
class RulesConfig:
    hard_skip_table: Optional[str] = None  # path; None = packaged table


@dataclass
class GateConfig:
    """Every section, parsed."""
    gating: GatingConfig = field(default_factory=GatingConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    calibration: CalibrationConfig = field(default_factory=CalibrationConfig)
    lexicon: LexiconConfig = field(default_factory=LexiconConfig)
    rules: RulesConfig = field(default_factory=RulesConfig)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


SECTIONS = {
    "gating": GatingConfig,
    "cache": CacheConfig,
    "calibration": CalibrationConfig,
    "lexicon": LexiconConfig,
    "rules": RulesConfig,
}


def get_config_path() -> Path:
    """Config path in force: $ORACLE_GATE_CONFIG, else the repository default."""
    env = os.environ.get(CONFIG_ENV_VAR)
    return Path(env) if env else DEFAULT_CONFIG_PATH


def load_config(config_path: Optional[Union[Path, str]] = None) -> Dict[str, Any]:
    """Load the raw config file."""
    path = Path(config_path) if config_path else get_config_path()

    if not path.exists():
        # Return empty dict if no config - will use code defaults
        return {}

    with open(path) as f:
        return json.load(f)


def _section(cls: Type[T], name: str, values: Dict[str, Any]) -> T:
    known = {f.name for f in fields(cls)}
    for key in values:
        if key not in known:
            logger.warning("config: ignoring unknown key %s.%s", name, key)
    return cls(**{k: v for k, v in values.items() if k in known})


def load_gate_config(config_path: Optional[Union[Path, str]] = None) -> GateConfig:
    """
    Load every section.

    Falls back to code defaults if config missing.
    """
    raw = load_config(config_path)
    for key in raw:
        if key not in SECTIONS and not key.startswith("_"):
            logger.warning("config: ignoring unknown section %s", key)

    return GateConfig(**{
        name: _section(cls, name, raw.get(name, {}) or {})
        for name, cls in SECTIONS.items()
    })


def load_gating_config(config_path: Optional[Union[Path, str]] = None) -> GatingConfig:
    return load_gate_config(config_path).gating


def save_gate_config(config: GateConfig, config_path: Optional[Union[Path, str]] = None) -> None:
    """
    Save config back to file.

    Preserves keys starting with "_" (notes, comments).
    """
    path = Path(config_path) if config_path else get_config_path()

    existing = load_config(path) if path.exists() else {}
    preserved = {k: v for k, v in existing.items() if k.startswith("_")}
    preserved.update(config.to_dict())

    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        json.dump(preserved, f, indent=2)


def build_scorer(config: GateConfig) -> NonconformityScorer:
    """
    The scorer a configured orchestrator serves with.

    Calibration, sweeps and comparisons score cases with this same scorer,
    so tau is a quantile of the A(x) it is compared against at runtime.
    """
    booster = None
    if config.gating.use_lexicon:
        booster = LexiconBooster.load(config.lexicon.table, max_total_boost=config.lexicon.max_total_boost)
    return NonconformityScorer(booster=booster, use_lexicon=config.gating.use_lexicon)


def build_calibrator(config: GateConfig) -> ThresholdCalibrator:
    return ThresholdCalibrator(scorer=build_scorer(config), config=config.calibration)


def build_orchestrator(
    config_path: Optional[Union[Path, str]] = None,
    calibration_path: Optional[Union[Path, str]] = None,
    calibration: Optional[Calibration] = None,
) -> GatingOrchestrator:
    """
    Wire an orchestrator from config files.

    calibration_path is read when no Calibration object is given.
    Without either, the gating.default_tau setting must be present,
    otherwise CalibrationMissingError is raised.
    """
    config = load_gate_config(config_path)

    if calibration is None and calibration_path:
        calibration = Calibration.load(calibration_path)

    return GatingOrchestrator(
        calibration=calibration,
        config=config.gating,
        scorer=build_scorer(config),
        rules=HardSkipRuleSet.load(config.rules.hard_skip_table),
        cache=ResultCache(config.cache),
    )
