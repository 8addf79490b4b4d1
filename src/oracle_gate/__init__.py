"""
Oracle Gate Package

Cost-sensitive admission control for an expensive classifier.

Given the cheap fast-classifier Signal for a message, decide whether the
caller should also invoke the slow, more accurate oracle, while keeping
two invariants:
    - crisis messages are never routed through the oracle path
    - high-stakes messages are skipped only above a threshold calibrated
      for a target recall

Cascade:
    Signal, text → SAFETY → CACHE → HARD_SKIP → THRESHOLD → GatingDecision

Modules:
    gating.py        - GatingOrchestrator (recommended entry point)
    decisions.py     - GatingDecision, stages and reason codes
    scoring.py       - ScoringStrategy interface, NonconformityScorer
    lexicon.py       - Data-driven high-stakes phrase booster
    hard_skip.py     - Hard-skip rules and the overriding anti-skip table
    calibration.py   - Neyman-Pearson threshold calibration
    cache.py         - Bounded TTL verdict cache
    stats.py         - Thread-safe decision counters
    offline.py       - Threshold sweep and Chow-rule comparison (offline only)
    config_loader.py - JSON configuration
"""

# Orchestrator (recommended entry point)
from oracle_gate.gating import (
    GatingOrchestrator,
    GatingConfig,
)

from oracle_gate.decisions import (
    GatingDecision,
    DecisionStage,
    DecisionReason,
)

from oracle_gate.signals import (
    Signal,
    OracleVerdict,
    HIGH_STAKES_CATEGORY,
    as_signal,
)

# Scoring
from oracle_gate.scoring import (
    ScoringStrategy,
    NonconformityScorer,
    ScoreResult,
    ScoreComponents,
)

from oracle_gate.lexicon import (
    LexiconBooster,
    LexiconMatch,
    BoostResult,
)

from oracle_gate.hard_skip import (
    HardSkipRuleSet,
    HardSkipResult,
    SkipType,
)

# Calibration
from oracle_gate.calibration import (
    Calibration,
    CalibrationConfig,
    LabeledCase,
    ThresholdCalibrator,
    create_demo_cases,
    load_cases,
    save_cases,
)

# Cache and stats
from oracle_gate.cache import (
    ResultCache,
    CacheConfig,
    CacheKey,
    CacheStats,
)

from oracle_gate.stats import (
    StatsAggregator,
    RunningStats,
)

from oracle_gate.errors import (
    GateError,
    InvalidSignalError,
    CalibrationMissingError,
    CalibrationError,
    RuleTableError,
)

from oracle_gate.config_loader import (
    GateConfig,
    load_gate_config,
    build_orchestrator,
)

__version__ = "5.1.0"
