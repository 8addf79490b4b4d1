"""
Threshold Calibration (Neyman-Pearson style)

Offline, batch. Finds the threshold tau such that skipping every input
with A(x) > tau still keeps recall >= target on the high-stakes class:

    P(A(x) > tau | y = high_stakes) <= 1 - target_recall

This is NOT a conformal guarantee on new data. Caveats:
1. It holds on the calibration distribution only.
2. With n positives, tau has variance ~O(1/sqrt(n)).
3. For a stable 95% target you want 100+ positives.

Procedure:
    1. Score every labeled case with the production scorer.
    2. S = scores of positives NOT already caught by the fast classifier
       (crisis / high_stakes_triggered resolve without the threshold stage).
    3. Rank S from the top: tau = S_desc[floor((1 - r) * |S|)].
       At most floor((1 - r) * |S|) positives score strictly above tau.
    4. |S| < min_positives -> stability_warning.
    5. estimated_skip_rate = fraction of ALL cases with A(x) > tau.

If S is empty, tau falls back to a documented constant (0.5) instead of
1.0, which would let everything through the threshold stage untouched.

Usage:
    calibrator = ThresholdCalibrator()
    calibration = calibrator.calibrate(load_cases("cases.json"), target_recall=0.95)
    calibration.save("artifacts/tau.json")
"""

from dataclasses import dataclass, field, asdict, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union
import json
import logging
import math

import numpy as np

from oracle_gate.errors import CalibrationError
from oracle_gate.scoring import NonconformityScorer, ScoreResult, ScoringStrategy
from oracle_gate.signals import Signal

logger = logging.getLogger(__name__)


CALIBRATION_SCHEMA_VERSION = "1.0"
SUPPORTED_SCHEMA_VERSIONS = ("1.0",)


# =============================================================================
# Configuration
# =============================================================================

@dataclass
class CalibrationConfig:
    """Knobs for the calibration run."""
    target_recall: float = 0.95

    # Below this many positives the threshold is flagged as unstable
    min_positives: int = 20

    # Below this many positives the warning is escalated to critical
    critical_min_positives: int = 10

    # tau when no positive reaches the threshold stage
    empty_positive_tau: float = 0.5


# =============================================================================
# Calibration Record
# =============================================================================

@dataclass(frozen=True)
class Calibration:
    """
    A calibrated threshold and how it was obtained.

    Flat, versioned record: read at startup, rewritten by the offline job.
    Immutable; threshold changes produce a new record with revision + 1.
    """
    tau: float
    target_recall: float
    n_positive_samples: int
    estimated_skip_rate: float
    stability_warning: Optional[str] = None

    n_negative_samples: int = 0
    calibration_cases: int = 0
    score_stats: Dict[str, float] = field(default_factory=dict)

    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    version: str = CALIBRATION_SCHEMA_VERSION
    revision: int = 1
    source: str = "calibrator"  # calibrator, manual, default

    def __post_init__(self):
        if isinstance(self.tau, bool) or not isinstance(self.tau, (int, float)):
            raise CalibrationError(f"tau must be a number, got {type(self.tau).__name__}")
        if not math.isfinite(self.tau) or not 0.0 <= self.tau <= 1.0:
            raise CalibrationError(f"tau must be in [0, 1], got {self.tau}")

    @property
    def is_stable(self) -> bool:
        return self.stability_warning is None

    @property
    def alpha(self) -> float:
        return 1.0 - self.target_recall

    @classmethod
    def manual(cls, tau: float, target_recall: float = float("nan"), source: str = "manual") -> "Calibration":
        """A threshold set by an operator rather than computed from data."""
        return cls(
            tau=tau,
            target_recall=target_recall,
            n_positive_samples=0,
            estimated_skip_rate=float("nan"),
            source=source,
        )

    def with_tau(self, tau: float) -> "Calibration":
        """
        Copy with an operator-chosen threshold and the next revision number.

        The stability warning is cleared: an explicit operator threshold is
        taken verbatim.
        """
        return replace(
            self,
            tau=tau,
            revision=self.revision + 1,
            source="manual",
            stability_warning=None,
            timestamp=datetime.now(timezone.utc).isoformat(),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def to_json(self, indent: int = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent)

    def save(self, path: Union[Path, str]) -> None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            f.write(self.to_json())

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Calibration":
        version = str(data.get("version", CALIBRATION_SCHEMA_VERSION))
        if version not in SUPPORTED_SCHEMA_VERSIONS:
            raise CalibrationError(f"unsupported calibration schema version {version!r}")
        try:
            return cls(
                tau=data["tau"],
                target_recall=data["target_recall"],
                n_positive_samples=data["n_positive_samples"],
                estimated_skip_rate=data["estimated_skip_rate"],
                stability_warning=data.get("stability_warning"),
                n_negative_samples=data.get("n_negative_samples", 0),
                calibration_cases=data.get("calibration_cases", 0),
                score_stats=dict(data.get("score_stats", {})),
                timestamp=data.get("timestamp", datetime.now(timezone.utc).isoformat()),
                version=version,
                revision=data.get("revision", 1),
                source=data.get("source", "calibrator"),
            )
        except KeyError as e:
            raise CalibrationError(f"calibration record missing field {e.args[0]!r}") from None

    @classmethod
    def load(cls, path: Union[Path, str]) -> "Calibration":
        path = Path(path)
        if not path.exists():
            raise CalibrationError(f"calibration file not found: {path}")
        try:
            with open(path) as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise CalibrationError(f"calibration file {path} is not valid JSON: {e}") from e
        return cls.from_dict(data)


# =============================================================================
# Labeled Cases
# =============================================================================

@dataclass
class LabeledCase:
    """One calibration example with a precomputed fast-classifier signal."""
    text: str
    language: str
    signal: Signal
    is_positive: bool
    case_id: str = ""

    @property
    def caught_by_fast_classifier(self) -> bool:
        return self.signal.crisis or self.signal.high_stakes_triggered

    def to_dict(self) -> dict:
        return {
            "id": self.case_id,
            "text": self.text,
            "language": self.language,
            "signal": self.signal.to_dict(),
            "is_positive": self.is_positive,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "LabeledCase":
        return cls(
            text=d["text"],
            language=d.get("language", "en"),
            signal=Signal.from_dict(d["signal"]),
            is_positive=bool(d["is_positive"]),
            case_id=d.get("id", ""),
        )


def save_cases(cases: List[LabeledCase], path: Union[Path, str]) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    data = {
        "version": CALIBRATION_SCHEMA_VERSION,
        "cases": [c.to_dict() for c in cases],
    }
    with open(path, "w") as f:
        json.dump(data, f, indent=2, ensure_ascii=False)


def load_cases(path: Union[Path, str]) -> List[LabeledCase]:
    """Raises CalibrationError for a malformed file or case entry."""
    path = Path(path)
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise CalibrationError(f"cases file {path} is not valid JSON: {e}") from None

    if isinstance(data, list):
        entries = data
    elif isinstance(data, dict):
        entries = data.get("cases", [])
    else:
        raise CalibrationError(f"cases file {path} must hold a list or an object with 'cases'")

    cases = []
    for i, d in enumerate(entries):
        if not isinstance(d, dict):
            raise CalibrationError(f"case #{i} in {path} is not an object")
        try:
            cases.append(LabeledCase.from_dict(d))
        except KeyError as e:
            raise CalibrationError(f"case #{i} in {path} is missing field {e.args[0]!r}") from None
    return cases


# =============================================================================
# Calibrator
# =============================================================================

def _describe(scores: List[float]) -> Tuple[float, float, float, float]:
    if not scores:
        return 0.0, 0.0, 0.0, 0.0
    arr = np.asarray(scores, dtype=float)
    return float(np.mean(arr)), float(np.std(arr)), float(np.min(arr)), float(np.max(arr))


def quantile_index(n: int, target_recall: float) -> int:
    """
    Position, counted from the top of the positive scores, of tau.

    floor((1 - r) * n), rounded to 9 decimals first so that float noise
    in (1 - r) never moves the index.
    """
    k = math.floor(round((1.0 - target_recall) * n, 9))
    return max(0, min(n - 1, k))


class ThresholdCalibrator:
    """
    Computes a Calibration from labeled cases.
    """

    def __init__(
        self,
        scorer: Optional[ScoringStrategy] = None,
        config: Optional[CalibrationConfig] = None,
    ):
        self.scorer = scorer or NonconformityScorer()
        self.config = config or CalibrationConfig()

    def score_cases(self, cases: List[LabeledCase]) -> List[Tuple[LabeledCase, ScoreResult]]:
        return [(c, self.scorer.score(c.signal, c.text)) for c in cases]

    def stability_warning(self, n_positives: int) -> Optional[str]:
        cfg = self.config
        if n_positives < cfg.critical_min_positives:
            return (
                f"CRITICAL: Only {n_positives} positive samples. "
                f"Cannot reliably calibrate; tau is not production-ready."
            )
        if n_positives < cfg.min_positives:
            return (
                f"Only {n_positives} positive samples (< {cfg.min_positives}). "
                f"Threshold may be unstable."
            )
        return None

    def calibrate(
        self,
        cases: List[LabeledCase],
        target_recall: Optional[float] = None,
    ) -> Calibration:
        r = self.config.target_recall if target_recall is None else target_recall
        if isinstance(r, bool) or not isinstance(r, (int, float)) or not 0.0 < r <= 1.0:
            raise CalibrationError(f"target_recall must be in (0, 1], got {r!r}")
        if not cases:
            raise CalibrationError("cannot calibrate on an empty case set")

        scored = self.score_cases(cases)

        positives: List[float] = []
        negatives: List[float] = []
        all_valid: List[float] = []
        invalid = 0
        for case, result in scored:
            if not result.valid:
                # Invalid scores resolve to FALLBACK (call) at runtime; never skipped.
                invalid += 1
                continue
            all_valid.append(result.score)
            if case.is_positive:
                if not case.caught_by_fast_classifier:
                    positives.append(result.score)
            else:
                negatives.append(result.score)

        if invalid:
            logger.warning("calibration: %d case(s) produced non-finite scores and were excluded", invalid)

        n = len(positives)
        if n == 0:
            tau = self.config.empty_positive_tau
            logger.warning(
                "calibration: no positives reach the threshold stage; using default tau=%.2f", tau
            )
        else:
            ranked = sorted(positives, reverse=True)
            tau = ranked[quantile_index(n, r)]

        skipped = sum(1 for s in all_valid if s > tau)
        estimated_skip_rate = skipped / len(cases)

        pos_mean, pos_std, pos_min, pos_max = _describe(positives)
        neg_mean, neg_std, _, _ = _describe(negatives)

        calibration = Calibration(
            tau=float(tau),
            target_recall=float(r),
            n_positive_samples=n,
            estimated_skip_rate=estimated_skip_rate,
            stability_warning=self.stability_warning(n),
            n_negative_samples=sum(1 for c in cases if not c.is_positive),
            calibration_cases=len(cases),
            score_stats={
                "positive_mean": pos_mean,
                "positive_std": pos_std,
                "positive_min": pos_min,
                "positive_max": pos_max,
                "negative_mean": neg_mean,
                "negative_std": neg_std,
            },
        )

        logger.info(
            "calibrated tau=%.4f target_recall=%.3f positives=%d skip_rate=%.3f",
            calibration.tau, calibration.target_recall, n, estimated_skip_rate,
        )
        if calibration.stability_warning:
            logger.warning("calibration: %s", calibration.stability_warning)

        return calibration


# =============================================================================
# Demo Corpus
# =============================================================================

def _case(case_id, text, language, scores, positive, crisis=False, triggered=False):
    return LabeledCase(
        text=text,
        language=language,
        signal=Signal(category_scores=scores, crisis=crisis, high_stakes_triggered=triggered),
        is_positive=positive,
        case_id=case_id,
    )


def create_demo_cases() -> List[LabeledCase]:
    """
    Small labeled corpus with hand-set signals.

    Enough to exercise the tooling end to end; far too small for a
    production threshold (the calibration will carry a stability warning).
    """
    E, F, R, S = "EXISTENTIAL", "FUNCTIONAL", "RELATIONAL", "SOMATIC"
    return [
        # High-stakes, caught by the fast classifier
        _case("HS_FAST_01", "Non so cosa voglio dalla vita", "it", {E: 0.9, F: 0.1}, True, triggered=True),
        _case("HS_FAST_02", "What is the meaning of my life?", "en", {E: 0.85, F: 0.1}, True, triggered=True),
        _case("HS_FAST_03", "Non riesco a respirare, ho il cuore a mille", "it", {E: 0.2, S: 0.9}, True, crisis=True),

        # High-stakes, missed or under-scored by the fast classifier
        _case("HS_01", "Sono stanco di tutto", "it", {E: 0.1, F: 0.2, R: 0.1}, True),
        _case("HS_02", "I'm tired of everything", "en", {E: 0.15, F: 0.3}, True),
        _case("HS_03", "Che senso ha?", "it", {E: 0.3, F: 0.35}, True),
        _case("HS_04", "What's the point?", "en", {E: 0.35, F: 0.3}, True),
        _case("HS_05", "Why bother", "en", {E: 0.2, F: 0.5}, True),
        _case("HS_06", "I don't know who I am anymore", "en", {E: 0.55, R: 0.2}, True),
        _case("HS_07", "Mi sento perso", "it", {E: 0.4, R: 0.3}, True),
        _case("HS_08", "Nothing matters", "en", {E: 0.5, F: 0.1}, True),
        _case("HS_09", "Is this all there is?", "en", {E: 0.25, F: 0.2}, True),
        _case("HS_10", "Ich kann nicht mehr", "de", {E: 0.2, S: 0.3}, True),
        _case("HS_11", "À quoi bon", "fr", {E: 0.1, F: 0.15}, True),
        _case("HS_12", "No sé quién soy", "es", {E: 0.45, R: 0.2}, True),
        _case("HS_13", "Everything is falling apart", "en", {E: 0.3, R: 0.4}, True),
        _case("HS_14", "Non vedo una via d'uscita", "it", {E: 0.35, F: 0.2}, True),
        _case("HS_15", "It all feels meaningless lately", "en", {E: 0.6, F: 0.1}, True),
        _case("HS_16", "I keep wondering where my life is going", "en", {E: 0.45, F: 0.3}, True),

        # Not high-stakes
        _case("NEG_01", "What time is it?", "en", {E: 0.05, F: 0.9}, False),
        _case("NEG_02", "Run the tests", "en", {E: 0.0, F: 0.95}, False),
        _case("NEG_03", "Can you summarize this report?", "en", {E: 0.05, F: 0.85}, False),
        _case("NEG_04", "My sister is visiting next week", "en", {E: 0.05, R: 0.7, F: 0.2}, False),
        _case("NEG_05", "Devo preparare la presentazione per domani", "it", {E: 0.05, F: 0.8}, False),
        _case("NEG_06", "Thanks", "en", {E: 0.0, F: 0.6}, False),
        _case("NEG_07", "How do I fix this import error?", "en", {E: 0.0, F: 0.9}, False),
        _case("NEG_08", "I had a headache this morning", "en", {E: 0.05, S: 0.6, F: 0.2}, False),
        _case("NEG_09", "Il progetto è in ritardo", "it", {E: 0.1, F: 0.7}, False),
        _case("NEG_10", "Let's plan the sprint", "en", {E: 0.0, F: 0.85}, False),
        _case("NEG_11", "My manager ignored my email again", "en", {E: 0.15, R: 0.5, F: 0.4}, False),
        _case("NEG_12", "Which restaurant should we book?", "en", {E: 0.0, F: 0.7, R: 0.2}, False),
    ]
