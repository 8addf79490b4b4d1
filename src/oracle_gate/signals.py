"""
Signals - Fast Classifier Output and Oracle Verdicts

The gate never runs the fast classifier itself. Callers hand in a Signal
that was already computed, and the gate only reads it.

Signal contract:
    category_scores       per-category activation in [0, 1], must include
                          the high-stakes category ("EXISTENTIAL")
    crisis                fast classifier is confident of acute risk
    high_stakes_triggered fast classifier already flagged the high-stakes category

crisis and high_stakes_triggered are independent flags. Both may be False
while category scores are non-zero.

Non-finite scores (NaN, inf) are accepted here on purpose: they are a
numerical condition handled downstream (FALLBACK), not a shape error.

Usage:
    from oracle_gate.signals import Signal, OracleVerdict

    signal = Signal(
        category_scores={"EXISTENTIAL": 0.1, "FUNCTIONAL": 0.8},
        crisis=False,
        high_stakes_triggered=False,
    )
"""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple
import math
import numbers

from oracle_gate.errors import InvalidSignalError


HIGH_STAKES_CATEGORY = "EXISTENTIAL"


def _check_score(name: str, value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, numbers.Real):
        raise InvalidSignalError(
            f"category score {name!r} must be a real number, got {type(value).__name__}"
        )
    value = float(value)
    if math.isfinite(value) and not 0.0 <= value <= 1.0:
        raise InvalidSignalError(f"category score {name!r}={value} outside [0, 1]")
    return value


# =============================================================================
# Signal (fast classifier output)
# =============================================================================

@dataclass(frozen=True)
class Signal:
    """
    Output of the fast classifier for one message.

    Immutable: scores are copied into a read-only mapping on construction.
    """
    category_scores: Mapping[str, float]
    crisis: bool = False
    high_stakes_triggered: bool = False

    # Optional calibrated uncertainty from the fast classifier (0-1).
    # Only the offline cost-sensitive strategy reads it.
    uncertainty: Optional[float] = None

    def __post_init__(self):
        scores = self.category_scores
        if not isinstance(scores, Mapping):
            raise InvalidSignalError(
                f"category_scores must be a mapping, got {type(scores).__name__}"
            )
        if HIGH_STAKES_CATEGORY not in scores:
            raise InvalidSignalError(
                f"category_scores missing required key {HIGH_STAKES_CATEGORY!r}"
            )
        checked = {}
        for name, value in scores.items():
            if not isinstance(name, str):
                raise InvalidSignalError(f"category name must be str, got {name!r}")
            checked[name] = _check_score(name, value)
        object.__setattr__(self, "category_scores", MappingProxyType(checked))

        for flag in ("crisis", "high_stakes_triggered"):
            if not isinstance(getattr(self, flag), bool):
                raise InvalidSignalError(
                    f"{flag} must be bool, got {type(getattr(self, flag)).__name__}"
                )

        if self.uncertainty is not None:
            if isinstance(self.uncertainty, bool) or not isinstance(self.uncertainty, numbers.Real):
                raise InvalidSignalError("uncertainty must be a real number or None")
            object.__setattr__(self, "uncertainty", float(self.uncertainty))

    @property
    def high_stakes_score(self) -> float:
        return self.category_scores[HIGH_STAKES_CATEGORY]

    def ranked_scores(self) -> List[Tuple[str, float]]:
        """Categories sorted by score, highest first."""
        return sorted(self.category_scores.items(), key=lambda kv: kv[1], reverse=True)

    @property
    def primary_category(self) -> str:
        return self.ranked_scores()[0][0]

    def to_dict(self) -> Dict[str, Any]:
        d = {
            "category_scores": dict(self.category_scores),
            "crisis": self.crisis,
            "high_stakes_triggered": self.high_stakes_triggered,
        }
        if self.uncertainty is not None:
            d["uncertainty"] = self.uncertainty
        return d

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "Signal":
        if "category_scores" not in d:
            raise InvalidSignalError("signal is missing 'category_scores'")
        return cls(
            category_scores=d["category_scores"],
            crisis=d.get("crisis", False),
            high_stakes_triggered=d.get("high_stakes_triggered", False),
            uncertainty=d.get("uncertainty"),
        )


def as_signal(value: Any) -> Signal:
    """
    Accept a Signal or a plain mapping; anything else is a contract violation.
    """
    if isinstance(value, Signal):
        return value
    if isinstance(value, Mapping):
        return Signal.from_dict(value)
    raise InvalidSignalError(f"expected Signal or mapping, got {type(value).__name__}")


# =============================================================================
# Oracle Verdict (what the expensive classifier returned)
# =============================================================================

@dataclass(frozen=True)
class OracleVerdict:
    """
    Classification returned by the oracle, fed back by the caller.

    The gate treats it as an opaque value: it is stored in and served
    from the cache, never interpreted.
    """
    regime: str
    confidence: float = 1.0
    high_stakes: bool = False
    crisis: bool = False
    markers: Tuple[str, ...] = field(default_factory=tuple)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "regime": self.regime,
            "confidence": self.confidence,
            "high_stakes": self.high_stakes,
            "crisis": self.crisis,
            "markers": list(self.markers),
        }

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "OracleVerdict":
        return cls(
            regime=d["regime"],
            confidence=d.get("confidence", 1.0),
            high_stakes=d.get("high_stakes", False),
            crisis=d.get("crisis", False),
            markers=tuple(d.get("markers", ())),
        )
