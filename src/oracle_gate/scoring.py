"""
Nonconformity Scoring

A(x) in [0, 1]: confidence that the oracle is unnecessary for input x.
    A(x) high -> confident x is NOT high-stakes -> safe to skip the oracle
    A(x) low  -> x might be high-stakes -> call the oracle

A(x) is a proxy for 1 - P(high_stakes | x), not the true posterior.
Any recall guarantee is relative to the ranking A(x) induces.

Production strategy (NP-calibrated, NonconformityScorer):
    1. base    = signal.category_scores["EXISTENTIAL"]
    2. boosted = lexicon boost of base (boosted >= base)
    3. A       = 1 - boosted
    4. high_stakes_triggered -> A <= 0.15
    5. ambiguity: gap = top1 - top2 over all categories
           gap < 0.15 -> A -= 0.15
           gap < 0.25 -> A -= 0.08
    6. clamp to [0, 1]; non-finite -> valid=False

The cost-sensitive (Chow rule) strategy implements the same interface and
lives in oracle_gate.offline, for offline comparison only.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple
import math

from oracle_gate.lexicon import LexiconBooster, LexiconMatch
from oracle_gate.signals import Signal


HIGH_STAKES_SCORE_CAP = 0.15

# (gap upper bound, penalty), checked in order
AMBIGUITY_PENALTIES = (
    (0.15, 0.15),
    (0.25, 0.08),
)


@dataclass(frozen=True)
class ScoreComponents:
    """What contributed to a score (for audit and debugging)."""
    base: float = 0.0
    lexicon_boost: float = 0.0
    boosted: float = 0.0
    high_stakes_adjustment: float = 0.0
    ambiguity_adjustment: float = 0.0

    def to_dict(self) -> Dict[str, float]:
        return {
            "base": self.base,
            "lexicon_boost": self.lexicon_boost,
            "boosted": self.boosted,
            "high_stakes_adjustment": self.high_stakes_adjustment,
            "ambiguity_adjustment": self.ambiguity_adjustment,
        }


@dataclass(frozen=True)
class ScoreResult:
    """
    Output of a ScoringStrategy.

    When valid is False the score is NaN and must not be compared to tau.
    """
    score: float
    valid: bool
    components: ScoreComponents = field(default_factory=ScoreComponents)
    lexicon_matches: Tuple[LexiconMatch, ...] = field(default_factory=tuple)
    strategy: str = ""


class ScoringStrategy(ABC):
    """
    Interface shared by every scoring strategy.

    Contract: score(signal, text) is deterministic for a fixed
    (signal, text, configuration) and never raises on numeric edge cases;
    it reports them through ScoreResult.valid instead.
    """

    name: str = "abstract"
    version: str = "0"

    @abstractmethod
    def score(self, signal: Signal, text: str) -> ScoreResult:
        ...

    def describe(self) -> Dict[str, Any]:
        return {"strategy": self.name, "version": self.version}


def ambiguity_penalty(signal: Signal) -> float:
    """Penalty applied when the top two categories are close."""
    ranked = [score for _, score in signal.ranked_scores()]
    top1 = ranked[0]
    top2 = ranked[1] if len(ranked) > 1 else 0.0
    gap = top1 - top2
    for bound, penalty in AMBIGUITY_PENALTIES:
        if gap < bound:
            return penalty
    return 0.0


class NonconformityScorer(ScoringStrategy):
    """
    NP-calibrated nonconformity score with lexicon boost.

    This is the strategy the orchestrator and calibrator use.
    """

    name = "np_calibrated"
    version = "5.1"

    def __init__(
        self,
        booster: Optional[LexiconBooster] = None,
        use_lexicon: bool = True,
    ):
        self.use_lexicon = use_lexicon
        if use_lexicon and booster is None:
            booster = LexiconBooster.load()
        self.booster = booster

    def score(self, signal: Signal, text: str) -> ScoreResult:
        base = signal.high_stakes_score

        matches: Tuple[LexiconMatch, ...] = ()
        boosted = base
        if self.use_lexicon and self.booster is not None:
            result = self.booster.boost(base, text)
            boosted = result.boosted_score
            matches = result.matches
        lexicon_boost = boosted - base

        raw = 1.0 - boosted

        high_stakes_adjustment = 0.0
        if signal.high_stakes_triggered and raw > HIGH_STAKES_SCORE_CAP:
            high_stakes_adjustment = HIGH_STAKES_SCORE_CAP - raw
            raw = HIGH_STAKES_SCORE_CAP

        penalty = ambiguity_penalty(signal)
        raw -= penalty

        # Validity is judged before clamping: clamping would hide an inf.
        valid = math.isfinite(raw) and all(
            math.isfinite(v) for v in signal.category_scores.values()
        )
        score = min(1.0, max(0.0, raw)) if valid else math.nan

        return ScoreResult(
            score=score,
            valid=valid,
            components=ScoreComponents(
                base=base,
                lexicon_boost=lexicon_boost,
                boosted=boosted,
                high_stakes_adjustment=high_stakes_adjustment,
                ambiguity_adjustment=-penalty,
            ),
            lexicon_matches=matches,
            strategy=self.name,
        )

    def describe(self) -> Dict[str, Any]:
        d = super().describe()
        d["use_lexicon"] = self.use_lexicon
        if self.booster is not None:
            d["lexicon_version"] = self.booster.version
            d["max_total_boost"] = self.booster.max_total_boost
        return d
