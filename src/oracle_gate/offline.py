"""
Offline Analysis - Threshold sweep and strategy comparison

Nothing here is on the request path. The orchestrator runs exactly one
strategy (NonconformityScorer); this module lets an operator see how tau
trades recall against oracle call rate, and how the NP-calibrated strategy
compares with the cost-sensitive Chow rule on the same labeled corpus.

Chow rule (reject option):
    call the oracle iff E[loss | skip] >= cost(oracle call)

    E[loss | skip] = P(high-stakes error) * (cost_fn or cost_fp)
                   + P(wrong category) * cost_wrong_category
    cost(call)     = cost_oracle_call + latency penalty

Exposed through the ScoringStrategy interface as
    A(x) = cost / (cost + E[loss])
so that A(x) > 0.5 is exactly "skip" under the rule, and the sweep and
comparison code treats both strategies the same way.

Usage:
    from oracle_gate.offline import threshold_sweep, compare_strategies

    for point in threshold_sweep(create_demo_cases()):
        print(point.tau, point.recall, point.call_rate)
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple
import math
import re

import numpy as np

from oracle_gate.calibration import LabeledCase
from oracle_gate.scoring import NonconformityScorer, ScoreComponents, ScoreResult, ScoringStrategy
from oracle_gate.signals import Signal


DEFAULT_SWEEP_THRESHOLDS = (0.3, 0.4, 0.5, 0.6, 0.7, 0.8, 0.9, 0.95, 1.0)

CHOW_TAU = 0.5


# =============================================================================
# Cost-Sensitive Strategy (Chow rule)
# =============================================================================

@dataclass
class CostConfig:
    """Abstract cost units; an oracle call is the baseline 1.0."""
    cost_oracle_call: float = 1.0
    cost_fn_high_stakes: float = 8.0   # missed high-stakes message
    cost_fp_high_stakes: float = 0.5   # over-cautious handling
    cost_wrong_category: float = 1.0
    latency_budget_ms: float = 500.0
    latency_cost_per_100ms: float = 0.2
    estimated_oracle_latency_ms: float = 750.0

    @property
    def call_cost(self) -> float:
        over = max(0.0, self.estimated_oracle_latency_ms - self.latency_budget_ms)
        return self.cost_oracle_call + (over / 100.0) * self.latency_cost_per_100ms


_MEANING_MARKERS = [
    re.compile(p, re.IGNORECASE) for p in (
        r"qual è il punto|what'?s the point",
        r"non so|i don'?t know",
        r"perché|why",
        r"senso|meaning",
        r"vuoto|empty",
        r"perso|lost",
    )
]

SHORT_MESSAGE_CHARS = 50


def high_stakes_error_probability(signal: Signal, text: str, uncertainty: float) -> float:
    """P(the fast classifier is wrong about the high-stakes category)."""
    existential = signal.high_stakes_score
    p = uncertainty

    # Ambiguous band
    if 0.35 <= existential <= 0.65:
        p = max(p, 0.4)

    is_short = len(text) < SHORT_MESSAGE_CHARS
    if is_short and not signal.high_stakes_triggered and any(m.search(text) for m in _MEANING_MARKERS):
        p = max(p, 0.5)

    if signal.high_stakes_triggered and existential > 0.7:
        p = min(p, 0.1)
    if signal.primary_category == "FUNCTIONAL" and existential < 0.2:
        p = min(p, 0.1)

    return max(0.0, min(1.0, p))


def category_error_probability(signal: Signal, uncertainty: float) -> float:
    """P(the fast classifier picked the wrong dominant category)."""
    ranked = [s for _, s in signal.ranked_scores()]
    gap = ranked[0] - (ranked[1] if len(ranked) > 1 else 0.0)
    if gap < 0.1:
        return max(uncertainty, 0.4)
    if gap < 0.2:
        return max(uncertainty, 0.25)
    if gap < 0.3:
        return max(uncertainty, 0.15)
    return min(uncertainty, 0.1)


class CostSensitiveStrategy(ScoringStrategy):
    """Chow-rule gating behind the ScoringStrategy interface."""

    name = "cost_sensitive"
    version = "4.0"

    def __init__(self, costs: Optional[CostConfig] = None):
        self.costs = costs or CostConfig()

    def expected_loss(self, signal: Signal, text: str) -> float:
        uncertainty = signal.uncertainty if signal.uncertainty is not None else 0.0
        p_hs = high_stakes_error_probability(signal, text, uncertainty)
        p_cat = category_error_probability(signal, uncertainty)
        hs_cost = self.costs.cost_fp_high_stakes if signal.high_stakes_triggered else self.costs.cost_fn_high_stakes
        return p_hs * hs_cost + p_cat * self.costs.cost_wrong_category

    def score(self, signal: Signal, text: str) -> ScoreResult:
        values = list(signal.category_scores.values())
        if signal.uncertainty is not None:
            values.append(signal.uncertainty)
        if not all(math.isfinite(v) for v in values):
            return ScoreResult(score=math.nan, valid=False, strategy=self.name)

        loss = self.expected_loss(signal, text)
        cost = self.costs.call_cost
        base = signal.high_stakes_score
        return ScoreResult(
            score=cost / (cost + loss),
            valid=True,
            components=ScoreComponents(base=base, boosted=base),
            strategy=self.name,
        )

    def describe(self) -> Dict[str, Any]:
        d = super().describe()
        d["call_cost"] = self.costs.call_cost
        return d


# =============================================================================
# Replay
# =============================================================================

@dataclass
class ReplayResult:
    """Outcome of replaying a labeled corpus at one threshold."""
    tau: float
    recall: float
    call_rate: float
    false_negatives: int
    calls: int
    skips: int
    total: int
    positives: int

    def to_dict(self) -> dict:
        return {
            "tau": self.tau,
            "recall": self.recall,
            "call_rate": self.call_rate,
            "false_negatives": self.false_negatives,
            "calls": self.calls,
            "skips": self.skips,
            "total": self.total,
            "positives": self.positives,
        }


def _score_all(cases: Sequence[LabeledCase], scorer: ScoringStrategy) -> List[Tuple[LabeledCase, ScoreResult]]:
    return [(c, scorer.score(c.signal, c.text)) for c in cases]


def _replay(scored: List[Tuple[LabeledCase, ScoreResult]], tau: float) -> ReplayResult:
    """
    Safety-stage cases (crisis / already triggered) never reach the
    threshold. A positive counts as caught when the fast classifier flagged
    it or when the oracle would be called for it.
    """
    calls = skips = false_negatives = caught = positives = 0
    for case, result in scored:
        if case.is_positive:
            positives += 1
        if case.caught_by_fast_classifier:
            if case.is_positive:
                caught += 1
            continue

        call = not result.valid or result.score <= tau
        if call:
            calls += 1
            if case.is_positive:
                caught += 1
        else:
            skips += 1
            if case.is_positive:
                false_negatives += 1

    total = len(scored)
    return ReplayResult(
        tau=tau,
        recall=caught / positives if positives else 1.0,
        call_rate=calls / total if total else 0.0,
        false_negatives=false_negatives,
        calls=calls,
        skips=skips,
        total=total,
        positives=positives,
    )


def threshold_sweep(
    cases: Sequence[LabeledCase],
    scorer: Optional[ScoringStrategy] = None,
    thresholds: Sequence[float] = DEFAULT_SWEEP_THRESHOLDS,
) -> List[ReplayResult]:
    """Recall and call rate at each threshold, scoring the corpus once."""
    scored = _score_all(cases, scorer or NonconformityScorer())
    return [_replay(scored, tau) for tau in thresholds]


def recommend_threshold(points: Sequence[ReplayResult], target_recall: float) -> Optional[ReplayResult]:
    """
    Smallest swept tau still meeting target_recall.

    Raising tau only adds oracle calls, so this is the cheapest point.
    """
    eligible = [p for p in points if p.recall >= target_recall]
    if not eligible:
        return None
    return min(eligible, key=lambda p: p.tau)


# =============================================================================
# Strategy Comparison
# =============================================================================

@dataclass
class StrategyComparison:
    strategy: str
    tau: float
    result: ReplayResult
    mean_positive_score: float = 0.0
    mean_negative_score: float = 0.0
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def separation(self) -> float:
        """How far apart the two classes score; larger ranks better."""
        return self.mean_negative_score - self.mean_positive_score

    def to_dict(self) -> dict:
        d = {
            "strategy": self.strategy,
            "tau": self.tau,
            "mean_positive_score": self.mean_positive_score,
            "mean_negative_score": self.mean_negative_score,
            "separation": self.separation,
            "details": dict(self.details),
        }
        d.update(self.result.to_dict())
        return d


def _mean(values: List[float]) -> float:
    return float(np.mean(values)) if values else 0.0


def compare_strategies(
    cases: Sequence[LabeledCase],
    strategies: Sequence[Tuple[ScoringStrategy, float]],
) -> List[StrategyComparison]:
    """
    Replay the corpus once per (strategy, tau) pair.

    Typical use: [(NonconformityScorer(), calibration.tau),
                  (CostSensitiveStrategy(), CHOW_TAU)]
    """
    comparisons = []
    for strategy, tau in strategies:
        scored = _score_all(cases, strategy)
        pos = [r.score for c, r in scored if r.valid and c.is_positive and not c.caught_by_fast_classifier]
        neg = [r.score for c, r in scored if r.valid and not c.is_positive]
        comparisons.append(StrategyComparison(
            strategy=strategy.name,
            tau=tau,
            result=_replay(scored, tau),
            mean_positive_score=_mean(pos),
            mean_negative_score=_mean(neg),
            details=strategy.describe(),
        ))
    return comparisons
