"""
Stats Aggregator - Counters per decision reason

Monotonic counters, reset only by an explicit operator call.
Increments happen under a lock, so no increment is lost when one
orchestrator serves many threads.

The snapshot is read-only data meant to be exported as metrics by the
embedding service (counts per reason, call rate, cache hit rate).
"""

from dataclasses import dataclass, field
from typing import Dict
import math
import threading

from oracle_gate.decisions import DecisionReason, DecisionStage, GatingDecision


@dataclass(frozen=True)
class RunningStats:
    """Point-in-time copy of the counters."""
    by_reason: Dict[str, int] = field(default_factory=dict)
    hard_skip_by_type: Dict[str, int] = field(default_factory=dict)
    total_decisions: int = 0
    oracle_calls: int = 0

    # Threshold-stage score sums (for averages)
    threshold_skip_score_sum: float = 0.0
    threshold_call_score_sum: float = 0.0

    def count(self, reason: DecisionReason) -> int:
        return self.by_reason.get(reason.value, 0)

    def _rate(self, n: int) -> float:
        return n / self.total_decisions if self.total_decisions else 0.0

    @property
    def overall_call_rate(self) -> float:
        return self._rate(self.oracle_calls)

    @property
    def cache_hit_rate(self) -> float:
        return self._rate(self.count(DecisionReason.CACHE_HIT))

    @property
    def hard_skips(self) -> int:
        return sum(self.hard_skip_by_type.values())

    @property
    def hard_skip_rate(self) -> float:
        return self._rate(self.hard_skips)

    @property
    def threshold_skip_rate(self) -> float:
        return self._rate(self.count(DecisionReason.THRESHOLD_SKIP))

    @property
    def avg_score_when_skipping(self) -> float:
        n = self.count(DecisionReason.THRESHOLD_SKIP)
        return self.threshold_skip_score_sum / n if n else 0.0

    @property
    def avg_score_when_calling(self) -> float:
        n = self.count(DecisionReason.THRESHOLD_CALL)
        return self.threshold_call_score_sum / n if n else 0.0

    def to_dict(self) -> dict:
        return {
            "total_decisions": self.total_decisions,
            "oracle_calls": self.oracle_calls,
            "by_reason": dict(self.by_reason),
            "hard_skip_by_type": dict(self.hard_skip_by_type),
            "overall_call_rate": self.overall_call_rate,
            "cache_hit_rate": self.cache_hit_rate,
            "hard_skip_rate": self.hard_skip_rate,
            "threshold_skip_rate": self.threshold_skip_rate,
            "avg_score_when_skipping": self.avg_score_when_skipping,
            "avg_score_when_calling": self.avg_score_when_calling,
        }


class StatsAggregator:
    """Thread-safe decision counters."""

    def __init__(self):
        self._lock = threading.Lock()
        self._reset_locked()

    def _reset_locked(self):
        self._by_reason: Dict[str, int] = {r.value: 0 for r in DecisionReason}
        self._hard_skip_by_type: Dict[str, int] = {}
        self._total = 0
        self._calls = 0
        self._skip_score_sum = 0.0
        self._call_score_sum = 0.0

    def record(self, decision: GatingDecision) -> None:
        with self._lock:
            self._total += 1
            self._by_reason[decision.reason.value] += 1
            if decision.call_oracle:
                self._calls += 1

            if decision.stage is DecisionStage.HARD_SKIP:
                skip_type = decision.reason.value[len("HARD_SKIP_"):].lower()
                self._hard_skip_by_type[skip_type] = self._hard_skip_by_type.get(skip_type, 0) + 1
            elif decision.score is not None and math.isfinite(decision.score):
                if decision.reason is DecisionReason.THRESHOLD_SKIP:
                    self._skip_score_sum += decision.score
                elif decision.reason is DecisionReason.THRESHOLD_CALL:
                    self._call_score_sum += decision.score

    def snapshot(self) -> RunningStats:
        with self._lock:
            return RunningStats(
                by_reason=dict(self._by_reason),
                hard_skip_by_type=dict(self._hard_skip_by_type),
                total_decisions=self._total,
                oracle_calls=self._calls,
                threshold_skip_score_sum=self._skip_score_sum,
                threshold_call_score_sum=self._call_score_sum,
            )

    def reset(self) -> None:
        """Operator action: zero every counter."""
        with self._lock:
            self._reset_locked()
