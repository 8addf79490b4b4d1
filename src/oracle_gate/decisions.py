"""
Gating Decisions - the sole output of the cascade

Exactly one stage produces each decision:
    SAFETY     crisis / high-stakes already triggered (never calls the oracle)
    CACHE      a stored verdict answers the request
    HARD_SKIP  a textual skip rule matched (and no anti-skip rule vetoed it)
    THRESHOLD  nonconformity score compared against tau

Only the THRESHOLD stage may decide "call the oracle".
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from oracle_gate.hard_skip import SkipType
from oracle_gate.lexicon import LexiconMatch
from oracle_gate.signals import OracleVerdict


class DecisionStage(Enum):
    CACHE = "cache"
    HARD_SKIP = "hard_skip"
    THRESHOLD = "threshold"
    SAFETY = "safety"


class DecisionReason(Enum):
    EMERGENCY_BYPASS = "EMERGENCY_BYPASS"
    HIGH_STAKES_ALREADY_TRIGGERED = "HIGH_STAKES_ALREADY_TRIGGERED"
    CACHE_HIT = "CACHE_HIT"
    HARD_SKIP_FACTUAL = "HARD_SKIP_FACTUAL"
    HARD_SKIP_OPERATIONAL = "HARD_SKIP_OPERATIONAL"
    HARD_SKIP_ACKNOWLEDGMENT = "HARD_SKIP_ACKNOWLEDGMENT"
    HARD_SKIP_GREETING = "HARD_SKIP_GREETING"
    THRESHOLD_SKIP = "THRESHOLD_SKIP"
    THRESHOLD_CALL = "THRESHOLD_CALL"
    FALLBACK = "FALLBACK"

    @classmethod
    def for_skip_type(cls, skip_type: SkipType) -> "DecisionReason":
        return cls[f"HARD_SKIP_{skip_type.name}"]

    @property
    def is_hard_skip(self) -> bool:
        return self.name.startswith("HARD_SKIP_")


# Which stage each reason belongs to
REASON_STAGE = {
    DecisionReason.EMERGENCY_BYPASS: DecisionStage.SAFETY,
    DecisionReason.HIGH_STAKES_ALREADY_TRIGGERED: DecisionStage.SAFETY,
    DecisionReason.CACHE_HIT: DecisionStage.CACHE,
    DecisionReason.HARD_SKIP_FACTUAL: DecisionStage.HARD_SKIP,
    DecisionReason.HARD_SKIP_OPERATIONAL: DecisionStage.HARD_SKIP,
    DecisionReason.HARD_SKIP_ACKNOWLEDGMENT: DecisionStage.HARD_SKIP,
    DecisionReason.HARD_SKIP_GREETING: DecisionStage.HARD_SKIP,
    DecisionReason.THRESHOLD_SKIP: DecisionStage.THRESHOLD,
    DecisionReason.THRESHOLD_CALL: DecisionStage.THRESHOLD,
    DecisionReason.FALLBACK: DecisionStage.THRESHOLD,
}


@dataclass(frozen=True)
class GatingDecision:
    """
    Immutable answer to "should the caller invoke the oracle?".

    score / tau / margin are set only when the threshold stage computed a
    valid score. matched_pattern only for hard skips, cached_verdict only
    for cache hits.
    """
    call_oracle: bool
    stage: DecisionStage
    reason: DecisionReason
    score: Optional[float] = None
    matched_pattern: Optional[str] = None
    cached_verdict: Optional[OracleVerdict] = None

    tau: Optional[float] = None
    lexicon_matches: Tuple[LexiconMatch, ...] = field(default_factory=tuple)

    def __post_init__(self):
        expected = REASON_STAGE[self.reason]
        if self.stage is not expected:
            raise ValueError(f"reason {self.reason.value} belongs to stage {expected.value}, not {self.stage.value}")
        if self.stage is DecisionStage.SAFETY and self.call_oracle:
            raise ValueError("safety-stage decisions never call the oracle")
        if self.call_oracle and self.stage is not DecisionStage.THRESHOLD:
            raise ValueError("only the threshold stage may decide to call the oracle")

    @property
    def margin(self) -> Optional[float]:
        if self.score is None or self.tau is None:
            return None
        return self.score - self.tau

    def to_dict(self) -> Dict[str, Any]:
        """Wire shape handed to the embedding service."""
        return {
            "call_oracle": self.call_oracle,
            "stage": self.stage.value,
            "reason": self.reason.value,
            "score": self.score,
            "matched_pattern": self.matched_pattern,
            "cached_verdict": self.cached_verdict.to_dict() if self.cached_verdict else None,
            "tau": self.tau,
            "margin": self.margin,
            "lexicon_matches": [m.to_dict() for m in self.lexicon_matches],
        }
