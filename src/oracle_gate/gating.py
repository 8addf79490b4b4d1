"""
Gating Orchestrator - Should the caller invoke the oracle?

Strict linear cascade, evaluated in this order, each stage a potential
terminal:

    1. SAFETY     crisis -> EMERGENCY_BYPASS (no flag can disable this)
                  high_stakes_triggered -> HIGH_STAKES_ALREADY_TRIGGERED
    2. CACHE      stored verdict for (normalized text, language) -> CACHE_HIT
    3. HARD_SKIP  skip rule matched and not vetoed -> HARD_SKIP_<TYPE>
    4. THRESHOLD  invalid score -> FALLBACK (call)
                  score > tau   -> THRESHOLD_SKIP
                  otherwise     -> THRESHOLD_CALL

The stages are an ordered list of evaluators run by one loop; each returns
a terminal GatingDecision or None ("continue"). No stage is revisited, so
there is exactly one path to every decision.

The orchestrator never calls the oracle. The caller does, and feeds the
verdict back with cache_result().

Thread-safety:
    decide() may be called concurrently. The cache and stats carry their own
    locks. The threshold lives in an immutable _ThresholdState that is
    swapped as a single reference, so a decision sees either the old or the
    new tau, never a mix.

Usage:
    from oracle_gate import GatingOrchestrator, Calibration, Signal

    gate = GatingOrchestrator(calibration=Calibration.load("artifacts/tau.json"))
    decision = gate.decide(signal, "What time is it?", "en")
    if decision.call_oracle:
        verdict = await oracle.classify(text)
        gate.cache_result(text, "en", verdict)
"""

from dataclasses import dataclass, asdict
from typing import Any, Callable, Dict, List, Optional
import logging
import threading

from oracle_gate.cache import CacheKey, ResultCache, CacheStats
from oracle_gate.calibration import Calibration
from oracle_gate.decisions import DecisionReason, DecisionStage, GatingDecision
from oracle_gate.errors import CalibrationMissingError
from oracle_gate.hard_skip import HardSkipRuleSet
from oracle_gate.scoring import NonconformityScorer, ScoringStrategy
from oracle_gate.signals import OracleVerdict, Signal, as_signal
from oracle_gate.stats import RunningStats, StatsAggregator

logger = logging.getLogger(__name__)


# =============================================================================
# Configuration
# =============================================================================

@dataclass
class GatingConfig:
    """
    Stage switches and threshold policy.

    The safety stage has no switch.
    """
    use_cache: bool = True
    use_hard_skip: bool = True
    use_threshold: bool = True
    use_lexicon: bool = True
    enable_fallback: bool = True

    # Used only when no calibration is supplied
    default_tau: Optional[float] = None

    # A calibration carrying a stability warning is served with
    # tau >= unstable_floor_tau unless explicitly allowed.
    allow_unstable_calibration: bool = False
    unstable_floor_tau: float = 0.85

    def __post_init__(self):
        if not 0.0 <= self.unstable_floor_tau <= 1.0:
            raise ValueError(f"unstable_floor_tau must be in [0, 1], got {self.unstable_floor_tau}")


@dataclass(frozen=True)
class _ThresholdState:
    calibration: Calibration
    tau: float  # tau in force (may be raised above calibration.tau)


# One request flowing through the cascade
@dataclass
class _Request:
    signal: Signal
    text: str
    language: str
    cache_key: Optional[CacheKey] = None


StageEvaluator = Callable[[_Request], Optional[GatingDecision]]


# =============================================================================
# Orchestrator
# =============================================================================

class GatingOrchestrator:
    """
    One decision per request, plus the feedback and operator surface.

    Owns no global state: build one per service and share it across
    request handlers.
    """

    def __init__(
        self,
        calibration: Optional[Calibration] = None,
        config: Optional[GatingConfig] = None,
        scorer: Optional[ScoringStrategy] = None,
        rules: Optional[HardSkipRuleSet] = None,
        cache: Optional[ResultCache] = None,
        stats: Optional[StatsAggregator] = None,
    ):
        self.config = config or GatingConfig()

        if calibration is None:
            if self.config.default_tau is None:
                raise CalibrationMissingError(
                    "no calibration supplied and no default_tau configured; "
                    "refusing to gate with an undefined threshold"
                )
            calibration = Calibration.manual(self.config.default_tau, source="default")

        self.scorer = scorer or NonconformityScorer(use_lexicon=self.config.use_lexicon)
        self.rules = rules or HardSkipRuleSet.load()
        self.cache = cache or ResultCache()
        self.stats = stats or StatsAggregator()

        self._swap_lock = threading.Lock()
        self._state = self._make_state(calibration)

        self._stages: List[StageEvaluator] = [
            self._safety_stage,
            self._cache_stage,
            self._hard_skip_stage,
            self._threshold_stage,
        ]

    # -------------------------------------------------------------------------
    # Threshold state
    # -------------------------------------------------------------------------

    def _make_state(self, calibration: Calibration) -> _ThresholdState:
        tau = calibration.tau
        if not calibration.is_stable:
            logger.warning("calibration is unstable: %s", calibration.stability_warning)
            floor = self.config.unstable_floor_tau
            if not self.config.allow_unstable_calibration and tau < floor:
                logger.warning(
                    "raising tau from %.4f to unstable floor %.4f", tau, floor
                )
                tau = floor
        return _ThresholdState(calibration=calibration, tau=tau)

    @property
    def calibration(self) -> Calibration:
        return self._state.calibration

    @property
    def tau(self) -> float:
        """Threshold currently in force."""
        return self._state.tau

    def set_calibration(self, calibration: Calibration) -> None:
        """Hot-swap to a new calibration record."""
        with self._swap_lock:
            previous = self._state.tau
            self._state = self._make_state(calibration)
        logger.info(
            "calibration swapped: tau %.4f -> %.4f (revision %d, source %s)",
            previous, self._state.tau, calibration.revision, calibration.source,
        )

    def set_threshold(self, tau: float) -> None:
        """Operator override of tau; raises CalibrationError if out of [0, 1]."""
        with self._swap_lock:
            previous = self._state.tau
            calibration = self._state.calibration.with_tau(tau)
            self._state = self._make_state(calibration)
        logger.info("threshold set: %.4f -> %.4f", previous, tau)

    # -------------------------------------------------------------------------
    # Cascade
    # -------------------------------------------------------------------------

    def decide(self, signal: Any, text: str, language: str = "en") -> GatingDecision:
        """
        Run the cascade for one message.

        Raises InvalidSignalError for a malformed signal; never raises for
        cache failures or numeric edge cases.
        """
        request = _Request(signal=as_signal(signal), text=text, language=language)

        decision = None
        for stage in self._stages:
            decision = stage(request)
            if decision is not None:
                break

        self.stats.record(decision)
        logger.debug(
            "decision reason=%s call_oracle=%s score=%s",
            decision.reason.value, decision.call_oracle, decision.score,
        )
        return decision

    def _safety_stage(self, request: _Request) -> Optional[GatingDecision]:
        if request.signal.crisis:
            return GatingDecision(
                call_oracle=False,
                stage=DecisionStage.SAFETY,
                reason=DecisionReason.EMERGENCY_BYPASS,
            )
        if request.signal.high_stakes_triggered:
            return GatingDecision(
                call_oracle=False,
                stage=DecisionStage.SAFETY,
                reason=DecisionReason.HIGH_STAKES_ALREADY_TRIGGERED,
            )
        return None

    def _cache_stage(self, request: _Request) -> Optional[GatingDecision]:
        if not self.config.use_cache:
            return None
        try:
            request.cache_key = CacheKey.for_message(request.text, request.language)
            verdict = self.cache.get(request.cache_key)
        except Exception as e:
            # Degrade to a miss; the cascade still decides correctly.
            logger.warning("cache lookup failed, treating as miss: %s", e)
            return None
        if verdict is None:
            return None
        return GatingDecision(
            call_oracle=False,
            stage=DecisionStage.CACHE,
            reason=DecisionReason.CACHE_HIT,
            cached_verdict=verdict,
        )

    def _hard_skip_stage(self, request: _Request) -> Optional[GatingDecision]:
        if not self.config.use_hard_skip:
            return None
        result = self.rules.check(request.text)
        if not result.should_skip:
            return None
        return GatingDecision(
            call_oracle=False,
            stage=DecisionStage.HARD_SKIP,
            reason=DecisionReason.for_skip_type(result.matched_type),
            matched_pattern=result.pattern,
        )

    def _threshold_stage(self, request: _Request) -> GatingDecision:
        if not self.config.use_threshold:
            return GatingDecision(
                call_oracle=True,
                stage=DecisionStage.THRESHOLD,
                reason=DecisionReason.FALLBACK,
            )

        state = self._state
        result = self.scorer.score(request.signal, request.text)

        if not result.valid and self.config.enable_fallback:
            logger.warning(
                "non-finite score for signal %s; falling back to oracle call",
                dict(request.signal.category_scores),
            )
            return GatingDecision(
                call_oracle=True,
                stage=DecisionStage.THRESHOLD,
                reason=DecisionReason.FALLBACK,
                tau=state.tau,
                lexicon_matches=result.lexicon_matches,
            )

        # NaN > tau is False, so an invalid score without fallback still calls.
        skip = result.score > state.tau
        return GatingDecision(
            call_oracle=not skip,
            stage=DecisionStage.THRESHOLD,
            reason=DecisionReason.THRESHOLD_SKIP if skip else DecisionReason.THRESHOLD_CALL,
            score=result.score,
            tau=state.tau,
            lexicon_matches=result.lexicon_matches,
        )

    # -------------------------------------------------------------------------
    # Feedback and observability
    # -------------------------------------------------------------------------

    def cache_result(self, text: str, language: str, verdict: OracleVerdict) -> None:
        """Store the oracle's verdict for (text, language)."""
        if not self.config.use_cache:
            return
        try:
            self.cache.store(text, language, verdict)
        except Exception as e:
            logger.warning("cache store failed, verdict not cached: %s", e)

    def get_stats(self) -> RunningStats:
        return self.stats.snapshot()

    def get_cache_stats(self) -> CacheStats:
        return self.cache.stats()

    def reset_stats(self) -> None:
        self.stats.reset()
        logger.info("gating stats reset")

    def describe(self) -> Dict[str, Any]:
        """Configuration and versions in force, for audit."""
        state = self._state
        return {
            "tau": state.tau,
            "calibration": state.calibration.to_dict(),
            "config": asdict(self.config),
            "scorer": self.scorer.describe(),
            "hard_skip_rules_version": self.rules.version,
            "cache": asdict(self.cache.config),
        }
