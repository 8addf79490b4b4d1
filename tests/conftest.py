"""
Pytest configuration.

Ensures the src directory is on the path for imports, and provides the
shared fixtures: signals, a controllable clock and a wired orchestrator.
"""

import sys
from pathlib import Path

import pytest

# Add src to path so imports work
src_path = Path(__file__).parent.parent / "src"
if str(src_path) not in sys.path:
    sys.path.insert(0, str(src_path))

from oracle_gate.cache import CacheConfig, ResultCache
from oracle_gate.calibration import Calibration
from oracle_gate.gating import GatingConfig, GatingOrchestrator
from oracle_gate.signals import OracleVerdict, Signal


class FakeClock:
    """Monotonic clock advanced by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def calm_signal():
    """Clearly functional message, nothing triggered."""
    return Signal(category_scores={"EXISTENTIAL": 0.1, "FUNCTIONAL": 0.8})


@pytest.fixture
def verdict():
    return OracleVerdict(regime="FUNCTIONAL", confidence=0.92, markers=("task",))


@pytest.fixture
def cache(clock):
    return ResultCache(CacheConfig(max_entries=100, ttl_seconds=60.0), clock=clock)


@pytest.fixture
def gate(cache):
    """Orchestrator with a stable manual tau of 0.7 and a fake-clock cache."""
    return GatingOrchestrator(calibration=Calibration.manual(0.7), config=GatingConfig(), cache=cache)
