"""
Lexicon Booster - Everyday high-stakes phrasing the fast classifier misses

The fast classifier scores clinical or explicit wording well but can give
near-zero high-stakes scores to short everyday phrases ("tired of everything",
"che senso ha"). The lexicon raises the score for those cases so the
threshold stage sends them to the oracle.

Rules:
1. All matching markers contribute their weight.
2. The summed boost is capped (max_total_boost, default 0.4).
3. boosted = min(1.0, base + boost), so boosted >= base always.
4. Markers NEVER set crisis. Crisis stays owned by the fast classifier.

Stateless after construction: one booster can be shared across threads.

Usage:
    booster = LexiconBooster.load()
    result = booster.boost(0.1, "I'm tired of everything")
    result.boosted_score   # 0.4
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union
import math
import re

from oracle_gate.errors import RuleTableError
from oracle_gate.tables import compile_pattern, load_table, require


DEFAULT_MAX_TOTAL_BOOST = 0.4

MARKER_CATEGORIES = ("totalization", "meaning", "lostness", "exhaustion", "questioning")


@dataclass(frozen=True)
class LexiconMarker:
    """One phrase pattern from the lexicon table."""
    language: str
    pattern: "re.Pattern[str]"
    weight: float
    category: str
    label: str


@dataclass(frozen=True)
class LexiconMatch:
    """A marker that matched a message."""
    label: str
    weight: float
    category: str
    language: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "label": self.label,
            "weight": self.weight,
            "category": self.category,
            "language": self.language,
        }


@dataclass(frozen=True)
class BoostResult:
    """Outcome of LexiconBooster.boost."""
    base_score: float
    boosted_score: float
    matches: Tuple[LexiconMatch, ...] = field(default_factory=tuple)

    @property
    def lexicon_boost(self) -> float:
        return self.boosted_score - self.base_score

    @property
    def has_signal(self) -> bool:
        return len(self.matches) > 0


class LexiconBooster:
    """
    Data-driven phrase matcher that lifts the high-stakes score.
    """

    def __init__(
        self,
        markers: List[LexiconMarker],
        max_total_boost: float = DEFAULT_MAX_TOTAL_BOOST,
        version: str = "unversioned",
    ):
        if not 0.0 <= max_total_boost <= 1.0:
            raise RuleTableError(f"max_total_boost must be in [0, 1], got {max_total_boost}")
        self.markers = tuple(markers)
        self.max_total_boost = max_total_boost
        self.version = version

    @classmethod
    def from_table(cls, table: Dict[str, Any], max_total_boost: Optional[float] = None) -> "LexiconBooster":
        """Build from a parsed lexicon table."""
        markers = []
        for i, entry in enumerate(table.get("markers", [])):
            where = f"lexicon marker #{i}"
            category = require(entry, "category", where)
            if category not in MARKER_CATEGORIES:
                raise RuleTableError(f"{where}: unknown category {category!r}")
            weight = require(entry, "weight", where)
            if isinstance(weight, bool) or not isinstance(weight, (int, float)) or weight < 0:
                raise RuleTableError(f"{where}: weight must be a non-negative number")
            markers.append(LexiconMarker(
                language=require(entry, "language", where),
                pattern=compile_pattern(require(entry, "pattern", where), where),
                weight=float(weight),
                category=category,
                label=entry.get("label", entry["pattern"]),
            ))

        if max_total_boost is None:
            max_total_boost = table.get("max_total_boost", DEFAULT_MAX_TOTAL_BOOST)

        return cls(markers, max_total_boost=max_total_boost, version=str(table["version"]))

    @classmethod
    def load(
        cls,
        path: Optional[Union[str, Path]] = None,
        max_total_boost: Optional[float] = None,
    ) -> "LexiconBooster":
        """Load the packaged lexicon, or a table at `path`."""
        return cls.from_table(load_table(path or "lexicon"), max_total_boost=max_total_boost)

    @property
    def languages(self) -> List[str]:
        return sorted({m.language for m in self.markers})

    def scan(self, text: str, language: Optional[str] = None) -> List[LexiconMatch]:
        """
        All markers matching `text`.

        With `language`, only that language's markers are consulted;
        otherwise every language is scanned (code-switching is common).
        """
        matches = []
        for marker in self.markers:
            if language is not None and marker.language != language:
                continue
            if marker.pattern.search(text):
                matches.append(LexiconMatch(
                    label=marker.label,
                    weight=marker.weight,
                    category=marker.category,
                    language=marker.language,
                ))
        return matches

    def boost(self, base_score: float, text: str, language: Optional[str] = None) -> BoostResult:
        """
        Lift `base_score` by the capped sum of matching marker weights.
        """
        matches = self.scan(text, language)
        total = min(sum(m.weight for m in matches), self.max_total_boost)

        if math.isnan(base_score):
            # Propagate: the scorer turns this into an invalid score.
            return BoostResult(base_score, base_score, tuple(matches))

        boosted = min(1.0, base_score + total)
        boosted = max(boosted, base_score)
        return BoostResult(base_score, boosted, tuple(matches))
