"""
Hard Skip Rules - Fast textual exits with an overriding anti-skip table

Two ordered tables, both loaded from versioned data (rules/hard_skip.json):

1. ANTI-SKIP (checked first, unconditionally)
   Any match => do not skip, whatever else matches.
   Short utterances like "I can't", "basta", "no more" look like harmless
   acknowledgments but can signal crisis. This table is the main defense
   against recall loss on short inputs.

2. SKIP, by type: factual, operational, acknowledgment, greeting.
   First match wins.

Each skip rule carries a confidence weight. It is informational only and
reported on the result; the decision is binary (match / no match).

check() is a pure function of the tables and the input text.

Usage:
    rules = HardSkipRuleSet.load()
    result = rules.check("What time is it?")
    result.should_skip    # True
    result.matched_type   # SkipType.FACTUAL
"""

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Union
import re

from oracle_gate.errors import RuleTableError
from oracle_gate.tables import compile_pattern, load_table, require


class SkipType(Enum):
    """Categories of hard-skippable input."""
    FACTUAL = "factual"
    OPERATIONAL = "operational"
    ACKNOWLEDGMENT = "acknowledgment"
    GREETING = "greeting"


@dataclass(frozen=True)
class SkipRule:
    rule_id: str
    skip_type: SkipType
    pattern: "re.Pattern[str]"
    confidence: float


@dataclass(frozen=True)
class AntiSkipRule:
    rule_id: str
    concern: str
    pattern: "re.Pattern[str]"


@dataclass(frozen=True)
class HardSkipResult:
    """Outcome of HardSkipRuleSet.check."""
    should_skip: bool
    matched_type: Optional[SkipType] = None
    pattern: Optional[str] = None
    rule_id: Optional[str] = None
    confidence: float = 0.0

    # Set when an anti-skip rule vetoed the check
    vetoed_by: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "should_skip": self.should_skip,
            "matched_type": self.matched_type.value if self.matched_type else None,
            "pattern": self.pattern,
            "rule_id": self.rule_id,
            "confidence": self.confidence,
            "vetoed_by": self.vetoed_by,
        }


NO_SKIP = HardSkipResult(should_skip=False)


class HardSkipRuleSet:
    """
    Ordered skip rules guarded by an anti-skip table.
    """

    def __init__(
        self,
        skip_rules: List[SkipRule],
        anti_skip_rules: List[AntiSkipRule],
        version: str = "unversioned",
    ):
        self.skip_rules = tuple(skip_rules)
        self.anti_skip_rules = tuple(anti_skip_rules)
        self.version = version

    @classmethod
    def from_table(cls, table: Dict[str, Any]) -> "HardSkipRuleSet":
        anti = []
        for i, entry in enumerate(table.get("anti_skip", [])):
            where = f"anti_skip #{i}"
            anti.append(AntiSkipRule(
                rule_id=entry.get("id", f"anti_{i}"),
                concern=entry.get("concern", "unspecified"),
                pattern=compile_pattern(require(entry, "pattern", where), where),
            ))

        skips = []
        for i, entry in enumerate(table.get("skip", [])):
            where = f"skip #{i}"
            raw_type = require(entry, "type", where)
            try:
                skip_type = SkipType(raw_type)
            except ValueError:
                raise RuleTableError(f"{where}: unknown skip type {raw_type!r}") from None
            skips.append(SkipRule(
                rule_id=entry.get("id", f"skip_{i}"),
                skip_type=skip_type,
                pattern=compile_pattern(require(entry, "pattern", where), where),
                confidence=float(entry.get("confidence", 1.0)),
            ))

        if skips and not anti:
            # A skip table without its safety veto is never a valid configuration.
            raise RuleTableError("hard-skip table has skip rules but no anti_skip rules")

        return cls(skips, anti, version=str(table["version"]))

    @classmethod
    def load(cls, path: Optional[Union[str, Path]] = None) -> "HardSkipRuleSet":
        """Load the packaged table, or a table at `path`."""
        return cls.from_table(load_table(path or "hard_skip"))

    def anti_skip_match(self, text: str) -> Optional[AntiSkipRule]:
        """First anti-skip rule matching `text`, if any."""
        for rule in self.anti_skip_rules:
            if rule.pattern.search(text):
                return rule
        return None

    def check(self, text: str) -> HardSkipResult:
        normalized = text.strip()

        veto = self.anti_skip_match(normalized)
        if veto is not None:
            return HardSkipResult(should_skip=False, vetoed_by=veto.rule_id)

        for rule in self.skip_rules:
            if rule.pattern.search(normalized):
                return HardSkipResult(
                    should_skip=True,
                    matched_type=rule.skip_type,
                    pattern=rule.pattern.pattern,
                    rule_id=rule.rule_id,
                    confidence=rule.confidence,
                )

        return NO_SKIP
