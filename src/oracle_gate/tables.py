"""
Rule Tables - Versioned pattern data loaded from JSON

Hard-skip, anti-skip and lexicon patterns live in data files, not code,
so they can be reviewed, diffed and tested independently of the cascade.

Every table is a JSON object with at least:
    {"version": "...", ...table-specific lists...}

Default tables ship inside the package (oracle_gate/rules/*.json).
"""

from pathlib import Path
from typing import Any, Dict, Optional, Union
import json
import re

from oracle_gate.errors import RuleTableError


RULES_DIR = Path(__file__).parent / "rules"

PATTERN_FLAGS = re.IGNORECASE | re.UNICODE


def load_table(name_or_path: Union[str, Path], default_name: Optional[str] = None) -> Dict[str, Any]:
    """
    Load a rule table.

    A bare name ("hard_skip") resolves to the packaged table; anything with
    a suffix or a directory component is treated as a filesystem path.
    """
    path = Path(name_or_path)
    if path.suffix == "" and path.parent == Path("."):
        path = RULES_DIR / f"{path.name}.json"

    if not path.exists():
        raise RuleTableError(f"rule table not found: {path}")

    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise RuleTableError(f"rule table {path} is not valid JSON: {e}") from e

    if not isinstance(data, dict):
        raise RuleTableError(f"rule table {path} must be a JSON object")
    if "version" not in data:
        raise RuleTableError(f"rule table {path} has no 'version'")
    return data


def compile_pattern(source: str, where: str) -> "re.Pattern[str]":
    """Compile one table pattern, reporting the table entry on failure."""
    if not isinstance(source, str) or not source:
        raise RuleTableError(f"{where}: pattern must be a non-empty string")
    try:
        return re.compile(source, PATTERN_FLAGS)
    except re.error as e:
        raise RuleTableError(f"{where}: invalid pattern {source!r}: {e}") from e


def require(entry: Dict[str, Any], key: str, where: str) -> Any:
    if key not in entry:
        raise RuleTableError(f"{where}: missing field {key!r}")
    return entry[key]
