"""
Gate Errors

Typed failures for the admission-control cascade.

Two families:
- Hard failures (raised, never swallowed): malformed signals, missing or
  invalid calibration, malformed rule tables.
- Soft failures (cache backend errors, non-finite scores) are NOT exceptions
  here. They are logged by the orchestrator and resolved toward calling the
  oracle.
"""


class GateError(Exception):
    """Base class for all oracle_gate errors."""


class InvalidSignalError(GateError, ValueError):
    """
    The fast-classifier Signal does not satisfy its output contract.

    Raised instead of guessing a default score: a silently wrong default
    could suppress a real high-stakes positive.
    """


class CalibrationMissingError(GateError):
    """No threshold available at orchestrator construction."""


class CalibrationError(GateError, ValueError):
    """Calibration input or record is invalid (bad recall target, tau out of range, bad file)."""


class RuleTableError(GateError, ValueError):
    """A hard-skip or lexicon data table is malformed."""
