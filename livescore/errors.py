"""
Scoring error taxonomy.

Every rejection raised by the scoring core carries a ``reason`` naming its
class in the taxonomy, surfaced verbatim to the operator, and a
human-readable ``detail``. None of these are fatal: validation always runs
before the event log is touched.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional


class RuleCode(Enum):
    CONSECUTIVE_OVER = "ConsecutiveOverViolation"
    WICKET_LIMIT = "WicketLimitExceeded"
    OVERS_EXHAUSTED = "OversExhausted"
    BATTER_REQUIRED = "BatterRequired"
    BATTER_UNAVAILABLE = "BatterUnavailable"
    BOWLER_REQUIRED = "BowlerRequired"
    BOWLER_MID_OVER = "BowlerChangeMidOver"
    BOWLER_QUOTA = "BowlerQuotaExceeded"
    FREE_HIT_DISMISSAL = "FreeHitDismissal"
    UNKNOWN_PLAYER = "UnknownPlayer"


class ScoringError(Exception):
    """Base class for every rejection produced by the scoring core."""

    reason = "ScoringError"

    def __init__(self, detail: str = ""):
        super().__init__(detail or self.reason)
        self.detail = detail

    def to_dict(self) -> dict:
        return {"reason": self.reason, "detail": self.detail}


class InvalidTransition(ScoringError):
    """A lifecycle guard failed."""

    reason = "InvalidTransition"

    def __init__(self, state: str, transition: str, detail: str = ""):
        self.state = state
        self.transition = transition
        msg = f"cannot {transition} while match is {state}"
        if detail:
            msg = f"{msg}: {detail}"
        super().__init__(msg)


class StructuralViolation(ScoringError):
    """The event itself is malformed (e.g. a wide with runs off the bat)."""

    reason = "StructuralViolation"


class RuleViolation(ScoringError):
    """The event is well-formed but illegal in the current innings state."""

    reason = "RuleViolation"

    def __init__(self, code: RuleCode, detail: str = ""):
        self.code = code
        super().__init__(f"{code.value}: {detail}" if detail else code.value)
        self.detail = detail

    def to_dict(self) -> dict:
        return {"reason": self.reason, "code": self.code.value, "detail": self.detail}


class Busy(ScoringError):
    """Another command for the same match is in flight."""

    reason = "Busy"


class EmptyLog(ScoringError):
    """Undo requested with nothing left in the innings log."""

    reason = "EmptyLog"


class Unrecognized(ScoringError):
    """The interpreter could not map a phrase to any command."""

    reason = "Unrecognized"


class Ambiguous(ScoringError):
    """The interpreter produced several candidates needing confirmation."""

    reason = "Ambiguous"

    def __init__(
        self,
        detail: str = "",
        pending_id: Optional[str] = None,
        candidates: Optional[list[dict]] = None,
    ):
        self.pending_id = pending_id
        self.candidates = candidates or []
        super().__init__(detail)

    def to_dict(self) -> dict:
        return {
            "reason": self.reason,
            "detail": self.detail,
            "pending_id": self.pending_id,
            "candidates": self.candidates,
        }


class NotFound(ScoringError):
    """Unknown match, innings or pending command id."""

    reason = "NotFound"
