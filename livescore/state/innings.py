"""
Innings/Over Engine.

Owns the authoritative cursor of an innings: which over and ball comes
next, who is on strike, who is bowling and who bowled the previous over.
``resolve`` turns a candidate delivery into a legal ``BallEvent`` (or
raises), ``advance`` applies an accepted event. Replaying a log is just
``advance`` over every event from a fresh innings, so live state and
replayed state can never drift apart.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

from livescore.config import BALLS_PER_OVER, ScoringRules
from livescore.data.ball_event import (
    NO_BALL_DISMISSALS,
    BallCandidate,
    BallEvent,
    Dismissal,
    ExtraType,
)
from livescore.errors import RuleCode, RuleViolation

logger = logging.getLogger(__name__)


class CompletionReason(Enum):
    ALL_OUT = "all_out"
    OVERS_EXHAUSTED = "overs_exhausted"
    TARGET_REACHED = "target_reached"


@dataclass
class ExtrasBreakdown:
    wides: int = 0
    no_balls: int = 0
    byes: int = 0
    leg_byes: int = 0
    penalty: int = 0

    @property
    def total(self) -> int:
        return self.wides + self.no_balls + self.byes + self.leg_byes + self.penalty

    def add(self, event: BallEvent) -> None:
        if event.extra_type == ExtraType.WIDE:
            self.wides += event.extra_runs
        elif event.extra_type == ExtraType.NO_BALL:
            self.no_balls += event.extra_runs
        elif event.extra_type == ExtraType.BYE:
            self.byes += event.extra_runs
        elif event.extra_type == ExtraType.LEG_BYE:
            self.leg_byes += event.extra_runs
        self.penalty += event.penalty_runs

    def to_dict(self) -> dict:
        return {
            "wides": self.wides,
            "no_balls": self.no_balls,
            "byes": self.byes,
            "leg_byes": self.leg_byes,
            "penalty": self.penalty,
            "total": self.total,
        }


@dataclass
class OverCursor:
    """Position of the next delivery."""
    over: int = 0  # 0-indexed
    ball: int = 0  # Legal balls already bowled in this over
    striker: Optional[str] = None
    non_striker: Optional[str] = None
    bowler: Optional[str] = None  # Bowler of the over in progress
    previous_bowler: Optional[str] = None  # Bowler of the last completed over
    free_hit: bool = False
    over_runs: int = 0  # Runs charged to the bowler this over
    over_wicket: bool = False

    @property
    def next_ball(self) -> int:
        return self.ball + 1

    @property
    def over_in_progress(self) -> bool:
        return self.bowler is not None

    def swap_strike(self) -> None:
        self.striker, self.non_striker = self.non_striker, self.striker

    def to_dict(self) -> dict:
        return {
            "over": self.over,
            "ball": self.ball,
            "next_ball": f"{self.over}.{self.next_ball}",
            "striker": self.striker,
            "non_striker": self.non_striker,
            "bowler": self.bowler,
            "previous_bowler": self.previous_bowler,
            "free_hit": self.free_hit,
        }


@dataclass
class FallOfWicket:
    wicket: int
    score: int
    overs: str
    player_out: str

    def to_dict(self) -> dict:
        return {
            "wicket": self.wicket,
            "score": self.score,
            "overs": self.overs,
            "player_out": self.player_out,
        }


@dataclass
class InningsState:
    """Projection of one innings, rebuilt from its events on demand."""

    innings_id: str
    match_id: str
    number: int  # 1 or 2
    batting_team: str
    bowling_team: str
    overs_limit: int
    target: Optional[int] = None  # Only for 2nd innings

    runs: int = 0
    wickets: int = 0
    legal_balls: int = 0
    extras: ExtrasBreakdown = field(default_factory=ExtrasBreakdown)
    is_complete: bool = False
    completion_reason: Optional[CompletionReason] = None

    cursor: OverCursor = field(default_factory=OverCursor)
    batters_used: list[str] = field(default_factory=list)  # In order of appearance
    dismissed: list[str] = field(default_factory=list)
    bowler_overs: dict[str, int] = field(default_factory=dict)  # Completed overs
    fall_of_wickets: list[FallOfWicket] = field(default_factory=list)
    last_sequence: int = 0

    @property
    def overs_str(self) -> str:
        """Overs bowled in cricket notation, e.g. '12.3'."""
        return f"{self.legal_balls // BALLS_PER_OVER}.{self.legal_balls % BALLS_PER_OVER}"

    @property
    def overs(self) -> float:
        return self.legal_balls / BALLS_PER_OVER

    @property
    def balls_remaining(self) -> int:
        return max(0, self.overs_limit * BALLS_PER_OVER - self.legal_balls)

    @property
    def run_rate(self) -> float:
        return self.runs / self.overs if self.legal_balls > 0 else 0.0

    @property
    def runs_needed(self) -> Optional[int]:
        if self.target is None:
            return None
        return max(0, self.target - self.runs)

    @property
    def required_run_rate(self) -> Optional[float]:
        if self.target is None:
            return None
        if self.balls_remaining == 0:
            return None
        return (self.runs_needed or 0) / (self.balls_remaining / BALLS_PER_OVER)

    def to_dict(self) -> dict:
        rrr = self.required_run_rate
        return {
            "innings_id": self.innings_id,
            "number": self.number,
            "batting_team": self.batting_team,
            "bowling_team": self.bowling_team,
            "overs_limit": self.overs_limit,
            "runs": self.runs,
            "wickets": self.wickets,
            "legal_balls": self.legal_balls,
            "overs": self.overs_str,
            "run_rate": round(self.run_rate, 2),
            "target": self.target,
            "runs_needed": self.runs_needed,
            "required_run_rate": round(rrr, 2) if rrr is not None else None,
            "extras": self.extras.to_dict(),
            "is_complete": self.is_complete,
            "completion_reason": self.completion_reason.value if self.completion_reason else None,
            "cursor": self.cursor.to_dict(),
            "fall_of_wickets": [f.to_dict() for f in self.fall_of_wickets],
            "last_sequence": self.last_sequence,
        }


@dataclass
class BallOutcome:
    """What an accepted delivery did to the innings."""
    over_completed: bool = False
    completed_over: Optional[int] = None
    maiden: bool = False
    strike_changed: bool = False
    innings_completed: bool = False
    completion_reason: Optional[CompletionReason] = None


class InningsEngine:
    """Applies the Laws to the innings cursor.

    The engine holds no innings of its own: every method takes the
    ``InningsState`` it works on, so one engine serves all matches.
    """

    def __init__(self, rules: Optional[ScoringRules] = None):
        self.rules = rules or ScoringRules()

    def new_innings(
        self,
        match_id: str,
        number: int,
        batting_team: str,
        bowling_team: str,
        overs_limit: int,
        target: Optional[int] = None,
    ) -> InningsState:
        return InningsState(
            innings_id=f"{match_id}-{number}",
            match_id=match_id,
            number=number,
            batting_team=batting_team,
            bowling_team=bowling_team,
            overs_limit=overs_limit,
            target=target,
        )

    # ── Legality ─────────────────────────────────────────────────────

    def resolve(
        self,
        state: InningsState,
        candidate: BallCandidate,
        sequence: int,
        extra_runs: int,
        timestamp: Optional[datetime] = None,
    ) -> BallEvent:
        """Check a candidate against the cursor and build the event.

        ``extra_runs`` is the normalized extra value computed by the
        processor's structural step. Raises ``RuleViolation``.
        """
        c = state.cursor
        self._check_bounds(state, candidate)
        striker, non_striker = self._resolve_batters(state, candidate)
        bowler = self._resolve_bowler(state, candidate)

        dismissal = None
        if candidate.is_wicket:
            if c.free_hit and not candidate.dead_ball and candidate.dismissal_type not in NO_BALL_DISMISSALS:
                raise RuleViolation(
                    RuleCode.FREE_HIT_DISMISSAL,
                    f"{candidate.dismissal_type.value} is not possible on a free hit",
                )
            dismissal = Dismissal(
                kind=candidate.dismissal_type,
                player_out=candidate.player_out or striker,
                fielder=candidate.fielder,
            )

        kwargs = {}
        if timestamp is not None:
            kwargs["timestamp"] = timestamp
        return BallEvent(
            innings_id=state.innings_id,
            sequence=sequence,
            over=c.over,
            ball=c.next_ball,
            striker=striker,
            non_striker=non_striker,
            bowler=bowler,
            runs_off_bat=candidate.runs_off_bat,
            extra_type=candidate.extra_type,
            extra_runs=extra_runs,
            dismissal=dismissal,
            penalty_runs=candidate.penalty_runs,
            short_run=candidate.short_run,
            dead_ball=candidate.dead_ball,
            strike_crossed=candidate.strike_crossed,
            free_hit=c.free_hit and not candidate.dead_ball,
            **kwargs,
        )

    def _check_bounds(self, state: InningsState, candidate: BallCandidate) -> None:
        if candidate.is_wicket and state.wickets >= self.rules.max_wickets:
            raise RuleViolation(
                RuleCode.WICKET_LIMIT, f"{state.batting_team} already have {state.wickets} wickets down"
            )
        if state.legal_balls >= state.overs_limit * BALLS_PER_OVER:
            raise RuleViolation(
                RuleCode.OVERS_EXHAUSTED, f"all {state.overs_limit} overs have been bowled"
            )

    def _resolve_batters(self, state: InningsState, candidate: BallCandidate) -> tuple[str, str]:
        c = state.cursor
        striker = candidate.striker or c.striker
        non_striker = candidate.non_striker or c.non_striker
        # Naming only the batter at the other end means the pair swapped ends
        if candidate.striker and not candidate.non_striker and candidate.striker == c.non_striker:
            non_striker = c.striker
        if candidate.non_striker and not candidate.striker and candidate.non_striker == c.striker:
            striker = c.non_striker

        if not striker or not non_striker:
            raise RuleViolation(
                RuleCode.BATTER_REQUIRED,
                "name the incoming batter before the next delivery",
            )
        if striker == non_striker:
            raise RuleViolation(RuleCode.BATTER_UNAVAILABLE, f"{striker} cannot bat at both ends")

        at_crease = {p for p in (c.striker, c.non_striker) if p}
        incoming = [p for p in (striker, non_striker) if p not in at_crease]
        for player in incoming:
            if player in state.batters_used:
                raise RuleViolation(RuleCode.BATTER_UNAVAILABLE, f"{player} has already batted")
        if len(incoming) > 2 - len(at_crease):
            raise RuleViolation(
                RuleCode.BATTER_UNAVAILABLE,
                f"{', '.join(incoming)} not at the crease "
                f"(batting: {', '.join(sorted(at_crease)) or 'nobody'})",
            )
        if (c.striker, c.non_striker) == (non_striker, striker):
            logger.info("%s: strike corrected by operator, %s facing", state.innings_id, striker)
        return striker, non_striker

    def _resolve_bowler(self, state: InningsState, candidate: BallCandidate) -> str:
        c = state.cursor
        if c.over_in_progress:
            bowler = candidate.bowler or c.bowler
            if bowler != c.bowler:
                raise RuleViolation(
                    RuleCode.BOWLER_MID_OVER,
                    f"over {c.over + 1} is being bowled by {c.bowler}",
                )
            return bowler

        # A dead ball between overs starts nobody's over
        if candidate.dead_ball and (candidate.bowler or c.previous_bowler):
            return candidate.bowler or c.previous_bowler

        bowler = candidate.bowler
        if not bowler:
            raise RuleViolation(RuleCode.BOWLER_REQUIRED, f"name the bowler for over {c.over + 1}")
        if bowler == c.previous_bowler:
            raise RuleViolation(
                RuleCode.CONSECUTIVE_OVER,
                f"{bowler} bowled over {c.over} and cannot bowl consecutive overs",
            )
        quota = self.rules.bowler_quota(state.overs_limit)
        if quota is not None and state.bowler_overs.get(bowler, 0) >= quota:
            raise RuleViolation(
                RuleCode.BOWLER_QUOTA, f"{bowler} has bowled the maximum {quota} overs"
            )
        return bowler

    # ── State transitions ────────────────────────────────────────────

    def runs_run(self, event: BallEvent) -> int:
        """Runs the batters physically completed on this delivery."""
        if event.extra_type == ExtraType.WIDE:
            return max(0, event.extra_runs - self.rules.wide_runs)
        if event.extra_type == ExtraType.NO_BALL:
            return event.runs_off_bat + max(0, event.extra_runs - self.rules.no_ball_runs)
        if event.extra_type in (ExtraType.BYE, ExtraType.LEG_BYE):
            return event.extra_runs
        return event.runs_off_bat

    def advance(self, state: InningsState, event: BallEvent) -> BallOutcome:
        """Apply an accepted event to the innings."""
        c = state.cursor
        outcome = BallOutcome()
        state.last_sequence = event.sequence

        if event.dead_ball:
            # Only attached penalty runs count; the ball count does not move
            state.runs += event.penalty_runs
            state.extras.add(event)
            if event.dismissal is not None:
                c.striker, c.non_striker = event.striker, event.non_striker
                self._record_batters(state, event)
                self._record_dismissal(state, event)
            self._check_completion(state, outcome)
            return outcome

        c.striker, c.non_striker = event.striker, event.non_striker
        self._record_batters(state, event)
        c.bowler = event.bowler

        state.runs += event.total_runs
        state.extras.add(event)
        c.over_runs += event.bowler_runs

        if event.extra_type == ExtraType.NO_BALL and self.rules.free_hit_on_no_ball:
            boundary = event.runs_off_bat in (4, 6)
            c.free_hit = self.rules.free_hit_on_no_ball_boundary or not boundary
        elif event.extra_type != ExtraType.WIDE:
            # A wide bowled on a free hit carries the free hit over
            c.free_hit = False

        crossed = event.strike_crossed
        if crossed is None:
            crossed = self.runs_run(event) % 2 == 1
        if crossed:
            c.swap_strike()
            outcome.strike_changed = True

        if event.dismissal is not None:
            c.over_wicket = True
            self._record_dismissal(state, event)

        if event.is_legal_delivery:
            state.legal_balls += 1
            c.ball += 1
            if c.ball == BALLS_PER_OVER:
                self._close_over(state, outcome)

        self._check_completion(state, outcome)
        return outcome

    @staticmethod
    def _record_batters(state: InningsState, event: BallEvent) -> None:
        for player in (event.striker, event.non_striker):
            if player not in state.batters_used:
                state.batters_used.append(player)

    @staticmethod
    def _record_dismissal(state: InningsState, event: BallEvent) -> None:
        c = state.cursor
        out = event.dismissal.player_out
        state.wickets += 1
        state.dismissed.append(out)
        state.fall_of_wickets.append(
            FallOfWicket(
                wicket=state.wickets,
                score=state.runs,
                overs=_overs_after(state, event),
                player_out=out,
            )
        )
        if c.striker == out:
            c.striker = None
        elif c.non_striker == out:
            c.non_striker = None

    def _close_over(self, state: InningsState, outcome: BallOutcome) -> None:
        c = state.cursor
        outcome.over_completed = True
        outcome.completed_over = c.over
        outcome.maiden = c.over_runs == 0 and (self.rules.wicket_maidens or not c.over_wicket)
        state.bowler_overs[c.bowler] = state.bowler_overs.get(c.bowler, 0) + 1
        logger.debug(
            "%s: over %d closed by %s (%d runs%s)",
            state.innings_id, c.over + 1, c.bowler, c.over_runs,
            ", maiden" if outcome.maiden else "",
        )
        c.swap_strike()
        c.previous_bowler = c.bowler
        c.bowler = None
        c.over += 1
        c.ball = 0
        c.over_runs = 0
        c.over_wicket = False

    def _check_completion(self, state: InningsState, outcome: BallOutcome) -> None:
        reason = None
        if state.target is not None and state.runs >= state.target:
            reason = CompletionReason.TARGET_REACHED
        elif state.wickets >= self.rules.max_wickets:
            reason = CompletionReason.ALL_OUT
        elif state.legal_balls >= state.overs_limit * BALLS_PER_OVER:
            reason = CompletionReason.OVERS_EXHAUSTED
        if reason is None:
            return
        state.is_complete = True
        state.completion_reason = reason
        outcome.innings_completed = True
        outcome.completion_reason = reason
        logger.info(
            "%s complete (%s): %d/%d in %s overs",
            state.innings_id, reason.value, state.runs, state.wickets, state.overs_str,
        )

    def replay(self, state: InningsState, events: list[BallEvent]) -> InningsState:
        """Advance a fresh innings through every logged event."""
        for event in events:
            self.advance(state, event)
        return state


def _overs_after(state: InningsState, event: BallEvent) -> str:
    balls = state.legal_balls + (1 if event.is_legal_delivery else 0)
    return f"{balls // BALLS_PER_OVER}.{balls % BALLS_PER_OVER}"
