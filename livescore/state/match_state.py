"""
Match State Machine.

Top-level lifecycle of a match:

    SETUP -> TOSS_PENDING -> IN_PROGRESS(1) -> INNINGS_BREAK
          -> IN_PROGRESS(2) -> COMPLETED

with ``abandon`` reachable from every non-terminal state. Each entry into
IN_PROGRESS creates the innings through the Innings/Over Engine. A
transition whose guard fails raises ``InvalidTransition``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from livescore.config import FORMAT_OVERS, MatchFormat, TossDecision
from livescore.data.ball_event import MatchInfo
from livescore.errors import InvalidTransition
from livescore.state.innings import CompletionReason, InningsEngine, InningsState

logger = logging.getLogger(__name__)


class MatchStatus(Enum):
    SETUP = "setup"
    TOSS_PENDING = "toss_pending"
    IN_PROGRESS = "in_progress"
    INNINGS_BREAK = "innings_break"
    COMPLETED = "completed"
    ABANDONED = "abandoned"

    @property
    def is_terminal(self) -> bool:
        return self in (MatchStatus.COMPLETED, MatchStatus.ABANDONED)


@dataclass
class MatchResult:
    winner: Optional[str] = None
    margin: str = ""
    is_tie: bool = False

    @property
    def summary(self) -> str:
        if self.is_tie:
            return "Match tied"
        return f"{self.winner} won by {self.margin}"

    def to_dict(self) -> dict:
        return {
            "winner": self.winner,
            "margin": self.margin,
            "is_tie": self.is_tie,
            "summary": self.summary,
        }


@dataclass
class MatchState:
    """Complete lifecycle state of a match."""

    info: MatchInfo
    status: MatchStatus = MatchStatus.SETUP
    innings: dict[int, InningsState] = field(default_factory=dict)
    current_innings: int = 0
    result: Optional[MatchResult] = None

    @property
    def current_innings_state(self) -> Optional[InningsState]:
        return self.innings.get(self.current_innings)

    def to_dict(self) -> dict:
        info = self.info
        return {
            "match_id": info.match_id,
            "title": info.title,
            "venue": info.venue,
            "team_a": info.team_a,
            "team_b": info.team_b,
            "format": info.format.value,
            "overs_limit": info.overs_limit,
            "toss_winner": info.toss_winner or None,
            "toss_decision": info.toss_decision.value if info.toss_decision else None,
            "status": self.status.value,
            "current_innings": self.current_innings,
            "result": self.result.to_dict() if self.result else None,
            "abandon_reason": info.abandon_reason or None,
        }


class MatchStateMachine:
    """Drives lifecycle transitions for a single match."""

    def __init__(self, info: MatchInfo, engine: InningsEngine):
        self._engine = engine
        self._state = MatchState(info=info)

    @property
    def state(self) -> MatchState:
        return self._state

    @property
    def status(self) -> MatchStatus:
        return self._state.status

    def _require(self, transition: str, *allowed: MatchStatus, detail: str = "") -> None:
        if self._state.status not in allowed:
            raise InvalidTransition(self._state.status.value, transition, detail)

    def set_teams(
        self,
        team_a: str,
        team_b: str,
        match_format: MatchFormat = MatchFormat.T20,
        overs_limit: Optional[int] = None,
    ) -> MatchState:
        self._require("set_teams", MatchStatus.SETUP)
        overs = overs_limit or FORMAT_OVERS.get(match_format)
        if not team_a or not team_b or team_a == team_b:
            raise InvalidTransition(self.status.value, "set_teams", "two different teams are required")
        if not overs or overs <= 0:
            raise InvalidTransition(self.status.value, "set_teams", "an overs limit is required")

        info = self._state.info
        info.team_a, info.team_b = team_a, team_b
        info.format = match_format
        info.overs_limit = overs
        self._state.status = MatchStatus.TOSS_PENDING
        logger.info("%s: %s v %s, %d overs", info.match_id, team_a, team_b, overs)
        return self._state

    def record_toss(self, winner: str, decision: TossDecision) -> InningsState:
        info = self._state.info
        self._require("record_toss", MatchStatus.TOSS_PENDING)
        if not info.teams_set:
            raise InvalidTransition(self.status.value, "record_toss", "teams and format must be set")
        if winner not in (info.team_a, info.team_b):
            raise InvalidTransition(self.status.value, "record_toss", f"{winner} is not playing")

        info.toss_winner = winner
        info.toss_decision = decision
        batting = info.first_batting_team
        bowling = info.team_b if batting == info.team_a else info.team_a
        logger.info("%s: %s won the toss and chose to %s", info.match_id, winner, decision.value)
        return self._start_innings(1, batting, bowling)

    def on_innings_complete(self, innings: InningsState) -> MatchStatus:
        """Consume the engine's completion signal."""
        if innings.number != self._state.current_innings or not innings.is_complete:
            return self._state.status
        self._require("complete_innings", MatchStatus.IN_PROGRESS)
        if innings.number == 1:
            self._state.status = MatchStatus.INNINGS_BREAK
        else:
            self._state.status = MatchStatus.COMPLETED
            self._state.result = self._decide_result(self._state.innings[1], innings)
            logger.info("%s: %s", self._state.info.match_id, self._state.result.summary)
        return self._state.status

    def start_second_innings(self) -> InningsState:
        self._require("start_second_innings", MatchStatus.INNINGS_BREAK)
        first = self._state.innings.get(1)
        if first is None or not first.is_complete:
            raise InvalidTransition(self.status.value, "start_second_innings", "innings 1 is not complete")
        self._state.info.second_innings_started = True
        # Teams swap: the side that bowled first now bats
        return self._start_innings(2, first.bowling_team, first.batting_team, target=first.runs + 1)

    def abandon(self, reason: str = "") -> MatchState:
        if self._state.status.is_terminal:
            raise InvalidTransition(self.status.value, "abandon")
        self._state.status = MatchStatus.ABANDONED
        self._state.info.abandoned = True
        self._state.info.abandon_reason = reason
        logger.info("%s abandoned%s", self._state.info.match_id, f": {reason}" if reason else "")
        return self._state

    def reopen_innings(self, innings: InningsState) -> MatchStatus:
        """Walk back a completion that an undone delivery had caused."""
        if innings.is_complete or innings.number != self._state.current_innings:
            return self._state.status
        if self._state.status in (MatchStatus.INNINGS_BREAK, MatchStatus.COMPLETED):
            self._state.status = MatchStatus.IN_PROGRESS
            self._state.result = None
            logger.info("%s: innings %d reopened by undo", self._state.info.match_id, innings.number)
        return self._state.status

    def _start_innings(
        self, number: int, batting: str, bowling: str, target: Optional[int] = None
    ) -> InningsState:
        innings = self._engine.new_innings(
            match_id=self._state.info.match_id,
            number=number,
            batting_team=batting,
            bowling_team=bowling,
            overs_limit=self._state.info.overs_limit,
            target=target,
        )
        self._state.innings[number] = innings
        self._state.current_innings = number
        self._state.status = MatchStatus.IN_PROGRESS
        logger.info("%s: innings %d started, %s batting", self._state.info.match_id, number, batting)
        return innings

    def _decide_result(self, first: InningsState, second: InningsState) -> MatchResult:
        if second.completion_reason == CompletionReason.TARGET_REACHED:
            left = self._engine.rules.max_wickets - second.wickets
            return MatchResult(
                winner=second.batting_team,
                margin=f"{left} wicket{'s' if left != 1 else ''}",
            )
        if second.runs == first.runs:
            return MatchResult(is_tie=True)
        diff = first.runs - second.runs
        return MatchResult(
            winner=first.batting_team,
            margin=f"{diff} run{'s' if diff != 1 else ''}",
        )
