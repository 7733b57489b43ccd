"""
Scoring Event Processor.

Validates a candidate delivery against one match's state and, on success,
commits it as a single logical step: append to the event log, advance the
innings cursor, fold into player stats, and let the match state machine
react to innings completion. Every commit yields a ``ScoreDelta`` for the
broadcaster.

Undo is log truncation followed by a full replay of what remains, never a
reverse patch, so the live projection always equals a replay of the log.
"""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass, field
from typing import Optional

from livescore.data.ball_event import (
    BallCandidate,
    BallEvent,
    Dismissal,
    ExtraType,
    MatchInfo,
    validate_shape,
)
from livescore.data.event_log import EventLog
from livescore.data.players import PlayerDirectory
from livescore.errors import (
    EmptyLog,
    InvalidTransition,
    NotFound,
    RuleCode,
    RuleViolation,
    StructuralViolation,
)
from livescore.scoring.commentary import describe_delivery
from livescore.state.innings import BallOutcome, InningsEngine, InningsState
from livescore.state.match_state import MatchState, MatchStateMachine, MatchStatus
from livescore.stats.aggregator import StatsAggregator

logger = logging.getLogger(__name__)


@dataclass
class ScoreDelta:
    """Exactly what one committed command changed."""

    match_id: str
    innings_id: str
    kind: str  # "ball" or "undo"
    ball_sequence: int  # Innings log position after the change
    innings: dict
    match_status: str
    event: Optional[dict] = None
    over_completed: bool = False
    completed_over: Optional[int] = None
    maiden: bool = False
    innings_completed: bool = False
    completion_reason: Optional[str] = None
    players: dict = field(default_factory=dict)
    commentary: str = ""
    result: Optional[dict] = None

    def to_dict(self) -> dict:
        return dataclasses.asdict(self)


@dataclass
class AppliedBall:
    event: BallEvent
    outcome: BallOutcome
    delta: ScoreDelta


@dataclass
class UndoResult:
    removed_event: BallEvent
    innings: InningsState
    delta: ScoreDelta
    snapshot: dict


class ScoringProcessor:
    """Single-writer scoring pipeline for one match.

    Callers serialize access per match (see ``livescore.service``); the
    processor itself assumes it is never entered concurrently.
    """

    def __init__(
        self,
        info: MatchInfo,
        log: EventLog,
        engine: Optional[InningsEngine] = None,
        directory: Optional[PlayerDirectory] = None,
    ):
        self._log = log
        self._engine = engine or InningsEngine()
        self._directory = directory
        self.machine = MatchStateMachine(info, self._engine)
        self.aggregator = StatsAggregator(log, self._engine.rules)

    @property
    def match_id(self) -> str:
        return self.machine.state.info.match_id

    @property
    def state(self) -> MatchState:
        return self.machine.state

    @property
    def rules(self):
        return self._engine.rules

    def innings(self, innings_id: str) -> InningsState:
        for innings in self.state.innings.values():
            if innings.innings_id == innings_id:
                return innings
        raise NotFound(f"no innings {innings_id} in match {self.match_id}")

    def current_innings_id(self) -> str:
        innings = self.state.current_innings_state
        if innings is None:
            raise InvalidTransition(self.state.status.value, "score", "no innings has started")
        return innings.innings_id

    # ── Apply ────────────────────────────────────────────────────────

    def apply(self, innings_id: str, candidate: BallCandidate) -> AppliedBall:
        """Validate and commit one delivery. Raises a ``ScoringError`` on rejection."""
        innings = self._open_innings(innings_id)
        candidate, extra_runs = self._check_structure(candidate)
        self._check_players(innings, candidate)
        event = self._engine.resolve(
            innings, candidate, sequence=self._log.next_sequence(innings_id), extra_runs=extra_runs
        )

        self._log.append(event)
        outcome = self._engine.advance(innings, event)
        touched = self.aggregator.on_event_applied(event)
        if outcome.innings_completed:
            self.machine.on_innings_complete(innings)

        delta = self._delta(innings, "ball", event=event, outcome=outcome, touched=touched)
        logger.info(
            "%s #%d %s -> %d/%d (%s)",
            innings_id, event.sequence, delta.commentary,
            innings.runs, innings.wickets, innings.overs_str,
        )
        return AppliedBall(event=event, outcome=outcome, delta=delta)

    def _open_innings(self, innings_id: str) -> InningsState:
        innings = self.innings(innings_id)
        status = self.state.status
        if status != MatchStatus.IN_PROGRESS or innings.number != self.state.current_innings:
            raise InvalidTransition(status.value, "score", f"{innings_id} is not the live innings")
        if innings.is_complete:
            raise InvalidTransition(status.value, "score", f"{innings_id} is already complete")
        return innings

    def _check_structure(self, candidate: BallCandidate) -> tuple[BallCandidate, int]:
        """Normalize a candidate and reject malformed ones before any rule check."""
        is_wicket = candidate.is_wicket or candidate.dismissal_type is not None
        if is_wicket and candidate.dismissal_type is None:
            raise StructuralViolation("a wicket requires a dismissal type")
        candidate = dataclasses.replace(candidate, is_wicket=is_wicket)

        extra_runs = candidate.extra_runs
        if extra_runs is None:
            if candidate.extra_type == ExtraType.WIDE:
                extra_runs = self.rules.wide_runs
            elif candidate.extra_type == ExtraType.NO_BALL:
                extra_runs = self.rules.no_ball_runs
            elif candidate.extra_type in (ExtraType.BYE, ExtraType.LEG_BYE):
                raise StructuralViolation(f"{candidate.extra_type.value} needs the number of runs")
            else:
                extra_runs = 0
        if candidate.extra_type == ExtraType.WIDE and extra_runs < self.rules.wide_runs:
            raise StructuralViolation(f"a wide carries at least {self.rules.wide_runs} run(s)")
        if candidate.extra_type == ExtraType.NO_BALL and extra_runs < self.rules.no_ball_runs:
            raise StructuralViolation(f"a no-ball carries at least {self.rules.no_ball_runs} run(s)")

        dismissal = None
        if is_wicket:
            dismissal = Dismissal(
                kind=candidate.dismissal_type,
                player_out=candidate.player_out or "striker",
                fielder=candidate.fielder,
            )
        problems = validate_shape(
            runs_off_bat=candidate.runs_off_bat,
            extra_type=candidate.extra_type,
            extra_runs=extra_runs,
            penalty_runs=candidate.penalty_runs,
            dead_ball=candidate.dead_ball,
            dismissal=dismissal,
        )
        if problems:
            raise StructuralViolation("; ".join(problems))
        return candidate, extra_runs

    def _check_players(self, innings: InningsState, candidate: BallCandidate) -> None:
        if self._directory is None:
            return
        checks = [
            (candidate.striker, innings.batting_team),
            (candidate.non_striker, innings.batting_team),
            (candidate.bowler, innings.bowling_team),
            (candidate.fielder, innings.bowling_team),
        ]
        for player, team in checks:
            if player and self._directory.team_of(player) != team:
                raise RuleViolation(RuleCode.UNKNOWN_PLAYER, f"{player} is not in the {team} squad")

    # ── Undo ─────────────────────────────────────────────────────────

    def undo(self, innings_id: str) -> UndoResult:
        """Remove the innings' most recent event and rebuild from the log."""
        innings = self.innings(innings_id)
        status = self.state.status
        if status not in (MatchStatus.IN_PROGRESS, MatchStatus.INNINGS_BREAK):
            raise InvalidTransition(status.value, "undo")
        if innings.number != self.state.current_innings:
            raise InvalidTransition(status.value, "undo", f"{innings_id} is no longer the live innings")

        removed = self._log.pop_last(innings_id)
        if removed is None:
            raise EmptyLog(f"{innings_id} has no deliveries to undo")

        rebuilt = self._replay_innings(innings)
        self.machine.reopen_innings(rebuilt)
        delta = self._delta(rebuilt, "undo", event=removed)
        delta.commentary = f"Correction: removed {describe_delivery(removed)}"
        logger.info(
            "%s: undid #%d, now %d/%d (%s)",
            innings_id, removed.sequence, rebuilt.runs, rebuilt.wickets, rebuilt.overs_str,
        )
        return UndoResult(removed_event=removed, innings=rebuilt, delta=delta, snapshot=self.snapshot())

    def _replay_innings(self, innings: InningsState) -> InningsState:
        fresh = self._engine.new_innings(
            match_id=innings.match_id,
            number=innings.number,
            batting_team=innings.batting_team,
            bowling_team=innings.bowling_team,
            overs_limit=innings.overs_limit,
            target=innings.target,
        )
        self._engine.replay(fresh, self._log.events(innings.innings_id))
        self.state.innings[innings.number] = fresh
        self.aggregator.recompute(innings.innings_id)
        return fresh

    # ── Projections ──────────────────────────────────────────────────

    def rebuild(self, innings_id: str) -> InningsState:
        """Discard the cached projection of an innings and replay it from the log."""
        return self._replay_innings(self.innings(innings_id))

    def snapshot(self) -> dict:
        """Full state: match, every innings and every innings' player stats."""
        return {
            "match": self.state.to_dict(),
            "innings": [
                {
                    **inn.to_dict(),
                    "stats": self.aggregator.stats(inn.innings_id).to_dict(),
                }
                for _, inn in sorted(self.state.innings.items())
            ],
        }

    def _delta(
        self,
        innings: InningsState,
        kind: str,
        event: Optional[BallEvent] = None,
        outcome: Optional[BallOutcome] = None,
        touched: Optional[list[str]] = None,
    ) -> ScoreDelta:
        stats = self.aggregator.stats(innings.innings_id)
        players: dict = {"batting": [], "bowling": [], "fielding": []}
        for player in touched or []:
            if player in stats.batting:
                players["batting"].append(stats.batting[player].to_dict())
            if player in stats.bowling:
                players["bowling"].append(stats.bowling[player].to_dict())
            if player in stats.fielding:
                players["fielding"].append(stats.fielding[player].to_dict())
        outcome = outcome or BallOutcome()
        return ScoreDelta(
            match_id=self.match_id,
            innings_id=innings.innings_id,
            kind=kind,
            ball_sequence=innings.last_sequence,
            innings=innings.to_dict(),
            match_status=self.state.status.value,
            event=event.to_dict() if event else None,
            over_completed=outcome.over_completed,
            completed_over=outcome.completed_over,
            maiden=outcome.maiden,
            innings_completed=outcome.innings_completed,
            completion_reason=outcome.completion_reason.value if outcome.completion_reason else None,
            players=players,
            commentary=describe_delivery(event) if event and kind == "ball" else "",
            result=self.state.result.to_dict() if self.state.result else None,
        )

    # ── Restore ──────────────────────────────────────────────────────

    @classmethod
    def restore(
        cls,
        info: MatchInfo,
        log: EventLog,
        engine: Optional[InningsEngine] = None,
        directory: Optional[PlayerDirectory] = None,
    ) -> "ScoringProcessor":
        """Rebuild a match purely from its stored record and event log."""
        saved = dataclasses.replace(info)
        processor = cls(
            MatchInfo(
                match_id=saved.match_id,
                title=saved.title,
                venue=saved.venue,
                format=saved.format,
                created_at=saved.created_at,
            ),
            log,
            engine,
            directory,
        )
        machine = processor.machine
        if saved.teams_set:
            machine.set_teams(saved.team_a, saved.team_b, saved.format, saved.overs_limit)
        if saved.toss_winner and saved.toss_decision is not None:
            machine.record_toss(saved.toss_winner, saved.toss_decision)
            processor._restore_innings(1)
        if saved.second_innings_started and machine.status == MatchStatus.INNINGS_BREAK:
            machine.start_second_innings()
            processor._restore_innings(2)
        if saved.abandoned and not machine.status.is_terminal:
            machine.abandon(saved.abandon_reason)
        logger.info("%s restored: %s", saved.match_id, machine.status.value)
        return processor

    def _restore_innings(self, number: int) -> None:
        innings = self.state.innings[number]
        replayed = self._replay_innings(innings)
        if replayed.is_complete:
            self.machine.on_innings_complete(replayed)
