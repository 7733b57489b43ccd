"""
Stats Aggregator.

Maintains per-player batting, bowling and fielding figures for each
innings as an incremental projection of the event log. Rates (strike
rate, economy) are computed on read and never stored.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

from livescore.config import BALLS_PER_OVER, ScoringRules
from livescore.data.ball_event import BallEvent, DismissalType, ExtraType
from livescore.data.event_log import EventLog
from livescore.state.innings import InningsState

logger = logging.getLogger(__name__)


@dataclass
class BattingStats:
    player: str
    runs: int = 0
    balls: int = 0
    fours: int = 0
    sixes: int = 0
    dots: int = 0
    is_out: bool = False
    dismissal_type: Optional[DismissalType] = None
    dismissed_by: Optional[str] = None  # Bowler credited
    fielder: Optional[str] = None

    @property
    def strike_rate(self) -> float:
        return (self.runs / self.balls * 100) if self.balls > 0 else 0.0

    @property
    def dismissal_text(self) -> str:
        if not self.is_out:
            return "not out"
        kind = self.dismissal_type
        if kind == DismissalType.CAUGHT:
            if self.fielder and self.fielder == self.dismissed_by:
                return f"c & b {self.dismissed_by}"
            return f"c {self.fielder or '?'} b {self.dismissed_by}"
        if kind == DismissalType.STUMPED:
            return f"st {self.fielder or '?'} b {self.dismissed_by}"
        if kind == DismissalType.RUN_OUT:
            return f"run out ({self.fielder})" if self.fielder else "run out"
        if kind == DismissalType.LBW:
            return f"lbw b {self.dismissed_by}"
        if kind == DismissalType.HIT_WICKET:
            return f"hit wicket b {self.dismissed_by}"
        if kind == DismissalType.RETIRED:
            return "retired"
        return f"b {self.dismissed_by}"

    def to_dict(self) -> dict:
        return {
            "player": self.player,
            "runs": self.runs,
            "balls": self.balls,
            "fours": self.fours,
            "sixes": self.sixes,
            "dots": self.dots,
            "strike_rate": round(self.strike_rate, 2),
            "is_out": self.is_out,
            "dismissal": self.dismissal_text,
        }


@dataclass
class BowlingStats:
    player: str
    legal_balls: int = 0
    runs_conceded: int = 0
    wickets: int = 0
    maidens: int = 0
    wides: int = 0
    no_balls: int = 0
    dots: int = 0

    @property
    def overs_str(self) -> str:
        return f"{self.legal_balls // BALLS_PER_OVER}.{self.legal_balls % BALLS_PER_OVER}"

    @property
    def economy(self) -> float:
        overs = self.legal_balls / BALLS_PER_OVER
        return self.runs_conceded / overs if overs > 0 else 0.0

    def to_dict(self) -> dict:
        return {
            "player": self.player,
            "overs": self.overs_str,
            "maidens": self.maidens,
            "runs_conceded": self.runs_conceded,
            "wickets": self.wickets,
            "economy": round(self.economy, 2),
            "wides": self.wides,
            "no_balls": self.no_balls,
            "dots": self.dots,
        }


@dataclass
class FieldingStats:
    player: str
    catches: int = 0
    run_outs: int = 0
    stumpings: int = 0

    def to_dict(self) -> dict:
        return {
            "player": self.player,
            "catches": self.catches,
            "run_outs": self.run_outs,
            "stumpings": self.stumpings,
        }


@dataclass
class InningsStats:
    """All player figures for one innings."""

    innings_id: str
    batting: dict[str, BattingStats] = field(default_factory=dict)
    bowling: dict[str, BowlingStats] = field(default_factory=dict)
    fielding: dict[str, FieldingStats] = field(default_factory=dict)
    last_sequence: int = 0

    # Accumulators for the over in progress (maiden detection)
    over: int = -1
    over_runs: int = 0
    over_wicket: bool = False

    def batter(self, player: str) -> BattingStats:
        if player not in self.batting:
            self.batting[player] = BattingStats(player=player)
        return self.batting[player]

    def bowler(self, player: str) -> BowlingStats:
        if player not in self.bowling:
            self.bowling[player] = BowlingStats(player=player)
        return self.bowling[player]

    def fielder(self, player: str) -> FieldingStats:
        if player not in self.fielding:
            self.fielding[player] = FieldingStats(player=player)
        return self.fielding[player]

    def to_dict(self) -> dict:
        return {
            "innings_id": self.innings_id,
            "batting": [b.to_dict() for b in self.batting.values()],
            "bowling": [b.to_dict() for b in self.bowling.values()],
            "fielding": [f.to_dict() for f in self.fielding.values()],
            "last_sequence": self.last_sequence,
        }


class StatsAggregator:
    """Incremental per-player projection over the event log."""

    def __init__(self, log: EventLog, rules: Optional[ScoringRules] = None):
        self._log = log
        self._rules = rules or ScoringRules()
        self._innings: dict[str, InningsStats] = {}

    def stats(self, innings_id: str) -> InningsStats:
        if innings_id not in self._innings:
            self._innings[innings_id] = InningsStats(innings_id=innings_id)
        return self._innings[innings_id]

    def on_event_applied(self, event: BallEvent) -> list[str]:
        """Fold a single accepted event in; returns the players it touched.

        Must be called exactly once per sequence number, in order.
        """
        stats = self.stats(event.innings_id)
        if event.sequence <= stats.last_sequence:
            raise ValueError(
                f"{event.innings_id}: sequence {event.sequence} already aggregated "
                f"(last {stats.last_sequence})"
            )
        stats.last_sequence = event.sequence
        if event.dead_ball:
            if event.dismissal is None:
                return []
            touched = [event.dismissal.player_out]
            self._record_dismissal(stats, event, touched)
            return touched

        touched = [event.striker, event.non_striker, event.bowler]
        striker = stats.batter(event.striker)
        stats.batter(event.non_striker)
        bowler = stats.bowler(event.bowler)

        if event.faced_by_striker:
            striker.balls += 1
            if event.runs_off_bat == 0:
                striker.dots += 1
        striker.runs += event.runs_off_bat
        if event.is_boundary_four:
            striker.fours += 1
        elif event.is_boundary_six:
            striker.sixes += 1

        if event.is_legal_delivery:
            bowler.legal_balls += 1
            if event.bowler_runs == 0:
                bowler.dots += 1
        bowler.runs_conceded += event.bowler_runs
        if event.extra_type == ExtraType.WIDE:
            bowler.wides += 1
        elif event.extra_type == ExtraType.NO_BALL:
            bowler.no_balls += 1

        if event.over != stats.over:
            stats.over, stats.over_runs, stats.over_wicket = event.over, 0, False
        stats.over_runs += event.bowler_runs

        if event.dismissal is not None:
            stats.over_wicket = True
            self._record_dismissal(stats, event, touched)

        if event.is_legal_delivery and event.ball == BALLS_PER_OVER:
            if stats.over_runs == 0 and (self._rules.wicket_maidens or not stats.over_wicket):
                bowler.maidens += 1

        return touched

    @staticmethod
    def _record_dismissal(stats: InningsStats, event: BallEvent, touched: list[str]) -> None:
        d = event.dismissal
        out = stats.batter(d.player_out)
        out.is_out = True
        out.dismissal_type = d.kind
        out.fielder = d.fielder
        if d.kind.credits_bowler:
            out.dismissed_by = event.bowler
            stats.bowler(event.bowler).wickets += 1
        if d.fielder:
            touched.append(d.fielder)
            fielder = stats.fielder(d.fielder)
            if d.kind == DismissalType.CAUGHT:
                fielder.catches += 1
            elif d.kind == DismissalType.RUN_OUT:
                fielder.run_outs += 1
            elif d.kind == DismissalType.STUMPED:
                fielder.stumpings += 1

    def recompute(self, innings_id: str) -> InningsStats:
        """Rebuild an innings' figures from the event log."""
        self._innings[innings_id] = InningsStats(innings_id=innings_id)
        events = self._log.events(innings_id)
        for event in events:
            self.on_event_applied(event)
        logger.debug("Recomputed stats for %s from %d events", innings_id, len(events))
        return self._innings[innings_id]

    def reconcile(self, innings: InningsState) -> list[str]:
        """Cross-check player figures against the innings totals."""
        stats = self.stats(innings.innings_id)
        problems: list[str] = []
        extras = innings.extras

        batting_runs = sum(b.runs for b in stats.batting.values())
        if batting_runs + extras.total != innings.runs:
            problems.append(
                f"batting runs {batting_runs} + extras {extras.total} != total {innings.runs}"
            )
        conceded = sum(b.runs_conceded for b in stats.bowling.values())
        if conceded + extras.byes + extras.leg_byes + extras.penalty != innings.runs:
            problems.append(f"bowling runs {conceded} do not reconcile with total {innings.runs}")
        legal = sum(b.legal_balls for b in stats.bowling.values())
        if legal != innings.legal_balls:
            problems.append(f"bowling balls {legal} != innings legal balls {innings.legal_balls}")
        outs = sum(1 for b in stats.batting.values() if b.is_out)
        if outs != innings.wickets:
            problems.append(f"{outs} batters out but {innings.wickets} wickets recorded")
        return problems
