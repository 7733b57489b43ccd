"""
Ball-by-ball event data model.

Defines the canonical event that flows through the entire pipeline,
from the operator's command through the event log to the scoreboard.
A ``BallEvent`` is validated on construction so that combinations the
Laws do not allow (a wide with runs off the bat, a bowled dismissal off a
no-ball, a dead ball carrying anything but a retirement) can never exist
in the log.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from livescore.config import MatchFormat, TossDecision
from livescore.errors import StructuralViolation


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ExtraType(Enum):
    NONE = "none"
    WIDE = "wide"
    NO_BALL = "no_ball"
    BYE = "bye"
    LEG_BYE = "leg_bye"

    @classmethod
    def parse(cls, value: Any) -> "ExtraType":
        if isinstance(value, cls):
            return value
        if value is None or value == "":
            return cls.NONE
        key = str(value).strip().lower().replace("-", "_").replace(" ", "_")
        return _EXTRA_ALIASES.get(key) or cls(key)


_EXTRA_ALIASES = {
    "noball": ExtraType.NO_BALL,
    "nb": ExtraType.NO_BALL,
    "legbye": ExtraType.LEG_BYE,
    "lb": ExtraType.LEG_BYE,
    "wd": ExtraType.WIDE,
    "b": ExtraType.BYE,
}


class DismissalType(Enum):
    BOWLED = "bowled"
    CAUGHT = "caught"
    RUN_OUT = "run_out"
    STUMPED = "stumped"
    LBW = "lbw"
    HIT_WICKET = "hit_wicket"
    RETIRED = "retired"

    @classmethod
    def parse(cls, value: Any) -> "DismissalType":
        if isinstance(value, cls):
            return value
        key = str(value).strip().lower().replace("-", "_").replace(" ", "_")
        return cls(key)

    @property
    def credits_bowler(self) -> bool:
        """Whether the bowler is credited with the wicket."""
        return self not in (DismissalType.RUN_OUT, DismissalType.RETIRED)

    @property
    def takes_fielder(self) -> bool:
        return self in (DismissalType.CAUGHT, DismissalType.RUN_OUT, DismissalType.STUMPED)


# Dismissals the Laws allow off an illegal delivery
WIDE_DISMISSALS = frozenset(
    {DismissalType.RUN_OUT, DismissalType.STUMPED, DismissalType.HIT_WICKET, DismissalType.RETIRED}
)
NO_BALL_DISMISSALS = frozenset({DismissalType.RUN_OUT, DismissalType.RETIRED})


@dataclass(frozen=True)
class Dismissal:
    """How and whom a delivery dismissed."""

    kind: DismissalType
    player_out: str
    fielder: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "player_out": self.player_out,
            "fielder": self.fielder,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Dismissal":
        return cls(
            kind=DismissalType.parse(data["kind"]),
            player_out=data["player_out"],
            fielder=data.get("fielder"),
        )


@dataclass(frozen=True)
class BallEvent:
    """A single accepted delivery. Immutable once appended to the log."""

    innings_id: str
    sequence: int  # Per-innings, starts at 1
    over: int  # 0-indexed over number
    ball: int  # Legal ball within over (1-6); extras carry the next legal number
    striker: str
    non_striker: str
    bowler: str

    runs_off_bat: int = 0
    extra_type: ExtraType = ExtraType.NONE
    extra_runs: int = 0  # All runs recorded under extra_type, incl. the wide/no-ball run
    dismissal: Optional[Dismissal] = None
    penalty_runs: int = 0

    short_run: bool = False
    dead_ball: bool = False
    strike_crossed: Optional[bool] = None  # None = rotate on parity of runs run
    free_hit: bool = False  # This delivery was a free hit

    timestamp: datetime = field(default_factory=_utcnow)

    def __post_init__(self) -> None:
        problems = validate_shape(
            runs_off_bat=self.runs_off_bat,
            extra_type=self.extra_type,
            extra_runs=self.extra_runs,
            penalty_runs=self.penalty_runs,
            dead_ball=self.dead_ball,
            dismissal=self.dismissal,
        )
        if self.sequence < 1:
            problems.append("sequence must start at 1")
        if self.over < 0 or not 1 <= self.ball <= 6:
            problems.append(f"invalid over/ball position {self.over}.{self.ball}")
        if not self.striker or not self.non_striker or not self.bowler:
            problems.append("striker, non-striker and bowler are required")
        elif self.striker == self.non_striker:
            problems.append("striker and non-striker must be different players")
        if self.dismissal and self.dismissal.player_out not in (self.striker, self.non_striker):
            problems.append(f"{self.dismissal.player_out} is not at the crease")
        if problems:
            raise StructuralViolation("; ".join(problems))

    @property
    def is_wicket(self) -> bool:
        return self.dismissal is not None

    @property
    def is_legal_delivery(self) -> bool:
        """Counts towards the six balls of the over."""
        return not self.dead_ball and self.extra_type not in (ExtraType.WIDE, ExtraType.NO_BALL)

    @property
    def faced_by_striker(self) -> bool:
        """Counts as a ball faced in the striker's tally (no-balls do, wides do not)."""
        return not self.dead_ball and self.extra_type != ExtraType.WIDE

    @property
    def total_runs(self) -> int:
        return self.runs_off_bat + self.extra_runs + self.penalty_runs

    @property
    def bowler_runs(self) -> int:
        """Runs charged to the bowler: off the bat plus wides and no-balls."""
        if self.extra_type in (ExtraType.WIDE, ExtraType.NO_BALL):
            return self.runs_off_bat + self.extra_runs
        return self.runs_off_bat

    @property
    def is_boundary_four(self) -> bool:
        return self.runs_off_bat == 4

    @property
    def is_boundary_six(self) -> bool:
        return self.runs_off_bat == 6

    @property
    def is_dot_ball(self) -> bool:
        return self.is_legal_delivery and self.total_runs == 0

    @property
    def over_ball_str(self) -> str:
        """Human-readable over.ball string, e.g. '5.3'."""
        return f"{self.over}.{self.ball}"

    def to_dict(self) -> dict:
        return {
            "innings_id": self.innings_id,
            "sequence": self.sequence,
            "over": self.over,
            "ball": self.ball,
            "striker": self.striker,
            "non_striker": self.non_striker,
            "bowler": self.bowler,
            "runs_off_bat": self.runs_off_bat,
            "extra_type": self.extra_type.value,
            "extra_runs": self.extra_runs,
            "dismissal": self.dismissal.to_dict() if self.dismissal else None,
            "penalty_runs": self.penalty_runs,
            "short_run": self.short_run,
            "dead_ball": self.dead_ball,
            "strike_crossed": self.strike_crossed,
            "free_hit": self.free_hit,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "BallEvent":
        dismissal = data.get("dismissal")
        return cls(
            innings_id=data["innings_id"],
            sequence=int(data["sequence"]),
            over=int(data["over"]),
            ball=int(data["ball"]),
            striker=data["striker"],
            non_striker=data["non_striker"],
            bowler=data["bowler"],
            runs_off_bat=int(data.get("runs_off_bat", 0)),
            extra_type=ExtraType.parse(data.get("extra_type")),
            extra_runs=int(data.get("extra_runs", 0)),
            dismissal=Dismissal.from_dict(dismissal) if dismissal else None,
            penalty_runs=int(data.get("penalty_runs", 0)),
            short_run=bool(data.get("short_run", False)),
            dead_ball=bool(data.get("dead_ball", False)),
            strike_crossed=data.get("strike_crossed"),
            free_hit=bool(data.get("free_hit", False)),
            timestamp=datetime.fromisoformat(data["timestamp"]) if data.get("timestamp") else _utcnow(),
        )


def validate_shape(
    runs_off_bat: int,
    extra_type: ExtraType,
    extra_runs: int,
    penalty_runs: int,
    dead_ball: bool,
    dismissal: Optional[Dismissal],
) -> list[str]:
    """Return every structural problem with a delivery's outcome fields."""
    problems: list[str] = []
    if runs_off_bat < 0 or extra_runs < 0 or penalty_runs < 0:
        problems.append("runs cannot be negative")
    if runs_off_bat > 7:
        problems.append(f"{runs_off_bat} runs off the bat is not possible")

    if dead_ball:
        if runs_off_bat or extra_runs or extra_type != ExtraType.NONE:
            problems.append("a dead ball cannot score runs other than penalties")
        if dismissal is not None and dismissal.kind != DismissalType.RETIRED:
            problems.append("only a retirement can be recorded off a dead ball")
        if dismissal is not None and not dismissal.player_out:
            problems.append("dismissal must name the batter out")
        return problems

    if extra_type == ExtraType.NONE and extra_runs:
        problems.append("extra runs recorded without an extra type")
    if extra_type in (ExtraType.WIDE, ExtraType.BYE, ExtraType.LEG_BYE):
        if runs_off_bat:
            problems.append(f"runs off the bat cannot be scored off a {extra_type.value}")
    if extra_type != ExtraType.NONE and extra_runs < 1:
        problems.append(f"a {extra_type.value} must carry at least one run")

    if dismissal is not None:
        if extra_type == ExtraType.WIDE and dismissal.kind not in WIDE_DISMISSALS:
            problems.append(f"{dismissal.kind.value} is not possible off a wide")
        if extra_type == ExtraType.NO_BALL and dismissal.kind not in NO_BALL_DISMISSALS:
            problems.append(f"{dismissal.kind.value} is not possible off a no-ball")
        if dismissal.fielder and not dismissal.kind.takes_fielder:
            problems.append(f"{dismissal.kind.value} does not credit a fielder")
        if not dismissal.player_out:
            problems.append("dismissal must name the batter out")
    return problems


@dataclass
class BallCandidate:
    """An unvalidated delivery as submitted by an operator or the interpreter.

    Player references are optional: missing ones are filled from the
    innings cursor when the processor resolves the candidate.
    """

    runs_off_bat: int = 0
    extra_type: ExtraType = ExtraType.NONE
    extra_runs: Optional[int] = None  # None = automatic wide/no-ball run only
    is_wicket: bool = False
    dismissal_type: Optional[DismissalType] = None
    player_out: Optional[str] = None
    fielder: Optional[str] = None
    penalty_runs: int = 0
    short_run: bool = False
    dead_ball: bool = False
    strike_crossed: Optional[bool] = None

    striker: Optional[str] = None
    non_striker: Optional[str] = None
    bowler: Optional[str] = None

    def describe(self) -> str:
        """Short operator-facing label, used when listing ambiguous candidates."""
        if self.dead_ball:
            label = "dead ball"
        elif self.extra_type != ExtraType.NONE:
            runs = self.extra_runs if self.extra_runs is not None else 1
            label = f"{self.extra_type.value.replace('_', ' ')} ({runs})"
            if self.runs_off_bat:
                label += f" + {self.runs_off_bat} off the bat"
        elif self.runs_off_bat == 0:
            label = "dot ball"
        else:
            label = f"{self.runs_off_bat} run{'s' if self.runs_off_bat != 1 else ''}"
        if self.penalty_runs:
            label += f", {self.penalty_runs} penalty"
        if self.is_wicket:
            label += f", OUT {self.dismissal_type.value if self.dismissal_type else '(how?)'}"
            if self.fielder:
                label += f" ({self.fielder})"
        return label

    def to_dict(self) -> dict:
        return {
            "runs_off_bat": self.runs_off_bat,
            "extra_type": self.extra_type.value,
            "extra_runs": self.extra_runs,
            "is_wicket": self.is_wicket,
            "dismissal_type": self.dismissal_type.value if self.dismissal_type else None,
            "player_out": self.player_out,
            "fielder": self.fielder,
            "penalty_runs": self.penalty_runs,
            "short_run": self.short_run,
            "dead_ball": self.dead_ball,
            "strike_crossed": self.strike_crossed,
            "striker": self.striker,
            "non_striker": self.non_striker,
            "bowler": self.bowler,
            "label": self.describe(),
        }


@dataclass
class MatchInfo:
    """Pre-match metadata plus the lifecycle facts the ball log cannot carry."""

    match_id: str
    title: str = ""
    venue: str = ""
    team_a: str = ""
    team_b: str = ""
    format: MatchFormat = MatchFormat.T20
    overs_limit: Optional[int] = None
    toss_winner: str = ""
    toss_decision: Optional[TossDecision] = None

    second_innings_started: bool = False
    abandoned: bool = False
    abandon_reason: str = ""
    created_at: datetime = field(default_factory=_utcnow)

    @property
    def teams_set(self) -> bool:
        return bool(self.team_a and self.team_b and self.overs_limit)

    @property
    def first_batting_team(self) -> str:
        if not self.toss_winner or self.toss_decision is None:
            return ""
        other = self.team_b if self.toss_winner == self.team_a else self.team_a
        return self.toss_winner if self.toss_decision == TossDecision.BAT else other

    def to_dict(self) -> dict:
        return {
            "match_id": self.match_id,
            "title": self.title,
            "venue": self.venue,
            "team_a": self.team_a,
            "team_b": self.team_b,
            "format": self.format.value,
            "overs_limit": self.overs_limit,
            "toss_winner": self.toss_winner,
            "toss_decision": self.toss_decision.value if self.toss_decision else None,
            "second_innings_started": self.second_innings_started,
            "abandoned": self.abandoned,
            "abandon_reason": self.abandon_reason,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "MatchInfo":
        decision = data.get("toss_decision")
        return cls(
            match_id=data["match_id"],
            title=data.get("title", ""),
            venue=data.get("venue", ""),
            team_a=data.get("team_a", ""),
            team_b=data.get("team_b", ""),
            format=MatchFormat(data.get("format", MatchFormat.T20.value)),
            overs_limit=data.get("overs_limit"),
            toss_winner=data.get("toss_winner", ""),
            toss_decision=TossDecision(decision) if decision else None,
            second_innings_started=bool(data.get("second_innings_started", False)),
            abandoned=bool(data.get("abandoned", False)),
            abandon_reason=data.get("abandon_reason", ""),
            created_at=datetime.fromisoformat(data["created_at"]) if data.get("created_at") else _utcnow(),
        )
