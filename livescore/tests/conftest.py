"""Shared test fixtures for live scoring tests."""

from __future__ import annotations

import time
from typing import Optional

import pytest

from livescore.config import EngineConfig, MatchFormat, ScoringRules, TossDecision
from livescore.data.ball_event import BallCandidate, DismissalType, ExtraType, MatchInfo
from livescore.data.event_log import InMemoryEventLog
from livescore.scoring.processor import ScoringProcessor
from livescore.service import LiveScoringService
from livescore.state.innings import InningsEngine


def make_ball(
    runs: int = 0,
    extra: ExtraType = ExtraType.NONE,
    extra_runs: Optional[int] = None,
    wicket: Optional[DismissalType] = None,
    fielder: Optional[str] = None,
    player_out: Optional[str] = None,
    bowler: Optional[str] = None,
    striker: Optional[str] = None,
    non_striker: Optional[str] = None,
    **kwargs,
) -> BallCandidate:
    return BallCandidate(
        runs_off_bat=runs,
        extra_type=extra,
        extra_runs=extra_runs,
        is_wicket=wicket is not None,
        dismissal_type=wicket,
        fielder=fielder,
        player_out=player_out,
        bowler=bowler,
        striker=striker,
        non_striker=non_striker,
        **kwargs,
    )


def wait_until(predicate, timeout: float = 5.0) -> None:
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not reached in time")
        time.sleep(0.005)


def opening_ball(runs: int = 0, bowler: str = "Bowl_1", **kwargs) -> BallCandidate:
    """First ball of an innings: names both openers and the bowler."""
    return make_ball(runs, striker="Bat_1", non_striker="Bat_2", bowler=bowler, **kwargs)


def bowl_over(
    processor: ScoringProcessor, innings_id: str, bowler: Optional[str], runs: list[int]
) -> None:
    """Bowl legal deliveries; the first names the bowler when one is given."""
    for i, r in enumerate(runs):
        processor.apply(innings_id, make_ball(r, bowler=bowler if i == 0 else None))


@pytest.fixture
def rules() -> ScoringRules:
    return ScoringRules()


@pytest.fixture
def match_info() -> MatchInfo:
    """Standard T20 match for testing."""
    return MatchInfo(match_id="test_t20_001", title="Thunder v Strikers", venue="Test Ground")


@pytest.fixture
def event_log() -> InMemoryEventLog:
    return InMemoryEventLog()


@pytest.fixture
def processor(match_info: MatchInfo, event_log: InMemoryEventLog, rules: ScoringRules) -> ScoringProcessor:
    """Processor with Thunder batting first in a 20-over match."""
    event_log.save_match(match_info)
    proc = ScoringProcessor(match_info, event_log, InningsEngine(rules))
    proc.machine.set_teams("Thunder", "Strikers", MatchFormat.T20)
    proc.machine.record_toss("Thunder", TossDecision.BAT)
    return proc


@pytest.fixture
def innings_id(processor: ScoringProcessor) -> str:
    return processor.current_innings_id()


@pytest.fixture
def service() -> LiveScoringService:
    svc = LiveScoringService(EngineConfig())
    yield svc
    svc.close()


@pytest.fixture
def live_match(service: LiveScoringService) -> str:
    """A match in progress with Thunder batting in a 2-over innings."""
    service.create_match("m1", title="Thunder v Strikers")
    service.set_teams("m1", "Thunder", "Strikers", MatchFormat.CUSTOM, overs_limit=2)
    service.record_toss("m1", "Strikers", TossDecision.BOWL)
    return "m1"
