"""Tests for the match lifecycle state machine."""

from __future__ import annotations

import pytest

from livescore.config import MatchFormat, TossDecision
from livescore.data.ball_event import MatchInfo
from livescore.errors import InvalidTransition
from livescore.state.innings import CompletionReason, InningsEngine, InningsState
from livescore.state.match_state import MatchStateMachine, MatchStatus


def make_machine() -> MatchStateMachine:
    return MatchStateMachine(MatchInfo(match_id="m1"), InningsEngine())


def finish(innings: InningsState, runs: int, wickets: int, reason: CompletionReason) -> InningsState:
    innings.runs = runs
    innings.wickets = wickets
    innings.is_complete = True
    innings.completion_reason = reason
    return innings


@pytest.fixture
def machine() -> MatchStateMachine:
    m = make_machine()
    m.set_teams("Thunder", "Strikers", MatchFormat.T20)
    return m


class TestSetup:
    def test_initial_state(self):
        m = make_machine()
        assert m.status == MatchStatus.SETUP
        assert m.state.current_innings_state is None

    def test_set_teams_uses_format_overs(self, machine):
        assert machine.status == MatchStatus.TOSS_PENDING
        assert machine.state.info.overs_limit == 20

    def test_custom_format_needs_overs(self):
        m = make_machine()
        with pytest.raises(InvalidTransition):
            m.set_teams("Thunder", "Strikers", MatchFormat.CUSTOM)
        m.set_teams("Thunder", "Strikers", MatchFormat.CUSTOM, overs_limit=8)
        assert m.state.info.overs_limit == 8

    def test_same_team_twice_rejected(self):
        with pytest.raises(InvalidTransition):
            make_machine().set_teams("Thunder", "Thunder")

    def test_set_teams_only_once(self, machine):
        with pytest.raises(InvalidTransition) as exc:
            machine.set_teams("Thunder", "Strikers")
        assert exc.value.state == "toss_pending"


class TestToss:
    def test_toss_before_teams_rejected(self):
        with pytest.raises(InvalidTransition):
            make_machine().record_toss("Thunder", TossDecision.BAT)

    def test_toss_winner_must_be_playing(self, machine):
        with pytest.raises(InvalidTransition):
            machine.record_toss("Hurricanes", TossDecision.BAT)

    def test_toss_starts_first_innings(self, machine):
        innings = machine.record_toss("Thunder", TossDecision.BOWL)
        assert machine.status == MatchStatus.IN_PROGRESS
        assert innings.innings_id == "m1-1"
        assert innings.batting_team == "Strikers"
        assert innings.bowling_team == "Thunder"
        assert innings.overs_limit == 20
        assert innings.target is None


class TestInningsFlow:
    def test_first_innings_completion_goes_to_break(self, machine):
        first = machine.record_toss("Thunder", TossDecision.BAT)
        finish(first, 150, 10, CompletionReason.ALL_OUT)
        assert machine.on_innings_complete(first) == MatchStatus.INNINGS_BREAK

    def test_incomplete_innings_signal_ignored(self, machine):
        first = machine.record_toss("Thunder", TossDecision.BAT)
        assert machine.on_innings_complete(first) == MatchStatus.IN_PROGRESS

    def test_second_innings_needs_break(self, machine):
        machine.record_toss("Thunder", TossDecision.BAT)
        with pytest.raises(InvalidTransition):
            machine.start_second_innings()

    def test_second_innings_swaps_teams_and_sets_target(self, machine):
        first = machine.record_toss("Thunder", TossDecision.BAT)
        machine.on_innings_complete(finish(first, 150, 6, CompletionReason.OVERS_EXHAUSTED))
        second = machine.start_second_innings()
        assert second.innings_id == "m1-2"
        assert second.batting_team == "Strikers"
        assert second.target == 151
        assert machine.state.current_innings == 2
        assert machine.state.info.second_innings_started

    def test_chase_won_by_wickets(self, machine):
        first = machine.record_toss("Thunder", TossDecision.BAT)
        machine.on_innings_complete(finish(first, 150, 6, CompletionReason.OVERS_EXHAUSTED))
        second = machine.start_second_innings()
        status = machine.on_innings_complete(finish(second, 152, 3, CompletionReason.TARGET_REACHED))
        assert status == MatchStatus.COMPLETED
        assert machine.state.result.winner == "Strikers"
        assert machine.state.result.summary == "Strikers won by 7 wickets"

    def test_defended_total_won_by_runs(self, machine):
        first = machine.record_toss("Thunder", TossDecision.BAT)
        machine.on_innings_complete(finish(first, 150, 6, CompletionReason.OVERS_EXHAUSTED))
        second = machine.start_second_innings()
        machine.on_innings_complete(finish(second, 149, 10, CompletionReason.ALL_OUT))
        assert machine.state.result.summary == "Thunder won by 1 run"

    def test_tie(self, machine):
        first = machine.record_toss("Thunder", TossDecision.BAT)
        machine.on_innings_complete(finish(first, 150, 6, CompletionReason.OVERS_EXHAUSTED))
        second = machine.start_second_innings()
        machine.on_innings_complete(finish(second, 150, 8, CompletionReason.OVERS_EXHAUSTED))
        assert machine.state.result.is_tie
        assert machine.state.to_dict()["result"]["summary"] == "Match tied"


class TestAbandonAndReopen:
    def test_abandon_from_any_live_state(self):
        for prepare in (lambda m: None, lambda m: m.set_teams("Thunder", "Strikers")):
            m = make_machine()
            prepare(m)
            m.abandon("rain")
            assert m.status == MatchStatus.ABANDONED
            assert m.state.info.abandon_reason == "rain"

    def test_abandon_terminal_rejected(self, machine):
        machine.abandon()
        with pytest.raises(InvalidTransition):
            machine.abandon()

    def test_reopen_walks_back_break(self, machine):
        first = machine.record_toss("Thunder", TossDecision.BAT)
        machine.on_innings_complete(finish(first, 150, 10, CompletionReason.ALL_OUT))
        first.is_complete = False
        first.completion_reason = None
        assert machine.reopen_innings(first) == MatchStatus.IN_PROGRESS

    def test_reopen_ignores_complete_innings(self, machine):
        first = machine.record_toss("Thunder", TossDecision.BAT)
        machine.on_innings_complete(finish(first, 150, 10, CompletionReason.ALL_OUT))
        assert machine.reopen_innings(first) == MatchStatus.INNINGS_BREAK
