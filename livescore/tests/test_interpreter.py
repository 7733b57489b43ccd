"""Tests for the voice/text command interpreter."""

from __future__ import annotations

import pytest

from livescore.data.ball_event import DismissalType, ExtraType
from livescore.voice.interpreter import (
    CommandInterpreter,
    Intent,
    InterpretationKind,
    OverContext,
)


@pytest.fixture
def interpreter() -> CommandInterpreter:
    return CommandInterpreter()


def make_context(**kwargs) -> OverContext:
    fields = dict(over=3, ball=2, striker="Bat_1", non_striker="Bat_2", bowler="Bowl_1")
    fields.update(kwargs)
    return OverContext(**fields)


class TestRuns:
    @pytest.mark.parametrize(
        "phrase, runs",
        [
            ("four", 4),
            ("for", 4),
            ("Fore!", 4),
            ("that's a boundary", 4),
            ("six", 6),
            ("sicks", 6),
            ("maximum", 6),
            ("single", 1),
            ("2", 2),
            ("dot ball", 0),
            ("no run", 0),
        ],
    )
    def test_runs_off_bat(self, interpreter, phrase, runs):
        result = interpreter.interpret(phrase)
        assert result.kind == InterpretationKind.RESOLVED
        assert result.candidate.runs_off_bat == runs
        assert result.candidate.extra_type == ExtraType.NONE
        assert not result.candidate.is_wicket

    def test_repeated_number_is_one_call(self, interpreter):
        result = interpreter.interpret("four, four")
        assert result.kind == InterpretationKind.RESOLVED
        assert result.candidate.runs_off_bat == 4

    def test_conflicting_numbers_ambiguous(self, interpreter):
        result = interpreter.interpret("two three")
        assert result.kind == InterpretationKind.AMBIGUOUS
        assert [c.runs_off_bat for c in result.candidates] == [3, 2]
        assert "runs unclear" in result.detail

    def test_misspelling_matched_with_lower_confidence(self, interpreter):
        result = interpreter.interpret("boundry")
        assert result.kind == InterpretationKind.RESOLVED
        assert result.candidate.runs_off_bat == 4
        assert result.confidence < 1.0

    def test_short_run_records_one_less(self, interpreter):
        candidate = interpreter.interpret("two, one short").candidate
        assert candidate.short_run
        assert candidate.runs_off_bat == 1


class TestExtras:
    def test_wide(self, interpreter):
        for phrase in ("wide", "why would", "white"):
            candidate = interpreter.interpret(phrase).candidate
            assert candidate.extra_type == ExtraType.WIDE
            assert candidate.extra_runs is None

    def test_wide_with_runs_run(self, interpreter):
        candidate = interpreter.interpret("wide two").candidate
        assert candidate.extra_type == ExtraType.WIDE
        assert candidate.extra_runs == 3
        assert candidate.runs_off_bat == 0

    def test_no_ball_runs_are_off_the_bat(self, interpreter):
        candidate = interpreter.interpret("no ball four").candidate
        assert candidate.extra_type == ExtraType.NO_BALL
        assert candidate.runs_off_bat == 4

    def test_byes(self, interpreter):
        assert interpreter.interpret("bye").candidate.extra_runs == 1
        candidate = interpreter.interpret("leg bye two").candidate
        assert candidate.extra_type == ExtraType.LEG_BYE
        assert candidate.extra_runs == 2

    def test_penalty(self, interpreter):
        assert interpreter.interpret("penalty five").candidate.penalty_runs == 5
        assert interpreter.interpret("penalty").candidate.penalty_runs == 5

    def test_dead_ball(self, interpreter):
        candidate = interpreter.interpret("dead ball").candidate
        assert candidate.dead_ball
        assert candidate.runs_off_bat == 0


class TestNoCommaBall:
    def test_interrupted_call_is_ambiguous(self, interpreter):
        result = interpreter.interpret("no, ball")
        assert result.kind == InterpretationKind.AMBIGUOUS
        assert result.candidates[0].extra_type == ExtraType.NO_BALL
        assert result.candidates[1].runs_off_bat == 0

    def test_dot_ranked_first_after_a_previous_call(self, interpreter):
        result = interpreter.interpret("no, ball", make_context(previous_phrase="dot ball"))
        assert result.kind == InterpretationKind.AMBIGUOUS
        assert result.candidates[0].extra_type == ExtraType.NONE
        assert result.candidates[1].extra_type == ExtraType.NO_BALL

    def test_no_ball_without_pause_resolves(self, interpreter):
        assert interpreter.interpret("no ball").kind == InterpretationKind.RESOLVED


class TestWickets:
    def test_named_dismissal(self, interpreter):
        for phrase, kind in (("bowled", DismissalType.BOWLED), ("l b w", DismissalType.LBW)):
            result = interpreter.interpret(phrase, make_context())
            assert result.kind == InterpretationKind.RESOLVED
            assert result.candidate.is_wicket
            assert result.candidate.dismissal_type == kind

    def test_bare_out_lists_dismissals(self, interpreter):
        result = interpreter.interpret("out", make_context())
        assert result.kind == InterpretationKind.AMBIGUOUS
        kinds = [c.dismissal_type for c in result.candidates]
        assert kinds[0] == DismissalType.BOWLED
        assert DismissalType.CAUGHT in kinds
        assert len(result.candidates) <= 8

    def test_free_hit_only_run_out(self, interpreter):
        result = interpreter.interpret("out", make_context(free_hit=True))
        assert {c.dismissal_type for c in result.candidates} == {DismissalType.RUN_OUT}
        assert [c.player_out for c in result.candidates] == ["Bat_1", "Bat_2"]

    def test_run_out_end_named(self, interpreter):
        result = interpreter.interpret("run out non striker", make_context())
        assert result.kind == InterpretationKind.RESOLVED
        assert result.candidate.player_out == "Bat_2"

    def test_run_out_end_unknown(self, interpreter):
        result = interpreter.interpret("run out", make_context())
        assert result.kind == InterpretationKind.AMBIGUOUS
        assert "which batter" in result.detail

    def test_caught_by_surname(self, interpreter):
        context = make_context(fielders=["John Smith", "Ravi Kumar"], require_fielder=True)
        result = interpreter.interpret("caught by Smith", context)
        assert result.kind == InterpretationKind.RESOLVED
        assert result.candidate.fielder == "John Smith"

    def test_caught_without_fielder_asks(self, interpreter):
        context = make_context(fielders=["John Smith", "Ravi Kumar"], require_fielder=True)
        result = interpreter.interpret("caught", context)
        assert result.kind == InterpretationKind.AMBIGUOUS
        assert [c.fielder for c in result.candidates] == ["John Smith", "Ravi Kumar"]

    def test_caught_and_bowled_credits_bowler(self, interpreter):
        result = interpreter.interpret("caught and bowled", make_context())
        assert result.kind == InterpretationKind.RESOLVED
        assert result.candidate.fielder == "Bowl_1"

    def test_retirement_is_not_a_delivery(self, interpreter):
        result = interpreter.interpret("retired hurt", make_context())
        assert result.kind == InterpretationKind.RESOLVED
        assert result.candidate.dismissal_type == DismissalType.RETIRED
        assert result.candidate.dead_ball
        assert result.candidate.runs_off_bat == 0

        non_striker = interpreter.interpret("retired non striker", make_context()).candidate
        assert non_striker.dead_ball
        assert non_striker.player_out == "Bat_2"

    def test_stumped_off_wide(self, interpreter):
        candidate = interpreter.interpret("wide, stumped", make_context()).candidate
        assert candidate.extra_type == ExtraType.WIDE
        assert candidate.dismissal_type == DismissalType.STUMPED


class TestCommands:
    def test_undo(self, interpreter):
        result = interpreter.interpret("scratch that")
        assert result.kind == InterpretationKind.RESOLVED
        assert result.intent == Intent.UNDO
        assert result.candidates == []

    def test_correction_carries_replacement(self, interpreter):
        result = interpreter.interpret("correction, four")
        assert result.intent == Intent.UNDO
        assert result.candidates[0].runs_off_bat == 4

    def test_unrecognized(self, interpreter):
        result = interpreter.interpret("lovely day")
        assert result.kind == InterpretationKind.UNRECOGNIZED
        assert result.candidate is None

    def test_to_dict(self, interpreter):
        data = interpreter.interpret("six").to_dict()
        assert data["kind"] == "resolved"
        assert data["candidates"][0]["label"] == "6 runs"
