"""Tests for the live scoring service: ordering, pending commands, viewers and restore."""

from __future__ import annotations

import threading

import pandas as pd
import pytest

from conftest import make_ball, opening_ball, wait_until

from livescore.broadcast.broadcaster import SNAPSHOT, ScoreboardMirror
from livescore.config import (
    BroadcastConfig,
    EngineConfig,
    MatchFormat,
    PendingConfig,
    StorageConfig,
    TossDecision,
)
from livescore.data.ball_event import DismissalType, ExtraType
from livescore.data.players import StaticPlayerDirectory
from livescore.errors import (
    Ambiguous,
    Busy,
    EmptyLog,
    InvalidTransition,
    NotFound,
    Unrecognized,
)
from livescore.service import LiveScoringService


def setup_match(service: LiveScoringService, match_id: str, overs_limit: int = 2) -> str:
    service.create_match(match_id)
    service.set_teams(match_id, "Thunder", "Strikers", MatchFormat.CUSTOM, overs_limit=overs_limit)
    service.record_toss(match_id, "Strikers", TossDecision.BOWL)
    return match_id


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class TestRegistry:
    def test_unknown_match(self, service):
        with pytest.raises(NotFound):
            service.snapshot("nope")

    def test_duplicate_match_rejected(self, service, live_match):
        with pytest.raises(InvalidTransition):
            service.create_match(live_match)

    def test_generated_ids(self, service):
        snapshot = service.create_match(title="Friendly")
        match_id = snapshot["match"]["match_id"]
        assert match_id in service.match_ids()
        assert snapshot["match"]["status"] == "setup"

    def test_lifecycle_snapshot(self, service, live_match):
        snapshot = service.snapshot(live_match)
        assert snapshot["match"]["status"] == "in_progress"
        assert snapshot["innings"][0]["batting_team"] == "Thunder"
        assert snapshot["innings"][0]["overs_limit"] == 2


class TestOrdering:
    def test_undo_rejected_while_busy(self, service, live_match):
        service.submit_ball(live_match, opening_ball(1))
        session = service.session(live_match)
        with session.turn():
            with pytest.raises(Busy):
                service.undo(live_match)
        assert service.undo(live_match)["removed_event"]["sequence"] == 1

    def test_commands_apply_in_arrival_order(self, service, live_match):
        service.submit_ball(live_match, opening_ball(0))
        session = service.session(live_match)
        errors = []

        def submit(runs):
            try:
                service.submit_ball(live_match, make_ball(runs))
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=submit, args=(runs,)) for runs in (1, 2, 3)]
        with session.turn():
            for i, thread in enumerate(threads):
                thread.start()
                wait_until(lambda: session.waiting == i + 2)
        for thread in threads:
            thread.join(timeout=5)

        assert errors == []
        events = service.log.events(f"{live_match}-1")
        assert [e.runs_off_bat for e in events] == [0, 1, 2, 3]
        assert [e.sequence for e in events] == [1, 2, 3, 4]

    def test_phrase_reads_the_innings_at_its_turn(self, service, live_match, monkeypatch):
        service.submit_ball(live_match, opening_ball(0))
        session = service.session(live_match)
        interpret = service.interpreter.interpret
        errors = []

        def submit_behind():
            try:
                service.submit_ball(live_match, make_ball(1, striker="Bat_3"))
            except Exception as e:
                errors.append(e)

        thread = threading.Thread(target=submit_behind)

        def interpret_then_queue_a_ball(phrase, context):
            result = interpret(phrase, context)
            # Another operator's ball arrives while the phrase is being read
            thread.start()
            wait_until(lambda: session.waiting == 2)
            return result

        monkeypatch.setattr(service.interpreter, "interpret", interpret_then_queue_a_ball)
        result = service.submit_phrase(live_match, "run out striker")
        thread.join(timeout=5)

        assert result["delta"]["event"]["striker"] == "Bat_1"
        assert result["delta"]["event"]["dismissal"]["player_out"] == "Bat_1"
        assert errors == []
        events = service.log.events(f"{live_match}-1")
        assert [e.striker for e in events] == ["Bat_1", "Bat_1", "Bat_3"]

    def test_matches_do_not_block_each_other(self, service, live_match):
        other = setup_match(service, "m2")
        with service.session(live_match).turn():
            delta = service.submit_ball(other, opening_ball(4))
        assert delta["innings"]["runs"] == 4

    def test_rejection_is_reported(self, service, live_match):
        with pytest.raises(EmptyLog):
            service.undo(live_match)
        with pytest.raises(InvalidTransition):
            service.start_second_innings(live_match)


class TestPhrases:
    def test_resolved_phrase_is_applied(self, service, live_match):
        service.submit_ball(live_match, opening_ball(0))
        result = service.submit_phrase(live_match, "four")
        assert result["status"] == "accepted"
        assert result["delta"]["innings"]["runs"] == 4
        assert service.session(live_match).previous_phrase == "four"

    def test_unrecognized(self, service, live_match):
        with pytest.raises(Unrecognized):
            service.submit_phrase(live_match, "lovely day")

    def test_ambiguous_phrase_is_parked_then_confirmed(self, service, live_match):
        service.submit_ball(live_match, opening_ball(0))
        with pytest.raises(Ambiguous) as exc:
            service.submit_phrase(live_match, "out")
        pending_id = exc.value.pending_id
        assert exc.value.candidates[0]["dismissal_type"] == "bowled"
        assert [p["pending_id"] for p in service.pending(live_match)] == [pending_id]

        delta = service.confirm_pending(live_match, pending_id, choice=0)
        assert delta["event"]["dismissal"]["kind"] == "bowled"
        assert delta["innings"]["wickets"] == 1
        assert service.pending(live_match) == []

    def test_bad_choice_keeps_pending(self, service, live_match):
        service.submit_ball(live_match, opening_ball(0))
        with pytest.raises(Ambiguous) as exc:
            service.submit_phrase(live_match, "two three")
        with pytest.raises(NotFound):
            service.confirm_pending(live_match, exc.value.pending_id, choice=9)
        assert len(service.pending(live_match)) == 1
        service.cancel_pending(live_match, exc.value.pending_id)
        assert service.pending(live_match) == []

    def test_pending_goes_stale_when_log_moves(self, service, live_match):
        service.submit_ball(live_match, opening_ball(0))
        with pytest.raises(Ambiguous) as exc:
            service.submit_phrase(live_match, "two three")
        service.submit_ball(live_match, make_ball(1))
        with pytest.raises(NotFound):
            service.confirm_pending(live_match, exc.value.pending_id)

    def test_pending_expires(self):
        clock = FakeClock()
        svc = LiveScoringService(EngineConfig(pending=PendingConfig(ttl_seconds=30)), clock=clock)
        match_id = setup_match(svc, "m1")
        svc.submit_ball(match_id, opening_ball(0))
        with pytest.raises(Ambiguous) as exc:
            svc.submit_phrase(match_id, "two three")
        clock.now += 31
        assert svc.pending(match_id) == []
        with pytest.raises(NotFound):
            svc.confirm_pending(match_id, exc.value.pending_id)

    def test_default_pending_ttl(self):
        clock = FakeClock()
        svc = LiveScoringService(EngineConfig(), clock=clock)
        match_id = setup_match(svc, "m1")
        svc.submit_ball(match_id, opening_ball(0))
        with pytest.raises(Ambiguous):
            svc.submit_phrase(match_id, "two three")
        clock.now += 119
        assert len(svc.pending(match_id)) == 1
        clock.now += 2
        assert svc.pending(match_id) == []

    def test_undo_phrase(self, service, live_match):
        service.submit_ball(live_match, opening_ball(6))
        result = service.submit_phrase(live_match, "scratch that")
        assert result["status"] == "undone"
        assert result["pending"] is None
        assert service.snapshot(live_match)["innings"][0]["runs"] == 0

    def test_correction_parks_replacement(self, service, live_match):
        service.submit_ball(live_match, opening_ball(1))
        service.submit_ball(live_match, make_ball(6))
        result = service.submit_phrase(live_match, "correction, four")
        assert result["undo"]["removed_event"]["runs_off_bat"] == 6
        pending_id = result["pending"]["pending_id"]
        delta = service.confirm_pending(live_match, pending_id)
        assert delta["innings"]["runs"] == 5

    def test_directory_fielders_feed_the_interpreter(self):
        squads = {
            "Thunder": ["Bat_1", "Bat_2", "Bat_3"],
            "Strikers": ["Bowl_1", "John Smith", "Ravi Kumar"],
        }
        svc = LiveScoringService(EngineConfig(), directory=StaticPlayerDirectory(squads))
        match_id = setup_match(svc, "m1")
        svc.submit_ball(match_id, opening_ball(0))
        result = svc.submit_phrase(match_id, "caught by Smith")
        assert result["delta"]["event"]["dismissal"]["fielder"] == "John Smith"


class TestViewers:
    def test_mirror_tracks_live_state(self, service, live_match):
        sub = service.subscribe(live_match)
        service.submit_ball(live_match, opening_ball(1))
        service.submit_ball(live_match, make_ball(extra=ExtraType.WIDE))
        service.submit_ball(live_match, make_ball(0, wicket=DismissalType.CAUGHT, fielder="Strikers_3"))
        service.submit_ball(live_match, make_ball(4, striker="Bat_3"))

        mirror = ScoreboardMirror()
        for message in sub.drain():
            assert mirror.receive(message)
        assert mirror.state == service.snapshot(live_match)

        service.undo(live_match)
        for message in sub.drain():
            assert mirror.receive(message)
        assert mirror.state == service.snapshot(live_match)

    def test_lifecycle_messages_carry_snapshots(self, service):
        service.create_match("m9")
        sub = service.subscribe("m9")
        service.set_teams("m9", "Thunder", "Strikers")
        messages = sub.drain()
        assert messages[0].type == SNAPSHOT
        assert messages[1].payload["kind"] == "lifecycle"
        assert messages[1].payload["snapshot"]["match"]["status"] == "toss_pending"

    def test_resync_after_drop(self):
        svc = LiveScoringService(EngineConfig(broadcast=BroadcastConfig(subscriber_buffer=2)))
        match_id = setup_match(svc, "m1")
        sub = svc.subscribe(match_id)
        svc.submit_ball(match_id, opening_ball(1))
        svc.submit_ball(match_id, make_ball(1))
        svc.submit_ball(match_id, make_ball(1))
        assert sub.dropped == 2

        mirror = ScoreboardMirror()
        for message in sub.drain():
            mirror.receive(message)
        assert mirror.sequence == 3
        assert svc.broadcaster.sequence(match_id) == 5

        svc.resync(sub)
        mirror.receive(sub.get(timeout=1))
        assert mirror.state == svc.snapshot(match_id)
        assert mirror.sequence == svc.broadcaster.sequence(match_id)


class TestPersistence:
    def test_restore_from_sqlite(self, tmp_path):
        config = EngineConfig(storage=StorageConfig(db_path=str(tmp_path / "live.db")))
        svc = LiveScoringService(config)
        match_id = setup_match(svc, "m1", overs_limit=1)
        svc.submit_ball(match_id, opening_ball(4))
        for runs in (0, 1, 0, 6, 0):
            svc.submit_ball(match_id, make_ball(runs))
        svc.start_second_innings(match_id)
        svc.submit_ball(match_id, opening_ball(2))
        before = svc.snapshot(match_id)
        scorecard = svc.scorecard(match_id)
        svc.close()

        reopened = LiveScoringService(config)
        try:
            assert reopened.snapshot(match_id) == before
            assert reopened.scorecard(match_id) == scorecard
            assert match_id in reopened.match_ids()
        finally:
            reopened.close()


def check_invariants(service: LiveScoringService, match_id: str) -> None:
    processor = service.session(match_id).processor
    for innings in processor.state.innings.values():
        assert innings.runs >= 0
        assert 0 <= innings.wickets <= 10
        assert innings.legal_balls <= innings.overs_limit * 6
        assert processor.aggregator.reconcile(innings) == []


class TestInvariants:
    def test_scripted_innings_holds_after_every_step(self, service, live_match):
        steps = [
            lambda: service.submit_ball(live_match, opening_ball(1)),
            lambda: service.submit_ball(live_match, make_ball(extra=ExtraType.WIDE)),
            lambda: service.submit_ball(live_match, make_ball(4, extra=ExtraType.NO_BALL)),
            lambda: service.submit_ball(live_match, make_ball(0)),  # free hit
            lambda: service.undo(live_match),
            lambda: service.submit_ball(live_match, make_ball(2)),
            lambda: service.submit_ball(live_match, make_ball(extra=ExtraType.LEG_BYE, extra_runs=1)),
            lambda: service.submit_ball(live_match, make_ball(wicket=DismissalType.BOWLED)),
            lambda: service.undo(live_match),
            lambda: service.submit_ball(live_match, make_ball(wicket=DismissalType.BOWLED)),
            lambda: service.submit_ball(live_match, make_ball(6, striker="Bat_3")),
            lambda: service.submit_ball(live_match, make_ball(extra=ExtraType.BYE, extra_runs=2)),
            lambda: service.submit_ball(live_match, make_ball(1, bowler="Bowl_2")),
            lambda: service.undo(live_match),
            lambda: service.submit_ball(live_match, make_ball(dead_ball=True, penalty_runs=5)),
            lambda: service.submit_ball(live_match, make_ball(3, bowler="Bowl_2")),
        ]
        steps += [lambda: service.submit_ball(live_match, make_ball(1))] * 5

        for step in steps:
            step()
            check_invariants(service, live_match)

        innings = service.snapshot(live_match)["innings"][0]
        assert innings["legal_balls"] == 12
        assert innings["wickets"] == 1
        assert innings["runs"] == 31
        assert service.snapshot(live_match)["match"]["status"] == "innings_break"


class TestExport:
    def test_scorecards_written_under_data_dir(self, tmp_path):
        svc = LiveScoringService(EngineConfig(data_dir=tmp_path))
        match_id = setup_match(svc, "m1", overs_limit=1)
        svc.submit_ball(match_id, opening_ball(4))
        svc.submit_ball(match_id, make_ball(1))

        paths = svc.export_scorecards(match_id)
        assert [p.name for p in paths] == ["m1-1_batting.csv", "m1-1_bowling.csv"]
        assert all(p.parent == tmp_path / "m1" for p in paths)
        batting = pd.read_csv(paths[0])
        assert batting["R"].sum() == 5
        assert pd.read_csv(paths[1]).loc[0, "O"] == 0.2

    def test_explicit_directory(self, service, live_match, tmp_path):
        service.submit_ball(live_match, opening_ball(0))
        paths = service.export_scorecards(live_match, tmp_path / "cards")
        assert len(paths) == 2
        assert all(p.exists() for p in paths)
