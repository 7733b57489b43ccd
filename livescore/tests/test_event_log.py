"""Tests for the in-memory and SQLite event logs."""

from __future__ import annotations

import pytest

from livescore.config import TossDecision
from livescore.data.ball_event import BallEvent, ExtraType, MatchInfo
from livescore.data.event_log import InMemoryEventLog, SqliteEventLog


def make_event(sequence: int, runs: int = 0, innings_id: str = "m1-1", **kwargs) -> BallEvent:
    return BallEvent(
        innings_id=innings_id,
        sequence=sequence,
        over=0,
        ball=min(sequence, 6),
        striker="Bat_1",
        non_striker="Bat_2",
        bowler="Bowl_1",
        runs_off_bat=runs,
        **kwargs,
    )


@pytest.fixture(params=["memory", "sqlite"])
def log(request, tmp_path):
    if request.param == "memory":
        yield InMemoryEventLog()
    else:
        store = SqliteEventLog(tmp_path / "events.db")
        yield store
        store.close()


class TestEventLog:
    def test_append_and_read_in_order(self, log):
        for seq in range(1, 4):
            log.append(make_event(seq, runs=seq))
        events = log.events("m1-1")
        assert [e.sequence for e in events] == [1, 2, 3]
        assert [e.runs_off_bat for e in events] == [1, 2, 3]
        assert log.next_sequence("m1-1") == 4

    def test_out_of_order_append_rejected(self, log):
        log.append(make_event(1))
        with pytest.raises(ValueError, match="out-of-order"):
            log.append(make_event(3))
        with pytest.raises(ValueError):
            log.append(make_event(1))

    def test_innings_are_independent(self, log):
        log.append(make_event(1, innings_id="m1-1"))
        log.append(make_event(1, innings_id="m1-2"))
        assert len(log.events("m1-1")) == 1
        assert log.next_sequence("m1-2") == 2
        assert log.events("m2-1") == []

    def test_pop_last(self, log):
        log.append(make_event(1))
        log.append(make_event(2, extra_type=ExtraType.WIDE, extra_runs=1))
        removed = log.pop_last("m1-1")
        assert removed.sequence == 2
        assert removed.extra_type == ExtraType.WIDE
        assert log.next_sequence("m1-1") == 2
        log.pop_last("m1-1")
        assert log.pop_last("m1-1") is None

    def test_match_record(self, log):
        info = MatchInfo(match_id="m1", team_a="Thunder", team_b="Strikers", overs_limit=20)
        log.save_match(info)
        info.toss_winner = "Thunder"
        info.toss_decision = TossDecision.BAT
        log.save_match(info)
        loaded = log.load_match("m1")
        assert loaded.toss_winner == "Thunder"
        assert loaded.toss_decision == TossDecision.BAT
        assert log.match_ids() == ["m1"]
        assert log.load_match("unknown") is None


class TestSqlitePersistence:
    def test_events_survive_reopen(self, tmp_path):
        path = tmp_path / "events.db"
        store = SqliteEventLog(path)
        store.save_match(MatchInfo(match_id="m1"))
        store.append(make_event(1, runs=6))
        store.close()

        reopened = SqliteEventLog(path)
        assert reopened.load_match("m1") is not None
        assert reopened.events("m1-1")[0].runs_off_bat == 6
        reopened.close()
