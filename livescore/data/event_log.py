"""
Append-only event log.

The log is the single source of truth for a match: an ordered collection
of accepted ``BallEvent`` records per innings plus the ``MatchInfo``
record. Every projection (innings totals, cursor, player stats, match
status) can be discarded and rebuilt by replaying it.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from livescore.data.ball_event import BallEvent, MatchInfo

logger = logging.getLogger(__name__)


class EventLog(ABC):
    """Abstract base class for event log stores."""

    @abstractmethod
    def save_match(self, info: MatchInfo) -> None:
        """Insert or replace the match record."""

    @abstractmethod
    def load_match(self, match_id: str) -> Optional[MatchInfo]:
        """Return the match record, or None if unknown."""

    @abstractmethod
    def match_ids(self) -> list[str]:
        """All known match ids, oldest first."""

    @abstractmethod
    def append(self, event: BallEvent) -> None:
        """Append an event. Its sequence must follow the innings' last one."""

    @abstractmethod
    def events(self, innings_id: str) -> list[BallEvent]:
        """All events of an innings in sequence order."""

    @abstractmethod
    def pop_last(self, innings_id: str) -> Optional[BallEvent]:
        """Remove and return the most recent event of an innings."""

    def last(self, innings_id: str) -> Optional[BallEvent]:
        events = self.events(innings_id)
        return events[-1] if events else None

    def next_sequence(self, innings_id: str) -> int:
        last = self.last(innings_id)
        return last.sequence + 1 if last else 1

    def _check_sequence(self, event: BallEvent) -> None:
        expected = self.next_sequence(event.innings_id)
        if event.sequence != expected:
            raise ValueError(
                f"out-of-order append to {event.innings_id}: "
                f"got sequence {event.sequence}, expected {expected}"
            )


class InMemoryEventLog(EventLog):
    """Process-local log, used for tests and non-persistent runs."""

    def __init__(self):
        self._matches: dict[str, MatchInfo] = {}
        self._events: dict[str, list[BallEvent]] = {}
        self._lock = threading.Lock()

    def save_match(self, info: MatchInfo) -> None:
        with self._lock:
            self._matches[info.match_id] = info

    def load_match(self, match_id: str) -> Optional[MatchInfo]:
        return self._matches.get(match_id)

    def match_ids(self) -> list[str]:
        return list(self._matches)

    def append(self, event: BallEvent) -> None:
        with self._lock:
            self._check_sequence(event)
            self._events.setdefault(event.innings_id, []).append(event)

    def events(self, innings_id: str) -> list[BallEvent]:
        return list(self._events.get(innings_id, ()))

    def pop_last(self, innings_id: str) -> Optional[BallEvent]:
        with self._lock:
            events = self._events.get(innings_id)
            if not events:
                return None
            return events.pop()


class SqliteEventLog(EventLog):
    """SQLite-backed log: one row per match, one row per accepted ball."""

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._lock = threading.Lock()
        self._initialize_database()

    def _initialize_database(self) -> None:
        with self._lock:
            cursor = self._conn.cursor()
            cursor.execute('''
                CREATE TABLE IF NOT EXISTS matches (
                    match_id TEXT PRIMARY KEY,
                    payload TEXT NOT NULL,
                    created_at TEXT NOT NULL
                )
            ''')
            cursor.execute('''
                CREATE TABLE IF NOT EXISTS ball_events (
                    innings_id TEXT NOT NULL,
                    sequence INTEGER NOT NULL,
                    payload TEXT NOT NULL,
                    PRIMARY KEY (innings_id, sequence)
                )
            ''')
            self._conn.commit()
        logger.debug("Event log ready at %s", self.db_path)

    def save_match(self, info: MatchInfo) -> None:
        with self._lock:
            self._conn.execute(
                "INSERT OR REPLACE INTO matches (match_id, payload, created_at) VALUES (?, ?, ?)",
                (info.match_id, json.dumps(info.to_dict()), info.created_at.isoformat()),
            )
            self._conn.commit()

    def load_match(self, match_id: str) -> Optional[MatchInfo]:
        with self._lock:
            row = self._conn.execute(
                "SELECT payload FROM matches WHERE match_id = ?", (match_id,)
            ).fetchone()
        return MatchInfo.from_dict(json.loads(row[0])) if row else None

    def match_ids(self) -> list[str]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT match_id FROM matches ORDER BY created_at"
            ).fetchall()
        return [r[0] for r in rows]

    def append(self, event: BallEvent) -> None:
        self._check_sequence(event)
        with self._lock:
            self._conn.execute(
                "INSERT INTO ball_events (innings_id, sequence, payload) VALUES (?, ?, ?)",
                (event.innings_id, event.sequence, json.dumps(event.to_dict())),
            )
            self._conn.commit()

    def events(self, innings_id: str) -> list[BallEvent]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT payload FROM ball_events WHERE innings_id = ? ORDER BY sequence",
                (innings_id,),
            ).fetchall()
        return [BallEvent.from_dict(json.loads(r[0])) for r in rows]

    def last(self, innings_id: str) -> Optional[BallEvent]:
        with self._lock:
            row = self._conn.execute(
                "SELECT payload FROM ball_events WHERE innings_id = ? "
                "ORDER BY sequence DESC LIMIT 1",
                (innings_id,),
            ).fetchone()
        return BallEvent.from_dict(json.loads(row[0])) if row else None

    def pop_last(self, innings_id: str) -> Optional[BallEvent]:
        event = self.last(innings_id)
        if event is None:
            return None
        with self._lock:
            self._conn.execute(
                "DELETE FROM ball_events WHERE innings_id = ? AND sequence = ?",
                (innings_id, event.sequence),
            )
            self._conn.commit()
        return event

    def close(self) -> None:
        with self._lock:
            self._conn.close()
