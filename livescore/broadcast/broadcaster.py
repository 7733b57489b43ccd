"""
Real-time Broadcaster.

Fans committed score deltas out to every viewer subscribed to a match.
Each match has its own message sequence; a new subscriber first receives
a snapshot carrying the current sequence (the low-water mark) and then
every later delta in order.

Publishing never blocks the scoring path: each subscriber has a bounded
buffer, and a subscriber whose buffer is full simply misses messages. It
notices the gap in sequence numbers and asks for a fresh snapshot.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import dataclass
from itertools import count
from typing import Callable, Iterator, Optional

logger = logging.getLogger(__name__)

SNAPSHOT = "snapshot"
DELTA = "delta"


@dataclass(frozen=True)
class BroadcastMessage:
    type: str  # "snapshot" or "delta"
    match_id: str
    sequence: int
    payload: dict

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "match_id": self.match_id,
            "sequence": self.sequence,
            "payload": self.payload,
        }


class Subscription:
    """One viewer's ordered stream for one match."""

    _ids = count(1)

    def __init__(self, broadcaster: "Broadcaster", match_id: str, maxlen: int):
        self.id = next(self._ids)
        self.match_id = match_id
        self.dropped = 0
        self._broadcaster = broadcaster
        self._maxlen = maxlen
        self._buffer: deque[BroadcastMessage] = deque()
        self._cond = threading.Condition()
        self._closed = False
        self._waker: Optional[Callable[[], None]] = None

    @property
    def closed(self) -> bool:
        return self._closed

    def set_waker(self, waker: Optional[Callable[[], None]]) -> None:
        """Register a non-blocking callback run when a message is queued or the stream closes.

        Lets an event loop wait on its own primitive instead of parking a
        thread in ``get``. Called immediately if messages are already queued.
        """
        with self._cond:
            self._waker = waker
            pending = bool(self._buffer) or self._closed
        if waker is not None and pending:
            waker()

    def _wake(self) -> None:
        waker = self._waker
        if waker is None:
            return
        try:
            waker()
        except RuntimeError as e:
            # The viewer's event loop is gone; it will never read again
            logger.warning("Subscriber %d on %s cannot be woken: %s", self.id, self.match_id, e)
            self._waker = None

    def offer(self, message: BroadcastMessage) -> bool:
        """Queue a message without blocking; False if it had to be dropped."""
        with self._cond:
            if self._closed:
                return False
            if len(self._buffer) >= self._maxlen:
                self.dropped += 1
                return False
            self._buffer.append(message)
            self._cond.notify()
        self._wake()
        return True

    def get(self, timeout: Optional[float] = None) -> Optional[BroadcastMessage]:
        """Next message, or None on timeout or once closed and drained."""
        with self._cond:
            if not self._buffer and not self._closed:
                self._cond.wait(timeout)
            if self._buffer:
                return self._buffer.popleft()
            return None

    def drain(self) -> list[BroadcastMessage]:
        with self._cond:
            messages = list(self._buffer)
            self._buffer.clear()
            return messages

    def resync(self, snapshot: dict, sequence: int) -> None:
        """Replace whatever is buffered with a fresh snapshot."""
        with self._cond:
            self._buffer.clear()
            self._buffer.append(BroadcastMessage(SNAPSHOT, self.match_id, sequence, snapshot))
            self._cond.notify()
        self._wake()

    def close(self) -> None:
        with self._cond:
            self._closed = True
            self._cond.notify_all()
        self._broadcaster.unsubscribe(self)
        self._wake()

    def __iter__(self) -> Iterator[BroadcastMessage]:
        while True:
            message = self.get()
            if message is None:
                return
            yield message


class Broadcaster:
    """Per-match fan-out of ordered messages.

    ``publish`` is called by the scoring path while it still holds the
    match's write gate, which is what makes sequence order equal commit
    order; the call itself only appends to in-memory buffers.
    """

    def __init__(self, subscriber_buffer: int = 256):
        self._subscriber_buffer = subscriber_buffer
        self._lock = threading.Lock()
        self._subscribers: dict[str, list[Subscription]] = {}
        self._sequence: dict[str, int] = {}

    def sequence(self, match_id: str) -> int:
        with self._lock:
            return self._sequence.get(match_id, 0)

    def subscribe(self, match_id: str, snapshot: dict) -> Subscription:
        """Register a viewer; its first message is ``snapshot`` at the current sequence.

        The caller must hold the match's state lock so that no delta is
        published between taking the snapshot and registering.
        """
        sub = Subscription(self, match_id, self._subscriber_buffer)
        with self._lock:
            seq = self._sequence.get(match_id, 0)
            self._subscribers.setdefault(match_id, []).append(sub)
        sub.offer(BroadcastMessage(SNAPSHOT, match_id, seq, snapshot))
        logger.debug("Subscriber %d joined %s at sequence %d", sub.id, match_id, seq)
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        with self._lock:
            subs = self._subscribers.get(sub.match_id, [])
            if sub in subs:
                subs.remove(sub)
                logger.debug("Subscriber %d left %s", sub.id, sub.match_id)

    def subscriber_count(self, match_id: str) -> int:
        with self._lock:
            return len(self._subscribers.get(match_id, []))

    def publish(self, match_id: str, payload: dict) -> BroadcastMessage:
        """Tag a delta with the match's next sequence number and fan it out."""
        with self._lock:
            seq = self._sequence.get(match_id, 0) + 1
            self._sequence[match_id] = seq
            subs = list(self._subscribers.get(match_id, []))
        message = BroadcastMessage(DELTA, match_id, seq, payload)
        for sub in subs:
            if not sub.offer(message):
                logger.warning(
                    "Subscriber %d on %s is full, dropped delta %d", sub.id, match_id, seq
                )
        return message


class ScoreboardMirror:
    """Viewer-side copy of a match built from broadcast messages.

    Applies a snapshot, then only strictly consecutive deltas. Any gap sets
    ``needs_snapshot`` and further deltas are ignored until a new snapshot
    arrives; there is no partial repair.
    """

    def __init__(self):
        self.state: Optional[dict] = None
        self.sequence = 0
        self.needs_snapshot = True
        self.deltas_applied = 0

    def receive(self, message: BroadcastMessage | dict) -> bool:
        """Apply one message; returns False if it was ignored."""
        if isinstance(message, dict):
            message = BroadcastMessage(
                type=message["type"],
                match_id=message.get("match_id", ""),
                sequence=int(message["sequence"]),
                payload=message["payload"],
            )
        if message.type == SNAPSHOT:
            self.state = message.payload
            self.sequence = message.sequence
            self.needs_snapshot = False
            return True

        if self.needs_snapshot:
            return False
        if message.sequence <= self.sequence:
            return False  # Already covered by the snapshot
        if message.sequence != self.sequence + 1:
            logger.warning(
                "Gap on %s: at %d, got %d; requesting snapshot",
                message.match_id, self.sequence, message.sequence,
            )
            self.needs_snapshot = True
            return False

        self._apply(message.payload)
        self.sequence = message.sequence
        self.deltas_applied += 1
        return True

    def _apply(self, delta: dict) -> None:
        # Undo and lifecycle messages carry the whole state
        if delta.get("snapshot") is not None:
            self.state = delta["snapshot"]
            return

        state = self.state
        state["match"]["status"] = delta["match_status"]
        state["match"]["result"] = delta.get("result")
        innings = delta["innings"]
        for existing in state["innings"]:
            if existing["innings_id"] == innings["innings_id"]:
                stats = existing["stats"]
                existing.update(innings)
                existing["stats"] = stats
                break
        else:
            stats = {"innings_id": innings["innings_id"], "batting": [], "bowling": [], "fielding": []}
            state["innings"].append({**innings, "stats": stats})
            state["match"]["current_innings"] = innings["number"]

        for role, rows in delta.get("players", {}).items():
            table = stats.setdefault(role, [])
            for row in rows:
                for i, existing in enumerate(table):
                    if existing["player"] == row["player"]:
                        table[i] = row
                        break
                else:
                    table.append(row)
        stats["last_sequence"] = innings["last_sequence"]

    @property
    def current_innings(self) -> Optional[dict]:
        if not self.state or not self.state["innings"]:
            return None
        return self.state["innings"][-1]
