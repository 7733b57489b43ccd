"""
Live scoring service.

Owns the registry of live matches. Each match gets a ``MatchSession``
holding its processor, a FIFO gate that serializes every write for that
match in arrival order, and the book of pending (ambiguous) phrase
commands awaiting confirmation. Matches share nothing but the event log
store and the broadcaster, so different matches score fully in parallel.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterator, Optional

from livescore.broadcast.broadcaster import Broadcaster, Subscription
from livescore.config import EngineConfig, MatchFormat, TossDecision
from livescore.data.ball_event import BallCandidate, MatchInfo
from livescore.data.event_log import EventLog, InMemoryEventLog, SqliteEventLog
from livescore.data.players import PlayerDirectory
from livescore.errors import (
    Ambiguous,
    Busy,
    InvalidTransition,
    NotFound,
    ScoringError,
    Unrecognized,
)
from livescore.scoring.processor import ScoringProcessor
from livescore.state.innings import InningsEngine, InningsState
from livescore.stats.scorecard import export_csv, summary_str
from livescore.voice.interpreter import (
    CommandInterpreter,
    Intent,
    Interpretation,
    InterpretationKind,
    OverContext,
)

logger = logging.getLogger(__name__)


@dataclass
class PendingCommand:
    """An interpreted phrase waiting for the operator to pick a candidate."""

    pending_id: str
    match_id: str
    innings_id: str
    phrase: str
    candidates: list[BallCandidate]
    sequence: int  # Innings log position the phrase was interpreted against
    expires_at: float
    detail: str = ""
    created_at: float = field(default_factory=time.time)

    def is_stale(self, innings: Optional[InningsState], now: float) -> bool:
        if now >= self.expires_at:
            return True
        if innings is None or innings.innings_id != self.innings_id:
            return True
        return innings.last_sequence != self.sequence

    def to_dict(self) -> dict:
        return {
            "pending_id": self.pending_id,
            "match_id": self.match_id,
            "innings_id": self.innings_id,
            "phrase": self.phrase,
            "detail": self.detail,
            "sequence": self.sequence,
            "candidates": [c.to_dict() for c in self.candidates],
        }


class MatchSession:
    """Per-match container: processor, write gate and pending commands."""

    def __init__(self, processor: ScoringProcessor):
        self.processor = processor
        self.previous_phrase = ""
        self.pending: dict[str, PendingCommand] = {}
        # Guards reads of the projections against a write in progress
        self.state_lock = threading.RLock()
        self._gate = threading.Condition()
        self._next_ticket = 0
        self._serving = 0

    @property
    def match_id(self) -> str:
        return self.processor.match_id

    @property
    def waiting(self) -> int:
        """Commands holding or queued for the gate."""
        with self._gate:
            return self._next_ticket - self._serving

    @contextmanager
    def turn(self) -> Iterator[None]:
        """Wait for this command's turn; commands run strictly in arrival order."""
        with self._gate:
            ticket = self._next_ticket
            self._next_ticket += 1
            while ticket != self._serving:
                self._gate.wait()
        try:
            yield
        finally:
            self._release()

    @contextmanager
    def exclusive_turn(self, command: str) -> Iterator[None]:
        """Take the gate only if it is idle; otherwise raise ``Busy``."""
        with self._gate:
            if self._next_ticket != self._serving:
                raise Busy(
                    f"{command} rejected: {self._next_ticket - self._serving} "
                    f"command(s) in flight for {self.match_id}"
                )
            self._next_ticket += 1
        try:
            yield
        finally:
            self._release()

    def _release(self) -> None:
        with self._gate:
            self._serving += 1
            self._gate.notify_all()

    def prune_pending(self, now: float) -> None:
        innings = self.processor.state.current_innings_state
        for pending_id, pending in list(self.pending.items()):
            if pending.is_stale(innings, now):
                del self.pending[pending_id]
                logger.debug("%s: pending %s expired", self.match_id, pending_id)


class LiveScoringService:
    """Entry point for operators (commands) and viewers (subscriptions)."""

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        log: Optional[EventLog] = None,
        directory: Optional[PlayerDirectory] = None,
        broadcaster: Optional[Broadcaster] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or EngineConfig()
        if log is None:
            storage = self.config.storage
            log = SqliteEventLog(storage.db_path) if storage.persistent else InMemoryEventLog()
        self.log = log
        self.directory = directory
        self.engine = InningsEngine(self.config.rules)
        self.interpreter = CommandInterpreter(self.config.rules)
        self.broadcaster = broadcaster or Broadcaster(self.config.broadcast.subscriber_buffer)
        self._clock = clock
        self._sessions: dict[str, MatchSession] = {}
        self._registry_lock = threading.Lock()

    # ── Registry ─────────────────────────────────────────────────────

    def session(self, match_id: str) -> MatchSession:
        """Live session for a match, restoring it from the event log if needed."""
        with self._registry_lock:
            session = self._sessions.get(match_id)
            if session is not None:
                return session
            info = self.log.load_match(match_id)
            if info is None:
                raise NotFound(f"no match {match_id}")
            processor = ScoringProcessor.restore(info, self.log, self.engine, self.directory)
            session = MatchSession(processor)
            self._sessions[match_id] = session
            return session

    def match_ids(self) -> list[str]:
        with self._registry_lock:
            live = list(self._sessions)
        return live + [m for m in self.log.match_ids() if m not in live]

    def create_match(self, match_id: Optional[str] = None, title: str = "", venue: str = "") -> dict:
        match_id = match_id or uuid.uuid4().hex[:12]
        with self._registry_lock:
            if match_id in self._sessions or self.log.load_match(match_id) is not None:
                raise InvalidTransition("existing", "create_match", f"{match_id} already exists")
            info = MatchInfo(match_id=match_id, title=title, venue=venue)
            processor = ScoringProcessor(info, self.log, self.engine, self.directory)
            self.log.save_match(info)
            session = MatchSession(processor)
            self._sessions[match_id] = session
        logger.info("Created match %s %s", match_id, title)
        return session.processor.snapshot()

    # ── Lifecycle ────────────────────────────────────────────────────

    def set_teams(
        self,
        match_id: str,
        team_a: str,
        team_b: str,
        match_format: MatchFormat = MatchFormat.T20,
        overs_limit: Optional[int] = None,
    ) -> dict:
        return self._lifecycle(
            match_id, "set_teams",
            lambda machine: machine.set_teams(team_a, team_b, match_format, overs_limit),
        )

    def record_toss(self, match_id: str, winner: str, decision: TossDecision) -> dict:
        return self._lifecycle(
            match_id, "record_toss", lambda machine: machine.record_toss(winner, decision)
        )

    def start_second_innings(self, match_id: str) -> dict:
        return self._lifecycle(
            match_id, "start_second_innings", lambda machine: machine.start_second_innings()
        )

    def abandon(self, match_id: str, reason: str = "") -> dict:
        return self._lifecycle(match_id, "abandon", lambda machine: machine.abandon(reason))

    def _lifecycle(self, match_id: str, transition: str, apply) -> dict:
        session = self.session(match_id)
        with session.turn(), session.state_lock:
            processor = session.processor
            try:
                apply(processor.machine)
            except ScoringError as e:
                logger.warning("%s: %s rejected: %s", match_id, transition, e)
                raise
            self.log.save_match(processor.state.info)
            snapshot = processor.snapshot()
            session.prune_pending(self._clock())
            self.broadcaster.publish(match_id, {
                "kind": "lifecycle",
                "transition": transition,
                "match_status": processor.state.status.value,
                "snapshot": snapshot,
            })
        return snapshot

    # ── Scoring ──────────────────────────────────────────────────────

    def submit_ball(
        self, match_id: str, candidate: BallCandidate, innings_id: Optional[str] = None
    ) -> dict:
        """Validate and commit one delivery; returns the published delta."""
        session = self.session(match_id)
        with session.turn(), session.state_lock:
            return self._apply(session, candidate, innings_id)

    def _apply(
        self, session: MatchSession, candidate: BallCandidate, innings_id: Optional[str]
    ) -> dict:
        processor = session.processor
        try:
            innings_id = innings_id or processor.current_innings_id()
            applied = processor.apply(innings_id, candidate)
        except ScoringError as e:
            logger.warning("%s: ball rejected (%s): %s", session.match_id, e.reason, e)
            raise
        delta = applied.delta.to_dict()
        session.prune_pending(self._clock())
        self.broadcaster.publish(session.match_id, delta)
        return delta

    def undo(self, match_id: str, innings_id: Optional[str] = None) -> dict:
        """Remove the most recent delivery of the live innings."""
        session = self.session(match_id)
        with session.exclusive_turn("undo"), session.state_lock:
            return self._undo(session, innings_id)

    def _undo(self, session: MatchSession, innings_id: Optional[str]) -> dict:
        processor = session.processor
        try:
            innings_id = innings_id or processor.current_innings_id()
            result = processor.undo(innings_id)
        except ScoringError as e:
            logger.warning("%s: undo rejected (%s): %s", session.match_id, e.reason, e)
            raise
        session.prune_pending(self._clock())
        session.previous_phrase = ""
        self.broadcaster.publish(
            session.match_id, {**result.delta.to_dict(), "snapshot": result.snapshot}
        )
        return {"removed_event": result.removed_event.to_dict(), "snapshot": result.snapshot}

    # ── Phrases ──────────────────────────────────────────────────────

    def context(self, session: MatchSession) -> OverContext:
        innings = session.processor.state.current_innings_state
        if innings is None:
            return OverContext(previous_phrase=session.previous_phrase)
        c = innings.cursor
        fielders = []
        if self.directory is not None:
            fielders = self.directory.squad(innings.bowling_team)
        return OverContext(
            over=c.over,
            ball=c.next_ball,
            free_hit=c.free_hit,
            previous_phrase=session.previous_phrase,
            striker=c.striker,
            non_striker=c.non_striker,
            bowler=c.bowler or None,
            fielders=fielders,
            require_fielder=bool(fielders),
        )

    def interpret(self, match_id: str, phrase: str) -> Interpretation:
        session = self.session(match_id)
        with session.state_lock:
            return self.interpreter.interpret(phrase, self.context(session))

    def submit_phrase(self, match_id: str, phrase: str) -> dict:
        """Interpret a phrase; apply it if unambiguous, else park it for confirmation.

        Raises ``Unrecognized``, or ``Ambiguous`` carrying the pending id
        and ranked candidates. The phrase is read against the innings as it
        stands when its turn comes, so a ball committed meanwhile by another
        operator cannot change which batter it names.
        """
        session = self.session(match_id)
        with session.turn(), session.state_lock:
            interpretation = self.interpreter.interpret(phrase, self.context(session))
            logger.info(
                "%s: phrase %r -> %s", match_id, phrase, interpretation.kind.value
            )

            if interpretation.kind == InterpretationKind.UNRECOGNIZED:
                raise Unrecognized(f"{phrase!r}: {interpretation.detail}")

            if interpretation.intent == Intent.UNDO:
                undone = self._undo(session, None)
                pending = None
                if interpretation.candidates:
                    pending = self._park(session, interpretation)
                return {
                    "status": "undone",
                    "interpretation": interpretation.to_dict(),
                    "undo": undone,
                    "pending": pending.to_dict() if pending else None,
                }

            if interpretation.kind == InterpretationKind.AMBIGUOUS:
                pending = self._park(session, interpretation)
                raise Ambiguous(
                    interpretation.detail or f"{phrase!r} needs confirmation",
                    pending_id=pending.pending_id,
                    candidates=[c.to_dict() for c in pending.candidates],
                )

            delta = self._apply(session, interpretation.candidate, None)
            session.previous_phrase = phrase
        return {
            "status": "accepted",
            "interpretation": interpretation.to_dict(),
            "delta": delta,
        }

    def _park(self, session: MatchSession, interpretation: Interpretation) -> PendingCommand:
        with session.state_lock:
            processor = session.processor
            innings = processor.state.current_innings_state
            if innings is None:
                raise InvalidTransition(processor.state.status.value, "score", "no innings has started")
            pending = PendingCommand(
                pending_id=uuid.uuid4().hex[:8],
                match_id=session.match_id,
                innings_id=innings.innings_id,
                phrase=interpretation.phrase,
                candidates=interpretation.candidates,
                sequence=innings.last_sequence,
                expires_at=self._clock() + self.config.pending.ttl_seconds,
                detail=interpretation.detail,
            )
            session.prune_pending(self._clock())
            session.pending[pending.pending_id] = pending
        logger.info(
            "%s: parked %r as %s with %d candidate(s)",
            session.match_id, interpretation.phrase, pending.pending_id, len(pending.candidates),
        )
        return pending

    def pending(self, match_id: str) -> list[dict]:
        session = self.session(match_id)
        with session.state_lock:
            session.prune_pending(self._clock())
            return [p.to_dict() for p in session.pending.values()]

    def confirm_pending(self, match_id: str, pending_id: str, choice: int = 0) -> dict:
        """Commit one candidate of a parked phrase."""
        session = self.session(match_id)
        with session.turn(), session.state_lock:
            session.prune_pending(self._clock())
            pending = session.pending.pop(pending_id, None)
            if pending is None:
                raise NotFound(f"pending command {pending_id} is unknown or expired")
            if not 0 <= choice < len(pending.candidates):
                session.pending[pending_id] = pending
                raise NotFound(f"pending command {pending_id} has no candidate {choice}")
            delta = self._apply(session, pending.candidates[choice], pending.innings_id)
            session.previous_phrase = pending.phrase
        logger.info("%s: confirmed %s candidate %d", match_id, pending_id, choice)
        return delta

    def cancel_pending(self, match_id: str, pending_id: str) -> None:
        session = self.session(match_id)
        with session.state_lock:
            if session.pending.pop(pending_id, None) is None:
                raise NotFound(f"pending command {pending_id} is unknown or expired")

    # ── Viewers ──────────────────────────────────────────────────────

    def snapshot(self, match_id: str) -> dict:
        session = self.session(match_id)
        with session.state_lock:
            return session.processor.snapshot()

    def subscribe(self, match_id: str) -> Subscription:
        session = self.session(match_id)
        with session.state_lock:
            return self.broadcaster.subscribe(match_id, session.processor.snapshot())

    def resync(self, subscription: Subscription) -> None:
        session = self.session(subscription.match_id)
        with session.state_lock:
            subscription.resync(
                session.processor.snapshot(), self.broadcaster.sequence(subscription.match_id)
            )

    def scorecard(self, match_id: str) -> str:
        session = self.session(match_id)
        with session.state_lock:
            processor = session.processor
            cards = [
                summary_str(innings, processor.aggregator.stats(innings.innings_id))
                for _, innings in sorted(processor.state.innings.items())
            ]
            result = processor.state.result
        if result is not None:
            cards.append(result.summary)
        return "\n\n".join(cards)

    def export_scorecards(self, match_id: str, out_dir: Optional[Path] = None) -> list[Path]:
        """Write each innings' batting and bowling cards as CSV (default ``data_dir/<match_id>``)."""
        session = self.session(match_id)
        out_dir = out_dir or self.config.data_dir / match_id
        paths: list[Path] = []
        with session.state_lock:
            processor = session.processor
            for _, innings in sorted(processor.state.innings.items()):
                paths.extend(export_csv(processor.aggregator.stats(innings.innings_id), out_dir))
        logger.info("%s: exported %d scorecard file(s) to %s", match_id, len(paths), out_dir)
        return paths

    def close(self) -> None:
        if isinstance(self.log, SqliteEventLog):
            self.log.close()
