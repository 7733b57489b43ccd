# api.py - HTTP / WebSocket adapter for the live scoring service
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from starlette.concurrency import run_in_threadpool

from livescore import __version__
from livescore.broadcast.broadcaster import Subscription
from livescore.config import MatchFormat, TossDecision
from livescore.data.ball_event import BallCandidate, DismissalType, ExtraType
from livescore.errors import ScoringError, StructuralViolation
from livescore.service import LiveScoringService

logger = logging.getLogger(__name__)

# Status code per error reason; anything else is a 422
STATUS_BY_REASON = {
    "NotFound": 404,
    "Busy": 409,
    "InvalidTransition": 409,
}


# -----------------------
# Request models
# -----------------------
class CreateMatchRequest(BaseModel):
    match_id: Optional[str] = Field(None, description="Generated when omitted")
    title: str = ""
    venue: str = ""


class TeamsRequest(BaseModel):
    team_a: str
    team_b: str
    format: MatchFormat = MatchFormat.T20
    overs_limit: Optional[int] = Field(None, gt=0, description="Required for custom formats")


class TossRequest(BaseModel):
    winner: str
    decision: TossDecision


class AbandonRequest(BaseModel):
    reason: str = ""


class BallRequest(BaseModel):
    innings_id: Optional[str] = Field(None, description="Defaults to the live innings")
    runs_off_bat: int = Field(0, ge=0)
    extra_type: str = Field("none", description="none, wide, no_ball, bye or leg_bye")
    extra_runs: Optional[int] = Field(None, ge=0, description="Defaults to the wide/no-ball run")
    is_wicket: bool = False
    dismissal_type: Optional[str] = None
    player_out: Optional[str] = None
    fielder: Optional[str] = None
    penalty_runs: int = Field(0, ge=0)
    short_run: bool = False
    dead_ball: bool = False
    strike_crossed: Optional[bool] = None
    striker: Optional[str] = None
    non_striker: Optional[str] = None
    bowler: Optional[str] = None

    def to_candidate(self) -> BallCandidate:
        try:
            extra_type = ExtraType.parse(self.extra_type)
            dismissal_type = DismissalType.parse(self.dismissal_type) if self.dismissal_type else None
        except ValueError as e:
            raise StructuralViolation(str(e))
        return BallCandidate(
            runs_off_bat=self.runs_off_bat,
            extra_type=extra_type,
            extra_runs=self.extra_runs,
            is_wicket=self.is_wicket,
            dismissal_type=dismissal_type,
            player_out=self.player_out,
            fielder=self.fielder,
            penalty_runs=self.penalty_runs,
            short_run=self.short_run,
            dead_ball=self.dead_ball,
            strike_crossed=self.strike_crossed,
            striker=self.striker,
            non_striker=self.non_striker,
            bowler=self.bowler,
        )


class PhraseRequest(BaseModel):
    phrase: str = Field(..., min_length=1)


class ConfirmRequest(BaseModel):
    choice: int = Field(0, ge=0, description="Index into the ranked candidates")


class UndoRequest(BaseModel):
    innings_id: Optional[str] = None


def create_app(service: LiveScoringService) -> FastAPI:
    app = FastAPI(
        title="Live Cricket Scoring API",
        version=__version__,
        description="Ball-by-ball scoring, corrections and live scoreboard updates",
    )
    app.state.service = service

    @app.exception_handler(ScoringError)
    async def scoring_error_handler(request, exc: ScoringError):
        return JSONResponse(status_code=STATUS_BY_REASON.get(exc.reason, 422), content=exc.to_dict())

    @app.get("/health")
    def health_check():
        return {"status": "ok", "time": datetime.now(timezone.utc).isoformat()}

    # -----------------------
    # Matches and lifecycle
    # -----------------------
    @app.get("/api/matches")
    def list_matches():
        return {"matches": service.match_ids()}

    @app.post("/api/matches", status_code=201)
    def create_match(req: CreateMatchRequest):
        return service.create_match(req.match_id, req.title, req.venue)

    @app.get("/api/matches/{match_id}")
    def get_match(match_id: str):
        return service.snapshot(match_id)

    @app.post("/api/matches/{match_id}/teams")
    def set_teams(match_id: str, req: TeamsRequest):
        return service.set_teams(match_id, req.team_a, req.team_b, req.format, req.overs_limit)

    @app.post("/api/matches/{match_id}/toss")
    def record_toss(match_id: str, req: TossRequest):
        return service.record_toss(match_id, req.winner, req.decision)

    @app.post("/api/matches/{match_id}/second-innings")
    def start_second_innings(match_id: str):
        return service.start_second_innings(match_id)

    @app.post("/api/matches/{match_id}/abandon")
    def abandon(match_id: str, req: AbandonRequest):
        return service.abandon(match_id, req.reason)

    @app.get("/api/matches/{match_id}/scorecard")
    def scorecard(match_id: str):
        return {"match_id": match_id, "scorecard": service.scorecard(match_id)}

    # -----------------------
    # Scoring
    # -----------------------
    @app.post("/api/matches/{match_id}/balls")
    def submit_ball(match_id: str, req: BallRequest):
        return service.submit_ball(match_id, req.to_candidate(), req.innings_id)

    @app.post("/api/matches/{match_id}/undo")
    def undo(match_id: str, req: Optional[UndoRequest] = None):
        return service.undo(match_id, req.innings_id if req else None)

    @app.post("/api/matches/{match_id}/phrases")
    def submit_phrase(match_id: str, req: PhraseRequest):
        return service.submit_phrase(match_id, req.phrase)

    @app.get("/api/matches/{match_id}/pending")
    def list_pending(match_id: str):
        return {"pending": service.pending(match_id)}

    @app.post("/api/matches/{match_id}/pending/{pending_id}/confirm")
    def confirm_pending(match_id: str, pending_id: str, req: Optional[ConfirmRequest] = None):
        return service.confirm_pending(match_id, pending_id, req.choice if req else 0)

    @app.delete("/api/matches/{match_id}/pending/{pending_id}", status_code=204)
    def cancel_pending(match_id: str, pending_id: str):
        service.cancel_pending(match_id, pending_id)

    # -----------------------
    # Live scoreboard
    # -----------------------
    @app.websocket("/ws")
    async def scoreboard_socket(websocket: WebSocket):
        await websocket.accept()
        loop = asyncio.get_running_loop()
        send_lock = asyncio.Lock()
        subscriptions: dict[str, Subscription] = {}
        pumps: dict[str, asyncio.Task] = {}

        async def send(message: dict) -> None:
            async with send_lock:
                await websocket.send_json(message)

        async def pump(sub: Subscription) -> None:
            # Woken from the scoring thread; holds no worker thread while idle
            ready = asyncio.Event()
            sub.set_waker(lambda: loop.call_soon_threadsafe(ready.set))
            try:
                while not sub.closed:
                    await ready.wait()
                    ready.clear()
                    for message in sub.drain():
                        await send(message.to_dict())
            except WebSocketDisconnect:
                logger.info("Viewer on %s went away; dropping subscription %d", sub.match_id, sub.id)
                sub.close()
            except Exception as e:
                logger.warning("Feed to viewer on %s failed: %s; dropping subscription %d", sub.match_id, e, sub.id)
                sub.close()

        def drop(match_id: str) -> None:
            sub = subscriptions.pop(match_id, None)
            if sub is not None:
                sub.set_waker(None)
                sub.close()
            task = pumps.pop(match_id, None)
            if task is not None:
                task.cancel()

        try:
            while True:
                data = await websocket.receive_json()
                action = data.get("action")
                match_id = str(data.get("match_id", ""))
                try:
                    if action == "subscribe":
                        drop(match_id)
                        sub = await run_in_threadpool(service.subscribe, match_id)
                        subscriptions[match_id] = sub
                        pumps[match_id] = asyncio.create_task(pump(sub))
                    elif action == "unsubscribe":
                        drop(match_id)
                        await send({"type": "unsubscribed", "match_id": match_id})
                    elif action == "resync" and match_id in subscriptions:
                        await run_in_threadpool(service.resync, subscriptions[match_id])
                    else:
                        await send({"type": "error", "reason": "BadRequest", "detail": f"unknown action {action!r}"})
                except ScoringError as e:
                    await send({"type": "error", "match_id": match_id, **e.to_dict()})
        except WebSocketDisconnect:
            logger.debug("Viewer disconnected (%d subscriptions)", len(subscriptions))
        finally:
            for match_id in list(subscriptions):
                drop(match_id)

    return app
