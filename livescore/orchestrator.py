"""
Live Scoring Orchestrator.

Main entry point that wires the scoring core together:
Command Interpreter → Scoring Processor → Event Log → Stats → Broadcaster

Supports three modes:
1. Serve: HTTP/WebSocket API for scorers and scoreboards
2. Demo: Simulate a T20 match ball by ball through the service
3. Replay: Rebuild a stored match from its event log and print the scorecard

Usage:
    python -m livescore.orchestrator --serve
    python -m livescore.orchestrator --demo --export
    python -m livescore.orchestrator --replay MATCH_ID --db data/livescore.db
"""

from __future__ import annotations

import argparse
import logging
import random
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

from livescore.config import EngineConfig, MatchFormat, StorageConfig, TossDecision
from livescore.data.ball_event import BallCandidate, DismissalType, ExtraType
from livescore.data.players import StaticPlayerDirectory
from livescore.errors import ScoringError
from livescore.service import LiveScoringService
from livescore.state.match_state import MatchStatus

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("livescore.orchestrator")


def run_serve(config: EngineConfig) -> None:
    """Serve the scoring API with uvicorn."""
    import uvicorn

    from livescore.api import create_app

    logger.info("=" * 60)
    logger.info("LIVE SCORING - SERVE MODE")
    logger.info("=" * 60)
    logger.info("Event log: %s", config.storage.db_path or "in-memory")
    logger.info("Listening on %s:%d", config.host, config.port)

    service = LiveScoringService(config)
    try:
        uvicorn.run(create_app(service), host=config.host, port=config.port, log_level=config.log_level.lower())
    finally:
        service.close()


def _squad(team: str) -> list[str]:
    return [f"{team}_{i}" for i in range(1, 12)]


def _random_outcome(rng: random.Random, free_hit: bool, fielders: list[str]) -> BallCandidate:
    r = rng.random()
    if r < 0.35:
        return BallCandidate(runs_off_bat=0)
    if r < 0.65:
        return BallCandidate(runs_off_bat=1)
    if r < 0.73:
        return BallCandidate(runs_off_bat=2)
    if r < 0.75:
        return BallCandidate(runs_off_bat=3)
    if r < 0.85:
        return BallCandidate(runs_off_bat=4)
    if r < 0.89:
        return BallCandidate(runs_off_bat=6)
    if r < 0.92:
        return BallCandidate(extra_type=ExtraType.WIDE)
    if r < 0.94:
        return BallCandidate(extra_type=ExtraType.NO_BALL, runs_off_bat=rng.choice([0, 1, 4]))
    if r < 0.96:
        return BallCandidate(extra_type=ExtraType.LEG_BYE, extra_runs=1)
    if free_hit:
        return BallCandidate(runs_off_bat=0)
    kind = rng.choice([DismissalType.BOWLED, DismissalType.CAUGHT, DismissalType.CAUGHT, DismissalType.LBW])
    fielder = rng.choice(fielders) if kind == DismissalType.CAUGHT else None
    return BallCandidate(is_wicket=True, dismissal_type=kind, fielder=fielder)


def _play_innings(service: LiveScoringService, match_id: str, rng: random.Random) -> None:
    processor = service.session(match_id).processor
    innings = processor.state.current_innings_state
    batting = _squad(innings.batting_team)
    bowlers = _squad(innings.bowling_team)[6:]
    order = iter(batting)
    corrected = False

    while processor.state.status == MatchStatus.IN_PROGRESS:
        innings = processor.state.current_innings_state
        c = innings.cursor
        striker = c.striker or next(order)
        non_striker = c.non_striker or next(order)

        if c.over_in_progress and c.ball == 2 and c.over % 4 == 1:
            # Score a ball by voice now and then
            try:
                result = service.submit_phrase(match_id, rng.choice(["four", "single", "dot ball", "maximum"]))
                logger.info("  VOICE: %s", result["delta"]["commentary"])
                continue
            except ScoringError as e:
                logger.warning("  VOICE rejected: %s", e)

        candidate = _random_outcome(rng, c.free_hit, _squad(innings.bowling_team))
        candidate.striker = striker
        candidate.non_striker = non_striker
        if not c.over_in_progress:
            candidate.bowler = bowlers[c.over % len(bowlers)]
        delta = service.submit_ball(match_id, candidate)

        if not corrected and delta["event"]["over"] == 4 and delta["event"]["ball"] == 1:
            # Operator correction: take the ball back and record it again
            service.undo(match_id)
            delta = service.submit_ball(match_id, candidate)
            logger.info("  CORRECTED: %s", delta["commentary"])
            corrected = True

        if delta["event"]["dismissal"]:
            logger.info("  WICKET! %s", delta["commentary"])
        if delta["over_completed"] and delta["completed_over"] % 5 == 4:
            inn = delta["innings"]
            logger.info(
                "  Over %d: %d/%d (RR: %.2f)",
                delta["completed_over"] + 1, inn["runs"], inn["wickets"], inn["run_rate"],
            )


def run_demo(config: EngineConfig, seed: Optional[int] = None, export: bool = False) -> None:
    """Simulate a T20 match through the full scoring pipeline."""
    logger.info("=" * 60)
    logger.info("LIVE SCORING - DEMO MODE")
    logger.info("=" * 60)

    rng = random.Random(seed)
    teams = ("Thunder", "Strikers")
    directory = StaticPlayerDirectory({team: _squad(team) for team in teams})
    service = LiveScoringService(config, directory=directory)

    match_id = f"demo_{datetime.now():%Y%m%d%H%M%S}"
    service.create_match(match_id, title="Thunder v Strikers", venue="Demo Oval")
    viewer = service.subscribe(match_id)

    service.set_teams(match_id, *teams, match_format=MatchFormat.T20)
    service.record_toss(match_id, rng.choice(teams), rng.choice(list(TossDecision)))
    _play_innings(service, match_id, rng)

    if service.snapshot(match_id)["match"]["status"] == MatchStatus.INNINGS_BREAK.value:
        service.start_second_innings(match_id)
        _play_innings(service, match_id, rng)

    messages = viewer.drain()
    viewer.close()

    print("\n" + "=" * 60)
    print("DEMO RESULTS")
    print("=" * 60)
    print(service.scorecard(match_id))
    print()
    print(f"Scoreboard messages delivered: {len(messages)} (dropped: {viewer.dropped})")
    if export:
        _print_exports(service.export_scorecards(match_id))
    service.close()


def _print_exports(paths: list[Path]) -> None:
    print("\nExported scorecards:")
    for path in paths:
        print(f"  {path}")


def run_replay(config: EngineConfig, match_id: str, export: bool = False) -> None:
    """Rebuild a stored match purely from its event log."""
    if not config.storage.persistent:
        logger.error("Replay needs a stored event log: set LIVESCORE_DB_PATH or pass --db")
        sys.exit(1)

    logger.info("Replaying %s from %s", match_id, config.storage.db_path)
    service = LiveScoringService(config)
    try:
        snapshot = service.snapshot(match_id)
        print("\n" + service.scorecard(match_id))
        print(f"\nStatus: {snapshot['match']['status']}")
        if export:
            _print_exports(service.export_scorecards(match_id))
    except ScoringError as e:
        logger.error("Replay failed: %s", e)
        sys.exit(1)
    finally:
        service.close()


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Live Cricket Scoring Engine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m livescore.orchestrator --serve --port 8000
  python -m livescore.orchestrator --demo --seed 7 --export --data-dir out
  python -m livescore.orchestrator --replay demo_20260101120000 --db data/livescore.db
        """,
    )

    mode = parser.add_mutually_exclusive_group(required=True)
    mode.add_argument("--serve", action="store_true", help="Serve the HTTP/WebSocket API")
    mode.add_argument("--demo", action="store_true", help="Simulate a T20 match")
    mode.add_argument("--replay", type=str, metavar="MATCH_ID", help="Rebuild a stored match and print it")

    parser.add_argument("--db", type=str, help="SQLite event log path (overrides LIVESCORE_DB_PATH)")
    parser.add_argument("--host", type=str, help="Bind address for --serve")
    parser.add_argument("--port", type=int, help="Port for --serve")
    parser.add_argument("--export", action="store_true", help="Write CSV scorecards for --demo or --replay")
    parser.add_argument("--data-dir", type=str, help="Directory for exported scorecards (overrides LIVESCORE_DATA_DIR)")
    parser.add_argument("--seed", type=int, help="Random seed for --demo")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")

    args = parser.parse_args()

    config = EngineConfig.from_env()
    logging.getLogger().setLevel(logging.DEBUG if args.verbose else config.log_level.upper())
    if args.db:
        config.storage = StorageConfig(db_path=args.db)
    if args.host:
        config.host = args.host
    if args.port:
        config.port = args.port
    if args.data_dir:
        config.data_dir = Path(args.data_dir)

    if args.serve:
        run_serve(config)
    elif args.demo:
        run_demo(config, seed=args.seed, export=args.export)
    elif args.replay:
        run_replay(config, args.replay, export=args.export)


if __name__ == "__main__":
    main()
