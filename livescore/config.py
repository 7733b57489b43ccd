"""
Configuration management for the live scoring core.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


class MatchFormat(Enum):
    T10 = "t10"
    T20 = "t20"
    ODI = "odi"
    CUSTOM = "custom"


class TossDecision(Enum):
    BAT = "bat"
    BOWL = "bowl"


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    try:
        return int(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class ScoringRules:
    """Playing conditions applied by the innings engine."""
    wide_runs: int = 1  # Automatic run awarded for a wide
    no_ball_runs: int = 1  # Automatic run awarded for a no-ball
    free_hit_on_no_ball: bool = True
    # Whether a no-ball that also went for a boundary still earns a free hit
    free_hit_on_no_ball_boundary: bool = True
    wicket_maidens: bool = False  # Count an over with a wicket as a maiden
    max_overs_per_bowler: Optional[int] = None  # None = overs_limit // 5
    enforce_bowler_quota: bool = True
    max_wickets: int = 10

    def bowler_quota(self, overs_limit: int) -> Optional[int]:
        if not self.enforce_bowler_quota:
            return None
        if self.max_overs_per_bowler is not None:
            return self.max_overs_per_bowler
        return max(1, overs_limit // 5)


@dataclass(frozen=True)
class BroadcastConfig:
    """Viewer fan-out settings."""
    subscriber_buffer: int = 256  # Deltas held per subscriber before dropping


@dataclass(frozen=True)
class PendingConfig:
    """Ambiguous-command confirmation window."""
    ttl_seconds: int = 120


@dataclass(frozen=True)
class StorageConfig:
    """Event log persistence."""
    db_path: str = ""  # Empty = in-memory log

    @property
    def persistent(self) -> bool:
        return bool(self.db_path)


@dataclass
class EngineConfig:
    """Top-level scoring configuration."""
    rules: ScoringRules = field(default_factory=ScoringRules)
    broadcast: BroadcastConfig = field(default_factory=BroadcastConfig)
    pending: PendingConfig = field(default_factory=PendingConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)

    log_level: str = "INFO"
    host: str = "127.0.0.1"
    port: int = 8000
    data_dir: Path = field(default_factory=lambda: Path("data"))

    @classmethod
    def from_env(cls) -> "EngineConfig":
        """Load configuration from environment variables."""
        return cls(
            rules=ScoringRules(
                wide_runs=_env_int("LIVESCORE_WIDE_RUNS", 1),
                no_ball_runs=_env_int("LIVESCORE_NO_BALL_RUNS", 1),
                free_hit_on_no_ball=_env_bool("LIVESCORE_FREE_HIT", True),
                free_hit_on_no_ball_boundary=_env_bool(
                    "LIVESCORE_FREE_HIT_ON_NO_BALL_BOUNDARY", True
                ),
                wicket_maidens=_env_bool("LIVESCORE_WICKET_MAIDENS", False),
            ),
            broadcast=BroadcastConfig(
                subscriber_buffer=_env_int("LIVESCORE_SUBSCRIBER_BUFFER", 256),
            ),
            pending=PendingConfig(
                ttl_seconds=_env_int("LIVESCORE_PENDING_TTL_SECONDS", 120),
            ),
            storage=StorageConfig(
                db_path=os.getenv("LIVESCORE_DB_PATH", ""),
            ),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            host=os.getenv("LIVESCORE_HOST", "127.0.0.1"),
            port=_env_int("LIVESCORE_PORT", 8000),
            data_dir=Path(os.getenv("LIVESCORE_DATA_DIR", "data")),
        )


# Format-specific overs limits
FORMAT_OVERS: dict[MatchFormat, Optional[int]] = {
    MatchFormat.T10: 10,
    MatchFormat.T20: 20,
    MatchFormat.ODI: 50,
    MatchFormat.CUSTOM: None,  # Set explicitly at match setup
}

BALLS_PER_OVER = 6
