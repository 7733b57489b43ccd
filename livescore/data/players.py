"""
Player identity lookup.

Team and player management lives outside the scoring core; the core only
needs to ask which team a player id belongs to.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Optional

logger = logging.getLogger(__name__)


class PlayerDirectory(ABC):
    """Read-only player lookup provided by the team management service."""

    @abstractmethod
    def team_of(self, player_id: str) -> Optional[str]:
        """Team a player belongs to, or None if the id is unknown."""

    def squad(self, team: str) -> list[str]:
        """Player ids of a team, when the directory can list them."""
        return []


class StaticPlayerDirectory(PlayerDirectory):
    """Directory backed by a fixed squad listing, used by the demo and tests."""

    def __init__(self, squads: dict[str, list[str]]):
        self._team_by_player: dict[str, str] = {}
        for team, players in squads.items():
            for player in players:
                self._team_by_player[player] = team
        logger.debug("Player directory loaded: %d players", len(self._team_by_player))

    def team_of(self, player_id: str) -> Optional[str]:
        return self._team_by_player.get(player_id)

    def squad(self, team: str) -> list[str]:
        return [p for p, t in self._team_by_player.items() if t == team]
