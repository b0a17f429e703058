"""
Repository layer for data access.

Usage:
    from slatesync.repositories import GameRepository
    from slatesync.core.database import SessionLocal

    db = SessionLocal()
    game = GameRepository(db).find_by_external_id("nba", "odds", "abc123")
    db.close()
"""

from slatesync.repositories.base import BaseRepository
from slatesync.repositories.team_repository import TeamRepository
from slatesync.repositories.game_repository import GameRepository
from slatesync.repositories.validation_repository import ValidationRepository

__all__ = [
    "BaseRepository",
    "TeamRepository",
    "GameRepository",
    "ValidationRepository",
]
