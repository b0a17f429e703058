"""
Canonical store models.

Usage:
    from slatesync.models import Game, GameStatus

    final_games = db.query(Game).filter(Game.status == GameStatus.FINAL.value).all()
"""
from slatesync.models.unified import (
    Base,
    GameStatus,
    ValidationStatus,
    ValidationResult,
    Team,
    TeamAlias,
    Game,
    OddsSnapshot,
    PlayerProp,
    PropValidation,
    SyncMetadata,
    ApiUsageLog,
)

__all__ = [
    "Base",
    "GameStatus",
    "ValidationStatus",
    "ValidationResult",
    "Team",
    "TeamAlias",
    "Game",
    "OddsSnapshot",
    "PlayerProp",
    "PropValidation",
    "SyncMetadata",
    "ApiUsageLog",
]
