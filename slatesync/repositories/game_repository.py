"""Game queries used by resolution, ingestion and validation."""
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from slatesync.models import Game, GameStatus
from slatesync.repositories.base import BaseRepository


class GameRepository(BaseRepository[Game]):

    def __init__(self, db: Session):
        super().__init__(Game, db)

    def find_by_external_id(self, sport: str, category: str, external_id: str) -> Optional[Game]:
        """Look up a game by one provider's id (category: schedule, odds, score)."""
        column = getattr(Game, Game.EXTERNAL_ID_COLUMNS[category])
        return self.where_first(Game.sport == sport, column == str(external_id))

    def find_by_any_external_id(self, external_id: str, sport: Optional[str] = None) -> Optional[Game]:
        """Look up a game whose external id map contains ``external_id`` under any provider."""
        value = str(external_id)
        criterion = [or_(
            Game.schedule_external_id == value,
            Game.odds_external_id == value,
            Game.score_external_id == value,
        )]
        if sport:
            criterion.append(Game.sport == sport)
        return self.where_first(*criterion)

    def in_window(self, sport: str, center: datetime, days: int) -> List[Game]:
        """Games whose start instant lies within +/- ``days`` of ``center``."""
        delta = timedelta(days=days)
        return self.in_date_range("start_time", center - delta, center + delta, Game.sport == sport)

    def unfinished_between(self, sport: str, start: datetime, end: datetime) -> List[Game]:
        """Games in [start, end] that have not reached a final status."""
        return self.in_date_range(
            "start_time", start, end,
            Game.sport == sport,
            Game.status != GameStatus.FINAL.value,
        )

    def upcoming_with_odds_id(self, sport: str, now: datetime, hours: int = 48) -> List[Game]:
        """Scheduled games starting within ``hours`` that carry an odds event id."""
        return self.in_date_range(
            "start_time", now, now + timedelta(hours=hours),
            Game.sport == sport,
            Game.status == GameStatus.SCHEDULED.value,
            Game.odds_external_id.isnot(None),
        )
