"""
Active-prop feed with budget-aware refresh.

Reads always come from the PropCache. A refresh pulls player-prop lines for
upcoming games from the OddsProvider; when the rate budget blocks the call,
the caller still gets the cached props, flagged ``is_fallback=True`` with
the reason, never an error.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from sqlalchemy.orm import Session

from slatesync.core.exceptions import BudgetExceeded, ProviderError, ResolutionFailure
from slatesync.core.logging import get_logger
from slatesync.models import PlayerProp
from slatesync.repositories import GameRepository
from slatesync.services.props.derivation import derive_props
from slatesync.services.props.prop_cache import PropCache
from slatesync.services.sync.adapters.base import OddsProvider, RawProp
from slatesync.utils.timezone import utcnow

logger = get_logger(__name__)

SOURCE_CACHE = "cache"
SOURCE_NONE = "none"


@dataclass
class PropFeed:
    props: List[PlayerProp] = field(default_factory=list)
    source: str = SOURCE_CACHE
    is_fallback: bool = False
    as_of: Optional[datetime] = None
    reason: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "props": [prop.to_dict() for prop in self.props],
            "source": self.source,
            "is_fallback": self.is_fallback,
            "as_of": self.as_of.isoformat() if self.as_of else None,
            "reason": self.reason,
        }


@dataclass
class RefreshResult:
    games: int = 0
    props: int = 0
    errors: int = 0
    budget_exceeded: bool = False
    reason: Optional[str] = None


class PropService:
    """Serves cached props and refreshes them from the odds provider."""

    def __init__(self, db: Session, odds_provider: Optional[OddsProvider] = None):
        self.db = db
        self.odds_provider = odds_provider
        self.cache = PropCache(db)
        self.games = GameRepository(db)

    def get_active_props(
        self,
        sport: Optional[str] = None,
        game_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> PropFeed:
        """Non-stale, non-expired props from the cache."""
        props = self.cache.query(sport=sport, game_id=game_id, now=now)
        return self._feed(props)

    def refresh_props(self, sport: str, now: Optional[datetime] = None, hours: int = 48) -> PropFeed:
        """
        Re-derive props for scheduled games in the next ``hours`` that have an
        odds event id, then return the active feed for ``sport``.

        If the rate budget runs out part-way, whatever was refreshed so far
        stays written and the feed is marked as a fallback.
        """
        result = self.refresh(sport, now=now, hours=hours)
        feed = self.get_active_props(sport=sport, now=now)
        if result.budget_exceeded:
            feed.is_fallback = True
            feed.reason = result.reason
        return feed

    def refresh(self, sport: str, now: Optional[datetime] = None, hours: int = 48) -> RefreshResult:
        now = now or utcnow()
        result = RefreshResult()
        if self.odds_provider is None:
            logger.warning("No odds provider configured, prop refresh skipped")
            return result

        for game in self.games.upcoming_with_odds_id(sport, now, hours=hours):
            try:
                records = self.odds_provider.fetch(sport, event_id=game.odds_external_id)
            except BudgetExceeded as e:
                logger.warning(f"Prop refresh for {sport} stopped: {e}")
                result.budget_exceeded = True
                result.reason = "budget_exceeded"
                break
            except ProviderError as e:
                logger.error(f"Prop fetch failed for {game.id}: {e}")
                result.errors += 1
                continue

            raw_props = [record for record in records if isinstance(record, RawProp)]
            if not raw_props:
                continue
            try:
                derived = derive_props(raw_props, game, fetched_at=now)
                result.props += self.cache.replace_for_game(game.id, derived, now=now)
                result.games += 1
            except ResolutionFailure as e:
                logger.warning(f"Skipping props for {game.id}: {e}")
                result.errors += 1

        logger.info(f"Prop refresh {sport}: {result.props} props across {result.games} games")
        return result

    @staticmethod
    def _feed(props: List[PlayerProp]) -> PropFeed:
        if not props:
            return PropFeed(props=[], source=SOURCE_NONE, as_of=None, reason="no_cached_props")
        as_of = max(prop.fetched_at for prop in props)
        return PropFeed(props=props, source=SOURCE_CACHE, as_of=as_of)
