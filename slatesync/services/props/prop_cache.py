"""
Materialized cache of player-prop predictions.

Each row is keyed by a fingerprint of (game, player, prop type, pick,
threshold, book). Writing the same fingerprint again refreshes the existing
row instead of adding a second one, so there is never more than one live
entry per prediction slot.

An entry expires at the earlier of:
- fetched_at + PROP_CACHE_TTL_MINUTES
- game start - PROP_EXPIRE_BEFORE_GAME_MINUTES

sweep() flags expired entries, and entries whose game is no longer
scheduled, as stale. purge() deletes stale entries after a grace period.
Both are set-based UPDATE/DELETE statements and can run while readers query.
"""
import hashlib
from datetime import datetime, timedelta
from typing import Iterable, List, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from slatesync.core.config import settings
from slatesync.core.logging import get_logger
from slatesync.models import Game, GameStatus, PlayerProp
from slatesync.services.props.derivation import DerivedProp
from slatesync.services.sync.utils.name_normalizer import normalize
from slatesync.utils.timezone import ensure_utc, utcnow

logger = get_logger(__name__)

_VALUE_FIELDS = (
    "sport", "game_id", "player_name", "team", "prop_type", "pick", "threshold",
    "odds", "book", "projection", "probability", "edge", "confidence", "quality_score",
    "home_team", "away_team",
)


def prop_fingerprint(game_id: str, player_name: str, prop_type: str, pick: str, threshold: float, book: str) -> str:
    """Stable 32-hex-char key for one prediction slot."""
    parts = [
        game_id,
        normalize(player_name),
        prop_type.lower(),
        pick.lower(),
        f"{float(threshold):g}",
        book.lower(),
    ]
    return hashlib.sha256("|".join(parts).encode("utf-8")).hexdigest()[:32]


def compute_expiry(fetched_at: datetime, game_time: datetime) -> datetime:
    by_ttl = ensure_utc(fetched_at) + timedelta(minutes=settings.PROP_CACHE_TTL_MINUTES)
    before_game = ensure_utc(game_time) - timedelta(minutes=settings.PROP_EXPIRE_BEFORE_GAME_MINUTES)
    return min(by_ttl, before_game)


class PropCache:
    """TTL-bound store of derived props."""

    def __init__(self, db: Session):
        self.db = db

    # ========================================================================
    # Writes
    # ========================================================================

    def put(self, prop: DerivedProp) -> PlayerProp:
        """Insert or replace the entry for ``prop``'s fingerprint."""
        fingerprint = prop_fingerprint(
            prop.game_id, prop.player_name, prop.prop_type, prop.pick, prop.threshold, prop.book
        )
        existing = self.db.query(PlayerProp).filter(PlayerProp.fingerprint == fingerprint).first()
        if existing is None:
            entry = PlayerProp(fingerprint=fingerprint)
            self._apply(entry, prop)
            self.db.add(entry)
            try:
                self.db.commit()
                return entry
            except IntegrityError:
                # Another run inserted the same fingerprint first
                self.db.rollback()
                existing = self.db.query(PlayerProp).filter(PlayerProp.fingerprint == fingerprint).one()

        self._apply(existing, prop)
        self.db.commit()
        return existing

    def put_many(self, props: Iterable[DerivedProp]) -> int:
        count = 0
        for prop in props:
            self.put(prop)
            count += 1
        return count

    def replace_for_game(self, game_id: str, props: List[DerivedProp], now: Optional[datetime] = None) -> int:
        """
        Write a fresh set of props for one game and mark every other live
        entry for that game as stale (superseded).
        """
        now = now or utcnow()
        fingerprints = set()
        for prop in props:
            fingerprints.add(self.put(prop).fingerprint)

        query = self.db.query(PlayerProp).filter(
            PlayerProp.game_id == game_id,
            PlayerProp.is_stale.is_(False),
        )
        if fingerprints:
            query = query.filter(~PlayerProp.fingerprint.in_(fingerprints))
        superseded = query.update(
            {PlayerProp.is_stale: True, PlayerProp.stale_at: now}, synchronize_session=False
        )
        self.db.commit()
        if superseded:
            logger.info(f"Superseded {superseded} cached props for {game_id}")
        return len(fingerprints)

    @staticmethod
    def _apply(entry: PlayerProp, prop: DerivedProp) -> None:
        for field in _VALUE_FIELDS:
            setattr(entry, field, getattr(prop, field))
        entry.game_time = ensure_utc(prop.game_time)
        entry.fetched_at = ensure_utc(prop.fetched_at)
        entry.expires_at = compute_expiry(prop.fetched_at, prop.game_time)
        entry.is_stale = False
        entry.stale_at = None

    # ========================================================================
    # Reads
    # ========================================================================

    def query(
        self,
        sport: Optional[str] = None,
        game_id: Optional[str] = None,
        exclude_stale: bool = True,
        exclude_expired: bool = True,
        now: Optional[datetime] = None,
    ) -> List[PlayerProp]:
        """
        Cached props, best quality first.

        ``exclude_expired`` filters on expires_at directly, so an entry past
        its expiry is hidden even if no sweep has flagged it yet.
        """
        now = now or utcnow()
        query = self.db.query(PlayerProp)
        if sport:
            query = query.filter(PlayerProp.sport == sport)
        if game_id:
            query = query.filter(PlayerProp.game_id == game_id)
        if exclude_stale:
            query = query.filter(PlayerProp.is_stale.is_(False))
        if exclude_expired:
            query = query.filter(PlayerProp.expires_at > now)
        return query.order_by(PlayerProp.quality_score.desc(), PlayerProp.player_name).all()

    # ========================================================================
    # Maintenance
    # ========================================================================

    def sweep(self, now: Optional[datetime] = None) -> int:
        """
        Flag stale: entries past expiry, and entries whose game left
        ``scheduled``. Idempotent; returns the number of entries flagged.
        """
        now = now or utcnow()
        values = {PlayerProp.is_stale: True, PlayerProp.stale_at: now}

        expired = self.db.query(PlayerProp).filter(
            PlayerProp.is_stale.is_(False),
            PlayerProp.expires_at <= now,
        ).update(values, synchronize_session=False)

        started_games = select(Game.id).where(Game.status != GameStatus.SCHEDULED.value)
        started = self.db.query(PlayerProp).filter(
            PlayerProp.is_stale.is_(False),
            PlayerProp.game_id.in_(started_games),
        ).update(values, synchronize_session=False)

        self.db.commit()
        if expired or started:
            logger.info(f"Prop sweep: {expired} expired, {started} for started games")
        return expired + started

    def purge(self, now: Optional[datetime] = None, grace: Optional[timedelta] = None) -> int:
        """Delete stale entries that have been stale for longer than ``grace``."""
        now = now or utcnow()
        grace = grace if grace is not None else timedelta(hours=settings.PROP_STALE_GRACE_HOURS)
        deleted = self.db.query(PlayerProp).filter(
            PlayerProp.is_stale.is_(True),
            PlayerProp.stale_at <= now - grace,
        ).delete(synchronize_session=False)
        self.db.commit()
        if deleted:
            logger.info(f"Purged {deleted} stale props")
        return deleted

    def stats(self, now: Optional[datetime] = None) -> dict:
        now = now or utcnow()
        total = self.db.query(func.count(PlayerProp.id)).scalar() or 0
        stale = self.db.query(func.count(PlayerProp.id)).filter(PlayerProp.is_stale.is_(True)).scalar() or 0
        active = self.db.query(func.count(PlayerProp.id)).filter(
            PlayerProp.is_stale.is_(False), PlayerProp.expires_at > now
        ).scalar() or 0
        by_sport = dict(
            self.db.query(PlayerProp.sport, func.count(PlayerProp.id))
            .filter(PlayerProp.is_stale.is_(False), PlayerProp.expires_at > now)
            .group_by(PlayerProp.sport)
            .all()
        )
        newest = self.db.query(func.max(PlayerProp.fetched_at)).filter(PlayerProp.is_stale.is_(False)).scalar()
        return {
            "total": total,
            "active": active,
            "stale": stale,
            "expired_unswept": total - stale - active,
            "by_sport": by_sport,
            "last_fetched_at": ensure_utc(newest).isoformat() if newest else None,
        }
