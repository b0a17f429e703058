"""
Canonical multi-sport models.

One set of tables serves every sport; rows are discriminated by ``sport``.
Provider-native identifiers live in dedicated columns (games) or in the
alias table (teams) and always point at a canonical row, never the other
way round.

All datetime columns use UTCDateTime: stored as UTC, read back as aware UTC.
"""
import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Column, String, Float, Integer, Date, ForeignKey, Boolean, Text, Index,
    UniqueConstraint, CheckConstraint, JSON,
)
from sqlalchemy.orm import relationship, declarative_base

from slatesync.models.types import UTCDateTime

Base = declarative_base()


def _uuid() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# ENUMERATIONS
# =============================================================================

class GameStatus(str, enum.Enum):
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    FINAL = "final"
    POSTPONED = "postponed"


class ValidationStatus(str, enum.Enum):
    PENDING = "pending"
    NEEDS_REVIEW = "needs_review"
    COMPLETED = "completed"
    INVALID = "invalid"


class ValidationResult(str, enum.Enum):
    PENDING = "pending"
    CORRECT = "correct"
    INCORRECT = "incorrect"
    PUSH = "push"
    INVALID = "invalid"
    NEEDS_REVIEW = "needs_review"


def _in_clause(column: str, enum_cls) -> str:
    values = ", ".join(f"'{member.value}'" for member in enum_cls)
    return f"{column} IN ({values})"


# =============================================================================
# TEAMS
# =============================================================================

class Team(Base):
    """
    Canonical team. ``id`` is sport-prefixed, e.g. ``nba-bos``.
    """
    __tablename__ = "teams"

    id = Column(String(40), primary_key=True)
    sport = Column(String(3), nullable=False, index=True)
    name = Column(String(100), nullable=False)  # "Boston Celtics"
    abbreviation = Column(String(10), nullable=False)  # "BOS"
    short_name = Column(String(50), nullable=True)  # "Celtics"
    location = Column(String(50), nullable=True)  # "Boston"
    created_at = Column(UTCDateTime, nullable=False, default=_now)
    updated_at = Column(UTCDateTime, nullable=False, default=_now, onupdate=_now)

    aliases = relationship("TeamAlias", back_populates="team", cascade="all, delete-orphan")

    __table_args__ = (
        UniqueConstraint('sport', 'abbreviation', name='uq_teams_sport_abbreviation'),
    )

    def __repr__(self):
        return f"<Team {self.id} {self.name!r}>"


class TeamAlias(Base):
    """Maps a provider-native team key (id or spelling) onto a canonical team."""
    __tablename__ = "team_aliases"

    id = Column(Integer, primary_key=True, autoincrement=True)
    team_id = Column(String(40), ForeignKey("teams.id", ondelete="CASCADE"), nullable=False, index=True)
    sport = Column(String(3), nullable=False)
    provider = Column(String(32), nullable=False)  # espn, odds_api
    external_key = Column(String(100), nullable=False)
    created_at = Column(UTCDateTime, nullable=False, default=_now)

    team = relationship("Team", back_populates="aliases")

    __table_args__ = (
        UniqueConstraint('sport', 'provider', 'external_key', name='uq_team_aliases_key'),
    )


# =============================================================================
# GAMES
# =============================================================================

class Game(Base):
    """
    Canonical game.

    The external-id columns form the provider id map. Each entry is set once
    per provider and never cleared; uniqueness per sport guarantees a
    provider id points at exactly one canonical game.
    """
    __tablename__ = "games"

    id = Column(String(64), primary_key=True)  # nba-lal-bos-20251105
    sport = Column(String(3), nullable=False, index=True)

    start_time = Column(UTCDateTime, nullable=False, index=True)
    start_time_confidence = Column(Float, nullable=False, default=0.0)
    local_date = Column(Date, nullable=False, index=True)  # market calendar day

    status = Column(String(16), nullable=False, default=GameStatus.SCHEDULED.value, index=True)
    home_team_id = Column(String(40), ForeignKey("teams.id"), nullable=False, index=True)
    away_team_id = Column(String(40), ForeignKey("teams.id"), nullable=False, index=True)
    home_score = Column(Integer, nullable=True)
    away_score = Column(Integer, nullable=True)
    game_number = Column(Integer, nullable=True)  # doubleheaders

    # External id map
    schedule_external_id = Column(String(100), nullable=True)
    odds_external_id = Column(String(100), nullable=True)
    score_external_id = Column(String(100), nullable=True)

    created_at = Column(UTCDateTime, nullable=False, default=_now)
    updated_at = Column(UTCDateTime, nullable=False, default=_now, onupdate=_now)

    home_team = relationship("Team", foreign_keys=[home_team_id])
    away_team = relationship("Team", foreign_keys=[away_team_id])
    odds_snapshots = relationship("OddsSnapshot", back_populates="game", cascade="all, delete-orphan")

    __table_args__ = (
        UniqueConstraint('sport', 'schedule_external_id', name='uq_games_schedule_external_id'),
        UniqueConstraint('sport', 'odds_external_id', name='uq_games_odds_external_id'),
        UniqueConstraint('sport', 'score_external_id', name='uq_games_score_external_id'),
        CheckConstraint(_in_clause('status', GameStatus), name='ck_games_status'),
        Index('ix_games_sport_start', 'sport', 'start_time'),
    )

    EXTERNAL_ID_COLUMNS = {
        "schedule": "schedule_external_id",
        "odds": "odds_external_id",
        "score": "score_external_id",
    }

    @property
    def external_ids(self) -> dict:
        """Populated entries of the external id map, keyed by provider category."""
        ids = {}
        for category, column in self.EXTERNAL_ID_COLUMNS.items():
            value = getattr(self, column)
            if value:
                ids[category] = value
        return ids

    def __repr__(self):
        return f"<Game {self.id} {self.status}>"


class OddsSnapshot(Base):
    """One book's line for one market at one point in time. Append-only."""
    __tablename__ = "odds_snapshots"

    id = Column(Integer, primary_key=True, autoincrement=True)
    game_id = Column(String(64), ForeignKey("games.id", ondelete="CASCADE"), nullable=False, index=True)
    book = Column(String(50), nullable=False)
    market = Column(String(50), nullable=False)  # h2h, spreads, totals
    captured_at = Column(UTCDateTime, nullable=False)
    values = Column(JSON, nullable=False)
    created_at = Column(UTCDateTime, nullable=False, default=_now)

    game = relationship("Game", back_populates="odds_snapshots")

    __table_args__ = (
        UniqueConstraint('game_id', 'book', 'market', 'captured_at', name='uq_odds_snapshots_point'),
        Index('ix_odds_snapshots_game_market', 'game_id', 'market'),
    )


# =============================================================================
# PLAYER PROPS (cache)
# =============================================================================

class PlayerProp(Base):
    """
    Cached prop prediction. At most one row exists per fingerprint; a new
    put for the same fingerprint replaces the row's values.
    """
    __tablename__ = "player_props"

    id = Column(String(36), primary_key=True, default=_uuid)
    fingerprint = Column(String(32), nullable=False, unique=True)
    sport = Column(String(3), nullable=False, index=True)
    game_id = Column(String(64), ForeignKey("games.id", ondelete="CASCADE"), nullable=False, index=True)

    player_name = Column(String(100), nullable=False)
    team = Column(String(10), nullable=True)
    # Provider team names, kept as resolution hints
    home_team = Column(String(100), nullable=True)
    away_team = Column(String(100), nullable=True)
    prop_type = Column(String(50), nullable=False)
    pick = Column(String(5), nullable=False)  # over / under
    threshold = Column(Float, nullable=False)
    odds = Column(Integer, nullable=True)  # american
    book = Column(String(50), nullable=False)

    projection = Column(Float, nullable=True)
    probability = Column(Float, nullable=True)
    edge = Column(Float, nullable=True)
    confidence = Column(String(10), nullable=True)  # very_low .. very_high
    quality_score = Column(Float, nullable=True)

    game_time = Column(UTCDateTime, nullable=False)
    fetched_at = Column(UTCDateTime, nullable=False)
    expires_at = Column(UTCDateTime, nullable=False, index=True)
    is_stale = Column(Boolean, nullable=False, default=False, index=True)
    stale_at = Column(UTCDateTime, nullable=True)

    __table_args__ = (
        Index('ix_player_props_active', 'sport', 'is_stale', 'expires_at'),
    )

    def to_dict(self) -> dict:
        return {
            "fingerprint": self.fingerprint,
            "sport": self.sport,
            "game_id": self.game_id,
            "player_name": self.player_name,
            "team": self.team,
            "prop_type": self.prop_type,
            "pick": self.pick,
            "threshold": self.threshold,
            "odds": self.odds,
            "book": self.book,
            "projection": self.projection,
            "probability": self.probability,
            "edge": self.edge,
            "confidence": self.confidence,
            "quality_score": self.quality_score,
            "game_time": self.game_time.isoformat() if self.game_time else None,
            "fetched_at": self.fetched_at.isoformat() if self.fetched_at else None,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "is_stale": self.is_stale,
        }


# =============================================================================
# PREDICTION VALIDATION
# =============================================================================

class PropValidation(Base):
    """
    Lifecycle record for one prediction.

    ``game_id_ref`` is whatever game id was known when the prediction was
    made and may be wrong; ``resolved_game_id`` is filled in by the
    validation engine once the game has actually been found.
    """
    __tablename__ = "prop_validations"

    id = Column(String(36), primary_key=True, default=_uuid)
    prop_id = Column(String(64), nullable=False, unique=True)
    game_id_ref = Column(String(100), nullable=True, index=True)
    resolved_game_id = Column(String(64), ForeignKey("games.id"), nullable=True, index=True)
    sport = Column(String(3), nullable=False, index=True)

    player_name = Column(String(100), nullable=False)
    prop_type = Column(String(50), nullable=False)
    prediction = Column(String(5), nullable=False)  # over / under
    threshold = Column(Float, nullable=False)
    projected_value = Column(Float, nullable=True)
    edge = Column(Float, nullable=True)
    probability = Column(Float, nullable=True)
    quality_score = Column(Float, nullable=True)
    odds = Column(Integer, nullable=True)

    # Hints for game resolution when game_id_ref is wrong
    home_team = Column(String(100), nullable=True)
    away_team = Column(String(100), nullable=True)
    game_time = Column(UTCDateTime, nullable=True)

    source = Column(String(32), nullable=False, default="model")
    actual_value = Column(Float, nullable=True)
    result = Column(String(16), nullable=False, default=ValidationResult.PENDING.value, index=True)
    status = Column(String(16), nullable=False, default=ValidationStatus.PENDING.value, index=True)
    review_attempts = Column(Integer, nullable=False, default=0)
    notes = Column(Text, nullable=True)

    created_at = Column(UTCDateTime, nullable=False, default=_now)
    updated_at = Column(UTCDateTime, nullable=False, default=_now, onupdate=_now)
    completed_at = Column(UTCDateTime, nullable=True)

    game = relationship("Game")

    __table_args__ = (
        CheckConstraint(_in_clause('status', ValidationStatus), name='ck_prop_validations_status'),
        CheckConstraint(_in_clause('result', ValidationResult), name='ck_prop_validations_result'),
        CheckConstraint("prediction IN ('over', 'under')", name='ck_prop_validations_prediction'),
        Index('ix_prop_validations_status_sport', 'status', 'sport'),
    )


# =============================================================================
# SYNC BOOKKEEPING
# =============================================================================

class SyncMetadata(Base):
    """Last-run health for each (source, data_type) sync job."""
    __tablename__ = "sync_metadata"

    id = Column(String(36), primary_key=True, default=_uuid)
    source = Column(String(32), nullable=False)  # espn, odds_api, validation
    data_type = Column(String(32), nullable=False)  # teams, games, odds, props, scores
    last_sync_started_at = Column(UTCDateTime, nullable=True)
    last_sync_completed_at = Column(UTCDateTime, nullable=True, index=True)
    last_sync_status = Column(String(16), nullable=True, index=True)  # success, failed, in_progress, partial
    records_processed = Column(Integer, nullable=False, default=0)
    records_added = Column(Integer, nullable=False, default=0)
    records_updated = Column(Integer, nullable=False, default=0)
    records_failed = Column(Integer, nullable=False, default=0)
    error_message = Column(Text, nullable=True)
    sync_duration_ms = Column(Integer, nullable=True)

    __table_args__ = (
        UniqueConstraint('source', 'data_type', name='uq_sync_metadata_source_type'),
    )


class ApiUsageLog(Base):
    """One row per budgeted outbound call."""
    __tablename__ = "api_usage_log"

    id = Column(Integer, primary_key=True, autoincrement=True)
    provider = Column(String(32), nullable=False)
    called_at = Column(UTCDateTime, nullable=False)
    cost = Column(Integer, nullable=False, default=1)

    __table_args__ = (
        Index('ix_api_usage_log_provider_time', 'provider', 'called_at'),
    )
