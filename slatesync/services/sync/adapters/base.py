"""
Uniform provider interfaces and raw record shapes.

Each upstream is wrapped by an adapter implementing one or more of the four
provider categories. Adapters translate provider payloads into the pydantic
records below; nothing downstream ever sees a provider-specific dict.
"""
from abc import ABC, abstractmethod
from datetime import date, datetime
from typing import Dict, List, Optional, Union

from pydantic import BaseModel, Field, ValidationError, field_validator

from slatesync.core.exceptions import PermanentProviderError
from slatesync.models import GameStatus
from slatesync.services.sync.temporal_normalizer import SourceConvention

RawTimestamp = Union[datetime, date, str, int, float]


# =============================================================================
# RAW RECORDS
# =============================================================================

class RawTeamRef(BaseModel):
    """A team as referenced from a game record."""
    name: Optional[str] = None
    abbreviation: Optional[str] = None
    external_id: Optional[str] = None
    short_name: Optional[str] = None
    location: Optional[str] = None


class RawTeam(BaseModel):
    provider: str
    sport: str
    external_id: Optional[str] = None
    name: str
    abbreviation: str
    short_name: Optional[str] = None
    location: Optional[str] = None

    @field_validator("abbreviation")
    @classmethod
    def _upper(cls, value: str) -> str:
        value = value.strip().upper()
        if not value:
            raise ValueError("abbreviation must not be empty")
        return value


class RawGame(BaseModel):
    provider: str
    sport: str
    external_id: str
    start: RawTimestamp
    convention: SourceConvention = SourceConvention.INSTANT
    time_hint: Optional[str] = None
    home: RawTeamRef
    away: RawTeamRef
    status: Optional[GameStatus] = None
    home_score: Optional[int] = None
    away_score: Optional[int] = None
    game_number: Optional[int] = None
    # Market day the provider listed the game under
    listed_date: Optional[date] = None
    # Set when the same provider also serves live scores for this game
    score_external_id: Optional[str] = None


class RawOdds(BaseModel):
    provider: str
    sport: str
    event_id: str
    commence_time: RawTimestamp
    home_team: str
    away_team: str
    book: str
    market: str
    captured_at: datetime
    outcomes: Dict[str, object] = Field(default_factory=dict)


class RawProp(BaseModel):
    provider: str
    sport: str
    event_id: str
    commence_time: RawTimestamp
    home_team: str
    away_team: str
    book: str
    player_name: str
    prop_type: str
    side: str
    line: float
    price: int
    captured_at: datetime

    @field_validator("side")
    @classmethod
    def _side(cls, value: str) -> str:
        value = value.strip().lower()
        if value not in ("over", "under"):
            raise ValueError(f"side must be over/under, got {value!r}")
        return value


class RawLiveStatus(BaseModel):
    provider: str
    sport: str
    external_id: str
    status: GameStatus
    home_score: Optional[int] = None
    away_score: Optional[int] = None
    # player name -> canonical stat key -> value
    player_stats: Dict[str, Dict[str, float]] = Field(default_factory=dict)
    box_score_complete: bool = False


def build_record(model: type, provider: str, **fields):
    """Validate a raw record, turning schema errors into PermanentProviderError."""
    try:
        return model(provider=provider, **fields)
    except ValidationError as e:
        raise PermanentProviderError(
            f"{provider}: malformed {model.__name__}: {e.errors()[0].get('msg')}", provider=provider
        ) from e


# =============================================================================
# PROVIDER INTERFACES
# =============================================================================

class ScheduleProvider(ABC):
    name: str = "schedule"

    @abstractmethod
    def fetch(self, sport: str, day: date) -> List[RawGame]:
        """Games on one market calendar day."""


class TeamProvider(ABC):
    name: str = "teams"

    @abstractmethod
    def fetch(self, sport: str) -> List[RawTeam]:
        """All teams for a sport."""


class OddsProvider(ABC):
    name: str = "odds"

    @abstractmethod
    def fetch(self, sport: str, event_id: Optional[str] = None) -> List[Union[RawOdds, RawProp]]:
        """Game lines for a sport, or player props for one event. Budgeted."""


class ScoreProvider(ABC):
    name: str = "scores"

    @abstractmethod
    def fetch(self, sport: str, game_id: str) -> RawLiveStatus:
        """Live status and box score for one game (provider's own id)."""
