"""Shared pytest fixtures for slatesync tests."""
from datetime import date, datetime, timezone
from typing import Dict, Generator, List, Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from slatesync.models import Base, Game, GameStatus, Team, TeamAlias
from slatesync.services.sync.adapters.base import (
    OddsProvider,
    RawLiveStatus,
    RawProp,
    ScheduleProvider,
    ScoreProvider,
    TeamProvider,
)

UTC = timezone.utc


@pytest.fixture(scope="function")
def db_session() -> Generator[Session, None, None]:
    """Fresh in-memory database per test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)

    TestSessionLocal = sessionmaker(bind=engine, autoflush=False)
    session = TestSessionLocal()

    yield session

    session.close()
    engine.dispose()


# =============================================================================
# CANONICAL DATA
# =============================================================================

NBA_TEAMS = [
    # id, name, abbreviation, short name, location, espn id
    ("nba-bos", "Boston Celtics", "BOS", "Celtics", "Boston", "2"),
    ("nba-lal", "Los Angeles Lakers", "LAL", "Lakers", "Los Angeles", "13"),
    ("nba-lac", "Los Angeles Clippers", "LAC", "Clippers", "Los Angeles", "12"),
    ("nba-chi", "Chicago Bulls", "CHI", "Bulls", "Chicago", "4"),
    ("nba-cha", "Charlotte Hornets", "CHA", "Hornets", "Charlotte", "30"),
    ("nba-phi", "Philadelphia 76ers", "PHI", "76ers", "Philadelphia", "20"),
]

NFL_TEAMS = [
    ("nfl-ne", "New England Patriots", "NE", "Patriots", "New England", "17"),
    ("nfl-nyj", "New York Jets", "NYJ", "Jets", "New York", "20"),
]


def add_teams(db: Session, sport: str, rows) -> Dict[str, Team]:
    teams = {}
    for team_id, name, abbr, short_name, location, espn_id in rows:
        team = Team(id=team_id, sport=sport, name=name, abbreviation=abbr, short_name=short_name, location=location)
        db.add(team)
        db.add(TeamAlias(team_id=team_id, sport=sport, provider="espn", external_key=espn_id))
        teams[abbr] = team
    db.commit()
    return teams


@pytest.fixture
def nba_teams(db_session: Session) -> Dict[str, Team]:
    return add_teams(db_session, "nba", NBA_TEAMS)


@pytest.fixture
def nfl_teams(db_session: Session) -> Dict[str, Team]:
    return add_teams(db_session, "nfl", NFL_TEAMS)


def create_game(db: Session, **kwargs) -> Game:
    """Insert a canonical game with sensible defaults.

    Usage:
        game = create_game(db_session, id="nba-lal-bos-20251105", odds_external_id="evt1")
    """
    defaults = {
        "id": "nba-lal-bos-20251105",
        "sport": "nba",
        "start_time": datetime(2025, 11, 6, 0, 30, tzinfo=UTC),
        "start_time_confidence": 1.0,
        "local_date": date(2025, 11, 5),
        "status": GameStatus.SCHEDULED.value,
        "home_team_id": "nba-bos",
        "away_team_id": "nba-lal",
        "schedule_external_id": "401",
    }
    defaults.update(kwargs)
    game = Game(**defaults)
    db.add(game)
    db.commit()
    return game


@pytest.fixture
def sample_game(db_session: Session, nba_teams) -> Game:
    return create_game(db_session)


def make_raw_prop(player: str, side: str, price: int, line: float = 27.5, book: str = "draftkings",
                  prop_type: str = "points", event_id: str = "evt-1") -> RawProp:
    return RawProp(
        provider="odds_api",
        sport="nba",
        event_id=event_id,
        commence_time="2025-11-06T00:30:00Z",
        home_team="Boston Celtics",
        away_team="Los Angeles Lakers",
        book=book,
        player_name=player,
        prop_type=prop_type,
        side=side,
        line=line,
        price=price,
        captured_at=datetime(2025, 11, 5, 18, 0, tzinfo=UTC),
    )


# =============================================================================
# FAKE PROVIDERS
# =============================================================================

class FakeScheduleProvider(ScheduleProvider):
    def __init__(self, by_day: Optional[Dict[date, list]] = None, fail_days: Optional[Dict[date, Exception]] = None):
        self.by_day = by_day or {}
        self.fail_days = fail_days or {}
        self.calls: List[date] = []

    def fetch(self, sport, day):
        self.calls.append(day)
        if day in self.fail_days:
            raise self.fail_days[day]
        return list(self.by_day.get(day, []))


class FakeTeamProvider(TeamProvider):
    def __init__(self, teams=None, error: Optional[Exception] = None):
        self.teams = teams or []
        self.error = error

    def fetch(self, sport):
        if self.error:
            raise self.error
        return list(self.teams)


class FakeOddsProvider(OddsProvider):
    def __init__(self, game_odds=None, props_by_event=None, error: Optional[Exception] = None):
        self.game_odds = game_odds or []
        self.props_by_event = props_by_event or {}
        self.error = error
        self.calls: List[Optional[str]] = []

    def fetch(self, sport, event_id=None):
        self.calls.append(event_id)
        if self.error:
            raise self.error
        if event_id:
            return list(self.props_by_event.get(event_id, []))
        return list(self.game_odds)


class FakeScoreProvider(ScoreProvider):
    def __init__(self, statuses: Optional[Dict[str, RawLiveStatus]] = None, error: Optional[Exception] = None):
        self.statuses = statuses or {}
        self.error = error
        self.calls: List[str] = []

    def fetch(self, sport, game_id):
        self.calls.append(game_id)
        if self.error:
            raise self.error
        return self.statuses[game_id]
