"""
Timezone helpers for league calendars.

All canonical instants are timezone-aware UTC datetimes. Leagues publish
their schedules in a local "market" zone (Eastern for the four supported
leagues), and a game belongs to the market calendar day of its start
instant: a 10:00 PM ET tip-off on Nov 5 is stored as 03:00 UTC on Nov 6
but its local_date is Nov 5.
"""
from datetime import datetime, date, time, timedelta, timezone
from typing import Optional, Tuple
from zoneinfo import ZoneInfo

from slatesync.core.config import settings

UTC = timezone.utc

SUPPORTED_SPORTS = ("nba", "nfl", "mlb", "nhl")

# Typical local start time per league, used when a source only gives a date
LEAGUE_TIME_RULES = {
    "nba": {"typical_start": time(19, 0)},
    "nhl": {"typical_start": time(19, 0)},
    "mlb": {"typical_start": time(19, 5)},
    "nfl": {"typical_start": time(13, 0)},
}

# Season windows (month, day), inclusive
SPORT_SEASONS = {
    "nba": {"start": (10, 1), "end": (6, 30)},
    "nfl": {"start": (9, 1), "end": (2, 15)},
    "mlb": {"start": (3, 1), "end": (11, 15)},
    "nhl": {"start": (10, 1), "end": (6, 30)},
}


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


def ensure_utc(value: datetime) -> datetime:
    """Return an aware UTC datetime. Naive input is taken to already be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def market_zone(sport: str) -> ZoneInfo:
    """Local market zone for a sport's schedule."""
    return ZoneInfo(settings.MARKET_TIMEZONE)


def typical_start_time(sport: str) -> time:
    rules = LEAGUE_TIME_RULES.get(sport.lower())
    if rules is None:
        return time(19, 0)
    return rules["typical_start"]


def local_to_utc(local_date: date, local_time: time, sport: str) -> datetime:
    """
    Convert a market-local wall clock to a UTC instant.

    Uses zoneinfo rules so the EST/EDT offset is taken from the game date,
    not from today.
    """
    local_dt = datetime.combine(local_date, local_time).replace(tzinfo=market_zone(sport))
    return local_dt.astimezone(UTC)


def local_market_date(instant: datetime, sport: str) -> date:
    """Market calendar day that a game starting at ``instant`` belongs to."""
    return ensure_utc(instant).astimezone(market_zone(sport)).date()


def local_day_bounds(day: date, sport: str) -> Tuple[datetime, datetime]:
    """UTC [start, end) covering one market calendar day."""
    start = local_to_utc(day, time(0, 0), sport)
    end = local_to_utc(day + timedelta(days=1), time(0, 0), sport)
    return start, end


def to_iso_z(value: Optional[datetime]) -> Optional[str]:
    """Format an instant as ISO 8601 with a trailing Z."""
    if value is None:
        return None
    return ensure_utc(value).strftime("%Y-%m-%dT%H:%M:%SZ")


def is_in_season(sport_id: str, when: Optional[datetime] = None) -> bool:
    """
    Check whether a date falls within a sport's active season.

    Seasons that span the new year (NBA, NFL, NHL) are handled by checking
    "after start OR before end".
    """
    if sport_id not in SPORT_SEASONS:
        return True

    if when is None:
        when = utcnow()
    if isinstance(when, datetime):
        day = when.date()
    else:
        day = when

    season = SPORT_SEASONS[sport_id]
    season_start = date(day.year, *season["start"])
    season_end = date(day.year, *season["end"])

    if season_start > season_end:
        return day >= season_start or day <= season_end
    return season_start <= day <= season_end
