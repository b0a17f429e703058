"""
ESPN site API adapter.

ESPN serves three of the four provider categories:
- schedule:  /{sport path}/scoreboard?dates=YYYYMMDD
- teams:     /{sport path}/teams
- scores:    /{sport path}/summary?event={id}

Event ids double as schedule and score ids. Start times are real instants
("2025-11-06T00:30Z").
"""
import re
from datetime import date
from typing import Any, Dict, List, Optional

import httpx
from pybreaker import CircuitBreaker

from slatesync.core.config import settings
from slatesync.core.exceptions import PermanentProviderError
from slatesync.core.logging import get_logger
from slatesync.models import GameStatus
from slatesync.services.core.base_api_adapter import BaseAPIAdapter, get_sport_config
from slatesync.services.core.circuit_breaker import espn_api_breaker
from slatesync.services.sync.adapters.base import (
    RawGame,
    RawLiveStatus,
    RawTeam,
    RawTeamRef,
    ScheduleProvider,
    ScoreProvider,
    TeamProvider,
    build_record,
)
from slatesync.services.sync.temporal_normalizer import SourceConvention

logger = get_logger(__name__)

PROVIDER = "espn"

_GAME_NUMBER = re.compile(r'\bgame\s+(\d)\b', re.IGNORECASE)

# (stat group, column label) -> canonical stat key; group "*" matches any group
BOX_SCORE_LABELS = {
    'nba': {
        ('*', 'PTS'): 'points',
        ('*', 'REB'): 'rebounds',
        ('*', 'AST'): 'assists',
        ('*', '3PT'): 'threes',
        ('*', 'STL'): 'steals',
        ('*', 'BLK'): 'blocks',
        ('*', 'TO'): 'turnovers',
    },
    'nhl': {
        ('*', 'G'): 'goals',
        ('*', 'A'): 'assists',
        ('*', 'S'): 'shots_on_goal',
        ('*', 'SOG'): 'shots_on_goal',
        ('*', 'SV'): 'saves',
    },
    'nfl': {
        ('passing', 'YDS'): 'passing_yards',
        ('passing', 'TD'): 'passing_tds',
        ('rushing', 'YDS'): 'rushing_yards',
        ('rushing', 'TD'): 'rushing_tds',
        ('receiving', 'YDS'): 'receiving_yards',
        ('receiving', 'REC'): 'receptions',
    },
    'mlb': {
        ('batting', 'H'): 'hits',
        ('batting', 'HR'): 'home_runs',
        ('batting', 'RBI'): 'rbis',
        ('pitching', 'K'): 'strikeouts',
    },
}


def map_espn_status(status: Dict[str, Any]) -> GameStatus:
    """Map an ESPN ``status`` object onto the canonical lifecycle."""
    status_type = status.get('type') or {}
    name = (status_type.get('name') or '').upper()
    state = (status_type.get('state') or '').lower()

    if 'POSTPONED' in name or 'CANCELED' in name or 'SUSPENDED' in name:
        return GameStatus.POSTPONED
    if status_type.get('completed') or 'FINAL' in name or state == 'post':
        return GameStatus.FINAL
    if state == 'in':
        return GameStatus.IN_PROGRESS
    return GameStatus.SCHEDULED


def _parse_stat(raw: Any) -> Optional[float]:
    """'12' -> 12.0, '3-7' (made-attempted) -> 3.0, '--' -> None."""
    if raw is None:
        return None
    text = str(raw).strip()
    if not text or text in ('--', '-'):
        return None
    if not text.startswith('-') and '-' in text:
        text = text.split('-', 1)[0]
    try:
        return float(text)
    except ValueError:
        return None


def doubleheader_game_number(competition: Dict[str, Any]) -> Optional[int]:
    """
    Game number from a doubleheader note ("Doubleheader - Game 2").

    Playoff notes ("East 1st Round - Game 3") carry series numbers, not
    same-day numbers, so only doubleheader notes count.
    """
    for note in competition.get('notes') or []:
        headline = note.get('headline') or ''
        if 'doubleheader' not in headline.lower():
            continue
        match = _GAME_NUMBER.search(headline)
        if match:
            return int(match.group(1))
    return None


def _score(value: Any) -> Optional[int]:
    if value is None or value == '':
        return None
    if isinstance(value, dict):
        value = value.get('value', value.get('displayValue'))
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return None


class EspnAdapter(BaseAPIAdapter):
    """HTTP client for the ESPN site API."""

    provider_name = PROVIDER

    def __init__(
        self,
        client: Optional[httpx.Client] = None,
        breaker: CircuitBreaker = espn_api_breaker,
        base_url: Optional[str] = None,
        **retry_options,
    ):
        super().__init__(breaker=breaker, client=client, **retry_options)
        self.base_url = (base_url or settings.ESPN_BASE_URL).rstrip('/')

    def _url(self, sport: str, resource: str) -> str:
        return f"{self.base_url}/{get_sport_config(sport)['espn_path']}/{resource}"

    # ========================================================================
    # Schedule
    # ========================================================================

    def fetch_schedule(self, sport: str, day: date) -> List[RawGame]:
        data = self.get_json(self._url(sport, 'scoreboard'), {'dates': day.strftime('%Y%m%d')})
        games = []
        for event in data.get('events', []):
            try:
                games.append(self.parse_event(sport, event, listed_date=day))
            except PermanentProviderError as e:
                logger.warning(f"ESPN: skipping malformed {sport} event {event.get('id')}: {e}")
        logger.info(f"ESPN: {len(games)} {sport} games for {day.isoformat()}")
        return games

    def parse_event(self, sport: str, event: Dict[str, Any], listed_date: Optional[date] = None) -> RawGame:
        competition = (event.get('competitions') or [{}])[0]
        sides = {}
        for competitor in competition.get('competitors', []):
            team = competitor.get('team') or {}
            sides[competitor.get('homeAway')] = (competitor, RawTeamRef(
                name=team.get('displayName'),
                abbreviation=team.get('abbreviation'),
                external_id=str(team['id']) if team.get('id') is not None else None,
                short_name=team.get('shortDisplayName') or team.get('name'),
                location=team.get('location'),
            ))

        home = sides.get('home')
        away = sides.get('away')
        status = map_espn_status(event.get('status') or competition.get('status') or {})

        return build_record(
            RawGame,
            PROVIDER,
            sport=sport,
            external_id=str(event.get('id', '')),
            start=event.get('date') or competition.get('date'),
            convention=SourceConvention.INSTANT,
            home=home[1] if home else None,
            away=away[1] if away else None,
            status=status,
            home_score=_score(home[0].get('score')) if home and status != GameStatus.SCHEDULED else None,
            away_score=_score(away[0].get('score')) if away and status != GameStatus.SCHEDULED else None,
            game_number=doubleheader_game_number(competition),
            listed_date=listed_date,
            score_external_id=str(event.get('id', '')) or None,
        )

    # ========================================================================
    # Teams
    # ========================================================================

    def fetch_teams(self, sport: str) -> List[RawTeam]:
        data = self.get_json(self._url(sport, 'teams'))
        teams = []
        for league in (data.get('sports') or [{}])[0].get('leagues', []):
            for entry in league.get('teams', []):
                team = entry.get('team') or {}
                teams.append(build_record(
                    RawTeam,
                    PROVIDER,
                    sport=sport,
                    external_id=str(team['id']) if team.get('id') is not None else None,
                    name=team.get('displayName'),
                    abbreviation=team.get('abbreviation'),
                    short_name=team.get('shortDisplayName') or team.get('name'),
                    location=team.get('location'),
                ))
        logger.info(f"ESPN: {len(teams)} {sport} teams")
        return teams

    # ========================================================================
    # Scores
    # ========================================================================

    def fetch_live_status(self, sport: str, game_id: str) -> RawLiveStatus:
        data = self.get_json(self._url(sport, 'summary'), {'event': game_id})
        competition = ((data.get('header') or {}).get('competitions') or [{}])[0]
        status = map_espn_status(competition.get('status') or {})

        scores = {}
        for competitor in competition.get('competitors', []):
            scores[competitor.get('homeAway')] = _score(competitor.get('score'))

        player_stats = self.parse_box_score(sport, data.get('boxscore') or {})

        return build_record(
            RawLiveStatus,
            PROVIDER,
            sport=sport,
            external_id=str(game_id),
            status=status,
            home_score=scores.get('home'),
            away_score=scores.get('away'),
            player_stats=player_stats,
            box_score_complete=status == GameStatus.FINAL and bool(player_stats),
        )

    def parse_box_score(self, sport: str, boxscore: Dict[str, Any]) -> Dict[str, Dict[str, float]]:
        """player display name -> canonical stat key -> value."""
        label_map = BOX_SCORE_LABELS.get(sport, {})
        players: Dict[str, Dict[str, float]] = {}

        for team_block in boxscore.get('players', []):
            for group in team_block.get('statistics', []):
                group_name = (group.get('name') or '').lower()
                labels = group.get('labels') or []
                for athlete_entry in group.get('athletes', []):
                    if athlete_entry.get('didNotPlay'):
                        continue
                    name = (athlete_entry.get('athlete') or {}).get('displayName')
                    stats = athlete_entry.get('stats') or []
                    if not name or not stats:
                        continue
                    line = players.setdefault(name, {})
                    for label, raw in zip(labels, stats):
                        key = label_map.get((group_name, label)) or label_map.get(('*', label))
                        if key is None:
                            continue
                        value = _parse_stat(raw)
                        if value is not None and key not in line:
                            line[key] = value
        return players


# =============================================================================
# PROVIDER VIEWS
# =============================================================================

class EspnScheduleProvider(ScheduleProvider):
    name = PROVIDER

    def __init__(self, adapter: EspnAdapter):
        self.adapter = adapter

    def fetch(self, sport: str, day: date) -> List[RawGame]:
        return self.adapter.fetch_schedule(sport, day)


class EspnTeamProvider(TeamProvider):
    name = PROVIDER

    def __init__(self, adapter: EspnAdapter):
        self.adapter = adapter

    def fetch(self, sport: str) -> List[RawTeam]:
        return self.adapter.fetch_teams(sport)


class EspnScoreProvider(ScoreProvider):
    name = PROVIDER

    def __init__(self, adapter: EspnAdapter):
        self.adapter = adapter

    def fetch(self, sport: str, game_id: str) -> RawLiveStatus:
        return self.adapter.fetch_live_status(sport, game_id)
