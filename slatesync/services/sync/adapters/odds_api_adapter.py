"""
The Odds API (v4) adapter.

Game lines:   GET /sports/{sport_key}/odds?markets=h2h,spreads,totals
Player props: GET /sports/{sport_key}/events/{event_id}/odds?markets=player_points,...

Every call is gated by a RateBudget. The budget is checked before the
request is sent and charged once a response comes back; the provider's
x-requests-remaining header is fed back into the budget so the local count
never drifts far from the real quota.
"""
from typing import Any, Dict, List, Optional, Union

import httpx
from pybreaker import CircuitBreaker

from slatesync.core.config import settings
from slatesync.core.exceptions import PermanentProviderError
from slatesync.core.logging import get_logger
from slatesync.services.core.base_api_adapter import BaseAPIAdapter, get_sport_config
from slatesync.services.core.circuit_breaker import odds_api_breaker
from slatesync.services.core.rate_budget import RateBudget
from slatesync.services.sync.adapters.base import OddsProvider, RawOdds, RawProp, build_record
from slatesync.utils.timezone import utcnow

logger = get_logger(__name__)

PROVIDER = "odds_api"

GAME_MARKETS = ["h2h", "spreads", "totals"]

# Odds API market key -> canonical prop type (sport specific where keys collide)
PROP_MARKET_TYPES = {
    'player_points': 'points',
    'player_rebounds': 'rebounds',
    'player_assists': 'assists',
    'player_threes': 'threes',
    'player_points_rebounds_assists': 'points_rebounds_assists',
    'player_pass_yds': 'passing_yards',
    'player_pass_tds': 'passing_tds',
    'player_rush_yds': 'rushing_yards',
    'player_reception_yds': 'receiving_yards',
    'player_receptions': 'receptions',
    'batter_hits': 'hits',
    'batter_home_runs': 'home_runs',
    'batter_rbis': 'rbis',
    'batter_total_bases': 'total_bases',
    'pitcher_strikeouts': 'strikeouts',
    'player_goals': 'goals',
    'player_shots_on_goal': 'shots_on_goal',
    'player_total_saves': 'saves',
}


def _csv(value: str) -> List[str]:
    return [v.strip() for v in value.split(',') if v.strip()]


class OddsApiAdapter(BaseAPIAdapter, OddsProvider):
    """
    OddsProvider backed by The Odds API.

    Args:
        budget: RateBudget charged for every request
        api_key: API key (defaults to THE_ODDS_API_KEY)
        client: Optional httpx.Client (tests pass one with a MockTransport)
        breaker: Circuit breaker for this provider
    """

    provider_name = PROVIDER
    name = PROVIDER

    def __init__(
        self,
        budget: RateBudget,
        api_key: Optional[str] = None,
        client: Optional[httpx.Client] = None,
        breaker: CircuitBreaker = odds_api_breaker,
        base_url: Optional[str] = None,
        **retry_options,
    ):
        super().__init__(breaker=breaker, client=client, **retry_options)
        self.budget = budget
        self.api_key = api_key if api_key is not None else settings.THE_ODDS_API_KEY
        self.base_url = (base_url or settings.ODDS_API_BASE_URL).rstrip('/')
        self.regions = settings.ODDS_API_REGIONS
        self.bookmakers = settings.ODDS_API_BOOKMAKERS

    def fetch(self, sport: str, event_id: Optional[str] = None) -> List[Union[RawOdds, RawProp]]:
        if event_id:
            return self.fetch_props(sport, event_id)
        return self.fetch_game_odds(sport)

    # ========================================================================
    # Requests
    # ========================================================================

    def _params(self, markets: List[str]) -> Dict[str, Any]:
        params = {
            'apiKey': self.api_key,
            'regions': self.regions,
            'markets': ','.join(markets),
            'oddsFormat': 'american',
            'dateFormat': 'iso',
        }
        if self.bookmakers:
            params['bookmakers'] = self.bookmakers
        return params

    def _budgeted_get(self, url: str, params: Dict[str, Any]) -> Any:
        """Check the budget, send, charge the budget, decode."""
        self.budget.check()
        response = self.request(url, params)
        self.budget.record()
        self.budget.update_from_headers(response.headers)
        return self.decode(response)

    # ========================================================================
    # Game lines
    # ========================================================================

    def fetch_game_odds(self, sport: str) -> List[RawOdds]:
        sport_key = get_sport_config(sport)['odds_key']
        events = self._budgeted_get(f"{self.base_url}/sports/{sport_key}/odds", self._params(GAME_MARKETS))
        if not isinstance(events, list):
            raise PermanentProviderError(f"{PROVIDER}: expected a list of events", provider=PROVIDER)

        records: List[RawOdds] = []
        for event in events:
            for bookmaker in event.get('bookmakers', []):
                for market in bookmaker.get('markets', []):
                    try:
                        records.append(self._odds_record(sport, event, bookmaker, market))
                    except PermanentProviderError as e:
                        logger.warning(f"{PROVIDER}: skipping malformed market for event {event.get('id')}: {e}")
        logger.info(f"{PROVIDER}: {len(records)} {sport} line snapshots from {len(events)} events")
        return records

    def _odds_record(self, sport: str, event: Dict, bookmaker: Dict, market: Dict) -> RawOdds:
        outcomes = {}
        for outcome in market.get('outcomes', []):
            outcomes[outcome.get('name')] = {
                'price': outcome.get('price'),
                'point': outcome.get('point'),
            }
        captured = market.get('last_update') or bookmaker.get('last_update') or utcnow()
        return build_record(
            RawOdds,
            PROVIDER,
            sport=sport,
            event_id=event.get('id'),
            commence_time=event.get('commence_time'),
            home_team=event.get('home_team'),
            away_team=event.get('away_team'),
            book=bookmaker.get('key'),
            market=market.get('key'),
            captured_at=captured,
            outcomes=outcomes,
        )

    # ========================================================================
    # Player props
    # ========================================================================

    def prop_markets(self, sport: str) -> List[str]:
        override = _csv(settings.ODDS_API_PROP_MARKETS)
        return override or list(get_sport_config(sport)['prop_markets'])

    def fetch_props(self, sport: str, event_id: str) -> List[RawProp]:
        sport_key = get_sport_config(sport)['odds_key']
        event = self._budgeted_get(
            f"{self.base_url}/sports/{sport_key}/events/{event_id}/odds",
            self._params(self.prop_markets(sport)),
        )
        if not isinstance(event, dict):
            raise PermanentProviderError(f"{PROVIDER}: expected an event object", provider=PROVIDER)

        records: List[RawProp] = []
        for bookmaker in event.get('bookmakers', []):
            for market in bookmaker.get('markets', []):
                prop_type = PROP_MARKET_TYPES.get(market.get('key'))
                if prop_type is None:
                    continue
                captured = market.get('last_update') or bookmaker.get('last_update') or utcnow()
                for outcome in market.get('outcomes', []):
                    if outcome.get('point') is None:
                        continue
                    try:
                        records.append(build_record(
                            RawProp,
                            PROVIDER,
                            sport=sport,
                            event_id=event.get('id', event_id),
                            commence_time=event.get('commence_time'),
                            home_team=event.get('home_team'),
                            away_team=event.get('away_team'),
                            book=bookmaker.get('key'),
                            player_name=outcome.get('description'),
                            prop_type=prop_type,
                            side=outcome.get('name', ''),
                            line=outcome.get('point'),
                            price=outcome.get('price'),
                            captured_at=captured,
                        ))
                    except PermanentProviderError as e:
                        logger.debug(f"{PROVIDER}: skipping prop outcome on {event_id}: {e}")
        logger.info(f"{PROVIDER}: {len(records)} {sport} prop lines for event {event_id}")
        return records
