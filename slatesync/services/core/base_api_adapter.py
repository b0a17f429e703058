"""
Base HTTP adapter shared by all upstream providers.

The base adapter provides:
- Per-sport provider configuration (SPORT_CONFIG)
- A single httpx.Client with a per-request timeout
- Classification of failures into transient (network, timeout, 429, 5xx)
  and permanent (other 4xx, malformed JSON)
- Bounded retry with exponential backoff for transient failures only
  (tenacity), with both an attempt cap and an overall deadline
- A pybreaker circuit breaker around every attempt

Usage:
    class MyAdapter(BaseAPIAdapter):
        provider_name = "my_provider"

        def fetch_things(self, sport):
            return self.get_json(f"{self.base_url}/{sport}/things")
"""
import logging
from typing import Any, Dict, Optional

import httpx
from pybreaker import CircuitBreaker, CircuitBreakerError
from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    retry_if_not_exception_type,
    stop_after_attempt,
    stop_after_delay,
    wait_exponential,
)

from slatesync.core.config import settings
from slatesync.core.exceptions import (
    CircuitOpenError,
    PermanentProviderError,
    TransientProviderError,
)
from slatesync.core.logging import get_logger

logger = get_logger(__name__)


# Provider identifiers per sport
SPORT_CONFIG = {
    'nba': {
        'name': 'NBA',
        'espn_path': 'basketball/nba',
        'odds_key': 'basketball_nba',
        'prop_markets': [
            'player_points', 'player_rebounds', 'player_assists',
            'player_threes', 'player_points_rebounds_assists',
        ],
    },
    'nfl': {
        'name': 'NFL',
        'espn_path': 'football/nfl',
        'odds_key': 'americanfootball_nfl',
        'prop_markets': [
            'player_pass_yds', 'player_pass_tds', 'player_rush_yds',
            'player_reception_yds', 'player_receptions',
        ],
    },
    'mlb': {
        'name': 'MLB',
        'espn_path': 'baseball/mlb',
        'odds_key': 'baseball_mlb',
        'prop_markets': [
            'batter_hits', 'batter_home_runs', 'batter_rbis',
            'batter_total_bases', 'pitcher_strikeouts',
        ],
    },
    'nhl': {
        'name': 'NHL',
        'espn_path': 'hockey/nhl',
        'odds_key': 'icehockey_nhl',
        'prop_markets': [
            'player_points', 'player_goals', 'player_assists',
            'player_shots_on_goal', 'player_total_saves',
        ],
    },
}

RETRYABLE_STATUS = {408, 425, 429}


def get_sport_config(sport: str) -> Dict[str, Any]:
    if sport not in SPORT_CONFIG:
        raise ValueError(f"Unknown sport: {sport}. Must be one of: {list(SPORT_CONFIG.keys())}")
    return SPORT_CONFIG[sport]


class BaseAPIAdapter:
    """
    Base class for HTTP provider adapters.

    Attributes:
        provider_name: Short provider name used in errors and logs
        client: httpx.Client used for all requests
        breaker: Circuit breaker guarding this provider
    """

    provider_name = "provider"

    def __init__(
        self,
        breaker: CircuitBreaker,
        client: Optional[httpx.Client] = None,
        max_attempts: Optional[int] = None,
        deadline: Optional[float] = None,
        backoff_multiplier: Optional[float] = None,
        backoff_min: Optional[float] = None,
        backoff_max: Optional[float] = None,
    ):
        self.breaker = breaker
        self._owns_client = client is None
        self.client = client or httpx.Client(timeout=httpx.Timeout(settings.HTTP_TIMEOUT))
        self.max_attempts = max_attempts if max_attempts is not None else settings.HTTP_MAX_RETRIES
        self.deadline = deadline if deadline is not None else settings.HTTP_RETRY_DEADLINE
        self.backoff_multiplier = (
            backoff_multiplier if backoff_multiplier is not None else settings.HTTP_BACKOFF_MULTIPLIER
        )
        self.backoff_min = backoff_min if backoff_min is not None else settings.HTTP_BACKOFF_MIN
        self.backoff_max = backoff_max if backoff_max is not None else settings.HTTP_BACKOFF_MAX

    def close(self) -> None:
        if self._owns_client:
            self.client.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    # ========================================================================
    # Requests
    # ========================================================================

    def request(self, url: str, params: Optional[Dict[str, Any]] = None) -> httpx.Response:
        """
        GET ``url`` with retry, backoff and circuit breaking.

        Raises:
            TransientProviderError: transient failure persisted past all retries
            CircuitOpenError: breaker is open, request not sent
            PermanentProviderError: 4xx response
        """
        retrying = Retrying(
            stop=stop_after_attempt(self.max_attempts) | stop_after_delay(self.deadline),
            wait=wait_exponential(
                multiplier=self.backoff_multiplier, min=self.backoff_min, max=self.backoff_max
            ),
            retry=(
                retry_if_exception_type(TransientProviderError)
                & retry_if_not_exception_type(CircuitOpenError)
            ),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        return retrying(self._guarded_get, url, params)

    def get_json(self, url: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """GET and decode JSON. Undecodable bodies are permanent errors."""
        response = self.request(url, params)
        return self.decode(response)

    def decode(self, response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise PermanentProviderError(
                f"{self.provider_name}: malformed JSON from {response.request.url}",
                provider=self.provider_name,
                status_code=response.status_code,
            ) from e

    def _guarded_get(self, url: str, params: Optional[Dict[str, Any]]) -> httpx.Response:
        try:
            return self.breaker.call(self._get, url, params)
        except CircuitBreakerError as e:
            raise CircuitOpenError(
                f"{self.provider_name}: circuit open ({e})", provider=self.provider_name
            ) from e

    def _get(self, url: str, params: Optional[Dict[str, Any]]) -> httpx.Response:
        try:
            response = self.client.get(url, params=params)
        except httpx.TimeoutException as e:
            raise TransientProviderError(
                f"{self.provider_name}: timeout fetching {url}", provider=self.provider_name
            ) from e
        except httpx.TransportError as e:
            raise TransientProviderError(
                f"{self.provider_name}: network error fetching {url}: {e}", provider=self.provider_name
            ) from e

        status = response.status_code
        if status >= 500 or status in RETRYABLE_STATUS:
            raise TransientProviderError(
                f"{self.provider_name}: HTTP {status} from {url}",
                provider=self.provider_name,
                status_code=status,
            )
        if status >= 400:
            raise PermanentProviderError(
                f"{self.provider_name}: HTTP {status} from {url}",
                provider=self.provider_name,
                status_code=status,
            )
        return response
