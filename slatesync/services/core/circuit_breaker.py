"""
Circuit breakers for upstream providers (pybreaker).

States:
- CLOSED: requests pass through normally
- OPEN: requests fail immediately (after fail_max consecutive failures)
- HALF_OPEN: one trial request is let through after reset_timeout

Permanent provider errors (4xx, malformed payloads) say nothing about the
provider's health, so they are excluded from the failure count.
"""
from pybreaker import CircuitBreaker

from slatesync.core.config import settings
from slatesync.core.exceptions import PermanentProviderError
from slatesync.core.logging import get_logger

logger = get_logger(__name__)


def make_breaker(name: str, fail_max: int | None = None, reset_timeout: int | None = None) -> CircuitBreaker:
    """Create a breaker configured from settings."""
    return CircuitBreaker(
        fail_max=fail_max if fail_max is not None else settings.CIRCUIT_FAIL_MAX,
        reset_timeout=reset_timeout if reset_timeout is not None else settings.CIRCUIT_RESET_TIMEOUT,
        exclude=[PermanentProviderError],
        name=name,
    )


# ============================================================================
# CIRCUIT BREAKERS
# ============================================================================

odds_api_breaker = make_breaker("odds_api")
espn_api_breaker = make_breaker("espn")

_BREAKERS = {
    "odds_api": odds_api_breaker,
    "espn": espn_api_breaker,
}


def get_all_breaker_states() -> dict[str, str]:
    """Map breaker name -> 'closed', 'open' or 'half-open'."""
    return {name: breaker.current_state for name, breaker in _BREAKERS.items()}


def reset_breaker(breaker: CircuitBreaker) -> None:
    """
    Manually close a circuit breaker.

    Only reset if you know the provider has recovered.
    """
    breaker.close()
    logger.warning(f"Circuit breaker '{breaker.name}' manually reset to CLOSED state")
