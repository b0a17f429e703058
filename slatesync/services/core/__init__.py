"""
Provider-agnostic plumbing shared by every upstream adapter.

- base_api_adapter: httpx + tenacity retry + pybreaker circuit breaking
- circuit_breaker: one breaker per provider
- rate_budget: monthly/daily/hourly/min-interval call budget
"""
from slatesync.services.core.base_api_adapter import BaseAPIAdapter, SPORT_CONFIG, get_sport_config
from slatesync.services.core.rate_budget import RateBudget

__all__ = [
    "BaseAPIAdapter",
    "SPORT_CONFIG",
    "get_sport_config",
    "RateBudget",
]
