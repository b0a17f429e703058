"""
Call budget for capacity-constrained providers.

A RateBudget is an explicit value handed to the adapters that spend it.
It enforces four ceilings:

- monthly: calls since the start of the current UTC month
- daily: calls since the start of the current UTC day
- hourly: calls in the trailing 60 minutes
- min_interval: minimum spacing between two consecutive calls

It also honours the provider's own remaining-quota header, which is the
authoritative count when it disagrees with local bookkeeping.
"""
import threading
from collections import deque
from datetime import datetime, timedelta
from typing import Callable, Deque, Iterable, Optional, Tuple

from sqlalchemy.orm import Session

from slatesync.core.config import settings
from slatesync.core.exceptions import BudgetExceeded
from slatesync.core.logging import get_logger
from slatesync.models import ApiUsageLog
from slatesync.utils.timezone import ensure_utc, utcnow

logger = get_logger(__name__)

# Recorder signature: (provider, called_at, cost) -> None
UsageRecorder = Callable[[str, datetime, int], None]


class RateBudget:
    """
    Monthly/daily/hourly/min-interval call budget for one provider.

    Args:
        provider: Provider name, used in logs and usage records
        monthly_limit: Max calls per calendar month (UTC)
        daily_limit: Max calls per calendar day (UTC)
        hourly_limit: Max calls in any trailing hour
        min_interval_seconds: Minimum gap between calls
        history: Previously recorded (called_at, cost) pairs
        recorder: Optional callback persisting each recorded call
        clock: Returns "now"; injectable for tests
    """

    def __init__(
        self,
        provider: str,
        monthly_limit: int,
        daily_limit: int,
        hourly_limit: int,
        min_interval_seconds: float = 0.0,
        history: Optional[Iterable[Tuple[datetime, int]]] = None,
        recorder: Optional[UsageRecorder] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.provider = provider
        self.monthly_limit = monthly_limit
        self.daily_limit = daily_limit
        self.hourly_limit = hourly_limit
        self.min_interval = timedelta(seconds=min_interval_seconds)
        self.recorder = recorder
        self.clock = clock
        self.provider_remaining: Optional[int] = None
        self.provider_used: Optional[int] = None
        self._lock = threading.Lock()
        self._calls: Deque[Tuple[datetime, int]] = deque(
            sorted((ensure_utc(at), cost) for at, cost in (history or []))
        )

    @classmethod
    def for_odds_api(
        cls,
        history: Optional[Iterable[Tuple[datetime, int]]] = None,
        recorder: Optional[UsageRecorder] = None,
    ) -> "RateBudget":
        """Budget for The Odds API using the configured ceilings."""
        return cls(
            provider="odds_api",
            monthly_limit=settings.ODDS_API_MONTHLY_LIMIT,
            daily_limit=settings.ODDS_API_DAILY_LIMIT,
            hourly_limit=settings.ODDS_API_HOURLY_LIMIT,
            min_interval_seconds=settings.ODDS_API_MIN_INTERVAL_SECONDS,
            history=history,
            recorder=recorder,
        )

    # ========================================================================
    # Checks
    # ========================================================================

    def check(self, now: Optional[datetime] = None, cost: int = 1) -> None:
        """
        Raise BudgetExceeded if a call of ``cost`` would break a ceiling.
        """
        now = ensure_utc(now) if now else self.clock()
        with self._lock:
            self._prune(now)
            blocked = self._blocking_reason(now, cost)
        if blocked is not None:
            reason, retry_after = blocked
            logger.warning(f"{self.provider} call blocked: {reason}")
            raise BudgetExceeded(reason, retry_after)

    def can_spend(self, now: Optional[datetime] = None, cost: int = 1) -> bool:
        now = ensure_utc(now) if now else self.clock()
        with self._lock:
            self._prune(now)
            return self._blocking_reason(now, cost) is None

    def _blocking_reason(self, now: datetime, cost: int) -> Optional[Tuple[str, Optional[datetime]]]:
        if self.provider_remaining is not None and self.provider_remaining < cost:
            return "provider quota exhausted", _next_month(now)

        month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
        day_start = now.replace(hour=0, minute=0, second=0, microsecond=0)
        hour_ago = now - timedelta(hours=1)

        monthly = sum(c for at, c in self._calls if at >= month_start)
        if monthly + cost > self.monthly_limit:
            return f"monthly limit {self.monthly_limit} reached", _next_month(now)

        daily = sum(c for at, c in self._calls if at >= day_start)
        if daily + cost > self.daily_limit:
            return f"daily limit {self.daily_limit} reached", day_start + timedelta(days=1)

        last_hour = [(at, c) for at, c in self._calls if at > hour_ago]
        if sum(c for _, c in last_hour) + cost > self.hourly_limit:
            oldest = last_hour[0][0] if last_hour else now
            return f"hourly limit {self.hourly_limit} reached", oldest + timedelta(hours=1)

        if self._calls and self.min_interval:
            last_call = self._calls[-1][0]
            if now - last_call < self.min_interval:
                return "minimum interval not elapsed", last_call + self.min_interval

        return None

    # ========================================================================
    # Bookkeeping
    # ========================================================================

    def record(self, cost: int = 1, now: Optional[datetime] = None) -> None:
        """Record a call that was actually sent."""
        now = ensure_utc(now) if now else self.clock()
        with self._lock:
            self._calls.append((now, cost))
            if self.provider_remaining is not None:
                self.provider_remaining = max(0, self.provider_remaining - cost)
        if self.recorder is not None:
            self.recorder(self.provider, now, cost)

    def update_from_headers(self, headers) -> None:
        """Sync with x-requests-remaining / x-requests-used response headers."""
        remaining = headers.get("x-requests-remaining")
        used = headers.get("x-requests-used")
        with self._lock:
            if remaining is not None:
                try:
                    self.provider_remaining = int(float(remaining))
                except ValueError:
                    logger.debug(f"Ignoring bad x-requests-remaining header {remaining!r}")
            if used is not None:
                try:
                    self.provider_used = int(float(used))
                except ValueError:
                    logger.debug(f"Ignoring bad x-requests-used header {used!r}")

    def snapshot(self, now: Optional[datetime] = None) -> dict:
        now = ensure_utc(now) if now else self.clock()
        with self._lock:
            self._prune(now)
            month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
            day_start = now.replace(hour=0, minute=0, second=0, microsecond=0)
            hour_ago = now - timedelta(hours=1)
            return {
                "provider": self.provider,
                "monthly_used": sum(c for at, c in self._calls if at >= month_start),
                "monthly_limit": self.monthly_limit,
                "daily_used": sum(c for at, c in self._calls if at >= day_start),
                "daily_limit": self.daily_limit,
                "hourly_used": sum(c for at, c in self._calls if at > hour_ago),
                "hourly_limit": self.hourly_limit,
                "provider_remaining": self.provider_remaining,
                "last_call_at": self._calls[-1][0].isoformat() if self._calls else None,
            }

    def _prune(self, now: datetime) -> None:
        month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
        cutoff = min(month_start, now - timedelta(hours=1))
        while self._calls and self._calls[0][0] < cutoff:
            self._calls.popleft()


def _next_month(now: datetime) -> datetime:
    first = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    return (first + timedelta(days=32)).replace(day=1)


# ============================================================================
# Persistence
# ============================================================================

def load_usage_history(db: Session, provider: str, now: Optional[datetime] = None) -> list[Tuple[datetime, int]]:
    """Calls recorded for ``provider`` since the start of the month (or last hour, if earlier)."""
    now = now or utcnow()
    month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    since = min(month_start, now - timedelta(hours=1))
    rows = db.query(ApiUsageLog.called_at, ApiUsageLog.cost).filter(
        ApiUsageLog.provider == provider,
        ApiUsageLog.called_at >= since,
    ).order_by(ApiUsageLog.called_at).all()
    return [(called_at, cost) for called_at, cost in rows]


def database_recorder(session_factory: Callable[[], Session]) -> UsageRecorder:
    """
    Build a recorder that writes one ApiUsageLog row per call.

    Uses its own short-lived session so a rollback in the caller's session
    never loses usage rows.
    """

    def _record(provider: str, called_at: datetime, cost: int) -> None:
        db = session_factory()
        try:
            db.add(ApiUsageLog(provider=provider, called_at=called_at, cost=cost))
            db.commit()
        finally:
            db.close()

    return _record
