"""Unit tests for RateBudget.

Test Strategy:
1. Each ceiling (monthly, daily, hourly, min interval) blocks on its own
2. Blocked checks carry a retry-after instant
3. The provider's remaining-quota header overrides local bookkeeping
4. History seeds the budget; recorded calls are persisted
"""
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.orm import Session, sessionmaker

from slatesync.core.exceptions import BudgetExceeded
from slatesync.models import ApiUsageLog
from slatesync.services.core.rate_budget import RateBudget, database_recorder, load_usage_history

UTC = timezone.utc
NOW = datetime(2025, 11, 20, 12, 0, tzinfo=UTC)


def make_budget(monthly=1000, daily=100, hourly=50, min_interval=0.0, history=None, recorder=None) -> RateBudget:
    return RateBudget(
        provider="odds_api",
        monthly_limit=monthly,
        daily_limit=daily,
        hourly_limit=hourly,
        min_interval_seconds=min_interval,
        history=history,
        recorder=recorder,
        clock=lambda: NOW,
    )


class TestCeilings:
    """Each ceiling blocks independently."""

    def test_under_all_limits(self):
        budget = make_budget()
        budget.check()
        assert budget.can_spend()

    def test_hourly_limit(self):
        budget = make_budget(hourly=2, history=[
            (NOW - timedelta(minutes=10), 1),
            (NOW - timedelta(minutes=5), 1),
        ])

        with pytest.raises(BudgetExceeded) as exc_info:
            budget.check(now=NOW)
        assert "hourly" in exc_info.value.reason
        assert exc_info.value.retry_after == NOW + timedelta(minutes=50)

        # The oldest call leaves the trailing hour
        budget.check(now=NOW + timedelta(minutes=51))

    def test_daily_limit(self):
        budget = make_budget(daily=2, history=[
            (NOW.replace(hour=1), 1),
            (NOW.replace(hour=2), 1),
        ])

        with pytest.raises(BudgetExceeded) as exc_info:
            budget.check(now=NOW)
        assert "daily" in exc_info.value.reason
        assert exc_info.value.retry_after == datetime(2025, 11, 21, tzinfo=UTC)

        budget.check(now=datetime(2025, 11, 21, 0, 30, tzinfo=UTC))

    def test_monthly_limit(self):
        budget = make_budget(monthly=2, history=[
            (datetime(2025, 11, 1, 10, 0, tzinfo=UTC), 1),
            (datetime(2025, 11, 2, 10, 0, tzinfo=UTC), 1),
        ])

        with pytest.raises(BudgetExceeded) as exc_info:
            budget.check(now=NOW)
        assert "monthly" in exc_info.value.reason
        assert exc_info.value.retry_after == datetime(2025, 12, 1, tzinfo=UTC)

    def test_last_months_calls_do_not_count(self):
        budget = make_budget(monthly=1, history=[(datetime(2025, 10, 31, 23, 0, tzinfo=UTC), 1)])
        budget.check(now=NOW)

    def test_min_interval(self):
        budget = make_budget(min_interval=1.0)
        budget.record(now=NOW)

        with pytest.raises(BudgetExceeded) as exc_info:
            budget.check(now=NOW + timedelta(milliseconds=500))
        assert "interval" in exc_info.value.reason

        budget.check(now=NOW + timedelta(seconds=1))

    def test_cost_counts_against_limit(self):
        budget = make_budget(hourly=5, history=[(NOW - timedelta(minutes=1), 3)])
        budget.check(now=NOW, cost=2)
        assert not budget.can_spend(now=NOW, cost=3)


class TestProviderHeaders:
    """x-requests-remaining handling."""

    def test_zero_remaining_blocks(self):
        budget = make_budget()
        budget.update_from_headers({"x-requests-remaining": "0", "x-requests-used": "500"})

        with pytest.raises(BudgetExceeded) as exc_info:
            budget.check()
        assert exc_info.value.reason == "provider quota exhausted"
        assert budget.provider_used == 500

    def test_recorded_calls_decrement_remaining(self):
        budget = make_budget()
        budget.update_from_headers({"x-requests-remaining": "1"})

        budget.check()
        budget.record()
        assert budget.provider_remaining == 0
        assert not budget.can_spend()

    def test_bad_header_ignored(self):
        budget = make_budget()
        budget.update_from_headers({"x-requests-remaining": "lots"})
        assert budget.provider_remaining is None
        budget.check()


class TestPersistence:
    """History, recorder and snapshot."""

    def test_snapshot(self):
        budget = make_budget(history=[(NOW - timedelta(minutes=5), 1), (NOW - timedelta(hours=3), 1)])
        snapshot = budget.snapshot()

        assert snapshot["hourly_used"] == 1
        assert snapshot["daily_used"] == 2
        assert snapshot["monthly_used"] == 2
        assert snapshot["last_call_at"] == (NOW - timedelta(minutes=5)).isoformat()

    def test_recorder_called(self):
        recorded = []
        budget = make_budget(recorder=lambda provider, at, cost: recorded.append((provider, at, cost)))

        budget.record(cost=2)
        assert recorded == [("odds_api", NOW, 2)]

    def test_database_round_trip(self, db_session: Session):
        factory = sessionmaker(bind=db_session.get_bind())
        recorder = database_recorder(factory)
        recorder("odds_api", NOW - timedelta(minutes=5), 1)
        recorder("espn", NOW - timedelta(minutes=5), 1)
        db_session.add(ApiUsageLog(provider="odds_api", called_at=datetime(2025, 10, 1, tzinfo=UTC), cost=1))
        db_session.commit()

        history = load_usage_history(db_session, "odds_api", now=NOW)

        assert history == [(NOW - timedelta(minutes=5), 1)]
        budget = make_budget(hourly=1, history=history)
        assert not budget.can_spend()
