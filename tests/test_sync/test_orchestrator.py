"""Integration tests for SyncOrchestrator.

Test Strategy:
1. run_sync() drives teams -> games -> odds -> props -> scores through the Ingestor
2. Each step keeps its sync_metadata row current
3. Budget exhaustion skips the remaining budgeted steps and is reported
4. A failing provider is isolated to its step; unexpected errors propagate
5. get_sync_status() reports health from sync_metadata

Each test follows the pattern:
- Given: Fake providers and an in-memory database
- When: SyncOrchestrator method is called
- Then: Correct summary and database state
"""
from datetime import date, timedelta

import pytest
from sqlalchemy.orm import Session

from slatesync.core.exceptions import BudgetExceeded, TransientProviderError
from slatesync.models import Game, GameStatus, SyncMetadata, Team
from slatesync.services.sync.adapters.base import RawGame, RawLiveStatus, RawTeam, RawTeamRef
from slatesync.services.sync.orchestrator import SyncOrchestrator
from slatesync.utils.timezone import utcnow
from conftest import (
    FakeOddsProvider,
    FakeScheduleProvider,
    FakeScoreProvider,
    FakeTeamProvider,
    create_game,
)

DAY = date(2025, 11, 5)
GAME_ID = "nba-lal-bos-20251105"

TEAMS = [
    RawTeam(provider="espn", sport="nba", external_id="2", name="Boston Celtics", abbreviation="BOS",
            short_name="Celtics", location="Boston"),
    RawTeam(provider="espn", sport="nba", external_id="13", name="Los Angeles Lakers", abbreviation="LAL",
            short_name="Lakers", location="Los Angeles"),
]


def schedule_record(**overrides) -> RawGame:
    fields = {
        "provider": "espn",
        "sport": "nba",
        "external_id": "401",
        "start": "2025-11-06T00:30:00Z",
        "home": RawTeamRef(name="Boston Celtics", abbreviation="BOS", external_id="2"),
        "away": RawTeamRef(name="Los Angeles Lakers", abbreviation="LAL", external_id="13"),
        "score_external_id": "401",
    }
    fields.update(overrides)
    return RawGame(**fields)


def final_score() -> RawLiveStatus:
    return RawLiveStatus(provider="espn", sport="nba", external_id="401",
                         status=GameStatus.FINAL, home_score=112, away_score=104)


def metadata(db: Session, source: str, data_type: str) -> SyncMetadata:
    return db.query(SyncMetadata).filter_by(source=source, data_type=data_type).one()


@pytest.fixture
def providers():
    return {
        "schedule_provider": FakeScheduleProvider({DAY: [schedule_record()]}),
        "team_provider": FakeTeamProvider(TEAMS),
        "odds_provider": FakeOddsProvider(),
        "score_provider": FakeScoreProvider({"401": final_score()}),
    }


class TestRunSync:
    """Full sync runs."""

    # Happy path
    # ─────────────────────────────────────────────────────────────

    def test_full_run_ingests_everything(self, db_session: Session, providers):
        orchestrator = SyncOrchestrator(db_session, **providers)

        result = orchestrator.run_sync("nba", DAY)

        assert result["sport"] == "nba"
        assert result["start_date"] == "2025-11-05"
        assert result["steps"]["teams"]["added"] == 2
        assert result["steps"]["games"]["added"] == 1
        assert result["steps"]["scores"]["updated"] == 1
        assert result["added"] == 3
        assert result["errors"] == 0
        assert result["budget_exceeded"] is False
        assert result["correlation_id"].startswith("sync-nba")

        game = db_session.get(Game, GAME_ID)
        assert game.status == GameStatus.FINAL.value
        assert (game.home_score, game.away_score) == (112, 104)
        assert db_session.query(Team).count() == 2

    def test_metadata_recorded_per_step(self, db_session: Session, providers):
        SyncOrchestrator(db_session, **providers).run_sync("nba", DAY)

        games = metadata(db_session, "espn:nba", "games")
        assert games.last_sync_status == "success"
        assert games.records_added == 1
        assert games.last_sync_completed_at is not None
        assert metadata(db_session, "odds_api:nba", "odds").last_sync_status == "success"

    def test_rerun_is_idempotent(self, db_session: Session, providers):
        orchestrator = SyncOrchestrator(db_session, **providers)
        orchestrator.run_sync("nba", DAY)
        result = orchestrator.run_sync("nba", DAY)

        assert result["added"] == 0
        assert result["steps"]["games"]["unchanged"] == 1
        assert db_session.query(Game).count() == 1

    def test_each_day_fetched(self, db_session: Session, providers):
        orchestrator = SyncOrchestrator(db_session, **providers)
        orchestrator.run_sync("nba", DAY, DAY + timedelta(days=2))

        assert providers["schedule_provider"].calls == [DAY, DAY + timedelta(days=1), DAY + timedelta(days=2)]

    def test_end_before_start_rejected(self, db_session: Session, providers):
        with pytest.raises(ValueError):
            SyncOrchestrator(db_session, **providers).run_sync("nba", DAY, DAY - timedelta(days=1))

    # Budget
    # ─────────────────────────────────────────────────────────────

    def test_budget_exceeded_skips_props(self, db_session: Session, providers):
        providers["odds_provider"] = FakeOddsProvider(error=BudgetExceeded("daily limit reached"))
        result = SyncOrchestrator(db_session, **providers).run_sync("nba", DAY)

        assert result["budget_exceeded"] is True
        assert result["steps"]["props"] == {"skipped": "budget_exceeded"}
        assert result["steps"]["scores"]["updated"] == 1
        assert metadata(db_session, "odds_api:nba", "odds").last_sync_status == "partial"

    # Failures
    # ─────────────────────────────────────────────────────────────

    def test_team_provider_failure_isolated(self, db_session: Session, providers):
        providers["team_provider"] = FakeTeamProvider(error=TransientProviderError("espn down", provider="espn"))
        result = SyncOrchestrator(db_session, **providers).run_sync("nba", DAY)

        assert result["steps"]["teams"]["errors"] == 1
        # Teams are still created from the game records
        assert result["steps"]["games"]["added"] == 1
        assert metadata(db_session, "espn:nba", "teams").last_sync_status == "failed"

    def test_schedule_day_failure_is_partial(self, db_session: Session, providers):
        providers["schedule_provider"] = FakeScheduleProvider(
            {DAY: [schedule_record()]},
            fail_days={DAY + timedelta(days=1): TransientProviderError("timeout", provider="espn")},
        )
        result = SyncOrchestrator(db_session, **providers).run_sync("nba", DAY, DAY + timedelta(days=1))

        assert result["steps"]["games"]["added"] == 1
        assert result["steps"]["games"]["errors"] == 1
        assert metadata(db_session, "espn:nba", "games").last_sync_status == "partial"

    def test_unexpected_error_propagates(self, db_session: Session, providers):
        providers["schedule_provider"] = FakeScheduleProvider(fail_days={DAY: RuntimeError("bug")})

        with pytest.raises(RuntimeError):
            SyncOrchestrator(db_session, **providers).run_sync("nba", DAY)
        games = metadata(db_session, "espn:nba", "games")
        assert games.last_sync_status == "failed"
        assert games.error_message == "bug"

    def test_score_fetch_failure_counted(self, db_session: Session, providers):
        providers["score_provider"] = FakeScoreProvider(error=TransientProviderError("503", provider="espn"))
        result = SyncOrchestrator(db_session, **providers).run_sync("nba", DAY)

        assert result["steps"]["scores"]["errors"] == 1
        assert db_session.get(Game, GAME_ID).status == GameStatus.SCHEDULED.value


class TestLiveScores:
    """sync_live_scores()."""

    def test_recent_games_refreshed(self, db_session: Session, nba_teams):
        now = utcnow()
        create_game(db_session, start_time=now - timedelta(hours=2), status=GameStatus.IN_PROGRESS.value,
                    score_external_id="401")
        orchestrator = SyncOrchestrator(
            db_session,
            schedule_provider=FakeScheduleProvider(),
            team_provider=FakeTeamProvider(),
            odds_provider=FakeOddsProvider(),
            score_provider=FakeScoreProvider({"401": final_score()}),
        )

        result = orchestrator.sync_live_scores("nba", now=now)

        assert result["updated"] == 1
        assert metadata(db_session, "espn:nba", "live_scores").last_sync_status == "success"

    def test_old_games_ignored(self, db_session: Session, nba_teams):
        now = utcnow()
        create_game(db_session, start_time=now - timedelta(days=2), score_external_id="401")
        scores = FakeScoreProvider({"401": final_score()})
        orchestrator = SyncOrchestrator(db_session, score_provider=scores, odds_provider=FakeOddsProvider())

        orchestrator.sync_live_scores("nba", now=now)
        assert scores.calls == []


class TestSyncStatus:
    """get_sync_status()."""

    def test_healthy_after_clean_run(self, db_session: Session, providers):
        orchestrator = SyncOrchestrator(db_session, **providers)
        orchestrator.run_sync("nba", DAY)

        status = orchestrator.get_sync_status()
        assert status["health_status"] == "healthy"
        assert status["total_jobs"] == 5
        assert status["status_by_job"]["espn:nba_games"] == "success"
        assert status["odds_budget"] is None
        assert status["open_validations"] == 0
        assert status["active_props"] == 0
        assert isinstance(status["circuit_breakers"], dict)

    def test_degraded_when_a_step_failed(self, db_session: Session, providers):
        providers["team_provider"] = FakeTeamProvider(error=TransientProviderError("espn down", provider="espn"))
        orchestrator = SyncOrchestrator(db_session, **providers)
        orchestrator.run_sync("nba", DAY)

        assert orchestrator.get_sync_status()["health_status"] == "degraded"
