"""Sync orchestrator: drives providers through the Ingestor.

One ``run_sync`` call covers a sport and a range of market days:

1. teams      TeamProvider      -> Ingestor.upsert_teams
2. games      ScheduleProvider  -> Ingestor.upsert_games (one fetch per day,
                                   one deduplicated batch for the range)
3. odds       OddsProvider      -> Ingestor.upsert_odds_batch (budgeted)
4. props      PropService.refresh (budgeted)
5. scores     ScoreProvider     -> Ingestor.apply_live_batch for started,
                                   unfinished games in the range

Each step records its outcome in sync_metadata. A step that fails outright
(e.g. the provider is down) is recorded as failed and the run moves on.
Budget exhaustion stops the budgeted steps and is reported in the summary.

Recommended schedule (see slatesync.core.scheduler):
- full sync:     every 6 hours
- live scores:   every 10 minutes
"""
from datetime import date, datetime, timedelta
from typing import Callable, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from slatesync.core.database import SessionLocal
from slatesync.core.exceptions import BudgetExceeded, ProviderError
from slatesync.core.logging import (
    clear_correlation_id,
    get_logger,
    new_correlation_id,
    set_correlation_id,
)
from slatesync.models import Game, PlayerProp, SyncMetadata
from slatesync.repositories import GameRepository, ValidationRepository
from slatesync.services.core.circuit_breaker import get_all_breaker_states
from slatesync.services.core.rate_budget import RateBudget, database_recorder, load_usage_history
from slatesync.services.props.prop_service import PropService
from slatesync.services.sync.adapters.base import (
    OddsProvider,
    RawGame,
    RawLiveStatus,
    RawOdds,
    ScheduleProvider,
    ScoreProvider,
    TeamProvider,
)
from slatesync.services.sync.adapters.espn_adapter import (
    EspnAdapter,
    EspnScheduleProvider,
    EspnScoreProvider,
    EspnTeamProvider,
)
from slatesync.services.sync.adapters.odds_api_adapter import PROVIDER as ODDS_PROVIDER
from slatesync.services.sync.adapters.odds_api_adapter import OddsApiAdapter
from slatesync.services.sync.ingestor import IngestSummary, Ingestor
from slatesync.utils.timezone import local_day_bounds, utcnow

logger = get_logger(__name__)

STATUS_SUCCESS = "success"
STATUS_PARTIAL = "partial"
STATUS_FAILED = "failed"
STATUS_IN_PROGRESS = "in_progress"

LIVE_LOOKBACK = timedelta(hours=12)


class SyncOrchestrator:
    """
    Coordinates sync jobs for all providers.

    Providers default to ESPN (schedule, teams, scores) and The Odds API
    (odds, props); tests inject fakes.
    """

    def __init__(
        self,
        db: Session,
        schedule_provider: Optional[ScheduleProvider] = None,
        team_provider: Optional[TeamProvider] = None,
        odds_provider: Optional[OddsProvider] = None,
        score_provider: Optional[ScoreProvider] = None,
        ingestor: Optional[Ingestor] = None,
    ):
        self.db = db
        self.ingestor = ingestor or Ingestor(db)
        self.games = GameRepository(db)
        self._schedule_provider = schedule_provider
        self._team_provider = team_provider
        self._odds_provider = odds_provider
        self._score_provider = score_provider
        self._espn: Optional[EspnAdapter] = None
        self._owned_odds: Optional[OddsApiAdapter] = None

    # ========================================================================
    # Providers (lazy defaults)
    # ========================================================================

    @property
    def espn(self) -> EspnAdapter:
        if self._espn is None:
            self._espn = EspnAdapter()
        return self._espn

    @property
    def schedule_provider(self) -> ScheduleProvider:
        if self._schedule_provider is None:
            self._schedule_provider = EspnScheduleProvider(self.espn)
        return self._schedule_provider

    @property
    def team_provider(self) -> TeamProvider:
        if self._team_provider is None:
            self._team_provider = EspnTeamProvider(self.espn)
        return self._team_provider

    @property
    def score_provider(self) -> ScoreProvider:
        if self._score_provider is None:
            self._score_provider = EspnScoreProvider(self.espn)
        return self._score_provider

    @property
    def odds_provider(self) -> OddsProvider:
        """Odds API adapter whose budget is seeded from the usage log."""
        if self._odds_provider is None:
            budget = RateBudget.for_odds_api(
                history=load_usage_history(self.db, ODDS_PROVIDER),
                recorder=database_recorder(SessionLocal),
            )
            self._owned_odds = OddsApiAdapter(budget=budget)
            self._odds_provider = self._owned_odds
        return self._odds_provider

    def close(self) -> None:
        """Close any HTTP clients this orchestrator created."""
        if self._espn is not None:
            self._espn.close()
        if self._owned_odds is not None:
            self._owned_odds.close()

    # ========================================================================
    # Full run
    # ========================================================================

    def run_sync(self, sport: str, start_date: date, end_date: Optional[date] = None) -> Dict:
        """
        Sync one sport over the market days ``start_date``..``end_date``.

        Returns:
            {"added", "updated", "unchanged", "errors", "integrity_violations",
             "budget_exceeded", "steps", "correlation_id", "duration_ms"}
        """
        end_date = end_date or start_date
        if end_date < start_date:
            raise ValueError(f"end_date {end_date} is before start_date {start_date}")

        correlation_id = new_correlation_id(f"sync-{sport}")
        token = set_correlation_id(correlation_id)
        started = utcnow()
        try:
            logger.info(f"Starting {sport} sync for {start_date}..{end_date}")
            total = IngestSummary()
            steps: Dict[str, Dict] = {}
            budget_exceeded = False

            plan: List[Tuple[str, str, str, Callable[[], IngestSummary]]] = [
                ("teams", "espn", "teams", lambda: self.sync_teams(sport)),
                ("games", "espn", "games", lambda: self.sync_schedule(sport, start_date, end_date)),
                ("odds", ODDS_PROVIDER, "odds", lambda: self.sync_odds(sport)),
                ("props", ODDS_PROVIDER, "props", lambda: self.sync_props(sport)),
                ("scores", "espn", "scores", lambda: self.sync_scores(sport, start_date, end_date)),
            ]
            for step, source, data_type, func in plan:
                if budget_exceeded and source == ODDS_PROVIDER:
                    steps[step] = {"skipped": "budget_exceeded"}
                    continue
                result = self._tracked(f"{source}:{sport}", data_type, func)
                steps[step] = result
                total.added += result.get("added", 0)
                total.updated += result.get("updated", 0)
                total.unchanged += result.get("unchanged", 0)
                total.errors += result.get("errors", 0)
                total.integrity_violations.extend(result.get("integrity_violations", []))
                budget_exceeded = budget_exceeded or result.get("budget_exceeded", False)

            duration_ms = int((utcnow() - started).total_seconds() * 1000)
            summary = total.to_dict()
            summary.update({
                "sport": sport,
                "start_date": start_date.isoformat(),
                "end_date": end_date.isoformat(),
                "budget_exceeded": budget_exceeded,
                "steps": steps,
                "correlation_id": correlation_id,
                "duration_ms": duration_ms,
            })
            if summary["integrity_violations"]:
                logger.warning(
                    f"{len(summary['integrity_violations'])} integrity violations need manual review"
                )
            logger.info(
                f"{sport} sync complete: {total.added} added, {total.updated} updated, "
                f"{total.errors} errors ({duration_ms}ms)"
            )
            return summary
        finally:
            clear_correlation_id(token)

    def _tracked(self, source: str, data_type: str, func: Callable[[], IngestSummary]) -> Dict:
        """Run one step and keep its sync_metadata row current."""
        started = utcnow()
        metadata = self._get_or_create_metadata(source, data_type)
        metadata.last_sync_started_at = started
        metadata.last_sync_status = STATUS_IN_PROGRESS
        self.db.commit()

        error_message = None
        try:
            summary = func()
        except BudgetExceeded as e:
            logger.warning(f"{source} {data_type}: {e}")
            summary = IngestSummary(budget_exceeded=True)
            error_message = str(e)
        except ProviderError as e:
            logger.error(f"{source} {data_type} sync failed: {e}")
            self.db.rollback()
            summary = IngestSummary()
            summary.fail(str(e))
            error_message = str(e)
        except Exception as e:
            logger.error(f"{source} {data_type} sync crashed: {e}")
            self.db.rollback()
            metadata = self._get_or_create_metadata(source, data_type)
            metadata.last_sync_status = STATUS_FAILED
            metadata.error_message = str(e)
            metadata.sync_duration_ms = int((utcnow() - started).total_seconds() * 1000)
            self.db.commit()
            raise

        duration_ms = int((utcnow() - started).total_seconds() * 1000)
        metadata = self._get_or_create_metadata(source, data_type)
        metadata.last_sync_completed_at = utcnow()
        metadata.records_processed = summary.processed
        metadata.records_added = summary.added
        metadata.records_updated = summary.updated
        metadata.records_failed = summary.errors
        metadata.sync_duration_ms = duration_ms
        metadata.error_message = error_message or (summary.error_details[0] if summary.error_details else None)
        if summary.errors == 0 and not summary.budget_exceeded:
            metadata.last_sync_status = STATUS_SUCCESS
        elif summary.budget_exceeded or summary.processed > summary.errors:
            metadata.last_sync_status = STATUS_PARTIAL
        else:
            metadata.last_sync_status = STATUS_FAILED
        self.db.commit()

        result = summary.to_dict()
        result["duration_ms"] = duration_ms
        return result

    # ========================================================================
    # Steps
    # ========================================================================

    def sync_teams(self, sport: str) -> IngestSummary:
        records = self.team_provider.fetch(sport)
        logger.info(f"Fetched {len(records)} {sport} teams")
        return self.ingestor.upsert_teams(records)

    def sync_schedule(self, sport: str, start_date: date, end_date: date) -> IngestSummary:
        """Fetch each market day, then ingest the whole range as one batch."""
        records: List[RawGame] = []
        fetch_errors = IngestSummary()
        day = start_date
        while day <= end_date:
            try:
                records.extend(self.schedule_provider.fetch(sport, day))
            except ProviderError as e:
                logger.error(f"Schedule fetch failed for {sport} {day}: {e}")
                fetch_errors.fail(f"schedule {day}: {e}")
            day += timedelta(days=1)

        logger.info(f"Fetched {len(records)} {sport} game records for {start_date}..{end_date}")
        summary = self.ingestor.upsert_games(records)
        summary.merge(fetch_errors)
        return summary

    def sync_odds(self, sport: str) -> IngestSummary:
        """Game-level odds for every upcoming event (one budgeted call)."""
        records = [r for r in self.odds_provider.fetch(sport) if isinstance(r, RawOdds)]
        logger.info(f"Fetched {len(records)} {sport} odds snapshots")
        return self.ingestor.upsert_odds_batch(records)

    def sync_props(self, sport: str, now: Optional[datetime] = None) -> IngestSummary:
        """Re-derive cached props for upcoming games with an odds event id."""
        result = PropService(self.db, self.odds_provider).refresh(sport, now=now)
        summary = IngestSummary(added=result.props, budget_exceeded=result.budget_exceeded)
        for _ in range(result.errors):
            summary.fail("prop fetch failed")
        return summary

    def sync_scores(self, sport: str, start_date: date, end_date: date, now: Optional[datetime] = None) -> IngestSummary:
        """Status and scores for started, unfinished games in the range."""
        now = now or utcnow()
        start, _ = local_day_bounds(start_date, sport)
        _, end = local_day_bounds(end_date, sport)
        return self._refresh_live(sport, self.games.unfinished_between(sport, start, min(end, now)))

    def sync_live_scores(self, sport: str, now: Optional[datetime] = None) -> Dict:
        """Lightweight scores-only pass over games started in the last 12 hours."""
        now = now or utcnow()
        games = self.games.unfinished_between(sport, now - LIVE_LOOKBACK, now)
        return self._tracked(f"espn:{sport}", "live_scores", lambda: self._refresh_live(sport, games))

    def _refresh_live(self, sport: str, games: List[Game]) -> IngestSummary:
        updates: List[Tuple[Game, RawLiveStatus]] = []
        fetch_errors = IngestSummary()
        for game in games:
            score_id = game.score_external_id
            if not score_id:
                continue
            try:
                updates.append((game, self.score_provider.fetch(sport, score_id)))
            except ProviderError as e:
                logger.warning(f"Score fetch failed for {game.id}: {e}")
                fetch_errors.fail(f"score {game.id}: {e}")

        summary = self.ingestor.apply_live_batch(updates)
        summary.merge(fetch_errors)
        return summary

    # ========================================================================
    # Status
    # ========================================================================

    def get_sync_status(self) -> Dict:
        """
        Overall sync health from sync_metadata, plus breaker states,
        budget usage, open validations and cache size.
        """
        all_metadata = self.db.query(SyncMetadata).all()

        status_by_job = {}
        last_sync_times = {}
        totals = {"processed": 0, "added": 0, "updated": 0, "failed": 0}
        for metadata in all_metadata:
            key = f"{metadata.source}_{metadata.data_type}"
            status_by_job[key] = metadata.last_sync_status
            last_sync_times[key] = metadata.last_sync_completed_at
            totals["processed"] += metadata.records_processed or 0
            totals["added"] += metadata.records_added or 0
            totals["updated"] += metadata.records_updated or 0
            totals["failed"] += metadata.records_failed or 0

        total_jobs = len(all_metadata)
        success_count = sum(1 for m in all_metadata if m.last_sync_status == STATUS_SUCCESS)
        if success_count == total_jobs:
            health_status = "healthy"
        elif success_count > 0:
            health_status = "degraded"
        else:
            health_status = "unhealthy"

        budget = getattr(self._odds_provider, "budget", None)
        active_props = self.db.query(PlayerProp).filter(
            PlayerProp.is_stale.is_(False), PlayerProp.expires_at > utcnow()
        ).count()

        return {
            "health_status": health_status,
            "total_jobs": total_jobs,
            "success_count": success_count,
            "status_by_job": status_by_job,
            "last_sync_times": {k: v.isoformat() if v else None for k, v in last_sync_times.items()},
            "totals": totals,
            "circuit_breakers": get_all_breaker_states(),
            "odds_budget": budget.snapshot() if budget is not None else None,
            "open_validations": ValidationRepository(self.db).count_open(),
            "active_props": active_props,
        }

    def _get_or_create_metadata(self, source: str, data_type: str) -> SyncMetadata:
        metadata = self.db.query(SyncMetadata).filter(
            SyncMetadata.source == source,
            SyncMetadata.data_type == data_type,
        ).first()
        if metadata is None:
            metadata = SyncMetadata(source=source, data_type=data_type)
            self.db.add(metadata)
            self.db.flush()
        return metadata
