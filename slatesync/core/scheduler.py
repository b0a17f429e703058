"""
Automated background jobs for slatesync.

Jobs:
- full sync       every 6 hours   teams, schedule, odds, props, scores
- live scores     every 10 min    status/scores for games in progress
- prop sweep      every 5 min     flag expired props and props for started games
- validation      every 30 min    settle pending predictions
- prop purge      daily 4AM ET    delete props stale for longer than the grace period

Scheduler: APScheduler BackgroundScheduler. Each job opens its own session
and never overlaps with itself (max_instances=1, missed runs coalesced).
"""
from datetime import timedelta
from typing import Callable, Dict, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.orm import Session

from slatesync.core.config import settings
from slatesync.core.database import SessionLocal
from slatesync.core.logging import (
    clear_correlation_id,
    get_logger,
    new_correlation_id,
    set_correlation_id,
)
from slatesync.services.props.prop_cache import PropCache
from slatesync.services.sync.orchestrator import SyncOrchestrator
from slatesync.services.validation.validation_engine import ValidationEngine
from slatesync.utils.timezone import is_in_season, local_market_date, utcnow

logger = get_logger(__name__)

SYNC_LOOKBACK_DAYS = 1
SYNC_LOOKAHEAD_DAYS = 7


class AutomationScheduler:
    """
    Owns the APScheduler instance and the job definitions.

    Args:
        session_factory: Opens a new session per job run
        sports: Sports to sync (defaults to SYNC_SPORTS)
    """

    def __init__(self, session_factory: Callable[[], Session] = SessionLocal, sports: Optional[list] = None):
        self.session_factory = session_factory
        self.sports = sports if sports is not None else settings.sync_sports
        self.scheduler: Optional[BackgroundScheduler] = None
        self.running = False

    def start(self) -> None:
        if self.running:
            logger.warning("Scheduler already running")
            return

        logger.info("Starting automation scheduler...")
        self.scheduler = BackgroundScheduler(
            timezone=settings.MARKET_TIMEZONE,
            job_defaults={
                'coalesce': True,
                'max_instances': 1,
                'misfire_grace_time': 300,
            },
        )
        self._add_jobs()
        self.scheduler.start()
        self.running = True
        self._log_scheduled_jobs()

    def stop(self) -> None:
        if not self.running:
            return
        logger.info("Stopping scheduler...")
        self.scheduler.shutdown(wait=True)
        self.running = False
        logger.info("Scheduler stopped")

    def _add_jobs(self) -> None:
        self.scheduler.add_job(
            self.full_sync_job, IntervalTrigger(hours=6), id='full_sync', name='Full sync',
            next_run_time=utcnow(),
        )
        self.scheduler.add_job(
            self.live_scores_job, IntervalTrigger(minutes=10), id='live_scores', name='Live scores',
        )
        self.scheduler.add_job(
            self.prop_sweep_job, IntervalTrigger(minutes=5), id='prop_sweep', name='Prop sweep',
        )
        self.scheduler.add_job(
            self.validation_job, IntervalTrigger(minutes=30), id='validation', name='Prediction validation',
        )
        self.scheduler.add_job(
            self.prop_purge_job, CronTrigger(hour=4, minute=0), id='prop_purge', name='Stale prop purge',
            misfire_grace_time=3600,
        )

    # ========================================================================
    # Jobs
    # ========================================================================

    def _active_sports(self) -> list:
        now = utcnow()
        return [sport for sport in self.sports if is_in_season(sport, now)]

    def _run(self, name: str, job: Callable[[Session], Dict]) -> Optional[Dict]:
        """Run one job with its own session and correlation id; failures are logged."""
        token = set_correlation_id(new_correlation_id(name))
        db = self.session_factory()
        try:
            result = job(db)
            logger.info(f"Job {name} finished", extra={"job": name, "result": result})
            return result
        except Exception as e:
            logger.error(f"Job {name} failed: {e}", exc_info=True)
            return None
        finally:
            db.close()
            clear_correlation_id(token)

    def full_sync_job(self) -> Optional[Dict]:
        def job(db: Session) -> Dict:
            orchestrator = SyncOrchestrator(db)
            try:
                results = {}
                for sport in self._active_sports():
                    today = local_market_date(utcnow(), sport)
                    summary = orchestrator.run_sync(
                        sport,
                        today - timedelta(days=SYNC_LOOKBACK_DAYS),
                        today + timedelta(days=SYNC_LOOKAHEAD_DAYS),
                    )
                    results[sport] = {
                        k: summary[k] for k in ("added", "updated", "errors", "budget_exceeded")
                    }
                    results[sport]["integrity_violations"] = len(summary["integrity_violations"])
                return results
            finally:
                orchestrator.close()

        return self._run("full_sync", job)

    def live_scores_job(self) -> Optional[Dict]:
        def job(db: Session) -> Dict:
            orchestrator = SyncOrchestrator(db)
            try:
                return {sport: orchestrator.sync_live_scores(sport) for sport in self._active_sports()}
            finally:
                orchestrator.close()

        return self._run("live_scores", job)

    def prop_sweep_job(self) -> Optional[Dict]:
        return self._run("prop_sweep", lambda db: {"flagged": PropCache(db).sweep()})

    def prop_purge_job(self) -> Optional[Dict]:
        return self._run("prop_purge", lambda db: {"deleted": PropCache(db).purge()})

    def validation_job(self) -> Optional[Dict]:
        def job(db: Session) -> Dict:
            orchestrator = SyncOrchestrator(db)
            try:
                engine = ValidationEngine(
                    db, score_provider=orchestrator.score_provider, ingestor=orchestrator.ingestor
                )
                return engine.run_validation()
            finally:
                orchestrator.close()

        return self._run("validation", job)

    def trigger(self, job_id: str) -> Optional[Dict]:
        """Run a job immediately on the calling thread."""
        jobs = {
            'full_sync': self.full_sync_job,
            'live_scores': self.live_scores_job,
            'prop_sweep': self.prop_sweep_job,
            'validation': self.validation_job,
            'prop_purge': self.prop_purge_job,
        }
        if job_id not in jobs:
            raise KeyError(f"Unknown job {job_id!r}; expected one of {sorted(jobs)}")
        return jobs[job_id]()

    def _log_scheduled_jobs(self) -> None:
        jobs = self.scheduler.get_jobs()
        logger.info(f"Scheduler started with {len(jobs)} jobs")
        for job in jobs:
            next_run = job.next_run_time.isoformat() if job.next_run_time else "pending"
            logger.info(f"  {job.name} ({job.id}), next run {next_run}")


# Global scheduler instance
_scheduler: Optional[AutomationScheduler] = None


def start_scheduler() -> AutomationScheduler:
    global _scheduler
    if _scheduler is None:
        _scheduler = AutomationScheduler()
        _scheduler.start()
    return _scheduler


def stop_scheduler() -> None:
    global _scheduler
    if _scheduler is not None:
        _scheduler.stop()
        _scheduler = None


def get_scheduler() -> Optional[AutomationScheduler]:
    return _scheduler
