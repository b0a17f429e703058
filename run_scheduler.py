#!/usr/bin/env python3
"""
Foreground runner for the slatesync automation scheduler.

Usage:
    python run_scheduler.py                  # Run until SIGINT/SIGTERM
    python run_scheduler.py --list-jobs      # Print the job table and exit
    python run_scheduler.py --trigger JOB_ID # Run one job now and exit
    python run_scheduler.py --sync nba 2025-11-05 2025-11-07
"""
import argparse
import json
import signal
import sys
import threading
from datetime import date

from slatesync.core.config import settings
from slatesync.core.database import SessionLocal, init_db
from slatesync.core.logging import configure_logging, get_logger
from slatesync.core.scheduler import AutomationScheduler
from slatesync.services.sync.orchestrator import SyncOrchestrator

logger = get_logger(__name__)


class SchedulerRunner:
    """Runs the scheduler until a shutdown signal arrives."""

    def __init__(self):
        self.scheduler = AutomationScheduler()
        self._shutdown = threading.Event()

    def start(self) -> None:
        for sig in (signal.SIGTERM, signal.SIGINT):
            signal.signal(sig, self._handle_signal)

        self.scheduler.start()
        logger.info("Scheduler is running, press Ctrl+C to stop")
        self._shutdown.wait()
        self.scheduler.stop()
        logger.info("Scheduler runner stopped")

    def _handle_signal(self, signum, frame) -> None:
        logger.info(f"Shutdown signal {signum} received")
        self._shutdown.set()


def run_manual_sync(sport: str, start: str, end: str) -> int:
    db = SessionLocal()
    orchestrator = SyncOrchestrator(db)
    try:
        summary = orchestrator.run_sync(sport, date.fromisoformat(start), date.fromisoformat(end))
    finally:
        orchestrator.close()
        db.close()
    print(json.dumps(summary, indent=2, default=str))
    return 1 if summary["integrity_violations"] else 0


def main() -> int:
    parser = argparse.ArgumentParser(description="Run the slatesync automation scheduler")
    parser.add_argument("--list-jobs", action="store_true", help="List scheduled jobs and exit")
    parser.add_argument("--trigger", metavar="JOB_ID", help="Run one job immediately and exit")
    parser.add_argument(
        "--sync", nargs=3, metavar=("SPORT", "START", "END"), help="Run one sync for a sport and date range"
    )
    args = parser.parse_args()

    configure_logging(level=settings.LOG_LEVEL, json_output=settings.LOG_JSON)
    missing = settings.validate_required_secrets()
    if missing:
        logger.warning(f"Missing configuration: {', '.join(missing)}")
    init_db()

    if args.sync:
        return run_manual_sync(*args.sync)

    if args.trigger:
        try:
            result = AutomationScheduler().trigger(args.trigger)
        except KeyError as e:
            logger.error(str(e))
            return 1
        print(json.dumps(result, indent=2, default=str))
        return 0 if result is not None else 1

    if args.list_jobs:
        scheduler = AutomationScheduler()
        scheduler.start()
        try:
            for job in scheduler.scheduler.get_jobs():
                print(f"{job.id:<12} {job.name:<24} next run {job.next_run_time}")
        finally:
            scheduler.stop()
        return 0

    SchedulerRunner().start()
    return 0


if __name__ == "__main__":
    sys.exit(main())
