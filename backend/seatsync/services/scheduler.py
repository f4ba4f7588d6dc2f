"""
Background Job Scheduler.

WHAT: Configures APScheduler to run the two billing jobs in-process.

WHY: The HTTP cron endpoints depend on an external trigger. Running the
same jobs from the app as well means seat changes still reach the
provider before renewal when no external cron is set up:
- pending seat changes every PENDING_CHANGES_INTERVAL_HOURS
- reconciliation daily at RECONCILIATION_HOUR_UTC

HOW: AsyncIOScheduler with an in-memory job store; ``max_instances=1``
keeps a slow run from overlapping the next one.
"""

import logging
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.executors.asyncio import AsyncIOExecutor
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from seatsync.core.config import settings
from seatsync.core.exceptions import AppException
from seatsync.services.pending_changes_job import PendingChangesJob
from seatsync.services.reconciliation_job import ReconciliationJob


logger = logging.getLogger(__name__)

PENDING_CHANGES_JOB_ID = "apply_pending_subscription_changes"
RECONCILIATION_JOB_ID = "reconcile_subscriptions"

_scheduler: Optional[AsyncIOScheduler] = None


def get_scheduler() -> Optional[AsyncIOScheduler]:
    """Get the global scheduler instance."""
    return _scheduler


async def run_pending_changes() -> Optional[dict]:
    """Scheduled entry point for the pending-change job."""
    try:
        return await PendingChangesJob().run()
    except AppException as e:
        logger.error(f"Pending changes job failed: {e.message}")
        return None


async def run_reconciliation() -> Optional[dict]:
    """Scheduled entry point for the reconciliation job."""
    try:
        return await ReconciliationJob().run()
    except AppException as e:
        logger.error(f"Reconciliation job failed: {e.message}")
        return None


async def start_scheduler() -> None:
    """
    Start the background job scheduler.

    Note: Called from the FastAPI lifespan when SCHEDULER_ENABLED is set.
    """
    global _scheduler

    if _scheduler is not None and _scheduler.running:
        logger.warning("Scheduler already running")
        return

    _scheduler = AsyncIOScheduler(
        jobstores={"default": MemoryJobStore()},
        executors={"default": AsyncIOExecutor()},
        job_defaults={
            "coalesce": True,  # Combine multiple missed runs into one
            "max_instances": 1,
            "misfire_grace_time": 300,
        },
        timezone="UTC",
    )

    _register_jobs(_scheduler)
    _scheduler.start()
    logger.info("Scheduler started")


def _register_jobs(scheduler: AsyncIOScheduler) -> None:
    scheduler.add_job(
        func=run_pending_changes,
        trigger=IntervalTrigger(hours=settings.PENDING_CHANGES_INTERVAL_HOURS),
        id=PENDING_CHANGES_JOB_ID,
        name="Apply Pending Subscription Changes",
        replace_existing=True,
    )
    scheduler.add_job(
        func=run_reconciliation,
        trigger=CronTrigger(hour=settings.RECONCILIATION_HOUR_UTC, minute=0, timezone="UTC"),
        id=RECONCILIATION_JOB_ID,
        name="Reconcile Subscriptions",
        replace_existing=True,
    )
    logger.info(
        f"Registered pending changes job (every {settings.PENDING_CHANGES_INTERVAL_HOURS}h) "
        f"and reconciliation job (daily at {settings.RECONCILIATION_HOUR_UTC:02d}:00 UTC)"
    )


async def shutdown_scheduler() -> None:
    """Gracefully stop the scheduler."""
    global _scheduler

    if _scheduler is None or not _scheduler.running:
        logger.info("Scheduler not running")
        _scheduler = None
        return

    logger.info("Shutting down scheduler...")
    _scheduler.shutdown(wait=True)
    _scheduler = None
    logger.info("Scheduler shut down successfully")


def get_scheduler_status() -> dict:
    """Scheduler state and job info for the health endpoint."""
    if _scheduler is None:
        return {
            "running": False,
            "jobs": [],
            "message": "Scheduler not initialized",
        }

    jobs = [
        {
            "id": job.id,
            "name": job.name,
            "next_run_time": str(job.next_run_time) if job.next_run_time else None,
            "trigger": str(job.trigger),
        }
        for job in _scheduler.get_jobs()
    ]

    return {
        "running": _scheduler.running,
        "jobs": jobs,
        "message": "Scheduler is running" if _scheduler.running else "Scheduler is paused",
    }
