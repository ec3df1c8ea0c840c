"""
Background scheduler for the expiry sweeper.

Uses APScheduler's asyncio scheduler so the sweep runs on the application's
event loop next to request handling. Cadence is a tuning knob
(SWEEP_INTERVAL_SECONDS); correctness only needs it to stay within a few
minutes, since every sweep transition is idempotent.
"""

from typing import Optional

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_MISSED
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.ext.asyncio import async_sessionmaker

from app.core.config import get_settings
from app.core.logging import get_logger
from app.services.sweeper_service import run_sweep

logger = get_logger(__name__)

SWEEP_JOB_ID = "expiry_sweeper"

scheduler: Optional[AsyncIOScheduler] = None


def _on_job_error(event):
    logger.error("scheduled_job_failed", job_id=event.job_id, error=str(event.exception))


def _on_job_missed(event):
    logger.warning(
        "scheduled_job_missed",
        job_id=event.job_id,
        scheduled_run_time=str(event.scheduled_run_time),
    )


def init_scheduler(session_factory: async_sessionmaker) -> AsyncIOScheduler:
    """Create and start the scheduler. Called once from the app lifespan."""
    global scheduler

    if scheduler is not None:
        logger.warning("scheduler_already_initialized")
        return scheduler

    settings = get_settings()
    scheduler = AsyncIOScheduler(
        timezone="UTC",
        job_defaults={
            "coalesce": True,  # Combine missed executions
            "max_instances": 1,  # Only one sweep at a time per process
            "misfire_grace_time": settings.SWEEP_INTERVAL_SECONDS,
        },
    )
    scheduler.add_job(
        run_sweep,
        trigger=IntervalTrigger(seconds=settings.SWEEP_INTERVAL_SECONDS),
        kwargs={"session_factory": session_factory},
        id=SWEEP_JOB_ID,
        name="Expire and activate reservations",
        replace_existing=True,
    )
    scheduler.add_listener(_on_job_error, EVENT_JOB_ERROR)
    scheduler.add_listener(_on_job_missed, EVENT_JOB_MISSED)
    scheduler.start()

    logger.info(
        "scheduler_started",
        job=SWEEP_JOB_ID,
        interval_seconds=settings.SWEEP_INTERVAL_SECONDS,
        checkin_mode=settings.CHECKIN_MODE,
    )
    return scheduler


def shutdown_scheduler() -> None:
    global scheduler
    if scheduler is not None:
        scheduler.shutdown(wait=False)
        scheduler = None
        logger.info("scheduler_stopped")
