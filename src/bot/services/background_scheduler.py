"""
Background Scheduler Service

Manages scheduled background tasks using APScheduler:
- Monthly poll creation (cron, UTC)
- Poll resolution when each poll's voting window closes

This runs in-process with the FastAPI application.
"""

import logging
from datetime import datetime, timezone

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger

from core.config import settings
from core.exceptions import BotError, PollAlreadyResolved
from models.poll import Poll

logger = logging.getLogger(__name__)

MONTHLY_POLL_JOB_ID = "monthly_poll_creation"

# Global scheduler instance
_scheduler: AsyncIOScheduler | None = None


def resolution_job_id(poll_id: str) -> str:
    return f"resolve_poll:{poll_id}"


async def monthly_poll_job() -> None:
    """
    Background job that opens this month's poll.

    A poll already open for the month is left alone.
    """
    from services.provider import get_poll_orchestrator

    logger.info("Starting monthly poll creation job...")

    try:
        poll = await get_poll_orchestrator().create_poll(force=False)
        logger.info(f"Monthly poll created: {poll.id}")
    except BotError as e:
        logger.warning(f"Monthly poll not created: {e}")
    except Exception as e:
        logger.error(f"Monthly poll job failed: {e}", exc_info=True)


async def resolve_poll_job(poll_id: str) -> None:
    """Background job that resolves one poll when voting closes."""
    from services.provider import get_poll_orchestrator

    logger.info(f"Starting resolution job for poll {poll_id}...")

    try:
        resolution = await get_poll_orchestrator().resolve_poll(poll_id)
        logger.info(
            f"Poll resolution completed: poll={poll_id}, "
            f"voters={resolution.tally.total_voters}, "
            f"winner={resolution.winner.value if resolution.winner else 'none'}"
        )
    except PollAlreadyResolved:
        logger.info(f"Poll {poll_id} was already resolved, skipping")
    except Exception as e:
        logger.error(f"Poll resolution job failed for {poll_id}: {e}", exc_info=True)


def get_scheduler() -> AsyncIOScheduler:
    """Get the global scheduler instance."""
    global _scheduler
    if _scheduler is None:
        _scheduler = AsyncIOScheduler(timezone=timezone.utc)
    return _scheduler


def schedule_poll_resolution(poll: Poll) -> None:
    """Resolve ``poll`` when its voting window closes (immediately if already past)."""
    scheduler = get_scheduler()
    run_at = max(poll.closes_at, datetime.now(timezone.utc))
    scheduler.add_job(
        resolve_poll_job,
        trigger=DateTrigger(run_date=run_at, timezone=timezone.utc),
        args=[poll.id],
        id=resolution_job_id(poll.id),
        name=f"Resolve poll {poll.id}",
        replace_existing=True,
        misfire_grace_time=None,
    )
    logger.info(f"Scheduled resolution of poll {poll.id} at {run_at.isoformat()}")


async def start_scheduler() -> None:
    """Start the background scheduler with all jobs."""
    scheduler = get_scheduler()

    if scheduler.running:
        logger.info("Scheduler already running")
        return

    logger.info("Configuring background scheduler...")

    if settings.POLL_AUTO_SCHEDULE:
        scheduler.add_job(
            monthly_poll_job,
            trigger=CronTrigger(
                day=settings.POLL_SCHEDULE_DAY,
                hour=settings.POLL_SCHEDULE_HOUR,
                minute=0,
                timezone=timezone.utc,
            ),
            id=MONTHLY_POLL_JOB_ID,
            name="Monthly Poll Creation",
            replace_existing=True,
            max_instances=1,
        )
        logger.info(
            f"Added monthly poll job (day {settings.POLL_SCHEDULE_DAY} "
            f"at {settings.POLL_SCHEDULE_HOUR:02d}:00 UTC)"
        )

    scheduler.start()
    logger.info("Background scheduler started")


async def stop_scheduler() -> None:
    """Stop the background scheduler gracefully."""
    global _scheduler

    if _scheduler and _scheduler.running:
        logger.info("Stopping background scheduler...")
        _scheduler.shutdown(wait=False)
        logger.info("Background scheduler stopped")

    _scheduler = None
