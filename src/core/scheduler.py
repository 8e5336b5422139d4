"""Scheduler for background maintenance jobs (clock resync, challenge expiry)."""

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from src.core.config import settings
from src.core.trusted_clock import TrustedClock
from src.services.workspace import WorkspaceRegistry


logger = logging.getLogger(__name__)

# Global scheduler instance
scheduler = AsyncIOScheduler()

CLOCK_RESYNC_JOB_ID = "resync_trusted_clock"
CHALLENGE_SWEEP_JOB_ID = "expire_elapsed_challenges"


async def resync_trusted_clock(clock: TrustedClock) -> bool:
    """Retry trusted time resolution while the clock is still unresolved.

    Runs every ``clock_resync_minutes``. Once resolved the job does nothing.

    Returns:
        True if the clock is resolved after the run
    """
    if clock.resolved:
        return True

    logger.info("Retrying trusted time resolution")
    return await clock.resolve()


async def expire_elapsed_challenges(registry: WorkspaceRegistry) -> int:
    """Fail elapsed Active challenges in every open workspace.

    Runs daily at ``challenge_sweep_hour``. A failure in one workspace is
    logged and does not stop the sweep.

    Returns:
        Total number of challenges moved to Failed
    """
    logger.info("Running elapsed challenge sweep over %d workspaces", len(registry))
    total = 0
    for workspace in registry:
        try:
            total += await workspace.expire_challenges()
        except Exception as e:
            logger.error(f"Error expiring challenges for user {workspace.user_id}: {e}")

    logger.info(f"Completed elapsed challenge sweep: {total} challenges failed")
    return total


def start_scheduler(*, clock: TrustedClock, registry: WorkspaceRegistry) -> None:
    """Start the scheduler and register all jobs.

    This should be called during FastAPI app startup.
    """
    logger.info("Starting scheduler")

    scheduler.add_job(
        resync_trusted_clock,
        trigger=IntervalTrigger(minutes=settings.clock_resync_minutes),
        args=[clock],
        id=CLOCK_RESYNC_JOB_ID,
        name="Resync Trusted Clock",
        replace_existing=True,
    )
    logger.info(f"Scheduled trusted clock resync job: every {settings.clock_resync_minutes} minutes")

    scheduler.add_job(
        expire_elapsed_challenges,
        trigger=CronTrigger(hour=settings.challenge_sweep_hour, minute=0),
        args=[registry],
        id=CHALLENGE_SWEEP_JOB_ID,
        name="Expire Elapsed Challenges",
        replace_existing=True,
    )
    logger.info(f"Scheduled challenge sweep job: daily at {settings.challenge_sweep_hour}:00")

    scheduler.start()
    logger.info("Scheduler started successfully")


def stop_scheduler() -> None:
    """Stop the scheduler.

    This should be called during FastAPI app shutdown.
    """
    if not scheduler.running:
        return
    logger.info("Stopping scheduler")
    scheduler.shutdown(wait=True)
    logger.info("Scheduler stopped")
