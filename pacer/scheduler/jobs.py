"""PACER — Scheduler Jobs.

APScheduler daily jobs: the Meta sync, then goal tracking once the sync
window has passed.
"""

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from pacer.config import settings
from pacer.database import get_session
from pacer.sync.pipeline import run_goal_tracking, run_sync
from pacer.core.logging import get_logger

logger = get_logger("scheduler")

scheduler = AsyncIOScheduler()


async def daily_sync_job():
    """Sync structure, insights and leads for the default window."""
    logger.info("Scheduled daily sync starting...")
    session = next(get_session())
    try:
        summary = await run_sync(session=session)
        logger.info(
            f"Scheduled sync complete. {summary.insights.inserted + summary.insights.updated} "
            f"insight rows, {summary.batch_failures} failed batches"
        )
    except Exception as e:
        logger.error(f"Scheduled sync failed: {e}")
    finally:
        session.close()


async def daily_tracking_job():
    """Evaluate every active goal for today."""
    logger.info("Scheduled goal tracking starting...")
    session = next(get_session())
    try:
        summary = run_goal_tracking(session)
        logger.info(
            f"Scheduled tracking complete. {summary.goals_evaluated} goals, "
            f"{summary.alerts_emitted} alerts"
        )
    except Exception as e:
        logger.error(f"Scheduled goal tracking failed: {e}")
    finally:
        session.close()


def start_scheduler():
    """Configure and start the scheduler."""
    if not settings.scheduler_enabled:
        logger.info("Scheduler disabled via config")
        return

    scheduler.add_job(
        daily_sync_job,
        "cron",
        hour=settings.sync_hour,
        minute=0,
        id="daily_sync",
        replace_existing=True,
        misfire_grace_time=3600,
    )
    scheduler.add_job(
        daily_tracking_job,
        "cron",
        hour=settings.tracking_hour,
        minute=0,
        id="daily_goal_tracking",
        replace_existing=True,
        misfire_grace_time=3600,
    )
    scheduler.start()
    logger.info(
        f"Scheduler started. Sync at {settings.sync_hour}:00 UTC, "
        f"goal tracking at {settings.tracking_hour}:00 UTC"
    )


def stop_scheduler():
    """Shutdown the scheduler gracefully."""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
