"""Background job scheduler for periodic calendar syncs."""
import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from goalsync.calendar.jobs import periodic_sync_job
from goalsync.core.config import settings

logger = logging.getLogger(__name__)

scheduler = AsyncIOScheduler()


def sync_job():
    """Background sync job."""
    try:
        stats = periodic_sync_job()
        logger.info(f"Background sync completed: {stats}")
    except Exception as e:
        logger.error(f"Background sync failed: {e}")


def start_scheduler():
    """Start the background scheduler."""
    scheduler.add_job(
        sync_job,
        trigger=IntervalTrigger(minutes=settings.sync_interval_minutes),
        id="calendar_periodic_sync",
        replace_existing=True,
        max_instances=1,
    )
    scheduler.start()
    logger.info(
        f"Scheduler started, syncing every {settings.sync_interval_minutes} minutes"
    )


def shutdown_scheduler():
    """Graceful shutdown."""
    scheduler.shutdown(wait=False)
    logger.info("Scheduler shut down")
