"""
Background Scheduler Service

Manages scheduled background tasks using APScheduler:
- Precomputed stats refresh (every 10 minutes, first run 30s after startup)
- Process-local cache sweep (every 5 minutes)

This runs in-process with the FastAPI application.
"""

import logging
from datetime import datetime, timedelta, timezone

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from core.config import settings

logger = logging.getLogger(__name__)

STATS_JOB_ID = "stats_compute"
CACHE_SWEEP_JOB_ID = "cache_sweep"

# Global scheduler instance
_scheduler: AsyncIOScheduler | None = None


async def stats_compute_job() -> None:
    """
    Background job to refresh the precomputed stats of every AC.

    A tick that fires while the previous pass is still running is dropped
    by the job's own guard.
    """
    from services.stats_service import get_stats_job

    try:
        summary = await get_stats_job().run_if_not_busy()
        if summary is not None:
            logger.info(
                f"Stats computation completed: "
                f"success={summary.success}, failed={summary.failed}, skipped={summary.skipped}"
            )
    except Exception as e:
        logger.error(f"Stats compute job failed: {e}", exc_info=True)


def cache_sweep_job() -> None:
    """Drop expired entries from the process-local cache."""
    from services.cache_service import get_cache

    removed = get_cache().sweep()
    if removed:
        logger.debug(f"Cache sweep removed {removed} expired entries")


def get_scheduler() -> AsyncIOScheduler:
    """Get the global scheduler instance."""
    global _scheduler
    if _scheduler is None:
        _scheduler = AsyncIOScheduler(timezone=timezone.utc)
    return _scheduler


async def start_scheduler() -> None:
    """Start the background scheduler with all jobs."""
    scheduler = get_scheduler()

    if scheduler.running:
        logger.info("Scheduler already running")
        return

    logger.info("Configuring background scheduler...")

    # Job 1: Stats refresh. The first run is delayed so the app finishes
    # booting before the heavy aggregations start.
    first_run = datetime.now(timezone.utc) + timedelta(seconds=settings.STATS_JOB_STARTUP_DELAY_SECONDS)
    scheduler.add_job(
        stats_compute_job,
        trigger=IntervalTrigger(seconds=settings.STATS_JOB_INTERVAL_SECONDS),
        id=STATS_JOB_ID,
        name="Precomputed Stats Refresh",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
        next_run_time=first_run,
    )
    logger.info(
        f"Added stats compute job (every {settings.STATS_JOB_INTERVAL_SECONDS}s, "
        f"first run in {settings.STATS_JOB_STARTUP_DELAY_SECONDS}s)"
    )

    # Job 2: Cache sweep
    scheduler.add_job(
        cache_sweep_job,
        trigger=IntervalTrigger(seconds=settings.CACHE_SWEEP_INTERVAL_SECONDS),
        id=CACHE_SWEEP_JOB_ID,
        name="Cache Sweep",
        replace_existing=True,
        max_instances=1,
    )
    logger.info(f"Added cache sweep job (every {settings.CACHE_SWEEP_INTERVAL_SECONDS}s)")

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


async def trigger_stats_computation():
    """
    Run a stats pass now, outside the schedule.

    Returns:
        The run summary, or None if a pass is already in progress
    """
    from services.stats_service import get_stats_job

    logger.info("Manual stats computation triggered")
    return await get_stats_job().run_if_not_busy()
