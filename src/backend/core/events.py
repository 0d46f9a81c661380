"""
Application lifecycle event handlers.

Manages startup and shutdown tasks for logging, the MongoDB client and the
background scheduler.
"""

from typing import Callable

import structlog
from fastapi import FastAPI

from core.config import settings
from core.logging_config import configure_logging

logger = structlog.get_logger(__name__)


def create_start_app_handler(app: FastAPI) -> Callable:
    """Create startup event handler."""

    async def start_app() -> None:
        configure_logging(settings.DEBUG)
        logger.info("Starting API", app=settings.APP_NAME, shards=len(settings.shard_keys_list))

        # Check the database; shard calls fail per AC if it stays down
        try:
            from db.mongo_session import ping

            await ping()
            logger.info("MongoDB reachable")
        except Exception as e:
            logger.warning("MongoDB ping failed", error=str(e))

        # Start background scheduler (stats refresh, cache sweep)
        if settings.STATS_JOB_ENABLED:
            try:
                from services.background_scheduler import start_scheduler

                await start_scheduler()
                logger.info("Background scheduler started successfully")
            except Exception as e:
                logger.exception("Failed to start background scheduler", error=str(e))
                logger.warning("Precomputed stats will not refresh")

        logger.info("API started successfully")

    return start_app


def create_stop_app_handler(app: FastAPI) -> Callable:
    """Create shutdown event handler."""

    async def stop_app() -> None:
        logger.info("Shutting down API...")

        try:
            from services.background_scheduler import stop_scheduler

            await stop_scheduler()
        except Exception as e:
            logger.warning("Background scheduler cleanup failed", error=str(e))

        from db.mongo_session import close_mongo
        from db.shard_router import reset_shard_router
        from services.cache_service import reset_cache
        from services.stats_service import reset_stats_job

        reset_stats_job()
        reset_shard_router()
        reset_cache()
        await close_mongo()

        logger.info("API shutdown complete")

    return stop_app
