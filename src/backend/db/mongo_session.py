"""
MongoDB session management for document storage.

Uses the async PyMongo client. This module provides a single process-wide
client shared by the shard router and the precomputed stats store.
"""

import logging
from typing import Any

from pymongo import AsyncMongoClient
from pymongo.asynchronous.collection import AsyncCollection
from pymongo.asynchronous.database import AsyncDatabase

from core.config import settings

logger = logging.getLogger(__name__)

# Unsharded collections
PRECOMPUTED_STATS_COLLECTION = "precomputed_stats"

# Global client instances (lazy-initialized)
_mongo_client: AsyncMongoClient | None = None
_database: AsyncDatabase | None = None


def get_mongo_client() -> AsyncMongoClient:
    """
    Get or create the MongoDB client.

    The client is singleton and reused across requests. Creating it does not
    perform I/O; connections are opened on first use.

    Returns:
        AsyncMongoClient: Async MongoDB client
    """
    global _mongo_client

    if _mongo_client is None:
        _mongo_client = AsyncMongoClient(
            settings.MONGODB_URI,
            serverSelectionTimeoutMS=settings.MONGODB_SERVER_SELECTION_TIMEOUT_MS,
            tz_aware=True,
        )
        logger.info("Initialized MongoDB client (server selection timeout: %sms)",
                    settings.MONGODB_SERVER_SELECTION_TIMEOUT_MS)

    return _mongo_client


def get_database() -> AsyncDatabase:
    """
    Get the application database.

    Returns:
        AsyncDatabase: Database handle for the configured database name
    """
    global _database

    if _database is None:
        client = get_mongo_client()
        _database = client.get_database(settings.MONGODB_DATABASE)
        logger.info("Using database: %s", settings.MONGODB_DATABASE)

    return _database


def get_collection(collection_name: str) -> AsyncCollection:
    """
    Get a collection handle by name.

    Args:
        collection_name: Name of the collection (e.g., 'precomputed_stats')
    """
    return get_database().get_collection(collection_name)


async def ping() -> dict[str, Any]:
    """Round-trip to the server; raises if it cannot be reached."""
    return await get_database().command("ping")


async def close_mongo() -> None:
    """
    Close MongoDB connections.

    Should be called during application shutdown.
    """
    global _mongo_client, _database

    if _mongo_client is not None:
        await _mongo_client.close()
        _mongo_client = None
        _database = None
        logger.info("Closed MongoDB client")
