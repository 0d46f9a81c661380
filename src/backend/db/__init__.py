"""Database module."""

from db.mongo_session import close_mongo, get_collection, get_database
from db.shard_router import EntityKind, ShardHandle, ShardRouter, get_shard_router

__all__ = [
    "get_database",
    "get_collection",
    "close_mongo",
    "EntityKind",
    "ShardHandle",
    "ShardRouter",
    "get_shard_router",
]
