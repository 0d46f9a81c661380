"""
Precomputed statistics store.

Instead of running heavy aggregations on every dashboard request, the stats
job computes one document per AC and stores it in `precomputed_stats`. The
serving path reads a single document.

Staleness is judged at read time from computedAt; a stale record is still
returned (flagged) so dashboards stay available when the job falls behind.
"""

import asyncio
from datetime import datetime
from typing import Any, Optional

import structlog
from pydantic import ValidationError
from pymongo import DESCENDING, IndexModel

from db.shard_router import coerce_shard_key
from models.shard_documents import PrecomputedStatsDocument, StatsLookup

logger = structlog.get_logger(__name__)


class PrecomputedStatsRepository:
    """Read/write access to the `precomputed_stats` collection."""

    def __init__(self, collection: Any = None, timeout_seconds: Optional[float] = None):
        if collection is None:
            from db.mongo_session import PRECOMPUTED_STATS_COLLECTION, get_collection

            collection = get_collection(PRECOMPUTED_STATS_COLLECTION)
        if timeout_seconds is None:
            from core.config import settings

            timeout_seconds = settings.SHARD_TIMEOUT_SECONDS
        self.collection = collection
        self.timeout_seconds = timeout_seconds

    async def get(
        self,
        shard_key: Any,
        max_age_seconds: float,
        now: Optional[datetime] = None,
    ) -> Optional[StatsLookup]:
        """
        Get the stored stats for one AC.

        Args:
            shard_key: AC id
            max_age_seconds: Freshness window
            now: Reference time (defaults to current UTC time)

        Returns:
            The record with is_stale set when older than max_age_seconds,
            or None when no record exists or the store cannot be read
        """
        key = coerce_shard_key(shard_key)
        try:
            raw = await asyncio.wait_for(
                self.collection.find_one({"shardKey": key}),
                timeout=self.timeout_seconds,
            )
            if raw is None:
                return None
            record = PrecomputedStatsDocument.model_validate(raw)
        except Exception as e:
            logger.error("precomputed_stats_read_failed", shard_key=key, error=str(e))
            return None

        is_stale = record.age_ms(now) > max_age_seconds * 1000
        return StatsLookup(record=record, is_stale=is_stale)

    async def save(self, record: PrecomputedStatsDocument) -> PrecomputedStatsDocument:
        """
        Upsert the stats for one AC.

        The whole document is replaced in one write, so readers never see
        fields from two different computations.
        """
        document = record.to_mongo()
        await asyncio.wait_for(
            self.collection.replace_one({"shardKey": record.shard_key}, document, upsert=True),
            timeout=self.timeout_seconds,
        )
        return record

    async def get_all(self) -> list[PrecomputedStatsDocument]:
        """All stored AC records, ordered by AC id."""
        try:
            cursor = self.collection.find({}).sort([("shardKey", 1)])
            rows = await asyncio.wait_for(cursor.to_list(length=None), timeout=self.timeout_seconds)
        except Exception as e:
            logger.error("precomputed_stats_read_all_failed", error=str(e))
            return []

        records = []
        for row in rows:
            try:
                records.append(PrecomputedStatsDocument.model_validate(row))
            except ValidationError as e:
                logger.warning(
                    "precomputed_stats_row_skipped",
                    id=str(row.get("_id")),
                    errors=e.error_count(),
                )
        return records

    async def delete(self, shard_key: Any) -> bool:
        """Remove the stored record for one AC."""
        result = await self.collection.delete_one({"shardKey": coerce_shard_key(shard_key)})
        return result.deleted_count > 0

    async def ensure_indexes(self) -> list[str]:
        """Unique index on shardKey; computedAt for freshness scans."""
        return await self.collection.create_indexes(
            [
                IndexModel([("shardKey", 1)], unique=True, name="uniq_shard_key"),
                IndexModel([("computedAt", DESCENDING)], name="computed_at_desc"),
            ]
        )
