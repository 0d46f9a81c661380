"""
Shared dependencies for API endpoints.

Includes:
- Shard router and process-local cache singletons
- Dashboard stats service and stats job wiring
- AC id validation for path parameters
"""

from typing import Annotated

from fastapi import Depends, HTTPException, Path, status

from core.exceptions import InvalidShardKey
from db.shard_router import ShardRouter, coerce_shard_key, get_shard_router
from services.cache_service import ProcessLocalCache, get_cache
from services.stats_service import (
    DashboardStatsService,
    StatsComputeJob,
    get_dashboard_stats_service,
    get_stats_job,
)


def get_router() -> ShardRouter:
    return get_shard_router()


def get_process_cache() -> ProcessLocalCache:
    return get_cache()


def get_dashboard_service() -> DashboardStatsService:
    return get_dashboard_stats_service()


def get_compute_job() -> StatsComputeJob:
    return get_stats_job()


async def get_valid_ac_id(
    ac_id: Annotated[str, Path(description="Assembly Constituency id")],
    router: Annotated[ShardRouter, Depends(get_router)],
) -> int:
    """
    Resolve the AC path parameter.

    The router accepts any positive integer; endpoints only serve the
    configured ACs.

    Raises:
        HTTPException: 400 for a malformed id, 404 for an AC that is not
            configured.
    """
    try:
        key = coerce_shard_key(ac_id)
    except InvalidShardKey as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e

    if not router.is_valid_shard_key(key):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"AC {key} not found")
    return key
