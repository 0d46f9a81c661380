"""
AC statistics API endpoints.

Serves dashboard statistics from the process-local cache, the precomputed
stats store, or a live aggregation, in that order.
"""

from typing import Annotated, Any

import structlog
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, status
from pydantic import BaseModel

from api.deps import get_compute_job, get_dashboard_service, get_process_cache, get_valid_ac_id
from core.exceptions import ComputeFailure
from schemas.dashboard import ACDashboardStats, OverviewStats
from services.cache_service import ProcessLocalCache
from services.stats_service import DashboardStatsService, StatsComputeJob

logger = structlog.get_logger(__name__)

router = APIRouter()


class CacheStatsResponse(BaseModel):
    """Process-local cache counters."""

    total: int
    valid: int
    expired: int
    hits: int
    misses: int


class RecomputeResponse(BaseModel):
    """Outcome of a manual recompute trigger."""

    status: str  # started (scheduled) | busy
    last_summary: dict[str, Any] | None = None


@router.get(
    "/acs/{ac_id}",
    response_model=ACDashboardStats,
    summary="Get dashboard statistics for one AC",
    description="""
    Returns AC totals and the per-booth breakdown.

    ### Response includes:
    - **source**: `cache`, `precomputed` or `realtime`
    - **is_stale**: True when a stored record past its freshness window is
      served because the live aggregation failed
    """,
)
async def get_ac_stats(
    ac_id: Annotated[int, Depends(get_valid_ac_id)],
    service: Annotated[DashboardStatsService, Depends(get_dashboard_service)],
) -> ACDashboardStats:
    try:
        return await service.get_ac_stats(ac_id)
    except ComputeFailure as e:
        logger.error("ac_stats_unavailable", ac_id=ac_id, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Statistics for AC {ac_id} are temporarily unavailable",
        ) from e


@router.get(
    "/overview",
    response_model=OverviewStats,
    summary="Get cross-AC totals",
)
async def get_overview(
    service: Annotated[DashboardStatsService, Depends(get_dashboard_service)],
) -> OverviewStats:
    """Totals across every configured AC, read from the stored records."""
    return await service.get_overview()


@router.get("/cache", response_model=CacheStatsResponse, summary="Get cache counters")
async def get_cache_stats(
    cache: Annotated[ProcessLocalCache, Depends(get_process_cache)],
) -> CacheStatsResponse:
    return CacheStatsResponse(**cache.stats())


@router.post(
    "/recompute",
    response_model=RecomputeResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Trigger a stats computation pass",
)
async def recompute_stats(
    background_tasks: BackgroundTasks,
    job: Annotated[StatsComputeJob, Depends(get_compute_job)],
) -> RecomputeResponse:
    """
    Start a full pass in the background.

    A pass paces itself between ACs and takes minutes, so the request does
    not wait for it. Reports `busy` when a pass is already running.

    `started` means the pass was scheduled. If a scheduler tick starts a pass
    before the background task runs, the job guard drops this trigger and
    counts it in `skipped_triggers`; the running pass still refreshes every AC.
    """
    last = job.last_summary.model_dump(mode="json") if job.last_summary else None
    if job.is_running:
        return RecomputeResponse(status="busy", last_summary=last)

    background_tasks.add_task(job.run_if_not_busy)
    logger.info("stats_recompute_requested")
    return RecomputeResponse(status="started", last_summary=last)
