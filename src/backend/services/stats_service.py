"""
AC statistics: computation, the background refresh job, and the dashboard
read path.

Heavy per-AC aggregations are computed by a background job and stored in
`precomputed_stats`. Dashboards read, in order:

1. the process-local cache,
2. the stored record, when fresh,
3. a live aggregation (stored and cached for the next request).

A stale stored record is still served, flagged, when the live aggregation
fails.
"""

import asyncio
import time
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Iterable, Optional

import structlog

from core.config import settings
from core.exceptions import ComputeFailure, ShardError
from db.shard_router import coerce_shard_key
from models.shard_documents import BoothStats, DerivedCounts, PrecomputedStatsDocument
from repositories.precomputed_stats_repository import PrecomputedStatsRepository
from repositories.voter_repository import VoterRepository
from schemas.dashboard import (
    ACDashboardStats,
    ACSummary,
    JobSummary,
    OverviewStats,
    ShardJobResult,
    StatsSource,
)
from services.cache_service import TTL, ProcessLocalCache, cache_keys

logger = structlog.get_logger(__name__)

ComputeFn = Callable[[int], Awaitable[Optional[PrecomputedStatsDocument]]]
SaveFn = Callable[[PrecomputedStatsDocument], Awaitable[Any]]


# ============================================================================
# Computation
# ============================================================================


async def compute_stats_for_shard(
    shard_key: Any,
    voter_repo: Optional[VoterRepository] = None,
) -> PrecomputedStatsDocument:
    """
    Compute the aggregate statistics for one AC.

    This is the heavy operation: the aggregations for one AC run in parallel.
    An AC without voters yields a zeroed record.

    Raises:
        ComputeFailure: If any aggregation fails.
    """
    key = coerce_shard_key(shard_key)
    if voter_repo is None:
        voter_repo = VoterRepository(timeout_seconds=settings.STATS_COMPUTE_TIMEOUT_SECONDS)
    started = time.perf_counter()

    try:
        sample = await voter_repo.find_one(key, {}, select={"_id": 1})
        if sample is None:
            return PrecomputedStatsDocument(
                shard_key=key,
                computed_at=datetime.now(timezone.utc),
                compute_duration_ms=_elapsed_ms(started),
            )

        (
            total_members,
            surveys_completed,
            total_families,
            total_booths,
            booth_rows,
            ac_meta,
        ) = await asyncio.gather(
            voter_repo.count(key, {}),
            voter_repo.count_surveyed(key),
            voter_repo.count_families(key),
            voter_repo.count_booths(key),
            voter_repo.booth_breakdown(key),
            voter_repo.get_ac_metadata(key),
        )

        return PrecomputedStatsDocument(
            shard_key=key,
            ac_name=(ac_meta or {}).get("aci_name"),
            derived_counts=DerivedCounts(
                total_members=total_members,
                total_families=total_families,
                total_booths=total_booths,
                surveys_completed=surveys_completed,
            ),
            booth_breakdown=[_booth_stats(row) for row in booth_rows],
            computed_at=datetime.now(timezone.utc),
            compute_duration_ms=_elapsed_ms(started),
        )
    except ShardError as e:
        raise ComputeFailure(key, str(e)) from e
    except Exception as e:
        raise ComputeFailure(key, f"{type(e).__name__}: {e}") from e


def _booth_stats(row: dict[str, Any]) -> BoothStats:
    return BoothStats(
        booth_no=row.get("boothno"),
        booth_name=row.get("_id"),
        booth_id=row.get("booth_id"),
        voters=row.get("voters") or 0,
        male_voters=row.get("maleVoters") or 0,
        female_voters=row.get("femaleVoters") or 0,
        verified_voters=row.get("verifiedVoters") or 0,
        surveyed_voters=row.get("surveyedVoters") or 0,
        avg_age=round(row.get("avgAge") or 0),
        family_count=row.get("familyCount") or 0,
    )


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


# ============================================================================
# Background job
# ============================================================================


class StatsComputeJob:
    """
    Recomputes and stores the statistics of every AC.

    ACs are processed one at a time with a fixed delay between them to bound
    peak database load.

    A run is never re-entered: a trigger that arrives while a run is in
    progress is dropped, not queued.
    """

    def __init__(
        self,
        compute_fn: ComputeFn,
        save_fn: SaveFn,
        shard_keys: Iterable[int],
        shard_delay_seconds: float = settings.STATS_JOB_SHARD_DELAY_SECONDS,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        on_saved: Optional[Callable[[PrecomputedStatsDocument], None]] = None,
    ):
        self.compute_fn = compute_fn
        self.save_fn = save_fn
        self.shard_keys = list(shard_keys)
        self.shard_delay_seconds = shard_delay_seconds
        self._sleep = sleep
        self._on_saved = on_saved
        self._running = False
        self.last_summary: Optional[JobSummary] = None
        self.skipped_triggers = 0

    @property
    def is_running(self) -> bool:
        return self._running

    async def _compute_and_save(self, shard_key: int) -> ShardJobResult:
        try:
            record = await self.compute_fn(shard_key)
            if record is None:
                return ShardJobResult(shard_key=shard_key, status="skipped")
            await self.save_fn(record)
        except Exception as e:
            logger.error("stats_compute_failed", shard_key=shard_key, error=str(e))
            return ShardJobResult(shard_key=shard_key, status="failed", error=str(e))

        # The record is stored; a failing hook must not end the pass
        if self._on_saved is not None:
            try:
                self._on_saved(record)
            except Exception as e:
                logger.error("stats_on_saved_failed", shard_key=shard_key, error=str(e))

        voters = record.derived_counts.total_members
        logger.info(
            "stats_computed",
            shard_key=shard_key,
            voters=voters,
            duration_ms=record.compute_duration_ms,
        )
        return ShardJobResult(
            shard_key=shard_key,
            status="success",
            voters=voters,
            duration_ms=record.compute_duration_ms,
        )

    async def compute_all(self) -> JobSummary:
        """
        One pass over every AC, paced by shard_delay_seconds.

        Per-AC failures are tallied in the summary, never raised.
        """
        logger.info(
            "stats_job_started",
            shards=len(self.shard_keys),
            delay_seconds=self.shard_delay_seconds,
        )
        started = time.perf_counter()
        summary = JobSummary(started_at=datetime.now(timezone.utc))

        for index, shard_key in enumerate(self.shard_keys):
            result = await self._compute_and_save(shard_key)
            summary.details.append(result)
            if result.status == "success":
                summary.success += 1
            elif result.status == "failed":
                summary.failed += 1
            else:
                summary.skipped += 1

            if index < len(self.shard_keys) - 1 and self.shard_delay_seconds > 0:
                await self._sleep(self.shard_delay_seconds)

        summary.total_duration_ms = _elapsed_ms(started)
        self.last_summary = summary
        logger.info(
            "stats_job_completed",
            success=summary.success,
            failed=summary.failed,
            skipped=summary.skipped,
            duration_s=round(summary.total_duration_ms / 1000),
        )
        return summary

    async def run_if_not_busy(self) -> Optional[JobSummary]:
        """
        Run compute_all unless a run is already in progress.

        Returns:
            The run summary, or None when the trigger was dropped
        """
        if self._running:
            self.skipped_triggers += 1
            logger.info("stats_job_skipped", reason="previous computation still running")
            return None

        self._running = True
        try:
            return await self.compute_all()
        finally:
            self._running = False


# Global job instance (lazy-initialized)
_stats_job: Optional[StatsComputeJob] = None


def get_stats_job() -> StatsComputeJob:
    """Get the process-wide stats job wired to the real repositories."""
    global _stats_job
    if _stats_job is None:
        from db.shard_router import get_shard_router
        from services.cache_service import get_cache

        router = get_shard_router()
        voter_repo = VoterRepository(router, timeout_seconds=settings.STATS_COMPUTE_TIMEOUT_SECONDS)
        stats_repo = PrecomputedStatsRepository()
        cache = get_cache()

        async def compute(shard_key: int) -> PrecomputedStatsDocument:
            return await compute_stats_for_shard(shard_key, voter_repo)

        def invalidate(record: PrecomputedStatsDocument) -> None:
            cache.invalidate_shard(record.shard_key)

        _stats_job = StatsComputeJob(
            compute_fn=compute,
            save_fn=stats_repo.save,
            shard_keys=router.shard_keys,
            shard_delay_seconds=settings.STATS_JOB_SHARD_DELAY_SECONDS,
            on_saved=invalidate,
        )
    return _stats_job


def reset_stats_job() -> None:
    global _stats_job
    _stats_job = None


# ============================================================================
# Dashboard read path
# ============================================================================


class DashboardStatsService:
    """Serves AC dashboard statistics: cache, then store, then live."""

    def __init__(
        self,
        cache: ProcessLocalCache,
        stats_repo: PrecomputedStatsRepository,
        compute_fn: ComputeFn,
        shard_keys: Iterable[int],
        max_age_seconds: float = settings.PRECOMPUTED_STATS_MAX_AGE_SECONDS,
        cache_ttl_seconds: float = TTL.DASHBOARD_STATS,
    ):
        self.cache = cache
        self.stats_repo = stats_repo
        self.compute_fn = compute_fn
        self.shard_keys = list(shard_keys)
        self.max_age_seconds = max_age_seconds
        self.cache_ttl_seconds = cache_ttl_seconds

    async def get_ac_stats(self, shard_key: Any) -> ACDashboardStats:
        """
        Dashboard statistics for one AC.

        Raises:
            InvalidShardKey: If shard_key is not a positive integer.
            ComputeFailure: If nothing is cached or stored and the live
                aggregation fails.
        """
        key = coerce_shard_key(shard_key)
        cache_key = cache_keys.dashboard_stats(key)

        hit = self.cache.get(cache_key, self.cache_ttl_seconds)
        if hit is not None:
            return hit.model_copy(update={"source": StatsSource.CACHE})

        lookup = await self.stats_repo.get(key, self.max_age_seconds)
        if lookup is not None and not lookup.is_stale:
            stats = ACDashboardStats.from_record(lookup.record, StatsSource.PRECOMPUTED)
            self.cache.set(cache_key, stats, self.cache_ttl_seconds)
            return stats

        logger.info(
            "dashboard_stats_live_compute",
            shard_key=key,
            reason="stale" if lookup is not None else "missing",
        )
        try:
            record = await self.compute_fn(key)
        except ComputeFailure as e:
            if lookup is None:
                raise
            logger.warning("dashboard_stats_serving_stale", shard_key=key, error=str(e))
            return ACDashboardStats.from_record(lookup.record, StatsSource.PRECOMPUTED, is_stale=True)

        if record is None:
            raise ComputeFailure(key, "no statistics available")

        try:
            await self.stats_repo.save(record)
        except Exception as e:
            # The live result is still served; the job will store it next pass
            logger.warning("dashboard_stats_save_failed", shard_key=key, error=str(e))

        stats = ACDashboardStats.from_record(record, StatsSource.REALTIME)
        self.cache.set(cache_key, stats, self.cache_ttl_seconds)
        return stats

    async def get_overview(self) -> OverviewStats:
        """
        Cross-AC totals from the stored records only.

        Never aggregates live across ACs; ACs without a stored record are
        listed as missing.
        """
        hit = self.cache.get(cache_keys.overview(), self.cache_ttl_seconds)
        if hit is not None:
            return hit

        now = datetime.now(timezone.utc)
        configured = set(self.shard_keys)
        records = {r.shard_key: r for r in await self.stats_repo.get_all() if r.shard_key in configured}

        overview = OverviewStats()
        for key in self.shard_keys:
            record = records.get(key)
            if record is None:
                overview.missing_acs.append(key)
                continue
            counts = record.derived_counts
            is_stale = record.age_ms(now) > self.max_age_seconds * 1000
            overview.total_members += counts.total_members
            overview.total_families += counts.total_families
            overview.total_booths += counts.total_booths
            overview.surveys_completed += counts.surveys_completed
            overview.acs.append(
                ACSummary(
                    ac_id=key,
                    ac_name=record.ac_name,
                    total_members=counts.total_members,
                    surveys_completed=counts.surveys_completed,
                    total_booths=counts.total_booths,
                    computed_at=record.computed_at,
                    is_stale=is_stale,
                )
            )
            if is_stale:
                overview.stale_acs.append(key)

        self.cache.set(cache_keys.overview(), overview, self.cache_ttl_seconds)
        return overview


def get_dashboard_stats_service() -> DashboardStatsService:
    """FastAPI dependency wiring the dashboard service to process singletons."""
    from db.shard_router import get_shard_router
    from services.cache_service import get_cache

    router = get_shard_router()
    voter_repo = VoterRepository(router, timeout_seconds=settings.STATS_COMPUTE_TIMEOUT_SECONDS)

    async def compute(shard_key: int) -> PrecomputedStatsDocument:
        return await compute_stats_for_shard(shard_key, voter_repo)

    return DashboardStatsService(
        cache=get_cache(),
        stats_repo=PrecomputedStatsRepository(),
        compute_fn=compute,
        shard_keys=router.shard_keys,
    )
