"""
Dashboard statistics Pydantic schemas.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from models.shard_documents import BoothStats, PrecomputedStatsDocument


class StatsSource(str, Enum):
    """Where a dashboard payload was served from."""

    CACHE = "cache"  # Process-local cache
    PRECOMPUTED = "precomputed"  # precomputed_stats collection
    REALTIME = "realtime"  # Live aggregation


class ACDashboardStats(BaseModel):
    """Dashboard statistics for one AC."""

    ac_id: int
    ac_name: Optional[str] = None
    total_members: int = 0
    total_families: int = 0
    total_booths: int = 0
    surveys_completed: int = 0
    booth_stats: list[BoothStats] = Field(default_factory=list)
    computed_at: datetime
    source: StatsSource
    is_stale: bool = Field(False, description="True when served past the freshness window")

    @classmethod
    def from_record(
        cls,
        record: PrecomputedStatsDocument,
        source: StatsSource,
        is_stale: bool = False,
    ) -> "ACDashboardStats":
        counts = record.derived_counts
        return cls(
            ac_id=record.shard_key,
            ac_name=record.ac_name,
            total_members=counts.total_members,
            total_families=counts.total_families,
            total_booths=counts.total_booths,
            surveys_completed=counts.surveys_completed,
            booth_stats=record.booth_breakdown,
            computed_at=record.computed_at,
            source=source,
            is_stale=is_stale,
        )


class ACSummary(BaseModel):
    """One AC's headline numbers in the cross-AC overview."""

    ac_id: int
    ac_name: Optional[str] = None
    total_members: int = 0
    surveys_completed: int = 0
    total_booths: int = 0
    computed_at: datetime
    is_stale: bool = False


class OverviewStats(BaseModel):
    """Cross-AC totals built from the stored per-AC records."""

    total_members: int = 0
    total_families: int = 0
    total_booths: int = 0
    surveys_completed: int = 0
    acs: list[ACSummary] = Field(default_factory=list)
    missing_acs: list[int] = Field(
        default_factory=list, description="Configured ACs with no stored statistics yet"
    )
    stale_acs: list[int] = Field(default_factory=list)


class ShardJobResult(BaseModel):
    """Outcome of one AC in a stats job run."""

    shard_key: int
    status: str  # success | failed | skipped
    voters: Optional[int] = None
    duration_ms: Optional[int] = None
    error: Optional[str] = None


class JobSummary(BaseModel):
    """Operator-facing summary of one stats job run."""

    success: int = 0
    failed: int = 0
    skipped: int = 0
    details: list[ShardJobResult] = Field(default_factory=list)
    started_at: datetime
    total_duration_ms: int = 0
