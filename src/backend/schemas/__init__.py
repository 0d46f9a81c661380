"""Schemas module initialization."""

from schemas.dashboard import (
    ACDashboardStats,
    ACSummary,
    JobSummary,
    OverviewStats,
    ShardJobResult,
    StatsSource,
)

__all__ = [
    "ACDashboardStats",
    "ACSummary",
    "OverviewStats",
    "JobSummary",
    "ShardJobResult",
    "StatsSource",
]
