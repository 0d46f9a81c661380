"""Document models module."""

from models.shard_documents import (
    BoothAgentActivityDocument,
    BoothStats,
    DerivedCounts,
    MobileAppAnswerDocument,
    PrecomputedStatsDocument,
    ShardedDocument,
    StatsLookup,
    SurveyResponseDocument,
    VoterDocument,
)

__all__ = [
    "ShardedDocument",
    "VoterDocument",
    "SurveyResponseDocument",
    "BoothAgentActivityDocument",
    "MobileAppAnswerDocument",
    "BoothStats",
    "DerivedCounts",
    "PrecomputedStatsDocument",
    "StatsLookup",
]
