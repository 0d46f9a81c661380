"""Repository modules for sharded database access."""

from repositories.booth_activity_repository import BoothAgentActivityRepository
from repositories.mobile_answer_repository import MobileAppAnswerRepository
from repositories.precomputed_stats_repository import PrecomputedStatsRepository
from repositories.sharded_repository import ShardedRepository, ShardLocated
from repositories.survey_response_repository import SurveyResponseRepository
from repositories.voter_repository import VoterRepository

__all__ = [
    "ShardedRepository",
    "ShardLocated",
    "VoterRepository",
    "SurveyResponseRepository",
    "BoothAgentActivityRepository",
    "MobileAppAnswerRepository",
    "PrecomputedStatsRepository",
]
