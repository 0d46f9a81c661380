"""
MongoDB document models for AC-sharded field data.

Sharded documents are schema-on-read: the collections hold whatever the
mobile app and importers wrote. Each model types the well-known indexed
fields and keeps everything else in the pydantic extra bag, exposed as
`extra_fields`.

Collection Strategy:
- voters_{ac}: Electoral roll entries
- surveyresponses_{ac}: Survey form submissions
- boothagentactivities_{ac}: Booth agent login sessions
- mobileappanswers_{ac}: Per-question answers from the mobile app
- precomputed_stats: One aggregate document per AC (unsharded)
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Legacy imports stored "surveyed" as strings
SURVEYED_TRUE_VALUES: tuple[Any, ...] = (True, "true", "yes", "Yes")


# ============================================================================
# Enums
# ============================================================================


class ActivityStatus(str, Enum):
    """Booth agent session status."""

    ACTIVE = "active"
    TIMEOUT = "timeout"
    LOGOUT = "logout"
    INACTIVE = "inactive"


class ActivityType(str, Enum):
    """How a booth agent session event was recorded."""

    LOGIN = "login"
    LOGOUT = "logout"
    AUTO_LOGOUT = "auto-logout"
    TIMEOUT = "timeout"
    SESSION = "session"


# ============================================================================
# Base Document Model
# ============================================================================


class ShardedDocument(BaseModel):
    """
    Base class for documents living in an AC shard.

    All sharded documents carry:
    - _id: Unique within the shard (only by convention across shards)
    - aci_id: The AC (shard key) the document belongs to
    - booth fields aligned with the voters collection
    """

    model_config = ConfigDict(
        extra="allow",
        populate_by_name=True,
        arbitrary_types_allowed=True,
        use_enum_values=True,
    )

    id: Any = Field(default=None, alias="_id")
    aci_id: Optional[int] = None
    aci_name: Optional[str] = None
    booth_id: Optional[str] = None
    boothname: Optional[str] = None
    boothno: Any = None  # String or number depending on importer
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")
    updated_at: Optional[datetime] = Field(default=None, alias="updatedAt")

    @property
    def extra_fields(self) -> dict[str, Any]:
        """Fields present in the document but not declared on the model."""
        return dict(self.model_extra or {})

    def to_mongo(self) -> dict[str, Any]:
        """Dump using the stored field names, dropping unset ids."""
        return self.model_dump(by_alias=True, exclude_none=True)


# ============================================================================
# Sharded Entity Documents
# ============================================================================


class VoterName(BaseModel):
    """Voter name in both scripts."""

    english: Optional[str] = None
    tamil: Optional[str] = None


class VoterDocument(ShardedDocument):
    """Electoral roll entry stored in `voters_{ac}`."""

    name: Optional[VoterName] = None
    voter_id: Optional[str] = Field(default=None, alias="voterID")
    age: Optional[int] = None
    gender: Optional[str] = None
    mobile: Any = None  # String or number
    family_id: Optional[str] = Field(default=None, alias="familyId")
    verified: Optional[bool] = None
    surveyed: Any = False  # bool, or legacy "true"/"yes"/"Yes"
    surveyed_at: Optional[datetime] = Field(default=None, alias="surveyedAt")
    booth_agent_id: Optional[str] = None

    @property
    def is_surveyed(self) -> bool:
        return self.surveyed in SURVEYED_TRUE_VALUES


class SurveyResponseDocument(ShardedDocument):
    """Survey form submission stored in `surveyresponses_{ac}`."""

    form_id: Any = Field(default=None, alias="formId")
    respondent_name: Optional[str] = Field(default=None, alias="respondentName")
    respondent_voter_id: Optional[str] = Field(default=None, alias="respondentVoterId")
    answers: list[dict[str, Any]] = Field(default_factory=list)
    is_complete: Optional[bool] = Field(default=None, alias="isComplete")
    submitted_at: Optional[datetime] = Field(default=None, alias="submittedAt")


class BoothAgentActivityDocument(ShardedDocument):
    """Booth agent session stored in `boothagentactivities_{ac}`."""

    aci_id: Any = None  # Historic rows store the AC as a string
    user_id: Any = Field(default=None, alias="userId")
    user_name: Optional[str] = Field(default=None, alias="userName")
    login_time: Optional[datetime] = Field(default=None, alias="loginTime")
    logout_time: Optional[datetime] = Field(default=None, alias="logoutTime")
    time_spent_minutes: Optional[int] = Field(default=None, alias="timeSpentMinutes")
    status: ActivityStatus = ActivityStatus.ACTIVE
    activity_type: ActivityType = Field(default=ActivityType.LOGIN, alias="activityType")


class MobileAppAnswerDocument(ShardedDocument):
    """Single question answer stored in `mobileappanswers_{ac}`."""

    voter_id: Any = Field(default=None, alias="voterId")
    question_id: Any = Field(default=None, alias="questionId")
    answer_value: Optional[str] = Field(default=None, alias="answerValue")
    answer_label: Optional[str] = Field(default=None, alias="answerLabel")
    submitted_by: Any = Field(default=None, alias="submittedBy")
    submitted_at: Optional[datetime] = Field(default=None, alias="submittedAt")


# ============================================================================
# Precomputed Statistics
# ============================================================================


class BoothStats(BaseModel):
    """Per-booth rollup inside a precomputed stats document."""

    model_config = ConfigDict(populate_by_name=True)

    booth_id: Optional[str] = Field(default=None, alias="boothId")
    booth_no: Any = Field(default=None, alias="boothNo")
    booth_name: Optional[str] = Field(default=None, alias="boothName")
    voters: int = 0
    male_voters: int = Field(default=0, alias="maleVoters")
    female_voters: int = Field(default=0, alias="femaleVoters")
    verified_voters: int = Field(default=0, alias="verifiedVoters")
    surveyed_voters: int = Field(default=0, alias="surveyedVoters")
    avg_age: int = Field(default=0, alias="avgAge")
    family_count: int = Field(default=0, alias="familyCount")

    @field_validator("booth_id", "booth_name", mode="before")
    @classmethod
    def coerce_to_str(cls, v: Any) -> Optional[str]:
        """Importers store booth ids and names as numbers as well as strings."""
        if v is None:
            return None
        return str(v)


class DerivedCounts(BaseModel):
    """AC-level totals."""

    model_config = ConfigDict(populate_by_name=True)

    total_members: int = Field(default=0, alias="totalMembers")
    total_families: int = Field(default=0, alias="totalFamilies")
    total_booths: int = Field(default=0, alias="totalBooths")
    surveys_completed: int = Field(default=0, alias="surveysCompleted")


class PrecomputedStatsDocument(BaseModel):
    """
    Aggregate statistics for one AC, stored in `precomputed_stats`.

    Unique on shardKey. Written wholesale by the stats job; never patched
    field-by-field by the serving path.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    shard_key: int = Field(alias="shardKey")
    ac_name: Optional[str] = Field(default=None, alias="acName")
    derived_counts: DerivedCounts = Field(default_factory=DerivedCounts, alias="derivedCounts")
    booth_breakdown: list[BoothStats] = Field(default_factory=list, alias="boothBreakdown")
    computed_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc), alias="computedAt"
    )
    compute_duration_ms: int = Field(default=0, alias="computeDurationMs")

    def age_ms(self, now: Optional[datetime] = None) -> int:
        """Milliseconds since computation."""
        now = now or datetime.now(timezone.utc)
        computed_at = self.computed_at
        if computed_at.tzinfo is None:
            computed_at = computed_at.replace(tzinfo=timezone.utc)
        return int((now - computed_at).total_seconds() * 1000)

    def to_mongo(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class StatsLookup(BaseModel):
    """A stored stats record plus its read-time freshness judgement."""

    record: PrecomputedStatsDocument
    is_stale: bool


__all__ = [
    "SURVEYED_TRUE_VALUES",
    "ActivityStatus",
    "ActivityType",
    "ShardedDocument",
    "VoterName",
    "VoterDocument",
    "SurveyResponseDocument",
    "BoothAgentActivityDocument",
    "MobileAppAnswerDocument",
    "BoothStats",
    "DerivedCounts",
    "PrecomputedStatsDocument",
    "StatsLookup",
]
