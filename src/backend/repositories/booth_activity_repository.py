"""
Booth agent activity repository over the `boothagentactivities_{ac}` shards.
"""

from datetime import datetime, timezone
from typing import Any, Optional

import structlog

from db.shard_router import EntityKind
from models.shard_documents import ActivityStatus, ActivityType
from repositories.sharded_repository import ShardedRepository

logger = structlog.get_logger(__name__)


class BoothAgentActivityRepository(ShardedRepository):
    """Booth agent login sessions, one collection per AC."""

    kind = EntityKind.BOOTH_AGENT_ACTIVITY

    async def get_active_sessions(self, shard_key: Any) -> list[dict[str, Any]]:
        """Open sessions, latest login first."""
        return await self.query(
            shard_key,
            {"status": ActivityStatus.ACTIVE.value},
            sort={"loginTime": -1},
        )

    async def get_today_activities(
        self,
        shard_key: Any,
        now: Optional[datetime] = None,
    ) -> list[dict[str, Any]]:
        """Sessions that started since midnight UTC."""
        now = now or datetime.now(timezone.utc)
        start_of_day = now.replace(hour=0, minute=0, second=0, microsecond=0)
        return await self.query(
            shard_key,
            {"loginTime": {"$gte": start_of_day}},
            sort={"loginTime": -1},
        )

    async def get_activity_summary(
        self,
        shard_key: Any,
        start: datetime,
        end: datetime,
    ) -> list[dict[str, Any]]:
        """Per-agent session totals in a window, busiest agent first."""
        return await self.aggregate(
            shard_key,
            [
                {"$match": {"loginTime": {"$gte": start, "$lte": end}}},
                {
                    "$group": {
                        "_id": "$userId",
                        "userName": {"$first": "$userName"},
                        "totalSessions": {"$sum": 1},
                        "totalTimeMinutes": {"$sum": "$timeSpentMinutes"},
                        "avgTimePerSession": {"$avg": "$timeSpentMinutes"},
                        "firstLogin": {"$min": "$loginTime"},
                        "lastLogin": {"$max": "$loginTime"},
                    }
                },
                {"$sort": {"totalTimeMinutes": -1}},
            ],
        )

    async def end_session(
        self,
        shard_key: Any,
        activity_id: Any,
        logout_type: ActivityType = ActivityType.LOGOUT,
        now: Optional[datetime] = None,
    ) -> Optional[dict[str, Any]]:
        """
        Close a session: stamp logout time and minutes spent.

        Returns:
            The updated session, or None if it does not exist
        """
        activity = await self.get_by_id(shard_key, activity_id)
        if activity is None:
            return None

        logout_type = ActivityType(logout_type)
        logout_time = now or datetime.now(timezone.utc)
        login_time = activity.get("loginTime")
        time_spent = 0
        if isinstance(login_time, datetime):
            if login_time.tzinfo is None:
                login_time = login_time.replace(tzinfo=timezone.utc)
            time_spent = round((logout_time - login_time).total_seconds() / 60)

        status = ActivityStatus.TIMEOUT if logout_type == ActivityType.TIMEOUT else ActivityStatus.LOGOUT

        updated = await self.update_by_id(
            shard_key,
            activity["_id"],
            {
                "logoutTime": logout_time,
                "timeSpentMinutes": time_spent,
                "status": status.value,
                "activityType": logout_type.value,
            },
        )
        logger.info(
            "booth_session_ended",
            shard_key=shard_key,
            status=status.value,
            minutes=time_spent,
        )
        return updated
