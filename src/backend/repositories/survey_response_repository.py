"""
Survey response repository over the `surveyresponses_{ac}` shards.
"""

from typing import Any

from db.shard_router import EntityKind
from repositories.sharded_repository import ShardedRepository


class SurveyResponseRepository(ShardedRepository):
    """Survey submissions, one collection per AC."""

    kind = EntityKind.SURVEY_RESPONSE

    async def list_recent(self, shard_key: Any, limit: int = 20) -> list[dict[str, Any]]:
        """Newest submissions first."""
        return await self.query(shard_key, {}, sort={"createdAt": -1}, limit=limit)

    async def list_recent_all(self, limit: int = 20) -> list[dict[str, Any]]:
        """Newest submissions across every AC, tagged with their AC."""
        return await self.fan_out_query(
            {}, sort={"createdAt": -1}, limit=limit, tag_shard=True
        )

    async def find_by_voter(self, shard_key: Any, voter_id: str) -> list[dict[str, Any]]:
        """Submissions about one voter (current or legacy voter id field)."""
        return await self.query(
            shard_key,
            {"$or": [{"respondentVoterId": voter_id}, {"voterID": voter_id}]},
            sort={"createdAt": -1},
        )
