"""
Mobile app answer repository over the `mobileappanswers_{ac}` shards.
"""

from typing import Any

from db.shard_router import EntityKind
from repositories.sharded_repository import ShardedRepository, coerce_object_id


class MobileAppAnswerRepository(ShardedRepository):
    """Per-question answers from the field app, one collection per AC."""

    kind = EntityKind.MOBILE_APP_ANSWER

    async def get_answers_by_voter(self, shard_key: Any, voter_id: Any) -> list[dict[str, Any]]:
        """All answers recorded for one voter, latest first."""
        return await self.query(
            shard_key,
            {"voterId": coerce_object_id(voter_id)},
            sort={"submittedAt": -1},
        )

    async def count_by_question(self, shard_key: Any) -> list[dict[str, Any]]:
        """Answer counts per question and value."""
        return await self.aggregate(
            shard_key,
            [
                {
                    "$group": {
                        "_id": {"questionId": "$questionId", "answerValue": "$answerValue"},
                        "count": {"$sum": 1},
                    }
                },
                {"$sort": {"count": -1}},
            ],
        )
