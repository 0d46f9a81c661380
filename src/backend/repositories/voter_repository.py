"""
Voter repository over the `voters_{ac}` shards.
"""

from typing import Any, Optional

from db.shard_router import EntityKind
from models.shard_documents import SURVEYED_TRUE_VALUES
from repositories.sharded_repository import ShardedRepository

# Matches legacy string values of `surveyed` as well as booleans
SURVEYED_FILTER = {"surveyed": {"$in": list(SURVEYED_TRUE_VALUES)}}


class VoterRepository(ShardedRepository):
    """Electoral roll access, one collection per AC."""

    kind = EntityKind.VOTER

    async def count_surveyed(self, shard_key: Any) -> int:
        """Count voters marked surveyed (boolean or legacy string)."""
        return await self.count(shard_key, SURVEYED_FILTER)

    async def count_families(self, shard_key: Any) -> int:
        """Count distinct non-null family ids in one AC."""
        rows = await self.aggregate(
            shard_key,
            [
                {"$match": {"familyId": {"$exists": True, "$nin": [None, ""]}}},
                {"$group": {"_id": "$familyId"}},
                {"$count": "total"},
            ],
        )
        return rows[0]["total"] if rows else 0

    async def count_booths(self, shard_key: Any) -> int:
        """Count distinct booths in one AC."""
        rows = await self.aggregate(
            shard_key,
            [
                {"$match": {"booth_id": {"$exists": True, "$ne": None}}},
                {"$group": {"_id": "$booth_id"}},
                {"$count": "total"},
            ],
        )
        return rows[0]["total"] if rows else 0

    async def get_ac_metadata(self, shard_key: Any) -> Optional[dict[str, Any]]:
        """AC name and number, read from any voter in the shard."""
        return await self.find_one(shard_key, {}, select={"aci_name": 1, "aci_id": 1})

    async def booth_breakdown(self, shard_key: Any) -> list[dict[str, Any]]:
        """
        Per-booth rollups with demographics, ordered by booth number.

        Raw aggregation rows: _id is the booth name.
        """
        surveyed_expr = {"$or": [{"$eq": ["$surveyed", value]} for value in SURVEYED_TRUE_VALUES]}
        return await self.aggregate(
            shard_key,
            [
                {
                    "$group": {
                        "_id": "$boothname",
                        "boothno": {"$first": "$boothno"},
                        "booth_id": {"$first": "$booth_id"},
                        "voters": {"$sum": 1},
                        "maleVoters": {"$sum": {"$cond": [{"$eq": ["$gender", "Male"]}, 1, 0]}},
                        "femaleVoters": {"$sum": {"$cond": [{"$eq": ["$gender", "Female"]}, 1, 0]}},
                        "verifiedVoters": {"$sum": {"$cond": ["$verified", 1, 0]}},
                        "surveyedVoters": {"$sum": {"$cond": [surveyed_expr, 1, 0]}},
                        "avgAge": {"$avg": "$age"},
                        "uniqueFamilies": {"$addToSet": "$familyId"},
                    }
                },
                {
                    "$project": {
                        "boothno": 1,
                        "booth_id": 1,
                        "voters": 1,
                        "maleVoters": 1,
                        "femaleVoters": 1,
                        "verifiedVoters": 1,
                        "surveyedVoters": 1,
                        "avgAge": 1,
                        "familyCount": {
                            "$size": {
                                "$filter": {
                                    "input": "$uniqueFamilies",
                                    "as": "f",
                                    "cond": {"$and": [{"$ne": ["$$f", None]}, {"$ne": ["$$f", ""]}]},
                                }
                            }
                        },
                    }
                },
                {"$sort": {"boothno": 1}},
            ],
        )

    async def list_booths(self, shard_key: Any) -> list[dict[str, Any]]:
        """Distinct booths in one AC with voter counts."""
        return await self.aggregate(
            shard_key,
            [
                {"$match": {"booth_id": {"$exists": True, "$ne": None}}},
                {
                    "$group": {
                        "_id": "$booth_id",
                        "boothname": {"$first": "$boothname"},
                        "boothno": {"$first": "$boothno"},
                        "voters": {"$sum": 1},
                    }
                },
                {"$sort": {"boothno": 1}},
            ],
        )
