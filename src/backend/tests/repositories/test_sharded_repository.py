"""
Tests for single-shard primitives and query helpers.
"""

from datetime import datetime, timezone

import pytest
from bson import ObjectId
from pymongo.errors import ConnectionFailure

from core.exceptions import InvalidShardKey, ShardUnavailable
from db.shard_router import EntityKind
from repositories.sharded_repository import (
    ShardedRepository,
    bson_sort_key,
    build_projection,
    build_sort,
    coerce_object_id,
    get_path,
    sort_records,
)


@pytest.fixture
def repo(router):
    return ShardedRepository(router, timeout_seconds=0.5, kind=EntityKind.VOTER)


@pytest.fixture
def voters_101(seed):
    return seed(
        "voters",
        101,
        [
            {"_id": 1, "age": 40, "booth_id": "B1", "name": {"english": "Kumar"}},
            {"_id": 2, "age": 25, "booth_id": "B2", "name": {"english": "Anand"}},
            {"_id": 3, "age": 33, "booth_id": "B1", "name": {"english": "Meena"}},
        ],
    )


@pytest.mark.unit
class TestQueryHelpers:
    """Tests for projection, sort and ordering helpers."""

    def test_build_projection_from_string(self):
        assert build_projection("name age -_id") == {"name": 1, "age": 1, "_id": 0}

    def test_build_projection_passthrough(self):
        assert build_projection(["name"]) == {"name": 1}
        assert build_projection({"name": 1}) == {"name": 1}
        assert build_projection(None) is None

    def test_build_sort_preserves_key_order(self):
        assert build_sort({"boothno": 1, "age": -1}) == [("boothno", 1), ("age", -1)]

    def test_build_sort_rejects_bad_direction(self):
        with pytest.raises(ValueError):
            build_sort({"age": 0})

    def test_get_path_reads_nested_fields(self):
        assert get_path({"name": {"english": "Kumar"}}, "name.english") == "Kumar"
        assert get_path({"name": "flat"}, "name.english") is None

    def test_bson_order_across_types(self):
        values = [
            datetime(2024, 1, 1, tzinfo=timezone.utc),
            True,
            "abc",
            5,
            None,
        ]
        assert sorted(values, key=bson_sort_key) == [
            None,
            5,
            "abc",
            True,
            datetime(2024, 1, 1, tzinfo=timezone.utc),
        ]

    def test_sort_records_multi_key_is_stable(self):
        records = [
            {"id": "a", "booth": 2, "age": 30},
            {"id": "b", "booth": 1, "age": 30},
            {"id": "c", "booth": 1, "age": 50},
            {"id": "d", "booth": 1, "age": 30},
        ]
        sort_records(records, {"booth": 1, "age": -1})
        assert [r["id"] for r in records] == ["c", "b", "d", "a"]

    def test_missing_field_sorts_first_ascending(self):
        records = [{"id": 1, "age": 20}, {"id": 2}]
        assert [r["id"] for r in sort_records(records, {"age": 1})] == [2, 1]
        assert [r["id"] for r in sort_records(records, {"age": -1})] == [1, 2]

    def test_coerce_object_id(self):
        oid = ObjectId()
        assert coerce_object_id(str(oid)) == oid
        assert coerce_object_id("voter-1") == "voter-1"
        assert coerce_object_id(42) == 42


@pytest.mark.unit
class TestSingleShardPrimitives:
    """Tests for primitives bound to one AC."""

    def test_requires_entity_kind(self, router):
        with pytest.raises(TypeError):
            ShardedRepository(router, timeout_seconds=1)

    async def test_query_with_sort_skip_limit(self, repo, voters_101):
        records = await repo.query(101, {}, sort={"age": 1}, skip=1, limit=1)
        assert [r["_id"] for r in records] == [3]

    async def test_query_with_filter_and_select(self, repo, voters_101):
        records = await repo.query(101, {"booth_id": "B1"}, select="age -_id", sort={"age": -1})
        assert records == [{"age": 40}, {"age": 33}]

    async def test_query_empty_shard(self, repo):
        assert await repo.query(102, {}) == []

    async def test_query_invalid_shard_key(self, repo):
        with pytest.raises(InvalidShardKey):
            await repo.query(0, {})

    async def test_count(self, repo, voters_101):
        assert await repo.count(101, {"booth_id": "B1"}) == 2
        assert await repo.count("101") == 3

    async def test_aggregate(self, repo, voters_101):
        rows = await repo.aggregate(
            101,
            [{"$group": {"_id": "$booth_id", "voters": {"$sum": 1}}}, {"$sort": {"_id": 1}}],
        )
        assert rows == [{"_id": "B1", "voters": 2}, {"_id": "B2", "voters": 1}]

    async def test_find_one_and_get_by_id(self, repo, voters_101):
        assert (await repo.find_one(101, {"age": 25}))["_id"] == 2
        assert (await repo.get_by_id(101, 3))["name"]["english"] == "Meena"
        assert await repo.get_by_id(101, 99) is None

    async def test_create_stamps_shard_and_timestamps(self, repo, fake_db):
        created = await repo.create(102, {"name": {"english": "Devi"}})

        assert isinstance(created["_id"], ObjectId)
        assert created["aci_id"] == 102
        assert created["createdAt"] == created["updatedAt"]
        stored = fake_db.collections["voters_102"].docs
        assert stored[0]["_id"] == created["_id"]

    async def test_get_by_id_accepts_hex_string(self, repo):
        created = await repo.create(102, {"age": 50})
        found = await repo.get_by_id(102, str(created["_id"]))
        assert found["age"] == 50

    async def test_update_by_id_sets_fields(self, repo, voters_101):
        updated = await repo.update_by_id(101, 2, {"surveyed": True, "_id": "ignored"})

        assert updated["_id"] == 2
        assert updated["surveyed"] is True
        assert isinstance(updated["updatedAt"], datetime)

    async def test_update_by_id_passes_operators_through(self, repo, voters_101):
        updated = await repo.update_by_id(101, 1, {"$inc": {"age": 1}})
        assert updated["age"] == 41
        assert "updatedAt" in updated

    async def test_update_by_id_missing(self, repo, voters_101):
        assert await repo.update_by_id(101, 99, {"age": 1}) is None

    async def test_connection_failure_becomes_shard_unavailable(self, repo, voters_101):
        voters_101.error = ConnectionFailure("connection refused")

        with pytest.raises(ShardUnavailable) as exc_info:
            await repo.count(101, {})

        assert exc_info.value.collection_name == "voters_101"
        assert exc_info.value.shard_key == 101
        assert exc_info.value.operation == "count"

    async def test_timeout_becomes_shard_unavailable(self, router, voters_101):
        repo = ShardedRepository(router, timeout_seconds=0.01, kind=EntityKind.VOTER)
        voters_101.delay = 0.5

        with pytest.raises(ShardUnavailable, match="timed out"):
            await repo.query(101, {})

    async def test_other_errors_propagate_unchanged(self, repo, voters_101):
        voters_101.error = RuntimeError("bad pipeline")

        with pytest.raises(RuntimeError, match="bad pipeline"):
            await repo.find_one(101, {})
