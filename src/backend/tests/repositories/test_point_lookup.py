"""
Tests for point lookups when the AC is unknown.
"""

import pytest
from bson import ObjectId
from pymongo.errors import ConnectionFailure

from core.config import DEFAULT_SHARD_KEYS
from db.shard_router import ShardRouter
from repositories.survey_response_repository import SurveyResponseRepository

ALL_KEYS = [int(k) for k in DEFAULT_SHARD_KEYS.split(",")]


@pytest.fixture
def full_router(fake_db):
    return ShardRouter(fake_db, ALL_KEYS)


@pytest.fixture
def repo(full_router):
    return SurveyResponseRepository(full_router, timeout_seconds=0.5)


def _probed(fake_db) -> list[int]:
    return [
        int(name.rsplit("_", 1)[1])
        for name, collection in fake_db.collections.items()
        if name.startswith("surveyresponses_") and collection.calls
    ]


@pytest.mark.unit
class TestFindById:
    """Tests for sequential probing."""

    async def test_stops_at_first_hit(self, repo, seed, fake_db):
        target = ALL_KEYS[4]
        record_id = ObjectId()
        seed("surveyresponses", target, [{"_id": record_id, "formId": "f1"}])

        located = await repo.find_by_id(str(record_id))

        assert located.shard_key == target
        assert located.record["formId"] == "f1"
        probed = _probed(fake_db)
        assert sorted(probed) == ALL_KEYS[:5]
        assert len(probed) <= 5

    async def test_missing_id_probes_every_shard(self, repo, fake_db):
        assert await repo.find_by_id(ObjectId()) is None
        assert sorted(_probed(fake_db)) == ALL_KEYS

    async def test_enumeration_order_breaks_ties(self, repo, seed):
        record_id = ObjectId()
        seed("surveyresponses", 119, [{"_id": record_id, "copy": "later"}])
        seed("surveyresponses", 102, [{"_id": record_id, "copy": "earlier"}])

        located = await repo.find_by_id(record_id)

        assert located.shard_key == 102
        assert located.record["copy"] == "earlier"

    async def test_unreachable_shard_is_skipped(self, repo, seed, fake_db):
        record_id = ObjectId()
        seed("surveyresponses", 108, [{"_id": record_id}])
        fake_db.get_collection("surveyresponses_102").error = ConnectionFailure("down")

        located = await repo.find_by_id(record_id)

        assert located.shard_key == 108

    async def test_non_object_id(self, repo, seed):
        seed("surveyresponses", 110, [{"_id": "legacy-7"}])

        located = await repo.find_by_id("legacy-7")

        assert located.shard_key == 110


@pytest.mark.unit
class TestFindByIdAndUpdate:
    """Tests for locate-and-update."""

    async def test_updates_only_the_owning_shard(self, repo, seed, fake_db):
        record_id = ObjectId()
        seed("surveyresponses", 111, [{"_id": record_id, "isComplete": False}])

        located = await repo.find_by_id_and_update(record_id, {"isComplete": True})

        assert located.shard_key == 111
        assert located.record["isComplete"] is True
        assert fake_db.collections["surveyresponses_111"].docs[0]["isComplete"] is True
        assert "surveyresponses_112" not in fake_db.collections

    async def test_missing_returns_none(self, repo):
        assert await repo.find_by_id_and_update(ObjectId(), {"isComplete": True}) is None


@pytest.mark.unit
class TestFindOneAcross:
    async def test_first_match_by_filter(self, repo, seed):
        seed("surveyresponses", 113, [{"_id": 1, "respondentVoterId": "TN123"}])
        seed("surveyresponses", 120, [{"_id": 2, "respondentVoterId": "TN123"}])

        located = await repo.find_one_across({"respondentVoterId": "TN123"})

        assert located.shard_key == 113
        assert located.record["_id"] == 1
