"""
Pytest fixtures for the backend tests.

Shard collections are backed by an in-memory double of the async PyMongo
collection API, so the sharding layer runs for real without a server.
"""

import asyncio
import os
from collections.abc import AsyncGenerator
from types import SimpleNamespace
from typing import Any, Optional

import pytest
from httpx import ASGITransport, AsyncClient

# Set test environment variables before importing app
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DEBUG", "false")
os.environ.setdefault("MONGODB_URI", "mongodb://localhost:27017")
os.environ.setdefault("MONGODB_DATABASE", "fieldops_test")
os.environ.setdefault("STATS_JOB_ENABLED", "false")

from repositories.sharded_repository import get_path, sort_records  # noqa: E402

_MISSING = object()


# =============================================================================
# In-memory MongoDB double
# =============================================================================


def _lookup(doc: dict[str, Any], path: str) -> Any:
    value: Any = doc
    for part in path.split("."):
        if not isinstance(value, dict) or part not in value:
            return _MISSING
        value = value[part]
    return value


def _match_value(value: Any, condition: Any) -> bool:
    if isinstance(condition, dict) and condition and all(k.startswith("$") for k in condition):
        present = value is not _MISSING
        actual = value if present else None
        for op, arg in condition.items():
            if op == "$eq" and actual != arg:
                return False
            if op == "$ne" and actual == arg:
                return False
            if op == "$in" and actual not in arg:
                return False
            if op == "$nin" and actual in arg:
                return False
            if op == "$exists" and present != bool(arg):
                return False
            if op in ("$gt", "$gte", "$lt", "$lte"):
                if actual is None:
                    return False
                if op == "$gt" and not actual > arg:
                    return False
                if op == "$gte" and not actual >= arg:
                    return False
                if op == "$lt" and not actual < arg:
                    return False
                if op == "$lte" and not actual <= arg:
                    return False
        return True
    return (None if value is _MISSING else value) == condition


def matches(doc: dict[str, Any], filter: dict[str, Any]) -> bool:
    """Evaluate the subset of MongoDB query operators the repositories use."""
    for key, condition in filter.items():
        if key == "$or":
            if not any(matches(doc, sub) for sub in condition):
                return False
        elif key == "$and":
            if not all(matches(doc, sub) for sub in condition):
                return False
        elif not _match_value(_lookup(doc, key), condition):
            return False
    return True


def project(doc: dict[str, Any], projection: Optional[dict[str, Any]]) -> dict[str, Any]:
    if not projection:
        return dict(doc)
    include = [k for k, v in projection.items() if v and k != "_id"]
    if include:
        result = {k: doc[k] for k in include if k in doc}
        if projection.get("_id", 1) and "_id" in doc:
            result["_id"] = doc["_id"]
        return result
    return {k: v for k, v in doc.items() if projection.get(k, 1)}


class FakeCursor:
    def __init__(self, collection: "FakeCollection", docs: list[dict[str, Any]]):
        self._collection = collection
        self._docs = docs

    def sort(self, spec: Any) -> "FakeCursor":
        sort_records(self._docs, spec)
        return self

    def skip(self, n: int) -> "FakeCursor":
        self._docs = self._docs[n:]
        return self

    def limit(self, n: int) -> "FakeCursor":
        if n:
            self._docs = self._docs[:n]
        return self

    async def to_list(self, length: Optional[int] = None) -> list[dict[str, Any]]:
        await self._collection._io("to_list")
        return [dict(d) for d in self._docs]


class FakeCollection:
    """
    Async collection double.

    Set `error` to make every call raise it, or `delay` to make every call
    hang for that many seconds first. `calls` records operation names.
    """

    def __init__(self, name: str):
        self.name = name
        self.docs: list[dict[str, Any]] = []
        self.error: Optional[BaseException] = None
        self.delay: float = 0
        self.calls: list[str] = []

    async def _io(self, operation: str) -> None:
        self.calls.append(operation)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error

    def find(self, filter: Optional[dict] = None, projection: Optional[dict] = None) -> FakeCursor:
        docs = [project(d, projection) for d in self.docs if matches(d, filter or {})]
        return FakeCursor(self, docs)

    async def find_one(self, filter: Optional[dict] = None, projection: Optional[dict] = None) -> Any:
        await self._io("find_one")
        for doc in self.docs:
            if matches(doc, filter or {}):
                return project(doc, projection)
        return None

    async def count_documents(self, filter: dict) -> int:
        await self._io("count_documents")
        return sum(1 for d in self.docs if matches(d, filter))

    async def insert_one(self, document: dict) -> SimpleNamespace:
        await self._io("insert_one")
        self.docs.append(dict(document))
        return SimpleNamespace(inserted_id=document.get("_id"))

    async def find_one_and_update(self, filter: dict, update: dict, return_document: Any = None) -> Any:
        await self._io("find_one_and_update")
        for doc in self.docs:
            if matches(doc, filter):
                for field, value in update.get("$set", {}).items():
                    doc[field] = value
                for field, value in update.get("$inc", {}).items():
                    doc[field] = doc.get(field, 0) + value
                for field in update.get("$unset", {}):
                    doc.pop(field, None)
                return dict(doc)
        return None

    async def replace_one(self, filter: dict, replacement: dict, upsert: bool = False) -> SimpleNamespace:
        await self._io("replace_one")
        for i, doc in enumerate(self.docs):
            if matches(doc, filter):
                new_doc = dict(replacement)
                if "_id" in doc:
                    new_doc["_id"] = doc["_id"]
                self.docs[i] = new_doc
                return SimpleNamespace(matched_count=1, modified_count=1, upserted_id=None)
        if upsert:
            self.docs.append(dict(replacement))
            return SimpleNamespace(matched_count=0, modified_count=0, upserted_id=len(self.docs))
        return SimpleNamespace(matched_count=0, modified_count=0, upserted_id=None)

    async def delete_one(self, filter: dict) -> SimpleNamespace:
        await self._io("delete_one")
        for i, doc in enumerate(self.docs):
            if matches(doc, filter):
                del self.docs[i]
                return SimpleNamespace(deleted_count=1)
        return SimpleNamespace(deleted_count=0)

    async def create_indexes(self, indexes: list) -> list[str]:
        await self._io("create_indexes")
        return [index.document["name"] for index in indexes]

    async def aggregate(self, pipeline: list[dict]) -> FakeCursor:
        """$match, simple $group, $count, $sort and $limit only."""
        docs = [dict(d) for d in self.docs]
        for stage in pipeline:
            (op, arg), = stage.items()
            if op == "$match":
                docs = [d for d in docs if matches(d, arg)]
            elif op == "$group":
                docs = _group(docs, arg)
            elif op == "$count":
                docs = [{arg: len(docs)}] if docs else []
            elif op == "$sort":
                sort_records(docs, arg)
            elif op == "$limit":
                docs = docs[:arg]
            else:
                raise NotImplementedError(f"FakeCollection.aggregate does not support {op}")
        return FakeCursor(self, docs)


def _group(docs: list[dict[str, Any]], spec: dict[str, Any]) -> list[dict[str, Any]]:
    groups: dict[Any, dict[str, Any]] = {}
    id_expr = spec["_id"]
    for doc in docs:
        key = get_path(doc, id_expr[1:]) if isinstance(id_expr, str) else id_expr
        group = groups.setdefault(repr(key), {"_id": key})
        for field, accumulator in spec.items():
            if field == "_id":
                continue
            (op, arg), = accumulator.items()
            value = get_path(doc, arg[1:]) if isinstance(arg, str) else arg
            if op == "$sum":
                group[field] = group.get(field, 0) + (value or 0)
            elif op == "$first":
                group.setdefault(field, value)
            else:
                raise NotImplementedError(f"FakeCollection $group does not support {op}")
    return list(groups.values())


class FakeDatabase:
    def __init__(self) -> None:
        self.collections: dict[str, FakeCollection] = {}

    def get_collection(self, name: str) -> FakeCollection:
        if name not in self.collections:
            self.collections[name] = FakeCollection(name)
        return self.collections[name]

    def __getitem__(self, name: str) -> FakeCollection:
        return self.get_collection(name)

    async def command(self, name: str) -> dict[str, Any]:
        return {"ok": 1.0}


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# =============================================================================
# Fixtures
# =============================================================================


TEST_SHARD_KEYS = [101, 102, 103]


@pytest.fixture
def fake_db() -> FakeDatabase:
    return FakeDatabase()


@pytest.fixture
def router(fake_db: FakeDatabase) -> Any:
    from db.shard_router import ShardRouter

    return ShardRouter(fake_db, TEST_SHARD_KEYS)


@pytest.fixture
def voter_repo(router: Any) -> Any:
    from repositories.voter_repository import VoterRepository

    return VoterRepository(router, timeout_seconds=0.5)


@pytest.fixture
def stats_collection(fake_db: FakeDatabase) -> FakeCollection:
    return fake_db.get_collection("precomputed_stats")


@pytest.fixture
def stats_repo(stats_collection: FakeCollection) -> Any:
    from repositories.precomputed_stats_repository import PrecomputedStatsRepository

    return PrecomputedStatsRepository(stats_collection, timeout_seconds=0.5)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache(clock: FakeClock) -> Any:
    from services.cache_service import ProcessLocalCache

    return ProcessLocalCache(max_entries=1000, clock=clock)


@pytest.fixture
def seed(fake_db: FakeDatabase):
    """Insert raw documents into `{kind}_{ac}`."""

    def _seed(kind: str, shard_key: int, docs: list[dict[str, Any]]) -> FakeCollection:
        collection = fake_db.get_collection(f"{kind}_{shard_key}")
        collection.docs.extend(dict(d) for d in docs)
        return collection

    return _seed


@pytest.fixture
async def app() -> Any:
    """Create FastAPI application for testing."""
    from main import app as fastapi_app

    yield fastapi_app
    fastapi_app.dependency_overrides.clear()


@pytest.fixture
async def client(app: Any) -> AsyncGenerator[AsyncClient, None]:
    """Create async test client (lifespan is not run)."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac
