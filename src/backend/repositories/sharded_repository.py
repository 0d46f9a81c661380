"""
Repository base for AC-sharded collections.

Three layers of access, all keyed on the AC id (shard key):

- Single-shard primitives (query/count/aggregate/find_one/create/update_by_id)
  touch exactly one collection and propagate failures to the caller.
- Fan-out (fan_out_query/fan_out_count/fan_out_aggregate) runs a primitive on
  every configured AC in parallel. A failed AC is logged and contributes an
  empty result.
- Point lookups (find_by_id and friends) probe ACs sequentially in
  enumeration order and stop at the first hit.

Every shard call is bounded by a per-shard timeout; a timeout is treated
exactly like an unreachable shard (ShardUnavailable).
"""

import asyncio
import functools
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Iterable, Mapping, Optional, Sequence, TypeVar, Union

import structlog
from bson import ObjectId
from pymongo import ReturnDocument
from pymongo.errors import ConnectionFailure, ExecutionTimeout

from core.exceptions import ShardUnavailable
from db.shard_router import EntityKind, ShardHandle, ShardRouter

logger = structlog.get_logger(__name__)

T = TypeVar("T")

SortSpec = Union[Mapping[str, int], Sequence[tuple[str, int]]]
SelectSpec = Union[str, Sequence[str], Mapping[str, Any]]

# Tag added to fan-out results when the caller asks for the source AC
SHARD_TAG_FIELD = "_shardKey"


@dataclass
class ShardLocated:
    """A record together with the AC it was found in."""

    record: dict[str, Any]
    shard_key: int


# ============================================================================
# Query option helpers
# ============================================================================


def build_projection(select: Optional[SelectSpec]) -> Optional[dict[str, Any]]:
    """
    Normalise a field selection to a MongoDB projection.

    Accepts "name age -_id", ["name", "age"] or a projection dict.
    """
    if select is None:
        return None
    if isinstance(select, Mapping):
        return dict(select)
    fields = select.split() if isinstance(select, str) else list(select)
    projection: dict[str, Any] = {}
    for field in fields:
        if field.startswith("-"):
            projection[field[1:]] = 0
        else:
            projection[field] = 1
    return projection or None


def build_sort(sort: Optional[SortSpec]) -> list[tuple[str, int]]:
    """Normalise a sort spec to an ordered list of (field, direction)."""
    if not sort:
        return []
    items = sort.items() if isinstance(sort, Mapping) else sort
    spec = []
    for field, direction in items:
        if direction not in (1, -1):
            raise ValueError(f"Sort direction for {field!r} must be 1 or -1, got {direction!r}")
        spec.append((field, direction))
    return spec


def get_path(record: Mapping[str, Any], path: str) -> Any:
    """Read a dotted field path ("name.english") from a document."""
    value: Any = record
    for part in path.split("."):
        if not isinstance(value, Mapping):
            return None
        value = value.get(part)
    return value


# BSON comparison order, so merged results sort the way each shard did
_NULL, _NUMBER, _STRING, _OBJECT, _ARRAY, _BINARY, _OBJECT_ID, _BOOL, _DATE = range(9)


def bson_sort_key(value: Any) -> tuple[int, Any]:
    """
    Sort key that reproduces MongoDB's cross-type ordering.

    Missing and null values sort first ascending (last descending), numbers
    before strings, and so on, matching what the server returned per shard.
    """
    if value is None:
        return (_NULL, 0)
    if isinstance(value, bool):
        return (_BOOL, value)
    if isinstance(value, (int, float)):
        return (_NUMBER, value)
    if isinstance(value, str):
        return (_STRING, value)
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return (_DATE, value.timestamp())
    if isinstance(value, ObjectId):
        return (_OBJECT_ID, value.binary)
    if isinstance(value, (bytes, bytearray)):
        return (_BINARY, bytes(value))
    if isinstance(value, Mapping):
        return (_OBJECT, repr(sorted(value.items(), key=lambda kv: kv[0])))
    if isinstance(value, (list, tuple)):
        return (_ARRAY, repr(list(value)))
    return (_OBJECT, repr(value))


def sort_records(records: list[dict[str, Any]], sort: Optional[SortSpec]) -> list[dict[str, Any]]:
    """
    Sort merged records in place with single-shard sort semantics.

    Multi-key sorts are applied least-significant key first; Python's sort is
    stable, so ties keep the shard merge order.
    """
    for field, direction in reversed(build_sort(sort)):
        records.sort(
            key=functools.partial(_record_sort_key, field),
            reverse=direction == -1,
        )
    return records


def _record_sort_key(field: str, record: Mapping[str, Any]) -> tuple[int, Any]:
    return bson_sort_key(get_path(record, field))


def coerce_object_id(value: Any) -> Any:
    """Cast 24-hex strings to ObjectId; leave anything else alone."""
    if isinstance(value, str) and ObjectId.is_valid(value):
        return ObjectId(value)
    return value


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# Repository
# ============================================================================


class ShardedRepository:
    """
    Data access for one sharded entity kind.

    Subclasses set `kind` and add entity-specific queries built on the
    primitives below.
    """

    kind: EntityKind

    def __init__(
        self,
        router: Optional[ShardRouter] = None,
        timeout_seconds: Optional[float] = None,
        kind: Optional[EntityKind] = None,
    ):
        if router is None:
            from db.shard_router import get_shard_router

            router = get_shard_router()
        if timeout_seconds is None:
            from core.config import settings

            timeout_seconds = settings.SHARD_TIMEOUT_SECONDS
        if kind is not None:
            self.kind = EntityKind(kind)
        if getattr(self, "kind", None) is None:
            raise TypeError("ShardedRepository requires an entity kind")

        self.router = router
        self.timeout_seconds = timeout_seconds

    @property
    def shard_keys(self) -> list[int]:
        return self.router.shard_keys

    def resolve(self, shard_key: Any) -> ShardHandle:
        """Resolve the handle for this entity kind in one AC."""
        return self.router.resolve(self.kind, shard_key)

    async def _call(self, handle: ShardHandle, operation: str, awaitable: Awaitable[T]) -> T:
        """
        Await one shard call under the per-shard timeout.

        Raises:
            ShardUnavailable: On timeout or connection-level failure.
        """
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            raise ShardUnavailable(
                f"{operation} on {handle.collection_name} timed out after {self.timeout_seconds}s",
                collection_name=handle.collection_name,
                shard_key=handle.shard_key,
                operation=operation,
            ) from None
        except (ConnectionFailure, ExecutionTimeout) as e:
            raise ShardUnavailable(
                f"{operation} on {handle.collection_name} failed: {e}",
                collection_name=handle.collection_name,
                shard_key=handle.shard_key,
                operation=operation,
            ) from e

    # ========================================================================
    # Single-shard primitives
    # ========================================================================

    async def query(
        self,
        shard_key: Any,
        filter: Optional[Mapping[str, Any]] = None,
        *,
        select: Optional[SelectSpec] = None,
        sort: Optional[SortSpec] = None,
        skip: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> list[dict[str, Any]]:
        """
        Find documents in one AC.

        Args:
            shard_key: AC id
            filter: MongoDB filter
            select: Field selection ("name age -_id", list, or projection)
            sort: Ordered {field: 1|-1}
            skip: Documents to skip
            limit: Maximum documents to return

        Returns:
            Matching documents, ordered by `sort` then natural order
        """
        handle = self.resolve(shard_key)

        async def run() -> list[dict[str, Any]]:
            cursor = handle.collection.find(dict(filter or {}), build_projection(select))
            sort_spec = build_sort(sort)
            if sort_spec:
                cursor = cursor.sort(sort_spec)
            if skip:
                cursor = cursor.skip(skip)
            if limit:
                cursor = cursor.limit(limit)
            return await cursor.to_list(length=None)

        return await self._call(handle, "query", run())

    async def count(self, shard_key: Any, filter: Optional[Mapping[str, Any]] = None) -> int:
        """Count documents in one AC."""
        handle = self.resolve(shard_key)
        return await self._call(
            handle, "count", handle.collection.count_documents(dict(filter or {}))
        )

    async def aggregate(self, shard_key: Any, pipeline: Sequence[Mapping[str, Any]]) -> list[dict[str, Any]]:
        """Run an aggregation pipeline in one AC."""
        handle = self.resolve(shard_key)

        async def run() -> list[dict[str, Any]]:
            cursor = await handle.collection.aggregate(list(pipeline))
            return await cursor.to_list(length=None)

        return await self._call(handle, "aggregate", run())

    async def find_one(
        self,
        shard_key: Any,
        filter: Optional[Mapping[str, Any]] = None,
        select: Optional[SelectSpec] = None,
    ) -> Optional[dict[str, Any]]:
        """Get the first matching document in one AC, or None."""
        handle = self.resolve(shard_key)
        return await self._call(
            handle,
            "find_one",
            handle.collection.find_one(dict(filter or {}), build_projection(select)),
        )

    async def get_by_id(self, shard_key: Any, record_id: Any) -> Optional[dict[str, Any]]:
        """Get a document by _id when its AC is known."""
        return await self.find_one(shard_key, {"_id": coerce_object_id(record_id)})

    async def create(self, shard_key: Any, record: Mapping[str, Any]) -> dict[str, Any]:
        """
        Insert a document into one AC.

        The AC id is stamped onto the document when missing, so the record
        always matches the shard it lives in.

        Returns:
            The persisted document including its generated _id
        """
        handle = self.resolve(shard_key)
        now = _utcnow()

        document = dict(record)
        document.setdefault("_id", ObjectId())
        document.setdefault("aci_id", handle.shard_key)
        document.setdefault("createdAt", now)
        document["updatedAt"] = now

        await self._call(handle, "create", handle.collection.insert_one(document))
        logger.debug("shard_record_created", collection=handle.collection_name, id=str(document["_id"]))
        return document

    async def update_by_id(
        self,
        shard_key: Any,
        record_id: Any,
        patch: Mapping[str, Any],
    ) -> Optional[dict[str, Any]]:
        """
        Update a document in one AC by _id.

        A plain patch is applied with $set; an update document that already
        uses operators ($set, $inc, ...) is passed through.

        Returns:
            The updated document, or None if no document has that _id
        """
        handle = self.resolve(shard_key)
        update = _build_update(patch)

        return await self._call(
            handle,
            "update_by_id",
            handle.collection.find_one_and_update(
                {"_id": coerce_object_id(record_id)},
                update,
                return_document=ReturnDocument.AFTER,
            ),
        )

    # ========================================================================
    # Cross-shard fan-out
    # ========================================================================

    async def _fan_out(
        self,
        operation: str,
        fn: Callable[[int], Awaitable[T]],
        default: Callable[[], T],
        raise_on_error: bool = False,
    ) -> list[tuple[int, T]]:
        """
        Run fn on every configured AC in parallel.

        Failed ACs contribute default() and are logged. With raise_on_error,
        a ShardUnavailable summarising all failures is raised once every AC
        has finished.
        """
        keys = self.router.shard_keys
        failures: dict[int, str] = {}

        async def one(key: int) -> T:
            try:
                return await fn(key)
            except Exception as e:
                failures[key] = str(e)
                logger.warning(
                    "shard_fan_out_failed",
                    operation=operation,
                    collection=f"{self.kind.value}_{key}",
                    error=str(e),
                )
                return default()

        results = await asyncio.gather(*(one(key) for key in keys))

        if failures:
            logger.warning(
                "shard_fan_out_partial",
                operation=operation,
                kind=self.kind.value,
                failed=len(failures),
                total=len(keys),
            )
            if raise_on_error:
                summary = ", ".join(f"AC{key}: {msg}" for key, msg in sorted(failures.items()))
                raise ShardUnavailable(
                    f"Errors during {operation} on {len(failures)} AC collections: {summary}",
                    operation=operation,
                    failed_shards=failures,
                )

        return list(zip(keys, results))

    async def fan_out_query(
        self,
        filter: Optional[Mapping[str, Any]] = None,
        *,
        select: Optional[SelectSpec] = None,
        sort: Optional[SortSpec] = None,
        skip: Optional[int] = None,
        limit: Optional[int] = None,
        raise_on_error: bool = False,
        tag_shard: bool = False,
    ) -> list[dict[str, Any]]:
        """
        Query every AC and merge the results.

        skip and limit are global: they are applied to the merged, globally
        sorted sequence. Each AC is asked for at most skip + limit documents,
        sorted the same way, which is the most any single AC can contribute
        to the global window.

        Without a sort, merge order is AC enumeration order, then each AC's
        natural order.
        """
        skip = skip or 0
        per_shard_limit = skip + limit if limit else None

        async def run(key: int) -> list[dict[str, Any]]:
            return await self.query(key, filter, select=select, sort=sort, limit=per_shard_limit)

        per_shard = await self._fan_out("fan_out_query", run, list, raise_on_error)

        merged: list[dict[str, Any]] = []
        for key, records in per_shard:
            if tag_shard:
                for record in records:
                    record[SHARD_TAG_FIELD] = key
            merged.extend(records)

        if sort:
            sort_records(merged, sort)

        end = skip + limit if limit else None
        return merged[skip:end]

    async def fan_out_count(
        self,
        filter: Optional[Mapping[str, Any]] = None,
        raise_on_error: bool = False,
    ) -> int:
        """Sum counts across every AC; failed ACs count as 0."""

        async def run(key: int) -> int:
            return await self.count(key, filter)

        per_shard = await self._fan_out("fan_out_count", run, int, raise_on_error)
        return sum(count for _, count in per_shard)

    async def fan_out_aggregate(
        self,
        pipeline: Sequence[Mapping[str, Any]],
        raise_on_error: bool = False,
        tag_shard: bool = True,
    ) -> list[dict[str, Any]]:
        """
        Run a pipeline on every AC and concatenate the outputs.

        Outputs are combined, not re-aggregated: a $group in the pipeline
        yields one group per AC.
        """

        async def run(key: int) -> list[dict[str, Any]]:
            return await self.aggregate(key, pipeline)

        per_shard = await self._fan_out("fan_out_aggregate", run, list, raise_on_error)

        combined: list[dict[str, Any]] = []
        for key, rows in per_shard:
            if tag_shard:
                for row in rows:
                    row[SHARD_TAG_FIELD] = key
            combined.extend(rows)
        return combined

    # ========================================================================
    # Point lookups (AC unknown)
    # ========================================================================

    async def _probe(
        self,
        operation: str,
        fn: Callable[[int], Awaitable[Optional[dict[str, Any]]]],
        shard_keys: Optional[Iterable[int]] = None,
    ) -> Optional[ShardLocated]:
        """
        Probe ACs one at a time in enumeration order; first hit wins.

        _id is only unique per AC by convention, so the enumeration order is
        the tie-breaker and part of the contract. Unreachable ACs are logged
        and skipped.
        """
        for key in shard_keys if shard_keys is not None else self.router.shard_keys:
            try:
                record = await fn(key)
            except Exception as e:
                logger.warning(
                    "shard_probe_failed",
                    operation=operation,
                    collection=f"{self.kind.value}_{key}",
                    error=str(e),
                )
                continue
            if record is not None:
                return ShardLocated(record=record, shard_key=key)
        return None

    async def find_by_id(self, record_id: Any) -> Optional[ShardLocated]:
        """
        Locate a document by _id when its AC is unknown.

        Use only when no AC hint is available; with a hint, call get_by_id.

        Returns:
            The record and its AC, or None if no AC holds the id
        """
        object_id = coerce_object_id(record_id)

        async def run(key: int) -> Optional[dict[str, Any]]:
            return await self.find_one(key, {"_id": object_id})

        return await self._probe("find_by_id", run)

    async def find_by_id_and_update(
        self,
        record_id: Any,
        patch: Mapping[str, Any],
    ) -> Optional[ShardLocated]:
        """Locate a document by _id across ACs and update it in place."""

        async def run(key: int) -> Optional[dict[str, Any]]:
            return await self.update_by_id(key, record_id, patch)

        return await self._probe("find_by_id_and_update", run)

    async def find_one_across(self, filter: Mapping[str, Any]) -> Optional[ShardLocated]:
        """First document matching filter, searching ACs in enumeration order."""

        async def run(key: int) -> Optional[dict[str, Any]]:
            return await self.find_one(key, filter)

        return await self._probe("find_one_across", run)


def _build_update(patch: Mapping[str, Any]) -> dict[str, Any]:
    now = _utcnow()
    if any(key.startswith("$") for key in patch):
        update = {op: dict(fields) for op, fields in patch.items()}
        update.setdefault("$set", {})["updatedAt"] = now
        return update
    fields = {k: v for k, v in patch.items() if k != "_id"}
    fields["updatedAt"] = now
    return {"$set": fields}


__all__ = [
    "ShardedRepository",
    "ShardLocated",
    "SHARD_TAG_FIELD",
    "build_projection",
    "build_sort",
    "bson_sort_key",
    "sort_records",
    "get_path",
    "coerce_object_id",
]
