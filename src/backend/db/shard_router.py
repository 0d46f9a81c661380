"""
Shard router for AC-sharded collections.

Field data is sharded by Assembly Constituency (AC). Instead of a single
`voters` collection, voters live in `voters_{AC_ID}` collections, and the
same holds for survey responses, booth agent activities and mobile app
answers:

    voters_111              (AC 111 voters)
    surveyresponses_119     (AC 119 survey responses)

The `{prefix}_{ac_id}` naming IS the sharding scheme; existing data depends
on it.

The router is deliberately permissive: it resolves any positive integer key,
including ACs outside the configured enumeration (collections may exist
there during migrations). Callers that need membership must check
`is_valid_shard_key` themselves.
"""

import math
from dataclasses import dataclass
from enum import Enum
from numbers import Integral
from typing import Any, Iterable, Optional

import structlog
from pymongo import ASCENDING, DESCENDING, GEOSPHERE, IndexModel

from core.exceptions import InvalidShardKey

logger = structlog.get_logger(__name__)


class EntityKind(str, Enum):
    """Sharded entity kinds. The value is the collection prefix."""

    VOTER = "voters"
    SURVEY_RESPONSE = "surveyresponses"
    BOOTH_AGENT_ACTIVITY = "boothagentactivities"
    MOBILE_APP_ANSWER = "mobileappanswers"


# Indexes for common query patterns, per entity kind
SHARD_INDEXES: dict[EntityKind, list[IndexModel]] = {
    EntityKind.VOTER: [
        IndexModel([("aci_id", ASCENDING)]),
        IndexModel([("aci_id", ASCENDING), ("booth_id", ASCENDING)]),
        IndexModel([("booth_id", ASCENDING)]),
        IndexModel([("voterID", ASCENDING)]),
        IndexModel([("surveyed", ASCENDING)]),
        IndexModel([("familyId", ASCENDING)], sparse=True),
        IndexModel([("mobile", ASCENDING)], sparse=True),
        # Sort index for voter listing
        IndexModel([("boothno", ASCENDING), ("name.english", ASCENDING)]),
        # Booth report rollups
        IndexModel([("boothname", ASCENDING), ("gender", ASCENDING)]),
        IndexModel([("boothname", ASCENDING), ("familyId", ASCENDING)]),
        IndexModel([("boothname", ASCENDING), ("surveyed", ASCENDING)]),
    ],
    EntityKind.SURVEY_RESPONSE: [
        IndexModel([("aci_id", ASCENDING)]),
        IndexModel([("booth_id", ASCENDING)]),
        IndexModel([("formId", ASCENDING)]),
        IndexModel([("createdAt", DESCENDING)]),
        IndexModel([("aci_id", ASCENDING), ("createdAt", DESCENDING)]),
        IndexModel([("respondentVoterId", ASCENDING)], sparse=True),
        IndexModel([("aci_id", ASCENDING), ("booth_id", ASCENDING)]),
    ],
    EntityKind.BOOTH_AGENT_ACTIVITY: [
        IndexModel([("location", GEOSPHERE)]),
        IndexModel([("status", ASCENDING), ("loginTime", DESCENDING)]),
        IndexModel([("userId", ASCENDING), ("loginTime", DESCENDING)]),
    ],
    EntityKind.MOBILE_APP_ANSWER: [
        IndexModel([("aci_id", ASCENDING)]),
        IndexModel([("voterId", ASCENDING)]),
        IndexModel([("booth_id", ASCENDING)]),
        IndexModel([("questionId", ASCENDING)]),
        IndexModel([("submittedBy", ASCENDING)]),
        IndexModel([("submittedAt", DESCENDING)]),
        IndexModel([("aci_id", ASCENDING), ("submittedAt", DESCENDING)]),
    ],
}


def coerce_shard_key(value: Any) -> int:
    """
    Coerce an AC identifier to a positive integer.

    Accepts ints, integral floats and numeric strings ("119", " 119 ", "119.0").

    Raises:
        InvalidShardKey: For None, booleans, zero, negatives, fractions and
            anything non-numeric.
    """
    if value is None or isinstance(value, bool):
        raise InvalidShardKey(value)

    if isinstance(value, Integral):
        key = int(value)
    elif isinstance(value, float):
        if not value.is_integer():
            raise InvalidShardKey(value)
        key = int(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            raise InvalidShardKey(value) from None
        if not math.isfinite(number) or not number.is_integer():
            raise InvalidShardKey(value)
        key = int(number)
    else:
        raise InvalidShardKey(value)

    if key <= 0:
        raise InvalidShardKey(value)
    return key


def collection_name(kind: EntityKind, shard_key: Any) -> str:
    """Collection name for one entity kind in one AC, e.g. `voters_119`."""
    return f"{EntityKind(kind).value}_{coerce_shard_key(shard_key)}"


@dataclass(frozen=True)
class ShardHandle:
    """Resolved handle to one shard's underlying collection."""

    kind: EntityKind
    shard_key: int
    collection_name: str
    collection: Any


class ShardRouter:
    """
    Resolves (entity kind, AC id) pairs to collection handles.

    Resolution is memoized for the lifetime of the router: repeated calls
    return the identical handle object. Mutations of the memo table are
    synchronous, so concurrent requests on one event loop cannot race.
    """

    def __init__(self, database: Any, shard_keys: Iterable[int]):
        self._database = database
        self._shard_keys: tuple[int, ...] = tuple(coerce_shard_key(k) for k in shard_keys)
        self._key_set = frozenset(self._shard_keys)
        self._handles: dict[tuple[EntityKind, int], ShardHandle] = {}

    @property
    def shard_keys(self) -> list[int]:
        """All configured AC ids, in their stable enumeration order."""
        return list(self._shard_keys)

    def is_valid_shard_key(self, shard_key: Any) -> bool:
        """Check whether an AC id belongs to the configured enumeration."""
        try:
            return coerce_shard_key(shard_key) in self._key_set
        except InvalidShardKey:
            return False

    def resolve(self, kind: EntityKind, shard_key: Any) -> ShardHandle:
        """
        Get the handle for one entity kind in one AC.

        Raises:
            InvalidShardKey: If shard_key does not coerce to a positive integer.
        """
        kind = EntityKind(kind)
        key = coerce_shard_key(shard_key)
        memo_key = (kind, key)

        handle = self._handles.get(memo_key)
        if handle is None:
            name = f"{kind.value}_{key}"
            handle = ShardHandle(
                kind=kind,
                shard_key=key,
                collection_name=name,
                collection=self._database.get_collection(name),
            )
            self._handles[memo_key] = handle
        return handle

    def resolve_all(self, kind: EntityKind) -> list[ShardHandle]:
        """Handles for every configured AC, in enumeration order."""
        return [self.resolve(kind, key) for key in self._shard_keys]

    async def ensure_indexes(self, kind: EntityKind, shard_key: Any) -> list[str]:
        """
        Create the well-known indexes for one shard.

        Safe to run repeatedly; existing indexes are left as they are.

        Returns:
            Names of the indexes
        """
        handle = self.resolve(kind, shard_key)
        indexes = SHARD_INDEXES[handle.kind]
        names = await handle.collection.create_indexes(indexes)
        logger.info(
            "shard_indexes_ensured",
            collection=handle.collection_name,
            count=len(names),
        )
        return names

    def clear(self) -> None:
        """Drop all memoized handles."""
        self._handles.clear()

    def __len__(self) -> int:
        return len(self._handles)


# Global router instance (lazy-initialized)
_shard_router: Optional[ShardRouter] = None


def get_shard_router() -> ShardRouter:
    """Get the process-wide shard router built from settings."""
    global _shard_router
    if _shard_router is None:
        from core.config import settings
        from db.mongo_session import get_database

        _shard_router = ShardRouter(get_database(), settings.shard_keys_list)
    return _shard_router


def reset_shard_router() -> None:
    """Tear down the process-wide router (shutdown and tests)."""
    global _shard_router
    if _shard_router is not None:
        _shard_router.clear()
    _shard_router = None
