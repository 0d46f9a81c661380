"""
Process-local TTL cache for frequently read data.

Typical TTLs:
- Dashboard statistics (5 min)
- Booth lists (15 min)
- AC metadata (30 min)

The cache lives in one process only; horizontally scaled instances each have
their own. The precomputed stats collection is the durable, shared cache.
Everything here is lost on restart.
"""

import functools
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, TypeVar

import structlog

from core.config import settings

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class TTL:
    """TTL categories in seconds, from settings."""

    SHORT = settings.CACHE_TTL_SHORT_SECONDS
    MEDIUM = settings.CACHE_TTL_MEDIUM_SECONDS
    LONG = settings.CACHE_TTL_LONG_SECONDS
    DASHBOARD_STATS = settings.CACHE_TTL_DASHBOARD_SECONDS
    BOOTH_LIST = settings.CACHE_TTL_BOOTH_LIST_SECONDS


class cache_keys:
    """Cache key builders. AC-scoped keys share the `ac:{id}:` prefix."""

    @staticmethod
    def dashboard_stats(ac_id: int) -> str:
        return f"ac:{ac_id}:dashboard:stats"

    @staticmethod
    def booth_list(ac_id: int) -> str:
        return f"ac:{ac_id}:booths"

    @staticmethod
    def ac_metadata(ac_id: int) -> str:
        return f"ac:{ac_id}:metadata"

    @staticmethod
    def voter_count(ac_id: int) -> str:
        return f"ac:{ac_id}:voter:count"

    @staticmethod
    def surveyed_count(ac_id: int) -> str:
        return f"ac:{ac_id}:surveyed:count"

    @staticmethod
    def overview() -> str:
        return "all:dashboard:overview"


@dataclass
class CacheEntry:
    value: Any
    inserted_at: float
    ttl: float

    def is_expired(self, now: float, ttl: Optional[float] = None) -> bool:
        return now - self.inserted_at > (self.ttl if ttl is None else ttl)


class ProcessLocalCache:
    """
    In-memory key/value cache with per-entry TTL.

    An entry older than its TTL is treated as absent even before it is
    physically removed; expired entries are evicted when read, and swept in
    bulk when the cache grows past max_entries or on the periodic sweep.

    Mutations never await, so the map is safe to share between requests on
    one event loop.
    """

    def __init__(
        self,
        max_entries: int = settings.CACHE_MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._entries: dict[str, CacheEntry] = {}
        self.max_entries = max_entries
        self._clock = clock
        self.hits = 0
        self.misses = 0

    def get(self, key: str, ttl: Optional[float] = None, default: Any = None) -> Any:
        """
        Get a cached value.

        Args:
            key: Cache key
            ttl: Freshness window in seconds; defaults to the TTL the entry
                was stored with

        Returns:
            The value, or default if missing or expired
        """
        entry = self._entries.get(key)
        if entry is None:
            self.misses += 1
            return default

        if entry.is_expired(self._clock(), ttl):
            del self._entries[key]
            self.misses += 1
            return default

        self.hits += 1
        return entry.value

    def set(self, key: str, value: Any, ttl: float = TTL.MEDIUM) -> None:
        """Store a value; sweeps expired entries once the cache is large."""
        self._entries[key] = CacheEntry(value=value, inserted_at=self._clock(), ttl=ttl)
        if len(self._entries) > self.max_entries:
            self.sweep()

    def has(self, key: str, ttl: Optional[float] = None) -> bool:
        sentinel = object()
        return self.get(key, ttl, default=sentinel) is not sentinel

    def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def invalidate(self, pattern: str) -> int:
        """Remove every key containing pattern. Returns the number removed."""
        matching = [key for key in self._entries if pattern in key]
        for key in matching:
            del self._entries[key]
        return len(matching)

    def invalidate_shard(self, shard_key: int) -> int:
        """Remove every entry scoped to one AC."""
        return self.invalidate(f"ac:{shard_key}:")

    def clear(self) -> None:
        self._entries.clear()

    def sweep(self) -> int:
        """Remove expired entries. Returns the number removed."""
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.info("cache_swept", removed=len(expired), remaining=len(self._entries))
        return len(expired)

    def stats(self) -> dict[str, int]:
        now = self._clock()
        expired = sum(1 for entry in self._entries.values() if entry.is_expired(now))
        return {
            "total": len(self._entries),
            "valid": len(self._entries) - expired,
            "expired": expired,
            "hits": self.hits,
            "misses": self.misses,
        }

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return self.has(key)


def cached(
    cache: ProcessLocalCache,
    key_builder: Callable[..., str],
    ttl: float = TTL.MEDIUM,
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """
    Cache the result of an async function.

    Usage:
        @cached(get_cache(), lambda ac_id: cache_keys.booth_list(ac_id), TTL.BOOTH_LIST)
        async def list_booths(ac_id: int) -> list[dict]:
            ...

    None results are not cached.
    """

    def decorator(fn: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @functools.wraps(fn)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            key = key_builder(*args, **kwargs)
            hit = cache.get(key, ttl)
            if hit is not None:
                return hit
            result = await fn(*args, **kwargs)
            if result is not None:
                cache.set(key, result, ttl)
            return result

        return wrapper

    return decorator


# Global cache instance (lazy-initialized)
_cache: Optional[ProcessLocalCache] = None


def get_cache() -> ProcessLocalCache:
    """Get the process-wide cache."""
    global _cache
    if _cache is None:
        _cache = ProcessLocalCache()
    return _cache


def reset_cache() -> None:
    """Drop the process-wide cache (shutdown and tests)."""
    global _cache
    if _cache is not None:
        _cache.clear()
    _cache = None
