"""
Errors raised by the sharded data access layer.

Not-found is not an error here: lookups return None.
"""

from typing import Any, Optional


class ShardError(Exception):
    """Base exception for shard operations."""

    pass


class InvalidShardKey(ShardError, ValueError):
    """Shard key does not coerce to a positive integer."""

    def __init__(self, value: Any):
        self.value = value
        super().__init__(f"Invalid AC ID: {value!r}")


class ShardUnavailable(ShardError):
    """A shard could not be reached, or did not answer within the timeout."""

    def __init__(
        self,
        message: str,
        *,
        collection_name: Optional[str] = None,
        shard_key: Optional[int] = None,
        operation: Optional[str] = None,
        failed_shards: Optional[dict[int, str]] = None,
    ):
        self.collection_name = collection_name
        self.shard_key = shard_key
        self.operation = operation
        self.failed_shards = failed_shards or {}
        super().__init__(message)


class ComputeFailure(ShardError):
    """Stats computation for one shard failed."""

    def __init__(self, shard_key: int, message: str):
        self.shard_key = shard_key
        super().__init__(f"Stats computation failed for AC {shard_key}: {message}")
