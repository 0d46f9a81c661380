"""
Create the well-known indexes on every AC shard and on precomputed_stats.

Index creation is idempotent; rerun after adding ACs to ALL_SHARD_KEYS.

Usage:
    python scripts/create_shard_indexes.py
    python scripts/create_shard_indexes.py --kind voters --ac 119
"""

import argparse

import scripts._common  # noqa: F401 - Sets up sys.path for imports
from db.shard_router import EntityKind, get_shard_router
from repositories.precomputed_stats_repository import PrecomputedStatsRepository
from scripts._common import run_script


async def create_indexes(kinds: list[EntityKind], shard_keys: list[int]) -> int:
    """Create indexes; returns the number of shards that failed."""
    router = get_shard_router()
    failed = 0

    for kind in kinds:
        print(f"\n📍 {kind.value}")
        for key in shard_keys:
            try:
                names = await router.ensure_indexes(kind, key)
                print(f"  ✓ {kind.value}_{key}: {len(names)} indexes")
            except Exception as e:
                failed += 1
                print(f"  ✗ {kind.value}_{key}: {e}")

    print("\n📍 precomputed_stats")
    names = await PrecomputedStatsRepository().ensure_indexes()
    print(f"  ✓ precomputed_stats: {', '.join(names)}")
    return failed


async def main() -> int:
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument("--kind", choices=[k.value for k in EntityKind], help="Only this entity kind")
    parser.add_argument("--ac", type=int, action="append", help="Only this AC (repeatable)")
    args = parser.parse_args()

    kinds = [EntityKind(args.kind)] if args.kind else list(EntityKind)
    shard_keys = args.ac or get_shard_router().shard_keys

    failed = await create_indexes(kinds, shard_keys)

    if failed:
        print(f"\n⚠️  {failed} shard(s) failed")
        return 1
    print("\n✅ Indexes created")
    return 0


if __name__ == "__main__":
    run_script(main)
