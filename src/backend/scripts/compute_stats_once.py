"""
Run one precomputed stats pass over every AC and print the summary.

Useful after a bulk import, or to seed precomputed_stats on a fresh
database without waiting for the scheduler.

Usage:
    python scripts/compute_stats_once.py
    python scripts/compute_stats_once.py --no-delay
"""

import argparse

import scripts._common  # noqa: F401 - Sets up sys.path for imports
from core.logging_config import configure_logging
from scripts._common import run_script
from services.stats_service import get_stats_job


async def main() -> int:
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument("--no-delay", action="store_true", help="Skip the pause between ACs")
    args = parser.parse_args()

    configure_logging(debug=True)
    job = get_stats_job()
    if args.no_delay:
        job.shard_delay_seconds = 0

    summary = await job.compute_all()

    print(f"\n✅ success={summary.success} failed={summary.failed} skipped={summary.skipped}")
    for detail in summary.details:
        if detail.status == "failed":
            print(f"  ✗ AC {detail.shard_key}: {detail.error}")
    return 1 if summary.failed else 0


if __name__ == "__main__":
    run_script(main)
