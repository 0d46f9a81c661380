"""
Common utilities for backend scripts.

Import this module at the top of any script so that `db`, `repositories`,
`services` and friends resolve when the script is run directly
(python scripts/foo.py) rather than as a module.

Usage:
    import scripts._common  # noqa: F401
    from scripts._common import run_script
"""

import sys
from pathlib import Path
from typing import Awaitable, Callable

BACKEND_ROOT = Path(__file__).parent.parent
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))


def run_script(main: Callable[[], Awaitable[int]]) -> None:
    """Run an async script entry point, closing the MongoDB client afterwards."""
    import asyncio

    from db.mongo_session import close_mongo

    async def runner() -> int:
        try:
            return await main()
        finally:
            await close_mongo()

    raise SystemExit(asyncio.run(runner()))
