"""
Register the default tracked assets.

    python -m assets.seed [--database-url URL]

Safe to re-run: existing addresses keep their id and get the symbol refreshed.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
from typing import Any

from core import db

from . import repository

DEFAULT_ASSETS: tuple[tuple[str, str], ...] = (
    ("TSLAx", "XsDoVfqeBukxuZHWhdvWHBhgEHjGNst4MLodqsJHzoB"),
    ("AAPLx", "XsbEhLAtcf6HdfpFZ5xEMdqW8nfAvcsP5bdudRLJzJp"),
    ("NVDAx", "Xsc9qvGR1efVDFGLrVsmkzv3qi45LTBjeUKSPmx9qEh"),
    ("AMZNx", "Xs3eBt7uRfJX8QUs4suhyU8p2M6DoUDrJyWBa8LLZsg"),
    ("COINx", "Xs7ZdzSHLU9ftNJsii5fCeJhoRWSC32SQGzGQtePxNu"),
    ("HOODx", "XsvNBAYkrDRNhA7wPHQfX3ZUXZyZLdnCQDfHZ56bzpg"),
    ("GOOGLx", "XsCPL9dNWBMvFtTmwcCA5v3xWPSMEBCszbQdiLLq6aN"),
)

logger = logging.getLogger(__name__)


async def seed_assets(executor: Any, assets=DEFAULT_ASSETS) -> list[dict[str, Any]]:
    rows = []
    async with db.transaction(executor) as conn:
        for symbol, asset_address in assets:
            row = await repository.upsert_asset(symbol=symbol, asset_address=asset_address, executor=conn)
            logger.info("asset_seeded id=%s symbol=%s asset=%s", row["id"], symbol, asset_address)
            rows.append(row)
    return rows


async def _run(database_url: str | None) -> int:
    pool = await db.init_pool(database_url)
    try:
        rows = await seed_assets(pool)
    finally:
        await db.close_pool()
    return len(rows)


def main() -> None:
    parser = argparse.ArgumentParser(description="Register the default tracked assets")
    parser.add_argument("--database-url", default=None, help="Postgres DSN (defaults to DATABASE_URL)")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s [%(name)s] %(message)s")
    count = asyncio.run(_run(args.database_url))
    logger.info("asset_seed_done count=%s", count)


if __name__ == "__main__":
    main()
