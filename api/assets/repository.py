"""
Asset registry persistence (raw SQL).
"""

from __future__ import annotations

from typing import Any

import asyncpg

from core import db
from core.errors import ConflictError

ASSET_COLUMNS = "id, symbol, asset_address, created_at, updated_at"


async def list_asset_addresses(*, executor: Any = None) -> list[str]:
    """
    Every tracked asset address, in registration order.
    """
    rows = await db.fetch_all(
        """
        SELECT asset_address
        FROM assets
        ORDER BY id ASC
        """,
        executor=executor,
    )
    return [str(row["asset_address"]) for row in rows]


async def count_assets(*, executor: Any = None) -> int:
    return int(await db.fetch_value("SELECT count(*) FROM assets", executor=executor) or 0)


async def list_assets(*, limit: int, offset: int, executor: Any = None) -> list[dict[str, Any]]:
    return await db.fetch_all(
        f"""
        SELECT {ASSET_COLUMNS}
        FROM assets
        ORDER BY id DESC
        LIMIT $1
        OFFSET $2
        """,
        limit,
        offset,
        executor=executor,
    )


async def get_asset(asset_address: str, *, executor: Any = None) -> dict[str, Any] | None:
    return await db.fetch_one(
        f"""
        SELECT {ASSET_COLUMNS}
        FROM assets
        WHERE asset_address = $1
        """,
        asset_address,
        executor=executor,
    )


async def address_taken(asset_address: str, *, exclude: str | None = None, executor: Any = None) -> bool:
    row = await db.fetch_one(
        """
        SELECT 1 AS ok
        FROM assets
        WHERE asset_address = $1
          AND ($2::text IS NULL OR asset_address <> $2)
        LIMIT 1
        """,
        asset_address,
        exclude,
        executor=executor,
    )
    return row is not None


async def create_asset(*, symbol: str, asset_address: str, executor: Any = None) -> dict[str, Any]:
    try:
        row = await db.fetch_one(
            f"""
            INSERT INTO assets (symbol, asset_address)
            VALUES ($1, $2)
            RETURNING {ASSET_COLUMNS}
            """,
            symbol,
            asset_address,
            executor=executor,
        )
    except asyncpg.UniqueViolationError as exc:
        raise ConflictError(f"asset_address already exists: {asset_address}") from exc
    if row is None:
        raise RuntimeError("Failed to create asset.")
    return row


async def update_asset(
    current_address: str,
    *,
    symbol: str,
    asset_address: str,
    executor: Any = None,
) -> dict[str, Any] | None:
    try:
        return await db.fetch_one(
            f"""
            UPDATE assets
            SET symbol = $2,
                asset_address = $3,
                updated_at = now()
            WHERE asset_address = $1
            RETURNING {ASSET_COLUMNS}
            """,
            current_address,
            symbol,
            asset_address,
            executor=executor,
        )
    except asyncpg.UniqueViolationError as exc:
        raise ConflictError(f"asset_address is used by another asset: {asset_address}") from exc


async def delete_asset(asset_address: str, *, executor: Any = None) -> bool:
    row = await db.fetch_one(
        """
        DELETE FROM assets
        WHERE asset_address = $1
        RETURNING id
        """,
        asset_address,
        executor=executor,
    )
    return row is not None


async def upsert_asset(*, symbol: str, asset_address: str, executor: Any = None) -> dict[str, Any]:
    """
    Insert an asset, or refresh the symbol of an existing address.
    """
    row = await db.fetch_one(
        f"""
        INSERT INTO assets (symbol, asset_address)
        VALUES ($1, $2)
        ON CONFLICT (asset_address) DO UPDATE
        SET symbol = EXCLUDED.symbol,
            updated_at = now()
        RETURNING {ASSET_COLUMNS}
        """,
        symbol,
        asset_address,
        executor=executor,
    )
    if row is None:
        raise RuntimeError(f"Failed to upsert asset {asset_address}.")
    return row
