"""
Asset registry business logic.

The registry is the list of assets the sync worker polls. Addresses are
unique; everything else is a plain single-table write.
"""

from __future__ import annotations

import logging

from fastapi import HTTPException

from core.errors import ConflictError

from . import repository, schemas

DEFAULT_LIMIT = 10
MAX_LIMIT = 1000
MAX_PAGE = (2**63 - 1) // MAX_LIMIT + 1

logger = logging.getLogger(__name__)


def normalize_pagination(page: int | None, limit: int | None) -> tuple[int, int]:
    page = min(page, MAX_PAGE) if page is not None and page >= 1 else 1
    # Out-of-range limits reset to the default rather than clamping.
    if limit is None or limit < 1 or limit > MAX_LIMIT:
        limit = DEFAULT_LIMIT
    return page, limit


async def list_assets(*, page: int | None, limit: int | None) -> dict:
    page, limit = normalize_pagination(page, limit)
    total = await repository.count_assets()
    rows = await repository.list_assets(limit=limit, offset=(page - 1) * limit)
    total_pages = (total + limit - 1) // limit
    return {
        "data": rows,
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "total_pages": total_pages,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        },
    }


async def get_asset(asset_address: str) -> dict:
    row = await repository.get_asset(asset_address)
    if row is None:
        raise HTTPException(status_code=404, detail=f"Asset not found: {asset_address}")
    return row


async def create_asset(payload: schemas.AssetRequest) -> dict:
    if await repository.address_taken(payload.asset_address):
        raise HTTPException(status_code=400, detail=f"asset_address already exists: {payload.asset_address}")
    try:
        row = await repository.create_asset(symbol=payload.symbol, asset_address=payload.asset_address)
    except ConflictError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    logger.info("asset_created id=%s symbol=%s asset=%s", row["id"], row["symbol"], row["asset_address"])
    return row


async def update_asset(asset_address: str, payload: schemas.AssetRequest) -> dict:
    if await repository.get_asset(asset_address) is None:
        raise HTTPException(status_code=404, detail=f"Asset not found: {asset_address}")
    if await repository.address_taken(payload.asset_address, exclude=asset_address):
        raise HTTPException(
            status_code=400,
            detail=f"asset_address is used by another asset: {payload.asset_address}",
        )
    try:
        row = await repository.update_asset(
            asset_address,
            symbol=payload.symbol,
            asset_address=payload.asset_address,
        )
    except ConflictError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    if row is None:
        raise HTTPException(status_code=404, detail=f"Asset not found: {asset_address}")
    logger.info("asset_updated id=%s symbol=%s asset=%s", row["id"], row["symbol"], row["asset_address"])
    return row


async def delete_asset(asset_address: str) -> dict:
    if not await repository.delete_asset(asset_address):
        raise HTTPException(status_code=404, detail=f"Asset not found: {asset_address}")
    logger.info("asset_deleted asset=%s", asset_address)
    return {"message": "Asset deleted."}
