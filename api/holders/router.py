"""
Holder API endpoints.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from core import db

from . import schemas, service
from .repository import HolderStore

router = APIRouter()


def get_store() -> HolderStore:
    return HolderStore(db.pool())


@router.get("/holders")
async def list_holders(request: Request, store: HolderStore = Depends(get_store)) -> dict:
    """
    List mirrored holders.

    Query parameters are parsed leniently (see `service.parse_list_params`),
    so they are read from the raw query string rather than declared here.
    """
    query = service.parse_list_params(request.query_params)
    result = await service.list_holders(store, query)
    return {
        "success": True,
        "data": result.rows,
        "total": result.total,
        "page": result.page,
        "limit": result.limit,
        "total_pages": result.total_pages,
    }


@router.get("/holders/{asset_address}/{holder_key}")
async def get_holder(
    asset_address: str,
    holder_key: str,
    store: HolderStore = Depends(get_store),
) -> dict:
    row = await service.get_holder(store, asset_address, holder_key)
    return {"success": True, "data": row}


@router.put("/holders/{asset_address}/{holder_key}")
async def update_holder_state(
    asset_address: str,
    holder_key: str,
    request: schemas.UpdateStateRequest,
    store: HolderStore = Depends(get_store),
) -> dict:
    row = await service.update_state(store, asset_address, holder_key, request.state)
    return {"success": True, "data": row}
