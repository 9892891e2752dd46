"""
Asset registry API endpoints.
"""

from __future__ import annotations

from fastapi import APIRouter, Request

from . import schemas, service

router = APIRouter()


def _int_param(request: Request, name: str) -> int | None:
    raw = (request.query_params.get(name) or "").strip()
    try:
        return int(raw) if raw else None
    except ValueError:
        return None


@router.get("/assets")
async def list_assets(request: Request) -> dict:
    data = await service.list_assets(
        page=_int_param(request, "page"),
        limit=_int_param(request, "limit"),
    )
    return {"success": True, "data": data}


@router.post("/assets", status_code=201)
async def create_asset(payload: schemas.AssetRequest) -> dict:
    row = await service.create_asset(payload)
    return {"success": True, "data": row}


@router.get("/assets/{asset_address}")
async def get_asset(asset_address: str) -> dict:
    row = await service.get_asset(asset_address)
    return {"success": True, "data": row}


@router.put("/assets/{asset_address}")
async def update_asset(asset_address: str, payload: schemas.AssetRequest) -> dict:
    row = await service.update_asset(asset_address, payload)
    return {"success": True, "data": row}


@router.delete("/assets/{asset_address}")
async def delete_asset(asset_address: str) -> dict:
    data = await service.delete_asset(asset_address)
    return {"success": True, "data": data}
