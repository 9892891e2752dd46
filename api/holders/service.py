"""
Holder read/write orchestration.

This is where we:
- turn raw, untrusted query-string values into a bounded `HolderQuery`
- call the holder store (repository)
- translate domain errors into HTTP errors
"""

from __future__ import annotations

from typing import Any, Mapping

from fastapi import HTTPException

from core.errors import NotFoundError, StorageError, ValidationError

from .repository import MAX_LIMIT, MAX_PAGE, HolderStore, validate_state
from .schemas import HolderQuery, ListResult

DEFAULT_PAGE = 1
DEFAULT_LIMIT = 10

# Public query-string names -> column names. Unknown names are ignored.
FILTER_ALIASES: dict[str, str] = {
    "asset_address": "asset_address",
    "assetAddress": "asset_address",
    "mint_address": "asset_address",
    "owner": "owner",
    "state": "state",
}

SORT_ALIASES: dict[str, str] = {
    "id": "id",
    "asset_address": "asset_address",
    "assetAddress": "asset_address",
    "mint_address": "asset_address",
    "holder_key": "holder_key",
    "holderKey": "holder_key",
    "pubkey": "holder_key",
    "owner": "owner",
    "state": "state",
    "decimals": "decimals",
    "amount": "amount",
    "display_amount": "display_amount",
    "displayAmount": "display_amount",
    "ui_amount": "display_amount",
    "uiAmount": "display_amount",
    "native_balance": "native_balance",
    "nativeBalance": "native_balance",
    "lamports": "native_balance",
    "created_at": "created_at",
    "createdAt": "created_at",
    "updated_at": "updated_at",
    "updatedAt": "updated_at",
}

_TRUE_VALUES = {"1", "true", "yes", "on"}


def _parse_int(raw: str | None) -> int | None:
    raw = (raw or "").strip()
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError:
        return None


def parse_sort(raw: str | None) -> tuple[str | None, bool]:
    """
    "-display_amount" -> ("display_amount", True). Unknown fields -> (None, False).
    """
    raw = (raw or "").strip()
    descending = raw.startswith("-")
    name = raw[1:] if descending else raw
    column = SORT_ALIASES.get(name)
    if column is None:
        return None, False
    return column, descending


def parse_list_params(params: Mapping[str, str]) -> HolderQuery:
    """
    Build a HolderQuery from raw query parameters.

    Bad values never fail the request: they fall back to defaults or are
    clamped into range.
    """
    filters: dict[str, str] = {}
    for name, column in FILTER_ALIASES.items():
        value = (params.get(name) or "").strip()
        if value and column not in filters:
            filters[column] = value

    sort_field, descending = parse_sort(params.get("sort"))

    page = _parse_int(params.get("page"))
    if page is None or page < 1:
        page = DEFAULT_PAGE
    page = min(page, MAX_PAGE)

    limit = _parse_int(params.get("limit"))
    if limit is None or limit <= 0:
        limit = DEFAULT_LIMIT
    limit = min(limit, MAX_LIMIT)

    include_empty = (params.get("include_empty") or "").strip().lower() in _TRUE_VALUES

    return HolderQuery(
        filters=filters,
        sort_field=sort_field,
        descending=descending,
        page=page,
        limit=limit,
        include_empty=include_empty,
    )


async def list_holders(store: HolderStore, query: HolderQuery) -> ListResult:
    try:
        rows, total = await store.query(query)
    except StorageError as exc:
        raise HTTPException(status_code=500, detail="Failed to query holders.") from exc
    return ListResult(rows=rows, total=total, page=query.page, limit=query.limit)


async def get_holder(store: HolderStore, asset_address: str, holder_key: str) -> dict[str, Any]:
    try:
        row = await store.get(asset_address, holder_key)
    except StorageError as exc:
        raise HTTPException(status_code=500, detail="Failed to load holder.") from exc
    if row is None:
        raise HTTPException(status_code=404, detail="Holder not found.")
    return row


async def update_state(store: HolderStore, asset_address: str, holder_key: str, state: Any) -> dict[str, Any]:
    asset_address = (asset_address or "").strip()
    holder_key = (holder_key or "").strip()
    if not asset_address or not holder_key:
        raise HTTPException(status_code=400, detail="Invalid asset_address or holder_key.")

    try:
        validate_state(state)
        return await store.set_state(asset_address, holder_key, state)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except StorageError as exc:
        raise HTTPException(status_code=500, detail="Failed to update holder state.") from exc
