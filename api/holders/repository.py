"""
Holder mirror persistence (raw SQL).

All statements take values as bind parameters. Column names in ORDER BY and
WHERE clauses come only from the allow-lists below.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Iterable

import asyncpg

from core import db
from core.errors import NotFoundError, StorageError, ValidationError

from .parser import display_amount, display_amount_string, is_amount_string
from .schemas import VALID_STATES, HolderQuery, HolderRecord

MAX_LIMIT = 1000

# Keeps (page - 1) * limit within Postgres BIGINT for any limit <= MAX_LIMIT.
MAX_OFFSET = 2**63 - 1
MAX_PAGE = MAX_OFFSET // MAX_LIMIT + 1

FILTER_COLUMNS: tuple[str, ...] = ("asset_address", "owner", "state")

SORT_COLUMNS: frozenset[str] = frozenset(
    {
        "id",
        "asset_address",
        "holder_key",
        "owner",
        "state",
        "decimals",
        "amount",
        "display_amount",
        "native_balance",
        "created_at",
        "updated_at",
    }
)

DEFAULT_ORDER = "id ASC"

HOLDER_COLUMNS = """id, asset_address, holder_key, native_balance, is_native, owner, state,
               decimals, amount, display_amount, display_amount_string, created_at, updated_at"""

# Strictly later than the previous value even when the clock has not moved.
_NEXT_UPDATED_AT = "GREATEST(clock_timestamp(), holders.updated_at + interval '1 microsecond')"

_DB_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BatchResult:
    upserted: int
    failed: int


def validate_state(state: Any) -> str:
    if not isinstance(state, str) or state not in VALID_STATES:
        raise ValidationError(f"state must be one of: {', '.join(VALID_STATES)}")
    return state


def _holder_from_row(row: dict[str, Any]) -> dict[str, Any]:
    amount = row.get("amount")
    native_balance = row.get("native_balance")
    display = row.get("display_amount")
    return {
        **row,
        "amount": str(int(amount)) if isinstance(amount, Decimal) else amount,
        "native_balance": int(native_balance) if native_balance is not None else None,
        "display_amount": float(display) if display is not None else None,
    }


def _clamp(query: HolderQuery) -> tuple[int, int]:
    page = min(max(query.page, 1), MAX_PAGE)
    limit = min(max(query.limit, 1), MAX_LIMIT)
    return page, limit


def build_list_query(query: HolderQuery) -> tuple[str, str, list[Any], list[Any]]:
    """
    Build (select_sql, count_sql, select_args, count_args) for a list request.

    Unknown filter keys are ignored. An unknown sort field falls back to the
    default order; a known one gets `id ASC` appended as tie-break.
    """
    conds: list[str] = []
    args: list[Any] = []

    if not query.include_empty:
        conds.append("amount > 0")

    for column in FILTER_COLUMNS:
        value = query.filters.get(column)
        if value is None or value == "":
            continue
        args.append(value)
        conds.append(f"{column} = ${len(args)}")

    where = (" WHERE " + " AND ".join(conds)) if conds else ""

    sort_field = query.sort_field if query.sort_field in SORT_COLUMNS else None
    direction = "DESC" if query.descending else "ASC"
    if sort_field is None:
        order = DEFAULT_ORDER
    elif sort_field == "id":
        order = f"id {direction}"
    else:
        order = f"{sort_field} {direction}, id ASC"

    page, limit = _clamp(query)
    count_args = list(args)
    select_args = [*args, limit, (page - 1) * limit]
    select_sql = (
        f"SELECT {HOLDER_COLUMNS}\n"
        f"FROM holders{where}\n"
        f"ORDER BY {order}\n"
        f"LIMIT ${len(args) + 1} OFFSET ${len(args) + 2}"
    )
    count_sql = f"SELECT count(*) AS n FROM holders{where}"
    return select_sql, count_sql, select_args, count_args


class HolderStore:
    """
    Reads and writes the `holders` table through an injected executor
    (an asyncpg Pool, or a Connection already inside a transaction).
    """

    def __init__(self, executor: Any) -> None:
        self._executor = executor

    async def upsert(self, record: HolderRecord, *, executor: Any = None) -> dict[str, Any]:
        """
        Insert or update one holder keyed by (asset_address, holder_key).
        """
        validate_state(record.state)
        if not record.asset_address or not record.holder_key:
            raise ValidationError("asset_address and holder_key are required.")
        if not is_amount_string(record.amount):
            raise ValidationError(f"amount must be a non-negative integer string, got {record.amount!r}")
        if record.decimals < 0:
            raise ValidationError("decimals must not be negative.")

        try:
            row = await db.fetch_one(
                f"""
                INSERT INTO holders (
                    asset_address, holder_key, native_balance, is_native, owner, state,
                    decimals, amount, display_amount, display_amount_string
                )
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10)
                ON CONFLICT (asset_address, holder_key) DO UPDATE
                SET native_balance = EXCLUDED.native_balance,
                    is_native = EXCLUDED.is_native,
                    owner = EXCLUDED.owner,
                    state = EXCLUDED.state,
                    decimals = EXCLUDED.decimals,
                    amount = EXCLUDED.amount,
                    display_amount = EXCLUDED.display_amount,
                    display_amount_string = EXCLUDED.display_amount_string,
                    updated_at = {_NEXT_UPDATED_AT}
                RETURNING {HOLDER_COLUMNS}
                """,
                record.asset_address,
                record.holder_key,
                Decimal(record.native_balance),
                record.is_native,
                record.owner,
                record.state,
                record.decimals,
                Decimal(record.amount),
                display_amount(record.amount, record.decimals),
                display_amount_string(record.amount, record.decimals),
                executor=executor or self._executor,
            )
        except _DB_ERRORS as exc:
            raise StorageError(f"Failed to upsert holder {record.holder_key}: {exc}") from exc
        if row is None:
            raise StorageError(f"Failed to upsert holder {record.holder_key}.")
        return _holder_from_row(row)

    async def upsert_many(self, records: Iterable[HolderRecord]) -> BatchResult:
        """
        Upsert a batch in one transaction.

        Each record runs inside its own savepoint, so a failing record is
        rolled back and skipped while the rest of the batch commits.
        """
        upserted = 0
        failed = 0
        try:
            async with db.transaction(self._executor) as conn:
                for record in records:
                    try:
                        async with conn.transaction():
                            await self.upsert(record, executor=conn)
                    except (ValidationError, StorageError) as exc:
                        failed += 1
                        logger.warning(
                            "holder_upsert_failed asset=%s holder=%s error=%s",
                            record.asset_address,
                            record.holder_key,
                            exc,
                        )
                        continue
                    upserted += 1
        except _DB_ERRORS as exc:
            raise StorageError(f"Holder batch transaction failed: {exc}") from exc
        return BatchResult(upserted=upserted, failed=failed)

    async def get(self, asset_address: str, holder_key: str) -> dict[str, Any] | None:
        try:
            row = await db.fetch_one(
                f"""
                SELECT {HOLDER_COLUMNS}
                FROM holders
                WHERE asset_address = $1
                  AND holder_key = $2
                """,
                asset_address,
                holder_key,
                executor=self._executor,
            )
        except _DB_ERRORS as exc:
            raise StorageError(f"Failed to load holder {holder_key}: {exc}") from exc
        return _holder_from_row(row) if row is not None else None

    async def set_state(self, asset_address: str, holder_key: str, new_state: Any) -> dict[str, Any]:
        """
        Overwrite the state of one holder and return the updated row.
        """
        state = validate_state(new_state)
        try:
            row = await db.fetch_one(
                f"""
                UPDATE holders
                SET state = $3,
                    updated_at = {_NEXT_UPDATED_AT}
                WHERE asset_address = $1
                  AND holder_key = $2
                RETURNING {HOLDER_COLUMNS}
                """,
                asset_address,
                holder_key,
                state,
                executor=self._executor,
            )
        except _DB_ERRORS as exc:
            raise StorageError(f"Failed to update holder {holder_key}: {exc}") from exc
        if row is None:
            raise NotFoundError(f"Holder not found: asset_address={asset_address} holder_key={holder_key}")
        return _holder_from_row(row)

    async def query(self, query: HolderQuery) -> tuple[list[dict[str, Any]], int]:
        """
        Return one page of holders plus the total matching the same filters.
        """
        select_sql, count_sql, select_args, count_args = build_list_query(query)
        try:
            total = await db.fetch_value(count_sql, *count_args, executor=self._executor)
            rows = await db.fetch_all(select_sql, *select_args, executor=self._executor)
        except _DB_ERRORS as exc:
            raise StorageError(f"Failed to query holders: {exc}") from exc
        return [_holder_from_row(r) for r in rows], int(total or 0)
