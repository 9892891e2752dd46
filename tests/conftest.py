"""
Shared fixtures: raw ledger items and fake asyncpg executors.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

import pytest

ASSET_A = "Xs3eBt7uRfJX8QUs4suhyU8p2M6DoUDrJyWBa8LLZsg"


def make_item(
    holder_key: str,
    *,
    amount: Any = "1000000",
    decimals: Any = 6,
    state: Any = "Initialized",
    owner: Any = "OwnerWallet1111111111111111111111111111111",
    lamports: Any = 2039280,
    is_native: bool = False,
    kind: str = "account",
) -> dict[str, Any]:
    return {
        "pubkey": holder_key,
        "account": {
            "lamports": lamports,
            "owner": "TokenzQdBNbLqP5VEhdkAS6EPFLC1PHnBqCXEpPxuEb",
            "data": {
                "parsed": {
                    "type": kind,
                    "info": {
                        "isNative": is_native,
                        "owner": owner,
                        "state": state,
                        "tokenAmount": {
                            "amount": amount,
                            "decimals": decimals,
                            "uiAmount": 999.0,
                            "uiAmountString": "999",
                        },
                    },
                },
            },
        },
    }


@pytest.fixture
def account_item():
    return make_item


def holder_row(**overrides: Any) -> dict[str, Any]:
    now = datetime(2025, 1, 1, tzinfo=timezone.utc)
    row = {
        "id": 1,
        "asset_address": ASSET_A,
        "holder_key": "HolderKey1",
        "native_balance": Decimal(2039280),
        "is_native": False,
        "owner": "OwnerWallet1111111111111111111111111111111",
        "state": "Initialized",
        "decimals": 6,
        "amount": Decimal(1000000),
        "display_amount": 1.0,
        "display_amount_string": "1",
        "created_at": now,
        "updated_at": now,
    }
    row.update(overrides)
    return row


@pytest.fixture
def make_holder_row():
    return holder_row


class FakeTransaction:
    def __init__(self, conn: "FakeConnection", depth: int) -> None:
        self._conn = conn
        self._depth = depth

    async def __aenter__(self) -> "FakeTransaction":
        self._conn.events.append(("begin", self._depth))
        self._conn.depth += 1
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        self._conn.depth -= 1
        if exc_type is not None:
            self._conn.events.append(("rollback", self._depth))
            return False
        if self._depth == 0 and self._conn.fail_commit:
            self._conn.events.append(("rollback", self._depth))
            raise OSError("connection lost during commit")
        self._conn.events.append(("commit", self._depth))
        return False


class FakeConnection:
    """
    Records every statement. `fetchrow` echoes a holder row built from the
    INSERT/UPDATE arguments; holder keys listed in `fail_on` raise OSError.
    """

    def __init__(
        self,
        *,
        fetchrow_result: Any = "echo",
        fetch_result: list[dict[str, Any]] | None = None,
        fetchval_result: Any = 0,
        fail_on: set[str] | None = None,
        fail_commit: bool = False,
    ) -> None:
        self.calls: list[tuple[str, str, tuple[Any, ...]]] = []
        self.events: list[tuple[str, int]] = []
        self.depth = 0
        self._fetchrow_result = fetchrow_result
        self._fetch_result = fetch_result or []
        self._fetchval_result = fetchval_result
        self.fail_on = fail_on or set()
        self.fail_commit = fail_commit

    def transaction(self) -> FakeTransaction:
        return FakeTransaction(self, self.depth)

    async def fetchrow(self, sql: str, *args: Any) -> Any:
        self.calls.append(("fetchrow", sql, args))
        if len(args) > 1 and args[1] in self.fail_on:
            raise OSError(f"write failed for {args[1]}")
        if self._fetchrow_result != "echo":
            return self._fetchrow_result
        if sql.lstrip().startswith("INSERT INTO holders"):
            return holder_row(
                asset_address=args[0],
                holder_key=args[1],
                native_balance=args[2],
                is_native=args[3],
                owner=args[4],
                state=args[5],
                decimals=args[6],
                amount=args[7],
                display_amount=args[8],
                display_amount_string=args[9],
            )
        return None

    async def fetch(self, sql: str, *args: Any) -> list[dict[str, Any]]:
        self.calls.append(("fetch", sql, args))
        return list(self._fetch_result)

    async def fetchval(self, sql: str, *args: Any) -> Any:
        self.calls.append(("fetchval", sql, args))
        return self._fetchval_result

    async def execute(self, sql: str, *args: Any) -> str:
        self.calls.append(("execute", sql, args))
        return "OK"


class FakePool:
    def __init__(self, conn: FakeConnection) -> None:
        self.conn = conn
        self.acquired = 0

    @asynccontextmanager
    async def acquire(self):
        self.acquired += 1
        yield self.conn


@pytest.fixture
def fake_conn() -> FakeConnection:
    return FakeConnection()


@pytest.fixture
def fake_pool(fake_conn: FakeConnection) -> FakePool:
    return FakePool(fake_conn)


@pytest.fixture
def make_conn():
    return FakeConnection


@pytest.fixture
def make_pool():
    return FakePool
