"""
Holder types: the state enum, the parsed record, the list query and the
state-update request body.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import BaseModel


class HolderState(str, Enum):
    UNINITIALIZED = "Uninitialized"
    INITIALIZED = "Initialized"
    FROZEN = "Frozen"


VALID_STATES: tuple[str, ...] = tuple(s.value for s in HolderState)


@dataclass(frozen=True)
class HolderRecord:
    """
    One holder account as observed on the ledger.

    `amount` is the exact integer balance in the token's smallest unit, kept as
    a decimal string. The display fields are derived from it at write time.
    """

    asset_address: str
    holder_key: str
    native_balance: int
    is_native: bool
    owner: str
    state: str
    decimals: int
    amount: str


@dataclass(frozen=True)
class HolderQuery:
    filters: dict[str, str] = field(default_factory=dict)
    sort_field: str | None = None
    descending: bool = False
    page: int = 1
    limit: int = 10
    include_empty: bool = False

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


@dataclass(frozen=True)
class ListResult:
    rows: list[dict[str, Any]]
    total: int
    page: int
    limit: int

    @property
    def total_pages(self) -> int:
        return (self.total + self.limit - 1) // self.limit


class UpdateStateRequest(BaseModel):
    # Kept as `Any` so an unknown value reaches the strict enum check and is
    # reported as a 400 with the list of accepted states.
    state: Any = None
