"""
Turn raw getProgramAccounts result items into `HolderRecord` candidates.

Expected item shape (jsonParsed encoding):

    {
      "pubkey": "<holder key>",
      "account": {
        "lamports": 2039280,
        "data": {
          "parsed": {
            "type": "account",
            "info": {
              "isNative": false,
              "owner": "<wallet>",
              "state": "Initialized",
              "tokenAmount": {"amount": "1500000", "decimals": 6, ...}
            }
          }
        }
      }
    }

Only items whose parsed type is "account" are holders; everything else is
counted and skipped.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Iterable, Mapping

from .schemas import HolderRecord

ACCOUNT_TYPE = "account"

logger = logging.getLogger(__name__)


class ObservationError(ValueError):
    pass


@dataclass
class ParseResult:
    records: list[HolderRecord] = field(default_factory=list)
    skipped: int = 0
    invalid: int = 0


def _get(mapping: Any, *keys: str) -> Any:
    if not isinstance(mapping, Mapping):
        return None
    for key in keys:
        if key in mapping:
            return mapping[key]
    return None


def is_amount_string(text: str) -> bool:
    # str.isdigit() alone also accepts non-ASCII digits such as "²".
    return text.isascii() and text.isdigit()


def _parse_amount(raw: Any) -> str:
    # bool is an int subclass; reject it explicitly.
    if isinstance(raw, bool):
        raise ObservationError("tokenAmount.amount is not an integer.")
    if isinstance(raw, int):
        value = raw
    elif isinstance(raw, str) and is_amount_string(raw.strip()):
        value = int(raw.strip())
    else:
        raise ObservationError(f"tokenAmount.amount is not an integer string: {raw!r}")
    if value < 0:
        raise ObservationError("tokenAmount.amount is negative.")
    return str(value)


def _parse_int(raw: Any, name: str) -> int:
    if isinstance(raw, bool) or not isinstance(raw, int):
        raise ObservationError(f"{name} is not an integer: {raw!r}")
    if raw < 0:
        raise ObservationError(f"{name} is negative.")
    return raw


def _scaled(amount: str, decimals: int) -> Decimal:
    # Built from the exponent form so no context rounding applies.
    return Decimal(f"{amount}E-{decimals}")


def display_amount_string(amount: str, decimals: int) -> str:
    """
    Render amount / 10**decimals exactly, without trailing zeros.
    """
    value = _scaled(amount, decimals)
    if value == 0:
        return "0"
    text = format(value, "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


def display_amount(amount: str, decimals: int) -> float:
    # Lossy; display only.
    return float(_scaled(amount, decimals))


def parse_observation(asset_address: str, item: Any) -> HolderRecord | None:
    """
    Convert one raw item into a HolderRecord.

    Returns None for non-account items. Raises ObservationError for account
    items that are missing required fields.
    """
    account = _get(item, "account")
    parsed = _get(_get(account, "data"), "parsed")
    if _get(parsed, "type") != ACCOUNT_TYPE:
        return None

    holder_key = _get(item, "pubkey", "holderKey")
    if not isinstance(holder_key, str) or not holder_key.strip():
        raise ObservationError("account item has no holder key.")

    info = _get(parsed, "info")
    if not isinstance(info, Mapping):
        raise ObservationError(f"account {holder_key} has no parsed info.")

    token_amount = _get(info, "tokenAmount")
    if not isinstance(token_amount, Mapping):
        raise ObservationError(f"account {holder_key} has no tokenAmount.")

    owner = _get(info, "owner")
    if not isinstance(owner, str):
        raise ObservationError(f"account {holder_key} has no owner.")

    state = _get(info, "state")
    if not isinstance(state, str):
        raise ObservationError(f"account {holder_key} has no state.")

    native_balance = _get(account, "lamports", "balance")
    return HolderRecord(
        asset_address=asset_address,
        holder_key=holder_key.strip(),
        native_balance=_parse_int(native_balance if native_balance is not None else 0, "lamports"),
        is_native=bool(_get(info, "isNative")),
        owner=owner,
        # Passed through as-is; the store rejects values outside the enum.
        state=state,
        decimals=_parse_int(_get(token_amount, "decimals"), "tokenAmount.decimals"),
        amount=_parse_amount(_get(token_amount, "amount")),
    )


def parse_observations(asset_address: str, items: Iterable[Any]) -> ParseResult:
    result = ParseResult()
    for item in items:
        try:
            record = parse_observation(asset_address, item)
        except ObservationError as exc:
            result.invalid += 1
            logger.warning("observation_invalid asset=%s error=%s", asset_address, exc)
            continue
        except Exception:
            result.invalid += 1
            logger.exception("observation_parse_crashed asset=%s", asset_address)
            continue
        if record is None:
            result.skipped += 1
            continue
        result.records.append(record)
    return result
