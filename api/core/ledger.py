"""
Ledger JSON-RPC client helpers.

Used method:
- getProgramAccounts (token program, jsonParsed encoding, memcmp filter on the
  asset address at offset 0)
  -> {"result": [{"pubkey": "...", "account": {...}}, ...]}
  -> {"error": {"code": -32602, "message": "..."}}
"""

from __future__ import annotations

import json
from typing import Any, Iterator

import httpx

from . import VERSION

TOKEN_PROGRAM_ID = "TokenzQdBNbLqP5VEhdkAS6EPFLC1PHnBqCXEpPxuEb"
DEFAULT_TIMEOUT_S = 30.0


# Ledger failures are explicit and separable from other runtime errors.
class LedgerError(RuntimeError):
    pass


class LedgerNetworkError(LedgerError):
    pass


class LedgerProtocolError(LedgerError):
    def __init__(self, code: int | None, message: str) -> None:
        super().__init__(f"Ledger RPC error {code}: {message}")
        self.code = code
        self.rpc_message = message


class MalformedResponseError(LedgerError):
    pass


def build_request(asset_address: str, *, program_id: str = TOKEN_PROGRAM_ID) -> dict[str, Any]:
    """
    Build the getProgramAccounts request body for one asset.
    """
    return {
        "jsonrpc": "2.0",
        "id": "1",
        "method": "getProgramAccounts",
        "params": [
            program_id,
            {
                "encoding": "jsonParsed",
                "filters": [
                    {"memcmp": {"offset": 0, "bytes": asset_address}},
                ],
            },
        ],
    }


def _normalize_rpc_url(rpc_url: str) -> str:
    rpc_url = (rpc_url or "").strip()
    if not rpc_url:
        raise LedgerError("LEDGER_RPC_URL is empty.")
    return rpc_url


def _iter_results(result: list[Any]) -> Iterator[Any]:
    for item in result:
        yield item


def parse_envelope(body: bytes | str) -> list[Any]:
    """
    Decode a JSON-RPC response body and return its `result` list.
    """
    try:
        data = json.loads(body)
    except (TypeError, ValueError) as e:
        raise MalformedResponseError("Ledger returned a non-JSON body.") from e

    if not isinstance(data, dict):
        raise MalformedResponseError("Ledger response is not a JSON object.")

    error = data.get("error")
    if error is not None:
        if not isinstance(error, dict):
            raise MalformedResponseError("Ledger error field is not an object.")
        code = error.get("code")
        raise LedgerProtocolError(
            code if isinstance(code, int) else None,
            str(error.get("message") or "unknown error"),
        )

    result = data.get("result")
    if result is None:
        return []
    if not isinstance(result, list):
        raise MalformedResponseError("Ledger result is not a list.")
    return result


async def fetch_token_accounts(
    *,
    rpc_url: str,
    asset_address: str,
    timeout_s: float = DEFAULT_TIMEOUT_S,
    program_id: str = TOKEN_PROGRAM_ID,
    transport: httpx.AsyncBaseTransport | None = None,
) -> Iterator[Any]:
    """
    Fetch all token accounts for `asset_address` and return a lazy iterator
    over the raw result items.

    No partial data is returned on failure: the whole body is validated
    before the iterator is handed out.
    """
    rpc_url = _normalize_rpc_url(rpc_url)
    asset_address = (asset_address or "").strip()
    if not asset_address:
        raise ValueError("asset_address is empty.")

    headers = {
        "Content-Type": "application/json",
        "User-Agent": f"holder-mirror/{VERSION}",
    }
    payload = build_request(asset_address, program_id=program_id)

    try:
        async with httpx.AsyncClient(timeout=timeout_s, transport=transport) as client:
            resp = await client.post(rpc_url, json=payload, headers=headers)
    except httpx.HTTPError as exc:
        raise LedgerNetworkError(f"Ledger request failed: {exc!r}") from exc

    if resp.status_code != 200:
        # Avoid dumping huge bodies; include a small snippet.
        body = resp.text[:500]
        raise LedgerNetworkError(f"Ledger request failed: {resp.status_code} {body}")

    return _iter_results(parse_envelope(resp.content))
