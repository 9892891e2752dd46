"""
Pydantic schemas for asset-registry endpoints.
"""

from __future__ import annotations

from typing import Annotated

from pydantic import BaseModel, StringConstraints

# Whitespace is stripped before the length bounds are checked.
Symbol = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=255)]
AssetAddress = Annotated[str, StringConstraints(strip_whitespace=True, min_length=32, max_length=255)]


class AssetRequest(BaseModel):
    symbol: Symbol
    asset_address: AssetAddress
