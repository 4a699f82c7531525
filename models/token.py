"""
Domain model representing a pump.fun token detected by the feed.

Authorities are kept as the raw address (or ``None`` when revoked) because
the risk engine only cares about whether they are present.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel


class TokenInfo(BaseModel):

    mint: str
    creator: str = "unknown"
    decimals: int = 6
    freeze_authority: Optional[str] = None
    mint_authority: Optional[str] = None
    name: str = ""
    symbol: str = ""

    @classmethod
    def from_pumpportal(cls, raw: dict) -> "TokenInfo":
        return cls(
            mint=raw.get("mint", ""),
            creator=raw.get("traderPublicKey") or raw.get("creator") or "unknown",
            decimals=int(raw.get("decimals") or 6),
            freeze_authority=raw.get("freezeAuthority"),
            mint_authority=raw.get("mintAuthority"),
            name=raw.get("name", "") or "",
            symbol=raw.get("symbol", "") or "",
        )
