"""
Immutable record of one observed trade on a pump.fun bonding curve.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict

from enums.position_state import TradeSide
from utils.helpers import now_ms


def _derive_price(raw: dict) -> float:
    # precio explícito > solAmount/tokenAmount > reservas de la curva
    explicit = raw.get("price")
    if explicit:
        return float(explicit)
    sol_amount = float(raw.get("solAmount") or 0)
    token_amount = float(raw.get("tokenAmount") or 0)
    if sol_amount > 0 and token_amount > 0:
        return sol_amount / token_amount
    v_sol = float(raw.get("vSolInBondingCurve") or 0)
    v_tokens = float(raw.get("vTokensInBondingCurve") or 0)
    if v_sol > 0 and v_tokens > 0:
        return v_sol / v_tokens
    return 0.0


def _derive_side(raw: dict) -> TradeSide:
    tx_type = str(raw.get("txType") or "").lower()
    if tx_type in ("buy", "sell"):
        return TradeSide(tx_type)
    return TradeSide.BUY if raw.get("isBuy") else TradeSide.SELL


class TradeEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    signature: str
    mint: str
    price: float
    sol_amount: float
    side: TradeSide
    slot: int = 0
    trader: str = "unknown"
    timestamp: int

    @classmethod
    def from_pumpportal(cls, raw: dict, timestamp: Optional[int] = None) -> "TradeEvent":
        return cls(
            signature=raw.get("signature", ""),
            mint=raw.get("mint", ""),
            price=_derive_price(raw),
            sol_amount=float(raw.get("solAmount") or 0),
            side=_derive_side(raw),
            slot=int(raw.get("slot") or 0),
            trader=raw.get("traderPublicKey") or raw.get("trader") or "unknown",
            timestamp=timestamp if timestamp is not None else now_ms(),
        )
