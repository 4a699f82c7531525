"""
Results produced by the transaction execution engine.
"""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field


class SimResult(BaseModel):
    ok: bool
    err: Optional[str] = None
    logs: List[str] = Field(default_factory=list)


class GateResult(BaseModel):
    ok: bool
    reason: Optional[str] = None
    buy: Optional[SimResult] = None
    sell: Optional[SimResult] = None


class FillDeltas(BaseModel):
    """Fill real leído de los snapshots pre/post de la tx confirmada."""

    signature: str
    sol_delta: float            # negativo = SOL gastado (incluye fee)
    token_delta: float = 0.0    # suma de cuentas del payer para el mint
    fee_sol: float = 0.0

    @property
    def realized_price(self) -> Optional[float]:
        """
        SOL por token en la curva, sin el fee de red (compra: gastado/recibido;
        venta: recibido/vendido). Comparable con los precios del feed. La renta
        de una cuenta de token nueva no se distingue y queda incluida.
        """
        if self.token_delta == 0 or self.sol_delta == 0:
            return None
        if (self.sol_delta < 0) == (self.token_delta < 0):
            return None
        if self.sol_delta < 0:
            curve_sol = -self.sol_delta - self.fee_sol
        else:
            curve_sol = self.sol_delta + self.fee_sol
        if curve_sol <= 0:
            return None
        return curve_sol / abs(self.token_delta)


class ExecutionResult(BaseModel):
    signature: Optional[str] = None
    confirmed: bool = False
    error: Optional[str] = None
    attempt: int = 0
    fill: Optional[FillDeltas] = None
    fill_error: Optional[str] = None
