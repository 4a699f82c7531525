"""
Domain model representing a position: the unit of capital at risk.

A position is created in ``PENDING_ENTRY`` and only mutated through
``PositionFSM`` (transitions and runtime updates), which persists every
change through the store.
"""

from __future__ import annotations

import uuid
from typing import List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from enums.position_state import PositionState


class TakeProfitRung(BaseModel):
    """One take-profit step: sell ``sell_pct`` of holdings once pnl >= ``profit_threshold``."""

    model_config = ConfigDict(populate_by_name=True)

    sell_pct: float = Field(validation_alias=AliasChoices("sell_pct", "sellPct", "pct"))
    profit_threshold: float = Field(
        validation_alias=AliasChoices("profit_threshold", "profitThreshold", "profit")
    )


class Position(BaseModel):

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    mint: str
    state: PositionState = PositionState.PENDING_ENTRY

    # términos fijados al crear
    size_sol: float
    stop_loss_pct: float
    take_profits: List[TakeProfitRung] = Field(default_factory=list)
    trail_mode: str = ""

    # estado de fill / runtime
    tokens: Optional[float] = None
    entry_price: Optional[float] = None
    tp_filled: int = 0
    peak_pnl_pct: Optional[float] = None

    # auditoría
    entry_signature: Optional[str] = None
    exit_signature: Optional[str] = None
    last_error: Optional[str] = None

    created_at: int = 0
    updated_at: int = 0
    entry_timestamp: Optional[int] = None

    @property
    def is_closed(self) -> bool:
        return self.state == PositionState.CLOSED

    def next_rung(self) -> Optional[TakeProfitRung]:
        if self.tp_filled < len(self.take_profits):
            return self.take_profits[self.tp_filled]
        return None

    def pnl_pct(self, price: float) -> Optional[float]:
        if not self.entry_price or self.entry_price <= 0:
            return None
        return (price - self.entry_price) / self.entry_price
