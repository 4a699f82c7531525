"""
Verdicts consumed by the entry admission pipeline.

Risk and strategy engines are opaque: the core only reads ``allow``/``reasons``
from a ``RiskReport`` and ``action``/``size_multiplier``/overrides from a
``StrategySignal``.
"""

from __future__ import annotations

from typing import Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field

from models.position import TakeProfitRung


class RiskReport(BaseModel):
    score: int
    allow: bool
    reasons: List[str] = Field(default_factory=list)
    data_completeness: Literal["low", "medium", "high"] = "medium"
    category: Optional[str] = None
    metrics: Dict[str, Union[float, int, str, bool]] = Field(default_factory=dict)


class StrategySignal(BaseModel):
    action: Literal["enter", "skip"]
    confidence: float = 0.0
    size_multiplier: float = 1.0
    rationale: str = ""
    suggested_stop_loss_pct: Optional[float] = None
    suggested_take_profits: Optional[List[TakeProfitRung]] = None

    @property
    def should_enter(self) -> bool:
        return self.action == "enter"
