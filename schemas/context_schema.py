"""
Inputs handed to the verdict engines.

Plain dataclasses: they are built per evaluation from the in-memory mirrors
and never persisted.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List

from models.token import TokenInfo
from models.trade_event import TradeEvent


@dataclass
class RiskContext:
    """What the risk engine sees for one mint."""

    token: TokenInfo
    recent_trades: List[TradeEvent] = field(default_factory=list)


@dataclass
class StrategyContext:
    """What the strategies see for one mint."""

    trades: List[TradeEvent] = field(default_factory=list)
    price_history: List[float] = field(default_factory=list)
