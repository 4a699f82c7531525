# services/strategy_service.py
from __future__ import annotations
from typing import List, Protocol, Sequence

from enums.position_state import TradeSide
from models.verdicts import StrategySignal
from schemas.context_schema import StrategyContext
from utils.log_config import logger_manager

logger = logger_manager.setup_logger(__name__)


class Strategy(Protocol):
    name: str

    def evaluate(self, ctx: StrategyContext) -> StrategySignal: ...


class LaunchMomentumStrategy:
    """Entra con flujo comprador rápido y neto positivo en los primeros trades."""

    name = "launch-momentum"

    def evaluate(self, ctx: StrategyContext) -> StrategySignal:
        window = ctx.trades[-20:]
        buys = [t for t in window if t.side == TradeSide.BUY]
        sells = [t for t in window if t.side == TradeSide.SELL]
        span_ms = (window[-1].timestamp - window[0].timestamp) if window else 0
        velocity = len(buys) / max(1, span_ms) * 1000  # compras por segundo
        net_flow = sum(t.sol_amount for t in buys) - sum(t.sol_amount for t in sells)
        unique = len({t.trader for t in window})

        if len(window) < 5 or velocity < 1 or net_flow <= 0 or unique < 3:
            return StrategySignal(action="skip", confidence=0.2, size_multiplier=1, rationale="Insufficient early momentum")

        return StrategySignal(
            action="enter",
            confidence=min(1.0, velocity / 5),
            size_multiplier=1 + min(0.5, net_flow / 5),
            rationale="High early momentum with positive net flow",
            suggested_stop_loss_pct=0.25,
        )


class PullbackReclaimStrategy:
    """Entra cuando el precio cae >10% desde el máximo reciente y lo recupera."""

    name = "pullback-reclaim"

    def evaluate(self, ctx: StrategyContext) -> StrategySignal:
        history = ctx.price_history
        if len(history) < 6:
            return StrategySignal(action="skip", confidence=0.1, size_multiplier=1, rationale="Not enough price history")

        recent = history[-6:]
        top = max(recent[0:3])
        dip = min(recent[2:4])
        reclaim = recent[5]
        if dip < top * 0.9 and reclaim > top * 0.98:
            return StrategySignal(
                action="enter",
                confidence=0.65,
                size_multiplier=1,
                rationale="Pullback followed by reclaim",
                suggested_stop_loss_pct=0.2,
            )
        return StrategySignal(action="skip", confidence=0.15, size_multiplier=1, rationale="No clean reclaim detected")


class StrategyEngine:
    """
    Combina estrategias: promedia confianza y multiplicador de tamaño de las
    que dicen "enter"; los overrides de stop/TP vienen de la primera de ellas.
    """

    def __init__(self, strategies: Sequence[Strategy]) -> None:
        self.strategies: List[Strategy] = list(strategies)

    def evaluate(self, ctx: StrategyContext) -> StrategySignal:
        signals = [s.evaluate(ctx) for s in self.strategies]
        enter = [s for s in signals if s.should_enter]
        if not enter:
            return StrategySignal(action="skip", confidence=0, size_multiplier=1, rationale="All strategies skipped")

        first = enter[0]
        return StrategySignal(
            action="enter",
            confidence=sum(s.confidence for s in enter) / len(enter),
            size_multiplier=sum(s.size_multiplier for s in enter) / len(enter),
            rationale="; ".join(s.rationale for s in enter),
            suggested_stop_loss_pct=first.suggested_stop_loss_pct,
            suggested_take_profits=first.suggested_take_profits,
        )


def default_strategy_engine() -> StrategyEngine:
    return StrategyEngine([LaunchMomentumStrategy(), PullbackReclaimStrategy()])
