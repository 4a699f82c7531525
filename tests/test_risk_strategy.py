"""Default risk heuristic and strategy combination."""

import pytest

from conftest import trade
from enums.position_state import TradeSide
from models.position import TakeProfitRung
from models.token import TokenInfo
from models.verdicts import StrategySignal
from schemas.context_schema import RiskContext, StrategyContext
from services.risk_service import FEW_TRADERS, FREEZE_AUTHORITY_PRESENT, SELL_PRESSURE, RiskEngine
from services.strategy_service import (
    LaunchMomentumStrategy,
    PullbackReclaimStrategy,
    StrategyEngine,
    default_strategy_engine,
)


def diverse_buys(n=6, start=0, step_ms=100, sol=0.5):
    return [trade("MintA", 1e-7, start + i * step_ms, TradeSide.BUY, trader=f"w{i}", sol_amount=sol) for i in range(n)]


# ---------- riesgo ----------
def test_clean_token_is_allowed():
    report = RiskEngine().evaluate(RiskContext(token=TokenInfo(mint="MintA"), recent_trades=diverse_buys()))
    assert report.allow
    assert report.score == 100
    assert report.reasons == []


def test_freeze_authority_always_blocks():
    token = TokenInfo(mint="MintA", freeze_authority="Auth111")
    report = RiskEngine().evaluate(RiskContext(token=token, recent_trades=diverse_buys()))
    assert not report.allow
    assert FREEZE_AUTHORITY_PRESENT in report.reasons
    assert report.score == 50


def test_mint_authority_alone_still_allowed():
    token = TokenInfo(mint="MintA", mint_authority="Auth111")
    report = RiskEngine().evaluate(RiskContext(token=token, recent_trades=diverse_buys()))
    assert report.score == 65
    assert report.allow


def test_sell_pressure_and_few_traders_accumulate():
    trades = [trade("MintA", 1e-7, i, TradeSide.SELL, trader="dump") for i in range(5)]
    trades.append(trade("MintA", 1e-7, 9, TradeSide.BUY, trader="dump"))
    report = RiskEngine().evaluate(RiskContext(token=TokenInfo(mint="MintA", mint_authority="A"), recent_trades=trades))

    assert SELL_PRESSURE in report.reasons and FEW_TRADERS in report.reasons
    assert report.score == 30
    assert not report.allow
    assert report.metrics["sells"] == 5


# ---------- estrategias ----------
def test_launch_momentum_enters_on_fast_positive_flow():
    signal = LaunchMomentumStrategy().evaluate(StrategyContext(trades=diverse_buys(n=6, step_ms=100)))
    assert signal.should_enter
    assert signal.suggested_stop_loss_pct == 0.25
    assert 1.0 < signal.size_multiplier <= 1.5
    assert signal.confidence == pytest.approx(1.0)


def test_launch_momentum_skips_slow_flow():
    signal = LaunchMomentumStrategy().evaluate(StrategyContext(trades=diverse_buys(n=6, step_ms=5_000)))
    assert not signal.should_enter


def test_launch_momentum_skips_short_history():
    assert LaunchMomentumStrategy().evaluate(StrategyContext(trades=diverse_buys(n=4))).action == "skip"


def test_pullback_reclaim_detects_dip_and_reclaim():
    prices = [1.0, 1.05, 0.9, 0.92, 1.0, 1.04]
    signal = PullbackReclaimStrategy().evaluate(StrategyContext(price_history=prices))
    assert signal.should_enter
    assert signal.suggested_stop_loss_pct == 0.2


@pytest.mark.parametrize("prices", [[1.0, 1.0, 1.0, 1.0, 1.0, 1.0], [1.0, 1.05, 0.9, 0.92, 0.95, 0.97], [1.0] * 5])
def test_pullback_reclaim_skips(prices):
    assert not PullbackReclaimStrategy().evaluate(StrategyContext(price_history=prices)).should_enter


class Fixed:
    def __init__(self, signal):
        self.signal = signal

    def evaluate(self, ctx):
        return self.signal


def test_engine_averages_enter_signals_and_takes_first_override():
    ladder = [TakeProfitRung(sell_pct=0.5, profit_threshold=0.4)]
    engine = StrategyEngine([
        Fixed(StrategySignal(action="skip", confidence=0.9, size_multiplier=3.0)),
        Fixed(StrategySignal(action="enter", confidence=0.6, size_multiplier=1.2, rationale="a",
                             suggested_stop_loss_pct=0.3, suggested_take_profits=ladder)),
        Fixed(StrategySignal(action="enter", confidence=0.8, size_multiplier=1.0, rationale="b",
                             suggested_stop_loss_pct=0.1)),
    ])
    signal = engine.evaluate(StrategyContext())

    assert signal.should_enter
    assert signal.confidence == pytest.approx(0.7)
    assert signal.size_multiplier == pytest.approx(1.1)
    assert signal.rationale == "a; b"
    assert signal.suggested_stop_loss_pct == 0.3
    assert signal.suggested_take_profits == ladder


def test_engine_skips_when_all_skip():
    signal = default_strategy_engine().evaluate(StrategyContext())
    assert signal.action == "skip"
    assert signal.rationale == "All strategies skipped"
