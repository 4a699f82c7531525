"""ExitManager: rule order, cooldown, dry-run and live exit flows."""

import asyncio

import pytest

from conftest import FakeAdapter, FakeEngine, make_settings, trade
from controllers.exit_controller import ExitManager, decide_exit, sell_amount
from enums.position_state import ExitReason, PositionState
from models.execution import ExecutionResult, FillDeltas
from models.position import TakeProfitRung
from repositories.state_repository import StateRepository

MINT = "MintA"
LADDER = [
    TakeProfitRung(sell_pct=0.25, profit_threshold=0.3),
    TakeProfitRung(sell_pct=0.25, profit_threshold=0.6),
    TakeProfitRung(sell_pct=0.25, profit_threshold=1.0),
]


def build_manager(settings, state, fsm, alerts, clock, engine=None, adapter=None):
    return ExitManager(
        settings, state, fsm, engine or FakeEngine(), adapter or FakeAdapter(), payer=None,
        alerts=alerts, clock=clock,
    )


def open_position(fsm, state, ladder=LADDER, stop_loss=0.25, mint=MINT, entry_price=1.0, tokens=100.0):
    pos = fsm.create(mint, 0.4, stop_loss, ladder, "volatility")
    fsm.transition(pos, PositionState.OPEN)
    if entry_price is not None:
        fsm.update(pos, entry_price=entry_price, tokens=tokens)
    state.register(pos)
    return pos


def see_price(state, clock, price, mint=MINT):
    state.record_trade(trade(mint, price, clock.now))


@pytest.fixture
def manager(settings, state, fsm, alerts, clock):
    return build_manager(settings, state, fsm, alerts, clock)


# ---------- reglas ----------
async def test_entry_price_initialised_from_last_price_then_skips(manager, fsm, state, clock, store):
    pos = open_position(fsm, state, entry_price=None)
    see_price(state, clock, 2e-8)

    assert await manager.evaluate_position(pos) is None
    assert pos.entry_price == 2e-8
    assert pos.tokens == pytest.approx(0.4 / 2e-8)
    assert store.get_position(pos.id).entry_price == 2e-8
    assert pos.state == PositionState.OPEN


async def test_no_observed_price_does_nothing(manager, fsm, state):
    pos = open_position(fsm, state, entry_price=None)
    assert await manager.evaluate_position(pos) is None
    assert pos.entry_price is None


async def test_stop_loss_scenario_closes_position(manager, fsm, state, clock, alerts):
    pos = open_position(fsm, state)
    see_price(state, clock, 0.74)

    assert await manager.evaluate_position(pos) == ExitReason.STOP_LOSS
    assert pos.state == PositionState.CLOSED
    assert not state.has_open_position(MINT)
    assert any("STOP_LOSS" in msg for _, msg in alerts.sent)


@pytest.mark.parametrize("price,fires", [(0.75, True), (0.7500001, False), (0.76, False)])
async def test_stop_loss_boundary(manager, fsm, state, clock, price, fires):
    pos = open_position(fsm, state, ladder=[])
    see_price(state, clock, price)

    reason = await manager.evaluate_position(pos)
    assert (reason == ExitReason.STOP_LOSS) is fires


async def test_take_profit_ladder_scenario(manager, fsm, state, clock, settings):
    pos = open_position(fsm, state)

    see_price(state, clock, 1.32)
    assert await manager.evaluate_position(pos) == ExitReason.TAKE_PROFIT
    assert pos.state == PositionState.OPEN
    assert pos.tp_filled == 1
    assert pos.tokens == pytest.approx(75.0)

    clock.advance(settings.exit_cooldown_ms)
    see_price(state, clock, 1.65)
    assert await manager.evaluate_position(pos) == ExitReason.TAKE_PROFIT
    assert pos.tp_filled == 2
    assert pos.tokens == pytest.approx(56.25)
    assert state.has_open_position(MINT)


async def test_ladder_exhausted_means_no_more_take_profit(manager, fsm, state, clock, settings):
    pos = open_position(fsm, state, ladder=[TakeProfitRung(sell_pct=0.5, profit_threshold=0.3)])
    see_price(state, clock, 1.4)
    await manager.evaluate_position(pos)
    assert pos.tp_filled == 1

    clock.advance(settings.exit_cooldown_ms)
    see_price(state, clock, 3.0)
    assert await manager.evaluate_position(pos) is None
    assert pos.tp_filled == len(pos.take_profits)


async def test_peak_pnl_never_decreases(manager, fsm, state, clock):
    pos = open_position(fsm, state, ladder=[])
    peaks = []
    for price in (1.2, 1.1, 1.25, 1.0, 1.05):
        see_price(state, clock, price)
        await manager.evaluate_position(pos)
        peaks.append(pos.peak_pnl_pct)

    assert peaks == pytest.approx([0.2, 0.2, 0.25, 0.25, 0.25])
    assert all(a <= b for a, b in zip(peaks, peaks[1:]))


@pytest.mark.parametrize("drop_to,fires", [(1.5, True), (1.55, False)])
async def test_trailing_giveback(manager, fsm, state, clock, drop_to, fires):
    pos = open_position(fsm, state, ladder=[])
    see_price(state, clock, 1.7)
    assert await manager.evaluate_position(pos) is None

    see_price(state, clock, drop_to)
    reason = await manager.evaluate_position(pos)
    assert (reason == ExitReason.TRAILING) is fires
    assert (pos.state == PositionState.CLOSED) is fires


async def test_trailing_needs_activation(manager, fsm, state, clock):
    pos = open_position(fsm, state, ladder=[])
    see_price(state, clock, 1.3)
    await manager.evaluate_position(pos)
    see_price(state, clock, 1.05)
    assert await manager.evaluate_position(pos) is None


@pytest.mark.parametrize("price", [1.1, 0.9])
async def test_time_stop_independent_of_pnl_sign(manager, fsm, state, clock, settings, price):
    pos = open_position(fsm, state, ladder=[])
    see_price(state, clock, price)

    clock.advance(int(settings.time_stop_sec * 1000) - 1)
    assert await manager.evaluate_position(pos) is None

    clock.advance(1)
    assert await manager.evaluate_position(pos) == ExitReason.TIME_STOP
    assert pos.state == PositionState.CLOSED


def test_time_stop_wins_over_stop_loss(settings, fsm, state, clock):
    pos = open_position(fsm, state)
    now = pos.entry_timestamp + int(settings.time_stop_sec * 1000)
    assert decide_exit(pos, -0.5, 0.0, now, settings) == (ExitReason.TIME_STOP, None)


def test_sell_amount_formats():
    assert sell_amount(None) == "100%"
    assert sell_amount(TakeProfitRung(sell_pct=0.25, profit_threshold=0.3)) == "25%"


# ---------- cooldown ----------
async def test_exit_actions_respect_per_mint_cooldown(manager, fsm, state, clock, settings):
    pos = open_position(fsm, state)
    see_price(state, clock, 1.32)
    assert await manager.evaluate_position(pos) == ExitReason.TAKE_PROFIT

    clock.advance(settings.exit_cooldown_ms - 1)
    see_price(state, clock, 1.65)
    assert await manager.evaluate_position(pos) is None
    assert pos.tp_filled == 1

    clock.advance(1)
    assert await manager.evaluate_position(pos) == ExitReason.TAKE_PROFIT
    assert pos.tp_filled == 2


# ---------- modo live ----------
@pytest.fixture
def live_settings():
    return make_settings(enable_live_trading=True, dry_run=False)


async def test_live_full_exit_sells_everything(live_settings, state, fsm, alerts, clock):
    engine, adapter = FakeEngine(), FakeAdapter()
    engine.result = ExecutionResult(signature="SigExit", confirmed=True, attempt=1)
    manager = build_manager(live_settings, state, fsm, alerts, clock, engine, adapter)
    pos = open_position(fsm, state)
    see_price(state, clock, 0.5)

    await manager.evaluate_position(pos)

    assert adapter.calls == [("sell", MINT, "100%")]
    assert pos.state == PositionState.CLOSED
    assert pos.exit_signature == "SigExit"


async def test_live_partial_uses_fill_token_delta(live_settings, state, fsm, alerts, clock):
    engine, adapter = FakeEngine(), FakeAdapter()
    engine.result = ExecutionResult(
        signature="SigTp", confirmed=True, attempt=1,
        fill=FillDeltas(signature="SigTp", sol_delta=0.1, token_delta=-30.0),
    )
    manager = build_manager(live_settings, state, fsm, alerts, clock, engine, adapter)
    pos = open_position(fsm, state)
    see_price(state, clock, 1.35)

    await manager.evaluate_position(pos)

    assert adapter.calls == [("sell", MINT, "25%")]
    assert pos.state == PositionState.OPEN
    assert pos.tp_filled == 1
    assert pos.tokens == pytest.approx(70.0)
    assert pos.exit_signature is None


async def test_live_failed_sell_returns_to_open_and_retries_later(live_settings, state, fsm, alerts, clock):
    engine = FakeEngine()
    engine.result = ExecutionResult(confirmed=False, error="BlockhashNotFound", attempt=3)
    manager = build_manager(live_settings, state, fsm, alerts, clock, engine)
    pos = open_position(fsm, state)
    see_price(state, clock, 0.6)

    await manager.evaluate_position(pos)
    assert pos.state == PositionState.OPEN
    assert pos.last_error == "BlockhashNotFound"
    assert alerts.sent[-1][0] == "error"

    engine.result = ExecutionResult(signature="SigRetry", confirmed=True, attempt=1)
    clock.advance(live_settings.exit_cooldown_ms)
    assert await manager.evaluate_position(pos) == ExitReason.STOP_LOSS
    assert pos.state == PositionState.CLOSED


async def test_overlapping_ticks_sell_once(live_settings, state, fsm, alerts, clock):
    class SlowEngine(FakeEngine):
        async def send_with_retry_and_fetch_fill(self, tx_builder, payer, mint=None, max_wait_ms=8000):
            await asyncio.sleep(0.01)
            return await super().send_with_retry_and_fetch_fill(tx_builder, payer, mint, max_wait_ms)

    adapter = FakeAdapter()
    manager = build_manager(live_settings, state, fsm, alerts, clock, SlowEngine(), adapter)
    open_position(fsm, state)
    see_price(state, clock, 0.5)

    await asyncio.gather(manager.run_tick(), manager.run_tick())
    assert len(adapter.calls) == 1


# ---------- aislamiento ----------
async def test_tick_isolates_failing_position(settings, fsm, alerts, clock):
    class FlakyState(StateRepository):
        def last_price(self, mint):
            if mint == "MintBad":
                raise RuntimeError("price feed corrupted")
            return super().last_price(mint)

    state = FlakyState()
    manager = build_manager(settings, state, fsm, alerts, clock)
    bad = open_position(fsm, state, mint="MintBad")
    good = open_position(fsm, state, mint="MintGood")
    see_price(state, clock, 0.5, mint="MintGood")

    await manager.run_tick()

    assert bad.state == PositionState.OPEN
    assert bad.last_error == "price feed corrupted"
    assert good.state == PositionState.CLOSED
    assert any("MintBad" in msg for level, msg in alerts.sent if level == "error")
