# controllers/exit_controller.py
from __future__ import annotations
import asyncio
from typing import Callable, Dict, Iterable, Optional, Tuple

from solders.keypair import Keypair

from enums.position_state import ExitReason, PositionState
from models.execution import ExecutionResult
from models.position import Position, TakeProfitRung
from controllers.position_fsm import PositionFSM
from repositories.state_repository import StateRepository
from services.alert_service import AlertService
from services.pumpportal_service import PumpPortalTradeService
from services.transaction_engine import TransactionEngine
from utils.config import Settings
from utils.helpers import now_ms
from utils.log_config import logger_manager, log_function

logger = logger_manager.setup_logger(__name__)

# tolerancia al comparar porcentajes calculados desde precios float
_EPS = 1e-9

FULL_EXIT_AMOUNT = "100%"


def decide_exit(
    pos: Position,
    pnl: float,
    peak: float,
    now: int,
    settings: Settings,
) -> Tuple[Optional[ExitReason], Optional[TakeProfitRung]]:
    """
    Regla de salida ganadora, en orden fijo: time stop, stop loss, trailing,
    take profit. Devuelve (motivo, escalón) con escalón solo para TAKE_PROFIT.
    """
    if pos.entry_timestamp is not None and now - pos.entry_timestamp >= settings.time_stop_sec * 1000:
        return ExitReason.TIME_STOP, None
    if pnl <= -pos.stop_loss_pct + _EPS:
        return ExitReason.STOP_LOSS, None
    if peak >= settings.trail_activation_pct - _EPS and peak - pnl >= settings.trail_giveback_pct - _EPS:
        return ExitReason.TRAILING, None
    rung = pos.next_rung()
    if rung is not None and pnl >= rung.profit_threshold - _EPS:
        return ExitReason.TAKE_PROFIT, rung
    return None, None


def sell_amount(rung: Optional[TakeProfitRung]) -> str:
    return FULL_EXIT_AMOUNT if rung is None else f"{rung.sell_pct * 100:g}%"


class ExitManager:
    """
    Evalúa en cada tick todas las posiciones OPEN, cada una por separado.
    El cooldown por mint es la única protección contra acciones duplicadas
    cuando los ticks se solapan.
    """

    def __init__(
        self,
        settings: Settings,
        state: StateRepository,
        fsm: PositionFSM,
        engine: TransactionEngine,
        adapter: PumpPortalTradeService,
        payer: Keypair,
        alerts: AlertService,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.settings = settings
        self.state = state
        self.fsm = fsm
        self.engine = engine
        self.adapter = adapter
        self.payer = payer
        self.alerts = alerts
        self._clock = clock
        self._last_action: Dict[str, int] = {}

    def forget(self, mints: Iterable[str]) -> None:
        for mint in mints:
            self._last_action.pop(mint, None)

    async def run_tick(self) -> None:
        positions = self.state.positions(PositionState.OPEN)
        if not positions:
            return
        await asyncio.gather(*(self._evaluate_guarded(p) for p in positions))

    async def _evaluate_guarded(self, pos: Position) -> None:
        try:
            await self.evaluate_position(pos)
        except Exception as e:
            logger.exception(f"[exit] {pos.id[:8]} {pos.mint} error evaluando: {e}")
            if not pos.is_closed:
                self.fsm.update(pos, last_error=str(e))
            await self.alerts.notify("error", f"Error en salida {pos.mint}: {e}")

    async def evaluate_position(self, pos: Position) -> Optional[ExitReason]:
        if pos.state != PositionState.OPEN:
            return None
        price = self.state.last_price(pos.mint)
        if price is None:
            return None

        if pos.entry_price is None:
            tokens = pos.tokens if pos.tokens is not None else pos.size_sol / price
            self.fsm.update(pos, entry_price=price, tokens=tokens)
            logger.info(f"[exit] {pos.mint} entry_price inicializado a {price:.10f}")
            return None

        pnl = pos.pnl_pct(price)
        peak = pnl if pos.peak_pnl_pct is None else max(pos.peak_pnl_pct, pnl)
        if pos.peak_pnl_pct is None or peak > pos.peak_pnl_pct:
            self.fsm.update(pos, peak_pnl_pct=peak)

        now = self._clock()
        reason, rung = decide_exit(pos, pnl, peak, now, self.settings)
        if reason is None:
            return None

        last = self._last_action.get(pos.mint)
        if last is not None and now - last < self.settings.exit_cooldown_ms:
            logger.debug(f"[exit] {pos.mint} {reason.value} en cooldown")
            return None
        self._last_action[pos.mint] = now

        await self._execute(pos, reason, rung, pnl)
        return reason

    @log_function
    async def _execute(self, pos: Position, reason: ExitReason, rung: Optional[TakeProfitRung], pnl: float) -> None:
        amount = sell_amount(rung)
        logger.info(f"[exit] {pos.mint} {reason.value} pnl={pnl * 100:+.1f}% vendiendo {amount}")
        if not self.fsm.transition(pos, PositionState.PENDING_EXIT):
            return

        if not self.settings.live_trading:
            logger.info(f"[DRY_RUN] venta simulada {pos.mint} {amount}")
            await self._apply_exit(pos, reason, rung, None, None)
            return

        async def build_sell():
            return await self.adapter.build_sell_tx(self.payer, pos.mint, amount)

        try:
            result = await self.engine.send_with_retry_and_fetch_fill(
                build_sell, self.payer, pos.mint, self.settings.fill_max_wait_ms
            )
        except Exception as e:
            result = ExecutionResult(confirmed=False, error=str(e))

        if not result.confirmed:
            # vuelve a OPEN; se reintenta en un tick posterior fuera de cooldown
            self.fsm.transition(pos, PositionState.OPEN, error=result.error or "venta no confirmada")
            await self.alerts.notify("error", f"Venta fallida {pos.mint} ({reason.value}): {result.error}")
            return

        sold = None
        if result.fill is not None and result.fill.token_delta < 0:
            sold = -result.fill.token_delta
        await self._apply_exit(pos, reason, rung, result.signature, sold)

    async def _apply_exit(
        self,
        pos: Position,
        reason: ExitReason,
        rung: Optional[TakeProfitRung],
        signature: Optional[str],
        sold_tokens: Optional[float],
    ) -> None:
        if rung is None:
            self.fsm.transition(pos, PositionState.CLOSED, exit_signature=signature)
            self.state.release(pos)
            await self.alerts.notify("info", f"Posición cerrada {pos.mint} ({reason.value}) sig={signature}")
            return

        remaining = pos.tokens
        if remaining is not None:
            if sold_tokens is not None:
                remaining = max(0.0, remaining - sold_tokens)
            else:
                remaining = remaining * (1 - rung.sell_pct)
        self.fsm.update(pos, tp_filled=pos.tp_filled + 1, tokens=remaining)
        self.fsm.transition(pos, PositionState.OPEN)
        await self.alerts.notify(
            "info",
            f"Take profit {pos.tp_filled}/{len(pos.take_profits)} {pos.mint} sig={signature}",
        )
