# controllers/entry_controller.py
from __future__ import annotations
from typing import Any, Callable, Dict, Iterable, Optional

from solders.keypair import Keypair

from enums.position_state import PositionState
from models.position import Position
from models.token import TokenInfo
from models.verdicts import StrategySignal
from controllers.position_fsm import PositionFSM
from repositories.position_store import PositionStore
from repositories.state_repository import StateRepository
from schemas.context_schema import RiskContext, StrategyContext
from schemas.status_schema import RuntimeFlags
from services.alert_service import AlertService
from services.pumpportal_service import PumpPortalTradeService
from services.transaction_engine import TransactionEngine
from utils.config import Settings
from utils.helpers import clamp, now_ms
from utils.log_config import logger_manager, log_function

logger = logger_manager.setup_logger(__name__)

# motivos de rechazo (orden = orden de evaluación)
ENTRIES_PAUSED = "ENTRIES_PAUSED"
COOLDOWN = "COOLDOWN"
DUPLICATE_POSITION = "DUPLICATE_POSITION"
INSUFFICIENT_HISTORY = "INSUFFICIENT_HISTORY"
RISK_BLOCKED = "RISK_BLOCKED"
STRATEGY_SKIP = "STRATEGY_SKIP"
MAX_OPEN_POSITIONS = "MAX_OPEN_POSITIONS"
EXPOSURE_CAP = "EXPOSURE_CAP"
WALLET_RESERVE = "WALLET_RESERVE"

# fallos tras aceptar
NO_PRICE = "NO_PRICE"
SIMULATION_FAILED = "SIMULATION_FAILED"
ENTRY_FAILED = "ENTRY_FAILED"

RISK_TRADE_WINDOW = 30


class EntryController:
    """
    Pipeline de admisión de entradas.

    Cada chequeo que falla devuelve ``{"ok": False, "reason": ..., "detail": ...}``
    y se registra; nunca lanza. Si todo pasa se crea la posición, se registra en
    los espejos en memoria y se intenta la compra (o se simula en DRY_RUN).
    """

    def __init__(
        self,
        settings: Settings,
        store: PositionStore,
        state: StateRepository,
        fsm: PositionFSM,
        engine: TransactionEngine,
        adapter: PumpPortalTradeService,
        payer: Keypair,
        risk,
        strategy,
        alerts: AlertService,
        flags: RuntimeFlags,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.settings = settings
        self.store = store
        self.state = state
        self.fsm = fsm
        self.engine = engine
        self.adapter = adapter
        self.payer = payer
        self.risk = risk
        self.strategy = strategy
        self.alerts = alerts
        self.flags = flags
        self._clock = clock
        self._last_eval: Dict[str, int] = {}

    def _reject(self, mint: str, reason: str, detail: Any = None, quiet: bool = False) -> Dict[str, Any]:
        suffix = f" ({detail})" if detail is not None else ""
        # cooldown e historial corto llegan en cada trade: a DEBUG
        log = logger.debug if quiet else logger.info
        log(f"[entry] {mint} rechazada: {reason}{suffix}")
        return {"ok": False, "reason": reason, "detail": detail}

    def forget(self, mints: Iterable[str]) -> None:
        for mint in mints:
            self._last_eval.pop(mint, None)

    # ---------- chequeos ----------
    def _cooldown_active(self, mint: str, now: int) -> bool:
        last = self._last_eval.get(mint)
        return last is not None and now - last < self.settings.entry_cooldown_ms

    def check_exposure(self, mint: str, size_sol: float) -> Optional[Dict[str, Any]]:
        if self.state.open_count() + 1 > self.settings.max_open_positions:
            return self._reject(mint, MAX_OPEN_POSITIONS, f"abiertas={self.state.open_count()}")
        exposure = self.state.open_exposure_sol()
        if exposure + size_sol > self.settings.max_total_exposure_sol:
            return self._reject(
                mint, EXPOSURE_CAP,
                f"{exposure:.3f} + {size_sol:.3f} > {self.settings.max_total_exposure_sol:.3f} SOL",
            )
        return None

    async def check_wallet(self, mint: str, size_sol: float) -> Optional[Dict[str, Any]]:
        try:
            balance = await self.engine.get_balance_sol(self.payer.pubkey())
        except Exception as e:
            return self._reject(mint, WALLET_RESERVE, f"saldo no disponible: {e}")
        if balance - size_sol < self.settings.min_sol_balance:
            return self._reject(
                mint, WALLET_RESERVE,
                f"saldo {balance:.4f} - {size_sol:.3f} < reserva {self.settings.min_sol_balance:.4f}",
            )
        return None

    def size_for(self, signal: StrategySignal) -> float:
        return clamp(
            self.settings.base_size_sol * signal.size_multiplier,
            self.settings.min_trade_sol,
            self.settings.max_trade_sol,
        )

    # ---------- pipeline ----------
    async def consider_entry(self, mint: str) -> Dict[str, Any]:
        if self.flags.entries_paused:
            return self._reject(mint, ENTRIES_PAUSED)

        now = self._clock()
        if self._cooldown_active(mint, now):
            return self._reject(mint, COOLDOWN, quiet=True)
        self._last_eval[mint] = now

        if self.state.has_open_position(mint):
            return self._reject(mint, DUPLICATE_POSITION)

        trades = self.state.trades(mint)
        if len(trades) < self.settings.min_trade_history:
            return self._reject(mint, INSUFFICIENT_HISTORY, len(trades), quiet=True)

        token = self.state.token(mint) or self.store.get_token(mint) or TokenInfo(mint=mint)
        report = self.risk.evaluate(RiskContext(token=token, recent_trades=trades[-RISK_TRADE_WINDOW:]))
        self.store.save_risk_report(mint, report)
        if not report.allow:
            await self.alerts.notify("warn", f"Riesgo bloquea {mint}: {', '.join(report.reasons)}")
            return self._reject(mint, RISK_BLOCKED, report.reasons)

        signal = self.strategy.evaluate(StrategyContext(trades=trades, price_history=self.state.prices(mint)))
        if not signal.should_enter:
            return self._reject(mint, STRATEGY_SKIP, signal.rationale)

        size = self.size_for(signal)

        rejected = self.check_exposure(mint, size)
        if rejected:
            return rejected

        if self.settings.live_trading:
            rejected = await self.check_wallet(mint, size)
            if rejected:
                return rejected
            # la lectura de saldo suspende: otra evaluación pudo abrir mientras tanto
            if self.state.has_open_position(mint):
                return self._reject(mint, DUPLICATE_POSITION)
            rejected = self.check_exposure(mint, size)
            if rejected:
                return rejected

        return await self._open(mint, size, signal)

    # ---------- apertura ----------
    @log_function
    async def _open(self, mint: str, size_sol: float, signal: StrategySignal) -> Dict[str, Any]:
        pos = self.fsm.create(
            mint,
            size_sol,
            signal.suggested_stop_loss_pct or self.settings.stop_loss_pct,
            signal.suggested_take_profits or self.settings.take_profits,
            self.settings.trail_mode,
        )
        self.state.register(pos)
        await self.alerts.notify(
            "info", f"Entrando en {mint} size {size_sol:.2f} SOL (DRY_RUN={not self.settings.live_trading})"
        )

        try:
            if not self.settings.live_trading:
                return self._enter_dry_run(pos)
            return await self._enter_live(pos)
        except Exception as e:
            logger.exception(f"[entry] {mint} error inesperado: {e}")
            self._close_failed(pos, str(e))
            await self.alerts.notify("error", f"Entrada fallida {mint}: {e}")
            return {"ok": False, "reason": ENTRY_FAILED, "detail": str(e), "position_id": pos.id}

    def _enter_dry_run(self, pos: Position) -> Dict[str, Any]:
        price = self.state.last_price(pos.mint)
        if not price:
            self._close_failed(pos, "sin precio observado")
            return self._reject(pos.mint, NO_PRICE)
        self.fsm.update(pos, entry_price=price, tokens=pos.size_sol / price)
        self.fsm.transition(pos, PositionState.OPEN)
        logger.info(f"[DRY_RUN] {pos.mint} abierta @ {price:.10f}")
        return {"ok": True, "position_id": pos.id, "dry_run": True}

    async def _enter_live(self, pos: Position) -> Dict[str, Any]:
        mint, size = pos.mint, pos.size_sol

        async def build_buy():
            return await self.adapter.build_buy_tx(self.payer, mint, size)

        async def build_gate_sell():
            return await self.adapter.build_sell_tx(self.payer, mint, self.settings.gate_sell_amount)

        gate = await self.engine.simulate_buy_sell_gate(build_buy, build_gate_sell, self.payer)
        if not gate.ok:
            self._close_failed(pos, gate.reason)
            await self.alerts.notify("warn", f"Simulación bloquea {mint}: {gate.reason}")
            return self._reject(mint, SIMULATION_FAILED, gate.reason)

        result = await self.engine.send_with_retry_and_fetch_fill(
            build_buy, self.payer, mint, self.settings.fill_max_wait_ms
        )
        if not result.confirmed:
            self._close_failed(pos, result.error or "compra no confirmada")
            await self.alerts.notify("error", f"Entrada fallida {mint}: {result.error}")
            return self._reject(mint, ENTRY_FAILED, result.error)

        price = result.fill.realized_price if result.fill else None
        tokens = result.fill.token_delta if price else None
        if price is None:
            price = self.state.last_price(mint)
            tokens = size / price if price else None
            logger.warning(f"[entry] {mint} fill incompleto ({result.fill_error}); uso último precio {price}")

        self.fsm.update(pos, entry_price=price, tokens=tokens)
        self.fsm.transition(pos, PositionState.OPEN, entry_signature=result.signature)
        await self.alerts.notify("info", f"Compra confirmada {mint} sig={result.signature}")
        return {"ok": True, "position_id": pos.id, "signature": result.signature}

    def _close_failed(self, pos: Position, error: str) -> None:
        if pos.state == PositionState.PENDING_ENTRY:
            self.fsm.transition(pos, PositionState.CLOSED, error=error)
        if pos.is_closed:
            self.state.release(pos)
