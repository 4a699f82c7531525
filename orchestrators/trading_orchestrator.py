# orchestrators/trading_orchestrator.py
from __future__ import annotations
import asyncio
from typing import Any, Awaitable, Callable, Dict, List, Set

from controllers.entry_controller import EntryController
from controllers.exit_controller import ExitManager
from models.token import TokenInfo
from models.trade_event import TradeEvent
from repositories.position_store import PositionStore
from repositories.state_repository import StateRepository
from schemas.status_schema import RuntimeFlags
from services.alert_service import AlertService
from services.feed_service import EVENT_NEW_TOKEN, EVENT_TRADE, PumpPortalFeed
from utils.config import Settings
from utils.helpers import now_ms
from utils.log_config import logger_manager

logger = logger_manager.setup_logger(__name__)


class TradingOrchestrator:
    def __init__(
        self,
        settings: Settings,
        feed: PumpPortalFeed,
        store: PositionStore,
        state: StateRepository,
        entries: EntryController,
        exits: ExitManager,
        flags: RuntimeFlags,
        alerts: AlertService,
        clock: Callable[[], int] = now_ms,
    ):
        """
        :param feed: Cliente del feed de PumpPortal (tokens nuevos y trades)
        :param store: Position Store durable (SQLite)
        :param state: Espejos en memoria (ventanas, guard de mints abiertos)
        :param entries: Pipeline de admisión, se lanza una tarea por trade
        :param exits: Exit manager, se lanza una tarea por tick
        :param flags: Flags compartidos con el bot (pausa, feed conectado)
        """
        self.settings = settings
        self.feed = feed
        self.store = store
        self.state = state
        self.entries = entries
        self.exits = exits
        self.flags = flags
        self.alerts = alerts
        self._clock = clock

        self._tasks: Set[asyncio.Task] = set()
        self._stop = asyncio.Event()

        feed.on("connected", self._on_connected)
        feed.on("disconnected", self._on_disconnected)
        feed.on("event", self.on_event)

    # ---------- tareas en segundo plano ----------
    def _spawn(self, coro: Awaitable[Any], label: str) -> asyncio.Task:
        task = asyncio.create_task(self._guarded(coro, label))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _guarded(self, coro: Awaitable[Any], label: str) -> None:
        try:
            await coro
        except Exception as e:
            logger.exception(f"[orch] {label} falló: {e}")
            await self.alerts.notify("error", f"{label} falló: {e}")

    @property
    def pending_tasks(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ---------- feed ----------
    def _on_connected(self) -> None:
        self.flags.feed_connected = True

    async def _on_disconnected(self) -> None:
        self.flags.feed_connected = False
        await self.alerts.notify("warn", "Feed de PumpPortal desconectado; reconectando")

    async def on_event(self, kind: str, data: Dict[str, Any]) -> None:
        if kind == EVENT_NEW_TOKEN:
            await self.handle_new_token(data)
        elif kind == EVENT_TRADE:
            self.handle_trade(data)

    async def handle_new_token(self, raw: Dict[str, Any]) -> None:
        info = TokenInfo.from_pumpportal(raw)
        if not info.mint:
            return
        self.store.upsert_token(info)
        self.state.remember_token(info, seen_at=self._clock())
        logger.info(f"Nuevo token detectado {info.mint} ({info.symbol or '?'})")
        await self.feed.subscribe_token_trades(info.mint)

    def handle_trade(self, raw: Dict[str, Any]) -> None:
        event = TradeEvent.from_pumpportal(raw, timestamp=self._clock())
        if not event.mint:
            return
        self.state.record_trade(event)
        self.store.save_trade(event)
        self._spawn(self.entries.consider_entry(event.mint), f"admisión {event.mint}")

    # ---------- poda de mints inactivos ----------
    async def prune_idle(self) -> List[str]:
        evicted = self.state.prune_idle(self._clock(), int(self.settings.mint_idle_ttl_sec * 1000))
        if not evicted:
            return evicted
        self.entries.forget(evicted)
        self.exits.forget(evicted)
        await self.feed.unsubscribe_token_trades(evicted)
        logger.debug(f"[orch] {len(evicted)} mints inactivos olvidados; seguimiento={self.state.tracked_mints()}")
        return evicted

    # ---------- bucle ----------
    async def _exit_loop(self) -> None:
        interval = self.settings.exit_interval_ms / 1000
        while not self._stop.is_set():
            # los ticks pueden solaparse; el cooldown por mint evita duplicados
            self._spawn(self.exits.run_tick(), "tick de salidas")
            await self.prune_idle()
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass

    async def run(self) -> None:
        logger.info("🚀 Orquestador de trading en marcha")
        feed_task = asyncio.create_task(self.feed.run())
        try:
            await self._exit_loop()
        finally:
            await self.feed.stop()
            feed_task.cancel()
            await asyncio.gather(feed_task, return_exceptions=True)
            await self.drain()
            logger.info("Orquestador detenido")

    def stop(self) -> None:
        self._stop.set()
