# main.py
from __future__ import annotations
import asyncio
import signal
import sys
from typing import List, Optional

from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Confirmed

from controllers.entry_controller import EntryController
from controllers.exit_controller import ExitManager
from controllers.position_fsm import PositionFSM
from models.position import Position
from orchestrators.trading_orchestrator import TradingOrchestrator
from repositories.position_store import PositionStore
from repositories.state_repository import StateRepository
from schemas.status_schema import RuntimeFlags
from services.alert_service import AlertService
from services.feed_service import PumpPortalFeed
from services.pumpportal_service import PumpPortalTradeService
from services.risk_service import RiskEngine
from services.status_service import StatusService
from services.strategy_service import default_strategy_engine
from services.telegram_bot import TelegramBot
from services.transaction_engine import TransactionEngine
from utils.config import Settings, load_settings
from utils.errors import FatalStartupError, WalletUnderfundedError
from utils.keypair import load_keypair
from utils.log_config import logger_manager

logger = logger_manager.setup_logger(__name__)


async def check_wallet(settings: Settings, engine: TransactionEngine, payer) -> None:
    """En live, el saldo debe cubrir la reserva mínima antes de operar."""
    if not settings.live_trading:
        return
    try:
        balance = await engine.get_balance_sol(payer.pubkey())
    except Exception as e:
        # sin saldo legible no se arranca en live
        raise FatalStartupError(f"No se pudo leer el saldo de {payer.pubkey()}: {e}") from e
    logger.info(f"Saldo de la wallet {payer.pubkey()}: {balance:.4f} SOL")
    if balance < settings.min_sol_balance:
        raise WalletUnderfundedError(
            f"Saldo {balance:.4f} SOL por debajo de MIN_SOL_BALANCE={settings.min_sol_balance}"
        )


def recover_positions(store: PositionStore, fsm: PositionFSM, state: StateRepository) -> List[Position]:
    """Saca de los estados PENDING_* lo que dejó un reinicio y rellena los espejos."""
    positions = [fsm.recover(p) for p in store.list_open_positions()]
    state.hydrate(positions)
    return [p for p in positions if not p.is_closed]


async def run(settings: Settings) -> None:
    logger_manager.set_level(settings.log_level)
    mode = "LIVE" if settings.live_trading else "DRY_RUN"
    logger.info(f"🚀 Iniciando sol_sniper en modo {mode} con {len(settings.rpc_urls)} RPC(s)")

    store = PositionStore(settings.sqlite_path)
    payer = load_keypair(settings)
    engine = TransactionEngine(
        [AsyncClient(url, commitment=Confirmed) for url in settings.rpc_urls],
        confirm_timeout_secs=settings.confirm_timeout_secs,
        backoff_ms=settings.send_backoff_ms,
        fill_poll_ms=settings.fill_poll_ms,
    )
    adapter = PumpPortalTradeService(settings)
    bot: Optional[TelegramBot] = None

    try:
        await check_wallet(settings, engine, payer)

        fsm = PositionFSM(store.save_position)
        state = StateRepository(window=settings.trade_window, max_mints=settings.max_tracked_mints)
        open_positions = recover_positions(store, fsm, state)
        logger.info(f"Posiciones no cerradas recuperadas: {len(open_positions)}")

        flags = RuntimeFlags()
        alerts = AlertService()

        if settings.telegram_bot_token and settings.telegram_admin_chat_id:
            status = StatusService(settings, state, engine, payer.pubkey(), flags)
            bot = TelegramBot(settings.telegram_bot_token, settings.telegram_admin_chat_id, status, state, flags)
            await bot.start()
            alerts.add_sink(bot.send_alert)
        else:
            logger.warning("Telegram desactivado: falta TELEGRAM_BOT_TOKEN o TELEGRAM_ADMIN_CHAT_ID")

        entries = EntryController(
            settings, store, state, fsm, engine, adapter, payer,
            risk=RiskEngine(),
            strategy=default_strategy_engine(),
            alerts=alerts,
            flags=flags,
        )
        exits = ExitManager(settings, state, fsm, engine, adapter, payer, alerts)
        feed = PumpPortalFeed(settings.pump_portal_url)
        orch = TradingOrchestrator(settings, feed, store, state, entries, exits, flags, alerts)

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, orch.stop)
            except NotImplementedError:
                # Windows: Ctrl+C llega como KeyboardInterrupt
                pass

        await orch.run()
    finally:
        logger.info("🛑 Deteniendo servicios...")
        if bot is not None:
            await bot.stop()
        await adapter.close()
        await engine.close()
        logger.info("✅ Apagado completado.")


def main() -> int:
    try:
        settings = load_settings()
        asyncio.run(run(settings))
    except FatalStartupError as e:
        logger.critical(f"Arranque abortado: {e}")
        return 1
    except KeyboardInterrupt:
        logger.info("Interrumpido por el usuario")
    return 0


if __name__ == "__main__":
    sys.exit(main())
