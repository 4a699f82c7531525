from __future__ import annotations
from typing import Awaitable, Callable, Optional

from telegram import Update
from telegram.ext import Application, CommandHandler, ContextTypes

from repositories.state_repository import StateRepository
from schemas.status_schema import RuntimeFlags
from services.status_service import StatusService
from utils.log_config import logger_manager

logger = logger_manager.setup_logger(__name__)

Handler = Callable[[Update, ContextTypes.DEFAULT_TYPE], Awaitable[None]]

_ALERT_ICONS = {"info": "ℹ️", "warn": "⚠️", "error": "❌"}


def _fmt_balance(balance: Optional[float]) -> str:
    return "N/D" if balance is None else f"{balance:.4f} SOL"


class TelegramBot:
    """
    Bot de operador. Solo responde al chat/usuario admin.
    /pause_entries y /resume_entries escriben en el RuntimeFlags compartido,
    que la admisión lee antes de cada evaluación.
    """

    def __init__(
        self,
        token: str,
        admin_chat_id: str,
        status: StatusService,
        state: StateRepository,
        flags: RuntimeFlags,
    ) -> None:
        if not token or not admin_chat_id:
            raise RuntimeError("Falta TELEGRAM_BOT_TOKEN o TELEGRAM_ADMIN_CHAT_ID")
        self.admin_chat_id = str(admin_chat_id)
        self.status = status
        self.state = state
        self.flags = flags

        self.application = Application.builder().token(token).build()
        for name, handler in (
            ("start", self.cmd_start),
            ("status", self.cmd_status),
            ("config", self.cmd_config),
            ("positions", self.cmd_positions),
            ("pause_entries", self.cmd_pause_entries),
            ("resume_entries", self.cmd_resume_entries),
        ):
            self.application.add_handler(CommandHandler(name, self._admin_only(handler)))

    # ---------- autorización ----------
    def is_admin(self, update: Update) -> bool:
        user = update.effective_user
        chat = update.effective_chat
        ids = {str(user.id) if user else None, str(chat.id) if chat else None}
        return self.admin_chat_id in ids

    def _admin_only(self, handler: Handler) -> Handler:
        async def wrapped(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
            if not self.is_admin(update):
                logger.warning(f"[telegram] comando rechazado de {update.effective_user.id if update.effective_user else '?'}")
                await update.message.reply_text("unauthorized")
                return
            await handler(update, context)
        return wrapped

    # ---------- comandos ----------
    async def cmd_start(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        mode = "LIVE" if self.status.settings.live_trading else "DRY_RUN"
        await update.message.reply_text(f"Pump.fun bot listo en modo {mode}. Usa /status.")

    async def cmd_status(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        snap = await self.status.snapshot()
        lines = [
            f"Wallet: {snap.wallet}",
            f"Saldo: {_fmt_balance(snap.balance_sol)}",
            f"DRY_RUN: {snap.dry_run} | LIVE: {snap.live_trading}",
            f"Posiciones abiertas: {snap.open_positions} ({snap.exposure_sol:.3f} SOL)",
            f"Feed conectado: {snap.feed_connected}",
            f"Entradas pausadas: {snap.entries_paused}",
        ]
        await update.message.reply_text("\n".join(lines))

    async def cmd_config(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        cfg = self.status.public_config()
        keys = (
            "base_size_sol", "min_trade_sol", "max_trade_sol", "max_open_positions",
            "max_total_exposure_sol", "stop_loss_pct", "time_stop_sec",
            "trail_activation_pct", "trail_giveback_pct", "min_sol_balance",
        )
        lines = [f"{k}: {cfg[k]}" for k in keys]
        ladder = ", ".join(f"{r['sell_pct']:g}@{r['profit_threshold']:g}" for r in cfg["take_profits"])
        lines.append(f"take_profits: {ladder or '-'}")
        await update.message.reply_text("\n".join(lines))

    async def cmd_positions(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        positions = self.state.positions()
        if not positions:
            await update.message.reply_text("No hay posiciones abiertas.")
            return
        lines = []
        for p in positions:
            price = self.state.last_price(p.mint)
            pnl = p.pnl_pct(price) if price is not None else None
            pnl_txt = "N/D" if pnl is None else f"{pnl * 100:+.1f}%"
            lines.append(
                f"• {p.mint} [{p.state.value}] {p.size_sol:.3f} SOL "
                f"pnl={pnl_txt} tp={p.tp_filled}/{len(p.take_profits)}"
            )
        await update.message.reply_text("\n".join(lines))

    async def cmd_pause_entries(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        self.flags.entries_paused = True
        logger.info("[telegram] entradas pausadas por el operador")
        await update.message.reply_text("⏸️ Entradas pausadas.")

    async def cmd_resume_entries(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        self.flags.entries_paused = False
        logger.info("[telegram] entradas reanudadas por el operador")
        await update.message.reply_text("▶️ Entradas reanudadas.")

    # ---------- alertas ----------
    async def send_alert(self, level: str, message: str) -> None:
        icon = _ALERT_ICONS.get(level, "")
        await self.application.bot.send_message(chat_id=self.admin_chat_id, text=f"{icon} {message}".strip())

    # ---------- ciclo de vida ----------
    async def start(self) -> None:
        logger.info("TelegramBot iniciando...")
        await self.application.initialize()
        await self.application.start()
        await self.application.updater.start_polling()

    async def stop(self) -> None:
        try:
            if self.application.updater.running:
                await self.application.updater.stop()
            if self.application.running:
                await self.application.stop()
            await self.application.shutdown()
        except Exception as e:
            logger.warning(f"TelegramBot stop: {e}")

