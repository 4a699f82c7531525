# services/status_service.py
from __future__ import annotations
from typing import Any, Dict

from solders.pubkey import Pubkey

from repositories.state_repository import StateRepository
from schemas.status_schema import RuntimeFlags, StatusSnapshot
from services.transaction_engine import TransactionEngine
from utils.config import Settings
from utils.log_config import logger_manager

logger = logger_manager.setup_logger(__name__)

# claves que nunca se muestran por /config
_SECRET_FIELDS = {"keypair_b58", "keypair_path", "telegram_bot_token"}


class StatusService:
    def __init__(
        self,
        settings: Settings,
        state: StateRepository,
        engine: TransactionEngine,
        wallet: Pubkey,
        flags: RuntimeFlags,
    ) -> None:
        self.settings = settings
        self.state = state
        self.engine = engine
        self.wallet = wallet
        self.flags = flags

    async def snapshot(self) -> StatusSnapshot:
        try:
            balance = await self.engine.get_balance_sol(self.wallet)
        except Exception as e:
            logger.warning(f"[status] no se pudo leer el saldo: {e}")
            balance = None
        return StatusSnapshot(
            wallet=str(self.wallet),
            balance_sol=balance,
            dry_run=self.settings.dry_run,
            live_trading=self.settings.live_trading,
            open_positions=self.state.open_count(),
            exposure_sol=self.state.open_exposure_sol(),
            feed_connected=self.flags.feed_connected,
            entries_paused=self.flags.entries_paused,
        )

    def public_config(self) -> Dict[str, Any]:
        return self.settings.model_dump(mode="json", exclude=_SECRET_FIELDS)
