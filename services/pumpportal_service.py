# services/pumpportal_service.py
from __future__ import annotations
from typing import Optional, Union

import aiohttp
from solders.keypair import Keypair
from solders.transaction import VersionedTransaction

from utils.config import Settings
from utils.errors import TradeBuildError
from utils.log_config import logger_manager, log_function

logger = logger_manager.setup_logger(__name__)


def format_amount(amount: Union[float, str]) -> str:
    """Cantidad para el formulario: porcentajes tal cual ("100%"), números sin ceros sobrantes."""
    if isinstance(amount, str):
        return amount.strip()
    return f"{float(amount):.9f}".rstrip("0").rstrip(".")


class PumpPortalTradeService:
    """
    Adaptador de ejecución sobre el endpoint trade-local de PumpPortal.

    Devuelve transacciones SIN firmar; el motor de ejecución fija el blockhash,
    firma y envía. Compra en SOL, venta en % de holdings o cantidad de tokens.
    """

    def __init__(self, settings: Settings, session: Optional[aiohttp.ClientSession] = None, timeout_s: float = 10.0):
        self.url = settings.pump_trade_local_url
        self.slippage = settings.portal_slippage_pct
        self.priority_fee = settings.portal_priority_fee_sol
        self.pool = settings.portal_pool
        self._timeout = aiohttp.ClientTimeout(total=timeout_s)
        self._session = session
        self._owns_session = session is None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()

    async def _trade_local(self, payer: Keypair, action: str, mint: str, amount: str, denominated_in_sol: bool) -> VersionedTransaction:
        form = {
            "publicKey": str(payer.pubkey()),
            "action": action,
            "mint": mint,
            "amount": amount,
            "denominatedInSol": "true" if denominated_in_sol else "false",
            "slippage": str(self.slippage),
            "priorityFee": str(self.priority_fee),
            "pool": self.pool,
        }
        session = await self._get_session()
        try:
            async with session.post(self.url, data=form) as resp:
                body = await resp.read()
                if resp.status != 200:
                    text = body[:200].decode("utf-8", errors="replace")
                    raise TradeBuildError(f"trade-local {action} {mint} HTTP {resp.status}: {text}")
        except aiohttp.ClientError as e:
            raise TradeBuildError(f"trade-local {action} {mint}: {e}") from e

        try:
            tx = VersionedTransaction.from_bytes(body)
        except Exception as e:
            raise TradeBuildError(f"trade-local {action} {mint}: respuesta no es una tx válida ({e})") from e
        logger.debug(f"[portal] {action} {mint} amount={amount} construida ({len(body)} bytes)")
        return tx

    @log_function
    async def build_buy_tx(self, payer: Keypair, mint: str, amount_sol: float) -> VersionedTransaction:
        return await self._trade_local(payer, "buy", mint, format_amount(amount_sol), denominated_in_sol=True)

    @log_function
    async def build_sell_tx(self, payer: Keypair, mint: str, amount: Union[float, str]) -> VersionedTransaction:
        return await self._trade_local(payer, "sell", mint, format_amount(amount), denominated_in_sol=False)
