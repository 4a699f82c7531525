# services/feed_service.py
from __future__ import annotations
import asyncio
import inspect
import json
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Union

import websockets

from utils.helpers import RollingDedupe, dedupe_key
from utils.log_config import logger_manager

logger = logger_manager.setup_logger(__name__)

Listener = Callable[..., Union[None, Awaitable[None]]]

EVENT_NEW_TOKEN = "new_token"
EVENT_TRADE = "trade"

_TRADE_TX_TYPES = ("buy", "sell", "trade")


def reconnect_delay(retry: int) -> float:
    """Espera antes de reconectar: 5 s, 10 s y luego 15 s fijos."""
    return float(min(5 * (retry + 1), 15))


class PumpPortalFeed:
    """
    Cliente websocket del feed de PumpPortal.

    Al conectar se suscribe a tokens nuevos (y re-suscribe los mints ya
    seguidos). Emite ``connected``, ``disconnected`` y ``event(kind, data)``
    con kind ``new_token`` o ``trade``. Los mensajes repetidos se descartan
    con una ventana de 6000 claves.
    """

    def __init__(self, url: str, ping_interval: float = 15.0, dedupe_size: int = 6000) -> None:
        self.url = url
        self.ping_interval = ping_interval
        self._dedupe = RollingDedupe(dedupe_size)
        self._listeners: Dict[str, List[Listener]] = {"connected": [], "disconnected": [], "event": []}
        self._ws = None
        self._running = False
        self._subscribed: Set[str] = set()

    # ---------- listeners ----------
    def on(self, name: str, callback: Listener) -> None:
        if name not in self._listeners:
            raise ValueError(f"Evento desconocido: {name}")
        self._listeners[name].append(callback)

    async def _emit(self, name: str, *args: Any) -> None:
        for cb in list(self._listeners[name]):
            try:
                res = cb(*args)
                if inspect.isawaitable(res):
                    await res
            except Exception as e:
                logger.exception(f"[feed] listener '{name}' falló: {e}")

    # ---------- ciclo de conexión ----------
    async def run(self) -> None:
        self._running = True
        retry = 0
        while self._running:
            try:
                async with websockets.connect(self.url, ping_interval=self.ping_interval, ping_timeout=self.ping_interval) as ws:
                    self._ws = ws
                    retry = 0
                    logger.info(f"[feed] conectado a {self.url}")
                    await self._send({"method": "subscribeNewToken"})
                    if self._subscribed:
                        await self._send({"method": "subscribeTokenTrade", "keys": sorted(self._subscribed)})
                    await self._emit("connected")

                    async for raw in ws:
                        await self.handle_message(raw)
            except asyncio.CancelledError:
                logger.info("[feed] cancelado")
                raise
            except Exception as e:
                logger.error(f"[feed] error de conexión: {e}")
            finally:
                was_connected = self._ws is not None
                self._ws = None
                if was_connected:
                    await self._emit("disconnected")

            if not self._running:
                break
            delay = reconnect_delay(retry)
            logger.warning(f"[feed] conexión cerrada; reintento en {delay:.0f}s")
            await asyncio.sleep(delay)
            retry += 1

    async def stop(self) -> None:
        self._running = False
        if self._ws is not None:
            await self._ws.close()

    async def _send(self, payload: dict) -> None:
        if self._ws is None:
            return
        await self._ws.send(json.dumps(payload))

    async def subscribe_token_trades(self, mint: str) -> None:
        """Suscribe los trades del mint; si no hay conexión se aplicará al reconectar."""
        self._subscribed.add(mint)
        try:
            await self._send({"method": "subscribeTokenTrade", "keys": [mint]})
        except Exception as e:
            logger.warning(f"[feed] subscribeTokenTrade {mint} falló: {e}")

    @property
    def subscribed(self) -> Set[str]:
        return set(self._subscribed)

    async def unsubscribe_token_trades(self, mints: List[str]) -> None:
        """Deja de seguir mints inactivos; tampoco se re-suscriben al reconectar."""
        keys = [m for m in mints if m in self._subscribed]
        if not keys:
            return
        self._subscribed.difference_update(keys)
        try:
            await self._send({"method": "unsubscribeTokenTrade", "keys": keys})
        except Exception as e:
            logger.warning(f"[feed] unsubscribeTokenTrade ({len(keys)} mints) falló: {e}")

    # ---------- mensajes ----------
    async def handle_message(self, raw: Union[str, bytes]) -> Optional[str]:
        """Procesa un mensaje crudo. Devuelve el kind emitido o None si se descartó."""
        try:
            msg = json.loads(raw)
        except (json.JSONDecodeError, ValueError, TypeError):
            logger.warning(f"[feed] mensaje no parseable: {str(raw)[:200]}")
            return None
        if not isinstance(msg, dict):
            return None

        key = dedupe_key([msg.get("txType") or "", msg.get("signature") or "", msg.get("mint") or "", msg.get("slot") or ""])
        if self._dedupe.has(key):
            return None
        self._dedupe.add(key)

        tx_type = str(msg.get("txType") or "").lower()
        if tx_type == "create":
            kind = EVENT_NEW_TOKEN
        elif tx_type in _TRADE_TX_TYPES:
            kind = EVENT_TRADE
        else:
            # acks de suscripción y similares
            logger.debug(f"[feed] ignorado: {str(msg)[:200]}")
            return None

        await self._emit("event", kind, msg)
        return kind
