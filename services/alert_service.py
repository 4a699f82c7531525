# services/alert_service.py
from __future__ import annotations
import logging
from typing import Awaitable, Callable, List

from utils.log_config import logger_manager

logger = logger_manager.setup_logger(__name__)

AlertSink = Callable[[str, str], Awaitable[None]]

_LEVELS = {"info": logging.INFO, "warn": logging.WARNING, "error": logging.ERROR}


class AlertService:
    """Registra la alerta en log y la reenvía a los sinks (p.ej. chat admin de Telegram)."""

    def __init__(self) -> None:
        self._sinks: List[AlertSink] = []

    def add_sink(self, sink: AlertSink) -> None:
        self._sinks.append(sink)

    async def notify(self, level: str, message: str) -> None:
        logger.log(_LEVELS.get(level, logging.INFO), message)
        for sink in list(self._sinks):
            try:
                await sink(level, message)
            except Exception as e:
                # un sink caído no debe tumbar la operación que alerta
                logger.error(f"❌ Error enviando alerta: {e}")
