"""
Excepciones del bot.

Los rechazos de admisión NO son excepciones: se devuelven como
``{"ok": False, "reason": ...}`` y se registran en log.
"""

from __future__ import annotations


class SniperError(Exception):
    """Base de todas las excepciones propias."""


class TransientNetworkError(SniperError):
    """Timeout o fallo de transporte contra un RPC (reintentable dentro de la escalera)."""


class OnChainRejectionError(SniperError):
    """El programa devolvió error en simulación o en una tx confirmada."""


class TradeBuildError(SniperError):
    """El adaptador de ejecución no pudo construir la transacción."""


class DataIncompleteError(SniperError):
    """La reconciliación del fill no pudo completarse; la operación sigue con precio de respaldo."""


class FillTimeoutError(DataIncompleteError):
    """No apareció el registro confirmado de la tx antes del plazo."""


class FatalStartupError(SniperError):
    """Error que aborta el arranque antes de operar."""


class ConfigError(FatalStartupError):
    """Configuración inválida o incompleta."""


class WalletUnderfundedError(FatalStartupError):
    """Saldo de la wallet por debajo de la reserva mínima al arrancar."""
