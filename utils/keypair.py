"""
Carga del keypair que firma las transacciones.

Orden: ``KEYPAIR_B58`` (secret key de 64 bytes en base58) y luego
``KEYPAIR_PATH`` (array JSON del ``id.json`` de la CLI de Solana).
"""

from __future__ import annotations

import json
from pathlib import Path

from solders.keypair import Keypair

from utils.config import Settings
from utils.errors import ConfigError
from utils.log_config import logger_manager

logger = logger_manager.setup_logger(__name__)


def load_keypair(settings: Settings) -> Keypair:
    if settings.keypair_b58 and settings.keypair_b58.strip():
        try:
            return Keypair.from_base58_string(settings.keypair_b58.strip())
        except ValueError as e:
            raise ConfigError(f"KEYPAIR_B58 inválido: {e}") from e

    if settings.keypair_path and settings.keypair_path.strip():
        path = Path(settings.keypair_path).expanduser()
        if not path.is_file():
            raise ConfigError(f"KEYPAIR_PATH no encontrado: {path}")
        arr = json.loads(path.read_text(encoding="utf-8"))
        if not isinstance(arr, list):
            raise ConfigError("KEYPAIR_PATH debe apuntar a un array JSON (id.json de Solana)")
        return Keypair.from_bytes(bytes(arr))

    if settings.live_trading:
        raise ConfigError("Falta KEYPAIR_B58 o KEYPAIR_PATH. No se arranca en modo live.")

    kp = Keypair()
    logger.warning(f"[DRY_RUN] Sin keypair configurado; usando uno efímero {kp.pubkey()}")
    return kp
