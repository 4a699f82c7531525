"""
Configuration loading for sol_sniper.

Settings come from environment variables (``.env`` is loaded first with
python-dotenv). An optional ``config.yaml`` next to ``main.py`` (or at
``CONFIG_PATH``) overrides them; its keys are the lowercase field names.
Invalid values abort startup with ``ConfigError``.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml  # type: ignore
from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from models.position import TakeProfitRung
from utils.errors import ConfigError

PROJECT_ROOT = Path(__file__).resolve().parent.parent

DEFAULT_TP_LADDER = '[{"pct":0.25,"profit":0.3},{"pct":0.25,"profit":0.6},{"pct":0.25,"profit":1.0}]'

# campos cuyo nombre de variable de entorno no es simplemente NAME.upper()
_ENV_ALIASES = {"take_profits": "TP_LADDER_JSON"}


class Settings(BaseModel):
    rpc_urls: List[str] = Field(default_factory=lambda: ["https://api.mainnet-beta.solana.com"])
    enable_live_trading: bool = False
    dry_run: bool = True

    # tamaño / riesgo
    base_size_sol: float = 0.4
    min_trade_sol: float = 0.1
    max_trade_sol: float = 0.75
    max_open_positions: int = 3
    max_total_exposure_sol: float = 1.2
    stop_loss_pct: float = 0.25
    time_stop_sec: float = 120
    take_profits: List[TakeProfitRung] = Field(default_factory=lambda: _parse_ladder(DEFAULT_TP_LADDER))
    trail_mode: str = "volatility"
    trail_activation_pct: float = 0.35
    trail_giveback_pct: float = 0.20

    # admisión / salida
    entry_cooldown_ms: int = 750
    exit_cooldown_ms: int = 1200
    exit_interval_ms: int = 1000
    min_trade_history: int = 5
    trade_window: int = 200
    mint_idle_ttl_sec: float = 600
    max_tracked_mints: int = 2000

    # wallet
    keypair_path: Optional[str] = None
    keypair_b58: Optional[str] = None
    min_sol_balance: float = 0.05

    # telegram
    telegram_bot_token: Optional[str] = None
    telegram_admin_chat_id: Optional[str] = None

    # storage
    sqlite_path: str = "bot.db"

    # pumpportal
    pump_portal_url: str = "wss://pumpportal.fun/api/data"
    pump_trade_local_url: str = "https://pumpportal.fun/api/trade-local"
    portal_slippage_pct: float = 10
    portal_priority_fee_sol: float = 0.00001
    portal_pool: str = "pump"
    gate_sell_amount: str = "10%"

    # motor de ejecución
    confirm_timeout_secs: float = 30
    fill_max_wait_ms: int = 8000
    fill_poll_ms: int = 400
    send_backoff_ms: int = 150

    log_level: str = "INFO"

    @field_validator("rpc_urls", mode="before")
    @classmethod
    def _split_rpc_urls(cls, v: Any) -> Any:
        if isinstance(v, str):
            return [u.strip().rstrip("/") for u in v.split(",") if u.strip()]
        return v

    @field_validator("take_profits", mode="before")
    @classmethod
    def _load_ladder_json(cls, v: Any) -> Any:
        if isinstance(v, str):
            return json.loads(v)
        return v

    @field_validator("rpc_urls")
    @classmethod
    def _require_rpc(cls, v: List[str]) -> List[str]:
        if not v:
            raise ValueError("RPC_URLS vacío")
        return v

    @field_validator("stop_loss_pct")
    @classmethod
    def _positive_stop(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("STOP_LOSS_PCT debe ser > 0")
        return v

    @field_validator("take_profits")
    @classmethod
    def _check_ladder(cls, v: List[TakeProfitRung]) -> List[TakeProfitRung]:
        validate_ladder(v)
        return v

    @model_validator(mode="after")
    def _check_sizes(self) -> "Settings":
        if self.min_trade_sol > self.max_trade_sol:
            raise ValueError("MIN_TRADE_SOL > MAX_TRADE_SOL")
        return self

    @property
    def live_trading(self) -> bool:
        return self.enable_live_trading and not self.dry_run


def _parse_ladder(raw: str) -> List[TakeProfitRung]:
    return [TakeProfitRung.model_validate(r) for r in json.loads(raw)]


def validate_ladder(rungs: List[TakeProfitRung]) -> None:
    """Umbrales estrictamente crecientes y sell_pct en (0, 1]."""
    last: Optional[float] = None
    for r in rungs:
        if not 0 < r.sell_pct <= 1:
            raise ValueError(f"sell_pct fuera de rango: {r.sell_pct}")
        if last is not None and r.profit_threshold <= last:
            raise ValueError("umbrales de take-profit no estrictamente crecientes")
        last = r.profit_threshold


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """Load the optional YAML overlay.

    :returns: A dictionary with lowercase keys. Missing files quietly yield an
        empty dictionary.
    """
    path = Path(config_path or os.getenv("CONFIG_PATH") or PROJECT_ROOT / "config.yaml")
    if path.exists():
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        return {str(k).lower(): v for k, v in data.items()}
    return {}


def load_settings(env: Optional[Mapping[str, str]] = None, config_path: Optional[str] = None) -> Settings:
    if env is None:
        load_dotenv()
        env = os.environ

    raw: Dict[str, Any] = {}
    for name in Settings.model_fields:
        value = env.get(_ENV_ALIASES.get(name, name.upper()))
        if value not in (None, ""):
            raw[name] = value
    raw.update(load_config(config_path))

    try:
        return Settings(**raw)
    except (ValidationError, json.JSONDecodeError) as e:
        raise ConfigError(f"Configuración inválida: {e}") from e
