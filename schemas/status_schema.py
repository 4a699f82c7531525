"""
Operator-facing runtime state.

``RuntimeFlags`` is the single mutable cell shared by the admission pipeline
(reads ``entries_paused`` before every evaluation), the feed wiring and the
Telegram bot. ``StatusSnapshot`` is what ``/status`` renders.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass
class RuntimeFlags:
    entries_paused: bool = False
    feed_connected: bool = False


@dataclass
class StatusSnapshot:
    wallet: str
    balance_sol: Optional[float]
    dry_run: bool
    live_trading: bool
    open_positions: int
    exposure_sol: float
    feed_connected: bool
    entries_paused: bool
