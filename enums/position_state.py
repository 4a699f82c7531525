"""
Enumerations for the position lifecycle within the sol_sniper application.

A position moves PENDING_ENTRY → OPEN → PENDING_EXIT → CLOSED. ``IDLE`` is
reserved and never assigned.
"""

from __future__ import annotations

from enum import Enum


class PositionState(str, Enum):
    """Possible states for a position."""

    IDLE = "IDLE"
    PENDING_ENTRY = "PENDING_ENTRY"
    OPEN = "OPEN"
    PENDING_EXIT = "PENDING_EXIT"
    CLOSED = "CLOSED"


class TradeSide(str, Enum):
    BUY = "buy"
    SELL = "sell"


class ExitReason(str, Enum):
    """Why the exit manager fired an action."""

    TIME_STOP = "TIME_STOP"
    STOP_LOSS = "STOP_LOSS"
    TRAILING = "TRAILING"
    TAKE_PROFIT = "TAKE_PROFIT"
