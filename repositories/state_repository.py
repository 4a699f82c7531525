"""
State repository for the in-memory mirrors used by the core.

Holds the per-mint trade and price windows, known token info, the open-mint
membership set (duplicate-position guard) and the map of live positions.
None of this is authoritative: ``hydrate`` rebuilds it from the Position
Store at startup.

All mutation happens on the asyncio event loop. There is no lock because two
mutations never interleave without a suspension point in between; moving
this to threads would need a per-mint lock around every map here.
"""

from __future__ import annotations

from collections import OrderedDict, deque
from typing import Deque, Dict, Iterable, List, Optional, Set

from enums.position_state import PositionState
from models.position import Position
from models.token import TokenInfo
from models.trade_event import TradeEvent
from utils.helpers import now_ms


class StateRepository:
    """Repository for the transient trading state."""

    def __init__(self, window: int = 200, max_mints: int = 2000) -> None:
        self.window = window
        self.max_mints = max_mints
        # último trade o alta visto por mint, del más antiguo al más reciente
        self._last_seen: "OrderedDict[str, int]" = OrderedDict()
        self._trades: Dict[str, Deque[TradeEvent]] = {}
        self._prices: Dict[str, Deque[float]] = {}
        self._tokens: Dict[str, TokenInfo] = {}
        self._open_mints: Set[str] = set()
        self._positions: Dict[str, Position] = {}

    # ---------- ventanas de mercado ----------
    def _touch(self, mint: str, ts: int) -> None:
        self._last_seen[mint] = max(ts, self._last_seen.get(mint, ts))
        self._last_seen.move_to_end(mint)

    def record_trade(self, event: TradeEvent) -> None:
        self._touch(event.mint, event.timestamp)
        self._trades.setdefault(event.mint, deque(maxlen=self.window)).append(event)
        if event.price > 0:
            self._prices.setdefault(event.mint, deque(maxlen=self.window)).append(event.price)

    def trades(self, mint: str) -> List[TradeEvent]:
        return list(self._trades.get(mint, ()))

    def prices(self, mint: str) -> List[float]:
        return list(self._prices.get(mint, ()))

    def last_price(self, mint: str) -> Optional[float]:
        window = self._prices.get(mint)
        return window[-1] if window else None

    # ---------- tokens ----------
    def remember_token(self, info: TokenInfo, seen_at: Optional[int] = None) -> None:
        self._tokens[info.mint] = info
        self._touch(info.mint, now_ms() if seen_at is None else seen_at)

    def token(self, mint: str) -> Optional[TokenInfo]:
        return self._tokens.get(mint)

    # ---------- poda ----------
    def tracked_mints(self) -> int:
        return len(self._last_seen)

    def prune_idle(self, now: int, idle_ms: int) -> List[str]:
        """
        Olvida los mints sin posición abierta que llevan ``idle_ms`` sin
        actividad, y los más antiguos si se supera ``max_mints``.
        Devuelve los mints olvidados.
        """
        evicted: List[str] = []
        excess = len(self._last_seen) - self.max_mints
        for mint, seen in list(self._last_seen.items()):
            if mint in self._open_mints:
                continue
            if now - seen >= idle_ms or excess > 0:
                evicted.append(mint)
                excess -= 1
        for mint in evicted:
            self._last_seen.pop(mint, None)
            self._trades.pop(mint, None)
            self._prices.pop(mint, None)
            self._tokens.pop(mint, None)
        return evicted

    # ---------- posiciones ----------
    def hydrate(self, positions: Iterable[Position]) -> None:
        for pos in positions:
            if pos.state != PositionState.CLOSED:
                self.register(pos)

    def register(self, pos: Position) -> None:
        self._positions[pos.id] = pos
        self._open_mints.add(pos.mint)

    def release(self, pos: Position) -> None:
        self._positions.pop(pos.id, None)
        if not any(p.mint == pos.mint for p in self._positions.values()):
            self._open_mints.discard(pos.mint)

    def has_open_position(self, mint: str) -> bool:
        return mint in self._open_mints

    def positions(self, state: Optional[PositionState] = None) -> List[Position]:
        items = list(self._positions.values())
        if state is None:
            return items
        return [p for p in items if p.state == state]

    def open_count(self) -> int:
        return sum(1 for p in self._positions.values() if p.state != PositionState.CLOSED)

    def open_exposure_sol(self) -> float:
        return sum(p.size_sol for p in self._positions.values() if p.state != PositionState.CLOSED)
