"""
Position state machine: the only place where a position changes.

Every accepted change is persisted through the ``persist`` callback (the
store's ``save_position``). Requests for edges outside the transition table,
and any change to a CLOSED position, are logged and rejected.
"""

from __future__ import annotations

from typing import Callable, FrozenSet, List, Optional, Tuple

from enums.position_state import PositionState
from models.position import Position, TakeProfitRung
from utils.helpers import now_ms
from utils.log_config import logger_manager

logger = logger_manager.setup_logger(__name__)

S = PositionState

TRANSITIONS: FrozenSet[Tuple[PositionState, PositionState]] = frozenset({
    (S.PENDING_ENTRY, S.OPEN),
    (S.PENDING_ENTRY, S.CLOSED),     # entrada fallida
    (S.OPEN, S.PENDING_EXIT),
    (S.PENDING_EXIT, S.OPEN),        # venta fallida o parcial (TP)
    (S.PENDING_EXIT, S.CLOSED),
})

RECOVERED_EXIT = "recuperada tras reinicio"
ABORTED_ENTRY = "entrada interrumpida por reinicio"

# campos de runtime que update() puede tocar
_RUNTIME_FIELDS = frozenset({"entry_price", "tokens", "tp_filled", "peak_pnl_pct", "last_error"})


def can_transition(current: PositionState, nxt: PositionState) -> bool:
    return (current, nxt) in TRANSITIONS


class PositionFSM:
    def __init__(self, persist: Callable[[Position], None], clock: Callable[[], int] = now_ms) -> None:
        self._persist = persist
        self._clock = clock

    def create(
        self,
        mint: str,
        size_sol: float,
        stop_loss_pct: float,
        take_profits: List[TakeProfitRung],
        trail_mode: str,
    ) -> Position:
        now = self._clock()
        position = Position(
            mint=mint,
            state=S.PENDING_ENTRY,
            size_sol=size_sol,
            stop_loss_pct=stop_loss_pct,
            take_profits=list(take_profits),
            trail_mode=trail_mode,
            tp_filled=0,
            created_at=now,
            updated_at=now,
        )
        self._persist(position)
        logger.info(f"[fsm] {position.id[:8]} creada {mint} size={size_sol:.3f} SOL")
        return position

    def transition(
        self,
        pos: Position,
        nxt: PositionState,
        entry_signature: Optional[str] = None,
        exit_signature: Optional[str] = None,
        error: Optional[str] = None,
    ) -> bool:
        if not can_transition(pos.state, nxt):
            logger.error(f"[fsm] {pos.id[:8]} transición ilegal {pos.state.value} → {nxt.value}; ignorada")
            return False

        now = self._clock()
        if entry_signature:
            pos.entry_signature = entry_signature
        if exit_signature:
            pos.exit_signature = exit_signature
        if error:
            pos.last_error = error

        # entry_timestamp se fija una sola vez
        if nxt == S.OPEN and not pos.entry_timestamp:
            pos.entry_timestamp = now

        logger.info(f"[fsm] {pos.id[:8]} {pos.mint} {pos.state.value} → {nxt.value}")
        pos.state = nxt
        pos.updated_at = now
        self._persist(pos)
        return True

    def update(self, pos: Position, **fields) -> bool:
        if pos.is_closed:
            logger.error(f"[fsm] {pos.id[:8]} está CLOSED; update {sorted(fields)} rechazado")
            return False
        unknown = set(fields) - _RUNTIME_FIELDS
        if unknown:
            raise ValueError(f"Campos no actualizables: {sorted(unknown)}")
        for name, value in fields.items():
            setattr(pos, name, value)
        pos.updated_at = self._clock()
        self._persist(pos)
        return True

    def recover(self, pos: Position) -> Position:
        """
        Reconcilia una posición leída del store tras un reinicio.

        PENDING_EXIT vuelve a OPEN para que las reglas de salida la retomen.
        PENDING_ENTRY se cierra: el proceso murió antes de confirmar la compra.
        """
        if pos.state == S.PENDING_EXIT:
            logger.warning(f"[fsm] {pos.id[:8]} {pos.mint} estaba en PENDING_EXIT; vuelve a OPEN")
            self.transition(pos, S.OPEN, error=RECOVERED_EXIT)
        elif pos.state == S.PENDING_ENTRY:
            logger.warning(f"[fsm] {pos.id[:8]} {pos.mint} estaba en PENDING_ENTRY; se cierra")
            self.transition(pos, S.CLOSED, error=ABORTED_ENTRY)
        return pos
