"""
PositionRepository (SQLite): fila completa por posición, upsert por id.
"""

from __future__ import annotations
import json
import sqlite3
from typing import List, Optional

from enums.position_state import PositionState
from models.position import Position, TakeProfitRung
from repositories.sqlite_repository import SqliteRepository

_COLUMNS = (
    "id", "mint", "state", "size_sol", "tokens", "entry_price", "stop_loss_pct",
    "take_profits", "trail_mode", "created_at", "updated_at",
    "entry_signature", "exit_signature", "entry_timestamp", "last_error",
    "tp_filled", "peak_pnl_pct",
)


class PositionRepository(SqliteRepository):

    def _ensure_table(self) -> None:
        with self._connect() as conn:
            conn.execute('''
                CREATE TABLE IF NOT EXISTS positions (
                    id            TEXT PRIMARY KEY,
                    mint          TEXT,
                    state         TEXT,
                    size_sol      REAL,
                    tokens        REAL,
                    entry_price   REAL,
                    stop_loss_pct REAL,
                    take_profits  TEXT,
                    trail_mode    TEXT,
                    created_at    INTEGER,
                    updated_at    INTEGER
                )
            ''')
        # columnas añadidas después del esquema inicial
        self._ensure_column("positions", "entry_signature", "TEXT")
        self._ensure_column("positions", "exit_signature", "TEXT")
        self._ensure_column("positions", "entry_timestamp", "INTEGER")
        self._ensure_column("positions", "last_error", "TEXT")
        self._ensure_column("positions", "tp_filled", "INTEGER DEFAULT 0")
        self._ensure_column("positions", "peak_pnl_pct", "REAL")

    def save(self, pos: Position) -> None:
        row = pos.model_dump()
        row["state"] = pos.state.value
        row["take_profits"] = json.dumps([r.model_dump() for r in pos.take_profits])
        placeholders = ", ".join("?" for _ in _COLUMNS)
        with self._connect() as conn:
            conn.execute(
                f"INSERT OR REPLACE INTO positions ({', '.join(_COLUMNS)}) VALUES ({placeholders})",
                tuple(row[c] for c in _COLUMNS)
            )

    def get(self, position_id: str) -> Optional[Position]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM positions WHERE id = ?", (position_id,)).fetchone()
        return self._to_model(row) if row else None

    def list_open(self) -> List[Position]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM positions WHERE state != ? ORDER BY created_at ASC",
                (PositionState.CLOSED.value,)
            ).fetchall()
        return [self._to_model(r) for r in rows]

    @staticmethod
    def _to_model(row: sqlite3.Row) -> Position:
        data = {k: row[k] for k in row.keys()}
        ladder = json.loads(data.get("take_profits") or "[]")
        data["take_profits"] = [TakeProfitRung.model_validate(r) for r in ladder]
        data["tp_filled"] = int(data.get("tp_filled") or 0)
        data["trail_mode"] = data.get("trail_mode") or ""
        return Position.model_validate(data)
