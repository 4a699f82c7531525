from __future__ import annotations
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator


def resolve_db_path(db_path: str) -> str:
    p = Path(db_path).expanduser()
    if not p.is_absolute():
        p = Path.cwd() / p
    p.parent.mkdir(parents=True, exist_ok=True)
    return str(p.resolve())


class SqliteRepository:
    """Base común: conexión por operación, commit al salir, siempre cerrada."""

    def __init__(self, db_path: str) -> None:
        self.db_path = resolve_db_path(db_path)
        self._ensure_table()

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    def _ensure_table(self) -> None:
        raise NotImplementedError

    def _ensure_column(self, table: str, column: str, col_type: str) -> None:
        with self._connect() as conn:
            cols = {r[1] for r in conn.execute(f"PRAGMA table_info({table})").fetchall()}
            if column not in cols:
                conn.execute(f"ALTER TABLE {table} ADD COLUMN {column} {col_type}")
