"""
TokenRepository para sol_sniper (SQLite).
Mantiene los tokens detectados por el feed y sus autoridades.
"""

from __future__ import annotations
from typing import Optional

from models.token import TokenInfo
from repositories.sqlite_repository import SqliteRepository
from utils.log_config import log_function


class TokenRepository(SqliteRepository):

    def _ensure_table(self) -> None:
        with self._connect() as conn:
            conn.execute('''CREATE TABLE IF NOT EXISTS tokens (
                mint              TEXT PRIMARY KEY,
                creator           TEXT,
                decimals          INTEGER DEFAULT 6,
                freeze_authority  TEXT,
                mint_authority    TEXT,
                name              TEXT,
                symbol            TEXT,
                created_at        INTEGER
            )''')

    @log_function
    def upsert(self, info: TokenInfo) -> None:
        with self._connect() as conn:
            conn.execute(
                '''
                INSERT OR REPLACE INTO tokens (
                    mint, creator, decimals, freeze_authority, mint_authority, name, symbol, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, strftime('%s','now'))
                ''',
                (
                    info.mint,
                    info.creator,
                    int(info.decimals),
                    info.freeze_authority,
                    info.mint_authority,
                    info.name,
                    info.symbol,
                )
            )

    @log_function
    def get(self, mint: str) -> Optional[TokenInfo]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM tokens WHERE mint = ?", (mint,)).fetchone()
        if not row:
            return None
        return TokenInfo(
            mint=row["mint"],
            creator=row["creator"] or "unknown",
            decimals=int(row["decimals"] or 6),
            freeze_authority=row["freeze_authority"],
            mint_authority=row["mint_authority"],
            name=row["name"] or "",
            symbol=row["symbol"] or "",
        )
