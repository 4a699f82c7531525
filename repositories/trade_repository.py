from __future__ import annotations
from typing import List

from models.trade_event import TradeEvent
from repositories.sqlite_repository import SqliteRepository


class TradeRepository(SqliteRepository):
    """Histórico completo de trades observados (en memoria solo va la ventana)."""

    def _ensure_table(self) -> None:
        with self._connect() as conn:
            conn.execute('''
                CREATE TABLE IF NOT EXISTS trades (
                    signature   TEXT PRIMARY KEY,
                    mint        TEXT,
                    side        TEXT,
                    price       REAL,
                    sol_amount  REAL,
                    trader      TEXT,
                    slot        INTEGER,
                    timestamp   INTEGER
                )
            ''')
            conn.execute("CREATE INDEX IF NOT EXISTS idx_trades_mint ON trades(mint, timestamp)")

    def save(self, event: TradeEvent) -> bool:
        """Idempotente: una firma repetida se ignora. Devuelve True si insertó."""
        with self._connect() as conn:
            cur = conn.execute(
                '''
                INSERT OR IGNORE INTO trades (signature, mint, side, price, sol_amount, trader, slot, timestamp)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ''',
                (
                    event.signature,
                    event.mint,
                    event.side.value,
                    float(event.price),
                    float(event.sol_amount),
                    event.trader,
                    int(event.slot),
                    int(event.timestamp),
                )
            )
            return cur.rowcount > 0

    def list_recent(self, mint: str, limit: int = 200) -> List[TradeEvent]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM trades WHERE mint = ? ORDER BY timestamp DESC LIMIT ?",
                (mint, limit)
            ).fetchall()
        return [
            TradeEvent(
                signature=r["signature"], mint=r["mint"], price=r["price"] or 0.0,
                sol_amount=r["sol_amount"] or 0.0, side=r["side"], slot=r["slot"] or 0,
                trader=r["trader"] or "unknown", timestamp=r["timestamp"] or 0,
            )
            for r in reversed(rows)
        ]
