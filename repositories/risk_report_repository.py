from __future__ import annotations
import json

from models.verdicts import RiskReport
from repositories.sqlite_repository import SqliteRepository
from utils.log_config import log_function


class RiskReportRepository(SqliteRepository):
    """Append-only: cada evaluación de riesgo queda registrada."""

    def _ensure_table(self) -> None:
        with self._connect() as conn:
            conn.execute('''
                CREATE TABLE IF NOT EXISTS risk_reports (
                    mint        TEXT,
                    score       INTEGER,
                    allow       INTEGER,
                    reasons     TEXT,
                    category    TEXT,
                    metrics     TEXT,
                    created_at  INTEGER
                )
            ''')

    @log_function
    def append(self, mint: str, report: RiskReport) -> None:
        with self._connect() as conn:
            conn.execute(
                '''
                INSERT INTO risk_reports (mint, score, allow, reasons, category, metrics, created_at)
                VALUES (?, ?, ?, ?, ?, ?, strftime('%s','now'))
                ''',
                (
                    mint,
                    int(report.score),
                    1 if report.allow else 0,
                    "|".join(report.reasons),
                    report.category,
                    json.dumps(report.metrics),
                )
            )

    def count(self, mint: str) -> int:
        with self._connect() as conn:
            row = conn.execute("SELECT COUNT(*) FROM risk_reports WHERE mint = ?", (mint,)).fetchone()
        return int(row[0])
