"""
Position Store: the durable collaborator the core depends on.

One SQLite file holds tokens, trades, risk reports and positions; each table
has its own repository and this facade exposes the contract used by the
state machine, the admission pipeline and the orchestrator.
"""

from __future__ import annotations
from typing import List, Optional

from models.position import Position
from models.token import TokenInfo
from models.trade_event import TradeEvent
from models.verdicts import RiskReport
from repositories.position_repository import PositionRepository
from repositories.risk_report_repository import RiskReportRepository
from repositories.token_repository import TokenRepository
from repositories.trade_repository import TradeRepository
from utils.log_config import logger_manager

logger = logger_manager.setup_logger(__name__)


class PositionStore:
    def __init__(self, db_path: str) -> None:
        self.tokens = TokenRepository(db_path)
        self.trades = TradeRepository(db_path)
        self.risk_reports = RiskReportRepository(db_path)
        self.positions = PositionRepository(db_path)
        self.db_path = self.positions.db_path
        logger.info(f"Storage listo en {self.db_path}")

    def upsert_token(self, info: TokenInfo) -> None:
        self.tokens.upsert(info)

    def get_token(self, mint: str) -> Optional[TokenInfo]:
        return self.tokens.get(mint)

    def save_trade(self, event: TradeEvent) -> bool:
        return self.trades.save(event)

    def save_risk_report(self, mint: str, report: RiskReport) -> None:
        self.risk_reports.append(mint, report)

    def save_position(self, position: Position) -> None:
        self.positions.save(position)

    def get_position(self, position_id: str) -> Optional[Position]:
        return self.positions.get(position_id)

    def list_open_positions(self) -> List[Position]:
        return self.positions.list_open()
