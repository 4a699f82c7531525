# services/risk_service.py
from __future__ import annotations

from enums.position_state import TradeSide
from models.verdicts import RiskReport
from schemas.context_schema import RiskContext
from utils.helpers import clamp
from utils.log_config import logger_manager

logger = logger_manager.setup_logger(__name__)

FREEZE_AUTHORITY_PRESENT = "Freeze authority present"
MINT_AUTHORITY_PRESENT = "Mint authority not revoked"
SELL_PRESSURE = "Sell pressure too high"
FEW_TRADERS = "Too few unique traders"

MIN_ALLOW_SCORE = 60


class RiskEngine:
    """
    Heurística de riesgo por defecto. Parte de 100 y resta por señal:
    freeze authority (-50, bloquea siempre), mint authority (-35),
    ventas > 2x compras (-20), menos de 3 traders distintos (-15).
    """

    def evaluate(self, ctx: RiskContext) -> RiskReport:
        reasons = []
        score = 100
        token, trades = ctx.token, ctx.recent_trades

        if token.freeze_authority:
            reasons.append(FREEZE_AUTHORITY_PRESENT)
            score -= 50
        if token.mint_authority:
            reasons.append(MINT_AUTHORITY_PRESENT)
            score -= 35

        sells = sum(1 for t in trades if t.side == TradeSide.SELL)
        buys = sum(1 for t in trades if t.side == TradeSide.BUY)
        if sells > buys * 2:
            reasons.append(SELL_PRESSURE)
            score -= 20

        unique = len({t.trader for t in trades})
        if unique < 3:
            reasons.append(FEW_TRADERS)
            score -= 15

        allow = score >= MIN_ALLOW_SCORE and FREEZE_AUTHORITY_PRESENT not in reasons
        report = RiskReport(
            score=int(clamp(score, 0, 100)),
            allow=allow,
            reasons=reasons,
            data_completeness="medium",
            metrics={"buys": buys, "sells": sells, "unique_traders": unique},
        )
        logger.debug(f"[risk] {token.mint} score={report.score} allow={allow} {reasons}")
        return report
