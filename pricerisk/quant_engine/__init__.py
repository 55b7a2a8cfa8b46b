"""
Quant engine: pure risk and optimization math.

Nothing in this package does I/O. Inputs are price windows and domain
models; outputs are domain models.
"""

from pricerisk.quant_engine.config import (
    OptimizationParameters,
    PortfolioParameters,
    RiskParameters,
)
from pricerisk.quant_engine.correlation import correlation_matrix, select_top_positions
from pricerisk.quant_engine.optimization import analyze, metrics_for_weights, simulate
from pricerisk.quant_engine.portfolio_risk import (
    PositionValuation,
    aggregate,
    detect_violations,
    diversification_score,
)
from pricerisk.quant_engine.risk_history import (
    aggregate_trend,
    build_snapshots,
    detect_risk_increases,
)
from pricerisk.quant_engine.risk_metrics import compute, risk_level_for, score_risk


__all__ = [
    "OptimizationParameters",
    "PortfolioParameters",
    "PositionValuation",
    "RiskParameters",
    "aggregate",
    "aggregate_trend",
    "analyze",
    "build_snapshots",
    "compute",
    "correlation_matrix",
    "detect_risk_increases",
    "detect_violations",
    "diversification_score",
    "metrics_for_weights",
    "risk_level_for",
    "score_risk",
    "select_top_positions",
    "simulate",
]
