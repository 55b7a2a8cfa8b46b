"""Optimization domain models: recommendations, impact and health."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class RecommendationType(str, Enum):
    REDUCE_CONCENTRATION = "reduce_concentration"
    REDUCE_RISK = "reduce_risk"
    INCREASE_DIVERSIFICATION = "increase_diversification"
    IMPROVE_EFFICIENCY = "improve_efficiency"


class Severity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    Severity.INFO: 0,
    Severity.WARNING: 1,
    Severity.HIGH: 2,
    Severity.CRITICAL: 3,
}


class AdjustmentAction(str, Enum):
    BUY = "BUY"
    SELL = "SELL"
    HOLD = "HOLD"


class PortfolioHealth(str, Enum):
    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"
    CRITICAL = "critical"


class PositionAdjustment(BaseModel):
    model_config = ConfigDict(frozen=True)

    ticker: str
    holding_name: str | None = None
    current_weight: float
    target_weight: float
    action: AdjustmentAction
    value_change: float = Field(..., description="Signed market value to trade")


class MetricChange(BaseModel):
    model_config = ConfigDict(frozen=True)

    before: float
    after: float
    change: float


class ExpectedImpact(BaseModel):
    """Before/after deltas from re-aggregating with the adjusted weights."""

    model_config = ConfigDict(frozen=True)

    risk_score: MetricChange
    volatility: MetricChange
    max_drawdown: MetricChange
    diversification_score: MetricChange
    sharpe: MetricChange | None = None


class OptimizationRecommendation(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    type: RecommendationType
    severity: Severity
    title: str
    rationale: str
    affected_positions: list[PositionAdjustment] = Field(default_factory=list)
    expected_impact: ExpectedImpact | None = None
    suggested_actions: list[str] = Field(default_factory=list)


class CurrentMetrics(BaseModel):
    """Portfolio-level metrics for one weight vector."""

    model_config = ConfigDict(frozen=True)

    total_value: float
    risk_score: float
    volatility: float
    max_drawdown: float
    sharpe: float | None = None
    diversification_score: float
    position_count: int
    largest_position_weight: float
    top_5_concentration: float


class AnalysisSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    total_recommendations: int
    critical_count: int
    high_count: int
    warning_count: int
    info_count: int
    overall_health: PortfolioHealth
    key_findings: list[str] = Field(default_factory=list)


class OptimizationAnalysis(BaseModel):
    model_config = ConfigDict(frozen=True)

    portfolio_id: int
    generated_at: datetime
    current_metrics: CurrentMetrics
    recommendations: list[OptimizationRecommendation]
    summary: AnalysisSummary


class SimulationResult(BaseModel):
    """What-if result for user-supplied target weights."""

    model_config = ConfigDict(frozen=True)

    portfolio_id: int
    weights: dict[str, float]
    current: CurrentMetrics
    simulated: CurrentMetrics
    impact: ExpectedImpact
