"""Risk domain models.

Outputs of the risk metrics engine, the portfolio aggregator and the
correlation analysis. Every metric that can be undefined is an explicit
nullable field so that "not computable" never reads as zero.
"""

from __future__ import annotations

from datetime import date as DateType
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class RiskLevel(str, Enum):
    """Coarse bucket of a 0-100 risk score."""

    LOW = "low"
    MODERATE = "moderate"
    HIGH = "high"


class BenchmarkBeta(BaseModel):
    """Beta of a position against one benchmark."""

    model_config = ConfigDict(frozen=True)

    benchmark: str
    beta: float | None = None


class RiskDecomposition(BaseModel):
    """Split of annualized volatility into market and specific parts (percent)."""

    model_config = ConfigDict(frozen=True)

    systematic_risk: float
    idiosyncratic_risk: float
    r_squared: float = Field(..., ge=0, le=1)
    total_risk: float


class PositionRisk(BaseModel):
    """Risk statistics for one ticker over one price window."""

    model_config = ConfigDict(frozen=True)

    ticker: str
    days: int = Field(..., description="Requested window in calendar days")
    data_points: int = Field(..., description="Closes used")
    as_of: DateType = Field(..., description="Date of the last close used")
    benchmark: str

    volatility: float = Field(..., ge=0, description="Annualized, percent")
    max_drawdown: float = Field(..., le=0, description="Percent, never positive")
    beta: float | None = None
    benchmark_betas: list[BenchmarkBeta] = Field(default_factory=list)
    risk_decomposition: RiskDecomposition | None = None
    sharpe: float | None = None
    sortino: float | None = None
    annualized_return: float | None = None
    value_at_risk: float | None = Field(None, description="Alias of var_95")
    var_95: float | None = None
    var_99: float | None = None
    expected_shortfall_95: float | None = None
    expected_shortfall_99: float | None = None

    risk_score: float = Field(..., ge=0, le=100)
    risk_level: RiskLevel


# =============================================================================
# THRESHOLDS
# =============================================================================


class RiskThresholdSettings(BaseModel):
    """Warning/critical pairs per metric.

    Volatility, beta and risk score breach upwards; drawdown and VaR are
    negative percentages and breach downwards.
    """

    model_config = ConfigDict(from_attributes=True, frozen=True)

    volatility_warning: float = 30.0
    volatility_critical: float = 50.0
    drawdown_warning: float = -20.0
    drawdown_critical: float = -35.0
    beta_warning: float = 1.5
    beta_critical: float = 2.0
    risk_score_warning: float = 60.0
    risk_score_critical: float = 80.0
    var_warning: float = -5.0
    var_critical: float = -10.0


class ViolationSeverity(str, Enum):
    WARNING = "warning"
    CRITICAL = "critical"


class ThresholdViolation(BaseModel):
    model_config = ConfigDict(frozen=True)

    ticker: str
    holding_name: str | None = None
    metric_name: str
    metric_value: float
    threshold_value: float
    severity: ViolationSeverity


# =============================================================================
# PORTFOLIO
# =============================================================================


class PositionRiskContribution(BaseModel):
    """A position inside a portfolio aggregate."""

    model_config = ConfigDict(frozen=True)

    ticker: str
    holding_name: str | None = None
    market_value: float = Field(..., gt=0)
    weight: float = Field(..., gt=0, le=1)
    risk_assessment: PositionRisk


class ExcludedPosition(BaseModel):
    """A holding left out of the aggregate, with the error code that excluded it."""

    model_config = ConfigDict(frozen=True)

    ticker: str
    reason: str
    message: str | None = None
    market_value: float | None = None


class PortfolioRisk(BaseModel):
    """Weighted aggregate of position risks.

    Volatility, drawdown, beta and Sharpe are weighted averages of position
    metrics; cross-position covariance is ignored.
    """

    model_config = ConfigDict(frozen=True)

    portfolio_id: int
    computed_at: datetime
    total_value: float
    portfolio_volatility: float
    portfolio_max_drawdown: float
    portfolio_beta: float | None = None
    portfolio_sharpe: float | None = None
    portfolio_risk_score: float = Field(..., ge=0, le=100)
    risk_level: RiskLevel
    diversification_score: float = Field(..., ge=0, le=10)
    position_risks: list[PositionRiskContribution]
    excluded_positions: list[ExcludedPosition] = Field(default_factory=list)
    thresholds: RiskThresholdSettings = Field(default_factory=RiskThresholdSettings)
    violations: list[ThresholdViolation] = Field(default_factory=list)

    @property
    def weights(self) -> dict[str, float]:
        return {p.ticker: p.weight for p in self.position_risks}


# =============================================================================
# CORRELATION
# =============================================================================


class CorrelationPair(BaseModel):
    model_config = ConfigDict(frozen=True)

    ticker1: str
    ticker2: str
    correlation: float = Field(..., ge=-1, le=1)


class CorrelationStatistics(BaseModel):
    model_config = ConfigDict(frozen=True)

    average_correlation: float
    max_correlation: float
    min_correlation: float
    correlation_std: float
    high_correlation_pairs: list[CorrelationPair] = Field(default_factory=list)
    diversification_score: float | None = Field(
        None, description="Weight-only score, when weights are known"
    )
    adjusted_diversification_score: float | None = Field(
        None, description="Score with the low-correlation bonus"
    )


class CorrelationMatrixWithStats(BaseModel):
    """Symmetric Pearson matrix of daily returns plus summary statistics."""

    model_config = ConfigDict(frozen=True)

    portfolio_id: int | None = None
    tickers: list[str]
    matrix: list[list[float]]
    correlations: list[CorrelationPair] = Field(
        default_factory=list, description="Upper triangle, row-major"
    )
    statistics: CorrelationStatistics
    observations: int = Field(..., description="Aligned return observations")
    excluded: list[ExcludedPosition] = Field(default_factory=list)


# =============================================================================
# HISTORY
# =============================================================================


class SnapshotType(str, Enum):
    PORTFOLIO = "portfolio"
    POSITION = "position"


class TrendAggregation(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class RiskSnapshot(BaseModel):
    """Immutable point-in-time copy of position or portfolio risk."""

    model_config = ConfigDict(from_attributes=True, frozen=True)

    portfolio_id: int
    ticker: str | None = None
    snapshot_date: DateType
    snapshot_type: SnapshotType
    volatility: float
    max_drawdown: float
    beta: float | None = None
    sharpe: float | None = None
    value_at_risk: float | None = None
    risk_score: float
    risk_level: RiskLevel
    total_value: float | None = None
    market_value: float | None = None


class RiskAlert(BaseModel):
    model_config = ConfigDict(frozen=True)

    portfolio_id: int
    ticker: str | None = None
    alert_type: str = "risk_increase"
    metric_name: str = "risk_score"
    previous_value: float
    current_value: float
    change_percent: float
    date: DateType
