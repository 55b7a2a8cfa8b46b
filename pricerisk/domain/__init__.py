"""Domain models passed between stores, services and the quant engine.

Usage:
    from pricerisk.domain import PricePoint, PositionRisk, PortfolioRisk

    data = portfolio_risk.model_dump(mode="json")
    restored = PortfolioRisk.model_validate(data)
"""

from pricerisk.domain.optimization import (
    AdjustmentAction,
    AnalysisSummary,
    CurrentMetrics,
    ExpectedImpact,
    MetricChange,
    OptimizationAnalysis,
    OptimizationRecommendation,
    PortfolioHealth,
    PositionAdjustment,
    RecommendationType,
    Severity,
    SimulationResult,
)
from pricerisk.domain.price import FailureType, FetchFailure, Holding, PricePoint
from pricerisk.domain.risk import (
    BenchmarkBeta,
    CorrelationMatrixWithStats,
    CorrelationPair,
    CorrelationStatistics,
    ExcludedPosition,
    PortfolioRisk,
    PositionRisk,
    PositionRiskContribution,
    RiskAlert,
    RiskDecomposition,
    RiskLevel,
    RiskSnapshot,
    RiskThresholdSettings,
    SnapshotType,
    ThresholdViolation,
    TrendAggregation,
    ViolationSeverity,
)


__all__ = [
    # Price cache
    "FailureType",
    "FetchFailure",
    "Holding",
    "PricePoint",
    # Risk
    "BenchmarkBeta",
    "CorrelationMatrixWithStats",
    "CorrelationPair",
    "CorrelationStatistics",
    "ExcludedPosition",
    "PortfolioRisk",
    "PositionRisk",
    "PositionRiskContribution",
    "RiskAlert",
    "RiskDecomposition",
    "RiskLevel",
    "RiskSnapshot",
    "RiskThresholdSettings",
    "SnapshotType",
    "ThresholdViolation",
    "TrendAggregation",
    "ViolationSeverity",
    # Optimization
    "AdjustmentAction",
    "AnalysisSummary",
    "CurrentMetrics",
    "ExpectedImpact",
    "MetricChange",
    "OptimizationAnalysis",
    "OptimizationRecommendation",
    "PortfolioHealth",
    "PositionAdjustment",
    "RecommendationType",
    "Severity",
    "SimulationResult",
]
