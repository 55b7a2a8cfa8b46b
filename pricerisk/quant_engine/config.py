"""
Quant Engine Parameters.

Every numeric knob of the risk and optimization math lives in one of the
frozen parameter objects below. Production code builds them from
``Settings``; tests construct them directly with whatever values they need.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from pricerisk.core.config import Settings, settings as default_settings


TRADING_DAYS_PER_YEAR = 252


@dataclass(frozen=True)
class RiskParameters:
    """Inputs of the single-ticker metrics and the risk score."""

    # =========================================================================
    # RETURNS
    # =========================================================================

    # Annual risk-free rate as a fraction (0.045 = 4.5%)
    risk_free_rate: float = 0.045

    # Closes required before any metric is computed
    min_price_points: int = 30

    # Aligned returns required before beta is reported
    min_beta_observations: int = 20

    # =========================================================================
    # SCORE BUCKETS
    # =========================================================================

    # score < low_max -> low, score < moderate_max -> moderate, else high
    risk_level_low_max: float = 40.0
    risk_level_moderate_max: float = 60.0

    # =========================================================================
    # BENCHMARKS
    # =========================================================================

    default_benchmark: str = "SPY"
    benchmarks: tuple[str, ...] = ("SPY", "QQQ", "IWM")

    @classmethod
    def from_settings(cls, config: Settings = default_settings) -> RiskParameters:
        return cls(
            risk_free_rate=config.risk_free_rate,
            min_price_points=config.min_price_points,
            risk_level_low_max=config.risk_level_low_max,
            risk_level_moderate_max=config.risk_level_moderate_max,
            default_benchmark=config.default_benchmark,
            benchmarks=tuple(config.risk_benchmarks),
        )


@dataclass(frozen=True)
class PortfolioParameters:
    """Aggregation and correlation knobs."""

    # Positions below this weight are reported as excluded
    min_position_weight: float = 0.001

    # Correlation analysis
    correlation_days: int = 90
    correlation_max_positions: int = 10
    high_correlation_threshold: float = 0.7

    # Diversification score: position count saturates at this many holdings
    diversification_full_count: int = 20

    risk: RiskParameters = field(default_factory=RiskParameters)

    @classmethod
    def from_settings(cls, config: Settings = default_settings) -> PortfolioParameters:
        return cls(
            min_position_weight=config.min_position_weight,
            correlation_days=config.correlation_days,
            correlation_max_positions=config.correlation_max_positions,
            high_correlation_threshold=config.high_correlation_threshold,
            risk=RiskParameters.from_settings(config),
        )


@dataclass(frozen=True)
class OptimizationParameters:
    """Rule thresholds of the optimization engine."""

    # Single position weight above which concentration is flagged
    concentration_threshold: float = 0.15

    # Risk contribution above this multiple of the average is flagged
    risk_contribution_multiple: float = 2.0

    # Diversification score (0-10) below which diversification is flagged
    diversification_floor: float = 5.0

    # Sharpe ratio below which a position is inefficient
    sharpe_reference: float = 0.0

    portfolio: PortfolioParameters = field(default_factory=PortfolioParameters)

    @classmethod
    def from_settings(cls, config: Settings = default_settings) -> OptimizationParameters:
        return cls(
            concentration_threshold=config.concentration_threshold,
            risk_contribution_multiple=config.risk_contribution_multiple,
            diversification_floor=config.diversification_floor,
            sharpe_reference=config.sharpe_reference,
            portfolio=PortfolioParameters.from_settings(config),
        )
