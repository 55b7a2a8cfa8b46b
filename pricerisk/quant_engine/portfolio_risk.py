"""
Portfolio risk aggregation.

Combines per-position risk into one portfolio view by market-value
weighting. Portfolio volatility, drawdown, beta and Sharpe are weighted
averages of position metrics; cross-position covariance is ignored, which
overstates volatility for diversified books. The correlation-adjusted
diversification score partly compensates.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime, timezone

from pricerisk.core.exceptions import InsufficientDataError
from pricerisk.domain.risk import (
    ExcludedPosition,
    PortfolioRisk,
    PositionRisk,
    PositionRiskContribution,
    RiskThresholdSettings,
    ThresholdViolation,
    ViolationSeverity,
)
from pricerisk.quant_engine.config import PortfolioParameters
from pricerisk.quant_engine.risk_metrics import risk_level_for


logger = logging.getLogger(__name__)

# HHI of a perfectly spread 20-name book; the concentration term saturates here
MIN_HHI = 0.05


@dataclass(frozen=True)
class PositionValuation:
    """A holding with its market value and computed risk."""

    ticker: str
    market_value: float
    risk: PositionRisk
    holding_name: str | None = None


# =============================================================================
# WEIGHTS
# =============================================================================


def normalize_weights(
    positions: Sequence[PositionValuation],
    min_weight: float = 0.001,
) -> tuple[list[tuple[PositionValuation, float]], list[ExcludedPosition]]:
    """
    Market-value weights over the positions that are large enough.

    Zero-value positions and positions below ``min_weight`` of the total are
    excluded; the remaining weights are renormalized to sum to 1.
    """
    excluded: list[ExcludedPosition] = []
    valued = []
    for position in positions:
        if position.market_value <= 0:
            excluded.append(
                ExcludedPosition(
                    ticker=position.ticker,
                    reason="ZERO_MARKET_VALUE",
                    message="Position has no market value",
                    market_value=position.market_value,
                )
            )
        else:
            valued.append(position)

    total = sum(p.market_value for p in valued)
    kept = []
    for position in valued:
        weight = position.market_value / total
        if weight < min_weight:
            excluded.append(
                ExcludedPosition(
                    ticker=position.ticker,
                    reason="BELOW_MIN_WEIGHT",
                    message=f"Weight {weight:.4%} below {min_weight:.2%}",
                    market_value=position.market_value,
                )
            )
        else:
            kept.append(position)

    kept_total = sum(p.market_value for p in kept)
    return [(p, p.market_value / kept_total) for p in kept], excluded


def weighted_average(pairs: Iterable[tuple[float, float | None]]) -> float | None:
    """Weighted mean of the non-None values, renormalized over their weights."""
    present = [(w, v) for w, v in pairs if v is not None]
    total_weight = sum(w for w, _ in present)
    if not present or total_weight <= 0:
        return None
    return sum(w * v for w, v in present) / total_weight


# =============================================================================
# DIVERSIFICATION
# =============================================================================


def diversification_score(weights: Sequence[float], full_count: int = 20) -> float:
    """
    Weight-only diversification on a 0-10 scale.

    Up to 4 points for the number of positions (saturating at
    ``full_count``) and up to 6 points for low concentration (1 - HHI).
    """
    weights = [w for w in weights if w > 0]
    if not weights:
        return 0.0

    count_term = min(math.sqrt(len(weights)) / math.sqrt(full_count), 1.0)
    hhi = sum(w * w for w in weights)
    spread_term = min(max((1 - hhi) / (1 - MIN_HHI), 0.0), 1.0)
    return 4 * count_term + 6 * spread_term


def adjusted_diversification_score(
    base_score: float,
    average_abs_correlation: float | None,
) -> float:
    """
    Add up to 4 points for low average absolute correlation, capped at 10.

    Without correlation data the weight-only score is returned unchanged.
    """
    if average_abs_correlation is None:
        return base_score
    avg = min(abs(average_abs_correlation), 1.0)
    return min(base_score + (1 - avg) * 4, 10.0)


# =============================================================================
# THRESHOLDS
# =============================================================================

# (metric name, accessor, warning field, critical field, breaches upwards)
_THRESHOLD_RULES = (
    ("Volatility", lambda r: r.volatility, "volatility_warning", "volatility_critical", True),
    ("Max Drawdown", lambda r: r.max_drawdown, "drawdown_warning", "drawdown_critical", False),
    ("Beta", lambda r: r.beta, "beta_warning", "beta_critical", True),
    ("Risk Score", lambda r: r.risk_score, "risk_score_warning", "risk_score_critical", True),
    ("Value at Risk", lambda r: r.value_at_risk, "var_warning", "var_critical", False),
)


def _breaches(value: float, threshold: float, upwards: bool) -> bool:
    return value >= threshold if upwards else value <= threshold


def detect_violations(
    contributions: Sequence[PositionRiskContribution],
    thresholds: RiskThresholdSettings,
) -> list[ThresholdViolation]:
    """At most one violation per position and metric; critical wins over warning."""
    violations: list[ThresholdViolation] = []
    for position in contributions:
        risk = position.risk_assessment
        for name, accessor, warning_field, critical_field, upwards in _THRESHOLD_RULES:
            value = accessor(risk)
            if value is None:
                continue

            critical = getattr(thresholds, critical_field)
            warning = getattr(thresholds, warning_field)
            if _breaches(value, critical, upwards):
                severity, threshold = ViolationSeverity.CRITICAL, critical
            elif _breaches(value, warning, upwards):
                severity, threshold = ViolationSeverity.WARNING, warning
            else:
                continue

            violations.append(
                ThresholdViolation(
                    ticker=position.ticker,
                    holding_name=position.holding_name,
                    metric_name=name,
                    metric_value=value,
                    threshold_value=threshold,
                    severity=severity,
                )
            )
    return violations


# =============================================================================
# AGGREGATE
# =============================================================================


def aggregate(
    portfolio_id: int,
    positions: Sequence[PositionValuation],
    *,
    thresholds: RiskThresholdSettings | None = None,
    excluded: Sequence[ExcludedPosition] = (),
    params: PortfolioParameters | None = None,
    computed_at: datetime | None = None,
) -> PortfolioRisk:
    """
    Aggregate position risks into a portfolio risk view.

    Parameters
    ----------
    portfolio_id : int
        Portfolio being aggregated.
    positions : Sequence[PositionValuation]
        Positions whose risk was computed.
    thresholds : RiskThresholdSettings, optional
        Per-portfolio thresholds; defaults when omitted.
    excluded : Sequence[ExcludedPosition]
        Positions already excluded upstream (e.g. no price data).
    params : PortfolioParameters, optional
        Minimum weight and level boundaries.

    Raises
    ------
    InsufficientDataError
        No position survives weighting.
    """
    params = params or PortfolioParameters()
    thresholds = thresholds or RiskThresholdSettings()

    weighted, dropped = normalize_weights(positions, params.min_position_weight)
    all_excluded = [*excluded, *dropped]
    if not weighted:
        raise InsufficientDataError(
            f"Portfolio {portfolio_id} has no positions with usable risk data",
            available=0,
            required=1,
        )

    contributions = [
        PositionRiskContribution(
            ticker=p.ticker,
            holding_name=p.holding_name,
            market_value=p.market_value,
            weight=w,
            risk_assessment=p.risk,
        )
        for p, w in weighted
    ]
    contributions.sort(key=lambda c: c.risk_assessment.risk_score, reverse=True)

    def avg(accessor) -> float | None:
        return weighted_average((c.weight, accessor(c.risk_assessment)) for c in contributions)

    score = min(max(avg(lambda r: r.risk_score) or 0.0, 0.0), 100.0)
    volatility = avg(lambda r: r.volatility) or 0.0
    drawdown = min(avg(lambda r: r.max_drawdown) or 0.0, 0.0)

    for position in all_excluded:
        logger.warning(
            f"Portfolio {portfolio_id}: excluded {position.ticker} ({position.reason})"
        )

    return PortfolioRisk(
        portfolio_id=portfolio_id,
        computed_at=computed_at or datetime.now(timezone.utc),
        total_value=sum(c.market_value for c in contributions),
        portfolio_volatility=volatility,
        portfolio_max_drawdown=drawdown,
        portfolio_beta=avg(lambda r: r.beta),
        portfolio_sharpe=avg(lambda r: r.sharpe),
        portfolio_risk_score=score,
        risk_level=risk_level_for(score, params.risk),
        diversification_score=diversification_score(
            [c.weight for c in contributions], params.diversification_full_count
        ),
        position_risks=contributions,
        excluded_positions=all_excluded,
        thresholds=thresholds,
        violations=detect_violations(contributions, thresholds),
    )
