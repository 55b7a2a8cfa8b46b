"""
Single-ticker risk metrics.

All metrics come from simple daily returns of the close series and are
annualized with 252 trading days. Percent-valued outputs (volatility,
drawdown, returns, VaR, ES) are in percent units, e.g. 25.0 for 25%.

A metric that cannot be computed is None, never a fabricated zero.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Mapping, Sequence
from datetime import date

import numpy as np
import pandas as pd

from pricerisk.core.exceptions import InsufficientDataError
from pricerisk.domain.price import PricePoint
from pricerisk.domain.risk import (
    BenchmarkBeta,
    PositionRisk,
    RiskDecomposition,
    RiskLevel,
)
from pricerisk.quant_engine.config import TRADING_DAYS_PER_YEAR, RiskParameters


logger = logging.getLogger(__name__)

ANNUALIZATION = math.sqrt(TRADING_DAYS_PER_YEAR)

# Variances below this are treated as zero
VARIANCE_EPSILON = 1e-12

# Percent-valued deviations below this are treated as zero
DEVIATION_EPSILON = 1e-9


# =============================================================================
# SERIES HELPERS
# =============================================================================


def close_series(points: Sequence[PricePoint]) -> pd.Series:
    """Positive closes indexed by date, ascending, one value per date."""
    closes = {p.date: float(p.close_price) for p in points if p.close_price > 0}
    series = pd.Series(closes, dtype=float)
    return series.sort_index()


def daily_returns(closes: pd.Series) -> pd.Series:
    """Simple returns ``(p_t - p_{t-1}) / p_{t-1}``."""
    return closes.pct_change().dropna()


def aligned_returns(asset: pd.Series, benchmark: pd.Series) -> pd.DataFrame:
    """Returns of both close series over their common dates."""
    closes = pd.concat(
        [asset.rename("asset"), benchmark.rename("benchmark")],
        axis=1,
        join="inner",
    ).dropna()
    return closes.pct_change().dropna()


# =============================================================================
# METRICS
# =============================================================================


def annualized_volatility(returns: pd.Series) -> float:
    """Sample standard deviation (ddof=1), annualized, in percent."""
    if len(returns) < 2:
        return 0.0
    vol = float(returns.std(ddof=1)) * ANNUALIZATION * 100
    return 0.0 if vol < DEVIATION_EPSILON else vol


def max_drawdown(closes: pd.Series) -> float:
    """Deepest peak-to-trough decline in percent (always <= 0)."""
    if closes.empty:
        return 0.0
    running_peak = closes.cummax()
    drawdowns = (closes - running_peak) / running_peak
    return min(float(drawdowns.min()) * 100, 0.0)


def beta(asset: pd.Series, benchmark: pd.Series, min_observations: int = 20) -> float | None:
    """
    Beta of the asset against a benchmark, from date-aligned returns.

    Parameters
    ----------
    asset, benchmark : pd.Series
        Close series indexed by date.
    min_observations : int
        Aligned returns required.

    Returns
    -------
    float | None
        ``cov / var_b``, or None with too few observations or a flat benchmark.
    """
    aligned = aligned_returns(asset, benchmark)
    if len(aligned) < min_observations:
        return None

    a = aligned["asset"].to_numpy()
    b = aligned["benchmark"].to_numpy()
    var_b = float(np.mean((b - b.mean()) ** 2))
    if var_b < VARIANCE_EPSILON:
        return None

    cov = float(np.mean((a - a.mean()) * (b - b.mean())))
    return cov / var_b


def risk_decomposition(
    asset: pd.Series,
    benchmark: pd.Series,
    volatility: float,
) -> RiskDecomposition:
    """
    Split total volatility into systematic and idiosyncratic parts.

    Uses ``R^2 = corr^2`` of aligned returns and the asset's own daily
    variance, so that ``systematic^2 + idiosyncratic^2 = volatility^2``.
    """
    aligned = aligned_returns(asset, benchmark)
    a = aligned["asset"].to_numpy()
    b = aligned["benchmark"].to_numpy()

    sigma_a = float(a.std())
    sigma_b = float(b.std())
    if sigma_a ** 2 < VARIANCE_EPSILON or sigma_b ** 2 < VARIANCE_EPSILON:
        r_squared = 0.0
    else:
        corr = float(np.mean((a - a.mean()) * (b - b.mean()))) / (sigma_a * sigma_b)
        r_squared = min(max(corr ** 2, 0.0), 1.0)

    daily_variance = (volatility / 100 / ANNUALIZATION) ** 2
    systematic = math.sqrt(r_squared * daily_variance) * ANNUALIZATION * 100
    idiosyncratic = math.sqrt((1 - r_squared) * daily_variance) * ANNUALIZATION * 100

    return RiskDecomposition(
        systematic_risk=systematic,
        idiosyncratic_risk=idiosyncratic,
        r_squared=r_squared,
        total_risk=volatility,
    )


def annualized_return(returns: pd.Series) -> float | None:
    """Mean daily return x 252, in percent."""
    if returns.empty:
        return None
    return float(returns.mean()) * TRADING_DAYS_PER_YEAR * 100


def sharpe_ratio(
    ann_return: float | None,
    volatility: float,
    risk_free_rate: float,
) -> float | None:
    if ann_return is None or volatility < DEVIATION_EPSILON:
        return None
    return (ann_return - risk_free_rate * 100) / volatility


def downside_deviation(returns: pd.Series, mar: float = 0.0) -> float:
    """Annualized target semi-deviation below ``mar``, in percent."""
    if returns.empty:
        return 0.0
    shortfall = np.minimum(returns.to_numpy() - mar, 0.0)
    return math.sqrt(float(np.mean(shortfall ** 2))) * ANNUALIZATION * 100


def sortino_ratio(
    returns: pd.Series,
    ann_return: float | None,
    risk_free_rate: float,
) -> float | None:
    downside = downside_deviation(returns)
    if ann_return is None or downside < DEVIATION_EPSILON:
        return None
    return (ann_return - risk_free_rate * 100) / downside


def historical_var(returns: pd.Series, confidence: float) -> float | None:
    """
    Historical-simulation VaR at ``confidence`` in percent, clamped to <= 0.

    Picks the sorted return at index ``floor(n * (1 - confidence))``.
    """
    if returns.empty:
        return None
    ordered = np.sort(returns.to_numpy())
    idx = min(int(math.floor(len(ordered) * (1 - confidence))), len(ordered) - 1)
    return min(float(ordered[idx]) * 100, 0.0)


def expected_shortfall(returns: pd.Series, confidence: float) -> float | None:
    """Mean of returns at or below the VaR threshold, clamped to <= VaR."""
    var = historical_var(returns, confidence)
    if var is None:
        return None

    ordered = np.sort(returns.to_numpy())
    idx = min(int(math.floor(len(ordered) * (1 - confidence))), len(ordered) - 1)
    tail = ordered[ordered <= ordered[idx]]
    es = float(tail.mean()) * 100
    return min(es, var)


# =============================================================================
# SCORE
# =============================================================================


def _normalized(value: float, saturation: float) -> float:
    return min(abs(value) / saturation, 1.0) * 100


def score_risk(
    volatility: float,
    max_drawdown: float,
    beta: float | None,
    value_at_risk: float | None,
) -> float:
    """
    Composite 0-100 risk score.

    40% volatility (saturates at 50%), 30% drawdown (at -50%), 20% beta
    (at 2.0), 10% VaR95 (at -10%). Missing beta or VaR contribute 0.
    """
    score = 0.4 * _normalized(volatility, 50.0)
    score += 0.3 * _normalized(max_drawdown, 50.0)
    if beta is not None:
        score += 0.2 * _normalized(beta, 2.0)
    if value_at_risk is not None:
        score += 0.1 * _normalized(value_at_risk, 10.0)
    return min(score, 100.0)


def risk_level_for(score: float, params: RiskParameters | None = None) -> RiskLevel:
    params = params or RiskParameters()
    if score < params.risk_level_low_max:
        return RiskLevel.LOW
    if score < params.risk_level_moderate_max:
        return RiskLevel.MODERATE
    return RiskLevel.HIGH


# =============================================================================
# POSITION RISK
# =============================================================================


def compute(
    ticker: str,
    price_window: Sequence[PricePoint],
    benchmark_windows: Mapping[str, Sequence[PricePoint]],
    *,
    primary_benchmark: str | None = None,
    days: int | None = None,
    params: RiskParameters | None = None,
) -> PositionRisk:
    """
    Compute every position metric for one price window.

    Parameters
    ----------
    ticker : str
        Symbol the window belongs to.
    price_window : Sequence[PricePoint]
        Closes, any order.
    benchmark_windows : Mapping[str, Sequence[PricePoint]]
        Closes per benchmark symbol. Missing or short benchmarks yield a
        None beta for that benchmark.
    primary_benchmark : str, optional
        Benchmark for ``beta`` and the decomposition. Defaults to
        ``params.default_benchmark``.
    days : int, optional
        Requested window length, echoed in the result.
    params : RiskParameters, optional
        Rates, minimum sizes and level boundaries.

    Raises
    ------
    InsufficientDataError
        Fewer than ``params.min_price_points`` usable closes.
    """
    params = params or RiskParameters()
    ticker = ticker.upper()
    primary = (primary_benchmark or params.default_benchmark).upper()

    closes = close_series(price_window)
    if len(closes) < params.min_price_points:
        raise InsufficientDataError(
            f"{ticker} has {len(closes)} usable closes, need {params.min_price_points}",
            ticker=ticker,
            available=len(closes),
            required=params.min_price_points,
        )

    returns = daily_returns(closes)
    volatility = annualized_volatility(returns)
    drawdown = max_drawdown(closes)

    benchmark_closes = {
        symbol.upper(): close_series(points)
        for symbol, points in benchmark_windows.items()
    }

    betas: dict[str, float | None] = {}
    for symbol in dict.fromkeys([*params.benchmarks, primary]):
        bench = benchmark_closes.get(symbol)
        if bench is None or bench.empty:
            betas[symbol] = None
        else:
            betas[symbol] = beta(closes, bench, params.min_beta_observations)

    primary_beta = betas.get(primary)
    decomposition = None
    if primary_beta is not None:
        decomposition = risk_decomposition(closes, benchmark_closes[primary], volatility)

    ann_return = annualized_return(returns)
    var_95 = historical_var(returns, 0.95)
    var_99 = historical_var(returns, 0.99)

    score = score_risk(volatility, drawdown, primary_beta, var_95)
    as_of: date = closes.index[-1]

    logger.debug(
        f"{ticker}: vol={volatility:.2f}% dd={drawdown:.2f}% beta={primary_beta} score={score:.1f}"
    )

    return PositionRisk(
        ticker=ticker,
        days=days or len(closes),
        data_points=len(closes),
        as_of=as_of,
        benchmark=primary,
        volatility=volatility,
        max_drawdown=drawdown,
        beta=primary_beta,
        benchmark_betas=[BenchmarkBeta(benchmark=s, beta=b) for s, b in betas.items()],
        risk_decomposition=decomposition,
        sharpe=sharpe_ratio(ann_return, volatility, params.risk_free_rate),
        sortino=sortino_ratio(returns, ann_return, params.risk_free_rate),
        annualized_return=ann_return,
        value_at_risk=var_95,
        var_95=var_95,
        var_99=var_99,
        expected_shortfall_95=expected_shortfall(returns, 0.95),
        expected_shortfall_99=expected_shortfall(returns, 0.99),
        risk_score=score,
        risk_level=risk_level_for(score, params),
    )
