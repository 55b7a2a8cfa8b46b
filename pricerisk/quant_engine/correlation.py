"""
Return correlation analysis.

Pearson correlation of daily returns over the dates common to every
ticker. Tickers whose returns have no variance are excluded instead of
being given a made-up correlation.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence

import numpy as np
import pandas as pd

from pricerisk.core.exceptions import InsufficientDataError
from pricerisk.domain.price import PricePoint
from pricerisk.domain.risk import (
    CorrelationMatrixWithStats,
    CorrelationPair,
    CorrelationStatistics,
    ExcludedPosition,
    PortfolioRisk,
)
from pricerisk.quant_engine.config import PortfolioParameters
from pricerisk.quant_engine.portfolio_risk import (
    adjusted_diversification_score,
    diversification_score,
)
from pricerisk.quant_engine.risk_metrics import VARIANCE_EPSILON, close_series


logger = logging.getLogger(__name__)

# Two returns need three closes
MIN_CLOSES = 3


def select_top_positions(portfolio_risk: PortfolioRisk, max_positions: int) -> list[str]:
    """Tickers of the largest positions by weight."""
    ranked = sorted(portfolio_risk.position_risks, key=lambda p: p.weight, reverse=True)
    return [p.ticker for p in ranked[:max_positions]]


def average_abs_correlation(pairs: Sequence[CorrelationPair]) -> float | None:
    if not pairs:
        return None
    return float(np.mean([abs(p.correlation) for p in pairs]))


def _statistics(
    pairs: list[CorrelationPair],
    high_threshold: float,
    weights: Mapping[str, float] | None,
    params: PortfolioParameters,
) -> CorrelationStatistics:
    values = np.array([p.correlation for p in pairs], dtype=float)

    base = adjusted = None
    if weights:
        base = diversification_score(list(weights.values()), params.diversification_full_count)
        adjusted = adjusted_diversification_score(base, average_abs_correlation(pairs))

    return CorrelationStatistics(
        average_correlation=float(values.mean()),
        max_correlation=float(values.max()),
        min_correlation=float(values.min()),
        correlation_std=float(values.std()),
        high_correlation_pairs=[p for p in pairs if abs(p.correlation) > high_threshold],
        diversification_score=base,
        adjusted_diversification_score=adjusted,
    )


def correlation_matrix(
    price_windows: Mapping[str, Sequence[PricePoint]],
    *,
    weights: Mapping[str, float] | None = None,
    portfolio_id: int | None = None,
    params: PortfolioParameters | None = None,
) -> CorrelationMatrixWithStats:
    """
    Pairwise Pearson correlation of daily returns.

    Parameters
    ----------
    price_windows : Mapping[str, Sequence[PricePoint]]
        Closes per ticker.
    weights : Mapping[str, float], optional
        Portfolio weights; when given, the statistics include the
        weight-only and correlation-adjusted diversification scores.
    portfolio_id : int, optional
        Echoed in the result.

    Raises
    ------
    InsufficientDataError
        Fewer than two tickers with overlapping, non-constant returns.
    """
    params = params or PortfolioParameters()
    excluded: list[ExcludedPosition] = []

    closes: dict[str, pd.Series] = {}
    for ticker, points in price_windows.items():
        series = close_series(points)
        if len(series) < MIN_CLOSES:
            excluded.append(
                ExcludedPosition(
                    ticker=ticker.upper(),
                    reason="INSUFFICIENT_DATA",
                    message=f"{len(series)} closes in window",
                )
            )
            continue
        closes[ticker.upper()] = series

    if len(closes) < 2:
        raise InsufficientDataError(
            "Correlation needs at least two tickers with price history",
            available=len(closes),
            required=2,
        )

    frame = pd.concat(closes, axis=1, join="inner").dropna()
    returns = frame.pct_change().dropna()
    if len(returns) < 2:
        raise InsufficientDataError(
            "Tickers share fewer than two return observations",
            available=len(returns),
            required=2,
        )

    variances = returns.var(ddof=1)
    flat = [t for t in returns.columns if not variances[t] > VARIANCE_EPSILON]
    for ticker in flat:
        excluded.append(
            ExcludedPosition(
                ticker=ticker,
                reason="ZERO_VARIANCE",
                message="Returns are constant over the window",
            )
        )
    returns = returns.drop(columns=flat)

    tickers = list(returns.columns)
    if len(tickers) < 2:
        raise InsufficientDataError(
            "Correlation needs at least two tickers with varying returns",
            available=len(tickers),
            required=2,
        )

    corr = returns.corr(method="pearson").clip(-1.0, 1.0)
    matrix = corr.to_numpy(copy=True)
    np.fill_diagonal(matrix, 1.0)

    pairs = [
        CorrelationPair(ticker1=tickers[i], ticker2=tickers[j], correlation=float(matrix[i, j]))
        for i in range(len(tickers))
        for j in range(i + 1, len(tickers))
    ]

    logger.debug(
        f"Correlation over {len(tickers)} tickers, {len(returns)} observations, "
        f"{len(excluded)} excluded"
    )

    return CorrelationMatrixWithStats(
        portfolio_id=portfolio_id,
        tickers=tickers,
        matrix=matrix.tolist(),
        correlations=pairs,
        statistics=_statistics(pairs, params.high_correlation_threshold, weights, params),
        observations=len(returns),
        excluded=excluded,
    )
