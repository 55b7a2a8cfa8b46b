"""
Risk pipeline: the public entry points of the analytics stack.

Wires the price acquisition service, the stores and the quant engine
together. Everything below this module is either I/O-free math
(``pricerisk.quant_engine``) or a single store.

Usage:
    from pricerisk.services.risk_pipeline import get_risk_pipeline

    pipeline = get_risk_pipeline()

    risk = await pipeline.get_position_risk("AAPL", days=90)
    portfolio = await pipeline.get_portfolio_risk(portfolio_id=1)
    analysis = await pipeline.get_optimization(portfolio_id=1)
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Mapping
from datetime import date, datetime, timedelta
from typing import Any, Optional

from pricerisk.cache import Cache
from pricerisk.core.config import Settings, settings as default_settings
from pricerisk.core.exceptions import AppException, InsufficientDataError, NotFoundError
from pricerisk.core.logging import get_logger
from pricerisk.domain.optimization import OptimizationAnalysis, SimulationResult
from pricerisk.domain.price import Holding, PricePoint
from pricerisk.domain.risk import (
    CorrelationMatrixWithStats,
    ExcludedPosition,
    PortfolioRisk,
    PositionRisk,
    RiskAlert,
    RiskSnapshot,
    RiskThresholdSettings,
    TrendAggregation,
)
from pricerisk.quant_engine import (
    OptimizationParameters,
    PositionValuation,
    aggregate,
    aggregate_trend,
    analyze,
    build_snapshots,
    compute,
    correlation_matrix,
    detect_risk_increases,
    select_top_positions,
    simulate,
)
from pricerisk.repositories import (
    portfolios_orm,
    risk_snapshots_orm,
    risk_thresholds_orm,
)
from pricerisk.services.prices import (
    PriceAcquisitionService,
    get_price_acquisition_service,
    utc_now,
)


logger = get_logger("services.risk_pipeline")


class RiskPipeline:
    """
    Position, portfolio, correlation, optimization and history entry points.

    Store arguments are objects exposing the async functions of the
    matching repository module; the modules are the production stores.
    ``cache`` is optional; without it optimization results are not cached.
    """

    def __init__(
        self,
        prices: PriceAcquisitionService | None = None,
        portfolio_store: Any = portfolios_orm,
        threshold_store: Any = risk_thresholds_orm,
        snapshot_store: Any = risk_snapshots_orm,
        cache: Cache | None = None,
        config: Settings | None = None,
        now: Callable[[], datetime] = utc_now,
    ):
        self.prices = prices or get_price_acquisition_service()
        self.portfolio_store = portfolio_store
        self.threshold_store = threshold_store
        self.snapshot_store = snapshot_store
        self.cache = cache
        self.config = config or default_settings
        self.params = OptimizationParameters.from_settings(self.config)
        self.now = now

    # =========================================================================
    # Positions
    # =========================================================================

    async def _benchmark_windows(
        self, benchmarks: list[str], days: int
    ) -> dict[str, list[PricePoint]]:
        async def load(symbol: str) -> tuple[str, list[PricePoint]]:
            try:
                return symbol, await self.prices.get_window(symbol, days)
            except AppException as e:
                # Beta against this benchmark becomes None
                logger.warning(f"Benchmark {symbol} unavailable: {e.message}")
                return symbol, []

        return dict(await asyncio.gather(*(load(s) for s in benchmarks)))

    async def _compute_position(
        self,
        ticker: str,
        days: int | None = None,
        benchmark: str | None = None,
    ) -> tuple[PositionRisk, list[PricePoint]]:
        days = days or self.config.risk_window_days
        primary = (benchmark or self.config.default_benchmark).upper()
        benchmarks = list(dict.fromkeys([*self.config.risk_benchmarks, primary]))

        window = await self.prices.get_window(ticker, days)
        benchmark_windows = await self._benchmark_windows(benchmarks, days)

        risk = compute(
            ticker,
            window,
            benchmark_windows,
            primary_benchmark=primary,
            days=days,
            params=self.params.portfolio.risk,
        )
        return risk, window

    async def get_position_risk(
        self,
        ticker: str,
        days: int | None = None,
        benchmark: str | None = None,
    ) -> PositionRisk:
        """
        Risk metrics for one ticker over the last ``days`` calendar days.

        Raises:
            ExcludedTickerError: ticker is never fetched
            ProviderBlockedError: no cached data and the provider is unavailable
            InsufficientDataError: too few closes in the window
        """
        risk, _ = await self._compute_position(ticker, days, benchmark)
        return risk

    # =========================================================================
    # Portfolios
    # =========================================================================

    async def _holdings(self, portfolio_id: int) -> list[Holding]:
        holdings = await self.portfolio_store.get_holdings(portfolio_id)
        if holdings:
            return holdings
        if not await self.portfolio_store.portfolio_exists(portfolio_id):
            raise NotFoundError(f"Portfolio {portfolio_id} not found")
        raise NotFoundError(
            f"Portfolio {portfolio_id} has no holdings",
            details={"portfolio_id": portfolio_id},
        )

    async def _value_holding(
        self,
        holding: Holding,
        window: list[PricePoint] | None = None,
    ) -> float:
        """quantity x latest close, falling back to quantity x avg_cost."""
        latest = window[-1] if window else await self.prices.get_latest(holding.ticker)
        if latest is not None:
            return holding.quantity * latest.close_price
        if holding.avg_cost is not None:
            return holding.quantity * holding.avg_cost
        return 0.0

    async def get_portfolio_risk(
        self,
        portfolio_id: int,
        days: int | None = None,
    ) -> PortfolioRisk:
        """
        Aggregated risk for every holding of a portfolio.

        Positions whose risk cannot be computed are listed in
        ``excluded_positions`` with the error code as the reason.

        Raises:
            NotFoundError: unknown portfolio or no holdings
            InsufficientDataError: no position could be evaluated
        """
        holdings = await self._holdings(portfolio_id)
        thresholds = await self.threshold_store.get_thresholds(portfolio_id)
        semaphore = asyncio.Semaphore(self.config.pipeline_concurrency)

        async def evaluate(holding: Holding) -> PositionValuation | ExcludedPosition:
            async with semaphore:
                try:
                    risk, window = await self._compute_position(holding.ticker, days)
                except AppException as e:
                    reason, message = e.error_code, e.message
                except Exception as e:
                    logger.exception(f"Risk computation failed for {holding.ticker}")
                    reason, message = "INTERNAL_ERROR", str(e)
                else:
                    return PositionValuation(
                        ticker=holding.ticker,
                        market_value=await self._value_holding(holding, window),
                        risk=risk,
                        holding_name=holding.name,
                    )

            return ExcludedPosition(
                ticker=holding.ticker,
                reason=reason,
                message=message,
                market_value=await self._value_holding(holding),
            )

        results = await asyncio.gather(*(evaluate(h) for h in holdings))
        positions = [r for r in results if isinstance(r, PositionValuation)]
        excluded = [r for r in results if isinstance(r, ExcludedPosition)]

        portfolio_risk = aggregate(
            portfolio_id,
            positions,
            thresholds=thresholds,
            excluded=excluded,
            params=self.params.portfolio,
            computed_at=self.now(),
        )
        logger.info(
            f"Portfolio {portfolio_id}: score={portfolio_risk.portfolio_risk_score:.1f} "
            f"({len(portfolio_risk.position_risks)} positions, {len(excluded)} excluded)"
        )
        return portfolio_risk

    # =========================================================================
    # Correlation
    # =========================================================================

    async def _correlation(
        self,
        portfolio_risk: PortfolioRisk,
        days: int | None = None,
    ) -> CorrelationMatrixWithStats:
        days = days or self.config.correlation_days
        tickers = select_top_positions(portfolio_risk, self.config.correlation_max_positions)
        windows = await self.prices.price_store.fetch_windows(tickers, days)
        return correlation_matrix(
            windows,
            weights=portfolio_risk.weights,
            portfolio_id=portfolio_risk.portfolio_id,
            params=self.params.portfolio,
        )

    async def get_correlation_matrix(
        self,
        portfolio_id: int,
        days: int | None = None,
    ) -> CorrelationMatrixWithStats:
        """Correlation of daily returns across the largest positions."""
        portfolio_risk = await self.get_portfolio_risk(portfolio_id)
        return await self._correlation(portfolio_risk, days)

    async def _correlation_or_none(
        self, portfolio_risk: PortfolioRisk
    ) -> CorrelationMatrixWithStats | None:
        try:
            return await self._correlation(portfolio_risk)
        except InsufficientDataError as e:
            logger.info(
                f"Portfolio {portfolio_risk.portfolio_id}: no correlation data ({e.message})"
            )
            return None

    # =========================================================================
    # Optimization
    # =========================================================================

    async def get_optimization(
        self,
        portfolio_id: int,
        refresh: bool = False,
    ) -> OptimizationAnalysis:
        """
        Optimization recommendations, served from the cache when present.

        Args:
            refresh: Ignore any cached result and recompute
        """
        key = f"portfolio:{portfolio_id}"
        if self.cache is not None and not refresh:
            cached = await self.cache.get(key)
            if cached is not None:
                return OptimizationAnalysis.model_validate(cached)

        portfolio_risk = await self.get_portfolio_risk(portfolio_id)
        analysis = analyze(
            portfolio_risk,
            correlation=await self._correlation_or_none(portfolio_risk),
            params=self.params,
            generated_at=self.now(),
        )

        if self.cache is not None:
            await self.cache.set(key, analysis.model_dump(mode="json"))
        return analysis

    async def simulate_rebalance(
        self,
        portfolio_id: int,
        target_weights: Mapping[str, float],
    ) -> SimulationResult:
        """
        What-if metrics for target weights over the current positions.

        Raises:
            ValidationError: unknown tickers or unusable weights
        """
        portfolio_risk = await self.get_portfolio_risk(portfolio_id)
        return simulate(
            portfolio_risk,
            target_weights,
            correlation=await self._correlation_or_none(portfolio_risk),
            params=self.params,
        )

    # =========================================================================
    # Thresholds
    # =========================================================================

    async def get_thresholds(self, portfolio_id: int) -> RiskThresholdSettings:
        return await self.threshold_store.get_thresholds(portfolio_id)

    async def update_thresholds(
        self,
        portfolio_id: int,
        thresholds: RiskThresholdSettings,
    ) -> RiskThresholdSettings:
        """Store thresholds and drop the cached optimization for the portfolio."""
        saved = await self.threshold_store.upsert_thresholds(portfolio_id, thresholds)
        if self.cache is not None:
            await self.cache.delete(f"portfolio:{portfolio_id}")
        return saved

    # =========================================================================
    # History
    # =========================================================================

    async def snapshot_portfolio(
        self,
        portfolio_id: int,
        snapshot_date: date | None = None,
    ) -> int:
        """
        Persist today's portfolio and position snapshots.

        Returns:
            Number of new snapshots (existing ones are never overwritten)
        """
        portfolio_risk = await self.get_portfolio_risk(portfolio_id)
        snapshots = build_snapshots(portfolio_risk, snapshot_date or self.now().date())
        return await self.snapshot_store.insert_snapshots(snapshots)

    async def _history(
        self,
        portfolio_id: int,
        ticker: str | None,
        days: int,
    ) -> list[RiskSnapshot]:
        end = self.now().date()
        return await self.snapshot_store.fetch_history(
            portfolio_id, end - timedelta(days=days), end, ticker
        )

    async def detect_risk_increases(
        self,
        portfolio_id: int,
        ticker: str | None = None,
        lookback_days: int = 30,
        threshold_pct: float = 20.0,
    ) -> list[RiskAlert]:
        history = await self._history(portfolio_id, ticker, lookback_days)
        return detect_risk_increases(history, threshold_pct)

    async def get_risk_trend(
        self,
        portfolio_id: int,
        ticker: str | None = None,
        days: int = 90,
        aggregation: TrendAggregation = TrendAggregation.DAILY,
    ) -> list[RiskSnapshot]:
        history = await self._history(portfolio_id, ticker, days)
        return aggregate_trend(history, aggregation)


# Singleton instance
_instance: Optional[RiskPipeline] = None


def get_risk_pipeline() -> RiskPipeline:
    """Get singleton RiskPipeline with the Valkey optimization cache."""
    global _instance
    if _instance is None:
        _instance = RiskPipeline(
            cache=Cache(
                prefix="optimization",
                default_ttl=default_settings.optimization_cache_ttl,
            ),
        )
    return _instance
