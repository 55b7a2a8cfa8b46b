"""
Tests for the risk pipeline entry points, run against in-memory stores.
"""

from datetime import timedelta

import pytest

from conftest import (
    T0,
    FakeCache,
    FakePortfolioStore,
    FakeProvider,
    FakeSnapshotStore,
    FakeThresholdStore,
    closes_from_returns,
    random_returns,
)
from pricerisk.core.exceptions import NotFoundError, ValidationError
from pricerisk.domain.price import Holding
from pricerisk.domain.risk import (
    RiskLevel,
    RiskSnapshot,
    RiskThresholdSettings,
    SnapshotType,
    TrendAggregation,
)
from pricerisk.services import risk_pipeline
from pricerisk.services.risk_pipeline import RiskPipeline


@pytest.fixture
def provider(clock):
    return FakeProvider(
        closes={
            "AAPL": closes_from_returns(random_returns(119, seed=1)),
            "MSFT": closes_from_returns(random_returns(119, seed=2)),
            "SPY": closes_from_returns(random_returns(119, seed=3, std=0.01)),
        },
        clock=clock,
    )


@pytest.fixture
def portfolio_store():
    return FakePortfolioStore(
        {
            1: [
                Holding(ticker="AAPL", quantity=10),
                Holding(ticker="MSFT", quantity=5, name="Microsoft"),
                Holding(ticker="FIDXX", quantity=100, avg_cost=1.0),
                Holding(ticker="GONE", quantity=3, avg_cost=10.0),
            ],
            2: [],
        }
    )


@pytest.fixture
def snapshot_store():
    return FakeSnapshotStore()


@pytest.fixture
def cache():
    return FakeCache()


@pytest.fixture
def pipeline(price_service, portfolio_store, snapshot_store, cache, test_settings, clock):
    return RiskPipeline(
        prices=price_service,
        portfolio_store=portfolio_store,
        threshold_store=FakeThresholdStore(),
        snapshot_store=snapshot_store,
        cache=cache,
        config=test_settings,
        now=clock,
    )


def history_snapshot(days_ago: int, risk_score: float) -> RiskSnapshot:
    return RiskSnapshot(
        portfolio_id=1,
        ticker=None,
        snapshot_date=T0.date() - timedelta(days=days_ago),
        snapshot_type=SnapshotType.PORTFOLIO,
        volatility=20.0,
        max_drawdown=-10.0,
        risk_score=risk_score,
        risk_level=RiskLevel.LOW,
    )


class TestPositionRisk:
    @pytest.mark.asyncio
    async def test_computes_with_benchmark_beta(self, pipeline):
        risk = await pipeline.get_position_risk("aapl")

        assert risk.ticker == "AAPL"
        assert risk.benchmark == "SPY"
        assert risk.beta is not None
        assert 0 <= risk.risk_score <= 100

    @pytest.mark.asyncio
    async def test_missing_benchmark_gives_null_beta(self, pipeline, provider):
        del provider.closes["SPY"]

        risk = await pipeline.get_position_risk("AAPL")

        assert risk.beta is None


class TestPortfolioRisk:
    @pytest.mark.asyncio
    async def test_unusable_positions_excluded(self, pipeline):
        result = await pipeline.get_portfolio_risk(1)

        assert {p.ticker for p in result.position_risks} == {"AAPL", "MSFT"}
        excluded = {e.ticker: e for e in result.excluded_positions}
        assert excluded["FIDXX"].reason == "TICKER_EXCLUDED"
        assert excluded["GONE"].reason == "PROVIDER_BLOCKED"
        assert excluded["GONE"].market_value == pytest.approx(30.0)
        assert sum(result.weights.values()) == pytest.approx(1.0)
        assert result.computed_at == T0

    @pytest.mark.asyncio
    async def test_unexpected_error_becomes_internal_error(self, pipeline, mocker):
        real_compute = risk_pipeline.compute

        def flaky(ticker, *args, **kwargs):
            if ticker == "MSFT":
                raise ZeroDivisionError("bad math")
            return real_compute(ticker, *args, **kwargs)

        mocker.patch("pricerisk.services.risk_pipeline.compute", side_effect=flaky)

        result = await pipeline.get_portfolio_risk(1)

        excluded = {e.ticker: e.reason for e in result.excluded_positions}
        assert excluded["MSFT"] == "INTERNAL_ERROR"

    @pytest.mark.asyncio
    async def test_unknown_portfolio(self, pipeline):
        with pytest.raises(NotFoundError, match="not found"):
            await pipeline.get_portfolio_risk(99)

    @pytest.mark.asyncio
    async def test_empty_portfolio(self, pipeline):
        with pytest.raises(NotFoundError) as exc_info:
            await pipeline.get_portfolio_risk(2)
        assert exc_info.value.details == {"portfolio_id": 2}

    @pytest.mark.asyncio
    async def test_correlation_over_positions(self, pipeline):
        result = await pipeline.get_correlation_matrix(1)

        assert set(result.tickers) == {"AAPL", "MSFT"}
        assert result.statistics.diversification_score is not None


class TestOptimization:
    @pytest.mark.asyncio
    async def test_result_cached(self, pipeline, cache, mocker):
        first = await pipeline.get_optimization(1)
        assert "portfolio:1" in cache.data

        spy = mocker.spy(pipeline, "get_portfolio_risk")
        second = await pipeline.get_optimization(1)

        spy.assert_not_called()
        assert second.portfolio_id == first.portfolio_id
        assert len(second.recommendations) == len(first.recommendations)

    @pytest.mark.asyncio
    async def test_refresh_bypasses_cache(self, pipeline, mocker):
        await pipeline.get_optimization(1)
        spy = mocker.spy(pipeline, "get_portfolio_risk")

        await pipeline.get_optimization(1, refresh=True)

        spy.assert_called_once_with(1)

    @pytest.mark.asyncio
    async def test_threshold_update_invalidates_cache(self, pipeline, cache):
        await pipeline.get_optimization(1)
        strict = RiskThresholdSettings(volatility_warning=1.0, volatility_critical=2.0)

        await pipeline.update_thresholds(1, strict)

        assert "portfolio:1" not in cache.data
        assert await pipeline.get_thresholds(1) == strict
        portfolio_risk = await pipeline.get_portfolio_risk(1)
        assert any(v.metric_name == "Volatility" for v in portfolio_risk.violations)

    @pytest.mark.asyncio
    async def test_simulate_rebalance(self, pipeline):
        result = await pipeline.simulate_rebalance(1, {"AAPL": 1.0, "MSFT": 1.0})
        assert result.weights == pytest.approx({"AAPL": 0.5, "MSFT": 0.5})

    @pytest.mark.asyncio
    async def test_simulate_rejects_excluded_ticker(self, pipeline):
        with pytest.raises(ValidationError):
            await pipeline.simulate_rebalance(1, {"FIDXX": 1.0})


class TestHistory:
    @pytest.mark.asyncio
    async def test_snapshot_is_insert_only(self, pipeline, snapshot_store):
        assert await pipeline.snapshot_portfolio(1) == 3
        assert await pipeline.snapshot_portfolio(1) == 0
        assert len(snapshot_store.rows) == 3

    @pytest.mark.asyncio
    async def test_detect_increases_within_lookback(self, pipeline, snapshot_store):
        await snapshot_store.insert_snapshots(
            [
                history_snapshot(60, 10.0),
                history_snapshot(20, 30.0),
                history_snapshot(10, 40.0),
            ]
        )

        alerts = await pipeline.detect_risk_increases(1, lookback_days=30)

        assert [(a.previous_value, a.current_value) for a in alerts] == [(30.0, 40.0)]

    @pytest.mark.asyncio
    async def test_weekly_trend(self, pipeline, snapshot_store):
        await snapshot_store.insert_snapshots(
            [history_snapshot(d, float(d)) for d in (15, 14, 8, 1)]
        )

        trend = await pipeline.get_risk_trend(1, aggregation=TrendAggregation.WEEKLY)

        assert [s.risk_score for s in trend] == [15.0, 8.0, 1.0]
