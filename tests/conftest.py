"""Pytest configuration and fixtures.

The stores here are in-memory stand-ins exposing the same async functions
as the ORM repositories, so services run unchanged against them.
"""

from __future__ import annotations

import asyncio
from datetime import date, datetime, timedelta, timezone
from typing import Sequence

import numpy as np
import pytest

from pricerisk.core.config import Settings
from pricerisk.domain.price import FailureType, FetchFailure, Holding, PricePoint
from pricerisk.domain.risk import PositionRisk, RiskThresholdSettings
from pricerisk.quant_engine.risk_metrics import risk_level_for
from pricerisk.services.data_providers import ProviderError
from pricerisk.services.prices import PriceAcquisitionService


T0 = datetime(2026, 3, 2, 15, 0, tzinfo=timezone.utc)


# =============================================================================
# Clock
# =============================================================================


class FakeClock:
    """Callable clock; ``advance`` moves it forward."""

    def __init__(self, start: datetime = T0):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> datetime:
        self.current += timedelta(**kwargs)
        return self.current


# =============================================================================
# Price data helpers
# =============================================================================


def make_points(
    ticker: str,
    closes: Sequence[float],
    end: date = T0.date(),
    fetched_at: datetime | None = None,
) -> list[PricePoint]:
    """One point per calendar day, the last one on ``end``."""
    start = end - timedelta(days=len(closes) - 1)
    return [
        PricePoint(
            ticker=ticker,
            date=start + timedelta(days=i),
            close_price=close,
            fetched_at=fetched_at,
        )
        for i, close in enumerate(closes)
    ]


def closes_from_returns(returns: Sequence[float], start: float = 100.0) -> list[float]:
    return list(start * np.cumprod(np.concatenate([[1.0], 1 + np.asarray(returns)])))


def random_returns(n: int, seed: int = 42, mean: float = 0.0005, std: float = 0.02) -> np.ndarray:
    return np.random.RandomState(seed).normal(mean, std, n)


def make_position_risk(
    ticker: str,
    *,
    volatility: float = 20.0,
    max_drawdown: float = -10.0,
    beta: float | None = 1.0,
    sharpe: float | None = 0.5,
    risk_score: float = 30.0,
    value_at_risk: float | None = -2.0,
) -> PositionRisk:
    return PositionRisk(
        ticker=ticker,
        days=90,
        data_points=62,
        as_of=T0.date(),
        benchmark="SPY",
        volatility=volatility,
        max_drawdown=max_drawdown,
        beta=beta,
        sharpe=sharpe,
        value_at_risk=value_at_risk,
        var_95=value_at_risk,
        risk_score=risk_score,
        risk_level=risk_level_for(risk_score),
    )


# =============================================================================
# Fake stores
# =============================================================================


class FakePriceStore:
    """In-memory Price Store; writes stamp ``fetched_at`` from the clock."""

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.rows: dict[str, dict[date, PricePoint]] = {}
        self.upsert_calls = 0

    def seed(self, points: Sequence[PricePoint], fetched_at: datetime | None = None) -> None:
        stamp = fetched_at or self.clock()
        for point in points:
            self.rows.setdefault(point.ticker, {})[point.date] = point.model_copy(
                update={"fetched_at": stamp}
            )

    async def upsert_points(self, ticker: str, points: Sequence[PricePoint]) -> int:
        self.upsert_calls += 1
        self.seed(
            [p.model_copy(update={"ticker": ticker.upper()}) for p in points],
            fetched_at=self.clock(),
        )
        return len(points)

    async def fetch_latest(self, ticker: str) -> PricePoint | None:
        rows = self.rows.get(ticker.upper())
        if not rows:
            return None
        return rows[max(rows)]

    async def fetch_window(
        self, ticker: str, n_days: int, end_date: date | None = None
    ) -> list[PricePoint]:
        end = end_date or self.clock().date()
        start = end - timedelta(days=n_days)
        rows = self.rows.get(ticker.upper(), {})
        return [rows[d] for d in sorted(rows) if start <= d <= end]

    async def fetch_windows(
        self, tickers: Sequence[str], n_days: int, end_date: date | None = None
    ) -> dict[str, list[PricePoint]]:
        return {
            t: await self.fetch_window(t, n_days, end_date)
            for t in sorted({t.upper() for t in tickers})
        }


class FakeFailureStore:
    """In-memory Failure Store with the conditional-upsert semantics."""

    def __init__(self):
        self.rows: dict[str, FetchFailure] = {}

    async def get_active_failure(self, ticker: str, now: datetime) -> FetchFailure | None:
        row = self.rows.get(ticker.upper())
        if row is None or now >= row.retry_after:
            return None
        return row

    async def record_failure(
        self,
        ticker: str,
        failure_type: FailureType,
        error_message: str | None,
        attempted_at: datetime,
        retry_after: datetime,
    ) -> FetchFailure:
        ticker = ticker.upper()
        existing = self.rows.get(ticker)
        if existing is not None and existing.last_attempt_at >= attempted_at:
            return existing

        failure = FetchFailure(
            ticker=ticker,
            failure_type=failure_type,
            last_attempt_at=attempted_at,
            retry_after=retry_after,
            consecutive_failures=existing.consecutive_failures + 1 if existing else 1,
            error_message=error_message,
        )
        self.rows[ticker] = failure
        return failure

    async def clear_failure(self, ticker: str, attempted_at: datetime | None = None) -> bool:
        row = self.rows.get(ticker.upper())
        if row is None:
            return False
        if attempted_at is not None and row.last_attempt_at > attempted_at:
            return False
        del self.rows[ticker.upper()]
        return True

    async def list_active(self, now: datetime) -> list[FetchFailure]:
        active = [r for r in self.rows.values() if now < r.retry_after]
        return sorted(active, key=lambda r: r.retry_after, reverse=True)

    async def cleanup_expired(self, now: datetime) -> int:
        expired = [t for t, r in self.rows.items() if r.retry_after <= now]
        for ticker in expired:
            del self.rows[ticker]
        return len(expired)


class FakePortfolioStore:
    def __init__(self, portfolios: dict[int, list[Holding]] | None = None):
        self.portfolios = portfolios or {}
        self.inactive: set[int] = set()

    async def portfolio_exists(self, portfolio_id: int) -> bool:
        return portfolio_id in self.portfolios

    async def list_active_portfolio_ids(self) -> list[int]:
        return sorted(p for p in self.portfolios if p not in self.inactive)

    async def get_holdings(self, portfolio_id: int) -> list[Holding]:
        holdings = self.portfolios.get(portfolio_id, [])
        return sorted((h for h in holdings if h.quantity > 0), key=lambda h: h.ticker)


class FakeThresholdStore:
    def __init__(self):
        self.rows: dict[int, RiskThresholdSettings] = {}

    async def get_thresholds(self, portfolio_id: int) -> RiskThresholdSettings:
        return self.rows.get(portfolio_id, RiskThresholdSettings())

    async def upsert_thresholds(
        self, portfolio_id: int, thresholds: RiskThresholdSettings
    ) -> RiskThresholdSettings:
        self.rows[portfolio_id] = thresholds
        return thresholds


class FakeSnapshotStore:
    def __init__(self):
        self.rows: dict[tuple, object] = {}

    async def insert_snapshots(self, snapshots) -> int:
        inserted = 0
        for snapshot in snapshots:
            key = (
                snapshot.portfolio_id,
                snapshot.ticker,
                snapshot.snapshot_date,
                snapshot.snapshot_type,
            )
            if key not in self.rows:
                self.rows[key] = snapshot
                inserted += 1
        return inserted

    async def fetch_history(self, portfolio_id, start_date, end_date, ticker=None):
        rows = [
            s
            for s in self.rows.values()
            if s.portfolio_id == portfolio_id
            and s.ticker == (ticker.upper() if ticker else None)
            and start_date <= s.snapshot_date <= end_date
        ]
        return sorted(rows, key=lambda s: s.snapshot_date)


class FakeCache:
    """Dict-backed stand-in for ``pricerisk.cache.Cache``."""

    def __init__(self):
        self.data: dict[str, object] = {}

    async def get(self, key: str):
        return self.data.get(key)

    async def set(self, key: str, value, ttl: int | None = None) -> bool:
        self.data[key] = value
        return True

    async def delete(self, key: str) -> bool:
        self.data.pop(key, None)
        return True


# =============================================================================
# Fake provider
# =============================================================================


class FakeProvider:
    """Provider returning canned closes; counts calls per ticker."""

    name = "fake"

    def __init__(
        self,
        closes: dict[str, Sequence[float]] | None = None,
        error: Exception | None = None,
        delay: float = 0.0,
        clock: FakeClock | None = None,
    ):
        self.closes = dict(closes or {})
        self.error = error
        self.delay = delay
        self.clock = clock
        self.calls: list[str] = []

    def call_count(self, ticker: str | None = None) -> int:
        if ticker is None:
            return len(self.calls)
        return self.calls.count(ticker.upper())

    async def fetch_daily_history(self, ticker: str, lookback_days: int) -> list[PricePoint]:
        self.calls.append(ticker.upper())
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        closes = self.closes.get(ticker.upper())
        if closes is None:
            raise ProviderError(ticker, "unexpected ticker")
        end = self.clock().date() if self.clock else T0.date()
        return make_points(ticker, closes, end=end)


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def test_settings() -> Settings:
    """Settings with the documented defaults, independent of the environment."""
    return Settings(
        _env_file=None,
        excluded_tickers=["MANUAL1"],
        excluded_ticker_prefixes=["FID", "DYN"],
        risk_benchmarks=["SPY"],
        default_benchmark="SPY",
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def price_store(clock) -> FakePriceStore:
    return FakePriceStore(clock)


@pytest.fixture
def failure_store() -> FakeFailureStore:
    return FakeFailureStore()


@pytest.fixture
def provider(clock) -> FakeProvider:
    return FakeProvider(
        closes={"AAPL": [100.0 + i for i in range(60)]},
        clock=clock,
    )


@pytest.fixture
def price_service(provider, price_store, failure_store, test_settings, clock):
    return PriceAcquisitionService(
        provider=provider,
        price_store=price_store,
        failure_store=failure_store,
        config=test_settings,
        now=clock,
    )


# =============================================================================
# Valkey
# =============================================================================


class FakeValkey:
    """The handful of Redis commands the cache and lock use."""

    def __init__(self):
        self.data: dict[str, str] = {}
        self.ttls: dict[str, int] = {}

    async def get(self, key: str):
        return self.data.get(key)

    async def set(self, key: str, value, ex: int | None = None, nx: bool = False):
        if nx and key in self.data:
            return None
        self.data[key] = value
        if ex is not None:
            self.ttls[key] = ex
        return True

    async def delete(self, *keys: str) -> int:
        return sum(1 for k in keys if self.data.pop(k, None) is not None)

    async def eval(self, script: str, numkeys: int, key: str, token: str) -> int:
        if self.data.get(key) == token:
            del self.data[key]
            return 1
        return 0


@pytest.fixture
def fake_valkey(mocker) -> FakeValkey:
    client = FakeValkey()
    for module in ("pricerisk.cache.cache", "pricerisk.cache.distributed_lock"):
        mocker.patch(f"{module}.get_valkey_client", mocker.AsyncMock(return_value=client))
    return client
