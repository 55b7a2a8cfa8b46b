"""
Tests for the price acquisition service (positive and negative caching).
"""

import asyncio
from datetime import timedelta

import pytest
from pydantic import ValidationError as PydanticValidationError

from conftest import T0, FakeProvider, make_points
from pricerisk.core.exceptions import ExcludedTickerError, ProviderBlockedError
from pricerisk.domain.price import FailureType, PricePoint
from pricerisk.services.data_providers import (
    ProviderFetchError,
    ProviderNotFoundError,
    ProviderRateLimitedError,
)
from pricerisk.services.prices import (
    PriceAcquisitionService,
    clean_points,
    exclusion_reason,
)


# =============================================================================
# Exclusion
# =============================================================================


class TestExclusion:
    """Tickers that are never sent to the provider."""

    def test_regular_ticker_allowed(self, test_settings):
        assert exclusion_reason("AAPL", test_settings) is None
        assert exclusion_reason("shop.to", test_settings) is None

    def test_fund_prefix_excluded(self, test_settings):
        assert exclusion_reason("FID1234", test_settings) == "proprietary fund code (FID)"

    def test_manual_ticker_excluded(self, test_settings):
        assert exclusion_reason("manual1", test_settings) == "manually tracked instrument"

    def test_empty_and_numeric_excluded(self, test_settings):
        assert exclusion_reason("  ", test_settings) == "empty ticker"
        assert exclusion_reason("12345", test_settings) == "ticker has no letters"

    @pytest.mark.asyncio
    async def test_excluded_ticker_never_reaches_provider(
        self, price_service, provider, price_store, failure_store
    ):
        with pytest.raises(ExcludedTickerError) as exc_info:
            await price_service.ensure_fresh("FID5001")

        assert exc_info.value.reason == "proprietary fund code (FID)"
        assert provider.call_count() == 0
        assert price_store.rows == {}
        assert failure_store.rows == {}


# =============================================================================
# Positive cache
# =============================================================================


class TestFreshness:
    """Fresh cached data short-circuits the provider."""

    @pytest.mark.asyncio
    async def test_first_call_fetches_and_stores(self, price_service, provider, price_store):
        await price_service.ensure_fresh("aapl")

        assert provider.call_count("AAPL") == 1
        assert len(price_store.rows["AAPL"]) == 60

    @pytest.mark.asyncio
    async def test_idempotent_within_freshness_window(
        self, price_service, provider, price_store, clock
    ):
        await price_service.ensure_fresh("AAPL")
        clock.advance(hours=5, minutes=59)
        await price_service.ensure_fresh("AAPL")

        assert provider.call_count("AAPL") == 1
        assert price_store.upsert_calls == 1

    @pytest.mark.asyncio
    async def test_refetches_after_freshness_window(self, price_service, provider, clock):
        await price_service.ensure_fresh("AAPL")
        clock.advance(hours=6, minutes=1)
        await price_service.ensure_fresh("AAPL")

        assert provider.call_count("AAPL") == 2

    @pytest.mark.asyncio
    async def test_fresh_cache_hit_without_provider(self, price_service, provider, price_store, clock):
        price_store.seed(make_points("MSFT", [300.0, 301.0, 302.0]), fetched_at=clock())

        await price_service.ensure_fresh("MSFT")

        assert provider.call_count() == 0

    @pytest.mark.asyncio
    async def test_concurrent_requests_coalesce(
        self, provider, price_store, failure_store, test_settings, clock
    ):
        provider.delay = 0.05
        service = PriceAcquisitionService(
            provider=provider,
            price_store=price_store,
            failure_store=failure_store,
            config=test_settings,
            now=clock,
        )

        await asyncio.gather(*(service.ensure_fresh("AAPL") for _ in range(5)))

        assert provider.call_count("AAPL") == 1
        assert price_store.upsert_calls == 1


# =============================================================================
# Negative cache
# =============================================================================


class TestFailureCache:
    """Failed fetches are recorded and block further calls until expiry."""

    @pytest.mark.asyncio
    async def test_first_failure_recorded(self, price_service, provider, failure_store, clock):
        provider.error = ProviderNotFoundError("BADTICK", "No data found, symbol may be delisted")
        now = clock()

        with pytest.raises(ProviderBlockedError) as exc_info:
            await price_service.ensure_fresh("BADTICK")

        failure = failure_store.rows["BADTICK"]
        assert failure.failure_type == FailureType.NOT_FOUND
        assert failure.consecutive_failures == 1
        assert failure.last_attempt_at == now
        assert failure.retry_after == now + timedelta(hours=24)
        assert exc_info.value.failure_type == "not_found"
        assert exc_info.value.retry_after == now + timedelta(hours=24)

    @pytest.mark.asyncio
    async def test_blocked_until_expiry(self, price_service, provider, failure_store, clock):
        provider.error = ProviderNotFoundError("BADTICK")
        with pytest.raises(ProviderBlockedError):
            await price_service.ensure_fresh("BADTICK")

        clock.advance(hours=23, minutes=59)
        with pytest.raises(ProviderBlockedError):
            await price_service.ensure_fresh("BADTICK")
        assert provider.call_count("BADTICK") == 1

        clock.advance(minutes=2)
        provider.error = None
        provider.closes["BADTICK"] = [10.0, 11.0, 12.0]
        await price_service.ensure_fresh("BADTICK")

        assert provider.call_count("BADTICK") == 2
        assert "BADTICK" not in failure_store.rows

    @pytest.mark.asyncio
    async def test_consecutive_failures_increment(self, price_service, provider, failure_store, clock):
        provider.error = ProviderNotFoundError("BADTICK")
        with pytest.raises(ProviderBlockedError):
            await price_service.ensure_fresh("BADTICK")

        clock.advance(hours=24, minutes=1)
        with pytest.raises(ProviderBlockedError):
            await price_service.ensure_fresh("BADTICK")

        assert failure_store.rows["BADTICK"].consecutive_failures == 2

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error, failure_type, ttl_hours",
        [
            (ProviderRateLimitedError("X", "Too Many Requests"), FailureType.RATE_LIMITED, 1),
            (ProviderFetchError("X", "connection reset"), FailureType.API_ERROR, 6),
            (RuntimeError("boom"), FailureType.API_ERROR, 6),
        ],
    )
    async def test_failure_type_sets_ttl(
        self, price_service, provider, failure_store, clock, error, failure_type, ttl_hours
    ):
        provider.error = error

        with pytest.raises(ProviderBlockedError):
            await price_service.ensure_fresh("XYZ")

        failure = failure_store.rows["XYZ"]
        assert failure.failure_type == failure_type
        assert failure.retry_after == clock() + timedelta(hours=ttl_hours)

    @pytest.mark.asyncio
    async def test_empty_provider_result_is_not_found(self, price_service, provider, failure_store, mocker):
        mocker.patch.object(provider, "fetch_daily_history", mocker.AsyncMock(return_value=[]))

        with pytest.raises(ProviderBlockedError):
            await price_service.ensure_fresh("EMPTY")

        assert failure_store.rows["EMPTY"].failure_type == FailureType.NOT_FOUND

    @pytest.mark.asyncio
    async def test_timeout_recorded_as_api_error(
        self, price_store, failure_store, test_settings, clock
    ):
        slow = FakeProvider(closes={"SLOW": [1.0, 2.0]}, delay=5.0, clock=clock)
        service = PriceAcquisitionService(
            provider=slow,
            price_store=price_store,
            failure_store=failure_store,
            config=test_settings.model_copy(update={"provider_timeout_seconds": 0.05}),
            now=clock,
        )

        with pytest.raises(ProviderBlockedError) as exc_info:
            await service.ensure_fresh("SLOW")

        assert exc_info.value.failure_type == "api_error"
        assert failure_store.rows["SLOW"].failure_type == FailureType.API_ERROR

    @pytest.mark.asyncio
    async def test_success_clears_expired_failure(self, price_service, provider, failure_store, clock):
        await failure_store.record_failure(
            "AAPL",
            FailureType.API_ERROR,
            "old",
            clock() - timedelta(hours=7),
            clock() - timedelta(hours=1),
        )

        await price_service.ensure_fresh("AAPL")

        assert provider.call_count("AAPL") == 1
        assert failure_store.rows == {}

    @pytest.mark.asyncio
    async def test_success_keeps_failure_from_later_attempt(
        self, price_service, provider, failure_store, clock
    ):
        fetch = provider.fetch_daily_history

        async def fetch_while_another_attempt_fails(ticker, lookback_days):
            await failure_store.record_failure(
                ticker,
                FailureType.RATE_LIMITED,
                "429",
                clock() + timedelta(seconds=5),
                clock() + timedelta(hours=1),
            )
            return await fetch(ticker, lookback_days)

        provider.fetch_daily_history = fetch_while_another_attempt_fails

        await price_service.ensure_fresh("AAPL")

        assert failure_store.rows["AAPL"].failure_type == FailureType.RATE_LIMITED
        assert failure_store.rows["AAPL"].last_attempt_at == clock() + timedelta(seconds=5)

    @pytest.mark.asyncio
    async def test_stale_failure_does_not_overwrite_newer(self, failure_store, clock):
        newer = await failure_store.record_failure(
            "AAPL", FailureType.NOT_FOUND, "404", clock(), clock() + timedelta(hours=24)
        )

        kept = await failure_store.record_failure(
            "AAPL",
            FailureType.API_ERROR,
            "timeout",
            clock() - timedelta(minutes=1),
            clock() + timedelta(hours=6),
        )

        assert kept == newer
        assert failure_store.rows["AAPL"].consecutive_failures == 1

    @pytest.mark.asyncio
    async def test_cleanup_removes_only_expired(self, price_service, failure_store, clock):
        await failure_store.record_failure(
            "OLD", FailureType.RATE_LIMITED, None, clock() - timedelta(hours=2), clock() - timedelta(hours=1)
        )
        await failure_store.record_failure(
            "NEW", FailureType.NOT_FOUND, None, clock(), clock() + timedelta(hours=24)
        )

        assert await price_service.cleanup_failures() == 1
        assert [f.ticker for f in await price_service.list_failures()] == ["NEW"]


# =============================================================================
# Stale serving
# =============================================================================


class TestAvailability:
    """ensure_available serves stale cached closes when blocked."""

    @pytest.mark.asyncio
    async def test_stale_data_served_when_blocked(self, price_service, provider, price_store, clock):
        price_store.seed(make_points("AAPL", [100.0, 101.0]), fetched_at=clock() - timedelta(days=2))
        provider.error = ProviderRateLimitedError("AAPL")

        assert await price_service.ensure_available("AAPL") is False
        window = await price_service.get_window("AAPL", days=30)

        assert [p.close_price for p in window] == [100.0, 101.0]
        # Second read hits the failure record, not the provider
        assert provider.call_count("AAPL") == 1

    @pytest.mark.asyncio
    async def test_blocked_without_cache_raises(self, price_service, provider):
        provider.error = ProviderNotFoundError("NOPE")

        with pytest.raises(ProviderBlockedError):
            await price_service.get_window("NOPE", days=30)

    @pytest.mark.asyncio
    async def test_fresh_returns_true(self, price_service):
        assert await price_service.ensure_available("AAPL") is True


# =============================================================================
# Cleaning
# =============================================================================


class TestCleanPoints:
    def test_rekeys_dedupes_and_sorts(self):
        points = make_points("SHOP.TO", [3.0, 1.0, 2.0])
        duplicate = PricePoint(ticker="SHOP.TO", date=points[0].date, close_price=4.0)

        cleaned = clean_points("SHOP", [points[2], points[0], points[1], duplicate])

        assert [p.ticker for p in cleaned] == ["SHOP"] * 3
        assert [p.date for p in cleaned] == sorted(p.date for p in points)
        assert cleaned[0].close_price == 4.0

    def test_non_positive_close_rejected_at_construction(self):
        with pytest.raises(PydanticValidationError):
            PricePoint(ticker="AAPL", date=T0.date(), close_price=0.0)
