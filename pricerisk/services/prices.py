"""
Price Acquisition Service.

Single entry point for getting daily closes into the Price Store. Sits in
front of the external provider with a positive cache (the Price Store and
its ``fetched_at`` freshness) and a negative cache (the Failure Store), so
that repeated requests for a fresh or a failing ticker never reach the
network.

Architecture:
    0. Excluded tickers never touch the stores or the provider
    1. Active failure record -> ProviderBlockedError, no network call
    2. Fresh latest point -> done
    3. One bounded provider call; success clears the failure record,
       failure writes one with a type-specific TTL

Usage:
    from pricerisk.services.prices import get_price_acquisition_service

    service = get_price_acquisition_service()

    # Raise unless fresh data is in the Price Store afterwards
    await service.ensure_fresh("AAPL")

    # Serve stale cached data when the provider is unavailable
    points = await service.get_window("AAPL", days=90)
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Sequence
from datetime import date, datetime, timedelta, timezone
from typing import Any, Optional

from pricerisk.core.config import Settings, settings as default_settings
from pricerisk.core.exceptions import ExcludedTickerError, ProviderBlockedError
from pricerisk.core.logging import get_logger
from pricerisk.domain.price import FailureType, FetchFailure, PricePoint
from pricerisk.repositories import price_history_orm, ticker_fetch_failures_orm
from pricerisk.services.data_providers import (
    KeyedLocks,
    PriceProvider,
    ProviderError,
    ProviderNotFoundError,
    RequestCoalescer,
    get_price_provider,
)


logger = get_logger("services.prices")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# EXCLUSION AND VALIDATION
# =============================================================================


def exclusion_reason(ticker: str, config: Settings = default_settings) -> str | None:
    """Why a ticker is never sent to the provider, or None if it may be."""
    symbol = (ticker or "").strip().upper()
    if not symbol:
        return "empty ticker"
    if not any(ch.isalpha() for ch in symbol):
        return "ticker has no letters"
    if symbol in {t.upper() for t in config.excluded_tickers}:
        return "manually tracked instrument"
    for prefix in config.excluded_ticker_prefixes:
        if symbol.startswith(prefix.upper()):
            return f"proprietary fund code ({prefix.upper()})"
    return None


def clean_points(ticker: str, points: Sequence[PricePoint]) -> list[PricePoint]:
    """
    Normalize provider output before it is written.

    Points are re-keyed to ``ticker`` and sorted by date with one point per
    date. Non-positive closes never get this far: ``frame_to_points`` drops
    them and ``PricePoint`` rejects them.
    """
    by_date: dict[date, PricePoint] = {}
    for point in points:
        if point.ticker != ticker:
            point = point.model_copy(update={"ticker": ticker})
        by_date[point.date] = point
    return [by_date[d] for d in sorted(by_date)]


# =============================================================================
# SERVICE
# =============================================================================


class PriceAcquisitionService:
    """
    Positive/negative cached access to the external price provider.

    ``price_store`` and ``failure_store`` are objects exposing the async
    functions of ``price_history_orm`` and ``ticker_fetch_failures_orm``;
    the modules themselves are the production stores.
    """

    def __init__(
        self,
        provider: PriceProvider | None = None,
        price_store: Any = price_history_orm,
        failure_store: Any = ticker_fetch_failures_orm,
        config: Settings | None = None,
        now: Callable[[], datetime] = utc_now,
    ):
        self.provider = provider or get_price_provider()
        self.price_store = price_store
        self.failure_store = failure_store
        self.config = config or default_settings
        self.now = now
        self._coalescer = RequestCoalescer()
        self._failure_locks = KeyedLocks()

    # -------------------------------------------------------------------------
    # Policy helpers
    # -------------------------------------------------------------------------

    def failure_ttl(self, failure_type: FailureType) -> timedelta:
        hours = {
            FailureType.NOT_FOUND: self.config.failure_ttl_not_found_hours,
            FailureType.RATE_LIMITED: self.config.failure_ttl_rate_limited_hours,
            FailureType.API_ERROR: self.config.failure_ttl_api_error_hours,
        }[failure_type]
        return timedelta(hours=hours)

    def is_fresh(self, point: PricePoint | None, now: datetime) -> bool:
        if point is None or point.fetched_at is None:
            return False
        age = now - point.fetched_at
        return age < timedelta(hours=self.config.price_freshness_hours)

    def check_excluded(self, ticker: str) -> str:
        """Return the normalized ticker or raise ExcludedTickerError."""
        reason = exclusion_reason(ticker, self.config)
        if reason is not None:
            raise ExcludedTickerError(ticker, reason)
        return ticker.strip().upper()

    # -------------------------------------------------------------------------
    # Acquisition
    # -------------------------------------------------------------------------

    async def ensure_fresh(self, ticker: str, lookback_days: int | None = None) -> None:
        """
        Make sure the Price Store holds fresh closes for ``ticker``.

        Concurrent calls for one ticker share a single execution and its
        outcome.

        Raises:
            ExcludedTickerError: ticker is never fetched
            ProviderBlockedError: an unexpired failure exists, or this
                attempt failed and was recorded
        """
        symbol = self.check_excluded(ticker)
        days = lookback_days or self.config.price_lookback_days
        await self._coalescer.execute(
            f"prices:{symbol}",
            lambda: self._refresh(symbol, days),
        )

    async def _refresh(self, ticker: str, lookback_days: int) -> None:
        now = self.now()

        failure = await self.failure_store.get_active_failure(ticker, now)
        if failure is not None and failure.is_active(now):
            logger.debug(
                f"Skipping {ticker}: {failure.failure_type.value} failure until "
                f"{failure.retry_after.isoformat()}"
            )
            raise ProviderBlockedError(
                ticker, failure.failure_type.value, failure.retry_after
            )

        latest = await self.price_store.fetch_latest(ticker)
        if self.is_fresh(latest, now):
            logger.debug(f"Price cache hit for {ticker} (as of {latest.date})")
            return

        attempted_at = now
        try:
            points = await asyncio.wait_for(
                self.provider.fetch_daily_history(ticker, lookback_days),
                timeout=self.config.provider_timeout_seconds,
            )
            points = clean_points(ticker, points)
            if not points:
                raise ProviderNotFoundError(ticker, f"Provider returned no usable closes for {ticker}")
        except asyncio.TimeoutError:
            await self._record_and_raise(
                ticker,
                FailureType.API_ERROR,
                f"Provider call timed out after {self.config.provider_timeout_seconds}s",
                attempted_at,
            )
        except ProviderError as e:
            await self._record_and_raise(ticker, e.failure_type, e.message, attempted_at)
        except Exception as e:
            logger.warning(f"Unexpected provider error for {ticker}: {e!r}")
            await self._record_and_raise(
                ticker, FailureType.API_ERROR, str(e) or type(e).__name__, attempted_at
            )

        written = await self.price_store.upsert_points(ticker, points)
        async with self._failure_locks.hold(ticker):
            await self.failure_store.clear_failure(ticker, attempted_at)
        logger.info(f"Fetched {written} closes for {ticker}")

    async def _record_and_raise(
        self,
        ticker: str,
        failure_type: FailureType,
        message: str,
        attempted_at: datetime,
    ) -> None:
        retry_after = attempted_at + self.failure_ttl(failure_type)
        logger.warning(
            f"Price fetch failed for {ticker} ({failure_type.value}): {message}"
        )
        async with self._failure_locks.hold(ticker):
            failure = await self.failure_store.record_failure(
                ticker, failure_type, message, attempted_at, retry_after
            )
        raise ProviderBlockedError(
            ticker, failure.failure_type.value, failure.retry_after
        )

    async def ensure_available(
        self, ticker: str, lookback_days: int | None = None
    ) -> bool:
        """
        Like ``ensure_fresh``, but tolerate a blocked provider when cached
        closes already exist.

        Returns:
            True if the data is fresh, False if stale cached data is served

        Raises:
            ProviderBlockedError: only for tickers with no cached closes
        """
        try:
            await self.ensure_fresh(ticker, lookback_days)
            return True
        except ProviderBlockedError as e:
            latest = await self.price_store.fetch_latest(e.ticker)
            if latest is None:
                raise
            logger.info(
                f"Serving stale closes for {e.ticker} (last {latest.date}); "
                f"provider blocked until {e.retry_after.isoformat()}"
            )
            return False

    async def get_window(
        self,
        ticker: str,
        days: int,
        end_date: date | None = None,
    ) -> list[PricePoint]:
        """Ensure availability, then read the last ``days`` calendar days."""
        symbol = self.check_excluded(ticker)
        await self.ensure_available(symbol)
        return await self.price_store.fetch_window(symbol, days, end_date)

    async def get_latest(self, ticker: str) -> PricePoint | None:
        return await self.price_store.fetch_latest(ticker.upper())

    # -------------------------------------------------------------------------
    # Failure maintenance
    # -------------------------------------------------------------------------

    async def list_failures(self) -> list[FetchFailure]:
        return await self.failure_store.list_active(self.now())

    async def cleanup_failures(self) -> int:
        return await self.failure_store.cleanup_expired(self.now())


# Singleton instance
_instance: Optional[PriceAcquisitionService] = None


def get_price_acquisition_service() -> PriceAcquisitionService:
    """Get singleton PriceAcquisitionService instance."""
    global _instance
    if _instance is None:
        _instance = PriceAcquisitionService()
    return _instance
