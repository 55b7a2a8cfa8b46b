"""
Primary price provider backed by yfinance.

All blocking yfinance calls run on one shared ThreadPoolExecutor and take a
token from the shared provider rate limiter first.

Usage:
    from pricerisk.services.data_providers import YFinanceProvider

    provider = YFinanceProvider()
    points = await provider.fetch_daily_history("AAPL", lookback_days=365)
"""

from __future__ import annotations

import asyncio
from concurrent.futures import ThreadPoolExecutor
from datetime import date, timedelta

import pandas as pd
import yfinance as yf
from yfinance.exceptions import YFRateLimitError

from pricerisk.core.logging import get_logger
from pricerisk.core.rate_limiter import RateLimiter, get_provider_limiter
from pricerisk.domain.price import PricePoint

from .base import (
    ProviderNotFoundError,
    ProviderRateLimitedError,
    classify_message,
    frame_to_points,
)


logger = get_logger("data_providers.yfinance")

# Single shared executor for ALL yfinance calls
_executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="yfinance")


class YFinanceProvider:
    """Daily close history from Yahoo Finance via ``yf.Ticker.history``."""

    name = "yfinance"

    def __init__(self, limiter: RateLimiter | None = None):
        self._limiter = limiter or get_provider_limiter()

    def _fetch_history_sync(self, ticker: str, start: date) -> pd.DataFrame:
        """Fetch price history from yfinance (blocking)."""
        if not self._limiter.acquire_sync():
            raise ProviderRateLimitedError(ticker, "Local rate limiter timeout")

        try:
            df = yf.Ticker(ticker).history(
                start=start.isoformat(),
                interval="1d",
                auto_adjust=True,
                raise_errors=True,
            )
        except YFRateLimitError as e:
            raise ProviderRateLimitedError(ticker, str(e)) from e
        except Exception as e:
            raise classify_message(ticker, str(e) or type(e).__name__) from e

        if df is None or df.empty:
            raise ProviderNotFoundError(ticker, f"No price data returned for {ticker}")

        # Handle MultiIndex columns (newer yfinance)
        if isinstance(df.columns, pd.MultiIndex):
            df.columns = df.columns.droplevel(1)

        return df

    async def fetch_daily_history(
        self, ticker: str, lookback_days: int
    ) -> list[PricePoint]:
        ticker = ticker.upper()
        start = date.today() - timedelta(days=lookback_days)

        loop = asyncio.get_running_loop()
        df = await loop.run_in_executor(
            _executor,
            self._fetch_history_sync,
            ticker,
            start,
        )

        points = frame_to_points(ticker, df)
        if not points:
            raise ProviderNotFoundError(ticker, f"No valid closes for {ticker}")

        logger.debug(f"yfinance returned {len(points)} closes for {ticker}")
        return points
