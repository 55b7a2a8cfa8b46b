"""
YahooQuery provider - fallback source when yfinance has no data.

yahooquery reports per-symbol failures as strings or dicts instead of
raising, so the response shape decides the error class.
"""

from __future__ import annotations

import asyncio
from concurrent.futures import ThreadPoolExecutor
from datetime import date, timedelta
from typing import Any

import pandas as pd
from yahooquery import Ticker

from pricerisk.core.logging import get_logger
from pricerisk.core.rate_limiter import RateLimiter, get_provider_limiter
from pricerisk.domain.price import PricePoint

from .base import (
    ProviderNotFoundError,
    ProviderRateLimitedError,
    classify_message,
    frame_to_points,
)


logger = get_logger("data_providers.yahooquery")

# Shared executor for blocking yahooquery calls
_executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="yahooquery")


def _error_text(data: Any) -> str:
    if isinstance(data, dict):
        return "; ".join(str(v) for v in data.values())
    return str(data)


class YahooQueryProvider:
    """Daily close history via ``yahooquery.Ticker.history``."""

    name = "yahooquery"

    def __init__(self, limiter: RateLimiter | None = None):
        self._limiter = limiter or get_provider_limiter()

    def _fetch_history_sync(self, ticker: str, start: date) -> pd.DataFrame:
        """Fetch price history from yahooquery (blocking)."""
        if not self._limiter.acquire_sync():
            raise ProviderRateLimitedError(ticker, "Local rate limiter timeout")

        try:
            df = Ticker(ticker, asynchronous=False).history(
                start=start.isoformat(),
                interval="1d",
            )
        except Exception as e:
            raise classify_message(ticker, str(e) or type(e).__name__) from e

        if df is None or isinstance(df, (str, dict)):
            error = classify_message(ticker, _error_text(df))
            if isinstance(error, ProviderRateLimitedError):
                raise error
            raise ProviderNotFoundError(ticker, error.message)

        if df.empty:
            raise ProviderNotFoundError(ticker, f"No price data returned for {ticker}")

        # yahooquery returns multi-index (symbol, date), flatten it
        if isinstance(df.index, pd.MultiIndex):
            symbols = df.index.get_level_values(0)
            key = ticker if ticker in symbols else ticker.lower()
            if key not in symbols:
                raise ProviderNotFoundError(ticker, f"{ticker} missing from response")
            df = df.loc[key]

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

        logger.debug(f"yahooquery returned {len(points)} closes for {ticker}")
        return points
