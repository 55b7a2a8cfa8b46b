"""Provider contract and the errors a provider may raise.

Provider errors never leave the acquisition layer: the price service turns
every one of them into a failure record plus ``ProviderBlockedError``.
"""

from __future__ import annotations

import math
from typing import Protocol, runtime_checkable

import pandas as pd

from pricerisk.domain.price import FailureType, PricePoint


class ProviderError(Exception):
    """Base class for provider fetch failures."""

    failure_type: FailureType = FailureType.API_ERROR

    def __init__(self, ticker: str, message: str | None = None):
        self.ticker = ticker
        self.message = message or f"Price fetch failed for {ticker}"
        super().__init__(self.message)


class ProviderNotFoundError(ProviderError):
    """Ticker unknown, delisted, or no rows returned."""

    failure_type = FailureType.NOT_FOUND


class ProviderRateLimitedError(ProviderError):
    """Upstream throttled us (HTTP 429 or equivalent)."""

    failure_type = FailureType.RATE_LIMITED


class ProviderFetchError(ProviderError):
    """Any other transport or parsing failure."""

    failure_type = FailureType.API_ERROR


@runtime_checkable
class PriceProvider(Protocol):
    name: str

    async def fetch_daily_history(
        self, ticker: str, lookback_days: int
    ) -> list[PricePoint]:
        ...


_RATE_LIMIT_MARKERS = ("rate limit", "too many requests", "429")
_NOT_FOUND_MARKERS = (
    "delisted",
    "not found",
    "no data found",
    "no timezone found",
    "no price data",
    "404",
)


def classify_message(ticker: str, message: str) -> ProviderError:
    """Map a free-text upstream error to the matching provider error."""
    lowered = message.lower()
    if any(marker in lowered for marker in _RATE_LIMIT_MARKERS):
        return ProviderRateLimitedError(ticker, message)
    if any(marker in lowered for marker in _NOT_FOUND_MARKERS):
        return ProviderNotFoundError(ticker, message)
    return ProviderFetchError(ticker, message)


def frame_to_points(ticker: str, df: pd.DataFrame) -> list[PricePoint]:
    """
    Convert a daily OHLC frame into validated price points.

    Rows with a missing, NaN or non-positive close are dropped. The result
    is sorted by date with one point per date (the last row wins).
    """
    if df is None or df.empty:
        return []

    column = next((c for c in ("Close", "close", "Adj Close", "adjclose") if c in df.columns), None)
    if column is None:
        return []

    by_date: dict = {}
    for idx, value in df[column].items():
        try:
            close = float(value)
        except (TypeError, ValueError):
            continue
        if math.isnan(close) or math.isinf(close) or close <= 0:
            continue
        day = pd.Timestamp(idx).date()
        by_date[day] = close

    return [
        PricePoint(ticker=ticker, date=day, close_price=by_date[day])
        for day in sorted(by_date)
    ]
