"""Data providers - centralized external price access."""

from __future__ import annotations

from typing import Optional

from .base import (
    PriceProvider,
    ProviderError,
    ProviderFetchError,
    ProviderNotFoundError,
    ProviderRateLimitedError,
    classify_message,
    frame_to_points,
)
from .multi_provider import MultiProvider
from .resilience import KeyedLocks, RequestCoalescer
from .yahooquery_provider import YahooQueryProvider
from .yfinance_provider import YFinanceProvider


_instance: Optional[MultiProvider] = None


def get_price_provider() -> MultiProvider:
    """Get singleton yfinance-then-yahooquery provider."""
    global _instance
    if _instance is None:
        _instance = MultiProvider(YFinanceProvider(), YahooQueryProvider())
    return _instance


__all__ = [
    "KeyedLocks",
    "MultiProvider",
    "PriceProvider",
    "ProviderError",
    "ProviderFetchError",
    "ProviderNotFoundError",
    "ProviderRateLimitedError",
    "RequestCoalescer",
    "YFinanceProvider",
    "YahooQueryProvider",
    "classify_message",
    "frame_to_points",
    "get_price_provider",
]
