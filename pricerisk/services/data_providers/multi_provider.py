"""Primary-then-fallback provider composition."""

from __future__ import annotations

from collections.abc import Sequence

from pricerisk.core.config import settings
from pricerisk.core.logging import get_logger
from pricerisk.domain.price import PricePoint

from .base import (
    PriceProvider,
    ProviderError,
    ProviderNotFoundError,
    ProviderRateLimitedError,
)


logger = get_logger("data_providers.multi")


class MultiProvider:
    """
    Ask the primary provider first; on not-found, walk exchange variants on
    the fallback provider.

    Primary errors other than not-found propagate unchanged. Points found
    under a variant symbol are stored under the requested ticker.
    """

    name = "multi"

    def __init__(
        self,
        primary: PriceProvider,
        fallback: PriceProvider,
        suffixes: Sequence[str] | None = None,
    ):
        self.primary = primary
        self.fallback = fallback
        self.suffixes = list(settings.fallback_ticker_suffixes if suffixes is None else suffixes)

    def candidates(self, ticker: str) -> list[str]:
        """Fallback symbols: each exchange suffix, then the bare ticker."""
        variants = [f"{ticker}{suffix}" for suffix in self.suffixes if not ticker.endswith(suffix)]
        variants.append(ticker)
        return list(dict.fromkeys(variants))

    async def fetch_daily_history(
        self, ticker: str, lookback_days: int
    ) -> list[PricePoint]:
        ticker = ticker.upper()

        try:
            return await self.primary.fetch_daily_history(ticker, lookback_days)
        except ProviderNotFoundError as e:
            logger.info(f"{self.primary.name} has no data for {ticker} ({e.message}), trying {self.fallback.name}")

        rate_limited = False
        for symbol in self.candidates(ticker):
            try:
                points = await self.fallback.fetch_daily_history(symbol, lookback_days)
            except ProviderRateLimitedError:
                rate_limited = True
                continue
            except ProviderError as e:
                logger.debug(f"{self.fallback.name} failed for {symbol}: {e.message}")
                continue

            if symbol != ticker:
                logger.info(f"Resolved {ticker} as {symbol} on {self.fallback.name}")
                points = [p.model_copy(update={"ticker": ticker}) for p in points]
            return points

        if rate_limited:
            raise ProviderRateLimitedError(ticker, f"Fallback rate limited for {ticker}")
        raise ProviderNotFoundError(ticker, f"No provider has data for {ticker}")
