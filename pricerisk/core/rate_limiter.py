"""Token bucket rate limiting for outbound price-provider calls."""

from __future__ import annotations

import asyncio
import threading
import time

from pricerisk.core.config import settings
from pricerisk.core.logging import get_logger


logger = get_logger("core.rate_limiter")


class RateLimiter:
    """
    Token bucket rate limiter for API calls.

    Thread-safe (provider libraries run in an executor) and async-compatible.
    """

    def __init__(
        self,
        name: str,
        calls_per_second: float = 2.0,
        burst_size: int = 5,
    ):
        self.name = name
        self.calls_per_second = calls_per_second
        self.burst_size = burst_size
        self.tokens = float(burst_size)
        self.last_update = time.monotonic()
        self._lock = threading.Lock()
        self._async_lock: asyncio.Lock | None = None

    def _refill(self) -> None:
        now = time.monotonic()
        elapsed = now - self.last_update
        self.tokens = min(
            self.burst_size,
            self.tokens + elapsed * self.calls_per_second
        )
        self.last_update = now

    def _try_take(self) -> float:
        """Take a token if available. Returns 0.0 on success, else seconds to wait."""
        with self._lock:
            self._refill()
            if self.tokens >= 1.0:
                self.tokens -= 1.0
                return 0.0
            return (1.0 - self.tokens) / self.calls_per_second

    def acquire_sync(self, timeout: float = 30.0) -> bool:
        """
        Acquire a token synchronously, blocking if necessary.

        Returns:
            True if token acquired, False if timeout
        """
        start = time.monotonic()

        while True:
            wait_time = self._try_take()
            if wait_time == 0.0:
                return True

            if time.monotonic() - start + wait_time > timeout:
                logger.warning(f"Rate limiter {self.name} timeout after {timeout}s")
                return False

            logger.debug(f"Rate limiter {self.name} waiting {wait_time:.2f}s")
            time.sleep(min(wait_time, 0.5))

    async def acquire(self, timeout: float = 30.0) -> bool:
        """
        Acquire a token asynchronously, waiting if necessary.

        Returns:
            True if token acquired, False if timeout
        """
        if self._async_lock is None:
            self._async_lock = asyncio.Lock()

        start = time.monotonic()

        while True:
            async with self._async_lock:
                wait_time = self._try_take()
            if wait_time == 0.0:
                return True

            if time.monotonic() - start + wait_time > timeout:
                logger.warning(f"Rate limiter {self.name} timeout after {timeout}s")
                return False

            logger.debug(f"Rate limiter {self.name} waiting {wait_time:.2f}s")
            await asyncio.sleep(min(wait_time, 0.5))

    def status(self) -> dict:
        """Get current rate limiter status."""
        with self._lock:
            self._refill()
            return {
                "name": self.name,
                "tokens_available": self.tokens,
                "burst_size": self.burst_size,
                "calls_per_second": self.calls_per_second,
            }


_limiters: dict[str, RateLimiter] = {}


def get_rate_limiter(
    name: str,
    calls_per_second: float = 2.0,
    burst_size: int = 5,
) -> RateLimiter:
    """Get or create a named rate limiter (rate and burst apply on creation only)."""
    if name not in _limiters:
        _limiters[name] = RateLimiter(name, calls_per_second, burst_size)
        logger.info(f"Created rate limiter '{name}': {calls_per_second}/s, burst={burst_size}")
    return _limiters[name]


PROVIDER_LIMITER = "price_provider"


def get_provider_limiter() -> RateLimiter:
    """
    Shared limiter for every Yahoo-backed provider.

    yfinance and yahooquery hit the same upstream, so they share one bucket.
    """
    return get_rate_limiter(
        PROVIDER_LIMITER,
        calls_per_second=settings.provider_calls_per_second,
        burst_size=settings.provider_burst_size,
    )
