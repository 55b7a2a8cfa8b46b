"""
Concurrency guards for provider calls.

This module provides:
1. Request Coalescing - one in-flight execution per key, shared outcome
2. Keyed Locks - per-key mutual exclusion for store writes

Usage:
    from pricerisk.services.data_providers.resilience import (
        KeyedLocks,
        RequestCoalescer,
    )

    coalescer = RequestCoalescer()

    async def refresh(ticker: str):
        return await coalescer.execute(f"prices:{ticker}", lambda: do_refresh(ticker))

    locks = KeyedLocks()

    async with locks.hold(ticker):
        await write_failure(ticker)
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import Any, Awaitable, Callable

from pricerisk.core.logging import get_logger


logger = get_logger("resilience")


# =============================================================================
# Request Coalescing
# =============================================================================


def _consume_exception(future: asyncio.Future[Any]) -> None:
    # Mark the exception as retrieved when no waiter joined
    if not future.cancelled():
        future.exception()


class RequestCoalescer:
    """
    Coalesces concurrent requests for the same resource.

    The first caller for a key becomes the leader and runs the function.
    Callers arriving while it is in flight await the leader's future and
    receive the same result or the same exception. Waiters never start a
    second execution on their own.
    """

    def __init__(self) -> None:
        self._pending: dict[str, asyncio.Future[Any]] = {}

    async def execute(self, key: str, func: Callable[[], Awaitable[Any]]) -> Any:
        """
        Execute function with request coalescing.

        Args:
            key: Unique identifier for the request
            func: Async callable to execute

        Returns:
            Result from func (either executed or coalesced)
        """
        pending = self._pending.get(key)
        if pending is not None:
            logger.debug(f"Coalesced request for {key}")
            return await asyncio.shield(pending)

        loop = asyncio.get_running_loop()
        future: asyncio.Future[Any] = loop.create_future()
        future.add_done_callback(_consume_exception)
        self._pending[key] = future

        try:
            result = await func()
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as e:
            future.set_exception(e)
            raise
        else:
            future.set_result(result)
            return result
        finally:
            self._pending.pop(key, None)

    def is_pending(self, key: str) -> bool:
        return key in self._pending

    def get_pending_count(self) -> int:
        """Return number of pending coalesced requests."""
        return len(self._pending)


# =============================================================================
# Keyed Locks
# =============================================================================


class KeyedLocks:
    """Lazily created ``asyncio.Lock`` per key; idle locks are dropped."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str):
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)
