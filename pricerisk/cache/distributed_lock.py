"""Distributed locking using Valkey."""

from __future__ import annotations

import asyncio
import time
import uuid

from pricerisk.core.logging import get_logger

from .client import get_valkey_client


logger = get_logger("cache.lock")

LOCK_PREFIX = "pricerisk:lock"

# Atomic check-and-delete so we never release someone else's lock
_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""


class DistributedLock:
    """
    SET NX EX lock with a per-holder token.

    Args:
        name: Lock name (will be prefixed)
        timeout: Lock expiration in seconds (auto-release if holder dies)
        blocking: Whether to wait for the lock
        blocking_timeout: Max time to wait for lock (None = wait forever)
    """

    def __init__(
        self,
        name: str,
        timeout: int = 30,
        blocking: bool = True,
        blocking_timeout: float | None = None,
    ):
        self.name = name
        self.key = f"{LOCK_PREFIX}:{name}"
        self.timeout = timeout
        self.blocking = blocking
        self.blocking_timeout = blocking_timeout
        self.token = str(uuid.uuid4())
        self._acquired = False

    @property
    def acquired(self) -> bool:
        return self._acquired

    async def acquire(self) -> bool:
        """Returns True if lock was acquired, False otherwise."""
        client = await get_valkey_client()
        start_time = time.monotonic()

        while True:
            if await client.set(self.key, self.token, ex=self.timeout, nx=True):
                self._acquired = True
                logger.debug(f"Lock acquired: {self.name}")
                return True

            if not self.blocking:
                return False

            if self.blocking_timeout is not None:
                if time.monotonic() - start_time >= self.blocking_timeout:
                    logger.debug(f"Lock acquisition timeout: {self.name}")
                    return False

            await asyncio.sleep(0.1)

    async def release(self) -> bool:
        """Release the lock if we still hold it (token matches)."""
        if not self._acquired:
            return False

        self._acquired = False
        client = await get_valkey_client()
        try:
            result = await client.eval(_RELEASE_SCRIPT, 1, self.key, self.token)
        except Exception as e:
            logger.error(f"Lock release error for {self.name}: {e}")
            return False

        if not result:
            logger.warning(f"Lock release failed (token mismatch): {self.name}")
            return False
        logger.debug(f"Lock released: {self.name}")
        return True

    async def __aenter__(self) -> DistributedLock:
        await self.acquire()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.release()
