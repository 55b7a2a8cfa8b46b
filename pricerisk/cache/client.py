"""Valkey client connection management."""

from __future__ import annotations

import asyncio

from redis.asyncio import ConnectionPool, Redis

from pricerisk.core.config import settings
from pricerisk.core.logging import get_logger


logger = get_logger("cache.client")

# One pool and client per event loop; pools cannot cross loops
_pools: dict[int, ConnectionPool] = {}
_clients: dict[int, Redis] = {}


def _get_loop_id() -> int:
    try:
        return id(asyncio.get_running_loop())
    except RuntimeError:
        return 0


async def get_valkey_client() -> Redis:
    """Get Valkey client instance for current event loop."""
    loop_id = _get_loop_id()
    if loop_id not in _clients:
        if loop_id not in _pools:
            _pools[loop_id] = ConnectionPool.from_url(
                settings.valkey_url,
                max_connections=settings.valkey_max_connections,
                decode_responses=True,
                socket_timeout=5.0,
                socket_connect_timeout=5.0,
                retry_on_timeout=True,
                health_check_interval=30,
            )
            logger.info(
                "Valkey connection pool initialized",
                extra={"url": settings.valkey_url, "loop_id": loop_id},
            )
        _clients[loop_id] = Redis(connection_pool=_pools[loop_id])
    return _clients[loop_id]


async def close_valkey_client() -> None:
    """Close Valkey client and connection pool for current event loop."""
    loop_id = _get_loop_id()
    client = _clients.pop(loop_id, None)
    if client is not None:
        await client.aclose()
    pool = _pools.pop(loop_id, None)
    if pool is not None:
        await pool.disconnect()
    logger.info("Valkey connection pool closed", extra={"loop_id": loop_id})
