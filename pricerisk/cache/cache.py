"""JSON result cache on Valkey.

Cache failures never fail the caller: a failed read is a miss and a failed
write is logged and dropped.
"""

from __future__ import annotations

import json
from typing import Any, Optional, Union

from pricerisk.core.config import settings
from pricerisk.core.logging import get_logger

from .client import get_valkey_client


logger = get_logger("cache")

# Cache key prefixes for namespacing
CACHE_PREFIX = "pricerisk"
CACHE_VERSION = "v1"


def cache_key(*parts: Union[str, int, float], prefix: str = "cache") -> str:
    """
    Generate a consistent cache key from parts.

    Usage:
        cache_key("portfolio", 7, prefix="optimization") -> "pricerisk:v1:optimization:portfolio:7"
    """
    sanitized = [str(part).replace(":", "_") for part in parts]
    return f"{CACHE_PREFIX}:{CACHE_VERSION}:{prefix}:{':'.join(sanitized)}"


class Cache:
    """Namespaced get/set/delete of JSON-serializable values."""

    def __init__(self, prefix: str = "cache", default_ttl: Optional[int] = None):
        self.prefix = prefix
        self.default_ttl = default_ttl or settings.cache_default_ttl

    async def get(self, key: str) -> Optional[Any]:
        full_key = cache_key(key, prefix=self.prefix)
        try:
            client = await get_valkey_client()
            value = await client.get(full_key)
        except Exception as e:
            logger.warning(f"Cache get failed for {full_key}: {e}")
            return None

        if value is None:
            logger.debug(f"Cache miss: {full_key}")
            return None
        logger.debug(f"Cache hit: {full_key}")
        return json.loads(value)

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        full_key = cache_key(key, prefix=self.prefix)
        try:
            client = await get_valkey_client()
            await client.set(full_key, json.dumps(value, default=str), ex=ttl or self.default_ttl)
        except Exception as e:
            logger.warning(f"Cache set failed for {full_key}: {e}")
            return False
        logger.debug(f"Cache set: {full_key}, TTL: {ttl or self.default_ttl}s")
        return True

    async def delete(self, key: str) -> bool:
        full_key = cache_key(key, prefix=self.prefix)
        try:
            client = await get_valkey_client()
            await client.delete(full_key)
        except Exception as e:
            logger.warning(f"Cache delete failed for {full_key}: {e}")
            return False
        logger.debug(f"Cache delete: {full_key}")
        return True
