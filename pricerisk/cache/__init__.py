"""Valkey (Redis-compatible) cache module."""

from .cache import Cache, cache_key
from .client import close_valkey_client, get_valkey_client
from .distributed_lock import DistributedLock


__all__ = [
    # Client
    "get_valkey_client",
    "close_valkey_client",
    # Cache
    "Cache",
    "cache_key",
    # Locking
    "DistributedLock",
]
