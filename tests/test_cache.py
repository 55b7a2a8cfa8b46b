"""
Tests for the Valkey result cache and the distributed lock.
"""

import pytest

from pricerisk.cache import Cache, DistributedLock, cache_key


class TestCacheKey:
    def test_namespaced(self):
        assert cache_key("portfolio", 7, prefix="optimization") == "pricerisk:v1:optimization:portfolio:7"

    def test_colons_in_parts_sanitized(self):
        assert cache_key("portfolio:7", prefix="optimization").endswith(":portfolio_7")


class TestCache:
    @pytest.mark.asyncio
    async def test_set_get_delete(self, fake_valkey):
        cache = Cache(prefix="optimization", default_ttl=600)

        assert await cache.set("portfolio:1", {"score": 42.5})
        assert await cache.get("portfolio:1") == {"score": 42.5}
        assert fake_valkey.ttls["pricerisk:v1:optimization:portfolio_1"] == 600

        await cache.delete("portfolio:1")
        assert await cache.get("portfolio:1") is None

    @pytest.mark.asyncio
    async def test_explicit_ttl(self, fake_valkey):
        cache = Cache(prefix="optimization", default_ttl=600)
        await cache.set("k", [1, 2], ttl=30)
        assert fake_valkey.ttls["pricerisk:v1:optimization:k"] == 30

    @pytest.mark.asyncio
    async def test_backend_errors_degrade_to_miss(self, mocker):
        mocker.patch(
            "pricerisk.cache.cache.get_valkey_client",
            mocker.AsyncMock(side_effect=ConnectionError("valkey down")),
        )
        cache = Cache(prefix="optimization")

        assert await cache.get("portfolio:1") is None
        assert await cache.set("portfolio:1", {"a": 1}) is False
        assert await cache.delete("portfolio:1") is False


class TestDistributedLock:
    @pytest.mark.asyncio
    async def test_second_holder_rejected(self, fake_valkey):
        first = DistributedLock("job:x", blocking=False)
        second = DistributedLock("job:x", blocking=False)

        assert await first.acquire()
        assert not await second.acquire()

        assert await first.release()
        assert await second.acquire()

    @pytest.mark.asyncio
    async def test_release_checks_token(self, fake_valkey):
        lock = DistributedLock("job:x", blocking=False)
        await lock.acquire()
        fake_valkey.data[lock.key] = "someone-else"

        assert not await lock.release()
        assert fake_valkey.data[lock.key] == "someone-else"

    @pytest.mark.asyncio
    async def test_blocking_timeout(self, fake_valkey):
        holder = DistributedLock("job:x", blocking=False)
        await holder.acquire()

        waiter = DistributedLock("job:x", blocking=True, blocking_timeout=0.15)
        assert not await waiter.acquire()

    @pytest.mark.asyncio
    async def test_context_manager_releases(self, fake_valkey):
        async with DistributedLock("job:x", timeout=60) as lock:
            assert lock.acquired
            assert fake_valkey.ttls[lock.key] == 60

        assert lock.key not in fake_valkey.data
