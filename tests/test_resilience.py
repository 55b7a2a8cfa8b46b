"""
Tests for concurrency guards (request coalescing, keyed locks).
"""

import asyncio

import pytest

from pricerisk.services.data_providers.resilience import KeyedLocks, RequestCoalescer


# =============================================================================
# Request Coalescer Tests
# =============================================================================


class TestRequestCoalescer:
    """Tests for RequestCoalescer."""

    @pytest.mark.asyncio
    async def test_single_request_executes(self):
        """Single request executes normally."""
        coalescer = RequestCoalescer()

        async def fetch():
            return "result"

        assert await coalescer.execute("key1", fetch) == "result"
        assert coalescer.get_pending_count() == 0

    @pytest.mark.asyncio
    async def test_concurrent_requests_share_result(self):
        """Concurrent requests for the same key run the function once."""
        coalescer = RequestCoalescer()
        call_count = 0

        async def slow_fetch():
            nonlocal call_count
            call_count += 1
            await asyncio.sleep(0.05)
            return f"result-{call_count}"

        results = await asyncio.gather(
            *(coalescer.execute("same-key", slow_fetch) for _ in range(5))
        )

        assert call_count == 1
        assert results == ["result-1"] * 5

    @pytest.mark.asyncio
    async def test_waiters_receive_leader_exception(self):
        """Every coalesced caller sees the leader's exception."""
        coalescer = RequestCoalescer()
        call_count = 0

        async def failing():
            nonlocal call_count
            call_count += 1
            await asyncio.sleep(0.02)
            raise ValueError("upstream down")

        results = await asyncio.gather(
            *(coalescer.execute("k", failing) for _ in range(3)),
            return_exceptions=True,
        )

        assert call_count == 1
        assert all(isinstance(r, ValueError) for r in results)
        assert coalescer.get_pending_count() == 0

    @pytest.mark.asyncio
    async def test_different_keys_execute_separately(self):
        """Different keys are never coalesced."""
        coalescer = RequestCoalescer()
        seen = []

        async def fetch(key):
            seen.append(key)
            await asyncio.sleep(0.01)
            return key

        await asyncio.gather(
            coalescer.execute("a", lambda: fetch("a")),
            coalescer.execute("b", lambda: fetch("b")),
        )

        assert sorted(seen) == ["a", "b"]

    @pytest.mark.asyncio
    async def test_key_released_after_completion(self):
        """A request after completion starts a new execution."""
        coalescer = RequestCoalescer()
        call_count = 0

        async def fetch():
            nonlocal call_count
            call_count += 1
            return call_count

        assert await coalescer.execute("k", fetch) == 1
        assert not coalescer.is_pending("k")
        assert await coalescer.execute("k", fetch) == 2


# =============================================================================
# Keyed Lock Tests
# =============================================================================


class TestKeyedLocks:
    """Tests for KeyedLocks."""

    @pytest.mark.asyncio
    async def test_same_key_serialized(self):
        locks = KeyedLocks()
        events = []

        async def worker(name):
            async with locks.hold("AAPL"):
                events.append(f"{name}-in")
                await asyncio.sleep(0.01)
                events.append(f"{name}-out")

        await asyncio.gather(worker("one"), worker("two"))

        assert events in (
            ["one-in", "one-out", "two-in", "two-out"],
            ["two-in", "two-out", "one-in", "one-out"],
        )

    @pytest.mark.asyncio
    async def test_idle_locks_dropped(self):
        locks = KeyedLocks()

        async with locks.hold("AAPL"):
            assert len(locks) == 1

        assert len(locks) == 0

    @pytest.mark.asyncio
    async def test_lock_released_on_error(self):
        locks = KeyedLocks()

        with pytest.raises(RuntimeError):
            async with locks.hold("AAPL"):
                raise RuntimeError("write failed")

        assert len(locks) == 0
        async with locks.hold("AAPL"):
            pass
