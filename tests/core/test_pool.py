"""Tests for the bounded connection pool."""

from __future__ import annotations

import asyncio

import pytest

from qala.core.pool import ConnectionPool

pytestmark = pytest.mark.unit


async def _settle(rounds: int = 5) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


class TestConnectionPool:
    def test_rejects_zero_slots(self):
        with pytest.raises(ValueError):
            ConnectionPool(0)

    async def test_immediate_acquire_below_limit(self):
        pool = ConnectionPool(2)
        await pool.acquire()
        await pool.acquire()
        assert pool.stats() == {
            "active_connections": 2,
            "max_connections": 2,
            "waiting_requests": 0,
        }

    async def test_excess_caller_waits_until_release(self):
        pool = ConnectionPool(1)
        await pool.acquire()

        waiter = asyncio.create_task(pool.acquire())
        await _settle()
        assert not waiter.done()
        assert pool.waiting == 1

        pool.release()
        await _settle()
        assert waiter.done()
        # Slot handed over, not returned and re-taken
        assert pool.active == 1
        assert pool.waiting == 0

    async def test_release_without_waiters_decrements(self):
        pool = ConnectionPool(3)
        await pool.acquire()
        pool.release()
        assert pool.active == 0

    async def test_release_on_empty_pool_is_ignored(self, caplog):
        pool = ConnectionPool(1)
        pool.release()
        assert pool.active == 0
        assert "no active connections" in caplog.text

    async def test_waiters_served_in_arrival_order(self):
        pool = ConnectionPool(1)
        await pool.acquire()
        order: list[int] = []

        async def take(i: int) -> None:
            await pool.acquire()
            order.append(i)

        tasks = [asyncio.create_task(take(i)) for i in range(3)]
        await _settle()
        for _ in range(3):
            pool.release()
            await _settle()

        assert order == [0, 1, 2]
        await asyncio.gather(*tasks)

    async def test_cancelled_waiter_leaves_the_queue(self):
        pool = ConnectionPool(1)
        await pool.acquire()

        waiter = asyncio.create_task(pool.acquire())
        await _settle()
        waiter.cancel()
        await _settle()
        assert pool.waiting == 0

        pool.release()
        assert pool.active == 0

    async def test_slot_releases_on_error(self):
        pool = ConnectionPool(1)
        with pytest.raises(RuntimeError):
            async with pool.slot():
                assert pool.active == 1
                raise RuntimeError("boom")
        assert pool.active == 0

    async def test_active_never_exceeds_limit(self):
        pool = ConnectionPool(3)
        peak = 0

        async def work() -> None:
            nonlocal peak
            async with pool.slot():
                peak = max(peak, pool.active)
                await asyncio.sleep(0)

        await asyncio.gather(*(work() for _ in range(12)))
        assert peak == 3
        assert pool.active == 0
