"""Bounded pool of outbound connection slots.

At most ``max_connections`` slots are outstanding at once.  Excess callers
wait in FIFO order; ``release()`` hands the freed slot straight to the
oldest waiter so the active count never dips and rises around a hand-off.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from qala.core.metrics import PipelineMetrics

logger = logging.getLogger(__name__)


class ConnectionPool:
    """FIFO-fair counting permit for outbound API calls."""

    def __init__(self, max_connections: int = 20, *, metrics: PipelineMetrics | None = None):
        if max_connections < 1:
            raise ValueError("max_connections must be at least 1")
        self.max_connections = max_connections
        self._active = 0
        self._waiters: deque[asyncio.Future[None]] = deque()
        self._metrics = metrics or PipelineMetrics()

    @property
    def active(self) -> int:
        return self._active

    @property
    def waiting(self) -> int:
        return sum(1 for w in self._waiters if not w.done())

    async def acquire(self) -> None:
        if self._active < self.max_connections and not self.waiting:
            self._active += 1
            self._metrics.pool_active_inc()
            return

        waiter: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        self._metrics.pool_waiting_inc()
        try:
            await waiter
        except asyncio.CancelledError:
            if waiter.done() and not waiter.cancelled():
                # The slot was handed over before the cancellation landed.
                self.release()
            else:
                self._discard(waiter)
            raise
        finally:
            self._metrics.pool_waiting_dec()

    def _discard(self, waiter: asyncio.Future[None]) -> None:
        try:
            self._waiters.remove(waiter)
        except ValueError:
            pass

    def release(self) -> None:
        """Return one slot, passing it to the oldest live waiter if any."""
        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                waiter.set_result(None)
                return
        if self._active <= 0:
            logger.warning("ConnectionPool.release() called with no active connections")
            return
        self._active -= 1
        self._metrics.pool_active_dec()

    @asynccontextmanager
    async def slot(self) -> AsyncIterator[None]:
        """Hold one slot for the duration of the block, releasing it on any exit."""
        await self.acquire()
        try:
            yield
        finally:
            self.release()

    def stats(self) -> dict[str, int]:
        return {
            "active_connections": self._active,
            "max_connections": self.max_connections,
            "waiting_requests": self.waiting,
        }
