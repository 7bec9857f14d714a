"""Token-bucket admission control per request class.

Each request class (``chat``, ``knowledge``, ``embedding``) owns an
independent :class:`TokenBucket`.  Exhaustion never rejects a caller: it
queues in FIFO order and is granted a token by a later refill.

Refill is lazy (computed from elapsed time on every access) and whole-token
(``floor(elapsed * rate)``).  While callers are queued a loop timer re-checks
the bucket when the next token is due, so waiters drain even when no further
requests arrive.

Metrics emitted:
    qala.throttle.wait_ms            (histogram, request_class)
    qala.throttle.throttled_total    (counter, request_class)
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from collections import deque
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any

from qala.config import ThrottleConfig
from qala.core.metrics import PipelineMetrics

logger = logging.getLogger(__name__)

# Absorbs float drift so that exactly 1/rate seconds yields one token.
_EPSILON = 1e-9

_PROCESSING_WINDOW = 100


class TokenBucket:
    """Capped pool of permits refilled at ``refill_rate`` tokens per second.

    Parameters
    ----------
    capacity:
        Maximum tokens held; also the burst size allowed before queueing.
    refill_rate:
        Tokens added per second.
    clock:
        Monotonic time source in seconds.  Tests inject a fake clock.
    """

    def __init__(
        self,
        capacity: float,
        refill_rate: float,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if capacity <= 0 or refill_rate <= 0:
            raise ValueError("capacity and refill_rate must be positive")
        self.capacity = float(capacity)
        self.refill_rate = float(refill_rate)
        self._clock = clock
        self._tokens = float(capacity)
        self._last_refill = clock()
        self._waiters: deque[asyncio.Future[None]] = deque()
        self._wakeup: asyncio.TimerHandle | None = None

    # ------------------------------------------------------------------
    # Refill
    # ------------------------------------------------------------------

    def _refill(self) -> None:
        now = self._clock()
        elapsed = now - self._last_refill
        if elapsed <= 0:
            return
        new_tokens = math.floor(elapsed * self.refill_rate + _EPSILON)
        if new_tokens <= 0:
            return
        self._tokens = min(self.capacity, self._tokens + new_tokens)
        if self._tokens >= self.capacity:
            self._last_refill = now
        else:
            # Keep the fractional remainder so a waiter is never short-changed.
            self._last_refill += new_tokens / self.refill_rate

    def _process_waiting(self) -> None:
        self._refill()
        while self._waiters and self._tokens >= 1:
            waiter = self._waiters.popleft()
            if waiter.done():
                continue
            self._tokens -= 1
            waiter.set_result(None)
        self._schedule_wakeup()

    def _schedule_wakeup(self) -> None:
        if not self._waiters:
            if self._wakeup is not None:
                self._wakeup.cancel()
                self._wakeup = None
            return
        if self._wakeup is not None:
            return
        due = self._last_refill + 1 / self.refill_rate - self._clock()
        loop = asyncio.get_running_loop()
        self._wakeup = loop.call_later(max(due, 0.0), self._on_wakeup)

    def _on_wakeup(self) -> None:
        self._wakeup = None
        self._process_waiting()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def try_acquire(self) -> bool:
        """Take a token without waiting.  False when none is free or callers are queued."""
        self._refill()
        if not self._waiters and self._tokens >= 1:
            self._tokens -= 1
            return True
        return False

    async def acquire(self) -> None:
        """Take one token, queueing behind earlier callers when the bucket is empty."""
        if self.try_acquire():
            return

        waiter: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        self._schedule_wakeup()
        try:
            await waiter
        except asyncio.CancelledError:
            if waiter.done() and not waiter.cancelled():
                # Granted but the caller went away; hand the token on.
                self._tokens = min(self.capacity, self._tokens + 1)
                self._process_waiting()
            raise

    def available(self) -> int:
        """Whole tokens currently free, after granting any due waiters."""
        if self._waiters:
            self._process_waiting()
        else:
            self._refill()
        return int(self._tokens)

    @property
    def waiting(self) -> int:
        return sum(1 for w in self._waiters if not w.done())

    def stats(self) -> dict[str, Any]:
        return {
            "available_tokens": self.available(),
            "max_tokens": self.capacity,
            "refill_rate": self.refill_rate,
            "waiting_requests": self.waiting,
        }


@dataclass
class RequestStats:
    """Aggregate counters across all throttled requests."""

    total_requests: int = 0
    throttled_requests: int = 0
    peak_concurrent: int = 0
    current_concurrent: int = 0
    processing_times_ms: deque[float] = field(
        default_factory=lambda: deque(maxlen=_PROCESSING_WINDOW)
    )

    @property
    def average_processing_ms(self) -> float:
        if not self.processing_times_ms:
            return 0.0
        return sum(self.processing_times_ms) / len(self.processing_times_ms)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_requests": self.total_requests,
            "throttled_requests": self.throttled_requests,
            "peak_concurrent": self.peak_concurrent,
            "current_concurrent": self.current_concurrent,
            "average_processing_ms": round(self.average_processing_ms, 2),
        }


class RequestThrottler:
    """Routes each request class through its own token bucket.

    Owned by the application lifespan and shared by every request handler.
    With ``config.enabled`` false all classes pass straight through, but
    request statistics are still collected.
    """

    def __init__(
        self,
        config: ThrottleConfig | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        metrics: PipelineMetrics | None = None,
    ) -> None:
        config = config or ThrottleConfig()
        self.enabled = config.enabled
        self._clock = clock
        self._metrics = metrics or PipelineMetrics()
        self.buckets: dict[str, TokenBucket] = {
            name: TokenBucket(bucket.capacity, bucket.refill_rate, clock=clock)
            for name, bucket in config.buckets.items()
        }
        self.stats = RequestStats()

    def bucket(self, request_class: str) -> TokenBucket:
        try:
            return self.buckets[request_class]
        except KeyError:
            raise ValueError(f"Unknown request class: {request_class!r}") from None

    @asynccontextmanager
    async def throttle(self, request_class: str) -> AsyncIterator[None]:
        """Hold admission for *request_class* for the duration of the block."""
        bucket = self.bucket(request_class)
        stats = self.stats
        stats.total_requests += 1
        stats.current_concurrent += 1
        stats.peak_concurrent = max(stats.peak_concurrent, stats.current_concurrent)
        started = self._clock()
        try:
            if self.enabled and not bucket.try_acquire():
                stats.throttled_requests += 1
                self._metrics.throttled_inc(request_class)
                logger.debug(
                    "Request queued for token: class=%s waiting=%d",
                    request_class,
                    bucket.waiting + 1,
                )
                await bucket.acquire()
            self._metrics.record_throttle_wait(request_class, (self._clock() - started) * 1000)
            yield
            stats.processing_times_ms.append((self._clock() - started) * 1000)
        finally:
            stats.current_concurrent -= 1

    async def run[T](self, request_class: str, fn: Callable[[], Awaitable[T]]) -> T:
        """Await ``fn()`` once *request_class* admits it."""
        async with self.throttle(request_class):
            return await fn()

    def get_stats(self) -> dict[str, Any]:
        return {
            "enabled": self.enabled,
            **{name: bucket.stats() for name, bucket in self.buckets.items()},
            "requests": self.stats.to_dict(),
        }
