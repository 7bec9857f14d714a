"""Application-owned services and their FastAPI dependency.

Every piece of process-wide state (throttle buckets, connection pool,
knowledge caches, upstream client, message store) is built once by
:func:`build_services` and attached to ``app.state.services``.  Handlers
receive it through :func:`get_services`; tests build their own container
and pass it to ``create_app``.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

import httpx
from fastapi import Request

from qala.config import QalaConfig
from qala.connectors.cohere import CohereClient
from qala.core.delivery import StreamDelivery
from qala.core.metrics import PipelineMetrics
from qala.core.pool import ConnectionPool
from qala.core.throttle import RequestThrottler
from qala.knowledge.base import KnowledgeBase
from qala.knowledge.cache import MatchCache
from qala.storage.memory import InMemoryMessageStore, MessageStore, Role

logger = logging.getLogger(__name__)


@dataclass
class ChatServices:
    """Container for the shared chat pipeline collaborators."""

    config: QalaConfig
    throttler: RequestThrottler
    pool: ConnectionPool
    knowledge: KnowledgeBase
    llm: CohereClient
    delivery: StreamDelivery
    store: MessageStore
    _pending: set[asyncio.Task] = field(default_factory=set, repr=False)

    def persist(self, role: Role, content: str, session_id: str) -> asyncio.Task:
        """Store a message in the background; failures are logged, never raised."""
        task = asyncio.create_task(self._persist(role, content, session_id))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _persist(self, role: Role, content: str, session_id: str) -> None:
        try:
            await self.store.create_message(role, content, session_id)
        except Exception:
            logger.exception("Failed to persist %s message for session %s", role, session_id)

    async def drain(self) -> None:
        """Wait for in-flight background writes."""
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)

    async def start(self) -> None:
        await self.knowledge.start()

    async def aclose(self) -> None:
        await self.knowledge.stop()
        await self.drain()
        await self.llm.aclose()

    def stats(self) -> dict[str, Any]:
        return {
            "throttling": self.throttler.get_stats(),
            "llm": self.llm.stats(),
            "knowledge": self.knowledge.get_sync_stats(),
        }


def build_services(
    config: QalaConfig,
    *,
    http_client: httpx.AsyncClient | None = None,
    store: MessageStore | None = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> ChatServices:
    """Wire the chat pipeline from *config*.

    Parameters
    ----------
    config:
        Parsed application configuration.
    http_client:
        Optional upstream HTTP client (tests inject a MockTransport client).
    store:
        Message store; defaults to a fresh in-memory store.
    sleep:
        Delay function shared by retry backoff and stream pacing.
    """
    metrics = PipelineMetrics()
    throttler = RequestThrottler(config.throttle, metrics=metrics)
    pool = ConnectionPool(config.pool.max_connections, metrics=metrics)
    knowledge = KnowledgeBase(
        match_cache=MatchCache(config.cache.max_size, config.cache.ttl_seconds),
        refresh_interval_s=config.knowledge.refresh_interval_s,
        metrics=metrics,
    )
    llm = CohereClient(
        config.llm,
        throttler=throttler,
        pool=pool,
        http_client=http_client,
        sleep=sleep,
        metrics=metrics,
    )
    return ChatServices(
        config=config,
        throttler=throttler,
        pool=pool,
        knowledge=knowledge,
        llm=llm,
        delivery=StreamDelivery(config.stream, sleep=sleep, metrics=metrics),
        store=store if store is not None else InMemoryMessageStore(),
    )


def get_services(request: Request) -> ChatServices:
    """FastAPI dependency returning the app's :class:`ChatServices`."""
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise RuntimeError("Chat services are not initialized")
    return services
