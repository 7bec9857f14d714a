"""Streaming client for the Cohere chat endpoint.

Every call is admitted by the ``chat`` throttle once, then each attempt
holds one :class:`~qala.core.pool.ConnectionPool` slot for as long as the
response body is being read.  Connection errors and non-2xx responses are
retried with exponential backoff (``backoff_base_s * 2**attempt``), but only
until the first fragment has been handed to the caller; after that a failure
propagates, since replaying would duplicate text on the client.

Usage::

    stream = client.stream_chat("سڵاو")
    async for fragment in stream:
        ...
    full_text = stream.text
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import aclosing
from dataclasses import dataclass
from typing import Any

import httpx

from qala.config import LLMConfig
from qala.connectors.stream_parser import Parsed, try_parse_line
from qala.core.metrics import PipelineMetrics
from qala.core.pool import ConnectionPool
from qala.core.telemetry import get_tracer
from qala.core.throttle import RequestThrottler
from qala.core.timing import PerformanceTimer

logger = logging.getLogger(__name__)

_USER_AGENT = "qala-chat/0.1"


class LLMError(Exception):
    """Base class for upstream chat-completion failures."""


class LLMUnavailableError(LLMError):
    """Raised when no API key is configured."""


class UpstreamStatusError(LLMError):
    """Raised for a non-2xx upstream response."""

    def __init__(self, status_code: int, body: str) -> None:
        self.status_code = status_code
        self.body = body
        super().__init__(f"Cohere API error: {status_code} {body[:200]}")


@dataclass(frozen=True)
class ChatOptions:
    temperature: float = 0.65
    p: float = 0.8
    max_tokens: int = 800
    retry_attempts: int = 2

    @classmethod
    def from_config(cls, config: LLMConfig) -> ChatOptions:
        return cls(
            temperature=config.temperature,
            p=config.p,
            max_tokens=config.max_tokens,
            retry_attempts=config.retry_attempts,
        )


class LLMStream:
    """Single-use async sequence of text fragments.

    ``text`` holds everything yielded so far; ``completed`` turns true once
    the upstream stream ends normally.
    """

    def __init__(self, fragments: AsyncIterator[str]) -> None:
        self._fragments = fragments
        self._parts: list[str] = []
        self._started = False
        self.completed = False

    def __aiter__(self) -> AsyncIterator[str]:
        if self._started:
            raise RuntimeError("LLMStream can only be iterated once")
        self._started = True
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[str]:
        async with aclosing(self._fragments) as fragments:
            async for fragment in fragments:
                self._parts.append(fragment)
                yield fragment
        self.completed = True

    @property
    def text(self) -> str:
        return "".join(self._parts)


class CohereClient:
    """Throttled, pooled, retrying client for the streaming chat endpoint.

    Parameters
    ----------
    config:
        Endpoint, model, sampling defaults and retry policy.
    throttler:
        Shared request throttler; calls are admitted under ``chat``.
    pool:
        Shared outbound connection pool.
    http_client:
        Optional pre-built client (tests pass one with a MockTransport).
        When omitted the client owns one and closes it in :meth:`aclose`.
    sleep:
        Backoff sleep, injectable for tests.
    """

    def __init__(
        self,
        config: LLMConfig,
        *,
        throttler: RequestThrottler,
        pool: ConnectionPool,
        http_client: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        metrics: PipelineMetrics | None = None,
    ) -> None:
        self._config = config
        self._throttler = throttler
        self._pool = pool
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=config.timeout_s)
        self._sleep = sleep
        self._metrics = metrics or PipelineMetrics()
        self._tracer = get_tracer()
        self.options = ChatOptions.from_config(config)

        if not self.api_key_configured:
            logger.error("Missing Cohere API key. Set COHERE_API_KEY to enable LLM answers.")

    @property
    def api_key_configured(self) -> bool:
        return bool(self._config.api_key)

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._config.api_key}",
            "Accept": "application/json",
            "User-Agent": _USER_AGENT,
        }

    def build_request_body(
        self, message: str, system_prompt: str, options: ChatOptions
    ) -> dict[str, Any]:
        return {
            "message": message,
            "model": self._config.model,
            "stream": True,
            "preamble": system_prompt,
            "temperature": options.temperature,
            "p": options.p,
            "max_tokens": options.max_tokens,
        }

    def stream_chat(
        self,
        message: str,
        system_prompt: str | None = None,
        options: ChatOptions | None = None,
    ) -> LLMStream:
        """Start a streamed completion for *message*.

        Nothing is sent until the returned stream is iterated.

        Raises (while iterating)
        ------------------------
        LLMUnavailableError
            No API key is configured.
        UpstreamStatusError / httpx.TransportError
            The last failure once retries are exhausted.
        """
        options = options or self.options
        body = self.build_request_body(
            message, system_prompt or self._config.system_prompt, options
        )
        return LLMStream(self._fragments(body, options.retry_attempts))

    async def _fragments(self, body: dict[str, Any], retry_attempts: int) -> AsyncIterator[str]:
        if not self.api_key_configured:
            raise LLMUnavailableError("Cohere API key is not configured")

        timer = PerformanceTimer()
        async with self._throttler.throttle("chat"):
            attempts = 0
            while True:
                yielded = False
                try:
                    async with self._pool.slot():
                        timer.mark("connection_acquired")
                        async with aclosing(self._attempt(body, attempts + 1, timer)) as frags:
                            async for fragment in frags:
                                yielded = True
                                yield fragment
                    logger.info("Cohere stream completed in %.0fms", timer.elapsed())
                    return
                except (httpx.TransportError, UpstreamStatusError) as exc:
                    if yielded:
                        raise
                    attempts += 1
                    if attempts > retry_attempts:
                        logger.error("Cohere request failed after %d attempt(s): %s", attempts, exc)
                        raise
                    delay = self._config.backoff_base_s * 2**attempts
                    logger.warning(
                        "Retry attempt %d for Cohere request in %.2fs: %s", attempts, delay, exc
                    )
                    self._metrics.llm_retry_inc()
                    await self._sleep(delay)

    async def _attempt(
        self, body: dict[str, Any], attempt: int, timer: PerformanceTimer
    ) -> AsyncIterator[str]:
        span = self._tracer.start_span("qala.llm.stream")
        span.set_attribute("qala.llm.attempt", attempt)
        span.set_attribute("qala.llm.model", self._config.model)
        try:
            async with self._client.stream(
                "POST", self._config.base_url, headers=self._headers(), json=body
            ) as response:
                span.set_attribute("http.status_code", response.status_code)
                if not response.is_success:
                    error_body = (await response.aread()).decode("utf-8", errors="replace")
                    raise UpstreamStatusError(response.status_code, error_body)

                timer.mark("api_response_received")
                async for line in response.aiter_lines():
                    result = try_parse_line(line)
                    if isinstance(result, Parsed):
                        yield result.text
        except Exception as exc:
            span.record_exception(exc)
            raise
        finally:
            span.end()

    def stats(self) -> dict[str, Any]:
        return {
            "connections": self._pool.stats(),
            "api_key_configured": self.api_key_configured,
        }

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
