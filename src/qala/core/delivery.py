"""Server-Sent Events delivery for chat answers.

Two frame sources feed one terminal wrapper:

    knowledge_frames()  canned answer, one frame per non-blank line, paced
    llm_frames()        upstream fragments, forwarded as they arrive
    deliver()           stops on client disconnect, turns a failure into an
                        inline error frame, always ends with ``data: [DONE]``

Knowledge pacing works in batches of ``batch_size`` frames.  Within a batch
every frame's delay starts at once and frames are released in order, so a
batch takes as long as its slowest frame.  The delay for the frame at
``position`` of ``total`` is::

    base_delay_s / clamp(total / 10, 1, 5) * (1 + position / total)

Metrics emitted:
    qala.stream.frames_total  (counter, source=knowledge|llm|error)
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterable, AsyncIterator, Awaitable, Callable
from contextlib import aclosing
from typing import Any

from starlette.requests import Request

from qala.config import StreamConfig
from qala.core.metrics import PipelineMetrics
from qala.knowledge.normalize import prepare_streaming_chunks

logger = logging.getLogger(__name__)

DONE_FRAME = "data: [DONE]\n\n"


def sse_frame(text: str) -> str:
    """Encode *text* as one SSE event; embedded newlines become extra data lines."""
    return "".join(f"data: {line}\n" for line in text.split("\n")) + "\n"


def _generic_error(exc: Exception) -> str:  # noqa: ARG001
    return "Error processing your request"


class StreamDelivery:
    """Turns answer text into paced SSE frames.

    Parameters
    ----------
    config:
        Pacing and line-splitting settings.
    sleep:
        Delay function; tests pass a recorder or zero-delay stub.
    """

    def __init__(
        self,
        config: StreamConfig | None = None,
        *,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        metrics: PipelineMetrics | None = None,
    ) -> None:
        self._config = config or StreamConfig()
        self._sleep = sleep
        self._metrics = metrics or PipelineMetrics()

    def split_response(self, response: str) -> list[str]:
        if self._config.max_line_chars > 0:
            return prepare_streaming_chunks(response, self._config.max_line_chars)
        return [line for line in response.split("\n") if line.strip()]

    def delay_for(self, position: int, total: int) -> float:
        speedup = min(max(total / 10, 1.0), 5.0)
        return self._config.base_delay_s / speedup * (1 + position / total)

    async def knowledge_frames(self, response: str) -> AsyncIterator[str]:
        lines = self.split_response(response)
        total = len(lines)
        batch_size = self._config.batch_size

        for start in range(0, total, batch_size):
            batch = lines[start : start + batch_size]
            timers = [
                asyncio.ensure_future(self._sleep(self.delay_for(start + offset, total)))
                for offset in range(len(batch))
            ]
            try:
                for line, timer in zip(batch, timers, strict=True):
                    await timer
                    self._metrics.stream_frames("knowledge")
                    yield sse_frame(line)
            finally:
                for timer in timers:
                    timer.cancel()

    async def llm_frames(self, fragments: AsyncIterable[str]) -> AsyncIterator[str]:
        """Forward upstream fragments; closing this closes the upstream iterator too."""
        async with aclosing(aiter(fragments)) as source:
            async for fragment in source:
                if not fragment:
                    continue
                self._metrics.stream_frames("llm")
                yield sse_frame(fragment)

    async def deliver(
        self,
        frames: AsyncIterator[str],
        request: Request | None = None,
        *,
        describe_error: Callable[[Exception], str] = _generic_error,
    ) -> AsyncIterator[str]:
        """Wrap *frames* so the client always sees a clean end of stream.

        Frames are forwarded in order until the source is exhausted or the
        client disconnects.  A failure in the source is logged and replaced
        by one error frame.  ``[DONE]`` is written last unless the client is
        already gone.
        """
        try:
            async with aclosing(frames) as source:
                async for frame in source:
                    if request is not None and await request.is_disconnected():
                        logger.info("Client disconnected; stopping chat stream")
                        return
                    yield frame
        except (asyncio.CancelledError, GeneratorExit):
            logger.info("Chat stream closed before completion")
            raise
        except Exception as exc:
            logger.exception("Chat stream failed")
            self._metrics.stream_frames("error")
            yield sse_frame(describe_error(exc))

        yield DONE_FRAME
