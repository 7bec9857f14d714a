"""Tests for SSE framing, pacing and the terminal delivery wrapper."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from qala.config import StreamConfig
from qala.core.delivery import DONE_FRAME, StreamDelivery, sse_frame

pytestmark = pytest.mark.unit


async def _collect(frames) -> list[str]:
    return [frame async for frame in frames]


async def _fragments(*items: str):
    for item in items:
        yield item


async def _failing(*items: str):
    for item in items:
        yield item
    raise RuntimeError("upstream went away")


def _request(disconnect_after: int | None = None) -> MagicMock:
    request = MagicMock()
    if disconnect_after is None:
        request.is_disconnected = AsyncMock(return_value=False)
    else:
        results = [False] * disconnect_after + [True] * 10
        request.is_disconnected = AsyncMock(side_effect=results)
    return request


class TestSseFrame:
    def test_single_line(self):
        assert sse_frame("سڵاو") == "data: سڵاو\n\n"

    def test_embedded_newline_becomes_extra_data_line(self):
        assert sse_frame("a\nb") == "data: a\ndata: b\n\n"


class TestKnowledgeFrames:
    async def test_one_frame_per_non_blank_line(self, sleep):
        delivery = StreamDelivery(StreamConfig(base_delay_s=0.04), sleep=sleep)
        frames = await _collect(delivery.knowledge_frames("one\n\n  \ntwo\nthree"))
        assert frames == [sse_frame("one"), sse_frame("two"), sse_frame("three")]

    async def test_delays_scale_with_position(self, sleep):
        delivery = StreamDelivery(StreamConfig(base_delay_s=0.04), sleep=sleep)
        await _collect(delivery.knowledge_frames("a\nb\nc\nd"))
        assert sleep.delays == pytest.approx([0.04, 0.05, 0.06, 0.07])

    async def test_long_answers_speed_up(self):
        delivery = StreamDelivery(StreamConfig(base_delay_s=0.04))
        assert delivery.delay_for(0, 20) == pytest.approx(0.02)
        # Speedup is capped at 5x
        assert delivery.delay_for(0, 100) == pytest.approx(0.008)

    async def test_batches_cover_every_line(self, sleep):
        delivery = StreamDelivery(StreamConfig(base_delay_s=0.01, batch_size=2), sleep=sleep)
        frames = await _collect(delivery.knowledge_frames("1\n2\n3\n4\n5"))
        assert frames == [sse_frame(str(i)) for i in range(1, 6)]
        assert len(sleep.delays) == 5

    async def test_max_line_chars_splits_long_lines(self, sleep):
        delivery = StreamDelivery(StreamConfig(max_line_chars=20), sleep=sleep)
        text = "First sentence here. Second sentence follows."
        frames = await _collect(delivery.knowledge_frames(text))
        assert frames == [
            sse_frame("First sentence here."),
            sse_frame("Second sentence"),
            sse_frame("follows."),
        ]


class TestLlmFrames:
    async def test_forwards_fragments_and_skips_empty(self):
        delivery = StreamDelivery()
        frames = await _collect(delivery.llm_frames(_fragments("Hel", "", "lo")))
        assert frames == [sse_frame("Hel"), sse_frame("lo")]

    async def test_closing_early_closes_the_source(self):
        closed = False

        async def source():
            nonlocal closed
            try:
                yield "one"
                yield "two"
            finally:
                closed = True

        frames = StreamDelivery().llm_frames(source())
        assert await anext(frames) == sse_frame("one")
        await frames.aclose()
        assert closed is True


class TestDeliver:
    async def test_ends_with_done(self):
        delivery = StreamDelivery()
        frames = await _collect(delivery.deliver(_fragments("data: x\n\n"), _request()))
        assert frames == ["data: x\n\n", DONE_FRAME]

    async def test_empty_source_still_sends_done(self):
        delivery = StreamDelivery()
        assert await _collect(delivery.deliver(_fragments())) == [DONE_FRAME]

    async def test_failure_becomes_error_frame_then_done(self):
        delivery = StreamDelivery()
        frames = await _collect(delivery.deliver(_failing("data: partial\n\n")))
        assert frames == [
            "data: partial\n\n",
            sse_frame("Error processing your request"),
            DONE_FRAME,
        ]

    async def test_custom_error_description(self):
        delivery = StreamDelivery()
        frames = await _collect(
            delivery.deliver(_failing(), describe_error=lambda exc: f"Error: {exc}")
        )
        assert frames == [sse_frame("Error: upstream went away"), DONE_FRAME]

    async def test_disconnect_stops_without_done(self):
        delivery = StreamDelivery()
        source = _fragments("data: 1\n\n", "data: 2\n\n", "data: 3\n\n")
        frames = await _collect(delivery.deliver(source, _request(disconnect_after=1)))
        assert frames == ["data: 1\n\n"]
