"""Unit tests for the pipeline OTel instruments.

Covers:
- init_metrics: no-op when OTEL_EXPORTER_OTLP_ENDPOINT is not set
- PipelineMetrics: instruments record with the expected attributes
- ConnectionPool, RequestThrottler, KnowledgeBase emit through PipelineMetrics
"""

from __future__ import annotations

import asyncio
from typing import Any

import pytest
from opentelemetry import metrics
from opentelemetry.metrics import _internal as _metrics_internal
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import InMemoryMetricReader
from opentelemetry.util._once import Once

from qala.config import BucketConfig, ThrottleConfig
from qala.core.metrics import PipelineMetrics, init_metrics
from qala.core.pool import ConnectionPool
from qala.core.throttle import RequestThrottler
from qala.knowledge.base import KnowledgeBase

pytestmark = pytest.mark.unit


# ---------------------------------------------------------------------------
# Helpers / fixtures
# ---------------------------------------------------------------------------


def _reset_metrics_global_state() -> None:
    """Reset the OTel global MeterProvider so each test can install its own."""
    _metrics_internal._METER_PROVIDER_SET_ONCE = Once()
    _metrics_internal._METER_PROVIDER = None


@pytest.fixture
def reader():
    _reset_metrics_global_state()
    in_memory = InMemoryMetricReader()
    provider = MeterProvider(metric_readers=[in_memory])
    metrics.set_meter_provider(provider)
    yield in_memory
    provider.shutdown()
    _reset_metrics_global_state()


def _collect(reader: InMemoryMetricReader) -> dict[str, Any]:
    """Flatten metrics data into {metric_name: data_points}."""
    result: dict[str, Any] = {}
    data = reader.get_metrics_data()
    if data is None:
        return result
    for rm in data.resource_metrics:
        for sm in rm.scope_metrics:
            for metric in sm.metrics:
                if metric.data.data_points:
                    result[metric.name] = metric.data.data_points
    return result


def _by_attr(points, key: str) -> dict[str, Any]:
    return {p.attributes[key]: p.value for p in points}


# ---------------------------------------------------------------------------
# init_metrics
# ---------------------------------------------------------------------------


class TestInitMetrics:
    def test_returns_meter_when_endpoint_not_set(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.delenv("OTEL_EXPORTER_OTLP_ENDPOINT", raising=False)
        assert init_metrics("qala-test") is not None

    def test_recording_without_provider_is_silent(self):
        recorder = PipelineMetrics()
        recorder.knowledge_lookup("none")
        recorder.pool_active_inc()
        recorder.pool_active_dec()


# ---------------------------------------------------------------------------
# Instruments
# ---------------------------------------------------------------------------


class TestPipelineMetrics:
    def test_counters_carry_labels(self, reader):
        recorder = PipelineMetrics()
        recorder.knowledge_lookup("cache")
        recorder.knowledge_lookup("cache")
        recorder.knowledge_lookup("scan")
        recorder.stream_frames("knowledge", count=3)
        recorder.llm_retry_inc()

        data = _collect(reader)
        assert _by_attr(data["qala.knowledge.lookup_total"], "outcome") == {
            "cache": 2,
            "scan": 1,
        }
        assert _by_attr(data["qala.stream.frames_total"], "source") == {"knowledge": 3}
        assert data["qala.llm.retry_total"][0].value == 1

    def test_instruments_are_created_once(self, reader):
        recorder = PipelineMetrics()
        recorder.throttled_inc("chat")
        first = recorder._instruments["throttled_total"]
        recorder.throttled_inc("chat")
        assert recorder._instruments["throttled_total"] is first


class TestComponentEmission:
    async def test_pool_gauges_return_to_zero(self, reader):
        pool = ConnectionPool(1, metrics=PipelineMetrics())
        await pool.acquire()
        waiter = asyncio.create_task(pool.acquire())
        await asyncio.sleep(0)

        data = _collect(reader)
        assert data["qala.pool.active_connections"][0].value == 1
        assert data["qala.pool.waiting_requests"][0].value == 1

        pool.release()
        await waiter
        pool.release()

        data = _collect(reader)
        assert data["qala.pool.active_connections"][0].value == 0
        assert data["qala.pool.waiting_requests"][0].value == 0

    async def test_throttler_counts_queued_requests(self, reader, clock):
        throttler = RequestThrottler(
            ThrottleConfig(buckets={"chat": BucketConfig(capacity=1, refill_rate=10)}),
            clock=clock,
            metrics=PipelineMetrics(),
        )
        async def noop() -> None:
            return None

        async with throttler.throttle("chat"):
            pass
        queued = asyncio.create_task(throttler.run("chat", noop))
        await asyncio.sleep(0)
        clock.advance(0.1)
        throttler.bucket("chat").available()
        await queued

        data = _collect(reader)
        assert _by_attr(data["qala.throttle.throttled_total"], "request_class") == {"chat": 1}
        waits = data["qala.throttle.wait_ms"]
        assert waits[0].count == 2

    def test_knowledge_outcomes(self, reader):
        knowledge = KnowledgeBase(metrics=PipelineMetrics())
        knowledge.find_matching("پەیوەندی")
        knowledge.find_matching("پەیوەندی")
        knowledge.find_matching("hello world")

        data = _collect(reader)
        assert _by_attr(data["qala.knowledge.lookup_total"], "outcome") == {
            "prefetch": 1,
            "cache": 1,
            "none": 1,
        }
