"""OpenTelemetry metrics instruments for the request pipeline.

Instruments are created lazily from the global MeterProvider, so callers do
not need to pass a Meter instance around.  When OTEL_EXPORTER_OTLP_ENDPOINT is
not set, the global no-op MeterProvider is used and all recordings are silent.

Instruments
-----------
  qala.throttle.wait_ms            Histogram   (label: request_class)
  qala.throttle.throttled_total    Counter     (label: request_class)
  qala.pool.active_connections     UpDownCounter
  qala.pool.waiting_requests       UpDownCounter
  qala.knowledge.lookup_total      Counter     (label: outcome)
  qala.llm.retry_total             Counter
  qala.stream.frames_total         Counter     (label: source)
"""

from __future__ import annotations

import logging
import os

from opentelemetry import metrics

logger = logging.getLogger(__name__)

_METER_NAME = "qala"


def init_metrics(service_name: str) -> metrics.Meter:
    """Initialize OpenTelemetry metrics for the process.

    When OTEL_EXPORTER_OTLP_ENDPOINT is set, configures a real MeterProvider
    with a periodic OTLP gRPC exporter.  Otherwise the global no-op provider
    is left in place.
    """
    endpoint = os.environ.get("OTEL_EXPORTER_OTLP_ENDPOINT")

    if not endpoint:
        logger.info("OTEL_EXPORTER_OTLP_ENDPOINT not set, using no-op meter")
        return metrics.get_meter(_METER_NAME)

    # Import SDK/exporter only when needed to avoid hard dependency at import time
    from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
    from opentelemetry.sdk.metrics import MeterProvider
    from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
    from opentelemetry.sdk.resources import Resource

    resource = Resource.create({"service.name": service_name})
    exporter = OTLPMetricExporter(endpoint=endpoint)
    reader = PeriodicExportingMetricReader(exporter, export_interval_millis=15_000)
    provider = MeterProvider(resource=resource, metric_readers=[reader])

    metrics.set_meter_provider(provider)
    logger.info("Metrics initialized: service=%s, endpoint=%s", service_name, endpoint)

    return metrics.get_meter(_METER_NAME)


def get_meter() -> metrics.Meter:
    """Return a Meter from the current global provider."""
    return metrics.get_meter(_METER_NAME)


class PipelineMetrics:
    """Convenience wrapper that caches the pipeline instruments.

    Safe to construct before ``init_metrics`` is called; recordings are no-ops
    until a real provider is installed.
    """

    def __init__(self) -> None:
        self._instruments: dict[str, object] = {}

    def _get(self, name: str, factory):
        instrument = self._instruments.get(name)
        if instrument is None:
            instrument = factory()
            self._instruments[name] = instrument
        return instrument

    # -- throttle ------------------------------------------------------------

    def record_throttle_wait(self, request_class: str, wait_ms: float) -> None:
        histogram = self._get(
            "throttle_wait",
            lambda: get_meter().create_histogram(
                name="qala.throttle.wait_ms",
                description="Time spent waiting for a rate-limit token",
                unit="ms",
            ),
        )
        histogram.record(wait_ms, {"request_class": request_class})

    def throttled_inc(self, request_class: str) -> None:
        counter = self._get(
            "throttled_total",
            lambda: get_meter().create_counter(
                name="qala.throttle.throttled_total",
                description="Requests that had to queue for a rate-limit token",
                unit="requests",
            ),
        )
        counter.add(1, {"request_class": request_class})

    # -- pool ----------------------------------------------------------------

    def _pool_active(self) -> metrics.UpDownCounter:
        return self._get(
            "pool_active",
            lambda: get_meter().create_up_down_counter(
                name="qala.pool.active_connections",
                description="Outbound connections currently holding a pool slot",
                unit="connections",
            ),
        )

    def _pool_waiting(self) -> metrics.UpDownCounter:
        return self._get(
            "pool_waiting",
            lambda: get_meter().create_up_down_counter(
                name="qala.pool.waiting_requests",
                description="Requests queued for a connection pool slot",
                unit="requests",
            ),
        )

    def pool_active_inc(self) -> None:
        self._pool_active().add(1)

    def pool_active_dec(self) -> None:
        self._pool_active().add(-1)

    def pool_waiting_inc(self) -> None:
        self._pool_waiting().add(1)

    def pool_waiting_dec(self) -> None:
        self._pool_waiting().add(-1)

    # -- knowledge / llm / stream --------------------------------------------

    def knowledge_lookup(self, outcome: str) -> None:
        counter = self._get(
            "knowledge_lookup",
            lambda: get_meter().create_counter(
                name="qala.knowledge.lookup_total",
                description="Knowledge base lookups by resolving tier",
                unit="lookups",
            ),
        )
        counter.add(1, {"outcome": outcome})

    def llm_retry_inc(self) -> None:
        counter = self._get(
            "llm_retry",
            lambda: get_meter().create_counter(
                name="qala.llm.retry_total",
                description="Upstream chat-completion retry attempts",
                unit="attempts",
            ),
        )
        counter.add(1)

    def stream_frames(self, source: str, count: int = 1) -> None:
        counter = self._get(
            "stream_frames",
            lambda: get_meter().create_counter(
                name="qala.stream.frames_total",
                description="SSE data frames written to clients",
                unit="frames",
            ),
        )
        counter.add(count, {"source": source})
