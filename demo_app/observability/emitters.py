"""
Signal Emitters

One emitter per OpenTelemetry signal. Each one owns an SDK provider and
pushes to `<endpoint>/v1/<signal>` over OTLP/HTTP:

    TraceEmitter   → BatchSpanProcessor       → /v1/traces
    MetricEmitter  → PeriodicExportingReader  → /v1/metrics
    LogEmitter     → BatchLogRecordProcessor  → /v1/logs

Emission never blocks the caller on network I/O: spans and log records are
queued and exported by a background thread, metrics are aggregated in
memory and collected on an interval.

FAILURE MODE:
If the collector is unreachable the SDK exporters log the error and drop the
batch. There is no retry queue and no at-least-once guarantee; the demo keeps
running with gaps in its telemetry.
"""

import logging
from typing import Optional

from opentelemetry.exporter.otlp.proto.http._log_exporter import OTLPLogExporter
from opentelemetry.exporter.otlp.proto.http.metric_exporter import OTLPMetricExporter
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk._logs import LoggerProvider, LoggingHandler
from opentelemetry.sdk._logs.export import BatchLogRecordProcessor, SimpleLogRecordProcessor
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, SimpleSpanProcessor
from prometheus_client import CollectorRegistry, Counter, Histogram

from ..models import LogRecord, MetricSample
from .profiling import ProfilingTracerProvider

logger = logging.getLogger(__name__)

SIGNAL_LOGGER_NAME = "demo_app.signals"

REQUEST_COUNTER = "demo_request_total"
DURATION_HISTOGRAM = "demo_request_duration_seconds"


def signal_url(endpoint: str, signal: str) -> str:
    """`http://collector:4318` + `traces` → `http://collector:4318/v1/traces`"""
    return f"{endpoint.rstrip('/')}/v1/{signal}"


class SignalEmitter:
    """Common flush/shutdown handling; subclasses provide `_flush` and `_shutdown`."""

    signal = "signals"

    def __init__(self, timeout_ms: int = 5000) -> None:
        self.timeout_ms = timeout_ms
        self._shut_down = False

    def flush(self) -> bool:
        try:
            return bool(self._flush(self.timeout_ms))
        except Exception as e:
            logger.warning(f"⚠ Failed to flush {self.signal}: {e}")
            return False

    def shutdown(self) -> None:
        """Best-effort flush with a bounded wait, then release exporters. Runs once."""
        if self._shut_down:
            return
        self._shut_down = True
        self.flush()
        try:
            self._shutdown()
        except Exception as e:
            logger.warning(f"⚠ Failed to shut down {self.signal} emitter: {e}")

    def _flush(self, timeout_ms: int) -> bool:
        raise NotImplementedError

    def _shutdown(self) -> None:
        raise NotImplementedError


# ============================================================================
# TRACES
# ============================================================================

class TraceEmitter(SignalEmitter):
    """
    Spans are emitted when their scope closes; there is no separate emit call.

    `provider` is the profiling-aware wrapper: anything that creates spans
    through it (our handlers, FastAPI/requests instrumentation) gets a
    profile correlation id on every span.
    """

    signal = "traces"

    def __init__(self, resource: Resource, profiler_tags=None, timeout_ms: int = 5000) -> None:
        super().__init__(timeout_ms)
        self.sdk_provider = TracerProvider(resource=resource)
        self.provider = ProfilingTracerProvider(self.sdk_provider, profiler_tags)

    def configure(self, endpoint: str) -> None:
        exporter = OTLPSpanExporter(endpoint=signal_url(endpoint, self.signal))
        self.sdk_provider.add_span_processor(BatchSpanProcessor(exporter))
        logger.info(f"✓ Tracing initialized → {signal_url(endpoint, self.signal)}")

    def use(self, exporter) -> None:
        """Export synchronously on span end (in-process exporters, tests)."""
        self.sdk_provider.add_span_processor(SimpleSpanProcessor(exporter))

    def tracer(self, name: str):
        return self.provider.get_tracer(name)

    def _flush(self, timeout_ms: int) -> bool:
        return self.sdk_provider.force_flush(timeout_ms)

    def _shutdown(self) -> None:
        self.sdk_provider.shutdown()


# ============================================================================
# METRICS
# ============================================================================

class MetricEmitter(SignalEmitter):
    """
    Request counter + duration histogram.

    The OTel instruments are pushed to the collector; the same samples are
    mirrored into a prometheus_client registry that `/metrics` serves, so the
    numbers can be checked locally without the collector.

    A MeterProvider takes its readers at construction, so the OTel side is
    created by the first `configure`/`use` call. Samples emitted before that
    only reach the Prometheus registry.
    """

    signal = "metrics"

    def __init__(
        self,
        resource: Resource,
        registry: Optional[CollectorRegistry] = None,
        export_interval_ms: int = 10000,
        timeout_ms: int = 5000,
    ) -> None:
        super().__init__(timeout_ms)
        self.resource = resource
        self.export_interval_ms = export_interval_ms
        self.provider: Optional[MeterProvider] = None
        self._requests = None
        self._duration = None

        self.registry = registry or CollectorRegistry()
        self.requests_total = Counter(
            REQUEST_COUNTER,
            "Total requests",
            ["method", "status", "route"],
            registry=self.registry,
        )
        self.request_duration_seconds = Histogram(
            DURATION_HISTOGRAM,
            "Request duration in seconds",
            ["route"],
            buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
            registry=self.registry,
        )

    def configure(self, endpoint: str) -> None:
        exporter = OTLPMetricExporter(endpoint=signal_url(endpoint, self.signal))
        self.use(PeriodicExportingMetricReader(exporter, export_interval_millis=self.export_interval_ms))
        logger.info(f"✓ Metrics initialized → {signal_url(endpoint, self.signal)}")

    def use(self, *readers) -> None:
        if self.provider is not None:
            raise RuntimeError("metric emitter is already configured")

        self.provider = MeterProvider(resource=self.resource, metric_readers=list(readers))
        meter = self.provider.get_meter(__name__)
        self._requests = meter.create_counter(REQUEST_COUNTER, description="Total requests")
        self._duration = meter.create_histogram(
            DURATION_HISTOGRAM,
            unit="s",
            description="Request duration in seconds",
        )

    def emit(self, sample: MetricSample) -> None:
        if self._requests is not None:
            self._requests.add(1, {"method": sample.method, "status": sample.status, "route": sample.route})
            self._duration.record(sample.duration_seconds, {"route": sample.route})

        self.requests_total.labels(method=sample.method, status=sample.status, route=sample.route).inc()
        self.request_duration_seconds.labels(route=sample.route).observe(sample.duration_seconds)

    def _flush(self, timeout_ms: int) -> bool:
        if self.provider is None:
            return True
        return self.provider.force_flush(timeout_ms)

    def _shutdown(self) -> None:
        if self.provider is not None:
            self.provider.shutdown(timeout_millis=self.timeout_ms)


# ============================================================================
# LOGS
# ============================================================================

class LogEmitter(SignalEmitter):
    """
    Correlated log records, bridged from stdlib logging into the OTel log pipeline.

    Records go through the `demo_app.signals` logger: the SDK LoggingHandler
    ships them to the collector (with the active trace context), and normal
    propagation also prints them through the JSON stdout handler.
    """

    signal = "logs"

    def __init__(self, resource: Resource, timeout_ms: int = 5000) -> None:
        super().__init__(timeout_ms)
        self.provider = LoggerProvider(resource=resource)
        self.handler = LoggingHandler(level=logging.NOTSET, logger_provider=self.provider)
        self.logger = logging.getLogger(SIGNAL_LOGGER_NAME)
        self.logger.setLevel(logging.INFO)
        self.logger.addHandler(self.handler)

    def configure(self, endpoint: str) -> None:
        exporter = OTLPLogExporter(endpoint=signal_url(endpoint, self.signal))
        self.provider.add_log_record_processor(BatchLogRecordProcessor(exporter))
        logger.info(f"✓ Logs initialized → {signal_url(endpoint, self.signal)}")

    def use(self, exporter) -> None:
        self.provider.add_log_record_processor(SimpleLogRecordProcessor(exporter))

    def emit(self, record: LogRecord) -> None:
        self.logger.log(record.severity, record.body, extra=dict(record.attributes))

    def _flush(self, timeout_ms: int) -> bool:
        return self.provider.force_flush(timeout_ms)

    def _shutdown(self) -> None:
        self.logger.removeHandler(self.handler)
        self.provider.shutdown()
