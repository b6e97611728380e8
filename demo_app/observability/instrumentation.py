"""
OpenTelemetry Instrumentation Setup

This module builds the telemetry context the rest of the service runs on:
- Resource identity (service name/version + the labels Loki/Mimir queries use)
- Trace, metric and log emitters pushing OTLP/HTTP to the collector (Alloy)
- The pyroscope profiling agent, correlated with spans
- Auto-instrumentation for FastAPI (inbound) and requests (outbound)

ARCHITECTURAL PATTERN: Explicit Telemetry Context
Nothing here touches the OTel global providers. `initialize_observability()`
returns a `Telemetry` object that is passed to the app and the traffic
generator, and tests build their own with in-memory exporters.

Shutdown order: traces, metrics, logs are flushed first, then the profiler
is stopped.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Optional

from opentelemetry import trace
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.requests import RequestsInstrumentor
from opentelemetry.sdk.resources import Resource, SERVICE_NAME, SERVICE_VERSION, DEPLOYMENT_ENVIRONMENT

from ..config import Settings
from .emitters import LogEmitter, MetricEmitter, TraceEmitter
from .profiling import NullProfilerTags, start_profiling, stop_profiling

logger = logging.getLogger(__name__)


# ============================================================================
# Resource Attributes
# ============================================================================
# Attached to every span, metric and log record. `service_name` and `job`
# duplicate `service.name` so that Loki/Mimir label matchers line up with the
# Tempo service name.
# ============================================================================

def create_resource(settings: Settings) -> Resource:
    """
    Creates the OpenTelemetry Resource shared by all emitters.

    Built once at process start and never mutated.

    Args:
        settings: Service configuration

    Returns:
        OpenTelemetry Resource object
    """
    service = settings.service
    return Resource(attributes={
        SERVICE_NAME: service.name,
        SERVICE_VERSION: service.version,
        DEPLOYMENT_ENVIRONMENT: service.environment,
        "service_name": service.name,
        "job": service.job,
    })


@dataclass
class Telemetry:
    """Process-wide telemetry, constructed once and handed to whoever emits."""

    settings: Settings
    resource: Resource
    traces: TraceEmitter
    metrics: MetricEmitter
    logs: LogEmitter
    profiler_tags: object

    _shut_down: bool = field(default=False, init=False, repr=False)

    @classmethod
    def build(cls, settings: Settings, profiler_tags=None) -> "Telemetry":
        """
        Wire resource and emitters without any exporter attached.

        Callers attach exporters with `configure(endpoint)` (OTLP) or
        `use(...)` (in-process).
        """
        tags = profiler_tags or NullProfilerTags()
        resource = create_resource(settings)
        timeout_ms = settings.telemetry.shutdown_timeout_ms
        return cls(
            settings=settings,
            resource=resource,
            traces=TraceEmitter(resource, tags, timeout_ms=timeout_ms),
            metrics=MetricEmitter(
                resource,
                export_interval_ms=settings.telemetry.metric_export_interval_ms,
                timeout_ms=timeout_ms,
            ),
            logs=LogEmitter(resource, timeout_ms=timeout_ms),
            profiler_tags=tags,
        )

    @property
    def tracer(self) -> trace.Tracer:
        return self.traces.tracer(self.settings.service.name)

    def instrument_app(self, app) -> None:
        """Request-level spans + HTTP server metrics for every route."""
        FastAPIInstrumentor.instrument_app(
            app,
            tracer_provider=self.traces.provider,
            meter_provider=self.metrics.provider,
            excluded_urls="health,metrics",
        )

    def instrument_outbound(self) -> None:
        """Client spans + traceparent propagation for the `requests` library."""
        RequestsInstrumentor().instrument(
            tracer_provider=self.traces.provider,
            meter_provider=self.metrics.provider,
        )

    def shutdown(self) -> None:
        if self._shut_down:
            return
        self._shut_down = True

        self.traces.shutdown()
        self.metrics.shutdown()
        self.logs.shutdown()
        stop_profiling(self.profiler_tags)
        logger.info("Telemetry shut down")


def trace_context(span: Optional[trace.Span] = None) -> Dict[str, str]:
    """
    Extract trace ID and span ID for correlation.

    USE CASE: Logging
    -----------------
    The ids are embedded in log bodies so a full-text search for a trace id
    finds every log line of that trace.

    Returns:
        Dict with trace_id and span_id (or empty if no valid span)
    """
    if span is None:
        span = trace.get_current_span()
    ctx = span.get_span_context()

    if ctx.is_valid:
        return {
            "trace_id": format(ctx.trace_id, "032x"),
            "span_id": format(ctx.span_id, "016x"),
        }
    return {}


# ============================================================================
# INITIALIZATION FUNCTION (Called by the CLI)
# ============================================================================

def initialize_observability(settings: Settings) -> Telemetry:
    """
    One-line setup for all observability.

    Resource or exporter construction errors propagate: they are the only
    fatal startup errors. A profiler that fails to start is logged and
    skipped.

    Args:
        settings: Loaded configuration

    Returns:
        Telemetry context with OTLP exporters and profiling attached
    """
    endpoint = settings.telemetry.otlp_endpoint

    telemetry = Telemetry.build(settings, profiler_tags=start_profiling(settings))
    telemetry.traces.configure(endpoint)
    telemetry.metrics.configure(endpoint)
    telemetry.logs.configure(endpoint)

    logger.info(f"🔭 Observability initialized for {settings.service.name}")
    return telemetry
