"""
Observability Package

Telemetry for the demo service, covering all four signals:
1. TRACES: OpenTelemetry spans → OTLP/HTTP → collector → Tempo
2. METRICS: OpenTelemetry counters/histograms → OTLP/HTTP → collector → Mimir
3. LOGS: stdlib logging bridged to OpenTelemetry → OTLP/HTTP → collector → Loki
4. PROFILES: pyroscope-io agent → Pyroscope, tagged with the active span id

Every span carries `pyroscope.profile.id`, and the same value is the `span_id`
label on the profiling samples taken while it is active.

FAILURE MODE:
If the collector or Pyroscope is down, signals are dropped and logged; the
application keeps serving traffic.
"""

from .emitters import LogEmitter, MetricEmitter, TraceEmitter
from .instrumentation import Telemetry, create_resource, initialize_observability, trace_context
from .logging_config import setup_logging
from .profiling import PROFILE_ID_SPAN_ATTRIBUTE, ProfilingTracerProvider

__all__ = [
    "LogEmitter",
    "MetricEmitter",
    "PROFILE_ID_SPAN_ATTRIBUTE",
    "ProfilingTracerProvider",
    "Telemetry",
    "TraceEmitter",
    "create_resource",
    "initialize_observability",
    "setup_logging",
    "trace_context",
]
