"""
Pytest configuration and fixtures for the telemetry demo tests.
"""

import threading
from typing import Dict, List, Optional, Tuple

import pytest
from opentelemetry.sdk.metrics.export import InMemoryMetricReader
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

from demo_app.config import FaultConfig, GeneratorConfig, Settings
from demo_app.observability.instrumentation import Telemetry


class RecordingProfilerTags:
    """Stands in for the pyroscope agent: remembers the live tags of each thread."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.active: Dict[int, Dict[str, str]] = {}
        self.history: List[Tuple[str, int, str, str]] = []

    def add(self, thread_id: int, key: str, value: str) -> None:
        with self._lock:
            self.active.setdefault(thread_id, {})[key] = value
            self.history.append(("add", thread_id, key, value))

    def remove(self, thread_id: int, key: str, value: str) -> None:
        with self._lock:
            tags = self.active.get(thread_id, {})
            if tags.get(key) == value:
                del tags[key]
            self.history.append(("remove", thread_id, key, value))

    def current(self, thread_id: int, key: str = "span_id") -> Optional[str]:
        with self._lock:
            return self.active.get(thread_id, {}).get(key)


@pytest.fixture
def settings() -> Settings:
    """Small, fast workloads; no profiler, no background traffic."""
    settings = Settings()
    settings.faults = FaultConfig(
        hello_failure_rate=0.0,
        hello_max_delay_ms=0,
        slow_iterations=5,
        cpu_burn_max_ms=50,
        chunk_size=1024,
        chunk_count=4,
        max_retained=20,
    )
    settings.generator = GeneratorConfig(
        enabled=False,
        target_url="http://testserver",
        min_interval_ms=0,
        max_interval_ms=0,
        request_timeout_s=1.0,
    )
    settings.telemetry.profiling_enabled = False
    return settings


@pytest.fixture
def profiler_tags() -> RecordingProfilerTags:
    return RecordingProfilerTags()


@pytest.fixture
def span_exporter() -> InMemorySpanExporter:
    return InMemorySpanExporter()


@pytest.fixture
def metric_reader() -> InMemoryMetricReader:
    return InMemoryMetricReader()


@pytest.fixture
def telemetry(settings, profiler_tags, span_exporter, metric_reader):
    """Telemetry context exporting synchronously to in-memory sinks."""
    telemetry = Telemetry.build(settings, profiler_tags=profiler_tags)
    telemetry.traces.use(span_exporter)
    telemetry.metrics.use(metric_reader)
    yield telemetry

    telemetry.shutdown()
