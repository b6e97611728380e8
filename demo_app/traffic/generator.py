"""
Traffic Generator

Keeps the demo alive without an external load tool: a background thread
calls the CPU-bound route forever, so there is always a fresh trace → profile
pair to click through.

ONE ITERATION:
1. Open a root span `traffic_generator_request` (fresh trace)
2. Run the regex workload once inside it, so the generator's own stack shows
   up in the span's profile
3. GET /slow through the instrumented `requests` session (traceparent is
   propagated, the server-side spans join the same trace)
4. Failure → record the error on the span, emit an ERROR log
   Success → count + time the request, emit an INFO log
5. Close the span, sleep 100-600ms

FAILURE MODE:
A failed call (server not up yet, timeout, 5xx) is logged and the loop moves
on; only `stop()` ends it.
"""

import logging
import random
import threading
import time
from typing import Optional

import requests
from opentelemetry.context import Context
from opentelemetry.trace import Status, StatusCode

from ..config import GeneratorConfig
from ..faults.workloads import check_email
from ..models import LogRecord, MetricSample
from ..observability.instrumentation import Telemetry, trace_context

logger = logging.getLogger(__name__)


class TrafficGenerator:
    """Self-driving client for the CPU-bound route, bound to a stoppable thread."""

    def __init__(
        self,
        telemetry: Telemetry,
        config: GeneratorConfig,
        session: Optional[requests.Session] = None,
        iterations: int = 5000,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.telemetry = telemetry
        self.config = config
        self.session = session or requests.Session()
        self.iterations = iterations
        self.rng = rng or random.Random()

        self.tracer = telemetry.tracer
        self.url = config.target_url.rstrip("/") + config.route

        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run_once(self) -> bool:
        """
        Perform one generator iteration.

        Returns:
            True if the downstream call succeeded
        """
        route = self.config.route
        service = self.telemetry.settings.service

        with self.tracer.start_as_current_span("traffic_generator_request", context=Context()) as span:
            span.set_attributes({"job": service.job, "service_name": service.name})

            check_email(self.iterations)

            start = time.perf_counter()
            try:
                response = self.session.get(self.url, timeout=self.config.request_timeout_s)
                response.raise_for_status()
            except requests.RequestException as e:
                ids = trace_context(span)
                span.record_exception(e)
                span.set_status(Status(StatusCode.ERROR, str(e)))
                self.telemetry.logs.emit(LogRecord.failure(route, e, ids["trace_id"], ids["span_id"]))
                return False
            duration = time.perf_counter() - start
            response.close()

            ids = trace_context(span)
            self.telemetry.metrics.emit(
                MetricSample(route=route, status=str(response.status_code), duration_seconds=duration)
            )
            self.telemetry.logs.emit(
                LogRecord.success(
                    route,
                    response.status_code,
                    int(duration * 1000),
                    ids["trace_id"],
                    ids["span_id"],
                )
            )
            return True

    def run(self, max_iterations: Optional[int] = None) -> int:
        """
        Loop until stopped (or `max_iterations` iterations have run).

        Returns:
            Number of iterations performed
        """
        return self._loop(self._stop, max_iterations)

    def _loop(self, stop: threading.Event, max_iterations: Optional[int]) -> int:
        logger.info(f"Starting traffic generator → {self.url}")
        completed = 0
        while not stop.is_set():
            try:
                self.run_once()
            except Exception:
                logger.exception("Traffic generator iteration failed")
            completed += 1
            if max_iterations is not None and completed >= max_iterations:
                break
            stop.wait(self._next_interval())
        logger.info(f"Traffic generator stopped after {completed} iterations")
        return completed

    def start(self) -> None:
        """
        Run the loop on a daemon thread.

        A loop that is still finishing its last iteration after `stop()` is
        waited for (up to the request timeout) so that at most one loop runs.

        Raises:
            RuntimeError: if the previous loop is still running after the wait
        """
        if self._thread is not None and self._thread.is_alive():
            if not self._stop.is_set():
                return
            self._thread.join(self.config.request_timeout_s)
            if self._thread.is_alive():
                raise RuntimeError("previous traffic generator loop is still stopping")

        # Each loop owns its stop event; a stale loop never sees a fresh one
        self._stop = threading.Event()
        self._thread = threading.Thread(
            target=self._loop,
            args=(self._stop, None),
            name="traffic-generator",
            daemon=True,
        )
        self._thread.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        """Signal the loop to stop and wait up to `timeout` for it to exit."""
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            if not self._thread.is_alive():
                self._thread = None
            else:
                logger.warning("Traffic generator did not stop within timeout; still finishing an iteration")

    def _next_interval(self) -> float:
        low, high = self.config.min_interval_ms, self.config.max_interval_ms
        return self.rng.uniform(low, high) / 1000.0
