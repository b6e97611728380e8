"""
Tests for the self-driving traffic loop.

The HTTP session is mocked; telemetry goes to the in-memory sinks from
conftest. The loop runs with zero sleep between iterations.
"""

import logging
import threading
import time
from unittest.mock import MagicMock

import pytest
import requests
from opentelemetry.trace import StatusCode

from demo_app.observability.emitters import SIGNAL_LOGGER_NAME
from demo_app.traffic.generator import TrafficGenerator


def _ok(status_code=200):
    response = MagicMock()
    response.status_code = status_code
    return response


def _http_error(status_code):
    response = _ok(status_code)
    response.raise_for_status.side_effect = requests.HTTPError(f"{status_code} Server Error")
    return response


@pytest.fixture
def session():
    return MagicMock(spec=requests.Session)


@pytest.fixture
def generator(telemetry, settings, session):
    return TrafficGenerator(telemetry, settings.generator, session=session, iterations=1)


def _generator_spans(exporter):
    return [s for s in exporter.get_finished_spans() if s.name == "traffic_generator_request"]


def test_failed_call_is_logged_and_loop_continues(generator, session, telemetry, span_exporter, caplog):
    caplog.set_level(logging.INFO, logger=SIGNAL_LOGGER_NAME)
    session.get.side_effect = [requests.ConnectionError("connection refused"), _ok()]

    completed = generator.run(max_iterations=2)

    assert completed == 2
    session.get.assert_called_with("http://testserver/slow", timeout=1.0)

    failed, succeeded = _generator_spans(span_exporter)
    assert failed.status.status_code == StatusCode.ERROR
    assert succeeded.status.status_code != StatusCode.ERROR

    bodies = [r.getMessage() for r in caplog.records if r.name == SIGNAL_LOGGER_NAME]
    assert len(bodies) == 2
    error_body, ok_body = bodies
    assert error_body.startswith("[ERROR] route=/slow method=GET err=connection refused")
    assert f"trace_id={format(failed.context.trace_id, '032x')}" in error_body
    assert f"span_id={format(failed.context.span_id, '016x')}" in error_body
    assert ok_body.startswith("[OK] route=/slow method=GET status=200 duration_ms=")
    assert f"trace_id={format(succeeded.context.trace_id, '032x')}" in ok_body

    registry = telemetry.metrics.registry
    assert registry.get_sample_value(
        "demo_request_total", {"method": "GET", "status": "200", "route": "/slow"}
    ) == 1.0
    assert registry.get_sample_value("demo_request_duration_seconds_count", {"route": "/slow"}) == 1.0


def test_error_status_takes_failure_path(generator, session, telemetry, span_exporter):
    session.get.return_value = _http_error(500)

    assert generator.run_once() is False

    (span,) = _generator_spans(span_exporter)
    assert span.status.status_code == StatusCode.ERROR
    assert any(event.name == "exception" for event in span.events)
    assert telemetry.metrics.registry.get_sample_value(
        "demo_request_total", {"method": "GET", "status": "500", "route": "/slow"}
    ) is None


def test_success_records_log_attributes(generator, session, caplog):
    caplog.set_level(logging.INFO, logger=SIGNAL_LOGGER_NAME)
    session.get.return_value = _ok()

    assert generator.run_once() is True

    (record,) = [r for r in caplog.records if r.name == SIGNAL_LOGGER_NAME]
    assert record.levelno == logging.INFO
    assert record.route == "/slow"
    assert record.status == 200
    assert len(record.trace_id) == 32
    assert len(record.span_id) == 16


def test_unexpected_error_does_not_stop_loop(generator, session, span_exporter):
    session.get.side_effect = [ValueError("bad url"), _ok()]

    assert generator.run(max_iterations=2) == 2
    assert len(_generator_spans(span_exporter)) == 2


def test_each_iteration_starts_a_fresh_trace(generator, session, telemetry, span_exporter):
    session.get.return_value = _ok()

    with telemetry.tracer.start_as_current_span("outer"):
        generator.run_once()
    generator.run_once()

    first, second = _generator_spans(span_exporter)
    assert first.parent is None
    assert second.parent is None
    assert first.context.trace_id != second.context.trace_id
    assert first.attributes["job"] == "demo-app"
    assert first.attributes["service_name"] == "demo-app"


def test_generator_span_is_profiled(generator, session, profiler_tags):
    session.get.return_value = _ok()

    generator.run_once()

    assert ("add", threading.get_ident(), "span_name", "traffic_generator_request") in profiler_tags.history
    assert profiler_tags.current(threading.get_ident()) is None


def test_start_and_stop(generator, session):
    session.get.return_value = _ok()

    generator.start()
    deadline = time.monotonic() + 5
    while session.get.call_count == 0 and time.monotonic() < deadline:
        time.sleep(0.01)
    generator.stop(timeout=5)

    assert session.get.call_count >= 1
    assert not generator.running


def _traffic_threads():
    return [t for t in threading.enumerate() if t.name == "traffic-generator" and t.is_alive()]


def test_restart_never_runs_two_loops(generator, session):
    release = threading.Event()
    in_flight = threading.Event()

    def blocking_get(url, timeout):
        in_flight.set()
        release.wait(5)
        return _ok()

    session.get.side_effect = blocking_get

    generator.start()
    assert in_flight.wait(5)

    # The loop is stuck in its downstream call: stop times out, the thread is kept
    generator.stop(timeout=0.05)
    assert generator.running

    with pytest.raises(RuntimeError):
        generator.start()
    assert len(_traffic_threads()) == 1

    release.set()
    generator.start()
    assert len(_traffic_threads()) == 1

    generator.stop(timeout=5)
    assert not generator.running
    assert _traffic_threads() == []
