"""
Test trace → profile correlation.

Every span must carry `pyroscope.profile.id`, and the profiler must see the
same value as the `span_id` tag of the thread for exactly as long as the span
is open.
"""

import asyncio
import threading

import pytest
from opentelemetry.trace import SpanKind, StatusCode

from demo_app.observability.profiling import (
    PROFILE_ID_SPAN_ATTRIBUTE,
    ProfiledSpan,
    ThreadTagStack,
    correlation_id,
)


def test_span_attribute_matches_profiler_tag(telemetry, profiler_tags, span_exporter):
    thread_id = threading.get_ident()

    with telemetry.tracer.start_as_current_span("work") as span:
        seen = profiler_tags.current(thread_id)
        seen_name = profiler_tags.current(thread_id, "span_name")
        expected = format(span.get_span_context().span_id, "016x")

    (finished,) = span_exporter.get_finished_spans()
    assert finished.attributes[PROFILE_ID_SPAN_ATTRIBUTE] == expected
    assert seen == expected
    assert seen_name == "work"


def test_tag_withdrawn_after_span_ends(telemetry, profiler_tags):
    thread_id = threading.get_ident()

    with telemetry.tracer.start_as_current_span("work"):
        pass

    assert profiler_tags.current(thread_id) is None
    assert profiler_tags.current(thread_id, "span_name") is None


def test_no_active_span_means_no_tag(telemetry, profiler_tags):
    assert profiler_tags.current(threading.get_ident()) is None
    assert profiler_tags.history == []


def test_nested_span_publishes_innermost_and_restores_parent(telemetry, profiler_tags, span_exporter):
    thread_id = threading.get_ident()
    tracer = telemetry.tracer

    with tracer.start_as_current_span("parent") as parent:
        parent_id = correlation_id(parent)
        with tracer.start_as_current_span("child") as child:
            assert profiler_tags.current(thread_id) == correlation_id(child)
        assert profiler_tags.current(thread_id) == parent_id
        assert profiler_tags.current(thread_id, "span_name") == "parent"

    child_span, parent_span = span_exporter.get_finished_spans()
    assert child_span.context.trace_id == parent_span.context.trace_id
    assert child_span.parent.span_id == parent_span.context.span_id


def test_concurrent_scopes_do_not_cross_contaminate(telemetry, profiler_tags):
    tracer = telemetry.tracer
    both_open = threading.Barrier(2)
    results = {}

    def worker(name):
        with tracer.start_as_current_span(name) as span:
            both_open.wait(timeout=5)
            results[name] = (correlation_id(span), profiler_tags.current(threading.get_ident()))
            both_open.wait(timeout=5)

    threads = [threading.Thread(target=worker, args=(name,)) for name in ("a", "b")]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=10)

    (a_id, a_seen), (b_id, b_seen) = results["a"], results["b"]
    assert a_id != b_id
    assert a_seen == a_id
    assert b_seen == b_id


def test_span_ended_from_another_thread_releases_its_tag(telemetry, profiler_tags):
    thread_id = threading.get_ident()
    span = telemetry.tracer.start_span("handoff")
    assert profiler_tags.current(thread_id) == correlation_id(span)

    ender = threading.Thread(target=span.end)
    ender.start()
    ender.join(timeout=5)

    assert profiler_tags.current(thread_id) is None


def test_span_started_on_event_loop_is_attributed_but_not_tagged(telemetry, profiler_tags, span_exporter):
    async def handler():
        with telemetry.tracer.start_as_current_span("async-work"):
            return profiler_tags.current(threading.get_ident())

    assert asyncio.run(handler()) is None
    (finished,) = span_exporter.get_finished_spans()
    assert PROFILE_ID_SPAN_ATTRIBUTE in finished.attributes
    assert profiler_tags.history == []


def test_exception_marks_span_and_releases_tag(telemetry, profiler_tags, span_exporter):
    with pytest.raises(RuntimeError):
        with telemetry.tracer.start_as_current_span("boom"):
            raise RuntimeError("boom")

    (finished,) = span_exporter.get_finished_spans()
    assert finished.status.status_code == StatusCode.ERROR
    assert profiler_tags.current(threading.get_ident()) is None


def test_wrapper_is_transparent(telemetry):
    with telemetry.tracer.start_as_current_span("work") as span:
        assert isinstance(span, ProfiledSpan)
        assert span.is_recording()
        span.set_attribute("demo.key", "value")
        span.add_event("checkpoint")


def test_wrapper_exposes_sdk_span_members(telemetry):
    with telemetry.tracer.start_as_current_span("server", kind=SpanKind.SERVER) as span:
        assert span.kind == SpanKind.SERVER
        assert span.name == "server"
        assert span.attributes[PROFILE_ID_SPAN_ATTRIBUTE] == correlation_id(span)
        assert span.parent is None


def test_tag_stack_pop_out_of_order(profiler_tags):
    stack = ThreadTagStack(profiler_tags)
    thread_id = threading.get_ident()

    outer = stack.push("aaaaaaaaaaaaaaaa", "outer")
    inner = stack.push("bbbbbbbbbbbbbbbb", "inner")

    # Ending the outer scope first must not disturb the published inner one
    stack.pop(outer)
    assert profiler_tags.current(thread_id) == "bbbbbbbbbbbbbbbb"

    stack.pop(inner)
    assert profiler_tags.current(thread_id) is None
    assert stack.active(thread_id) is None
