"""
Trace → Profile Correlation

This module makes spans and profiling samples joinable without any manual
bookkeeping in request handlers.

HOW IT WORKS:
1. Handlers call `tracer.start_as_current_span("slow_business_logic")` as usual
2. `ProfilingTracer` delegates to the SDK tracer, then derives the correlation
   identifier from the new span (its 16-hex span id)
3. The identifier is written to the span as `pyroscope.profile.id`
4. The same identifier is published as the `span_id` profiler tag of the
   calling thread until the span ends
5. Pyroscope labels every stack sample of that thread with the tag, so
   "Profiles for this span" in Grafana is an exact label match

Nested spans on one thread publish the innermost span and restore the
enclosing one when they end.

FAILURE MODE:
Spans started from coroutine code run on the event-loop thread, which
interleaves many requests. A thread tag there would leak one request's id
into another's samples, so such spans get the attribute but no tag.
"""

import asyncio
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional

import pyroscope
from opentelemetry import trace
from opentelemetry.trace import Span, SpanKind

logger = logging.getLogger(__name__)

PROFILE_ID_SPAN_ATTRIBUTE = "pyroscope.profile.id"
PROFILE_ID_TAG = "span_id"
SPAN_NAME_TAG = "span_name"


def correlation_id(span: Span) -> Optional[str]:
    """Correlation identifier for a span, or None for invalid (non-recording) contexts."""
    ctx = span.get_span_context()
    if not ctx.is_valid:
        return None
    return format(ctx.span_id, "016x")


# ============================================================================
# PROFILER TAG SINKS
# ============================================================================

class NullProfilerTags:
    """Tag sink used when the profiling client is disabled or failed to start."""

    def add(self, thread_id: int, key: str, value: str) -> None:
        pass

    def remove(self, thread_id: int, key: str, value: str) -> None:
        pass


class PyroscopeTags:
    """Publishes thread tags to the running pyroscope-io agent."""

    def add(self, thread_id: int, key: str, value: str) -> None:
        pyroscope.add_thread_tag(thread_id, key, value)

    def remove(self, thread_id: int, key: str, value: str) -> None:
        pyroscope.remove_thread_tag(thread_id, key, value)


@dataclass(eq=False)
class _ActiveScope:
    thread_id: int
    correlation_id: str
    span_name: str


class ThreadTagStack:
    """Tracks the open scopes of each thread and keeps the innermost one published."""

    def __init__(self, tags) -> None:
        self._tags = tags
        self._lock = threading.Lock()
        self._stacks: Dict[int, List[_ActiveScope]] = {}

    def push(self, correlation_id: str, span_name: str) -> Optional[_ActiveScope]:
        if _on_event_loop():
            return None

        scope = _ActiveScope(threading.get_ident(), correlation_id, span_name)
        with self._lock:
            stack = self._stacks.setdefault(scope.thread_id, [])
            if stack:
                self._unpublish(stack[-1])
            stack.append(scope)
            self._publish(scope)
        return scope

    def pop(self, scope: _ActiveScope) -> None:
        # A span may be ended from another thread; the entry carries its own thread id.
        with self._lock:
            stack = self._stacks.get(scope.thread_id)
            if not stack or scope not in stack:
                return
            was_innermost = stack[-1] is scope
            stack.remove(scope)
            if was_innermost:
                self._unpublish(scope)
                if stack:
                    self._publish(stack[-1])
            if not stack:
                del self._stacks[scope.thread_id]

    def active(self, thread_id: int) -> Optional[str]:
        with self._lock:
            stack = self._stacks.get(thread_id)
            return stack[-1].correlation_id if stack else None

    def _publish(self, scope: _ActiveScope) -> None:
        self._tags.add(scope.thread_id, PROFILE_ID_TAG, scope.correlation_id)
        self._tags.add(scope.thread_id, SPAN_NAME_TAG, scope.span_name)

    def _unpublish(self, scope: _ActiveScope) -> None:
        self._tags.remove(scope.thread_id, PROFILE_ID_TAG, scope.correlation_id)
        self._tags.remove(scope.thread_id, SPAN_NAME_TAG, scope.span_name)


def _on_event_loop() -> bool:
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return False
    return True


# ============================================================================
# TRACER WRAPPERS
# ============================================================================

class ProfiledSpan(Span):
    """Span proxy that withdraws its profiler tag when it ends."""

    def __init__(self, span: Span, stack: ThreadTagStack, scope: Optional[_ActiveScope]) -> None:
        self._span = span
        self._stack = stack
        self._scope = scope

    @property
    def wrapped(self) -> Span:
        return self._span

    def end(self, end_time: Optional[int] = None) -> None:
        if self._scope is not None:
            self._stack.pop(self._scope)
            self._scope = None
        self._span.end(end_time=end_time)

    def get_span_context(self):
        return self._span.get_span_context()

    def set_attributes(self, attributes) -> None:
        self._span.set_attributes(attributes)

    def set_attribute(self, key, value) -> None:
        self._span.set_attribute(key, value)

    def add_event(self, name, attributes=None, timestamp=None) -> None:
        self._span.add_event(name, attributes=attributes, timestamp=timestamp)

    def add_link(self, context, attributes=None) -> None:
        self._span.add_link(context, attributes)

    def update_name(self, name: str) -> None:
        self._span.update_name(name)

    def is_recording(self) -> bool:
        return self._span.is_recording()

    def set_status(self, status, description: Optional[str] = None) -> None:
        self._span.set_status(status, description)

    def record_exception(self, exception, attributes=None, timestamp=None, escaped=False) -> None:
        self._span.record_exception(exception, attributes=attributes, timestamp=timestamp, escaped=escaped)

    def __getattr__(self, name):
        # SDK-only members (kind, name, attributes, parent...) read by instrumentation
        if name == "_span":
            raise AttributeError(name)
        return getattr(self._span, name)

    def __repr__(self) -> str:
        return f"ProfiledSpan({self._span!r})"


class ProfilingTracer(trace.Tracer):
    """Tracer decorator: every span it creates carries a profile correlation id."""

    def __init__(self, tracer: trace.Tracer, stack: ThreadTagStack) -> None:
        self._tracer = tracer
        self._stack = stack

    def start_span(
        self,
        name,
        context=None,
        kind=SpanKind.INTERNAL,
        attributes=None,
        links=None,
        start_time=None,
        record_exception=True,
        set_status_on_exception=True,
    ) -> Span:
        span = self._tracer.start_span(
            name,
            context=context,
            kind=kind,
            attributes=attributes,
            links=links,
            start_time=start_time,
            record_exception=record_exception,
            set_status_on_exception=set_status_on_exception,
        )
        profile_id = correlation_id(span)
        if profile_id is None:
            return span

        span.set_attribute(PROFILE_ID_SPAN_ATTRIBUTE, profile_id)
        return ProfiledSpan(span, self._stack, self._stack.push(profile_id, name))

    @contextmanager
    def start_as_current_span(
        self,
        name,
        context=None,
        kind=SpanKind.INTERNAL,
        attributes=None,
        links=None,
        start_time=None,
        record_exception=True,
        set_status_on_exception=True,
        end_on_exit=True,
    ) -> Iterator[Span]:
        span = self.start_span(
            name,
            context=context,
            kind=kind,
            attributes=attributes,
            links=links,
            start_time=start_time,
            record_exception=record_exception,
            set_status_on_exception=set_status_on_exception,
        )
        with trace.use_span(
            span,
            end_on_exit=end_on_exit,
            record_exception=record_exception,
            set_status_on_exception=set_status_on_exception,
        ) as current:
            yield current


class ProfilingTracerProvider(trace.TracerProvider):
    """
    Wraps an SDK TracerProvider so that instrumentation libraries (FastAPI,
    requests) and our own code get correlation through the normal tracer API.

    Only the wrapped provider owns processors; flush/shutdown go to `delegate`.
    """

    def __init__(self, delegate: trace.TracerProvider, tags=None) -> None:
        self.delegate = delegate
        self.tag_stack = ThreadTagStack(tags or NullProfilerTags())

    def get_tracer(self, *args, **kwargs) -> trace.Tracer:
        return ProfilingTracer(self.delegate.get_tracer(*args, **kwargs), self.tag_stack)


# ============================================================================
# PROFILING CLIENT
# ============================================================================

def start_profiling(settings):
    """
    Start the pyroscope-io agent and return the tag sink bound to it.

    The agent samples the whole process independently of tracing; samples
    taken while no span is active on a thread carry no `span_id` tag
    (background/idle profiling).

    Returns:
        PyroscopeTags when the agent is running, NullProfilerTags otherwise
    """
    if not settings.telemetry.profiling_enabled:
        logger.info("Profiling disabled (PYROSCOPE_ENABLED=false)")
        return NullProfilerTags()

    try:
        pyroscope.configure(
            application_name=settings.service.name,
            server_address=settings.telemetry.pyroscope_address,
            tags={"env": settings.service.environment},
        )
    except Exception as e:
        logger.warning(f"⚠ Failed to start pyroscope: {e}. Continuing without profiling.")
        return NullProfilerTags()

    logger.info(f"✓ Profiling initialized: {settings.service.name} → {settings.telemetry.pyroscope_address}")
    return PyroscopeTags()


def stop_profiling(tags) -> None:
    if not isinstance(tags, PyroscopeTags):
        return
    try:
        pyroscope.shutdown()
    except Exception as e:
        logger.warning(f"⚠ Pyroscope shutdown failed: {e}")
