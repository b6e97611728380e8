"""
Signal payloads produced once per completed unit of work.
These dataclasses are handed to the emitters and never mutated afterwards.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict


@dataclass(frozen=True)
class LogRecord:
    """
    Correlated log line.

    The body embeds route, status/error, duration and the trace/span ids as
    literal substrings so a full-text search in the log store finds it without
    parsing; the attributes mirror the same fields for structured queries.
    """
    severity: int
    body: str
    attributes: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def success(
        cls,
        route: str,
        status: int,
        duration_ms: int,
        trace_id: str,
        span_id: str,
        method: str = "GET",
    ) -> "LogRecord":
        body = (
            f"[OK] route={route} method={method} status={status} "
            f"duration_ms={duration_ms} trace_id={trace_id} span_id={span_id}"
        )
        return cls(
            severity=logging.INFO,
            body=body,
            attributes={
                "route": route,
                "method": method,
                "status": status,
                "duration_ms": duration_ms,
                "trace_id": trace_id,
                "span_id": span_id,
            },
        )

    @classmethod
    def failure(
        cls,
        route: str,
        error: Any,
        trace_id: str,
        span_id: str,
        method: str = "GET",
    ) -> "LogRecord":
        body = f"[ERROR] route={route} method={method} err={error} trace_id={trace_id} span_id={span_id}"
        return cls(
            severity=logging.ERROR,
            body=body,
            attributes={
                "route": route,
                "method": method,
                "error": str(error),
                "trace_id": trace_id,
                "span_id": span_id,
            },
        )


@dataclass(frozen=True)
class MetricSample:
    """One request-count increment plus one duration observation"""
    route: str
    status: str
    duration_seconds: float
    method: str = "GET"
