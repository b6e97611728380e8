"""
Structured Logging Configuration

Process diagnostics (startup, shutdown, exporter warnings, generator errors)
are written to stdout as JSON, one object per line, so the container log
collector can ship them to Loki without a parsing stage.

Every line carries the active trace_id/span_id. A log line written inside a
handler links straight to its trace, and from there to the span's profile.

The correlated request logs (`[OK] route=... trace_id=...`) travel through the
same stdlib machinery: see `emitters.LogEmitter`.
"""

import logging
import sys
from typing import Any, Dict
from pythonjsonlogger import jsonlogger

from opentelemetry import trace


class CorrelationJsonFormatter(jsonlogger.JsonFormatter):
    """
    JSON formatter that injects trace_id, span_id and the service name into every log.

    Output: {"msg": "...", "trace_id": "abc...", "span_id": "...", "service": "demo-app", ...}
    """

    def __init__(self, *args, service_name: str = "unknown", **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.service_name = service_name

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        """
        Inject custom fields into every log record.

        Args:
            log_record: The dict that will be serialized to JSON
            record: Python LogRecord object
            message_dict: Extra fields from logger.info("msg", extra={...})
        """
        super().add_fields(log_record, record, message_dict)

        # Explicit ids (from `extra`) win over the ambient span
        span = trace.get_current_span()
        ctx = span.get_span_context()
        if ctx.is_valid:
            log_record.setdefault('trace_id', format(ctx.trace_id, '032x'))
            log_record.setdefault('span_id', format(ctx.span_id, '016x'))

        log_record['level'] = record.levelname
        log_record['logger'] = record.name
        log_record['service'] = self.service_name
        log_record['timestamp'] = self.formatTime(record, self.datefmt)


def setup_logging(level: str = "INFO", service_name: str = "unknown") -> None:
    """
    Configure structured JSON logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        service_name: Service name to include in logs

    Example output:
        {
            "timestamp": "2024-01-15 10:23:45,123",
            "level": "INFO",
            "logger": "demo_app.signals",
            "msg": "[OK] route=/slow method=GET status=200 duration_ms=812 trace_id=... span_id=...",
            "trace_id": "4bf92f3577b34da6a3ce929d0e0e4736",
            "span_id": "00f067aa0ba902b7",
            "service": "demo-app"
        }
    """
    # stdout so Docker/K8s can collect logs
    handler = logging.StreamHandler(sys.stdout)

    formatter = CorrelationJsonFormatter(
        fmt='%(timestamp)s %(level)s %(logger)s %(message)s',
        rename_fields={'message': 'msg'},
        service_name=service_name,
    )
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.addHandler(handler)

    # Silence noisy libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("urllib3.connectionpool").setLevel(logging.WARNING)

    root_logger.info(f"Structured logging initialized for {service_name}")
