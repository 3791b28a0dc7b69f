"""
Structured Logging with Trace Correlation

Configures logging to include trace_id plus the backend identity
(service, round) attached by the poller's logger adapters.
"""

import logging
import json
import sys
from datetime import datetime, timezone
from typing import Any, MutableMapping, Optional, Tuple

from .tracing import get_span_id, get_trace_id

# Standard LogRecord attributes, never copied into the JSON payload
_RESERVED_ATTRS = frozenset((
    "name", "msg", "args", "created", "filename", "funcName",
    "levelname", "levelno", "lineno", "module", "msecs",
    "pathname", "process", "processName", "relativeCreated",
    "stack_info", "exc_info", "exc_text", "thread", "threadName",
    "message", "taskName", "trace_id",
))


class StructuredFormatter(logging.Formatter):
    """
    JSON structured log formatter with trace context.
    """

    def format(self, record: logging.LogRecord) -> str:
        # Build log entry
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "trace_id": get_trace_id(),
            "span_id": get_span_id(),
        }

        # Add exception info
        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        # Add extra fields (service, round, error, ...)
        for key, value in record.__dict__.items():
            if key in _RESERVED_ATTRS or key.startswith("_"):
                continue
            try:
                json.dumps(value)  # Test if serializable
                log_entry[key] = value
            except (TypeError, ValueError):
                log_entry[key] = str(value)

        return json.dumps(log_entry)


class TraceContextFilter(logging.Filter):
    """
    Filter that adds trace context to log records.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        record.trace_id = get_trace_id() or "no-trace"
        return True


class ServiceLoggerAdapter(logging.LoggerAdapter):
    """
    Logger adapter that tags every record with the adapter's context
    (app_name, service, round) while keeping per-call extras.
    """

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> Tuple[Any, MutableMapping[str, Any]]:
        kwargs["extra"] = {**self.extra, **(kwargs.get("extra") or {})}
        return msg, kwargs

    def bind(self, **context: Any) -> "ServiceLoggerAdapter":
        """Return a new adapter with additional context."""
        return ServiceLoggerAdapter(self.logger, {**self.extra, **context})


def get_service_logger(name: str, app_name: Optional[str] = None, **context: Any) -> ServiceLoggerAdapter:
    """Create a tagged logger; app_name is included when given."""
    extra = {"app_name": app_name} if app_name else {}
    extra.update(context)
    return ServiceLoggerAdapter(logging.getLogger(name), extra)


def configure_logging(
    level: str = "INFO",
    structured: bool = True,
    service_name: str = "outbox-poller"
):
    """
    Configure application logging.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        structured: Use JSON structured format
        service_name: Service name for logs
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    # Remove existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)

    if structured:
        handler.setFormatter(StructuredFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - [%(trace_id)s] %(message)s"
        ))

    handler.addFilter(TraceContextFilter())
    root_logger.addHandler(handler)

    # Set levels for noisy loggers
    logging.getLogger("asyncio").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)
    logging.getLogger("opentelemetry").setLevel(logging.WARNING)

    logging.info(f"Logging configured: {service_name}, level={level}, structured={structured}")
