"""
Observability Module

Provides tracing, metrics collection, and structured logging for the poller.
"""

from .tracing import (
    init_tracing,
    reset_tracing,
    get_tracer,
    get_trace_id,
    get_span_id,
    round_span,
    claim_span,
    mark_claim_failed,
)
from .metrics import (
    init_metrics,
    get_meter,
    record_counter,
    record_histogram,
    reset_metrics,
)
from .logging import (
    configure_logging,
    get_service_logger,
    ServiceLoggerAdapter,
    StructuredFormatter,
)

__all__ = [
    # Tracing
    "init_tracing",
    "reset_tracing",
    "get_tracer",
    "get_trace_id",
    "get_span_id",
    "round_span",
    "claim_span",
    "mark_claim_failed",
    # Metrics
    "init_metrics",
    "get_meter",
    "record_counter",
    "record_histogram",
    "reset_metrics",
    # Logging
    "configure_logging",
    "get_service_logger",
    "ServiceLoggerAdapter",
    "StructuredFormatter",
]
