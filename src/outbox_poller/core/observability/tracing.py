"""
OpenTelemetry Tracing

Every polling round runs in an "outbox.round" span; each backend's claim
runs in a child "outbox.claim" span carrying the service name, round
number and the number of messages claimed. A failed claim marks its span
with the stage that failed. Log lines pick up the active trace and span
ids from here.
"""

import logging
from contextlib import contextmanager
from typing import Iterable, Iterator, Optional

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import SERVICE_NAME, SERVICE_VERSION, Resource
from opentelemetry.sdk.trace import SpanProcessor, TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from opentelemetry.trace import Span, Status, StatusCode

logger = logging.getLogger(__name__)

DEFAULT_SERVICE_NAME = "outbox-poller"

ROUND_SPAN = "outbox.round"
CLAIM_SPAN = "outbox.claim"

ATTR_SERVICE = "outbox.service"
ATTR_ROUND = "outbox.round"
ATTR_BACKENDS = "outbox.backends"
ATTR_CLAIMED = "outbox.claimed"
ATTR_STAGE = "outbox.failed_stage"

_tracer: Optional[trace.Tracer] = None


def init_tracing(
    service_name: str = DEFAULT_SERVICE_NAME,
    service_version: str = "0.1.0",
    otlp_endpoint: Optional[str] = None,
    console_export: bool = False,
    extra_processors: Optional[Iterable[SpanProcessor]] = None
) -> trace.Tracer:
    """
    Build the tracer provider for the poller process.

    Args:
        service_name: APP_NAME, recorded as the resource service name
        service_version: RELEASE
        otlp_endpoint: OTLP gRPC collector (e.g., "http://localhost:4317")
        console_export: Print finished spans to stdout
        extra_processors: Additional span processors (tests attach an
            in-memory exporter here)
    """
    global _tracer

    provider = TracerProvider(resource=Resource.create({
        SERVICE_NAME: service_name,
        SERVICE_VERSION: service_version,
    }))

    if otlp_endpoint:
        provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=otlp_endpoint, insecure=True)))
        logger.info(f"OTel tracing: exporting rounds and claims to {otlp_endpoint}")
    if console_export:
        provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
    for processor in extra_processors or ():
        provider.add_span_processor(processor)

    trace.set_tracer_provider(provider)
    _tracer = provider.get_tracer(service_name, service_version)
    return _tracer


def reset_tracing():
    """Forget the configured tracer; spans fall back to the global provider."""
    global _tracer
    _tracer = None


def get_tracer() -> trace.Tracer:
    if _tracer is None:
        return trace.get_tracer(DEFAULT_SERVICE_NAME)
    return _tracer


def get_current_span() -> Span:
    return trace.get_current_span()


def get_trace_id() -> Optional[str]:
    """Hex trace id of the active span, if any."""
    context = get_current_span().get_span_context()
    return format(context.trace_id, '032x') if context.is_valid else None


def get_span_id() -> Optional[str]:
    context = get_current_span().get_span_context()
    return format(context.span_id, '016x') if context.is_valid else None


@contextmanager
def round_span(round_number: int) -> Iterator[Span]:
    """Span around one fan-out/fan-in round; set ATTR_BACKENDS once the registry is read."""
    with get_tracer().start_as_current_span(ROUND_SPAN, attributes={ATTR_ROUND: round_number}) as span:
        yield span


@contextmanager
def claim_span(service_name: str, round_number: int) -> Iterator[Span]:
    """Span around one backend's claim transaction, a child of the round span."""
    attributes = {ATTR_SERVICE: service_name, ATTR_ROUND: round_number}
    with get_tracer().start_as_current_span(CLAIM_SPAN, attributes=attributes) as span:
        yield span


def mark_claim_failed(span: Span, stage: str, error: BaseException) -> None:
    """Record a handled claim failure without re-raising."""
    span.set_attribute(ATTR_STAGE, stage)
    span.set_status(Status(StatusCode.ERROR, f"{stage}: {error}"))
    span.record_exception(error)
