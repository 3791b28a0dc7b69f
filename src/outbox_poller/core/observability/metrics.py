"""
OpenTelemetry Metrics

Counters and histograms for polling rounds, backend admission and
claimed batches. Recording is a no-op until init_metrics() has run.
"""

import logging
from typing import Optional, Dict, Any

from opentelemetry import metrics
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import (
    ConsoleMetricExporter,
    PeriodicExportingMetricReader,
)
from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
from opentelemetry.sdk.resources import Resource, SERVICE_NAME

logger = logging.getLogger(__name__)

# Global meter
_meter: Optional[metrics.Meter] = None

# Metric instruments
_counters: Dict[str, metrics.Counter] = {}
_histograms: Dict[str, metrics.Histogram] = {}

COUNTERS = {
    "outbox_rounds_total": "Total polling rounds completed",
    "outbox_backends_admitted_total": "Backends admitted into a round",
    "outbox_backends_rejected_total": "Backends skipped by the admission gate",
    "outbox_messages_claimed_total": "Messages claimed by workers",
    "outbox_claim_failures_total": "Claim transactions that failed",
}

HISTOGRAMS = {
    "outbox_claim_duration_seconds": "Claim transaction duration",
    "outbox_round_duration_seconds": "Polling round duration",
}


def init_metrics(
    service_name: str = "outbox-poller",
    otlp_endpoint: Optional[str] = None,
    console_export: bool = False,
    export_interval_ms: int = 60000,
    extra_readers: Optional[list] = None
) -> metrics.Meter:
    """
    Initialize OpenTelemetry metrics.

    Args:
        service_name: Name of the service
        otlp_endpoint: OTLP exporter endpoint
        console_export: Enable console export for debugging
        export_interval_ms: Export interval in milliseconds
        extra_readers: Additional metric readers (e.g. InMemoryMetricReader in tests)

    Returns:
        Configured meter
    """
    global _meter

    readers: list = list(extra_readers or [])

    if otlp_endpoint:
        otlp_exporter = OTLPMetricExporter(endpoint=otlp_endpoint, insecure=True)
        readers.append(PeriodicExportingMetricReader(
            otlp_exporter,
            export_interval_millis=export_interval_ms
        ))
        logger.info(f"OTel metrics: OTLP exporter configured -> {otlp_endpoint}")

    if console_export:
        readers.append(PeriodicExportingMetricReader(
            ConsoleMetricExporter(),
            export_interval_millis=export_interval_ms
        ))
        logger.info("OTel metrics: Console exporter enabled")

    resource = Resource.create({SERVICE_NAME: service_name})

    provider = MeterProvider(resource=resource, metric_readers=readers)
    _meter = provider.get_meter(service_name)
    metrics.set_meter_provider(provider)

    _init_standard_metrics(_meter)

    logger.info(f"OTel metrics initialized: {service_name}")

    return _meter


def _init_standard_metrics(meter: metrics.Meter):
    """Create the poller's instruments on the given meter."""
    for name, description in COUNTERS.items():
        _counters[name] = meter.create_counter(name, description=description, unit="1")

    for name, description in HISTOGRAMS.items():
        _histograms[name] = meter.create_histogram(name, description=description, unit="s")


def reset_metrics():
    """Drop all instruments; recording becomes a no-op again."""
    global _meter
    _meter = None
    _counters.clear()
    _histograms.clear()


def get_meter() -> metrics.Meter:
    """Get the global meter."""
    global _meter
    if _meter is None:
        _meter = metrics.get_meter("outbox-poller")
    return _meter


def record_counter(
    name: str,
    value: int = 1,
    attributes: Dict[str, Any] = None
):
    """Record a counter metric."""
    if name in _counters:
        _counters[name].add(value, attributes or {})


def record_histogram(
    name: str,
    value: float,
    attributes: Dict[str, Any] = None
):
    """Record a histogram metric."""
    if name in _histograms:
        _histograms[name].record(value, attributes or {})
