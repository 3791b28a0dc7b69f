"""
Polling Orchestrator

Round-based control loop:
- take a fresh backend snapshot from the service registry,
- admit and claim on every backend concurrently (one task per backend),
- wait for all of them (barrier),
- sleep the poll interval, repeat until cancelled.
"""

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional

from ..database.adapter import BackendConnection
from ..errors import BackendAdmissionError
from ..observability.metrics import record_counter, record_histogram
from ..observability.tracing import ATTR_BACKENDS, round_span
from .connector import BackendConnector
from .context import PollerContext
from .models import ServiceConfig
from .registry import ServiceRegistry
from .worker import ClaimResult, OutboxWorker

WorkerFactory = Callable[[PollerContext, BackendConnection], OutboxWorker]


class PollerState(str, Enum):
    """Lifecycle of the orchestrator. CANCELLED is terminal."""
    RUNNING = "running"
    CANCELLED = "cancelled"


@dataclass
class RoundReport:
    """What happened to each backend in one round."""

    round_number: int
    services: List[str] = field(default_factory=list)
    admitted: List[str] = field(default_factory=list)
    rejected: Dict[str, str] = field(default_factory=dict)  # service -> failed stage
    results: Dict[str, ClaimResult] = field(default_factory=dict)

    @property
    def claimed_count(self) -> int:
        return sum(len(r.messages) for r in self.results.values() if r.committed)


class PollingOrchestrator:
    """
    Drives polling rounds across all registered backends.

    Usage:
        context = PollerContext(config=PollerConfig())
        orchestrator = PollingOrchestrator(registry, context)
        task = asyncio.create_task(orchestrator.run())
        ...
        orchestrator.cancel()   # current round finishes, no new round starts
        await task
    """

    def __init__(
        self,
        registry: ServiceRegistry,
        context: PollerContext,
        connector: Optional[BackendConnector] = None,
        worker_factory: WorkerFactory = OutboxWorker
    ):
        self.registry = registry
        self.context = context
        self.connector = connector or BackendConnector(outbox_table=context.config.outbox_table)
        self.worker_factory = worker_factory
        self.poll_interval = context.config.poll_interval
        self._round = 0
        self._rounds_completed = 0
        self.last_report: Optional[RoundReport] = None

    @property
    def state(self) -> PollerState:
        return PollerState.CANCELLED if self.context.cancelled else PollerState.RUNNING

    @property
    def rounds_completed(self) -> int:
        return self._rounds_completed

    def cancel(self) -> None:
        """Request shutdown. In-flight workers finish their transaction."""
        if not self.context.cancelled:
            self.context.logger.info("Cancellation requested")
        self.context.cancel()

    async def run(self, max_rounds: Optional[int] = None) -> int:
        """Run rounds until cancelled (or max_rounds); returns rounds completed."""
        log = self.context.logger
        log.info("Polling started", extra={"poll_interval": self.poll_interval})

        while self.state == PollerState.RUNNING:
            await self.run_round()
            if max_rounds is not None and self._rounds_completed >= max_rounds:
                break
            await self._sleep()

        log.info("Polling stopped", extra={"rounds": self._rounds_completed})
        return self._rounds_completed

    async def run_round(self) -> RoundReport:
        """
        One fan-out/fan-in cycle.

        RegistryInitError propagates: without a backend set the process
        cannot continue. Everything else is contained per backend.
        """
        self._round += 1
        round_number = self._round
        report = RoundReport(round_number=round_number)
        log = self.context.logger.bind(round=round_number)
        started = time.monotonic()

        with round_span(round_number) as span:
            services = self.registry.list()
            report.services = sorted(services)
            span.set_attribute(ATTR_BACKENDS, report.services)
            log.debug("Round started", extra={"services": report.services})

            tasks = [
                asyncio.create_task(
                    self._poll_backend(name, service_config, round_number, report),
                    name=f"outbox-poller:{name}:{round_number}"
                )
                for name, service_config in services.items()
            ]
            outcomes = await asyncio.gather(*tasks, return_exceptions=True)

        for name, outcome in zip(services, outcomes):
            if isinstance(outcome, BaseException) and not isinstance(outcome, asyncio.CancelledError):
                log.error(
                    "Backend task crashed",
                    extra={"service": name, "error": repr(outcome)},
                    exc_info=outcome
                )

        self._rounds_completed += 1
        self.last_report = report
        record_counter("outbox_rounds_total")
        record_histogram("outbox_round_duration_seconds", time.monotonic() - started)
        log.info(
            "Round completed",
            extra={
                "admitted": len(report.admitted),
                "rejected": len(report.rejected),
                "claimed": report.claimed_count,
            }
        )
        return report

    async def _poll_backend(
        self,
        service_name: str,
        service_config: ServiceConfig,
        round_number: int,
        report: RoundReport
    ) -> None:
        log = self.context.logger_for(service_name, round_number)

        if self.context.cancelled:
            log.info("Cancellation requested, backend not polled")
            return

        try:
            conn = await self.connector.admit(service_name, service_config)
        except BackendAdmissionError as e:
            report.rejected[service_name] = e.stage
            log.error(
                f"Backend rejected at {e.stage}",
                extra={"stage": e.stage, "error": str(e)}
            )
            record_counter("outbox_backends_rejected_total", 1, {"service": service_name, "stage": e.stage})
            return

        report.admitted.append(service_name)
        log.info("Backend admitted", extra={"driver": service_config.driver})
        record_counter("outbox_backends_admitted_total", 1, {"service": service_name})

        try:
            worker = self.worker_factory(self.context, conn)
        except Exception:
            await conn.close()
            raise
        report.results[service_name] = await worker.run(service_name, round_number)

    async def _sleep(self) -> None:
        """Wait the poll interval, waking early on cancellation."""
        try:
            await asyncio.wait_for(self.context.cancel_event.wait(), timeout=self.poll_interval)
        except asyncio.TimeoutError:
            pass
