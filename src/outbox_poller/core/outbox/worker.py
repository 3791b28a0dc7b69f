"""
Outbox Worker

Runs exactly one claim against one admitted backend:
begin -> locking select -> sink -> commit, then rollback (no-op after
commit) and close on every exit path. Failures are logged and reported in
the ClaimResult; they never escape to the orchestrator.
"""

import time
from dataclasses import dataclass, field
from typing import List, Optional

from ..database.adapter import BackendConnection
from ..errors import ClaimError
from ..observability.logging import ServiceLoggerAdapter
from ..observability.metrics import record_counter, record_histogram
from ..observability.tracing import ATTR_CLAIMED, claim_span, mark_claim_failed
from .claim import ClaimTransaction, build_claim_query
from .context import PollerContext
from .models import OutboxMessage, OutboxStatus


@dataclass
class ClaimResult:
    """Outcome of one worker run."""

    service_name: str
    round_number: int
    messages: List[OutboxMessage] = field(default_factory=list)
    committed: bool = False
    skipped: bool = False
    error: Optional[ClaimError] = None

    @property
    def ok(self) -> bool:
        return self.committed and self.error is None


class OutboxWorker:
    """
    One claim-batch operation for one backend.

    The worker owns the connection it is given and closes it when run()
    returns, whatever the outcome.
    """

    def __init__(self, context: PollerContext, conn: BackendConnection):
        self.context = context
        self.conn = conn
        config = context.config
        self.batch_size = config.batch_size
        self.table = config.outbox_table
        self.query = build_claim_query(self.table, conn.supports_row_locks, config.lock_mode)

    async def run(self, service_name: str, round_number: int) -> ClaimResult:
        """Claim up to batch_size new messages; never raises Exception."""
        log = self.context.logger_for(service_name, round_number)
        result = ClaimResult(service_name=service_name, round_number=round_number)
        started = time.monotonic()
        stage = "begin"

        with claim_span(service_name, round_number) as span:
            try:
                if self.context.cancelled:
                    log.info("Cancellation requested, skipping claim")
                    result.skipped = True
                    return result

                await self.conn.begin()

                stage = "query"
                rows = await self.conn.fetch(self.query, OutboxStatus.NEW.value, self.batch_size)

                stage = "scan"
                result.messages = [OutboxMessage.from_row(row) for row in rows]
                log.info("Got messages", extra={"count": len(result.messages)})
                span.set_attribute(ATTR_CLAIMED, len(result.messages))

                stage = "sink"
                tx = ClaimTransaction(self.conn, self.table, service_name)
                await self.context.sink.handle(result.messages, tx)

                stage = "commit"
                await self.conn.commit()
                result.committed = True
                log.info("Committed. Iteration done", extra={"count": len(result.messages)})
                record_counter("outbox_messages_claimed_total", len(result.messages), {"service": service_name})

            except Exception as e:
                result.error = ClaimError(service_name, stage, e)
                log.error(
                    f"Claim failed at {stage}",
                    extra={"stage": stage, "error": str(e)},
                    exc_info=True
                )
                mark_claim_failed(span, stage, e)
                record_counter("outbox_claim_failures_total", 1, {"service": service_name, "stage": stage})

            finally:
                await self._cleanup(log)
                record_histogram(
                    "outbox_claim_duration_seconds",
                    time.monotonic() - started,
                    {"service": service_name}
                )

        return result

    async def _cleanup(self, log: ServiceLoggerAdapter) -> None:
        try:
            await self.conn.rollback()
        except Exception as e:
            log.warning("Rollback failed", extra={"error": str(e)})
        try:
            await self.conn.close()
        except Exception as e:
            log.warning("Failed to close connection", extra={"error": str(e)})
