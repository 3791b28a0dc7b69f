"""
Poller Context

Explicit dependencies shared by the orchestrator and its workers.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Optional

from ..config import PollerConfig
from ..observability.logging import ServiceLoggerAdapter, get_service_logger
from .sink import LoggingSink, MessageSink


@dataclass
class PollerContext:
    """Configuration, sink, logger and cancellation signal for one poller."""

    config: PollerConfig
    sink: MessageSink = field(default_factory=LoggingSink)
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)
    logger: Optional[ServiceLoggerAdapter] = None

    def __post_init__(self):
        if self.logger is None:
            self.logger = get_service_logger("outbox_poller", app_name=self.config.app_name)

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def cancel(self) -> None:
        self.cancel_event.set()

    def logger_for(self, service_name: str, round_number: int) -> ServiceLoggerAdapter:
        return self.logger.bind(service=service_name, round=round_number)
