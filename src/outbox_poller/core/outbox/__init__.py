"""
Outbox Polling

Claims pending messages from the outbox tables of many backends.

Usage:
    from outbox_poller.core.outbox import (
        PollerContext, PollingOrchestrator, StaticServiceRegistry,
    )

    registry = StaticServiceRegistry({
        "billing": {"dsn": "postgresql://...", "driver": "postgresql"},
    })
    orchestrator = PollingOrchestrator(registry, PollerContext(config=PollerConfig()))
    await orchestrator.run()
"""

from .models import OutboxMessage, OutboxStatus, ServiceConfig
from .registry import (
    ServiceRegistry,
    StaticServiceRegistry,
    FileServiceRegistry,
    EnvServiceRegistry,
    registry_from_config,
)
from .connector import BackendConnector
from .claim import ClaimTransaction, build_claim_query
from .sink import MessageSink, LoggingSink
from .context import PollerContext
from .worker import OutboxWorker, ClaimResult
from .orchestrator import PollingOrchestrator, PollerState, RoundReport
from .runner import OutboxRunner, main

__all__ = [
    "OutboxMessage",
    "OutboxStatus",
    "ServiceConfig",
    "ServiceRegistry",
    "StaticServiceRegistry",
    "FileServiceRegistry",
    "EnvServiceRegistry",
    "registry_from_config",
    "BackendConnector",
    "ClaimTransaction",
    "build_claim_query",
    "MessageSink",
    "LoggingSink",
    "PollerContext",
    "OutboxWorker",
    "ClaimResult",
    "PollingOrchestrator",
    "PollerState",
    "RoundReport",
    "OutboxRunner",
    "main",
]
