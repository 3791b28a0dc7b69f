"""
Shared Test Fixtures

Provides in-memory backend connections and poller wiring for unit tests.
"""

import asyncio
import json
from typing import Any, Dict, Iterable, List, Optional

import pytest

from outbox_poller.core.config import PollerConfig
from outbox_poller.core.database.adapter import BackendConnection, DatabaseBackend
from outbox_poller.core.outbox.connector import BackendConnector
from outbox_poller.core.outbox.context import PollerContext


def make_rows(count: int, status: str = "new", start: int = 1) -> List[Dict[str, Any]]:
    """Build outbox rows with sequential ids."""
    return [
        {
            "id": i,
            "body": f"payload-{i}",
            "meta": json.dumps({"n": i}),
            "status": status,
            "attempt_count": 0,
        }
        for i in range(start, start + count)
    ]


class FakeConnection(BackendConnection):
    """
    In-memory stand-in for a backend connection.

    Understands the four statement shapes the poller issues: ping,
    table probe, claim select and status update.
    """

    backend = DatabaseBackend.POSTGRESQL

    def __init__(
        self,
        dsn: str = "fake://db",
        rows: Optional[Iterable[Dict[str, Any]]] = None,
        table_exists: bool = True,
        fail_on: Iterable[str] = (),
        query_delay: float = 0.0,
        supports_row_locks: bool = True
    ):
        super().__init__(dsn)
        self.rows = [dict(r) for r in (rows or [])]
        self.table_exists = table_exists
        self.fail_on = set(fail_on)
        self.query_delay = query_delay
        self.supports_row_locks = supports_row_locks
        self.calls: List[str] = []
        self.queries: List[str] = []
        self.is_open = False
        self.closed = False
        # Set while the claim select is running
        self.query_started = asyncio.Event()
        # Cleared to hold the claim select until released
        self.release_query = asyncio.Event()
        self.release_query.set()

    def _maybe_fail(self, stage: str):
        if stage in self.fail_on:
            raise RuntimeError(f"simulated {stage} failure")

    async def open(self) -> None:
        self.calls.append("open")
        self._maybe_fail("open")
        self.is_open = True
        self.closed = False

    async def close(self) -> None:
        self.calls.append("close")
        self.is_open = False
        self.closed = True

    async def fetch(self, query: str, *args) -> List[Dict[str, Any]]:
        self.queries.append(query)
        if query == "SELECT 1":
            self.calls.append("ping")
            self._maybe_fail("ping")
            return [{"?column?": 1}]
        if query.startswith("SELECT 1 FROM"):
            self.calls.append("probe")
            if not self.table_exists:
                raise RuntimeError("relation \"message_outbox\" does not exist")
            return []
        if query.startswith("SELECT id"):
            self.calls.append("query")
            self.query_started.set()
            if self.query_delay:
                await asyncio.sleep(self.query_delay)
            await self.release_query.wait()
            self._maybe_fail("query")
            status, limit = args
            return [dict(r) for r in self.rows if r["status"] == status][:limit]
        raise AssertionError(f"unexpected query: {query}")

    async def execute(self, query: str, *args) -> str:
        self.queries.append(query)
        self.calls.append("execute")
        if query.startswith("UPDATE"):
            status, ids = args[0], set(args[1:])
            updated = 0
            for row in self.rows:
                if row["id"] in ids:
                    row["status"] = status
                    row["attempt_count"] += 1
                    updated += 1
            return f"UPDATE {updated}"
        raise AssertionError(f"unexpected statement: {query}")

    async def begin(self) -> None:
        self.calls.append("begin")
        self._maybe_fail("begin")
        self._in_transaction = True

    async def _commit(self) -> None:
        self.calls.append("commit")
        self._maybe_fail("commit")

    async def _rollback(self) -> None:
        self.calls.append("rollback")


class FakeBackends:
    """Connection factory handing out FakeConnections keyed by DSN."""

    def __init__(self):
        self.connections: Dict[str, FakeConnection] = {}

    def add(self, dsn: str, **kwargs) -> FakeConnection:
        conn = FakeConnection(dsn=dsn, **kwargs)
        self.connections[dsn] = conn
        return conn

    def __call__(self, backend: DatabaseBackend, dsn: str) -> FakeConnection:
        return self.connections[dsn]


def make_config(**overrides: str) -> PollerConfig:
    environ = {
        "APP_NAME": "outbox-poller-test",
        "OUTBOX_POLL_INTERVAL": "0.01",
        "OUTBOX_SERVICES": json.dumps({"svc": {"dsn": "fake://svc", "driver": "postgresql"}}),
    }
    environ.update(overrides)
    return PollerConfig(environ=environ)


@pytest.fixture
def config() -> PollerConfig:
    return make_config()


@pytest.fixture
def context(config) -> PollerContext:
    return PollerContext(config=config)


@pytest.fixture
def backends() -> FakeBackends:
    return FakeBackends()


@pytest.fixture
def connector(backends, config) -> BackendConnector:
    return BackendConnector(outbox_table=config.outbox_table, connection_factory=backends)
