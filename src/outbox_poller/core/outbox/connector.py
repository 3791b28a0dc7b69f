"""
Backend Connector

Admission gate for one backend: open, ping, probe the outbox table.
A backend that fails any step is skipped for the current round and
tried again on the next one.
"""

import asyncio
import logging
from typing import Callable, Optional

from ..database.adapter import (
    BackendConnection,
    DatabaseBackend,
    create_connection,
    resolve_backend,
)
from ..errors import BackendAdmissionError, UnsupportedDriverError
from .models import ServiceConfig

logger = logging.getLogger(__name__)

ConnectionFactory = Callable[[DatabaseBackend, str], BackendConnection]


class BackendConnector:
    """
    Produces verified connections or a definitive rejection.

    Usage:
        connector = BackendConnector(outbox_table="message_outbox")
        try:
            conn = await connector.admit("billing", service_config)
        except BackendAdmissionError as e:
            ...  # skip "billing" this round
    """

    def __init__(
        self,
        outbox_table: str = "message_outbox",
        connection_factory: Optional[ConnectionFactory] = None
    ):
        self.outbox_table = outbox_table
        self._connection_factory = connection_factory or create_connection

    async def admit(self, service_name: str, service_config: ServiceConfig) -> BackendConnection:
        """Open, ping and probe; the caller owns the returned connection."""
        backend = resolve_backend(service_config.driver)
        if backend is None:
            raise UnsupportedDriverError(service_name, service_config.driver)

        conn = self._connection_factory(backend, service_config.dsn)
        stage = "open"
        try:
            await conn.open()
            stage = "ping"
            await conn.ping()
            stage = "probe"
            await conn.fetch(f"SELECT 1 FROM {self.outbox_table} LIMIT 1")
        except Exception as e:
            await self._discard(service_name, conn)
            raise BackendAdmissionError(service_name, stage, str(e), cause=e) from e
        except BaseException:
            # Cancelled mid-admission: close what was opened, then propagate
            await asyncio.shield(self._discard(service_name, conn))
            raise

        return conn

    async def _discard(self, service_name: str, conn: BackendConnection) -> None:
        try:
            await conn.close()
        except Exception:
            logger.warning(
                "Failed to close rejected backend connection",
                extra={"service": service_name},
                exc_info=True
            )
