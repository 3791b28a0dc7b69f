"""
Claim Protocol

SQL for the locking select and the transaction handle passed to sinks.
"""

from typing import Any, Dict, Iterable, List

from ..database.adapter import BackendConnection
from .models import MESSAGE_COLUMNS, OutboxStatus

LOCK_WAIT = "wait"
LOCK_SKIP_LOCKED = "skip_locked"


def build_claim_query(table: str, supports_row_locks: bool, lock_mode: str = LOCK_WAIT) -> str:
    """
    Build the claim select.

    Natural (storage) order, no ORDER BY. Parameters: $1 status, $2 limit.
    Row locks are only requested where the backend has them.
    """
    query = (
        f"SELECT {', '.join(MESSAGE_COLUMNS)} FROM {table} "
        f"WHERE status = $1 LIMIT $2"
    )
    if supports_row_locks:
        query += " FOR UPDATE"
        if lock_mode == LOCK_SKIP_LOCKED:
            query += " SKIP LOCKED"
    return query


class ClaimTransaction:
    """
    The open claim transaction, as seen by a MessageSink.

    Statements run on the worker's connection inside the transaction that
    holds the claimed rows' locks; they commit or roll back with it.
    """

    def __init__(self, conn: BackendConnection, table: str, service_name: str):
        self._conn = conn
        self.table = table
        self.service_name = service_name

    async def fetch(self, query: str, *args) -> List[Dict[str, Any]]:
        return await self._conn.fetch(query, *args)

    async def execute(self, query: str, *args) -> str:
        return await self._conn.execute(query, *args)

    async def update_status(self, message_ids: Iterable[int], status: OutboxStatus) -> str:
        """Set status and bump attempt_count for the given messages."""
        ids = list(message_ids)
        if not ids:
            return ""
        placeholders = ", ".join(f"${i}" for i in range(2, len(ids) + 2))
        return await self._conn.execute(
            f"UPDATE {self.table} "
            f"SET status = $1, attempt_count = attempt_count + 1 "
            f"WHERE id IN ({placeholders})",
            OutboxStatus(status).value,
            *ids
        )
