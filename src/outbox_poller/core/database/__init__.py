"""
Backend connection layer supporting PostgreSQL, MySQL and SQLite.

Each polled backend gets its own BackendConnection, opened at the start
of a round and closed at its end.

Usage:
    from outbox_poller.core.database import create_connection, resolve_backend

    conn = create_connection(resolve_backend("postgresql"), dsn)
    await conn.open()
    rows = await conn.fetch("SELECT 1 FROM message_outbox LIMIT 1")
    await conn.close()
"""

from .adapter import (
    BackendConnection,
    DatabaseBackend,
    MySQLConnection,
    PostgresConnection,
    SQLiteConnection,
    create_connection,
    parse_mysql_dsn,
    resolve_backend,
)

__all__ = [
    "BackendConnection",
    "DatabaseBackend",
    "MySQLConnection",
    "PostgresConnection",
    "SQLiteConnection",
    "create_connection",
    "parse_mysql_dsn",
    "resolve_backend",
]
