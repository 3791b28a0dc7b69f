"""
Outbox Models

Records read from a backend's outbox table and the connection
parameters of the backends themselves.
"""

from enum import Enum
from typing import Any, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class OutboxStatus(str, Enum):
    """Status of an outbox message."""
    NEW = "new"
    DONE = "done"
    ERROR = "error"


TERMINAL_STATUSES = frozenset({OutboxStatus.DONE, OutboxStatus.ERROR})

# Column order of the claim query
MESSAGE_COLUMNS = ("id", "body", "meta", "status", "attempt_count")


class OutboxMessage(BaseModel):
    """A pending or claimed message. Body and meta are opaque."""

    model_config = ConfigDict(frozen=True)

    id: int
    body: Union[str, bytes]
    meta: Optional[Union[str, bytes]] = None
    status: OutboxStatus = OutboxStatus.NEW
    attempt_count: int = Field(default=0, ge=0)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "OutboxMessage":
        """Build a message from a row keyed by column name."""
        return cls(**{column: row[column] for column in MESSAGE_COLUMNS})


class ServiceConfig(BaseModel):
    """Connection parameters for one backend."""

    model_config = ConfigDict(frozen=True)

    # DSNs carry credentials
    dsn: str = Field(repr=False)
    driver: str

    @field_validator("driver")
    @classmethod
    def _normalize_driver(cls, value: str) -> str:
        return value.strip().lower()
