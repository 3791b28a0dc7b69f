"""
Message Sinks

A sink receives each claimed batch while the claim transaction is still
open. The poller itself never changes message status; delivery and the
resulting status transition belong to the sink.
"""

import logging
from abc import ABC, abstractmethod
from typing import List

from .claim import ClaimTransaction
from .models import OutboxMessage

logger = logging.getLogger(__name__)


class MessageSink(ABC):
    """
    Extension point for delivering claimed messages.

    handle() runs before commit. Raising aborts the claim: the transaction
    is rolled back and the batch is picked up again on a later round.

    Example:
        class PublishSink(MessageSink):
            async def handle(self, messages, tx):
                for message in messages:
                    await broker.publish(message.body)
                await tx.update_status([m.id for m in messages], OutboxStatus.DONE)
    """

    @abstractmethod
    async def handle(self, messages: List[OutboxMessage], tx: ClaimTransaction) -> None:
        ...


class LoggingSink(MessageSink):
    """Default sink: logs the claimed ids and leaves rows untouched."""

    async def handle(self, messages: List[OutboxMessage], tx: ClaimTransaction) -> None:
        if messages:
            logger.debug(
                "Claimed messages",
                extra={"service": tx.service_name, "message_ids": [m.id for m in messages]}
            )
