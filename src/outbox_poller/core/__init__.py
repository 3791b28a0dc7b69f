"""
Outbox Poller Core Package

Configuration, backend connections, observability and the polling loop.
"""

from . import database
from . import outbox

__all__ = ["database", "outbox"]
