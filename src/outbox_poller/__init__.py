"""Transactional outbox poller for many database backends."""

__version__ = "0.1.0"
