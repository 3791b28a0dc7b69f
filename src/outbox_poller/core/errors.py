"""
Outbox Poller Exceptions

Failure taxonomy for the polling loop:
- Configuration and registry failures are fatal at startup.
- Admission failures skip one backend for one round.
- Claim failures abandon one worker's batch for one round.
"""

from typing import Optional


class OutboxPollerError(Exception):
    """Base exception for all poller errors."""


class ConfigurationError(OutboxPollerError):
    """
    Process configuration is invalid.

    Raised at startup; the runner exits non-zero.
    """

    def __init__(self, issues: list):
        self.issues = list(issues)
        super().__init__("; ".join(self.issues) or "invalid configuration")


class RegistryInitError(OutboxPollerError):
    """
    The service registry could not be initialized.

    Never converted into an empty backend set: an empty set would be
    indistinguishable from "no backends configured".
    """


class BackendAdmissionError(OutboxPollerError):
    """A backend failed the open/ping/probe gate."""

    def __init__(
        self,
        service_name: str,
        stage: str,
        message: str,
        cause: Optional[BaseException] = None
    ):
        self.service_name = service_name
        self.stage = stage
        self.cause = cause
        super().__init__(f"{service_name}: {stage} failed: {message}")


class UnsupportedDriverError(BackendAdmissionError):
    """The configured driver has no connection implementation."""

    def __init__(self, service_name: str, driver: str):
        self.driver = driver
        super().__init__(service_name, "open", f"unsupported driver '{driver}'")


class ClaimError(OutboxPollerError):
    """A step of the claim transaction failed."""

    def __init__(
        self,
        service_name: str,
        stage: str,
        cause: Optional[BaseException] = None
    ):
        self.service_name = service_name
        self.stage = stage
        self.cause = cause
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"{service_name}: {stage} failed{detail}")
