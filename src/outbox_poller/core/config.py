"""
Outbox Poller Configuration

Centralized configuration for the polling process, read from environment
variables (and a local .env file when present).
"""

import math
import os
import re
from typing import List, Mapping, Optional

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

LOCK_MODES = ("wait", "skip_locked")

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)?$")


def is_valid_identifier(name: str) -> bool:
    """Check that a table name is a plain (optionally schema-qualified) identifier."""
    return bool(_IDENTIFIER_RE.match(name or ""))


def _as_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


class PollerConfig:
    """
    Configuration for the outbox poller.

    Environment Variables:
        APP_NAME: Name attached to every log line (default: outbox-poller)
        ENVIRONMENT: Deployment environment (default: development)
        RELEASE: Release/version string (default: 0.1.0)
        LOG_LEVEL: Logging level (default: INFO)
        LOG_STRUCTURED: JSON log lines (default: true)
        OUTBOX_POLL_INTERVAL: Seconds between rounds (default: 1.0)
        OUTBOX_BATCH_SIZE: Messages claimed per worker (default: 10)
        OUTBOX_TABLE: Outbox table name (default: message_outbox)
        OUTBOX_LOCK_MODE: "wait" or "skip_locked" (default: wait)
        OUTBOX_SERVICES_FILE: Path to a JSON service registry
        OUTBOX_SERVICES: Inline JSON service registry
        OTEL_EXPORTER_OTLP_ENDPOINT: OTLP endpoint for metrics and traces
        OTEL_CONSOLE_EXPORT: Export metrics and traces to the console
    """

    def __init__(self, environ: Optional[Mapping[str, str]] = None):
        env = os.environ if environ is None else environ

        self.app_name: str = env.get("APP_NAME", "outbox-poller")
        self.environment: str = env.get("ENVIRONMENT", "development")
        self.release: str = env.get("RELEASE", "0.1.0")

        self.log_level: str = env.get("LOG_LEVEL", "INFO").upper()
        self.log_structured: bool = _as_bool(env.get("LOG_STRUCTURED", "true"))

        self._raw_poll_interval = env.get("OUTBOX_POLL_INTERVAL", "1.0")
        self._raw_batch_size = env.get("OUTBOX_BATCH_SIZE", "10")
        self.poll_interval: float = self._parse(float, self._raw_poll_interval, 1.0)
        self.batch_size: int = self._parse(int, self._raw_batch_size, 10)
        self.outbox_table: str = env.get("OUTBOX_TABLE", "message_outbox")
        self.lock_mode: str = env.get("OUTBOX_LOCK_MODE", "wait").lower()

        self.services_file: Optional[str] = env.get("OUTBOX_SERVICES_FILE") or None
        self.services_json: Optional[str] = env.get("OUTBOX_SERVICES") or None

        self.otlp_endpoint: Optional[str] = env.get("OTEL_EXPORTER_OTLP_ENDPOINT") or None
        self.console_export: bool = _as_bool(env.get("OTEL_CONSOLE_EXPORT", "false"))

    @staticmethod
    def _parse(kind, raw: str, default):
        try:
            return kind(raw)
        except (TypeError, ValueError):
            return default

    def validate(self) -> List[str]:
        """Validate configuration and return list of issues."""
        issues = []

        try:
            float(self._raw_poll_interval)
        except ValueError:
            issues.append(f"ERROR: OUTBOX_POLL_INTERVAL is not a number: {self._raw_poll_interval!r}")
        try:
            int(self._raw_batch_size)
        except ValueError:
            issues.append(f"ERROR: OUTBOX_BATCH_SIZE is not an integer: {self._raw_batch_size!r}")

        if not math.isfinite(self.poll_interval):
            issues.append(f"ERROR: OUTBOX_POLL_INTERVAL must be finite: {self._raw_poll_interval!r}")
        elif self.poll_interval <= 0:
            issues.append("ERROR: OUTBOX_POLL_INTERVAL must be positive")
        if self.batch_size <= 0:
            issues.append("ERROR: OUTBOX_BATCH_SIZE must be positive")
        if not is_valid_identifier(self.outbox_table):
            issues.append(f"ERROR: OUTBOX_TABLE is not a valid identifier: {self.outbox_table!r}")
        if self.lock_mode not in LOCK_MODES:
            issues.append(
                f"ERROR: OUTBOX_LOCK_MODE must be one of {', '.join(LOCK_MODES)}, got {self.lock_mode!r}"
            )
        if not self.services_file and not self.services_json:
            issues.append("ERROR: No service registry configured (OUTBOX_SERVICES_FILE or OUTBOX_SERVICES)")
        if self.services_file and self.services_json:
            issues.append("WARNING: Both OUTBOX_SERVICES_FILE and OUTBOX_SERVICES set, using the file")

        return issues

    def errors(self) -> List[str]:
        return [issue for issue in self.validate() if issue.startswith("ERROR")]

    def __repr__(self) -> str:
        return (
            f"PollerConfig(app_name={self.app_name}, interval={self.poll_interval}, "
            f"batch_size={self.batch_size}, table={self.outbox_table}, lock_mode={self.lock_mode})"
        )
