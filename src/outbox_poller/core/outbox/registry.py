"""
Service Registry

Resolves the set of named backends to poll. The orchestrator asks for a
fresh snapshot every round, so registries that re-read their source
support adding and removing backends without a restart.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from pydantic import ValidationError

from ..config import PollerConfig
from ..errors import RegistryInitError
from .models import ServiceConfig

logger = logging.getLogger(__name__)


class ServiceRegistry(ABC):
    """
    Source of backends to poll.

    Subclasses implement _load(). count() and list() boot lazily on first
    use; a failed boot raises RegistryInitError rather than yielding an
    empty set.
    """

    reload_each_round: bool = False

    def __init__(self):
        self._lock = threading.Lock()
        self._boot_lock = threading.Lock()
        self._booted = False
        self._services: Dict[str, ServiceConfig] = {}

    @property
    def booted(self) -> bool:
        return self._booted

    @abstractmethod
    def _load(self) -> Dict[str, ServiceConfig]:
        """Read the current service mapping from the underlying source."""

    def boot(self) -> None:
        """(Re)load the service mapping."""
        try:
            services = self._load()
        except RegistryInitError:
            raise
        except Exception as e:
            raise RegistryInitError(f"{type(self).__name__} failed to load: {e}") from e

        with self._lock:
            self._services = dict(services)
            self._booted = True
        logger.debug("Service registry loaded", extra={"services": sorted(services)})

    def _ensure_booted(self) -> None:
        if self.reload_each_round:
            self.boot()
            return
        with self._boot_lock:
            if not self._booted:
                self.boot()

    def count(self) -> int:
        """Number of configured services."""
        self._ensure_booted()
        with self._lock:
            return len(self._services)

    def list(self) -> Dict[str, ServiceConfig]:
        """Snapshot of service name -> ServiceConfig."""
        self._ensure_booted()
        with self._lock:
            return dict(self._services)


def parse_services(raw: Mapping[str, Any], source: str) -> Dict[str, ServiceConfig]:
    """Validate a {name: {"dsn": ..., "driver": ...}} mapping."""
    if not isinstance(raw, Mapping):
        raise RegistryInitError(f"{source}: expected a JSON object of services")

    services = {}
    for name, entry in raw.items():
        if isinstance(entry, ServiceConfig):
            services[str(name)] = entry
            continue
        try:
            services[str(name)] = ServiceConfig.model_validate(entry)
        except ValidationError as e:
            raise RegistryInitError(f"{source}: invalid config for service '{name}': {e}") from e
    return services


class StaticServiceRegistry(ServiceRegistry):
    """Fixed mapping supplied at construction."""

    def __init__(self, services: Mapping[str, Any]):
        super().__init__()
        self._source = dict(services)

    def _load(self) -> Dict[str, ServiceConfig]:
        return parse_services(self._source, "static registry")


class FileServiceRegistry(ServiceRegistry):
    """
    JSON file registry, re-read on every list() call.

    File format:
        {
            "billing": {"dsn": "postgresql://...", "driver": "postgresql"},
            "shipping": {"dsn": "/var/lib/shipping.db", "driver": "sqlite"}
        }
    """

    reload_each_round = True

    def __init__(self, path: str):
        super().__init__()
        self.path = Path(path)

    def _load(self) -> Dict[str, ServiceConfig]:
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise RegistryInitError(f"Cannot read service registry {self.path}: {e}") from e
        return parse_services(raw, str(self.path))


class EnvServiceRegistry(ServiceRegistry):
    """JSON registry held in an environment variable (read once)."""

    def __init__(self, var: str = "OUTBOX_SERVICES", environ: Optional[Mapping[str, str]] = None):
        super().__init__()
        self.var = var
        self._environ = os.environ if environ is None else environ

    def _load(self) -> Dict[str, ServiceConfig]:
        value = self._environ.get(self.var)
        if not value:
            raise RegistryInitError(f"{self.var} is not set")
        try:
            raw = json.loads(value)
        except json.JSONDecodeError as e:
            raise RegistryInitError(f"{self.var} is not valid JSON: {e}") from e
        return parse_services(raw, self.var)


def registry_from_config(config: PollerConfig) -> ServiceRegistry:
    """Pick the registry implementation configured for this process."""
    if config.services_file:
        return FileServiceRegistry(config.services_file)
    if config.services_json:
        return EnvServiceRegistry(environ={"OUTBOX_SERVICES": config.services_json})
    raise RegistryInitError("No service registry configured")
