"""
Outbox Poller Runner

Standalone entry point that runs the polling orchestrator as a
background service with graceful shutdown.

Usage:
    python -m outbox_poller [--max-rounds N]

Exit status:
    0  clean shutdown (first SIGINT/SIGTERM, or --max-rounds reached)
    1  forced shutdown (second signal), invalid configuration, or
       service registry initialization failure

See PollerConfig for environment variables.
"""

import argparse
import asyncio
import logging
import signal
import sys
from typing import List, Optional

from ..config import PollerConfig
from ..errors import ConfigurationError, RegistryInitError
from ..observability.logging import configure_logging
from ..observability.metrics import init_metrics
from ..observability.tracing import init_tracing
from .connector import BackendConnector
from .context import PollerContext
from .orchestrator import PollingOrchestrator
from .registry import ServiceRegistry, registry_from_config
from .sink import MessageSink

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1


class OutboxRunner:
    """
    Manages the orchestrator lifecycle with graceful shutdown.
    """

    def __init__(
        self,
        config: Optional[PollerConfig] = None,
        registry: Optional[ServiceRegistry] = None,
        sink: Optional[MessageSink] = None,
        connector: Optional[BackendConnector] = None
    ):
        self.config = config or PollerConfig()
        self._registry = registry
        self._sink = sink
        self._connector = connector
        self.orchestrator: Optional[PollingOrchestrator] = None
        self._shutdown_requested = False

    def _setup_signal_handlers(self):
        """Set up signal handlers for graceful shutdown."""
        loop = asyncio.get_running_loop()

        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self._handle_shutdown_signal, sig)

    def _remove_signal_handlers(self):
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.remove_signal_handler(sig)

    def _handle_shutdown_signal(self, sig: signal.Signals):
        """Handle shutdown signal."""
        if self._shutdown_requested:
            logger.warning(f"Received {sig.name} again, forcing exit")
            sys.exit(EXIT_FAILURE)

        logger.info(f"Received {sig.name}, initiating graceful shutdown")
        self.request_shutdown()

    def request_shutdown(self):
        self._shutdown_requested = True
        if self.orchestrator is not None:
            self.orchestrator.cancel()

    def build_orchestrator(self) -> PollingOrchestrator:
        """Validate config, boot the registry and wire the orchestrator."""
        errors = self.config.errors()
        if errors:
            raise ConfigurationError(errors)
        for issue in self.config.validate():
            if issue not in errors:
                logger.warning(issue)

        registry = self._registry or registry_from_config(self.config)
        # Fail loudly at startup rather than polling nothing
        count = registry.count()
        logger.info("Service registry loaded", extra={"services": count})

        context = PollerContext(config=self.config)
        if self._sink is not None:
            context.sink = self._sink
        if self._shutdown_requested:
            context.cancel()
        return PollingOrchestrator(registry, context, connector=self._connector)

    async def run(self, max_rounds: Optional[int] = None) -> int:
        """Run the orchestrator until shutdown is requested."""
        logger.info("Starting Outbox Poller", extra={"config": repr(self.config)})

        self.orchestrator = self.build_orchestrator()
        self._setup_signal_handlers()
        try:
            await self.orchestrator.run(max_rounds=max_rounds)
        finally:
            self._remove_signal_handlers()
            logger.info("Outbox Poller stopped")

        return EXIT_OK

    async def health_check(self) -> dict:
        """Return health status for monitoring."""
        running = self.orchestrator is not None and not self.orchestrator.context.cancelled
        return {
            "status": "healthy" if running else "unhealthy",
            "state": self.orchestrator.state.value if self.orchestrator else None,
            "rounds_completed": self.orchestrator.rounds_completed if self.orchestrator else 0,
            "shutdown_requested": self._shutdown_requested
        }


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="outbox-poller",
        description="Poll outbox tables across configured backends."
    )
    parser.add_argument(
        "--max-rounds",
        type=int,
        default=None,
        help="Stop after this many rounds (default: run until signalled)"
    )
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = parse_args(argv)
    config = PollerConfig()

    configure_logging(
        level=config.log_level,
        structured=config.log_structured,
        service_name=config.app_name
    )
    init_tracing(
        service_name=config.app_name,
        service_version=config.release,
        otlp_endpoint=config.otlp_endpoint,
        console_export=config.console_export
    )
    init_metrics(
        service_name=config.app_name,
        otlp_endpoint=config.otlp_endpoint,
        console_export=config.console_export
    )

    runner = OutboxRunner(config)
    try:
        return asyncio.run(runner.run(max_rounds=args.max_rounds))
    except ConfigurationError as e:
        for issue in e.issues:
            logger.error(issue)
        return EXIT_FAILURE
    except RegistryInitError as e:
        logger.error("Service registry initialization failed", extra={"error": str(e)})
        return EXIT_FAILURE


if __name__ == "__main__":
    sys.exit(main())
