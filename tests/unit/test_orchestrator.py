"""
Tests for the polling orchestrator.
"""

import asyncio

import pytest

from conftest import make_config, make_rows
from outbox_poller.core.errors import RegistryInitError
from outbox_poller.core.outbox.context import PollerContext
from outbox_poller.core.outbox.models import ServiceConfig
from outbox_poller.core.outbox.orchestrator import PollerState, PollingOrchestrator
from outbox_poller.core.outbox.registry import ServiceRegistry, StaticServiceRegistry
from outbox_poller.core.outbox.worker import OutboxWorker


def _services(*names):
    return {name: {"dsn": f"fake://{name}", "driver": "postgresql"} for name in names}


class ScriptedRegistry(ServiceRegistry):
    """Registry returning a different backend set on each round."""

    reload_each_round = True

    def __init__(self, *rounds):
        super().__init__()
        self.rounds = list(rounds)
        self.calls = 0

    def _load(self):
        snapshot = self.rounds[min(self.calls, len(self.rounds) - 1)]
        self.calls += 1
        return {name: ServiceConfig(**cfg) for name, cfg in snapshot.items()}


class BrokenRegistry(ServiceRegistry):
    def _load(self):
        raise OSError("config service down")


class TestRound:
    """Test a single round."""

    @pytest.mark.asyncio
    async def test_missing_table_skipped_then_admitted(self, context, connector, backends, caplog):
        """svc1 lacks the table: only svc2 runs; next round svc1 is admitted."""
        svc1 = backends.add("fake://svc1", rows=make_rows(3), table_exists=False)
        svc2 = backends.add("fake://svc2", rows=make_rows(2))
        orchestrator = PollingOrchestrator(StaticServiceRegistry(_services("svc1", "svc2")), context, connector)

        first = await orchestrator.run_round()

        assert first.admitted == ["svc2"]
        assert first.rejected == {"svc1": "probe"}
        assert set(first.results) == {"svc2"}
        assert "begin" not in svc1.calls
        assert svc1.closed
        assert any(
            getattr(r, "service", None) == "svc1" and r.levelname == "ERROR"
            for r in caplog.records
        )

        svc1.table_exists = True
        second = await orchestrator.run_round()

        assert sorted(second.admitted) == ["svc1", "svc2"]
        assert second.rejected == {}
        assert second.claimed_count == 5
        assert svc2.closed

    @pytest.mark.asyncio
    async def test_backend_failure_does_not_affect_others(self, context, connector, backends):
        backends.add("fake://a", rows=make_rows(4), fail_on=["query"])
        backends.add("fake://b", rows=make_rows(4))
        backends.add("fake://c", fail_on=["ping"])
        orchestrator = PollingOrchestrator(StaticServiceRegistry(_services("a", "b", "c")), context, connector)

        report = await orchestrator.run_round()

        assert report.rejected == {"c": "ping"}
        assert report.results["a"].error.stage == "query"
        assert report.results["b"].ok
        assert report.claimed_count == 4
        assert all(conn.closed for conn in backends.connections.values())

    @pytest.mark.asyncio
    async def test_unsupported_driver_skipped(self, context, connector, backends):
        backends.add("fake://ok", rows=make_rows(1))
        registry = StaticServiceRegistry({
            "legacy": {"dsn": "oracle://scott@db:1521/orcl", "driver": "oracle"},
            "ok": {"dsn": "fake://ok", "driver": "postgres"},
        })

        report = await PollingOrchestrator(registry, context, connector).run_round()

        assert report.rejected == {"legacy": "open"}
        assert report.admitted == ["ok"]

    @pytest.mark.asyncio
    async def test_empty_registry(self, context, connector):
        report = await PollingOrchestrator(StaticServiceRegistry({}), context, connector).run_round()

        assert report.services == []
        assert report.results == {}

    @pytest.mark.asyncio
    async def test_registry_failure_is_fatal(self, context, connector):
        orchestrator = PollingOrchestrator(BrokenRegistry(), context, connector)

        with pytest.raises(RegistryInitError):
            await orchestrator.run_round()
        with pytest.raises(RegistryInitError):
            await orchestrator.run()

    @pytest.mark.asyncio
    async def test_dynamic_membership(self, context, connector, backends):
        """Each round uses a fresh registry snapshot."""
        for name in ("a", "b"):
            backends.add(f"fake://{name}", rows=make_rows(1))
        registry = ScriptedRegistry(_services("a"), _services("a", "b"), _services("b"))
        orchestrator = PollingOrchestrator(registry, context, connector)

        rounds = [await orchestrator.run_round() for _ in range(3)]

        assert rounds[0].admitted == ["a"]
        assert sorted(rounds[1].admitted) == ["a", "b"]
        assert rounds[2].admitted == ["b"]
        assert [r.round_number for r in rounds] == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_workers_run_concurrently(self, context, connector, backends):
        """Backends in a round overlap instead of running one after another."""
        for name in ("a", "b", "c"):
            backends.add(f"fake://{name}", rows=make_rows(1), query_delay=0.2)
        orchestrator = PollingOrchestrator(StaticServiceRegistry(_services("a", "b", "c")), context, connector)

        loop = asyncio.get_running_loop()
        started = loop.time()
        await orchestrator.run_round()

        assert loop.time() - started < 0.5


class TestBarrier:
    """Test the per-round fan-in barrier."""

    @pytest.mark.asyncio
    async def test_next_round_waits_for_slowest_backend(self, context, connector, backends):
        """Fast A does not start round N+1 before slow B finishes round N."""
        events = []

        class TracingWorker(OutboxWorker):
            async def run(self, service_name, round_number):
                events.append(("start", service_name, round_number))
                result = await super().run(service_name, round_number)
                events.append(("end", service_name, round_number))
                return result

        backends.add("fake://fast", rows=make_rows(1))
        backends.add("fake://slow", rows=make_rows(1), query_delay=0.1)
        orchestrator = PollingOrchestrator(
            StaticServiceRegistry(_services("fast", "slow")),
            context,
            connector,
            worker_factory=TracingWorker
        )

        await orchestrator.run(max_rounds=2)

        round_one_ends = [events.index(("end", name, 1)) for name in ("fast", "slow")]
        round_two_starts = [events.index(("start", name, 2)) for name in ("fast", "slow")]
        assert max(round_one_ends) < min(round_two_starts)


class TestLifecycle:
    """Test run() and cancellation."""

    @pytest.mark.asyncio
    async def test_max_rounds(self, context, connector, backends):
        backends.add("fake://svc", rows=make_rows(1))
        orchestrator = PollingOrchestrator(StaticServiceRegistry(_services("svc")), context, connector)

        assert await orchestrator.run(max_rounds=3) == 3
        assert orchestrator.rounds_completed == 3
        assert orchestrator.last_report.round_number == 3
        assert orchestrator.state == PollerState.RUNNING

    @pytest.mark.asyncio
    async def test_cancel_before_start(self, context, connector, backends):
        conn = backends.add("fake://svc", rows=make_rows(1))
        orchestrator = PollingOrchestrator(StaticServiceRegistry(_services("svc")), context, connector)
        orchestrator.cancel()

        assert await orchestrator.run() == 0
        assert orchestrator.state == PollerState.CANCELLED
        assert conn.calls == []

    @pytest.mark.asyncio
    async def test_cancel_between_rounds(self, connector, backends):
        """Cancelling during the sleep prevents another round."""
        context = PollerContext(config=make_config(OUTBOX_POLL_INTERVAL="30"))
        backends.add("fake://svc", rows=make_rows(1))
        orchestrator = PollingOrchestrator(StaticServiceRegistry(_services("svc")), context, connector)

        task = asyncio.create_task(orchestrator.run())
        while orchestrator.rounds_completed < 1:
            await asyncio.sleep(0.01)
        orchestrator.cancel()

        assert await asyncio.wait_for(task, timeout=2) == 1

    @pytest.mark.asyncio
    async def test_cancel_mid_transaction_completes_cleanup(self, context, connector, backends):
        """A worker inside its transaction finishes, commits and closes."""
        conn = backends.add("fake://svc", rows=make_rows(3))
        conn.release_query.clear()
        orchestrator = PollingOrchestrator(StaticServiceRegistry(_services("svc")), context, connector)

        task = asyncio.create_task(orchestrator.run())
        await conn.query_started.wait()
        orchestrator.cancel()
        conn.release_query.set()

        assert await asyncio.wait_for(task, timeout=2) == 1
        assert orchestrator.last_report.results["svc"].committed
        assert conn.calls[-2:] == ["commit", "close"]
        assert conn.closed

    @pytest.mark.asyncio
    async def test_polls_repeatedly_until_cancelled(self, context, connector, backends):
        backends.add("fake://svc", rows=make_rows(1))
        orchestrator = PollingOrchestrator(StaticServiceRegistry(_services("svc")), context, connector)

        task = asyncio.create_task(orchestrator.run())
        while orchestrator.rounds_completed < 3:
            await asyncio.sleep(0.01)
        orchestrator.cancel()
        rounds = await asyncio.wait_for(task, timeout=2)

        assert rounds >= 3
