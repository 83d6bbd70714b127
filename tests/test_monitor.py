"""Tests for the status monitor."""

import asyncio
import socket
import threading
import time
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from statussentinel.config import Config, ServiceConfig
from statussentinel.incidents import Transition
from statussentinel.models import ProbeResult, ReasonKind
from statussentinel.monitor import StatusMonitor
from statussentinel.probes import HTTPProbe, create_probe
from statussentinel.store import MemoryResultStore, SQLResultStore, StoreError

T0 = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


def http_factory(handler):
    transport = httpx.MockTransport(handler)
    return lambda service: HTTPProbe(service, transport=transport)


def statuses(*codes):
    """Handler answering with ``codes`` in turn, repeating the last one."""
    remaining = list(codes)

    def handler(request):
        code = remaining.pop(0) if len(remaining) > 1 else remaining[0]
        return httpx.Response(code)

    return handler


def closed_port() -> int:
    sock = socket.socket()
    sock.bind(("127.0.0.1", 0))
    port = sock.getsockname()[1]
    sock.close()
    return port


async def run_until(monitor: StatusMonitor, done, limit: float = 5.0) -> None:
    """Run the monitor until ``done()`` is true, then stop it."""
    loop = asyncio.get_running_loop()
    task = asyncio.create_task(monitor.run())
    deadline = loop.time() + limit
    while not done():
        if task.done():
            task.result()
            return
        if loop.time() > deadline:
            monitor.stop()
            await task
            pytest.fail("monitor did not produce the expected results in time")
        await asyncio.sleep(0.01)
    monitor.stop()
    await asyncio.wait_for(task, 2)


class TestScenarios:
    """End-to-end monitoring scenarios."""

    def test_steady_up_service(self):
        """Five healthy checks produce five results and no incidents."""
        store = MemoryResultStore()
        config = Config(services=[ServiceConfig.create("web", "http://x/ping", interval=0.05, timeout=1)])
        monitor = StatusMonitor(config, store, probe_factory=http_factory(statuses(200)))

        asyncio.run(run_until(monitor, lambda: len(store.results) >= 5))

        assert len(store.results) >= 5
        assert all(r.up for r in store.results)
        assert store.list_incidents() == []

    def test_outage_then_recovery(self):
        """An incident spans exactly one interval when one check failed."""
        store = MemoryResultStore()
        config = Config(services=[ServiceConfig.create("web", "http://x/ping", interval=0.2, timeout=1)])
        monitor = StatusMonitor(
            config, store, probe_factory=http_factory(statuses(503, 200)), clock=lambda: T0,
        )

        def recovered():
            incidents = store.list_incidents()
            return bool(incidents) and not incidents[0].is_open

        asyncio.run(run_until(monitor, recovered))

        first, second = store.results[:2]
        assert first.reason.kind == ReasonKind.HTTP_STATUS
        assert first.reason.status_code == 503
        assert second.up

        (incident,) = store.list_incidents()
        assert incident.reason == "HTTP 503"
        assert incident.started_at == T0
        assert incident.ended_at - incident.started_at == timedelta(seconds=0.2)
        assert not monitor.get_state("web").degraded

    def test_refused_then_restart(self, tmp_path):
        """An incident left open survives a restart without being duplicated."""
        url = f"sqlite:///{tmp_path / 'results.db'}"
        port = closed_port()
        config = Config(services=[ServiceConfig.create("mc", f"mc://127.0.0.1:{port}", interval=0.05, timeout=1)])

        store = SQLResultStore(url)
        store.initialize()
        monitor = StatusMonitor(config, store)
        asyncio.run(run_until(monitor, lambda: len(store.recent_results("mc")) >= 2))
        store.close()

        store = SQLResultStore(url)
        store.initialize()
        (result, *_) = store.recent_results("mc")
        assert result.reason.kind == ReasonKind.CONNECTION_REFUSED
        (incident,) = store.list_incidents()
        assert incident.is_open

        restarted = StatusMonitor(config, store)
        restarted.recover()
        state = restarted.get_state("mc")
        assert state.degraded
        assert state.open_incident.incident_id == incident.id

        later = T0 + timedelta(days=1)
        assert restarted.handle_result(
            ProbeResult.failure("mc", later, ReasonKind.CONNECTION_REFUSED)
        ) == Transition.UPDATED
        assert len(store.list_incidents()) == 1

        assert restarted.handle_result(ProbeResult.success("mc", later + timedelta(minutes=1))) == Transition.CLOSED
        (closed,) = store.list_incidents()
        assert closed.id == incident.id
        assert closed.ended_at == later + timedelta(minutes=1)
        store.close()


class FailingRecordStore(MemoryResultStore):
    def record_probe(self, result):
        raise StoreError("disk full")


class TestStatusMonitor:
    """Tests for StatusMonitor helpers."""

    @pytest.fixture
    def config(self):
        return Config(services=[
            ServiceConfig.create("web", "http://x/ping"),
            ServiceConfig.create("mc", "mc://127.0.0.1:1"),
        ])

    def test_recover_registers_services(self, config):
        store = MemoryResultStore()
        monitor = StatusMonitor(config, store)
        assert not monitor.recovered

        monitor.recover()

        assert monitor.recovered
        assert set(store.services) == {"web", "mc"}
        assert [s.label for s in monitor.get_states()] == ["healthy", "healthy"]

    def test_handle_result_records_and_transitions(self, config):
        store = MemoryResultStore()
        monitor = StatusMonitor(config, store)
        monitor.recover()

        assert monitor.handle_result(ProbeResult.failure("web", T0, ReasonKind.TIMEOUT)) == Transition.OPENED
        assert len(store.results) == 1
        assert monitor.get_state("web").degraded
        assert monitor.get_state("mc").label == "healthy"

    def test_record_failure_still_tracks_incidents(self, config):
        store = FailingRecordStore()
        monitor = StatusMonitor(config, store)

        transition = monitor.handle_result(ProbeResult.failure("web", T0, ReasonKind.TIMEOUT))

        assert transition == Transition.OPENED
        assert store.get_open_incident("web") is not None

    def test_prune_history(self, config):
        store = MemoryResultStore()
        monitor = StatusMonitor(config, store, clock=lambda: T0)
        store.record_probe(ProbeResult.success("web", T0 - timedelta(days=100)))
        store.record_probe(ProbeResult.success("web", T0 - timedelta(days=1)))

        assert monitor.prune_history() == 1
        assert len(store.results) == 1

    def test_prune_disabled(self, config):
        config.history_retention_days = 0
        store = MemoryResultStore()
        store.record_probe(ProbeResult.success("web", T0 - timedelta(days=1000)))
        assert StatusMonitor(config, store).prune_history() == 0
        assert len(store.results) == 1

    def test_check_all_records_nothing(self):
        store = MemoryResultStore()
        config = Config(services=[
            ServiceConfig.create("ok", "http://x/ok"),
            ServiceConfig.create("bad", "http://x/bad"),
        ])

        def handler(request):
            return httpx.Response(200 if request.url.path == "/ok" else 500)

        results = asyncio.run(StatusMonitor(config, store, probe_factory=http_factory(handler)).check_all())

        assert [r.up for r in results] == [True, False]
        assert store.results == []

    def test_default_factory(self, config):
        monitor = StatusMonitor(config, MemoryResultStore())
        assert monitor.scheduler.probe_factory is create_probe


class SlowRecordStore(MemoryResultStore):
    """Memory store whose result writes take a while."""

    def __init__(self, delay: float) -> None:
        super().__init__()
        self.delay = delay
        self.write_started = threading.Event()
        self.write_finished = threading.Event()

    def record_probe(self, result):
        self.write_started.set()
        time.sleep(self.delay)
        super().record_probe(result)
        self.write_finished.set()


class TestShutdown:
    """Tests for stopping a running monitor."""

    def test_stop_waits_for_store_write(self):
        """run() returns only after a write that was under way has completed."""
        store = SlowRecordStore(delay=0.3)
        config = Config(services=[ServiceConfig.create("web", "http://x/ping", interval=10, timeout=1)])
        monitor = StatusMonitor(config, store, probe_factory=http_factory(statuses(503)))

        async def scenario():
            task = asyncio.create_task(monitor.run())
            while not store.write_started.is_set():
                await asyncio.sleep(0.01)
            monitor.stop()
            await asyncio.wait_for(task, 5)
            return store.write_finished.is_set()

        assert asyncio.run(scenario()) is True
        assert len(store.results) == 1
        assert store.get_open_incident("web") is not None
        assert monitor.get_state("web").degraded

    def test_run_again_after_stop(self):
        store = MemoryResultStore()
        config = Config(services=[ServiceConfig.create("web", "http://x/ping", interval=0.05, timeout=1)])
        monitor = StatusMonitor(config, store, probe_factory=http_factory(statuses(200)))

        asyncio.run(run_until(monitor, lambda: len(store.results) >= 1))
        asyncio.run(run_until(monitor, lambda: len(store.results) >= 3))

        assert len(store.results) >= 3
