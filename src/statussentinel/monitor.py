"""Core monitoring orchestration."""

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime, timedelta

from statussentinel.config import Config, ServiceConfig
from statussentinel.incidents import IncidentStateMachine, Transition
from statussentinel.models import IncidentState, ProbeResult, utcnow
from statussentinel.probes import BaseProbe, create_probe
from statussentinel.scheduler import Scheduler
from statussentinel.store.base import ResultStore, StoreError

logger = logging.getLogger(__name__)

RETENTION_SWEEP_INTERVAL = 3600  # seconds


class StatusMonitor:
    """Wire configured services, the scheduler, incident tracking and the store."""

    def __init__(
        self,
        config: Config,
        store: ResultStore,
        probe_factory: Callable[[ServiceConfig], BaseProbe] = create_probe,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """Initialize status monitor.

        Args:
            config: Configuration object.
            store: Where results and incidents are recorded.
            probe_factory: Builds the probe for a service.
            clock: Wall clock used to stamp results.
        """
        self.config = config
        self.store = store
        self.scheduler = Scheduler(
            probe_factory=probe_factory,
            max_concurrency=config.max_concurrency,
            clock=clock,
        )
        self._clock = clock
        self._machines: dict[str, IncidentStateMachine] = {}
        self._stop_requested = False

    @property
    def recovered(self) -> bool:
        return len(self._machines) == len(self.config.services)

    def recover(self) -> None:
        """Register services and restore incident state from the store.

        A service with an incident still open in the store starts degraded.

        Raises:
            StoreError: If the store cannot be read.
        """
        machines = {}
        for service in self.config.services:
            self.store.register_service(service)
            open_incident = self.store.get_open_incident(service.name)
            machines[service.name] = IncidentStateMachine(service.name, self.store, open_incident)
        self._machines = machines

        degraded = [name for name, m in machines.items() if m.degraded]
        if degraded:
            logger.info(f"Recovered {len(degraded)} open incident(s): {', '.join(degraded)}")

    def get_state(self, service_name: str) -> IncidentState | None:
        machine = self._machines.get(service_name)
        return machine.state if machine else None

    def get_states(self) -> list[IncidentState]:
        return [m.state for m in self._machines.values()]

    def handle_result(self, result: ProbeResult) -> Transition:
        """Persist a result and feed it to its service's state machine.

        Store failures are logged; the state machine still sees the result.
        """
        try:
            self.store.record_probe(result)
        except StoreError as e:
            logger.error(f"Could not record result for {result.service_name}: {e}")

        machine = self._machines.get(result.service_name)
        if machine is None:
            machine = IncidentStateMachine(result.service_name, self.store)
            self._machines[result.service_name] = machine

        if result.up:
            logger.debug(f"{result.service_name}: up ({result.latency_ms}ms)")
        else:
            logger.info(f"{result.service_name}: down ({result.reason})")
        return machine.process(result)

    async def _on_result(self, result: ProbeResult) -> None:
        await asyncio.to_thread(self.handle_result, result)

    def prune_history(self) -> int:
        """Delete results older than the configured retention."""
        days = self.config.history_retention_days
        if days <= 0:
            return 0
        removed = self.store.prune_results(self._clock() - timedelta(days=days))
        if removed:
            logger.info(f"Pruned {removed} probe results older than {days} days")
        return removed

    async def _retention_loop(self) -> None:
        while True:
            sweep = asyncio.ensure_future(asyncio.to_thread(self.prune_history))
            try:
                await asyncio.shield(sweep)
            except asyncio.CancelledError:
                # The worker thread cannot be interrupted; wait for it to finish
                await asyncio.gather(sweep, return_exceptions=True)
                raise
            except StoreError as e:
                logger.error(f"History pruning failed: {e}")
            await asyncio.sleep(RETENTION_SWEEP_INTERVAL)

    async def run(self) -> None:
        """Monitor all services until ``stop()`` is called or the task is cancelled.

        Returns only after every in-flight store write has finished.
        """
        self._stop_requested = False
        if not self.recovered:
            await asyncio.to_thread(self.recover)
        if self._stop_requested:
            return

        retention = asyncio.create_task(self._retention_loop(), name="retention")
        try:
            await self.scheduler.run(self.config.services, self._on_result)
        finally:
            retention.cancel()
            await asyncio.gather(retention, return_exceptions=True)

    def stop(self) -> None:
        self._stop_requested = True
        self.scheduler.stop()

    async def check_all(self) -> list[ProbeResult]:
        """Probe every service once without recording anything."""
        return await self.scheduler.run_once(self.config.services)
