"""Fixed-interval probe scheduler."""

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable, Sequence
from datetime import datetime, timedelta

from statussentinel.config import ServiceConfig
from statussentinel.models import ProbeResult, ReasonKind, utcnow
from statussentinel.probes import BaseProbe, create_probe

logger = logging.getLogger(__name__)

ResultHandler = Callable[[ProbeResult], Awaitable[None] | None]


class Scheduler:
    """Run every service's probe on its own fixed interval.

    Each service gets one task, so a service never has more than one probe
    in flight: a probe that overruns its interval pushes back that service's
    next tick. Services run concurrently with each other, at most
    ``max_concurrency`` probes at a time.
    """

    def __init__(
        self,
        probe_factory: Callable[[ServiceConfig], BaseProbe] = create_probe,
        max_concurrency: int = 50,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """Initialize scheduler.

        Args:
            probe_factory: Builds the probe for a service.
            max_concurrency: Maximum number of probes running at once.
            clock: Wall clock used to stamp results.
        """
        self.probe_factory = probe_factory
        self.max_concurrency = max_concurrency
        self._clock = clock
        self._stop_event = asyncio.Event()
        self._tasks: list[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    def stop(self) -> None:
        """Ask a running ``run()`` to cancel its work and return."""
        self._stop_event.set()

    async def run(self, services: Sequence[ServiceConfig], on_result: ResultHandler) -> None:
        """Probe services until ``stop()`` is called or this task is cancelled.

        Returns only after every in-flight probe and timer has been cancelled
        and every result delivery under way has completed.

        Args:
            services: Services to monitor.
            on_result: Called with each result, in order per service. May be
                a coroutine function; the service's next tick waits for it.
        """
        if not services:
            logger.warning("No services configured")

        # Fresh per run: a previous stop() must not end this one
        self._stop_event = asyncio.Event()
        semaphore = asyncio.Semaphore(self.max_concurrency)
        self._tasks = [
            asyncio.create_task(
                self._service_loop(service, on_result, semaphore),
                name=f"probe:{service.name}",
            )
            for service in services
        ]
        logger.info(f"Scheduler started for {len(self._tasks)} services")

        try:
            await self._stop_event.wait()
        finally:
            for task in self._tasks:
                task.cancel()
            await asyncio.gather(*self._tasks, return_exceptions=True)
            self._tasks = []
            logger.info("Scheduler stopped")

    async def run_once(self, services: Sequence[ServiceConfig]) -> list[ProbeResult]:
        """Probe every service once, concurrently.

        Returns:
            Results in the order of ``services``.
        """
        semaphore = asyncio.Semaphore(self.max_concurrency)
        timestamp = self._clock()
        return list(await asyncio.gather(*(
            self._execute(service, self._make_probe(service), timestamp, semaphore)
            for service in services
        )))

    def _make_probe(self, service: ServiceConfig) -> BaseProbe | None:
        try:
            return self.probe_factory(service)
        except Exception:
            logger.exception(f"Cannot create probe for {service.name} ({service.target})")
            return None

    async def _service_loop(
        self,
        service: ServiceConfig,
        on_result: ResultHandler,
        semaphore: asyncio.Semaphore,
    ) -> None:
        loop = asyncio.get_running_loop()
        probe = self._make_probe(service)

        # Results are stamped with their scheduled time, so on-time ticks are
        # exactly one interval apart
        mono_anchor = loop.time()
        wall_anchor = self._clock()
        due = mono_anchor

        while True:
            delay = due - loop.time()
            if delay > 0:
                await asyncio.sleep(delay)

            timestamp = wall_anchor + timedelta(seconds=due - mono_anchor)
            result = await self._execute(service, probe, timestamp, semaphore)

            # A delivery under way completes even if this task is cancelled
            delivery = asyncio.ensure_future(self._deliver(on_result, result))
            try:
                await asyncio.shield(delivery)
            except asyncio.CancelledError:
                await delivery
                raise

            due += service.interval
            now = loop.time()
            if due < now:
                logger.debug(f"{service.name}: check overran its {service.interval:g}s interval")
                due = now

    async def _execute(
        self,
        service: ServiceConfig,
        probe: BaseProbe | None,
        timestamp: datetime,
        semaphore: asyncio.Semaphore,
    ) -> ProbeResult:
        """Run one probe under the concurrency bound and hard timeout."""
        if probe is None:
            return ProbeResult.failure(
                service.name, timestamp, ReasonKind.PROBE_ERROR, detail="no probe for target"
            )

        async with semaphore:
            try:
                return await asyncio.wait_for(probe.check(timestamp), service.timeout)
            except asyncio.TimeoutError:
                logger.warning(f"{service.name}: probe timed out after {service.timeout:g}s")
                return ProbeResult.failure(
                    service.name,
                    timestamp,
                    ReasonKind.TIMEOUT,
                    detail=f"no result within {service.timeout:g}s",
                    latency_ms=service.timeout * 1000,
                )
            except Exception as e:
                logger.exception(f"{service.name}: probe failed")
                return ProbeResult.failure(
                    service.name,
                    timestamp,
                    ReasonKind.PROBE_ERROR,
                    detail=str(e)[:200] or type(e).__name__,
                )

    async def _deliver(self, on_result: ResultHandler, result: ProbeResult) -> None:
        try:
            outcome = on_result(result)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception:
            logger.exception(f"Result handler failed for {result.service_name}")
