"""Result store interface."""

from abc import ABC, abstractmethod
from datetime import datetime

from statussentinel.config import ServiceConfig
from statussentinel.models import Incident, ProbeResult


class StoreError(Exception):
    """A persistence call failed."""


class ResultStore(ABC):
    """Durable record of probe results and incident lifecycles.

    Every write must be committed before the method returns. Methods are
    synchronous and may be called from several threads at once.
    """

    def initialize(self) -> None:
        """Prepare the store for use.

        Raises:
            StoreError: If the store is unreachable.
        """

    def register_service(self, service: ServiceConfig) -> None:
        """Record a configured service (insert or update)."""

    @abstractmethod
    def record_probe(self, result: ProbeResult) -> None:
        """Append a probe result."""
        ...

    @abstractmethod
    def open_incident(self, service_name: str, started_at: datetime, reason: str) -> int:
        """Open an incident for a service.

        If the service already has an open incident its id is returned and
        nothing is written.

        Returns:
            The incident id.
        """
        ...

    @abstractmethod
    def close_incident(self, incident_id: int, ended_at: datetime) -> None:
        """Set ``ended_at`` on an open incident; closed incidents are left as is."""
        ...

    @abstractmethod
    def get_open_incident(self, service_name: str) -> Incident | None:
        """Get the open incident of a service, if any."""
        ...

    @abstractmethod
    def list_incidents(self, include_closed: bool = True, service_name: str | None = None) -> list[Incident]:
        """List incidents, most recent first."""
        ...

    @abstractmethod
    def recent_results(self, service_name: str, limit: int = 100) -> list[ProbeResult]:
        """Get the latest probe results of a service, most recent first."""
        ...

    @abstractmethod
    def prune_results(self, before: datetime) -> int:
        """Delete probe results older than ``before``.

        Returns:
            Number of results deleted.
        """
        ...

    def close(self) -> None:
        """Release connections."""
