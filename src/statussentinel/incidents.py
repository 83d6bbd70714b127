"""Incident state machine.

Each service is either healthy or degraded. Probe results move it between
the two and the transitions are mirrored to the result store:

    healthy  + up    -> healthy   (nothing written)
    healthy  + down  -> degraded  (incident opened)
    degraded + down  -> degraded  (in-memory count/reason only)
    degraded + up    -> healthy   (incident closed)
"""

import logging
from datetime import datetime
from enum import Enum

from statussentinel.models import Incident, IncidentState, OpenIncident, ProbeResult
from statussentinel.store.base import ResultStore, StoreError

logger = logging.getLogger(__name__)


class Transition(str, Enum):
    NONE = "none"
    OPENED = "opened"
    UPDATED = "updated"
    CLOSED = "closed"


class IncidentStateMachine:
    """Track the incident state of one service.

    Not thread-safe: a service's results must be processed one at a time,
    in the order they were produced.
    """

    def __init__(
        self,
        service_name: str,
        store: ResultStore,
        open_incident: Incident | None = None,
    ) -> None:
        """Initialize the machine.

        Args:
            service_name: Service whose results are processed.
            store: Store the transitions are written to.
            open_incident: Incident left open by a previous run; the machine
                starts degraded and adopts it.
        """
        self.service_name = service_name
        self.store = store
        self.state = IncidentState(service_name=service_name)
        self._pending_closes: list[tuple[int, datetime]] = []

        if open_incident is not None:
            self.state.open_incident = OpenIncident(
                started_at=open_incident.started_at,
                last_reason=open_incident.reason,
                incident_id=open_incident.id,
            )
            logger.info(
                f"Resuming open incident #{open_incident.id} for {service_name} "
                f"(since {open_incident.started_at.isoformat()})"
            )

    @property
    def degraded(self) -> bool:
        return self.state.degraded

    def process(self, result: ProbeResult) -> Transition:
        """Apply one probe result."""
        if result.service_name != self.service_name:
            raise ValueError(f"result for {result.service_name} sent to {self.service_name}")

        self._flush_pending_closes()

        current = self.state.open_incident
        if current is None:
            if result.up:
                return Transition.NONE
            reason = str(result.reason)
            self.state.open_incident = OpenIncident(started_at=result.timestamp, last_reason=reason)
            self._persist_open()
            logger.warning(f"Incident opened for {self.service_name}: {reason}")
            return Transition.OPENED

        if not result.up:
            current.last_reason = str(result.reason)
            current.occurrence_count += 1
            if current.incident_id is None:
                self._persist_open()
            return Transition.UPDATED

        self.state.open_incident = None
        if current.incident_id is not None:
            self._close(current.incident_id, result.timestamp)
        duration = (result.timestamp - current.started_at).total_seconds()
        logger.info(
            f"Incident closed for {self.service_name} after {duration:.0f}s "
            f"({current.occurrence_count} failed checks)"
        )
        return Transition.CLOSED

    def _persist_open(self) -> None:
        incident = self.state.open_incident
        if self._pending_closes:
            # The store would hand back the previous, still-open incident
            return
        try:
            incident.incident_id = self.store.open_incident(
                self.service_name, incident.started_at, incident.last_reason
            )
        except StoreError as e:
            logger.error(f"Could not record incident for {self.service_name}, will retry: {e}")

    def _close(self, incident_id: int, ended_at: datetime) -> None:
        try:
            self.store.close_incident(incident_id, ended_at)
        except StoreError as e:
            logger.error(f"Could not close incident #{incident_id} for {self.service_name}, will retry: {e}")
            self._pending_closes.append((incident_id, ended_at))

    def _flush_pending_closes(self) -> None:
        pending, self._pending_closes = self._pending_closes, []
        for incident_id, ended_at in pending:
            self._close(incident_id, ended_at)
