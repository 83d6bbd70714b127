"""In-process result store."""

import threading
from dataclasses import replace
from datetime import datetime

from statussentinel.config import ServiceConfig
from statussentinel.models import Incident, ProbeResult
from statussentinel.store.base import ResultStore


class MemoryResultStore(ResultStore):
    """Keep results and incidents in memory.

    Used for one-shot checks and tests; nothing survives the process.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.services: dict[str, ServiceConfig] = {}
        self.results: list[ProbeResult] = []
        self.incidents: dict[int, Incident] = {}
        self._next_id = 1

    def register_service(self, service: ServiceConfig) -> None:
        with self._lock:
            self.services[service.name] = service

    def record_probe(self, result: ProbeResult) -> None:
        with self._lock:
            self.results.append(result)

    def open_incident(self, service_name: str, started_at: datetime, reason: str) -> int:
        with self._lock:
            for incident in self.incidents.values():
                if incident.service_name == service_name and incident.is_open:
                    return incident.id
            incident_id = self._next_id
            self._next_id += 1
            self.incidents[incident_id] = Incident(
                id=incident_id,
                service_name=service_name,
                started_at=started_at,
                reason=reason,
            )
            return incident_id

    def close_incident(self, incident_id: int, ended_at: datetime) -> None:
        with self._lock:
            incident = self.incidents.get(incident_id)
            if incident is not None and incident.is_open:
                self.incidents[incident_id] = replace(incident, ended_at=ended_at)

    def get_open_incident(self, service_name: str) -> Incident | None:
        with self._lock:
            for incident in self.incidents.values():
                if incident.service_name == service_name and incident.is_open:
                    return incident
        return None

    def list_incidents(self, include_closed: bool = True, service_name: str | None = None) -> list[Incident]:
        with self._lock:
            incidents = [
                i for i in self.incidents.values()
                if (include_closed or i.is_open)
                and (service_name is None or i.service_name == service_name)
            ]
        return sorted(incidents, key=lambda i: (i.started_at, i.id), reverse=True)

    def recent_results(self, service_name: str, limit: int = 100) -> list[ProbeResult]:
        with self._lock:
            matching = [r for r in self.results if r.service_name == service_name]
        return list(reversed(matching[-limit:])) if limit > 0 else []

    def prune_results(self, before: datetime) -> int:
        with self._lock:
            kept = [r for r in self.results if r.timestamp >= before]
            removed = len(self.results) - len(kept)
            self.results = kept
        return removed
