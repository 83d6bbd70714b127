"""Data models for probe results and incidents."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ReasonKind(str, Enum):
    """Why a probe classified its target as down."""

    HTTP_STATUS = "http_status"
    CONNECTION_REFUSED = "connection_refused"
    DNS_FAILURE = "dns_failure"
    TLS_ERROR = "tls_error"
    TIMEOUT = "timeout"
    CONNECTION_ERROR = "connection_error"
    HANDSHAKE_FAILED = "handshake_failed"
    MALFORMED_RESPONSE = "malformed_response"
    PROBE_ERROR = "probe_error"


@dataclass(frozen=True)
class DownReason:
    """Classified cause of a failed probe."""

    kind: ReasonKind
    status_code: int | None = None
    detail: str = ""

    def __str__(self) -> str:
        if self.kind == ReasonKind.HTTP_STATUS and self.status_code is not None:
            text = f"HTTP {self.status_code}"
        else:
            text = self.kind.value.replace("_", " ")
        if self.detail:
            text = f"{text}: {self.detail}"
        return text


@dataclass(frozen=True)
class ProbeResult:
    """Outcome of one probe against one service.

    A result is up when it carries no ``reason``.
    """

    service_name: str
    timestamp: datetime = field(default_factory=utcnow)
    reason: DownReason | None = None
    latency_ms: float | None = None
    detail: str = ""

    @property
    def up(self) -> bool:
        return self.reason is None

    @classmethod
    def success(
        cls,
        service_name: str,
        timestamp: datetime,
        latency_ms: float | None = None,
        detail: str = "",
    ) -> "ProbeResult":
        return cls(
            service_name=service_name,
            timestamp=timestamp,
            latency_ms=latency_ms,
            detail=detail,
        )

    @classmethod
    def failure(
        cls,
        service_name: str,
        timestamp: datetime,
        kind: ReasonKind,
        detail: str = "",
        status_code: int | None = None,
        latency_ms: float | None = None,
    ) -> "ProbeResult":
        return cls(
            service_name=service_name,
            timestamp=timestamp,
            reason=DownReason(kind=kind, status_code=status_code, detail=detail),
            latency_ms=latency_ms,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "service": self.service_name,
            "timestamp": self.timestamp.isoformat(),
            "up": self.up,
            "latency_ms": self.latency_ms,
            "reason": self.reason.kind.value if self.reason else None,
            "status_code": self.reason.status_code if self.reason else None,
            "detail": self.reason.detail if self.reason else self.detail,
        }


@dataclass(frozen=True)
class Incident:
    """A persisted interval during which a service was observed down."""

    id: int
    service_name: str
    started_at: datetime
    reason: str
    ended_at: datetime | None = None

    @property
    def is_open(self) -> bool:
        return self.ended_at is None

    @property
    def duration_seconds(self) -> float | None:
        if self.ended_at is None:
            return None
        return (self.ended_at - self.started_at).total_seconds()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "service": self.service_name,
            "started_at": self.started_at.isoformat(),
            "ended_at": self.ended_at.isoformat() if self.ended_at else None,
            "reason": self.reason,
        }


@dataclass
class OpenIncident:
    """In-memory view of the incident a degraded service is in."""

    started_at: datetime
    last_reason: str
    occurrence_count: int = 1
    incident_id: int | None = None  # None until the store accepted the open


@dataclass
class IncidentState:
    """Per-service incident state: healthy, or degraded with an open incident."""

    service_name: str
    open_incident: OpenIncident | None = None

    @property
    def degraded(self) -> bool:
        return self.open_incident is not None

    @property
    def label(self) -> str:
        return "degraded" if self.degraded else "healthy"
