"""Tests for data models."""

from datetime import datetime, timedelta, timezone

import pytest

from statussentinel.models import (
    DownReason,
    Incident,
    IncidentState,
    OpenIncident,
    ProbeResult,
    ReasonKind,
)

T0 = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


class TestDownReason:
    """Tests for DownReason formatting."""

    def test_http_status(self):
        reason = DownReason(ReasonKind.HTTP_STATUS, status_code=503)
        assert str(reason) == "HTTP 503"

    def test_kind_with_detail(self):
        reason = DownReason(ReasonKind.CONNECTION_REFUSED, detail="[Errno 111]")
        assert str(reason) == "connection refused: [Errno 111]"

    def test_reason_values(self):
        assert ReasonKind.TIMEOUT.value == "timeout"
        assert ReasonKind.MALFORMED_RESPONSE.value == "malformed_response"


class TestProbeResult:
    """Tests for ProbeResult model."""

    def test_success(self):
        result = ProbeResult.success("web", T0, latency_ms=12.5)
        assert result.up is True
        assert result.reason is None
        assert result.latency_ms == 12.5

    def test_failure(self):
        result = ProbeResult.failure("web", T0, ReasonKind.HTTP_STATUS, status_code=500)
        assert result.up is False
        assert result.reason.kind == ReasonKind.HTTP_STATUS
        assert result.reason.status_code == 500

    def test_immutable(self):
        result = ProbeResult.success("web", T0)
        with pytest.raises(AttributeError):
            result.reason = DownReason(ReasonKind.TIMEOUT)

    def test_to_dict(self):
        data = ProbeResult.failure("web", T0, ReasonKind.TIMEOUT, detail="slow").to_dict()
        assert data["service"] == "web"
        assert data["up"] is False
        assert data["reason"] == "timeout"
        assert data["detail"] == "slow"
        assert data["timestamp"] == T0.isoformat()


class TestIncident:
    """Tests for Incident model."""

    def test_open_incident(self):
        incident = Incident(id=1, service_name="web", started_at=T0, reason="HTTP 503")
        assert incident.is_open
        assert incident.duration_seconds is None

    def test_closed_incident(self):
        incident = Incident(
            id=1, service_name="web", started_at=T0, reason="HTTP 503",
            ended_at=T0 + timedelta(minutes=2),
        )
        assert not incident.is_open
        assert incident.duration_seconds == 120.0
        assert incident.to_dict()["ended_at"] == (T0 + timedelta(minutes=2)).isoformat()


class TestIncidentState:
    """Tests for IncidentState model."""

    def test_healthy_by_default(self):
        state = IncidentState(service_name="web")
        assert not state.degraded
        assert state.label == "healthy"

    def test_degraded(self):
        state = IncidentState(service_name="web", open_incident=OpenIncident(T0, "timeout"))
        assert state.degraded
        assert state.label == "degraded"
        assert state.open_incident.occurrence_count == 1
