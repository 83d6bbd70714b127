"""Base probe interface."""

from abc import ABC, abstractmethod
from datetime import datetime

from statussentinel.config import ServiceConfig
from statussentinel.models import ProbeResult


class ProbeError(Exception):
    """A probe failed for a reason other than a classified network outcome."""


class BaseProbe(ABC):
    """Abstract base class for protocol-specific health probes."""

    def __init__(self, service: ServiceConfig) -> None:
        """Initialize probe with service configuration."""
        self.service = service

    @property
    def timeout(self) -> float:
        return self.service.timeout

    @abstractmethod
    async def check(self, timestamp: datetime) -> ProbeResult:
        """Perform one round-trip against the service target.

        Args:
            timestamp: Time the check was scheduled; stamped on the result.

        Returns:
            ProbeResult classifying the target as up or down.

        Raises:
            ProbeError: For failures that are not network outcomes.
        """
        ...
