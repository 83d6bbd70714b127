"""Protocol-specific health probes."""

from statussentinel.config import ServiceConfig, TargetKind
from statussentinel.probes.base import BaseProbe, ProbeError
from statussentinel.probes.http import HTTPProbe
from statussentinel.probes.minecraft import MinecraftProbe


def create_probe(service: ServiceConfig) -> BaseProbe:
    """Get the probe matching a service's target kind."""
    if service.kind == TargetKind.MINECRAFT:
        return MinecraftProbe(service)
    if service.kind == TargetKind.HTTP:
        return HTTPProbe(service)
    raise ProbeError(f"No probe available for target: {service.target}")


__all__ = ["BaseProbe", "HTTPProbe", "MinecraftProbe", "ProbeError", "create_probe"]
