"""
StatusSentinel - Uptime monitoring for HTTP services and Minecraft servers.

Probes each configured service on a fixed interval, records every result and
opens and closes incidents as services go down and come back.
"""

__version__ = "1.0.0"

from statussentinel.config import Config, ConfigError, ServiceConfig
from statussentinel.monitor import StatusMonitor
from statussentinel.models import DownReason, Incident, ProbeResult, ReasonKind

__all__ = [
    "Config",
    "ConfigError",
    "ServiceConfig",
    "StatusMonitor",
    "DownReason",
    "Incident",
    "ProbeResult",
    "ReasonKind",
]
