"""Configuration management for StatusSentinel."""

import json
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any
from urllib.parse import urlsplit

import yaml

DEFAULT_INTERVAL = 60.0
DEFAULT_TIMEOUT = 10.0
DEFAULT_MINECRAFT_PORT = 25565
MINECRAFT_SCHEME = "mc://"


class ConfigError(Exception):
    """Configuration could not be loaded or failed validation.

    All validation problems found in one pass are collected in ``errors``.
    """

    def __init__(self, errors: list[str] | str) -> None:
        if isinstance(errors, str):
            errors = [errors]
        self.errors = list(errors)
        super().__init__("; ".join(self.errors))


class TargetKind(str, Enum):
    HTTP = "http"
    MINECRAFT = "minecraft"


@dataclass(frozen=True)
class Target:
    """A parsed service target."""

    kind: TargetKind
    raw: str
    host: str
    port: int

    @property
    def url(self) -> str:
        return self.raw

    def __str__(self) -> str:
        return self.raw

    @classmethod
    def parse(cls, raw: str) -> "Target":
        """Parse ``http(s)://...`` or ``mc://host[:port]``.

        Raises:
            ValueError: If the target is not a supported address.
        """
        if not isinstance(raw, str) or not raw.strip():
            raise ValueError("target must be a non-empty string")
        raw = raw.strip()

        if raw.lower().startswith(MINECRAFT_SCHEME):
            host, port = parse_host_port(raw[len(MINECRAFT_SCHEME):])
            return cls(kind=TargetKind.MINECRAFT, raw=raw, host=host, port=port)

        parts = urlsplit(raw)
        if parts.scheme.lower() not in ("http", "https"):
            raise ValueError(f"unsupported target '{raw}' (expected http(s):// or mc://)")
        if not parts.hostname:
            raise ValueError(f"target '{raw}' has no host")
        try:
            port = parts.port
        except ValueError:
            raise ValueError(f"target '{raw}' has an invalid port") from None
        if port is None:
            port = 443 if parts.scheme.lower() == "https" else 80
        return cls(kind=TargetKind.HTTP, raw=raw, host=parts.hostname, port=port)


def parse_host_port(address: str, default_port: int = DEFAULT_MINECRAFT_PORT) -> tuple[str, int]:
    """Split ``host:port`` literally; ``[v6addr]:port`` is accepted."""
    address = address.strip().rstrip("/")
    if not address:
        raise ValueError("Minecraft target has no host")

    if address.startswith("["):
        host, sep, rest = address[1:].partition("]")
        if not sep or not host:
            raise ValueError(f"invalid IPv6 address '{address}'")
        port_text = rest[1:] if rest.startswith(":") else None
        if rest and port_text is None:
            raise ValueError(f"invalid address '{address}'")
    elif address.count(":") == 1:
        host, _, port_text = address.partition(":")
    else:
        host, port_text = address, None

    if not host:
        raise ValueError(f"Minecraft target '{address}' has no host")
    if port_text is None:
        return host, default_port
    if not port_text.isdigit() or not 0 < int(port_text) < 65536:
        raise ValueError(f"invalid port '{port_text}' in '{address}'")
    return host, int(port_text)


def format_service_id(name: str) -> str:
    """Derive the storage key for a service name."""
    slug = name.lower().replace(" ", "_")
    return re.sub(r"[^a-z0-9_]", "", slug)


@dataclass(frozen=True)
class ServiceConfig:
    """Configuration for a single monitored service."""

    name: str
    target: Target
    interval: float = DEFAULT_INTERVAL
    timeout: float = DEFAULT_TIMEOUT
    verify_tls: bool = True

    @property
    def service_id(self) -> str:
        return format_service_id(self.name)

    @property
    def kind(self) -> TargetKind:
        return self.target.kind

    @classmethod
    def create(
        cls,
        name: str,
        target: str,
        interval: float = DEFAULT_INTERVAL,
        timeout: float = DEFAULT_TIMEOUT,
        verify_tls: bool = True,
    ) -> "ServiceConfig":
        """Build a service from a raw target string."""
        try:
            parsed = Target.parse(target)
        except ValueError as e:
            raise ConfigError(f"service '{name}': {e}") from e
        return cls(name=name, target=parsed, interval=interval, timeout=timeout, verify_tls=verify_tls)


def _positive_number(value: Any, what: str, errors: list[str]) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        errors.append(f"{what} must be a positive number, got {value!r}")
        return None
    return float(value)


def _boolean(value: Any, what: str, errors: list[str]) -> bool | None:
    if not isinstance(value, bool):
        errors.append(f"{what} must be true or false, got {value!r}")
        return None
    return value


def _is_full_form(data: dict[str, Any]) -> bool:
    """Tell the full form from a flat mapping that has a service called "services"."""
    if "services" not in data:
        return False
    services = data["services"]
    # {"services": {"target": ...}} is a single flat service in mapping form
    return services is None or (isinstance(services, dict) and "target" not in services)


def _reject_duplicate_keys(pairs: list[tuple[str, Any]]) -> dict[str, Any]:
    data: dict[str, Any] = {}
    duplicates = []
    for key, value in pairs:
        if key in data:
            duplicates.append(key)
        data[key] = value
    if duplicates:
        raise ConfigError([f"duplicate key '{key}'" for key in duplicates])
    return data


@dataclass
class Config:
    """Main configuration for StatusSentinel."""

    services: list[ServiceConfig] = field(default_factory=list)
    check_interval: float = DEFAULT_INTERVAL
    timeout: float = DEFAULT_TIMEOUT
    max_concurrency: int = 50
    database_url: str = "sqlite:///statussentinel.db"
    log_level: str = "INFO"
    history_retention_days: int = 90
    verify_tls: bool = True

    @classmethod
    def from_file(cls, path: str | Path) -> "Config":
        """Load configuration from a JSON or YAML file."""
        path = Path(path)
        if not path.exists():
            raise ConfigError(f"Config file not found: {path}")

        try:
            with open(path, encoding="utf-8") as f:
                if path.suffix.lower() == ".json":
                    data = json.load(f, object_pairs_hook=_reject_duplicate_keys)
                else:
                    data = yaml.safe_load(f)
        except (json.JSONDecodeError, yaml.YAMLError) as e:
            raise ConfigError(f"Cannot parse {path}: {e}") from e
        except OSError as e:
            raise ConfigError(f"Cannot read {path}: {e}") from e

        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: Any) -> "Config":
        """Create configuration from a parsed document.

        Accepts either the full form (with a ``services`` key) or a flat
        mapping of service name to target.

        Raises:
            ConfigError: With every validation problem found.
        """
        if not isinstance(data, dict):
            raise ConfigError("configuration must be a mapping")

        if not _is_full_form(data):
            data = {"services": data}

        errors: list[str] = []
        defaults = cls()

        check_interval = _positive_number(
            data.get("check_interval", defaults.check_interval), "check_interval", errors
        )
        timeout = _positive_number(data.get("timeout", defaults.timeout), "timeout", errors)
        max_concurrency = data.get("max_concurrency", defaults.max_concurrency)
        if isinstance(max_concurrency, bool) or not isinstance(max_concurrency, int) or max_concurrency < 1:
            errors.append(f"max_concurrency must be a positive integer, got {max_concurrency!r}")
        retention = data.get("history_retention_days", defaults.history_retention_days)
        if isinstance(retention, bool) or not isinstance(retention, int) or retention < 0:
            errors.append(f"history_retention_days must be a non-negative integer, got {retention!r}")
        verify_tls = _boolean(data.get("verify_tls", defaults.verify_tls), "verify_tls", errors)
        if verify_tls is None:
            verify_tls = defaults.verify_tls

        services_data = data.get("services") or {}
        if not isinstance(services_data, dict):
            errors.append("services must be a mapping of name to target")
            services_data = {}
        elif not services_data:
            errors.append("no services configured")

        services: list[ServiceConfig] = []
        seen_ids: dict[str, str] = {}
        for name, entry in services_data.items():
            name = str(name)
            if isinstance(entry, str):
                entry = {"target": entry}
            if not isinstance(entry, dict):
                errors.append(f"service '{name}': expected a target string or mapping")
                continue

            service_id = format_service_id(name)
            if not service_id:
                errors.append(f"service '{name}': name has no usable characters")
            elif service_id in seen_ids:
                errors.append(f"service '{name}': id '{service_id}' clashes with '{seen_ids[service_id]}'")
            else:
                seen_ids[service_id] = name

            try:
                target = Target.parse(entry.get("target", ""))
            except ValueError as e:
                errors.append(f"service '{name}': {e}")
                continue

            interval = _positive_number(
                entry.get("interval", check_interval or DEFAULT_INTERVAL), f"service '{name}': interval", errors
            )
            svc_timeout = _positive_number(
                entry.get("timeout", timeout or DEFAULT_TIMEOUT), f"service '{name}': timeout", errors
            )
            svc_verify_tls = _boolean(entry.get("verify_tls", verify_tls), f"service '{name}': verify_tls", errors)
            if interval is None or svc_timeout is None or svc_verify_tls is None:
                continue

            services.append(ServiceConfig(
                name=name,
                target=target,
                interval=interval,
                timeout=svc_timeout,
                verify_tls=svc_verify_tls,
            ))

        if errors:
            raise ConfigError(errors)

        return cls(
            services=services,
            check_interval=check_interval,
            timeout=timeout,
            max_concurrency=max_concurrency,
            database_url=data.get("database_url", defaults.database_url),
            log_level=str(data.get("log_level", defaults.log_level)).upper(),
            history_retention_days=retention,
            verify_tls=verify_tls,
        )

    def get_service(self, name: str) -> ServiceConfig | None:
        """Get service by name."""
        for service in self.services:
            if service.name == name:
                return service
        return None

    def to_yaml(self, path: str | Path) -> None:
        """Save configuration to YAML file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, "w", encoding="utf-8") as f:
            yaml.dump(self._to_dict(), f, default_flow_style=False, sort_keys=False)

    def _to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        services: dict[str, Any] = {}
        for service in self.services:
            if (
                service.interval == self.check_interval
                and service.timeout == self.timeout
                and service.verify_tls == self.verify_tls
            ):
                services[service.name] = service.target.raw
            else:
                services[service.name] = {
                    "target": service.target.raw,
                    "interval": service.interval,
                    "timeout": service.timeout,
                }
                if service.verify_tls != self.verify_tls:
                    services[service.name]["verify_tls"] = service.verify_tls

        return {
            "check_interval": self.check_interval,
            "timeout": self.timeout,
            "max_concurrency": self.max_concurrency,
            "database_url": self.database_url,
            "log_level": self.log_level,
            "history_retention_days": self.history_retention_days,
            "verify_tls": self.verify_tls,
            "services": services,
        }


def create_example_config() -> Config:
    """Create an example configuration for documentation."""
    return Config(
        services=[
            ServiceConfig.create("Website", "https://example.com/"),
            ServiceConfig.create("API", "https://api.example.com/health", interval=30.0, timeout=5.0),
            ServiceConfig.create("Survival Server", "mc://play.example.com:25565"),
        ],
    )
