"""Resolve and validate the registry address a setup run targets."""
from __future__ import annotations

import ipaddress
import re
from dataclasses import dataclass

from .config import AppConfig

_HOST_LABEL = re.compile(r"^(?!-)[A-Za-z0-9-]{1,63}(?<!-)$")


class TargetValidationError(ValueError):
    """Raised when a host, IP address or port is malformed."""


@dataclass(frozen=True, slots=True)
class RegistryTarget:
    """Hostname, IP address and port the registry is reachable at."""

    host: str
    ip: str
    port: int

    @property
    def host_endpoint(self) -> str:
        """Return ``host:port``."""
        return f"{self.host}:{self.port}"

    @property
    def ip_endpoint(self) -> str:
        """Return ``ip:port`` (IPv6 addresses are bracketed)."""
        if ":" in self.ip:
            return f"[{self.ip}]:{self.port}"
        return f"{self.ip}:{self.port}"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"host": self.host, "ip": self.ip, "port": self.port}


def validate_host(value: str) -> str:
    """Return the normalised hostname or raise :class:`TargetValidationError`."""
    host = value.strip().rstrip(".").lower()
    if not host or len(host) > 253:
        raise TargetValidationError(f"Invalid hostname '{value}'.")
    if not all(_HOST_LABEL.match(label) for label in host.split(".")):
        raise TargetValidationError(f"Invalid hostname '{value}'.")
    return host


def validate_ip(value: str) -> str:
    """Return the canonical textual IP address."""
    try:
        return str(ipaddress.ip_address(value.strip()))
    except ValueError as exc:
        raise TargetValidationError(f"Invalid IP address '{value}'.") from exc


def validate_port(value: int | str) -> int:
    """Return *value* as an integer port in ``1..65535``."""
    try:
        port = int(value)
    except (TypeError, ValueError) as exc:
        raise TargetValidationError(f"Invalid port '{value}'.") from exc
    if not 1 <= port <= 65535:
        raise TargetValidationError(f"Port must be between 1 and 65535 (got {port}).")
    return port


def resolve_target(
    config: AppConfig,
    host: str | None = None,
    ip: str | None = None,
    port: int | str | None = None,
) -> RegistryTarget:
    """Apply configured defaults to missing arguments and validate the result."""
    return RegistryTarget(
        host=validate_host(host if host is not None else config.registry.host),
        ip=validate_ip(ip if ip is not None else config.registry.ip),
        port=validate_port(port if port is not None else config.registry.port),
    )


__all__ = [
    "RegistryTarget",
    "TargetValidationError",
    "resolve_target",
    "validate_host",
    "validate_ip",
    "validate_port",
]
