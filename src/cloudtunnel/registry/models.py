"""Registry models: services, tunnels and the persisted registry root.

Attribute names are snake_case; the persisted document uses the camelCase
aliases (``tunnelId``, ``createdAt``...) so files written by earlier
releases load unchanged.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from ..common.exceptions import ValidationError
from ..common.logging import get_logger
from ..common.utils import (
    build_target_url,
    parse_target_url,
    validate_hostname,
    validate_port,
    validate_protocol,
)

logger = get_logger(__name__)

CURRENT_SCHEMA_VERSION = "2.0"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Protocol(str, Enum):
    """Protocol the local origin speaks."""

    HTTP = "http"
    HTTPS = "https"


class Service(BaseModel):
    """A public hostname routed to a local endpoint."""

    model_config = ConfigDict(
        populate_by_name=True, str_strip_whitespace=True, validate_assignment=True
    )

    hostname: str = Field(min_length=1, description="Public hostname")
    target_url: str = Field(
        alias="service", min_length=1, description="Local origin URL"
    )
    protocol: Protocol | None = Field(default=None, description="Origin protocol")
    port: int | None = Field(default=None, ge=1, le=65535, description="Origin port")
    created_at: datetime = Field(default_factory=utcnow, alias="createdAt")
    updated_at: datetime | None = Field(default=None, alias="updatedAt")

    @model_validator(mode="before")
    @classmethod
    def _derive_protocol_and_port(cls, data: Any) -> Any:
        """Fill missing protocol and port from the origin URL."""
        if not isinstance(data, dict):
            return data
        target_url = data.get("service", data.get("target_url"))
        if not isinstance(target_url, str):
            return data
        parsed = parse_target_url(target_url)
        if parsed is None:
            return data

        protocol, port = parsed
        data = dict(data)
        if data.get("protocol") is None:
            data["protocol"] = protocol
        if data.get("port") is None:
            data["port"] = port
        return data

    @classmethod
    def create(cls, hostname: str, port: int, protocol: str = "http") -> "Service":
        """Build a validated service pointing at ``<protocol>://localhost:<port>``.

        Raises:
            ValidationError: If hostname, port or protocol is invalid
        """
        hostname = validate_hostname(hostname)
        port = validate_port(port)
        protocol = validate_protocol(protocol)
        return cls(
            hostname=hostname,
            target_url=build_target_url(protocol, port),
            protocol=Protocol(protocol),
            port=port,
        )

    def to_ingress_rule(self) -> dict[str, str]:
        return {"hostname": self.hostname, "service": self.target_url}


class Tunnel(BaseModel):
    """A daemon-assigned tunnel and the services routed through it."""

    model_config = ConfigDict(populate_by_name=True, validate_assignment=True)

    id: str = Field(alias="tunnelId", min_length=1, description="Daemon tunnel id")
    name: str = Field(default="", alias="tunnelName", description="Tunnel name")
    services: list[Service] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow, alias="createdAt")
    last_used_at: datetime | None = Field(default=None, alias="lastUsed")

    @property
    def label(self) -> str:
        return f"{self.name} ({self.id})" if self.name else self.id

    def get_service(self, hostname: str) -> Service | None:
        """Get service by hostname."""
        for service in self.services:
            if service.hostname == hostname:
                return service
        return None

    def has_hostname(self, hostname: str) -> bool:
        return self.get_service(hostname) is not None

    def duplicate_hostnames(self) -> list[str]:
        """Hostnames that appear more than once, in first-seen order."""
        seen: set[str] = set()
        duplicates: list[str] = []
        for service in self.services:
            if service.hostname in seen and service.hostname not in duplicates:
                duplicates.append(service.hostname)
            seen.add(service.hostname)
        return duplicates

    def add_service(self, service: Service) -> Service:
        """Append a service, keeping hostnames unique within the tunnel.

        Raises:
            ValidationError: If the hostname is already configured; the
                service list is left untouched
        """
        if self.has_hostname(service.hostname):
            raise ValidationError(
                f"Hostname '{service.hostname}' is already configured "
                f"for tunnel {self.label}",
                hint="Use a different hostname or remove the existing service first",
            )

        self.services.append(service)
        logger.info(
            "Service added", tunnel_id=self.id, hostname=service.hostname
        )
        return service

    def remove_service(self, hostname: str) -> Service:
        """Remove a service by hostname.

        Raises:
            ValidationError: If no service has this hostname
        """
        for index, service in enumerate(self.services):
            if service.hostname == hostname:
                del self.services[index]
                logger.info("Service removed", tunnel_id=self.id, hostname=hostname)
                return service

        raise ValidationError(f"Service '{hostname}' not found in tunnel {self.label}")

    def sorted_services(self) -> list[Service]:
        """Services ordered by hostname, for listing."""
        return sorted(self.services, key=lambda s: s.hostname)

    def mark_used(self, when: datetime | None = None) -> None:
        self.last_used_at = when or utcnow()


class Registry(BaseModel):
    """Persisted root: every known tunnel plus the active selection."""

    model_config = ConfigDict(populate_by_name=True)

    version: str = Field(default=CURRENT_SCHEMA_VERSION, description="Schema version")
    active_tunnel_id: str | None = Field(default=None, alias="activeTunnel")
    tunnels: dict[str, Tunnel] = Field(
        default_factory=dict, description="Tunnels by daemon id"
    )

    @model_validator(mode="after")
    def check_tunnel_keys(self) -> "Registry":
        """Ensure every tunnel is stored under its own id."""
        for key, tunnel in self.tunnels.items():
            if key != tunnel.id:
                raise ValueError(
                    f"Tunnel stored under '{key}' has id '{tunnel.id}'"
                )
        return self

    @property
    def active_tunnel(self) -> Tunnel | None:
        """Resolve the active tunnel; a dangling id resolves to None."""
        if self.active_tunnel_id is None:
            return None
        return self.tunnels.get(self.active_tunnel_id)

    def get_tunnel(self, tunnel_id: str) -> Tunnel | None:
        """Get tunnel by id (case-sensitive)."""
        return self.tunnels.get(tunnel_id)

    def list_tunnels(self) -> list[Tunnel]:
        return list(self.tunnels.values())

    def add_tunnel(self, tunnel: Tunnel, replace: bool = False) -> Tunnel:
        """Add tunnel to registry.

        Args:
            tunnel: Tunnel to add
            replace: Overwrite an existing tunnel with the same id

        Raises:
            ValidationError: If the id already exists and replace is False
        """
        if tunnel.id in self.tunnels and not replace:
            raise ValidationError(f"Tunnel '{tunnel.id}' is already registered")

        self.tunnels[tunnel.id] = tunnel
        logger.info("Tunnel registered", tunnel_id=tunnel.id, name=tunnel.name)
        return tunnel

    def remove_tunnel(self, tunnel_id: str) -> Tunnel:
        """Remove tunnel from registry, clearing the active id if it pointed at it.

        Raises:
            ValidationError: If tunnel not found
        """
        if tunnel_id not in self.tunnels:
            raise ValidationError(f"Tunnel '{tunnel_id}' not found")

        tunnel = self.tunnels.pop(tunnel_id)
        if self.active_tunnel_id == tunnel_id:
            self.active_tunnel_id = None
        logger.info("Tunnel removed from registry", tunnel_id=tunnel_id)
        return tunnel

    def set_active(self, tunnel_id: str) -> Tunnel:
        """Select the tunnel service-scoped commands operate on.

        Raises:
            ValidationError: If tunnel not found
        """
        tunnel = self.tunnels.get(tunnel_id)
        if tunnel is None:
            raise ValidationError(f"Tunnel '{tunnel_id}' not found")

        self.active_tunnel_id = tunnel_id
        logger.info("Active tunnel set", tunnel_id=tunnel_id)
        return tunnel

    def to_document(self) -> dict[str, Any]:
        """Serialize to the on-disk JSON document."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
