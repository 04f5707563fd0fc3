"""Reconciliation of the local registry against cloudflared's view."""

import socket
from collections.abc import Callable
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from .common.exceptions import ExternalToolError
from .common.logging import get_logger
from .daemon.gateway import CloudflaredGateway
from .daemon.parsers import RemoteTunnel
from .registry.models import Registry

logger = get_logger(__name__)

DEFAULT_HEALTH_CHECK_TIMEOUT = 1.0


class TunnelStatus(str, Enum):
    """Observed state of a tunnel."""

    RUNNING = "running"
    STOPPED = "stopped"
    UNKNOWN = "unknown"


class ServiceHealth(BaseModel):
    """Reachability of one service's local origin."""

    model_config = ConfigDict(frozen=True)

    hostname: str
    target_url: str
    port: int | None = None
    reachable: bool | None = Field(
        default=None, description="None when the origin port is unknown"
    )


class TunnelReport(BaseModel):
    """Status line for one registered tunnel."""

    model_config = ConfigDict(frozen=True)

    tunnel_id: str
    name: str
    status: TunnelStatus
    active: bool = False
    services: list[ServiceHealth] = Field(default_factory=list)


def health_check(
    port: int, host: str = "localhost", timeout: float = DEFAULT_HEALTH_CHECK_TIMEOUT
) -> bool:
    """Try a TCP connection to ``host:port``.

    Returns:
        True only if the connection succeeds within ``timeout`` seconds
    """
    try:
        with socket.create_connection((host, port), timeout=timeout):
            return True
    except OSError:
        return False


class Reconciler:
    """Compares registry state with the daemon's listing and local processes."""

    def __init__(
        self,
        gateway: CloudflaredGateway,
        health_check_timeout: float = DEFAULT_HEALTH_CHECK_TIMEOUT,
    ):
        self.gateway = gateway
        self.health_check_timeout = health_check_timeout

    def tunnel_status(self, tunnel_id: str) -> TunnelStatus:
        """Determine whether a tunnel is running. Never raises.

        The remote listing is consulted first; one or more connections means
        running. Otherwise the local process table is scanned for a daemon
        whose command line carries the tunnel id. Without a match the result
        is stopped if the remote listing answered, unknown if it failed.
        """
        return self._status_from(tunnel_id, self._remote_tunnels())

    def _remote_tunnels(self) -> list[RemoteTunnel] | None:
        try:
            return self.gateway.list_remote_tunnels()
        except ExternalToolError as e:
            logger.warning("Remote tunnel listing failed", error=e.message)
            return None

    def _status_from(
        self, tunnel_id: str, remote: list[RemoteTunnel] | None
    ) -> TunnelStatus:
        # remote is None when the listing failed
        for tunnel in remote or []:
            if tunnel.id == tunnel_id and tunnel.connection_count > 0:
                return TunnelStatus.RUNNING

        try:
            if self.gateway.find_tunnel_processes(tunnel_id):
                return TunnelStatus.RUNNING
        except ExternalToolError as e:
            logger.warning(
                "Local process scan failed", tunnel_id=tunnel_id, error=e.message
            )

        return TunnelStatus.STOPPED if remote is not None else TunnelStatus.UNKNOWN

    def health_check(self, port: int, host: str = "localhost") -> bool:
        return health_check(port, host=host, timeout=self.health_check_timeout)

    def find_stale_tunnels(self, registry: Registry) -> set[str]:
        """Local tunnel ids that the daemon no longer knows about.

        Raises:
            ExternalToolError: If the remote listing fails
        """
        remote_ids = {remote.id for remote in self.gateway.list_remote_tunnels()}
        stale = {tunnel_id for tunnel_id in registry.tunnels if tunnel_id not in remote_ids}
        logger.info(
            "Stale tunnel scan", local=len(registry.tunnels), stale=len(stale)
        )
        return stale

    def clean(
        self, registry: Registry, confirm: Callable[[set[str]], bool]
    ) -> set[str]:
        """Remove stale tunnels from ``registry`` once ``confirm`` approves.

        ``confirm`` receives the candidate ids and is not called when there
        are none. Removing the active tunnel clears the active selection.

        Returns:
            The ids actually removed; empty if none were stale or the
            removal was declined

        Raises:
            ExternalToolError: If the remote listing fails; nothing is removed
        """
        stale = self.find_stale_tunnels(registry)
        if not stale:
            return set()

        if not confirm(set(stale)):
            logger.info("Clean declined", candidates=len(stale))
            return set()

        for tunnel_id in stale:
            registry.remove_tunnel(tunnel_id)
        logger.info("Stale tunnels removed", removed=sorted(stale))
        return stale

    def status_report(self, registry: Registry) -> list[TunnelReport]:
        """Status of every registered tunnel and the health of its origins.

        The remote listing is fetched once for the whole report.
        """
        remote = self._remote_tunnels()
        reports = []
        for tunnel in registry.list_tunnels():
            services = [
                ServiceHealth(
                    hostname=service.hostname,
                    target_url=service.target_url,
                    port=service.port,
                    reachable=(
                        self.health_check(service.port)
                        if service.port is not None
                        else None
                    ),
                )
                for service in tunnel.services
            ]
            reports.append(
                TunnelReport(
                    tunnel_id=tunnel.id,
                    name=tunnel.name,
                    status=self._status_from(tunnel.id, remote),
                    active=tunnel.id == registry.active_tunnel_id,
                    services=services,
                )
            )
        return reports
