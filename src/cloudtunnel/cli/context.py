"""Shared command state and precondition checks."""

from dataclasses import dataclass

import click

from ..common.exceptions import PreconditionError
from ..daemon.gateway import INSTALL_HINT, CloudflaredGateway
from ..reconciler import Reconciler
from ..registry.models import Registry, Tunnel
from ..registry.store import ConfigStore
from ..settings import CloudTunnelSettings


@dataclass
class AppContext:
    """Collaborators handed to every command through ``click``'s context."""

    settings: CloudTunnelSettings
    store: ConfigStore
    gateway: CloudflaredGateway
    reconciler: Reconciler

    @classmethod
    def from_settings(cls, settings: CloudTunnelSettings | None = None) -> "AppContext":
        settings = settings or CloudTunnelSettings()
        gateway = CloudflaredGateway(binary=settings.binary)
        return cls(
            settings=settings,
            store=ConfigStore(settings.config_file),
            gateway=gateway,
            reconciler=Reconciler(
                gateway, health_check_timeout=settings.health_check_timeout
            ),
        )

    def require_installed(self) -> None:
        if not self.gateway.is_installed():
            raise PreconditionError(
                f"{self.settings.binary} is not installed or not in the PATH.",
                hint=INSTALL_HINT,
            )

    def require_authenticated(self) -> None:
        if not self.settings.cert_file.exists():
            raise PreconditionError(
                "You need to log in to Cloudflare first.",
                hint="Run 'cloudtunnel login'",
            )

    def require_daemon(self) -> None:
        """Binary installed, then authenticated, in that order."""
        self.require_installed()
        self.require_authenticated()

    def resolve_tunnel(self, registry: Registry, tunnel_id: str | None = None) -> Tunnel:
        """The tunnel a command operates on: ``tunnel_id`` or the active one.

        Raises:
            PreconditionError: If no such tunnel is registered
        """
        if tunnel_id:
            tunnel = registry.get_tunnel(tunnel_id)
            if tunnel is None:
                raise PreconditionError(
                    f"Tunnel '{tunnel_id}' is not registered.",
                    hint="Register it with 'cloudtunnel init --use-existing'",
                )
            return tunnel

        tunnel = registry.active_tunnel
        if tunnel is None:
            raise PreconditionError(
                "No tunnel selected.",
                hint="Run 'cloudtunnel init' to create one or "
                "'cloudtunnel switch' to select one",
            )
        return tunnel


pass_app = click.make_pass_decorator(AppContext)
