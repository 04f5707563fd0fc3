"""Service commands: add, list and remove hostnames of a tunnel."""

import json

import click

from ..common.exceptions import ValidationError
from ..common.utils import SUPPORTED_PROTOCOLS, validate_hostname
from ..registry.models import Service, Tunnel
from .context import AppContext, pass_app
from .output import choose, info, report_warning, success, warn


def _hostname_prompt(tunnel: Tunnel):
    def check(value: str) -> str:
        try:
            hostname = validate_hostname(value)
        except ValidationError as e:
            raise click.BadParameter(e.message) from e
        if tunnel.has_hostname(hostname):
            raise click.BadParameter(
                "This hostname is already configured. Please use a different one."
            )
        return hostname

    return check


@click.command()
@click.option("--hostname", "-h", help="Public hostname, e.g. app.example.com")
@click.option("--port", "-p", type=int, help="Local port the service listens on")
@click.option(
    "--protocol",
    type=click.Choice(SUPPORTED_PROTOCOLS, case_sensitive=False),
    help="Protocol of the local service (default: http)",
)
@click.option("--tunnel", "tunnel_id", help="Tunnel id (defaults to the active tunnel)")
@pass_app
def add(
    app: AppContext,
    hostname: str | None,
    port: int | None,
    protocol: str | None,
    tunnel_id: str | None,
) -> None:
    """Add a service (hostname -> local port) to a tunnel."""
    app.require_daemon()

    with app.store.session() as registry:
        tunnel = app.resolve_tunnel(registry, tunnel_id)

        if not tunnel.services:
            info("You're adding the first service to this tunnel.")
            info("Each service maps a hostname to a local port, e.g. app.example.com -> localhost:3000")

        interactive = hostname is None or port is None
        if hostname is None:
            hostname = click.prompt(
                "Full hostname for this service (e.g. service.example.com)",
                value_proc=_hostname_prompt(tunnel),
            )
        if port is None:
            port = click.prompt(
                "Local port the service is running on",
                type=click.IntRange(1, 65535),
            )
        if protocol is None:
            protocol = (
                click.prompt(
                    "Protocol",
                    type=click.Choice(SUPPORTED_PROTOCOLS, case_sensitive=False),
                    default="http",
                )
                if interactive
                else "http"
            )

        service = tunnel.add_service(Service.create(hostname, port, protocol))
        success(f"Service added: {service.hostname} -> {service.target_url}")

        if not app.reconciler.health_check(port):
            warn(
                f"Nothing is listening on localhost:{port} yet. "
                "Start your service before running the tunnel."
            )

        info(f"Creating DNS route for {service.hostname}...")
        warning = app.gateway.create_dns_route(tunnel.id, service.hostname)
        if warning is not None:
            report_warning(warning)
            warn("The service stays in the local config.")
        else:
            success(f"DNS route created for {service.hostname}.")
            info("Note: DNS propagation may take a few minutes.")

    info("\nNext steps:")
    info(f"1. Start your service locally on port {port}")
    info("2. Run 'cloudtunnel run' to start the tunnel")
    info(f"3. Access your service at https://{service.hostname}")


@click.command(name="list")
@click.option("--json", "-j", "as_json", is_flag=True, help="Output in JSON format")
@click.option("--tunnel", "tunnel_id", help="Tunnel id (defaults to the active tunnel)")
@pass_app
def list_services(app: AppContext, as_json: bool, tunnel_id: str | None) -> None:
    """List the services of a tunnel."""
    registry = app.store.load()
    tunnel = app.resolve_tunnel(registry, tunnel_id)

    if as_json:
        document = {
            "tunnel": {"name": tunnel.name, "id": tunnel.id},
            "services": [
                service.model_dump(mode="json", by_alias=True, exclude_none=True)
                for service in tunnel.services
            ],
        }
        click.echo(json.dumps(document, indent=2))
        return

    if not tunnel.services:
        warn(f"No services found for tunnel {tunnel.label}. Add one with 'cloudtunnel add'.")
        return

    info(f"Tunnel: {tunnel.label}")
    info(f"Total services: {len(tunnel.services)}")
    click.secho("\nServices:", fg="magenta")
    for index, service in enumerate(tunnel.sorted_services(), start=1):
        click.echo(
            f"  {click.style(str(index), fg='green')}. "
            f"{click.style(service.hostname, bold=True)} -> "
            f"{click.style(service.target_url, fg='cyan')}"
        )
        click.echo(f"     Added: {service.created_at.astimezone():%Y-%m-%d %H:%M:%S}")


@click.command()
@click.option("--hostname", "-h", help="Hostname of the service to remove")
@click.option("--yes", "-y", is_flag=True, help="Skip the confirmation prompt")
@click.option("--tunnel", "tunnel_id", help="Tunnel id (defaults to the active tunnel)")
@pass_app
def remove(app: AppContext, hostname: str | None, yes: bool, tunnel_id: str | None) -> None:
    """Remove a service from a tunnel's local configuration."""
    app.require_daemon()

    with app.store.session() as registry:
        tunnel = app.resolve_tunnel(registry, tunnel_id)
        if not tunnel.services:
            warn("No services found for this tunnel. Add one with 'cloudtunnel add'.")
            return

        if hostname is None:
            hostname = choose(
                "Select the service to remove",
                [
                    (f"{service.hostname} -> {service.target_url}", service.hostname)
                    for service in tunnel.services
                ],
            )
        elif not tunnel.has_hostname(hostname):
            raise ValidationError(f"Service '{hostname}' not found in tunnel {tunnel.label}")

        if not yes and not click.confirm(
            f"Are you sure you want to remove {hostname}?", default=False
        ):
            warn("Operation cancelled.")
            return

        tunnel.remove_service(hostname)
        remaining = len(tunnel.services)

    success(f"Service {hostname} has been removed from the tunnel configuration.")
    warn(
        "The DNS record in Cloudflare still exists. Delete the CNAME record "
        f"for {hostname} from the Cloudflare dashboard if it is no longer needed."
    )
    if remaining:
        info(f"Remaining services: {remaining}")
        info("Restart the tunnel for the change to take effect: 'cloudtunnel stop' then 'cloudtunnel run'.")
    else:
        info("There are no more services in this tunnel. Add new ones with 'cloudtunnel add'.")
