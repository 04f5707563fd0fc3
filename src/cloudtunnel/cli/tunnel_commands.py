"""Tunnel lifecycle commands: login, init, switch, run, stop, status, clean."""

import time

import click

from ..common.exceptions import ExternalToolError, PreconditionError, ValidationError
from ..common.logging import get_logger
from ..common.utils import validate_non_empty_string
from ..daemon.config import DaemonConfigBuilder
from ..reconciler import TunnelStatus
from ..registry.models import Registry, Tunnel
from .context import AppContext, pass_app
from .output import choose, info, success, warn

logger = get_logger(__name__)

STATUS_COLORS = {
    TunnelStatus.RUNNING: "green",
    TunnelStatus.STOPPED: "yellow",
    TunnelStatus.UNKNOWN: "red",
}


def _non_empty_name(value: str) -> str:
    try:
        return validate_non_empty_string(value, "Tunnel name")
    except ValidationError as e:
        raise click.BadParameter(e.message) from e


@click.command()
@click.option("--force", "-f", is_flag=True, help="Replace an existing certificate")
@pass_app
def login(app: AppContext, force: bool) -> None:
    """Authenticate with Cloudflare (cloudflared tunnel login)."""
    app.require_installed()

    cert_file = app.settings.cert_file
    if cert_file.exists():
        if not force and not click.confirm(
            f"A Cloudflare certificate already exists at {cert_file}. Overwrite it?",
            default=False,
        ):
            warn("Login aborted. Using the existing certificate.")
            return
        cert_file.unlink()
        logger.info("Existing certificate removed", path=str(cert_file))

    info("Opening browser to log in with Cloudflare...")
    app.gateway.login()

    if not cert_file.exists():
        raise ExternalToolError(
            f"Login may have failed. Certificate not found at {cert_file}",
            hint="Run 'cloudtunnel login' again",
        )
    success("Login complete! Certificate successfully created.")


def _register_existing(app: AppContext, registry: Registry, tunnel_id: str | None) -> bool:
    """Register a tunnel that already exists remotely. False if none exist."""
    remotes = app.gateway.list_remote_tunnels()
    if not remotes:
        return False

    if tunnel_id:
        selected = next((remote for remote in remotes if remote.id == tunnel_id), None)
        if selected is None:
            raise ValidationError(
                f"Tunnel '{tunnel_id}' does not exist in your Cloudflare account"
            )
    else:
        selected = choose(
            "Select an existing tunnel to use",
            [(f"{remote.name} ({remote.id})", remote) for remote in remotes],
        )

    tunnel = registry.get_tunnel(selected.id)
    if tunnel is None:
        tunnel = registry.add_tunnel(Tunnel(id=selected.id, name=selected.name))
    registry.set_active(tunnel.id)
    success(f"Now using tunnel: {tunnel.label}")
    return True


@click.command()
@click.option("--name", "-n", help="Name for the new tunnel")
@click.option(
    "--use-existing", "-u", is_flag=True, help="Register a tunnel that already exists"
)
@click.option("--tunnel", "tunnel_id", help="Id of the existing tunnel to register")
@pass_app
def init(
    app: AppContext, name: str | None, use_existing: bool, tunnel_id: str | None
) -> None:
    """Create a new tunnel (or register an existing one) and select it."""
    app.require_daemon()

    with app.store.session() as registry:
        if use_existing or tunnel_id:
            if _register_existing(app, registry, tunnel_id):
                return
            warn("No existing tunnels found in your Cloudflare account.")
            if not click.confirm("Create a new tunnel instead?", default=True):
                return

        if name is None:
            name = click.prompt(
                "Enter a name for your new tunnel", value_proc=_non_empty_name
            )
        name = validate_non_empty_string(name, "Tunnel name")

        info(f"Creating new tunnel: {name}...")
        new_id = app.gateway.create_tunnel(name)
        registry.add_tunnel(Tunnel(id=new_id, name=name))
        registry.set_active(new_id)

    success(f"Tunnel created successfully! ID: {new_id}")
    info("Next step: add services with 'cloudtunnel add'")


@click.command()
@click.option("--tunnel", "tunnel_id", help="Id of the tunnel to select")
@pass_app
def switch(app: AppContext, tunnel_id: str | None) -> None:
    """Select the tunnel other commands operate on."""
    app.require_daemon()

    with app.store.session() as registry:
        tunnels = registry.list_tunnels()
        if not tunnels:
            raise PreconditionError(
                "No tunnels configured.", hint="Run 'cloudtunnel init' first"
            )

        if tunnel_id is None:
            tunnel_id = choose(
                "Select the tunnel to use",
                [
                    (
                        f"{tunnel.label}"
                        + (" [active]" if tunnel.id == registry.active_tunnel_id else ""),
                        tunnel.id,
                    )
                    for tunnel in tunnels
                ],
            )
        tunnel = registry.set_active(tunnel_id)

    success(f"Now using tunnel: {tunnel.label}")


@click.command()
@click.option("--detach", "-d", is_flag=True, help="Run the tunnel in the background")
@click.option("--tunnel", "tunnel_id", help="Tunnel id (defaults to the active tunnel)")
@click.option("--yes", "-y", is_flag=True, help="Run even without services")
@pass_app
def run(app: AppContext, detach: bool, tunnel_id: str | None, yes: bool) -> None:
    """Run a tunnel in the foreground (Ctrl+C to stop) or detached."""
    app.require_daemon()

    with app.store.session() as registry:
        tunnel = app.resolve_tunnel(registry, tunnel_id)

        if not tunnel.services:
            warn("Warning: this tunnel has no services configured.")
            warn("It will run but won't route any traffic. Add services with 'cloudtunnel add'.")
            if not yes and not click.confirm(
                "Continue running the tunnel without any services?", default=False
            ):
                info("Tunnel startup cancelled.")
                return

        for service in tunnel.services:
            if service.port is not None and not app.reconciler.health_check(service.port):
                warn(
                    f"Nothing is listening on localhost:{service.port} "
                    f"({service.hostname}) yet."
                )

        config_path = DaemonConfigBuilder.from_tunnel(
            tunnel, app.settings.credentials_file(tunnel.id)
        ).write(app.settings.daemon_config_file(tunnel.id))
        tunnel.mark_used()

    success(f"Generated config file at {config_path}")
    info(f"Starting tunnel: {tunnel.label}...")
    for service in tunnel.services:
        click.echo(f"  - https://{click.style(service.hostname, bold=True)} -> {service.target_url}")

    if detach:
        handle = app.gateway.run_detached(
            config_path, tunnel.id, log_path=app.settings.daemon_log_file(tunnel.id)
        )
        success(f"Tunnel is now running in the background (PID {handle.pid}).")
        info(f"Output is written to {handle.log_path}. Stop it with 'cloudtunnel stop'.")
        return

    info("Running in foreground mode. Press Ctrl+C to stop.")
    outcome = app.gateway.run_foreground(config_path, tunnel.id)
    if outcome.interrupted:
        info("Tunnel stopped.")
    elif not outcome.succeeded:
        raise ExternalToolError(
            f"cloudflared exited with code {outcome.returncode}",
            hint="Check the output above. If the tunnel is already running "
            "elsewhere, stop it with 'cloudtunnel stop'",
        )


def _wait_for_exit(app: AppContext, pid: int, timeout: float = 2.0) -> bool:
    deadline = time.monotonic() + timeout
    while app.gateway.is_process_alive(pid):
        if time.monotonic() >= deadline:
            return False
        time.sleep(0.1)
    return True


@click.command()
@click.option("--all", "all_tunnels", is_flag=True, help="Stop every tunnel process")
@click.option("--tunnel", "tunnel_id", help="Tunnel id (defaults to the active tunnel)")
@click.option("--force", "-f", is_flag=True, help="Kill the process instead of terminating it")
@click.option("--yes", "-y", is_flag=True, help="Skip the confirmation prompt")
@pass_app
def stop(
    app: AppContext,
    all_tunnels: bool,
    tunnel_id: str | None,
    force: bool,
    yes: bool,
) -> None:
    """Stop running tunnel processes."""
    app.require_daemon()

    if all_tunnels:
        pattern = "tunnel"
        info("Looking for running tunnel processes...")
    else:
        tunnel = app.resolve_tunnel(app.store.load(), tunnel_id)
        pattern = tunnel.id
        info(f"Looking for running tunnel: {tunnel.label}...")

    pids = app.gateway.find_tunnel_processes(pattern)
    if not pids:
        warn("No running tunnel process found.")
        return

    pid_list = ", ".join(str(pid) for pid in pids)
    if not yes and not click.confirm(
        f"Found tunnel process(es) (PID {pid_list}). Stop?", default=True
    ):
        warn("Operation cancelled.")
        return

    for pid in pids:
        info(f"Stopping tunnel process (PID {pid})...")
        app.gateway.stop_process(pid, force=force)
        if _wait_for_exit(app, pid):
            success(f"Process {pid} stopped.")
        else:
            warn(
                f"Process {pid} may still be running."
                + ("" if force else " Try again with --force.")
            )


@click.command()
@pass_app
def status(app: AppContext) -> None:
    """Show every registered tunnel, whether it runs, and origin health."""
    app.require_daemon()

    registry = app.store.load()
    if not registry.tunnels:
        warn("No tunnels configured. Run 'cloudtunnel init' first.")
        return

    for report in app.reconciler.status_report(registry):
        marker = click.style("*", fg="green") if report.active else " "
        label = f"{report.name} ({report.tunnel_id})" if report.name else report.tunnel_id
        state = click.style(report.status.value, fg=STATUS_COLORS[report.status])
        click.echo(f"{marker} {click.style(label, bold=True)}  {state}")
        if not report.services:
            click.echo("    (no services)")
        for service in report.services:
            if service.reachable is None:
                health = click.style("?", fg="yellow")
            elif service.reachable:
                health = click.style("up", fg="green")
            else:
                health = click.style("down", fg="red")
            click.echo(f"    {health}  {service.hostname} -> {service.target_url}")


@click.command()
@click.option("--yes", "-y", is_flag=True, help="Remove without asking")
@pass_app
def clean(app: AppContext, yes: bool) -> None:
    """Remove tunnels that no longer exist in your Cloudflare account."""
    app.require_daemon()

    with app.store.session() as registry:
        if not registry.tunnels:
            info("No tunnels configured.")
            return

        active_before = registry.active_tunnel_id
        candidates: set[str] = set()

        def confirm(stale: set[str]) -> bool:
            candidates.update(stale)
            warn("These tunnels no longer exist in your Cloudflare account:")
            for stale_id in sorted(stale):
                click.echo(f"  - {registry.tunnels[stale_id].label}")
            return yes or click.confirm(
                "Remove them from the local config?", default=False
            )

        removed = app.reconciler.clean(registry, confirm)

    if not candidates:
        success("All registered tunnels exist remotely. Nothing to clean.")
    elif not removed:
        warn("Operation cancelled.")
    else:
        success(f"Removed {len(removed)} tunnel(s) from the local config.")
        if active_before in removed:
            warn("The active tunnel was removed. Select another with 'cloudtunnel switch'.")
