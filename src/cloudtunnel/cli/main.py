"""cloudtunnel - CLI entry point."""

from typing import Any

import click

from .. import __version__
from ..common.exceptions import CloudTunnelError
from ..common.logging import get_logger, setup_logging
from . import service_commands, transfer_commands, tunnel_commands
from .context import AppContext, pass_app
from .output import info, report_error

logger = get_logger(__name__)


class CloudTunnelGroup(click.Group):
    """Command group that turns domain errors into a message and exit code 1."""

    def invoke(self, ctx: click.Context) -> Any:
        try:
            return super().invoke(ctx)
        except CloudTunnelError as e:
            logger.error(
                "Command failed",
                command=ctx.invoked_subcommand,
                error_type=type(e).__name__,
                error=e.message,
            )
            report_error(e)
            ctx.exit(1)


@click.group(cls=CloudTunnelGroup)
@click.version_option(version=__version__, prog_name="cloudtunnel")
@click.option("--verbose", "-v", is_flag=True, help="Also log to stderr, at debug level")
@click.pass_context
def cli(ctx: click.Context, verbose: bool) -> None:
    """cloudtunnel - manage multiple Cloudflare tunnels and their services.

    Wraps the cloudflared daemon: create or register tunnels, map public
    hostnames to local ports, and run, stop or inspect the tunnels.
    """
    if ctx.obj is None:
        ctx.obj = AppContext.from_settings()
    app: AppContext = ctx.obj

    setup_logging(
        level="DEBUG" if verbose else app.settings.log_level,
        log_file=app.settings.log_file,
        console=verbose,
    )
    logger.debug("Invoked", command=ctx.invoked_subcommand)


@click.command()
@pass_app
def version(app: AppContext) -> None:
    """Show the cloudtunnel and cloudflared versions."""
    info(f"cloudtunnel {__version__}")
    daemon_version = app.gateway.version()
    click.echo(f"cloudflared: {daemon_version or 'Not installed or not in PATH'}")


cli.add_command(tunnel_commands.login)
cli.add_command(tunnel_commands.init)
cli.add_command(tunnel_commands.switch)
cli.add_command(tunnel_commands.run)
cli.add_command(tunnel_commands.stop)
cli.add_command(tunnel_commands.status)
cli.add_command(tunnel_commands.clean)

cli.add_command(service_commands.add)
cli.add_command(service_commands.add, name="add-service")
cli.add_command(service_commands.list_services)
cli.add_command(service_commands.list_services, name="list-services")
cli.add_command(service_commands.remove)
cli.add_command(service_commands.remove, name="remove-service")

cli.add_command(transfer_commands.export_command)
cli.add_command(transfer_commands.import_command)
cli.add_command(version)


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
