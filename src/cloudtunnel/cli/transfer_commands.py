"""Export and import of tunnel definitions."""

import json
from pathlib import Path

import click

from ..common.exceptions import ValidationError
from ..registry.transfer import export_tunnel, import_document
from .context import AppContext, pass_app
from .output import info, success, warn


@click.command(name="export")
@click.option("--tunnel", "tunnel_id", help="Tunnel id (defaults to the active tunnel)")
@click.option(
    "--output",
    "-o",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Write to this file instead of stdout",
)
@pass_app
def export_command(app: AppContext, tunnel_id: str | None, output: Path | None) -> None:
    """Export a tunnel and its services as JSON."""
    tunnel = app.resolve_tunnel(app.store.load(), tunnel_id)
    document = json.dumps(export_tunnel(tunnel), indent=2)

    if output is None:
        click.echo(document)
        return

    try:
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(document + "\n", encoding="utf-8")
    except OSError as e:
        raise ValidationError(f"Cannot write {output}: {e}") from e

    success(f"Tunnel {tunnel.label} exported to {output}")


@click.command(name="import")
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--overwrite", is_flag=True, help="Replace tunnels that are already registered")
@pass_app
def import_command(app: AppContext, file: Path, overwrite: bool) -> None:
    """Import tunnels from an exported JSON file."""
    app.require_daemon()

    try:
        raw = json.loads(file.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ValidationError(f"Cannot read {file}: {e}") from e

    with app.store.session() as registry:
        result = import_document(registry, raw, overwrite=overwrite)
        labels = {tunnel_id: registry.tunnels[tunnel_id].label for tunnel_id in registry.tunnels}
        active = registry.active_tunnel

    for tunnel_id in result.imported:
        success(f"Imported tunnel {labels[tunnel_id]}")
    for tunnel_id in result.replaced:
        success(f"Replaced tunnel {labels[tunnel_id]}")
    for tunnel_id in result.skipped:
        warn(f"Skipped tunnel {labels[tunnel_id]}: already registered (use --overwrite)")

    if active is not None:
        info(f"Active tunnel: {active.label}")
