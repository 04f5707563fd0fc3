"""Export and import of tunnel definitions between machines."""

from dataclasses import dataclass, field
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from ..common.exceptions import ValidationError
from ..common.logging import get_logger
from .migration import migrate
from .models import CURRENT_SCHEMA_VERSION, Registry, Tunnel, utcnow

logger = get_logger(__name__)


@dataclass
class ImportResult:
    """Outcome of an import: which tunnel ids were added, replaced or skipped."""

    imported: list[str] = field(default_factory=list)
    replaced: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)


def export_tunnel(tunnel: Tunnel) -> dict[str, Any]:
    """Serialize one tunnel into a portable export document."""
    return {
        "version": CURRENT_SCHEMA_VERSION,
        "exportedAt": utcnow().isoformat().replace("+00:00", "Z"),
        "tunnel": tunnel.model_dump(mode="json", by_alias=True, exclude_none=True),
    }


def tunnels_from_document(raw: Any) -> list[Tunnel]:
    """Extract tunnels from any supported document shape.

    Accepts an export document (``{"tunnel": {...}}``), a bare tunnel
    (``{"tunnelId": ..., "tunnelName": ..., "services": [...]}``, which is
    also the 1.x config shape) or a full registry document.

    Raises:
        ValidationError: If the document cannot be interpreted
    """
    if isinstance(raw, dict) and isinstance(raw.get("tunnel"), dict):
        raw = raw["tunnel"]

    try:
        registry = Registry.model_validate(migrate(raw))
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid tunnel document: {e.error_count()} error(s)") from e

    tunnels = registry.list_tunnels()
    if not tunnels:
        raise ValidationError("Document does not contain any tunnel")
    return tunnels


def import_document(
    registry: Registry, raw: Any, overwrite: bool = False
) -> ImportResult:
    """Merge the tunnels of ``raw`` into ``registry``.

    Every tunnel is validated before the registry is touched. Tunnels whose
    id is already registered are skipped unless ``overwrite`` is set. If no
    tunnel is active afterwards, the first imported one becomes active.

    Raises:
        ValidationError: If the document is invalid or a tunnel lists the
            same hostname twice
    """
    tunnels = tunnels_from_document(raw)

    for tunnel in tunnels:
        duplicates = tunnel.duplicate_hostnames()
        if duplicates:
            raise ValidationError(
                f"Tunnel {tunnel.label} lists duplicate hostnames: "
                f"{', '.join(duplicates)}"
            )

    result = ImportResult()
    for tunnel in tunnels:
        if tunnel.id in registry.tunnels:
            if not overwrite:
                result.skipped.append(tunnel.id)
                continue
            result.replaced.append(tunnel.id)
        else:
            result.imported.append(tunnel.id)
        registry.add_tunnel(tunnel, replace=True)

    if registry.active_tunnel is None:
        changed = result.imported + result.replaced
        if changed:
            registry.set_active(changed[0])

    logger.info(
        "Import finished",
        imported=len(result.imported),
        replaced=len(result.replaced),
        skipped=len(result.skipped),
    )
    return result
