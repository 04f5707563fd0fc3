"""Schema migration for the persisted registry document.

Two shapes exist on disk:

* the legacy single-tunnel shape written by 1.x releases::

    {"tunnelName": "t1", "tunnelId": "abc", "services": [...]}

* the current multi-tunnel shape::

    {"version": "2.0", "activeTunnel": "abc",
     "tunnels": {"abc": {"tunnelName": "t1", "tunnelId": "abc", "services": [...]}}}

``migrate`` turns either into a normalized current-shape document. It works
on plain dicts so that it can run before model validation and stays
idempotent: ``migrate(migrate(doc)) == migrate(doc)``.
"""

import copy
from typing import Any

from ..common.exceptions import ValidationError
from ..common.logging import get_logger
from ..common.utils import parse_target_url
from .models import CURRENT_SCHEMA_VERSION

logger = get_logger(__name__)

LEGACY_KEYS = ("tunnelId", "tunnelName", "services")


def is_legacy_document(raw: Any) -> bool:
    """True for the single-tunnel shape (root level tunnel fields, no map)."""
    return (
        isinstance(raw, dict)
        and "tunnels" not in raw
        and any(key in raw for key in LEGACY_KEYS)
    )


def needs_migration(raw: Any) -> bool:
    """True if ``raw`` is not already a normalized current document."""
    try:
        return migrate(raw) != raw
    except ValidationError:
        return True


def migrate(raw: Any) -> dict[str, Any]:
    """Normalize a raw registry document to the current schema.

    The input is never modified.

    Raises:
        ValidationError: If the document structure cannot be interpreted
    """
    if not isinstance(raw, dict):
        raise ValidationError("Registry document must be a JSON object")

    document = copy.deepcopy(raw)
    if is_legacy_document(document):
        document = _lift_legacy(document)
        logger.info(
            "Migrated legacy single-tunnel config",
            tunnel_id=document.get("activeTunnel"),
        )

    tunnels = document.get("tunnels") or {}
    if not isinstance(tunnels, dict):
        raise ValidationError("'tunnels' must map tunnel ids to tunnels")

    normalized: dict[str, Any] = {}
    for key, tunnel in tunnels.items():
        if not isinstance(tunnel, dict):
            raise ValidationError(f"Tunnel '{key}' must be a JSON object")
        tunnel.setdefault("tunnelId", key)
        services = tunnel.get("services") or []
        if not isinstance(services, list):
            raise ValidationError(f"Services of tunnel '{key}' must be a list")
        tunnel["services"] = [_normalize_service(service) for service in services]
        normalized[key] = tunnel

    document["version"] = CURRENT_SCHEMA_VERSION
    document["tunnels"] = normalized

    active = document.get("activeTunnel")
    if active is not None and not isinstance(active, str):
        raise ValidationError("'activeTunnel' must be a tunnel id string")
    if active is not None and active not in normalized:
        logger.warning("Dropping dangling active tunnel reference", tunnel_id=active)
        del document["activeTunnel"]

    return document


def _lift_legacy(legacy: dict[str, Any]) -> dict[str, Any]:
    tunnel_id = legacy.get("tunnelId") or ""
    if not isinstance(tunnel_id, str):
        raise ValidationError("'tunnelId' must be a string")
    lifted: dict[str, Any] = {"version": CURRENT_SCHEMA_VERSION, "tunnels": {}}

    # An unconfigured 1.x file carries empty strings
    if tunnel_id:
        lifted["tunnels"][tunnel_id] = {
            "tunnelName": legacy.get("tunnelName") or "",
            "tunnelId": tunnel_id,
            "services": legacy.get("services") or [],
        }
        # Exported tunnels share this shape and may carry timestamps
        for key in ("createdAt", "lastUsed"):
            if legacy.get(key):
                lifted["tunnels"][tunnel_id][key] = legacy[key]
        lifted["activeTunnel"] = tunnel_id

    return lifted


def _normalize_service(service: Any) -> dict[str, Any]:
    if not isinstance(service, dict):
        raise ValidationError("Service entries must be JSON objects")

    # 1.x rows only stored the origin URL
    parsed = parse_target_url(str(service.get("service", "")))
    if parsed is not None:
        protocol, port = parsed
        service.setdefault("protocol", protocol)
        service.setdefault("port", port)
    return service
