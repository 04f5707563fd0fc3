"""Parsers for cloudflared output.

Structured JSON output is used wherever cloudflared offers it; the only
free-text parse is the id in the ``tunnel create`` success message.
"""

import json
import re
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from ..common.exceptions import CreationParseError, ExternalToolError

CREATED_TUNNEL_PATTERN = re.compile(
    r"Created tunnel .* with id ([a-f0-9-]+)", re.IGNORECASE
)

Operation = Literal["login", "create", "list", "route", "run", "stop"]

# Ordered (needle, hint) pairs per operation; first match wins.
_HINTS: dict[str, list[tuple[str, str]]] = {
    "login": [
        (
            "existing certificate",
            "Remove the existing cert.pem or run 'cloudtunnel login --force'",
        ),
    ],
    "create": [
        (
            "already exists",
            "A tunnel with this name already exists. Try a different name "
            "or 'cloudtunnel init --use-existing'",
        ),
        ("cert.pem", "Run 'cloudtunnel login' first"),
    ],
    "list": [
        ("cert.pem", "Run 'cloudtunnel login' first"),
    ],
    "route": [
        (
            "already exists",
            "This hostname may already have a DNS record. Update or delete it "
            "in the Cloudflare dashboard",
        ),
        (
            "unauthorized",
            "You may not have permission to modify DNS for this domain. "
            "Check your Cloudflare account permissions",
        ),
    ],
    "run": [
        (
            "already running",
            "This tunnel seems to be running in another process. "
            "Stop it first with 'cloudtunnel stop'",
        ),
        (
            "not found",
            "The tunnel may have been deleted. Run 'cloudtunnel clean' and "
            "'cloudtunnel init'",
        ),
        (
            "credentials",
            "The credentials file may be missing. Re-create the tunnel with "
            "'cloudtunnel init'",
        ),
    ],
    "stop": [
        ("permission", "Elevated permissions may be required"),
        ("operation not permitted", "Elevated permissions may be required"),
    ],
}


class RemoteTunnel(BaseModel):
    """A tunnel as reported by ``cloudflared tunnel list``."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1, description="Daemon tunnel id")
    name: str = Field(default="", description="Tunnel name")
    connection_count: int = Field(default=0, ge=0, description="Active connections")


def parse_tunnel_list(output: str) -> list[RemoteTunnel]:
    """Parse ``cloudflared tunnel list --output json``.

    ``[]`` and ``null`` both mean zero tunnels.

    Raises:
        ExternalToolError: If the output is not the expected JSON structure
    """
    try:
        data: Any = json.loads(output)
    except json.JSONDecodeError as e:
        raise ExternalToolError(
            f"Unparsable tunnel list output: {e.msg}"
        ) from e

    if data is None:
        return []
    if not isinstance(data, list):
        raise ExternalToolError("Unexpected tunnel list output: expected a JSON array")

    tunnels = []
    for entry in data:
        if not isinstance(entry, dict) or not entry.get("id"):
            raise ExternalToolError("Unexpected tunnel list entry without an id")
        connections = entry.get("connections") or []
        tunnels.append(
            RemoteTunnel(
                id=str(entry["id"]),
                name=str(entry.get("name") or ""),
                connection_count=len(connections) if isinstance(connections, list) else 0,
            )
        )
    return tunnels


def parse_created_tunnel_id(output: str) -> str:
    """Extract the new tunnel id from ``cloudflared tunnel create`` output.

    Example::

        Created tunnel my-tunnel with id 12345678-abcd-4ef0-9876-543210abcdef

    Raises:
        CreationParseError: If no id can be found
    """
    match = CREATED_TUNNEL_PATTERN.search(output)
    if not match:
        raise CreationParseError(
            "Unable to parse tunnel id from cloudflared output",
            output=output,
            hint="The tunnel may exist remotely. Check 'cloudflared tunnel list' "
            "and run 'cloudtunnel init --use-existing'",
        )
    return match.group(1)


def remediation_hint(output: str, operation: Operation) -> str | None:
    """Map known error text of an operation to an actionable hint."""
    lowered = output.lower()
    for needle, hint in _HINTS.get(operation, []):
        if needle in lowered:
            return hint
    return None
