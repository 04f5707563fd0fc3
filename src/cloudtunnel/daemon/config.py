"""Configuration builder for the cloudflared daemon."""

from pathlib import Path
from typing import Any

import yaml

from ..common.exceptions import ExternalToolError
from ..common.logging import get_logger
from ..common.utils import validate_non_empty_string
from ..registry.models import Tunnel

logger = get_logger(__name__)

CATCH_ALL_SERVICE = "http_status:404"


class DaemonConfigBuilder:
    """Builder for per-tunnel cloudflared ingress configuration files."""

    def __init__(self, tunnel_id: str, credentials_file: str | Path):
        """Initialize DaemonConfigBuilder.

        Args:
            tunnel_id: Daemon tunnel id
            credentials_file: Path to the tunnel's credentials JSON

        Raises:
            ValidationError: If tunnel id is empty
        """
        self._tunnel_id = validate_non_empty_string(tunnel_id, "Tunnel id")
        self._credentials_file = Path(credentials_file)
        self._ingress: list[dict[str, str]] = []

        logger.debug("DaemonConfigBuilder initialized", tunnel_id=self._tunnel_id)

    @classmethod
    def from_tunnel(
        cls, tunnel: Tunnel, credentials_file: str | Path
    ) -> "DaemonConfigBuilder":
        """Create a builder holding one ingress rule per service, in order."""
        builder = cls(tunnel.id, credentials_file)
        for service in tunnel.services:
            builder.add_ingress(service.hostname, service.target_url)
        return builder

    def add_ingress(self, hostname: str, service: str) -> "DaemonConfigBuilder":
        """Add an ingress rule routing ``hostname`` to ``service``.

        Returns:
            Self for method chaining
        """
        self._ingress.append({"hostname": hostname, "service": service})
        logger.debug("Added ingress rule", hostname=hostname, service=service)
        return self

    def build(self) -> dict[str, Any]:
        """Build the configuration mapping; the 404 catch-all is always last."""
        return {
            "tunnel": self._tunnel_id,
            "credentials-file": str(self._credentials_file),
            "ingress": [*self._ingress, {"service": CATCH_ALL_SERVICE}],
        }

    def to_yaml(self) -> str:
        return yaml.safe_dump(self.build(), sort_keys=False, default_flow_style=False)

    def write(self, path: str | Path) -> Path:
        """Write the YAML configuration, replacing any previous one.

        Returns:
            Path to the written file

        Raises:
            ExternalToolError: If the file cannot be written
        """
        config_path = Path(path)
        try:
            config_path.parent.mkdir(parents=True, exist_ok=True)
            config_path.write_text(self.to_yaml(), encoding="utf-8")
        except OSError as e:
            raise ExternalToolError(
                f"Cannot write daemon configuration {config_path}: {e}",
                hint="Check the permissions of the cloudflared config directory",
            ) from e

        logger.info(
            "Daemon configuration written",
            path=str(config_path),
            rules=len(self._ingress),
        )
        return config_path
