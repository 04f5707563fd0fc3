"""cloudtunnel - manage multiple Cloudflare tunnels from the command line."""

__version__ = "2.0.2"

# Errors and logging
from .common.exceptions import (
    CloudTunnelError,
    CreationParseError,
    ExternalToolError,
    PartialSuccessWarning,
    PreconditionError,
    ValidationError,
)
from .common.logging import get_logger, setup_logging

# Daemon integration
from .daemon import CloudflaredGateway, DaemonConfigBuilder, RemoteTunnel

# Reconciliation
from .reconciler import Reconciler, TunnelReport, TunnelStatus, health_check

# Registry
from .registry import (
    ConfigStore,
    ImportResult,
    Registry,
    Service,
    Tunnel,
    export_tunnel,
    import_document,
    migrate,
)
from .settings import CloudTunnelSettings

__all__ = [
    "__version__",
    # Registry
    "Registry",
    "Tunnel",
    "Service",
    "ConfigStore",
    "migrate",
    "ImportResult",
    "export_tunnel",
    "import_document",
    # Daemon
    "CloudflaredGateway",
    "DaemonConfigBuilder",
    "RemoteTunnel",
    # Reconciliation
    "Reconciler",
    "TunnelReport",
    "TunnelStatus",
    "health_check",
    # Settings
    "CloudTunnelSettings",
    # Exceptions
    "CloudTunnelError",
    "PreconditionError",
    "ExternalToolError",
    "CreationParseError",
    "ValidationError",
    "PartialSuccessWarning",
    # Logging
    "get_logger",
    "setup_logging",
]
