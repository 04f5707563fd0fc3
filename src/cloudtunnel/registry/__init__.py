"""Local registry of tunnels and services."""

from .migration import is_legacy_document, migrate, needs_migration
from .models import CURRENT_SCHEMA_VERSION, Protocol, Registry, Service, Tunnel
from .store import ConfigStore
from .transfer import ImportResult, export_tunnel, import_document, tunnels_from_document

__all__ = [
    # Models
    "CURRENT_SCHEMA_VERSION",
    "Protocol",
    "Service",
    "Tunnel",
    "Registry",
    # Persistence
    "ConfigStore",
    "migrate",
    "is_legacy_document",
    "needs_migration",
    # Transfer
    "ImportResult",
    "export_tunnel",
    "import_document",
    "tunnels_from_document",
]
