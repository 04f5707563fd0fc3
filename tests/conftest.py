"""Shared pytest fixtures for cloudtunnel tests."""

import logging
from unittest.mock import Mock

import pytest
import structlog

from cloudtunnel.cli.context import AppContext
from cloudtunnel.daemon.gateway import CloudflaredGateway
from cloudtunnel.reconciler import Reconciler
from cloudtunnel.registry.models import Registry, Service, Tunnel
from cloudtunnel.registry.store import ConfigStore
from cloudtunnel.settings import CloudTunnelSettings

TUNNEL_A = "6ff42ae2-765d-4adf-8112-31c55c1551ef"
TUNNEL_B = "9a8b7c6d-1234-4e5f-a6b7-c8d9e0f1a2b3"


@pytest.fixture
def settings(tmp_path):
    """Settings rooted in a temporary config directory.

    Returns:
        CloudTunnelSettings: Settings whose paths all live under tmp_path
    """
    return CloudTunnelSettings(config_dir=tmp_path / "cloudflared")


@pytest.fixture
def store(settings):
    return ConfigStore(settings.config_file)


@pytest.fixture
def mock_gateway():
    """Create a gateway double that behaves like a healthy, logged-in daemon.

    Returns:
        Mock: Mock constrained to the CloudflaredGateway interface
    """
    gateway = Mock(spec=CloudflaredGateway)
    gateway.is_installed.return_value = True
    gateway.version.return_value = "cloudflared version 2024.6.1"
    gateway.list_remote_tunnels.return_value = []
    gateway.create_dns_route.return_value = None
    gateway.find_tunnel_processes.return_value = []
    gateway.is_process_alive.return_value = False
    return gateway


@pytest.fixture
def app(settings, store, mock_gateway, monkeypatch):
    """Application context wired to the mock gateway; origins report healthy."""
    reconciler = Reconciler(mock_gateway)
    monkeypatch.setattr(reconciler, "health_check", Mock(return_value=True))
    return AppContext(
        settings=settings, store=store, gateway=mock_gateway, reconciler=reconciler
    )


@pytest.fixture
def authenticated(settings):
    """Write a login certificate so authentication checks pass."""
    settings.config_dir.mkdir(parents=True, exist_ok=True)
    settings.cert_file.write_text("-----BEGIN CERTIFICATE-----\n")
    return settings.cert_file


@pytest.fixture
def two_tunnel_registry():
    """Registry with two tunnels, the first one active and carrying services."""
    registry = Registry()
    first = registry.add_tunnel(Tunnel(id=TUNNEL_A, name="web"))
    first.add_service(Service.create("app.example.com", 3000))
    first.add_service(Service.create("api.example.com", 8443, "https"))
    registry.add_tunnel(Tunnel(id=TUNNEL_B, name="staging"))
    registry.set_active(TUNNEL_A)
    return registry


@pytest.fixture(autouse=True)
def reset_logging():
    """Drop handlers the CLI installs so later tests start from a clean root."""
    yield
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
        handler.close()
    structlog.reset_defaults()
