"""Tests for tunnel lifecycle commands."""

import logging
from unittest.mock import patch

import pytest
import yaml
from click.testing import CliRunner

from cloudtunnel import __version__
from cloudtunnel.cli import cli
from cloudtunnel.common.exceptions import CreationParseError, ExternalToolError
from cloudtunnel.daemon.gateway import ExitOutcome, ProcessHandle
from cloudtunnel.daemon.parsers import RemoteTunnel

TUNNEL_A = "6ff42ae2-765d-4adf-8112-31c55c1551ef"
TUNNEL_B = "9a8b7c6d-1234-4e5f-a6b7-c8d9e0f1a2b3"
TUNNEL_C = "0c0c0c0c-1111-4222-8333-444455556666"


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def saved_registry(store, two_tunnel_registry):
    store.save(two_tunnel_registry)
    return two_tunnel_registry


class TestPreconditions:
    """Test precondition order and exit codes."""

    def test_missing_binary(self, runner, app, mock_gateway, authenticated):
        mock_gateway.is_installed.return_value = False

        result = runner.invoke(cli, ["init", "--name", "web"], obj=app)

        assert result.exit_code == 1
        assert "not installed" in result.output
        assert "brew install" in result.output
        mock_gateway.create_tunnel.assert_not_called()

    def test_missing_binary_checked_before_login(self, runner, app, mock_gateway):
        mock_gateway.is_installed.return_value = False

        result = runner.invoke(cli, ["status"], obj=app)

        assert result.exit_code == 1
        assert "not installed" in result.output

    def test_not_authenticated(self, runner, app, mock_gateway):
        result = runner.invoke(cli, ["init", "--name", "web"], obj=app)

        assert result.exit_code == 1
        assert "log in to Cloudflare" in result.output
        assert "cloudtunnel login" in result.output
        mock_gateway.create_tunnel.assert_not_called()

    def test_no_tunnel_selected(self, runner, app, settings, authenticated):
        result = runner.invoke(cli, ["run"], obj=app)

        assert result.exit_code == 1
        assert "No tunnel selected" in result.output
        assert "cloudtunnel init" in result.output

    def test_unknown_tunnel_option(self, runner, app, authenticated, saved_registry):
        result = runner.invoke(cli, ["run", "--tunnel", TUNNEL_C], obj=app)

        assert result.exit_code == 1
        assert f"Tunnel '{TUNNEL_C}' is not registered" in result.output


class TestLogin:
    """Test the login command."""

    def test_login_writes_certificate(self, runner, app, mock_gateway, settings):
        def fake_login():
            settings.config_dir.mkdir(parents=True, exist_ok=True)
            settings.cert_file.write_text("cert")

        mock_gateway.login.side_effect = fake_login

        result = runner.invoke(cli, ["login"], obj=app)

        assert result.exit_code == 0
        assert "Login complete" in result.output

    def test_login_without_certificate_fails(self, runner, app, mock_gateway):
        result = runner.invoke(cli, ["login"], obj=app)

        assert result.exit_code == 1
        assert "Login may have failed" in result.output

    def test_existing_certificate_kept_when_declined(
        self, runner, app, mock_gateway, authenticated
    ):
        result = runner.invoke(cli, ["login"], obj=app, input="n\n")

        assert result.exit_code == 0
        assert "Login aborted" in result.output
        assert authenticated.exists()
        mock_gateway.login.assert_not_called()

    def test_force_replaces_certificate(self, runner, app, mock_gateway, authenticated):
        def fake_login():
            assert not authenticated.exists()
            authenticated.write_text("new cert")

        mock_gateway.login.side_effect = fake_login

        result = runner.invoke(cli, ["login", "--force"], obj=app)

        assert result.exit_code == 0
        assert authenticated.read_text() == "new cert"


class TestInit:
    """Test tunnel creation and registration."""

    def test_create_new_tunnel(self, runner, app, mock_gateway, store, authenticated):
        mock_gateway.create_tunnel.return_value = TUNNEL_C

        result = runner.invoke(cli, ["init", "--name", "web"], obj=app)

        assert result.exit_code == 0, result.output
        assert TUNNEL_C in result.output
        mock_gateway.create_tunnel.assert_called_once_with("web")
        registry = store.load()
        assert registry.active_tunnel_id == TUNNEL_C
        assert registry.active_tunnel.name == "web"

    def test_prompts_for_name(self, runner, app, mock_gateway, store, authenticated):
        mock_gateway.create_tunnel.return_value = TUNNEL_C

        result = runner.invoke(cli, ["init"], obj=app, input="   \nweb\n")

        assert result.exit_code == 0, result.output
        assert "Tunnel name cannot be empty" in result.output
        mock_gateway.create_tunnel.assert_called_once_with("web")

    def test_new_tunnel_added_next_to_existing(
        self, runner, app, mock_gateway, store, authenticated, saved_registry
    ):
        mock_gateway.create_tunnel.return_value = TUNNEL_C

        runner.invoke(cli, ["init", "--name", "third"], obj=app)

        registry = store.load()
        assert set(registry.tunnels) == {TUNNEL_A, TUNNEL_B, TUNNEL_C}
        assert registry.active_tunnel_id == TUNNEL_C

    def test_create_failure_leaves_config_untouched(
        self, runner, app, mock_gateway, settings, authenticated
    ):
        mock_gateway.create_tunnel.side_effect = ExternalToolError(
            "cloudflared tunnel create failed: tunnel with name already exists",
            hint="Try a different name",
        )

        result = runner.invoke(cli, ["init", "--name", "web"], obj=app)

        assert result.exit_code == 1
        assert "already exists" in result.output
        assert "Try a different name" in result.output
        assert not settings.config_file.exists()

    def test_unparsable_creation_output_is_shown(
        self, runner, app, mock_gateway, settings, authenticated
    ):
        mock_gateway.create_tunnel.side_effect = CreationParseError(
            "Unable to parse tunnel id from cloudflared output",
            output="Tunnel ready (format changed)",
        )

        result = runner.invoke(cli, ["init", "--name", "web"], obj=app)

        assert result.exit_code == 1
        assert "Tunnel ready (format changed)" in result.output
        assert not settings.config_file.exists()

    def test_use_existing_tunnel(self, runner, app, mock_gateway, store, authenticated):
        mock_gateway.list_remote_tunnels.return_value = [
            RemoteTunnel(id=TUNNEL_A, name="web"),
            RemoteTunnel(id=TUNNEL_B, name="staging"),
        ]

        result = runner.invoke(cli, ["init", "--use-existing"], obj=app, input="2\n")

        assert result.exit_code == 0, result.output
        registry = store.load()
        assert registry.active_tunnel_id == TUNNEL_B
        assert registry.active_tunnel.name == "staging"
        mock_gateway.create_tunnel.assert_not_called()

    def test_register_by_id(self, runner, app, mock_gateway, store, authenticated):
        mock_gateway.list_remote_tunnels.return_value = [RemoteTunnel(id=TUNNEL_A, name="web")]

        result = runner.invoke(cli, ["init", "--tunnel", TUNNEL_A], obj=app)

        assert result.exit_code == 0, result.output
        assert store.load().active_tunnel_id == TUNNEL_A

    def test_register_unknown_id(self, runner, app, mock_gateway, settings, authenticated):
        mock_gateway.list_remote_tunnels.return_value = [RemoteTunnel(id=TUNNEL_A)]

        result = runner.invoke(cli, ["init", "--tunnel", TUNNEL_C], obj=app)

        assert result.exit_code == 1
        assert "does not exist" in result.output
        assert not settings.config_file.exists()

    def test_no_existing_tunnels_declined(
        self, runner, app, mock_gateway, store, authenticated
    ):
        result = runner.invoke(cli, ["init", "--use-existing"], obj=app, input="n\n")

        assert result.exit_code == 0
        assert "No existing tunnels" in result.output
        assert store.load().tunnels == {}
        mock_gateway.create_tunnel.assert_not_called()


class TestSwitch:
    """Test the switch command."""

    def test_switch_by_option(self, runner, app, store, authenticated, saved_registry):
        result = runner.invoke(cli, ["switch", "--tunnel", TUNNEL_B], obj=app)

        assert result.exit_code == 0
        assert "staging" in result.output
        assert store.load().active_tunnel_id == TUNNEL_B

    def test_switch_by_menu(self, runner, app, store, authenticated, saved_registry):
        result = runner.invoke(cli, ["switch"], obj=app, input="2\n")

        assert result.exit_code == 0
        assert "[active]" in result.output
        assert store.load().active_tunnel_id == TUNNEL_B

    def test_switch_to_unknown(self, runner, app, store, authenticated, saved_registry):
        result = runner.invoke(cli, ["switch", "--tunnel", TUNNEL_C], obj=app)

        assert result.exit_code == 1
        assert store.load().active_tunnel_id == TUNNEL_A

    def test_switch_without_tunnels(self, runner, app, authenticated):
        result = runner.invoke(cli, ["switch"], obj=app)

        assert result.exit_code == 1
        assert "No tunnels configured" in result.output


class TestRun:
    """Test config generation and daemon launch."""

    def test_foreground_run(
        self, runner, app, mock_gateway, settings, store, authenticated, saved_registry
    ):
        mock_gateway.run_foreground.return_value = ExitOutcome(returncode=0)

        result = runner.invoke(cli, ["run"], obj=app)

        assert result.exit_code == 0, result.output
        config_path = settings.daemon_config_file(TUNNEL_A)
        mock_gateway.run_foreground.assert_called_once_with(config_path, TUNNEL_A)

        config = yaml.safe_load(config_path.read_text())
        assert config["tunnel"] == TUNNEL_A
        assert config["credentials-file"] == str(settings.credentials_file(TUNNEL_A))
        assert config["ingress"] == [
            {"hostname": "app.example.com", "service": "http://localhost:3000"},
            {"hostname": "api.example.com", "service": "https://localhost:8443"},
            {"service": "http_status:404"},
        ]
        assert store.load().get_tunnel(TUNNEL_A).last_used_at is not None

    def test_interrupted_run(self, runner, app, mock_gateway, authenticated, saved_registry):
        mock_gateway.run_foreground.return_value = ExitOutcome(interrupted=True)

        result = runner.invoke(cli, ["run"], obj=app)

        assert result.exit_code == 0
        assert "Tunnel stopped." in result.output

    def test_daemon_failure(self, runner, app, mock_gateway, authenticated, saved_registry):
        mock_gateway.run_foreground.return_value = ExitOutcome(returncode=1)

        result = runner.invoke(cli, ["run"], obj=app)

        assert result.exit_code == 1
        assert "exited with code 1" in result.output

    def test_detached_run(
        self, runner, app, mock_gateway, settings, authenticated, saved_registry
    ):
        log_path = settings.daemon_log_file(TUNNEL_A)
        mock_gateway.run_detached.return_value = ProcessHandle(
            pid=4242, command=["cloudflared"], log_path=str(log_path)
        )

        result = runner.invoke(cli, ["run", "--detach"], obj=app)

        assert result.exit_code == 0, result.output
        assert "PID 4242" in result.output
        mock_gateway.run_detached.assert_called_once_with(
            settings.daemon_config_file(TUNNEL_A), TUNNEL_A, log_path=log_path
        )
        mock_gateway.run_foreground.assert_not_called()

    def test_tunnel_without_services_declined(
        self, runner, app, mock_gateway, settings, authenticated, saved_registry
    ):
        result = runner.invoke(cli, ["run", "--tunnel", TUNNEL_B], obj=app, input="n\n")

        assert result.exit_code == 0
        assert "cancelled" in result.output
        assert not settings.daemon_config_file(TUNNEL_B).exists()
        mock_gateway.run_foreground.assert_not_called()

    def test_tunnel_without_services_confirmed(
        self, runner, app, mock_gateway, settings, authenticated, saved_registry
    ):
        mock_gateway.run_foreground.return_value = ExitOutcome(returncode=0)

        result = runner.invoke(cli, ["run", "--tunnel", TUNNEL_B, "--yes"], obj=app)

        assert result.exit_code == 0
        config = yaml.safe_load(settings.daemon_config_file(TUNNEL_B).read_text())
        assert config["ingress"] == [{"service": "http_status:404"}]

    def test_unreachable_origin_warns(
        self, runner, app, mock_gateway, authenticated, saved_registry
    ):
        app.reconciler.health_check.return_value = False
        mock_gateway.run_foreground.return_value = ExitOutcome(returncode=0)

        result = runner.invoke(cli, ["run"], obj=app)

        assert result.exit_code == 0
        assert "Nothing is listening on localhost:3000" in result.output

    def test_unwritable_daemon_config(
        self, runner, app, mock_gateway, settings, store, authenticated, saved_registry
    ):
        settings.daemon_config_file(TUNNEL_A).mkdir(parents=True)

        result = runner.invoke(cli, ["run"], obj=app)

        assert result.exit_code == 1
        assert "Cannot write daemon configuration" in result.output
        assert store.load().get_tunnel(TUNNEL_A).last_used_at is None
        mock_gateway.run_foreground.assert_not_called()


class TestStop:
    """Test stopping daemon processes."""

    def test_stop_active_tunnel(self, runner, app, mock_gateway, authenticated, saved_registry):
        mock_gateway.find_tunnel_processes.return_value = [4242]

        result = runner.invoke(cli, ["stop", "--yes"], obj=app)

        assert result.exit_code == 0, result.output
        mock_gateway.find_tunnel_processes.assert_called_once_with(TUNNEL_A)
        mock_gateway.stop_process.assert_called_once_with(4242, force=False)
        assert "Process 4242 stopped" in result.output

    def test_stop_all(self, runner, app, mock_gateway, authenticated):
        mock_gateway.find_tunnel_processes.return_value = [4242, 4343]

        result = runner.invoke(cli, ["stop", "--all", "--force"], obj=app, input="y\n")

        assert result.exit_code == 0, result.output
        mock_gateway.find_tunnel_processes.assert_called_once_with("tunnel")
        assert mock_gateway.stop_process.call_count == 2
        mock_gateway.stop_process.assert_called_with(4343, force=True)

    def test_nothing_running(self, runner, app, mock_gateway, authenticated, saved_registry):
        result = runner.invoke(cli, ["stop"], obj=app)

        assert result.exit_code == 0
        assert "No running tunnel process found" in result.output
        mock_gateway.stop_process.assert_not_called()

    def test_declined(self, runner, app, mock_gateway, authenticated, saved_registry):
        mock_gateway.find_tunnel_processes.return_value = [4242]

        result = runner.invoke(cli, ["stop"], obj=app, input="n\n")

        assert result.exit_code == 0
        assert "Operation cancelled" in result.output
        mock_gateway.stop_process.assert_not_called()

    def test_process_survives(self, runner, app, mock_gateway, authenticated, saved_registry):
        mock_gateway.find_tunnel_processes.return_value = [4242]

        with patch("cloudtunnel.cli.tunnel_commands._wait_for_exit", return_value=False):
            result = runner.invoke(cli, ["stop", "--yes"], obj=app)

        assert result.exit_code == 0
        assert "may still be running" in result.output
        assert "--force" in result.output

    def test_stop_failure(self, runner, app, mock_gateway, authenticated, saved_registry):
        mock_gateway.find_tunnel_processes.return_value = [4242]
        mock_gateway.stop_process.side_effect = ExternalToolError(
            "Not permitted to stop process 4242", hint="Elevated permissions may be required"
        )

        result = runner.invoke(cli, ["stop", "--yes"], obj=app)

        assert result.exit_code == 1
        assert "Elevated permissions" in result.output


class TestStatus:
    """Test the status overview."""

    def test_status(self, runner, app, mock_gateway, authenticated, saved_registry):
        mock_gateway.list_remote_tunnels.return_value = [
            RemoteTunnel(id=TUNNEL_A, name="web", connection_count=2),
            RemoteTunnel(id=TUNNEL_B, name="staging"),
        ]

        result = runner.invoke(cli, ["status"], obj=app)

        assert result.exit_code == 0, result.output
        lines = result.output.splitlines()
        assert lines[0].startswith("*") and "web" in lines[0] and "running" in lines[0]
        assert "up  app.example.com -> http://localhost:3000" in result.output
        staging = next(line for line in lines if "staging" in line)
        assert "stopped" in staging
        assert "(no services)" in result.output

    def test_status_unknown_when_daemon_unreachable(
        self, runner, app, mock_gateway, authenticated, saved_registry
    ):
        mock_gateway.list_remote_tunnels.side_effect = ExternalToolError("offline")

        result = runner.invoke(cli, ["status"], obj=app)

        assert result.exit_code == 0
        assert "unknown" in result.output

    def test_status_without_tunnels(self, runner, app, authenticated):
        result = runner.invoke(cli, ["status"], obj=app)

        assert result.exit_code == 0
        assert "No tunnels configured" in result.output


class TestClean:
    """Test removing stale tunnels."""

    def test_removes_stale_tunnel(
        self, runner, app, mock_gateway, store, authenticated, saved_registry
    ):
        mock_gateway.list_remote_tunnels.return_value = [RemoteTunnel(id=TUNNEL_A)]

        result = runner.invoke(cli, ["clean", "--yes"], obj=app)

        assert result.exit_code == 0, result.output
        assert "staging" in result.output
        assert "Removed 1 tunnel(s)" in result.output
        registry = store.load()
        assert set(registry.tunnels) == {TUNNEL_A}
        assert registry.active_tunnel_id == TUNNEL_A

    def test_removing_active_tunnel_clears_selection(
        self, runner, app, mock_gateway, store, authenticated, saved_registry
    ):
        mock_gateway.list_remote_tunnels.return_value = [RemoteTunnel(id=TUNNEL_B)]

        result = runner.invoke(cli, ["clean"], obj=app, input="y\n")

        assert result.exit_code == 0, result.output
        assert "active tunnel was removed" in result.output
        assert store.load().active_tunnel_id is None

    def test_declined(self, runner, app, mock_gateway, store, authenticated, saved_registry):
        mock_gateway.list_remote_tunnels.return_value = [RemoteTunnel(id=TUNNEL_A)]

        result = runner.invoke(cli, ["clean"], obj=app, input="n\n")

        assert result.exit_code == 0
        assert "Operation cancelled" in result.output
        assert len(store.load().tunnels) == 2

    def test_nothing_to_clean(self, runner, app, mock_gateway, authenticated, saved_registry):
        mock_gateway.list_remote_tunnels.return_value = [
            RemoteTunnel(id=TUNNEL_A),
            RemoteTunnel(id=TUNNEL_B),
        ]

        result = runner.invoke(cli, ["clean"], obj=app)

        assert result.exit_code == 0
        assert "Nothing to clean" in result.output

    def test_remote_failure(
        self, runner, app, mock_gateway, store, authenticated, saved_registry
    ):
        mock_gateway.list_remote_tunnels.side_effect = ExternalToolError("offline")
        before = store.path.read_text()

        result = runner.invoke(cli, ["clean", "--yes"], obj=app)

        assert result.exit_code == 1
        assert store.path.read_text() == before


class TestVersionAndLogging:
    """Test version output and the global options."""

    def test_version_command(self, runner, app):
        result = runner.invoke(cli, ["version"], obj=app)

        assert result.exit_code == 0
        assert f"cloudtunnel {__version__}" in result.output
        assert "cloudflared version 2024.6.1" in result.output

    def test_version_without_daemon(self, runner, app, mock_gateway):
        mock_gateway.version.return_value = None

        result = runner.invoke(cli, ["version"], obj=app)

        assert result.exit_code == 0
        assert "Not installed or not in PATH" in result.output

    def test_version_option(self, runner):
        result = runner.invoke(cli, ["--version"])

        assert result.exit_code == 0
        assert __version__ in result.output

    def test_verbose_enables_debug(self, runner, app):
        result = runner.invoke(cli, ["--verbose", "version"], obj=app)

        assert result.exit_code == 0
        assert logging.getLogger().level == logging.DEBUG

    def test_failures_are_logged_to_file(self, runner, app, settings, mock_gateway):
        mock_gateway.is_installed.return_value = False

        runner.invoke(cli, ["status"], obj=app)
        for handler in logging.getLogger().handlers:
            handler.flush()

        content = settings.log_file.read_text()
        assert "[ERROR] Command failed" in content
        assert "error_type=PreconditionError" in content
