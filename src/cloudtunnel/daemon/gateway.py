"""Gateway to the cloudflared binary.

This module is the only place that executes cloudflared. Calls carry no
timeout: a hanging cloudflared blocks until the operator interrupts it.
"""

import subprocess
import sys
from pathlib import Path
from typing import IO, Any

from pydantic import BaseModel, ConfigDict, Field

from ..common.exceptions import ExternalToolError, PartialSuccessWarning
from ..common.logging import get_logger
from ..common.utils import validate_non_empty_string
from .parsers import (
    RemoteTunnel,
    parse_created_tunnel_id,
    parse_tunnel_list,
    remediation_hint,
)
from .processes import ProcessLister, get_process_lister

logger = get_logger(__name__)

INSTALL_HINT = (
    "Install cloudflared:\n"
    "  macOS: brew install cloudflare/cloudflare/cloudflared\n"
    "  Windows: choco install cloudflared\n"
    "  Linux: https://developers.cloudflare.com/cloudflare-one/connections/"
    "connect-apps/install-and-setup/installation"
)


class ExitOutcome(BaseModel):
    """How a foreground daemon run ended."""

    model_config = ConfigDict(frozen=True)

    returncode: int | None = Field(default=None, description="Daemon exit code")
    interrupted: bool = Field(default=False, description="Stopped by the operator")

    @property
    def succeeded(self) -> bool:
        """Operator interruption counts as a normal exit."""
        return self.interrupted or self.returncode == 0


class ProcessHandle(BaseModel):
    """A detached daemon process; nothing supervises it after spawning."""

    model_config = ConfigDict(frozen=True)

    pid: int = Field(gt=0, description="Process id")
    command: list[str] = Field(description="Command line used to spawn it")
    log_path: str | None = Field(default=None, description="Daemon output file")


def _last_line(text: str) -> str:
    lines = [line.strip() for line in text.strip().splitlines() if line.strip()]
    return lines[-1] if lines else ""


class CloudflaredGateway:
    """Runs cloudflared subcommands and turns their output into results."""

    def __init__(
        self,
        binary: str = "cloudflared",
        process_lister: ProcessLister | None = None,
    ):
        """Initialize CloudflaredGateway.

        Args:
            binary: cloudflared executable name or path
            process_lister: Platform process lister (auto-detected if None)
        """
        self.binary = binary
        self.process_lister = process_lister or get_process_lister(binary)

    def _run(self, *args: str) -> "subprocess.CompletedProcess[str]":
        command = [self.binary, *args]
        logger.debug("Running cloudflared", command=" ".join(command))
        try:
            return subprocess.run(command, capture_output=True, text=True, check=False)
        except FileNotFoundError as e:
            raise ExternalToolError(
                f"{self.binary} is not installed or not in PATH", hint=INSTALL_HINT
            ) from e
        except OSError as e:
            raise ExternalToolError(f"Failed to run {self.binary}: {e}") from e

    def version(self) -> str | None:
        """Version line reported by cloudflared, or None if it cannot run."""
        try:
            result = self._run("--version")
        except ExternalToolError:
            return None
        if result.returncode != 0:
            return None
        return (result.stdout.strip() or result.stderr.strip()) or None

    def is_installed(self) -> bool:
        """Probe for a working cloudflared binary. Never raises."""
        return self.version() is not None

    def login(self) -> None:
        """Run ``cloudflared tunnel login`` attached to the terminal.

        Raises:
            ExternalToolError: If the login command fails
        """
        command = [self.binary, "tunnel", "login"]
        logger.info("Starting cloudflared login")
        try:
            returncode = subprocess.run(command, check=False).returncode
        except FileNotFoundError as e:
            raise ExternalToolError(
                f"{self.binary} is not installed or not in PATH", hint=INSTALL_HINT
            ) from e
        except OSError as e:
            raise ExternalToolError(f"Failed to run {self.binary}: {e}") from e

        if returncode != 0:
            raise ExternalToolError(
                f"cloudflared tunnel login exited with code {returncode}",
                hint="If a certificate already exists, remove it or run "
                "'cloudtunnel login --force'",
            )

    def list_remote_tunnels(self) -> list[RemoteTunnel]:
        """List the account's tunnels with their active connection counts.

        Returns:
            Remote tunnels; an empty list means the account has none

        Raises:
            ExternalToolError: If cloudflared is missing, fails or emits
                unparsable output
        """
        result = self._run("tunnel", "list", "--output", "json")
        if result.returncode != 0:
            output = f"{result.stdout}\n{result.stderr}"
            raise ExternalToolError(
                f"cloudflared tunnel list failed: {_last_line(result.stderr)}",
                hint=remediation_hint(output, "list"),
            )

        tunnels = parse_tunnel_list(result.stdout)
        logger.debug("Remote tunnels listed", count=len(tunnels))
        return tunnels

    def create_tunnel(self, name: str) -> str:
        """Create a tunnel and return the id cloudflared assigned to it.

        Raises:
            ExternalToolError: If the create command fails
            CreationParseError: If it succeeded but printed no recognizable id
        """
        name = validate_non_empty_string(name, "Tunnel name")
        result = self._run("tunnel", "create", name)
        # cloudflared logs to stderr; the success line may land on either stream
        output = f"{result.stdout}\n{result.stderr}"

        if result.returncode != 0:
            raise ExternalToolError(
                f"cloudflared tunnel create failed: {_last_line(result.stderr)}",
                hint=remediation_hint(output, "create"),
            )

        tunnel_id = parse_created_tunnel_id(output)
        logger.info("Tunnel created", name=name, tunnel_id=tunnel_id)
        return tunnel_id

    def create_dns_route(
        self, tunnel_id: str, hostname: str
    ) -> PartialSuccessWarning | None:
        """Point ``hostname`` at the tunnel with a DNS record.

        Best effort: a failure is returned as a warning, never raised.

        Returns:
            None on success, otherwise a PartialSuccessWarning
        """
        try:
            result = self._run("tunnel", "route", "dns", tunnel_id, hostname)
        except ExternalToolError as e:
            logger.warning("DNS route not created", hostname=hostname, error=e.message)
            return PartialSuccessWarning(
                f"DNS route for {hostname} was not created: {e.message}", hint=e.hint
            )

        if result.returncode != 0:
            output = f"{result.stdout}\n{result.stderr}"
            logger.warning(
                "DNS route not created",
                hostname=hostname,
                returncode=result.returncode,
            )
            return PartialSuccessWarning(
                f"DNS route for {hostname} was not created: {_last_line(output)}",
                hint=remediation_hint(output, "route"),
            )

        logger.info("DNS route created", tunnel_id=tunnel_id, hostname=hostname)
        return None

    def run_command(self, config_path: str | Path, tunnel_id: str | None = None) -> list[str]:
        """Command line that runs a tunnel from its generated config."""
        command = [self.binary, "tunnel", "--config", str(config_path), "run"]
        if tunnel_id:
            command.append(tunnel_id)
        return command

    def run_foreground(
        self, config_path: str | Path, tunnel_id: str | None = None
    ) -> ExitOutcome:
        """Run the daemon attached to the terminal until it exits.

        Ctrl+C stops the daemon and is reported as an interrupted, normal exit.

        Raises:
            ExternalToolError: If the daemon cannot be started
        """
        command = self.run_command(config_path, tunnel_id)
        logger.info("Starting daemon in foreground", command=" ".join(command))
        try:
            process = subprocess.Popen(command)
        except FileNotFoundError as e:
            raise ExternalToolError(
                f"{self.binary} is not installed or not in PATH", hint=INSTALL_HINT
            ) from e
        except OSError as e:
            raise ExternalToolError(f"Failed to start {self.binary}: {e}") from e

        try:
            returncode = process.wait()
        except KeyboardInterrupt:
            logger.info("Foreground daemon interrupted", pid=process.pid)
            self._stop_child(process)
            return ExitOutcome(returncode=process.returncode, interrupted=True)

        logger.info("Foreground daemon exited", returncode=returncode)
        return ExitOutcome(returncode=returncode)

    def _stop_child(self, process: "subprocess.Popen[Any]") -> None:
        if process.poll() is not None:
            return
        process.terminate()
        try:
            process.wait(timeout=5.0)
        except subprocess.TimeoutExpired:
            logger.warning(
                "Daemon did not terminate gracefully, force killing", pid=process.pid
            )
            process.kill()
            process.wait()

    def run_detached(
        self,
        config_path: str | Path,
        tunnel_id: str | None = None,
        log_path: str | Path | None = None,
    ) -> ProcessHandle:
        """Start the daemon as an independent background process.

        The returned handle is informational only; the process is later found
        again through its command line.

        Raises:
            ExternalToolError: If the daemon cannot be started
        """
        command = self.run_command(config_path, tunnel_id)
        popen_kwargs: dict[str, Any] = {"stdin": subprocess.DEVNULL}
        if sys.platform == "win32":
            popen_kwargs["creationflags"] = getattr(
                subprocess, "DETACHED_PROCESS", 0
            ) | getattr(subprocess, "CREATE_NEW_PROCESS_GROUP", 0)
        else:
            popen_kwargs["start_new_session"] = True

        log_handle: IO[bytes] | None = None
        try:
            if log_path is not None:
                Path(log_path).parent.mkdir(parents=True, exist_ok=True)
                log_handle = open(log_path, "ab")  # noqa: SIM115
            output = log_handle if log_handle is not None else subprocess.DEVNULL
            process = subprocess.Popen(
                command, stdout=output, stderr=subprocess.STDOUT, **popen_kwargs
            )
        except FileNotFoundError as e:
            raise ExternalToolError(
                f"{self.binary} is not installed or not in PATH", hint=INSTALL_HINT
            ) from e
        except OSError as e:
            raise ExternalToolError(f"Failed to start {self.binary}: {e}") from e
        finally:
            # the child holds its own descriptor
            if log_handle is not None:
                log_handle.close()

        logger.info("Daemon started in background", pid=process.pid, tunnel_id=tunnel_id)
        return ProcessHandle(
            pid=process.pid,
            command=command,
            log_path=str(log_path) if log_path is not None else None,
        )

    def find_tunnel_processes(self, pattern: str) -> list[int]:
        """Ids of running daemon processes whose command line contains ``pattern``.

        Raises:
            ExternalToolError: If the process table cannot be read
        """
        return self.process_lister.list_processes_matching(pattern)

    def stop_process(self, pid: int, force: bool = False) -> None:
        """Stop a daemon process found through ``find_tunnel_processes``."""
        self.process_lister.terminate(pid, force=force)

    def is_process_alive(self, pid: int) -> bool:
        return self.process_lister.is_alive(pid)
