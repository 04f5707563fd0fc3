"""Platform-specific enumeration and termination of daemon processes.

Detached daemons are not supervised; they are found again by matching
their command line, which contains the tunnel id.
"""

import csv
import io
import os
import platform
import signal
import subprocess
from abc import ABC, abstractmethod
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

from ..common.exceptions import ExternalToolError
from ..common.logging import get_logger

logger = get_logger(__name__)


class ProcessInfo(BaseModel):
    """A running process and its full command line."""

    model_config = ConfigDict(frozen=True)

    pid: int = Field(gt=0, description="Process id")
    command_line: str = Field(default="", description="Full command line")


def parse_ps_output(output: str) -> list[ProcessInfo]:
    """Parse ``ps -eo pid=,args=`` output (``<pid> <command line>`` per line)."""
    processes = []
    for raw_line in output.splitlines():
        line = raw_line.strip()
        if not line:
            continue
        parts = line.split(None, 1)
        if len(parts) < 2 or not parts[0].isdigit():
            continue
        processes.append(ProcessInfo(pid=int(parts[0]), command_line=parts[1]))
    return processes


def parse_wmic_csv(output: str) -> list[ProcessInfo]:
    """Parse ``wmic process get ProcessId,CommandLine /format:csv`` output."""
    lines = [line for line in output.splitlines() if line.strip()]
    if not lines:
        return []

    processes = []
    for row in csv.DictReader(io.StringIO("\n".join(lines))):
        pid = (row.get("ProcessId") or "").strip()
        if not pid.isdigit() or int(pid) <= 0:
            continue
        processes.append(
            ProcessInfo(pid=int(pid), command_line=(row.get("CommandLine") or "").strip())
        )
    return processes


class ProcessLister(ABC):
    """Finds and stops daemon processes on the current platform."""

    def __init__(self, binary: str = "cloudflared"):
        self.binary = binary
        self.binary_name = Path(binary).stem

    @abstractmethod
    def list_processes(self) -> list[ProcessInfo]:
        """List candidate daemon processes.

        Raises:
            ExternalToolError: If the process table cannot be read
        """

    @abstractmethod
    def terminate(self, pid: int, force: bool = False) -> None:
        """Stop a process, forcefully if ``force`` is set.

        Raises:
            ExternalToolError: If the process cannot be stopped
        """

    @abstractmethod
    def is_alive(self, pid: int) -> bool:
        """Check whether a process still exists."""

    def is_daemon(self, process: ProcessInfo) -> bool:
        """Whether the process executes the daemon binary itself."""
        parts = process.command_line.split(None, 1)
        return bool(parts) and Path(parts[0]).name == self.binary_name

    def list_processes_matching(self, pattern: str) -> list[int]:
        """Ids of daemon processes whose command line contains ``pattern``.

        Matching is case-sensitive; this process is never included.
        """
        own_pid = os.getpid()
        return [
            process.pid
            for process in self.list_processes()
            if process.pid != own_pid
            and self.is_daemon(process)
            and pattern in process.command_line
        ]


class PosixProcessLister(ProcessLister):
    """Process enumeration through ``ps`` and signals."""

    def list_processes(self) -> list[ProcessInfo]:
        try:
            result = subprocess.run(
                ["ps", "-eo", "pid=,args="],
                capture_output=True,
                text=True,
                check=False,
            )
        except OSError as e:
            raise ExternalToolError(f"Failed to list processes: {e}") from e

        if result.returncode != 0:
            raise ExternalToolError(
                f"ps exited with code {result.returncode}: {result.stderr.strip()}"
            )
        return parse_ps_output(result.stdout)

    def terminate(self, pid: int, force: bool = False) -> None:
        sig = signal.SIGKILL if force else signal.SIGTERM
        logger.info("Signalling daemon process", pid=pid, signal=sig.name)
        try:
            os.kill(pid, sig)
        except ProcessLookupError as e:
            raise ExternalToolError(f"Process {pid} is not running") from e
        except PermissionError as e:
            raise ExternalToolError(
                f"Not permitted to stop process {pid}",
                hint="Elevated permissions may be required",
            ) from e

    def is_alive(self, pid: int) -> bool:
        try:
            os.kill(pid, 0)
        except ProcessLookupError:
            return False
        except PermissionError:
            return True
        return True


class WindowsProcessLister(ProcessLister):
    """Process enumeration through ``wmic`` and ``taskkill``."""

    @property
    def image_name(self) -> str:
        return f"{self.binary_name}.exe"

    def is_daemon(self, process: ProcessInfo) -> bool:
        # the wmic query only returns processes of the daemon image
        return True

    def list_processes(self) -> list[ProcessInfo]:
        try:
            result = subprocess.run(
                [
                    "wmic",
                    "process",
                    "where",
                    f"name='{self.image_name}'",
                    "get",
                    "ProcessId,CommandLine",
                    "/format:csv",
                ],
                capture_output=True,
                text=True,
                check=False,
            )
        except OSError as e:
            raise ExternalToolError(f"Failed to list processes: {e}") from e

        # wmic reports "No Instance(s) Available." on stderr with exit code 0
        if result.returncode != 0:
            raise ExternalToolError(
                f"wmic exited with code {result.returncode}: {result.stderr.strip()}"
            )
        return parse_wmic_csv(result.stdout)

    def terminate(self, pid: int, force: bool = False) -> None:
        command = ["taskkill", "/PID", str(pid)]
        if force:
            command.append("/F")
        logger.info("Stopping daemon process", pid=pid, force=force)

        try:
            result = subprocess.run(command, capture_output=True, text=True, check=False)
        except OSError as e:
            raise ExternalToolError(f"Failed to run taskkill: {e}") from e

        if result.returncode != 0:
            raise ExternalToolError(
                f"taskkill failed for process {pid}: {result.stderr.strip()}",
                hint=None if force else "Try again with --force",
            )

    def is_alive(self, pid: int) -> bool:
        try:
            result = subprocess.run(
                ["tasklist", "/FI", f"PID eq {pid}", "/NH", "/FO", "CSV"],
                capture_output=True,
                text=True,
                check=False,
            )
        except OSError:
            return False
        return f'"{pid}"' in result.stdout


def get_process_lister(binary: str = "cloudflared") -> ProcessLister:
    """Return the process lister for the running platform."""
    if platform.system() == "Windows":
        return WindowsProcessLister(binary)
    return PosixProcessLister(binary)
