"""Integration with the external cloudflared daemon."""

from .config import CATCH_ALL_SERVICE, DaemonConfigBuilder
from .gateway import INSTALL_HINT, CloudflaredGateway, ExitOutcome, ProcessHandle
from .parsers import (
    RemoteTunnel,
    parse_created_tunnel_id,
    parse_tunnel_list,
    remediation_hint,
)
from .processes import (
    PosixProcessLister,
    ProcessInfo,
    ProcessLister,
    WindowsProcessLister,
    get_process_lister,
    parse_ps_output,
    parse_wmic_csv,
)

__all__ = [
    # Gateway
    "CloudflaredGateway",
    "ExitOutcome",
    "ProcessHandle",
    "INSTALL_HINT",
    # Daemon config
    "DaemonConfigBuilder",
    "CATCH_ALL_SERVICE",
    # Output parsing
    "RemoteTunnel",
    "parse_tunnel_list",
    "parse_created_tunnel_id",
    "remediation_hint",
    # Process enumeration
    "ProcessInfo",
    "ProcessLister",
    "PosixProcessLister",
    "WindowsProcessLister",
    "get_process_lister",
    "parse_ps_output",
    "parse_wmic_csv",
]
