"""Common utilities and shared functionality."""

from .exceptions import (
    CloudTunnelError,
    CreationParseError,
    ExternalToolError,
    PartialSuccessWarning,
    PreconditionError,
    ValidationError,
)
from .logging import get_logger, setup_logging
from .utils import (
    MAX_PORT,
    MIN_PORT,
    SUPPORTED_PROTOCOLS,
    build_target_url,
    parse_target_url,
    validate_hostname,
    validate_non_empty_string,
    validate_port,
    validate_protocol,
)

__all__ = [
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
    # Utils
    "validate_port",
    "validate_hostname",
    "validate_non_empty_string",
    "validate_protocol",
    "build_target_url",
    "parse_target_url",
    "SUPPORTED_PROTOCOLS",
    "MIN_PORT",
    "MAX_PORT",
]
