"""Validation helpers shared by the registry and the command line."""

import re
from urllib.parse import urlsplit

from .exceptions import ValidationError

# Port range constants
MIN_PORT = 1
MAX_PORT = 65535

SUPPORTED_PROTOCOLS = ("http", "https")

HOSTNAME_PATTERN = re.compile(
    r"^([a-zA-Z0-9]([a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?\.)+[a-zA-Z]{2,}$"
)


def validate_port(port: int, port_name: str = "Port") -> int:
    """Validate port number range.

    Args:
        port: Port number to validate
        port_name: Name of the port for error messages

    Returns:
        The port, unchanged

    Raises:
        ValidationError: If port is not in valid range (1-65535)
    """
    if (
        isinstance(port, bool)
        or not isinstance(port, int)
        or not (MIN_PORT <= port <= MAX_PORT)
    ):
        raise ValidationError(
            f"{port_name} must be between {MIN_PORT} and {MAX_PORT}"
        )
    return port


def validate_hostname(hostname: str) -> str:
    """Validate a fully-qualified hostname such as ``app.example.com``.

    Returns:
        Stripped hostname

    Raises:
        ValidationError: If the hostname is empty or malformed
    """
    value = validate_non_empty_string(hostname, "Hostname")
    if len(value) > 253 or not HOSTNAME_PATTERN.match(value):
        raise ValidationError(
            f"Invalid hostname: {value}",
            hint="Use a fully-qualified name such as service.example.com",
        )
    return value


def validate_non_empty_string(value: str, field_name: str) -> str:
    """Validate that a string is not empty or only whitespace.

    Args:
        value: String value to validate
        field_name: Name of the field for error messages

    Returns:
        Stripped string value

    Raises:
        ValidationError: If string is empty or only whitespace
    """
    if not value or not value.strip():
        raise ValidationError(f"{field_name} cannot be empty")
    return value.strip()


def validate_protocol(protocol: str) -> str:
    """Validate and normalize a service protocol (``http`` or ``https``)."""
    value = validate_non_empty_string(protocol, "Protocol").lower()
    if value not in SUPPORTED_PROTOCOLS:
        raise ValidationError(
            f"Unsupported protocol: {protocol}",
            hint=f"Choose one of: {', '.join(SUPPORTED_PROTOCOLS)}",
        )
    return value


def build_target_url(protocol: str, port: int) -> str:
    """Build the local origin URL a service is routed to."""
    return f"{validate_protocol(protocol)}://localhost:{validate_port(port)}"


def parse_target_url(target_url: str) -> tuple[str, int] | None:
    """Extract ``(protocol, port)`` from a local origin URL.

    Returns:
        The pair, or None if the URL has no supported scheme or port
    """
    try:
        parts = urlsplit(target_url)
        port = parts.port
    except ValueError:
        return None

    scheme = parts.scheme.lower()
    if scheme not in SUPPORTED_PROTOCOLS:
        return None
    if port is None:
        port = 443 if scheme == "https" else 80
    return scheme, port
