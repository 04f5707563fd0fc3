"""Custom exceptions for cloudtunnel."""


class CloudTunnelError(Exception):
    """Base exception for all cloudtunnel errors."""

    def __init__(self, message: str, hint: str | None = None):
        super().__init__(message)
        self.message = message
        self.hint = hint


class PreconditionError(CloudTunnelError):
    """Raised when a command precondition is not met.

    Covers a missing daemon binary, a missing login certificate and the
    absence of a selected tunnel.
    """

    pass


class ExternalToolError(CloudTunnelError):
    """Raised when a daemon invocation fails or returns unparsable output."""

    pass


class CreationParseError(ExternalToolError):
    """Raised when a tunnel was created but its id could not be extracted."""

    def __init__(self, message: str, output: str, hint: str | None = None):
        super().__init__(message, hint=hint)
        self.output = output


class ValidationError(CloudTunnelError):
    """Raised when user supplied values are rejected before any mutation."""

    pass


class PartialSuccessWarning(CloudTunnelError):
    """A follow-up step failed after the local mutation was applied.

    Returned rather than raised; the local change is kept.
    """

    pass
