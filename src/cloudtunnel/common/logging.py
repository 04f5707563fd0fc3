"""Centralized logging configuration using structlog."""

import logging
import sys
from datetime import datetime, timezone
from pathlib import Path

import structlog
from structlog.typing import EventDict, Processor, WrappedLogger


class SilentFileHandler(logging.FileHandler):
    """Append-only file handler that never reports its own write failures.

    A broken log file must not mask the error the user is being told about.
    """

    def emit(self, record: logging.LogRecord) -> None:
        # the delayed open happens outside FileHandler's own error handling
        try:
            super().emit(record)
        except OSError:
            self.handleError(record)

    def handleError(self, record: logging.LogRecord) -> None:  # noqa: N802
        pass


def render_log_line(
    _logger: WrappedLogger, _method_name: str, event_dict: EventDict
) -> str:
    """Render an event as ``[<timestamp>] [<LEVEL>] <message> key=value``."""
    timestamp = event_dict.pop("timestamp", None) or datetime.now(
        timezone.utc
    ).isoformat()
    level = str(event_dict.pop("level", "info")).upper()
    event = event_dict.pop("event", "")
    event_dict.pop("logger", None)

    line = f"[{timestamp}] [{level}] {event}"
    extras = " ".join(f"{key}={value}" for key, value in event_dict.items())
    if extras:
        line = f"{line} {extras}"
    return line


def setup_logging(
    level: str = "INFO",
    json_format: bool = False,
    log_file: str | Path | None = None,
    console: bool = True,
) -> None:
    """Configure structured logging for the application.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: If True, console output is rendered as JSON
        log_file: Optional file path events are appended to, one per line
        console: If True, events are mirrored to stderr
    """
    log_level = getattr(logging, level.upper())

    # Get root logger and clear existing handlers
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
        handler.close()
    root_logger.setLevel(log_level)

    shared_processors: list[Processor] = [
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if console:
        console_renderer: Processor = (
            structlog.processors.JSONRenderer()
            if json_format
            else structlog.dev.ConsoleRenderer()
        )
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(log_level)
        console_handler.setFormatter(
            structlog.stdlib.ProcessorFormatter(
                foreign_pre_chain=shared_processors,
                processors=[
                    structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                    console_renderer,
                ],
            )
        )
        root_logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        try:
            log_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError:
            pass  # the handler opens lazily and stays silent on failure
        file_handler = SilentFileHandler(log_path, mode="a", delay=True)
        file_handler.setLevel(log_level)
        file_handler.setFormatter(
            structlog.stdlib.ProcessorFormatter(
                foreign_pre_chain=shared_processors,
                processors=[
                    structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                    render_log_line,
                ],
            )
        )
        root_logger.addHandler(file_handler)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


# Convenience function to get logger
def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a configured logger instance.

    Args:
        name: Logger name (usually __name__)

    Returns:
        Configured structlog logger
    """
    return structlog.get_logger(name)  # type: ignore[no-any-return]
