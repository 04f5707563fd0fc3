"""Colored terminal output helpers."""

from collections.abc import Sequence
from typing import TypeVar

import click

from ..common.exceptions import CloudTunnelError, CreationParseError, PartialSuccessWarning

T = TypeVar("T")


def success(message: str) -> None:
    click.secho(message, fg="green")


def info(message: str) -> None:
    click.secho(message, fg="cyan")


def warn(message: str) -> None:
    click.secho(message, fg="yellow")


def report_error(exc: CloudTunnelError) -> None:
    """Print an error with its remediation hint to stderr."""
    click.secho(f"Error: {exc.message}", fg="red", err=True)
    if isinstance(exc, CreationParseError) and exc.output.strip():
        click.secho("Command output:", fg="yellow", err=True)
        click.echo(exc.output.strip(), err=True)
    if exc.hint:
        click.secho(exc.hint, fg="yellow", err=True)


def report_warning(warning: PartialSuccessWarning) -> None:
    warn(f"Warning: {warning.message}")
    if warning.hint:
        warn(warning.hint)


def choose(message: str, options: Sequence[tuple[str, T]]) -> T:
    """Print a numbered menu and return the value of the picked entry."""
    for index, (label, _) in enumerate(options, start=1):
        click.echo(f"  {click.style(str(index), fg='green')}. {label}")
    picked = click.prompt(message, type=click.IntRange(1, len(options)))
    return options[picked - 1][1]
