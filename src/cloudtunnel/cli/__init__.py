"""Command-line interface."""

from .context import AppContext
from .main import cli, main

__all__ = ["AppContext", "cli", "main"]
