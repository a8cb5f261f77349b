"""Logging setup for the CLI."""

from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler

stderr_console = Console(stderr=True)


def configure_logging(verbose: bool = False) -> None:
    """Route ``releasegate`` loggers to a Rich handler on stderr."""
    handler = RichHandler(console=stderr_console, show_path=False, rich_tracebacks=verbose, markup=False)
    handler.setFormatter(logging.Formatter("%(message)s", datefmt="[%X]"))

    root = logging.getLogger("releasegate")
    root.handlers[:] = [handler]
    root.setLevel(logging.DEBUG if verbose else logging.INFO)
    root.propagate = False
