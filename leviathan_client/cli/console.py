"""Shared Rich consoles and logging setup for CLI commands."""

from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler

# stdout belongs to the live session; everything decorative goes to stderr.
console = Console(stderr=True)
out = Console()


def configure_logging(level: str = "WARNING", *, verbose: bool = False) -> None:
    """Route log records through Rich at the requested level."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=verbose)],
        force=True,
    )
    # httpx logs every request at INFO; keep it out of the way unless asked.
    logging.getLogger("httpx").setLevel(logging.DEBUG if verbose else logging.WARNING)
