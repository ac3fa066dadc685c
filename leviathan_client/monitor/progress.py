"""Progress reporting for long-running transfer steps.

Compression and upload report bytes as they pass through; hashing shows a
spinner.  Components only see the ``ProgressReporter`` protocol; the Rich
implementation draws bars with processed/total bytes, percentage and ETA.

Advancing a task is safe from worker threads.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from contextlib import AbstractContextManager, contextmanager
from typing import Protocol

from rich.console import Console
from rich.progress import (
    BarColumn,
    DownloadColumn,
    Progress,
    TaskProgressColumn,
    TextColumn,
    TimeRemainingColumn,
)

Advance = Callable[[int], None]


class ProgressReporter(Protocol):
    """Side channel for progress of a single step."""

    def track(self, description: str, total: int) -> AbstractContextManager[Advance]:
        """Open a byte-counting task; the yielded callable advances it."""
        ...

    def status(self, message: str) -> AbstractContextManager[None]:
        """Show an indeterminate activity indicator while the block runs."""
        ...


class NullProgressReporter:
    """Reporter that renders nothing; used in tests and pipes."""

    @contextmanager
    def track(self, description: str, total: int) -> Iterator[Advance]:
        yield lambda _n: None

    @contextmanager
    def status(self, message: str) -> Iterator[None]:
        yield


class RichProgressReporter:
    """Renders progress bars and spinners on a Rich console.

    Parameters
    ----------
    console:
        Rich Console instance.  A new one is created if not provided.
    """

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    @contextmanager
    def track(self, description: str, total: int) -> Iterator[Advance]:
        progress = Progress(
            TextColumn("[bold cyan]{task.description}"),
            BarColumn(),
            DownloadColumn(),
            TaskProgressColumn(),
            TimeRemainingColumn(),
            console=self.console,
        )
        with progress:
            task_id = progress.add_task(description, total=total or None)
            yield lambda n: progress.advance(task_id, n)

    @contextmanager
    def status(self, message: str) -> Iterator[None]:
        with self.console.status(f"[bold cyan]{message}"):
            yield
