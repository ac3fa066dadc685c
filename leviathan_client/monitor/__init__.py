"""Terminal progress rendering for transfers."""

from leviathan_client.monitor.progress import (
    NullProgressReporter,
    ProgressReporter,
    RichProgressReporter,
)

__all__ = ["ProgressReporter", "NullProgressReporter", "RichProgressReporter"]
