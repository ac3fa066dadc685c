"""Cooperative cancellation for blocking work run on worker threads.

``asyncio.to_thread`` cannot stop a running thread: cancelling the awaiting
task only abandons the result, and interpreter shutdown then waits for the
thread to finish.  Long loops (hashing, compression, packaging) therefore
take a ``threading.Event`` and check it once per chunk.
"""

from __future__ import annotations

import asyncio
import threading
from collections.abc import Callable
from typing import Any, TypeVar

T = TypeVar("T")


class OperationCancelled(Exception):
    """Raised on a worker thread once its caller stopped waiting for it."""


def raise_if_cancelled(cancel: threading.Event | None) -> None:
    """Raise ``OperationCancelled`` if *cancel* is set."""
    if cancel is not None and cancel.is_set():
        raise OperationCancelled()


async def run_in_thread(func: Callable[..., T], /, *args: Any, **kwargs: Any) -> T:
    """Run ``func(*args, cancel=event, **kwargs)`` on a worker thread.

    If the awaiting task is cancelled the event is set, so the worker stops
    at its next check instead of running to completion.
    """
    cancel = threading.Event()
    try:
        return await asyncio.to_thread(func, *args, cancel=cancel, **kwargs)
    except asyncio.CancelledError:
        cancel.set()
        raise
