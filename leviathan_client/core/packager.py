"""Streaming tar + gzip packaging of an artifact for upload.

The archive is produced on a worker thread and handed to the event loop
through a bounded ``asyncio.Queue``: when the network side stops pulling,
the worker blocks, so memory stays bounded whatever the artifact size.

Pipeline per artifact::

    files --counter (progress)--> tar --gzip--> queue --> request body

A file artifact is archived as a single entry named after the logical name.
A directory artifact is archived recursively with the logical name as its
root and the same exclude list the hasher uses.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import contextlib
import gzip
import logging
import os
import tarfile
import threading
from collections.abc import AsyncIterator, Iterable
from pathlib import Path
from typing import Any, BinaryIO

from leviathan_client.core.cancellation import OperationCancelled
from leviathan_client.core.hasher import collect_files
from leviathan_client.models.artifacts import Artifact, DirectoryArtifact
from leviathan_client.monitor.progress import (
    Advance,
    NullProgressReporter,
    ProgressReporter,
)

logger = logging.getLogger(__name__)


class PackagingCancelled(OperationCancelled):
    """Raised inside the worker once the consumer no longer wants data."""


class _QueueSink:
    """File-like write end of the body queue, used from the worker thread."""

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        queue: asyncio.Queue[bytes | None],
        chunk_size: int,
    ) -> None:
        self._loop = loop
        self._queue = queue
        self._chunk_size = chunk_size
        self._buffer = bytearray()
        self.cancelled = threading.Event()

    def _put(self, item: bytes | None) -> None:
        if self.cancelled.is_set():
            raise PackagingCancelled()
        future = asyncio.run_coroutine_threadsafe(self._queue.put(item), self._loop)
        try:
            future.result()
        except concurrent.futures.CancelledError as exc:
            raise PackagingCancelled() from exc

    def write(self, data: Any) -> int:
        if self.cancelled.is_set():
            raise PackagingCancelled()
        self._buffer += data
        while len(self._buffer) >= self._chunk_size:
            chunk = bytes(self._buffer[: self._chunk_size])
            del self._buffer[: self._chunk_size]
            self._put(chunk)
        return len(data)

    def flush(self) -> None:
        pass

    def finish(self) -> None:
        """Hand over what is buffered and signal end of stream."""
        if self.cancelled.is_set():
            return
        if self._buffer:
            self._put(bytes(self._buffer))
            self._buffer.clear()
        self._put(None)


class _CountingReader:
    """Pass-through reader that reports how many file bytes were read."""

    def __init__(self, inner: BinaryIO, advance: Advance) -> None:
        self._inner = inner
        self._advance = advance

    def read(self, size: int = -1) -> bytes:
        data = self._inner.read(size)
        self._advance(len(data))
        return data


class ArtifactPackager:
    """Produces the compressed archive of one artifact as an async stream.

    Parameters
    ----------
    artifact:
        The (already normalized) artifact to package.
    exclude_names:
        Entry names skipped anywhere below the artifact root.
    compression_level:
        gzip level for the stream.
    max_queued_chunks:
        Depth of the queue between the worker and the consumer.
    chunk_size:
        Size of the body chunks handed to the consumer.
    reporter:
        Receives progress, counted on file contents read into the archive.
    """

    def __init__(
        self,
        artifact: Artifact,
        *,
        exclude_names: Iterable[str] = (),
        compression_level: int = 6,
        max_queued_chunks: int = 16,
        chunk_size: int = 64 * 1024,
        reporter: ProgressReporter | None = None,
    ) -> None:
        self._artifact = artifact
        self._exclude_names = frozenset(exclude_names)
        self._compression_level = compression_level
        self._max_queued_chunks = max_queued_chunks
        self._chunk_size = chunk_size
        self._reporter = reporter or NullProgressReporter()

    # ------------------------------------------------------------------
    # Async side
    # ------------------------------------------------------------------

    @contextlib.asynccontextmanager
    async def open_stream(self) -> AsyncIterator[AsyncIterator[bytes]]:
        """Start packaging and yield an async iterator over body chunks.

        Leaving the block before the iterator is exhausted cancels the
        worker.  Errors raised while reading the artifact (``OSError``)
        are re-raised on exit.
        """
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue[bytes | None] = asyncio.Queue(
            maxsize=self._max_queued_chunks
        )
        sink = _QueueSink(loop, queue, self._chunk_size)
        worker = asyncio.ensure_future(asyncio.to_thread(self._run, sink))
        try:
            yield self._iter_chunks(queue)
        finally:
            if not worker.done():
                sink.cancelled.set()
                # Unblock a put that is waiting for room.
                while not queue.empty():
                    queue.get_nowait()
            try:
                await worker
            except PackagingCancelled:
                logger.debug("Packaging of %s cancelled", self._artifact.name)

    @staticmethod
    async def _iter_chunks(queue: asyncio.Queue[bytes | None]) -> AsyncIterator[bytes]:
        while True:
            chunk = await queue.get()
            if chunk is None:
                return
            yield chunk

    # ------------------------------------------------------------------
    # Worker thread
    # ------------------------------------------------------------------

    def _run(self, sink: _QueueSink) -> None:
        try:
            with self._reporter.track("Uploading", self._total_size()) as advance:
                self._write_archive(sink, advance)
        finally:
            sink.finish()

    def _write_archive(self, sink: _QueueSink, advance: Advance) -> None:
        with gzip.GzipFile(
            fileobj=sink, mode="wb", compresslevel=self._compression_level
        ) as compressed:
            with tarfile.open(fileobj=compressed, mode="w|", dereference=True) as tar:
                self._add(tar, Path(self._artifact.source_path), self._artifact.name, advance)

    def _add(
        self, tar: tarfile.TarFile, path: Path, arcname: str, advance: Advance
    ) -> None:
        info = tar.gettarinfo(str(path), arcname)
        if info is None:
            logger.debug("Skipping %s: not a file or directory", path)
            return
        if info.isreg():
            with open(path, "rb") as fh:
                tar.addfile(info, _CountingReader(fh, advance))
            return
        tar.addfile(info)
        if info.isdir():
            # Same walk as the hasher: name order, excludes below the root.
            with os.scandir(path) as it:
                listing = sorted(it, key=lambda e: os.fsencode(e.name))
            for entry in listing:
                if entry.name in self._exclude_names:
                    continue
                self._add(tar, Path(entry.path), f"{arcname}/{entry.name}", advance)

    def _total_size(self) -> int:
        path = Path(self._artifact.source_path)
        if isinstance(self._artifact, DirectoryArtifact):
            return sum(p.stat().st_size for p in collect_files(path, self._exclude_names))
        return path.stat().st_size
