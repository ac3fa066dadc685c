"""Upload protocol client — hash-addressed artifact transfer to ``/upload``.

Wire format
-----------
Request: ``POST /upload`` with headers ``x-artifact`` (logical name) and
``x-artifact-hash`` (file hash or aggregate hash), body a gzip-compressed
tar stream sent with chunked transfer encoding.

Response: newline-delimited ``key: value`` lines.  Recognized lines:

- ``upload: cache``: the host already has this content; stop sending.
- ``upload: done``:  the host stored the upload.
- ``error: <msg>``:  the host rejected the upload.

Everything else is ignored so the host can add new keys freely.

The host may answer while the body is still being sent.  The request is
therefore driven with h11 over a plain asyncio connection: one task writes
the body while another reads the response, and a ``cache`` or ``error``
line stops the writer and closes the connection.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import re
from collections.abc import AsyncIterable, AsyncIterator, Iterable

import h11
import httpx

from leviathan_client.core.packager import ArtifactPackager
from leviathan_client.models.artifacts import Artifact
from leviathan_client.models.outcomes import UploadOutcome
from leviathan_client.monitor.progress import ProgressReporter

logger = logging.getLogger(__name__)

ARTIFACT_HEADER = "x-artifact"
ARTIFACT_HASH_HEADER = "x-artifact-hash"
UPLOAD_PATH = "/upload"

_LINE_PATTERN = re.compile(r"^([a-z]*): (.*)$")


class UploadTransportError(Exception):
    """Raised when the connection to the host fails or breaks HTTP/1.1."""


class LineProtocolDecoder:
    """Incremental decoder for ``key: value`` response lines.

    Bytes are fed as they arrive; complete lines that match the pattern come
    back as ``(key, value)`` pairs.  A trailing line without a newline is
    returned by ``flush()`` at end of stream.
    """

    def __init__(self) -> None:
        self._buffer = b""

    def feed(self, data: bytes) -> list[tuple[str, str]]:
        self._buffer += data
        *lines, self._buffer = self._buffer.split(b"\n")
        return self._parse(lines)

    def flush(self) -> list[tuple[str, str]]:
        remainder, self._buffer = self._buffer, b""
        return self._parse([remainder]) if remainder else []

    @staticmethod
    def _parse(lines: Iterable[bytes]) -> list[tuple[str, str]]:
        fields: list[tuple[str, str]] = []
        for raw in lines:
            line = raw.decode("utf-8", errors="replace").rstrip("\r")
            match = _LINE_PATTERN.match(line)
            if match is None:
                if line:
                    logger.debug("Ignoring unrecognized response line: %r", line)
                continue
            fields.append((match.group(1), match.group(2)))
        return fields


async def iter_fields(chunks: AsyncIterable[bytes]) -> AsyncIterator[tuple[str, str]]:
    """Yield each ``(key, value)`` pair as soon as its line is complete."""
    decoder = LineProtocolDecoder()
    async for chunk in chunks:
        for field in decoder.feed(chunk):
            yield field
    for field in decoder.flush():
        yield field


# ---------------------------------------------------------------------------
# HTTP/1.1 connection
# ---------------------------------------------------------------------------


class _H11Connection:
    """One HTTP/1.1 exchange over an asyncio stream pair.

    Sending and receiving are independent, so a task may read the response
    while another is still writing the request body.
    """

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        *,
        read_size: int = 64 * 1024,
    ) -> None:
        self._reader = reader
        self._writer = writer
        self._read_size = read_size
        self._conn = h11.Connection(our_role=h11.CLIENT)

    @classmethod
    async def open(cls, host: str, port: int, *, timeout: float) -> _H11Connection:
        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(host, port), timeout=timeout
            )
        except (OSError, asyncio.TimeoutError) as exc:
            raise UploadTransportError(f"cannot connect to {host}:{port}: {exc}") from exc
        return cls(reader, writer)

    async def send(self, event: h11.Event) -> None:
        try:
            data = self._conn.send(event)
            if data:
                self._writer.write(data)
                await self._writer.drain()
        except (OSError, h11.ProtocolError) as exc:
            raise UploadTransportError(f"sending request failed: {exc}") from exc

    async def next_event(self) -> h11.Event:
        try:
            while True:
                event = self._conn.next_event()
                if event is not h11.NEED_DATA:
                    return event
                self._conn.receive_data(await self._reader.read(self._read_size))
        except (OSError, h11.ProtocolError) as exc:
            raise UploadTransportError(f"reading response failed: {exc}") from exc

    async def receive_response(self) -> h11.Response:
        while True:
            event = await self.next_event()
            if isinstance(event, h11.Response):
                return event
            if not isinstance(event, h11.InformationalResponse):
                raise UploadTransportError(f"expected a response, got {event!r}")

    async def iter_body(self) -> AsyncIterator[bytes]:
        while True:
            event = await self.next_event()
            if isinstance(event, h11.Data):
                yield bytes(event.data)
            elif isinstance(event, (h11.EndOfMessage, h11.ConnectionClosed)):
                return

    async def close(self) -> None:
        self._writer.close()
        with contextlib.suppress(OSError):
            await self._writer.wait_closed()


# ---------------------------------------------------------------------------
# Upload client
# ---------------------------------------------------------------------------


class UploadProtocolClient:
    """Streams artifacts to the host and interprets its verdict.

    Parameters
    ----------
    base_url:
        ``http://host[:port]`` of the test-execution host.
    exclude_names:
        Names left out of directory archives (same list used for hashing).
    connect_timeout:
        Seconds allowed for opening the connection.
    settle_delay:
        Seconds to wait after a successful upload so the host can finalize
        its cache before the next artifact arrives.
    """

    def __init__(
        self,
        base_url: str,
        *,
        exclude_names: Iterable[str] = (),
        compression_level: int = 6,
        max_queued_chunks: int = 16,
        chunk_size: int = 64 * 1024,
        connect_timeout: float = 10.0,
        settle_delay: float = 1.0,
        reporter: ProgressReporter | None = None,
    ) -> None:
        url = httpx.URL(base_url)
        self._host = url.host
        self._port = url.port or 80
        self._host_header = url.host if url.port is None else f"{url.host}:{url.port}"
        self._exclude_names = tuple(exclude_names)
        self._compression_level = compression_level
        self._max_queued_chunks = max_queued_chunks
        self._chunk_size = chunk_size
        self._connect_timeout = connect_timeout
        self._settle_delay = settle_delay
        self._reporter = reporter

    async def upload(self, artifact: Artifact, content_hash: str) -> UploadOutcome:
        """Send *artifact* and resolve to exactly one ``UploadOutcome``.

        Raises
        ------
        OSError
            If the artifact cannot be read while packaging.
        """
        packager = ArtifactPackager(
            artifact,
            exclude_names=self._exclude_names,
            compression_level=self._compression_level,
            max_queued_chunks=self._max_queued_chunks,
            chunk_size=self._chunk_size,
            reporter=self._reporter,
        )
        headers = [
            ("host", self._host_header),
            ("transfer-encoding", "chunked"),
            (ARTIFACT_HEADER, artifact.name),
            (ARTIFACT_HASH_HEADER, content_hash),
        ]
        logger.info("Uploading %s (hash %s)", artifact.name, content_hash)

        try:
            async with packager.open_stream() as body:
                outcome = await self._exchange(body, headers)
        except UploadTransportError as exc:
            logger.warning("Upload of %s failed: %s", artifact.name, exc)
            return UploadOutcome.failed(f"transport error: {exc}")

        if outcome.ok:
            logger.info("%s: %s", artifact.name, outcome.status.value)
            if self._settle_delay:
                await asyncio.sleep(self._settle_delay)
        else:
            logger.warning("%s rejected: %s", artifact.name, outcome.reason)
        return outcome

    async def _exchange(
        self, body: AsyncIterator[bytes], headers: list[tuple[str, str]]
    ) -> UploadOutcome:
        connection = await _H11Connection.open(
            self._host, self._port, timeout=self._connect_timeout
        )
        sender: asyncio.Task[None] | None = None
        receiver: asyncio.Task[UploadOutcome] | None = None
        try:
            await connection.send(
                h11.Request(method="POST", target=UPLOAD_PATH, headers=headers)
            )
            sender = asyncio.ensure_future(self._send_body(connection, body))
            receiver = asyncio.ensure_future(self._read_outcome(connection))
            await asyncio.wait({sender, receiver}, return_when=asyncio.FIRST_COMPLETED)
            if not receiver.done() and sender.exception() is not None:
                # A host that rejects early may close before reading the
                # whole body; its verdict still wins if it arrives.
                await asyncio.wait({receiver}, timeout=self._connect_timeout)
                if not receiver.done():
                    raise sender.exception()  # type: ignore[misc]
            return await receiver
        finally:
            for task in (sender, receiver):
                if task is not None:
                    task.cancel()
            await asyncio.gather(
                *(t for t in (sender, receiver) if t is not None), return_exceptions=True
            )
            await connection.close()

    @staticmethod
    async def _send_body(connection: _H11Connection, body: AsyncIterator[bytes]) -> None:
        async for chunk in body:
            await connection.send(h11.Data(data=chunk))
        await connection.send(h11.EndOfMessage())

    @staticmethod
    async def _read_outcome(connection: _H11Connection) -> UploadOutcome:
        response = await connection.receive_response()
        done = False
        async for key, value in iter_fields(connection.iter_body()):
            if key == "error":
                return UploadOutcome.failed(value)
            if key == "upload" and value == "cache":
                return UploadOutcome.cached()
            if key == "upload" and value == "done":
                done = True

        if done:
            return UploadOutcome.uploaded()
        return UploadOutcome.failed(
            f"response ended without an upload result (HTTP {response.status_code})"
        )
