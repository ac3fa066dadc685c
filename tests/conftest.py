"""Shared test fixtures for the Leviathan client."""

from __future__ import annotations

import asyncio
import contextlib
import threading
from collections.abc import AsyncIterator, Awaitable, Callable, Iterator
from pathlib import Path

import h11
import pytest
import pytest_asyncio

from leviathan_client.config import ClientSettings
from leviathan_client.models.context import RunContext, default_artifacts


@pytest.fixture
def tmp_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for test artifacts."""
    return tmp_path


@pytest.fixture
def suite_dir(tmp_dir: Path) -> Path:
    """A small suite tree with an excluded dependency folder and lock file."""
    root = tmp_dir / "my-suite"
    (root / "a").mkdir(parents=True)
    (root / "a" / "x.txt").write_text("1")
    (root / "a" / "y.txt").write_text("2")
    (root / "node_modules" / "dep").mkdir(parents=True)
    (root / "node_modules" / "dep" / "index.js").write_text("module.exports = 1;\n")
    (root / "package-lock.json").write_text("{}")
    return root


@pytest.fixture
def config_file(tmp_dir: Path) -> Path:
    path = tmp_dir / "config.json"
    path.write_text('{"deviceType": "raspberrypi3"}\n')
    return path


@pytest.fixture
def image_file(tmp_dir: Path) -> Path:
    """An uncompressed fake OS image."""
    path = tmp_dir / "os.img"
    path.write_bytes(b"\x00" * 4096 + b"resin-boot" + b"\xff" * 4096)
    return path


@pytest.fixture
def workdir(tmp_dir: Path) -> Path:
    return tmp_dir / "work"


@pytest.fixture
def run_context(
    workdir: Path, suite_dir: Path, config_file: Path, image_file: Path
) -> RunContext:
    """A RunContext pointing at the fixture artifacts."""
    return RunContext(
        workdir=workdir,
        host="leviathan.test",
        artifacts=default_artifacts(suite_dir, config_file, image_file),
    )


@pytest.fixture
def fast_settings() -> ClientSettings:
    """Settings without the post-upload settle delay."""
    return ClientSettings(settle_delay_seconds=0)


# ---------------------------------------------------------------------------
# Fake upload host
# ---------------------------------------------------------------------------


class RecordingHost:
    """Scripted stand-in for the host's HTTP endpoints, served on loopback.

    ``responses`` maps an artifact name to the response body returned for
    its upload, or to a ``(status, body)`` pair; unknown artifacts get
    ``upload: done``.  With ``answer_early`` the response is sent as soon as
    the request headers arrive, and the body is read until the client stops
    sending.
    """

    def __init__(
        self,
        responses: dict[str, bytes | tuple[int, bytes]] | None = None,
        *,
        answer_early: bool = False,
    ) -> None:
        self.responses = responses or {}
        self.answer_early = answer_early
        self.uploads: list[tuple[str, str, bytes]] = []
        self.stop_requests = 0
        self.port = 0
        self._server: asyncio.AbstractServer | None = None
        self._handlers: set[asyncio.Task] = set()

    @property
    def address(self) -> str:
        return f"127.0.0.1:{self.port}"

    @property
    def base_url(self) -> str:
        return f"http://{self.address}"

    @property
    def uploaded_names(self) -> list[str]:
        return [name for name, _, _ in self.uploads]

    async def start(self) -> None:
        self._server = await asyncio.start_server(self._handle, "127.0.0.1", 0)
        self.port = self._server.sockets[0].getsockname()[1]

    async def settled(self, timeout: float = 10.0) -> None:
        """Wait until every connection accepted so far has been handled."""
        if self._handlers:
            await asyncio.wait(set(self._handlers), timeout=timeout)

    async def close(self) -> None:
        if self._server is not None:
            self._server.close()
            await self.settled()

    async def _handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        task = asyncio.current_task()
        assert task is not None
        self._handlers.add(task)
        conn = h11.Connection(our_role=h11.SERVER)

        async def next_event() -> h11.Event:
            while True:
                event = conn.next_event()
                if event is not h11.NEED_DATA:
                    return event
                conn.receive_data(await reader.read(64 * 1024))

        async def read_body() -> bytes:
            received = bytearray()
            try:
                while True:
                    event = await next_event()
                    if isinstance(event, h11.Data):
                        received += event.data
                    elif isinstance(event, (h11.EndOfMessage, h11.ConnectionClosed)):
                        break
            except (h11.RemoteProtocolError, ConnectionError):
                pass  # client stopped mid-body
            return bytes(received)

        async def respond(status: int, body: bytes) -> None:
            headers = [("content-length", str(len(body))), ("connection", "close")]
            events: list[h11.Event] = [h11.Response(status_code=status, headers=headers)]
            if body:
                events.append(h11.Data(data=body))
            events.append(h11.EndOfMessage())
            for event in events:
                writer.write(conn.send(event))
            await writer.drain()

        try:
            request = await next_event()
            if not isinstance(request, h11.Request):
                return
            headers = {k.decode(): v.decode() for k, v in request.headers}
            path = request.target.decode()

            if path == "/upload":
                name = headers["x-artifact"]
                reply = self.responses.get(name, b"upload: done\n")
                status, body = reply if isinstance(reply, tuple) else (200, reply)
                if self.answer_early:
                    await respond(status, body)
                content = await read_body()
                self.uploads.append((name, headers["x-artifact-hash"], content))
                if not self.answer_early:
                    await respond(status, body)
            elif path == "/stop":
                self.stop_requests += 1
                await read_body()
                await respond(200, b"")
            else:
                await read_body()
                await respond(404, b"")
        except ConnectionError:
            pass
        finally:
            writer.close()
            with contextlib.suppress(OSError):
                await writer.wait_closed()
            self._handlers.discard(task)


@pytest_asyncio.fixture
async def make_host() -> AsyncIterator[Callable[..., Awaitable[RecordingHost]]]:
    """Factory fixture: start a RecordingHost with scripted responses."""
    hosts: list[RecordingHost] = []

    async def _factory(
        responses: dict[str, bytes | tuple[int, bytes]] | None = None,
        *,
        answer_early: bool = False,
    ) -> RecordingHost:
        host = RecordingHost(responses, answer_early=answer_early)
        await host.start()
        hosts.append(host)
        return host

    yield _factory
    for host in hosts:
        await host.close()


@pytest.fixture
def make_threaded_host() -> Iterator[Callable[..., RecordingHost]]:
    """Factory fixture: a RecordingHost on its own event loop thread.

    For synchronous callers such as the CLI, which run their own loop.
    """
    running: list[tuple[asyncio.AbstractEventLoop, threading.Thread, RecordingHost]] = []

    def _factory(responses: dict[str, bytes | tuple[int, bytes]] | None = None) -> RecordingHost:
        loop = asyncio.new_event_loop()
        host = RecordingHost(responses)
        loop.run_until_complete(host.start())
        thread = threading.Thread(target=loop.run_forever, name="recording-host", daemon=True)
        thread.start()
        running.append((loop, thread, host))
        return host

    yield _factory
    for loop, thread, host in running:
        asyncio.run_coroutine_threadsafe(host.close(), loop).result(timeout=10)
        loop.call_soon_threadsafe(loop.stop)
        thread.join(timeout=10)
        loop.close()
