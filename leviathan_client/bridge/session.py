"""Live session bridge — attaches the terminal to a running test session.

Once every artifact is on the host, ``/start`` is opened as a websocket and
becomes a plain duplex byte pipe: standard input goes out as binary frames,
whatever the host sends is written to standard output.  Keepalive pings
from the host are answered by the websocket library with a pong carrying
the same payload; the client sends no pings of its own.

Interrupt handling
------------------
SIGINT and SIGTERM are routed to ``interrupt()``.  Normal end of the channel
and an interrupt race for one shared future; whichever resolves it first
decides how the session is torn down, and teardown runs exactly once.  On
interrupt a best-effort ``POST /stop`` is sent and the result is
``128 + signum``.

State machine: connecting -> open -> closing -> closed, or
connecting -> closed when interrupted or refused before the handshake.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
import sys
import threading
from collections.abc import Callable, Iterable
from typing import Any, BinaryIO

import httpx
from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, WebSocketException

from leviathan_client.models.session import VALID_SESSION_TRANSITIONS, SessionState

logger = logging.getLogger(__name__)

START_PATH = "/start"
STOP_PATH = "/stop"
DEFAULT_SIGNALS: tuple[int, ...] = (signal.SIGINT, signal.SIGTERM)


class InvalidSessionTransition(RuntimeError):
    """Raised when the session is moved to a state it cannot reach."""


class LiveSessionBridge:
    """Bridges local standard I/O to the host's live session channel.

    Parameters
    ----------
    ws_base_url:
        ``ws://host[:port]`` of the test-execution host.
    http_client:
        Client used for the stop request; its ``base_url`` must point at
        the same host.  The caller owns it.
    stdin, stdout:
        Byte streams to bridge.  Default to the process's standard streams.
    signals:
        Signals treated as an interrupt.
    connect_factory:
        Opens the websocket; ``websockets.asyncio.client.connect`` by default.
    """

    def __init__(
        self,
        ws_base_url: str,
        http_client: httpx.AsyncClient,
        *,
        stdin: BinaryIO | None = None,
        stdout: BinaryIO | None = None,
        signals: Iterable[int] = DEFAULT_SIGNALS,
        connect_factory: Callable[..., Any] = connect,
        read_size: int = 4096,
    ) -> None:
        self._url = f"{ws_base_url}{START_PATH}"
        self._http = http_client
        self._stdin = stdin if stdin is not None else sys.stdin.buffer
        self._stdout = stdout if stdout is not None else sys.stdout.buffer
        self._signals = tuple(signals)
        self._connect = connect_factory
        self._read_size = read_size

        self._state = SessionState.CONNECTING
        # Resolved once: signal number on interrupt, None on normal end.
        self._finished: asyncio.Future[int | None] | None = None

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def url(self) -> str:
        return self._url

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def run(self) -> int:
        """Run the session to its end and return the process exit code."""
        if self._finished is not None:
            raise RuntimeError("LiveSessionBridge.run() may only be called once")

        loop = asyncio.get_running_loop()
        self._finished = loop.create_future()
        installed = self._install_signal_handlers(loop)
        try:
            return await self._run()
        finally:
            for signum in installed:
                loop.remove_signal_handler(signum)
            self._force_closed()

    def interrupt(self, signum: int) -> None:
        """Handle an external interrupt.  Safe to call at any time."""
        if (
            self._state is SessionState.CLOSED
            or self._finished is None
            or self._finished.done()
        ):
            logger.debug("Ignoring signal %d: session already finishing", signum)
            return
        logger.info("Received signal %d, stopping the test run", signum)
        self._finished.set_result(signum)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def _run(self) -> int:
        assert self._finished is not None
        opening = asyncio.ensure_future(self._open_channel())
        await asyncio.wait({opening, self._finished}, return_when=asyncio.FIRST_COMPLETED)

        if self._finished.done():
            signum = self._finished.result()
            await self._abandon(opening)
            await self._request_stop()
            self._transition(SessionState.CLOSED)
            return 128 + signum

        channel = opening.result()
        self._transition(SessionState.OPEN)
        logger.info("Live session open at %s", self._url)
        return await self._bridge(channel)

    async def _open_channel(self) -> ClientConnection:
        return await self._connect(self._url, ping_interval=None, max_size=None)

    async def _abandon(self, opening: asyncio.Future[ClientConnection]) -> None:
        """Drop a handshake that lost the race against an interrupt."""
        opening.cancel()
        with contextlib.suppress(asyncio.CancelledError, OSError, WebSocketException):
            channel = await opening
            await channel.close()

    async def _bridge(self, channel: ClientConnection) -> int:
        assert self._finished is not None
        outbound = asyncio.ensure_future(self._forward_input(channel))
        inbound = asyncio.ensure_future(self._forward_output(channel))
        inbound.add_done_callback(lambda _task: self._resolve(None))

        signum = await self._finished

        self._transition(SessionState.CLOSING)
        if signum is not None:
            await self._request_stop()
        outbound.cancel()
        inbound.cancel()
        results = await asyncio.gather(outbound, inbound, return_exceptions=True)
        await channel.close()
        self._transition(SessionState.CLOSED)
        logger.info("Live session closed")

        if signum is not None:
            return 128 + signum
        for result in results:
            if isinstance(result, Exception):
                raise result
        return 0

    def _resolve(self, signum: int | None) -> None:
        if self._finished is not None and not self._finished.done():
            self._finished.set_result(signum)

    async def _request_stop(self) -> None:
        try:
            response = await self._http.post(STOP_PATH)
        except httpx.HTTPError as exc:
            logger.warning("Stop request failed: %s", exc)
            return
        logger.info("Stop requested (HTTP %d)", response.status_code)

    # ------------------------------------------------------------------
    # Pumps
    # ------------------------------------------------------------------

    async def _forward_input(self, channel: ClientConnection) -> None:
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue[bytes] = asyncio.Queue()
        reader = threading.Thread(
            target=self._read_input,
            args=(loop, queue),
            name="leviathan-stdin",
            daemon=True,
        )
        reader.start()

        while True:
            chunk = await queue.get()
            if not chunk:
                logger.debug("Standard input reached EOF")
                return
            try:
                await channel.send(chunk)
            except ConnectionClosed:
                return

    def _read_input(self, loop: asyncio.AbstractEventLoop, queue: asyncio.Queue[bytes]) -> None:
        # Runs on a daemon thread: a blocking read must not keep the
        # process alive once the session is over.
        read = getattr(self._stdin, "read1", self._stdin.read)
        while True:
            try:
                chunk = read(self._read_size)
            except (OSError, ValueError) as exc:
                logger.debug("Standard input unreadable: %s", exc)
                chunk = b""
            try:
                loop.call_soon_threadsafe(queue.put_nowait, chunk)
            except RuntimeError:
                return  # loop closed
            if not chunk:
                return

    async def _forward_output(self, channel: ClientConnection) -> None:
        try:
            async for message in channel:
                data = message.encode("utf-8") if isinstance(message, str) else message
                self._stdout.write(data)
                self._stdout.flush()
        except ConnectionClosed as exc:
            logger.info("Live session channel dropped: %s", exc)

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    def _transition(self, target: SessionState) -> None:
        allowed = VALID_SESSION_TRANSITIONS[self._state]
        if target not in allowed:
            raise InvalidSessionTransition(
                f"Cannot move session from {self._state.value} to {target.value}. "
                f"Allowed: {[s.value for s in allowed]}"
            )
        logger.debug("Session %s -> %s", self._state.value, target.value)
        self._state = target

    def _force_closed(self) -> None:
        if self._state is SessionState.OPEN:
            self._transition(SessionState.CLOSING)
        if self._state is not SessionState.CLOSED:
            self._transition(SessionState.CLOSED)

    def _install_signal_handlers(self, loop: asyncio.AbstractEventLoop) -> list[int]:
        installed: list[int] = []
        for signum in self._signals:
            try:
                loop.add_signal_handler(signum, self.interrupt, signum)
            except (NotImplementedError, RuntimeError, ValueError) as exc:
                logger.debug("Cannot handle signal %d here: %s", signum, exc)
                continue
            installed.append(signum)
        return installed
