"""Run orchestrator — the pipeline followed by the live session.

The Runner wires the normalizer, upload client, pipeline and session
bridge for one run and returns the process exit code.  Uploads use their
own connection per artifact; the ``httpx.AsyncClient`` serves the session's
stop request.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any, BinaryIO

import httpx
from websockets.asyncio.client import connect

from leviathan_client.bridge.session import LiveSessionBridge
from leviathan_client.bridge.upload import UploadProtocolClient
from leviathan_client.config import ClientSettings
from leviathan_client.core.normalizer import ArtifactNormalizer
from leviathan_client.core.pipeline import ArtifactPipeline
from leviathan_client.models.context import RunContext
from leviathan_client.models.outcomes import ArtifactReport
from leviathan_client.monitor.progress import NullProgressReporter, ProgressReporter

logger = logging.getLogger(__name__)


class Runner:
    """Executes one run against the test-execution host.

    Parameters
    ----------
    context:
        Where the artifacts and the working directory live.
    settings:
        Transfer tuning (compression, delays, queue depth, timeouts).
    reporter:
        Progress side channel.
    on_uploaded:
        Called with the per-artifact reports before the session starts.
    """

    def __init__(
        self,
        context: RunContext,
        settings: ClientSettings | None = None,
        *,
        reporter: ProgressReporter | None = None,
        stdin: BinaryIO | None = None,
        stdout: BinaryIO | None = None,
        connect_factory: Callable[..., Any] = connect,
        on_uploaded: Callable[[list[ArtifactReport]], None] | None = None,
    ) -> None:
        self.context = context
        self.settings = settings or ClientSettings()
        self._reporter = reporter or NullProgressReporter()
        self._stdin = stdin
        self._stdout = stdout
        self._connect_factory = connect_factory
        self._on_uploaded = on_uploaded
        self.reports: list[ArtifactReport] = []

    async def execute(self) -> int:
        """Upload every artifact, then bridge the live session.

        Returns the session's exit code: 0, or ``128 + signum`` when
        interrupted.  Pipeline failures propagate as exceptions.
        """
        timeout = httpx.Timeout(None, connect=self.settings.connect_timeout_seconds)
        async with httpx.AsyncClient(
            base_url=self.context.http_base_url,
            timeout=timeout,
        ) as client:
            pipeline = ArtifactPipeline(
                self.context,
                self._build_uploader(),
                normalizer=ArtifactNormalizer(
                    self.context.workdir,
                    compression_level=self.settings.compression_level,
                    chunk_size=self.settings.chunk_size,
                    reporter=self._reporter,
                ),
                reporter=self._reporter,
            )
            self.reports = await pipeline.run()
            logger.info("All %d artifacts accepted", len(self.reports))
            if self._on_uploaded is not None:
                self._on_uploaded(self.reports)

            bridge = LiveSessionBridge(
                self.context.ws_base_url,
                client,
                stdin=self._stdin,
                stdout=self._stdout,
                connect_factory=self._connect_factory,
            )
            return await bridge.run()

    def _build_uploader(self) -> UploadProtocolClient:
        return UploadProtocolClient(
            self.context.http_base_url,
            exclude_names=self.context.exclude_names,
            compression_level=self.settings.compression_level,
            max_queued_chunks=self.settings.max_queued_chunks,
            chunk_size=self.settings.chunk_size,
            connect_timeout=self.settings.connect_timeout_seconds,
            settle_delay=self.settings.settle_delay_seconds,
            reporter=self._reporter,
        )
