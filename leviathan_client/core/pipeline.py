"""Artifact pipeline — validate, normalize, hash and upload every artifact.

Artifacts are processed strictly one after another, in the order the run
context lists them.  The first artifact that is not accepted aborts the
run; nothing after it is uploaded.
"""

from __future__ import annotations

import logging
import shutil
import threading
from pathlib import Path

from leviathan_client.bridge.upload import UploadProtocolClient
from leviathan_client.core.cancellation import run_in_thread
from leviathan_client.core.hasher import hash_directory, hash_file
from leviathan_client.core.normalizer import ArtifactNormalizer
from leviathan_client.models.artifacts import (
    Artifact,
    ArtifactKind,
    DirectoryArtifact,
)
from leviathan_client.models.context import RunContext
from leviathan_client.models.outcomes import ArtifactReport
from leviathan_client.monitor.progress import NullProgressReporter, ProgressReporter

logger = logging.getLogger(__name__)


class InvalidArtifactError(ValueError):
    """Raised when an artifact path does not have its declared kind."""


class ArtifactUploadError(RuntimeError):
    """Raised when the host does not accept an artifact."""

    def __init__(self, artifact_name: str, reason: str) -> None:
        super().__init__(f"{artifact_name}: {reason}")
        self.artifact_name = artifact_name
        self.reason = reason


def reset_workdir(workdir: Path) -> None:
    """Empty *workdir*, creating it if needed."""
    workdir = Path(workdir)
    if workdir.exists():
        for child in workdir.iterdir():
            if child.is_dir() and not child.is_symlink():
                shutil.rmtree(child)
            else:
                child.unlink()
    else:
        workdir.mkdir(parents=True)


def validate_artifact(artifact: Artifact) -> None:
    """Check that the artifact's path exists with the declared kind."""
    path = Path(artifact.source_path)
    kind = ArtifactKind(artifact.kind)
    matches = path.is_dir() if kind is ArtifactKind.DIRECTORY else path.is_file()
    if not matches:
        raise InvalidArtifactError(
            f"{path} does not satisfy {kind.value} (artifact {artifact.name!r})"
        )


class ArtifactPipeline:
    """Drives every artifact of a run through to the host.

    Parameters
    ----------
    context:
        The run context: working directory, artifacts, exclude list.
    uploader:
        Client for the upload endpoint.
    normalizer:
        Image normalizer; one writing into ``context.workdir`` is built if
        not provided.
    reporter:
        Progress side channel, used for the hashing spinner.
    """

    def __init__(
        self,
        context: RunContext,
        uploader: UploadProtocolClient,
        *,
        normalizer: ArtifactNormalizer | None = None,
        reporter: ProgressReporter | None = None,
    ) -> None:
        self._context = context
        self._uploader = uploader
        self._reporter = reporter or NullProgressReporter()
        self._normalizer = normalizer or ArtifactNormalizer(
            context.workdir, reporter=self._reporter
        )

    async def run(self) -> list[ArtifactReport]:
        """Process all artifacts in order.

        Raises
        ------
        InvalidArtifactError
            If an artifact path is missing or of the wrong kind.
        ArtifactUploadError
            On the first artifact the host does not accept.
        OSError
            If an artifact cannot be read or the working directory written.
        """
        reset_workdir(self._context.workdir)

        reports: list[ArtifactReport] = []
        for artifact in self._context.artifacts:
            reports.append(await self._process(artifact))
        return reports

    async def _process(self, artifact: Artifact) -> ArtifactReport:
        logger.info("Handling artifact %s from %s", artifact.name, artifact.source_path)
        validate_artifact(artifact)

        normalized = await run_in_thread(self._normalizer.normalize, artifact)

        with self._reporter.status(f"Calculating hash of {artifact.name}"):
            content_hash = await run_in_thread(self._hash, normalized)

        outcome = await self._uploader.upload(normalized, content_hash)
        if not outcome.ok:
            raise ArtifactUploadError(artifact.name, outcome.reason)
        return ArtifactReport(name=artifact.name, content_hash=content_hash, outcome=outcome)

    def _hash(self, artifact: Artifact, *, cancel: threading.Event | None = None) -> str:
        if isinstance(artifact, DirectoryArtifact):
            return hash_directory(
                artifact.source_path,
                artifact.name,
                self._context.exclude_names,
                cancel=cancel,
            ).aggregate_hash
        return hash_file(artifact.source_path, cancel=cancel)
