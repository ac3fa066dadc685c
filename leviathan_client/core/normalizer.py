"""Image normalization — make sure the image travels gzip-compressed.

Only artifacts flagged ``compress_before_upload`` are touched.  If their
source already starts with the gzip magic it is used as is; otherwise it is
streamed through gzip into the working directory.
"""

from __future__ import annotations

import gzip
import logging
import threading
from pathlib import Path

from leviathan_client.core.cancellation import OperationCancelled, raise_if_cancelled
from leviathan_client.models.artifacts import Artifact, FileArtifact
from leviathan_client.monitor.progress import NullProgressReporter, ProgressReporter

logger = logging.getLogger(__name__)

# ID1, ID2 and CM=deflate from RFC 1952
GZIP_MAGIC = b"\x1f\x8b\x08"


def is_gzip(path: Path) -> bool:
    """Return True if *path* starts with the gzip header magic."""
    with open(path, "rb") as fh:
        return fh.read(len(GZIP_MAGIC)) == GZIP_MAGIC


class ArtifactNormalizer:
    """Compresses artifacts that must be sent gzip-compressed.

    Parameters
    ----------
    workdir:
        Directory the compressed copy is written to, as ``workdir/<name>``.
    compression_level:
        gzip level used for the copy.
    reporter:
        Receives byte progress while compressing.
    """

    def __init__(
        self,
        workdir: Path,
        *,
        compression_level: int = 6,
        chunk_size: int = 64 * 1024,
        reporter: ProgressReporter | None = None,
    ) -> None:
        self._workdir = Path(workdir)
        self._compression_level = compression_level
        self._chunk_size = chunk_size
        self._reporter = reporter or NullProgressReporter()

    def normalize(
        self, artifact: Artifact, *, cancel: threading.Event | None = None
    ) -> Artifact:
        """Return the artifact to upload in place of *artifact*.

        Compression stops with ``OperationCancelled`` once *cancel* is set;
        the partial copy is removed.

        Raises
        ------
        OSError
            If the source cannot be read or the copy cannot be written.
        """
        if not isinstance(artifact, FileArtifact) or not artifact.compress_before_upload:
            return artifact

        if is_gzip(artifact.source_path):
            logger.info("%s is already gzip-compressed", artifact.source_path)
            return artifact

        destination = self._workdir / artifact.name
        self._compress(artifact.source_path, destination, cancel)
        return artifact.model_copy(update={"source_path": destination})

    def _compress(
        self, source: Path, destination: Path, cancel: threading.Event | None
    ) -> None:
        total = source.stat().st_size
        logger.info("Compressing %s into %s", source, destination)
        destination.parent.mkdir(parents=True, exist_ok=True)

        try:
            with self._reporter.track("Gzipping image", total) as advance:
                with open(source, "rb") as src, gzip.open(
                    destination, "wb", compresslevel=self._compression_level
                ) as dst:
                    for chunk in iter(lambda: src.read(self._chunk_size), b""):
                        raise_if_cancelled(cancel)
                        dst.write(chunk)
                        advance(len(chunk))
        except OperationCancelled:
            logger.info("Compression of %s cancelled", source)
            destination.unlink(missing_ok=True)
            raise
