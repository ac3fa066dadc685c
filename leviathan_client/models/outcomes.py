"""Upload outcome models."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict


class UploadStatus(str, Enum):
    """Terminal state of a single artifact transfer."""

    CACHED = "cached"
    UPLOADED = "uploaded"
    FAILED = "failed"


class UploadOutcome(BaseModel):
    """Result of one ``UploadProtocolClient.upload`` call.

    ``reason`` is only populated for ``FAILED``.
    """

    model_config = ConfigDict(frozen=True)

    status: UploadStatus
    reason: str = ""

    @classmethod
    def cached(cls) -> UploadOutcome:
        return cls(status=UploadStatus.CACHED)

    @classmethod
    def uploaded(cls) -> UploadOutcome:
        return cls(status=UploadStatus.UPLOADED)

    @classmethod
    def failed(cls, reason: str) -> UploadOutcome:
        return cls(status=UploadStatus.FAILED, reason=reason)

    @property
    def ok(self) -> bool:
        """Whether the host now holds the artifact."""
        return self.status != UploadStatus.FAILED


class ArtifactReport(BaseModel):
    """What the pipeline did with one artifact."""

    model_config = ConfigDict(frozen=True)

    name: str
    content_hash: str
    outcome: UploadOutcome
