"""Leviathan client data models — all Pydantic v2, all frozen (immutable)."""

from leviathan_client.models.artifacts import (
    Artifact,
    ArtifactKind,
    DirectoryArtifact,
    DirectoryDigest,
    FileArtifact,
    ManifestEntry,
)
from leviathan_client.models.context import (
    CONFIG_ARTIFACT,
    DEFAULT_EXCLUDE_NAMES,
    IMAGE_ARTIFACT,
    SUITE_ARTIFACT,
    RunContext,
    default_artifacts,
)
from leviathan_client.models.outcomes import ArtifactReport, UploadOutcome, UploadStatus
from leviathan_client.models.session import VALID_SESSION_TRANSITIONS, SessionState

__all__ = [
    # artifacts
    "Artifact",
    "ArtifactKind",
    "FileArtifact",
    "DirectoryArtifact",
    "ManifestEntry",
    "DirectoryDigest",
    # context
    "RunContext",
    "default_artifacts",
    "SUITE_ARTIFACT",
    "CONFIG_ARTIFACT",
    "IMAGE_ARTIFACT",
    "DEFAULT_EXCLUDE_NAMES",
    # outcomes
    "UploadStatus",
    "UploadOutcome",
    "ArtifactReport",
    # session
    "SessionState",
    "VALID_SESSION_TRANSITIONS",
]
