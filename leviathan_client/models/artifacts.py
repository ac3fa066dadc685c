"""Artifact models — the payloads transferred to the test-execution host.

An artifact is either a single file or a directory tree.  The two kinds are
a discriminated union on ``kind`` so each variant carries only the fields it
needs and is validated when it is built, not when it is used.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ArtifactKind(str, Enum):
    """Filesystem shape an artifact must have."""

    FILE = "file"
    DIRECTORY = "directory"


class _ArtifactBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str  # logical identifier, e.g. "suite", "config.json", "image"
    source_path: Path

    @field_validator("name")
    @classmethod
    def _name_is_single_segment(cls, value: str) -> str:
        if not value or "/" in value:
            raise ValueError(
                f"artifact name must be a non-empty single path segment, got {value!r}"
            )
        return value


class FileArtifact(_ArtifactBase):
    """A single file, archived under an entry named after ``name``."""

    kind: Literal["file"] = "file"
    compress_before_upload: bool = False


class DirectoryArtifact(_ArtifactBase):
    """A directory tree, archived recursively with ``name`` as its root."""

    kind: Literal["directory"] = "directory"


Artifact = Annotated[
    Union[FileArtifact, DirectoryArtifact], Field(discriminator="kind")
]


class ManifestEntry(BaseModel):
    """One file of a directory artifact.

    ``relative_path`` is rooted at the artifact's logical name rather than
    its filesystem location, so two machines agree on it.
    """

    model_config = ConfigDict(frozen=True)

    relative_path: str  # "suite/a/x.txt"
    content_hash: str  # md5 hex


class DirectoryDigest(BaseModel):
    """Aggregate hash of a directory together with the ordered manifest."""

    model_config = ConfigDict(frozen=True)

    aggregate_hash: str
    entries: list[ManifestEntry]
