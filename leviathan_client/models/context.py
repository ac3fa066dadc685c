"""Per-run context passed explicitly to every component."""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

from leviathan_client.models.artifacts import Artifact, DirectoryArtifact, FileArtifact

SUITE_ARTIFACT = "suite"
CONFIG_ARTIFACT = "config.json"
IMAGE_ARTIFACT = "image"

DEFAULT_EXCLUDE_NAMES: tuple[str, ...] = ("node_modules", "package-lock.json")


class RunContext(BaseModel):
    """Everything one run needs to know about where things live.

    ``artifacts`` is processed in list order.
    """

    model_config = ConfigDict(frozen=True)

    workdir: Path
    host: str = "localhost"
    artifacts: list[Artifact] = Field(default_factory=list)
    exclude_names: tuple[str, ...] = DEFAULT_EXCLUDE_NAMES

    @property
    def http_base_url(self) -> str:
        return f"http://{self.host}"

    @property
    def ws_base_url(self) -> str:
        return f"ws://{self.host}"


def default_artifacts(suite: Path, config: Path, image: Path) -> list[Artifact]:
    """Build the suite, config and image artifacts in upload order."""
    return [
        DirectoryArtifact(name=SUITE_ARTIFACT, source_path=suite),
        FileArtifact(name=CONFIG_ARTIFACT, source_path=config),
        FileArtifact(
            name=IMAGE_ARTIFACT, source_path=image, compress_before_upload=True
        ),
    ]
