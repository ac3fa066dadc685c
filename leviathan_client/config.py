"""Client configuration — env-driven defaults for every run.

Centralized settings using pydantic-settings.  Reads from a .env file and
LEVIATHAN_* environment variables; command-line options override both.
"""

from __future__ import annotations

import tempfile
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ClientSettings(BaseSettings):
    """Client configuration with environment variable overrides.

    Examples
    --------
    Override via environment::

        export LEVIATHAN_URL=leviathan.local:8080
        export LEVIATHAN_LOG_LEVEL=DEBUG
        export LEVIATHAN_SETTLE_DELAY_SECONDS=0
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="LEVIATHAN_",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Remote host, as host[:port]
    url: str = "localhost"

    # Scratch directory, emptied at the start of every run
    workdir: Path = Path(tempfile.gettempdir()) / "run"

    log_level: str = "WARNING"

    # Transfer tuning
    compression_level: int = Field(default=6, ge=1, le=9)
    settle_delay_seconds: float = Field(default=1.0, ge=0)
    connect_timeout_seconds: float = Field(default=10.0, gt=0)
    chunk_size: int = Field(default=64 * 1024, gt=0)
    max_queued_chunks: int = Field(default=16, gt=0)

    # Irreproducible byte-for-byte across installs, so never hashed or sent
    exclude_names: list[str] = ["node_modules", "package-lock.json"]


# Module-level instance, import as `from leviathan_client.config import settings`
settings = ClientSettings()
