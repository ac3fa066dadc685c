"""``leviathan hash PATH`` — show the hash the client would send for PATH.

For a directory, also lists the manifest in the order the aggregate hash is
computed, which makes cache misses on the host easy to diagnose.
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.table import Table

from leviathan_client.cli.console import console, out
from leviathan_client.config import settings
from leviathan_client.core.hasher import hash_directory, hash_file


def hash_cmd(
    path: Path = typer.Argument(
        ...,
        exists=True,
        help="File or directory to hash.",
    ),
    name: str = typer.Option(
        None,
        "--name",
        "-n",
        help="Logical artifact name for directories (defaults to the directory name).",
    ),
    manifest: bool = typer.Option(
        True,
        "--manifest/--no-manifest",
        help="List the per-file hashes of a directory.",
    ),
) -> None:
    """Print the content hash of a file or the aggregate hash of a directory."""
    if not path.is_dir():
        out.print(hash_file(path))
        return

    digest = hash_directory(path, name or path.name, settings.exclude_names)

    if manifest:
        table = Table(title=f"Manifest ({len(digest.entries)} files)", header_style="bold cyan")
        table.add_column("#", style="dim", justify="right")
        table.add_column("Path")
        table.add_column("MD5", style="dim")
        for i, entry in enumerate(digest.entries):
            table.add_row(str(i), entry.relative_path, entry.content_hash)
        console.print(table)

    # Printed plainly for scripting
    out.print(digest.aggregate_hash)
