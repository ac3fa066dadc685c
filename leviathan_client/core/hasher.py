"""Content hashing for artifacts.

Files are fingerprinted with MD5.  A directory is fingerprinted by the MD5 of
the concatenated per-file digests, ordered by the host's path comparator, so
client and host compute the same aggregate for the same tree wherever it
lives on disk.
"""

from __future__ import annotations

import functools
import hashlib
import logging
import os
import threading
from collections.abc import Iterable
from pathlib import Path

from leviathan_client.core.cancellation import raise_if_cancelled
from leviathan_client.models.artifacts import DirectoryDigest, ManifestEntry

logger = logging.getLogger(__name__)

_CHUNK_SIZE = 64 * 1024


def hash_file(
    path: Path,
    *,
    chunk_size: int = _CHUNK_SIZE,
    cancel: threading.Event | None = None,
) -> str:
    """Return the MD5 hex digest of a file's bytes.

    *cancel* is checked between chunks; once set, ``OperationCancelled``
    is raised.
    """
    digest = hashlib.md5()
    with open(path, "rb") as fh:
        for chunk in iter(lambda: fh.read(chunk_size), b""):
            raise_if_cancelled(cancel)
            digest.update(chunk)
    return digest.hexdigest()


def md5_hex(data: bytes) -> str:
    """Return the MD5 hex digest of raw bytes."""
    return hashlib.md5(data).hexdigest()


def collect_files(root: Path, exclude_names: Iterable[str] = ()) -> list[Path]:
    """Recursively list the files under *root*.

    Any entry whose name is in *exclude_names* is skipped, together with
    everything beneath it.  Symlinks are followed.  Each directory is read
    in byte order of its entry names, so the result is depth-first and does
    not depend on the order the filesystem lists entries in.

    Raises
    ------
    FileNotFoundError
        If *root* does not exist.
    """
    root = Path(root)
    if not root.exists():
        raise FileNotFoundError(f"Directory not found: {root}")

    excluded = frozenset(exclude_names)
    files: list[Path] = []

    def _walk(directory: Path) -> None:
        with os.scandir(directory) as it:
            listing = sorted(it, key=lambda e: os.fsencode(e.name))
        for entry in listing:
            if entry.name in excluded:
                continue
            if entry.is_file():
                files.append(Path(entry.path))
            elif entry.is_dir():
                _walk(Path(entry.path))

    _walk(root)
    return files


def compare_manifest_paths(a: str, b: str) -> int:
    """Segment-wise path comparator shared with the host.

    *a* sorts first only when every one of its segments is ``<=`` the
    segment of *b* at the same index.  A segment with no counterpart in *b*
    never compares ``<=``.  Never returns 0.

    This is not a total order; it is kept exactly as the host applies it.
    """
    split_a = a.split("/")
    split_b = b.split("/")
    for i, segment in enumerate(split_a):
        if i >= len(split_b) or not segment <= split_b[i]:
            return 1
    return -1


def sort_manifest(entries: Iterable[ManifestEntry]) -> list[ManifestEntry]:
    """Order manifest entries the way the host does."""
    return sorted(
        entries,
        key=functools.cmp_to_key(
            lambda x, y: compare_manifest_paths(x.relative_path, y.relative_path)
        ),
    )


def aggregate_hash(entries: Iterable[ManifestEntry]) -> str:
    """MD5 of the concatenated entry digests, in the given order."""
    return md5_hex("".join(e.content_hash for e in entries).encode("ascii"))


def hash_directory(
    root: Path,
    logical_name: str,
    exclude_names: Iterable[str] = (),
    *,
    chunk_size: int = _CHUNK_SIZE,
    cancel: threading.Event | None = None,
) -> DirectoryDigest:
    """Compute the aggregate hash and manifest of a directory artifact.

    Each file's path is rewritten so that *root* is replaced by
    *logical_name*; the result does not depend on where the tree lives or
    on the order the filesystem lists it in.
    """
    root = Path(root)
    entries = [
        ManifestEntry(
            relative_path=f"{logical_name}/{path.relative_to(root).as_posix()}",
            content_hash=hash_file(path, chunk_size=chunk_size, cancel=cancel),
        )
        for path in collect_files(root, exclude_names)
    ]
    ordered = sort_manifest(entries)
    digest = DirectoryDigest(aggregate_hash=aggregate_hash(ordered), entries=ordered)
    logger.debug(
        "Hashed %d files under %s as %s: %s",
        len(ordered),
        root,
        logical_name,
        digest.aggregate_hash,
    )
    return digest
