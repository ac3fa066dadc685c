"""Tests for the upload protocol client and its line decoder."""

from __future__ import annotations

import asyncio
import gzip
import io
import os
import socket
import tarfile
from collections.abc import AsyncIterator
from pathlib import Path

import pytest

from leviathan_client.bridge.upload import (
    LineProtocolDecoder,
    UploadProtocolClient,
    iter_fields,
)
from leviathan_client.models.artifacts import DirectoryArtifact, FileArtifact
from leviathan_client.models.outcomes import UploadStatus


# ---------------------------------------------------------------------------
# Line decoder
# ---------------------------------------------------------------------------


class TestLineProtocolDecoder:
    def test_complete_lines(self):
        decoder = LineProtocolDecoder()
        assert decoder.feed(b"upload: done\nerror: boom\n") == [
            ("upload", "done"),
            ("error", "boom"),
        ]

    def test_line_split_across_chunks(self):
        decoder = LineProtocolDecoder()
        assert decoder.feed(b"upl") == []
        assert decoder.feed(b"oad: ca") == []
        assert decoder.feed(b"che\n") == [("upload", "cache")]

    def test_unterminated_line_is_returned_on_flush(self):
        decoder = LineProtocolDecoder()
        assert decoder.feed(b"error: bad hash") == []
        assert decoder.flush() == [("error", "bad hash")]
        assert decoder.flush() == []

    def test_non_matching_lines_are_ignored(self):
        decoder = LineProtocolDecoder()
        fields = decoder.feed(b"hello world\nProgress: 50\nstatus: extracting\n\n")
        assert fields == [("status", "extracting")]

    def test_crlf_and_value_with_colons(self):
        decoder = LineProtocolDecoder()
        assert decoder.feed(b"error: disk: full\r\n") == [("error", "disk: full")]


@pytest.mark.asyncio
async def test_iter_fields_yields_as_lines_complete():
    async def chunks() -> AsyncIterator[bytes]:
        yield b"status: rec"
        yield b"eiving\nupload: "
        yield b"done"

    assert [f async for f in iter_fields(chunks())] == [
        ("status", "receiving"),
        ("upload", "done"),
    ]


# ---------------------------------------------------------------------------
# Upload client
# ---------------------------------------------------------------------------


def _free_port() -> int:
    with socket.socket() as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


def _uploader(host, **kwargs) -> UploadProtocolClient:
    kwargs.setdefault("settle_delay", 0)
    return UploadProtocolClient(host.base_url, **kwargs)


@pytest.mark.asyncio
class TestUploadProtocolClient:
    async def test_sends_name_and_hash_headers(self, make_host, config_file: Path):
        host = await make_host()
        artifact = FileArtifact(name="config.json", source_path=config_file)

        outcome = await _uploader(host).upload(artifact, "abc123")

        assert outcome.status is UploadStatus.UPLOADED
        assert [(name, digest) for name, digest, _ in host.uploads] == [("config.json", "abc123")]

    async def test_body_is_gzip_tar_of_the_artifact(self, make_host, suite_dir: Path):
        host = await make_host()
        artifact = DirectoryArtifact(name="suite", source_path=suite_dir)

        await _uploader(host, exclude_names=("node_modules", "package-lock.json")).upload(
            artifact, "h"
        )

        body = host.uploads[0][2]
        with tarfile.open(fileobj=io.BytesIO(gzip.decompress(body)), mode="r:") as tar:
            assert sorted(tar.getnames()) == ["suite", "suite/a", "suite/a/x.txt", "suite/a/y.txt"]

    async def test_cache_line_resolves_cached(self, make_host, config_file: Path):
        host = await make_host({"config.json": b"upload: cache\n"})
        artifact = FileArtifact(name="config.json", source_path=config_file)

        outcome = await _uploader(host).upload(artifact, "h")

        assert outcome.status is UploadStatus.CACHED
        assert outcome.ok

    async def test_early_cache_stops_sending_the_body(self, make_host, tmp_dir: Path):
        big = tmp_dir / "os.img"
        big.write_bytes(os.urandom(32 * 1024 * 1024))
        artifact = FileArtifact(name="image", source_path=big)
        host = await make_host({"image": b"upload: cache\n"}, answer_early=True)

        outcome = await asyncio.wait_for(
            _uploader(host, compression_level=1).upload(artifact, "h"), timeout=30
        )
        await host.settled()

        assert outcome.status is UploadStatus.CACHED
        # Random data does not compress: a full upload would exceed the file size.
        received = host.uploads[0][2]
        assert len(received) < big.stat().st_size // 2

    async def test_early_error_stops_sending_the_body(self, make_host, tmp_dir: Path):
        big = tmp_dir / "os.img"
        big.write_bytes(os.urandom(32 * 1024 * 1024))
        artifact = FileArtifact(name="image", source_path=big)
        host = await make_host({"image": b"error: hash mismatch\n"}, answer_early=True)

        outcome = await asyncio.wait_for(
            _uploader(host, compression_level=1).upload(artifact, "h"), timeout=30
        )
        await host.settled()

        assert outcome.status is UploadStatus.FAILED
        assert outcome.reason == "hash mismatch"
        assert len(host.uploads[0][2]) < big.stat().st_size // 2

    async def test_error_line_resolves_failed_with_message(self, make_host, config_file: Path):
        host = await make_host(
            {"config.json": b"upload: receiving\nerror: bad hash\nupload: done\n"}
        )
        artifact = FileArtifact(name="config.json", source_path=config_file)

        outcome = await _uploader(host).upload(artifact, "h")

        assert outcome.status is UploadStatus.FAILED
        assert outcome.reason == "bad hash"
        assert not outcome.ok

    async def test_done_waits_for_end_of_response(self, make_host, config_file: Path):
        host = await make_host({"config.json": b"upload: done\nstatus: indexing\n"})
        artifact = FileArtifact(name="config.json", source_path=config_file)
        outcome = await _uploader(host).upload(artifact, "h")
        assert outcome.status is UploadStatus.UPLOADED

    async def test_unknown_keys_are_ignored(self, make_host, config_file: Path):
        host = await make_host({"config.json": b"progress: 10\nnote: hi\nupload: done\n"})
        artifact = FileArtifact(name="config.json", source_path=config_file)
        outcome = await _uploader(host).upload(artifact, "h")
        assert outcome.status is UploadStatus.UPLOADED

    async def test_response_without_result_fails(self, make_host, config_file: Path):
        host = await make_host({"config.json": (502, b"Bad Gateway")})
        artifact = FileArtifact(name="config.json", source_path=config_file)

        outcome = await _uploader(host).upload(artifact, "h")

        assert outcome.status is UploadStatus.FAILED
        assert "502" in outcome.reason

    async def test_refused_connection_resolves_failed(self, config_file: Path):
        uploader = UploadProtocolClient(f"http://127.0.0.1:{_free_port()}", settle_delay=0)
        artifact = FileArtifact(name="config.json", source_path=config_file)

        outcome = await uploader.upload(artifact, "h")

        assert outcome.status is UploadStatus.FAILED
        assert outcome.reason.startswith("transport error")

    async def test_missing_source_is_fatal(self, make_host, tmp_dir: Path):
        host = await make_host()
        artifact = FileArtifact(name="config.json", source_path=tmp_dir / "gone.json")
        with pytest.raises(OSError):
            await _uploader(host).upload(artifact, "h")
