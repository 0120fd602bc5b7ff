"""Tests for the server directory layout and atomic writes."""

from __future__ import annotations

import hashlib
from pathlib import Path

import pytest

from tako.core.hasher import format_digest, parse_digest, sha256_chunks, sha256_file
from tako.core.layout import (
    ServerDirectory,
    atomic_write,
    atomic_writer,
    blob_relpath,
    manifest_name,
    manifest_relpath,
    version_from_name,
)
from tako.core.version import Version


class TestNames:
    @pytest.mark.parametrize(
        "raw", ["1.0", "2021-03-01", "a/b", "..", ".", ".hidden", "1 0", "ü", "%2E", "x?y#z"]
    )
    def test_reversible(self, raw: str):
        assert version_from_name(manifest_name(raw)) == Version(raw)

    @pytest.mark.parametrize("raw", ["..", ".", ".tmp-abc", ".lock", "a/../b"])
    def test_path_safe(self, raw: str):
        name = manifest_name(raw)
        assert "/" not in name
        assert not name.startswith(".")

    def test_plain_version_is_unchanged(self):
        assert manifest_name(Version("1.0.2")) == "1.0.2"

    def test_relpaths(self):
        digest = hashlib.sha256(b"x").digest()
        assert manifest_relpath("1.0") == "manifests/1.0"
        assert blob_relpath(digest) == f"blobs/{digest.hex()[:2]}/{digest.hex()}"


class TestHasher:
    def test_file_and_chunks_agree(self, tmp_path: Path):
        data = b"abc" * 100_000
        p = tmp_path / "f"
        p.write_bytes(data)
        assert sha256_file(p) == hashlib.sha256(data).digest()
        assert sha256_chunks([data[:7], data[7:]]) == hashlib.sha256(data).digest()

    def test_digest_text(self):
        digest = hashlib.sha256(b"x").digest()
        assert parse_digest(format_digest(digest)) == digest
        assert parse_digest(digest.hex()) == digest

    @pytest.mark.parametrize("text", ["", "sha256:", "sha256:zz" + "0" * 62, "sha256:" + "AB" * 32])
    def test_bad_digest_text(self, text: str):
        with pytest.raises(ValueError):
            parse_digest(text)


class TestAtomicWrite:
    def test_creates_parents(self, tmp_path: Path):
        target = tmp_path / "a" / "b" / "file"
        atomic_write(target, b"data")
        assert target.read_bytes() == b"data"

    def test_replaces_existing(self, tmp_path: Path):
        target = tmp_path / "file"
        target.write_bytes(b"old")
        atomic_write(target, b"new")
        assert target.read_bytes() == b"new"

    def test_failure_keeps_old_content_and_cleans_up(self, tmp_path: Path):
        target = tmp_path / "file"
        target.write_bytes(b"old")
        with pytest.raises(RuntimeError):
            with atomic_writer(target) as fh:
                fh.write(b"half")
                raise RuntimeError("interrupted")
        assert target.read_bytes() == b"old"
        assert [p.name for p in tmp_path.iterdir()] == ["file"]


class TestServerDirectory:
    def test_empty(self, tmp_path: Path):
        server = ServerDirectory(tmp_path / "nothing")
        assert server.list_manifest_names() == []

    def test_manifests_and_index(self, server: ServerDirectory):
        server.write_manifest(Version("1.1"), b"b")
        server.write_manifest(Version("1.0"), b"a")
        (server.base / "manifests" / ".tmp-inflight").write_bytes(b"partial")
        assert server.write_index() == ["1.0", "1.1"]
        assert server.index_path.read_text() == "1.0\n1.1\n"
        assert server.read_manifest_bytes("1.0") == b"a"

    def test_blob_write_and_verify(self, server: ServerDirectory, tmp_path: Path):
        source = tmp_path / "image"
        source.write_bytes(b"image bytes")
        digest = sha256_file(source)
        assert not server.has_blob(digest)
        path = server.write_blob_from(source, digest)
        assert path == server.blob_path(digest)
        assert server.verify_blob(digest)

    def test_corrupt_blob_fails_verification(self, server: ServerDirectory, tmp_path: Path):
        source = tmp_path / "image"
        source.write_bytes(b"image bytes")
        digest = sha256_file(source)
        server.write_blob_from(source, digest)
        server.blob_path(digest).write_bytes(b"bit rot")
        assert server.has_blob(digest)
        assert not server.verify_blob(digest)

    def test_blob_source_changed(self, server: ServerDirectory, tmp_path: Path):
        source = tmp_path / "image"
        source.write_bytes(b"original")
        digest = sha256_file(source)
        source.write_bytes(b"modified")
        with pytest.raises(ValueError):
            server.write_blob_from(source, digest)
        assert not server.has_blob(digest)
        assert list(server.blob_path(digest).parent.iterdir()) == []
