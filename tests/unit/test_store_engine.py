"""Tests for publishing into a server directory."""

from __future__ import annotations

from pathlib import Path

import pytest

from tako.core import manifest as manifest_codec
from tako.core.hasher import sha256_hex
from tako.core.keys import PublicKey
from tako.core.layout import ServerDirectory
from tako.core.store import find_conflict, store
from tako.core.version import Version
from tako.errors import Duplicate, MalformedVersion, StoreIoError


class TestPublish:
    def test_creates_manifest_blob_and_index(self, publish, server: ServerDirectory, public_key: PublicKey):
        result = publish("1.0", b"image one")
        assert result.created and result.blob_created
        assert result.manifest_path == server.manifest_path("1.0")
        assert result.blob_path.read_bytes() == b"image one"
        assert result.blob_path.name == sha256_hex(b"image one")
        assert server.index_path.read_text() == "1.0\n"
        manifest_codec.verify(result.manifest, public_key)

    def test_manifest_on_disk_matches_result(self, publish):
        result = publish("1.0", b"image one")
        assert manifest_codec.parse_manifest(result.manifest_path.read_bytes()) == result.manifest

    def test_index_lists_all_versions(self, publish, server: ServerDirectory):
        publish("1.0", b"a")
        publish("1.1", b"b")
        publish("2.0", b"c")
        assert server.index_path.read_text().splitlines() == ["1.0", "1.1", "2.0"]

    def test_blob_shared_between_versions(self, publish, server: ServerDirectory):
        first = publish("1.0", b"same")
        second = publish("1.0-again", b"same")
        assert second.created
        assert not second.blob_created
        assert first.blob_path == second.blob_path
        assert len(list((server.base / "blobs").rglob("*"))) == 2  # one shard dir, one blob

    def test_unusual_version_names(self, publish, server: ServerDirectory):
        result = publish("../etc/passwd", b"x")
        assert result.manifest_path.parent == server.base / "manifests"
        assert server.list_manifest_names() == ["%2E.%2Fetc%2Fpasswd"]

    def test_key_is_wiped(self, tmp_path: Path, make_secret):
        image = tmp_path / "img"
        image.write_bytes(b"x")
        sk = make_secret()
        store(image, "1.0", sk, tmp_path / "out")
        assert sk.is_wiped


class TestIdempotence:
    def test_same_version_same_content(self, publish, server: ServerDirectory):
        first = publish("1.0", b"image")
        before = first.manifest_path.read_bytes()
        second = publish("1.0", b"image")
        assert not second.created
        assert second.manifest == first.manifest
        assert first.manifest_path.read_bytes() == before

    def test_republish_repairs_missing_blob(self, publish):
        first = publish("1.0", b"image")
        first.blob_path.unlink()
        second = publish("1.0", b"image")
        assert second.blob_created
        assert first.blob_path.read_bytes() == b"image"

    def test_republish_repairs_stale_index(self, publish, server: ServerDirectory):
        """A publish that died before the index rewrite is completed by a rerun."""
        publish("1.0", b"image")
        server.index_path.write_text("")
        second = publish("1.0", b"image")
        assert not second.created
        assert server.index_path.read_text() == "1.0\n"


class TestConflicts:
    def test_same_version_different_content(self, publish, server: ServerDirectory):
        first = publish("1.0", b"original")
        before = first.manifest_path.read_bytes()
        with pytest.raises(Duplicate, match="different digest") as exc_info:
            publish("1.0", b"changed")
        assert exc_info.value.version == "1.0"
        assert first.manifest_path.read_bytes() == before
        assert len([p for p in (server.base / "blobs").rglob("*") if p.is_file()]) == 1

    def test_separator_collision(self, publish, server: ServerDirectory):
        publish("1.0", b"a")
        with pytest.raises(Duplicate, match="differ only in separators") as exc_info:
            publish("1-0", b"b")
        assert exc_info.value.existing == "1.0"
        assert server.list_manifest_names() == ["1.0"]

    def test_collision_even_with_same_content(self, publish):
        publish("2021.03.01", b"a")
        with pytest.raises(Duplicate):
            publish("2021-03-01", b"a")

    def test_unreadable_existing_manifest_still_occupies_version(self, publish, server: ServerDirectory):
        publish("1.0", b"a")
        server.manifest_path("1.0").write_bytes(b"garbage")
        with pytest.raises(Duplicate):
            publish("1.0", b"a")

    def test_find_conflict_free(self, server: ServerDirectory):
        assert find_conflict(server, Version("1.0"), b"\x00" * 32) == (None, None)


class TestStoreErrors:
    @pytest.mark.parametrize("version", ["", "1.0\n", " 1.0", "a\x00b"])
    def test_bad_version(self, tmp_path: Path, make_secret, version: str):
        image = tmp_path / "img"
        image.write_bytes(b"x")
        sk = make_secret()
        with pytest.raises(MalformedVersion):
            store(image, version, sk, tmp_path / "out")
        assert sk.is_wiped

    def test_missing_image(self, tmp_path: Path, make_secret):
        with pytest.raises(StoreIoError):
            store(tmp_path / "absent", "1.0", make_secret(), tmp_path / "out")
