"""Content-addressed server directory layout.

Layout of one image's server directory::

    {base}/index                        manifest file names, one per line
    {base}/manifests/{quoted version}   one manifest per published version
    {base}/blobs/{sha256[0:2]}/{sha256} one blob per distinct digest
    {base}/.lock                        advisory lock held by publishers

Manifests only *name* a digest; blobs are shared by every version whose
content hashes the same.  Every write goes to a temporary file in the target
directory which is fsynced and then renamed into place, so readers never see
a partial manifest, blob or index.
"""

from __future__ import annotations

import hashlib
import logging
import os
import tempfile
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import BinaryIO
from urllib.parse import quote, unquote

from tako.core.hasher import CHUNK_SIZE, sha256_file
from tako.core.version import Version

logger = logging.getLogger(__name__)

INDEX_NAME = "index"
MANIFESTS_DIR = "manifests"
BLOBS_DIR = "blobs"
LOCK_NAME = ".lock"
_TMP_PREFIX = ".tmp-"


def manifest_name(version: Version | str) -> str:
    """File name for a version's manifest; reversible and path-safe."""
    raw = version.raw if isinstance(version, Version) else version
    name = quote(raw, safe="")
    # No dot-files: keeps '.', '..' and the temp-file prefix out of the namespace
    if name.startswith("."):
        name = "%2E" + name[1:]
    return name


def version_from_name(name: str) -> Version:
    """Inverse of :func:`manifest_name`."""
    return Version.parse(unquote(name))


def manifest_relpath(version: Version | str) -> str:
    return f"{MANIFESTS_DIR}/{manifest_name(version)}"


def blob_relpath(digest: bytes) -> str:
    h = digest.hex()
    return f"{BLOBS_DIR}/{h[:2]}/{h}"


# ---------------------------------------------------------------------------
# Atomic writes
# ---------------------------------------------------------------------------


@contextmanager
def atomic_writer(path: Path) -> Iterator[BinaryIO]:
    """Yield a file object whose contents replace *path* on clean exit.

    On any exception the temporary file is removed and *path* is untouched.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=_TMP_PREFIX, dir=path.parent)
    tmp = Path(tmp_name)
    try:
        with os.fdopen(fd, "wb") as fh:
            yield fh
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp, path)
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise
    _fsync_dir(path.parent)


def atomic_write(path: Path, data: bytes) -> None:
    """Replace *path* with *data* atomically."""
    with atomic_writer(path) as fh:
        fh.write(data)


def atomic_write_chunks(path: Path, chunks: Iterable[bytes]) -> None:
    """Replace *path* with the concatenation of *chunks* atomically."""
    with atomic_writer(path) as fh:
        for chunk in chunks:
            fh.write(chunk)


def _fsync_dir(directory: Path) -> None:
    try:
        fd = os.open(directory, os.O_RDONLY)
    except OSError:
        return
    try:
        os.fsync(fd)
    except OSError:
        pass  # not supported on every filesystem
    finally:
        os.close(fd)


def read_chunks(path: Path) -> Iterator[bytes]:
    with open(path, "rb") as fh:
        for chunk in iter(lambda: fh.read(CHUNK_SIZE), b""):
            yield chunk


# ---------------------------------------------------------------------------
# Server directory
# ---------------------------------------------------------------------------


class ServerDirectory:
    """Index over one image's server directory.

    Keyed by version (manifests) and by digest (blobs).  There is no delete:
    published manifests and blobs are immutable.

    Parameters
    ----------
    base_path:
        Root of the server directory.  Created on first write.
    """

    def __init__(self, base_path: Path) -> None:
        self._base = Path(base_path)

    @property
    def base(self) -> Path:
        return self._base

    @property
    def lock_path(self) -> Path:
        return self._base / LOCK_NAME

    @property
    def index_path(self) -> Path:
        return self._base / INDEX_NAME

    def manifest_path(self, version: Version | str) -> Path:
        return self._base / manifest_relpath(version)

    def blob_path(self, digest: bytes) -> Path:
        return self._base / blob_relpath(digest)

    # ------------------------------------------------------------------
    # Manifests
    # ------------------------------------------------------------------

    def list_manifest_names(self) -> list[str]:
        """Enumerate manifest files, skipping in-flight temporaries."""
        directory = self._base / MANIFESTS_DIR
        if not directory.is_dir():
            return []
        return sorted(
            p.name
            for p in directory.iterdir()
            if p.is_file() and not p.name.startswith(_TMP_PREFIX)
        )

    def read_manifest_bytes(self, name: str) -> bytes:
        return (self._base / MANIFESTS_DIR / name).read_bytes()

    def write_manifest(self, version: Version, data: bytes) -> Path:
        path = self.manifest_path(version)
        atomic_write(path, data)
        return path

    def write_index(self) -> list[str]:
        """Regenerate ``index`` from the manifests on disk."""
        names = self.list_manifest_names()
        body = "".join(f"{n}\n" for n in names).encode("utf-8")
        atomic_write(self.index_path, body)
        return names

    # ------------------------------------------------------------------
    # Blobs
    # ------------------------------------------------------------------

    def has_blob(self, digest: bytes) -> bool:
        return self.blob_path(digest).is_file()

    def verify_blob(self, digest: bytes) -> bool:
        """Re-hash a stored blob and compare against its address."""
        path = self.blob_path(digest)
        if not path.is_file():
            return False
        return sha256_file(path) == digest

    def write_blob_from(self, source: Path, digest: bytes) -> Path:
        """Copy *source* into the blob slot for *digest*.

        The copy is re-hashed while writing; if *source* changed since it
        was hashed the temporary file is discarded and ValueError raised.
        """
        path = self.blob_path(digest)
        h = hashlib.sha256()

        def _hashed() -> Iterator[bytes]:
            for chunk in read_chunks(source):
                h.update(chunk)
                yield chunk
            if h.digest() != digest:
                raise ValueError(f"{source} changed while being stored")

        atomic_write_chunks(path, _hashed())
        return path
