"""Store engine: publish a signed image version into a server directory.

Steps, under an exclusive lock on ``{server}/.lock``:

1. Hash the image file.
2. Look for an existing manifest at this version or at a colliding one
   (same fields, different separators).  Same version and digest: done,
   nothing rewritten.  Different digest, or a collision: ``Duplicate``.
3. Copy the blob in if its digest is new.
4. Sign and write the manifest, then regenerate ``index``.

Each file is written to a temporary name and renamed into place.  The lock
serialises publishers so two of them cannot both pass step 2 for the same
version; readers never need it.
"""

from __future__ import annotations

import fcntl
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from tako.core import manifest as manifest_codec
from tako.core.hasher import format_digest, sha256_file
from tako.core.keys import SecretKey
from tako.core.layout import ServerDirectory, version_from_name
from tako.core.version import Version
from tako.errors import Duplicate, InvalidManifest, MalformedVersion, StoreIoError, TakoError
from tako.models.manifest import Manifest
from tako.models.store import StoreResult

logger = logging.getLogger(__name__)


@contextmanager
def publish_lock(server: ServerDirectory) -> Iterator[None]:
    """Hold an exclusive advisory lock on the server directory."""
    server.base.mkdir(parents=True, exist_ok=True)
    with open(server.lock_path, "a+b") as fh:
        fcntl.flock(fh.fileno(), fcntl.LOCK_EX)
        try:
            yield
        finally:
            fcntl.flock(fh.fileno(), fcntl.LOCK_UN)


def _existing_manifests(server: ServerDirectory) -> Iterator[tuple[str, Version, Manifest | None]]:
    """Yield ``(name, version, manifest)`` for each stored manifest.

    ``manifest`` is None when the file does not parse; such a file still
    occupies its version.
    """
    for name in server.list_manifest_names():
        try:
            version = version_from_name(name)
        except MalformedVersion:
            logger.warning("Ignoring manifest file with empty name %r.", name)
            continue
        try:
            parsed: Manifest | None = manifest_codec.parse_manifest(
                server.read_manifest_bytes(name)
            )
        except (InvalidManifest, OSError) as exc:
            logger.warning("Existing manifest %r is unreadable: %s", name, exc)
            parsed = None
        yield name, version, parsed


def find_conflict(
    server: ServerDirectory, version: Version, digest: bytes
) -> tuple[Manifest | None, Duplicate | None]:
    """Check *version*/*digest* against what is already published.

    Returns ``(existing, None)`` when the exact version and digest are
    present (idempotent re-publish), ``(None, error)`` on a conflict, and
    ``(None, None)`` when the version is free.
    """
    for _name, existing_version, existing in _existing_manifests(server):
        if existing_version == version:
            if existing is not None and existing.version == version and existing.digest == digest:
                return existing, None
            return None, Duplicate(version.raw)
        if existing_version.collides_with(version):
            return None, Duplicate(version.raw, existing_version.raw)
    return None, None


def store(
    image: Path,
    version: str,
    secret_key: SecretKey,
    output: Path,
) -> StoreResult:
    """Publish *image* as *version* into the server directory *output*.

    The secret key is wiped when this returns.

    Raises Duplicate on a version conflict, MalformedVersion for an
    unusable version string, StoreIoError on filesystem failure.
    """
    with secret_key:
        parsed_version = Version.parse(version)
        try:
            manifest_codec.check_version_text(parsed_version.raw)
        except InvalidManifest as exc:
            raise MalformedVersion(str(exc)) from None

        server = ServerDirectory(output)
        try:
            with publish_lock(server):
                return _store_locked(server, Path(image), parsed_version, secret_key)
        except TakoError:
            raise
        except OSError as exc:
            raise StoreIoError(f"Cannot store {image} in {output}: {exc}") from exc


def _ensure_blob(server: ServerDirectory, image: Path, digest: bytes) -> bool:
    """Copy *image* into the blob slot unless an intact copy is there.

    Returns True if a blob was written.
    """
    address = format_digest(digest)
    if server.verify_blob(digest):
        logger.debug("Blob %s already present.", address)
        return False
    try:
        server.write_blob_from(image, digest)
    except ValueError as exc:
        raise StoreIoError(str(exc)) from exc
    logger.info("Stored blob %s (%s).", address, image)
    return True


def _store_locked(
    server: ServerDirectory, image: Path, version: Version, secret_key: SecretKey
) -> StoreResult:
    digest = sha256_file(image)
    address = format_digest(digest)

    existing, conflict = find_conflict(server, version, digest)
    if conflict is not None:
        logger.error("Refusing to publish %s: %s", version.raw, conflict)
        raise conflict
    blob_created = _ensure_blob(server, image, digest)

    if existing is not None:
        # An earlier publish may have died before the index was rewritten.
        server.write_index()
        logger.info("Version %s is already published with %s; nothing to do.", version.raw, address)
        return StoreResult(
            manifest=existing,
            manifest_path=server.manifest_path(version),
            blob_path=server.blob_path(digest),
            created=False,
            blob_created=blob_created,
        )

    signed = manifest_codec.sign(version, digest, secret_key)
    manifest_path = server.write_manifest(version, manifest_codec.serialize(signed))
    server.write_index()
    logger.info("Published version %s -> %s in %s.", version.raw, address, server.base)

    return StoreResult(
        manifest=signed,
        manifest_path=manifest_path,
        blob_path=server.blob_path(digest),
        created=True,
        blob_created=blob_created,
    )
