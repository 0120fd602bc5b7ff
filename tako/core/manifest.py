"""Manifest signing, verification and the canonical text format.

Signed bytes::

    b"tako-manifest-v1\\0" || utf8(version) || b"\\0" || digest(32 bytes)

Text format (UTF-8, LF)::

    Tako Manifest 1
    Version: 1.0
    Digest: sha256:9f86d081884c7d659a2feaa0c55ad015a3bf4f1b2b0b822cd15d6c15b0f00a08
    Signature: <base64 of 64 bytes>

``parse_manifest`` rejects any structural problem with ``InvalidManifest``
before the signature is looked at, so broken input never reaches libsodium.
"""

from __future__ import annotations

import base64
import binascii
import logging

from pydantic import ValidationError

from tako.bridge import crypto_bridge
from tako.core.hasher import DIGEST_SIZE, format_digest, parse_digest
from tako.core.keys import PublicKey, SecretKey
from tako.core.version import Version
from tako.errors import InvalidManifest, InvalidSignature, MalformedVersion
from tako.models.manifest import Manifest

logger = logging.getLogger(__name__)

HEADER = "Tako Manifest 1"
SIGNING_DOMAIN = b"tako-manifest-v1\x00"
_FIELDS = ("Version", "Digest", "Signature")
_FORBIDDEN_IN_VERSION = ("\n", "\r", "\x00")


def check_version_text(raw: str) -> None:
    """Raise InvalidManifest if *raw* cannot appear on a manifest line."""
    if any(c in raw for c in _FORBIDDEN_IN_VERSION):
        raise InvalidManifest("Version contains a line break or NUL.")
    if raw != raw.strip():
        raise InvalidManifest("Version has leading or trailing whitespace.")


def signed_bytes(version: Version, digest: bytes) -> bytes:
    """The exact byte string a manifest signature covers."""
    return SIGNING_DOMAIN + version.raw.encode("utf-8") + b"\x00" + digest


def sign(version: Version, digest: bytes, secret_key: SecretKey) -> Manifest:
    """Build and sign a manifest for *version* and *digest*.

    Deterministic for a given key.
    """
    check_version_text(version.raw)
    if len(digest) != DIGEST_SIZE:
        raise InvalidManifest("Digest must be 32 bytes.")
    signature = crypto_bridge.sign_data(
        signed_bytes(version, digest), secret_key.seed_bytes()
    )
    return Manifest(version=version, digest=digest, signature=signature)


def verify(manifest: Manifest, public_key: PublicKey) -> None:
    """Raise InvalidSignature unless *manifest* is signed by *public_key*."""
    data = signed_bytes(manifest.version, manifest.digest)
    if not crypto_bridge.verify_data(data, manifest.signature, public_key.raw):
        raise InvalidSignature()


def is_valid(manifest: Manifest, public_key: PublicKey) -> bool:
    """Boolean form of :func:`verify`."""
    try:
        verify(manifest, public_key)
    except InvalidSignature:
        return False
    return True


def serialize(manifest: Manifest) -> bytes:
    """Render *manifest* in the canonical text format."""
    check_version_text(manifest.version.raw)
    sig = base64.b64encode(manifest.signature).decode("ascii")
    text = (
        f"{HEADER}\n"
        f"Version: {manifest.version.raw}\n"
        f"Digest: {format_digest(manifest.digest)}\n"
        f"Signature: {sig}\n"
    )
    return text.encode("utf-8")


def parse_manifest(data: bytes) -> Manifest:
    """Parse the canonical text format.  Does not verify the signature."""
    try:
        text = data.decode("utf-8")
    except UnicodeDecodeError:
        raise InvalidManifest("Manifest is not valid UTF-8.") from None

    if not text.endswith("\n"):
        raise InvalidManifest("Manifest is truncated.")
    lines = text[:-1].split("\n")
    if not lines or lines[0] != HEADER:
        raise InvalidManifest(f"Expected '{HEADER}' header.")

    values: dict[str, str] = {}
    for line in lines[1:]:
        key, sep, value = line.partition(": ")
        if not sep:
            raise InvalidManifest("Expected 'Key: value' line.")
        if key not in _FIELDS:
            raise InvalidManifest(f"Unknown manifest field '{key}'.")
        if key in values:
            raise InvalidManifest(f"Duplicate manifest field '{key}'.")
        values[key] = value

    missing = [k for k in _FIELDS if k not in values]
    if missing:
        raise InvalidManifest(f"Missing manifest field '{missing[0]}'.")

    check_version_text(values["Version"])
    try:
        version = Version.parse(values["Version"])
    except MalformedVersion:
        raise InvalidManifest("Empty version.") from None

    try:
        digest = parse_digest(values["Digest"])
    except ValueError:
        raise InvalidManifest("Malformed digest.") from None
    if not values["Digest"].startswith("sha256:"):
        raise InvalidManifest("Digest must be 'sha256:'-prefixed.")

    try:
        signature = base64.b64decode(values["Signature"], validate=True)
    except (binascii.Error, ValueError):
        raise InvalidManifest("Signature is not valid base64.") from None
    if len(signature) != crypto_bridge.SIGNATURE_SIZE:
        raise InvalidManifest("Signature must be 64 bytes.")

    try:
        return Manifest(version=version, digest=digest, signature=signature)
    except ValidationError as exc:
        raise InvalidManifest(str(exc)) from None
