"""Content hashing helpers for digests and content addressing.

Digests are SHA-256.  On the wire and on disk they are written as
``sha256:<hex>``; in memory they are the raw 32 bytes.
"""

from __future__ import annotations

import hashlib
from collections.abc import Iterable
from pathlib import Path

DIGEST_SIZE = 32
DIGEST_PREFIX = "sha256:"
CHUNK_SIZE = 64 * 1024


def sha256_hex(data: bytes) -> str:
    """Return the SHA-256 hex digest of raw bytes."""
    return hashlib.sha256(data).hexdigest()


def sha256_file(path: Path) -> bytes:
    """Stream *path* through SHA-256 and return the raw digest."""
    h = hashlib.sha256()
    with open(path, "rb") as fh:
        for chunk in iter(lambda: fh.read(CHUNK_SIZE), b""):
            h.update(chunk)
    return h.digest()


def sha256_chunks(chunks: Iterable[bytes]) -> bytes:
    """Hash an iterable of byte chunks and return the raw digest."""
    h = hashlib.sha256()
    for chunk in chunks:
        h.update(chunk)
    return h.digest()


def format_digest(digest: bytes) -> str:
    """Render a raw digest as ``sha256:<hex>``."""
    return f"{DIGEST_PREFIX}{digest.hex()}"


def parse_digest(text: str) -> bytes:
    """Parse ``sha256:<hex>`` (or bare hex) into 32 raw bytes.

    Raises ValueError on anything else.
    """
    hex_part = text.removeprefix(DIGEST_PREFIX)
    if len(hex_part) != DIGEST_SIZE * 2 or hex_part != hex_part.lower():
        raise ValueError(f"Not a lowercase SHA-256 hex digest: {text!r}")
    return bytes.fromhex(hex_part)
