"""Manifest model: one signed release of an image (immutable)."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, field_validator

from tako.core.hasher import DIGEST_SIZE, format_digest
from tako.core.version import Version


class Manifest(BaseModel):
    """Binds a version to the SHA-256 digest of the image content.

    A manifest fresh from the origin is only a *candidate*; it is trusted
    once ``tako.core.manifest.verify`` succeeds against the pinned key.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    version: Version
    digest: bytes  # raw 32-byte SHA-256
    signature: bytes  # raw 64-byte Ed25519

    @field_validator("digest")
    @classmethod
    def _check_digest(cls, v: bytes) -> bytes:
        if len(v) != DIGEST_SIZE:
            raise ValueError("digest must be 32 bytes")
        return v

    @property
    def digest_hex(self) -> str:
        return self.digest.hex()

    @property
    def content_address(self) -> str:
        """``sha256:<hex>`` form of the digest."""
        return format_digest(self.digest)
