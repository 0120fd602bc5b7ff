"""Key material: Ed25519 key pairs, PKCS#8 secret keys, base64 text forms.

Secret keys are exchanged as base64 of a PKCS#8 document (RFC 8410).  We
generate the v2 form, which carries the public key next to the seed, and
accept both v1 and v2 on input::

    v1 (48 bytes): 302e 020100 300506032b6570 04220420 <seed:32>
    v2 (85 bytes): 3053 020101 300506032b6570 04220420 <seed:32> a1230321 00 <public:32>

Public keys are base64 of the raw 32 bytes.

Secret key bytes live in a ``bytearray`` owned by a :class:`SecretKey`,
which zeroes it on ``wipe()`` or when used as a context manager.
"""

from __future__ import annotations

import base64
import binascii
import logging
import os
from collections.abc import Mapping
from pathlib import Path

from pydantic import BaseModel, ConfigDict, field_validator

from tako.bridge import crypto_bridge
from tako.errors import InvalidPublicKeyData, InvalidSecretKeyData, KeyGenerationFailed

logger = logging.getLogger(__name__)

SECRET_KEY_ENV = "TAKO_SECRET_KEY"

_PKCS8_V1_PREFIX = bytes.fromhex("302e020100300506032b657004220420")
_PKCS8_V2_PREFIX = bytes.fromhex("3053020101300506032b657004220420")
_PKCS8_V2_PUBLIC_TAG = bytes.fromhex("a123032100")
_PKCS8_V1_LEN = len(_PKCS8_V1_PREFIX) + crypto_bridge.SEED_SIZE
_PKCS8_V2_LEN = (
    len(_PKCS8_V2_PREFIX)
    + crypto_bridge.SEED_SIZE
    + len(_PKCS8_V2_PUBLIC_TAG)
    + crypto_bridge.PUBLIC_KEY_SIZE
)


class PublicKey(BaseModel):
    """A 32-byte Ed25519 verification key."""

    model_config = ConfigDict(frozen=True)

    raw: bytes

    @field_validator("raw")
    @classmethod
    def _check_length(cls, v: bytes) -> bytes:
        if len(v) != crypto_bridge.PUBLIC_KEY_SIZE:
            raise ValueError("Ed25519 public key must be 32 bytes")
        return v

    def to_base64(self) -> str:
        return base64.b64encode(self.raw).decode("ascii")

    @property
    def fingerprint(self) -> str:
        return crypto_bridge.key_fingerprint(self.raw)


class SecretKey:
    """An Ed25519 signing key with scoped ownership of its bytes.

    Use as a context manager so the seed is zeroed as soon as signing is
    done::

        with resolve_secret(key=text) as sk:
            manifest = sign(version, digest, sk)
    """

    __slots__ = ("_seed", "_public", "_wiped")

    def __init__(self, seed: bytes | bytearray, public: bytes | None = None) -> None:
        if len(seed) != crypto_bridge.SEED_SIZE:
            raise InvalidSecretKeyData()
        self._seed = bytearray(seed)
        self._public = public
        self._wiped = False

    @property
    def is_wiped(self) -> bool:
        return self._wiped

    def seed_bytes(self) -> bytes:
        """Return the seed for a signing call.

        Raises InvalidSecretKeyData after ``wipe()``.
        """
        if self.is_wiped:
            raise InvalidSecretKeyData("Secret key has been wiped.")
        return bytes(self._seed)

    def public_key(self) -> PublicKey:
        if self._public is None:
            self._public = crypto_bridge.public_key_from_seed(self.seed_bytes())
        return PublicKey(raw=self._public)

    def to_pkcs8(self) -> bytes:
        """Encode as a PKCS#8 v2 document."""
        return (
            _PKCS8_V2_PREFIX
            + self.seed_bytes()
            + _PKCS8_V2_PUBLIC_TAG
            + self.public_key().raw
        )

    def to_base64(self) -> str:
        return base64.b64encode(self.to_pkcs8()).decode("ascii")

    def wipe(self) -> None:
        """Overwrite the seed with zeros."""
        for i in range(len(self._seed)):
            self._seed[i] = 0
        self._wiped = True

    def __enter__(self) -> SecretKey:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.wipe()

    def __repr__(self) -> str:
        return "SecretKey(<redacted>)"


def generate() -> tuple[SecretKey, PublicKey]:
    """Generate a fresh key pair from the system CSPRNG.

    Raises KeyGenerationFailed if the random source fails.  This is fatal;
    callers must not retry silently.
    """
    try:
        seed, public = crypto_bridge.generate_seed()
    except Exception as exc:  # libsodium surfaces RNG failure as arbitrary errors
        logger.critical("Key generation failed: %s", exc)
        raise KeyGenerationFailed("Random number generator failed.") from exc
    return SecretKey(seed, public), PublicKey(raw=public)


def _decode_pkcs8(der: bytes) -> SecretKey:
    if len(der) == _PKCS8_V1_LEN and der.startswith(_PKCS8_V1_PREFIX):
        return SecretKey(der[len(_PKCS8_V1_PREFIX):])

    if len(der) == _PKCS8_V2_LEN and der.startswith(_PKCS8_V2_PREFIX):
        seed_end = len(_PKCS8_V2_PREFIX) + crypto_bridge.SEED_SIZE
        seed = der[len(_PKCS8_V2_PREFIX):seed_end]
        if der[seed_end:seed_end + len(_PKCS8_V2_PUBLIC_TAG)] != _PKCS8_V2_PUBLIC_TAG:
            raise InvalidSecretKeyData()
        public = der[seed_end + len(_PKCS8_V2_PUBLIC_TAG):]
        if crypto_bridge.public_key_from_seed(seed) != public:
            raise InvalidSecretKeyData()
        return SecretKey(seed, public)

    raise InvalidSecretKeyData()


def decode_secret(text: str) -> SecretKey:
    """Decode a base64 PKCS#8 Ed25519 secret key.

    Every failure raises the same InvalidSecretKeyData.
    """
    try:
        der = base64.b64decode(text.strip(), validate=True)
    except (binascii.Error, ValueError):
        raise InvalidSecretKeyData() from None
    return _decode_pkcs8(der)


def resolve_secret(
    key: str | None = None,
    key_file: Path | None = None,
    env: Mapping[str, str] | None = None,
) -> SecretKey:
    """Find and decode the secret key for a store operation.

    Precedence: explicit *key* > *key_file* > ``TAKO_SECRET_KEY`` in *env*
    (``os.environ`` by default).  The first source present is the only one
    consulted.
    """
    if key is not None:
        return decode_secret(key)

    if key_file is not None:
        try:
            text = Path(key_file).read_text(encoding="ascii")
        except (OSError, UnicodeDecodeError):
            raise InvalidSecretKeyData() from None
        return decode_secret(text)

    environ = os.environ if env is None else env
    value = environ.get(SECRET_KEY_ENV)
    if value is None:
        raise InvalidSecretKeyData(
            "Secret key not provided. Pass it via --key, read it from a key "
            f"file with --key-file, or set the {SECRET_KEY_ENV} environment "
            "variable."
        )
    return decode_secret(value)


def decode_public(text: str) -> PublicKey:
    """Decode a base64 Ed25519 public key of exactly 32 bytes."""
    try:
        raw = base64.b64decode(text.strip(), validate=True)
    except (binascii.Error, ValueError):
        raise InvalidPublicKeyData() from None
    if len(raw) != crypto_bridge.PUBLIC_KEY_SIZE:
        raise InvalidPublicKeyData()
    return PublicKey(raw=raw)
