"""Crypto bridge: Ed25519 signing through PyNaCl (libsodium).

Bridge boundary
---------------
This is the only module that imports ``nacl``.  Everything above it deals in
raw bytes: 32-byte seeds, 32-byte public keys, 64-byte signatures.

Verification is fail-closed: ``verify_data()`` returns ``False`` for a
mismatched signature, a malformed key, a truncated signature, or any other
error inside libsodium.  It never says which.
"""

from __future__ import annotations

import hashlib
import logging

import nacl.exceptions
import nacl.signing

logger = logging.getLogger(__name__)

SEED_SIZE = 32
PUBLIC_KEY_SIZE = 32
SIGNATURE_SIZE = 64


def generate_seed() -> tuple[bytes, bytes]:
    """Generate a fresh Ed25519 key pair.

    Returns
    -------
    tuple[bytes, bytes]
        ``(seed, public_key)``, 32 bytes each.

    Raises whatever libsodium raises if the system random source fails;
    callers translate that into ``KeyGenerationFailed``.
    """
    sk = nacl.signing.SigningKey.generate()
    return bytes(sk.encode()), bytes(sk.verify_key.encode())


def public_key_from_seed(seed: bytes) -> bytes:
    """Derive the 32-byte public key for an Ed25519 *seed*."""
    return bytes(nacl.signing.SigningKey(seed).verify_key.encode())


def sign_data(data: bytes, seed: bytes) -> bytes:
    """Sign *data* with the Ed25519 key derived from *seed*.

    Ed25519 signatures are deterministic: the same seed and data always
    produce the same 64 bytes.
    """
    sk = nacl.signing.SigningKey(seed)
    return bytes(sk.sign(data).signature)


def verify_data(data: bytes, signature: bytes, public_key: bytes) -> bool:
    """Return ``True`` iff *signature* is valid for *data* under *public_key*."""
    if len(signature) != SIGNATURE_SIZE or len(public_key) != PUBLIC_KEY_SIZE:
        return False
    try:
        vk = nacl.signing.VerifyKey(public_key)
        vk.verify(data, signature)
        return True
    except (nacl.exceptions.BadSignatureError, nacl.exceptions.CryptoError, ValueError, TypeError):
        return False


def key_fingerprint(public_key: bytes) -> str:
    """Short fingerprint of a public key for log lines.

    The first 16 hex characters of SHA-256(public_key).
    """
    if not public_key:
        return ""
    return hashlib.sha256(public_key).hexdigest()[:16]
