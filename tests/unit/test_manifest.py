"""Tests for manifest signing, verification and the text format."""

from __future__ import annotations

import base64
import hashlib

import pytest

from tako.core.keys import PublicKey, decode_secret
from tako.core.manifest import (
    HEADER,
    SIGNING_DOMAIN,
    is_valid,
    parse_manifest,
    serialize,
    sign,
    signed_bytes,
    verify,
)
from tako.core.version import Version
from tako.errors import InvalidManifest, InvalidSignature
from tako.models.manifest import Manifest

DIGEST = hashlib.sha256(b"image content").digest()


@pytest.fixture
def manifest(secret_b64: str) -> Manifest:
    with decode_secret(secret_b64) as sk:
        return sign(Version("1.0"), DIGEST, sk)


class TestSignVerify:
    def test_round_trip(self, manifest: Manifest, public_key: PublicKey):
        verify(manifest, public_key)
        assert is_valid(manifest, public_key) is True

    def test_deterministic(self, secret_b64: str):
        with decode_secret(secret_b64) as a, decode_secret(secret_b64) as b:
            assert sign(Version("1.0"), DIGEST, a) == sign(Version("1.0"), DIGEST, b)

    def test_wrong_key_rejected(self, manifest: Manifest, other_key_pair):
        _, other_public = other_key_pair
        with pytest.raises(InvalidSignature):
            verify(manifest, other_public)

    def test_tampered_version_rejected(self, manifest: Manifest, public_key: PublicKey):
        forged = manifest.model_copy(update={"version": Version("9.9")})
        with pytest.raises(InvalidSignature):
            verify(forged, public_key)

    def test_tampered_digest_rejected(self, manifest: Manifest, public_key: PublicKey):
        forged = manifest.model_copy(update={"digest": hashlib.sha256(b"evil").digest()})
        with pytest.raises(InvalidSignature):
            verify(forged, public_key)

    def test_flipped_signature_bit_rejected(self, manifest: Manifest, public_key: PublicKey):
        sig = bytearray(manifest.signature)
        sig[0] ^= 0x01
        forged = manifest.model_copy(update={"signature": bytes(sig)})
        assert is_valid(forged, public_key) is False

    def test_truncated_signature_rejected(self, manifest: Manifest, public_key: PublicKey):
        forged = manifest.model_copy(update={"signature": manifest.signature[:32]})
        with pytest.raises(InvalidSignature):
            verify(forged, public_key)

    def test_failures_are_indistinguishable(self, manifest: Manifest, public_key: PublicKey, other_key_pair):
        messages = set()
        for forged, key in [
            (manifest, other_key_pair[1]),
            (manifest.model_copy(update={"version": Version("2")}), public_key),
            (manifest.model_copy(update={"signature": b"\x00" * 64}), public_key),
        ]:
            with pytest.raises(InvalidSignature) as exc_info:
                verify(forged, key)
            messages.add(str(exc_info.value))
        assert messages == {"Invalid signature."}

    def test_signed_bytes_layout(self):
        data = signed_bytes(Version("1.0"), DIGEST)
        assert data == SIGNING_DOMAIN + b"1.0\x00" + DIGEST

    def test_version_with_newline_cannot_be_signed(self, secret_b64: str):
        with decode_secret(secret_b64) as sk, pytest.raises(InvalidManifest):
            sign(Version("1.0\nDigest: x"), DIGEST, sk)


class TestTextFormat:
    def test_round_trip(self, manifest: Manifest):
        assert parse_manifest(serialize(manifest)) == manifest

    def test_layout(self, manifest: Manifest):
        lines = serialize(manifest).decode("utf-8").splitlines()
        assert lines[0] == HEADER
        assert lines[1] == "Version: 1.0"
        assert lines[2] == f"Digest: sha256:{DIGEST.hex()}"
        assert lines[3].startswith("Signature: ")

    def test_unicode_version_round_trips(self, secret_b64: str):
        with decode_secret(secret_b64) as sk:
            m = sign(Version("1.0-ünïcode build"), DIGEST, sk)
        assert parse_manifest(serialize(m)) == m

    @pytest.mark.parametrize(
        "mutate",
        [
            lambda t: t.replace(HEADER, "Tako Manifest 2"),
            lambda t: t.rstrip("\n"),
            lambda t: t.replace("Version: 1.0", "Version: "),
            lambda t: t.replace("Version: 1.0\n", ""),
            lambda t: t + "Version: 1.1\n",
            lambda t: t + "Extra: field\n",
            lambda t: t.replace("Digest: sha256:", "Digest: md5:"),
            lambda t: t.replace("Digest: sha256:", "Digest: "),
            lambda t: t.replace(f"sha256:{DIGEST.hex()}", f"sha256:{DIGEST.hex()[:-2]}"),
            lambda t: t.replace(f"sha256:{DIGEST.hex()}", f"sha256:{DIGEST.hex().upper()}"),
            lambda t: t.replace("Signature: ", "Signature: !!"),
            lambda t: t.replace("Version: 1.0", "Version 1.0"),
        ],
    )
    def test_malformed_rejected(self, manifest: Manifest, mutate):
        text = serialize(manifest).decode("utf-8")
        with pytest.raises(InvalidManifest):
            parse_manifest(mutate(text).encode("utf-8"))

    def test_short_signature_rejected_before_crypto(self, manifest: Manifest):
        short = base64.b64encode(manifest.signature[:63]).decode("ascii")
        text = serialize(manifest).decode("utf-8")
        good = base64.b64encode(manifest.signature).decode("ascii")
        with pytest.raises(InvalidManifest, match="64 bytes"):
            parse_manifest(text.replace(good, short).encode("utf-8"))

    def test_non_utf8_rejected(self):
        with pytest.raises(InvalidManifest):
            parse_manifest(b"\xff\xfe\n")

    def test_empty_rejected(self):
        with pytest.raises(InvalidManifest):
            parse_manifest(b"")

    def test_content_address(self, manifest: Manifest):
        assert manifest.content_address == f"sha256:{DIGEST.hex()}"
