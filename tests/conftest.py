"""Shared test fixtures for Tako."""

from __future__ import annotations

from collections.abc import Callable, Iterator
from pathlib import Path

import pytest

from tako.config import Settings
from tako.core.keys import PublicKey, SecretKey, decode_secret, generate
from tako.core.layout import INDEX_NAME, MANIFESTS_DIR, ServerDirectory
from tako.core.store import store
from tako.errors import DownloadError, RestartError
from tako.models.config import FetchConfig
from tako.models.store import StoreResult


# ---------------------------------------------------------------------------
# In-memory collaborators
# ---------------------------------------------------------------------------


class MemoryTransport:
    """Transport that serves a dict of relative paths to bytes."""

    def __init__(self, files: dict[str, bytes] | None = None) -> None:
        self.files: dict[str, bytes] = dict(files or {})
        self.requests: list[str] = []
        self.fail_listing = False

    def list_manifests(self) -> list[str]:
        self.requests.append(INDEX_NAME)
        if self.fail_listing:
            raise DownloadError("listing unavailable")
        prefix = f"{MANIFESTS_DIR}/"
        return sorted(k[len(prefix):] for k in self.files if k.startswith(prefix))

    def get(self, relpath: str, max_bytes: int | None = None) -> bytes:
        self.requests.append(relpath)
        try:
            data = self.files[relpath]
        except KeyError:
            raise DownloadError(f"404: {relpath}") from None
        if max_bytes is not None and len(data) > max_bytes:
            raise DownloadError(f"{relpath}: too large")
        return data

    def stream(self, relpath: str) -> Iterator[bytes]:
        data = self.get(relpath)
        for i in range(0, len(data), 4):
            yield data[i:i + 4]


class RecordingRestarter:
    """Restarter that records calls and fails for selected units."""

    def __init__(self, failing: set[str] | None = None) -> None:
        self.restarted: list[str] = []
        self.failing = failing or set()

    def restart(self, unit: str) -> None:
        self.restarted.append(unit)
        if unit in self.failing:
            raise RestartError(f"{unit}: exited with 1")


# ---------------------------------------------------------------------------
# Keys
# ---------------------------------------------------------------------------


@pytest.fixture
def key_pair() -> tuple[str, PublicKey]:
    """A fresh key pair: ``(secret_key_base64, public_key)``."""
    secret, public = generate()
    with secret:
        return secret.to_base64(), public


@pytest.fixture
def secret_b64(key_pair: tuple[str, PublicKey]) -> str:
    return key_pair[0]


@pytest.fixture
def public_key(key_pair: tuple[str, PublicKey]) -> PublicKey:
    return key_pair[1]


@pytest.fixture
def make_secret(secret_b64: str) -> Callable[[], SecretKey]:
    """Factory: a new SecretKey for the fixture key pair.

    Each store() wipes the key it is given, so every call needs its own.
    """
    return lambda: decode_secret(secret_b64)


@pytest.fixture
def other_key_pair() -> tuple[str, PublicKey]:
    """A second, unrelated key pair."""
    secret, public = generate()
    with secret:
        return secret.to_base64(), public


# ---------------------------------------------------------------------------
# Server directory and publishing
# ---------------------------------------------------------------------------


@pytest.fixture
def server_dir(tmp_path: Path) -> Path:
    return tmp_path / "server"


@pytest.fixture
def server(server_dir: Path) -> ServerDirectory:
    return ServerDirectory(server_dir)


@pytest.fixture
def publish(
    tmp_path: Path, server_dir: Path, make_secret: Callable[[], SecretKey]
) -> Callable[[str, bytes], StoreResult]:
    """Factory: store *content* as *version* in the fixture server dir."""
    images = tmp_path / "images"
    images.mkdir()

    def _publish(version: str, content: bytes) -> StoreResult:
        image = images / f"image-{len(list(images.iterdir()))}"
        image.write_bytes(content)
        return store(image, version, make_secret(), server_dir)

    return _publish


# ---------------------------------------------------------------------------
# Fetch side
# ---------------------------------------------------------------------------


@pytest.fixture
def destination(tmp_path: Path) -> Path:
    d = tmp_path / "client"
    d.mkdir()
    return d / "app.img"


@pytest.fixture
def make_config(
    server_dir: Path, public_key: PublicKey, destination: Path
) -> Callable[..., FetchConfig]:
    """Factory: a FetchConfig pointing at the fixture server dir."""

    def _factory(**overrides: object) -> FetchConfig:
        defaults: dict[str, object] = {
            "origin": server_dir.as_uri(),
            "public_key": public_key,
            "destination": destination,
            "restart_units": (),
        }
        defaults.update(overrides)
        return FetchConfig(**defaults)  # type: ignore[arg-type]

    return _factory


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None)


@pytest.fixture
def restarter() -> RecordingRestarter:
    return RecordingRestarter()


@pytest.fixture
def memory_transport() -> MemoryTransport:
    return MemoryTransport()


@pytest.fixture
def make_memory_transport() -> Callable[..., MemoryTransport]:
    return MemoryTransport


@pytest.fixture
def make_restarter() -> Callable[..., RecordingRestarter]:
    return RecordingRestarter
