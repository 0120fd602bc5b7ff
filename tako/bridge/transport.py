"""Transport bridge: reads a remote server directory.

Bridge boundary
---------------
The fetch engine depends only on the :class:`Transport` protocol.  Two
backends are provided:

1. **HttpTransport** (``http://``, ``https://``): a ``requests`` session
   with urllib3 retry/backoff.  The manifest listing is read from the
   server's ``index`` file.
2. **FileTransport** (``file://``): reads a local or mounted server
   directory; the listing is a plain directory enumeration.

Every failure (connection, timeout, non-2xx status, missing file, oversize
response) surfaces as ``DownloadError``.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from pathlib import Path
from typing import Protocol, runtime_checkable
from urllib.parse import quote, unquote, urlparse

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from tako.config import Settings
from tako.core.layout import INDEX_NAME, MANIFESTS_DIR, ServerDirectory, read_chunks
from tako.errors import DownloadError

logger = logging.getLogger(__name__)

_STREAM_CHUNK = 64 * 1024


@runtime_checkable
class Transport(Protocol):
    """Read-only access to one origin's server directory."""

    def list_manifests(self) -> list[str]:
        """Names of the manifest files the origin publishes."""
        ...

    def get(self, relpath: str, max_bytes: int | None = None) -> bytes:
        """Fetch a small file in full."""
        ...

    def stream(self, relpath: str) -> Iterator[bytes]:
        """Fetch a large file as a sequence of chunks."""
        ...


def _check_name(name: str) -> bool:
    return bool(name) and "/" not in name and "\\" not in name and not name.startswith(".")


def build_session(settings: Settings) -> requests.Session:
    """A session with retry/backoff on transient failures."""
    retry = Retry(
        total=settings.http_retries,
        connect=settings.http_retries,
        read=settings.http_retries,
        backoff_factor=0.5,
        status_forcelist=(429, 500, 502, 503, 504),
        allowed_methods=frozenset({"GET"}),
        raise_on_status=False,
    )
    adapter = HTTPAdapter(max_retries=retry)
    session = requests.Session()
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    session.headers.update({"User-Agent": settings.user_agent})
    return session


class HttpTransport:
    """Reads a server directory over HTTP(S).

    Parameters
    ----------
    origin:
        Base URI of the server directory, without trailing slash.
    settings:
        Timeouts, retries and user agent.
    session:
        Optional pre-built session (tests pass one with a mock adapter).
    """

    def __init__(
        self,
        origin: str,
        settings: Settings | None = None,
        session: requests.Session | None = None,
    ) -> None:
        self._origin = origin.rstrip("/")
        self._settings = settings or Settings()
        self._session = session or build_session(self._settings)

    def _url(self, relpath: str) -> str:
        # On-disk names are already percent-encoded; escape them once more
        # so the server decodes back to the file name.
        return f"{self._origin}/{quote(relpath, safe='/')}"

    def get(self, relpath: str, max_bytes: int | None = None) -> bytes:
        url = self._url(relpath)
        try:
            with self._session.get(
                url, timeout=self._settings.http_timeout_seconds, stream=True
            ) as resp:
                resp.raise_for_status()
                body = bytearray()
                for chunk in resp.iter_content(chunk_size=_STREAM_CHUNK):
                    body.extend(chunk)
                    if max_bytes is not None and len(body) > max_bytes:
                        raise DownloadError(f"{url}: response exceeds {max_bytes} bytes.")
                return bytes(body)
        except requests.RequestException as exc:
            raise DownloadError(f"{url}: {exc}") from exc

    def stream(self, relpath: str) -> Iterator[bytes]:
        url = self._url(relpath)
        try:
            with self._session.get(
                url, timeout=self._settings.http_timeout_seconds, stream=True
            ) as resp:
                resp.raise_for_status()
                for chunk in resp.iter_content(chunk_size=_STREAM_CHUNK):
                    if chunk:
                        yield chunk
        except requests.RequestException as exc:
            raise DownloadError(f"{url}: {exc}") from exc

    def list_manifests(self) -> list[str]:
        body = self.get(INDEX_NAME)
        try:
            lines = body.decode("utf-8").splitlines()
        except UnicodeDecodeError:
            raise DownloadError(f"{self._url(INDEX_NAME)}: index is not UTF-8.") from None
        names = []
        for line in lines:
            name = line.strip()
            if not name:
                continue
            if not _check_name(name):
                logger.warning("Ignoring unsafe index entry %r from %s.", name, self._origin)
                continue
            names.append(name)
        return names


class FileTransport:
    """Reads a server directory from the local filesystem."""

    def __init__(self, root: Path) -> None:
        self._dir = ServerDirectory(root)

    @classmethod
    def from_uri(cls, origin: str) -> FileTransport:
        return cls(Path(unquote(urlparse(origin).path)))

    def _path(self, relpath: str) -> Path:
        return self._dir.base / relpath

    def get(self, relpath: str, max_bytes: int | None = None) -> bytes:
        path = self._path(relpath)
        try:
            if max_bytes is not None and path.stat().st_size > max_bytes:
                raise DownloadError(f"{path}: file exceeds {max_bytes} bytes.")
            return path.read_bytes()
        except OSError as exc:
            raise DownloadError(f"{path}: {exc}") from exc

    def stream(self, relpath: str) -> Iterator[bytes]:
        path = self._path(relpath)
        try:
            yield from read_chunks(path)
        except OSError as exc:
            raise DownloadError(f"{path}: {exc}") from exc

    def list_manifests(self) -> list[str]:
        if not (self._dir.base / MANIFESTS_DIR).is_dir():
            if not self._dir.base.is_dir():
                raise DownloadError(f"{self._dir.base}: no such server directory.")
            return []
        try:
            return self._dir.list_manifest_names()
        except OSError as exc:
            raise DownloadError(f"{self._dir.base}: {exc}") from exc


def open_transport(origin: str, settings: Settings | None = None) -> Transport:
    """Pick a transport backend for *origin*'s scheme."""
    scheme = urlparse(origin).scheme
    if scheme in ("http", "https"):
        return HttpTransport(origin, settings)
    if scheme == "file":
        return FileTransport.from_uri(origin)
    raise DownloadError(f"Unsupported origin scheme: {scheme!r}")
