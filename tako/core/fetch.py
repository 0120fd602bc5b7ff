"""Fetch engine: find, verify and install the newest trusted image.

One call to :meth:`Fetcher.fetch` drives a :class:`FetchMachine` from
``idle`` to a terminal state:

1. List the origin's manifests.  Each candidate is fetched, parsed and
   verified against the pinned public key; a candidate that fails any of
   those is logged and skipped, never fatal.
2. Select the greatest verified version.  If it is not newer than the
   installed one the outcome is ``no_candidate`` (not an error).
3. Stream the blob into a temporary file next to Destination, hashing as
   it arrives.
4. Compare the hash with the manifest digest; on mismatch the temporary
   file is deleted and ``DigestMismatch`` raised.
5. Rename the temporary file over Destination, then record the installed
   manifest in ``<Destination>.manifest``.
6. Restart the configured units in order.  Failures are reported in the
   result; the installed image stays.

Any failure before the rename in step 5 raises and leaves the previously
installed content untouched.  If only the record write fails, Destination
already holds the new, verified image while the record still names the old
version; the error says so, and the next fetch reinstalls and rewrites the
record.
"""

from __future__ import annotations

import hashlib
import logging
import os
import tempfile
from pathlib import Path

from tako.bridge.restart import Restarter, SystemctlRestarter
from tako.bridge.transport import Transport, open_transport
from tako.config import Settings
from tako.core import manifest as manifest_codec
from tako.core.fetch_machine import FetchMachine
from tako.core.hasher import format_digest
from tako.core.layout import MANIFESTS_DIR, atomic_write, blob_relpath, manifest_name
from tako.core.version import Version
from tako.errors import DigestMismatch, StoreIoError, TakoError
from tako.models.config import FetchConfig
from tako.models.fetch import FetchEvent, FetchOutcome, FetchResult, RestartFailure
from tako.models.manifest import Manifest

logger = logging.getLogger(__name__)

MANIFEST_SUFFIX = ".manifest"


def installed_manifest_path(destination: Path) -> Path:
    """Where the manifest of the installed image is recorded."""
    destination = Path(destination)
    return destination.with_name(destination.name + MANIFEST_SUFFIX)


class Fetcher:
    """Keeps one Destination up to date from one origin.

    Parameters
    ----------
    config:
        Validated fetch config (origin, pinned key, destination, units).
    transport:
        Backend for the origin.  Chosen from the origin scheme if omitted.
    restarter:
        Backend for restart units.  ``systemctl restart`` if omitted.
    settings:
        Runtime settings (timeouts, manifest size cap, restart command).
    label:
        Name used in log lines, usually the config file path.
    """

    def __init__(
        self,
        config: FetchConfig,
        transport: Transport | None = None,
        restarter: Restarter | None = None,
        settings: Settings | None = None,
        label: str = "",
    ) -> None:
        self._config = config
        self._settings = settings or Settings()
        self._transport = transport or open_transport(config.origin, self._settings)
        self._restarter = restarter or SystemctlRestarter(
            self._settings.restart_command,
            self._settings.restart_timeout_seconds,
        )
        self._label = label or str(config.destination)

    @property
    def config(self) -> FetchConfig:
        return self._config

    # ------------------------------------------------------------------
    # Installed state
    # ------------------------------------------------------------------

    def installed_manifest(self) -> Manifest | None:
        """The verified manifest of the installed image, if any.

        A missing record means nothing is installed.  A record that does not
        parse or verify is logged and treated the same way.
        """
        path = installed_manifest_path(self._config.destination)
        try:
            data = path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as exc:
            logger.warning("Cannot read installed manifest %s: %s", path, exc)
            return None

        try:
            manifest = manifest_codec.parse_manifest(data)
            manifest_codec.verify(manifest, self._config.public_key)
        except TakoError as exc:
            logger.warning("Ignoring installed manifest %s: %s", path, exc)
            return None
        return manifest

    def installed_version(self) -> Version | None:
        m = self.installed_manifest()
        return m.version if m is not None else None

    # ------------------------------------------------------------------
    # Candidates
    # ------------------------------------------------------------------

    def list_candidates(self) -> tuple[list[Manifest], int, int]:
        """Fetch and verify every manifest the origin lists.

        Returns ``(verified, seen, rejected)``.  Only a failure to obtain
        the listing itself raises.
        """
        names = self._transport.list_manifests()
        verified: list[Manifest] = []
        rejected = 0
        for name in names:
            try:
                data = self._transport.get(
                    f"{MANIFESTS_DIR}/{name}", max_bytes=self._settings.max_manifest_bytes
                )
                candidate = manifest_codec.parse_manifest(data)
                manifest_codec.verify(candidate, self._config.public_key)
            except TakoError as exc:
                rejected += 1
                logger.warning("Skipping candidate %r from %s: %s", name, self._config.origin, exc)
                continue
            if manifest_name(candidate.version) != name:
                rejected += 1
                logger.warning(
                    "Skipping candidate %r: it is signed for version %r.",
                    name,
                    candidate.version.raw,
                )
                continue
            verified.append(candidate)
        return verified, len(names), rejected

    @staticmethod
    def select(candidates: list[Manifest], installed: Version | None) -> Manifest | None:
        """The newest candidate, if it is newer than *installed*."""
        if not candidates:
            return None
        best = max(candidates, key=lambda m: m.version)
        if installed is not None and not best.version > installed:
            return None
        return best

    # ------------------------------------------------------------------
    # Download, verify, install
    # ------------------------------------------------------------------

    def _download(self, manifest: Manifest) -> tuple[Path, bytes]:
        """Stream the blob into a temp file beside Destination.

        Returns the temp path and the SHA-256 of what was written.  The temp
        file is removed if anything fails.
        """
        destination = self._config.destination
        destination.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{destination.name}.tmp-", dir=destination.parent
        )
        tmp = Path(tmp_name)
        h = hashlib.sha256()
        try:
            with os.fdopen(fd, "wb") as fh:
                for chunk in self._transport.stream(blob_relpath(manifest.digest)):
                    h.update(chunk)
                    fh.write(chunk)
                fh.flush()
                os.fsync(fh.fileno())
        except BaseException:
            tmp.unlink(missing_ok=True)
            raise
        return tmp, h.digest()

    def _install(self, tmp: Path, manifest: Manifest) -> None:
        destination = self._config.destination
        os.replace(tmp, destination)
        record = installed_manifest_path(destination)
        try:
            atomic_write(record, manifest_codec.serialize(manifest))
        except OSError as exc:
            logger.error(
                "%s now holds version %s but %s could not be written: %s",
                destination,
                manifest.version.raw,
                record,
                exc,
            )
            raise StoreIoError(
                f"Installed {destination} (version {manifest.version.raw}) "
                f"but cannot record it in {record}: {exc}"
            ) from exc

    def _restart_units(self) -> list[RestartFailure]:
        failures: list[RestartFailure] = []
        for unit in self._config.restart_units:
            try:
                self._restarter.restart(unit)
            except TakoError as exc:
                logger.error("Failed to restart %s: %s", unit, exc)
                failures.append(RestartFailure(unit=unit, reason=str(exc)))
        return failures

    # ------------------------------------------------------------------
    # Driver
    # ------------------------------------------------------------------

    def fetch(self, init: bool = False) -> FetchResult:
        """Run one fetch attempt to completion.

        With ``init=True`` the attempt ends as ``no_candidate`` without
        contacting the origin if anything is already installed.

        Raises a TakoError subclass on failure.
        """
        machine = FetchMachine(self._label)
        destination = self._config.destination
        installed = self.installed_manifest()
        installed_version = installed.version if installed is not None else None

        def _result(outcome: FetchOutcome, **kw: object) -> FetchResult:
            return FetchResult(
                outcome=outcome,
                destination=destination,
                installed_before=installed_version,
                transitions=machine.history,
                **kw,  # type: ignore[arg-type]
            )

        if init and (installed is not None or destination.exists()):
            machine.fire(FetchEvent.ALREADY_INSTALLED, str(destination))
            return _result(FetchOutcome.NO_CANDIDATE)

        machine.fire(FetchEvent.START, self._config.origin)
        try:
            candidates, seen, rejected = self.list_candidates()
        except TakoError as exc:
            machine.fire(FetchEvent.ERROR, str(exc))
            raise

        machine.fire(FetchEvent.LISTED, f"{len(candidates)}/{seen} verified")
        selected = self.select(candidates, installed_version)
        if selected is None:
            machine.fire(FetchEvent.NOTHING_NEWER)
            logger.info(
                "No candidate newer than %s at %s (%d verified, %d rejected).",
                installed_version or "nothing",
                self._config.origin,
                len(candidates),
                rejected,
            )
            return _result(
                FetchOutcome.NO_CANDIDATE,
                candidates_seen=seen,
                candidates_rejected=rejected,
            )

        machine.fire(FetchEvent.SELECTED, selected.version.raw)
        try:
            tmp, actual = self._download(selected)
        except TakoError as exc:
            machine.fire(FetchEvent.ERROR, str(exc))
            raise
        except OSError as exc:
            machine.fire(FetchEvent.ERROR, str(exc))
            raise StoreIoError(f"Cannot write download for {destination}: {exc}") from exc

        machine.fire(FetchEvent.DOWNLOADED, format_digest(actual))
        if actual != selected.digest:
            tmp.unlink(missing_ok=True)
            err = DigestMismatch(selected.content_address, format_digest(actual))
            machine.fire(FetchEvent.ERROR, str(err))
            raise err

        machine.fire(FetchEvent.DIGEST_OK)
        try:
            self._install(tmp, selected)
        except StoreIoError as exc:
            machine.fire(FetchEvent.ERROR, str(exc))
            raise
        except OSError as exc:
            tmp.unlink(missing_ok=True)
            machine.fire(FetchEvent.ERROR, str(exc))
            raise StoreIoError(f"Cannot install {destination}: {exc}") from exc

        machine.fire(FetchEvent.INSTALLED, str(destination))
        logger.info(
            "Installed %s version %s (%s).",
            destination,
            selected.version.raw,
            selected.content_address,
        )

        failures = self._restart_units()
        machine.fire(FetchEvent.RESTARTS_FINISHED, f"{len(failures)} failed")
        return _result(
            FetchOutcome.DONE,
            version=selected.version,
            digest=selected.content_address,
            candidates_seen=seen,
            candidates_rejected=rejected,
            restart_failures=tuple(failures),
        )


def fetch(
    config: FetchConfig,
    init: bool = False,
    transport: Transport | None = None,
    restarter: Restarter | None = None,
    settings: Settings | None = None,
) -> FetchResult:
    """Convenience wrapper around :meth:`Fetcher.fetch`."""
    return Fetcher(config, transport, restarter, settings).fetch(init=init)
