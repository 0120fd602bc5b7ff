"""Error taxonomy for Tako.

Every fallible operation raises a subclass of :class:`TakoError`.  The
engines decide at their boundary whether a given error is absorbed
(a single bad candidate during listing) or aborts the operation (anything on
the selected candidate's download/verify/install path).

"Nothing to fetch" is not an error; see ``FetchOutcome.NO_CANDIDATE``.
"""

from __future__ import annotations


class TakoError(RuntimeError):
    """Base class for all Tako failures."""


class MalformedVersion(TakoError):
    """Raised when a version string is empty or cannot be stored."""


class InvalidConfig(TakoError):
    """Raised for a structural problem on a specific config file line."""

    def __init__(self, lineno: int, message: str) -> None:
        self.lineno = lineno
        self.message = message
        super().__init__(f"line {lineno}: {message}")


class IncompleteConfig(TakoError):
    """Raised when a required config key is missing."""


class InvalidPublicKeyData(TakoError):
    """Raised when a public key cannot be decoded.

    The message never says why; callers get the same error for bad base64
    and for a wrong length.
    """

    def __init__(self, message: str = "Invalid public key data.") -> None:
        super().__init__(message)


class InvalidSecretKeyData(TakoError):
    """Raised when a secret key cannot be obtained or decoded.

    Bad base64, a wrong length, malformed PKCS#8 and an unreadable key file
    are all reported identically.
    """

    def __init__(self, message: str = "Invalid secret key data.") -> None:
        super().__init__(message)


class KeyGenerationFailed(TakoError):
    """Raised when the system random source fails during key generation."""


class InvalidManifest(TakoError):
    """Raised when a manifest is structurally broken."""


class InvalidSignature(TakoError):
    """Raised when a manifest signature does not verify.

    Carries no detail about which part of the check failed.
    """

    def __init__(self) -> None:
        super().__init__("Invalid signature.")


class DigestMismatch(TakoError):
    """Raised when downloaded content does not hash to the manifest digest."""

    def __init__(self, expected: str, actual: str) -> None:
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Digest mismatch: manifest says {expected}, content is {actual}."
        )


class Duplicate(TakoError):
    """Raised when publishing would conflict with an existing version."""

    def __init__(self, version: str, existing: str | None = None) -> None:
        self.version = version
        self.existing = existing if existing is not None else version
        if self.existing == version:
            msg = (
                f"Version '{version}' already exists with a different digest."
            )
        else:
            msg = (
                f"Version '{version}' collides with existing version "
                f"'{self.existing}' (they differ only in separators)."
            )
        super().__init__(msg)


class DownloadError(TakoError):
    """Raised when the transport fails to retrieve remote bytes."""


class StoreIoError(TakoError):
    """Raised when a filesystem operation in install or publish fails."""


class RestartError(TakoError):
    """Raised when restarting a unit fails."""


class InvalidTransitionError(TakoError):
    """Raised when the fetch state machine is driven along an invalid edge."""
