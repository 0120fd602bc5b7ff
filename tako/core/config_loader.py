"""Fetch config file loader.

A config file is a list of ``Key=Value`` lines::

    Origin=https://images.example.com/app-foo
    PublicKey=8+r5DKNN/cwI+h0oHxMtgdyND3S/5xDLHQu0hFUmq+g=
    Destination=/var/lib/images/app-foo
    RestartUnit=app-foo.service

Blank lines and ``#`` comments are ignored.  ``Origin``, ``PublicKey`` and
``Destination`` must each appear exactly once; ``RestartUnit`` may repeat
and keeps its order.  Anything else fails the whole load, naming the line.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from pathlib import Path
from urllib.parse import urlparse

from tako.core.keys import PublicKey, decode_public
from tako.errors import IncompleteConfig, InvalidConfig, InvalidPublicKeyData
from tako.models.config import FetchConfig

logger = logging.getLogger(__name__)

_SINGLE_KEYS = ("Origin", "PublicKey", "Destination")
_KNOWN_KEYS = _SINGLE_KEYS + ("RestartUnit",)


def validate_origin(value: str) -> str:
    """Return *value* if it is an absolute http(s) or file URI.

    Raises ValueError otherwise.
    """
    parsed = urlparse(value)
    if parsed.scheme in ("http", "https"):
        if not parsed.netloc:
            raise ValueError("HTTP origin must include a host.")
    elif parsed.scheme == "file":
        if not parsed.path.startswith("/"):
            raise ValueError("file origin must be an absolute path.")
    else:
        raise ValueError(
            "Origin must be an absolute 'http://', 'https://' or 'file://' URI."
        )
    if parsed.query or parsed.fragment:
        raise ValueError("Origin must not have a query or fragment.")
    return value.rstrip("/")


def parse_config(lines: Iterable[str]) -> FetchConfig:
    """Parse config *lines*.  Line numbers in errors are 1-based."""
    seen: set[str] = set()
    origin: str | None = None
    public_key: PublicKey | None = None
    destination: Path | None = None
    restart_units: list[str] = []

    for lineno, raw in enumerate(lines, start=1):
        line = raw.rstrip("\r\n")
        if not line.strip() or line.lstrip().startswith("#"):
            continue

        key, sep, value = line.partition("=")
        if not sep:
            raise InvalidConfig(
                lineno,
                "Line contains no '='. Expected 'Origin=https://example.com'-like "
                "key-value pair.",
            )
        if key not in _KNOWN_KEYS:
            raise InvalidConfig(
                lineno,
                f"Unknown key '{key}'. Expected 'Origin', 'PublicKey', "
                "'Destination', or 'RestartUnit'.",
            )
        if key in seen:
            raise InvalidConfig(lineno, f"Duplicate key '{key}'. It may appear only once.")
        if key in _SINGLE_KEYS:
            seen.add(key)

        if key == "Origin":
            try:
                origin = validate_origin(value)
            except ValueError as exc:
                raise InvalidConfig(lineno, str(exc)) from None
        elif key == "PublicKey":
            try:
                public_key = decode_public(value)
            except InvalidPublicKeyData:
                raise InvalidConfig(
                    lineno,
                    "Invalid public key. Expected base64 of a 32-byte Ed25519 key.",
                ) from None
        elif key == "Destination":
            if not value:
                raise InvalidConfig(lineno, "Destination must not be empty.")
            destination = Path(value)
        else:
            if not value:
                raise InvalidConfig(lineno, "RestartUnit must not be empty.")
            restart_units.append(value)

    if origin is None:
        raise IncompleteConfig("Origin not set. Expected 'Origin='-line.")
    if public_key is None:
        raise IncompleteConfig("Public key not set. Expected 'PublicKey='-line.")
    if destination is None:
        raise IncompleteConfig("Destination not set. Expected 'Destination=/path'-line.")

    return FetchConfig(
        origin=origin,
        public_key=public_key,
        destination=destination,
        restart_units=tuple(restart_units),
    )


def load_config(path: Path) -> FetchConfig:
    """Read and parse a config file."""
    text = Path(path).read_text(encoding="utf-8")
    config = parse_config(text.splitlines())
    logger.debug(
        "Loaded config %s: origin=%s destination=%s key=%s units=%d",
        path,
        config.origin,
        config.destination,
        config.public_key.fingerprint,
        len(config.restart_units),
    )
    return config
