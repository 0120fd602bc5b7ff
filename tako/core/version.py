"""Version identifiers: parsing, total ordering, collision detection.

A version is an arbitrary user-chosen string such as ``1.0``, ``2021-03-01``
or ``1.0rc2``.  It is split into fields at every non-alphanumeric character
and at every boundary between digits and letters.  Each field is numeric
(all digits) or textual.

Ordering, field by field:

- numeric vs numeric: by integer value, then by digit text (``01 < 1``)
- textual vs textual: byte-lexically on UTF-8
  (digits other than ASCII 0-9 are textual)
- numeric vs textual: the numeric field is greater
- a missing field is lower than any field, so ``1.0 < 1.0.1``

When the field sequences are equal (``1.0`` vs ``1-0``) the raw strings
decide, so the order is total and only identical strings compare equal.
Two such versions *collide*: they must never both be published.
"""

from __future__ import annotations

import re
from functools import total_ordering

from tako.errors import MalformedVersion

_FIELD_RE = re.compile(r"[0-9]+|[^\W_0-9]+")

# Field kinds in ascending sort order; the sentinel pads the shorter version.
_SENTINEL = 0
_TEXTUAL = 1
_NUMERIC = 2

Field = tuple[int, int, bytes]


def _split_fields(raw: str) -> tuple[str, ...]:
    return tuple(_FIELD_RE.findall(raw))


def _field_key(text: str) -> Field:
    if text.isascii() and text.isdigit():
        return (_NUMERIC, int(text), text.encode("ascii"))
    return (_TEXTUAL, 0, text.encode("utf-8"))


_SENTINEL_KEY: Field = (_SENTINEL, 0, b"")


def _cmp(a: object, b: object) -> int:
    return (a > b) - (a < b)  # type: ignore[operator]


@total_ordering
class Version:
    """An immutable, totally ordered version identifier."""

    __slots__ = ("_raw", "_fields", "_keys")

    def __init__(self, raw: str) -> None:
        if not raw:
            raise MalformedVersion("Version must not be empty.")
        self._raw = raw
        self._fields = _split_fields(raw)
        self._keys = tuple(_field_key(f) for f in self._fields)

    @classmethod
    def parse(cls, raw: str) -> Version:
        """Parse *raw*; fails only if it is empty."""
        return cls(raw)

    @property
    def raw(self) -> str:
        return self._raw

    @property
    def fields(self) -> tuple[str, ...]:
        """The field texts, separators removed."""
        return self._fields

    def compare(self, other: Version) -> int:
        """Return -1, 0 or 1 as *self* sorts before, equal to, or after *other*."""
        n = max(len(self._keys), len(other._keys))
        for i in range(n):
            a = self._keys[i] if i < len(self._keys) else _SENTINEL_KEY
            b = other._keys[i] if i < len(other._keys) else _SENTINEL_KEY
            c = _cmp(a, b)
            if c:
                return c
        return _cmp(self._raw.encode("utf-8"), other._raw.encode("utf-8"))

    def collides_with(self, other: Version) -> bool:
        """True when the raw strings differ only in separators."""
        return self._raw != other._raw and self._fields == other._fields

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Version):
            return NotImplemented
        return self._raw == other._raw

    def __lt__(self, other: Version) -> bool:
        if not isinstance(other, Version):
            return NotImplemented
        return self.compare(other) < 0

    def __hash__(self) -> int:
        return hash(self._raw)

    def __str__(self) -> str:
        return self._raw

    def __repr__(self) -> str:
        return f"Version({self._raw!r})"


def parse(raw: str) -> Version:
    """Module-level alias for :meth:`Version.parse`."""
    return Version.parse(raw)


def compare(a: Version, b: Version) -> int:
    """Three-way comparison of two versions."""
    return a.compare(b)


def collides_with(a: Version, b: Version) -> bool:
    """True when *a* and *b* differ only in separator characters."""
    return a.collides_with(b)
