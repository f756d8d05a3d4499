"""
Minimal CBOR decoder for the NZCP profile.

Decodes definite-length CBOR (RFC 8949) into an immutable tree of
CborValue nodes. Every length field is treated as untrusted and checked
against the bytes that remain before anything is sliced or allocated.

Not supported: indefinite-length items, floats, unassigned simple values
and container map keys. These fail with UnsupportedCBORError.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import cbor2

from nzcp_verifier.errors import TruncatedCBORError, UnsupportedCBORError

MAX_DEPTH = 16
MAX_ITEMS = 1024

MAJOR_UNSIGNED = 0
MAJOR_NEGATIVE = 1
MAJOR_BYTES = 2
MAJOR_TEXT = 3
MAJOR_ARRAY = 4
MAJOR_MAP = 5
MAJOR_TAG = 6
MAJOR_SIMPLE = 7

SIMPLE_FALSE = 20
SIMPLE_TRUE = 21
SIMPLE_NULL = 22
SIMPLE_UNDEFINED = 23


class CborValue:
    """Base class for a decoded CBOR item."""

    def to_python(self) -> Any:
        """Convert this subtree to plain Python values."""
        raise NotImplementedError


@dataclass(frozen=True)
class CborUnsigned(CborValue):
    value: int

    def to_python(self) -> int:
        return self.value


@dataclass(frozen=True)
class CborNegative(CborValue):
    """Major type 1. ``value`` holds the decoded negative integer."""

    value: int

    def to_python(self) -> int:
        return self.value


@dataclass(frozen=True)
class CborBytes(CborValue):
    value: bytes

    def to_python(self) -> bytes:
        return self.value


@dataclass(frozen=True)
class CborText(CborValue):
    value: str

    def to_python(self) -> str:
        return self.value


@dataclass(frozen=True)
class CborArray(CborValue):
    items: tuple[CborValue, ...]

    def __len__(self) -> int:
        return len(self.items)

    def to_python(self) -> list[Any]:
        return [item.to_python() for item in self.items]


@dataclass(frozen=True)
class CborMap(CborValue):
    """Map with pairs kept in wire order."""

    items: tuple[tuple[CborValue, CborValue], ...]

    def get(self, key: CborValue) -> CborValue | None:
        """Return the value stored under ``key``, or None."""
        for k, v in self.items:
            if k == key:
                return v
        return None

    def to_python(self) -> dict[Any, Any]:
        return {k.to_python(): v.to_python() for k, v in self.items}


@dataclass(frozen=True)
class CborTag(CborValue):
    tag: int
    value: CborValue

    def to_python(self) -> cbor2.CBORTag:
        return cbor2.CBORTag(self.tag, self.value.to_python())


@dataclass(frozen=True)
class CborBool(CborValue):
    value: bool

    def to_python(self) -> bool:
        return self.value


@dataclass(frozen=True)
class CborNull(CborValue):
    def to_python(self) -> None:
        return None


@dataclass(frozen=True)
class CborUndefined(CborValue):
    def to_python(self) -> Any:
        return cbor2.undefined


# Map keys must be scalars so maps stay hashable and comparable.
_SCALAR_TYPES = (CborUnsigned, CborNegative, CborBytes, CborText, CborBool, CborNull)


class _Decoder:
    """Cursor over a byte buffer."""

    def __init__(self, data: bytes) -> None:
        self.data = data
        self.pos = 0

    @property
    def remaining(self) -> int:
        return len(self.data) - self.pos

    def _take(self, n: int) -> bytes:
        if n > self.remaining:
            raise TruncatedCBORError(
                f"Need {n} bytes at offset {self.pos}, {self.remaining} available"
            )
        chunk = self.data[self.pos:self.pos + n]
        self.pos += n
        return chunk

    def _read_head(self) -> tuple[int, int, int]:
        """Read an initial byte and its argument.

        Returns:
            Tuple of (major type, additional info, argument).
        """
        initial = self._take(1)[0]
        major, info = initial >> 5, initial & 0x1F
        if info < 24:
            return major, info, info
        if info <= 27:
            size = 1 << (info - 24)
            return major, info, int.from_bytes(self._take(size), "big")
        if info == 31:
            raise UnsupportedCBORError("Indefinite-length items are not supported")
        raise UnsupportedCBORError(f"Reserved additional information value {info}")

    def _check_count(self, count: int, min_item_size: int) -> int:
        if count > MAX_ITEMS:
            raise UnsupportedCBORError(f"Container of {count} items exceeds limit {MAX_ITEMS}")
        if count * min_item_size > self.remaining:
            raise TruncatedCBORError(
                f"Container claims {count} items but only {self.remaining} bytes remain"
            )
        return count

    def read_item(self, depth: int = 0) -> CborValue:
        if depth > MAX_DEPTH:
            raise UnsupportedCBORError(f"Nesting deeper than {MAX_DEPTH}")

        major, info, arg = self._read_head()

        if major == MAJOR_UNSIGNED:
            return CborUnsigned(arg)
        if major == MAJOR_NEGATIVE:
            return CborNegative(-1 - arg)
        if major == MAJOR_BYTES:
            return CborBytes(bytes(self._take(arg)))
        if major == MAJOR_TEXT:
            raw = self._take(arg)
            try:
                return CborText(raw.decode("utf-8"))
            except UnicodeDecodeError as e:
                raise UnsupportedCBORError(f"Text string is not valid UTF-8: {e}") from e
        if major == MAJOR_ARRAY:
            count = self._check_count(arg, 1)
            return CborArray(tuple(self.read_item(depth + 1) for _ in range(count)))
        if major == MAJOR_MAP:
            return self._read_map(self._check_count(arg, 2), depth)
        if major == MAJOR_TAG:
            return CborTag(arg, self.read_item(depth + 1))

        # Major type 7: simple values and floats
        if info == SIMPLE_FALSE:
            return CborBool(False)
        if info == SIMPLE_TRUE:
            return CborBool(True)
        if info == SIMPLE_NULL:
            return CborNull()
        if info == SIMPLE_UNDEFINED:
            return CborUndefined()
        if info in (25, 26, 27):
            raise UnsupportedCBORError("Floating-point values are not supported")
        raise UnsupportedCBORError(f"Unassigned simple value {arg}")

    def _read_map(self, count: int, depth: int) -> CborMap:
        pairs: list[tuple[CborValue, CborValue]] = []
        seen: set[CborValue] = set()
        for _ in range(count):
            key = self.read_item(depth + 1)
            if not isinstance(key, _SCALAR_TYPES):
                raise UnsupportedCBORError(f"Unsupported map key type: {type(key).__name__}")
            if key in seen:
                raise UnsupportedCBORError(f"Duplicate map key: {key!r}")
            seen.add(key)
            pairs.append((key, self.read_item(depth + 1)))
        return CborMap(tuple(pairs))


def decode(data: bytes) -> tuple[CborValue, int]:
    """Decode the first CBOR item in ``data``.

    Args:
        data: Raw CBOR bytes.

    Returns:
        Tuple of (decoded value, number of bytes consumed).

    Raises:
        TruncatedCBORError: If the item runs past the end of ``data``.
        UnsupportedCBORError: If the item uses an unsupported construct.
    """
    decoder = _Decoder(data)
    value = decoder.read_item()
    return value, decoder.pos


def loads(data: bytes) -> CborValue:
    """Decode ``data`` as exactly one CBOR item with no trailing bytes."""
    value, consumed = decode(data)
    if consumed != len(data):
        raise UnsupportedCBORError(f"{len(data) - consumed} trailing bytes after CBOR item")
    return value


def encode_canonical(value: CborValue) -> bytes:
    """Encode a value tree deterministically (RFC 8949 core deterministic encoding).

    Byte strings are written verbatim, so wrapping previously decoded
    bstr fields reproduces them exactly.
    """
    return cbor2.dumps(value.to_python(), canonical=True)
