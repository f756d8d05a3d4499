"""
QR payload decoding.

An NZCP QR code carries ``NZCP:/<version>/<base32>`` where the body is
RFC 4648 base32, uppercase, with the trailing ``=`` padding stripped.
"""

from __future__ import annotations

import base64
import binascii
import re
from dataclasses import dataclass

from nzcp_verifier.config import NZCP_SCHEME, NZCP_VERSION
from nzcp_verifier.errors import InvalidBase32Error, MalformedURIError

_VERSION_RE = re.compile(r"[0-9]+")
_MAX_VERSION_DIGITS = 9
_BASE32_RE = re.compile(r"[A-Z2-7]+")
_BASE32_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZ234567"

# Unpadded final group lengths that cannot encode a whole number of bytes.
_INVALID_TAIL_LENGTHS = {1, 3, 6}

# Final group length -> low bits of the last character that carry no data
# and must be zero.
_UNUSED_TAIL_BITS = {2: 2, 4: 4, 5: 1, 7: 3}


@dataclass(frozen=True)
class ParsedToken:
    """Version and raw bytes recovered from a scanned string."""

    version: int
    payload: bytes


def decode_token(
    token: str,
    expected_scheme: str = NZCP_SCHEME,
    supported_version: int = NZCP_VERSION,
) -> ParsedToken:
    """Split a scanned string into version and decoded payload bytes.

    Args:
        token: The text read from the QR code.
        expected_scheme: Scheme prefix the token must carry (case-sensitive).
        supported_version: The only version segment accepted.

    Returns:
        ParsedToken with the version and the COSE bytes.

    Raises:
        MalformedURIError: If the prefix, version or separator is wrong.
        InvalidBase32Error: If the body is not valid unpadded base32.
    """
    prefix = f"{expected_scheme}:/"
    if not token.startswith(prefix):
        raise MalformedURIError(f"Token does not start with {prefix!r}")

    version_segment, sep, body = token[len(prefix):].partition("/")
    if not sep:
        raise MalformedURIError("Missing '/' after version segment")
    if not _VERSION_RE.fullmatch(version_segment):
        raise MalformedURIError(f"Version segment is not numeric: {version_segment!r}")
    if len(version_segment) > _MAX_VERSION_DIGITS:
        raise MalformedURIError(f"Version segment too long: {len(version_segment)} digits")

    version = int(version_segment)
    if version != supported_version:
        raise MalformedURIError(f"Unsupported version: {version}")
    if not body:
        raise MalformedURIError("Empty payload")

    return ParsedToken(version=version, payload=b32decode_unpadded(body))


def b32decode_unpadded(data: str) -> bytes:
    """Decode unpadded uppercase base32 (RFC 4648 section 6).

    Args:
        data: Base32 text without ``=`` padding.

    Returns:
        Decoded bytes.

    Raises:
        InvalidBase32Error: On characters outside ``A-Z2-7``, an
            impossible final group length, or non-zero unused bits.
    """
    if not _BASE32_RE.fullmatch(data):
        raise InvalidBase32Error("Payload contains characters outside A-Z2-7")

    tail = len(data) % 8
    if tail in _INVALID_TAIL_LENGTHS:
        raise InvalidBase32Error(f"Invalid final group length: {tail}")

    unused = _UNUSED_TAIL_BITS.get(tail, 0)
    if _BASE32_ALPHABET.index(data[-1]) & ((1 << unused) - 1):
        raise InvalidBase32Error("Non-zero unused bits in final group")

    # Restore padding so the stdlib decoder accepts the final group
    padding = (8 - tail) % 8
    try:
        return base64.b32decode(data + "=" * padding, casefold=False)
    except binascii.Error as e:
        raise InvalidBase32Error(f"Invalid base32: {e}") from e
