"""
COSE_Sign1 envelope parsing (RFC 9052 section 4.2).

The protected header and payload are kept as the exact byte strings that
were on the wire, since the signature covers those bytes and not any
re-encoding of their contents.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from nzcp_verifier import cbor
from nzcp_verifier.cbor import CborArray, CborBytes, CborMap, CborNegative, CborTag, CborUnsigned, CborValue
from nzcp_verifier.errors import MalformedEnvelopeError, UnsupportedAlgorithmError

COSE_SIGN1_TAG = 18

HEADER_ALG = CborUnsigned(1)
HEADER_KID = CborUnsigned(4)


class Algorithm(Enum):
    """COSE algorithm identifiers this verifier implements."""

    ES256 = -7


@dataclass(frozen=True)
class CoseSign1:
    """The four fields of a COSE_Sign1 message."""

    protected_header_bytes: bytes
    unprotected_header: CborMap
    payload_bytes: bytes
    signature_bytes: bytes


@dataclass(frozen=True)
class ProtectedHeader:
    algorithm: Algorithm
    key_id: bytes

    @property
    def key_id_text(self) -> str:
        """Key id as the DID URL fragment it names (e.g. ``key-1``)."""
        return self.key_id.decode("utf-8")


def parse_cose_sign1(root: CborValue) -> CoseSign1:
    """Interpret a decoded CBOR item as a COSE_Sign1 message.

    Accepts the bare four-element array or the array wrapped in tag 18.

    Raises:
        MalformedEnvelopeError: On any other shape.
    """
    if isinstance(root, CborTag):
        if root.tag != COSE_SIGN1_TAG:
            raise MalformedEnvelopeError(f"Unexpected CBOR tag {root.tag}, expected {COSE_SIGN1_TAG}")
        root = root.value

    if not isinstance(root, CborArray):
        raise MalformedEnvelopeError("COSE_Sign1 must be a CBOR array")
    if len(root) != 4:
        raise MalformedEnvelopeError(f"COSE_Sign1 must have 4 elements, got {len(root)}")

    protected, unprotected, payload, signature = root.items
    if not isinstance(protected, CborBytes):
        raise MalformedEnvelopeError("Protected header must be a byte string")
    if not isinstance(unprotected, CborMap):
        raise MalformedEnvelopeError("Unprotected header must be a map")
    if not isinstance(payload, CborBytes):
        raise MalformedEnvelopeError("Payload must be a byte string")
    if not isinstance(signature, CborBytes):
        raise MalformedEnvelopeError("Signature must be a byte string")

    return CoseSign1(
        protected_header_bytes=protected.value,
        unprotected_header=unprotected,
        payload_bytes=payload.value,
        signature_bytes=signature.value,
    )


def parse_protected_header(data: bytes) -> ProtectedHeader:
    """Decode the serialized protected header map.

    Raises:
        MalformedEnvelopeError: If the header is not a map, or the algorithm
            or key id is missing or mistyped.
        UnsupportedAlgorithmError: If the algorithm is well-formed but not one
            we implement.
        TruncatedCBORError, UnsupportedCBORError: If the bytes are not CBOR
            we can decode.
    """
    header = cbor.loads(data)
    if not isinstance(header, CborMap):
        raise MalformedEnvelopeError("Protected header must decode to a map")

    alg = header.get(HEADER_ALG)
    if alg is None:
        raise MalformedEnvelopeError("Protected header has no algorithm")
    if not isinstance(alg, (CborUnsigned, CborNegative)):
        raise MalformedEnvelopeError("Algorithm identifier must be an integer")
    try:
        algorithm = Algorithm(alg.value)
    except ValueError:
        raise UnsupportedAlgorithmError(f"Unsupported algorithm {alg.value}") from None

    kid = header.get(HEADER_KID)
    if kid is None:
        raise MalformedEnvelopeError("Protected header has no key id")
    if not isinstance(kid, CborBytes) or not kid.value:
        raise MalformedEnvelopeError("Key id must be a non-empty byte string")
    try:
        kid.value.decode("utf-8")
    except UnicodeDecodeError:
        raise MalformedEnvelopeError("Key id is not UTF-8") from None

    return ProtectedHeader(algorithm=algorithm, key_id=kid.value)
