"""
COSE_Sign1 ES256 signature verification.

The signed bytes are the deterministic CBOR encoding of
``["Signature1", protected, h'', payload]`` (RFC 9052 section 4.4). The
signature is the raw r || s concatenation, not DER.
"""

from __future__ import annotations

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import encode_dss_signature

from nzcp_verifier.cbor import CborArray, CborBytes, CborText, encode_canonical
from nzcp_verifier.errors import MalformedEnvelopeError, SignatureInvalidError
from nzcp_verifier.keys import PublicKey

SIGNATURE1_CONTEXT = "Signature1"


def build_sig_structure(protected_header_bytes: bytes, payload_bytes: bytes) -> bytes:
    """Encode the ToBeSigned bytes for a single-signer message.

    Both inputs are wrapped verbatim as byte strings, with an empty
    external AAD.
    """
    return encode_canonical(CborArray((
        CborText(SIGNATURE1_CONTEXT),
        CborBytes(protected_header_bytes),
        CborBytes(b""),
        CborBytes(payload_bytes),
    )))


def verify_signature(
    protected_header_bytes: bytes,
    payload_bytes: bytes,
    signature_bytes: bytes,
    key: PublicKey,
) -> None:
    """Verify an ES256 signature over a COSE_Sign1 message.

    Raises:
        MalformedEnvelopeError: If the signature is empty or odd-length.
        SignatureInvalidError: If the signature does not validate.
    """
    if not signature_bytes or len(signature_bytes) % 2:
        raise MalformedEnvelopeError(
            f"Signature must split into equal r and s halves, got {len(signature_bytes)} bytes"
        )

    half = len(signature_bytes) // 2
    r = int.from_bytes(signature_bytes[:half], byteorder="big")
    s = int.from_bytes(signature_bytes[half:], byteorder="big")

    to_be_signed = build_sig_structure(protected_header_bytes, payload_bytes)

    try:
        ec_public_key = key.to_cryptography()
    except ValueError:
        raise SignatureInvalidError("Signature does not validate") from None

    # Wrong key, wrong message and bad r/s all leave through this one raise
    try:
        ec_public_key.verify(
            encode_dss_signature(r, s),
            to_be_signed,
            ec.ECDSA(hashes.SHA256()),
        )
    except InvalidSignature:
        raise SignatureInvalidError("Signature does not validate") from None
