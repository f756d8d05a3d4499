"""
CWT claims parsing for NZ COVID Pass payloads.

Pure structural extraction: no trust or time decisions are made here.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass

from nzcp_verifier import cbor
from nzcp_verifier.cbor import CborArray, CborBytes, CborMap, CborText, CborUnsigned, CborValue
from nzcp_verifier.errors import MalformedClaimsError

CREDENTIALS_V1_CONTEXT = "https://www.w3.org/2018/credentials/v1"
VERIFIABLE_CREDENTIAL = "VerifiableCredential"

# CWT claim labels (RFC 8392) with the text aliases we also accept
CLAIM_ISS = (CborUnsigned(1), CborText("iss"))
CLAIM_EXP = (CborUnsigned(4), CborText("exp"))
CLAIM_NBF = (CborUnsigned(5), CborText("nbf"))
CLAIM_CTI = (CborUnsigned(7), CborText("cti"))
CLAIM_VC = CborText("vc")


@dataclass(frozen=True)
class Claims:
    """Claims carried by a pass.

    ``credential_subject`` is passed through untouched as decoded CBOR.
    """

    issuer: str
    not_before: int
    expiry: int
    credential_subject: CborMap
    jti: str | None = None
    context: tuple[str, ...] = ()
    version: str | None = None
    types: tuple[str, ...] = ()

    @property
    def pass_type(self) -> str | None:
        """The credential type other than VerifiableCredential, if any."""
        for t in self.types:
            if t != VERIFIABLE_CREDENTIAL:
                return t
        return None


def _lookup(claims: CborMap, labels: tuple[CborValue, ...]) -> CborValue | None:
    for label in labels:
        value = claims.get(label)
        if value is not None:
            return value
    return None


def _require_int(claims: CborMap, labels: tuple[CborValue, ...], name: str) -> int:
    value = _lookup(claims, labels)
    if value is None:
        raise MalformedClaimsError(f"Missing {name} claim")
    if not isinstance(value, CborUnsigned):
        raise MalformedClaimsError(f"{name} claim must be an unsigned integer")
    return value.value


def _text_array(value: CborValue | None, name: str) -> tuple[str, ...]:
    if not isinstance(value, CborArray) or not value.items:
        raise MalformedClaimsError(f"vc.{name} must be a non-empty array")
    result: list[str] = []
    for item in value.items:
        if not isinstance(item, CborText):
            raise MalformedClaimsError(f"vc.{name} entries must be text")
        result.append(item.value)
    return tuple(result)


def parse_claims(payload: bytes) -> Claims:
    """Decode a COSE payload into Claims.

    Args:
        payload: The payload byte string from the COSE_Sign1 message.

    Returns:
        The extracted claims.

    Raises:
        MalformedClaimsError: If required claims are missing, mistyped or
            not-before is after expiry.
        TruncatedCBORError, UnsupportedCBORError: If the payload is not CBOR
            we can decode.
    """
    claims = cbor.loads(payload)
    if not isinstance(claims, CborMap):
        raise MalformedClaimsError("Claims payload must be a CBOR map")

    issuer = _lookup(claims, CLAIM_ISS)
    if issuer is None:
        raise MalformedClaimsError("Missing iss claim")
    if not isinstance(issuer, CborText) or not issuer.value:
        raise MalformedClaimsError("iss claim must be non-empty text")

    not_before = _require_int(claims, CLAIM_NBF, "nbf")
    expiry = _require_int(claims, CLAIM_EXP, "exp")
    if not_before > expiry:
        raise MalformedClaimsError(f"nbf {not_before} is after exp {expiry}")

    jti = None
    cti = _lookup(claims, CLAIM_CTI)
    if cti is not None:
        if not isinstance(cti, CborBytes) or len(cti.value) != 16:
            raise MalformedClaimsError("cti claim must be a 16-byte string")
        jti = uuid.UUID(bytes=cti.value).urn

    vc = claims.get(CLAIM_VC)
    if not isinstance(vc, CborMap):
        raise MalformedClaimsError("Missing or non-map vc claim")

    context = _text_array(vc.get(CborText("@context")), "@context")
    if context[0] != CREDENTIALS_V1_CONTEXT:
        raise MalformedClaimsError(f"vc.@context must start with {CREDENTIALS_V1_CONTEXT}")

    types = _text_array(vc.get(CborText("type")), "type")
    if VERIFIABLE_CREDENTIAL not in types:
        raise MalformedClaimsError(f"vc.type must include {VERIFIABLE_CREDENTIAL}")

    version = vc.get(CborText("version"))
    if not isinstance(version, CborText):
        raise MalformedClaimsError("vc.version must be text")

    subject = vc.get(CborText("credentialSubject"))
    if not isinstance(subject, CborMap):
        raise MalformedClaimsError("Missing or non-map vc.credentialSubject")

    return Claims(
        issuer=issuer.value,
        not_before=not_before,
        expiry=expiry,
        credential_subject=subject,
        jti=jti,
        context=context,
        version=version.value,
        types=types,
    )
