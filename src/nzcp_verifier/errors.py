"""
Error taxonomy for NZCP verification.

Every component raises a subclass of NZCPError tagged with its ErrorKind.
The verifier converts the first one raised into a rejected result.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(Enum):
    """Reasons a pass can be rejected."""

    MALFORMED_URI = "malformed_uri"
    INVALID_BASE32 = "invalid_base32"
    TRUNCATED_CBOR = "truncated_cbor"
    UNSUPPORTED_CBOR = "unsupported_cbor"
    MALFORMED_ENVELOPE = "malformed_envelope"
    UNSUPPORTED_ALGORITHM = "unsupported_algorithm"
    MALFORMED_CLAIMS = "malformed_claims"
    UNTRUSTED_ISSUER = "untrusted_issuer"
    KEY_NOT_FOUND = "key_not_found"
    RESOLUTION_FAILED = "resolution_failed"
    SIGNATURE_INVALID = "signature_invalid"
    EXPIRED = "expired"
    NOT_YET_VALID = "not_yet_valid"

    @property
    def retryable(self) -> bool:
        """Only a failed key lookup may be retried by the caller."""
        return self is ErrorKind.RESOLUTION_FAILED


class NZCPError(Exception):
    """Base class for verification failures."""

    kind: ErrorKind

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.kind.value)
        self.message = message or self.kind.value


class MalformedURIError(NZCPError):
    """Scheme prefix, version or separator missing or wrong."""

    kind = ErrorKind.MALFORMED_URI


class InvalidBase32Error(NZCPError):
    """Payload is not unpadded uppercase RFC 4648 base32."""

    kind = ErrorKind.INVALID_BASE32


class TruncatedCBORError(NZCPError):
    """A CBOR item runs past the end of the buffer."""

    kind = ErrorKind.TRUNCATED_CBOR


class UnsupportedCBORError(NZCPError):
    """CBOR construct outside the subject profile or past a sanity limit."""

    kind = ErrorKind.UNSUPPORTED_CBOR


class MalformedEnvelopeError(NZCPError):
    """The COSE_Sign1 structure has the wrong shape."""

    kind = ErrorKind.MALFORMED_ENVELOPE


class UnsupportedAlgorithmError(NZCPError):
    """The protected header names an algorithm we do not implement."""

    kind = ErrorKind.UNSUPPORTED_ALGORITHM


class MalformedClaimsError(NZCPError):
    """The CWT claims are missing, mistyped or inconsistent."""

    kind = ErrorKind.MALFORMED_CLAIMS


class UntrustedIssuerError(NZCPError):
    """The issuer is not in the caller's trusted set."""

    kind = ErrorKind.UNTRUSTED_ISSUER


class KeyNotFoundError(NZCPError):
    """The trusted issuer publishes no usable key for the key id."""

    kind = ErrorKind.KEY_NOT_FOUND


class ResolutionFailedError(NZCPError):
    """Key material could not be fetched. Safe to retry."""

    kind = ErrorKind.RESOLUTION_FAILED


class SignatureInvalidError(NZCPError):
    """The signature does not validate against the resolved key."""

    kind = ErrorKind.SIGNATURE_INVALID


class ExpiredError(NZCPError):
    """Current time is at or after the expiry claim."""

    kind = ErrorKind.EXPIRED


class NotYetValidError(NZCPError):
    """Current time is before the not-before claim."""

    kind = ErrorKind.NOT_YET_VALID
