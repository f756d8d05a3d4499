"""
NZ COVID Pass Verifier.

Runs a scanned QR string through the full pipeline:

1. Decoding: scheme/version check, base32, CBOR
2. Parsing: COSE_Sign1 envelope, protected header, CWT claims
3. Resolving: trusted issuer check and key lookup
4. Verifying: ES256 signature over the Sig_structure
5. ValidatingTime: nbf <= now < exp

The first failure is final and ends in a rejected result.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Collection

from nzcp_verifier import cbor, config
from nzcp_verifier.base32 import decode_token
from nzcp_verifier.claims import Claims, parse_claims
from nzcp_verifier.cose import parse_cose_sign1, parse_protected_header
from nzcp_verifier.did_resolver import DIDResolver
from nzcp_verifier.errors import ErrorKind, ExpiredError, NotYetValidError, NZCPError
from nzcp_verifier.keys import KeySource
from nzcp_verifier.signature import verify_signature
from nzcp_verifier.trust import TrustResolver

log = logging.getLogger(__name__)


class VerificationState(Enum):
    """Pipeline stages, plus the two terminal states."""

    DECODING = "decoding"
    PARSING = "parsing"
    RESOLVING = "resolving"
    VERIFYING = "verifying"
    VALIDATING_TIME = "validating_time"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class Outcome(Enum):
    """What a presentation layer needs to tell the user."""

    VALID = "valid"
    INVALID = "invalid"
    EXPIRED = "expired"
    NOT_YET_VALID = "not_yet_valid"
    UNTRUSTED = "untrusted"
    UNAVAILABLE = "unavailable"


_OUTCOMES = {
    ErrorKind.EXPIRED: Outcome.EXPIRED,
    ErrorKind.NOT_YET_VALID: Outcome.NOT_YET_VALID,
    ErrorKind.UNTRUSTED_ISSUER: Outcome.UNTRUSTED,
    ErrorKind.KEY_NOT_FOUND: Outcome.UNTRUSTED,
    ErrorKind.RESOLUTION_FAILED: Outcome.UNAVAILABLE,
}


@dataclass(frozen=True)
class VerificationResult:
    """Terminal verdict for one pass.

    Accepted results carry the claims. Rejected results carry the error
    kind, the stage that failed and, once claims were parsed, the issuer.
    """

    state: VerificationState
    claims: Claims | None = None
    error: ErrorKind | None = None
    message: str | None = None
    failed_stage: VerificationState | None = None
    issuer: str | None = None

    @classmethod
    def accepted(cls, claims: Claims) -> VerificationResult:
        return cls(state=VerificationState.ACCEPTED, claims=claims, issuer=claims.issuer)

    @classmethod
    def rejected(
        cls,
        error: NZCPError,
        stage: VerificationState,
        issuer: str | None = None,
    ) -> VerificationResult:
        return cls(
            state=VerificationState.REJECTED,
            error=error.kind,
            message=error.message,
            failed_stage=stage,
            issuer=issuer,
        )

    @property
    def is_valid(self) -> bool:
        return self.state is VerificationState.ACCEPTED

    @property
    def outcome(self) -> Outcome:
        if self.is_valid:
            return Outcome.VALID
        return _OUTCOMES.get(self.error, Outcome.INVALID)

    @property
    def retryable(self) -> bool:
        """True when a retry could change the verdict."""
        return self.error is not None and self.error.retryable


def check_validity_window(claims: Claims, current_time: int) -> None:
    """Check ``nbf <= current_time < exp``.

    Raises:
        NotYetValidError: If current_time is before nbf.
        ExpiredError: If current_time is at or after exp.
    """
    if current_time < claims.not_before:
        raise NotYetValidError(f"Pass is not valid until {claims.not_before}")
    if current_time >= claims.expiry:
        raise ExpiredError(f"Pass expired at {claims.expiry}")


class NZCPVerifier:
    """NZ COVID Pass verifier.

    Holds no per-pass state, so one instance can verify many passes
    concurrently.
    """

    def __init__(
        self,
        key_source: KeySource | None = None,
        trusted_issuers: Collection[str] | None = None,
        expected_scheme: str = config.NZCP_SCHEME,
        resolver_timeout: float | None = None,
    ) -> None:
        """Initialize the verifier.

        Args:
            key_source: Where issuer keys come from. A did:web resolver is
                created if not provided.
            trusted_issuers: Default trusted issuer DIDs, used when a call
                does not pass its own.
            expected_scheme: QR scheme prefix to accept.
            resolver_timeout: Seconds to wait for key lookups.
        """
        self.key_source = key_source or DIDResolver(
            timeout=config.RESOLVER_TIMEOUT,
            verify_ssl=config.VERIFY_SSL,
        )
        self.trusted_issuers = (
            frozenset(trusted_issuers) if trusted_issuers is not None else config.TRUSTED_ISSUERS
        )
        self.expected_scheme = expected_scheme
        self.trust_resolver = TrustResolver(self.key_source, timeout=resolver_timeout)

    async def verify(
        self,
        token: str,
        current_time: int,
        trusted_issuers: Collection[str] | None = None,
    ) -> VerificationResult:
        """Verify a scanned NZ COVID Pass.

        Args:
            token: The text read from the QR code.
            current_time: Unix seconds to check the validity window against.
            trusted_issuers: Issuer DIDs trusted for this call. Defaults to
                the set given at construction.

        Returns:
            VerificationResult, accepted or rejected.
        """
        trusted = self.trusted_issuers if trusted_issuers is None else frozenset(trusted_issuers)
        state = VerificationState.DECODING
        issuer: str | None = None

        try:
            log.debug("State: %s", state.value)
            parsed = decode_token(token, self.expected_scheme)
            root = cbor.loads(parsed.payload)

            state = VerificationState.PARSING
            log.debug("State: %s", state.value)
            envelope = parse_cose_sign1(root)
            header = parse_protected_header(envelope.protected_header_bytes)
            claims = parse_claims(envelope.payload_bytes)
            issuer = claims.issuer

            state = VerificationState.RESOLVING
            log.debug("State: %s (key %r for %s)", state.value, header.key_id_text, issuer)
            key = await self.trust_resolver.resolve(issuer, header.key_id, trusted)

            state = VerificationState.VERIFYING
            log.debug("State: %s", state.value)
            verify_signature(
                envelope.protected_header_bytes,
                envelope.payload_bytes,
                envelope.signature_bytes,
                key,
            )

            state = VerificationState.VALIDATING_TIME
            log.debug("State: %s", state.value)
            check_validity_window(claims, current_time)

        except NZCPError as e:
            log.warning("Pass rejected while %s: %s (%s)", state.value, e.kind.value, e.message)
            return VerificationResult.rejected(e, stage=state, issuer=issuer)

        log.info("Pass accepted from %s (jti=%s)", claims.issuer, claims.jti)
        return VerificationResult.accepted(claims)


def verify_pass(
    token: str,
    current_time: int,
    trusted_issuers: Collection[str] | None = None,
    key_source: KeySource | None = None,
) -> VerificationResult:
    """Convenience function to verify a pass from synchronous code.

    Args:
        token: The text read from the QR code.
        current_time: Unix seconds to check the validity window against.
        trusted_issuers: Trusted issuer DIDs. Defaults to the configured set.
        key_source: Custom key source. did:web resolution if not provided.

    Returns:
        VerificationResult, accepted or rejected.
    """
    verifier = NZCPVerifier(key_source=key_source, trusted_issuers=trusted_issuers)
    return asyncio.run(verifier.verify(token, current_time))
