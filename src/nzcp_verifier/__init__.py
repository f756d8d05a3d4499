"""
NZCP Verifier - NZ COVID Pass verification library.

Supports:
- NZCP:/1/ QR payloads (unpadded base32)
- COSE_Sign1 envelopes with ES256 (ECDSA P-256, SHA-256) signatures
- CWT claims with a W3C verifiable credential
- did:web issuer key resolution, or bundled DID Documents offline
"""

__version__ = "0.1.0"

from nzcp_verifier.errors import ErrorKind, NZCPError
from nzcp_verifier.claims import Claims
from nzcp_verifier.keys import KeySource, PublicKey
from nzcp_verifier.did_resolver import DIDResolver, DIDResolutionError, StaticKeySource
from nzcp_verifier.trust import TrustResolver
from nzcp_verifier.verifier import (
    NZCPVerifier,
    Outcome,
    VerificationResult,
    VerificationState,
    verify_pass,
)

__all__ = [
    "NZCPVerifier",
    "VerificationResult",
    "VerificationState",
    "Outcome",
    "verify_pass",
    "Claims",
    "ErrorKind",
    "NZCPError",
    "PublicKey",
    "KeySource",
    "TrustResolver",
    "DIDResolver",
    "DIDResolutionError",
    "StaticKeySource",
]
