"""NZCP verifier configuration.

Defaults are read from the environment once at import time. Every value
here is also accepted as an explicit argument by the verifier, the
resolver and the CLI; nothing in a verification call reads it implicitly.
"""
from __future__ import annotations

import os
from pathlib import Path


# =============================================================================
# QR PAYLOAD FORMAT
# =============================================================================

NZCP_SCHEME: str = "NZCP"
NZCP_VERSION: int = 1


# =============================================================================
# TRUST ANCHORS
# =============================================================================

LIVE_ISSUER: str = "did:web:nzcp.identity.health.nz"
TEST_ISSUER: str = "did:web:nzcp.covid19.health.nz"


def _parse_issuers(raw: str | None) -> frozenset[str]:
    """Split a comma-separated issuer list, ignoring blanks."""
    if not raw:
        return frozenset({LIVE_ISSUER})
    return frozenset(part.strip() for part in raw.split(",") if part.strip())


TRUSTED_ISSUERS: frozenset[str] = _parse_issuers(os.getenv("NZCP_TRUSTED_ISSUERS"))


# =============================================================================
# KEY RESOLUTION
# =============================================================================

def _get_timeout() -> float:
    try:
        return float(os.getenv("NZCP_RESOLVER_TIMEOUT", "30"))
    except ValueError:
        return 30.0


RESOLVER_TIMEOUT: float = _get_timeout()
VERIFY_SSL: bool = os.getenv("NZCP_VERIFY_SSL", "true").lower() == "true"


def _get_keys_file() -> Path | None:
    """Optional bundle of DID documents for offline verification."""
    env_path = os.getenv("NZCP_KEYS_FILE")
    return Path(env_path) if env_path else None


KEYS_FILE: Path | None = _get_keys_file()
