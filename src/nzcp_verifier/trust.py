"""Trust-anchor resolution: issuer + key id to public key."""

from __future__ import annotations

import asyncio
import logging
from typing import Collection

from nzcp_verifier.errors import (
    KeyNotFoundError,
    NZCPError,
    ResolutionFailedError,
    UntrustedIssuerError,
)
from nzcp_verifier.keys import KeySource, PublicKey

log = logging.getLogger(__name__)


class TrustResolver:
    """Maps a trusted issuer and key id to the issuer's public key."""

    def __init__(self, key_source: KeySource, timeout: float | None = None) -> None:
        """Initialize the resolver.

        Args:
            key_source: Where issuer keys are looked up.
            timeout: Seconds to wait for the key source before giving up.
                None waits indefinitely.
        """
        self.key_source = key_source
        self.timeout = timeout

    async def resolve(
        self,
        issuer: str,
        key_id: bytes,
        trusted_issuers: Collection[str],
    ) -> PublicKey:
        """Resolve the key that should have signed a pass.

        The issuer is checked against ``trusted_issuers`` before the key
        source is consulted, so untrusted issuers never trigger a lookup.

        Raises:
            UntrustedIssuerError: If the issuer is not trusted.
            KeyNotFoundError: If the issuer publishes no key with this id.
            ResolutionFailedError: If the lookup failed or timed out.
        """
        if issuer not in frozenset(trusted_issuers):
            raise UntrustedIssuerError(f"Issuer {issuer} is not trusted")

        kid = key_id.decode("utf-8", errors="replace")
        try:
            keys = await asyncio.wait_for(self.key_source.fetch_keys(issuer), self.timeout)
        except asyncio.TimeoutError:
            raise ResolutionFailedError(
                f"Timed out after {self.timeout}s resolving keys for {issuer}"
            ) from None
        except NZCPError:
            raise
        except Exception as e:
            log.error("Key source failed for %s: %s", issuer, e)
            raise ResolutionFailedError(f"Error resolving keys for {issuer}: {e}") from e

        key = keys.get(kid)
        if key is None:
            raise KeyNotFoundError(f"No key {issuer}#{kid}")

        log.debug("Resolved key %s#%s", issuer, kid)
        return key
