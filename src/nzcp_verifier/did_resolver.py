"""
DID Resolver for did:web method.

Resolves did:web identifiers to DID Documents per W3C DID specification
and extracts the P-256 assertion keys NZCP issuers publish.
https://w3c-ccg.github.io/did-method-web/
"""

from __future__ import annotations

import asyncio
import base64
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, Mapping
from urllib.parse import quote

import httpx

from nzcp_verifier.errors import ResolutionFailedError
from nzcp_verifier.keys import PublicKey

log = logging.getLogger(__name__)


class DIDResolutionError(ResolutionFailedError):
    """Raised when DID resolution fails."""


@dataclass
class PublicKeyJWK:
    """EC P-256 public key in JWK format."""

    kty: str
    crv: str
    x: str
    y: str

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PublicKeyJWK:
        """Create PublicKeyJWK from a JWK dictionary."""
        return cls(
            kty=data.get("kty", ""),
            crv=data.get("crv", ""),
            x=data.get("x", ""),
            y=data.get("y", ""),
        )

    def is_valid_p256(self) -> bool:
        """Check if this is a valid P-256 EC key."""
        return self.kty == "EC" and self.crv == "P-256" and bool(self.x) and bool(self.y)

    def to_public_key(self) -> PublicKey:
        """Decode the coordinates into a PublicKey.

        Raises:
            ValueError: If the coordinates are not 32-byte base64url values
                describing a point on the curve.
        """
        key = PublicKey(x=_base64url_decode(self.x), y=_base64url_decode(self.y))
        key.to_cryptography()
        return key


@dataclass
class VerificationMethod:
    """DID Document verification method."""

    id: str
    type: str
    controller: str
    public_key_jwk: PublicKeyJWK | None = None


@dataclass
class DIDDocument:
    """W3C DID Document."""

    id: str
    verification_methods: list[VerificationMethod]
    assertion_method: list[str]

    def assertion_keys(self) -> dict[str, PublicKey]:
        """Return usable assertion keys indexed by DID URL fragment.

        A key is usable when it is referenced from assertionMethod and
        carries a P-256 publicKeyJwk that decodes to a point on the curve.
        """
        keys: dict[str, PublicKey] = {}
        prefix = f"{self.id}#"
        for vm in self.verification_methods:
            if vm.id not in self.assertion_method or not vm.id.startswith(prefix):
                continue
            if vm.public_key_jwk is None or not vm.public_key_jwk.is_valid_p256():
                log.debug("Skipping %s: no P-256 publicKeyJwk", vm.id)
                continue
            try:
                keys[vm.id[len(prefix):]] = vm.public_key_jwk.to_public_key()
            except ValueError as e:
                log.warning("Skipping %s: invalid key material (%s)", vm.id, e)
        return keys


def _base64url_decode(data: str) -> bytes:
    """Decode base64url without padding.

    Raises:
        ValueError: If ``data`` is not base64url text.
    """
    if not isinstance(data, str):
        raise ValueError("Expected base64url text")
    padding = 4 - (len(data) % 4)
    if padding != 4:
        data += "=" * padding
    return base64.urlsafe_b64decode(data)


def did_to_url(did: str) -> str:
    """Convert a did:web identifier to its resolution URL.

    did:web:example.com -> https://example.com/.well-known/did.json
    did:web:example.com:path:to:doc -> https://example.com/path/to/doc/did.json
    did:web:example.com%3A8080 -> https://example.com:8080/.well-known/did.json

    Args:
        did: The did:web identifier.

    Returns:
        The HTTPS URL to fetch the DID Document.

    Raises:
        DIDResolutionError: If the DID format is invalid.
    """
    if not did.startswith("did:web:"):
        raise DIDResolutionError(f"Invalid did:web identifier: {did}")

    # Remove the did:web: prefix and any fragment
    domain_path = did[8:].split("#")[0]
    if not domain_path:
        raise DIDResolutionError(f"Invalid did:web identifier: {did}")

    # Split by colon to get path segments
    parts = domain_path.split(":")

    # First part is the domain (with potential port encoded as %3A)
    domain = parts[0].replace("%3A", ":")

    # Remaining parts form the path
    if len(parts) > 1:
        path = "/" + "/".join(quote(p, safe="") for p in parts[1:]) + "/did.json"
    else:
        path = "/.well-known/did.json"

    return f"https://{domain}{path}"


def _parse_verification_relationship(items: Any, did: str) -> list[str]:
    """Parse a verification relationship array.

    Items can be either strings (references) or objects (embedded methods).
    Relative references (``#key-1``) are expanded against the document id.
    """
    result: list[str] = []
    if not isinstance(items, list):
        return result
    for item in items:
        ref = None
        if isinstance(item, str):
            ref = item
        elif isinstance(item, dict) and isinstance(item.get("id"), str):
            ref = item["id"]
        if ref is not None:
            result.append(did + ref if ref.startswith("#") else ref)
    return result


def parse_did_document(data: Any, did: str) -> DIDDocument:
    """Parse a DID Document from JSON.

    Args:
        data: The raw JSON data.
        did: The expected DID.

    Returns:
        Parsed DIDDocument.

    Raises:
        DIDResolutionError: If the document is invalid.
    """
    if not isinstance(data, dict):
        raise DIDResolutionError(f"DID Document for {did} is not a JSON object")

    # Validate ID matches
    doc_id = data.get("id", "")
    if doc_id != did:
        raise DIDResolutionError(
            f"DID Document id mismatch: expected {did}, got {doc_id}"
        )

    verification_methods: list[VerificationMethod] = []
    raw_methods = data.get("verificationMethod", [])
    for vm_data in raw_methods if isinstance(raw_methods, list) else []:
        if not isinstance(vm_data, dict):
            continue
        public_key_jwk = None
        if isinstance(vm_data.get("publicKeyJwk"), dict):
            public_key_jwk = PublicKeyJWK.from_dict(vm_data["publicKeyJwk"])

        vm_id = str(vm_data.get("id", ""))
        verification_methods.append(VerificationMethod(
            id=did + vm_id if vm_id.startswith("#") else vm_id,
            type=str(vm_data.get("type", "")),
            controller=str(vm_data.get("controller", "")),
            public_key_jwk=public_key_jwk,
        ))

    return DIDDocument(
        id=doc_id,
        verification_methods=verification_methods,
        assertion_method=_parse_verification_relationship(
            data.get("assertionMethod", []), did
        ),
    )


class DIDResolver:
    """Resolver for did:web DID method.

    Resolved documents are cached per DID. Concurrent misses for the same
    DID share one fetch; lookups for other DIDs are never held up by it.
    """

    def __init__(
        self,
        timeout: float = 30.0,
        verify_ssl: bool = True,
    ) -> None:
        """Initialize the DID resolver.

        Args:
            timeout: HTTP request timeout in seconds.
            verify_ssl: Whether to verify SSL certificates.
        """
        self.timeout = timeout
        self.verify_ssl = verify_ssl
        self._cache: dict[str, DIDDocument] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    async def resolve(self, did: str, use_cache: bool = True) -> DIDDocument:
        """Resolve a did:web identifier to its DID Document.

        Args:
            did: The did:web identifier (e.g., "did:web:example.com").
            use_cache: Whether to use cached results.

        Returns:
            The resolved DIDDocument.

        Raises:
            DIDResolutionError: If resolution fails.
        """
        base_did = did.split("#")[0]

        if use_cache and base_did in self._cache:
            return self._cache[base_did]

        lock = self._locks.setdefault(base_did, asyncio.Lock())
        async with lock:
            # Another task may have filled the cache while we waited
            if use_cache and base_did in self._cache:
                return self._cache[base_did]

            url = did_to_url(base_did)
            log.debug("Fetching DID Document for %s from %s", base_did, url)

            try:
                async with httpx.AsyncClient(timeout=self.timeout, verify=self.verify_ssl) as client:
                    response = await client.get(
                        url,
                        headers={"Accept": "application/did+ld+json, application/json"},
                    )
                    response.raise_for_status()
                    data = response.json()

            except httpx.HTTPStatusError as e:
                raise DIDResolutionError(
                    f"HTTP error resolving {did}: {e.response.status_code}"
                ) from e
            except httpx.RequestError as e:
                raise DIDResolutionError(f"Network error resolving {did}: {e}") from e
            except httpx.InvalidURL as e:
                raise DIDResolutionError(f"Invalid URL {url} for {did}: {e}") from e
            except ValueError as e:
                raise DIDResolutionError(f"Invalid JSON in DID Document for {did}") from e

            doc = parse_did_document(data, base_did)

            if use_cache:
                self._cache[base_did] = doc

        return doc

    async def fetch_keys(self, issuer: str) -> Mapping[str, PublicKey]:
        """Return the assertion keys published in the issuer's DID Document."""
        doc = await self.resolve(issuer)
        return doc.assertion_keys()

    def clear_cache(self) -> None:
        """Clear the resolution cache."""
        self._cache.clear()


class StaticKeySource:
    """Key source backed by bundled DID Documents, for offline use."""

    def __init__(self, keys: Mapping[str, Mapping[str, PublicKey]]) -> None:
        self._keys = {issuer: dict(issuer_keys) for issuer, issuer_keys in keys.items()}

    @classmethod
    def from_did_documents(cls, documents: Iterable[Any]) -> StaticKeySource:
        """Build a key source from parsed DID Document JSON objects.

        Raises:
            DIDResolutionError: If a document is invalid.
        """
        keys: dict[str, dict[str, PublicKey]] = {}
        for data in documents:
            did = data.get("id") if isinstance(data, dict) else None
            if not isinstance(did, str) or not did:
                raise DIDResolutionError("Bundled DID Document has no id")
            doc = parse_did_document(data, did)
            keys.setdefault(doc.id, {}).update(doc.assertion_keys())
        return cls(keys)

    @classmethod
    def from_file(cls, path: Path) -> StaticKeySource:
        """Load one DID Document, or a JSON array of them, from ``path``.

        Raises:
            DIDResolutionError: If the file cannot be read or parsed.
        """
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise DIDResolutionError(f"Cannot load DID Documents from {path}: {e}") from e
        return cls.from_did_documents(data if isinstance(data, list) else [data])

    async def fetch_keys(self, issuer: str) -> Mapping[str, PublicKey]:
        return self._keys.get(issuer, {})
