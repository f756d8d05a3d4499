"""Issuer public keys and the key lookup interface."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Protocol

from cryptography.hazmat.primitives.asymmetric import ec

P256 = "P-256"
COORDINATE_SIZE = 32


@dataclass(frozen=True)
class PublicKey:
    """Uncompressed P-256 public key."""

    x: bytes
    y: bytes
    curve: str = P256

    def __post_init__(self) -> None:
        if self.curve != P256:
            raise ValueError(f"Unsupported curve: {self.curve}")
        if len(self.x) != COORDINATE_SIZE or len(self.y) != COORDINATE_SIZE:
            raise ValueError("P-256 coordinates must be 32 bytes")

    def to_cryptography(self) -> ec.EllipticCurvePublicKey:
        """Build a cryptography key object.

        Raises:
            ValueError: If the point is not on the curve.
        """
        numbers = ec.EllipticCurvePublicNumbers(
            int.from_bytes(self.x, byteorder="big"),
            int.from_bytes(self.y, byteorder="big"),
            ec.SECP256R1(),
        )
        return numbers.public_key()


class KeySource(Protocol):
    """Fetches the keys an issuer publishes.

    Implementations raise ResolutionFailedError when the lookup itself
    fails, and return an empty mapping when the issuer has no keys.
    """

    async def fetch_keys(self, issuer: str) -> Mapping[str, PublicKey]:
        """Return the issuer's keys indexed by key id (DID URL fragment)."""
        ...
