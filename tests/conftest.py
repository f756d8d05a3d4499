"""Shared fixtures."""

import pytest

from nzcp_verifier import StaticKeySource

from tests.factories import ISSUER, KID, did_document, generate_key, mint_pass, to_public_key


@pytest.fixture
def private_key():
    """A fresh issuer signing key."""
    return generate_key()


@pytest.fixture
def public_key(private_key):
    return to_public_key(private_key)


@pytest.fixture
def issuer_document(private_key):
    return did_document(private_key)


@pytest.fixture
def key_source(public_key):
    """Offline key source holding the test issuer's key."""
    return StaticKeySource({ISSUER: {KID: public_key}})


@pytest.fixture
def signed_pass(private_key):
    """A well-formed pass signed by the test issuer."""
    return mint_pass(private_key)
