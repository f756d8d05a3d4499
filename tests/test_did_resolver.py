"""Tests for did:web resolution and bundled DID Documents."""

import asyncio
import json

import pytest
import respx
from httpx import ConnectError, Response

from nzcp_verifier import DIDResolutionError, DIDResolver, StaticKeySource
from nzcp_verifier.did_resolver import did_to_url, parse_did_document

from tests.factories import ISSUER, KID, did_document, generate_key

DID_URL = "https://nzcp.covid19.health.nz/.well-known/did.json"


class TestDIDToURL:
    """Tests for did:web URL mapping."""

    def test_did_to_url_simple(self):
        """Test simple did:web to URL conversion."""
        url = did_to_url("did:web:nzcp.identity.health.nz")
        assert url == "https://nzcp.identity.health.nz/.well-known/did.json"

    def test_did_to_url_with_path(self):
        """Test did:web with path to URL conversion."""
        url = did_to_url("did:web:example.com:users:alice")
        assert url == "https://example.com/users/alice/did.json"

    def test_did_to_url_with_port(self):
        """Test did:web with port to URL conversion."""
        url = did_to_url("did:web:example.com%3A8080")
        assert url == "https://example.com:8080/.well-known/did.json"

    def test_did_to_url_with_fragment(self):
        """Test did:web with fragment."""
        url = did_to_url("did:web:example.com#key-1")
        assert url == "https://example.com/.well-known/did.json"

    @pytest.mark.parametrize("did", ["did:key:z6Mk", "did:web:", "nzcp.identity.health.nz"])
    def test_invalid_did(self, did):
        with pytest.raises(DIDResolutionError):
            did_to_url(did)


class TestParseDIDDocument:
    """Tests for extracting assertion keys."""

    def test_assertion_keys(self, private_key, public_key):
        doc = parse_did_document(did_document(private_key), ISSUER)
        assert doc.assertion_keys() == {KID: public_key}

    def test_id_mismatch(self, private_key):
        with pytest.raises(DIDResolutionError):
            parse_did_document(did_document(private_key), "did:web:other.example.com")

    def test_not_an_object(self):
        with pytest.raises(DIDResolutionError):
            parse_did_document(["not", "a", "document"], ISSUER)

    def test_key_not_in_assertion_method(self, private_key):
        data = did_document(private_key)
        data["assertionMethod"] = []
        doc = parse_did_document(data, ISSUER)
        assert [vm.id for vm in doc.verification_methods] == [f"{ISSUER}#{KID}"]
        assert doc.assertion_keys() == {}

    def test_relative_references(self, private_key, public_key):
        data = did_document(private_key)
        data["verificationMethod"][0]["id"] = f"#{KID}"
        data["assertionMethod"] = [f"#{KID}"]
        assert parse_did_document(data, ISSUER).assertion_keys() == {KID: public_key}

    def test_non_p256_key_skipped(self, private_key):
        data = did_document(private_key)
        data["verificationMethod"][0]["publicKeyJwk"]["crv"] = "secp256k1"
        assert parse_did_document(data, ISSUER).assertion_keys() == {}

    def test_point_off_curve_skipped(self, private_key):
        data = did_document(private_key)
        data["verificationMethod"][0]["publicKeyJwk"]["y"] = "A" * 43
        assert parse_did_document(data, ISSUER).assertion_keys() == {}

    def test_short_coordinate_skipped(self, private_key):
        data = did_document(private_key)
        data["verificationMethod"][0]["publicKeyJwk"]["x"] = "AAAA"
        assert parse_did_document(data, ISSUER).assertion_keys() == {}


class TestDIDResolver:
    """Tests for fetching DID Documents."""

    @pytest.mark.asyncio
    async def test_resolve_did(self, issuer_document):
        """Test DID resolution."""
        with respx.mock:
            respx.get(DID_URL).mock(return_value=Response(200, json=issuer_document))

            resolver = DIDResolver()
            doc = await resolver.resolve(ISSUER)

        assert doc.id == ISSUER
        assert len(doc.verification_methods) == 1
        assert doc.verification_methods[0].id == f"{ISSUER}#{KID}"

    @pytest.mark.asyncio
    async def test_fetch_keys(self, issuer_document, public_key):
        with respx.mock:
            respx.get(DID_URL).mock(return_value=Response(200, json=issuer_document))
            keys = await DIDResolver().fetch_keys(ISSUER)
        assert keys == {KID: public_key}

    @pytest.mark.asyncio
    async def test_cache(self, issuer_document):
        with respx.mock:
            route = respx.get(DID_URL).mock(return_value=Response(200, json=issuer_document))
            resolver = DIDResolver()

            await resolver.resolve(ISSUER)
            await resolver.resolve(ISSUER)
            assert route.call_count == 1

            await resolver.resolve(ISSUER, use_cache=False)
            assert route.call_count == 2

            resolver.clear_cache()
            await resolver.resolve(ISSUER)
            assert route.call_count == 3

    @pytest.mark.asyncio
    async def test_concurrent_misses_share_one_fetch(self, issuer_document):
        with respx.mock:
            route = respx.get(DID_URL).mock(return_value=Response(200, json=issuer_document))
            resolver = DIDResolver()

            docs = await asyncio.gather(*(resolver.resolve(ISSUER) for _ in range(5)))

        assert route.call_count == 1
        assert all(doc is docs[0] for doc in docs)

    @pytest.mark.asyncio
    async def test_http_error(self):
        with respx.mock:
            respx.get(DID_URL).mock(return_value=Response(404))
            with pytest.raises(DIDResolutionError, match="404"):
                await DIDResolver().resolve(ISSUER)

    @pytest.mark.asyncio
    async def test_network_error(self):
        with respx.mock:
            respx.get(DID_URL).mock(side_effect=ConnectError("connection refused"))
            with pytest.raises(DIDResolutionError):
                await DIDResolver().resolve(ISSUER)

    @pytest.mark.asyncio
    async def test_invalid_port(self):
        """A did:web whose port is not numeric fails resolution."""
        with respx.mock:
            with pytest.raises(DIDResolutionError):
                await DIDResolver().resolve("did:web:example.com%3Aabc")

    @pytest.mark.asyncio
    async def test_invalid_json(self):
        with respx.mock:
            respx.get(DID_URL).mock(return_value=Response(200, content=b"<html>"))
            with pytest.raises(DIDResolutionError):
                await DIDResolver().resolve(ISSUER)

    @pytest.mark.asyncio
    async def test_failure_not_cached(self, issuer_document):
        with respx.mock:
            route = respx.get(DID_URL)
            route.side_effect = [Response(503), Response(200, json=issuer_document)]
            resolver = DIDResolver()

            with pytest.raises(DIDResolutionError):
                await resolver.resolve(ISSUER)
            doc = await resolver.resolve(ISSUER)

        assert doc.id == ISSUER


class TestStaticKeySource:
    """Tests for offline DID Documents."""

    @pytest.mark.asyncio
    async def test_from_did_documents(self, private_key, public_key):
        other_key = generate_key()
        source = StaticKeySource.from_did_documents([
            did_document(private_key),
            did_document(other_key, issuer="did:web:nzcp.identity.health.nz", kid="z12Kf7UQ"),
        ])

        assert await source.fetch_keys(ISSUER) == {KID: public_key}
        live_keys = await source.fetch_keys("did:web:nzcp.identity.health.nz")
        assert list(live_keys) == ["z12Kf7UQ"]

    @pytest.mark.asyncio
    async def test_unknown_issuer_has_no_keys(self, key_source):
        assert await key_source.fetch_keys("did:web:example.com") == {}

    @pytest.mark.asyncio
    async def test_from_file(self, tmp_path, private_key, public_key):
        path = tmp_path / "did.json"
        path.write_text(json.dumps(did_document(private_key)))

        source = StaticKeySource.from_file(path)

        assert await source.fetch_keys(ISSUER) == {KID: public_key}

    def test_from_file_invalid_json(self, tmp_path):
        path = tmp_path / "did.json"
        path.write_text("{not json")
        with pytest.raises(DIDResolutionError):
            StaticKeySource.from_file(path)

    def test_document_without_id(self, private_key):
        data = did_document(private_key)
        del data["id"]
        with pytest.raises(DIDResolutionError):
            StaticKeySource.from_did_documents([data])
