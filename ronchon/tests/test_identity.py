"""Tests for ClientKey derivation."""

from types import SimpleNamespace

from ronchon.features.identity.service import (
    ANONYMOUS_KEY,
    RequestMetadata,
    derive_client_key,
    metadata_from_request,
    resolve_address,
    sanitize_instance_id,
)


def test_same_metadata_gives_same_key():
    meta = RequestMetadata(forwarded_for="203.0.113.7, 10.0.0.1", peer_address="10.0.0.1", instance_id="abc-123")
    assert derive_client_key(meta) == derive_client_key(meta)
    assert derive_client_key(meta).startswith("cid:")


def test_empty_or_missing_metadata_is_anonymous():
    assert derive_client_key(None) == ANONYMOUS_KEY
    assert derive_client_key(RequestMetadata()) == ANONYMOUS_KEY
    assert derive_client_key(RequestMetadata(forwarded_for=" , ", peer_address="", instance_id="!!!")) == ANONYMOUS_KEY


def test_instance_id_preferred_over_address():
    a = RequestMetadata(forwarded_for="203.0.113.7", instance_id="device1")
    b = RequestMetadata(forwarded_for="198.51.100.9", instance_id="device1")
    # Same device behind two networks keeps its quota
    assert derive_client_key(a) == derive_client_key(b)


def test_instance_id_bound_to_address_when_enabled():
    a = RequestMetadata(forwarded_for="203.0.113.7", instance_id="device1")
    b = RequestMetadata(forwarded_for="198.51.100.9", instance_id="device1")
    assert derive_client_key(a, bind_address=True) != derive_client_key(b, bind_address=True)


def test_address_fallback_uses_first_forwarded_hop():
    meta = RequestMetadata(forwarded_for="203.0.113.7, 10.0.0.1", peer_address="10.0.0.1")
    assert derive_client_key(meta, hashing=False) == "ip:203.0.113.7"
    assert derive_client_key(RequestMetadata(peer_address="10.0.0.2"), hashing=False) == "ip:10.0.0.2"


def test_distinct_callers_get_distinct_keys():
    keys = {
        derive_client_key(RequestMetadata(instance_id="one")),
        derive_client_key(RequestMetadata(instance_id="two")),
        derive_client_key(RequestMetadata(peer_address="10.0.0.1")),
        derive_client_key(RequestMetadata(peer_address="10.0.0.2")),
    }
    assert len(keys) == 4


def test_license_key_is_hashed_and_takes_priority():
    meta = RequestMetadata(instance_id="device1", license_token="LIC-GOOD")
    key = derive_client_key(meta, hashing=False)
    assert key.startswith("lic:")
    assert "LIC-GOOD" not in key


def test_sanitize_instance_id():
    assert sanitize_instance_id("ab<script>c_d-1") == "abscriptc_d-1"
    assert sanitize_instance_id("x" * 100, max_length=10) == "x" * 10
    assert sanitize_instance_id("   ") is None
    assert sanitize_instance_id(None) is None


def test_resolve_address():
    assert resolve_address(None, None) is None
    assert resolve_address("", "10.0.0.3") == "10.0.0.3"


def test_metadata_from_request_drops_rejected_license():
    request = SimpleNamespace(
        headers={"x-license-key": "LIC-BAD", "x-instance-id": "dev"},
        client=SimpleNamespace(host="10.0.0.5"),
    )
    meta = metadata_from_request(request, license_valid=lambda token: token == "LIC-GOOD")
    assert meta.license_token is None
    assert meta.instance_id == "dev"
    assert meta.peer_address == "10.0.0.5"
