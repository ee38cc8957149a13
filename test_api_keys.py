"""Lender API key generation, hashing and bearer authentication."""
import hashlib

from kite.trust.api_keys import (
    MemoryLenderStore,
    authenticate_api_key,
    extract_bearer_token,
    generate_api_key,
    hash_api_key,
)


def test_generated_key_format():
    key = generate_api_key()
    assert key.raw_key.startswith("kite_")
    assert len(key.raw_key) > 40
    assert key.key_prefix == key.raw_key[:12]
    assert key.key_hash == hashlib.sha256(key.raw_key.encode()).hexdigest()


def test_keys_are_unique():
    assert len({generate_api_key().raw_key for _ in range(50)}) == 50


def test_hash_is_stable():
    assert hash_api_key("kite_abc") == hash_api_key("kite_abc")
    assert hash_api_key("kite_abc") != hash_api_key("kite_abd")


def test_bearer_extraction():
    assert extract_bearer_token("Bearer kite_abc123") == "kite_abc123"
    assert extract_bearer_token(None) is None
    assert extract_bearer_token("") is None
    assert extract_bearer_token("kite_abc123") is None
    assert extract_bearer_token("Bearer m2a_live_abc") is None
    assert extract_bearer_token("Basic kite_abc") is None


def test_authenticate_resolves_registered_lender():
    store = MemoryLenderStore()
    raw_key, lender = store.create_lender("Acme Lending", "ops@acme.test", "underwriting")
    found = authenticate_api_key(f"Bearer {raw_key}", store.get_by_hash)
    assert found is not None
    assert found.id == lender.id
    assert found.rate_limit == 1000


def test_raw_key_is_never_stored():
    store = MemoryLenderStore()
    raw_key, lender = store.create_lender("Acme Lending", "ops@acme.test")
    assert raw_key not in lender.to_public().values()
    assert lender.key_hash == hash_api_key(raw_key)
    assert "key_hash" not in lender.to_public()


def test_authenticate_rejects_unknown_and_malformed():
    store = MemoryLenderStore()
    assert authenticate_api_key("Bearer kite_doesnotexist", store.get_by_hash) is None
    assert authenticate_api_key(None, store.get_by_hash) is None
    assert authenticate_api_key("Token kite_x", store.get_by_hash) is None


def test_authenticate_rejects_inactive_lender():
    store = MemoryLenderStore()
    raw_key, lender = store.create_lender("Acme Lending", "ops@acme.test")
    store.deactivate(lender.id)
    assert authenticate_api_key(f"Bearer {raw_key}", store.get_by_hash) is None


def test_rotation_invalidates_old_key():
    store = MemoryLenderStore()
    old_key, lender = store.create_lender("Acme Lending", "ops@acme.test")
    new_key = store.rotate_key(lender.id)
    assert new_key != old_key
    assert authenticate_api_key(f"Bearer {old_key}", store.get_by_hash) is None
    assert authenticate_api_key(f"Bearer {new_key}", store.get_by_hash).id == lender.id


def test_rotate_unknown_lender():
    assert MemoryLenderStore().rotate_key("missing") is None
