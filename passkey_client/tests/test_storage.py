from __future__ import annotations

import pytest

from passkey_client.models import CredentialRecord
from passkey_client.storage import CredentialStore, CredentialStoreError


def make_record(credential_id: str = "cred-1", rp_id: str = "localhost", discoverable: bool = True):
    return CredentialRecord(
        credential_id=credential_id,
        user_handle="user-handle",
        rp_id=rp_id,
        algorithm=-7,
        private_key="private",
        discoverable=discoverable,
    )


def test_save_and_load_round_trip(temp_settings, fake_keyring):
    store = CredentialStore(temp_settings, namespace="cross-platform")
    store.save(make_record())

    loaded = store.load("cred-1")
    assert loaded == make_record()
    assert ("test-service.cross-platform", "cred-1") in fake_keyring
    assert store.index_path.name == "index.cross-platform.json"


def test_lookup_respects_rp_and_discoverability(temp_settings):
    store = CredentialStore(temp_settings)
    store.save(make_record("a"))
    store.save(make_record("b", discoverable=False))
    store.save(make_record("c", rp_id="example.com"))

    assert [r.credential_id for r in store.find_discoverable("localhost")] == ["a"]
    assert store.find_first(["c", "b"], "localhost").credential_id == "b"
    assert store.find_first(["missing"], "localhost") is None
    assert len(store.list_all()) == 3


def test_delete_removes_key_and_index(temp_settings):
    store = CredentialStore(temp_settings)
    store.save(make_record())

    store.delete("cred-1")

    with pytest.raises(CredentialStoreError):
        store.load("cred-1")
    assert not store.contains("cred-1", "localhost")


def test_sign_count_persists(temp_settings):
    store = CredentialStore(temp_settings)
    record = store.save(make_record())
    record.sign_count = 9
    store.save(record)

    assert CredentialStore(temp_settings).load("cred-1").sign_count == 9
