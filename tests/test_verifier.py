"""
tests/test_verifier.py -- Unit tests for CredentialVerifier and key helpers.

The verifier is tested against an in-memory fake store so store access can be
counted and failures injected; one class runs it against a real
CredentialStore to cover last_used_at and revocation.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor

import pytest
from sqlalchemy import text
from conftest import make_key, sqlite_url

from auth.models import CredentialRecord
from auth.store import CredentialStore
from auth.tokens import CredentialVerifier, display_prefix, generate_api_key, hash_api_key, verify_api_key
from cache.store import CachedCredentialStore
from core.errors import DataAccessError


class FakeStore:
    def __init__(self, records=None, fail_list=False, fail_touch=False) -> None:
        self.records = list(records or [])
        self.fail_list = fail_list
        self.fail_touch = fail_touch
        self.list_calls = 0
        self.touched: list[int] = []

    def list_active_credentials(self):
        self.list_calls += 1
        if self.fail_list:
            raise DataAccessError()
        return list(self.records)

    def touch_last_used(self, credential_id: int) -> None:
        if self.fail_touch:
            raise DataAccessError()
        self.touched.append(credential_id)


def _record(key_id: int, raw: str, permissions: str | None = '["read:budget_allocations"]', **kwargs):
    return CredentialRecord(
        id=key_id,
        name=f"key {key_id}",
        key_hash=hash_api_key(raw, rounds=4),
        key_prefix=display_prefix(raw),
        permissions=permissions,
        **kwargs,
    )


class TestKeyHelpers:
    def test_generated_key_format(self) -> None:
        key = generate_api_key()
        assert key.startswith("ck_")
        assert len(key) == 67
        int(key[3:], 16)

    def test_generated_keys_are_unique(self) -> None:
        assert len({generate_api_key() for _ in range(20)}) == 20

    def test_hash_is_salted(self) -> None:
        raw = generate_api_key()
        assert hash_api_key(raw, rounds=4) != hash_api_key(raw, rounds=4)

    def test_verify_round_trip(self) -> None:
        raw = generate_api_key()
        hashed = hash_api_key(raw, rounds=4)
        assert verify_api_key(raw, hashed)
        assert not verify_api_key(generate_api_key(), hashed)

    def test_corrupt_hash_is_a_mismatch(self) -> None:
        assert verify_api_key(generate_api_key(), "not-a-bcrypt-hash") is False


class TestAuthenticate:
    def test_no_key_means_no_store_access(self) -> None:
        store = FakeStore()
        verifier = CredentialVerifier(store)
        assert verifier.authenticate(None) is None
        assert verifier.authenticate("") is None
        assert store.list_calls == 0

    def test_oversized_key_is_rejected_without_store_access(self) -> None:
        store = FakeStore()
        assert CredentialVerifier(store).authenticate("x" * 200) is None
        assert store.list_calls == 0

    def test_matching_key_returns_its_principal(self) -> None:
        raw_a, raw_b = generate_api_key(), generate_api_key()
        store = FakeStore([_record(1, raw_a), _record(2, raw_b, associated_user_id=5, associated_site_id=9)])
        principal = CredentialVerifier(store).authenticate(raw_b)
        assert principal is not None
        assert principal.credential_id == 2
        assert principal.user_id == 5
        assert principal.site_id == 9
        assert principal.raw_permissions == '["read:budget_allocations"]'
        assert store.touched == [2]

    def test_unknown_key_is_rejected(self) -> None:
        store = FakeStore([_record(1, generate_api_key())])
        assert CredentialVerifier(store).authenticate(generate_api_key()) is None
        assert store.touched == []

    def test_same_key_authenticates_repeatedly(self) -> None:
        raw = generate_api_key()
        verifier = CredentialVerifier(FakeStore([_record(1, raw)]))
        assert verifier.authenticate(raw).credential_id == 1
        assert verifier.authenticate(raw).credential_id == 1

    def test_same_key_authenticates_concurrently_through_cache(self) -> None:
        raw = generate_api_key()
        store = FakeStore([_record(1, raw)])
        verifier = CredentialVerifier(CachedCredentialStore(store, ttl=15))
        barrier = threading.Barrier(2)

        def present():
            barrier.wait(timeout=5)
            return verifier.authenticate(raw)

        with ThreadPoolExecutor(max_workers=2) as pool:
            results = list(pool.map(lambda _: present(), range(2)))

        assert [principal.credential_id for principal in results] == [1, 1]
        assert sorted(store.touched) == [1, 1]
        assert 1 <= store.list_calls <= 2

    def test_revoked_record_is_skipped(self) -> None:
        raw = generate_api_key()
        store = FakeStore([_record(1, raw, revoked_at="2024-01-01T00:00:00+00:00")])
        assert CredentialVerifier(store).authenticate(raw) is None

    def test_missing_permissions_become_empty_list(self) -> None:
        raw = generate_api_key()
        principal = CredentialVerifier(FakeStore([_record(1, raw, permissions=None)])).authenticate(raw)
        assert principal.raw_permissions == "[]"

    def test_store_failure_is_not_authenticated(self, caplog) -> None:
        with caplog.at_level(logging.ERROR, logger="checkin.auth"):
            result = CredentialVerifier(FakeStore(fail_list=True)).authenticate(generate_api_key())
        assert result is None
        assert "credential store unavailable" in caplog.text

    def test_last_used_failure_does_not_reject_key(self) -> None:
        raw = generate_api_key()
        store = FakeStore([_record(3, raw)], fail_touch=True)
        principal = CredentialVerifier(store).authenticate(raw)
        assert principal is not None
        assert principal.credential_id == 3


class TestAgainstCredentialStore:
    def test_last_used_is_stamped(self) -> None:
        store = CredentialStore(db_url=sqlite_url("test_verifier_stamp"))
        raw, key_id = make_key(store, ["create:forum_post"])
        assert store.get_credential(key_id).last_used_at is None

        assert CredentialVerifier(store).authenticate(raw).credential_id == key_id
        assert store.get_credential(key_id).last_used_at is not None
        store.close()

    def test_revoked_key_stops_authenticating(self) -> None:
        store = CredentialStore(db_url=sqlite_url("test_verifier_revoke"))
        raw, key_id = make_key(store, ["create:forum_post"])
        verifier = CredentialVerifier(store)
        assert verifier.authenticate(raw) is not None

        assert store.revoke_credential(key_id) is True
        assert store.revoke_credential(key_id) is False
        assert verifier.authenticate(raw) is None
        store.close()

    def test_broken_store_raises_data_access_error(self) -> None:
        store = CredentialStore(db_url=sqlite_url("test_verifier_broken"))
        with store.engine.connect() as conn:
            conn.execute(text("DROP TABLE api_keys"))
            conn.commit()

        with pytest.raises(DataAccessError) as excinfo:
            store.list_active_credentials()
        assert "api_keys" not in str(excinfo.value)
        assert CredentialVerifier(store).authenticate(generate_api_key()) is None
        store.close()
