"""Tests for the SQLite trust store."""

import hashlib
import sqlite3
from datetime import datetime, timedelta, timezone

import pytest

from fastapi_authgate.store import SQLiteTrustStore, hash_token


@pytest.fixture
def store():
    store = SQLiteTrustStore(":memory:")
    yield store
    store.close()


@pytest.fixture
def expires_at():
    return datetime.now(timezone.utc).replace(microsecond=0) + timedelta(hours=1)


class TestHashToken:
    def test_sha256_hex(self):
        assert hash_token("abc") == hashlib.sha256(b"abc").hexdigest()
        assert len(hash_token("abc")) == 64


class TestPrincipals:
    def test_user_roundtrip(self, store):
        user_id = store.create_user("alice", "alice@example.com", role="admin")
        user = store.get_user(user_id)

        assert user.username == "alice"
        assert user.role == "admin"
        assert user.is_active

    def test_unknown_user(self, store):
        assert store.get_user(42) is None

    def test_duplicate_username_rejected(self, store):
        store.create_user("alice", "a@example.com")
        with pytest.raises(sqlite3.IntegrityError):
            store.create_user("alice", "b@example.com")

    def test_user_updates(self, store):
        user_id = store.create_user("bob", "bob@example.com")
        store.set_user_role(user_id, "moderator")
        store.set_user_active(user_id, False)
        user = store.get_user(user_id)

        assert user.role == "moderator"
        assert not user.is_active

    def test_client_roundtrip(self, store):
        store.register_client("svc", "Service", ["read", "write"])
        client = store.get_client("svc")

        assert client.client_name == "Service"
        assert client.scopes == ["read", "write"]
        assert client.is_active
        assert store.get_client("missing") is None


class TestAccessTokens:
    def test_find_joins_client(self, store, expires_at):
        store.register_client("svc", "Service", ["read"])
        store.insert_access_token("h1", "svc", ["read"], expires_at)

        rows = store.find_access_tokens("h1")

        assert len(rows) == 1
        row = rows[0]
        assert row.client_name == "Service"
        assert row.client_is_active
        assert row.scopes == ["read"]
        assert not row.is_revoked
        assert row.expires_at == expires_at

    def test_unknown_hash(self, store):
        assert store.find_access_tokens("nope") == []

    def test_token_hash_unique(self, store, expires_at):
        store.register_client("svc", "Service", ["read"])
        store.insert_access_token("h1", "svc", ["read"], expires_at)
        with pytest.raises(sqlite3.IntegrityError):
            store.insert_access_token("h1", "svc", ["read"], expires_at)

    def test_revoke(self, store, expires_at):
        store.register_client("svc", "Service", ["read"])
        store.insert_access_token("h1", "svc", ["read"], expires_at)

        assert store.revoke_token_hash("h1")
        assert store.find_access_tokens("h1")[0].is_revoked
        assert not store.revoke_token_hash("h1")

    def test_scope_change_applies_to_issued_tokens(self, store, expires_at):
        store.register_client("svc", "Service", ["read", "write"])
        store.insert_access_token("h1", "svc", ["read", "write"], expires_at)

        store.set_client_scopes("svc", ["read"])

        assert store.get_client("svc").scopes == ["read"]
        assert store.find_access_tokens("h1")[0].scopes == ["read"]

    def test_scope_change_can_spare_issued_tokens(self, store, expires_at):
        store.register_client("svc", "Service", ["read", "write"])
        store.insert_access_token("h1", "svc", ["read", "write"], expires_at)

        store.set_client_scopes("svc", ["read"], apply_to_issued=False)

        assert store.find_access_tokens("h1")[0].scopes == ["read", "write"]

    def test_deactivated_client_visible_on_row(self, store, expires_at):
        store.register_client("svc", "Service", ["read"])
        store.insert_access_token("h1", "svc", ["read"], expires_at)
        store.set_client_active("svc", False)

        assert not store.find_access_tokens("h1")[0].client_is_active


class TestSessions:
    def test_find_joins_user(self, store, expires_at):
        user_id = store.create_user("alice", "alice@example.com", role="moderator")
        session_id = store.insert_session("s1", user_id, expires_at, device_info="cli", ip_address="10.0.0.1")

        rows = store.find_sessions("s1")

        assert len(rows) == 1
        row = rows[0]
        assert row.id == session_id
        assert row.username == "alice"
        assert row.role == "moderator"
        assert row.user_is_active
        assert row.last_accessed is None

    def test_touch_session(self, store, expires_at):
        user_id = store.create_user("alice", "alice@example.com")
        session_id = store.insert_session("s1", user_id, expires_at)
        accessed_at = datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc)

        store.touch_session(session_id, accessed_at)

        assert store.find_sessions("s1")[0].last_accessed == accessed_at

    def test_naive_datetimes_stored_as_utc(self, store):
        user_id = store.create_user("alice", "alice@example.com")
        store.insert_session("s1", user_id, datetime(2030, 1, 1, 12, 0, 0))

        assert store.find_sessions("s1")[0].expires_at == datetime(2030, 1, 1, 12, tzinfo=timezone.utc)

    def test_revoke_user_sessions(self, store, expires_at):
        alice = store.create_user("alice", "alice@example.com")
        bob = store.create_user("bob", "bob@example.com")
        store.insert_session("a1", alice, expires_at)
        store.insert_session("a2", alice, expires_at)
        store.insert_session("b1", bob, expires_at)

        assert store.revoke_user_sessions(alice) == 2
        assert store.find_sessions("a1")[0].is_revoked
        assert store.find_sessions("a2")[0].is_revoked
        assert not store.find_sessions("b1")[0].is_revoked
        assert store.revoke_user_sessions(alice) == 0

    def test_revoke_token_hash_covers_sessions(self, store, expires_at):
        user_id = store.create_user("alice", "alice@example.com")
        store.insert_session("s1", user_id, expires_at)

        assert store.revoke_token_hash("s1")
        assert store.find_sessions("s1")[0].is_revoked


class TestPersistence:
    def test_file_database_survives_reopen(self, tmp_path, expires_at):
        path = str(tmp_path / "authgate.db")
        store = SQLiteTrustStore(path)
        store.register_client("svc", "Service", ["read"])
        store.insert_access_token("h1", "svc", ["read"], expires_at)
        store.close()

        reopened = SQLiteTrustStore(path)
        try:
            assert reopened.find_access_tokens("h1")[0].client_id == "svc"
        finally:
            reopened.close()

    def test_lookup_values_are_bound_not_interpolated(self, store, expires_at):
        store.register_client("svc", "Service", ["read"])
        store.insert_access_token("h1", "svc", ["read"], expires_at)

        assert store.find_access_tokens("' OR '1'='1") == []
