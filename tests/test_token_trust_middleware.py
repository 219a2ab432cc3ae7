"""Tests for the token trust validator, dependency and middleware."""

import logging
from datetime import timedelta, timezone
from unittest.mock import Mock

import jwt
import pytest
from fastapi.testclient import TestClient

from fastapi_authgate.exceptions import InvalidToken, ServerError, TokenExpired, Unauthorized
from fastapi_authgate.middleware import TokenTrustValidator, extract_bearer_token
from fastapi_authgate.trust import OAuth2Trust, UserSessionTrust

from tests.mocks.trust_mocks import (
    TrustEnvironment,
    bearer,
    create_dependency_app,
    create_middleware_app,
    sign_token,
)


@pytest.fixture
def env():
    env = TrustEnvironment()
    yield env
    env.close()


class TestExtractBearerToken:
    @pytest.mark.parametrize(
        "header, expected",
        [
            ("Bearer abc", "abc"),
            ("bearer abc", "abc"),
            ("Bearer   abc  ", "abc"),
            ("Bearer ", None),
            ("Basic dXNlcjpwYXNz", None),
            ("", None),
            (None, None),
        ],
    )
    def test_extract(self, header, expected):
        assert extract_bearer_token(header) == expected


class TestValidatorStateMachine:
    def test_disabled_mode_accepts_everything(self):
        env = TrustEnvironment(require_auth=False)
        try:
            assert env.validator.authenticate(None) is None
            assert env.validator.authenticate("Bearer garbage") is None
        finally:
            env.close()

    def test_missing_header(self, env):
        with pytest.raises(Unauthorized) as exc_info:
            env.validator.authenticate(None)
        assert exc_info.value.to_dict()["auth_required"] is True

    def test_garbage_token(self, env):
        with pytest.raises(InvalidToken) as exc_info:
            env.validator.authenticate("Bearer not-a-jwt")
        assert exc_info.value.message == "Invalid token format"

    def test_wrong_secret(self, env):
        token = sign_token({"type": "client_credentials"}, secret="another-secret-entirely-0123456789")
        with pytest.raises(InvalidToken):
            env.validator.authenticate(f"Bearer {token}")

    def test_alg_none_rejected(self, env):
        token = jwt.encode({"type": "client_credentials", "exp": 9999999999}, None, algorithm="none")
        with pytest.raises(InvalidToken):
            env.validator.authenticate(f"Bearer {token}")

    def test_expired_signature(self, env):
        token = sign_token({"type": "user_session"}, expires_in=-60)
        with pytest.raises(TokenExpired):
            env.validator.authenticate(f"Bearer {token}")

    def test_unknown_type(self, env):
        token = sign_token({"type": "api_key"})
        with pytest.raises(InvalidToken) as exc_info:
            env.validator.authenticate(f"Bearer {token}")
        assert exc_info.value.message == "Unknown token type"

    def test_signed_but_never_issued(self, env):
        token = sign_token({"type": "client_credentials", "client_id": "svc-writer", "scopes": ["admin"]})
        with pytest.raises(InvalidToken) as exc_info:
            env.validator.authenticate(f"Bearer {token}")
        assert exc_info.value.message == "Token not found, expired, or revoked"

    def test_client_token_trusted_from_row(self, env):
        token = env.client_token("svc-writer")
        record = env.validator.authenticate(f"Bearer {token}")

        assert isinstance(record, OAuth2Trust)
        assert record.client_id == "svc-writer"
        assert record.client_name == "Writer Service"
        assert record.scopes == frozenset({"read", "write"})

    def test_scopes_come_from_row_not_claims(self, env):
        token = env.client_token("svc-writer")
        env.store.set_client_scopes("svc-writer", ["read"])

        record = env.validator.authenticate(f"Bearer {token}")

        assert record.scopes == frozenset({"read"})

    def test_session_token(self, env):
        token = env.session_token("root")
        record = env.validator.authenticate(f"Bearer {token}")

        assert isinstance(record, UserSessionTrust)
        assert record.username == "root"
        assert record.role == "admin"
        assert env.last_accessed(token) == env.clock()

    def test_role_comes_from_row_not_claims(self, env):
        token = env.session_token("root")
        env.store.set_user_role(env.user_id("root"), "user")

        assert env.validator.authenticate(f"Bearer {token}").role == "user"

    def test_revoked_token(self, env):
        token = env.client_token("svc-reader")
        env.issuer.revoke(token)

        with pytest.raises(InvalidToken):
            env.validator.authenticate(f"Bearer {token}")

    def test_revoked_session_has_session_message(self, env):
        token = env.session_token("alice")
        env.issuer.revoke_user_sessions(env.user_id("alice"))

        with pytest.raises(InvalidToken) as exc_info:
            env.validator.authenticate(f"Bearer {token}")
        assert exc_info.value.message == "Session not found, expired, or revoked"

    def test_inactive_client(self, env):
        token = env.client_token("svc-reader")
        env.store.set_client_active("svc-reader", False)

        with pytest.raises(InvalidToken):
            env.validator.authenticate(f"Bearer {token}")

    def test_inactive_user(self, env):
        token = env.session_token("alice")
        env.store.set_user_active(env.user_id("alice"), False)

        with pytest.raises(InvalidToken):
            env.validator.authenticate(f"Bearer {token}")

    def test_expired_client_row(self, env):
        token = env.client_token("svc-reader")
        env.clock.advance(seconds=env.settings.token_ttl_seconds + 1)

        with pytest.raises(TokenExpired):
            env.validator.authenticate(f"Bearer {token}")

    def test_expired_session_row_is_not_touched(self, env):
        token = env.session_token("alice")
        env.clock.advance(seconds=env.settings.token_ttl_seconds)

        with pytest.raises(TokenExpired) as exc_info:
            env.validator.authenticate(f"Bearer {token}")

        assert exc_info.value.error == "token_expired"
        assert env.last_accessed(token) is None

    def test_last_accessed_follows_clock(self, env):
        token = env.session_token("alice")
        env.validator.authenticate(f"Bearer {token}")
        later = env.clock.advance(minutes=5)
        env.validator.authenticate(f"Bearer {token}")

        assert env.last_accessed(token) == later

    def test_naive_clock_read_as_utc(self, env):
        naive_now = env.clock().replace(tzinfo=None)
        validator = TokenTrustValidator(env.settings, env.store, clock=lambda: naive_now)
        client_token = env.client_token("svc-reader")
        session_token = env.session_token("alice")

        assert validator.authenticate(f"Bearer {client_token}").client_id == "svc-reader"
        assert validator.authenticate(f"Bearer {session_token}").username == "alice"
        assert env.last_accessed(session_token) == naive_now.replace(tzinfo=timezone.utc)

    def test_naive_clock_past_expiry(self, env):
        token = env.client_token("svc-reader")
        naive_later = env.clock().replace(tzinfo=None) + timedelta(
            seconds=env.settings.token_ttl_seconds + 1
        )
        validator = TokenTrustValidator(env.settings, env.store, clock=lambda: naive_later)

        with pytest.raises(TokenExpired):
            validator.authenticate(f"Bearer {token}")

    def test_store_failure_is_server_error(self, env, caplog):
        store = Mock(wraps=env.store)
        store.find_access_tokens.side_effect = RuntimeError("database is locked")
        validator = TokenTrustValidator(env.settings, store, clock=env.clock)
        token = env.client_token("svc-reader")

        with caplog.at_level(logging.ERROR, logger="fastapi_authgate.middleware"):
            with pytest.raises(ServerError) as exc_info:
                validator.authenticate(f"Bearer {token}")

        assert exc_info.value.to_dict() == {"error": "server_error", "message": "Internal server error"}
        assert "database is locked" not in exc_info.value.message
        assert "Trust store lookup failed" in caplog.text

    def test_touch_failure_does_not_reject(self, env):
        store = Mock(wraps=env.store)
        store.touch_session.side_effect = RuntimeError("read-only database")
        validator = TokenTrustValidator(env.settings, store, clock=env.clock)
        token = env.session_token("alice")

        assert validator.authenticate(f"Bearer {token}").username == "alice"

    def test_raw_token_not_logged(self, env, caplog):
        token = env.client_token("svc-reader")
        env.issuer.revoke(token)

        with caplog.at_level(logging.DEBUG, logger="fastapi_authgate"):
            with pytest.raises(InvalidToken):
                env.validator.authenticate(f"Bearer {token}")

        assert token not in caplog.text


class TestOptionalAuthentication:
    def test_anonymous(self, env):
        assert env.validator.authenticate_optional(None) is None

    def test_valid_token_identified(self, env):
        token = env.session_token("alice")
        assert env.validator.authenticate_optional(f"Bearer {token}").username == "alice"

    @pytest.mark.parametrize("header", ["Bearer not-a-jwt", "Basic abc"])
    def test_rejections_degrade_to_none(self, env, header):
        assert env.validator.authenticate_optional(header) is None

    def test_expired_degrades_to_none(self, env):
        token = env.session_token("alice")
        env.clock.advance(days=2)
        assert env.validator.authenticate_optional(f"Bearer {token}") is None

    def test_revoked_degrades_to_none(self, env):
        token = env.client_token("svc-reader")
        env.issuer.revoke(token)
        assert env.validator.authenticate_optional(f"Bearer {token}") is None


class TestTrustDependency:
    def test_missing_token_response(self, env):
        client = TestClient(create_dependency_app(env))
        response = client.get("/me")

        assert response.status_code == 401
        assert response.json() == {
            "error": "unauthorized",
            "message": "Authentication required. Please provide a valid Bearer token.",
            "auth_required": True,
        }
        assert response.headers["WWW-Authenticate"] == "Bearer"

    def test_invalid_token_response(self, env):
        client = TestClient(create_dependency_app(env))
        response = client.get("/me", headers=bearer("not-a-jwt"))

        assert response.status_code == 401
        assert response.json()["error"] == "invalid_token"

    def test_expired_session_response(self, env):
        token = env.session_token("alice")
        env.clock.advance(days=2)
        client = TestClient(create_dependency_app(env))

        response = client.get("/me", headers=bearer(token))

        assert response.status_code == 401
        assert response.json()["error"] == "token_expired"
        assert env.last_accessed(token) is None

    def test_record_attached(self, env):
        token = env.client_token("svc-reader")
        client = TestClient(create_dependency_app(env))

        response = client.get("/me", headers=bearer(token))

        assert response.status_code == 200
        auth = response.json()["auth"]
        assert auth["type"] == "oauth2"
        assert auth["client_id"] == "svc-reader"
        assert auth["scopes"] == ["read"]

    def test_revocation_effective_immediately(self, env):
        token = env.session_token("alice")
        client = TestClient(create_dependency_app(env))

        assert client.get("/me", headers=bearer(token)).status_code == 200
        env.issuer.revoke(token)
        assert client.get("/me", headers=bearer(token)).status_code == 401

    def test_optional_dependency(self, env):
        client = TestClient(create_dependency_app(env, optional=True))

        assert client.get("/me").json() == {"auth": None}
        assert client.get("/me", headers=bearer("garbage")).json() == {"auth": None}

        token = env.session_token("mona")
        assert client.get("/me", headers=bearer(token)).json()["auth"]["username"] == "mona"


class TestTokenTrustMiddleware:
    def test_excluded_paths_pass_without_token(self, env):
        client = TestClient(create_middleware_app(env))

        assert client.get("/health").status_code == 200
        assert client.get("/public/docs").status_code == 200

    def test_protected_path_requires_token(self, env):
        client = TestClient(create_middleware_app(env))
        response = client.get("/me")

        assert response.status_code == 401
        assert response.json()["error"] == "unauthorized"
        assert response.headers["WWW-Authenticate"] == "Bearer"

    def test_record_attached(self, env):
        token = env.session_token("alice")
        client = TestClient(create_middleware_app(env))

        response = client.get("/me", headers=bearer(token))

        assert response.status_code == 200
        assert response.json()["auth"]["type"] == "user_session"
        assert response.json()["auth"]["username"] == "alice"

    def test_unknown_type_rejected(self, env):
        client = TestClient(create_middleware_app(env))
        response = client.get("/me", headers=bearer(sign_token({"type": "mystery"})))

        assert response.status_code == 401
        assert response.json() == {
            "error": "invalid_token",
            "message": "Unknown token type",
            "auth_required": True,
        }

    def test_optional_middleware(self, env):
        client = TestClient(create_middleware_app(env, optional=True))

        assert client.get("/me").json() == {"auth": None}
        assert client.get("/me", headers=bearer("garbage")).json() == {"auth": None}

    def test_disabled_mode(self):
        env = TrustEnvironment(require_auth=False)
        try:
            client = TestClient(create_middleware_app(env))
            response = client.get("/me")

            assert response.status_code == 200
            assert response.json() == {"auth": None}
        finally:
            env.close()

    def test_server_error_hides_detail(self, env):
        env.validator.store = Mock(wraps=env.store)
        env.validator.store.find_sessions.side_effect = RuntimeError("disk I/O error")
        token = env.session_token("alice")
        client = TestClient(create_middleware_app(env))

        response = client.get("/me", headers=bearer(token))

        assert response.status_code == 500
        assert response.json() == {"error": "server_error", "message": "Internal server error"}
        assert "WWW-Authenticate" not in response.headers
