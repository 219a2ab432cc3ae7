"""Token trust middleware.

Turns the `Authorization: Bearer` header of an inbound request into a
`TrustRecord`, or rejects the request. Every request is re-validated against
the trust store, so revocation takes effect immediately.

Three integration points share one `TokenTrustValidator`:

* `TrustDependency` for per-route `Depends(...)` use (pair it with
  `register_trust_error_handler`);
* `TokenTrustMiddleware` for app-wide enforcement;
* the validator itself for non-FastAPI callers.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional

import jwt
from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware

from fastapi_authgate.config import AuthGateSettings
from fastapi_authgate.consts import (
    CLIENT_CREDENTIALS_TOKEN_TYPE,
    REQUEST_STATE_AUTH_KEY,
    USER_SESSION_TOKEN_TYPE,
)
from fastapi_authgate.exceptions import (
    InvalidToken,
    ServerError,
    TokenExpired,
    TrustError,
    Unauthorized,
)
from fastapi_authgate.store import TrustStore, hash_token, utcnow
from fastapi_authgate.trust import OAuth2Trust, TrustRecord, UserSessionTrust

logger = logging.getLogger(__name__)

BEARER_PREFIX = "bearer "


def extract_bearer_token(authorization: Optional[str]) -> Optional[str]:
    """The credential of an `Authorization: Bearer <token>` header, if any."""
    if not authorization or not authorization.lower().startswith(BEARER_PREFIX):
        return None
    token = authorization[len(BEARER_PREFIX):].strip()
    return token or None


class TokenTrustValidator:
    """Validates bearer credentials against a signing secret and a trust store."""

    def __init__(
        self,
        settings: AuthGateSettings,
        store: TrustStore,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.settings = settings
        self.store = store
        self.clock = clock or utcnow
        if not settings.require_auth:
            logger.warning("Authentication is disabled: every request will be accepted")

    def authenticate(self, authorization: Optional[str]) -> Optional[TrustRecord]:
        """Authenticate a required-auth request.

        Returns None only when authentication is disabled in the settings.

        Raises:
            TrustError: The subclass names the reason for rejection
        """
        if not self.settings.require_auth:
            return None

        token = extract_bearer_token(authorization)
        if token is None:
            logger.warning("Rejected request without bearer token")
            raise Unauthorized(
                "Authentication required. Please provide a valid Bearer token.",
                auth_required=True,
            )
        return self._authenticate_token(token)

    def authenticate_optional(self, authorization: Optional[str]) -> Optional[TrustRecord]:
        """Identify the caller when possible. Never raises `TrustError`."""
        token = extract_bearer_token(authorization)
        if token is None:
            return None
        try:
            return self._authenticate_token(token)
        except TrustError as e:
            logger.warning(f"Optional authentication failed, continuing anonymously: {e.error}")
            return None

    def _authenticate_token(self, token: str) -> TrustRecord:
        claims = self._verify(token)
        token_type = claims.get("type")

        if token_type == CLIENT_CREDENTIALS_TOKEN_TYPE:
            return self._trust_client_token(token)
        if token_type == USER_SESSION_TOKEN_TYPE:
            return self._trust_session_token(token)

        logger.warning(f"Rejected token of unknown type {token_type!r}")
        raise InvalidToken("Unknown token type", auth_required=True)

    def _verify(self, token: str) -> Dict[str, Any]:
        try:
            return jwt.decode(
                token,
                self.settings.jwt_secret.get_secret_value(),
                algorithms=self.settings.jwt_algorithms,
                issuer=self.settings.jwt_issuer,
                options={"require": ["exp"]},
            )
        except jwt.ExpiredSignatureError:
            logger.warning("Rejected expired token")
            raise TokenExpired("Token has expired", auth_required=True)
        except jwt.InvalidTokenError as e:
            logger.warning(f"Rejected malformed token: {type(e).__name__}")
            raise InvalidToken("Invalid token format", auth_required=True)
        except Exception:
            logger.exception("Unexpected failure verifying bearer token")
            raise ServerError()

    def _now(self) -> datetime:
        # Naive clocks are read as UTC, matching the store
        now = self.clock()
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        return now

    def _lookup(self, finder: Callable[[str], List[Any]], token: str) -> List[Any]:
        try:
            return finder(hash_token(token))
        except Exception:
            logger.exception("Trust store lookup failed")
            raise ServerError()

    def _trust_client_token(self, token: str) -> OAuth2Trust:
        rows = [row for row in self._lookup(self.store.find_access_tokens, token) if not row.is_revoked]
        if len(rows) != 1 or not rows[0].client_is_active or rows[0].client_name is None:
            logger.warning(f"Rejected client token: {len(rows)} live row(s) or inactive client")
            raise InvalidToken("Token not found, expired, or revoked", auth_required=True)

        row = rows[0]
        if row.expires_at <= self._now():
            logger.warning(f"Rejected expired token of client {row.client_id}")
            raise TokenExpired("Token has expired", auth_required=True)

        logger.debug(f"Authenticated client {row.client_id}")
        return OAuth2Trust(
            client_id=row.client_id,
            client_name=row.client_name,
            scopes=frozenset(row.scopes),
            expires_at=row.expires_at,
        )

    def _trust_session_token(self, token: str) -> UserSessionTrust:
        rows = [row for row in self._lookup(self.store.find_sessions, token) if not row.is_revoked]
        if len(rows) != 1 or not rows[0].user_is_active:
            logger.warning(f"Rejected session token: {len(rows)} live row(s) or inactive user")
            raise InvalidToken("Session not found, expired, or revoked", auth_required=True)

        row = rows[0]
        now = self._now()
        if row.expires_at <= now:
            logger.warning(f"Rejected expired session {row.id}")
            raise TokenExpired("Session has expired", auth_required=True)

        try:
            self.store.touch_session(row.id, now)
        except Exception:
            # last_accessed is telemetry only
            logger.exception(f"Failed to record access to session {row.id}")

        logger.debug(f"Authenticated user {row.user_id} via session {row.id}")
        return UserSessionTrust(
            user_id=row.user_id,
            username=row.username,
            email=row.email,
            role=row.role,
            session_id=row.id,
            expires_at=row.expires_at,
        )


def trust_error_response(error: TrustError) -> JSONResponse:
    """Render a rejection as `{error, message, auth_required?, ...}` JSON."""
    headers = None
    if error.status_code == 401:
        headers = {"WWW-Authenticate": "Bearer"}
    return JSONResponse(status_code=error.status_code, content=error.to_dict(), headers=headers)


async def _trust_error_handler(request: Request, exc: TrustError) -> JSONResponse:
    return trust_error_response(exc)


def register_trust_error_handler(app: FastAPI) -> None:
    """Render `TrustError`s raised by dependencies and gates as JSON responses."""
    app.add_exception_handler(TrustError, _trust_error_handler)


class TrustDependency:
    """`Depends` target that authenticates the request and annotates `request.state`.

    Example:
        ```python
        authenticated = TrustDependency(validator)

        @app.get("/me", dependencies=[Depends(authenticated)])
        def me(request: Request): ...
        ```
    """

    def __init__(self, validator: TokenTrustValidator, optional: bool = False):
        self.validator = validator
        self.optional = optional

    # FastAPI runs sync dependencies in its threadpool
    def __call__(self, request: Request) -> Optional[TrustRecord]:
        authorization = request.headers.get("Authorization")
        if self.optional:
            record = self.validator.authenticate_optional(authorization)
        else:
            record = self.validator.authenticate(authorization)
        setattr(request.state, REQUEST_STATE_AUTH_KEY, record)
        return record


class TokenTrustMiddleware(BaseHTTPMiddleware):
    """App-wide token trust enforcement.

    Example:
        ```python
        app.add_middleware(
            TokenTrustMiddleware,
            validator=validator,
            exclude_paths=["/health", "/oauth/token"],
        )
        ```
    """

    def __init__(
        self,
        app,
        validator: TokenTrustValidator,
        optional: bool = False,
        exclude_paths: Optional[Iterable[str]] = None,
    ):
        super().__init__(app)
        self.validator = validator
        self.optional = optional
        self.exclude_paths = [path.rstrip("/") or "/" for path in (exclude_paths or [])]

    def should_process_request(self, request: Request) -> bool:
        path = request.url.path
        for excluded in self.exclude_paths:
            if path == excluded or (excluded != "/" and path.startswith(excluded + "/")):
                return False
        return True

    async def dispatch(self, request: Request, call_next) -> Response:
        if not self.should_process_request(request):
            return await call_next(request)

        authorization = request.headers.get("Authorization")
        authenticate = (
            self.validator.authenticate_optional if self.optional else self.validator.authenticate
        )
        try:
            record = await run_in_threadpool(authenticate, authorization)
        except TrustError as e:
            return trust_error_response(e)

        setattr(request.state, REQUEST_STATE_AUTH_KEY, record)
        return await call_next(request)
