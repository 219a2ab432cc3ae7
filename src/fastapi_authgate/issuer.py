"""Issue and revoke bearer tokens the trust middleware accepts.

Tokens are signed JWTs whose SHA-256 digest is persisted in the trust store.
The claims are informational only: the middleware always re-reads scopes and
roles from the store.
"""

import logging
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

import jwt

from fastapi_authgate.config import AuthGateSettings
from fastapi_authgate.consts import CLIENT_CREDENTIALS_TOKEN_TYPE, USER_SESSION_TOKEN_TYPE
from fastapi_authgate.exceptions import PrincipalNotFound
from fastapi_authgate.store import TrustStore, hash_token, utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IssuedToken:
    access_token: str
    token_type: str
    expires_at: datetime
    expires_in: int
    scopes: List[str] = field(default_factory=list)
    session_id: Optional[int] = None

    def to_response(self) -> Dict[str, Any]:
        """OAuth 2.0 token endpoint response body (RFC 6749, section 5.1)."""
        body: Dict[str, Any] = {
            "access_token": self.access_token,
            "token_type": "Bearer",
            "expires_in": self.expires_in,
        }
        if self.scopes:
            body["scope"] = " ".join(self.scopes)
        return body


class TokenIssuer:
    def __init__(
        self,
        settings: AuthGateSettings,
        store: TrustStore,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.settings = settings
        self.store = store
        self.clock = clock or utcnow

    def _sign(self, claims: Dict[str, Any], issued_at: datetime, expires_at: datetime) -> str:
        payload = dict(claims)
        payload["iat"] = int(issued_at.timestamp())
        payload["exp"] = int(expires_at.timestamp())
        payload["jti"] = secrets.token_hex(16)
        if self.settings.jwt_issuer:
            payload["iss"] = self.settings.jwt_issuer
        return jwt.encode(
            payload,
            self.settings.jwt_secret.get_secret_value(),
            algorithm=self.settings.signing_algorithm,
        )

    def _lifetime(self):
        issued_at = self.clock()
        ttl = self.settings.token_ttl_seconds
        return issued_at, issued_at + timedelta(seconds=ttl), ttl

    def issue_client_token(self, client_id: str) -> IssuedToken:
        """Issue a client credentials token carrying the client's current scopes.

        Raises:
            PrincipalNotFound: If the client is unknown or inactive
        """
        client = self.store.get_client(client_id)
        if client is None or not client.is_active:
            logger.warning(f"Refusing to issue token for unknown or inactive client {client_id}")
            raise PrincipalNotFound(f"No active client {client_id}")

        issued_at, expires_at, ttl = self._lifetime()
        token = self._sign(
            {
                "type": CLIENT_CREDENTIALS_TOKEN_TYPE,
                "client_id": client.client_id,
                "client_name": client.client_name,
                "scopes": list(client.scopes),
            },
            issued_at,
            expires_at,
        )
        self.store.insert_access_token(hash_token(token), client.client_id, client.scopes, expires_at)
        logger.info(f"Issued client credentials token for {client.client_id}")
        return IssuedToken(
            access_token=token,
            token_type=CLIENT_CREDENTIALS_TOKEN_TYPE,
            expires_at=expires_at,
            expires_in=ttl,
            scopes=list(client.scopes),
        )

    def issue_session_token(
        self,
        user_id: int,
        device_info: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> IssuedToken:
        """Open a new session for an active user.

        Raises:
            PrincipalNotFound: If the user is unknown or inactive
        """
        user = self.store.get_user(user_id)
        if user is None or not user.is_active:
            logger.warning(f"Refusing to open session for unknown or inactive user {user_id}")
            raise PrincipalNotFound(f"No active user {user_id}")

        issued_at, expires_at, ttl = self._lifetime()
        token = self._sign(
            {
                "type": USER_SESSION_TOKEN_TYPE,
                "user_id": user.id,
                "username": user.username,
                "role": user.role,
            },
            issued_at,
            expires_at,
        )
        session_id = self.store.insert_session(
            hash_token(token), user.id, expires_at, device_info=device_info, ip_address=ip_address
        )
        logger.info(f"Opened session {session_id} for user {user.id}")
        return IssuedToken(
            access_token=token,
            token_type=USER_SESSION_TOKEN_TYPE,
            expires_at=expires_at,
            expires_in=ttl,
            session_id=session_id,
        )

    def revoke(self, token: str) -> bool:
        """Revoke a previously issued token. Returns False if nothing was live under it."""
        revoked = self.store.revoke_token_hash(hash_token(token))
        if revoked:
            logger.info("Revoked bearer token")
        return revoked

    def revoke_user_sessions(self, user_id: int) -> int:
        count = self.store.revoke_user_sessions(user_id)
        logger.info(f"Revoked {count} session(s) of user {user_id}")
        return count
