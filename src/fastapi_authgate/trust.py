"""Normalized trust records produced by the token trust middleware.

A trust record lives for one request: it is attached to `request.state`,
read by the authorization gates and handlers, and never persisted.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, FrozenSet, Union


@dataclass(frozen=True)
class OAuth2Trust:
    """A machine-to-machine caller authenticated by a client credentials token."""
    client_id: str
    client_name: str
    scopes: FrozenSet[str]
    expires_at: datetime

    kind = "oauth2"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.kind,
            "client_id": self.client_id,
            "client_name": self.client_name,
            "scopes": sorted(self.scopes),
            "token_expires_at": self.expires_at.isoformat(),
        }


@dataclass(frozen=True)
class UserSessionTrust:
    """A human caller authenticated by a user session token."""
    user_id: int
    username: str
    email: str
    role: str
    session_id: int
    expires_at: datetime

    kind = "user_session"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.kind,
            "user_id": self.user_id,
            "username": self.username,
            "email": self.email,
            "role": self.role,
            "session_id": self.session_id,
            "token_expires_at": self.expires_at.isoformat(),
        }


TrustRecord = Union[OAuth2Trust, UserSessionTrust]
