"""Error taxonomy for FastAPI AuthGate.

Client side errors (config, flow engine) derive from `AuthGateError`.
Server side rejections derive from `TrustError`, each of which maps 1:1 to an
HTTP status code and a machine-readable error code.
"""

from typing import Any, Dict, Iterable, List, Optional

from fastapi import status


class AuthGateError(Exception):
    """Base class for all FastAPI AuthGate errors."""


class ConfigInvalid(AuthGateError):
    """An auth configuration failed validation and cannot be used."""

    def __init__(self, errors: Iterable[str]):
        self.errors: List[str] = list(errors)
        super().__init__("; ".join(self.errors) or "Invalid auth configuration")


class MissingRequired(AuthGateError, ValueError):
    """A required argument of a flow was absent or empty."""

    def __init__(self, *names: str):
        self.names = names
        super().__init__(f"Missing required value(s): {', '.join(names)}")


class UnsupportedMethod(AuthGateError, ValueError):
    """Unknown PKCE code challenge method."""

    def __init__(self, method: Any):
        self.method = method
        super().__init__(f"Unsupported code challenge method: {method}")


class UnsupportedGrantType(AuthGateError, ValueError):
    """The grant type has no token endpoint step, or is unknown."""

    def __init__(self, grant_type: Any, reason: str = ""):
        self.grant_type = grant_type
        message = f"Unsupported grant type: {grant_type}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)


class OAuth2FlowError(AuthGateError):
    """Base class for failures talking to a remote authorization server."""


class TokenRequestFailed(OAuth2FlowError):
    """The token endpoint answered with a non-2xx status or an unreadable body."""

    def __init__(self, status_code: int, body: str, reason: str = ""):
        self.status_code = status_code
        self.body = body
        self.reason = reason
        super().__init__(f"Token request failed: {status_code} {reason} - {body}")


class TokenEndpointUnreachable(OAuth2FlowError):
    """The token endpoint could not be reached at all."""

    def __init__(self, token_endpoint: str, detail: str):
        self.token_endpoint = token_endpoint
        self.detail = detail
        super().__init__(f"Token endpoint {token_endpoint} unreachable: {detail}")


class PrincipalNotFound(AuthGateError, LookupError):
    """No active client or user exists for the requested token issuance."""


class TrustError(AuthGateError):
    """A request was rejected at the trust boundary."""

    status_code: int = status.HTTP_401_UNAUTHORIZED
    error: str = "unauthorized"
    default_message: str = "Authentication required"

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        auth_required: Optional[bool] = None,
        **extra: Any,
    ):
        self.message = message or self.default_message
        self.auth_required = auth_required
        self.extra = extra
        super().__init__(f"{self.error}: {self.message}")

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.error, "message": self.message}
        if self.auth_required is not None:
            body["auth_required"] = self.auth_required
        body.update(self.extra)
        return body


class Unauthorized(TrustError):
    status_code = status.HTTP_401_UNAUTHORIZED
    error = "unauthorized"
    default_message = "Authentication required"


class InvalidToken(TrustError):
    status_code = status.HTTP_401_UNAUTHORIZED
    error = "invalid_token"
    default_message = "Invalid token"


class TokenExpired(TrustError):
    status_code = status.HTTP_401_UNAUTHORIZED
    error = "token_expired"
    default_message = "Token has expired"


class InsufficientScope(TrustError):
    status_code = status.HTTP_403_FORBIDDEN
    error = "insufficient_scope"
    default_message = "Insufficient scope"


class AccessDenied(TrustError):
    status_code = status.HTTP_403_FORBIDDEN
    error = "access_denied"
    default_message = "Access denied"


class InsufficientRole(TrustError):
    status_code = status.HTTP_403_FORBIDDEN
    error = "insufficient_role"
    default_message = "Insufficient role"


class ServerError(TrustError):
    """Internal fault. The message never carries internal detail."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    error = "server_error"
    default_message = "Internal server error"

    def __init__(self):
        super().__init__(self.default_message)
