"""FastAPI AuthGate - OAuth 2.0 on both sides of a FastAPI service.

Client side, FastAPI AuthGate validates declarative auth configurations and
runs the OAuth 2.0 grant flows (with PKCE) against remote authorization
servers. Server side, it issues bearer tokens, re-validates every inbound
bearer token against a persistent trust store, and gates endpoints on the
scopes or roles of the authenticated caller.

Key Components:
    - validate_auth: Structured validation of an auth configuration
    - OAuth2Client: Async token endpoint client for every supported grant
    - TokenIssuer: Issues and revokes client and user session tokens
    - TokenTrustValidator / TokenTrustMiddleware / TrustDependency: Inbound trust
    - require_scope / require_role: Authorization gates

Usage:
    ```python
    from fastapi import Depends, FastAPI
    from fastapi_authgate import (
        AuthGateSettings, SQLiteTrustStore, TokenTrustValidator,
        TrustDependency, register_trust_error_handler, require_scope,
    )

    settings = AuthGateSettings.from_env()
    validator = TokenTrustValidator(settings, SQLiteTrustStore(settings.database_path))
    authenticated = TrustDependency(validator)

    app = FastAPI()
    register_trust_error_handler(app)

    @app.get("/collections", dependencies=[Depends(require_scope("read", authenticated))])
    def collections():
        return []
    ```
"""

from fastapi_authgate.config import AuthGateSettings
from fastapi_authgate.consts import AS_BASIC_AUTH_HEADERS, AS_BODY
from fastapi_authgate.exceptions import (
    AccessDenied,
    AuthGateError,
    ConfigInvalid,
    InsufficientRole,
    InsufficientScope,
    InvalidToken,
    MissingRequired,
    OAuth2FlowError,
    PrincipalNotFound,
    ServerError,
    TokenEndpointUnreachable,
    TokenExpired,
    TokenRequestFailed,
    TrustError,
    Unauthorized,
    UnsupportedGrantType,
    UnsupportedMethod,
)
from fastapi_authgate.gates import check_role, check_scope, get_trust_record, require_role, require_scope
from fastapi_authgate.issuer import IssuedToken, TokenIssuer
from fastapi_authgate.middleware import (
    TokenTrustMiddleware,
    TokenTrustValidator,
    TrustDependency,
    register_trust_error_handler,
    trust_error_response,
)
from fastapi_authgate.models import (
    AdditionalParam,
    AuthConfig,
    AuthType,
    BasicAuth,
    GrantType,
    NoAuth,
    OAuth2Auth,
    OAuth2GrantInfo,
    TokenPlacement,
    ValidationResult,
)
from fastapi_authgate.oauth2_flows import (
    AuthorizationRequest,
    OAuth2Client,
    OAuthErrorInfo,
    build_authorization_url,
    build_implicit_flow_url,
    parse_oauth_error,
    start_authorization,
)
from fastapi_authgate.pkce import (
    CodeChallengeMethod,
    PKCEPair,
    generate_code_challenge,
    generate_code_verifier,
    generate_pkce_pair,
    generate_state,
)
from fastapi_authgate.request_auth import apply_auth, generate_auth_headers, generate_auth_params
from fastapi_authgate.store import SQLiteTrustStore, TrustStore, hash_token
from fastapi_authgate.trust import OAuth2Trust, TrustRecord, UserSessionTrust
from fastapi_authgate.validation import (
    get_auth_suggestions,
    get_validation_message,
    is_auth_ready,
    validate_auth,
)

__version__ = "0.1.0"

__all__ = [
    "AS_BASIC_AUTH_HEADERS",
    "AS_BODY",
    "AuthGateSettings",
    "AccessDenied",
    "AuthGateError",
    "ConfigInvalid",
    "InsufficientRole",
    "InsufficientScope",
    "InvalidToken",
    "MissingRequired",
    "OAuth2FlowError",
    "PrincipalNotFound",
    "ServerError",
    "TokenEndpointUnreachable",
    "TokenExpired",
    "TokenRequestFailed",
    "TrustError",
    "Unauthorized",
    "UnsupportedGrantType",
    "UnsupportedMethod",
    "check_role",
    "check_scope",
    "get_trust_record",
    "require_role",
    "require_scope",
    "IssuedToken",
    "TokenIssuer",
    "TokenTrustMiddleware",
    "TokenTrustValidator",
    "TrustDependency",
    "register_trust_error_handler",
    "trust_error_response",
    "AdditionalParam",
    "AuthConfig",
    "AuthType",
    "BasicAuth",
    "GrantType",
    "NoAuth",
    "OAuth2Auth",
    "OAuth2GrantInfo",
    "TokenPlacement",
    "ValidationResult",
    "AuthorizationRequest",
    "OAuth2Client",
    "OAuthErrorInfo",
    "build_authorization_url",
    "build_implicit_flow_url",
    "parse_oauth_error",
    "start_authorization",
    "CodeChallengeMethod",
    "PKCEPair",
    "generate_code_challenge",
    "generate_code_verifier",
    "generate_pkce_pair",
    "generate_state",
    "apply_auth",
    "generate_auth_headers",
    "generate_auth_params",
    "SQLiteTrustStore",
    "TrustStore",
    "hash_token",
    "OAuth2Trust",
    "TrustRecord",
    "UserSessionTrust",
    "get_auth_suggestions",
    "get_validation_message",
    "is_auth_ready",
    "validate_auth",
]
