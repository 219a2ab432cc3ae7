"""Auth configuration validation.

Checks a declarative auth configuration before it is allowed anywhere near the
network. Validation is pure: it never performs I/O (URLs are checked
syntactically) and never raises, every problem is reported in the returned
`ValidationResult`.
"""

import logging
from typing import Any, List, Mapping, Optional, Union
from urllib.parse import urlparse

from pydantic import ValidationError

from fastapi_authgate.models import (
    AuthType,
    BasicAuth,
    GrantType,
    NoAuth,
    OAuth2Auth,
    OAuth2GrantInfo,
    ValidationResult,
    auth_config_adapter,
)

logger = logging.getLogger(__name__)

AuthConfigInput = Union[NoAuth, BasicAuth, OAuth2Auth, Mapping[str, Any], None]


def is_valid_url(url: Optional[str]) -> bool:
    """Syntactic check that `url` is absolute (has a scheme and a host)."""
    if not url:
        return False
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    return bool(parsed.scheme and parsed.netloc)


def validate_basic_auth(auth: BasicAuth) -> ValidationResult:
    errors: List[str] = []
    warnings: List[str] = []

    if not auth.username and not auth.password:
        errors.append("Username or password is required for Basic Auth")

    if not auth.username:
        warnings.append("Username is empty - this may cause authentication failures")

    if not auth.password:
        warnings.append("Password is empty - this may cause authentication failures")

    # the username is joined to the password with a colon downstream
    if auth.username and ":" in auth.username:
        warnings.append("Username contains colon (:) which may cause encoding issues")

    return ValidationResult(
        is_valid=not errors,
        errors=errors,
        warnings=warnings,
        auth_type=AuthType.BASIC.value,
    )


def _check_required_url(
    url: Optional[str], label: str, flow: str, errors: List[str]
) -> None:
    if not url:
        errors.append(f"{label} is required for {flow} flow")
    elif not is_valid_url(url):
        errors.append(f"{label} must be a valid URL")


def _validate_authorization_code_flow(
    info: OAuth2GrantInfo, errors: List[str], warnings: List[str]
) -> None:
    _check_required_url(info.auth_endpoint, "Authorization endpoint", "Authorization Code", errors)
    _check_required_url(info.token_endpoint, "Token endpoint", "Authorization Code", errors)

    if not info.redirect_uri:
        warnings.append("Redirect URI is recommended for Authorization Code flow")
    elif not is_valid_url(info.redirect_uri):
        warnings.append("Redirect URI should be a valid URL")

    if info.is_pkce and not info.client_secret:
        warnings.append("Using PKCE without client secret (public client)")

    if not info.is_pkce and not info.client_secret:
        warnings.append("Consider using PKCE or client secret for better security")


def _validate_client_credentials_flow(
    info: OAuth2GrantInfo, errors: List[str], warnings: List[str]
) -> None:
    _check_required_url(info.token_endpoint, "Token endpoint", "Client Credentials", errors)

    if not info.client_secret:
        errors.append("Client secret is required for Client Credentials flow")

    if not info.scopes:
        warnings.append("Scopes are recommended to limit access permissions")


def _validate_password_flow(
    info: OAuth2GrantInfo, errors: List[str], warnings: List[str]
) -> None:
    _check_required_url(info.token_endpoint, "Token endpoint", "Password", errors)

    if not info.username:
        errors.append("Username is required for Password flow")

    if not info.password:
        errors.append("Password is required for Password flow")

    warnings.append(
        "Password flow is deprecated and should only be used for first-party applications"
    )


def _validate_implicit_flow(
    info: OAuth2GrantInfo, errors: List[str], warnings: List[str]
) -> None:
    _check_required_url(info.auth_endpoint, "Authorization endpoint", "Implicit", errors)

    if not info.redirect_uri:
        warnings.append("Redirect URI is recommended for Implicit flow")

    warnings.append(
        "Implicit flow is deprecated - consider using Authorization Code flow with PKCE"
    )


_GRANT_VALIDATORS = {
    GrantType.AUTHORIZATION_CODE.value: _validate_authorization_code_flow,
    GrantType.CLIENT_CREDENTIALS.value: _validate_client_credentials_flow,
    GrantType.PASSWORD.value: _validate_password_flow,
    GrantType.IMPLICIT.value: _validate_implicit_flow,
}


def validate_grant_info(info: OAuth2GrantInfo) -> ValidationResult:
    """Validate the settings of a single OAuth2 grant."""
    errors: List[str] = []
    warnings: List[str] = []
    grant_type = info.grant_type

    if not grant_type:
        errors.append("Grant type is required for OAuth 2.0")
        return ValidationResult(
            is_valid=False,
            errors=errors,
            warnings=warnings,
            auth_type=AuthType.OAUTH2.value,
        )

    if not info.client_id:
        errors.append("Client ID is required")

    grant_validator = _GRANT_VALIDATORS.get(grant_type)
    if grant_validator is None:
        errors.append(f"Unsupported grant type: {grant_type}")
    else:
        grant_validator(info, errors, warnings)

    return ValidationResult(
        is_valid=not errors,
        errors=errors,
        warnings=warnings,
        auth_type=AuthType.OAUTH2.value,
        grant_type=grant_type,
    )


def validate_oauth2(auth: OAuth2Auth) -> ValidationResult:
    return validate_grant_info(auth.grant_type_info)


def _format_validation_error(exc: ValidationError) -> List[str]:
    messages = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error["loc"])
        messages.append(f"{location}: {error['msg']}" if location else error["msg"])
    return messages


def validate_auth(auth: AuthConfigInput) -> ValidationResult:
    """Validate any auth configuration.

    Args:
        auth: An `AuthConfig` model, a raw mapping of the same shape, or None

    Returns:
        A `ValidationResult`. Absent or inactive auth is always valid with
        type `none`; any other input is reported as an unsupported type.
    """
    if isinstance(auth, Mapping):
        if not auth.get("auth_active"):
            return _no_auth_result()
        auth_type = auth.get("auth_type")
        if not _is_known_auth_type(auth_type):
            return _unsupported_type_result(auth_type)
        try:
            auth = auth_config_adapter.validate_python(auth)
        except ValidationError as exc:
            logger.debug(f"Auth config of type {auth_type} failed to parse: {exc}")
            return ValidationResult(
                is_valid=False,
                errors=_format_validation_error(exc),
                auth_type=str(auth_type),
            )

    if auth is None:
        return _no_auth_result()
    if not isinstance(auth, (NoAuth, BasicAuth, OAuth2Auth)):
        return _unsupported_type_result(getattr(auth, "auth_type", type(auth).__name__))
    if not auth.auth_active:
        return _no_auth_result()

    if isinstance(auth, BasicAuth):
        return validate_basic_auth(auth)
    if isinstance(auth, OAuth2Auth):
        return validate_oauth2(auth)
    return _no_auth_result()


def _is_known_auth_type(auth_type: Any) -> bool:
    return isinstance(auth_type, str) and auth_type in {member.value for member in AuthType}


def _no_auth_result() -> ValidationResult:
    return ValidationResult(
        is_valid=True,
        auth_type=AuthType.NONE.value,
        message="No authentication configured",
    )


def _unsupported_type_result(auth_type: Any) -> ValidationResult:
    return ValidationResult(
        is_valid=False,
        errors=[f"Unsupported authentication type: {auth_type}"],
        auth_type="unknown",
    )


def get_validation_message(validation: ValidationResult) -> str:
    """Single-line summary: errors win over warnings, warnings over success."""
    if not validation.is_valid:
        return f"Error: {', '.join(validation.errors)}"

    if validation.warnings:
        return f"Warning: {', '.join(validation.warnings)}"

    if validation.auth_type == AuthType.NONE.value:
        return "OK: No authentication"
    return f"OK: {validation.auth_type} configuration is valid"


def is_auth_ready(auth: AuthConfigInput) -> bool:
    """True when the config can be used for requests as it stands."""
    validation = validate_auth(auth)
    return validation.is_valid and not validation.errors


_OAUTH2_GRANT_SUGGESTIONS = {
    GrantType.AUTHORIZATION_CODE.value: [
        "Enable PKCE for enhanced security",
        "Use state parameter to prevent CSRF attacks",
    ],
    GrantType.CLIENT_CREDENTIALS.value: [
        "Define specific scopes to limit permissions",
        "Use Basic Auth headers for client authentication",
    ],
    GrantType.PASSWORD.value: [
        "Only use Password flow for first-party applications",
        "Consider migrating to Authorization Code flow",
    ],
    GrantType.IMPLICIT.value: [
        "Implicit flow is deprecated",
        "Migrate to Authorization Code flow with PKCE",
    ],
}


def get_auth_suggestions(auth: AuthConfigInput) -> List[str]:
    """Advisory security hints for a config. Never affects validity."""
    if isinstance(auth, Mapping):
        if not auth.get("auth_active") or not _is_known_auth_type(auth.get("auth_type")):
            return []
        try:
            auth = auth_config_adapter.validate_python(auth)
        except ValidationError:
            return []

    if not isinstance(auth, (BasicAuth, OAuth2Auth)) or not auth.auth_active:
        return []

    suggestions: List[str] = []

    if isinstance(auth, BasicAuth):
        suggestions.append("Consider using environment variables for credentials")
        suggestions.append("Ensure you're using HTTPS in production")
    else:
        grant_type = auth.grant_type_info.grant_type
        suggestions.extend(_OAUTH2_GRANT_SUGGESTIONS.get(grant_type, []))
        suggestions.append("Store tokens securely")
        suggestions.append("Implement token refresh for long-lived access")

    return suggestions
