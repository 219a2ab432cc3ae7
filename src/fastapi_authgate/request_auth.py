"""Attach a configured auth mechanism to outgoing requests."""

import base64
import logging
from typing import Dict, Mapping

import httpx
from pydantic import ValidationError

from fastapi_authgate.exceptions import ConfigInvalid
from fastapi_authgate.models import BasicAuth, OAuth2Auth, TokenPlacement, auth_config_adapter
from fastapi_authgate.validation import AuthConfigInput, validate_auth

logger = logging.getLogger(__name__)


def _coerce(auth: AuthConfigInput):
    if not isinstance(auth, Mapping):
        return auth
    if not auth.get("auth_active"):
        return None
    try:
        return auth_config_adapter.validate_python(auth)
    except ValidationError as e:
        logger.debug(f"Ignoring unparseable auth config: {e}")
        return None


def _basic_auth_headers(auth: BasicAuth) -> Dict[str, str]:
    if not auth.username and not auth.password:
        return {}
    credentials = f"{auth.username or ''}:{auth.password or ''}"
    encoded = base64.b64encode(credentials.encode("utf-8")).decode("ascii")
    return {"Authorization": f"Basic {encoded}"}


def generate_auth_headers(auth: AuthConfigInput) -> Dict[str, str]:
    """Headers carrying the credential of `auth`, empty when there is none."""
    auth = _coerce(auth)
    if auth is None or not auth.auth_active:
        return {}

    if isinstance(auth, BasicAuth):
        return _basic_auth_headers(auth)

    if isinstance(auth, OAuth2Auth):
        token = auth.grant_type_info.token
        if token and auth.add_to == TokenPlacement.HEADERS:
            return {"Authorization": f"Bearer {token}"}

    return {}


def generate_auth_params(auth: AuthConfigInput) -> Dict[str, str]:
    """Query parameters carrying the credential of `auth`, empty when there is none."""
    auth = _coerce(auth)
    if auth is None or not auth.auth_active:
        return {}

    if isinstance(auth, OAuth2Auth):
        token = auth.grant_type_info.token
        if token and auth.add_to == TokenPlacement.QUERY_PARAMS:
            return {"access_token": token}

    return {}


def apply_auth(request: httpx.Request, auth: AuthConfigInput) -> httpx.Request:
    """Mutate `request` in place so that it carries the configured credential.

    Raises:
        ConfigInvalid: If the configuration does not validate; nothing is
            attached in that case
    """
    validation = validate_auth(auth)
    if not validation.is_valid:
        logger.warning(
            f"Refusing to apply invalid {validation.auth_type} auth config: "
            f"{validation.errors}"
        )
        raise ConfigInvalid(validation.errors)

    request.headers.update(generate_auth_headers(auth))
    params = generate_auth_params(auth)
    if params:
        request.url = request.url.copy_merge_params(params)
    return request
