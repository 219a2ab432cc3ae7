"""OAuth2 flow engine.

Builds authorization URLs and performs token endpoint exchanges for the
Authorization Code (with optional PKCE), Client Credentials, Password,
Implicit and Refresh Token grants (RFC 6749, RFC 7636).

Flows are stateless: nothing here retries, caches or remembers a flow. The
PKCE verifier and the `state` value produced by `start_authorization` belong
to the caller, who must keep them until the redirect callback arrives and
should expire them on its own schedule.
"""

import base64
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Mapping, Optional, Sequence, Union
from urllib.parse import parse_qsl, quote_plus, urlencode, urlsplit, urlunsplit

import httpx

from fastapi_authgate.consts import AS_BASIC_AUTH_HEADERS, FORM_CONTENT_TYPE
from fastapi_authgate.exceptions import (
    ConfigInvalid,
    MissingRequired,
    TokenEndpointUnreachable,
    TokenRequestFailed,
    UnsupportedGrantType,
)
from fastapi_authgate.models import AdditionalParam, GrantType, OAuth2GrantInfo
from fastapi_authgate.pkce import (
    CodeChallengeMethod,
    PKCEPair,
    generate_code_challenge,
    generate_pkce_pair,
    generate_state,
)
from fastapi_authgate.validation import is_valid_url, validate_grant_info

logger = logging.getLogger(__name__)

TokenResponse = Dict[str, Any]
Scopes = Union[str, Sequence[str], None]
AdditionalParams = Iterable[Union[AdditionalParam, Mapping[str, Any]]]


@dataclass(frozen=True)
class OAuthErrorInfo:
    """Error reported by an authorization server (RFC 6749, section 5.2)."""
    error: str
    description: str
    uri: Optional[str] = None


@dataclass(frozen=True)
class AuthorizationRequest:
    """A started authorization attempt, to be correlated with its callback by `state`."""
    url: str
    state: str
    pkce: Optional[PKCEPair] = None


def _require(**values: Any) -> None:
    missing = [name for name, value in values.items() if not value]
    if missing:
        raise MissingRequired(*missing)


def _format_scopes(scopes: Scopes) -> Optional[str]:
    if not scopes:
        return None
    if isinstance(scopes, str):
        return scopes
    return " ".join(scopes)


def resolve_additional_params(additional_params: Optional[AdditionalParams]) -> Dict[str, str]:
    """Collapse additional params into a mapping.

    Only active entries with a non-empty key and value are kept; a later entry
    overwrites an earlier one with the same key.
    """
    resolved: Dict[str, str] = {}
    for param in additional_params or ():
        if not isinstance(param, AdditionalParam):
            param = AdditionalParam.model_validate(param)
        if param.active and param.key and param.value:
            resolved[param.key] = param.value
    return resolved


def _set_query_params(endpoint: str, params: Mapping[str, str]) -> str:
    if not is_valid_url(endpoint):
        raise ConfigInvalid(["Authorization endpoint must be a valid URL"])
    parts = urlsplit(endpoint)
    query = dict(parse_qsl(parts.query, keep_blank_values=True))
    query.update(params)
    return urlunsplit(parts._replace(query=urlencode(query)))


def _authorization_params(
    response_type: str,
    client_id: str,
    redirect_uri: Optional[str],
    scopes: Scopes,
    state: Optional[str],
) -> Dict[str, str]:
    params = {"response_type": response_type, "client_id": client_id}
    if redirect_uri:
        params["redirect_uri"] = redirect_uri
    scope = _format_scopes(scopes)
    if scope:
        params["scope"] = scope
    if state:
        params["state"] = state
    return params


def build_authorization_url(
    auth_endpoint: Optional[str],
    client_id: Optional[str],
    redirect_uri: Optional[str] = None,
    scopes: Scopes = None,
    state: Optional[str] = None,
    code_verifier: Optional[str] = None,
    code_challenge_method: Union[CodeChallengeMethod, str] = CodeChallengeMethod.S256,
    additional_params: Optional[AdditionalParams] = None,
) -> str:
    """Build the Authorization Code redirect URL (`response_type=code`).

    Args:
        auth_endpoint: Absolute URL of the authorization endpoint
        client_id: The registered client identifier
        redirect_uri: Where the server should send the user back
        scopes: Space separated string or sequence of scopes
        state: Opaque value echoed back on the callback
        code_verifier: When given, PKCE is used and the derived challenge is sent
        code_challenge_method: `S256` (default) or `plain`
        additional_params: Extra key/value pairs, see `resolve_additional_params`

    Raises:
        MissingRequired: If `auth_endpoint` or `client_id` is absent
    """
    _require(auth_endpoint=auth_endpoint, client_id=client_id)

    params = _authorization_params("code", client_id, redirect_uri, scopes, state)
    if code_verifier:
        params["code_challenge"] = generate_code_challenge(
            code_verifier, code_challenge_method
        )
        params["code_challenge_method"] = CodeChallengeMethod(code_challenge_method).value
    params.update(resolve_additional_params(additional_params))
    return _set_query_params(auth_endpoint, params)


def build_implicit_flow_url(
    auth_endpoint: Optional[str],
    client_id: Optional[str],
    redirect_uri: Optional[str] = None,
    scopes: Scopes = None,
    state: Optional[str] = None,
    additional_params: Optional[AdditionalParams] = None,
) -> str:
    """Build the Implicit grant redirect URL (`response_type=token`).

    There is no token endpoint step for this grant; the token comes back in
    the redirect fragment.
    """
    _require(auth_endpoint=auth_endpoint, client_id=client_id)

    params = _authorization_params("token", client_id, redirect_uri, scopes, state)
    params.update(resolve_additional_params(additional_params))
    return _set_query_params(auth_endpoint, params)


def start_authorization(
    grant_info: OAuth2GrantInfo, state: Optional[str] = None
) -> AuthorizationRequest:
    """Start a redirect based flow from a stored grant config.

    Generates the `state` value (unless given) and, for PKCE enabled
    Authorization Code grants, a fresh verifier/challenge pair.

    Raises:
        ConfigInvalid: If the grant config does not validate
        UnsupportedGrantType: For grants without an authorization redirect
    """
    _ensure_valid(grant_info)
    state = state or generate_state()

    if grant_info.grant_type == GrantType.AUTHORIZATION_CODE:
        pkce = (
            generate_pkce_pair(grant_info.code_challenge_method)
            if grant_info.is_pkce
            else None
        )
        url = build_authorization_url(
            grant_info.auth_endpoint,
            grant_info.client_id,
            redirect_uri=grant_info.redirect_uri,
            scopes=grant_info.scopes,
            state=state,
            code_verifier=pkce.code_verifier if pkce else None,
            code_challenge_method=grant_info.code_challenge_method,
            additional_params=grant_info.additional_params,
        )
        return AuthorizationRequest(url=url, state=state, pkce=pkce)

    if grant_info.grant_type == GrantType.IMPLICIT:
        url = build_implicit_flow_url(
            grant_info.auth_endpoint,
            grant_info.client_id,
            redirect_uri=grant_info.redirect_uri,
            scopes=grant_info.scopes,
            state=state,
            additional_params=grant_info.additional_params,
        )
        return AuthorizationRequest(url=url, state=state)

    raise UnsupportedGrantType(grant_info.grant_type, "no authorization redirect")


def parse_oauth_error(raw: Optional[str]) -> OAuthErrorInfo:
    """Best-effort parse of an OAuth2 error body. Never raises."""
    try:
        payload = json.loads(raw)
    except (TypeError, ValueError):
        payload = None

    if not isinstance(payload, dict):
        return OAuthErrorInfo(
            error="parse_error",
            description=raw or "Failed to parse error response",
        )

    return OAuthErrorInfo(
        error=payload.get("error") or "unknown_error",
        description=payload.get("error_description") or "An unknown error occurred",
        uri=payload.get("error_uri"),
    )


def encode_client_credentials(client_id: str, client_secret: Optional[str]) -> str:
    """Value of the `Authorization: Basic` header for client authentication.

    Both parts are form-urlencoded first (RFC 6749, section 2.3.1), so a
    space becomes `+`.
    """
    encoded = f"{quote_plus(client_id, safe='')}:{quote_plus(client_secret or '', safe='')}"
    return base64.b64encode(encoded.encode("utf-8")).decode("ascii")


def _ensure_valid(grant_info: OAuth2GrantInfo) -> None:
    validation = validate_grant_info(grant_info)
    if not validation.is_valid:
        raise ConfigInvalid(validation.errors)


class OAuth2Client:
    """Executes token endpoint exchanges over an `httpx.AsyncClient`.

    Usage:
        ```python
        async with OAuth2Client() as oauth:
            token = await oauth.client_credentials_flow(
                "https://auth.example.com/token", "my-client", "s3cret", "read"
            )
        ```
    """

    def __init__(
        self,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
    ):
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=timeout)

    async def __aenter__(self) -> "OAuth2Client":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._owns_client:
            await self._client.aclose()

    async def _request_token(
        self,
        token_endpoint: str,
        data: Dict[str, str],
        headers: Optional[Dict[str, str]] = None,
    ) -> TokenResponse:
        request_headers = {
            "Content-Type": FORM_CONTENT_TYPE,
            "Accept": "application/json",
        }
        request_headers.update(headers or {})

        grant_type = data.get("grant_type")
        logger.debug(f"Requesting {grant_type} token from {token_endpoint}")

        try:
            response = await self._client.post(
                token_endpoint, data=data, headers=request_headers
            )
        except httpx.RequestError as e:
            logger.warning(f"Token endpoint {token_endpoint} unreachable: {e}")
            raise TokenEndpointUnreachable(token_endpoint, str(e)) from e

        if not response.is_success:
            logger.warning(
                f"{grant_type} token request to {token_endpoint} failed with "
                f"HTTP {response.status_code}"
            )
            raise TokenRequestFailed(
                response.status_code, response.text, response.reason_phrase
            )

        try:
            payload = response.json()
        except ValueError:
            payload = None
        if not isinstance(payload, dict):
            raise TokenRequestFailed(
                response.status_code, response.text, "Response is not a JSON object"
            )
        return payload

    async def exchange_code_for_token(
        self,
        token_endpoint: Optional[str],
        client_id: Optional[str],
        code: Optional[str],
        client_secret: Optional[str] = None,
        redirect_uri: Optional[str] = None,
        code_verifier: Optional[str] = None,
        additional_params: Optional[AdditionalParams] = None,
    ) -> TokenResponse:
        """Redeem an authorization code (`grant_type=authorization_code`).

        The PKCE verifier is sent when given; the challenge never is.

        Raises:
            MissingRequired: If `token_endpoint`, `client_id` or `code` is absent
            TokenRequestFailed: On a non-2xx response
        """
        _require(token_endpoint=token_endpoint, client_id=client_id, code=code)

        data = {
            "grant_type": "authorization_code",
            "client_id": client_id,
            "code": code,
        }
        if client_secret:
            data["client_secret"] = client_secret
        if redirect_uri:
            data["redirect_uri"] = redirect_uri
        if code_verifier:
            data["code_verifier"] = code_verifier
        data.update(resolve_additional_params(additional_params))

        return await self._request_token(token_endpoint, data)

    async def client_credentials_flow(
        self,
        token_endpoint: Optional[str],
        client_id: Optional[str],
        client_secret: Optional[str] = None,
        scopes: Scopes = None,
        client_authentication: str = AS_BASIC_AUTH_HEADERS,
    ) -> TokenResponse:
        """Obtain a token for the client itself (`grant_type=client_credentials`).

        With `AS_BASIC_AUTH_HEADERS` (the default) the credentials travel in
        an `Authorization: Basic` header and the body only carries `scope`.
        `AS_BODY` sends them as form fields, as does any unrecognised mode.
        """
        _require(token_endpoint=token_endpoint, client_id=client_id)

        data = {"grant_type": "client_credentials"}
        headers = {}

        if client_authentication == AS_BASIC_AUTH_HEADERS:
            headers["Authorization"] = (
                f"Basic {encode_client_credentials(client_id, client_secret)}"
            )
        else:
            data["client_id"] = client_id
            if client_secret:
                data["client_secret"] = client_secret

        scope = _format_scopes(scopes)
        if scope:
            data["scope"] = scope

        return await self._request_token(token_endpoint, data, headers)

    async def password_flow(
        self,
        token_endpoint: Optional[str],
        client_id: Optional[str],
        username: Optional[str],
        password: Optional[str],
        client_secret: Optional[str] = None,
        scopes: Scopes = None,
    ) -> TokenResponse:
        """Resource Owner Password Credentials grant (`grant_type=password`)."""
        _require(
            token_endpoint=token_endpoint,
            client_id=client_id,
            username=username,
            password=password,
        )

        data = {
            "grant_type": "password",
            "client_id": client_id,
            "username": username,
            "password": password,
        }
        if client_secret:
            data["client_secret"] = client_secret
        scope = _format_scopes(scopes)
        if scope:
            data["scope"] = scope

        return await self._request_token(token_endpoint, data)

    async def refresh_token_flow(
        self,
        token_endpoint: Optional[str],
        client_id: Optional[str],
        refresh_token: Optional[str],
        client_secret: Optional[str] = None,
        scopes: Scopes = None,
    ) -> TokenResponse:
        """Trade a refresh token for a new access token (`grant_type=refresh_token`)."""
        _require(
            token_endpoint=token_endpoint,
            client_id=client_id,
            refresh_token=refresh_token,
        )

        data = {
            "grant_type": "refresh_token",
            "client_id": client_id,
            "refresh_token": refresh_token,
        }
        if client_secret:
            data["client_secret"] = client_secret
        scope = _format_scopes(scopes)
        if scope:
            data["scope"] = scope

        return await self._request_token(token_endpoint, data)

    async def request_token(
        self,
        grant_info: OAuth2GrantInfo,
        *,
        code: Optional[str] = None,
        code_verifier: Optional[str] = None,
    ) -> TokenResponse:
        """Run the token endpoint step of the grant selected by `grant_info`.

        Args:
            grant_info: A stored grant config; it is validated first
            code: Authorization code from the callback (Authorization Code only)
            code_verifier: The PKCE verifier held since `start_authorization`

        Raises:
            ConfigInvalid: If the config does not validate
            UnsupportedGrantType: For the Implicit grant, which has no token step
        """
        _ensure_valid(grant_info)
        grant_type = grant_info.grant_type

        if grant_type == GrantType.AUTHORIZATION_CODE:
            return await self.exchange_code_for_token(
                grant_info.token_endpoint,
                grant_info.client_id,
                code,
                client_secret=grant_info.client_secret,
                redirect_uri=grant_info.redirect_uri,
                code_verifier=code_verifier,
                additional_params=grant_info.additional_params,
            )
        if grant_type == GrantType.CLIENT_CREDENTIALS:
            return await self.client_credentials_flow(
                grant_info.token_endpoint,
                grant_info.client_id,
                client_secret=grant_info.client_secret,
                scopes=grant_info.scopes,
                client_authentication=grant_info.client_authentication,
            )
        if grant_type == GrantType.PASSWORD:
            return await self.password_flow(
                grant_info.token_endpoint,
                grant_info.client_id,
                grant_info.username,
                grant_info.password,
                client_secret=grant_info.client_secret,
                scopes=grant_info.scopes,
            )
        raise UnsupportedGrantType(grant_type, "no token endpoint exchange")

    async def refresh(
        self, grant_info: OAuth2GrantInfo, refresh_token: Optional[str]
    ) -> TokenResponse:
        return await self.refresh_token_flow(
            grant_info.token_endpoint,
            grant_info.client_id,
            refresh_token,
            client_secret=grant_info.client_secret,
            scopes=grant_info.scopes,
        )
