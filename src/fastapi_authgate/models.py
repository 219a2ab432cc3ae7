"""Declarative auth configuration models.

`AuthConfig` is a discriminated union on `auth_type`. Fields that the
validator is responsible for (endpoints, secrets, usernames) are optional on
purpose: a half-filled config must still parse so that the validator can
report what is missing.
"""

from enum import Enum
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from fastapi_authgate.consts import AS_BASIC_AUTH_HEADERS
from fastapi_authgate.pkce import CodeChallengeMethod


class AuthType(str, Enum):
    NONE = "none"
    BASIC = "basic"
    OAUTH2 = "oauth-2"


class GrantType(str, Enum):
    """OAuth2 grant types a config can select."""
    AUTHORIZATION_CODE = "AUTHORIZATION_CODE"
    CLIENT_CREDENTIALS = "CLIENT_CREDENTIALS"
    PASSWORD = "PASSWORD"
    IMPLICIT = "IMPLICIT"


class TokenPlacement(str, Enum):
    """Where an obtained OAuth2 token is attached on outgoing requests."""
    HEADERS = "HEADERS"
    QUERY_PARAMS = "QUERY_PARAMS"


class AdditionalParam(BaseModel):
    """Extra key/value pair appended to authorization URLs and token bodies."""

    key: str = ""
    value: str = ""
    active: bool = True


class OAuth2GrantInfo(BaseModel):
    """Settings of one OAuth2 grant.

    `grant_type` is kept as a plain string so unknown values are reported by
    the validator instead of failing to parse.
    """

    model_config = ConfigDict(use_enum_values=True)

    grant_type: Optional[str] = None
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    auth_endpoint: Optional[str] = None
    token_endpoint: Optional[str] = None
    redirect_uri: Optional[str] = None
    scopes: Optional[str] = None
    is_pkce: bool = False
    code_challenge_method: CodeChallengeMethod = CodeChallengeMethod.S256
    client_authentication: str = AS_BASIC_AUTH_HEADERS
    username: Optional[str] = None
    password: Optional[str] = None
    token: Optional[str] = None
    additional_params: List[AdditionalParam] = Field(default_factory=list)


class NoAuth(BaseModel):
    auth_type: Literal["none"] = "none"
    auth_active: bool = False


class BasicAuth(BaseModel):
    auth_type: Literal["basic"] = "basic"
    auth_active: bool = True
    username: Optional[str] = None
    password: Optional[str] = None


class OAuth2Auth(BaseModel):
    auth_type: Literal["oauth-2"] = "oauth-2"
    auth_active: bool = True
    grant_type_info: OAuth2GrantInfo = Field(default_factory=OAuth2GrantInfo)
    add_to: TokenPlacement = TokenPlacement.HEADERS


AuthConfig = Annotated[
    Union[NoAuth, BasicAuth, OAuth2Auth], Field(discriminator="auth_type")
]

auth_config_adapter: TypeAdapter = TypeAdapter(AuthConfig)


class ValidationResult(BaseModel):
    """Outcome of validating an auth configuration.

    Errors block usage of the config, warnings do not.
    """

    model_config = ConfigDict(frozen=True)

    is_valid: bool
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    auth_type: str = AuthType.NONE.value
    grant_type: Optional[str] = None
    message: Optional[str] = None
