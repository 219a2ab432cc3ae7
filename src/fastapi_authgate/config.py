"""Settings for the server side of FastAPI AuthGate."""

import logging
import os
from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, Field, SecretStr, field_validator

logger = logging.getLogger(__name__)

MIN_RECOMMENDED_SECRET_LENGTH = 32


class AuthGateSettings(BaseModel):
    """Configuration shared by the token issuer and the trust middleware.

    `jwt_secret` has no default; it must come from the deployment (see
    `from_env`). Turning `require_auth` off lets every request through
    unauthenticated and is logged loudly by the middleware.
    """

    jwt_secret: SecretStr
    require_auth: bool = True
    jwt_algorithms: List[str] = Field(default_factory=lambda: ["HS256"])
    jwt_issuer: Optional[str] = None
    token_ttl_seconds: int = Field(default=86400, gt=0)
    database_path: str = "authgate.db"

    @field_validator("jwt_secret")
    @classmethod
    def validate_jwt_secret(cls, v: SecretStr) -> SecretStr:
        secret = v.get_secret_value()
        if not secret:
            raise ValueError("jwt_secret must not be empty")
        if len(secret) < MIN_RECOMMENDED_SECRET_LENGTH:
            logger.warning(
                f"jwt_secret is shorter than {MIN_RECOMMENDED_SECRET_LENGTH} characters"
            )
        return v

    @field_validator("jwt_algorithms")
    @classmethod
    def validate_jwt_algorithms(cls, v: List[str]) -> List[str]:
        algorithms = [algorithm.strip() for algorithm in v if algorithm.strip()]
        if not algorithms:
            raise ValueError("jwt_algorithms must name at least one algorithm")
        if any(algorithm.lower() == "none" for algorithm in algorithms):
            raise ValueError("Unsigned tokens (alg 'none') are not accepted")
        return algorithms

    @property
    def signing_algorithm(self) -> str:
        """Algorithm used when issuing tokens: the first accepted one."""
        return self.jwt_algorithms[0]

    @classmethod
    def from_env(
        cls,
        prefix: str = "AUTHGATE_",
        environ: Optional[Mapping[str, str]] = None,
    ) -> "AuthGateSettings":
        """Build settings from `<prefix><FIELD>` environment variables.

        Unset variables fall back to the field defaults; a missing
        `<prefix>JWT_SECRET` fails validation.
        """
        environ = os.environ if environ is None else environ
        values: Dict[str, Any] = {}
        for name in cls.model_fields:
            raw = environ.get(f"{prefix}{name.upper()}")
            if raw is None:
                continue
            if name == "jwt_algorithms":
                values[name] = raw.split(",")
            else:
                values[name] = raw
        return cls(**values)
