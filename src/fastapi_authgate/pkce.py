"""PKCE (Proof Key for Code Exchange) primitives, RFC 7636.

Verifiers are secrecy-bearing values, so every random choice here goes
through `secrets`.
"""

import base64
import hashlib
import secrets
from dataclasses import dataclass
from enum import Enum
from typing import Union

from fastapi_authgate.consts import (
    MAX_VERIFIER_LENGTH,
    MIN_VERIFIER_LENGTH,
    UNRESERVED_CHARACTERS,
)
from fastapi_authgate.exceptions import UnsupportedMethod


class CodeChallengeMethod(str, Enum):
    """PKCE code challenge methods as defined in RFC 7636."""
    PLAIN = "plain"
    S256 = "S256"


@dataclass(frozen=True)
class PKCEPair:
    """PKCE code verifier and challenge pair.

    Owned by the single authorization attempt that created it. The caller
    keeps it (keyed by `state`) until the redirect callback arrives.
    """
    code_verifier: str
    code_challenge: str
    method: CodeChallengeMethod = CodeChallengeMethod.S256


def generate_code_verifier() -> str:
    """Generate a code verifier of random length between 43 and 128.

    Returns:
        A string drawn uniformly from the unreserved character set
    """
    length = MIN_VERIFIER_LENGTH + secrets.randbelow(
        MAX_VERIFIER_LENGTH - MIN_VERIFIER_LENGTH + 1
    )
    return "".join(secrets.choice(UNRESERVED_CHARACTERS) for _ in range(length))


def generate_code_challenge(
    code_verifier: str,
    method: Union[CodeChallengeMethod, str] = CodeChallengeMethod.S256,
) -> str:
    """Derive the code challenge for a verifier.

    Args:
        code_verifier: The code verifier string
        method: `plain` or `S256`

    Returns:
        The verifier itself for `plain`, otherwise the unpadded base64url
        encoded SHA-256 digest of the verifier

    Raises:
        UnsupportedMethod: For any other method
    """
    if method == CodeChallengeMethod.PLAIN:
        return code_verifier
    elif method == CodeChallengeMethod.S256:
        digest = hashlib.sha256(code_verifier.encode("utf-8")).digest()
        return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")
    raise UnsupportedMethod(method)


def generate_pkce_pair(
    method: Union[CodeChallengeMethod, str] = CodeChallengeMethod.S256,
) -> PKCEPair:
    verifier = generate_code_verifier()
    challenge = generate_code_challenge(verifier, method)
    return PKCEPair(
        code_verifier=verifier,
        code_challenge=challenge,
        method=CodeChallengeMethod(method),
    )


def generate_state(nbytes: int = 32) -> str:
    """Generate an unguessable `state` value for CSRF protection of the callback."""
    return secrets.token_urlsafe(nbytes)
