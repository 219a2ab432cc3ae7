"""Authorization gates evaluated after the token trust middleware.

Gates only read the trust record attached to the request; they never touch the
store or the token. Each gate exists as a pure check and as a FastAPI
dependency factory:

```python
@app.delete("/users/{user_id}", dependencies=[Depends(require_role("admin"))])
def delete_user(user_id: int): ...
```
"""

import logging
from typing import Callable, Optional

from fastapi import Depends, Request

from fastapi_authgate.consts import (
    REQUEST_STATE_AUTH_KEY,
    ROLE_RANKS,
    UNKNOWN_ROLE_RANK,
    UNSATISFIABLE_ROLE_RANK,
)
from fastapi_authgate.exceptions import (
    AccessDenied,
    InsufficientRole,
    InsufficientScope,
    Unauthorized,
)
from fastapi_authgate.trust import OAuth2Trust, TrustRecord, UserSessionTrust

logger = logging.getLogger(__name__)


def get_trust_record(request: Request) -> Optional[TrustRecord]:
    """The trust record attached to `request`, or None for anonymous callers."""
    return getattr(request.state, REQUEST_STATE_AUTH_KEY, None)


def role_rank(role: Optional[str]) -> int:
    return ROLE_RANKS.get(role, UNKNOWN_ROLE_RANK)


def required_role_rank(role: str) -> int:
    return ROLE_RANKS.get(role, UNSATISFIABLE_ROLE_RANK)


def check_scope(record: Optional[TrustRecord], scope: str) -> TrustRecord:
    """Admit `record` if it may use `scope`.

    User sessions pass every scope check; OAuth2 clients pass only for
    scopes they were granted.
    """
    if record is None:
        raise Unauthorized("Authentication required")

    if isinstance(record, OAuth2Trust) and scope not in record.scopes:
        logger.warning(f"Client {record.client_id} lacks scope {scope}")
        raise InsufficientScope(
            f"Required scope: {scope}",
            required_scope=scope,
            granted_scopes=sorted(record.scopes),
        )
    return record


def check_role(record: Optional[TrustRecord], role: str) -> UserSessionTrust:
    """Admit `record` if it is a user session holding at least `role`."""
    if record is None:
        raise Unauthorized("Authentication required")

    if not isinstance(record, UserSessionTrust):
        logger.warning(f"Non-session caller denied on role {role} check")
        raise AccessDenied("User authentication required for this action")

    if role_rank(record.role) < required_role_rank(role):
        logger.warning(f"User {record.user_id} with role {record.role} lacks role {role}")
        raise InsufficientRole(
            f"Required role: {role}",
            required_role=role,
            user_role=record.role,
        )
    return record


def _make_gate(check: Callable[[Optional[TrustRecord]], TrustRecord], authenticate=None):
    if authenticate is None:
        async def gate(request: Request) -> TrustRecord:
            return check(get_trust_record(request))
    else:
        async def gate(record: Optional[TrustRecord] = Depends(authenticate)) -> TrustRecord:
            return check(record)
    return gate


def require_scope(scope: str, authenticate=None):
    """Dependency admitting only callers allowed to use `scope`.

    Args:
        scope: Scope an OAuth2 client must have been granted
        authenticate: Optional `TrustDependency` to run first; without it the
            record must already be on `request.state` (e.g. from
            `TokenTrustMiddleware`)
    """
    return _make_gate(lambda record: check_scope(record, scope), authenticate)


def require_role(role: str, authenticate=None):
    """Dependency admitting only user sessions ranked at least `role`."""
    return _make_gate(lambda record: check_role(record, role), authenticate)
