"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication and role gates.

The session token travels as "Authorization: Bearer <jwt>". Verification is
stateless: the signed claims are trusted until exp, with no database lookup.

try_get_current_principal() is the soft variant (returns None on failure).
get_current_principal() wraps it and raises UnauthorizedError (401), and
attaches the Principal to request.state.principal for downstream handlers.
require_roles(...) builds a gate that depends on get_current_principal(), so
authentication failure always takes precedence over the 403 from the gate.

Layer rule: no imports from api/ or notify/. fastapi is allowed because this
module is part of the dependency injection system.
"""

from __future__ import annotations

from collections.abc import Callable

from fastapi import Depends, Request

from auth.models import Principal, Role
from auth.tokens import decode_access_token
from core.errors import ForbiddenError, UnauthorizedError

_BEARER_PREFIX = "bearer "


def _extract_bearer(request: Request) -> str | None:
    header = request.headers.get("Authorization", "")
    if header[: len(_BEARER_PREFIX)].lower() != _BEARER_PREFIX:
        return None
    token = header[len(_BEARER_PREFIX) :].strip()
    return token or None


def try_get_current_principal(request: Request) -> Principal | None:
    """Attempt to authenticate the request from its bearer token.

    Returns the Principal on success, None on any failure (missing header,
    bad signature, expired token, malformed claims). Never raises.
    """
    token = _extract_bearer(request)
    if token is None:
        return None
    return decode_access_token(token)


def get_current_principal(request: Request) -> Principal:
    """Require authentication. Raises UnauthorizedError if the request is not authenticated.

    Missing and invalid credentials produce the same error on every route.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(principal: Principal = Depends(get_current_principal)): ...
    """
    principal = try_get_current_principal(request)
    if principal is None:
        raise UnauthorizedError()
    request.state.principal = principal
    return principal


def require_roles(*roles: Role) -> Callable[..., Principal]:
    """Build a dependency that admits only principals whose role is in roles.

    Unauthenticated callers get 401 from get_current_principal() before the
    role is ever looked at; authenticated callers outside the allow-set get 403.
    """
    allowed = frozenset(roles)

    def _role_gate(principal: Principal = Depends(get_current_principal)) -> Principal:
        if principal.role not in allowed:
            raise ForbiddenError()
        return principal

    return _role_gate


require_admin = require_roles(Role.admin)
