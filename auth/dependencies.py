"""
auth/dependencies.py -- FastAPI Depends() helpers for route-level access checks.

The authentication gate (auth/gate.py) has already placed a Principal on
request.state.principal by the time a route runs. These helpers only read it:

  get_principal()        -- the Principal, Anonymous if the gate never ran.
  require_authenticated() -- raises HTTP 401 for Anonymous.
  require_role(role)     -- raises HTTP 401 for Anonymous, 403 for another role.

Layer rule: auth/dependencies.py may import from fastapi (for HTTPException /
Request) because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.models import Role
from auth.principal import ANONYMOUS, Authenticated, Principal, is_authenticated


def get_principal(request: Request) -> Principal:
    return getattr(request.state, "principal", None) or ANONYMOUS


def require_authenticated(request: Request) -> Authenticated:
    """Require authentication. Raises HTTP 401 if the request is not authenticated.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(principal: Authenticated = Depends(require_authenticated)): ...
    """
    principal = get_principal(request)
    if not is_authenticated(principal):
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
            headers={"WWW-Authenticate": "Bearer"},
        )
    return principal


def require_role(role: str):
    """Build a dependency that requires the given role (401 / 403)."""

    def dependency(request: Request) -> Authenticated:
        principal = require_authenticated(request)
        if principal.role != role:
            raise HTTPException(
                status_code=403,
                detail={"code": "forbidden", "message": f"{role.title()} access required."},
            )
        return principal

    return dependency


require_admin = require_role(Role.ADMIN)
