"""FastAPI dependencies over the authorization resolver.

Handlers declare what they need and FastAPI short-circuits before the handler
body on any failure; the raised ``SecurityError`` is rendered by the
exception handler in ``cafe_guard.main``.

    principal: Principal = Depends(require_admin)
    scope: OutletScope = Depends(resolve_outlet_scope)
"""

from __future__ import annotations

from typing import Optional

from fastapi import HTTPException, Query, Request

from cafe_guard import constants
from cafe_guard.auth.resolver import OutletScope
from cafe_guard.auth.tokens import Principal
from cafe_guard.context import SecurityContext


def get_security(request: Request) -> SecurityContext:
    """Raises HTTP 503 until the lifespan has built the security context."""
    security = getattr(request.app.state, "security", None)
    if security is None or not getattr(request.app.state, "ready", False):
        raise HTTPException(status_code=503, detail="cafe_guard is starting up")
    return security


class RequireRole:
    """Dependency that admits principals holding any of ``roles``."""

    def __init__(self, *roles: str) -> None:
        if not roles:
            raise ValueError("at least one role is required")
        self.roles = roles

    async def __call__(self, request: Request) -> Principal:
        resolver = get_security(request).resolver
        if len(self.roles) == 1:
            return resolver.require_role(request, self.roles[0])
        return resolver.require_any_role(request, self.roles)


require_admin = RequireRole(constants.ADMIN_ROLE)


async def require_authenticated(request: Request) -> Principal:
    return get_security(request).resolver.require_authenticated(request)


async def resolve_outlet_scope(
    request: Request,
    outlet_id: Optional[str] = Query(default=None, alias="outletId"),
) -> OutletScope:
    return await get_security(request).resolver.resolve_outlet_scope(request, outlet_id)
