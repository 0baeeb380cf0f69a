"""Authorization resolver: identity, role and outlet scope of a request.

Checks always run in the same order so a caller never learns anything about
outlets on a request that was not authenticated:

    token ──▶ role ──▶ outlet

Outlet id precedence is shared by both branches:

    explicit argument > X-Outlet-Id header > token DefaultOutletId > none

Admins may act unscoped when none of the three is present; a resolved
outlet must exist but need not be assigned or active.
Non-admins must resolve to an outlet that is assigned to them, exists and is
active. Assignment is checked before existence, so an unassigned outlet is
rejected the same way whether it exists or not.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, NoReturn, Optional, Protocol, Sequence

from cafe_guard import constants
from cafe_guard.audit.logger import AuditLogger
from cafe_guard.auth.tokens import Principal, TokenCodec
from cafe_guard.errors import NotFound, Unauthenticated, Unauthorized
from cafe_guard.models.outlet import Outlet, OutletDirectory
from cafe_guard.ratelimit.identity import bearer_token, resolve_client_id
from cafe_guard.utils.logger import get_logger

logger = get_logger(__name__)


class HasHeaders(Protocol):
    headers: Mapping[str, str]


@dataclass(frozen=True)
class OutletScope:
    """Resolved scope. ``outlet_id`` is None only for an unscoped admin."""

    principal: Principal
    outlet_id: Optional[str] = None
    outlet: Optional[Outlet] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "principal": self.principal.to_dict(),
            "outletId": self.outlet_id,
            "outletName": self.outlet.outlet_name if self.outlet else None,
            "unscoped": self.outlet_id is None,
        }


def _role_label(role: str) -> str:
    return role[:1].upper() + role[1:]


class AuthorizationResolver:
    def __init__(
        self,
        codec: TokenCodec,
        outlets: OutletDirectory,
        audit: Optional[AuditLogger] = None,
    ) -> None:
        self.codec = codec
        self.outlets = outlets
        self.audit = audit

    # ── Identity and role ─────────────────────────────────────────────────

    def require_authenticated(self, request: HasHeaders) -> Principal:
        """Raises Unauthenticated for a missing, malformed, invalid or expired token."""
        token = bearer_token(request.headers)
        if token is None:
            self._auth_failed(request, "Authorization header missing or invalid")
        principal = self.codec.decode(token)
        if principal is None:
            self._auth_failed(request, "Invalid or expired token")
        return principal

    def require_role(self, request: HasHeaders, role: str) -> Principal:
        principal = self.require_authenticated(request)
        if principal.role != role:
            self._denied(principal, "Role Check", f"{_role_label(role)} access required")
        return principal

    def require_any_role(self, request: HasHeaders, roles: Sequence[str]) -> Principal:
        principal = self.require_authenticated(request)
        if principal.role not in roles:
            label = " or ".join(_role_label(r) for r in roles)
            self._denied(principal, "Role Check", f"{label} access required")
        return principal

    # ── Outlet scope ──────────────────────────────────────────────────────

    async def resolve_outlet_scope(
        self,
        request: HasHeaders,
        requested_outlet_id: Optional[str] = None,
    ) -> OutletScope:
        """Determine which outlet the request may act on.

        Raises:
            Unauthenticated: bad or missing token.
            Unauthorized:    no outlet resolvable, outlet not assigned, or inactive.
            NotFound:        the resolved outlet does not exist.
        """
        principal = self.require_authenticated(request)
        outlet_id = _requested_outlet(request, requested_outlet_id) or principal.default_outlet_id

        if principal.is_admin:
            if outlet_id is None:
                return OutletScope(principal=principal)
            outlet = await self.outlets.get_outlet(outlet_id)
            if outlet is None:
                raise NotFound(f"Outlet {outlet_id} not found")
            return OutletScope(principal=principal, outlet_id=outlet_id, outlet=outlet)

        if not outlet_id:
            self._denied(
                principal,
                "Outlet Access",
                "No outlet specified and user has no default outlet",
            )
        if outlet_id not in principal.assigned_outlets:
            self._denied(
                principal,
                "Outlet Access",
                f"User does not have access to outlet {outlet_id}",
                outlet_id=outlet_id,
            )

        outlet = await self.outlets.get_outlet(outlet_id)
        if outlet is None:
            raise NotFound(f"Outlet {outlet_id} not found")
        if not outlet.is_active:
            self._denied(
                principal,
                "Outlet Access",
                f"Outlet {outlet.outlet_name} is not active",
                outlet_id=outlet_id,
            )
        return OutletScope(principal=principal, outlet_id=outlet_id, outlet=outlet)

    # ── Failure reporting ─────────────────────────────────────────────────

    def _auth_failed(self, request: HasHeaders, reason: str) -> NoReturn:
        logger.warning("Authentication failed", reason=reason)
        if self.audit is not None:
            self.audit.log_authentication(
                None,
                "Token Validation",
                False,
                ip_address=resolve_client_id(request.headers),
                user_agent=request.headers.get("User-Agent"),
                reason=reason,
            )
        raise Unauthenticated(reason)

    def _denied(
        self,
        principal: Principal,
        action: str,
        reason: str,
        outlet_id: Optional[str] = None,
    ) -> NoReturn:
        logger.warning(
            "Authorization denied",
            user_id=principal.user_id,
            role=principal.role,
            outlet_id=outlet_id,
            reason=reason,
        )
        if self.audit is not None:
            self.audit.log_authorization(
                principal.user_id,
                action,
                False,
                resource_type="Outlet" if outlet_id else None,
                resource_id=outlet_id,
                reason=reason,
            )
        raise Unauthorized(reason)


def _requested_outlet(request: HasHeaders, requested_outlet_id: Optional[str]) -> Optional[str]:
    if requested_outlet_id and requested_outlet_id.strip():
        return requested_outlet_id.strip()
    header = request.headers.get(constants.OUTLET_ID_HEADER)
    if header and header.strip():
        return header.strip()
    return None
