"""Bearer token decoding into a Principal.

Tokens are HS256 JWTs issued by the external AuthService. Only the claims
below are read. PyJWT verifies the signature; ``exp`` is checked against
the injected clock.

    nameid           user id (``sub`` accepted as a fallback)
    unique_name      username
    role             "admin", "manager", ...
    DefaultOutletId  optional default outlet
    AssignedOutlets  comma-joined outlet ids (a JSON list is also accepted)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Iterable, Optional

import jwt

from cafe_guard import constants
from cafe_guard.clock import Clock, SystemClock
from cafe_guard.config import AuthConfig
from cafe_guard.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class Principal:
    """Identity reconstructed from a validated token. Never stored."""

    user_id: str
    role: Optional[str] = None
    username: Optional[str] = None
    default_outlet_id: Optional[str] = None
    assigned_outlets: frozenset[str] = field(default_factory=frozenset)

    @property
    def is_admin(self) -> bool:
        return self.role == constants.ADMIN_ROLE

    def to_dict(self) -> dict[str, Any]:
        return {
            "userId": self.user_id,
            "username": self.username,
            "role": self.role,
            "defaultOutletId": self.default_outlet_id,
            "assignedOutlets": sorted(self.assigned_outlets),
        }


def _parse_outlets(raw: Any) -> frozenset[str]:
    if not raw:
        return frozenset()
    if isinstance(raw, str):
        items: Iterable[Any] = raw.split(",")
    elif isinstance(raw, (list, tuple, set, frozenset)):
        items = raw
    else:
        return frozenset()
    return frozenset(str(item).strip() for item in items if str(item).strip())


class TokenCodec:
    """Verify and decode bearer tokens. ``encode()`` mirrors the AuthService layout."""

    def __init__(self, config: Optional[AuthConfig] = None, clock: Optional[Clock] = None) -> None:
        self.config = config or AuthConfig()
        self.clock = clock or SystemClock()

    def decode(self, token: str) -> Optional[Principal]:
        """Return the Principal, or None for any malformed, forged or expired token."""
        if not token:
            return None
        try:
            claims = jwt.decode(
                token,
                self.config.jwt_secret,
                algorithms=list(self.config.jwt_algorithms),
                options={"verify_exp": False, "verify_iat": False},
            )
        except jwt.InvalidTokenError as exc:
            logger.info("Token rejected", error=str(exc))
            return None

        # Time-based claims are judged by the injected clock, not the wall clock.
        exp = claims.get("exp")
        if exp is not None:
            try:
                expired = float(exp) <= self.clock.now().timestamp()
            except (TypeError, ValueError):
                logger.info("Token rejected", error="malformed exp claim")
                return None
            if expired:
                logger.info("Token rejected", error="Signature has expired")
                return None

        user_id = claims.get(constants.CLAIM_USER_ID) or claims.get("sub")
        if not user_id:
            logger.info("Token rejected", error="missing user id claim")
            return None

        return Principal(
            user_id=str(user_id),
            role=claims.get(constants.CLAIM_ROLE),
            username=claims.get(constants.CLAIM_USERNAME),
            default_outlet_id=claims.get(constants.CLAIM_DEFAULT_OUTLET) or None,
            assigned_outlets=_parse_outlets(claims.get(constants.CLAIM_ASSIGNED_OUTLETS)),
        )

    def encode(
        self,
        user_id: str,
        role: str,
        username: Optional[str] = None,
        default_outlet_id: Optional[str] = None,
        assigned_outlets: Iterable[str] = (),
        expires_in: Optional[timedelta] = None,
    ) -> str:
        now: datetime = self.clock.now()
        lifetime = expires_in or timedelta(minutes=self.config.token_expiry_minutes)
        claims: dict[str, Any] = {
            constants.CLAIM_USER_ID: user_id,
            constants.CLAIM_ROLE: role,
            "iat": int(now.timestamp()),
            "exp": int((now + lifetime).timestamp()),
        }
        if username:
            claims[constants.CLAIM_USERNAME] = username
        if default_outlet_id:
            claims[constants.CLAIM_DEFAULT_OUTLET] = default_outlet_id
        outlets = list(assigned_outlets)
        if outlets:
            claims[constants.CLAIM_ASSIGNED_OUTLETS] = ",".join(outlets)
        return jwt.encode(claims, self.config.jwt_secret, algorithm=self.config.jwt_algorithms[0])
