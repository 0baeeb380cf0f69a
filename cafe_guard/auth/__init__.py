"""Authentication and authorization.

Public API:
  - CsrfTokenManager        issue / validate / validate_and_consume / revoke
  - ApiKeyManager           issue / validate / rotate / revoke / statistics
  - TokenCodec, Principal   bearer token decoding
  - AuthorizationResolver   require_role / require_any_role /
                            require_authenticated / resolve_outlet_scope
"""

from __future__ import annotations

from cafe_guard.auth.csrf import CsrfToken, CsrfTokenManager
from cafe_guard.auth.keys import ApiKey, ApiKeyManager, ApiKeyStatistics
from cafe_guard.auth.resolver import AuthorizationResolver, OutletScope
from cafe_guard.auth.tokens import Principal, TokenCodec

__all__ = [
    "ApiKey",
    "ApiKeyManager",
    "ApiKeyStatistics",
    "AuthorizationResolver",
    "CsrfToken",
    "CsrfTokenManager",
    "OutletScope",
    "Principal",
    "TokenCodec",
]
