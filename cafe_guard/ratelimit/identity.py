"""Client identity resolution for rate limiting.

Precedence:
  1. X-Forwarded-For   first address in the list
  2. X-Real-IP
  3. Authorization     ``user:<digest>`` pseudo-id derived from the bearer token
  4. ``"unknown"``     shared bucket for anonymous, header-less clients

Every client in the last bucket shares one window. That is accepted policy.
"""

from __future__ import annotations

import hashlib
from typing import Mapping

from cafe_guard import constants

_BEARER_PREFIX = "bearer "


def resolve_client_id(headers: Mapping[str, str]) -> str:
    forwarded = headers.get(constants.FORWARDED_FOR_HEADER)
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first

    real_ip = headers.get(constants.REAL_IP_HEADER)
    if real_ip and real_ip.strip():
        return real_ip.strip()

    token = bearer_token(headers)
    if token:
        digest = hashlib.sha256(token.encode("utf-8")).hexdigest()[:16]
        return f"user:{digest}"

    return constants.UNKNOWN_CLIENT_ID


def bearer_token(headers: Mapping[str, str]) -> str | None:
    """Return the token of an ``Authorization: Bearer <token>`` header, or None."""
    authorization = headers.get(constants.AUTHORIZATION_HEADER) or ""
    if not authorization.lower().startswith(_BEARER_PREFIX):
        return None
    token = authorization[len(_BEARER_PREFIX):].strip()
    return token or None
