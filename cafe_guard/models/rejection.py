"""Rejection response builder.

Every rejecting component (rate limiter, authorization resolver, admin
routes) answers with the same JSON envelope::

    {"success": false, "error": "<message>", "retryAfter": <seconds>}

``retryAfter`` is present only on 429 responses, which also carry a
``Retry-After`` header.
"""

from __future__ import annotations

from typing import Optional

from fastapi.responses import JSONResponse

from cafe_guard.errors import SecurityError, retry_after_of


def build_rejection_response(
    status_code: int,
    message: str,
    retry_after: Optional[int] = None,
) -> JSONResponse:
    content: dict = {"success": False, "error": message}
    headers: dict[str, str] = {}
    if retry_after is not None:
        content["retryAfter"] = retry_after
        headers["Retry-After"] = str(retry_after)
    return JSONResponse(status_code=status_code, content=content, headers=headers)


def rejection_from_error(exc: SecurityError) -> JSONResponse:
    return build_rejection_response(exc.status_code, exc.message, retry_after_of(exc))
