"""Security response headers.

Applied to every response that leaves the application, including 429s from
the rate limiter, error envelopes from the exception handlers and the 500
envelope rendered here for unhandled exceptions.

``Server`` is emitted by uvicorn below the ASGI app, so it is also switched
off in ``cafe_guard.run`` (``server_header=False``); removing it here covers
any framework or proxy that sets it inside the app.
"""

from __future__ import annotations

from starlette.datastructures import MutableHeaders
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from cafe_guard.models.rejection import build_rejection_response
from cafe_guard.utils.logger import get_logger

logger = get_logger(__name__)

CONTENT_SECURITY_POLICY = (
    "default-src 'self'; "
    "script-src 'self' 'unsafe-inline' 'unsafe-eval'; "
    "style-src 'self' 'unsafe-inline'; "
    "img-src 'self' data: https:; "
    "font-src 'self' data:; "
    "connect-src 'self'; "
    "frame-ancestors 'none'"
)

PERMISSIONS_POLICY = (
    "geolocation=(), microphone=(), camera=(), payment=(), usb=(), magnetometer=()"
)

SECURITY_HEADERS: dict[str, str] = {
    "X-Frame-Options": "DENY",
    "X-Content-Type-Options": "nosniff",
    "X-XSS-Protection": "1; mode=block",
    "Content-Security-Policy": CONTENT_SECURITY_POLICY,
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Permissions-Policy": PERMISSIONS_POLICY,
}

STRIPPED_HEADERS: tuple[str, ...] = ("server", "x-powered-by")


def apply_security_headers(headers: MutableHeaders) -> None:
    for name, value in SECURITY_HEADERS.items():
        headers[name] = value
    for name in STRIPPED_HEADERS:
        if name in headers:
            del headers[name]


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Outermost middleware: registered last in ``create_app`` so it runs first.

    Unhandled exceptions are turned into the 500 envelope here, inside the
    middleware, so the error response carries the headers too.
    """

    async def dispatch(self, request: Request, call_next) -> Response:  # type: ignore[override]
        try:
            response = await call_next(request)
        except Exception as exc:  # noqa: BLE001
            logger.error(
                "Unhandled exception",
                error=str(exc),
                error_type=type(exc).__name__,
                path=str(request.url.path),
            )
            response = build_rejection_response(500, "Internal server error")
        apply_security_headers(response.headers)
        return response
