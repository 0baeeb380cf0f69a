"""cafe_guard FastAPI application factory + lifespan lifecycle.

This module implements:
  - create_app(): testable application factory
  - lifespan: @asynccontextmanager startup/shutdown sequence
  - exception handlers rendering every rejection as
    ``{"success": false, "error": ..., "retryAfter"?: ...}``
  - app = create_app(): module-level instance for uvicorn

Request pipeline (outermost first):
  SecurityHeadersMiddleware → RateLimitMiddleware → route dependencies
  (authorization resolver) → handler

Startup sequence:
  1. load_config()                → app.state.config (unless injected)
  2. create_security_context()    → app.state.security
  3. maintenance sweep task       → cancelled on shutdown
  4. app.state.ready = True
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.routing import APIRouter
from starlette.exceptions import HTTPException

from cafe_guard import __version__
from cafe_guard.admin.router import router as security_router
from cafe_guard.clock import Clock
from cafe_guard.config import Config, load_config
from cafe_guard.context import create_security_context
from cafe_guard.errors import SecurityError
from cafe_guard.health import router as health_router
from cafe_guard.http.headers import SecurityHeadersMiddleware
from cafe_guard.maintenance import run_periodic_sweep
from cafe_guard.models.outlet import OutletDirectory
from cafe_guard.models.rejection import build_rejection_response, rejection_from_error
from cafe_guard.ratelimit.middleware import RateLimitMiddleware
from cafe_guard.utils.logger import configure_from_env, get_logger

# ─── Logging Setup ────────────────────────────────────────────────────────────
DEBUG = configure_from_env()
logger = get_logger(__name__)


# ─── Routers ──────────────────────────────────────────────────────────────────

root_router = APIRouter(tags=["root"])


@root_router.get("/")
async def root() -> dict[str, str]:
    """Service identity / discovery."""
    return {"service": "cafe_guard", "version": __version__, "health": "/health"}


# ─── Lifespan ─────────────────────────────────────────────────────────────────


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Build the security context, start maintenance, mark ready.

    Shutdown (reverse order after yield):
      app.state.ready = False → cancel maintenance task
    """
    logger.info("cafe_guard starting up...")

    # load_config() raises SystemExit on a bad file, before ready is ever set.
    config: Config = getattr(app.state, "config", None) or load_config()
    app.state.config = config

    security = create_security_context(
        config,
        clock=getattr(app.state, "clock", None),
        outlets=getattr(app.state, "outlets", None),
    )
    app.state.security = security

    maintenance_task: Optional[asyncio.Task[None]] = asyncio.create_task(
        run_periodic_sweep(security, config.maintenance.sweep_interval_seconds)
    )
    logger.info(
        "Maintenance sweep started",
        interval_s=config.maintenance.sweep_interval_seconds,
    )

    app.state.ready = True
    logger.info("cafe_guard ready")

    yield

    logger.info("cafe_guard shutting down...")
    app.state.ready = False

    if maintenance_task is not None and not maintenance_task.done():
        maintenance_task.cancel()
        try:
            await maintenance_task
        except asyncio.CancelledError:
            pass

    logger.info("cafe_guard shutdown complete")


# ─── Application Factory ──────────────────────────────────────────────────────


def create_app(
    config: Optional[Config] = None,
    clock: Optional[Clock] = None,
    outlets: Optional[OutletDirectory] = None,
) -> FastAPI:
    """Create and configure the cafe_guard FastAPI application.

    ``config``, ``clock`` and ``outlets`` are picked up by the lifespan; any
    left as None fall back to ``load_config()``, the system clock and the
    config-seeded in-memory outlet directory.
    """
    application = FastAPI(
        title="cafe_guard",
        description="Security and multi-tenant access control for the cafe API",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs" if DEBUG else None,
        redoc_url="/redoc" if DEBUG else None,
        openapi_url="/openapi.json" if DEBUG else None,
    )

    # /health returns 503 for any request that arrives before startup completes.
    application.state.ready = False
    application.state.config = config
    application.state.clock = clock
    application.state.outlets = outlets

    # In Starlette the LAST-added middleware is OUTERMOST (runs first).
    # Security headers wrap everything, including 429s from the rate limiter.
    application.add_middleware(RateLimitMiddleware)
    application.add_middleware(SecurityHeadersMiddleware)

    application.include_router(root_router)
    application.include_router(health_router)
    application.include_router(security_router)

    # Global exception handlers
    @application.exception_handler(SecurityError)
    async def security_error_handler(request: Request, exc: SecurityError) -> JSONResponse:
        logger.info(
            "Request rejected",
            status_code=exc.status_code,
            error_type=type(exc).__name__,
            reason=exc.message,
            path=str(request.url.path),
        )
        return rejection_from_error(exc)

    @application.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
        logger.warning(
            "HTTP exception",
            status_code=exc.status_code,
            detail=exc.detail,
            path=str(request.url.path),
        )
        return build_rejection_response(exc.status_code, str(exc.detail))

    @application.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        errors = exc.errors()
        first = errors[0] if errors else {}
        location = ".".join(str(part) for part in first.get("loc", ()))
        message = f"Invalid request: {location} {first.get('msg', '')}".strip()
        logger.warning("Request validation failed", errors=len(errors), path=str(request.url.path))
        return build_rejection_response(422, message)

    @application.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error(
            "Unhandled exception",
            error=str(exc),
            error_type=type(exc).__name__,
            path=str(request.url.path),
        )
        return build_rejection_response(500, "Internal server error")

    return application


# ─── Module-Level App (for uvicorn) ───────────────────────────────────────────
#   uvicorn cafe_guard.main:app --host 127.0.0.1 --port 7071

app = create_app()
