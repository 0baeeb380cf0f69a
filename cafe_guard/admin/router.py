"""Security administration endpoints.

  POST   /security/csrf/generate         issue a CSRF token for the caller
  POST   /security/csrf/validate         check a CSRF token (not consumed)
  POST   /security/apikeys/generate      issue a service API key (201)
  GET    /security/apikeys               list keys (masked) with needsRotation
  GET    /security/apikeys/{key}/stats   usage statistics for one key
  POST   /security/apikeys/{key}/rotate  rotate with a grace period
  DELETE /security/apikeys/{key}         revoke immediately
  GET    /security/audit/logs            filtered audit log query
  GET    /security/audit/alerts          security alerts of the last N hours
  POST   /security/audit/export          json / csv download
  GET    /security/context               resolved principal + outlet scope

Everything except /security/context requires the admin role, and every admin
action is itself written to the audit log (Administration category).
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import Response
from pydantic import BaseModel, ConfigDict, Field

from cafe_guard import constants
from cafe_guard.audit.models import AuditCategory
from cafe_guard.auth.dependencies import get_security, require_admin, resolve_outlet_scope
from cafe_guard.auth.keys import mask_key
from cafe_guard.auth.resolver import OutletScope
from cafe_guard.auth.tokens import Principal
from cafe_guard.errors import SecurityError
from cafe_guard.utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/security", tags=["security"])

# Listing shows a longer prefix than the audit/statistics mask.
LIST_MASK_LENGTH = 15


# ─── Request Models ───────────────────────────────────────────────────────────


class CsrfValidationRequest(BaseModel):
    token: str = ""


class ApiKeyGenerationRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    service_name: str = Field(default="", alias="serviceName")
    description: Optional[str] = None


class AuditExportRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    start_date: datetime = Field(alias="startDate")
    end_date: datetime = Field(alias="endDate")
    format: str = "json"


class BadRequest(SecurityError):
    status_code = 400


# ─── Helpers ──────────────────────────────────────────────────────────────────


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _parse_date(raw: Optional[str]) -> Optional[datetime]:
    """Lenient ISO-8601 parse; unparseable values are ignored like absent ones."""
    if not raw:
        return None
    try:
        return _as_utc(datetime.fromisoformat(raw.replace("Z", "+00:00")))
    except ValueError:
        return None


def _parse_category(raw: Optional[str]) -> Optional[AuditCategory]:
    if not raw:
        return None
    lowered = raw.lower()
    for category in AuditCategory:
        if category.value.lower() == lowered or category.name.lower() == lowered:
            return category
    return None


# ─── CSRF ─────────────────────────────────────────────────────────────────────


@router.post("/csrf/generate")
async def generate_csrf_token(
    request: Request, principal: Principal = Depends(require_admin)
) -> dict[str, Any]:
    csrf = get_security(request).csrf
    token = csrf.issue(principal.user_id)
    return {"success": True, "csrfToken": token, "expiresIn": csrf.expires_in_seconds}


@router.post("/csrf/validate")
async def validate_csrf_token(
    body: CsrfValidationRequest,
    request: Request,
    principal: Principal = Depends(require_admin),
) -> dict[str, Any]:
    if not body.token.strip():
        raise BadRequest("Token is required")
    valid = get_security(request).csrf.validate(body.token, principal.user_id)
    return {"success": True, "valid": valid}


# ─── API keys ─────────────────────────────────────────────────────────────────


@router.post("/apikeys/generate", status_code=201)
async def generate_api_key(
    body: ApiKeyGenerationRequest,
    request: Request,
    principal: Principal = Depends(require_admin),
) -> dict[str, Any]:
    if not body.service_name.strip():
        raise BadRequest("Service name is required")
    security = get_security(request)
    api_key = security.api_keys.issue(body.service_name, body.description or "")
    security.audit.log_admin_action(
        principal.user_id,
        "Generate API Key",
        details=f"Service: {body.service_name}, Description: {body.description or ''}",
    )
    return {
        "success": True,
        "apiKey": api_key,
        "serviceName": body.service_name,
        "expiresIn": security.api_keys.config.expiry_days,
    }


@router.get("/apikeys")
async def list_api_keys(
    request: Request, principal: Principal = Depends(require_admin)
) -> dict[str, Any]:
    api_keys = get_security(request).api_keys
    needing_rotation = {k.key for k in api_keys.list_needing_rotation()}
    return {
        "success": True,
        "apiKeys": [
            {
                "key": k.key[:LIST_MASK_LENGTH] + "...",
                "serviceName": k.service_name,
                "description": k.description,
                "createdAt": k.created_at.isoformat(),
                "expiresAt": k.expires_at.isoformat(),
                "lastUsedAt": k.last_used_at.isoformat() if k.last_used_at else None,
                "isActive": k.is_active,
                "deprecatedAt": k.deprecated_at.isoformat() if k.deprecated_at else None,
                "revokedAt": k.revoked_at.isoformat() if k.revoked_at else None,
                "requestCount": k.request_count,
                "needsRotation": k.key in needing_rotation,
            }
            for k in api_keys.list_all()
        ],
    }


@router.get("/apikeys/{key}/stats")
async def get_api_key_stats(
    key: str, request: Request, principal: Principal = Depends(require_admin)
) -> dict[str, Any]:
    stats = get_security(request).api_keys.statistics(key)
    return {"success": True, "statistics": stats.to_dict()}


@router.post("/apikeys/{key}/rotate")
async def rotate_api_key(
    key: str, request: Request, principal: Principal = Depends(require_admin)
) -> dict[str, Any]:
    security = get_security(request)
    new_key, deprecation_date = security.api_keys.rotate(key)
    security.audit.log_admin_action(
        principal.user_id,
        "Rotate API Key",
        details=f"Old key: {mask_key(key)}, Deprecation date: {deprecation_date.isoformat()}",
    )
    return {
        "success": True,
        "newKey": new_key,
        "oldKeyDeprecationDate": deprecation_date.isoformat(),
        "message": (
            "API key rotated successfully. Old key will expire on "
            f"{deprecation_date:%Y-%m-%d}"
        ),
    }


@router.delete("/apikeys/{key}")
async def revoke_api_key(
    key: str, request: Request, principal: Principal = Depends(require_admin)
) -> dict[str, Any]:
    security = get_security(request)
    security.api_keys.revoke(key)
    security.audit.log_admin_action(
        principal.user_id, "Revoke API Key", details=f"Key: {mask_key(key)}"
    )
    return {"success": True, "message": "API key revoked successfully"}


# ─── Audit ────────────────────────────────────────────────────────────────────


@router.get("/audit/logs")
async def get_audit_logs(
    request: Request,
    category: Optional[str] = None,
    user_id: Optional[str] = Query(default=None, alias="userId"),
    start_date: Optional[str] = Query(default=None, alias="startDate"),
    end_date: Optional[str] = Query(default=None, alias="endDate"),
    max_results: int = Query(default=constants.AUDIT_DEFAULT_MAX_RESULTS, alias="maxResults"),
    principal: Principal = Depends(require_admin),
) -> dict[str, Any]:
    audit = get_security(request).audit
    parsed_category = _parse_category(category)
    logs = audit.query(
        category=parsed_category,
        user_id=user_id,
        start_date=_parse_date(start_date),
        end_date=_parse_date(end_date),
        max_results=max(0, min(max_results, constants.AUDIT_QUERY_HARD_CAP)),
    )
    audit.log_admin_action(
        principal.user_id,
        "View Audit Logs",
        details=(
            f"Category: {parsed_category.value if parsed_category else ''}, "
            f"Count: {len(logs)}"
        ),
    )
    return {"success": True, "count": len(logs), "logs": [e.to_dict() for e in logs]}


@router.get("/audit/alerts")
async def get_security_alerts(
    request: Request,
    hours: int = 24,
    principal: Principal = Depends(require_admin),
) -> dict[str, Any]:
    alerts = get_security(request).audit.security_alerts(hours)
    return {
        "success": True,
        "count": len(alerts),
        "alerts": [e.to_dict() for e in alerts],
        "period": f"Last {hours} hours",
    }


@router.post("/audit/export")
async def export_audit_logs(
    body: AuditExportRequest,
    request: Request,
    principal: Principal = Depends(require_admin),
) -> Response:
    security = get_security(request)
    export_format = (body.format or "json").lower()
    start_date = _as_utc(body.start_date)
    end_date = _as_utc(body.end_date)
    data = security.audit.export(start_date, end_date, export_format)
    security.audit.log_admin_action(
        principal.user_id,
        "Export Audit Logs",
        details=(
            f"Format: {export_format}, "
            f"Period: {start_date:%Y-%m-%d} to {end_date:%Y-%m-%d}"
        ),
    )
    filename = f"audit-logs-{security.clock.now():%Y%m%d-%H%M%S}.{export_format}"
    return Response(
        content=data,
        media_type="text/csv" if export_format == "csv" else "application/json",
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )


# ─── Scope introspection ──────────────────────────────────────────────────────


@router.get("/context")
async def get_security_context(scope: OutletScope = Depends(resolve_outlet_scope)) -> dict[str, Any]:
    return {"success": True, **scope.to_dict()}
