"""Integration tests for the /security admin API and /security/context.

Covers:
  - 401 / 403 envelopes from the authorization dependencies
  - admin-or-manager gate via RequireRole
  - CSRF generate / validate
  - API key generate → list → stats → rotate → revoke
  - audit log query, alerts and json / csv export
  - outlet scope resolution over HTTP
"""

from __future__ import annotations

import csv
import io
from datetime import timedelta

import pytest
from fastapi import Depends, FastAPI
from httpx import AsyncClient

from cafe_guard import constants
from cafe_guard.audit import AuditCategory
from cafe_guard.auth.dependencies import RequireRole
from cafe_guard.auth.tokens import Principal


@pytest.fixture
def admin(auth_header) -> dict[str, str]:
    return auth_header(user_id="admin-1", role="admin")


# ─── Authorization ────────────────────────────────────────────────────────────


class TestAdminGate:
    async def test_missing_token(self, client: AsyncClient) -> None:
        response = await client.get("/security/apikeys")
        assert response.status_code == 401
        assert response.json() == {
            "success": False,
            "error": "Authorization header missing or invalid",
        }

    async def test_invalid_token(self, client: AsyncClient) -> None:
        response = await client.get(
            "/security/apikeys", headers={"Authorization": "Bearer forged"}
        )
        assert response.status_code == 401
        assert response.json()["error"] == "Invalid or expired token"

    async def test_non_admin(self, client: AsyncClient, auth_header) -> None:
        response = await client.get("/security/apikeys", headers=auth_header(role="manager"))
        assert response.status_code == 403
        assert response.json() == {"success": False, "error": "Admin access required"}

    async def test_not_ready(self, client: AsyncClient, app, admin) -> None:
        app.state.ready = False
        response = await client.get("/security/apikeys", headers=admin)
        assert response.status_code == 503



class TestAnyRoleGate:
    @pytest.fixture
    def app(self, app: FastAPI) -> FastAPI:
        gate = RequireRole(constants.ADMIN_ROLE, constants.MANAGER_ROLE)

        @app.get("/reports/daily", name="daily_report")
        async def daily_report(principal: Principal = Depends(gate)) -> dict[str, str]:
            return {"role": principal.role}

        return app

    @pytest.mark.parametrize("role", ["admin", "manager"])
    async def test_allowed_roles(self, client: AsyncClient, auth_header, role) -> None:
        response = await client.get("/reports/daily", headers=auth_header(role=role))
        assert response.status_code == 200
        assert response.json() == {"role": role}

    async def test_other_role(self, client: AsyncClient, auth_header, security) -> None:
        response = await client.get("/reports/daily", headers=auth_header(role="staff"))
        assert response.status_code == 403
        assert response.json() == {
            "success": False,
            "error": "Admin or Manager access required",
        }
        assert security.audit.entries()[-1].category is AuditCategory.AUTHORIZATION

    def test_roles_required(self) -> None:
        with pytest.raises(ValueError):
            RequireRole()


# ─── CSRF ─────────────────────────────────────────────────────────────────────


class TestCsrf:
    async def test_generate_and_validate(self, client: AsyncClient, admin) -> None:
        generated = await client.post("/security/csrf/generate", headers=admin)
        body = generated.json()

        assert generated.status_code == 200
        assert body["expiresIn"] == 3600
        token = body["csrfToken"]

        for _ in range(2):
            check = await client.post(
                "/security/csrf/validate", json={"token": token}, headers=admin
            )
            assert check.json() == {"success": True, "valid": True}

    async def test_token_of_another_user(self, client: AsyncClient, admin, auth_header) -> None:
        token = (await client.post("/security/csrf/generate", headers=admin)).json()["csrfToken"]
        other = auth_header(user_id="admin-2", role="admin")

        check = await client.post("/security/csrf/validate", json={"token": token}, headers=other)

        assert check.json()["valid"] is False

    async def test_blank_token(self, client: AsyncClient, admin) -> None:
        response = await client.post("/security/csrf/validate", json={"token": " "}, headers=admin)
        assert response.status_code == 400
        assert response.json()["error"] == "Token is required"


# ─── API keys ─────────────────────────────────────────────────────────────────


class TestApiKeys:
    async def test_lifecycle(self, client: AsyncClient, admin, security, clock) -> None:
        created = await client.post(
            "/security/apikeys/generate",
            json={"serviceName": "pos-terminal", "description": "counter"},
            headers=admin,
        )
        assert created.status_code == 201
        key = created.json()["apiKey"]
        assert key.startswith("cafe_")
        assert created.json()["expiresIn"] == 90

        listing = (await client.get("/security/apikeys", headers=admin)).json()
        assert listing["apiKeys"][0]["key"] == key[:15] + "..."
        assert listing["apiKeys"][0]["needsRotation"] is False

        stats = (await client.get(f"/security/apikeys/{key}/stats", headers=admin)).json()
        assert stats["statistics"]["key"] == key[:10] + "..."
        assert stats["statistics"]["daysUntilExpiry"] == 90

        rotated = await client.post(f"/security/apikeys/{key}/rotate", headers=admin)
        body = rotated.json()
        expected = (clock.now() + timedelta(days=30)).strftime("%Y-%m-%d")
        assert rotated.status_code == 200
        assert body["message"].endswith(f"Old key will expire on {expected}")
        assert security.api_keys.validate(body["newKey"])[0] is True
        assert security.api_keys.validate(key)[0] is True

        again = await client.post(f"/security/apikeys/{key}/rotate", headers=admin)
        assert again.status_code == 409

        revoked = await client.delete(f"/security/apikeys/{key}", headers=admin)
        assert revoked.json() == {"success": True, "message": "API key revoked successfully"}
        assert security.api_keys.validate(key)[0] is False

        actions = [e.action for e in security.audit.entries() if e.category is AuditCategory.ADMINISTRATION]
        assert actions == ["Generate API Key", "Rotate API Key", "Revoke API Key"]

    async def test_service_name_required(self, client: AsyncClient, admin) -> None:
        response = await client.post(
            "/security/apikeys/generate", json={"serviceName": ""}, headers=admin
        )
        assert response.status_code == 400
        assert response.json()["error"] == "Service name is required"

    @pytest.mark.parametrize(
        "method,path",
        [
            ("post", "/security/apikeys/cafe_missing/rotate"),
            ("delete", "/security/apikeys/cafe_missing"),
            ("get", "/security/apikeys/cafe_missing/stats"),
        ],
    )
    async def test_unknown_key(self, client: AsyncClient, admin, method, path) -> None:
        response = await client.request(method.upper(), path, headers=admin)
        assert response.status_code == 404
        assert response.json() == {"success": False, "error": "API key not found"}


# ─── Audit ────────────────────────────────────────────────────────────────────


class TestAudit:
    async def test_query_logs_and_audits_itself(self, client: AsyncClient, admin, security) -> None:
        security.audit.log_authentication("alice", "Login", False)
        security.audit.log_data_access("bob", "Order", "o-1", "Read", True)

        response = await client.get(
            "/security/audit/logs",
            params={"category": "Authentication", "maxResults": 5000},
            headers=admin,
        )
        body = response.json()

        assert body["count"] == 1
        assert body["logs"][0]["userId"] == "alice"
        last = security.audit.entries()[-1]
        assert last.action == "View Audit Logs"
        assert last.details == "Category: Authentication, Count: 1"

    async def test_invalid_date_filter_is_ignored(self, client: AsyncClient, admin, security) -> None:
        security.audit.log_security_event("Suspicious Activity")
        response = await client.get(
            "/security/audit/logs", params={"startDate": "yesterday"}, headers=admin
        )
        assert response.json()["count"] == 1

    async def test_alerts(self, client: AsyncClient, admin, security) -> None:
        security.audit.log_security_event("Brute Force")
        security.audit.log_authentication("bob", "Login", True)

        body = (
            await client.get("/security/audit/alerts", params={"hours": 6}, headers=admin)
        ).json()

        assert body["count"] == 1
        assert body["period"] == "Last 6 hours"
        assert body["alerts"][0]["action"] == "Brute Force"

    async def test_csv_export(self, client: AsyncClient, admin, security, clock) -> None:
        start = clock.now() - timedelta(hours=1)
        security.audit.log_security_event("Odd, Event", details='a "quoted" value')

        response = await client.post(
            "/security/audit/export",
            json={
                "startDate": start.isoformat(),
                "endDate": (clock.now() + timedelta(hours=1)).isoformat(),
                "format": "csv",
            },
            headers=admin,
        )

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/csv")
        assert response.headers["content-disposition"] == (
            f"attachment; filename=audit-logs-{clock.now():%Y%m%d-%H%M%S}.csv"
        )
        rows = list(csv.reader(io.StringIO(response.text, newline="")))
        assert rows[0][0] == "Timestamp"
        assert rows[1][2] == "Odd, Event"
        assert rows[1][8] == 'a "quoted" value'

    async def test_json_export(self, client: AsyncClient, admin, security, clock) -> None:
        security.audit.log_admin_action("root", "Restart")
        response = await client.post(
            "/security/audit/export",
            json={"startDate": "2000-01-01T00:00:00Z", "endDate": "2100-01-01T00:00:00Z"},
            headers=admin,
        )
        assert response.headers["content-type"].startswith("application/json")
        assert response.json()[0]["action"] == "Restart"

    async def test_unsupported_export_format(self, client: AsyncClient, admin) -> None:
        response = await client.post(
            "/security/audit/export",
            json={
                "startDate": "2000-01-01T00:00:00Z",
                "endDate": "2100-01-01T00:00:00Z",
                "format": "xml",
            },
            headers=admin,
        )
        assert response.status_code == 400
        assert response.json()["error"] == "Unsupported format. Use 'json' or 'csv'."

    async def test_missing_export_dates(self, client: AsyncClient, admin) -> None:
        response = await client.post("/security/audit/export", json={}, headers=admin)
        assert response.status_code == 422
        assert response.json()["success"] is False
        assert response.json()["error"].startswith("Invalid request:")


# ─── Outlet scope ─────────────────────────────────────────────────────────────


class TestSecurityContext:
    async def test_admin_unscoped(self, client: AsyncClient, admin) -> None:
        body = (await client.get("/security/context", headers=admin)).json()
        assert body["unscoped"] is True
        assert body["principal"]["role"] == "admin"

    async def test_staff_default_outlet(self, client: AsyncClient, auth_header) -> None:
        headers = auth_header(default_outlet_id="O1", assigned_outlets=["O1"])
        body = (await client.get("/security/context", headers=headers)).json()
        assert body["outletId"] == "O1"
        assert body["outletName"] == "Main Street"

    async def test_query_beats_header(self, client: AsyncClient, auth_header) -> None:
        headers = auth_header(assigned_outlets=["O1", "O2"])
        headers["X-Outlet-Id"] = "O1"
        body = (
            await client.get("/security/context", params={"outletId": "O2"}, headers=headers)
        ).json()
        assert body["outletId"] == "O2"

    @pytest.mark.parametrize(
        "outlet_id,assigned,status",
        [
            ("O2", ["O1"], 403),
            ("O99", ["O1"], 403),
            ("O3", ["O3"], 403),
            ("O99", ["O99"], 404),
        ],
    )
    async def test_rejections(self, client: AsyncClient, auth_header, outlet_id, assigned, status) -> None:
        response = await client.get(
            "/security/context",
            params={"outletId": outlet_id},
            headers=auth_header(assigned_outlets=assigned),
        )
        assert response.status_code == status
        assert response.json()["success"] is False

    async def test_admin_unknown_outlet(self, client: AsyncClient, admin) -> None:
        response = await client.get(
            "/security/context", params={"outletId": "O99"}, headers=admin
        )
        assert response.status_code == 404
        assert response.json()["error"] == "Outlet O99 not found"
