"""Access-control dependencies mounted on a throwaway router."""

from __future__ import annotations

import pytest
from fastapi import Depends, FastAPI
from httpx import ASGITransport, AsyncClient

from planguard.exceptions import PlanGuardError
from planguard.tenancy.context import TenantDescriptor
from planguard.types import Resource, Role
from planguard.web.app import planguard_error_handler
from planguard.web.auth.rbac import (
    consume_usage,
    enforce_usage,
    require_feature,
    require_permission,
)
from planguard.web.auth.session import TokenAuth
from planguard.web.dependencies import get_db_engine, get_token_auth

AUTH = TokenAuth("rbac-secret")


@pytest.fixture()
def app(async_engine) -> FastAPI:
    app = FastAPI()
    app.add_exception_handler(PlanGuardError, planguard_error_handler)  # type: ignore[arg-type]
    app.dependency_overrides[get_db_engine] = lambda: async_engine
    app.dependency_overrides[get_token_auth] = lambda: AUTH

    @app.post("/projects")
    async def create_project(
        tenant: TenantDescriptor = Depends(consume_usage(Resource.PROJECTS)),
    ) -> dict[str, str]:
        return {"org_id": tenant.org_id}

    @app.post("/clients/preview")
    async def preview_clients(
        tenant: TenantDescriptor = Depends(enforce_usage(Resource.CLIENTS, 3)),
    ) -> dict[str, str]:
        return {"org_id": tenant.org_id}

    @app.get("/api-keys")
    async def api_keys(
        tenant: TenantDescriptor = Depends(require_feature("api_access")),
    ) -> dict[str, str]:
        return {"plan": str(tenant.plan)}

    @app.get("/exports")
    async def exports(
        tenant: TenantDescriptor = Depends(require_permission("export_data")),
    ) -> dict[str, str]:
        return {"user_id": tenant.user_id}

    return app


@pytest.fixture()
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


def _headers(user_id: str, org_id: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {AUTH.issue(user_id)}", "X-Organization-ID": org_id}


@pytest.mark.integration
class TestAccessDependencies:
    async def test_consume_usage_stops_at_plan_limit(self, client, make_org) -> None:
        org = await make_org(current_projects=4)
        headers = _headers("user-owner", org.id)

        resp = await client.post("/projects", headers=headers)
        assert resp.status_code == 200

        resp = await client.post("/projects", headers=headers)
        assert resp.status_code == 403
        body = resp.json()
        assert body["error"] == "limit_exceeded"
        assert (body["resource"], body["limit"], body["current"]) == ("projects", 5, 5)
        assert body["upgrade_url"] == "/billing/upgrade?from=starter"

    async def test_enforce_usage_checks_delta(self, client, make_org) -> None:
        org = await make_org(current_clients=8)
        resp = await client.post("/clients/preview", headers=_headers("user-owner", org.id))
        assert resp.status_code == 403
        assert resp.json()["resource"] == "clients"

    async def test_feature_gate(self, client, make_org) -> None:
        starter = await make_org("owner-a")
        resp = await client.get("/api-keys", headers=_headers("owner-a", starter.id))
        assert resp.status_code == 403
        assert resp.json()["feature"] == "api_access"

        team = await make_org("owner-b", plan="team", subscription_status="active")
        resp = await client.get("/api-keys", headers=_headers("owner-b", team.id))
        assert resp.status_code == 200
        assert resp.json() == {"plan": "team"}

    async def test_permission_gate(self, client, make_org) -> None:
        org = await make_org(members={"user-member": Role.MEMBER, "user-admin": Role.ADMIN})
        resp = await client.get("/exports", headers=_headers("user-member", org.id))
        assert resp.status_code == 403
        assert resp.json()["permission"] == "export_data"

        resp = await client.get("/exports", headers=_headers("user-admin", org.id))
        assert resp.status_code == 200
