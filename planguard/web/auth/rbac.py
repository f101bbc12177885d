"""Tenant resolution and access-control dependencies for multi-tenant requests."""

from __future__ import annotations

from collections.abc import Awaitable, Callable

import structlog
from fastapi import Depends, Request

from planguard.billing.usage import UsageTracker, check_usage
from planguard.tenancy import gate
from planguard.tenancy.context import Principal, TenantDescriptor
from planguard.tenancy.resolver import TenantResolver
from planguard.types import Resource, Role
from planguard.web.auth.session import TokenAuth
from planguard.web.dependencies import get_tenant_resolver, get_token_auth, get_usage_tracker

logger = structlog.get_logger(__name__)

ORG_HEADER = "x-organization-id"
ORG_QUERY_PARAM = "organization_id"

TenantDependency = Callable[..., Awaitable[TenantDescriptor]]


async def get_principal(
    request: Request, auth: TokenAuth = Depends(get_token_auth)
) -> Principal | None:
    """Principal from the ``Authorization: Bearer`` header, if valid."""
    header = request.headers.get("authorization", "")
    if not header.startswith("Bearer "):
        return None
    return auth.verify(header[7:])


def _requested_org_id(request: Request) -> str | None:
    return request.headers.get(ORG_HEADER) or request.query_params.get(ORG_QUERY_PARAM)


def _bind(tenant: TenantDescriptor) -> TenantDescriptor:
    structlog.contextvars.bind_contextvars(org_id=tenant.org_id, user_id=tenant.user_id)
    return tenant


async def get_tenant(
    request: Request,
    principal: Principal | None = Depends(get_principal),
    resolver: TenantResolver = Depends(get_tenant_resolver),
) -> TenantDescriptor:
    """Resolve the tenant and require an active subscription or trial."""
    return _bind(await resolver.resolve(principal, _requested_org_id(request)))


async def get_billing_tenant(
    request: Request,
    principal: Principal | None = Depends(get_principal),
    resolver: TenantResolver = Depends(get_tenant_resolver),
) -> TenantDescriptor:
    """Resolve the tenant without the active check, so lapsed tenants can still pay."""
    return _bind(
        await resolver.resolve(principal, _requested_org_id(request), require_active=False)
    )


def require_role(*roles: Role, billing: bool = False) -> TenantDependency:
    """Dependency that admits only members holding one of ``roles``."""
    source = get_billing_tenant if billing else get_tenant

    async def dependency(tenant: TenantDescriptor = Depends(source)) -> TenantDescriptor:
        gate.require_role(tenant, roles)
        return tenant

    return dependency


def require_permission(permission: str) -> TenantDependency:
    async def dependency(tenant: TenantDescriptor = Depends(get_tenant)) -> TenantDescriptor:
        gate.require_permission(tenant, permission)
        return tenant

    return dependency


def require_feature(feature: str) -> TenantDependency:
    async def dependency(tenant: TenantDescriptor = Depends(get_tenant)) -> TenantDescriptor:
        gate.require_feature(tenant, feature)
        return tenant

    return dependency


def enforce_usage(resource: Resource, delta: float = 1) -> TenantDependency:
    """Soft limit check before a handler creates ``delta`` more of ``resource``."""

    async def dependency(tenant: TenantDescriptor = Depends(get_tenant)) -> TenantDescriptor:
        check_usage(tenant, resource, delta)
        return tenant

    return dependency


def consume_usage(resource: Resource, amount: float = 1) -> TenantDependency:
    """Hard limit: reserve ``amount`` of ``resource`` atomically before the handler runs."""

    async def dependency(
        tenant: TenantDescriptor = Depends(get_tenant),
        tracker: UsageTracker = Depends(get_usage_tracker),
    ) -> TenantDescriptor:
        await tracker.consume(tenant.org_id, resource, amount)
        return tenant

    return dependency

