"""Unit tests for per-request tenant resolution."""

from __future__ import annotations

from datetime import timedelta

import pytest

from planguard.exceptions import (
    AuthenticationRequired,
    NotAMember,
    OrganizationContextMissing,
    OrganizationNotFound,
    SubscriptionInactive,
)
from planguard.models.database import Organization, _utc_now
from planguard.storage.database import session_scope
from planguard.storage.repositories.organizations import OrganizationRepository
from planguard.tenancy.context import Principal
from planguard.tenancy.resolver import TenantResolver
from planguard.types import Role, SubscriptionStatus

OWNER = Principal(user_id="user-owner")


@pytest.mark.unit
class TestTenantResolver:
    async def test_missing_principal(self, async_engine) -> None:
        with pytest.raises(AuthenticationRequired):
            await TenantResolver(async_engine).resolve(None, "org-1")

    async def test_missing_org_context(self, async_engine) -> None:
        with pytest.raises(OrganizationContextMissing) as exc_info:
            await TenantResolver(async_engine).resolve(OWNER, None)
        assert exc_info.value.status_code == 400

    async def test_unknown_org(self, async_engine) -> None:
        with pytest.raises(OrganizationNotFound):
            await TenantResolver(async_engine).resolve(OWNER, "missing")

    async def test_deactivated_org_is_not_found(self, async_engine, make_org) -> None:
        org = await make_org()
        async with session_scope(async_engine) as session:
            await OrganizationRepository(session).deactivate(org.id)
        with pytest.raises(OrganizationNotFound):
            await TenantResolver(async_engine).resolve(OWNER, org.id)

    async def test_non_member(self, async_engine, make_org) -> None:
        org = await make_org()
        with pytest.raises(NotAMember):
            await TenantResolver(async_engine).resolve(Principal(user_id="stranger"), org.id)

    async def test_trialing_owner_resolves(self, async_engine, make_org) -> None:
        org = await make_org(current_projects=3)
        tenant = await TenantResolver(async_engine).resolve(OWNER, org.id)
        assert tenant.org_id == org.id
        assert tenant.role == Role.OWNER
        assert tenant.plan == "starter"
        assert tenant.limits.max_projects == 5
        assert tenant.usage["projects"] == 3
        assert tenant.is_trial_active is True
        assert tenant.days_left_in_trial == 14
        assert tenant.permissions["manage_billing"] is True
        assert tenant.is_active

    async def test_member_permissions_come_from_membership(self, async_engine, make_org) -> None:
        org = await make_org(members={"user-2": Role.MEMBER})
        tenant = await TenantResolver(async_engine).resolve(Principal(user_id="user-2"), org.id)
        assert tenant.role == Role.MEMBER
        assert tenant.permissions["manage_billing"] is False

    async def test_expired_trial_is_persisted_and_rejected(self, async_engine, make_org) -> None:
        start = _utc_now() - timedelta(days=20)
        org = await make_org(now=start)
        with pytest.raises(SubscriptionInactive) as exc_info:
            await TenantResolver(async_engine).resolve(OWNER, org.id)
        err = exc_info.value
        assert err.status_code == 402
        assert err.days_left_in_trial == 0
        assert err.details["trial_expired"] is True
        assert err.details["subscription_status"] == "incomplete"

        async with session_scope(async_engine) as session:
            stored = await session.get(Organization, org.id)
        assert stored.is_trial_active is False
        assert stored.subscription_status == SubscriptionStatus.INCOMPLETE

    async def test_expired_trial_resolves_without_active_check(self, async_engine, make_org) -> None:
        org = await make_org(now=_utc_now() - timedelta(days=20))
        tenant = await TenantResolver(async_engine).resolve(OWNER, org.id, require_active=False)
        assert tenant.is_trial_active is False
        assert tenant.subscription_status == SubscriptionStatus.INCOMPLETE

    async def test_active_subscription_ignores_trial_window(self, async_engine, make_org) -> None:
        org = await make_org(
            now=_utc_now() - timedelta(days=40),
            subscription_status=SubscriptionStatus.ACTIVE,
            plan="team",
        )
        tenant = await TenantResolver(async_engine).resolve(OWNER, org.id)
        assert tenant.subscription_status == SubscriptionStatus.ACTIVE
        assert tenant.is_trial_active is False
        assert tenant.features.team_collaboration

    async def test_past_due_is_inactive(self, async_engine, make_org) -> None:
        org = await make_org(subscription_status=SubscriptionStatus.PAST_DUE)
        with pytest.raises(SubscriptionInactive) as exc_info:
            await TenantResolver(async_engine).resolve(OWNER, org.id)
        assert exc_info.value.details["subscription_status"] == "past_due"
