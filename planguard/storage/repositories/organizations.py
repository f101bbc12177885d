"""Organization and membership repository, SQL-backed."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any

import structlog
from sqlmodel import col, select
from sqlmodel.ext.asyncio.session import AsyncSession

from planguard.models.database import Organization, OrganizationMembership, _utc_now
from planguard.tenancy.gate import default_permissions
from planguard.types import Role, SubscriptionStatus

logger = structlog.get_logger(__name__)


class OrganizationRepository:
    """Reads and writes tenants within the caller's session.

    Every method takes the organization id explicitly; nothing here widens a
    query beyond one tenant.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, org_id: str, *, include_deactivated: bool = False) -> Organization | None:
        org = await self._session.get(Organization, org_id)
        if org is None or (org.deactivated_at is not None and not include_deactivated):
            return None
        return org

    async def get_by_customer(self, customer_id: str) -> Organization | None:
        stmt = select(Organization).where(col(Organization.customer_id) == customer_id)
        result = await self._session.execute(stmt)
        return result.scalars().first()

    async def create(
        self,
        name: str,
        slug: str,
        owner_id: str,
        *,
        trial_days: int,
        billing_email: str | None = None,
        now: datetime | None = None,
    ) -> Organization:
        """Create a tenant in trial with its owner as the only member."""
        now = now or _utc_now()
        org = Organization(
            name=name,
            slug=slug,
            owner_id=owner_id,
            billing_email=billing_email,
            trial_start=now,
            trial_end=now + timedelta(days=trial_days),
            is_trial_active=True,
            subscription_status=SubscriptionStatus.TRIALING,
        )
        self._session.add(org)
        await self._session.flush()
        self._session.add(self._membership(org.id, owner_id, Role.OWNER))
        await self._session.commit()
        logger.info("organization_created", org_id=org.id, slug=slug, owner_id=owner_id)
        return org

    async def get_membership(self, org_id: str, user_id: str) -> OrganizationMembership | None:
        stmt = select(OrganizationMembership).where(
            col(OrganizationMembership.org_id) == org_id,
            col(OrganizationMembership.user_id) == user_id,
        )
        result = await self._session.execute(stmt)
        return result.scalars().first()

    async def add_member(
        self, org_id: str, user_id: str, role: Role | str, **permissions: bool
    ) -> OrganizationMembership:
        """Add a member or update the role of an existing one."""
        membership = await self.get_membership(org_id, user_id)
        if membership is None:
            membership = self._membership(org_id, user_id, Role(role), **permissions)
            self._session.add(membership)
        else:
            membership.role = Role(role)
            for key, value in {**default_permissions(role), **permissions}.items():
                setattr(membership, f"can_{key}", value)
        await self._session.commit()
        logger.info("member_added", org_id=org_id, user_id=user_id, role=str(role))
        return membership

    async def expire_trial(self, org: Organization) -> Organization:
        """Mark a lapsed trial over; a trialing mirror drops to incomplete."""
        org.is_trial_active = False
        if org.subscription_status == SubscriptionStatus.TRIALING:
            org.subscription_status = SubscriptionStatus.INCOMPLETE
        org.updated_at = _utc_now()
        self._session.add(org)
        await self._session.commit()
        logger.info("trial_expired", org_id=org.id, status=org.subscription_status)
        return org

    def mirror(self, org: Organization, **fields: Any) -> None:
        """Stage billing mirror fields; the caller commits."""
        for key, value in fields.items():
            setattr(org, key, value)
        org.updated_at = _utc_now()
        self._session.add(org)

    async def deactivate(self, org_id: str) -> bool:
        org = await self.get(org_id)
        if org is None:
            return False
        org.deactivated_at = _utc_now()
        self._session.add(org)
        await self._session.commit()
        logger.info("organization_deactivated", org_id=org_id)
        return True

    @staticmethod
    def _membership(
        org_id: str, user_id: str, role: Role, **overrides: bool
    ) -> OrganizationMembership:
        perms = {**default_permissions(role), **overrides}
        return OrganizationMembership(
            org_id=org_id,
            user_id=user_id,
            role=role,
            **{f"can_{key}": value for key, value in perms.items()},
        )
