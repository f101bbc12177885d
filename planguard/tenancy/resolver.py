"""Per-request tenant resolution."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

import structlog

from planguard.billing.plans import get_plan
from planguard.exceptions import (
    AuthenticationRequired,
    NotAMember,
    OrganizationContextMissing,
    OrganizationNotFound,
    SubscriptionInactive,
)
from planguard.models.database import _utc_now
from planguard.storage.database import session_scope
from planguard.storage.repositories.organizations import OrganizationRepository
from planguard.tenancy.context import Principal, TenantDescriptor
from planguard.types import PlanTier, Role, SubscriptionStatus

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

logger = structlog.get_logger(__name__)


class TenantResolver:
    """Turns a principal and an organization id into a TenantDescriptor.

    Checks run in a fixed order so callers always see the most fundamental
    failure first: authentication, organization context, existence, membership,
    and finally subscription state. A lapsed trial is persisted as expired
    before the active check runs.
    """

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine

    async def resolve(
        self,
        principal: Principal | None,
        org_id: str | None,
        *,
        require_active: bool = True,
        now: datetime | None = None,
    ) -> TenantDescriptor:
        if principal is None:
            raise AuthenticationRequired()
        if not org_id:
            raise OrganizationContextMissing()

        now = now or _utc_now()
        async with session_scope(self._engine) as session:
            orgs = OrganizationRepository(session)
            org = await orgs.get(org_id)
            if org is None:
                raise OrganizationNotFound(org_id)

            membership = await orgs.get_membership(org_id, principal.user_id)
            if membership is None:
                logger.warning("tenant_access_denied", org_id=org_id, user_id=principal.user_id)
                raise NotAMember(org_id)

            if org.trial_has_lapsed(now):
                org = await orgs.expire_trial(org)

            if require_active and not org.is_active:
                logger.info(
                    "tenant_inactive",
                    org_id=org_id,
                    status=org.subscription_status,
                    trial_active=org.is_trial_active,
                )
                raise SubscriptionInactive(
                    org.subscription_status,
                    trial_expired=not org.is_trial_active,
                    days_left_in_trial=org.days_left_in_trial(now),
                )

            plan = get_plan(org.plan)
            return TenantDescriptor(
                org_id=org.id,
                user_id=principal.user_id,
                role=Role(membership.role),
                plan=PlanTier(plan.id),
                limits=plan.limits,
                features=plan.features,
                usage=org.usage(),
                permissions=membership.permissions(),
                subscription_status=SubscriptionStatus(org.subscription_status),
                is_trial_active=org.is_trial_active,
                days_left_in_trial=org.days_left_in_trial(now),
            )
