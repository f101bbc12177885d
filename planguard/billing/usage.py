"""Usage enforcement against plan limits, and the usage-tracking hook."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import structlog
from sqlalchemy import Update, case, select, update
from sqlmodel import col

from planguard.billing.plans import UNLIMITED, PlanLimits, get_plan, within_limit
from planguard.exceptions import LimitExceeded, OrganizationNotFound
from planguard.models.database import Organization, _utc_now
from planguard.tenancy.context import TenantDescriptor
from planguard.types import Resource

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

logger = structlog.get_logger(__name__)

_COUNTER_COLUMNS = {
    Resource.USERS: "current_users",
    Resource.PROJECTS: "current_projects",
    Resource.CLIENTS: "current_clients",
    Resource.STORAGE: "current_storage_gb",
}


@dataclass(frozen=True, slots=True)
class UsageLine:
    """One resource's usage relative to its limit."""

    resource: str
    current: float
    limit: int
    percentage: float

    @property
    def unlimited(self) -> bool:
        return self.limit == UNLIMITED


def check_usage(tenant: TenantDescriptor, resource: Resource | str, delta: float = 1) -> None:
    """Raise LimitExceeded when adding ``delta`` would pass the plan limit.

    This is the soft-limit check: it reads the counters captured when the
    tenant was resolved, so two concurrent requests may both pass. Use
    ``UsageTracker.consume`` where the ceiling must hold under concurrency.
    """
    resource = Resource(resource)
    limit = tenant.limits.for_resource(resource)
    current = tenant.usage.get(resource, 0)
    if within_limit(limit, current + delta):
        return
    logger.warning(
        "usage_limit_exceeded",
        org_id=tenant.org_id,
        resource=str(resource),
        current=current,
        limit=limit,
        plan=str(tenant.plan),
    )
    raise LimitExceeded(resource, limit=limit, current=current, plan=tenant.plan)


def usage_report(limits: PlanLimits, usage: dict[str, float]) -> list[UsageLine]:
    lines = []
    for resource in Resource:
        limit = limits.for_resource(resource)
        current = usage.get(resource, 0)
        percentage = 0.0 if limit in (UNLIMITED, 0) else round(current / limit * 100, 2)
        lines.append(UsageLine(str(resource), current, limit, percentage))
    return lines


def usage_warnings(
    limits: PlanLimits, usage: dict[str, float], threshold: float = 0.8
) -> list[dict[str, object]]:
    """Resources at or above ``threshold`` of their limit."""
    warnings = []
    for line in usage_report(limits, usage):
        if line.unlimited or line.limit == 0:
            continue
        if line.current >= line.limit * threshold:
            warnings.append(
                {
                    "resource": line.resource,
                    "message": f"You're using {line.current} of {line.limit} {line.resource}",
                    "percentage": line.percentage,
                }
            )
    return warnings


class UsageTracker:
    """Adjusts an organization's usage counters.

    ``increment`` and ``decrement`` are unconditional single-statement updates;
    ``consume`` adds the plan limit to the WHERE clause so the counter can
    never pass its ceiling, even under concurrent writers.
    """

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine

    async def increment(self, org_id: str, resource: Resource | str, amount: float = 1) -> float:
        _check_amount(amount)
        column = _counter(resource)
        stmt = (
            update(Organization)
            .where(col(Organization.id) == org_id)
            .values({column: column + amount, "updated_at": _utc_now()})
        )
        value = await self._apply(org_id, resource, stmt)
        logger.debug("usage_incremented", org_id=org_id, resource=str(resource), value=value)
        return value

    async def decrement(self, org_id: str, resource: Resource | str, amount: float = 1) -> float:
        _check_amount(amount)
        column = _counter(resource)
        floored = case((column - amount < 0, 0), else_=column - amount)
        stmt = (
            update(Organization)
            .where(col(Organization.id) == org_id)
            .values({column: floored, "updated_at": _utc_now()})
        )
        value = await self._apply(org_id, resource, stmt)
        logger.debug("usage_decremented", org_id=org_id, resource=str(resource), value=value)
        return value

    async def consume(self, org_id: str, resource: Resource | str, amount: float = 1) -> float:
        """Atomically add ``amount`` if the result stays within the plan limit.

        Raises:
            OrganizationNotFound: no such organization.
            ValueError: ``amount`` is not positive.
            LimitExceeded: the increment would pass the limit; nothing changes.
        """
        _check_amount(amount)
        resource = Resource(resource)
        column = _counter(resource)
        async with self._engine.begin() as conn:
            plan = (
                await conn.execute(select(col(Organization.plan)).where(col(Organization.id) == org_id))
            ).scalar_one_or_none()
            if plan is None:
                raise OrganizationNotFound(org_id)
            limit = get_plan(plan).limits.for_resource(resource)

            stmt = (
                update(Organization)
                .where(col(Organization.id) == org_id, col(Organization.plan) == plan)
                .values({column: column + amount, "updated_at": _utc_now()})
            )
            if limit != UNLIMITED:
                stmt = stmt.where(column + amount <= limit)
            result = await conn.execute(stmt)
            if result.rowcount == 0:
                latest = (
                    await conn.execute(select(column).where(col(Organization.id) == org_id))
                ).scalar_one()
                logger.warning(
                    "usage_consume_rejected",
                    org_id=org_id,
                    resource=str(resource),
                    current=latest,
                    limit=limit,
                )
                raise LimitExceeded(resource, limit=limit, current=latest, plan=plan)

            value = (
                await conn.execute(select(column).where(col(Organization.id) == org_id))
            ).scalar_one()
        logger.debug("usage_consumed", org_id=org_id, resource=str(resource), value=value)
        return value

    async def _apply(self, org_id: str, resource: Resource | str, stmt: Update) -> float:
        column = _counter(resource)
        async with self._engine.begin() as conn:
            result = await conn.execute(stmt)
            if result.rowcount == 0:
                raise OrganizationNotFound(org_id)
            value = (
                await conn.execute(select(column).where(col(Organization.id) == org_id))
            ).scalar_one()
        return value


def _counter(resource: Resource | str) -> Any:
    return getattr(Organization, _COUNTER_COLUMNS[Resource(resource)])


def _check_amount(amount: float) -> None:
    # Counters only move by positive steps; direction is the method's job
    if amount <= 0:
        raise ValueError(f"amount must be positive, got {amount}")
