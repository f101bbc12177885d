"""Unit tests for usage limits and the usage tracker."""

from __future__ import annotations

import pytest

from planguard.billing.plans import get_plan
from planguard.billing.usage import UsageTracker, check_usage, usage_report, usage_warnings
from planguard.exceptions import LimitExceeded, OrganizationNotFound
from planguard.models.database import Organization
from planguard.storage.database import session_scope
from planguard.tenancy.context import TenantDescriptor
from planguard.types import PlanTier, Role, SubscriptionStatus

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_tenant(plan: str = "starter", **usage: float) -> TenantDescriptor:
    definition = get_plan(plan)
    return TenantDescriptor(
        org_id="org-1",
        user_id="user-1",
        role=Role.OWNER,
        plan=PlanTier(plan),
        limits=definition.limits,
        features=definition.features,
        usage={"users": 1, "projects": 0, "clients": 0, "storage": 0.0, **usage},
        subscription_status=SubscriptionStatus.ACTIVE,
    )


async def _counter(engine, org_id: str, attr: str) -> float:
    async with session_scope(engine) as session:
        org = await session.get(Organization, org_id)
        return getattr(org, attr)


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------


@pytest.mark.unit
class TestCheckUsage:
    def test_starter_at_project_limit_fails(self) -> None:
        with pytest.raises(LimitExceeded) as exc_info:
            check_usage(_make_tenant(projects=5), "projects")
        err = exc_info.value
        assert (err.resource, err.limit, err.current) == ("projects", 5, 5)
        assert err.details["upgrade_url"] == "/billing/upgrade?from=starter"
        assert err.status_code == 403

    def test_below_limit_passes(self) -> None:
        check_usage(_make_tenant(projects=4), "projects")

    def test_delta_is_added_before_comparison(self) -> None:
        with pytest.raises(LimitExceeded):
            check_usage(_make_tenant(clients=8), "clients", delta=3)

    def test_unlimited_never_fails(self) -> None:
        check_usage(_make_tenant("pro", projects=10_000), "projects", delta=500)

    def test_storage_is_fractional(self) -> None:
        check_usage(_make_tenant(storage=0.5), "storage", delta=0.5)
        with pytest.raises(LimitExceeded):
            check_usage(_make_tenant(storage=0.75), "storage", delta=0.5)


@pytest.mark.unit
class TestUsageReport:
    def test_percentages(self) -> None:
        limits = get_plan("starter").limits
        report = {line.resource: line for line in usage_report(limits, {"projects": 4, "clients": 5})}
        assert report["projects"].percentage == 80.0
        assert report["clients"].percentage == 50.0

    def test_unlimited_has_zero_percentage(self) -> None:
        limits = get_plan("agency").limits
        report = {line.resource: line for line in usage_report(limits, {"projects": 400})}
        assert report["projects"].unlimited
        assert report["projects"].percentage == 0.0

    def test_warnings_at_threshold(self) -> None:
        limits = get_plan("starter").limits
        warnings = usage_warnings(limits, {"users": 0, "projects": 4, "clients": 7}, 0.8)
        assert [w["resource"] for w in warnings] == ["projects"]


@pytest.mark.unit
class TestUsageTracker:
    async def test_increment_and_decrement(self, async_engine, make_org) -> None:
        org = await make_org()
        tracker = UsageTracker(async_engine)
        assert await tracker.increment(org.id, "projects") == 1
        assert await tracker.increment(org.id, "projects", 2) == 3
        assert await tracker.decrement(org.id, "projects") == 2
        assert await _counter(async_engine, org.id, "current_projects") == 2

    async def test_decrement_floors_at_zero(self, async_engine, make_org) -> None:
        org = await make_org()
        tracker = UsageTracker(async_engine)
        assert await tracker.decrement(org.id, "clients", 5) == 0
        assert await _counter(async_engine, org.id, "current_clients") == 0

    async def test_unknown_org(self, async_engine) -> None:
        with pytest.raises(OrganizationNotFound):
            await UsageTracker(async_engine).increment("missing", "projects")

    @pytest.mark.parametrize("operation", ["increment", "decrement", "consume"])
    @pytest.mark.parametrize("amount", [0, -3])
    async def test_non_positive_amount_is_rejected(
        self, async_engine, make_org, operation, amount
    ) -> None:
        org = await make_org(current_projects=2)
        tracker = UsageTracker(async_engine)
        with pytest.raises(ValueError, match="amount must be positive"):
            await getattr(tracker, operation)(org.id, "projects", amount)
        assert await _counter(async_engine, org.id, "current_projects") == 2

    async def test_consume_stops_at_limit(self, async_engine, make_org) -> None:
        org = await make_org(current_projects=4)
        tracker = UsageTracker(async_engine)
        assert await tracker.consume(org.id, "projects") == 5
        with pytest.raises(LimitExceeded) as exc_info:
            await tracker.consume(org.id, "projects")
        assert exc_info.value.current == 5
        assert await _counter(async_engine, org.id, "current_projects") == 5

    async def test_consume_rejects_whole_amount(self, async_engine, make_org) -> None:
        org = await make_org(current_clients=7)
        tracker = UsageTracker(async_engine)
        with pytest.raises(LimitExceeded):
            await tracker.consume(org.id, "clients", 4)
        assert await _counter(async_engine, org.id, "current_clients") == 7
        assert await tracker.consume(org.id, "clients", 3) == 10

    async def test_consume_unlimited(self, async_engine, make_org) -> None:
        org = await make_org(plan="pro", current_projects=1000)
        assert await UsageTracker(async_engine).consume(org.id, "projects", 10) == 1010
