"""Plan tier definitions with concrete limits, features and pricing.

This module is the single source of plan data: limits, feature flags and
prices are read from here by every other component.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import asdict, dataclass, field
from decimal import Decimal
from typing import Any

from planguard.exceptions import ConfigurationError
from planguard.types import BillingInterval, PlanTier, Resource

UNLIMITED = -1


@dataclass(frozen=True, slots=True)
class PlanLimits:
    """Resource limits for a billing plan."""

    max_users: int
    max_projects: int
    max_clients: int
    max_storage_gb: int

    def for_resource(self, resource: Resource | str) -> int:
        return getattr(self, _LIMIT_ATTRS[Resource(resource)])

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


@dataclass(frozen=True, slots=True)
class PlanFeatures:
    """Feature flags unlocked by a billing plan."""

    client_portal: bool = False
    white_label: bool = False
    api_access: bool = False
    advanced_reporting: bool = False
    team_collaboration: bool = False
    custom_integrations: bool = False
    priority_support: bool = False
    sla: bool = False

    def enabled(self, feature: str) -> bool:
        return bool(getattr(self, feature, False))

    def as_dict(self) -> dict[str, bool]:
        return asdict(self)


@dataclass(frozen=True, slots=True)
class PlanDefinition:
    """Immutable catalog entry for one plan tier."""

    id: PlanTier
    name: str
    rank: int
    limits: PlanLimits
    features: PlanFeatures
    monthly_price: Decimal
    yearly_price: Decimal
    description: str = ""
    popular: bool = False

    def price_for(self, interval: BillingInterval | str) -> Decimal:
        if BillingInterval(interval) == BillingInterval.YEAR:
            return self.yearly_price
        return self.monthly_price

    def as_dict(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "name": self.name,
            "rank": self.rank,
            "monthly_price": str(self.monthly_price),
            "yearly_price": str(self.yearly_price),
            "limits": self.limits.as_dict(),
            "features": self.features.as_dict(),
            "description": self.description,
            "popular": self.popular,
        }


_LIMIT_ATTRS = {
    Resource.USERS: "max_users",
    Resource.PROJECTS: "max_projects",
    Resource.CLIENTS: "max_clients",
    Resource.STORAGE: "max_storage_gb",
}


PLAN_CATALOG: dict[str, PlanDefinition] = {
    PlanTier.STARTER: PlanDefinition(
        id=PlanTier.STARTER,
        name="Starter",
        rank=0,
        limits=PlanLimits(max_users=1, max_projects=5, max_clients=10, max_storage_gb=1),
        features=PlanFeatures(),
        monthly_price=Decimal("19"),
        yearly_price=Decimal("190"),
        description="Perfect for individual freelancers just getting started",
    ),
    PlanTier.PRO: PlanDefinition(
        id=PlanTier.PRO,
        name="Pro",
        rank=1,
        limits=PlanLimits(
            max_users=1, max_projects=UNLIMITED, max_clients=UNLIMITED, max_storage_gb=10
        ),
        features=PlanFeatures(advanced_reporting=True),
        monthly_price=Decimal("39"),
        yearly_price=Decimal("390"),
        description="For established freelancers with multiple clients",
        popular=True,
    ),
    PlanTier.TEAM: PlanDefinition(
        id=PlanTier.TEAM,
        name="Team",
        rank=2,
        limits=PlanLimits(
            max_users=5, max_projects=UNLIMITED, max_clients=UNLIMITED, max_storage_gb=50
        ),
        features=PlanFeatures(
            client_portal=True,
            api_access=True,
            advanced_reporting=True,
            team_collaboration=True,
            custom_integrations=True,
            priority_support=True,
        ),
        monthly_price=Decimal("79"),
        yearly_price=Decimal("790"),
        description="For small teams and growing agencies",
    ),
    PlanTier.AGENCY: PlanDefinition(
        id=PlanTier.AGENCY,
        name="Agency",
        rank=3,
        limits=PlanLimits(
            max_users=UNLIMITED,
            max_projects=UNLIMITED,
            max_clients=UNLIMITED,
            max_storage_gb=500,
        ),
        features=PlanFeatures(
            client_portal=True,
            white_label=True,
            api_access=True,
            advanced_reporting=True,
            team_collaboration=True,
            custom_integrations=True,
            priority_support=True,
            sla=True,
        ),
        monthly_price=Decimal("149"),
        yearly_price=Decimal("1490"),
        description="Full-featured solution for agencies and enterprises",
    ),
}


def get_plan(plan: PlanTier | str) -> PlanDefinition:
    """Look up a plan, raising ConfigurationError for unknown ids."""
    definition = PLAN_CATALOG.get(str(plan))
    if definition is None:
        raise ConfigurationError(f"Unknown plan: {plan}", plan=str(plan))
    return definition


def list_plans() -> list[PlanDefinition]:
    return sorted(PLAN_CATALOG.values(), key=lambda p: p.rank)


def limits_for(plan: PlanTier | str) -> PlanLimits:
    return get_plan(plan).limits


def features_for(plan: PlanTier | str) -> PlanFeatures:
    return get_plan(plan).features


def rank(plan: PlanTier | str) -> int:
    return get_plan(plan).rank


def is_upgrade(current: PlanTier | str, target: PlanTier | str) -> bool:
    return rank(target) > rank(current)


def is_downgrade(current: PlanTier | str, target: PlanTier | str) -> bool:
    return rank(target) < rank(current)


def within_limit(limit: int, value: float) -> bool:
    """True when ``value`` fits under ``limit``; UNLIMITED fits everything."""
    return limit == UNLIMITED or value <= limit


@dataclass(frozen=True)
class PriceBook:
    """Maps (plan, interval) pairs to processor price ids and back."""

    price_ids: Mapping[str, str] = field(default_factory=dict)

    @classmethod
    def default(cls) -> PriceBook:
        """Placeholder ids of the form ``price_<plan>_monthly|yearly``."""
        labels = {BillingInterval.MONTH: "monthly", BillingInterval.YEAR: "yearly"}
        return cls(
            {
                f"{plan}_{interval}": f"price_{plan}_{labels[interval]}"
                for plan in PlanTier
                for interval in BillingInterval
            }
        )

    def price_id(self, plan: PlanTier | str, interval: BillingInterval | str) -> str:
        key = f"{plan}_{interval}"
        price = self.price_ids.get(key)
        if not price:
            raise ConfigurationError(f"No processor price configured for {key}", price_key=key)
        return price

    def lookup(self, price_id: str | None) -> tuple[PlanTier, BillingInterval] | None:
        if not price_id:
            return None
        for key, value in self.price_ids.items():
            if value == price_id:
                plan, _, interval = key.rpartition("_")
                return PlanTier(plan), BillingInterval(interval)
        return None
