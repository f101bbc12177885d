"""Per-request principal and tenant descriptors."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from planguard.billing.plans import PlanFeatures, PlanLimits
from planguard.types import PlanTier, Role, SubscriptionStatus


@dataclass(frozen=True, slots=True)
class Principal:
    """Authenticated caller, established before tenant resolution."""

    user_id: str
    email: str | None = None


@dataclass(frozen=True, slots=True)
class TenantDescriptor:
    """Immutable tenant context carried through each request."""

    org_id: str
    user_id: str
    role: Role
    plan: PlanTier
    limits: PlanLimits
    features: PlanFeatures
    usage: dict[str, float] = field(default_factory=dict)
    permissions: dict[str, bool] = field(default_factory=dict)
    subscription_status: SubscriptionStatus = SubscriptionStatus.TRIALING
    is_trial_active: bool = False
    days_left_in_trial: int = 0

    @property
    def is_active(self) -> bool:
        if self.subscription_status == SubscriptionStatus.ACTIVE:
            return True
        return self.subscription_status == SubscriptionStatus.TRIALING and self.is_trial_active

    def as_dict(self) -> dict[str, Any]:
        return {
            "org_id": self.org_id,
            "user_id": self.user_id,
            "role": str(self.role),
            "plan": str(self.plan),
            "limits": self.limits.as_dict(),
            "features": self.features.as_dict(),
            "usage": dict(self.usage),
            "permissions": dict(self.permissions),
            "subscription_status": str(self.subscription_status),
            "is_trial_active": self.is_trial_active,
            "days_left_in_trial": self.days_left_in_trial,
        }
