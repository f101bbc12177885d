"""Derived subscription figures: recurring revenue, renewal and trial countdowns."""

from __future__ import annotations

import math
from datetime import datetime
from decimal import Decimal
from typing import Any

from planguard.billing.plans import get_plan, is_downgrade, is_upgrade, list_plans
from planguard.billing.proration import to_money
from planguard.models.database import Subscription
from planguard.types import BillingInterval, SubscriptionStatus


def mrr(subscription: Subscription) -> Decimal:
    """Monthly recurring revenue; yearly plans are spread over twelve months."""
    if subscription.status != SubscriptionStatus.ACTIVE:
        return to_money(0)
    if subscription.billing_interval == BillingInterval.YEAR:
        return to_money(subscription.amount / 12)
    return to_money(subscription.amount)


def arr(subscription: Subscription) -> Decimal:
    return to_money(mrr(subscription) * 12)


def will_renew(subscription: Subscription) -> bool:
    return subscription.status == SubscriptionStatus.ACTIVE and not subscription.cancel_at_period_end


def _days_until(moment: datetime | None, now: datetime) -> int:
    if moment is None:
        return 0
    return max(0, math.ceil((moment - now).total_seconds() / 86400))


def days_until_renewal(subscription: Subscription, now: datetime) -> int:
    if not will_renew(subscription):
        return 0
    return _days_until(subscription.current_period_end, now)


def is_in_trial(subscription: Subscription, now: datetime) -> bool:
    return (
        subscription.status == SubscriptionStatus.TRIALING
        and subscription.trial_end is not None
        and subscription.trial_end > now
    )


def days_left_in_trial(subscription: Subscription, now: datetime) -> int:
    if not is_in_trial(subscription, now):
        return 0
    return _days_until(subscription.trial_end, now)


def plan_options(subscription: Subscription) -> dict[str, list[str]]:
    """Plans this subscription may move to, grouped by direction."""
    current = get_plan(subscription.plan).id
    return {
        "upgrades": [str(p.id) for p in list_plans() if is_upgrade(current, p.id)],
        "downgrades": [str(p.id) for p in list_plans() if is_downgrade(current, p.id)],
    }


def subscription_summary(subscription: Subscription, now: datetime) -> dict[str, Any]:
    return {
        "id": subscription.id,
        "plan": subscription.plan,
        "status": subscription.status,
        "billing_interval": subscription.billing_interval,
        "amount": str(to_money(subscription.amount)),
        "currency": subscription.currency,
        "current_period_start": subscription.current_period_start.isoformat(),
        "current_period_end": subscription.current_period_end.isoformat(),
        "cancel_at_period_end": subscription.cancel_at_period_end,
        "canceled_at": subscription.canceled_at.isoformat() if subscription.canceled_at else None,
        "trial_end": subscription.trial_end.isoformat() if subscription.trial_end else None,
        "is_in_trial": is_in_trial(subscription, now),
        "days_left_in_trial": days_left_in_trial(subscription, now),
        "will_renew": will_renew(subscription),
        "days_until_renewal": days_until_renewal(subscription, now),
        "mrr": str(mrr(subscription)),
        "arr": str(arr(subscription)),
        **plan_options(subscription),
    }
