"""SQLModel database table models."""

from __future__ import annotations

import math
import uuid
from datetime import UTC, datetime
from decimal import Decimal

from sqlalchemy import DateTime, UniqueConstraint
from sqlmodel import Field, SQLModel

from planguard.types import LIVE_STATUSES, SubscriptionStatus


def _utc_now() -> datetime:
    """Return current UTC time as naive datetime for TIMESTAMP WITHOUT TIME ZONE columns."""
    return datetime.now(UTC).replace(tzinfo=None)


# Every timestamp is stored as naive UTC (TIMESTAMP WITHOUT TIME ZONE)
NaiveTimestamp = DateTime(timezone=False)


def _new_uuid() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Tenancy
# ---------------------------------------------------------------------------


class Organization(SQLModel, table=True):
    __tablename__ = "organizations"

    id: str = Field(default_factory=_new_uuid, primary_key=True)
    name: str
    slug: str = Field(index=True, unique=True)
    owner_id: str = Field(index=True)
    plan: str = Field(default="starter")

    # Billing mirror, authoritative copy lives in ``subscriptions``
    customer_id: str | None = Field(default=None, index=True)
    subscription_id: str | None = Field(default=None, index=True)
    billing_email: str | None = None
    subscription_status: str = Field(default=SubscriptionStatus.TRIALING)

    trial_start: datetime | None = Field(default=None, sa_type=NaiveTimestamp)
    trial_end: datetime | None = Field(default=None, sa_type=NaiveTimestamp)
    is_trial_active: bool = Field(default=True)

    current_users: int = Field(default=1)
    current_projects: int = Field(default=0)
    current_clients: int = Field(default=0)
    current_storage_gb: float = Field(default=0.0)

    deactivated_at: datetime | None = Field(default=None, sa_type=NaiveTimestamp)
    created_at: datetime = Field(default_factory=_utc_now, sa_type=NaiveTimestamp)
    updated_at: datetime = Field(default_factory=_utc_now, sa_type=NaiveTimestamp)

    @property
    def is_active(self) -> bool:
        if self.subscription_status == SubscriptionStatus.ACTIVE:
            return True
        return self.subscription_status == SubscriptionStatus.TRIALING and self.is_trial_active

    def trial_has_lapsed(self, now: datetime) -> bool:
        return self.is_trial_active and self.trial_end is not None and now > self.trial_end

    def days_left_in_trial(self, now: datetime) -> int:
        if not self.is_trial_active or self.trial_end is None:
            return 0
        remaining = (self.trial_end - now).total_seconds() / 86400
        return max(0, math.ceil(remaining))

    def usage(self) -> dict[str, float]:
        return {
            "users": self.current_users,
            "projects": self.current_projects,
            "clients": self.current_clients,
            "storage": self.current_storage_gb,
        }


class OrganizationMembership(SQLModel, table=True):
    __tablename__ = "organization_memberships"
    __table_args__ = (UniqueConstraint("org_id", "user_id", name="uq_membership_org_user"),)

    id: str = Field(default_factory=_new_uuid, primary_key=True)
    org_id: str = Field(foreign_key="organizations.id", index=True)
    user_id: str = Field(index=True)
    role: str = Field(default="member")  # owner | admin | member | viewer

    can_manage_projects: bool = Field(default=True)
    can_manage_team: bool = Field(default=False)
    can_manage_billing: bool = Field(default=False)
    can_view_reports: bool = Field(default=True)
    can_export_data: bool = Field(default=False)

    joined_at: datetime = Field(default_factory=_utc_now, sa_type=NaiveTimestamp)

    def permissions(self) -> dict[str, bool]:
        return {
            "manage_projects": self.can_manage_projects,
            "manage_team": self.can_manage_team,
            "manage_billing": self.can_manage_billing,
            "view_reports": self.can_view_reports,
            "export_data": self.can_export_data,
        }


# ---------------------------------------------------------------------------
# Billing
# ---------------------------------------------------------------------------


class Subscription(SQLModel, table=True):
    __tablename__ = "subscriptions"

    id: str = Field(default_factory=_new_uuid, primary_key=True)
    org_id: str = Field(foreign_key="organizations.id", unique=True, index=True)

    customer_id: str = Field(index=True)
    external_id: str = Field(unique=True, index=True)
    price_id: str | None = None

    plan: str
    status: str = Field(index=True)
    billing_interval: str = Field(default="month")
    amount_cents: int = Field(default=0)
    currency: str = Field(default="usd")

    current_period_start: datetime = Field(sa_type=NaiveTimestamp)
    current_period_end: datetime = Field(sa_type=NaiveTimestamp)
    cancel_at_period_end: bool = Field(default=False)
    canceled_at: datetime | None = Field(default=None, sa_type=NaiveTimestamp)
    trial_start: datetime | None = Field(default=None, sa_type=NaiveTimestamp)
    trial_end: datetime | None = Field(default=None, sa_type=NaiveTimestamp)

    latest_invoice_id: str | None = None
    payment_failed_attempts: int = Field(default=0)
    last_payment_failed_at: datetime | None = Field(default=None, sa_type=NaiveTimestamp)
    trial_ending_notified_at: datetime | None = Field(default=None, sa_type=NaiveTimestamp)

    cancellation_reason: str | None = None
    cancellation_feedback: str | None = None

    # Embedded timestamp of the newest processor snapshot applied
    last_event_at: datetime | None = Field(default=None, sa_type=NaiveTimestamp)
    created_at: datetime = Field(default_factory=_utc_now, sa_type=NaiveTimestamp)
    updated_at: datetime = Field(default_factory=_utc_now, sa_type=NaiveTimestamp)

    @property
    def amount(self) -> Decimal:
        return Decimal(self.amount_cents) / 100

    @property
    def is_live(self) -> bool:
        return self.status in LIVE_STATUSES


class BillingHistoryEntry(SQLModel, table=True):
    __tablename__ = "billing_history"

    id: int | None = Field(default=None, primary_key=True)
    org_id: str = Field(index=True)
    subscription_id: str = Field(foreign_key="subscriptions.id", index=True)
    invoice_id: str = Field(index=True)
    amount_cents: int
    currency: str = Field(default="usd")
    status: str  # paid | failed
    description: str = ""
    invoice_url: str | None = None
    created_at: datetime = Field(default_factory=_utc_now, sa_type=NaiveTimestamp)


class PlanChangeEntry(SQLModel, table=True):
    __tablename__ = "plan_changes"

    id: int | None = Field(default=None, primary_key=True)
    org_id: str = Field(index=True)
    subscription_id: str = Field(foreign_key="subscriptions.id", index=True)
    from_plan: str | None = None
    to_plan: str
    reason: str = ""
    changed_by: str | None = None
    proration_net_cents: int | None = None
    created_at: datetime = Field(default_factory=_utc_now, sa_type=NaiveTimestamp)


class WebhookEventRecord(SQLModel, table=True):
    __tablename__ = "webhook_events"

    id: int | None = Field(default=None, primary_key=True)
    event_id: str = Field(unique=True, index=True)
    event_type: str
    external_subscription_id: str | None = Field(default=None, index=True)
    event_created_at: datetime = Field(sa_type=NaiveTimestamp)
    processed: bool = Field(default=True)
    outcome: str
    processed_at: datetime = Field(default_factory=_utc_now, sa_type=NaiveTimestamp)
