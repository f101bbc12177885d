"""Shared test fixtures."""

from __future__ import annotations

import os

os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("BILLING_PROVIDER", "fake")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test")

from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta
from typing import Any

import pytest
from sqlalchemy.ext.asyncio import create_async_engine
from sqlmodel import SQLModel

from planguard.billing.fake_gateway import FakeBillingGateway
from planguard.billing.plans import PriceBook, get_plan
from planguard.billing.state_machine import SubscriptionStateMachine
from planguard.models.database import Organization, _utc_now
from planguard.storage.database import session_scope
from planguard.storage.repositories.organizations import OrganizationRepository
from planguard.types import Role

WEBHOOK_SECRET = "whsec_test"


@pytest.fixture()
async def async_engine():
    """In-memory SQLite engine with all tables created."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture()
def gateway() -> FakeBillingGateway:
    return FakeBillingGateway(webhook_secret=WEBHOOK_SECRET, price_book=PriceBook.default())


@pytest.fixture()
def machine(async_engine, gateway) -> SubscriptionStateMachine:
    return SubscriptionStateMachine(async_engine, gateway, frontend_url="http://app.test")


@pytest.fixture()
def make_org(async_engine) -> Callable[..., Awaitable[Organization]]:
    """Create an organization owned by ``owner_id``, optionally with extra members."""

    async def _make(
        owner_id: str = "user-owner",
        *,
        slug: str | None = None,
        plan: str = "starter",
        members: dict[str, Role] | None = None,
        trial_days: int = 14,
        now: datetime | None = None,
        **fields: Any,
    ) -> Organization:
        async with session_scope(async_engine) as session:
            repo = OrganizationRepository(session)
            org = await repo.create(
                "Acme",
                slug or f"acme-{owner_id}",
                owner_id,
                trial_days=trial_days,
                billing_email="billing@acme.test",
                now=now,
            )
            for user_id, role in (members or {}).items():
                await repo.add_member(org.id, user_id, role)
            if plan != "starter" or fields:
                repo.mirror(org, plan=plan, **fields)
                await session.commit()
            return org

    return _make


def _epoch(moment: datetime) -> int:
    return int((moment - datetime(1970, 1, 1)).total_seconds())


@pytest.fixture()
def subscription_payload() -> Callable[..., dict[str, Any]]:
    """Build a processor subscription object as delivered in webhook events."""

    def _build(
        sub_id: str = "sub_123",
        *,
        customer: str = "cus_123",
        status: str = "active",
        plan: str = "pro",
        interval: str = "month",
        period_start: datetime | None = None,
        period_days: int = 30,
        org_id: str | None = None,
        cancel_at_period_end: bool = False,
        trial_end: datetime | None = None,
    ) -> dict[str, Any]:
        start = (period_start or _utc_now()).replace(microsecond=0)
        label = "monthly" if interval == "month" else "yearly"
        metadata = {"plan": plan}
        if org_id:
            metadata["organization_id"] = org_id
        return {
            "id": sub_id,
            "object": "subscription",
            "customer": customer,
            "status": status,
            "cancel_at_period_end": cancel_at_period_end,
            "canceled_at": None,
            "trial_start": _epoch(start) if trial_end else None,
            "trial_end": _epoch(trial_end) if trial_end else None,
            "metadata": metadata,
            "items": {
                "data": [
                    {
                        "id": f"si_{sub_id}",
                        "quantity": 1,
                        "current_period_start": _epoch(start),
                        "current_period_end": _epoch(start + timedelta(days=period_days)),
                        "price": {
                            "id": f"price_{plan}_{label}",
                            "unit_amount": int(get_plan(plan).price_for(interval) * 100),
                            "currency": "usd",
                            "recurring": {"interval": interval},
                        },
                    }
                ]
            },
        }

    return _build


@pytest.fixture()
def invoice_payload() -> Callable[..., dict[str, Any]]:
    def _build(
        invoice_id: str = "in_123",
        *,
        subscription: str = "sub_123",
        amount_paid: int = 3900,
        amount_due: int = 3900,
        attempt_count: int = 1,
    ) -> dict[str, Any]:
        return {
            "id": invoice_id,
            "object": "invoice",
            "customer": "cus_123",
            "amount_paid": amount_paid,
            "amount_due": amount_due,
            "currency": "usd",
            "attempt_count": attempt_count,
            "hosted_invoice_url": f"https://invoice.example.test/{invoice_id}",
            "lines": {"data": [{"description": "1 × Pro (at $39.00 / month)"}]},
            "parent": {"subscription_details": {"subscription": subscription}},
        }

    return _build


@pytest.fixture()
def event_payload() -> Callable[..., dict[str, Any]]:
    def _build(
        event_type: str,
        obj: dict[str, Any],
        *,
        event_id: str = "evt_1",
        created: datetime | None = None,
    ) -> dict[str, Any]:
        return {
            "id": event_id,
            "object": "event",
            "type": event_type,
            "created": _epoch(created or _utc_now()),
            "data": {"object": obj},
        }

    return _build
