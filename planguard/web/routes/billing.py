"""Billing API routes: subscription lifecycle, plans, usage and processor webhooks."""

from __future__ import annotations

import asyncio
from decimal import Decimal
from typing import Any

import structlog
from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError

from planguard.billing.gateway import BillingGateway
from planguard.billing.metrics import subscription_summary
from planguard.billing.plans import list_plans
from planguard.billing.proration import to_money
from planguard.billing.state_machine import SubscriptionStateMachine
from planguard.billing.usage import usage_report, usage_warnings
from planguard.config.settings import get_settings
from planguard.exceptions import WebhookProcessingError
from planguard.models.database import BillingHistoryEntry, PlanChangeEntry, _utc_now
from planguard.tenancy.context import TenantDescriptor
from planguard.types import BillingInterval, PlanTier, Role
from planguard.web.auth.rbac import get_billing_tenant, get_tenant, require_role
from planguard.web.dependencies import get_billing_gateway, get_state_machine

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/billing", tags=["billing"])

billing_managers = require_role(Role.OWNER, Role.ADMIN, billing=True)
owner_only = require_role(Role.OWNER, billing=True)


class SubscribeRequest(BaseModel):
    plan: PlanTier
    billing_interval: BillingInterval = BillingInterval.MONTH
    payment_method_id: str | None = None


class CheckoutRequest(BaseModel):
    plan: PlanTier
    billing_interval: BillingInterval = BillingInterval.MONTH


class ChangePlanRequest(BaseModel):
    plan: PlanTier
    billing_interval: BillingInterval | None = None


class CancelRequest(BaseModel):
    immediately: bool = False
    reason: str | None = Field(default=None, max_length=500)
    feedback: str | None = Field(default=None, max_length=2000)


def _invoice(entry: BillingHistoryEntry) -> dict[str, Any]:
    return {
        "invoice_id": entry.invoice_id,
        "date": entry.created_at.isoformat(),
        "amount": str(to_money(Decimal(entry.amount_cents) / 100)),
        "currency": entry.currency,
        "status": entry.status,
        "description": entry.description,
        "hosted_url": entry.invoice_url,
    }


def _plan_change(entry: PlanChangeEntry) -> dict[str, Any]:
    return {
        "from_plan": entry.from_plan,
        "to_plan": entry.to_plan,
        "reason": entry.reason,
        "changed_by": entry.changed_by,
        "changed_at": entry.created_at.isoformat(),
    }


@router.get("/subscription")
async def get_subscription(
    tenant: TenantDescriptor = Depends(get_billing_tenant),
    machine: SubscriptionStateMachine = Depends(get_state_machine),
) -> dict[str, Any]:
    sub = await machine.get_subscription(tenant.org_id)
    return {
        "success": True,
        "subscription": subscription_summary(sub, _utc_now()) if sub else None,
        "organization": {
            "plan": str(tenant.plan),
            "subscription_status": str(tenant.subscription_status),
            "is_trial_active": tenant.is_trial_active,
            "days_left_in_trial": tenant.days_left_in_trial,
            "limits": tenant.limits.as_dict(),
            "features": tenant.features.as_dict(),
        },
    }


@router.post("/subscribe")
async def subscribe(
    body: SubscribeRequest,
    tenant: TenantDescriptor = Depends(billing_managers),
    machine: SubscriptionStateMachine = Depends(get_state_machine),
) -> dict[str, Any]:
    result = await machine.subscribe(
        tenant.org_id,
        body.plan,
        body.billing_interval,
        payment_method_id=body.payment_method_id,
        initiated_by=tenant.user_id,
    )
    return {
        "success": True,
        "subscription": subscription_summary(result.subscription, _utc_now()),
        "client_secret": result.client_secret,
    }


@router.post("/create-checkout-session")
async def create_checkout_session(
    body: CheckoutRequest,
    tenant: TenantDescriptor = Depends(billing_managers),
    machine: SubscriptionStateMachine = Depends(get_state_machine),
) -> dict[str, Any]:
    session = await machine.create_checkout_session(tenant.org_id, body.plan, body.billing_interval)
    return {"success": True, "session_id": session.id, "url": session.url}


@router.put("/subscription/plan")
async def change_plan(
    body: ChangePlanRequest,
    tenant: TenantDescriptor = Depends(billing_managers),
    machine: SubscriptionStateMachine = Depends(get_state_machine),
) -> dict[str, Any]:
    result = await machine.change_plan(
        tenant.org_id, body.plan, body.billing_interval, initiated_by=tenant.user_id
    )
    return {
        "success": True,
        "subscription": subscription_summary(result.subscription, _utc_now()),
        "proration": result.proration.as_dict(),
    }


@router.post("/subscription/cancel")
async def cancel_subscription(
    body: CancelRequest,
    tenant: TenantDescriptor = Depends(owner_only),
    machine: SubscriptionStateMachine = Depends(get_state_machine),
) -> dict[str, Any]:
    sub = await machine.cancel(
        tenant.org_id,
        immediately=body.immediately,
        reason=body.reason,
        feedback=body.feedback,
    )
    message = (
        "Subscription canceled"
        if body.immediately
        else "Subscription will be canceled at the end of the billing period"
    )
    return {"success": True, "message": message, "subscription": subscription_summary(sub, _utc_now())}


@router.post("/subscription/reactivate")
async def reactivate_subscription(
    tenant: TenantDescriptor = Depends(billing_managers),
    machine: SubscriptionStateMachine = Depends(get_state_machine),
) -> dict[str, Any]:
    sub = await machine.reactivate(tenant.org_id)
    return {"success": True, "subscription": subscription_summary(sub, _utc_now())}


@router.post("/portal")
async def create_portal_session(
    tenant: TenantDescriptor = Depends(billing_managers),
    machine: SubscriptionStateMachine = Depends(get_state_machine),
) -> dict[str, Any]:
    session = await machine.create_portal_session(tenant.org_id)
    return {"success": True, "url": session.url}


@router.get("/plans")
async def get_plans() -> dict[str, Any]:
    return {"success": True, "plans": [plan.as_dict() for plan in list_plans()]}


@router.get("/usage")
async def get_usage(tenant: TenantDescriptor = Depends(get_tenant)) -> dict[str, Any]:
    settings = get_settings()
    report = usage_report(tenant.limits, tenant.usage)
    return {
        "success": True,
        "plan": str(tenant.plan),
        "usage": {
            line.resource: {
                "current": line.current,
                "limit": line.limit,
                "percentage": line.percentage,
            }
            for line in report
        },
        "warnings": usage_warnings(tenant.limits, tenant.usage, settings.usage_warning_threshold),
    }


@router.get("/invoices")
async def list_invoices(
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    tenant: TenantDescriptor = Depends(billing_managers),
    machine: SubscriptionStateMachine = Depends(get_state_machine),
) -> dict[str, Any]:
    entries = await machine.billing_history(tenant.org_id, limit=limit, offset=offset)
    return {"success": True, "invoices": [_invoice(e) for e in entries]}


@router.get("/plan-history")
async def list_plan_history(
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    tenant: TenantDescriptor = Depends(billing_managers),
    machine: SubscriptionStateMachine = Depends(get_state_machine),
) -> dict[str, Any]:
    entries = await machine.plan_history(tenant.org_id, limit=limit, offset=offset)
    return {"success": True, "plan_history": [_plan_change(e) for e in entries]}


@router.post("/webhook")
async def stripe_webhook(
    request: Request,
    gateway: BillingGateway = Depends(get_billing_gateway),
    machine: SubscriptionStateMachine = Depends(get_state_machine),
) -> dict[str, Any]:
    """Receive processor events.

    Signature failures answer 400 so the processor stops retrying a forged
    request; processing failures answer 503 so it redelivers.
    """
    payload = await request.body()
    event = gateway.construct_event(payload, request.headers.get("stripe-signature"))
    structlog.contextvars.bind_contextvars(event_id=event.id, event_type=event.type)

    settings = get_settings()
    try:
        async with asyncio.timeout(settings.webhook_timeout_seconds):
            outcome = await machine.apply_event(event)
    except TimeoutError as e:
        logger.error("webhook_timeout", timeout=settings.webhook_timeout_seconds)
        raise WebhookProcessingError(event_id=event.id) from e
    except SQLAlchemyError as e:
        logger.error("webhook_storage_failed", error=str(e))
        raise WebhookProcessingError(event_id=event.id) from e

    return {"received": True, "outcome": str(outcome)}
