"""In-memory billing gateway for local development and tests."""

from __future__ import annotations

import hashlib
import hmac
import itertools
import time
from datetime import timedelta
from typing import Any

import structlog

from planguard.billing.gateway import (
    BillingGateway,
    ProcessorCustomer,
    ProcessorSession,
    ProcessorSubscription,
)
from planguard.billing.plans import PriceBook, get_plan
from planguard.billing.proration import to_money
from planguard.exceptions import ExternalServiceError
from planguard.models.database import _utc_now
from planguard.types import BillingInterval, PlanTier, SubscriptionStatus

logger = structlog.get_logger(__name__)

_PERIOD_DAYS = {BillingInterval.MONTH: 30, BillingInterval.YEAR: 365}


def sign_payload(payload: bytes | str, secret: str, timestamp: int | None = None) -> str:
    """Build a ``Stripe-Signature`` header value for ``payload``."""
    if isinstance(payload, bytes):
        payload = payload.decode("utf-8")
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed = f"{timestamp}.{payload}".encode()
    digest = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


class FakeBillingGateway(BillingGateway):
    """Processor stand-in that keeps subscriptions in a dict.

    ``fail_with`` makes the next call raise the given error once, which is how
    tests exercise the processor-failure paths. Every call is appended to
    ``calls``.
    """

    def __init__(
        self,
        *,
        webhook_secret: str = "whsec_test",
        price_book: PriceBook | None = None,
        trial_days: int = 14,
        tolerance: int = 300,
    ) -> None:
        super().__init__(
            webhook_secret=webhook_secret,
            price_book=price_book or PriceBook.default(),
            tolerance=tolerance,
        )
        self.trial_days = trial_days
        self.customers: dict[str, ProcessorCustomer] = {}
        self.subscriptions: dict[str, ProcessorSubscription] = {}
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.fail_with: Exception | None = None
        self._ids = itertools.count(1)

    def _record(self, operation: str, **kwargs: Any) -> None:
        self.calls.append((operation, kwargs))
        if self.fail_with is not None:
            error, self.fail_with = self.fail_with, None
            if not isinstance(error, ExternalServiceError):
                error = ExternalServiceError(operation, str(error))
            raise error

    def _next_id(self, prefix: str) -> str:
        return f"{prefix}_fake_{next(self._ids)}"

    async def create_customer(
        self, org_id: str, *, email: str | None = None, name: str | None = None
    ) -> ProcessorCustomer:
        self._record("create_customer", org_id=org_id)
        key = f"customer-{org_id}"
        if key not in self.customers:
            self.customers[key] = ProcessorCustomer(id=self._next_id("cus"), email=email)
        return self.customers[key]

    async def create_subscription(
        self,
        customer_id: str,
        price_id: str,
        *,
        org_id: str,
        plan: PlanTier,
        payment_method_id: str | None = None,
    ) -> ProcessorSubscription:
        self._record("create_subscription", customer_id=customer_id, price_id=price_id)
        known = self.price_book.lookup(price_id)
        interval = known[1] if known else BillingInterval.MONTH
        now = _utc_now().replace(microsecond=0)
        trial_end = now + timedelta(days=self.trial_days) if payment_method_id else None
        sub = ProcessorSubscription(
            id=self._next_id("sub"),
            customer_id=customer_id,
            status=SubscriptionStatus.TRIALING if payment_method_id else SubscriptionStatus.INCOMPLETE,
            price_id=price_id,
            plan=plan,
            interval=interval,
            amount_cents=_cents(plan, interval),
            current_period_start=now,
            current_period_end=now + timedelta(days=_PERIOD_DAYS[interval]),
            trial_start=now if trial_end else None,
            trial_end=trial_end,
            organization_id=org_id,
            client_secret=f"seti_fake_secret_{org_id}",
        )
        self.subscriptions[sub.id] = sub
        return sub

    async def update_subscription_price(
        self, subscription_id: str, price_id: str, *, plan: PlanTier
    ) -> ProcessorSubscription:
        self._record("update_subscription_price", subscription_id=subscription_id, price_id=price_id)
        known = self.price_book.lookup(price_id)
        interval = known[1] if known else BillingInterval.MONTH
        sub = self._get(subscription_id).model_copy(
            update={
                "price_id": price_id,
                "plan": plan,
                "interval": interval,
                "amount_cents": _cents(plan, interval),
            }
        )
        self.subscriptions[subscription_id] = sub
        return sub

    async def cancel_now(self, subscription_id: str) -> ProcessorSubscription:
        self._record("cancel_now", subscription_id=subscription_id)
        sub = self._get(subscription_id).model_copy(
            update={"status": SubscriptionStatus.CANCELED, "canceled_at": _utc_now()}
        )
        self.subscriptions[subscription_id] = sub
        return sub

    async def set_cancel_at_period_end(
        self, subscription_id: str, cancel: bool
    ) -> ProcessorSubscription:
        self._record("set_cancel_at_period_end", subscription_id=subscription_id, cancel=cancel)
        sub = self._get(subscription_id).model_copy(update={"cancel_at_period_end": cancel})
        self.subscriptions[subscription_id] = sub
        return sub

    async def create_checkout_session(
        self,
        customer_id: str,
        price_id: str,
        *,
        org_id: str,
        plan: PlanTier,
        success_url: str,
        cancel_url: str,
    ) -> ProcessorSession:
        self._record("create_checkout_session", customer_id=customer_id, price_id=price_id)
        session_id = self._next_id("cs")
        return ProcessorSession(id=session_id, url=f"https://checkout.example.test/{session_id}")

    async def create_portal_session(self, customer_id: str, return_url: str) -> ProcessorSession:
        self._record("create_portal_session", customer_id=customer_id)
        session_id = self._next_id("bps")
        return ProcessorSession(id=session_id, url=f"https://billing.example.test/{session_id}")

    def _get(self, subscription_id: str) -> ProcessorSubscription:
        try:
            return self.subscriptions[subscription_id]
        except KeyError as e:
            raise ExternalServiceError("retrieve_subscription", "No such subscription") from e


def _cents(plan: PlanTier, interval: BillingInterval) -> int:
    return int(to_money(get_plan(plan).price_for(interval)) * 100)
