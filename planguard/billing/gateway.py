"""Payment processor adapter interface, wire models and webhook parsing.

Processor objects are parsed into small pydantic models at this boundary so
the rest of the code never touches raw processor payloads.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

import stripe
import structlog
from pydantic import BaseModel, Field

from planguard.billing.plans import PriceBook
from planguard.exceptions import WebhookVerificationFailed
from planguard.types import BillingInterval, PlanTier, SubscriptionStatus

logger = structlog.get_logger(__name__)


def from_timestamp(value: int | float | None) -> datetime | None:
    """Convert a processor epoch timestamp to naive UTC."""
    if value is None:
        return None
    return datetime.fromtimestamp(value, UTC).replace(tzinfo=None)


class ProcessorCustomer(BaseModel):
    id: str
    email: str | None = None


class ProcessorSession(BaseModel):
    id: str
    url: str


class ProcessorSubscription(BaseModel):
    """Snapshot of a processor subscription as seen at one point in time."""

    id: str
    customer_id: str
    status: SubscriptionStatus
    price_id: str | None = None
    plan: PlanTier | None = None
    interval: BillingInterval = BillingInterval.MONTH
    amount_cents: int = 0
    currency: str = "usd"
    current_period_start: datetime
    current_period_end: datetime
    cancel_at_period_end: bool = False
    canceled_at: datetime | None = None
    trial_start: datetime | None = None
    trial_end: datetime | None = None
    organization_id: str | None = None
    latest_invoice_id: str | None = None
    client_secret: str | None = None


class InvoiceInfo(BaseModel):
    id: str
    subscription_id: str | None = None
    customer_id: str | None = None
    amount_paid_cents: int = 0
    amount_due_cents: int = 0
    currency: str = "usd"
    hosted_invoice_url: str | None = None
    attempt_count: int = 0
    description: str = ""


class WebhookEvent(BaseModel):
    """Verified processor event; ``data`` is the raw event object."""

    id: str
    type: str
    created: datetime
    data: dict[str, Any] = Field(default_factory=dict)

    @property
    def subscription_ref(self) -> str | None:
        if self.type.startswith("customer.subscription."):
            return self.data.get("id")
        return _invoice_subscription_id(self.data)


def _first_item(payload: Mapping[str, Any]) -> Mapping[str, Any]:
    items = (payload.get("items") or {}).get("data") or []
    return items[0] if items else {}


def _invoice_subscription_id(payload: Mapping[str, Any]) -> str | None:
    sub = payload.get("subscription")
    if isinstance(sub, Mapping):
        return sub.get("id")
    if sub:
        return sub
    # Newer API versions nest the subscription under the invoice parent
    parent = payload.get("parent") or {}
    details = parent.get("subscription_details") or {}
    return details.get("subscription")


def _client_secret(payload: Mapping[str, Any]) -> str | None:
    invoice = payload.get("latest_invoice")
    if isinstance(invoice, Mapping):
        secret = (invoice.get("confirmation_secret") or {}).get("client_secret")
        if secret:
            return secret
        intent = invoice.get("payment_intent")
        if isinstance(intent, Mapping) and intent.get("client_secret"):
            return intent["client_secret"]
    setup = payload.get("pending_setup_intent")
    if isinstance(setup, Mapping):
        return setup.get("client_secret")
    return None


def parse_subscription(payload: Mapping[str, Any], price_book: PriceBook) -> ProcessorSubscription:
    """Normalize a processor subscription object.

    Period bounds are read from the subscription item when present (current
    API versions), falling back to the subscription itself.
    """
    item = _first_item(payload)
    price = item.get("price") or {}
    price_id = price.get("id")
    metadata = payload.get("metadata") or {}

    plan: PlanTier | None = None
    interval = BillingInterval((price.get("recurring") or {}).get("interval") or "month")
    known = price_book.lookup(price_id)
    if known is not None:
        plan, interval = known
    elif metadata.get("plan") in {str(p) for p in PlanTier}:
        plan = PlanTier(metadata["plan"])

    period_start = item.get("current_period_start") or payload.get("current_period_start")
    period_end = item.get("current_period_end") or payload.get("current_period_end")
    invoice = payload.get("latest_invoice")
    return ProcessorSubscription(
        id=payload["id"],
        customer_id=_ref(payload.get("customer")),
        status=SubscriptionStatus(payload["status"]),
        price_id=price_id,
        plan=plan,
        interval=interval,
        amount_cents=(price.get("unit_amount") or 0) * (item.get("quantity") or 1),
        currency=price.get("currency") or payload.get("currency") or "usd",
        current_period_start=from_timestamp(period_start),
        current_period_end=from_timestamp(period_end),
        cancel_at_period_end=bool(payload.get("cancel_at_period_end")),
        canceled_at=from_timestamp(payload.get("canceled_at")),
        trial_start=from_timestamp(payload.get("trial_start")),
        trial_end=from_timestamp(payload.get("trial_end")),
        organization_id=metadata.get("organization_id"),
        latest_invoice_id=_ref(invoice) if invoice else None,
        client_secret=_client_secret(payload),
    )


def parse_invoice(payload: Mapping[str, Any]) -> InvoiceInfo:
    lines = (payload.get("lines") or {}).get("data") or []
    description = payload.get("description") or (lines[0].get("description") if lines else "")
    return InvoiceInfo(
        id=payload["id"],
        subscription_id=_invoice_subscription_id(payload),
        customer_id=_ref(payload.get("customer")) if payload.get("customer") else None,
        amount_paid_cents=payload.get("amount_paid") or 0,
        amount_due_cents=payload.get("amount_due") or 0,
        currency=payload.get("currency") or "usd",
        hosted_invoice_url=payload.get("hosted_invoice_url"),
        attempt_count=payload.get("attempt_count") or 0,
        description=description or "",
    )


def parse_event(payload: Mapping[str, Any]) -> WebhookEvent:
    return WebhookEvent(
        id=payload["id"],
        type=payload["type"],
        created=from_timestamp(payload["created"]),
        data=dict((payload.get("data") or {}).get("object") or {}),
    )


def _ref(value: Any) -> str:
    """Processor references arrive either as ids or as expanded objects."""
    if isinstance(value, Mapping):
        return value["id"]
    return value


class BillingGateway(ABC):
    """Adapter to the payment processor.

    Implementations raise ``ExternalServiceError`` for any processor failure
    or timeout and never retry internally.
    """

    def __init__(self, *, webhook_secret: str, price_book: PriceBook, tolerance: int = 300) -> None:
        self.price_book = price_book
        self._webhook_secret = webhook_secret
        self._tolerance = tolerance

    @abstractmethod
    async def create_customer(
        self, org_id: str, *, email: str | None = None, name: str | None = None
    ) -> ProcessorCustomer: ...

    @abstractmethod
    async def create_subscription(
        self,
        customer_id: str,
        price_id: str,
        *,
        org_id: str,
        plan: PlanTier,
        payment_method_id: str | None = None,
    ) -> ProcessorSubscription: ...

    @abstractmethod
    async def update_subscription_price(
        self, subscription_id: str, price_id: str, *, plan: PlanTier
    ) -> ProcessorSubscription: ...

    @abstractmethod
    async def cancel_now(self, subscription_id: str) -> ProcessorSubscription: ...

    @abstractmethod
    async def set_cancel_at_period_end(
        self, subscription_id: str, cancel: bool
    ) -> ProcessorSubscription: ...

    @abstractmethod
    async def create_checkout_session(
        self,
        customer_id: str,
        price_id: str,
        *,
        org_id: str,
        plan: PlanTier,
        success_url: str,
        cancel_url: str,
    ) -> ProcessorSession: ...

    @abstractmethod
    async def create_portal_session(self, customer_id: str, return_url: str) -> ProcessorSession: ...

    def construct_event(self, payload: bytes, signature: str | None) -> WebhookEvent:
        """Verify the ``Stripe-Signature`` header and parse the event body.

        Raises:
            WebhookVerificationFailed: missing or invalid signature, or a body
                that is not a processor event.
        """
        if not signature:
            raise WebhookVerificationFailed("Missing Stripe-Signature header")
        try:
            body = payload.decode("utf-8")
            stripe.WebhookSignature.verify_header(
                body, signature, self._webhook_secret, self._tolerance
            )
            return parse_event(json.loads(body))
        except stripe.SignatureVerificationError as e:
            logger.warning("webhook_signature_invalid", error=str(e))
            raise WebhookVerificationFailed() from e
        except (UnicodeDecodeError, ValueError, KeyError, TypeError) as e:
            logger.warning("webhook_payload_invalid", error=str(e))
            raise WebhookVerificationFailed("Malformed webhook payload") from e
