"""Stripe implementation of the billing gateway."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable
from typing import Any, TypeVar

import stripe
import structlog

from planguard.billing.gateway import (
    BillingGateway,
    ProcessorCustomer,
    ProcessorSession,
    ProcessorSubscription,
    parse_subscription,
)
from planguard.billing.plans import PriceBook
from planguard.exceptions import ExternalServiceError
from planguard.types import PlanTier

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class StripeBillingGateway(BillingGateway):
    """Talks to Stripe through the async ``StripeClient``.

    Every call is bounded by ``timeout`` and network retries are disabled:
    a failed call surfaces to the caller instead of being replayed.
    """

    def __init__(
        self,
        api_key: str,
        *,
        webhook_secret: str,
        price_book: PriceBook,
        timeout: float = 5.0,
        trial_days: int = 14,
        tolerance: int = 300,
        client: stripe.StripeClient | None = None,
    ) -> None:
        super().__init__(webhook_secret=webhook_secret, price_book=price_book, tolerance=tolerance)
        self._timeout = timeout
        self._trial_days = trial_days
        self._client = client or stripe.StripeClient(
            api_key,
            http_client=stripe.HTTPXClient(timeout=timeout),
            max_network_retries=0,
        )

    async def _call(self, operation: str, call: Awaitable[T]) -> T:
        try:
            async with asyncio.timeout(self._timeout):
                return await call
        except TimeoutError as e:
            logger.error("processor_timeout", operation=operation, timeout=self._timeout)
            raise ExternalServiceError(operation, "timed out") from e
        except stripe.StripeError as e:
            logger.error(
                "processor_error",
                operation=operation,
                error=str(e.user_message or e),
                http_status=e.http_status,
            )
            raise ExternalServiceError(
                operation, str(e.user_message or e), processor_status=e.http_status
            ) from e

    def _subscription(self, obj: Any) -> ProcessorSubscription:
        return parse_subscription(obj.to_dict(), self.price_book)

    async def create_customer(
        self, org_id: str, *, email: str | None = None, name: str | None = None
    ) -> ProcessorCustomer:
        params: dict[str, Any] = {"metadata": {"organization_id": org_id}}
        if email:
            params["email"] = email
        if name:
            params["name"] = name
        customer = await self._call(
            "create_customer",
            self._client.customers.create_async(
                params, options={"idempotency_key": f"customer-{org_id}"}
            ),
        )
        logger.info("processor_customer_created", org_id=org_id, customer_id=customer.id)
        return ProcessorCustomer(id=customer.id, email=email)

    async def create_subscription(
        self,
        customer_id: str,
        price_id: str,
        *,
        org_id: str,
        plan: PlanTier,
        payment_method_id: str | None = None,
    ) -> ProcessorSubscription:
        params: dict[str, Any] = {
            "customer": customer_id,
            "items": [{"price": price_id}],
            "trial_period_days": self._trial_days,
            "payment_behavior": "default_incomplete",
            "payment_settings": {"save_default_payment_method": "on_subscription"},
            "expand": ["latest_invoice.confirmation_secret", "pending_setup_intent"],
            "metadata": {"organization_id": org_id, "plan": str(plan)},
        }
        if payment_method_id:
            await self._call(
                "attach_payment_method",
                self._client.payment_methods.attach_async(
                    payment_method_id, {"customer": customer_id}
                ),
            )
            params["default_payment_method"] = payment_method_id
        sub = await self._call(
            "create_subscription", self._client.subscriptions.create_async(params)
        )
        logger.info(
            "processor_subscription_created",
            org_id=org_id,
            subscription_id=sub.id,
            status=sub.status,
        )
        return self._subscription(sub)

    async def update_subscription_price(
        self, subscription_id: str, price_id: str, *, plan: PlanTier
    ) -> ProcessorSubscription:
        current = await self._call(
            "retrieve_subscription", self._client.subscriptions.retrieve_async(subscription_id)
        )
        item_id = current["items"]["data"][0]["id"]
        sub = await self._call(
            "update_subscription",
            self._client.subscriptions.update_async(
                subscription_id,
                {
                    "items": [{"id": item_id, "price": price_id}],
                    "proration_behavior": "create_prorations",
                    "metadata": {"plan": str(plan)},
                },
            ),
        )
        return self._subscription(sub)

    async def cancel_now(self, subscription_id: str) -> ProcessorSubscription:
        sub = await self._call(
            "cancel_subscription", self._client.subscriptions.cancel_async(subscription_id)
        )
        return self._subscription(sub)

    async def set_cancel_at_period_end(
        self, subscription_id: str, cancel: bool
    ) -> ProcessorSubscription:
        sub = await self._call(
            "update_subscription",
            self._client.subscriptions.update_async(
                subscription_id, {"cancel_at_period_end": cancel}
            ),
        )
        return self._subscription(sub)

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
        session = await self._call(
            "create_checkout_session",
            self._client.checkout.sessions.create_async(
                {
                    "customer": customer_id,
                    "mode": "subscription",
                    "line_items": [{"price": price_id, "quantity": 1}],
                    "success_url": success_url,
                    "cancel_url": cancel_url,
                    "subscription_data": {
                        "trial_period_days": self._trial_days,
                        "metadata": {"organization_id": org_id, "plan": str(plan)},
                    },
                    "metadata": {"organization_id": org_id, "plan": str(plan)},
                }
            ),
        )
        return ProcessorSession(id=session.id, url=session.url)

    async def create_portal_session(self, customer_id: str, return_url: str) -> ProcessorSession:
        session = await self._call(
            "create_portal_session",
            self._client.billing_portal.sessions.create_async(
                {"customer": customer_id, "return_url": return_url}
            ),
        )
        return ProcessorSession(id=session.id, url=session.url)
