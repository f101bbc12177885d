"""Unit tests for the Stripe gateway against a mocked StripeClient."""

from __future__ import annotations

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
import stripe

from planguard.billing.plans import PriceBook
from planguard.billing.stripe_gateway import StripeBillingGateway
from planguard.exceptions import ExternalServiceError
from planguard.types import PlanTier


def _stripe_object(payload: dict) -> MagicMock:
    obj = MagicMock()
    obj.id = payload["id"]
    obj.status = payload["status"]
    obj.to_dict.return_value = payload
    return obj


@pytest.fixture()
def client() -> MagicMock:
    return MagicMock()


@pytest.fixture()
def stripe_gateway(client) -> StripeBillingGateway:
    return StripeBillingGateway(
        "sk_test_123",
        webhook_secret="whsec_test",
        price_book=PriceBook.default(),
        timeout=0.05,
        trial_days=7,
        client=client,
    )


@pytest.mark.unit
class TestStripeBillingGateway:
    async def test_create_customer_is_idempotent_per_org(self, client, stripe_gateway) -> None:
        client.customers.create_async = AsyncMock(return_value=SimpleNamespace(id="cus_42"))
        customer = await stripe_gateway.create_customer("org-1", email="a@b.test", name="Acme")

        assert customer.id == "cus_42"
        params = client.customers.create_async.call_args.args[0]
        assert params["metadata"] == {"organization_id": "org-1"}
        assert params["email"] == "a@b.test"
        options = client.customers.create_async.call_args.kwargs["options"]
        assert options == {"idempotency_key": "customer-org-1"}

    async def test_create_subscription_with_payment_method(
        self, client, stripe_gateway, subscription_payload
    ) -> None:
        client.payment_methods.attach_async = AsyncMock()
        client.subscriptions.create_async = AsyncMock(
            return_value=_stripe_object(subscription_payload(status="trialing"))
        )

        sub = await stripe_gateway.create_subscription(
            "cus_123", "price_pro_monthly", org_id="org-1", plan=PlanTier.PRO, payment_method_id="pm_1"
        )

        assert sub.status == "trialing"
        assert sub.plan == PlanTier.PRO
        client.payment_methods.attach_async.assert_awaited_once_with("pm_1", {"customer": "cus_123"})
        params = client.subscriptions.create_async.call_args.args[0]
        assert params["trial_period_days"] == 7
        assert params["payment_behavior"] == "default_incomplete"
        assert params["default_payment_method"] == "pm_1"
        assert params["metadata"] == {"organization_id": "org-1", "plan": "pro"}

    async def test_update_price_creates_prorations(
        self, client, stripe_gateway, subscription_payload
    ) -> None:
        current = subscription_payload()
        client.subscriptions.retrieve_async = AsyncMock(return_value=current)
        client.subscriptions.update_async = AsyncMock(
            return_value=_stripe_object(subscription_payload(plan="team"))
        )

        sub = await stripe_gateway.update_subscription_price(
            "sub_123", "price_team_monthly", plan=PlanTier.TEAM
        )

        assert sub.plan == PlanTier.TEAM
        sub_id, params = client.subscriptions.update_async.call_args.args
        assert sub_id == "sub_123"
        assert params["items"] == [{"id": "si_sub_123", "price": "price_team_monthly"}]
        assert params["proration_behavior"] == "create_prorations"

    async def test_processor_error_is_wrapped(self, client, stripe_gateway) -> None:
        client.subscriptions.cancel_async = AsyncMock(
            side_effect=stripe.InvalidRequestError("No such subscription", "id", http_status=404)
        )
        with pytest.raises(ExternalServiceError) as exc_info:
            await stripe_gateway.cancel_now("sub_missing")
        err = exc_info.value
        assert err.operation == "cancel_subscription"
        assert err.details["processor_status"] == 404
        assert err.status_code == 502

    async def test_timeout_is_wrapped(self, client, stripe_gateway) -> None:
        async def _hang(*args, **kwargs):
            await asyncio.sleep(1)

        client.billing_portal.sessions.create_async = _hang
        with pytest.raises(ExternalServiceError, match="timed out"):
            await stripe_gateway.create_portal_session("cus_1", "http://app.test/billing")

    async def test_checkout_session(self, client, stripe_gateway) -> None:
        client.checkout.sessions.create_async = AsyncMock(
            return_value=SimpleNamespace(id="cs_1", url="https://checkout.stripe.test/cs_1")
        )
        session = await stripe_gateway.create_checkout_session(
            "cus_1",
            "price_pro_yearly",
            org_id="org-1",
            plan=PlanTier.PRO,
            success_url="http://app.test/ok",
            cancel_url="http://app.test/billing",
        )
        assert session.url == "https://checkout.stripe.test/cs_1"
        params = client.checkout.sessions.create_async.call_args.args[0]
        assert params["mode"] == "subscription"
        assert params["subscription_data"]["metadata"]["organization_id"] == "org-1"
