"""FastAPI dependency providers.

Each collaborator is built from settings on first use; tests replace them
through ``app.dependency_overrides``.
"""

from __future__ import annotations

from functools import lru_cache

import structlog
from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncEngine

from planguard.billing.fake_gateway import FakeBillingGateway
from planguard.billing.gateway import BillingGateway
from planguard.billing.plans import PriceBook
from planguard.billing.state_machine import SubscriptionStateMachine
from planguard.billing.stripe_gateway import StripeBillingGateway
from planguard.billing.usage import UsageTracker
from planguard.config.settings import get_settings
from planguard.storage.database import get_engine
from planguard.tenancy.resolver import TenantResolver
from planguard.web.auth.session import TokenAuth

logger = structlog.get_logger(__name__)


def get_db_engine() -> AsyncEngine:
    return get_engine()


@lru_cache
def get_billing_gateway() -> BillingGateway:
    """Create the configured payment processor gateway."""
    settings = get_settings()
    price_book = PriceBook(settings.stripe_price_ids)
    if settings.billing_provider == "stripe":
        logger.info("billing_gateway_configured", provider="stripe")
        return StripeBillingGateway(
            settings.stripe_secret_key or "",
            webhook_secret=settings.stripe_webhook_secret,
            price_book=price_book,
            timeout=settings.processor_timeout_seconds,
            trial_days=settings.trial_period_days,
            tolerance=settings.stripe_webhook_tolerance_seconds,
        )
    logger.info("billing_gateway_configured", provider="fake")
    return FakeBillingGateway(
        webhook_secret=settings.stripe_webhook_secret,
        price_book=price_book,
        trial_days=settings.trial_period_days,
        tolerance=settings.stripe_webhook_tolerance_seconds,
    )


@lru_cache
def get_token_auth() -> TokenAuth:
    return TokenAuth(get_settings().secret_key)


def get_state_machine(
    engine: AsyncEngine = Depends(get_db_engine),
    gateway: BillingGateway = Depends(get_billing_gateway),
) -> SubscriptionStateMachine:
    return SubscriptionStateMachine(engine, gateway, frontend_url=get_settings().frontend_url)


def get_tenant_resolver(engine: AsyncEngine = Depends(get_db_engine)) -> TenantResolver:
    return TenantResolver(engine)


def get_usage_tracker(engine: AsyncEngine = Depends(get_db_engine)) -> UsageTracker:
    return UsageTracker(engine)
