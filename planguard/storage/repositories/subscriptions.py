"""Subscription, history and webhook-event repository, SQL-backed."""

from __future__ import annotations

from datetime import datetime

import structlog
from sqlmodel import col, select
from sqlmodel.ext.asyncio.session import AsyncSession

from planguard.models.database import (
    BillingHistoryEntry,
    PlanChangeEntry,
    Subscription,
    WebhookEventRecord,
    _utc_now,
)

logger = structlog.get_logger(__name__)


class SubscriptionRepository:
    """Billing records for one session; writes are staged until ``commit``."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_for_org(self, org_id: str) -> Subscription | None:
        stmt = select(Subscription).where(col(Subscription.org_id) == org_id)
        result = await self._session.execute(stmt)
        return result.scalars().first()

    async def get_by_external_id(self, external_id: str) -> Subscription | None:
        stmt = select(Subscription).where(col(Subscription.external_id) == external_id)
        result = await self._session.execute(stmt)
        return result.scalars().first()

    def save(self, subscription: Subscription) -> Subscription:
        subscription.updated_at = _utc_now()
        self._session.add(subscription)
        return subscription

    # -- billing history ------------------------------------------------------

    def append_billing(self, entry: BillingHistoryEntry) -> None:
        self._session.add(entry)

    async def has_invoice(self, subscription_id: str, invoice_id: str, status: str) -> bool:
        stmt = select(BillingHistoryEntry.id).where(
            col(BillingHistoryEntry.subscription_id) == subscription_id,
            col(BillingHistoryEntry.invoice_id) == invoice_id,
            col(BillingHistoryEntry.status) == status,
        )
        result = await self._session.execute(stmt.limit(1))
        return result.first() is not None

    async def list_billing(
        self, org_id: str, *, limit: int = 20, offset: int = 0
    ) -> list[BillingHistoryEntry]:
        stmt = (
            select(BillingHistoryEntry)
            .where(col(BillingHistoryEntry.org_id) == org_id)
            .order_by(col(BillingHistoryEntry.created_at).desc(), col(BillingHistoryEntry.id).desc())
            .offset(offset)
            .limit(limit)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    # -- plan history ---------------------------------------------------------

    def append_plan_change(self, entry: PlanChangeEntry) -> None:
        self._session.add(entry)

    async def list_plan_changes(
        self, org_id: str, *, limit: int = 20, offset: int = 0
    ) -> list[PlanChangeEntry]:
        stmt = (
            select(PlanChangeEntry)
            .where(col(PlanChangeEntry.org_id) == org_id)
            .order_by(col(PlanChangeEntry.created_at).desc(), col(PlanChangeEntry.id).desc())
            .offset(offset)
            .limit(limit)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    # -- webhook events -------------------------------------------------------

    async def is_event_processed(self, event_id: str) -> bool:
        stmt = select(WebhookEventRecord.id).where(col(WebhookEventRecord.event_id) == event_id)
        result = await self._session.execute(stmt.limit(1))
        return result.first() is not None

    def record_event(
        self,
        event_id: str,
        event_type: str,
        *,
        created_at: datetime,
        outcome: str,
        external_subscription_id: str | None = None,
    ) -> WebhookEventRecord:
        """Stage the dedupe row; its unique event id rejects concurrent twins on commit."""
        record = WebhookEventRecord(
            event_id=event_id,
            event_type=event_type,
            external_subscription_id=external_subscription_id,
            event_created_at=created_at,
            outcome=outcome,
        )
        self._session.add(record)
        return record
