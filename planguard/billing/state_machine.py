"""Subscription lifecycle: local actions and processor webhook events."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

import structlog
from sqlalchemy.exc import IntegrityError

from planguard.billing.gateway import (
    BillingGateway,
    InvoiceInfo,
    ProcessorSession,
    ProcessorSubscription,
    WebhookEvent,
    parse_invoice,
    parse_subscription,
)
from planguard.billing.plans import get_plan, is_downgrade, within_limit
from planguard.billing.proration import Proration, compute_proration, to_money
from planguard.exceptions import (
    AlreadySubscribed,
    InvalidTransition,
    NotFound,
    OrganizationNotFound,
    PaymentRequired,
    UsageExceedsTargetPlan,
    WebhookProcessingError,
)
from planguard.models.database import (
    BillingHistoryEntry,
    Organization,
    PlanChangeEntry,
    Subscription,
    _utc_now,
)
from planguard.storage.database import session_scope
from planguard.storage.repositories.organizations import OrganizationRepository
from planguard.storage.repositories.subscriptions import SubscriptionRepository
from planguard.types import (
    LIVE_STATUSES,
    PAYMENT_REQUIRED_STATUSES,
    TERMINAL_STATUSES,
    BillingInterval,
    EventOutcome,
    PlanTier,
    Resource,
    SubscriptionStatus,
    WebhookEventType,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine
    from sqlmodel.ext.asyncio.session import AsyncSession

logger = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class SubscribeResult:
    subscription: Subscription
    client_secret: str | None


@dataclass(frozen=True, slots=True)
class PlanChangeResult:
    subscription: Subscription
    proration: Proration


def first_exceeded_dimension(
    usage: Mapping[str, float], target: PlanTier | str
) -> tuple[Resource, float, int] | None:
    """The first resource whose usage does not fit the target plan's limit."""
    limits = get_plan(target).limits
    for resource in Resource:
        limit = limits.for_resource(resource)
        current = usage.get(resource, 0)
        if not within_limit(limit, current):
            return resource, current, limit
    return None


def can_downgrade_to(usage: Mapping[str, float], target: PlanTier | str) -> bool:
    """True when every usage counter fits the target plan's limits."""
    return first_exceeded_dimension(usage, target) is None


class SubscriptionStateMachine:
    """Owns the subscription lifecycle.

    Local actions call the processor first and only write locally once it
    succeeds, so a processor failure leaves local state untouched. Webhook
    events are applied at most once per event id and ordered by the
    timestamps embedded in the events themselves.
    """

    def __init__(
        self,
        engine: AsyncEngine,
        gateway: BillingGateway,
        *,
        frontend_url: str = "http://localhost:4200",
    ) -> None:
        self._engine = engine
        self._gateway = gateway
        self._frontend_url = frontend_url.rstrip("/")

    # -- local actions --------------------------------------------------------

    async def subscribe(
        self,
        org_id: str,
        plan: PlanTier | str,
        interval: BillingInterval | str = BillingInterval.MONTH,
        *,
        payment_method_id: str | None = None,
        initiated_by: str | None = None,
    ) -> SubscribeResult:
        plan = PlanTier(plan)
        interval = BillingInterval(interval)
        price_id = self._gateway.price_book.price_id(plan, interval)

        async with session_scope(self._engine) as session:
            orgs = OrganizationRepository(session)
            subs = SubscriptionRepository(session)
            org = await self._require_org(orgs, org_id)
            existing = await subs.get_for_org(org_id)
            _ensure_replaceable(existing)

            customer_id = org.customer_id
            if customer_id is None:
                customer = await self._gateway.create_customer(
                    org_id, email=org.billing_email, name=org.name
                )
                customer_id = customer.id
            processor = await self._gateway.create_subscription(
                customer_id,
                price_id,
                org_id=org_id,
                plan=plan,
                payment_method_id=payment_method_id,
            )

            now = _utc_now()
            sub = existing or Subscription(
                org_id=org_id,
                customer_id=customer_id,
                external_id=processor.id,
                plan=plan,
                status=processor.status,
                current_period_start=processor.current_period_start,
                current_period_end=processor.current_period_end,
            )
            previous_plan = existing.plan if existing is not None else None
            sub.external_id = processor.id
            sub.customer_id = customer_id
            _copy_snapshot(sub, processor, fallback_plan=plan)
            sub.canceled_at = None
            sub.cancellation_reason = None
            sub.cancellation_feedback = None
            sub.payment_failed_attempts = 0
            sub.last_event_at = now
            subs.save(sub)
            try:
                await session.flush()
                subs.append_plan_change(
                    PlanChangeEntry(
                        org_id=org_id,
                        subscription_id=sub.id,
                        from_plan=previous_plan,
                        to_plan=plan,
                        reason="subscribe",
                        changed_by=initiated_by,
                    )
                )
                _mirror(orgs, org, sub, customer_id=customer_id)
                await session.commit()
            except IntegrityError:
                await session.rollback()
                sub = await self._adopt_synced(
                    session, org_id, processor, customer_id=customer_id, initiated_by=initiated_by
                )

        logger.info(
            "subscription_created",
            org_id=org_id,
            plan=str(plan),
            interval=str(interval),
            status=sub.status,
            subscription_id=sub.external_id,
        )
        return SubscribeResult(subscription=sub, client_secret=processor.client_secret)

    async def change_plan(
        self,
        org_id: str,
        new_plan: PlanTier | str,
        interval: BillingInterval | str | None = None,
        *,
        initiated_by: str | None = None,
        now: datetime | None = None,
    ) -> PlanChangeResult:
        new_plan = PlanTier(new_plan)
        now = now or _utc_now()

        async with session_scope(self._engine) as session:
            orgs = OrganizationRepository(session)
            subs = SubscriptionRepository(session)
            org = await self._require_org(orgs, org_id)
            sub = await subs.get_for_org(org_id)
            if sub is None or sub.status in TERMINAL_STATUSES:
                raise NotFound("No active subscription found")
            if sub.status in PAYMENT_REQUIRED_STATUSES:
                raise PaymentRequired(sub.status)
            if not sub.is_live:
                raise NotFound("No active subscription found", subscription_status=sub.status)

            interval = BillingInterval(interval or sub.billing_interval)
            if new_plan == sub.plan and interval == sub.billing_interval:
                raise InvalidTransition(
                    f"Subscription is already on the {new_plan} {interval} plan",
                    plan=str(new_plan),
                )

            if is_downgrade(sub.plan, new_plan):
                exceeded = first_exceeded_dimension(org.usage(), new_plan)
                if exceeded is not None:
                    dimension, current, limit = exceeded
                    logger.info(
                        "downgrade_blocked",
                        org_id=org_id,
                        target_plan=str(new_plan),
                        dimension=str(dimension),
                        current=current,
                        limit=limit,
                    )
                    raise UsageExceedsTargetPlan(
                        dimension, current=current, limit=limit, target_plan=new_plan
                    )

            price_id = self._gateway.price_book.price_id(new_plan, interval)
            proration = compute_proration(
                sub.amount,
                get_plan(new_plan).price_for(interval),
                sub.current_period_start,
                sub.current_period_end,
                now,
            )
            logger.info(
                "plan_change_prorated",
                org_id=org_id,
                from_plan=sub.plan,
                to_plan=str(new_plan),
                credit=str(proration.credit),
                charge=str(proration.charge),
                net=str(proration.net),
                remaining_days=proration.remaining_days,
            )

            processor = await self._gateway.update_subscription_price(
                sub.external_id, price_id, plan=new_plan
            )

            previous_plan = sub.plan
            _copy_snapshot(sub, processor, fallback_plan=new_plan)
            sub.last_event_at = now
            subs.save(sub)
            subs.append_plan_change(
                PlanChangeEntry(
                    org_id=org_id,
                    subscription_id=sub.id,
                    from_plan=previous_plan,
                    to_plan=sub.plan,
                    reason=_change_reason(previous_plan, sub.plan),
                    changed_by=initiated_by,
                    proration_net_cents=int(to_money(proration.net) * 100),
                )
            )
            _mirror(orgs, org, sub)
            await session.commit()

        logger.info("plan_changed", org_id=org_id, from_plan=previous_plan, to_plan=sub.plan)
        return PlanChangeResult(subscription=sub, proration=proration)

    async def cancel(
        self,
        org_id: str,
        *,
        immediately: bool = False,
        reason: str | None = None,
        feedback: str | None = None,
    ) -> Subscription:
        async with session_scope(self._engine) as session:
            orgs = OrganizationRepository(session)
            subs = SubscriptionRepository(session)
            org = await self._require_org(orgs, org_id)
            sub = await subs.get_for_org(org_id)
            if sub is None:
                raise NotFound()
            if sub.status in TERMINAL_STATUSES:
                raise InvalidTransition("Subscription is already canceled", status=sub.status)

            now = _utc_now()
            if immediately:
                processor = await self._gateway.cancel_now(sub.external_id)
                _copy_snapshot(sub, processor)
                sub.status = SubscriptionStatus.CANCELED
                sub.canceled_at = processor.canceled_at or now
            else:
                processor = await self._gateway.set_cancel_at_period_end(sub.external_id, True)
                _copy_snapshot(sub, processor)
                sub.cancel_at_period_end = True
            sub.cancellation_reason = reason
            sub.cancellation_feedback = feedback
            sub.last_event_at = now
            subs.save(sub)
            _mirror(orgs, org, sub)
            await session.commit()

        logger.info(
            "subscription_canceled",
            org_id=org_id,
            immediately=immediately,
            status=sub.status,
            reason=reason,
        )
        return sub

    async def reactivate(self, org_id: str) -> Subscription:
        async with session_scope(self._engine) as session:
            orgs = OrganizationRepository(session)
            subs = SubscriptionRepository(session)
            org = await self._require_org(orgs, org_id)
            sub = await subs.get_for_org(org_id)
            if sub is None:
                raise NotFound()
            if sub.status in TERMINAL_STATUSES or not sub.cancel_at_period_end:
                raise InvalidTransition(
                    "Subscription is not scheduled for cancellation",
                    status=sub.status,
                    cancel_at_period_end=sub.cancel_at_period_end,
                )

            processor = await self._gateway.set_cancel_at_period_end(sub.external_id, False)
            _copy_snapshot(sub, processor)
            sub.cancel_at_period_end = False
            sub.cancellation_reason = None
            sub.cancellation_feedback = None
            sub.last_event_at = _utc_now()
            subs.save(sub)
            _mirror(orgs, org, sub)
            await session.commit()

        logger.info("subscription_reactivated", org_id=org_id, status=sub.status)
        return sub

    async def create_checkout_session(
        self, org_id: str, plan: PlanTier | str, interval: BillingInterval | str
    ) -> ProcessorSession:
        plan = PlanTier(plan)
        price_id = self._gateway.price_book.price_id(plan, interval)
        async with session_scope(self._engine) as session:
            orgs = OrganizationRepository(session)
            org = await self._require_org(orgs, org_id)
            _ensure_replaceable(await SubscriptionRepository(session).get_for_org(org_id))

            customer_id = org.customer_id
            if customer_id is None:
                customer = await self._gateway.create_customer(
                    org_id, email=org.billing_email, name=org.name
                )
                customer_id = customer.id
            checkout = await self._gateway.create_checkout_session(
                customer_id,
                price_id,
                org_id=org_id,
                plan=plan,
                success_url=f"{self._frontend_url}/billing/success?session_id={{CHECKOUT_SESSION_ID}}",
                cancel_url=f"{self._frontend_url}/billing",
            )
            if org.customer_id != customer_id:
                orgs.mirror(org, customer_id=customer_id)
                await session.commit()

        logger.info("checkout_session_created", org_id=org_id, plan=str(plan), session_id=checkout.id)
        return checkout

    async def create_portal_session(self, org_id: str) -> ProcessorSession:
        async with session_scope(self._engine) as session:
            org = await self._require_org(OrganizationRepository(session), org_id)
            if org.customer_id is None:
                raise NotFound("No billing account found")
            customer_id = org.customer_id
        portal = await self._gateway.create_portal_session(
            customer_id, return_url=f"{self._frontend_url}/billing"
        )
        logger.info("portal_session_created", org_id=org_id)
        return portal

    # -- reads ----------------------------------------------------------------

    async def get_subscription(self, org_id: str) -> Subscription | None:
        async with session_scope(self._engine) as session:
            return await SubscriptionRepository(session).get_for_org(org_id)

    async def billing_history(
        self, org_id: str, *, limit: int = 20, offset: int = 0
    ) -> list[BillingHistoryEntry]:
        async with session_scope(self._engine) as session:
            return await SubscriptionRepository(session).list_billing(
                org_id, limit=limit, offset=offset
            )

    async def plan_history(
        self, org_id: str, *, limit: int = 20, offset: int = 0
    ) -> list[PlanChangeEntry]:
        async with session_scope(self._engine) as session:
            return await SubscriptionRepository(session).list_plan_changes(
                org_id, limit=limit, offset=offset
            )

    # -- webhook events -------------------------------------------------------

    async def apply_event(self, event: WebhookEvent) -> EventOutcome:
        """Apply one verified processor event exactly once.

        The dedupe row and every mutation commit in the same transaction; a
        concurrent delivery of the same event loses on the unique event id and
        reports ``duplicate``.
        """
        log = logger.bind(event_id=event.id, event_type=event.type)
        async with session_scope(self._engine) as session:
            subs = SubscriptionRepository(session)
            if await subs.is_event_processed(event.id):
                log.info("webhook_duplicate")
                return EventOutcome.DUPLICATE

            outcome = await self._dispatch(session, event)
            subs.record_event(
                event.id,
                event.type,
                created_at=event.created,
                outcome=outcome,
                external_subscription_id=event.subscription_ref,
            )
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                if not await subs.is_event_processed(event.id):
                    raise
                log.info("webhook_duplicate_race")
                return EventOutcome.DUPLICATE

        log.info("webhook_processed", outcome=str(outcome))
        return outcome

    async def _dispatch(self, session: AsyncSession, event: WebhookEvent) -> EventOutcome:
        try:
            parsed = self._parse_object(event)
        except (KeyError, TypeError, ValueError) as e:
            # Recorded, not retried: a redelivery carries the same object
            logger.warning("webhook_object_malformed", event_id=event.id, error=str(e))
            return EventOutcome.IGNORED

        match event.type:
            case WebhookEventType.SUBSCRIPTION_CREATED | WebhookEventType.SUBSCRIPTION_UPDATED:
                return await self._on_snapshot(session, event, parsed, deleted=False)
            case WebhookEventType.SUBSCRIPTION_DELETED:
                return await self._on_snapshot(session, event, parsed, deleted=True)
            case WebhookEventType.PAYMENT_SUCCEEDED:
                return await self._on_payment(session, event, parsed, succeeded=True)
            case WebhookEventType.PAYMENT_FAILED:
                return await self._on_payment(session, event, parsed, succeeded=False)
            case WebhookEventType.TRIAL_WILL_END:
                return await self._on_trial_will_end(session, event)
            case _:
                logger.debug("webhook_unhandled_type", event_type=event.type)
                return EventOutcome.IGNORED

    def _parse_object(self, event: WebhookEvent) -> ProcessorSubscription | InvoiceInfo | None:
        match event.type:
            case (
                WebhookEventType.SUBSCRIPTION_CREATED
                | WebhookEventType.SUBSCRIPTION_UPDATED
                | WebhookEventType.SUBSCRIPTION_DELETED
            ):
                return parse_subscription(event.data, self._gateway.price_book)
            case WebhookEventType.PAYMENT_SUCCEEDED | WebhookEventType.PAYMENT_FAILED:
                return parse_invoice(event.data)
        return None

    async def _on_snapshot(
        self,
        session: AsyncSession,
        event: WebhookEvent,
        processor: ProcessorSubscription,
        *,
        deleted: bool,
    ) -> EventOutcome:
        orgs = OrganizationRepository(session)
        subs = SubscriptionRepository(session)
        log = logger.bind(event_id=event.id, subscription_id=processor.id)

        sub = await subs.get_by_external_id(processor.id)
        if sub is not None:
            org = await orgs.get(sub.org_id, include_deactivated=True)
        else:
            if deleted:
                log.info("webhook_unknown_subscription")
                return EventOutcome.IGNORED
            org = await self._org_for_snapshot(orgs, processor)
            if org is None:
                log.warning("webhook_organization_unresolved", customer_id=processor.customer_id)
                return EventOutcome.IGNORED
            sub = await subs.get_for_org(org.id)
            if sub is not None and sub.is_live and processor.status not in LIVE_STATUSES:
                # A dead sibling subscription must not displace the live one
                log.info("webhook_sibling_ignored", org_id=org.id, status=processor.status)
                return EventOutcome.IGNORED

        if org is None:
            log.warning("webhook_organization_missing")
            return EventOutcome.IGNORED

        if sub is not None and sub.external_id == processor.id and not deleted:
            stale_reason = _stale_reason(sub, processor, event.created)
            if stale_reason:
                log.info("webhook_stale", reason=stale_reason, stored_status=sub.status)
                return EventOutcome.STALE

        if sub is None:
            sub = Subscription(
                org_id=org.id,
                customer_id=processor.customer_id,
                external_id=processor.id,
                plan=processor.plan or org.plan,
                status=processor.status,
                current_period_start=processor.current_period_start,
                current_period_end=processor.current_period_end,
            )
        previous_plan = sub.plan
        replaced = sub.external_id != processor.id
        if replaced:
            sub.canceled_at = None
            sub.cancellation_reason = None
            sub.cancellation_feedback = None
            sub.payment_failed_attempts = 0
        sub.external_id = processor.id
        sub.customer_id = processor.customer_id
        _copy_snapshot(sub, processor, fallback_plan=sub.plan)
        if deleted:
            sub.status = SubscriptionStatus.CANCELED
            sub.canceled_at = processor.canceled_at or event.created
            sub.cancel_at_period_end = False
        sub.last_event_at = event.created
        subs.save(sub)
        await session.flush()

        if previous_plan != sub.plan or replaced:
            subs.append_plan_change(
                PlanChangeEntry(
                    org_id=org.id,
                    subscription_id=sub.id,
                    from_plan=previous_plan if previous_plan != sub.plan else None,
                    to_plan=sub.plan,
                    reason="processor_event",
                )
            )
        _mirror(orgs, org, sub, customer_id=processor.customer_id)
        log.info("subscription_synced", org_id=org.id, status=sub.status, plan=sub.plan)
        return EventOutcome.APPLIED

    async def _on_payment(
        self, session: AsyncSession, event: WebhookEvent, invoice: InvoiceInfo, *, succeeded: bool
    ) -> EventOutcome:
        orgs = OrganizationRepository(session)
        subs = SubscriptionRepository(session)
        if not invoice.subscription_id:
            logger.info("webhook_invoice_no_subscription", event_id=event.id, invoice_id=invoice.id)
            return EventOutcome.IGNORED
        sub = await subs.get_by_external_id(invoice.subscription_id)
        if sub is None:
            # Not recorded: the redelivery lands once the subscription exists
            logger.warning(
                "webhook_invoice_unmatched",
                event_id=event.id,
                invoice_id=invoice.id,
                subscription_id=invoice.subscription_id,
            )
            raise WebhookProcessingError(
                "Subscription not yet known, retry later",
                event_id=event.id,
                subscription_id=invoice.subscription_id,
            )

        status = "paid" if succeeded else "failed"
        if not await subs.has_invoice(sub.id, invoice.id, status):
            subs.append_billing(
                BillingHistoryEntry(
                    org_id=sub.org_id,
                    subscription_id=sub.id,
                    invoice_id=invoice.id,
                    amount_cents=invoice.amount_paid_cents if succeeded else invoice.amount_due_cents,
                    currency=invoice.currency,
                    status=status,
                    description=f"Payment for {invoice.description}" if invoice.description else "",
                    invoice_url=invoice.hosted_invoice_url,
                    created_at=event.created,
                )
            )
        if succeeded:
            sub.latest_invoice_id = invoice.id
            sub.payment_failed_attempts = 0
        else:
            sub.payment_failed_attempts += 1
            sub.last_payment_failed_at = event.created
            logger.warning(
                "payment_failed",
                org_id=sub.org_id,
                invoice_id=invoice.id,
                attempts=sub.payment_failed_attempts,
            )
        subs.save(sub)

        org = await orgs.get(sub.org_id, include_deactivated=True)
        if org is not None:
            _mirror(orgs, org, sub)
        return EventOutcome.APPLIED

    async def _on_trial_will_end(self, session: AsyncSession, event: WebhookEvent) -> EventOutcome:
        subs = SubscriptionRepository(session)
        subscription_id = event.data.get("id")
        if not subscription_id:
            return EventOutcome.IGNORED
        sub = await subs.get_by_external_id(subscription_id)
        if sub is None:
            logger.warning(
                "webhook_trial_unmatched", event_id=event.id, subscription_id=subscription_id
            )
            raise WebhookProcessingError(
                "Subscription not yet known, retry later",
                event_id=event.id,
                subscription_id=subscription_id,
            )
        sub.trial_ending_notified_at = event.created
        subs.save(sub)
        logger.info("trial_ending_notified", org_id=sub.org_id, trial_end=str(sub.trial_end))
        return EventOutcome.APPLIED

    # -- helpers --------------------------------------------------------------

    @staticmethod
    async def _require_org(orgs: OrganizationRepository, org_id: str) -> Organization:
        org = await orgs.get(org_id)
        if org is None:
            raise OrganizationNotFound(org_id)
        return org

    @staticmethod
    async def _org_for_snapshot(
        orgs: OrganizationRepository, processor: ProcessorSubscription
    ) -> Organization | None:
        if processor.organization_id:
            org = await orgs.get(processor.organization_id, include_deactivated=True)
            if org is not None:
                return org
        return await orgs.get_by_customer(processor.customer_id)

    async def _adopt_synced(
        self,
        session: AsyncSession,
        org_id: str,
        processor: ProcessorSubscription,
        *,
        customer_id: str,
        initiated_by: str | None,
    ) -> Subscription:
        """Finish a subscribe whose row was written concurrently.

        The created webhook may land between the processor call and the local
        insert. Its row already carries the processor snapshot, so only the
        local bookkeeping is added. A row for a different processor
        subscription means another subscribe won; ours is canceled.
        """
        orgs = OrganizationRepository(session)
        subs = SubscriptionRepository(session)
        org = await self._require_org(orgs, org_id)
        sub = await subs.get_by_external_id(processor.id)
        if sub is None:
            current = await subs.get_for_org(org_id)
            logger.warning(
                "subscribe_lost_race",
                org_id=org_id,
                subscription_id=processor.id,
                winner=current.external_id if current else None,
            )
            await self._gateway.cancel_now(processor.id)
            raise AlreadySubscribed(subscription_status=current.status if current else None)

        sub.customer_id = customer_id
        subs.save(sub)
        subs.append_plan_change(
            PlanChangeEntry(
                org_id=org_id,
                subscription_id=sub.id,
                from_plan=None,
                to_plan=sub.plan,
                reason="subscribe",
                changed_by=initiated_by,
            )
        )
        _mirror(orgs, org, sub, customer_id=customer_id)
        await session.commit()
        logger.info("subscribe_reconciled", org_id=org_id, subscription_id=processor.id)
        return sub


def _ensure_replaceable(existing: Subscription | None) -> None:
    """Only an incomplete or ended subscription may be replaced by a new one.

    Past-due, unpaid and paused subscriptions are still billable at the
    processor.
    """
    if existing is None:
        return
    if existing.is_live:
        raise AlreadySubscribed(subscription_status=existing.status)
    if existing.status in PAYMENT_REQUIRED_STATUSES:
        raise PaymentRequired(existing.status)
    if existing.status == SubscriptionStatus.PAUSED:
        raise InvalidTransition(
            "Subscription is paused. Resume it instead of subscribing again.",
            status=existing.status,
        )


def _change_reason(previous: str, new: str) -> str:
    if previous == new:
        return "interval_change"
    return "downgrade" if is_downgrade(previous, new) else "upgrade"


def _stale_reason(
    sub: Subscription, processor: ProcessorSubscription, created: datetime
) -> str | None:
    if sub.status in TERMINAL_STATUSES and processor.status not in TERMINAL_STATUSES:
        return "terminal"
    if processor.current_period_start < sub.current_period_start:
        return "older_period"
    if (
        processor.current_period_start == sub.current_period_start
        and sub.last_event_at is not None
        and created < sub.last_event_at
    ):
        return "older_event"
    return None


def _copy_snapshot(
    sub: Subscription, processor: ProcessorSubscription, *, fallback_plan: str | None = None
) -> None:
    sub.status = processor.status
    sub.plan = processor.plan or fallback_plan or sub.plan
    sub.price_id = processor.price_id or sub.price_id
    sub.billing_interval = processor.interval
    sub.amount_cents = processor.amount_cents or _catalog_cents(sub.plan, processor.interval)
    sub.currency = processor.currency
    sub.current_period_start = processor.current_period_start
    sub.current_period_end = processor.current_period_end
    sub.cancel_at_period_end = processor.cancel_at_period_end
    sub.canceled_at = processor.canceled_at or sub.canceled_at
    sub.trial_start = processor.trial_start
    sub.trial_end = processor.trial_end
    sub.latest_invoice_id = processor.latest_invoice_id or sub.latest_invoice_id


def _catalog_cents(plan: str, interval: BillingInterval) -> int:
    return int(to_money(get_plan(plan).price_for(interval)) * 100)


def _mirror(
    orgs: OrganizationRepository,
    org: Organization,
    sub: Subscription,
    *,
    customer_id: str | None = None,
) -> None:
    fields: dict[str, object] = {
        "plan": sub.plan,
        "subscription_id": sub.external_id,
        "subscription_status": sub.status,
        "is_trial_active": sub.status == SubscriptionStatus.TRIALING,
    }
    if sub.trial_end is not None:
        fields["trial_end"] = sub.trial_end
    if customer_id is not None:
        fields["customer_id"] = customer_id
    orgs.mirror(org, **fields)
