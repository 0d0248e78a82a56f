"""
Subscription lifecycle service.

Each transition calls the processor first and only then writes the local row.
A processor failure propagates before anything local changes. Local writes
are guarded by the row's version column; when a concurrent writer (usually a
webhook) got there first, the row is reloaded and the mutation reapplied.
"""

from collections.abc import Callable
from datetime import datetime

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt

from dotmac.cashier.clock import Clock, default_clock
from dotmac.cashier.customers.models import Customer
from dotmac.cashier.customers.service import CustomerService
from dotmac.cashier.exceptions import (
    DuplicateSlotError,
    InvalidStateTransitionError,
    SubscriptionNotFoundError,
)
from dotmac.cashier.logging import log_audit_event
from dotmac.cashier.plans.service import PlanRegistry
from dotmac.cashier.processor.base import PaymentProcessor
from dotmac.cashier.settings import Settings, get_settings
from dotmac.cashier.subscriptions.builder import SubscriptionBuilder
from dotmac.cashier.subscriptions.models import DEFAULT_SLOT, Subscription
from dotmac.cashier.subscriptions.status import SubscriptionState

logger = structlog.get_logger(__name__)

Mutation = Callable[[Subscription], None]


class SubscriptionService:
    """Creates subscriptions and drives their lifecycle transitions."""

    def __init__(
        self,
        processor: PaymentProcessor,
        customers: CustomerService | None = None,
        plans: PlanRegistry | None = None,
        clock: Clock | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.processor = processor
        self.clock = clock or default_clock
        self.customers = customers or CustomerService(processor, self.clock)
        self.plans = plans or PlanRegistry(processor)
        self.settings = settings or get_settings()

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def new_subscription(
        self,
        session: AsyncSession,
        customer: Customer,
        slot: str = DEFAULT_SLOT,
        plan_id: str = "",
    ) -> SubscriptionBuilder:
        return SubscriptionBuilder(self, session, customer, slot, plan_id)

    async def create_subscription(
        self, builder: SubscriptionBuilder, token: str | None = None
    ) -> Subscription:
        session, customer, slot = builder.session, builder.customer, builder.slot
        now = self.clock.now()

        existing = await self.customers.subscription(session, customer, slot)
        if existing is not None and not existing.ended(now):
            raise DuplicateSlotError(
                f"Customer {customer.id} already has a subscription in slot '{slot}'",
                customer_id=customer.id,
                slot=slot,
            )

        plan = await self.plans.resolve(session, builder.plan_id)
        options = builder.options(now, plan)
        customer_ref = await self.customers.ensure_processor_customer(session, customer, token)

        remote = await self.processor.create_subscription(customer_ref, plan.id, options)

        if existing is not None:
            # Ended rows give their slot to the new subscription.
            await session.delete(existing)
            await session.flush()

        subscription = Subscription(
            customer_id=customer.id,
            name=slot,
            processor_id=remote.id,
            plan_id=plan.id,
            quantity=options.quantity,
            trial_ends_at=options.trial_end,
            ends_at=None,
        )
        session.add(subscription)
        await session.commit()

        logger.info(
            "Subscription created",
            subscription_id=subscription.id,
            customer_id=customer.id,
            slot=slot,
            plan_id=plan.id,
            trial_ends_at=subscription.trial_ends_at,
        )
        self._audit("subscription.created", subscription, quantity=subscription.quantity)
        return subscription

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def get(self, session: AsyncSession, subscription_id: str) -> Subscription:
        subscription = await session.get(Subscription, subscription_id)
        if subscription is None:
            raise SubscriptionNotFoundError(
                f"Subscription {subscription_id} not found", subscription_id=subscription_id
            )
        return subscription

    async def find_by_processor_id(
        self, session: AsyncSession, processor_id: str
    ) -> Subscription | None:
        result = await session.execute(
            select(Subscription).where(Subscription.processor_id == processor_id)
        )
        return result.scalar_one_or_none()

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def cancel(self, session: AsyncSession, subscription: Subscription) -> Subscription:
        """Cancel at the end of the trial or the current billing period."""
        now = self.clock.now()
        if subscription.ended(now):
            logger.info("Subscription already ended", subscription_id=subscription.id)
            return subscription

        period_end = await self.processor.cancel_subscription(
            subscription.processor_id, immediate=False
        )
        ends_at = subscription.trial_ends_at if subscription.on_trial(now) else period_end

        def mutate(sub: Subscription) -> None:
            if not sub.ended(now):
                sub.ends_at = ends_at

        subscription = await self._save(session, subscription, mutate)
        self._audit("subscription.cancelled", subscription, ends_at=ends_at)
        return subscription

    async def cancel_now(self, session: AsyncSession, subscription: Subscription) -> Subscription:
        """Cancel immediately, skipping any grace period or remaining trial."""
        now = self.clock.now()
        if subscription.ended(now):
            logger.info("Subscription already ended", subscription_id=subscription.id)
            return subscription

        await self.processor.cancel_subscription(subscription.processor_id, immediate=True)

        subscription = await self._save(session, subscription, self._end_now(now))
        self._audit("subscription.cancelled_now", subscription, ends_at=now)
        return subscription

    async def mark_as_ended(
        self, session: AsyncSession, subscription: Subscription
    ) -> Subscription:
        """Record a processor-side termination. No processor call."""
        now = self.clock.now()
        if subscription.ended(now):
            return subscription
        subscription = await self._save(session, subscription, self._end_now(now))
        self._audit("subscription.ended", subscription, ends_at=now)
        return subscription

    async def resume(self, session: AsyncSession, subscription: Subscription) -> Subscription:
        """Undo a cancellation while its grace period is still running.

        The trial end is left alone, so a subscription cancelled during its
        trial goes back to trialing.
        """
        now = self.clock.now()
        if not subscription.on_grace_period(now):
            raise InvalidStateTransitionError(
                "Only subscriptions within their grace period can be resumed",
                current_state=subscription.state(now).value,
                requested_state=SubscriptionState.ACTIVE.value,
            )

        await self.processor.resume_subscription(subscription.processor_id)

        def mutate(sub: Subscription) -> None:
            if not sub.on_grace_period(now):
                raise InvalidStateTransitionError(
                    "Subscription left its grace period before it could be resumed",
                    current_state=sub.state(now).value,
                    requested_state=SubscriptionState.ACTIVE.value,
                )
            sub.ends_at = None

        subscription = await self._save(session, subscription, mutate)
        self._audit("subscription.resumed", subscription)
        return subscription

    async def swap(
        self,
        session: AsyncSession,
        subscription: Subscription,
        plan_id: str,
        quantity: int | None = None,
    ) -> Subscription:
        """Move the subscription to another plan; the processor prorates.

        Quantity is carried over unless given. Trial and cancellation
        timestamps are untouched.
        """
        plan = await self.plans.resolve(session, plan_id)
        now = self.clock.now()
        self._require_not_ended(subscription, now, "swap")
        if quantity is None:
            quantity = subscription.quantity
        elif quantity < 1:
            raise ValueError("Quantity must be at least 1")

        await self.processor.swap_plan(subscription.processor_id, plan.id, quantity)

        previous_plan = subscription.plan_id

        def mutate(sub: Subscription) -> None:
            self._require_not_ended(sub, now, "swap")
            sub.plan_id = plan.id
            sub.quantity = quantity

        subscription = await self._save(session, subscription, mutate)
        self._audit("subscription.swapped", subscription, from_plan=previous_plan, to_plan=plan.id)
        return subscription

    async def update_quantity(
        self, session: AsyncSession, subscription: Subscription, quantity: int
    ) -> Subscription:
        if quantity < 1:
            raise ValueError("Quantity must be at least 1")
        now = self.clock.now()
        self._require_not_ended(subscription, now, "update_quantity")

        await self.processor.update_quantity(subscription.processor_id, quantity)

        def mutate(sub: Subscription) -> None:
            self._require_not_ended(sub, now, "update_quantity")
            sub.quantity = quantity

        subscription = await self._save(session, subscription, mutate)
        self._audit("subscription.quantity_updated", subscription, quantity=quantity)
        return subscription

    async def increment_quantity(
        self, session: AsyncSession, subscription: Subscription, count: int = 1
    ) -> Subscription:
        return await self.update_quantity(session, subscription, subscription.quantity + count)

    async def decrement_quantity(
        self, session: AsyncSession, subscription: Subscription, count: int = 1
    ) -> Subscription:
        return await self.update_quantity(
            session, subscription, max(subscription.quantity - count, 1)
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _end_now(now: datetime) -> Mutation:
        def mutate(sub: Subscription) -> None:
            if sub.ended(now):
                return
            sub.ends_at = now

        return mutate

    @staticmethod
    def _require_not_ended(subscription: Subscription, now: datetime, operation: str) -> None:
        if subscription.ended(now):
            raise InvalidStateTransitionError(
                f"Cannot {operation} a subscription that has ended",
                current_state=SubscriptionState.ENDED.value,
                requested_state=operation,
            )

    async def _save(
        self, session: AsyncSession, subscription: Subscription, mutate: Mutation
    ) -> Subscription:
        """Apply ``mutate`` and commit under the version check.

        On a stale write the row is reloaded and the mutation applied again,
        up to ``billing.stale_write_retries`` extra times.
        """
        subscription_id = subscription.id
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.settings.billing.stale_write_retries + 1),
            retry=retry_if_exception_type(StaleDataError),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                mutate(subscription)
                try:
                    await session.commit()
                except StaleDataError:
                    await session.rollback()
                    logger.warning(
                        "Concurrent subscription update, reapplying",
                        subscription_id=subscription_id,
                        attempt=attempt.retry_state.attempt_number,
                    )
                    subscription = await self._reload(session, subscription_id)
                    raise
        return subscription

    async def _reload(self, session: AsyncSession, subscription_id: str) -> Subscription:
        subscription = await session.get(Subscription, subscription_id, populate_existing=True)
        if subscription is None:
            raise SubscriptionNotFoundError(
                f"Subscription {subscription_id} was deleted concurrently",
                subscription_id=subscription_id,
            )
        return subscription

    def _audit(self, action: str, subscription: Subscription, **details: object) -> None:
        log_audit_event(
            action,
            "billing",
            customer_id=subscription.customer_id,
            resource_type="subscription",
            resource_id=subscription.id,
            slot=subscription.name,
            plan_id=subscription.plan_id,
            **details,
        )
