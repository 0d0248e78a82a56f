"""
Customer service.

Creates local customers, links them to the processor, keeps the default card
summary and coupon in sync, and answers "is this customer subscribed?"
questions for a slot.
"""

from collections.abc import Sequence
from datetime import datetime

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from dotmac.cashier.clock import Clock, default_clock
from dotmac.cashier.customers.models import Customer
from dotmac.cashier.exceptions import CustomerNotFoundError
from dotmac.cashier.logging import log_audit_event
from dotmac.cashier.processor.base import PaymentProcessor
from dotmac.cashier.subscriptions.models import DEFAULT_SLOT, Subscription

logger = structlog.get_logger(__name__)


class CustomerService:
    """Customer operations backed by the payment processor."""

    def __init__(self, processor: PaymentProcessor, clock: Clock | None = None) -> None:
        self.processor = processor
        self.clock = clock or default_clock

    # ------------------------------------------------------------------
    # Customer records
    # ------------------------------------------------------------------

    async def create(
        self,
        session: AsyncSession,
        email: str,
        name: str,
        trial_ends_at: datetime | None = None,
    ) -> Customer:
        customer = Customer(email=email, name=name, trial_ends_at=trial_ends_at)
        session.add(customer)
        await session.commit()
        logger.info("Customer created", customer_id=customer.id, email=email)
        return customer

    async def get(self, session: AsyncSession, customer_id: str) -> Customer:
        customer = await session.get(Customer, customer_id)
        if customer is None:
            raise CustomerNotFoundError(f"Customer {customer_id} not found", customer_id=customer_id)
        return customer

    async def create_as_processor_customer(
        self, session: AsyncSession, customer: Customer, token: str | None = None
    ) -> Customer:
        """Create the processor-side customer, storing its id and card summary.

        Already linked customers are returned unchanged.
        """
        if customer.has_processor_id():
            return customer

        remote = await self.processor.create_customer(customer.email, customer.name, token)

        customer.processor_id = remote.id
        customer.card_brand = remote.card_brand
        customer.card_last_four = remote.card_last_four
        await session.commit()

        logger.info(
            "Processor customer created",
            customer_id=customer.id,
            processor_id=remote.id,
            has_card=customer.has_card(),
        )
        return customer

    async def ensure_processor_customer(
        self, session: AsyncSession, customer: Customer, token: str | None = None
    ) -> str:
        """Return the processor id, creating the processor customer or updating its card."""
        if not customer.has_processor_id():
            customer = await self.create_as_processor_customer(session, customer, token)
        elif token:
            await self.update_card(session, customer, token)
        return self._require_processor_id(customer)

    def _require_processor_id(self, customer: Customer) -> str:
        if customer.processor_id is None:
            raise CustomerNotFoundError(
                f"Customer {customer.id} has no processor customer", customer_id=customer.id
            )
        return customer.processor_id

    async def update_card(self, session: AsyncSession, customer: Customer, token: str) -> Customer:
        remote = await self.processor.update_customer_card(
            self._require_processor_id(customer), token
        )
        customer.card_brand = remote.card_brand
        customer.card_last_four = remote.card_last_four
        await session.commit()
        logger.info("Customer card updated", customer_id=customer.id, card_brand=remote.card_brand)
        return customer

    async def apply_coupon(self, session: AsyncSession, customer: Customer, code: str) -> Customer:
        await self.processor.apply_coupon(self._require_processor_id(customer), code)
        customer.coupon = code
        await session.commit()
        log_audit_event(
            "customer.coupon_applied",
            "billing",
            customer_id=customer.id,
            resource_type="customer",
            resource_id=customer.id,
            coupon=code,
        )
        return customer

    def on_generic_trial(self, customer: Customer, now: datetime | None = None) -> bool:
        return customer.on_generic_trial(now or self.clock.now())

    # ------------------------------------------------------------------
    # Slot lookups
    # ------------------------------------------------------------------

    async def subscription(
        self, session: AsyncSession, customer: Customer, slot: str = DEFAULT_SLOT
    ) -> Subscription | None:
        result = await session.execute(
            select(Subscription).where(
                Subscription.customer_id == customer.id, Subscription.name == slot
            )
        )
        return result.scalar_one_or_none()

    async def subscriptions(self, session: AsyncSession, customer: Customer) -> list[Subscription]:
        result = await session.execute(
            select(Subscription)
            .where(Subscription.customer_id == customer.id)
            .order_by(Subscription.created_at.desc())
        )
        return list(result.scalars().all())

    async def subscribed(
        self,
        session: AsyncSession,
        customer: Customer,
        slot: str = DEFAULT_SLOT,
        plan: str | None = None,
    ) -> bool:
        """Whether the customer has a valid subscription in ``slot``.

        A customer on a generic trial counts as subscribed while they hold no
        subscription in the slot, unless a specific plan is asked for.
        """
        now = self.clock.now()
        subscription = await self.subscription(session, customer, slot)
        if subscription is None:
            return plan is None and customer.on_generic_trial(now)
        if not subscription.valid(now):
            return False
        return plan is None or subscription.plan_id == plan

    async def subscribed_to_plan(
        self,
        session: AsyncSession,
        customer: Customer,
        plans: str | Sequence[str],
        slot: str = DEFAULT_SLOT,
    ) -> bool:
        plan_ids = [plans] if isinstance(plans, str) else list(plans)
        subscription = await self.subscription(session, customer, slot)
        if subscription is None or not subscription.valid(self.clock.now()):
            return False
        return subscription.plan_id in plan_ids

    async def on_plan(self, session: AsyncSession, customer: Customer, plan: str) -> bool:
        now = self.clock.now()
        return any(
            subscription.plan_id == plan and subscription.valid(now)
            for subscription in await self.subscriptions(session, customer)
        )
