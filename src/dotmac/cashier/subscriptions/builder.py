"""
Subscription builder.

Accumulates creation options for one (customer, slot, plan) and freezes them
into ``SubscriptionOptions`` when the subscription is created.
"""

from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from sqlalchemy.ext.asyncio import AsyncSession

from dotmac.cashier.clock import ensure_utc
from dotmac.cashier.customers.models import Customer
from dotmac.cashier.plans.models import Plan
from dotmac.cashier.processor.schemas import SubscriptionOptions
from dotmac.cashier.subscriptions.models import Subscription

if TYPE_CHECKING:  # pragma: no cover - typings only
    from dotmac.cashier.subscriptions.service import SubscriptionService


class SubscriptionBuilder:
    """Fluent options for a new subscription.

    Every option method returns the builder so calls can be chained::

        subscription = await (
            service.new_subscription(session, customer, "main", "pro-monthly")
            .trial_days(14)
            .with_coupon("WELCOME")
            .create("tok_test_visa_4242")
        )

    ``trial_days`` and ``trial_until`` replace each other; the last call wins.
    """

    def __init__(
        self,
        service: "SubscriptionService",
        session: AsyncSession,
        customer: Customer,
        slot: str,
        plan_id: str,
    ) -> None:
        self.service = service
        self.session = session
        self.customer = customer
        self.slot = slot
        self.plan_id = plan_id

        self._quantity = 1
        self._trial_days: int | None = None
        self._trial_until: datetime | None = None
        self._skip_trial = False
        self._anchor: datetime | None = None
        self._coupon: str | None = None
        self._metadata: dict[str, str] = {}

    def quantity(self, quantity: int) -> "SubscriptionBuilder":
        if quantity < 1:
            raise ValueError("Quantity must be at least 1")
        self._quantity = quantity
        return self

    def trial_days(self, days: int) -> "SubscriptionBuilder":
        if days < 0:
            raise ValueError("Trial days must not be negative")
        self._trial_days = days
        self._trial_until = None
        return self

    def trial_until(self, moment: datetime) -> "SubscriptionBuilder":
        self._trial_until = ensure_utc(moment)
        self._trial_days = None
        return self

    def skip_trial(self) -> "SubscriptionBuilder":
        self._skip_trial = True
        return self

    def anchor_billing_cycle_on(self, moment: datetime) -> "SubscriptionBuilder":
        self._anchor = ensure_utc(moment)
        return self

    def with_coupon(self, coupon: str) -> "SubscriptionBuilder":
        self._coupon = coupon
        return self

    def with_metadata(self, metadata: dict[str, str]) -> "SubscriptionBuilder":
        self._metadata = dict(metadata)
        return self

    def _trial_end(self, now: datetime, plan: Plan | None) -> datetime | None:
        if self._skip_trial or self._trial_days == 0:
            return None
        if self._trial_until is not None:
            return self._trial_until
        if self._trial_days is not None:
            return now + timedelta(days=self._trial_days)
        if plan is not None:
            return plan.trial_ends_at(now)
        return None

    def options(self, now: datetime, plan: Plan | None = None) -> SubscriptionOptions:
        """Validate the accumulated choices against ``now`` and freeze them.

        Raises:
            ValueError: the anchor is not after ``now`` or the trial end is
                already in the past.
        """
        if self._anchor is not None and self._anchor <= now:
            raise ValueError("Billing cycle anchor must be in the future")

        trial_end = self._trial_end(now, plan)
        if trial_end is not None and trial_end <= now:
            raise ValueError("Trial end must be in the future")

        return SubscriptionOptions(
            quantity=self._quantity,
            trial_end=trial_end,
            skip_trial=self._skip_trial or self._trial_days == 0,
            billing_cycle_anchor=self._anchor,
            coupon=self._coupon,
            metadata=self._metadata,
        )

    async def add(self) -> Subscription:
        """Create the subscription using the customer's card on file."""
        return await self.create()

    async def create(self, token: str | None = None) -> Subscription:
        return await self.service.create_subscription(self, token)
