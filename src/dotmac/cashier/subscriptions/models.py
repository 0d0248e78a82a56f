"""
Subscription table.

One row per (customer, slot). Lifecycle state is derived from the two
timestamps through ``dotmac.cashier.subscriptions.status``; ``version`` is the
optimistic concurrency token checked on every UPDATE.
"""

from datetime import datetime
from uuid import uuid4

from sqlalchemy import ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from dotmac.cashier.clock import default_clock
from dotmac.cashier.db import Base, TimestampMixin, UTCDateTime
from dotmac.cashier.subscriptions import status

DEFAULT_SLOT = "default"


class Subscription(Base, TimestampMixin):
    """A customer's recurring billing relationship in one named slot."""

    __tablename__ = "cashier_subscriptions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    customer_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("cashier_customers.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False, default=DEFAULT_SLOT)
    processor_id: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    plan_id: Mapped[str] = mapped_column(String(100), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    trial_ends_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    ends_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __table_args__ = (UniqueConstraint("customer_id", "name", name="uq_cashier_subscription_slot"),)
    __mapper_args__ = {"version_id_col": version}

    @property
    def slot(self) -> str:
        return self.name

    def _now(self, now: datetime | None) -> datetime:
        return now or default_clock.now()

    def on_trial(self, now: datetime | None = None) -> bool:
        return status.on_trial(self.trial_ends_at, self.ends_at, self._now(now))

    def cancelled(self, now: datetime | None = None) -> bool:
        return status.cancelled(self.trial_ends_at, self.ends_at, self._now(now))

    def on_grace_period(self, now: datetime | None = None) -> bool:
        return status.on_grace_period(self.trial_ends_at, self.ends_at, self._now(now))

    def ended(self, now: datetime | None = None) -> bool:
        return status.ended(self.trial_ends_at, self.ends_at, self._now(now))

    def active(self, now: datetime | None = None) -> bool:
        return status.active(self.trial_ends_at, self.ends_at, self._now(now))

    def recurring(self, now: datetime | None = None) -> bool:
        return status.recurring(self.trial_ends_at, self.ends_at, self._now(now))

    def valid(self, now: datetime | None = None) -> bool:
        return status.valid(self.trial_ends_at, self.ends_at, self._now(now))

    def state(self, now: datetime | None = None) -> status.SubscriptionState:
        return status.state(self.trial_ends_at, self.ends_at, self._now(now))

    def __repr__(self) -> str:
        return f"<Subscription {self.id} {self.customer_id}/{self.name} plan={self.plan_id}>"
