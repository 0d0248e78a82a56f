"""
Plan table.
"""

from datetime import datetime, timedelta

from sqlalchemy import Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from dotmac.cashier.db import Base, TimestampMixin
from dotmac.cashier.processor.schemas import PlanAttributes, PlanInterval


class Plan(Base, TimestampMixin):
    """A price point registered with the processor. Immutable once stored."""

    __tablename__ = "cashier_plans"

    id: Mapped[str] = mapped_column(String(100), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    interval: Mapped[str] = mapped_column(String(20), nullable=False, default=PlanInterval.MONTH.value)
    frequency: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    trial_period_days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    expiry_count: Mapped[int | None] = mapped_column(Integer, nullable=True)

    @classmethod
    def from_attributes(cls, attributes: PlanAttributes) -> "Plan":
        return cls(
            id=attributes.id,
            name=attributes.name,
            amount=attributes.amount,
            currency=attributes.currency,
            interval=attributes.interval.value,
            frequency=attributes.frequency,
            trial_period_days=attributes.trial_period_days,
            expiry_count=attributes.expiry_count,
        )

    def to_attributes(self) -> PlanAttributes:
        return PlanAttributes(
            id=self.id,
            name=self.name,
            amount=self.amount,
            currency=self.currency,
            interval=PlanInterval(self.interval),
            frequency=self.frequency,
            trial_period_days=self.trial_period_days,
            expiry_count=self.expiry_count,
        )

    def trial_ends_at(self, now: datetime) -> datetime | None:
        """End of the plan's default trial when started at ``now``."""
        if not self.trial_period_days:
            return None
        return now + timedelta(days=self.trial_period_days)

    def __repr__(self) -> str:
        return f"<Plan {self.id} {self.amount} {self.currency}/{self.frequency} {self.interval}>"
