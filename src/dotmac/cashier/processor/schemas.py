"""
Request and response shapes exchanged with the payment processor.
"""

import calendar
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class PlanInterval(str, Enum):
    """Billing interval units understood by the processor."""

    DAY = "day"
    WEEK = "week"
    HALF_MONTH = "half_month"
    MONTH = "month"
    YEAR = "year"


def add_interval(start: datetime, interval: PlanInterval, count: int = 1) -> datetime:
    """Advance ``start`` by ``count`` billing intervals, clamping month ends."""
    if interval == PlanInterval.DAY:
        return start + timedelta(days=count)
    if interval == PlanInterval.WEEK:
        return start + timedelta(weeks=count)
    if interval == PlanInterval.HALF_MONTH:
        return start + timedelta(days=15 * count)

    months = count * (12 if interval == PlanInterval.YEAR else 1)
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return start.replace(year=year, month=month, day=day)


class PlanAttributes(BaseModel):
    """Plan definition registered once with the processor."""

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    id: str = Field(min_length=1, max_length=100, description="Plan identifier")
    name: str = Field(min_length=1, max_length=255, description="Display name")
    amount: int = Field(ge=0, description="Price per interval in minor units")
    currency: str = Field("USD", min_length=3, max_length=3, description="ISO 4217 code")
    interval: PlanInterval = Field(PlanInterval.MONTH, description="Billing interval unit")
    frequency: int = Field(1, ge=1, description="Intervals per billing cycle")
    trial_period_days: int | None = Field(None, ge=0, description="Default trial length")
    expiry_count: int | None = Field(None, ge=1, description="Maximum billing cycles")

    @field_validator("currency")
    @classmethod
    def upper_currency(cls, v: str) -> str:
        return v.upper()


class SubscriptionOptions(BaseModel):
    """Immutable creation options produced by the subscription builder."""

    model_config = ConfigDict(frozen=True)

    quantity: int = Field(1, ge=1)
    trial_end: datetime | None = None
    skip_trial: bool = False
    billing_cycle_anchor: datetime | None = None
    coupon: str | None = None
    metadata: dict[str, str] = Field(default_factory=dict)


class RemoteCustomer(BaseModel):
    """Customer as known to the processor."""

    id: str
    card_brand: str | None = None
    card_last_four: str | None = None
    coupon: str | None = None


class RemoteSubscription(BaseModel):
    """Subscription state reported by the processor after a create call."""

    id: str
    status: str
    plan_id: str
    quantity: int = 1
    current_period_start: datetime
    current_period_end: datetime
    trial_end: datetime | None = None
    cancel_at_period_end: bool = False
    ended_at: datetime | None = None


class RefundRecord(BaseModel):
    """Refund issued against a charge."""

    id: str
    charge_ref: str
    amount: int = Field(description="Refunded amount in minor units")
    currency: str
    created_at: datetime
    metadata: dict[str, Any] = Field(default_factory=dict)
