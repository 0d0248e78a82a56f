"""
Invoice read model.

Invoices are fetched from the processor on demand and never stored locally;
these models only exist for the lifetime of a request.
"""

from collections.abc import Iterator, Sequence
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, model_validator

from dotmac.cashier.money_utils import format_minor_units


class Period(BaseModel):
    """Billed period ``[start, end)`` of a line item."""

    model_config = ConfigDict(frozen=True)

    start: datetime
    end: datetime

    @model_validator(mode="after")
    def check_order(self) -> "Period":
        if self.end < self.start:
            raise ValueError("period end must not precede its start")
        return self

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment < self.end


class InvoiceLineItem(BaseModel):
    """One billed line: a subscription period, a proration, or a one-off charge."""

    model_config = ConfigDict(frozen=True)

    id: str
    description: str
    amount: int = Field(description="Signed amount in minor units")
    currency: str
    quantity: int = 1
    period: Period
    plan_id: str | None = None
    subscription_ref: str | None = None
    proration: bool = False

    def total(self, locale: str | None = None) -> str:
        return format_minor_units(self.amount, self.currency, locale)

    def is_subscription(self) -> bool:
        return self.plan_id is not None


class LineItemView(Sequence[InvoiceLineItem]):
    """Lazy, restartable view over an invoice's lines.

    Each ``iter()`` starts from the first line again; indexing works the
    same as on a list.
    """

    def __init__(self, lines: Sequence[InvoiceLineItem]) -> None:
        self._lines = lines

    def __iter__(self) -> Iterator[InvoiceLineItem]:
        return (line for line in self._lines)

    def __len__(self) -> int:
        return len(self._lines)

    def __getitem__(self, index):  # type: ignore[no-untyped-def, override]
        return self._lines[index]


class Invoice(BaseModel):
    """A billed document for one customer."""

    model_config = ConfigDict(frozen=True)

    id: str
    customer_ref: str
    currency: str
    created_at: datetime
    lines: tuple[InvoiceLineItem, ...] = ()
    charge_ref: str | None = None
    subscription_ref: str | None = None
    discount_amount: int = Field(0, ge=0, description="Discount in minor units")
    coupon: str | None = None

    def subtotal(self) -> int:
        return sum(line.amount for line in self.lines)

    def raw_total(self) -> int:
        """Signed total in minor units after discounts, never discounted below zero."""
        subtotal = self.subtotal()
        if subtotal <= 0:
            return subtotal
        return max(subtotal - self.discount_amount, 0)

    def total(self, locale: str | None = None) -> str:
        return format_minor_units(self.raw_total(), self.currency, locale)

    def amount_off(self, locale: str | None = None) -> str:
        return format_minor_units(self.discount_amount, self.currency, locale)

    def has_discount(self) -> bool:
        return self.discount_amount > 0

    def invoice_items(self) -> LineItemView:
        return LineItemView(self.lines)

    def subscriptions(self) -> list[InvoiceLineItem]:
        return [line for line in self.lines if line.is_subscription()]

    def date(self) -> datetime:
        return self.created_at
