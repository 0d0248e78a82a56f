"""
In-process sandbox processor.

Behaves like the remote processor for local development and the test suite:
validates test tokens, keeps customers, plans, subscriptions, invoices and
charges in memory, computes anchored and prorated periods, and can produce
webhook envelopes for the subscriptions it holds.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import uuid4

import structlog

from dotmac.cashier.clock import Clock, default_clock
from dotmac.cashier.exceptions import PlanNotFoundError, ProcessorRejectedError
from dotmac.cashier.invoicing.models import Invoice, InvoiceLineItem, Period
from dotmac.cashier.processor.base import PaymentProcessor
from dotmac.cashier.processor.schemas import (
    PlanAttributes,
    PlanInterval,
    RefundRecord,
    RemoteCustomer,
    RemoteSubscription,
    SubscriptionOptions,
    add_interval,
)

logger = structlog.get_logger(__name__)

DECLINED_TOKEN = "tok_test_card_declined"


def _ref(prefix: str) -> str:
    return f"{prefix}_{uuid4().hex[:16]}"


@dataclass
class SandboxCoupon:
    code: str
    amount_off: int | None = None
    percent_off: int | None = None

    def discount(self, subtotal: int) -> int:
        if subtotal <= 0:
            return 0
        if self.amount_off is not None:
            return min(self.amount_off, subtotal)
        return subtotal * (self.percent_off or 0) // 100


@dataclass
class _Customer:
    id: str
    email: str
    name: str
    card_brand: str | None = None
    card_last_four: str | None = None
    coupon: str | None = None

    def as_remote(self) -> RemoteCustomer:
        return RemoteCustomer(
            id=self.id,
            card_brand=self.card_brand,
            card_last_four=self.card_last_four,
            coupon=self.coupon,
        )


@dataclass
class _Subscription:
    id: str
    customer_id: str
    plan_id: str
    quantity: int
    status: str
    period_start: datetime
    period_end: datetime
    trial_end: datetime | None = None
    cancel_at_period_end: bool = False
    ended_at: datetime | None = None
    cycle_anchor: datetime | None = None
    cycles: int = 0

    def as_remote(self) -> RemoteSubscription:
        return RemoteSubscription(
            id=self.id,
            status=self.status,
            plan_id=self.plan_id,
            quantity=self.quantity,
            current_period_start=self.period_start,
            current_period_end=self.period_end,
            trial_end=self.trial_end,
            cancel_at_period_end=self.cancel_at_period_end,
            ended_at=self.ended_at,
        )


@dataclass
class _Charge:
    id: str
    amount: int
    currency: str
    refunded: int = 0


@dataclass
class SandboxState:
    customers: dict[str, _Customer] = field(default_factory=dict)
    plans: dict[str, PlanAttributes] = field(default_factory=dict)
    coupons: dict[str, SandboxCoupon] = field(default_factory=dict)
    subscriptions: dict[str, _Subscription] = field(default_factory=dict)
    invoices: dict[str, list[Invoice]] = field(default_factory=dict)
    charges: dict[str, _Charge] = field(default_factory=dict)


class SandboxProcessor(PaymentProcessor):
    """Deterministic stand-in for the remote processor."""

    name = "sandbox"

    def __init__(self, clock: Clock | None = None) -> None:
        self.clock = clock or default_clock
        self.state = SandboxState()
        self.calls: list[tuple[str, dict[str, Any]]] = []

    # ------------------------------------------------------------------
    # Sandbox helpers
    # ------------------------------------------------------------------

    def create_coupon(
        self, code: str, amount_off: int | None = None, percent_off: int | None = None
    ) -> SandboxCoupon:
        if (amount_off is None) == (percent_off is None):
            raise ValueError("Give exactly one of amount_off or percent_off")
        coupon = SandboxCoupon(code=code, amount_off=amount_off, percent_off=percent_off)
        self.state.coupons[code] = coupon
        return coupon

    def subscription(self, remote_id: str) -> RemoteSubscription:
        sub = self._subscription(remote_id)
        self._advance_period(sub)
        return sub.as_remote()

    def event_for(self, event_type: str, remote_id: str, event_id: str | None = None) -> dict[str, Any]:
        """Build the webhook envelope the processor would send for a subscription."""
        sub = self._subscription(remote_id)
        return {
            "id": event_id or _ref("evt"),
            "type": event_type,
            "created": int(self.clock.now().timestamp()),
            "data": {"object": {"id": sub.id, "customer": sub.customer_id, "status": sub.status}},
        }

    def end_subscription(self, remote_id: str) -> dict[str, Any]:
        """Terminate a subscription processor-side and return the deleted event."""
        sub = self._subscription(remote_id)
        sub.status = "canceled"
        sub.ended_at = self.clock.now()
        return self.event_for("customer.subscription.deleted", remote_id)

    def _record(self, operation: str, **details: Any) -> None:
        self.calls.append((operation, details))

    # ------------------------------------------------------------------
    # Lookups and validation
    # ------------------------------------------------------------------

    def _customer(self, customer_ref: str) -> _Customer:
        customer = self.state.customers.get(customer_ref)
        if customer is None:
            raise ProcessorRejectedError(
                f"Customer {customer_ref} does not exist", processor_code="resource_not_found"
            )
        return customer

    def _subscription(self, remote_id: str) -> _Subscription:
        sub = self.state.subscriptions.get(remote_id)
        if sub is None:
            raise ProcessorRejectedError(
                f"Subscription {remote_id} does not exist", processor_code="resource_not_found"
            )
        return sub

    def _advance_period(self, sub: _Subscription) -> None:
        """Roll elapsed billing periods forward from the cycle anchor.

        A subscription set to cancel at period end is canceled once that end
        passes. Renewal periods are not invoiced.
        """
        plan = self._plan(sub.plan_id)
        now = self.clock.now()
        while sub.status != "canceled" and sub.period_end <= now:
            if sub.cancel_at_period_end:
                sub.status = "canceled"
                sub.ended_at = sub.period_end
                break
            sub.cycles += 1
            sub.period_start = sub.period_end
            sub.period_end = add_interval(
                sub.cycle_anchor or sub.period_start, plan.interval, plan.frequency * sub.cycles
            )
            sub.status = "active"

    def _plan(self, plan_id: str) -> PlanAttributes:
        plan = self.state.plans.get(plan_id)
        if plan is None:
            raise PlanNotFoundError(f"Plan {plan_id} is not registered", plan_id=plan_id)
        return plan

    @staticmethod
    def _card_from_token(token: str) -> tuple[str, str]:
        if token == DECLINED_TOKEN:
            raise ProcessorRejectedError("The card was declined", processor_code="card_declined")
        if not token.startswith("tok_test"):
            raise ProcessorRejectedError("Invalid payment token", processor_code="invalid_token")
        parts = token.split("_")
        if len(parts) >= 4 and parts[3].isdigit():
            return parts[2], parts[3][-4:]
        return "visa", "4242"

    def _charge(self, customer: _Customer, amount: int, currency: str) -> str | None:
        if amount <= 0:
            return None
        if customer.card_last_four is None:
            raise ProcessorRejectedError(
                "Customer has no payment source", processor_code="no_payment_source"
            )
        charge = _Charge(id=_ref("ch"), amount=amount, currency=currency)
        self.state.charges[charge.id] = charge
        return charge.id

    def _store_invoice(
        self,
        customer: _Customer,
        currency: str,
        lines: list[InvoiceLineItem],
        subscription_ref: str | None = None,
        coupon_code: str | None = None,
    ) -> Invoice:
        coupon_code = coupon_code or customer.coupon
        coupon = self.state.coupons.get(coupon_code) if coupon_code else None
        subtotal = sum(line.amount for line in lines)
        discount = coupon.discount(subtotal) if coupon else 0
        charge_ref = self._charge(customer, subtotal - discount, currency)
        invoice = Invoice(
            id=_ref("inv"),
            customer_ref=customer.id,
            currency=currency,
            created_at=self.clock.now(),
            lines=tuple(lines),
            charge_ref=charge_ref,
            subscription_ref=subscription_ref,
            discount_amount=discount,
            coupon=coupon.code if coupon else None,
        )
        self.state.invoices.setdefault(customer.id, []).append(invoice)
        return invoice

    # ------------------------------------------------------------------
    # Customers
    # ------------------------------------------------------------------

    async def create_customer(
        self, email: str, name: str, token: str | None = None
    ) -> RemoteCustomer:
        self._record("create_customer", email=email)
        customer = _Customer(id=_ref("cus"), email=email, name=name)
        if token:
            customer.card_brand, customer.card_last_four = self._card_from_token(token)
        self.state.customers[customer.id] = customer
        return customer.as_remote()

    async def update_customer_card(self, customer_ref: str, token: str) -> RemoteCustomer:
        self._record("update_customer_card", customer=customer_ref)
        customer = self._customer(customer_ref)
        customer.card_brand, customer.card_last_four = self._card_from_token(token)
        return customer.as_remote()

    async def apply_coupon(self, customer_ref: str, coupon: str) -> RemoteCustomer:
        self._record("apply_coupon", customer=customer_ref, coupon=coupon)
        customer = self._customer(customer_ref)
        if coupon not in self.state.coupons:
            raise ProcessorRejectedError(f"No such coupon: {coupon}", processor_code="invalid_coupon")
        customer.coupon = coupon
        return customer.as_remote()

    # ------------------------------------------------------------------
    # Plans
    # ------------------------------------------------------------------

    async def register_plan(self, attributes: PlanAttributes) -> str:
        self._record("register_plan", plan=attributes.id)
        if attributes.id in self.state.plans:
            raise ProcessorRejectedError(
                f"Plan {attributes.id} already exists", processor_code="duplicate_plan"
            )
        self.state.plans[attributes.id] = attributes
        return attributes.id

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    async def create_subscription(
        self, customer_ref: str, plan_id: str, options: SubscriptionOptions
    ) -> RemoteSubscription:
        self._record("create_subscription", customer=customer_ref, plan=plan_id)
        customer = self._customer(customer_ref)
        plan = self._plan(plan_id)
        if options.coupon and options.coupon not in self.state.coupons:
            raise ProcessorRejectedError(
                f"No such coupon: {options.coupon}", processor_code="invalid_coupon"
            )

        now = self.clock.now()
        trial_end = None if options.skip_trial else options.trial_end
        if trial_end is None and not options.skip_trial and plan.trial_period_days:
            trial_end = add_interval(now, PlanInterval.DAY, plan.trial_period_days)

        sub = _Subscription(
            id=_ref("sub"),
            customer_id=customer.id,
            plan_id=plan.id,
            quantity=options.quantity,
            status="in_trial" if trial_end else "active",
            period_start=now,
            period_end=now,
            trial_end=trial_end,
        )
        full_period_end = add_interval(now, plan.interval, plan.frequency)
        amount = plan.amount * options.quantity

        if trial_end is not None:
            sub.period_end = trial_end
            line_amount = 0
            description = f"Trial period for {plan.name}"
        elif options.billing_cycle_anchor is not None:
            anchor = options.billing_cycle_anchor
            sub.period_end = anchor
            full = (full_period_end - now).total_seconds()
            line_amount = round(amount * min((anchor - now).total_seconds() / full, 1.0))
            description = f"Remaining time on {plan.name} until {anchor.date().isoformat()}"
        else:
            sub.period_end = full_period_end
            line_amount = amount
            description = f"{options.quantity} × {plan.name}"
        sub.cycle_anchor = sub.period_end

        if customer.card_last_four is None and line_amount > 0:
            raise ProcessorRejectedError(
                "Customer has no payment source", processor_code="no_payment_source"
            )

        line = InvoiceLineItem(
            id=_ref("il"),
            description=description,
            amount=line_amount,
            currency=plan.currency,
            quantity=options.quantity,
            period=Period(start=now, end=sub.period_end),
            plan_id=plan.id,
            subscription_ref=sub.id,
        )
        self.state.subscriptions[sub.id] = sub
        self._store_invoice(customer, plan.currency, [line], sub.id, options.coupon)
        logger.debug("Sandbox subscription created", subscription=sub.id, plan=plan.id)
        return sub.as_remote()

    async def cancel_subscription(self, remote_id: str, immediate: bool = False) -> datetime:
        self._record("cancel_subscription", subscription=remote_id, immediate=immediate)
        sub = self._subscription(remote_id)
        self._advance_period(sub)
        if sub.status == "canceled":
            raise ProcessorRejectedError(
                f"Subscription {remote_id} has already ended", processor_code="already_canceled"
            )
        if immediate:
            sub.status = "canceled"
            sub.ended_at = self.clock.now()
            return sub.ended_at
        sub.cancel_at_period_end = True
        return sub.period_end

    async def resume_subscription(self, remote_id: str) -> None:
        self._record("resume_subscription", subscription=remote_id)
        sub = self._subscription(remote_id)
        self._advance_period(sub)
        if sub.status == "canceled" or sub.period_end <= self.clock.now():
            raise ProcessorRejectedError(
                f"Subscription {remote_id} can no longer be resumed", processor_code="already_canceled"
            )
        sub.cancel_at_period_end = False

    async def swap_plan(self, remote_id: str, plan_id: str, quantity: int) -> None:
        self._record("swap_plan", subscription=remote_id, plan=plan_id, quantity=quantity)
        sub = self._subscription(remote_id)
        new_plan = self._plan(plan_id)
        self._advance_period(sub)
        old_plan = self._plan(sub.plan_id)
        now = self.clock.now()
        on_trial = sub.trial_end is not None and sub.trial_end > now

        if not on_trial and sub.period_end > now and sub.period_start < sub.period_end:
            remaining = (sub.period_end - now).total_seconds() / (
                sub.period_end - sub.period_start
            ).total_seconds()
            period = Period(start=now, end=sub.period_end)
            credit = -round(old_plan.amount * sub.quantity * remaining)
            debit = round(new_plan.amount * quantity * remaining)
            lines = [
                InvoiceLineItem(
                    id=_ref("il"),
                    description=f"Unused time on {old_plan.name}",
                    amount=credit,
                    currency=old_plan.currency,
                    quantity=sub.quantity,
                    period=period,
                    plan_id=old_plan.id,
                    subscription_ref=sub.id,
                    proration=True,
                ),
                InvoiceLineItem(
                    id=_ref("il"),
                    description=f"Remaining time on {new_plan.name}",
                    amount=debit,
                    currency=new_plan.currency,
                    quantity=quantity,
                    period=period,
                    plan_id=new_plan.id,
                    subscription_ref=sub.id,
                    proration=True,
                ),
            ]
            self._store_invoice(self._customer(sub.customer_id), new_plan.currency, lines, sub.id)

        sub.plan_id = new_plan.id
        sub.quantity = quantity
        sub.cycle_anchor = sub.period_end
        sub.cycles = 0

    async def update_quantity(self, remote_id: str, quantity: int) -> None:
        self._record("update_quantity", subscription=remote_id, quantity=quantity)
        if quantity < 1:
            raise ProcessorRejectedError("Quantity must be at least 1", processor_code="invalid_quantity")
        sub = self._subscription(remote_id)
        self._advance_period(sub)
        sub.quantity = quantity

    # ------------------------------------------------------------------
    # Invoices and charges
    # ------------------------------------------------------------------

    async def create_one_off_invoice(
        self, customer_ref: str, description: str, amount: int, currency: str
    ) -> Invoice:
        self._record("create_one_off_invoice", customer=customer_ref, amount=amount)
        customer = self._customer(customer_ref)
        now = self.clock.now()
        line = InvoiceLineItem(
            id=_ref("il"),
            description=description,
            amount=amount,
            currency=currency,
            period=Period(start=now, end=now),
        )
        return self._store_invoice(customer, currency, [line])

    async def refund(self, charge_ref: str, amount: int | None = None) -> RefundRecord:
        self._record("refund", charge=charge_ref, amount=amount)
        charge = self.state.charges.get(charge_ref)
        if charge is None:
            raise ProcessorRejectedError(
                f"Charge {charge_ref} does not exist", processor_code="resource_not_found"
            )
        refundable = charge.amount - charge.refunded
        amount = refundable if amount is None else amount
        if amount <= 0 or amount > refundable:
            raise ProcessorRejectedError(
                f"Cannot refund {amount} of charge {charge_ref}; {refundable} is refundable",
                processor_code="invalid_refund_amount",
            )
        charge.refunded += amount
        return RefundRecord(
            id=_ref("re"),
            charge_ref=charge.id,
            amount=amount,
            currency=charge.currency,
            created_at=self.clock.now(),
        )

    async def fetch_invoices(self, customer_ref: str) -> list[Invoice]:
        self._customer(customer_ref)
        invoices = self.state.invoices.get(customer_ref, [])
        return sorted(invoices, key=lambda invoice: invoice.created_at, reverse=True)
