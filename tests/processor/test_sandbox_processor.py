"""Tests for the in-process sandbox processor."""

from datetime import UTC, datetime, timedelta

import pytest
import pytest_asyncio

from dotmac.cashier.exceptions import PlanNotFoundError, ProcessorRejectedError
from dotmac.cashier.processor import HttpProcessorClient, SandboxProcessor, build_processor
from dotmac.cashier.processor.schemas import PlanAttributes, SubscriptionOptions
from dotmac.cashier.settings import ProcessorBackend

pytestmark = pytest.mark.unit


@pytest_asyncio.fixture
async def linked(sandbox):
    """A processor customer with a card and a registered $10 plan."""
    await sandbox.register_plan(PlanAttributes(id="basic-monthly", name="Basic", amount=1000))
    return await sandbox.create_customer("a@example.com", "A", "tok_test_visa_4242")


class TestTokens:
    """Test card token handling."""

    async def test_token_sets_card_summary(self, sandbox):
        remote = await sandbox.create_customer("a@example.com", "A", "tok_test_amex_0005")
        assert remote.card_brand == "amex"
        assert remote.card_last_four == "0005"

    async def test_plain_test_token_defaults_to_visa(self, sandbox):
        remote = await sandbox.create_customer("a@example.com", "A", "tok_test")
        assert (remote.card_brand, remote.card_last_four) == ("visa", "4242")

    @pytest.mark.parametrize(
        ("token", "code"),
        [("tok_test_card_declined", "card_declined"), ("tok_live_123", "invalid_token")],
    )
    async def test_rejected_tokens(self, sandbox, token, code):
        with pytest.raises(ProcessorRejectedError) as exc_info:
            await sandbox.create_customer("a@example.com", "A", token)
        assert exc_info.value.processor_code == code

    async def test_customer_without_card_cannot_pay(self, sandbox, linked):
        bare = await sandbox.create_customer("b@example.com", "B")
        with pytest.raises(ProcessorRejectedError) as exc_info:
            await sandbox.create_subscription(bare.id, "basic-monthly", SubscriptionOptions())
        assert exc_info.value.processor_code == "no_payment_source"

    async def test_customer_without_card_can_start_trial(self, sandbox, linked, now):
        bare = await sandbox.create_customer("b@example.com", "B")
        remote = await sandbox.create_subscription(
            bare.id, "basic-monthly", SubscriptionOptions(trial_end=now + timedelta(days=7))
        )
        assert remote.status == "in_trial"


class TestCoupons:
    """Test coupon discounts on invoices."""

    def test_coupon_needs_exactly_one_discount(self, sandbox):
        with pytest.raises(ValueError):
            sandbox.create_coupon("BOTH", amount_off=100, percent_off=10)
        with pytest.raises(ValueError):
            sandbox.create_coupon("NEITHER")

    async def test_percent_coupon(self, sandbox, linked):
        sandbox.create_coupon("TENOFF", percent_off=10)
        await sandbox.create_subscription(
            linked.id, "basic-monthly", SubscriptionOptions(coupon="TENOFF")
        )

        invoice = (await sandbox.fetch_invoices(linked.id))[0]
        assert invoice.subtotal() == 1000
        assert invoice.discount_amount == 100
        assert invoice.raw_total() == 900
        assert invoice.coupon == "TENOFF"

    async def test_customer_coupon_applies_to_later_invoices(self, sandbox, linked):
        sandbox.create_coupon("FIVE", amount_off=500)
        await sandbox.apply_coupon(linked.id, "FIVE")

        invoice = await sandbox.create_one_off_invoice(linked.id, "Setup fee", 300, "USD")
        assert invoice.discount_amount == 300
        assert invoice.raw_total() == 0
        assert invoice.charge_ref is None

    async def test_unknown_coupon(self, sandbox, linked):
        with pytest.raises(ProcessorRejectedError) as exc_info:
            await sandbox.apply_coupon(linked.id, "NOPE")
        assert exc_info.value.processor_code == "invalid_coupon"


class TestRefunds:
    """Test refunds against sandbox charges."""

    async def test_partial_then_full_refund(self, sandbox, linked):
        invoice = await sandbox.create_one_off_invoice(linked.id, "Setup fee", 1000, "USD")

        partial = await sandbox.refund(invoice.charge_ref, 400)
        rest = await sandbox.refund(invoice.charge_ref)

        assert partial.amount == 400
        assert rest.amount == 600
        with pytest.raises(ProcessorRejectedError):
            await sandbox.refund(invoice.charge_ref, 1)

    async def test_refund_beyond_charge(self, sandbox, linked):
        invoice = await sandbox.create_one_off_invoice(linked.id, "Setup fee", 1000, "USD")
        with pytest.raises(ProcessorRejectedError) as exc_info:
            await sandbox.refund(invoice.charge_ref, 1001)
        assert exc_info.value.processor_code == "invalid_refund_amount"

    async def test_unknown_charge(self, sandbox):
        with pytest.raises(ProcessorRejectedError):
            await sandbox.refund("ch_missing")


class TestSubscriptionsAndPlans:
    """Test remote subscription bookkeeping."""

    async def test_duplicate_plan(self, sandbox, linked):
        with pytest.raises(ProcessorRejectedError):
            await sandbox.register_plan(PlanAttributes(id="basic-monthly", name="Basic", amount=1))

    async def test_unknown_plan(self, sandbox, linked):
        with pytest.raises(PlanNotFoundError):
            await sandbox.create_subscription(linked.id, "missing", SubscriptionOptions())

    async def test_cancel_twice_rejected(self, sandbox, linked, now):
        remote = await sandbox.create_subscription(linked.id, "basic-monthly", SubscriptionOptions())

        assert await sandbox.cancel_subscription(remote.id, immediate=True) == now
        with pytest.raises(ProcessorRejectedError):
            await sandbox.cancel_subscription(remote.id)

    async def test_end_subscription_event(self, sandbox, linked):
        remote = await sandbox.create_subscription(linked.id, "basic-monthly", SubscriptionOptions())

        event = sandbox.end_subscription(remote.id)

        assert event["type"] == "customer.subscription.deleted"
        assert event["data"]["object"] == {
            "id": remote.id,
            "customer": linked.id,
            "status": "canceled",
        }
        assert sandbox.subscription(remote.id).status == "canceled"

    async def test_calls_are_recorded(self, sandbox, linked):
        assert [name for name, _ in sandbox.calls] == ["register_plan", "create_customer"]


class TestBillingPeriods:
    """Test renewal of elapsed billing periods."""

    async def test_period_renews_from_anchor(self, sandbox, linked, clock):
        remote = await sandbox.create_subscription(linked.id, "basic-monthly", SubscriptionOptions())
        assert remote.current_period_end == datetime(2026, 2, 15, 12, tzinfo=UTC)

        clock.advance(days=40)
        renewed = sandbox.subscription(remote.id)

        assert renewed.current_period_start == datetime(2026, 2, 15, 12, tzinfo=UTC)
        assert renewed.current_period_end == datetime(2026, 3, 15, 12, tzinfo=UTC)
        assert renewed.status == "active"

    async def test_trial_rolls_into_paid_periods(self, sandbox, linked, clock, now):
        remote = await sandbox.create_subscription(
            linked.id, "basic-monthly", SubscriptionOptions(trial_end=now + timedelta(days=7))
        )

        clock.advance(days=40)
        renewed = sandbox.subscription(remote.id)

        assert renewed.status == "active"
        assert renewed.current_period_end == datetime(2026, 3, 22, 12, tzinfo=UTC)

    async def test_cancel_after_renewal_returns_current_period_end(self, sandbox, linked, clock):
        remote = await sandbox.create_subscription(linked.id, "basic-monthly", SubscriptionOptions())
        clock.advance(days=40)

        assert await sandbox.cancel_subscription(remote.id) == datetime(2026, 3, 15, 12, tzinfo=UTC)

    async def test_scheduled_cancel_ends_at_period_end(self, sandbox, linked, clock):
        remote = await sandbox.create_subscription(linked.id, "basic-monthly", SubscriptionOptions())
        await sandbox.cancel_subscription(remote.id)

        clock.advance(days=40)
        ended = sandbox.subscription(remote.id)

        assert ended.status == "canceled"
        assert ended.ended_at == datetime(2026, 2, 15, 12, tzinfo=UTC)
        with pytest.raises(ProcessorRejectedError):
            await sandbox.resume_subscription(remote.id)


class TestBuildProcessor:
    """Test backend selection."""

    def test_sandbox_backend(self, settings):
        settings.processor.backend = ProcessorBackend.SANDBOX
        assert isinstance(build_processor(settings), SandboxProcessor)

    async def test_http_backend(self, settings):
        settings.processor.backend = ProcessorBackend.HTTP
        processor = build_processor(settings)
        assert isinstance(processor, HttpProcessorClient)
        await processor.close()
