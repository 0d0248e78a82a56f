"""Tests for the HTTP processor client."""

import json
from datetime import UTC, datetime

import httpx
import pytest
import pytest_asyncio

from dotmac.cashier.exceptions import (
    PlanNotFoundError,
    ProcessorRejectedError,
    ProcessorUnavailableError,
)
from dotmac.cashier.processor.http import HttpProcessorClient
from dotmac.cashier.processor.schemas import PlanAttributes, SubscriptionOptions

pytestmark = pytest.mark.unit

PERIOD_START = int(datetime(2026, 1, 15, 12, tzinfo=UTC).timestamp())
PERIOD_END = int(datetime(2026, 2, 15, 12, tzinfo=UTC).timestamp())


@pytest.fixture
def http_settings(settings):
    settings.processor.api_key = "key_test_123"
    settings.processor.base_url = "https://processor.test"
    settings.processor.max_retries = 3
    settings.processor.retry_backoff_min = 0
    settings.processor.retry_backoff_max = 0
    return settings


@pytest_asyncio.fixture
async def make_client(http_settings):
    """Build clients whose requests go to ``handler``."""
    clients = []

    def _make(handler):
        client = HttpProcessorClient(http_settings, transport=httpx.MockTransport(handler))
        clients.append(client)
        return client

    yield _make
    for client in clients:
        await client.close()


def _subscription_body(**overrides):
    body = {
        "id": "sub_remote_1",
        "status": "active",
        "plan_id": "basic-monthly",
        "quantity": 1,
        "billing_cycle_start": PERIOD_START,
        "billing_cycle_end": PERIOD_END,
    }
    body.update(overrides)
    return body


class TestRetries:
    """Transient failures are retried, declines are not."""

    async def test_server_errors_exhaust_retries(self, make_client):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(503)

        client = make_client(handler)
        with pytest.raises(ProcessorUnavailableError) as exc_info:
            await client.resume_subscription("sub_1")

        assert len(calls) == 4
        assert exc_info.value.context == {"attempts": 4}
        assert exc_info.value.error_code == "PROCESSOR_UNAVAILABLE"

    async def test_timeouts_are_retried(self, make_client):
        calls = []

        def handler(request):
            calls.append(request)
            raise httpx.ReadTimeout("timed out", request=request)

        client = make_client(handler)
        with pytest.raises(ProcessorUnavailableError):
            await client.update_quantity("sub_1", 2)
        assert len(calls) == 4

    async def test_zero_retries_sends_once(self, make_client, http_settings):
        http_settings.processor.max_retries = 0
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(503)

        client = make_client(handler)
        with pytest.raises(ProcessorUnavailableError) as exc_info:
            await client.resume_subscription("sub_1")

        assert len(calls) == 1
        assert exc_info.value.context == {"attempts": 1}

    async def test_recovers_after_transient_failure(self, make_client):
        responses = iter([httpx.Response(502), httpx.Response(200, json=_subscription_body())])

        client = make_client(lambda request: next(responses))
        remote = await client.create_subscription(
            "cus_1", "basic-monthly", SubscriptionOptions()
        )
        assert remote.id == "sub_remote_1"

    async def test_decline_is_not_retried(self, make_client):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(
                402,
                json={"details": [{"code": "card_declined", "message": "The card was declined"}]},
            )

        client = make_client(handler)
        with pytest.raises(ProcessorRejectedError) as exc_info:
            await client.create_customer("a@example.com", "A", "tok_1")

        assert len(calls) == 1
        assert exc_info.value.processor_code == "card_declined"
        assert exc_info.value.message == "The card was declined"
        assert exc_info.value.status_code == 402

    async def test_plan_not_found(self, make_client):
        client = make_client(
            lambda request: httpx.Response(
                422, json={"details": [{"code": "plan_not_found", "message": "No such plan"}]}
            )
        )
        with pytest.raises(PlanNotFoundError):
            await client.swap_plan("sub_1", "missing", 1)

    @pytest.mark.parametrize(
        "body",
        [["unexpected", "list"], "plain string", {"details": "not a list"}, {"details": [None]}],
    )
    async def test_rejection_with_unexpected_body(self, make_client, body):
        client = make_client(lambda request: httpx.Response(400, json=body))

        with pytest.raises(ProcessorRejectedError) as exc_info:
            await client.update_quantity("sub_1", 2)

        assert exc_info.value.message == "Bad Request"
        assert exc_info.value.context["status"] == 400


class TestRequests:
    """Test request shapes and response parsing."""

    async def test_headers(self, make_client):
        seen = {}

        def handler(request):
            seen["headers"] = request.headers
            seen["url"] = str(request.url)
            return httpx.Response(200, json={"id": "basic-monthly"})

        client = make_client(handler)
        plan_id = await client.register_plan(
            PlanAttributes(id="basic-monthly", name="Basic", amount=1000)
        )

        assert plan_id == "basic-monthly"
        assert seen["url"] == "https://processor.test/plans"
        assert seen["headers"]["Authorization"] == "Bearer key_test_123"
        assert seen["headers"]["Accept"] == "application/vnd.conekta-v2.0.0+json"

    async def test_create_customer_parses_card(self, make_client):
        def handler(request):
            payload = json.loads(request.content)
            assert payload["payment_sources"] == [{"type": "card", "token_id": "tok_1"}]
            return httpx.Response(
                200,
                json={
                    "id": "cus_1",
                    "payment_sources": {"data": [{"brand": "visa", "last4": "4242"}]},
                },
            )

        remote = await make_client(handler).create_customer("a@example.com", "A", "tok_1")

        assert remote.id == "cus_1"
        assert remote.card_brand == "visa"
        assert remote.card_last_four == "4242"

    async def test_create_subscription_payload(self, make_client):
        captured = {}
        trial_end = datetime(2026, 2, 1, tzinfo=UTC)

        def handler(request):
            captured.update(json.loads(request.content))
            return httpx.Response(
                200,
                json=_subscription_body(status="in_trial", trial_end=int(trial_end.timestamp())),
            )

        remote = await make_client(handler).create_subscription(
            "cus_1", "basic-monthly", SubscriptionOptions(quantity=2, trial_end=trial_end)
        )

        assert captured["quantity"] == 2
        assert captured["trial_end"] == int(trial_end.timestamp())
        assert remote.trial_end == trial_end
        assert remote.current_period_end == datetime(2026, 2, 15, 12, tzinfo=UTC)

    async def test_skip_trial_sends_now(self, make_client):
        captured = {}

        def handler(request):
            captured.update(json.loads(request.content))
            return httpx.Response(200, json=_subscription_body())

        await make_client(handler).create_subscription(
            "cus_1", "basic-monthly", SubscriptionOptions(skip_trial=True)
        )
        assert captured["trial_end"] == "now"

    async def test_cancel_returns_period_end(self, make_client):
        client = make_client(
            lambda request: httpx.Response(200, json=_subscription_body(cancel_at_period_end=True))
        )
        ends_at = await client.cancel_subscription("sub_remote_1")
        assert ends_at == datetime(2026, 2, 15, 12, tzinfo=UTC)

    async def test_fetch_invoices_newest_first(self, make_client):
        def invoice(invoice_id, created):
            return {
                "id": invoice_id,
                "customer": "cus_1",
                "currency": "usd",
                "created_at": created,
                "lines": {
                    "data": [
                        {
                            "id": f"il_{invoice_id}",
                            "description": "Basic",
                            "amount": 1000,
                            "period": {"start": PERIOD_START, "end": PERIOD_END},
                            "plan_id": "basic-monthly",
                            "subscription": "sub_remote_1",
                        }
                    ]
                },
            }

        client = make_client(
            lambda request: httpx.Response(
                200, json={"data": [invoice("inv_old", PERIOD_START), invoice("inv_new", PERIOD_END)]}
            )
        )
        invoices = await client.fetch_invoices("cus_1")

        assert [i.id for i in invoices] == ["inv_new", "inv_old"]
        assert invoices[0].currency == "USD"
        assert invoices[0].total() == "$10.00"
        assert invoices[0].subscriptions()[0].subscription_ref == "sub_remote_1"
