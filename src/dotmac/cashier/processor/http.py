"""
HTTP client for the remote payment processor using httpx + tenacity.

Every call has a bounded timeout. Timeouts, transport errors, 429 and 5xx
responses are retried with exponential backoff; declines (other 4xx) are
business outcomes and are raised immediately.
"""

from datetime import UTC, datetime
from typing import Any

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from dotmac.cashier.exceptions import (
    PlanNotFoundError,
    ProcessorRejectedError,
    ProcessorUnavailableError,
    TransientNetworkError,
)
from dotmac.cashier.invoicing.models import Invoice, InvoiceLineItem, Period
from dotmac.cashier.processor.base import PaymentProcessor
from dotmac.cashier.processor.schemas import (
    PlanAttributes,
    RefundRecord,
    RemoteCustomer,
    RemoteSubscription,
    SubscriptionOptions,
)
from dotmac.cashier.settings import Settings, get_settings

logger = structlog.get_logger(__name__)

_RETRYABLE_STATUS = {429, 500, 502, 503, 504}


def _ts(value: datetime | None) -> int | None:
    return int(value.timestamp()) if value is not None else None


def _dt(value: int | float | None) -> datetime | None:
    return datetime.fromtimestamp(value, tz=UTC) if value is not None else None


class HttpProcessorClient(PaymentProcessor):
    """Processor client speaking the processor's JSON REST API."""

    name = "http"

    def __init__(
        self,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        config = (settings or get_settings()).processor
        self._config = config
        self._client = httpx.AsyncClient(
            base_url=config.base_url,
            timeout=httpx.Timeout(config.timeout_seconds),
            transport=transport,
            headers={
                "Authorization": f"Bearer {config.api_key}",
                "Accept": f"application/vnd.conekta-v{config.api_version}+json",
                "Content-Type": "application/json",
            },
        )

    async def close(self) -> None:
        await self._client.aclose()

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def _send(
        self,
        method: str,
        path: str,
        payload: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        try:
            response = await self._client.request(method, path, json=payload, params=params)
        except httpx.TimeoutException as exc:
            raise TransientNetworkError(f"Processor timed out: {exc}", {"path": path}) from exc
        except httpx.TransportError as exc:
            raise TransientNetworkError(f"Processor unreachable: {exc}", {"path": path}) from exc

        if response.status_code in _RETRYABLE_STATUS:
            raise TransientNetworkError(
                f"Processor answered {response.status_code}",
                {"path": path, "status": response.status_code},
            )
        if response.status_code >= 400:
            self._raise_rejection(response, path)
        if not response.content:
            return {}
        body: dict[str, Any] = response.json()
        return body

    @staticmethod
    def _raise_rejection(response: httpx.Response, path: str) -> None:
        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}
        details = body.get("details")
        detail = details[0] if isinstance(details, list) and details else {}
        if not isinstance(detail, dict):
            detail = {}
        code = detail.get("code") or body.get("code") or body.get("type")
        message = detail.get("message") or body.get("message") or response.reason_phrase
        if code == "plan_not_found" or (response.status_code == 404 and path.startswith("/plans")):
            raise PlanNotFoundError(message, plan_id=body.get("plan_id"))
        raise ProcessorRejectedError(
            message, processor_code=code, context={"path": path, "status": response.status_code}
        )

    async def _request(
        self,
        method: str,
        path: str,
        payload: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._config.max_retries + 1),
            wait=wait_exponential(
                multiplier=self._config.retry_backoff_min,
                min=self._config.retry_backoff_min,
                max=self._config.retry_backoff_max,
            ),
            retry=retry_if_exception_type(TransientNetworkError),
        )
        body: dict[str, Any] = {}
        try:
            async for attempt in retrying:
                with attempt:
                    if attempt.retry_state.attempt_number > 1:
                        logger.warning(
                            "Retrying processor request",
                            method=method,
                            path=path,
                            attempt=attempt.retry_state.attempt_number,
                        )
                    body = await self._send(method, path, payload, params)
        except RetryError as exc:
            logger.error("Processor unavailable", method=method, path=path)
            raise ProcessorUnavailableError(
                f"Processor request {method} {path} failed after retries",
                attempts=exc.last_attempt.attempt_number,
            ) from exc.last_attempt.exception()
        return body

    # ------------------------------------------------------------------
    # Parsing
    # ------------------------------------------------------------------

    @staticmethod
    def _customer(body: dict[str, Any]) -> RemoteCustomer:
        sources = (body.get("payment_sources") or {}).get("data") or []
        card = sources[0] if sources else {}
        return RemoteCustomer(
            id=body["id"],
            card_brand=card.get("brand"),
            card_last_four=card.get("last4"),
            coupon=body.get("coupon"),
        )

    @staticmethod
    def _subscription(body: dict[str, Any]) -> RemoteSubscription:
        return RemoteSubscription(
            id=body["id"],
            status=body.get("status", "active"),
            plan_id=body["plan_id"],
            quantity=body.get("quantity", 1),
            current_period_start=_dt(body["billing_cycle_start"]),
            current_period_end=_dt(body["billing_cycle_end"]),
            trial_end=_dt(body.get("trial_end")),
            cancel_at_period_end=bool(body.get("cancel_at_period_end")),
            ended_at=_dt(body.get("ended_at")),
        )

    @staticmethod
    def _invoice(body: dict[str, Any]) -> Invoice:
        currency = body.get("currency", "USD").upper()
        lines = tuple(
            InvoiceLineItem(
                id=line["id"],
                description=line.get("description", ""),
                amount=line["amount"],
                currency=line.get("currency", currency).upper(),
                quantity=line.get("quantity", 1),
                period=Period(
                    start=_dt(line["period"]["start"]), end=_dt(line["period"]["end"])
                ),
                plan_id=line.get("plan_id"),
                subscription_ref=line.get("subscription"),
                proration=bool(line.get("proration")),
            )
            for line in (body.get("lines") or {}).get("data", [])
        )
        return Invoice(
            id=body["id"],
            customer_ref=body["customer"],
            currency=currency,
            created_at=_dt(body["created_at"]),
            lines=lines,
            charge_ref=body.get("charge"),
            subscription_ref=body.get("subscription"),
            discount_amount=body.get("discount_amount", 0),
            coupon=body.get("coupon"),
        )

    # ------------------------------------------------------------------
    # Customers
    # ------------------------------------------------------------------

    async def create_customer(
        self, email: str, name: str, token: str | None = None
    ) -> RemoteCustomer:
        payload: dict[str, Any] = {"email": email, "name": name}
        if token:
            payload["payment_sources"] = [{"type": "card", "token_id": token}]
        return self._customer(await self._request("POST", "/customers", payload))

    async def update_customer_card(self, customer_ref: str, token: str) -> RemoteCustomer:
        payload = {"payment_sources": [{"type": "card", "token_id": token}]}
        return self._customer(await self._request("PUT", f"/customers/{customer_ref}", payload))

    async def apply_coupon(self, customer_ref: str, coupon: str) -> RemoteCustomer:
        return self._customer(
            await self._request("PUT", f"/customers/{customer_ref}", {"coupon": coupon})
        )

    # ------------------------------------------------------------------
    # Plans
    # ------------------------------------------------------------------

    async def register_plan(self, attributes: PlanAttributes) -> str:
        payload = attributes.model_dump(mode="json", exclude_none=True)
        body = await self._request("POST", "/plans", payload)
        return str(body.get("id", attributes.id))

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    async def create_subscription(
        self, customer_ref: str, plan_id: str, options: SubscriptionOptions
    ) -> RemoteSubscription:
        payload: dict[str, Any] = {
            "customer": customer_ref,
            "plan_id": plan_id,
            "quantity": options.quantity,
            "metadata": options.metadata,
        }
        if options.skip_trial:
            payload["trial_end"] = "now"
        elif options.trial_end is not None:
            payload["trial_end"] = _ts(options.trial_end)
        if options.billing_cycle_anchor is not None:
            payload["billing_cycle_anchor"] = _ts(options.billing_cycle_anchor)
        if options.coupon:
            payload["coupon"] = options.coupon
        return self._subscription(await self._request("POST", "/subscriptions", payload))

    async def cancel_subscription(self, remote_id: str, immediate: bool = False) -> datetime:
        body = await self._request(
            "POST", f"/subscriptions/{remote_id}/cancel", {"at_period_end": not immediate}
        )
        ends = body.get("ended_at") if immediate else body.get("billing_cycle_end")
        ends_at = _dt(ends)
        if ends_at is None:
            raise ProcessorRejectedError(
                "Processor did not report when the subscription ends",
                context={"subscription": remote_id},
            )
        return ends_at

    async def resume_subscription(self, remote_id: str) -> None:
        await self._request("POST", f"/subscriptions/{remote_id}/resume")

    async def swap_plan(self, remote_id: str, plan_id: str, quantity: int) -> None:
        await self._request(
            "PUT",
            f"/subscriptions/{remote_id}",
            {"plan_id": plan_id, "quantity": quantity, "prorate": True},
        )

    async def update_quantity(self, remote_id: str, quantity: int) -> None:
        await self._request("PUT", f"/subscriptions/{remote_id}", {"quantity": quantity})

    # ------------------------------------------------------------------
    # Invoices and charges
    # ------------------------------------------------------------------

    async def create_one_off_invoice(
        self, customer_ref: str, description: str, amount: int, currency: str
    ) -> Invoice:
        payload = {
            "customer": customer_ref,
            "currency": currency,
            "auto_charge": True,
            "line_items": [{"description": description, "amount": amount, "quantity": 1}],
        }
        return self._invoice(await self._request("POST", "/invoices", payload))

    async def refund(self, charge_ref: str, amount: int | None = None) -> RefundRecord:
        payload: dict[str, Any] = {"charge": charge_ref}
        if amount is not None:
            payload["amount"] = amount
        body = await self._request("POST", "/refunds", payload)
        return RefundRecord(
            id=body["id"],
            charge_ref=body.get("charge", charge_ref),
            amount=body["amount"],
            currency=body.get("currency", "USD").upper(),
            created_at=_dt(body.get("created_at")) or datetime.now(UTC),
        )

    async def fetch_invoices(self, customer_ref: str) -> list[Invoice]:
        body = await self._request("GET", "/invoices", params={"customer": customer_ref})
        invoices = [self._invoice(item) for item in body.get("data", [])]
        return sorted(invoices, key=lambda invoice: invoice.created_at, reverse=True)
