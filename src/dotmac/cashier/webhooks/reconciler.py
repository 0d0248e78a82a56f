"""
Webhook reconciler.

Turns processor events into local subscription mutations. Events are matched
to rows by the processor's subscription id. Unknown rows and unknown event
types are acknowledged without doing anything, so the processor never
retries them; only malformed envelopes are rejected.
"""

from collections.abc import Awaitable, Callable
from typing import Any

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from dotmac.cashier.subscriptions.service import SubscriptionService
from dotmac.cashier.webhooks.schemas import WebhookEnvelope, WebhookResult

logger = structlog.get_logger(__name__)

Handler = Callable[[AsyncSession, WebhookEnvelope], Awaitable[WebhookResult]]


class WebhookReconciler:
    """Dispatches processor events to handlers by event type."""

    provider = "processor"

    def __init__(self, subscriptions: SubscriptionService) -> None:
        self.subscriptions = subscriptions
        self._handlers: dict[str, Handler] = {
            "customer.subscription.deleted": self.handle_subscription_deleted,
            "subscription.canceled": self.handle_subscription_deleted,
            "subscription.ended": self.handle_subscription_deleted,
        }

    def handles(self, event_type: str) -> bool:
        return event_type in self._handlers

    async def handle(
        self, session: AsyncSession, payload: bytes | str | dict[str, Any]
    ) -> WebhookResult:
        envelope = WebhookEnvelope.parse(payload, provider=self.provider)
        handler = self._handlers.get(envelope.type)
        if handler is None:
            logger.debug("Ignoring webhook event", event_id=envelope.id, event_type=envelope.type)
            return WebhookResult(event_id=envelope.id, event_type=envelope.type)
        return await handler(session, envelope)

    async def handle_subscription_deleted(
        self, session: AsyncSession, envelope: WebhookEnvelope
    ) -> WebhookResult:
        subscription = await self.subscriptions.find_by_processor_id(session, envelope.object_id)
        if subscription is None:
            logger.info(
                "Webhook for unknown subscription",
                event_id=envelope.id,
                event_type=envelope.type,
                processor_id=envelope.object_id,
            )
            return WebhookResult(event_id=envelope.id, event_type=envelope.type)

        subscription = await self.subscriptions.mark_as_ended(session, subscription)
        logger.info(
            "Subscription ended by processor",
            event_id=envelope.id,
            subscription_id=subscription.id,
            customer_id=subscription.customer_id,
        )
        return WebhookResult(
            event_id=envelope.id,
            event_type=envelope.type,
            handled=True,
            subscription_id=subscription.id,
        )
