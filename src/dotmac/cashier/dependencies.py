"""
Shared dependencies for the cashier services and HTTP routes.

One processor client is created per process and reused; tests override these
functions through FastAPI's ``dependency_overrides``.
"""

from typing import Annotated

from fastapi import Depends

from dotmac.cashier.clock import Clock, default_clock
from dotmac.cashier.customers.service import CustomerService
from dotmac.cashier.processor import PaymentProcessor, build_processor
from dotmac.cashier.settings import Settings, get_settings
from dotmac.cashier.subscriptions.service import SubscriptionService
from dotmac.cashier.webhooks.reconciler import WebhookReconciler

_processor: PaymentProcessor | None = None


def get_processor() -> PaymentProcessor:
    """Get or create the configured processor client."""
    global _processor
    if _processor is None:
        _processor = build_processor(get_settings())
    return _processor


async def close_processor() -> None:
    """Close the shared processor client, if one was created."""
    global _processor
    if _processor is not None:
        await _processor.close()
        _processor = None


def get_clock() -> Clock:
    return default_clock


def get_subscription_service(
    processor: Annotated[PaymentProcessor, Depends(get_processor)],
    clock: Annotated[Clock, Depends(get_clock)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> SubscriptionService:
    """Dependency to get SubscriptionService instance."""
    return SubscriptionService(
        processor,
        customers=CustomerService(processor, clock),
        clock=clock,
        settings=settings,
    )


def get_webhook_reconciler(
    subscriptions: Annotated[SubscriptionService, Depends(get_subscription_service)],
) -> WebhookReconciler:
    """Dependency to get WebhookReconciler instance."""
    return WebhookReconciler(subscriptions)
