"""
Payment processor clients.
"""

from dotmac.cashier.processor.base import PaymentProcessor
from dotmac.cashier.processor.http import HttpProcessorClient
from dotmac.cashier.processor.sandbox import SandboxProcessor
from dotmac.cashier.processor.schemas import (
    PlanAttributes,
    PlanInterval,
    RefundRecord,
    RemoteCustomer,
    RemoteSubscription,
    SubscriptionOptions,
    add_interval,
)
from dotmac.cashier.settings import ProcessorBackend, Settings, get_settings


def build_processor(settings: Settings | None = None) -> PaymentProcessor:
    """Create the processor client selected by ``processor.backend``."""
    settings = settings or get_settings()
    if settings.processor.backend == ProcessorBackend.HTTP:
        return HttpProcessorClient(settings)
    return SandboxProcessor()


__all__ = [
    "PaymentProcessor",
    "HttpProcessorClient",
    "SandboxProcessor",
    "PlanAttributes",
    "PlanInterval",
    "RefundRecord",
    "RemoteCustomer",
    "RemoteSubscription",
    "SubscriptionOptions",
    "add_interval",
    "build_processor",
]
