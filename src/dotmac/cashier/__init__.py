"""
DotMac Cashier - subscription lifecycle billing.

Keeps customers, named subscription slots and plans in a local database and
coordinates them with a remote payment processor:
- Trials, cancellation with grace period, resume and immediate cancellation
- Billing cycle anchoring and plan swaps with proration
- One-off invoices and refunds
- Webhook reconciliation of processor-side terminations
"""

from dotmac.cashier.exceptions import (
    BillingError,
    CustomerNotFoundError,
    DuplicatePlanError,
    DuplicateSlotError,
    InvalidStateTransitionError,
    InvoiceError,
    InvoiceNotFoundError,
    PlanNotFoundError,
    ProcessorRejectedError,
    ProcessorUnavailableError,
    SubscriptionError,
    SubscriptionNotFoundError,
    TransientNetworkError,
    WebhookError,
)

__version__ = "1.0.0"


def get_version() -> str:
    """Get cashier version."""
    return __version__


__all__ = [
    "__version__",
    "get_version",
    "BillingError",
    "CustomerNotFoundError",
    "DuplicatePlanError",
    "DuplicateSlotError",
    "InvalidStateTransitionError",
    "InvoiceError",
    "InvoiceNotFoundError",
    "PlanNotFoundError",
    "ProcessorRejectedError",
    "ProcessorUnavailableError",
    "SubscriptionError",
    "SubscriptionNotFoundError",
    "TransientNetworkError",
    "WebhookError",
]
