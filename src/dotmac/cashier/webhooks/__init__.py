"""
Processor webhooks.
"""

from dotmac.cashier.webhooks.reconciler import WebhookReconciler
from dotmac.cashier.webhooks.schemas import WebhookEnvelope, WebhookResult
from dotmac.cashier.webhooks.signature import sign_payload, verify_signature

__all__ = [
    "WebhookEnvelope",
    "WebhookReconciler",
    "WebhookResult",
    "sign_payload",
    "verify_signature",
]
