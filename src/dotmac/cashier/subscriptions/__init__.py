"""
Subscriptions.

The service lives in ``dotmac.cashier.subscriptions.service``; it depends on
the customer service, which in turn reads this package's models.
"""

from dotmac.cashier.subscriptions import status
from dotmac.cashier.subscriptions.models import DEFAULT_SLOT, Subscription
from dotmac.cashier.subscriptions.status import SubscriptionState

__all__ = ["DEFAULT_SLOT", "Subscription", "SubscriptionState", "status"]
