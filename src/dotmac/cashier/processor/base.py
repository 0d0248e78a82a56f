"""
Payment processor contract.

The lifecycle core only ever talks to the processor through this interface.
Implementations raise ``ProcessorRejectedError`` for declines and validation
failures and ``ProcessorUnavailableError`` once transient failures have used
up their retries.
"""

from abc import ABC, abstractmethod
from datetime import datetime

from dotmac.cashier.invoicing.models import Invoice
from dotmac.cashier.processor.schemas import (
    PlanAttributes,
    RefundRecord,
    RemoteCustomer,
    RemoteSubscription,
    SubscriptionOptions,
)


class PaymentProcessor(ABC):
    """Async client for the remote payment processor."""

    name: str = "processor"

    # Customers

    @abstractmethod
    async def create_customer(
        self, email: str, name: str, token: str | None = None
    ) -> RemoteCustomer: ...

    @abstractmethod
    async def update_customer_card(self, customer_ref: str, token: str) -> RemoteCustomer: ...

    @abstractmethod
    async def apply_coupon(self, customer_ref: str, coupon: str) -> RemoteCustomer: ...

    # Plans

    @abstractmethod
    async def register_plan(self, attributes: PlanAttributes) -> str: ...

    # Subscriptions

    @abstractmethod
    async def create_subscription(
        self, customer_ref: str, plan_id: str, options: SubscriptionOptions
    ) -> RemoteSubscription: ...

    @abstractmethod
    async def cancel_subscription(self, remote_id: str, immediate: bool = False) -> datetime:
        """Cancel and return the moment billing stops (period end, or now)."""

    @abstractmethod
    async def resume_subscription(self, remote_id: str) -> None: ...

    @abstractmethod
    async def swap_plan(self, remote_id: str, plan_id: str, quantity: int) -> None: ...

    @abstractmethod
    async def update_quantity(self, remote_id: str, quantity: int) -> None: ...

    # Invoices and charges

    @abstractmethod
    async def create_one_off_invoice(
        self, customer_ref: str, description: str, amount: int, currency: str
    ) -> Invoice: ...

    @abstractmethod
    async def refund(self, charge_ref: str, amount: int | None = None) -> RefundRecord: ...

    @abstractmethod
    async def fetch_invoices(self, customer_ref: str) -> list[Invoice]: ...

    async def close(self) -> None:
        """Release network resources."""
        return None
