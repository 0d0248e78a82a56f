"""
Invoice service.

Invoices are read from the processor on every call; one-off charges and
refunds go straight to the processor as well.
"""

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from dotmac.cashier.customers.models import Customer
from dotmac.cashier.customers.service import CustomerService
from dotmac.cashier.exceptions import InvoiceNotFoundError
from dotmac.cashier.invoicing.models import Invoice
from dotmac.cashier.logging import log_audit_event
from dotmac.cashier.processor.base import PaymentProcessor
from dotmac.cashier.processor.schemas import RefundRecord
from dotmac.cashier.settings import Settings, get_settings

logger = structlog.get_logger(__name__)


class InvoiceService:
    """Customer invoices, one-off charges and refunds."""

    def __init__(
        self,
        processor: PaymentProcessor,
        customers: CustomerService | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.processor = processor
        self.customers = customers or CustomerService(processor)
        self.settings = settings or get_settings()

    async def invoices(self, session: AsyncSession, customer: Customer) -> list[Invoice]:
        """All invoices of the customer, newest first."""
        if customer.processor_id is None:
            return []
        invoices = await self.processor.fetch_invoices(customer.processor_id)
        return sorted(invoices, key=lambda invoice: invoice.created_at, reverse=True)

    async def find_invoice(
        self, session: AsyncSession, customer: Customer, invoice_id: str
    ) -> Invoice:
        for invoice in await self.invoices(session, customer):
            if invoice.id == invoice_id:
                return invoice
        raise InvoiceNotFoundError(f"Invoice {invoice_id} not found", invoice_id=invoice_id)

    async def invoice_for(
        self,
        session: AsyncSession,
        customer: Customer,
        description: str,
        amount: int,
        currency: str | None = None,
    ) -> Invoice:
        """Bill a single line outside any subscription, charged immediately.

        Args:
            description: Line description shown on the invoice
            amount: Amount in minor units, must be positive
            currency: ISO code, defaults to the billing currency
        """
        if amount <= 0:
            raise ValueError("Invoice amount must be positive")
        currency = (currency or self.settings.billing.currency).upper()
        customer_ref = await self.customers.ensure_processor_customer(session, customer)

        invoice = await self.processor.create_one_off_invoice(
            customer_ref, description, amount, currency
        )

        logger.info(
            "One-off invoice created",
            customer_id=customer.id,
            invoice_id=invoice.id,
            amount=amount,
            currency=currency,
        )
        log_audit_event(
            "invoice.created",
            "billing",
            customer_id=customer.id,
            resource_type="invoice",
            resource_id=invoice.id,
            amount=amount,
            currency=currency,
        )
        return invoice

    async def refund(
        self,
        session: AsyncSession,
        customer: Customer,
        charge_ref: str,
        amount: int | None = None,
    ) -> RefundRecord:
        """Refund a charge in full, or ``amount`` minor units of it."""
        if amount is not None and amount <= 0:
            raise ValueError("Refund amount must be positive")

        refund = await self.processor.refund(charge_ref, amount)

        log_audit_event(
            "charge.refunded",
            "billing",
            customer_id=customer.id,
            resource_type="charge",
            resource_id=charge_ref,
            refund_id=refund.id,
            amount=refund.amount,
        )
        return refund
