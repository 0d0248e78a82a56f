"""
Invoice read model and invoicing operations.
"""

from dotmac.cashier.invoicing.models import Invoice, InvoiceLineItem, LineItemView, Period

__all__ = ["Invoice", "InvoiceLineItem", "LineItemView", "Period"]
