"""
Customers.
"""

from dotmac.cashier.customers.models import Customer
from dotmac.cashier.customers.service import CustomerService

__all__ = ["Customer", "CustomerService"]
