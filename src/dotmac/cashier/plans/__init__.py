"""
Plan registry.
"""

from dotmac.cashier.plans.models import Plan
from dotmac.cashier.plans.service import PlanRegistry

__all__ = ["Plan", "PlanRegistry"]
