"""
Customer table.
"""

from datetime import datetime
from uuid import uuid4

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from dotmac.cashier.clock import ensure_utc
from dotmac.cashier.db import Base, TimestampMixin, UTCDateTime


class Customer(Base, TimestampMixin):
    """Billable party. Linked to the processor once a processor customer exists."""

    __tablename__ = "cashier_customers"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    email: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    # Processor linkage
    processor_id: Mapped[str | None] = mapped_column(String(255), nullable=True, unique=True)
    card_brand: Mapped[str | None] = mapped_column(String(50), nullable=True)
    card_last_four: Mapped[str | None] = mapped_column(String(4), nullable=True)
    coupon: Mapped[str | None] = mapped_column(String(100), nullable=True)

    # Customer-level trial, independent of any subscription
    trial_ends_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    def has_processor_id(self) -> bool:
        return self.processor_id is not None

    def has_card(self) -> bool:
        return self.card_last_four is not None

    def on_generic_trial(self, now: datetime) -> bool:
        return self.trial_ends_at is not None and ensure_utc(self.trial_ends_at) > now

    def __repr__(self) -> str:
        return f"<Customer {self.id} {self.email}>"
