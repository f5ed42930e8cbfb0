"""Payment ledger model."""

from datetime import datetime
from decimal import Decimal
from enum import StrEnum

from sqlalchemy import DateTime, ForeignKey, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from classpoint_billing.core.database.base import TenantModel


class PaymentStatus(StrEnum):
    """Status as written by the payment webhook."""

    SUCCESS = "SUCCESS"
    PENDING = "PENDING"
    FAILED = "FAILED"
    REVERSED = "REVERSED"


class Payment(TenantModel):
    """
    Money received against one invoice.

    Written by the payment webhook; read-only for the invoicing worker.
    """

    __tablename__ = "payments"

    invoice_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True
    )
    amount: Mapped[Decimal | None] = mapped_column(Numeric(15, 2), nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PaymentStatus.SUCCESS.value
    )
    provider: Mapped[str | None] = mapped_column(String(50), nullable=True)  # PAYSTACK, MANUAL...
    reference: Mapped[str | None] = mapped_column(String(100), nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
