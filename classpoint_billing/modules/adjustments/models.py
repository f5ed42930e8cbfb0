"""Adjustment model."""

from decimal import Decimal
from enum import StrEnum

from sqlalchemy import ForeignKey, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from classpoint_billing.core.database.base import TenantModel


class AdjustmentType(StrEnum):
    """Adjustment type."""

    DISCOUNT = "DISCOUNT"
    WAIVER = "WAIVER"
    PENALTY = "PENALTY"


# Kinds that reduce the balance; only the largest one applies
DISCOUNT_TYPES = frozenset({AdjustmentType.DISCOUNT.value, AdjustmentType.WAIVER.value})


class Adjustment(TenantModel):
    """Discount, waiver or penalty attached to one invoice, independent of payments."""

    __tablename__ = "adjustments"

    invoice_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True
    )
    type: Mapped[str] = mapped_column(String(20), nullable=False)  # DISCOUNT | WAIVER | PENALTY
    amount: Mapped[Decimal | None] = mapped_column(Numeric(15, 2), nullable=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    @property
    def is_discount(self) -> bool:
        return self.type in DISCOUNT_TYPES

    @property
    def is_penalty(self) -> bool:
        return self.type == AdjustmentType.PENALTY.value
