"""Invoice and InvoiceLine models."""

from datetime import datetime
from decimal import Decimal
from enum import StrEnum

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from classpoint_billing.core.database.base import TenantModel
from classpoint_billing.modules.invoices.standing import PaymentStanding, derive_standing


class InvoiceStatus(StrEnum):
    """Stored invoice status. Recomputation only ever writes PAID or PARTIALLY_PAID."""

    ISSUED = "ISSUED"
    PARTIALLY_PAID = "PARTIALLY_PAID"
    PAID = "PAID"


class Invoice(TenantModel):
    """Financial obligation of one student for one term."""

    __tablename__ = "invoices"

    invoice_no: Mapped[str | None] = mapped_column(String(50), nullable=True, index=True)

    # Relations (owned by other services; plain ids here)
    student_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
    term_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    class_group_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    fee_schedule_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("fee_schedules.id"), nullable=True
    )

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=InvoiceStatus.ISSUED.value, index=True
    )

    # Dates
    issued_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    due_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Amounts (Decimal with 2 decimal places)
    required_subtotal: Mapped[Decimal] = mapped_column(
        Numeric(15, 2), nullable=False, default=Decimal("0.00")
    )
    optional_subtotal: Mapped[Decimal] = mapped_column(
        Numeric(15, 2), nullable=False, default=Decimal("0.00")
    )
    discount_total: Mapped[Decimal] = mapped_column(
        Numeric(15, 2), nullable=False, default=Decimal("0.00")
    )
    penalty_total: Mapped[Decimal] = mapped_column(
        Numeric(15, 2), nullable=False, default=Decimal("0.00")
    )
    amount_paid: Mapped[Decimal] = mapped_column(
        Numeric(15, 2), nullable=False, default=Decimal("0.00")
    )
    amount_due: Mapped[Decimal] = mapped_column(
        Numeric(15, 2), nullable=False, default=Decimal("0.00")
    )

    # Minimum first payment (informational only)
    min_first_percent: Mapped[int | None] = mapped_column(Integer, nullable=True)
    min_first_amount: Mapped[Decimal] = mapped_column(
        Numeric(15, 2), nullable=False, default=Decimal("0.00")
    )
    below_min_first: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # e.g. "60/40", "40/30/30"; None = worker default
    installment_template: Mapped[str | None] = mapped_column(String(20), nullable=True)

    last_processed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    # Relationships
    lines: Mapped[list["InvoiceLine"]] = relationship(
        "InvoiceLine",
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="InvoiceLine.sort_order",
    )

    def standing(self, now: datetime) -> PaymentStanding:
        return derive_standing(self.amount_due, self.due_at, now)


class InvoiceLine(TenantModel):
    """
    A charge materialized onto an invoice.

    Created once from the fee schedule and never regenerated; guardians
    toggle ``is_selected`` on optional lines.
    """

    __tablename__ = "invoice_lines"
    __table_args__ = (
        # Conditional-insert guard for materialization
        UniqueConstraint("invoice_id", "fee_schedule_line_id", name="uq_invoice_line_schedule_line"),
    )

    invoice_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True
    )
    fee_item_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    fee_schedule_line_id: Mapped[str | None] = mapped_column(String(36), nullable=True)

    label: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False, default=Decimal("0.00"))
    is_optional: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_selected: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Relationships
    invoice: Mapped["Invoice"] = relationship("Invoice", back_populates="lines")


# Import at the end so the fee_schedules table is registered before FK resolution
from classpoint_billing.modules.fees.models import FeeSchedule  # noqa: E402,F401
