"""InstallmentPlan and Installment models."""

from datetime import datetime
from decimal import Decimal
from enum import StrEnum

from sqlalchemy import DateTime, ForeignKey, Integer, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from classpoint_billing.core.database.base import TenantModel


class InstallmentPlanStatus(StrEnum):
    ACTIVE = "ACTIVE"


class InstallmentStatus(StrEnum):
    """
    Per-installment state.

    DUE -> PAID, or DUE -> OVERDUE -> PAID. Recomputed from scratch every run.
    """

    DUE = "DUE"
    OVERDUE = "OVERDUE"
    PAID = "PAID"


class InstallmentPlan(TenantModel):
    """Fixed split of an invoice's required subtotal. Created once, never regenerated."""

    __tablename__ = "installment_plans"
    __table_args__ = (
        # At most one plan per invoice; the insert relies on it
        UniqueConstraint("invoice_id", name="uq_installment_plan_invoice"),
    )

    invoice_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=InstallmentPlanStatus.ACTIVE.value
    )
    template: Mapped[str] = mapped_column(String(20), nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)

    # Relationships
    installments: Mapped[list["Installment"]] = relationship(
        "Installment",
        back_populates="plan",
        cascade="all, delete-orphan",
        order_by="Installment.sequence_no",
    )


class Installment(TenantModel):
    """One dated slot of a plan. Amount fixed at creation; status mutable."""

    __tablename__ = "installments"
    __table_args__ = (
        UniqueConstraint("installment_plan_id", "sequence_no", name="uq_installment_plan_sequence"),
    )

    installment_plan_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("installment_plans.id", ondelete="CASCADE"), nullable=False, index=True
    )
    sequence_no: Mapped[int] = mapped_column(Integer, nullable=False)  # 1-based
    amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    due_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=InstallmentStatus.DUE.value
    )

    # Relationships
    plan: Mapped["InstallmentPlan"] = relationship("InstallmentPlan", back_populates="installments")
