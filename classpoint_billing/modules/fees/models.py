"""FeeItem catalog and FeeSchedule templates."""

from datetime import date
from decimal import Decimal

from sqlalchemy import Boolean, Date, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from classpoint_billing.core.database.base import TenantModel


class FeeItem(TenantModel):
    """Catalog entry for a chargeable item (tuition, uniform, excursion...)."""

    __tablename__ = "fee_items"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    category: Mapped[str] = mapped_column(String(50), nullable=False, default="TUITION")
    # Default optionality; a schedule line can override it
    is_optional: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class FeeSchedule(TenantModel):
    """
    Reusable template of charges for a class/term.

    Read only until an invoice's lines are materialized; after that the
    invoice's own lines are the source of truth.
    """

    __tablename__ = "fee_schedules"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    term_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
    class_year_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    class_group_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="NGN")
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Relationships
    lines: Mapped[list["FeeScheduleLine"]] = relationship(
        "FeeScheduleLine", back_populates="fee_schedule", cascade="all, delete-orphan"
    )


class FeeScheduleLine(TenantModel):
    """One charge in a fee schedule."""

    __tablename__ = "fee_schedule_lines"

    fee_schedule_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("fee_schedules.id", ondelete="CASCADE"), nullable=False, index=True
    )
    fee_item_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False, default=Decimal("0.00"))
    # None = follow the fee item's default
    is_optional_override: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Relationships
    fee_schedule: Mapped["FeeSchedule"] = relationship("FeeSchedule", back_populates="lines")

    @property
    def is_optional(self) -> bool:
        """Optionality as seen when the schedule line is billed directly."""
        return self.is_optional_override is True
