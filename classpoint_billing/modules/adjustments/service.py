"""Service for Adjustments module."""

from collections.abc import Sequence
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from classpoint_billing.modules.adjustments.models import Adjustment
from classpoint_billing.shared.utils.money import ZERO, round_money, sum_money


@dataclass(frozen=True)
class AdjustmentSummary:
    """Discount and penalty figures for one invoice."""

    discount_total: Decimal = ZERO
    penalty_total: Decimal = ZERO


def resolve_discount(adjustments: Sequence[Adjustment], required_subtotal: Decimal) -> Decimal:
    """
    Largest single DISCOUNT/WAIVER amount, capped at the required subtotal.

    Discounts do not stack: two discounts of 2000 and 5000 give 5000.
    """
    amounts = [round_money(a.amount) for a in adjustments if a.is_discount]
    if not amounts:
        return ZERO
    return min(max(amounts), round_money(required_subtotal))


def resolve_penalty(adjustments: Sequence[Adjustment]) -> Decimal:
    """Sum of all PENALTY amounts. No cap."""
    return sum_money(a.amount for a in adjustments if a.is_penalty)


def resolve_adjustments(
    adjustments: Sequence[Adjustment], required_subtotal: Decimal
) -> AdjustmentSummary:
    return AdjustmentSummary(
        discount_total=resolve_discount(adjustments, required_subtotal),
        penalty_total=resolve_penalty(adjustments),
    )


class AdjustmentService:
    """Read side of invoice adjustments."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def list_for_invoice(self, invoice_id: str) -> list[Adjustment]:
        # Invoice ids are globally unique; looked up by invoice alone
        result = await self.db.execute(
            select(Adjustment)
            .where(Adjustment.invoice_id == invoice_id)
            .order_by(Adjustment.created_at)
        )
        return list(result.scalars().all())
