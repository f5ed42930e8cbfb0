from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from classpoint_billing.modules.adjustments.models import Adjustment, AdjustmentType
from classpoint_billing.modules.adjustments.service import (
    AdjustmentService,
    resolve_adjustments,
    resolve_discount,
    resolve_penalty,
)
from tests.factories import add_adjustment, create_invoice


def adj(type_: AdjustmentType, amount: str | None) -> Adjustment:
    return Adjustment(type=type_.value, amount=Decimal(amount) if amount is not None else None)


class TestResolveDiscount:
    def test_largest_discount_wins(self):
        """Two discounts of 2000 and 5000 give 5000, not 7000."""
        adjustments = [adj(AdjustmentType.DISCOUNT, "2000"), adj(AdjustmentType.DISCOUNT, "5000")]
        assert resolve_discount(adjustments, Decimal("10000")) == Decimal("5000.00")

    def test_waiver_competes_with_discount(self):
        adjustments = [adj(AdjustmentType.DISCOUNT, "2000"), adj(AdjustmentType.WAIVER, "2500")]
        assert resolve_discount(adjustments, Decimal("10000")) == Decimal("2500.00")

    def test_capped_at_required_subtotal(self):
        adjustments = [adj(AdjustmentType.WAIVER, "15000")]
        assert resolve_discount(adjustments, Decimal("10000")) == Decimal("10000.00")

    def test_no_discounts(self):
        adjustments = [adj(AdjustmentType.PENALTY, "500")]
        assert resolve_discount(adjustments, Decimal("10000")) == Decimal("0.00")

    def test_missing_amount_counts_as_zero(self):
        adjustments = [adj(AdjustmentType.DISCOUNT, None)]
        assert resolve_discount(adjustments, Decimal("10000")) == Decimal("0.00")


class TestResolvePenalty:
    def test_penalties_sum_without_cap(self):
        adjustments = [
            adj(AdjustmentType.PENALTY, "500"),
            adj(AdjustmentType.PENALTY, "20000"),
            adj(AdjustmentType.DISCOUNT, "1000"),
        ]
        assert resolve_penalty(adjustments) == Decimal("20500.00")

    def test_no_penalties(self):
        assert resolve_penalty([]) == Decimal("0.00")


def test_resolve_adjustments_scenario_a():
    summary = resolve_adjustments(
        [adj(AdjustmentType.DISCOUNT, "3000"), adj(AdjustmentType.PENALTY, "500")],
        Decimal("10000"),
    )
    assert summary.discount_total == Decimal("3000.00")
    assert summary.penalty_total == Decimal("500.00")


class TestAdjustmentService:
    async def test_lists_only_the_invoice_rows(self, db_session: AsyncSession):
        invoice = await create_invoice(db_session)
        other = await create_invoice(db_session)
        await add_adjustment(db_session, invoice, AdjustmentType.DISCOUNT.value, "100")
        await add_adjustment(db_session, invoice, AdjustmentType.PENALTY.value, "50")
        await add_adjustment(db_session, other, AdjustmentType.DISCOUNT.value, "999")

        rows = await AdjustmentService(db_session).list_for_invoice(invoice.id)

        assert sorted(r.type for r in rows) == ["DISCOUNT", "PENALTY"]
