from datetime import datetime, timedelta, timezone
from decimal import Decimal

from classpoint_billing.modules.adjustments.service import AdjustmentSummary
from classpoint_billing.modules.fees.models import FeeScheduleLine
from classpoint_billing.modules.invoices.models import InvoiceLine, InvoiceStatus
from classpoint_billing.modules.invoices.standing import PaymentStanding, derive_standing
from classpoint_billing.modules.invoices.totals import (
    BillableLine,
    calculate_amount_due,
    calculate_totals,
    subtotals,
)

NO_ADJUSTMENTS = AdjustmentSummary()


class TestSubtotals:
    def test_only_selected_optional_lines_count(self):
        lines = [
            BillableLine(Decimal("8000"), is_optional=False),
            BillableLine(Decimal("2000"), is_optional=False),
            BillableLine(Decimal("1500"), is_optional=True, is_selected=True),
            BillableLine(Decimal("700"), is_optional=True, is_selected=False),
        ]
        assert subtotals(lines) == (Decimal("10000.00"), Decimal("1500.00"))

    def test_invoice_line_without_selection_counts_as_selected(self):
        line = InvoiceLine(amount=Decimal("300"), is_optional=True, is_selected=None)
        assert BillableLine.from_invoice_line(line).is_selected is True

    def test_schedule_line_optional_only_on_explicit_override(self):
        assert BillableLine.from_schedule_line(
            FeeScheduleLine(amount=Decimal("10"), is_optional_override=True)
        ).is_optional is True
        assert BillableLine.from_schedule_line(
            FeeScheduleLine(amount=Decimal("10"), is_optional_override=None)
        ).is_optional is False


class TestCalculateTotals:
    def test_scenario_a(self):
        totals = calculate_totals(
            required_subtotal=Decimal("10000"),
            optional_subtotal=Decimal("0"),
            adjustments=AdjustmentSummary(Decimal("3000"), Decimal("500")),
            amount_paid=Decimal("4000"),
            min_first_percent=30,
        )
        assert totals.discount_total == Decimal("3000.00")
        assert totals.penalty_total == Decimal("500.00")
        assert totals.amount_due == Decimal("3500.00")
        assert totals.status == InvoiceStatus.PARTIALLY_PAID

    def test_without_adjustments(self):
        totals = calculate_totals(
            Decimal("10000"), Decimal("1500"), NO_ADJUSTMENTS, Decimal("2500"), 30
        )
        assert totals.amount_due == Decimal("9000.00")

    def test_overpayment_clamps_to_zero_and_pays(self):
        totals = calculate_totals(
            Decimal("10000"), Decimal("0"), NO_ADJUSTMENTS, Decimal("12000"), 30
        )
        assert totals.amount_due == Decimal("0.00")
        assert totals.status == InvoiceStatus.PAID

    def test_unpaid_invoice_is_partially_paid(self):
        """Only PAID and PARTIALLY_PAID are ever produced."""
        totals = calculate_totals(Decimal("100"), Decimal("0"), NO_ADJUSTMENTS, Decimal("0"), 30)
        assert totals.status == InvoiceStatus.PARTIALLY_PAID

    def test_min_first_payment(self):
        totals = calculate_totals(
            Decimal("10000"), Decimal("0"), NO_ADJUSTMENTS, Decimal("2999.99"), 30
        )
        assert totals.min_first_amount == Decimal("3000.00")
        assert totals.below_min_first is True

        totals = calculate_totals(Decimal("10000"), Decimal("0"), NO_ADJUSTMENTS, Decimal("3000"), 30)
        assert totals.below_min_first is False

    def test_zero_min_first_percent(self):
        totals = calculate_totals(Decimal("10000"), Decimal("0"), NO_ADJUSTMENTS, Decimal("0"), 0)
        assert totals.min_first_amount == Decimal("0.00")
        assert totals.below_min_first is False

    def test_penalty_can_exceed_discount(self):
        assert calculate_amount_due(
            Decimal("100"), Decimal("0"), Decimal("100"), Decimal("40"), Decimal("0")
        ) == Decimal("40.00")


class TestDeriveStanding:
    now = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)

    def test_settled_when_nothing_owed(self):
        assert derive_standing(Decimal("0"), self.now - timedelta(days=10), self.now) == PaymentStanding.SETTLED
        assert derive_standing(None, None, self.now) == PaymentStanding.SETTLED

    def test_overdue_when_due_date_passed(self):
        assert derive_standing(Decimal("1"), self.now - timedelta(seconds=1), self.now) == PaymentStanding.OVERDUE

    def test_outstanding_before_or_without_due_date(self):
        assert derive_standing(Decimal("1"), self.now, self.now) == PaymentStanding.OUTSTANDING
        assert derive_standing(Decimal("1"), None, self.now) == PaymentStanding.OUTSTANDING

    def test_naive_due_date_treated_as_utc(self):
        naive = datetime(2025, 2, 1)
        assert derive_standing(Decimal("5"), naive, self.now) == PaymentStanding.OVERDUE
