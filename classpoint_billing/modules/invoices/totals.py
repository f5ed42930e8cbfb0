"""Totals calculation for invoices."""

from collections.abc import Iterable
from dataclasses import dataclass
from decimal import Decimal

from classpoint_billing.modules.adjustments.service import AdjustmentSummary
from classpoint_billing.modules.fees.models import FeeScheduleLine
from classpoint_billing.modules.invoices.models import InvoiceLine, InvoiceStatus
from classpoint_billing.shared.utils.money import ZERO, percent_of, round_money, sum_money


@dataclass(frozen=True)
class BillableLine:
    """The part of a charge the calculator needs."""

    amount: Decimal
    is_optional: bool
    is_selected: bool = True

    @classmethod
    def from_invoice_line(cls, line: InvoiceLine) -> "BillableLine":
        # A missing selection flag counts as selected
        return cls(
            amount=round_money(line.amount),
            is_optional=bool(line.is_optional),
            is_selected=line.is_selected is not False,
        )

    @classmethod
    def from_schedule_line(cls, line: FeeScheduleLine) -> "BillableLine":
        return cls(amount=round_money(line.amount), is_optional=line.is_optional)


@dataclass(frozen=True)
class InvoiceTotals:
    required_subtotal: Decimal
    optional_subtotal: Decimal
    discount_total: Decimal
    penalty_total: Decimal
    amount_paid: Decimal
    amount_due: Decimal
    status: InvoiceStatus
    min_first_percent: int
    min_first_amount: Decimal
    below_min_first: bool

    def as_dict(self) -> dict:
        return {
            "required_subtotal": self.required_subtotal,
            "optional_subtotal": self.optional_subtotal,
            "discount_total": self.discount_total,
            "penalty_total": self.penalty_total,
            "amount_paid": self.amount_paid,
            "amount_due": self.amount_due,
            "status": self.status.value,
            "min_first_amount": self.min_first_amount,
            "below_min_first": self.below_min_first,
        }


def subtotals(lines: Iterable[BillableLine]) -> tuple[Decimal, Decimal]:
    """(required, optional). Only selected optional lines count."""
    lines = list(lines)
    required = sum_money(line.amount for line in lines if not line.is_optional)
    optional = sum_money(line.amount for line in lines if line.is_optional and line.is_selected)
    return required, optional


def calculate_amount_due(
    required_subtotal: Decimal,
    optional_subtotal: Decimal,
    discount_total: Decimal,
    penalty_total: Decimal,
    amount_paid: Decimal,
) -> Decimal:
    """required + optional - discount + penalty - paid, clamped at zero."""
    due = round_money(
        required_subtotal + optional_subtotal - discount_total + penalty_total - amount_paid
    )
    return max(due, ZERO)


def calculate_totals(
    required_subtotal: Decimal,
    optional_subtotal: Decimal,
    adjustments: AdjustmentSummary,
    amount_paid: Decimal,
    min_first_percent: int,
) -> InvoiceTotals:
    """
    Combine subtotals, adjustments and payments into the invoice snapshot.

    Status is PAID when nothing is owed, otherwise PARTIALLY_PAID; no other
    value is produced here. ``below_min_first`` is informational only.
    """
    required_subtotal = round_money(required_subtotal)
    optional_subtotal = round_money(optional_subtotal)
    amount_paid = round_money(amount_paid)

    amount_due = calculate_amount_due(
        required_subtotal,
        optional_subtotal,
        adjustments.discount_total,
        adjustments.penalty_total,
        amount_paid,
    )
    min_first_amount = percent_of(min_first_percent, required_subtotal)

    return InvoiceTotals(
        required_subtotal=required_subtotal,
        optional_subtotal=optional_subtotal,
        discount_total=round_money(adjustments.discount_total),
        penalty_total=round_money(adjustments.penalty_total),
        amount_paid=amount_paid,
        amount_due=amount_due,
        status=InvoiceStatus.PAID if amount_due <= 0 else InvoiceStatus.PARTIALLY_PAID,
        min_first_percent=min_first_percent,
        min_first_amount=min_first_amount,
        below_min_first=amount_paid < min_first_amount,
    )
