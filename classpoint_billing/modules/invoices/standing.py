"""Derived payment standing of an invoice."""

from datetime import datetime
from decimal import Decimal
from enum import StrEnum

from classpoint_billing.shared.utils.clock import as_utc


class PaymentStanding(StrEnum):
    """
    Where an invoice stands for its guardian.

    Never stored: the stored ``status`` only distinguishes PAID from
    PARTIALLY_PAID, so every reader derives this from the same inputs.
    """

    SETTLED = "SETTLED"
    OUTSTANDING = "OUTSTANDING"
    OVERDUE = "OVERDUE"


def derive_standing(
    amount_due: Decimal | int | float | None,
    due_at: datetime | None,
    now: datetime,
) -> PaymentStanding:
    """
    Single source of truth for paid / owing / overdue.

    OVERDUE requires a due date strictly before ``now``; an invoice without a
    due date is never overdue.
    """
    if amount_due is None or Decimal(str(amount_due)) <= 0:
        return PaymentStanding.SETTLED
    due = as_utc(due_at)
    if due is not None and due < as_utc(now):
        return PaymentStanding.OVERDUE
    return PaymentStanding.OUTSTANDING
