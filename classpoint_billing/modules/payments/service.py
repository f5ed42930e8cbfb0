"""Service for Payments module."""

from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from classpoint_billing.modules.payments.models import Payment
from classpoint_billing.shared.utils.money import sum_money


class PaymentService:
    """Aggregates the payment ledger for the invoicing worker."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def list_for_invoice(self, invoice_id: str) -> list[Payment]:
        result = await self.db.execute(
            select(Payment).where(Payment.invoice_id == invoice_id).order_by(Payment.created_at)
        )
        return list(result.scalars().all())

    async def sum_for_invoice(self, invoice_id: str) -> Decimal:
        """
        Total received against an invoice.

        Every ledger row counts, whatever its status: FAILED and REVERSED rows
        are not excluded. Kept as-is until product confirms whether this is
        meant to be gross receipts.
        """
        payments = await self.list_for_invoice(invoice_id)
        return sum_money(p.amount for p in payments)
