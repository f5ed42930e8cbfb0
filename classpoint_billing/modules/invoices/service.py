"""Service for Invoices module: line materialization."""

import logging
from collections.abc import Sequence

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from classpoint_billing.core.audit.service import AuditAction, AuditService
from classpoint_billing.modules.fees.models import FeeItem, FeeScheduleLine
from classpoint_billing.modules.invoices.models import Invoice, InvoiceLine
from classpoint_billing.shared.utils.money import round_money

logger = logging.getLogger(__name__)


class InvoiceLineService:
    """Snapshots an invoice's fee schedule into InvoiceLine rows, once."""

    # Distinct fee items fetched per materialization. A schedule referencing
    # more is not supported: the extra items resolve as missing catalog entries.
    FEE_ITEM_BATCH_LIMIT = 100

    def __init__(self, db: AsyncSession):
        self.db = db
        self.audit = AuditService(db)

    async def list_lines(self, invoice_id: str) -> list[InvoiceLine]:
        result = await self.db.execute(
            select(InvoiceLine)
            .where(InvoiceLine.invoice_id == invoice_id)
            .order_by(InvoiceLine.sort_order, InvoiceLine.created_at)
        )
        return list(result.scalars().all())

    async def list_schedule_lines(self, fee_schedule_id: str | None) -> list[FeeScheduleLine]:
        if not fee_schedule_id:
            return []
        result = await self.db.execute(
            select(FeeScheduleLine)
            .where(FeeScheduleLine.fee_schedule_id == fee_schedule_id)
            .order_by(FeeScheduleLine.sort_order)
        )
        return list(result.scalars().all())

    async def get_fee_items(self, school_id: str, fee_item_ids: Sequence[str]) -> dict[str, FeeItem]:
        """Batch-fetch catalog entries by id, keyed by id."""
        ids = list(dict.fromkeys(i for i in fee_item_ids if i))
        if len(ids) > self.FEE_ITEM_BATCH_LIMIT:
            logger.warning(
                "Fee schedule references %d fee items; only the first %d are resolved",
                len(ids),
                self.FEE_ITEM_BATCH_LIMIT,
            )
            ids = ids[: self.FEE_ITEM_BATCH_LIMIT]
        if not ids:
            return {}
        result = await self.db.execute(
            select(FeeItem).where(FeeItem.school_id == school_id, FeeItem.id.in_(ids))
        )
        return {item.id: item for item in result.scalars().all()}

    @staticmethod
    def build_invoice_line(
        invoice: Invoice, schedule_line: FeeScheduleLine, fee_item: FeeItem | None
    ) -> InvoiceLine:
        """
        Synthesize one invoice line from a schedule line and its catalog entry.

        Optional lines start deselected; the guardian has to opt in.
        """
        is_optional = schedule_line.is_optional_override is True or bool(
            fee_item is not None and fee_item.is_optional
        )
        label = (fee_item.name if fee_item else None) or schedule_line.fee_item_id or "Fee"
        return InvoiceLine(
            school_id=invoice.school_id,
            invoice_id=invoice.id,
            fee_item_id=schedule_line.fee_item_id,
            fee_schedule_line_id=schedule_line.id,
            label=label,
            description=fee_item.description if fee_item else None,
            amount=round_money(schedule_line.amount),
            is_optional=is_optional,
            is_selected=not is_optional,
            sort_order=schedule_line.sort_order or 0,
        )

    async def materialize(
        self, invoice: Invoice, schedule_lines: Sequence[FeeScheduleLine]
    ) -> tuple[list[InvoiceLine], bool]:
        """
        Create the invoice's lines from its schedule. Returns (lines, created).

        Each line is flushed on its own. The (invoice_id, fee_schedule_line_id)
        constraint rejects a concurrent duplicate; that is treated as "already
        materialized": the session is rolled back and the stored lines are
        returned. With no stored lines the error is re-raised. The caller
        must reload the invoice afterwards.
        """
        invoice_id = invoice.id
        school_id = invoice.school_id
        fee_items = await self.get_fee_items(
            school_id, [line.fee_item_id for line in schedule_lines]
        )

        lines: list[InvoiceLine] = []
        try:
            for schedule_line in schedule_lines:
                line = self.build_invoice_line(
                    invoice, schedule_line, fee_items.get(schedule_line.fee_item_id)
                )
                self.db.add(line)
                await self.db.flush()
                lines.append(line)

            await self.audit.log(
                action=AuditAction.MATERIALIZE_LINES,
                school_id=school_id,
                entity_type="Invoice",
                entity_id=invoice_id,
                new_values={
                    "fee_schedule_id": invoice.fee_schedule_id,
                    "lines": len(lines),
                    "total": str(sum((line.amount for line in lines), round_money(0))),
                },
            )
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            existing = await self.list_lines(invoice_id)
            if not existing:
                raise
            logger.info("Lines for invoice %s already materialized concurrently", invoice_id)
            return existing, False

        logger.info("Materialized %d lines for invoice %s", len(lines), invoice_id)
        return lines, True

    async def ensure_lines(
        self, invoice: Invoice, schedule_lines: Sequence[FeeScheduleLine] | None = None
    ) -> tuple[list[InvoiceLine], bool]:
        """Existing lines are used as-is; otherwise materialize from the schedule."""
        existing = await self.list_lines(invoice.id)
        if existing:
            return existing, False
        if schedule_lines is None:
            schedule_lines = await self.list_schedule_lines(invoice.fee_schedule_id)
        if not schedule_lines:
            return [], False
        return await self.materialize(invoice, schedule_lines)
