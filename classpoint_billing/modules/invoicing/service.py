"""Invoice recomputation: lines, adjustments, payments, totals, installments, outcome."""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from classpoint_billing.core.config import InvoicingConfig
from classpoint_billing.integrations.eventbridge.client import EventPublisher
from classpoint_billing.modules.adjustments.service import AdjustmentService, resolve_adjustments
from classpoint_billing.modules.installments.models import Installment
from classpoint_billing.modules.installments.service import (
    InstallmentService,
    InstallmentSlot,
    allocate_statuses,
    build_slots,
)
from classpoint_billing.modules.invoices.models import Invoice
from classpoint_billing.modules.invoices.service import InvoiceLineService
from classpoint_billing.modules.invoices.totals import (
    BillableLine,
    InvoiceTotals,
    calculate_totals,
    subtotals,
)
from classpoint_billing.modules.invoicing.events import InvoiceTrigger, TriggerKind
from classpoint_billing.modules.invoicing.publisher import OutcomePublisher
from classpoint_billing.modules.payments.service import PaymentService
from classpoint_billing.shared.utils.clock import as_utc, utcnow

logger = logging.getLogger(__name__)


class RecomputeOutcome(StrEnum):
    PROCESSED = "PROCESSED"
    NOT_FOUND = "NOT_FOUND"


@dataclass
class RecomputeResult:
    outcome: RecomputeOutcome
    school_id: str
    invoice_id: str
    invoice: Invoice | None = None
    totals: InvoiceTotals | None = None
    lines_created: bool = False
    plan_created: bool = False
    installments: list[Installment] = field(default_factory=list)
    events: list[dict[str, Any]] = field(default_factory=list)

    @property
    def found(self) -> bool:
        return self.outcome == RecomputeOutcome.PROCESSED


@dataclass
class RecomputePreview:
    """What a recompute would write, computed without writing."""

    invoice: Invoice
    totals: InvoiceTotals
    lines: list[BillableLine]
    planned_slots: list[InstallmentSlot]
    installment_statuses: dict[int, str]


class InvoicingService:
    """
    Recomputes one invoice per trigger.

    Each guarded stage (line materialization, plan creation) commits on its
    own; the final totals update commits together with installment status
    changes. Nothing is rolled back across stages, so every stage has to be
    safe to repeat on redelivery.
    """

    def __init__(
        self,
        db: AsyncSession,
        config: InvoicingConfig,
        publisher: EventPublisher | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.config = config
        self.clock = clock
        self.lines = InvoiceLineService(db)
        self.adjustments = AdjustmentService(db)
        self.payments = PaymentService(db)
        self.installments = InstallmentService(db)
        self.outcome = OutcomePublisher(db, publisher, config.event_bus_name)

    async def get_invoice(self, school_id: str, invoice_id: str) -> Invoice | None:
        # populate_existing: refreshes an instance expired by a rollback
        result = await self.db.execute(
            select(Invoice)
            .where(Invoice.school_id == school_id, Invoice.id == invoice_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    def min_first_percent(self, invoice: Invoice) -> int:
        """Invoice override when set (0 included), else the configured default."""
        if invoice.min_first_percent is not None:
            return invoice.min_first_percent
        return self.config.default_min_first_percent

    def installment_template(self, invoice: Invoice) -> str:
        return invoice.installment_template or self.config.default_installment_template

    async def _billable_lines(self, invoice: Invoice) -> tuple[Invoice | None, list[BillableLine], bool]:
        """Returns (invoice, lines, created). The invoice is reloaded after materializing."""
        if not self.config.materialize_invoice_lines:
            lines = await self.lines.list_lines(invoice.id)
            if lines:
                return invoice, [BillableLine.from_invoice_line(line) for line in lines], False
            schedule_lines = await self.lines.list_schedule_lines(invoice.fee_schedule_id)
            return invoice, [BillableLine.from_schedule_line(line) for line in schedule_lines], False

        school_id, invoice_id = invoice.school_id, invoice.id
        lines, created = await self.lines.ensure_lines(invoice)
        billable = [BillableLine.from_invoice_line(line) for line in lines]
        # Materializing commits or rolls back, either of which expires the invoice
        invoice = await self.get_invoice(school_id, invoice_id)
        return invoice, billable, created

    async def _compute_totals(self, invoice: Invoice, lines: list[BillableLine]) -> InvoiceTotals:
        if lines:
            required, optional = subtotals(lines)
        else:
            # Invoices created with pre-set totals and no lines keep them
            required, optional = invoice.required_subtotal, invoice.optional_subtotal

        adjustments = await self.adjustments.list_for_invoice(invoice.id)
        summary = resolve_adjustments(adjustments, required)
        amount_paid = await self.payments.sum_for_invoice(invoice.id)

        return calculate_totals(
            required_subtotal=required,
            optional_subtotal=optional,
            adjustments=summary,
            amount_paid=amount_paid,
            min_first_percent=self.min_first_percent(invoice),
        )

    async def recompute(self, trigger: InvoiceTrigger) -> RecomputeResult:
        school_id, invoice_id = trigger.school_id, trigger.invoice_id
        not_found = RecomputeResult(RecomputeOutcome.NOT_FOUND, school_id, invoice_id)
        now = self.clock()

        invoice = await self.get_invoice(school_id, invoice_id)
        if invoice is None:
            logger.warning("Invoice %s not found for school %s, skipping", invoice_id, school_id)
            return not_found

        invoice, lines, lines_created = await self._billable_lines(invoice)
        if invoice is None:
            return not_found

        totals = await self._compute_totals(invoice, lines)

        plan_created = False
        installments: list[Installment] = []
        if self.config.installment_plans_enabled:
            plan, plan_created = await self.installments.ensure_plan(
                school_id=school_id,
                invoice_id=invoice_id,
                required_subtotal=totals.required_subtotal,
                template=self.installment_template(invoice),
                base_date=invoice.due_at or now,
            )
            if plan is None:
                invoice = await self.get_invoice(school_id, invoice_id)
                if invoice is None:
                    return not_found
            installments = await self.installments.refresh_statuses(
                invoice_id, totals.amount_paid, now
            )

        if not await self.outcome.persist(school_id, invoice_id, totals, now):
            logger.warning("Invoice %s disappeared before update, skipping", invoice_id)
            return not_found
        invoice = await self.get_invoice(school_id, invoice_id)
        if invoice is None:
            return not_found

        events = await self.outcome.emit(trigger, invoice, totals, now)

        logger.info(
            "Processed invoice %s (%s): due=%s status=%s",
            invoice_id,
            trigger.detail_type or trigger.kind.value,
            totals.amount_due,
            totals.status.value,
        )
        return RecomputeResult(
            outcome=RecomputeOutcome.PROCESSED,
            school_id=school_id,
            invoice_id=invoice_id,
            invoice=invoice,
            totals=totals,
            lines_created=lines_created,
            plan_created=plan_created,
            installments=installments,
            events=events,
        )

    async def recompute_invoice(self, school_id: str, invoice_id: str) -> RecomputeResult:
        """Operator-initiated recompute; never notifies guardians."""
        return await self.recompute(
            InvoiceTrigger(school_id=school_id, invoice_id=invoice_id, kind=TriggerKind.RECOMPUTE)
        )

    async def preview(self, school_id: str, invoice_id: str) -> RecomputePreview | None:
        """Totals and installment layout without any write."""
        invoice = await self.get_invoice(school_id, invoice_id)
        if invoice is None:
            return None

        lines = await self.lines.list_lines(invoice.id)
        if lines:
            billable = [BillableLine.from_invoice_line(line) for line in lines]
        else:
            schedule_lines = await self.lines.list_schedule_lines(invoice.fee_schedule_id)
            if self.config.materialize_invoice_lines:
                fee_items = await self.lines.get_fee_items(
                    invoice.school_id, [line.fee_item_id for line in schedule_lines]
                )
                billable = [
                    BillableLine.from_invoice_line(
                        self.lines.build_invoice_line(invoice, line, fee_items.get(line.fee_item_id))
                    )
                    for line in schedule_lines
                ]
            else:
                billable = [BillableLine.from_schedule_line(line) for line in schedule_lines]

        totals = await self._compute_totals(invoice, billable)
        now = self.clock()

        planned_slots: list[InstallmentSlot] = []
        statuses: dict[int, str] = {}
        if self.config.installment_plans_enabled:
            plan = await self.installments.get_plan(invoice.id)
            if plan is None:
                planned_slots = build_slots(
                    totals.required_subtotal,
                    self.installment_template(invoice),
                    as_utc(invoice.due_at or now),
                )
            else:
                existing = await self.installments.list_installments(plan.id)
                statuses = {
                    seq: status.value
                    for seq, status in allocate_statuses(existing, totals.amount_paid, now).items()
                }

        return RecomputePreview(
            invoice=invoice,
            totals=totals,
            lines=billable,
            planned_slots=planned_slots,
            installment_statuses=statuses,
        )
