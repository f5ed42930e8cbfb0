import json
from contextlib import contextmanager
from datetime import datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy import event, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from classpoint_billing.core.audit.models import AuditLog
from classpoint_billing.core.config import InvoicingConfig
from classpoint_billing.modules.adjustments.models import AdjustmentType
from classpoint_billing.modules.installments.models import Installment, InstallmentPlan, InstallmentStatus
from classpoint_billing.modules.invoices.models import InvoiceLine, InvoiceStatus
from classpoint_billing.modules.invoicing.events import InvoiceTrigger, TriggerKind
from classpoint_billing.modules.invoicing.service import InvoicingService, RecomputeOutcome
from classpoint_billing.shared.utils.clock import as_utc
from tests.factories import (
    SCHOOL_ID,
    add_adjustment,
    add_payment,
    create_fee_item,
    create_invoice,
    create_schedule,
)

BUS = "classpoint-bus"
NOW = datetime(2025, 2, 1, 9, 0, tzinfo=timezone.utc)
DUE_AT = datetime(2025, 3, 1, tzinfo=timezone.utc)


def make_service(db, publisher=None, now=NOW, **config) -> InvoicingService:
    config.setdefault("event_bus_name", BUS if publisher is not None else None)
    return InvoicingService(db, InvoicingConfig(**config), publisher, clock=lambda: now)


def trigger_for(invoice_id: str, kind=TriggerKind.GENERATED, reason=None) -> InvoiceTrigger:
    detail = {"schoolId": SCHOOL_ID, "invoiceId": invoice_id}
    return InvoiceTrigger(
        school_id=SCHOOL_ID,
        invoice_id=invoice_id,
        kind=kind,
        detail_type="invoice.generated" if kind == TriggerKind.GENERATED else None,
        reason=reason,
        detail=detail,
    )


async def seed_term_invoice(db: AsyncSession, **invoice_kwargs) -> str:
    """Tuition 8000 + books 2000 required, bus 1500 optional."""
    tuition = await create_fee_item(db, "Tuition")
    books = await create_fee_item(db, "Books")
    bus = await create_fee_item(db, "School Bus", is_optional=True)
    schedule = await create_schedule(
        db, [(tuition, "8000", None), (books, "2000", None), (bus, "1500", None)]
    )
    invoice_kwargs.setdefault("due_at", DUE_AT)
    invoice = await create_invoice(db, fee_schedule_id=schedule.id, **invoice_kwargs)
    return invoice.id


async def count(db: AsyncSession, model) -> int:
    return await db.scalar(select(func.count()).select_from(model))


@contextmanager
def captured_statements(db: AsyncSession):
    statements: list[str] = []

    def before_cursor_execute(conn, cursor, statement, parameters, context, executemany):
        statements.append(statement.strip().upper())

    engine = db.bind.sync_engine
    event.listen(engine, "before_cursor_execute", before_cursor_execute)
    try:
        yield statements
    finally:
        event.remove(engine, "before_cursor_execute", before_cursor_execute)


class TestRecompute:
    async def test_first_generation(self, db_session: AsyncSession, publisher):
        invoice_id = await seed_term_invoice(db_session)
        invoice = await make_service(db_session).get_invoice(SCHOOL_ID, invoice_id)
        await add_adjustment(db_session, invoice, AdjustmentType.DISCOUNT.value, "3000")
        await add_adjustment(db_session, invoice, AdjustmentType.PENALTY.value, "500")
        await add_payment(db_session, invoice, "4000")

        result = await make_service(db_session, publisher).recompute(trigger_for(invoice_id))

        assert result.outcome == RecomputeOutcome.PROCESSED
        assert result.lines_created is True
        assert result.plan_created is True

        totals = result.totals
        assert totals.required_subtotal == Decimal("10000.00")
        assert totals.optional_subtotal == Decimal("0.00")
        assert totals.discount_total == Decimal("3000.00")
        assert totals.penalty_total == Decimal("500.00")
        assert totals.amount_due == Decimal("3500.00")
        assert totals.min_first_amount == Decimal("3000.00")
        assert totals.below_min_first is False

        stored = result.invoice
        assert stored.amount_due == Decimal("3500.00")
        assert stored.status == InvoiceStatus.PARTIALLY_PAID
        assert as_utc(stored.last_processed_at) == NOW

        assert [(i.amount, i.status) for i in result.installments] == [
            (Decimal("6000.00"), InstallmentStatus.DUE),
            (Decimal("4000.00"), InstallmentStatus.PAID),
        ]
        assert [as_utc(i.due_at) for i in result.installments] == [
            DUE_AT,
            datetime(2025, 3, 31, tzinfo=timezone.utc),
        ]

        assert len(publisher.calls) == 1
        templates = [json.loads(e["Detail"]).get("templateType") for e in publisher.entries]
        assert templates == [None, "INVOICE_ISSUED"]

    async def test_second_run_creates_nothing(self, db_session: AsyncSession, publisher):
        """Recomputing an unchanged invoice adds no lines, plan, installments or audit rows."""
        invoice_id = await seed_term_invoice(db_session)
        service = make_service(db_session, publisher)
        await service.recompute(trigger_for(invoice_id))
        counts = [await count(db_session, m) for m in (InvoiceLine, InstallmentPlan, Installment, AuditLog)]

        with captured_statements(db_session) as statements:
            result = await service.recompute(trigger_for(invoice_id, kind=TriggerKind.RECOMPUTE))

        assert result.lines_created is False
        assert result.plan_created is False
        assert [await count(db_session, m) for m in (InvoiceLine, InstallmentPlan, Installment, AuditLog)] == counts
        assert not [s for s in statements if s.startswith("INSERT")]
        # Statuses did not change, so installments are not written either
        assert not [s for s in statements if s.startswith("UPDATE INSTALLMENTS")]

    async def test_payments_move_installments_forward(self, db_session: AsyncSession):
        invoice_id = await seed_term_invoice(db_session)
        service = make_service(db_session)
        await service.recompute(trigger_for(invoice_id))

        invoice = await service.get_invoice(SCHOOL_ID, invoice_id)
        await add_payment(db_session, invoice, "6000")
        result = await make_service(db_session, now=datetime(2025, 4, 2, tzinfo=timezone.utc)).recompute(
            trigger_for(invoice_id, kind=TriggerKind.RECOMPUTE)
        )

        assert [i.status for i in result.installments] == [InstallmentStatus.PAID, InstallmentStatus.OVERDUE]
        assert result.totals.amount_due == Decimal("4000.00")

    async def test_paid_in_full(self, db_session: AsyncSession):
        invoice_id = await seed_term_invoice(db_session)
        invoice = await make_service(db_session).get_invoice(SCHOOL_ID, invoice_id)
        await add_payment(db_session, invoice, "10000")

        result = await make_service(db_session).recompute(trigger_for(invoice_id))

        assert result.totals.amount_due == Decimal("0.00")
        assert result.invoice.status == InvoiceStatus.PAID
        assert all(i.status == InstallmentStatus.PAID for i in result.installments)

    async def test_selected_optional_line_counts(self, db_session: AsyncSession):
        invoice_id = await seed_term_invoice(db_session)
        service = make_service(db_session)
        await service.recompute(trigger_for(invoice_id))

        bus_line = await db_session.scalar(select(InvoiceLine).where(InvoiceLine.label == "School Bus"))
        bus_line.is_selected = True
        await db_session.commit()

        result = await service.recompute(trigger_for(invoice_id, reason="SELECTION_UPDATE"))

        assert result.totals.optional_subtotal == Decimal("1500.00")
        assert result.totals.amount_due == Decimal("11500.00")
        # Plan keeps the original split of the required subtotal
        assert sum(i.amount for i in result.installments) == Decimal("10000.00")

    async def test_overdue_generated_invoice_requests_notice(self, db_session: AsyncSession, publisher):
        invoice_id = await seed_term_invoice(db_session)
        late = datetime(2025, 3, 5, tzinfo=timezone.utc)

        result = await make_service(db_session, publisher, now=late).recompute(trigger_for(invoice_id))

        templates = [json.loads(e["Detail"]).get("templateType") for e in result.events]
        assert templates == [None, "INVOICE_ISSUED", "OVERDUE_NOTICE"]

    async def test_missing_invoice(self, db_session: AsyncSession, publisher):
        result = await make_service(db_session, publisher).recompute(trigger_for("nope"))

        assert result.outcome == RecomputeOutcome.NOT_FOUND
        assert result.found is False
        assert publisher.calls == []

    async def test_failed_materialization_stops_the_recompute(
        self, db_session: AsyncSession, publisher, monkeypatch
    ):
        """A constraint failure other than a duplicate must not fall back to stored totals."""
        invoice_id = await seed_term_invoice(db_session)
        service = make_service(db_session, publisher)

        async def failing_log(**kwargs):
            raise IntegrityError("INSERT INTO audit_logs", {}, Exception("NOT NULL constraint failed"))

        monkeypatch.setattr(service.lines.audit, "log", failing_log)

        with pytest.raises(IntegrityError):
            await service.recompute(trigger_for(invoice_id))

        stored = await service.get_invoice(SCHOOL_ID, invoice_id)
        assert stored.status == InvoiceStatus.ISSUED
        assert stored.last_processed_at is None
        assert await count(db_session, InvoiceLine) == 0
        assert await count(db_session, InstallmentPlan) == 0
        assert publisher.calls == []

    async def test_other_school_cannot_see_invoice(self, db_session: AsyncSession):
        invoice_id = await seed_term_invoice(db_session)
        trigger = InvoiceTrigger(school_id="school-2", invoice_id=invoice_id)

        result = await make_service(db_session).recompute(trigger)

        assert result.outcome == RecomputeOutcome.NOT_FOUND

    async def test_preset_totals_kept_without_lines(self, db_session: AsyncSession):
        invoice = await create_invoice(
            db_session, required_subtotal=Decimal("5000"), optional_subtotal=Decimal("250")
        )
        invoice_id = invoice.id
        await add_payment(db_session, invoice, "1000")

        result = await make_service(db_session).recompute(trigger_for(invoice_id))

        assert result.totals.required_subtotal == Decimal("5000.00")
        assert result.totals.amount_due == Decimal("4250.00")

    async def test_schedule_fallback_when_materialization_disabled(self, db_session: AsyncSession):
        invoice_id = await seed_term_invoice(db_session)

        result = await make_service(db_session, materialize_invoice_lines=False).recompute(
            trigger_for(invoice_id)
        )

        # Without an explicit override nothing is optional on the raw schedule
        assert result.totals.required_subtotal == Decimal("11500.00")
        assert result.lines_created is False
        assert await count(db_session, InvoiceLine) == 0

    async def test_plans_disabled(self, db_session: AsyncSession):
        invoice_id = await seed_term_invoice(db_session)

        result = await make_service(db_session, installment_plans_enabled=False).recompute(
            trigger_for(invoice_id)
        )

        assert result.installments == []
        assert await count(db_session, InstallmentPlan) == 0

    async def test_template_and_min_first_from_invoice(self, db_session: AsyncSession):
        invoice_id = await seed_term_invoice(
            db_session, installment_template="40/30/30", min_first_percent=50
        )

        result = await make_service(db_session).recompute(trigger_for(invoice_id))

        assert [i.amount for i in result.installments] == [
            Decimal("4000.00"),
            Decimal("3000.00"),
            Decimal("3000.00"),
        ]
        assert result.totals.min_first_amount == Decimal("5000.00")
        assert result.totals.below_min_first is True

    async def test_zero_min_first_percent_is_honoured(self, db_session: AsyncSession):
        invoice_id = await seed_term_invoice(db_session, min_first_percent=0)

        result = await make_service(db_session).recompute(trigger_for(invoice_id))

        assert result.totals.min_first_amount == Decimal("0.00")
        assert result.totals.below_min_first is False

    async def test_statuses_do_not_depend_on_trigger_kind(self, db_session: AsyncSession):
        invoice_id = await seed_term_invoice(db_session)
        invoice = await make_service(db_session).get_invoice(SCHOOL_ID, invoice_id)
        await add_payment(db_session, invoice, "7000")
        later = datetime(2025, 4, 2, tzinfo=timezone.utc)

        seen = []
        for kind in (TriggerKind.GENERATED, TriggerKind.RECOMPUTE, TriggerKind.GENERATED):
            result = await make_service(db_session, now=later).recompute(trigger_for(invoice_id, kind=kind))
            seen.append([i.status for i in result.installments])

        assert seen[0] == seen[1] == seen[2] == [InstallmentStatus.PAID, InstallmentStatus.OVERDUE]


class TestPreview:
    async def test_preview_writes_nothing(self, db_session: AsyncSession):
        invoice_id = await seed_term_invoice(db_session, installment_template="40/30/30")

        with captured_statements(db_session) as statements:
            preview = await make_service(db_session).preview(SCHOOL_ID, invoice_id)

        assert preview.totals.required_subtotal == Decimal("10000.00")
        assert [slot.amount for slot in preview.planned_slots] == [
            Decimal("4000.00"),
            Decimal("3000.00"),
            Decimal("3000.00"),
        ]
        assert not [s for s in statements if s.startswith(("INSERT", "UPDATE", "DELETE"))]

    async def test_preview_existing_plan_reports_statuses(self, db_session: AsyncSession):
        invoice_id = await seed_term_invoice(db_session)
        await make_service(db_session).recompute(trigger_for(invoice_id))
        invoice = await make_service(db_session).get_invoice(SCHOOL_ID, invoice_id)
        await add_payment(db_session, invoice, "6000")

        preview = await make_service(db_session).preview(SCHOOL_ID, invoice_id)

        assert preview.planned_slots == []
        assert preview.installment_statuses == {1: "PAID", 2: "DUE"}

    async def test_preview_missing_invoice(self, db_session: AsyncSession):
        assert await make_service(db_session).preview(SCHOOL_ID, "missing") is None
