"""Persists the computed snapshot and emits outcome events."""

import json
import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from classpoint_billing.integrations.eventbridge.client import EventPublisher
from classpoint_billing.modules.invoices.models import Invoice
from classpoint_billing.modules.invoices.standing import PaymentStanding, derive_standing
from classpoint_billing.modules.invoices.totals import InvoiceTotals
from classpoint_billing.modules.invoicing.events import InvoiceTrigger
from classpoint_billing.shared.utils.clock import as_utc

logger = logging.getLogger(__name__)

BILLING_SOURCE = "classpoint.billing"
MESSAGING_SOURCE = "classpoint.messaging"
INVOICING_PROCESSED = "invoicing.processed"
MESSAGING_REQUESTED = "messaging.requested"
INVOICE_OVERDUE = "invoice.overdue"

TEMPLATE_INVOICE_ISSUED = "INVOICE_ISSUED"
TEMPLATE_OVERDUE_NOTICE = "OVERDUE_NOTICE"


def _json_default(value: Any):
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, datetime):
        return as_utc(value).isoformat()
    if isinstance(value, date):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _entry(bus_name: str, source: str, detail_type: str, detail: dict[str, Any]) -> dict[str, Any]:
    return {
        "EventBusName": bus_name,
        "Source": source,
        "DetailType": detail_type,
        "Detail": json.dumps(detail, default=_json_default),
    }


def build_outcome_events(
    trigger: InvoiceTrigger,
    invoice: Invoice,
    totals: InvoiceTotals,
    now: datetime,
    bus_name: str,
) -> list[dict[str, Any]]:
    """
    PutEvents entries for one processed trigger.

    Always ``invoicing.processed``. Generated invoices also request an
    INVOICE_ISSUED message, plus an OVERDUE_NOTICE when the invoice is
    overdue and still owing. Selection updates never re-notify.
    """
    processed = {
        **trigger.base_detail,
        "schoolId": trigger.school_id,
        "invoiceId": trigger.invoice_id,
        "originalDetailType": trigger.detail_type,
    }
    entries = [_entry(bus_name, BILLING_SOURCE, INVOICING_PROCESSED, processed)]

    if not trigger.notifies_guardian:
        return entries

    message = {
        "schoolId": trigger.school_id,
        "invoiceId": trigger.invoice_id,
        "studentId": invoice.student_id,
        "amountDue": totals.amount_due,
        "dueDate": invoice.due_at,
    }
    entries.append(
        _entry(
            bus_name,
            MESSAGING_SOURCE,
            MESSAGING_REQUESTED,
            {
                **message,
                "templateType": TEMPLATE_INVOICE_ISSUED,
                "detailType": trigger.detail_type or INVOICING_PROCESSED,
            },
        )
    )

    if derive_standing(totals.amount_due, invoice.due_at, now) == PaymentStanding.OVERDUE:
        entries.append(
            _entry(
                bus_name,
                MESSAGING_SOURCE,
                MESSAGING_REQUESTED,
                {
                    **message,
                    "templateType": TEMPLATE_OVERDUE_NOTICE,
                    "detailType": INVOICE_OVERDUE,
                },
            )
        )
    return entries


class OutcomePublisher:
    """Writes invoice totals and hands outcome events to the bus."""

    def __init__(
        self,
        db: AsyncSession,
        publisher: EventPublisher | None = None,
        bus_name: str | None = None,
    ):
        self.db = db
        self.publisher = publisher
        self.bus_name = bus_name

    @property
    def events_enabled(self) -> bool:
        return bool(self.bus_name) and self.publisher is not None

    async def persist(
        self, school_id: str, invoice_id: str, totals: InvoiceTotals, now: datetime
    ) -> bool:
        """
        One conditional update keyed on (school_id, id).

        Returns False when no row matched, i.e. the invoice vanished since it
        was read. Loaded Invoice instances are not refreshed.
        """
        result = await self.db.execute(
            update(Invoice)
            .where(Invoice.school_id == school_id, Invoice.id == invoice_id)
            .values(
                required_subtotal=totals.required_subtotal,
                optional_subtotal=totals.optional_subtotal,
                discount_total=totals.discount_total,
                penalty_total=totals.penalty_total,
                amount_paid=totals.amount_paid,
                amount_due=totals.amount_due,
                status=totals.status.value,
                min_first_amount=totals.min_first_amount,
                below_min_first=totals.below_min_first,
                last_processed_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        return result.rowcount > 0

    async def emit(
        self, trigger: InvoiceTrigger, invoice: Invoice, totals: InvoiceTotals, now: datetime
    ) -> list[dict[str, Any]]:
        """Returns the entries sent; empty when no bus is configured."""
        if not self.events_enabled:
            return []
        entries = build_outcome_events(trigger, invoice, totals, now, self.bus_name)
        await self.publisher.put_events(entries)
        logger.info("Emitted %d event(s) for invoice %s", len(entries), trigger.invoice_id)
        return entries
