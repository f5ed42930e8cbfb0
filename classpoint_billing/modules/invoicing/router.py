"""Operator endpoints for invoice recomputation."""

import secrets

from fastapi import APIRouter, Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from classpoint_billing.core.config import InvoicingConfig, settings
from classpoint_billing.core.database.session import get_db
from classpoint_billing.core.exceptions import AuthenticationError, NotFoundError
from classpoint_billing.integrations.eventbridge.client import build_publisher
from classpoint_billing.modules.installments.service import InstallmentService
from classpoint_billing.modules.invoices.models import Invoice
from classpoint_billing.modules.invoices.service import InvoiceLineService
from classpoint_billing.modules.invoicing.schemas import (
    InstallmentResponse,
    InvoiceLineResponse,
    InvoiceSnapshotResponse,
    RecomputeResponse,
)
from classpoint_billing.modules.invoicing.service import InvoicingService
from classpoint_billing.shared.schemas.base import ApiResponse
from classpoint_billing.shared.utils.clock import utcnow

router = APIRouter(prefix="/invoicing", tags=["Invoicing"])


def verify_operator_token(x_operator_token: str | None = Header(None)) -> None:
    """Requests are rejected when no operator token is configured."""
    configured = (settings.operator_api_token or "").strip()
    if not configured or not secrets.compare_digest(x_operator_token or "", configured):
        raise AuthenticationError("Invalid operator token")


def get_invoicing_service(db: AsyncSession = Depends(get_db)) -> InvoicingService:
    return InvoicingService(db, InvoicingConfig.from_settings(settings), build_publisher(settings))


async def _snapshot(service: InvoicingService, school_id: str, invoice_id: str) -> InvoiceSnapshotResponse:
    invoice: Invoice | None = await service.get_invoice(school_id, invoice_id)
    if invoice is None:
        raise NotFoundError("Invoice", invoice_id)

    lines = await InvoiceLineService(service.db).list_lines(invoice.id)
    installment_service = InstallmentService(service.db)
    plan = await installment_service.get_plan(invoice.id)
    installments = await installment_service.list_installments(plan.id) if plan else []

    return InvoiceSnapshotResponse(
        id=invoice.id,
        school_id=invoice.school_id,
        invoice_no=invoice.invoice_no,
        student_id=invoice.student_id,
        status=invoice.status,
        standing=invoice.standing(utcnow()),
        due_at=invoice.due_at,
        required_subtotal=float(invoice.required_subtotal),
        optional_subtotal=float(invoice.optional_subtotal),
        discount_total=float(invoice.discount_total),
        penalty_total=float(invoice.penalty_total),
        amount_paid=float(invoice.amount_paid),
        amount_due=float(invoice.amount_due),
        min_first_amount=float(invoice.min_first_amount),
        below_min_first=invoice.below_min_first,
        last_processed_at=invoice.last_processed_at,
        lines=[InvoiceLineResponse.model_validate(line) for line in lines],
        installments=[InstallmentResponse.model_validate(inst) for inst in installments],
    )


@router.get(
    "/schools/{school_id}/invoices/{invoice_id}",
    response_model=ApiResponse[InvoiceSnapshotResponse],
    dependencies=[Depends(verify_operator_token)],
)
async def get_invoice_snapshot(
    school_id: str,
    invoice_id: str,
    service: InvoicingService = Depends(get_invoicing_service),
):
    """Stored snapshot with derived standing and installments."""
    return ApiResponse(success=True, data=await _snapshot(service, school_id, invoice_id))


@router.post(
    "/schools/{school_id}/invoices/{invoice_id}/recompute",
    response_model=ApiResponse[RecomputeResponse],
    dependencies=[Depends(verify_operator_token)],
)
async def recompute_invoice(
    school_id: str,
    invoice_id: str,
    service: InvoicingService = Depends(get_invoicing_service),
):
    """Recompute one invoice now. Emits invoicing.processed only."""
    result = await service.recompute_invoice(school_id, invoice_id)
    if not result.found:
        raise NotFoundError("Invoice", invoice_id)

    return ApiResponse(
        success=True,
        data=RecomputeResponse(
            invoice=await _snapshot(service, school_id, invoice_id),
            lines_created=result.lines_created,
            plan_created=result.plan_created,
            events_emitted=len(result.events),
        ),
        message="Invoice recomputed",
    )
