"""Schemas for the operator invoicing API."""

from datetime import datetime

from pydantic import BaseModel

from classpoint_billing.modules.invoices.standing import PaymentStanding


class InstallmentResponse(BaseModel):
    sequence_no: int
    amount: float
    due_at: datetime | None
    status: str

    model_config = {"from_attributes": True}


class InvoiceLineResponse(BaseModel):
    id: str
    fee_item_id: str | None
    label: str
    description: str | None
    amount: float
    is_optional: bool
    is_selected: bool
    sort_order: int

    model_config = {"from_attributes": True}


class InvoiceSnapshotResponse(BaseModel):
    """Stored financial snapshot of one invoice."""

    id: str
    school_id: str
    invoice_no: str | None
    student_id: str | None
    status: str
    standing: PaymentStanding
    due_at: datetime | None
    required_subtotal: float
    optional_subtotal: float
    discount_total: float
    penalty_total: float
    amount_paid: float
    amount_due: float
    min_first_amount: float
    below_min_first: bool
    last_processed_at: datetime | None
    lines: list[InvoiceLineResponse] = []
    installments: list[InstallmentResponse] = []


class RecomputeResponse(BaseModel):
    invoice: InvoiceSnapshotResponse
    lines_created: bool
    plan_created: bool
    events_emitted: int
