"""Initial billing tables

Revision ID: 001_initial
Revises:
Create Date: 2026-10-17

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _tenant_columns() -> list[sa.Column]:
    return [
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("school_id", sa.String(36), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    ]


def _money(name: str) -> sa.Column:
    return sa.Column(name, sa.Numeric(15, 2), nullable=False, server_default="0.00")


def upgrade() -> None:
    # Fee catalog
    op.create_table(
        "fee_items",
        *_tenant_columns(),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("category", sa.String(50), nullable=False, server_default="TUITION"),
        sa.Column("is_optional", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="true"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_fee_items_school_id", "fee_items", ["school_id"])

    # Fee schedules
    op.create_table(
        "fee_schedules",
        *_tenant_columns(),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("term_id", sa.String(36), nullable=True),
        sa.Column("class_year_id", sa.String(36), nullable=True),
        sa.Column("class_group_id", sa.String(36), nullable=True),
        sa.Column("currency", sa.String(3), nullable=False, server_default="NGN"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="true"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_fee_schedules_school_id", "fee_schedules", ["school_id"])
    op.create_index("ix_fee_schedules_term_id", "fee_schedules", ["term_id"])

    op.create_table(
        "fee_schedule_lines",
        *_tenant_columns(),
        sa.Column("fee_schedule_id", sa.String(36), nullable=False),
        sa.Column("fee_item_id", sa.String(36), nullable=True),
        _money("amount"),
        sa.Column("is_optional_override", sa.Boolean(), nullable=True),
        sa.Column("due_date", sa.Date(), nullable=True),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
        sa.ForeignKeyConstraint(["fee_schedule_id"], ["fee_schedules.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_fee_schedule_lines_school_id", "fee_schedule_lines", ["school_id"])
    op.create_index(
        "ix_fee_schedule_lines_fee_schedule_id", "fee_schedule_lines", ["fee_schedule_id"]
    )

    # Invoices
    op.create_table(
        "invoices",
        *_tenant_columns(),
        sa.Column("invoice_no", sa.String(50), nullable=True),
        sa.Column("student_id", sa.String(36), nullable=True),
        sa.Column("term_id", sa.String(36), nullable=True),
        sa.Column("class_group_id", sa.String(36), nullable=True),
        sa.Column("fee_schedule_id", sa.String(36), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="ISSUED"),
        sa.Column("issued_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("due_at", sa.DateTime(timezone=True), nullable=True),
        _money("required_subtotal"),
        _money("optional_subtotal"),
        _money("discount_total"),
        _money("penalty_total"),
        _money("amount_paid"),
        _money("amount_due"),
        sa.Column("min_first_percent", sa.Integer(), nullable=True),
        _money("min_first_amount"),
        sa.Column("below_min_first", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("installment_template", sa.String(20), nullable=True),
        sa.Column("last_processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.ForeignKeyConstraint(["fee_schedule_id"], ["fee_schedules.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_invoices_school_id", "invoices", ["school_id"])
    op.create_index("ix_invoices_invoice_no", "invoices", ["invoice_no"])
    op.create_index("ix_invoices_student_id", "invoices", ["student_id"])
    op.create_index("ix_invoices_status", "invoices", ["status"])

    op.create_table(
        "invoice_lines",
        *_tenant_columns(),
        sa.Column("invoice_id", sa.String(36), nullable=False),
        sa.Column("fee_item_id", sa.String(36), nullable=True),
        sa.Column("fee_schedule_line_id", sa.String(36), nullable=True),
        sa.Column("label", sa.String(200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        _money("amount"),
        sa.Column("is_optional", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("is_selected", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
        sa.ForeignKeyConstraint(["invoice_id"], ["invoices.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "invoice_id", "fee_schedule_line_id", name="uq_invoice_line_schedule_line"
        ),
    )
    op.create_index("ix_invoice_lines_school_id", "invoice_lines", ["school_id"])
    op.create_index("ix_invoice_lines_invoice_id", "invoice_lines", ["invoice_id"])

    # Adjustments and payments (written elsewhere, read here)
    op.create_table(
        "adjustments",
        *_tenant_columns(),
        sa.Column("invoice_id", sa.String(36), nullable=False),
        sa.Column("type", sa.String(20), nullable=False),
        sa.Column("amount", sa.Numeric(15, 2), nullable=True),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(["invoice_id"], ["invoices.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_adjustments_school_id", "adjustments", ["school_id"])
    op.create_index("ix_adjustments_invoice_id", "adjustments", ["invoice_id"])

    op.create_table(
        "payments",
        *_tenant_columns(),
        sa.Column("invoice_id", sa.String(36), nullable=False),
        sa.Column("amount", sa.Numeric(15, 2), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="SUCCESS"),
        sa.Column("provider", sa.String(50), nullable=True),
        sa.Column("reference", sa.String(100), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["invoice_id"], ["invoices.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_payments_school_id", "payments", ["school_id"])
    op.create_index("ix_payments_invoice_id", "payments", ["invoice_id"])

    # Installments
    op.create_table(
        "installment_plans",
        *_tenant_columns(),
        sa.Column("invoice_id", sa.String(36), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="ACTIVE"),
        sa.Column("template", sa.String(20), nullable=False),
        sa.Column("total_amount", sa.Numeric(15, 2), nullable=False),
        sa.ForeignKeyConstraint(["invoice_id"], ["invoices.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("invoice_id", name="uq_installment_plan_invoice"),
    )
    op.create_index("ix_installment_plans_school_id", "installment_plans", ["school_id"])
    op.create_index("ix_installment_plans_invoice_id", "installment_plans", ["invoice_id"])

    op.create_table(
        "installments",
        *_tenant_columns(),
        sa.Column("installment_plan_id", sa.String(36), nullable=False),
        sa.Column("sequence_no", sa.Integer(), nullable=False),
        sa.Column("amount", sa.Numeric(15, 2), nullable=False),
        sa.Column("due_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="DUE"),
        sa.ForeignKeyConstraint(
            ["installment_plan_id"], ["installment_plans.id"], ondelete="CASCADE"
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "installment_plan_id", "sequence_no", name="uq_installment_plan_sequence"
        ),
    )
    op.create_index("ix_installments_school_id", "installments", ["school_id"])
    op.create_index(
        "ix_installments_installment_plan_id", "installments", ["installment_plan_id"]
    )

    # Audit log
    op.create_table(
        "audit_logs",
        *_tenant_columns(),
        sa.Column("action", sa.String(100), nullable=False),
        sa.Column("entity_type", sa.String(100), nullable=False),
        sa.Column("entity_id", sa.String(36), nullable=False),
        sa.Column("new_values", sa.JSON(), nullable=True),
        sa.Column("comment", sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_audit_logs_school_id", "audit_logs", ["school_id"])
    op.create_index("ix_audit_logs_action", "audit_logs", ["action"])
    op.create_index("ix_audit_logs_entity_type", "audit_logs", ["entity_type"])
    op.create_index("ix_audit_logs_entity_id", "audit_logs", ["entity_id"])


def downgrade() -> None:
    op.drop_table("audit_logs")
    op.drop_table("installments")
    op.drop_table("installment_plans")
    op.drop_table("payments")
    op.drop_table("adjustments")
    op.drop_table("invoice_lines")
    op.drop_table("invoices")
    op.drop_table("fee_schedule_lines")
    op.drop_table("fee_schedules")
    op.drop_table("fee_items")
