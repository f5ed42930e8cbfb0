"""Service for Installments module."""

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from classpoint_billing.core.audit.service import AuditAction, AuditService
from classpoint_billing.modules.installments.models import (
    Installment,
    InstallmentPlan,
    InstallmentPlanStatus,
    InstallmentStatus,
)
from classpoint_billing.shared.utils.clock import as_utc
from classpoint_billing.shared.utils.money import round_money

logger = logging.getLogger(__name__)

DEFAULT_RATIOS = (Decimal("0.6"), Decimal("0.4"))
TEMPLATE_RATIOS: dict[str, tuple[Decimal, ...]] = {
    "40/30/30": (Decimal("0.4"), Decimal("0.3"), Decimal("0.3")),
}
SLOT_INTERVAL = timedelta(days=30)


@dataclass(frozen=True)
class InstallmentSlot:
    sequence_no: int
    amount: Decimal
    due_at: datetime


def template_ratios(template: str | None) -> tuple[Decimal, ...]:
    """Only "40/30/30" is special; anything else, the default included, splits 60/40."""
    return TEMPLATE_RATIOS.get((template or "").strip(), DEFAULT_RATIOS)


def split_amounts(total: Decimal, ratios: Sequence[Decimal]) -> list[Decimal]:
    """
    Split ``total`` by ``ratios``, rounded to cents.

    The last slot absorbs the rounding remainder so the slots always sum to
    ``total``.
    """
    total = round_money(total)
    amounts = [round_money(total * ratio) for ratio in ratios[:-1]]
    amounts.append(round_money(total - sum(amounts, Decimal("0"))))
    return amounts


def build_slots(total: Decimal, template: str | None, base_date: datetime) -> list[InstallmentSlot]:
    """Slots numbered from 1, due every 30 days starting at ``base_date``."""
    amounts = split_amounts(total, template_ratios(template))
    return [
        InstallmentSlot(
            sequence_no=index + 1,
            amount=amount,
            due_at=base_date + SLOT_INTERVAL * index,
        )
        for index, amount in enumerate(amounts)
    ]


def allocate_statuses(
    installments: Sequence[Installment], amount_paid: Decimal, now: datetime
) -> dict[int, InstallmentStatus]:
    """
    Greedy FIFO allocation of the invoice's total payments.

    Walks installments by ascending sequence_no; an installment is PAID when
    the remaining payment covers it, else OVERDUE if its due date has passed,
    else DUE. An installment the remainder cannot cover consumes nothing, so
    a later, smaller one can still be PAID. Depends only on (installments,
    amount_paid, now).
    Returns sequence_no -> status.
    """
    remaining = round_money(amount_paid)
    now = as_utc(now)
    statuses: dict[int, InstallmentStatus] = {}
    for inst in sorted(installments, key=lambda i: i.sequence_no):
        amount = round_money(inst.amount)
        due_at = as_utc(inst.due_at)
        if remaining >= amount:
            statuses[inst.sequence_no] = InstallmentStatus.PAID
            remaining -= amount
        elif due_at is not None and due_at < now:
            statuses[inst.sequence_no] = InstallmentStatus.OVERDUE
        else:
            statuses[inst.sequence_no] = InstallmentStatus.DUE
    return statuses


class InstallmentService:
    """Creates the one-time installment plan and keeps installment statuses current."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.audit = AuditService(db)

    async def get_plan(self, invoice_id: str) -> InstallmentPlan | None:
        result = await self.db.execute(
            select(InstallmentPlan).where(InstallmentPlan.invoice_id == invoice_id)
        )
        return result.scalar_one_or_none()

    async def list_installments(self, plan_id: str) -> list[Installment]:
        result = await self.db.execute(
            select(Installment)
            .where(Installment.installment_plan_id == plan_id)
            .order_by(Installment.sequence_no)
        )
        return list(result.scalars().all())

    async def create_plan(
        self,
        school_id: str,
        invoice_id: str,
        required_subtotal: Decimal,
        template: str,
        base_date: datetime,
    ) -> InstallmentPlan | None:
        """
        Insert plan and installments, failing if the invoice already has a plan.

        The unique constraint on invoice_id is the guard. A conflicting insert
        rolls the session back and returns None; the caller must reload any
        ORM state it still needs. Any other constraint failure is re-raised.
        """
        plan = InstallmentPlan(
            school_id=school_id,
            invoice_id=invoice_id,
            status=InstallmentPlanStatus.ACTIVE.value,
            template=template,
            total_amount=round_money(required_subtotal),
        )
        self.db.add(plan)
        try:
            await self.db.flush()
            slots = build_slots(required_subtotal, template, as_utc(base_date))
            for slot in slots:
                self.db.add(
                    Installment(
                        school_id=school_id,
                        installment_plan_id=plan.id,
                        sequence_no=slot.sequence_no,
                        amount=slot.amount,
                        due_at=slot.due_at,
                        status=InstallmentStatus.DUE.value,
                    )
                )
            await self.db.flush()
            await self.audit.log(
                action=AuditAction.CREATE_INSTALLMENT_PLAN,
                school_id=school_id,
                entity_type="Invoice",
                entity_id=invoice_id,
                new_values={
                    "installment_plan_id": plan.id,
                    "template": template,
                    "total_amount": str(plan.total_amount),
                    "installments": [str(s.amount) for s in slots],
                },
            )
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            if await self.get_plan(invoice_id) is None:
                raise
            logger.info("Installment plan for invoice %s already created concurrently", invoice_id)
            return None

        logger.info(
            "Created installment plan %s (%s) for invoice %s: %d installments",
            plan.id,
            template,
            invoice_id,
            len(slots),
        )
        return plan

    async def ensure_plan(
        self,
        school_id: str,
        invoice_id: str,
        required_subtotal: Decimal,
        template: str,
        base_date: datetime,
    ) -> tuple[InstallmentPlan | None, bool]:
        """
        Return (plan, created).

        An existing plan is never touched, even if the subtotal or template
        changed since. ``(None, False)`` means a concurrent run won the insert.
        """
        existing = await self.get_plan(invoice_id)
        if existing is not None:
            return existing, False
        plan = await self.create_plan(school_id, invoice_id, required_subtotal, template, base_date)
        return plan, plan is not None

    async def refresh_statuses(
        self, invoice_id: str, amount_paid: Decimal, now: datetime
    ) -> list[Installment]:
        """Reallocate payments over the plan's installments. Only changed rows are written."""
        plan = await self.get_plan(invoice_id)
        if plan is None:
            return []
        installments = await self.list_installments(plan.id)
        statuses = allocate_statuses(installments, amount_paid, now)
        for inst in installments:
            new_status = statuses[inst.sequence_no].value
            if inst.status != new_status:
                inst.status = new_status
        await self.db.flush()
        return installments
