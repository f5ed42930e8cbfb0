from enum import StrEnum
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from classpoint_billing.core.audit.models import AuditLog


class AuditAction(StrEnum):
    """Standard audit actions."""

    MATERIALIZE_LINES = "invoice.materialize_lines"
    CREATE_INSTALLMENT_PLAN = "invoice.create_installment_plan"


class AuditService:
    """Service for creating audit logs."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def log(
        self,
        action: str | AuditAction,
        school_id: str,
        entity_type: str,
        entity_id: str,
        new_values: dict[str, Any] | None = None,
        comment: str | None = None,
    ) -> AuditLog:
        """Create an audit log entry. Flushed, not committed."""
        audit_log = AuditLog(
            school_id=school_id,
            action=str(action),
            entity_type=entity_type,
            entity_id=entity_id,
            new_values=new_values,
            comment=comment,
        )

        self.db.add(audit_log)
        await self.db.flush()

        return audit_log

    async def list_for_entity(self, entity_type: str, entity_id: str) -> list[AuditLog]:
        result = await self.db.execute(
            select(AuditLog)
            .where(AuditLog.entity_type == entity_type, AuditLog.entity_id == entity_id)
            .order_by(AuditLog.created_at)
        )
        return list(result.scalars().all())
