from sqlalchemy import JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from classpoint_billing.core.database.base import TenantModel


class AuditLog(TenantModel):
    """Audit trail of rows the invoicing worker creates once (lines, plans)."""

    __tablename__ = "audit_logs"

    action: Mapped[str] = mapped_column(String(100), nullable=False, index=True)

    entity_type: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    entity_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)

    new_values: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)
