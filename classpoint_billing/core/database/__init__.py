from classpoint_billing.core.database.session import async_session, engine, get_db
from classpoint_billing.core.database.base import Base, TenantModel, new_id

__all__ = ["async_session", "engine", "get_db", "Base", "TenantModel", "new_id"]
