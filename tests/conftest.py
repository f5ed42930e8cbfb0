from collections.abc import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from classpoint_billing.core.database.base import Base
from classpoint_billing.core.database import get_db
from classpoint_billing.main import app

# Import all models so every table is registered with Base.metadata
from classpoint_billing.core.audit.models import AuditLog  # noqa: F401
from classpoint_billing.modules.adjustments.models import Adjustment  # noqa: F401
from classpoint_billing.modules.fees.models import FeeItem, FeeSchedule, FeeScheduleLine  # noqa: F401
from classpoint_billing.modules.installments.models import Installment, InstallmentPlan  # noqa: F401
from classpoint_billing.modules.invoices.models import Invoice, InvoiceLine  # noqa: F401
from classpoint_billing.modules.payments.models import Payment  # noqa: F401

# In-memory SQLite shared by every connection of the test engine
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

test_engine = create_async_engine(TEST_DATABASE_URL, echo=False, poolclass=StaticPool)
test_async_session = async_sessionmaker(
    test_engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


class RecordingPublisher:
    """Event bus stand-in that keeps every PutEvents batch."""

    def __init__(self):
        self.calls: list[list[dict]] = []

    async def put_events(self, entries: list[dict]) -> None:
        self.calls.append(list(entries))

    @property
    def entries(self) -> list[dict]:
        return [entry for call in self.calls for entry in call]


@pytest.fixture(autouse=True)
async def setup_database():
    """Create tables before each test and drop after."""
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
def session_factory() -> async_sessionmaker[AsyncSession]:
    return test_async_session


@pytest.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Get test database session."""
    async with test_async_session() as session:
        yield session


@pytest.fixture
def publisher() -> RecordingPublisher:
    return RecordingPublisher()


@pytest.fixture
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Get test HTTP client with overridden database dependency."""

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client

    app.dependency_overrides.clear()
