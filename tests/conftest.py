"""
Ledger Engine - Test Configuration

Pytest fixtures and configuration.

Tests run against a file-backed SQLite database (aiosqlite) by default so
that several sessions can work on the same data concurrently. Set
TEST_DATABASE_URL (e.g. postgresql+asyncpg://...) to run against PostgreSQL.
"""

import os
import uuid
from datetime import date
from decimal import Decimal
from typing import AsyncGenerator, Dict

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

import ledger_engine.models  # noqa: F401
from ledger_engine.database import Base, build_engine, get_async_session
from ledger_engine.dependencies import get_publisher
from ledger_engine.models.accounting import Account, AccountCategory
from ledger_engine.schemas.accounting import FiscalYearCreate
from ledger_engine.services.fiscal_period_service import FiscalPeriodService
from ledger_engine.services.journal_service import JournalService
from main import app
from tests.helpers import RecordingPublisher


TEST_DATABASE_URL = os.environ.get("TEST_DATABASE_URL")


@pytest_asyncio.fixture(scope="function")
async def test_engine(tmp_path):
    """Create a fresh schema for each test."""
    engine = build_engine(TEST_DATABASE_URL or f"sqlite+aiosqlite:///{tmp_path / 'ledger_test.db'}")
    
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    
    yield engine
    
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker:
    return async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def publisher() -> RecordingPublisher:
    return RecordingPublisher()


@pytest.fixture
def journal_service(db_session, publisher) -> JournalService:
    return JournalService(db_session, publisher)


@pytest.fixture
def fiscal_service(db_session, publisher) -> FiscalPeriodService:
    return FiscalPeriodService(db_session, publisher)


@pytest_asyncio.fixture(scope="function")
async def client(session_factory, publisher) -> AsyncGenerator[AsyncClient, None]:
    """Create a test client with database session and publisher overrides."""
    
    async def override_get_session():
        async with session_factory() as session:
            yield session
    
    app.dependency_overrides[get_async_session] = override_get_session
    app.dependency_overrides[get_publisher] = lambda: publisher
    
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    
    app.dependency_overrides.clear()


# ===========================================
# DATA FIXTURES
# ===========================================

@pytest.fixture
def tenant_id() -> uuid.UUID:
    return uuid.uuid4()


CHART = [
    ("1000", "Cash", AccountCategory.ASSET, {}),
    ("1100", "Accounts Receivable", AccountCategory.ASSET, {}),
    ("1900", "Current Assets", AccountCategory.ASSET, {"is_header": True}),
    ("1950", "Old Bank Account", AccountCategory.ASSET, {"is_active": False}),
    ("2000", "Accounts Payable", AccountCategory.LIABILITY, {}),
    ("3200", "Retained Earnings", AccountCategory.EQUITY, {}),
    ("4000", "Sales Revenue", AccountCategory.REVENUE, {}),
    ("4100", "Service Revenue", AccountCategory.REVENUE, {}),
    ("5000", "Rent Expense", AccountCategory.EXPENSE, {}),
    ("5100", "Salaries Expense", AccountCategory.EXPENSE, {}),
]


@pytest_asyncio.fixture
async def accounts(db_session: AsyncSession, tenant_id: uuid.UUID) -> Dict[str, Account]:
    """Chart of accounts keyed by code."""
    chart = {}
    for code, name, category, flags in CHART:
        account = Account(
            tenant_id=tenant_id,
            code=code,
            name=name,
            category=category,
            normal_balance=category.normal_balance,
            current_balance=Decimal("0.00"),
            **flags,
        )
        db_session.add(account)
        chart[code] = account
    await db_session.commit()
    return chart


@pytest_asyncio.fixture
async def fiscal_year_2026(db_session: AsyncSession, tenant_id: uuid.UUID, publisher):
    service = FiscalPeriodService(db_session, publisher)
    result = await service.create_fiscal_year(
        tenant_id,
        FiscalYearCreate(name="FY2026", start_date=date(2026, 1, 1), end_date=date(2026, 12, 31)),
    )
    assert result.success, result.errors
    return result.data


