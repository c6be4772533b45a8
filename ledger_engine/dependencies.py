"""
Ledger Engine - FastAPI Dependencies

Shared dependencies for tenant resolution, database sessions and
service construction.
"""

import uuid

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from ledger_engine.database import get_async_session
from ledger_engine.services.account_balances import AccountService
from ledger_engine.services.event_publisher import EventPublisher, get_event_publisher
from ledger_engine.services.fiscal_period_service import FiscalPeriodService
from ledger_engine.services.journal_service import JournalService


async def get_current_tenant_id(
    x_tenant_id: str = Header(..., alias="X-Tenant-ID"),
) -> uuid.UUID:
    """
    Resolve the tenant for the request.

    Tenant authentication happens upstream; the gateway forwards the
    resolved tenant in the X-Tenant-ID header.
    """
    try:
        return uuid.UUID(x_tenant_id)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="X-Tenant-ID must be a valid UUID",
        )


def get_publisher() -> EventPublisher:
    return get_event_publisher()


async def get_account_service(
    db: AsyncSession = Depends(get_async_session),
) -> AccountService:
    return AccountService(db)


async def get_journal_service(
    db: AsyncSession = Depends(get_async_session),
    publisher: EventPublisher = Depends(get_publisher),
) -> JournalService:
    return JournalService(db, publisher)


async def get_fiscal_period_service(
    db: AsyncSession = Depends(get_async_session),
    publisher: EventPublisher = Depends(get_publisher),
) -> FiscalPeriodService:
    return FiscalPeriodService(db, publisher)
