"""
Ledger Engine - Test Helpers
"""

import uuid
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Tuple

from sqlalchemy import inspect
from sqlalchemy.ext.asyncio import AsyncSession

from ledger_engine.models.accounting import Account
from ledger_engine.schemas.accounting import JournalEntryCreate, JournalLineCreate
from ledger_engine.services.account_balances import get_balance
from ledger_engine.services.event_publisher import EventPublisher
from ledger_engine.services.journal_service import JournalService


class RecordingPublisher(EventPublisher):
    """Publisher that keeps every event in memory."""
    
    def __init__(self):
        self.events: List[Tuple[str, uuid.UUID, Dict[str, Any]]] = []
    
    async def publish(self, event_type: str, tenant_id: uuid.UUID, data: Dict[str, Any]) -> bool:
        self.events.append((event_type, tenant_id, data))
        return True
    
    def of_type(self, event_type: str) -> List[Dict[str, Any]]:
        return [data for kind, _, data in self.events if kind == event_type]


def entry_data(
    lines: List[Tuple[Account, str, str]],
    entry_date: date = date(2026, 3, 15),
    description: str = "Test entry",
) -> JournalEntryCreate:
    """Build a draft from (account, debit, credit) triples."""
    return JournalEntryCreate(
        entry_date=entry_date,
        description=description,
        lines=[
            JournalLineCreate(
                account_id=pk(account),
                debit_amount=Decimal(debit),
                credit_amount=Decimal(credit),
            )
            for account, debit, credit in lines
        ],
    )


async def create_draft(
    service: JournalService,
    tenant_id: uuid.UUID,
    lines: List[Tuple[Account, str, str]],
    entry_date: date = date(2026, 3, 15),
):
    created = await service.create_entry(tenant_id, entry_data(lines, entry_date))
    assert created.success, created.errors
    return created.data


async def create_and_post(
    service: JournalService,
    tenant_id: uuid.UUID,
    lines: List[Tuple[Account, str, str]],
    entry_date: date = date(2026, 3, 15),
):
    draft = await create_draft(service, tenant_id, lines, entry_date)
    posted = await service.post_entry(tenant_id, draft.id)
    assert posted.success, posted.errors
    return posted.data


async def balance(session: AsyncSession, account: Account) -> Decimal:
    """Stored balance read from the database, not the identity map."""
    return await get_balance(session, pk(account))


def pk(instance) -> uuid.UUID:
    """Primary key from the identity map; safe on instances expired by a rollback."""
    return inspect(instance).identity[0]
