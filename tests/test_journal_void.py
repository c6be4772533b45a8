"""
Ledger Engine - Journal Void Tests
"""

import uuid
from decimal import Decimal

import pytest
from sqlalchemy import select

from ledger_engine.models.accounting import JournalEntryStatus, LedgerEntry
from ledger_engine.services.event_publisher import JOURNAL_ENTRY_VOIDED
from ledger_engine.utils.error_handling import ErrorCode
from tests.helpers import balance, create_and_post, create_draft


async def ledger_count(session, entry_id) -> int:
    result = await session.execute(
        select(LedgerEntry.id).where(LedgerEntry.journal_entry_id == entry_id)
    )
    return len(result.all())


class TestVoidEntry:
    
    @pytest.mark.asyncio
    async def test_void_restores_balances_and_removes_ledger_rows(self, db_session, journal_service, tenant_id, accounts):
        cash, sales = accounts["1000"], accounts["4000"]
        posted = await create_and_post(journal_service, tenant_id, [(cash, "100", "0"), (sales, "0", "100")])
        assert await ledger_count(db_session, posted.id) == 2
        
        result = await journal_service.void_entry(tenant_id, posted.id, reason="Duplicate invoice")
        
        assert result.success is True
        entry = result.data
        assert entry.status == JournalEntryStatus.VOIDED
        assert entry.voided_at is not None
        assert entry.voided_reason == "Duplicate invoice"
        assert entry.description == "Test entry"
        assert await ledger_count(db_session, entry.id) == 0
        assert await balance(db_session, cash) == Decimal("0.00")
        assert await balance(db_session, sales) == Decimal("0.00")
    
    @pytest.mark.asyncio
    async def test_void_leaves_other_entries_alone(self, db_session, journal_service, tenant_id, accounts):
        cash, sales, rent = accounts["1000"], accounts["4000"], accounts["5000"]
        kept = await create_and_post(journal_service, tenant_id, [(cash, "300", "0"), (sales, "0", "300")])
        voided = await create_and_post(journal_service, tenant_id, [(rent, "45.50", "0"), (cash, "0", "45.50")])
        
        result = await journal_service.void_entry(tenant_id, voided.id)
        
        assert result.success is True
        assert result.data.voided_reason is None
        assert await balance(db_session, cash) == Decimal("300.00")
        assert await balance(db_session, rent) == Decimal("0.00")
        assert await ledger_count(db_session, kept.id) == 2
    
    @pytest.mark.asyncio
    async def test_voiding_twice_fails(self, db_session, journal_service, publisher, tenant_id, accounts):
        cash, sales = accounts["1000"], accounts["4000"]
        posted = await create_and_post(journal_service, tenant_id, [(cash, "100", "0"), (sales, "0", "100")])
        entry_id = posted.id
        first = await journal_service.void_entry(tenant_id, entry_id)
        assert first.success
        
        second = await journal_service.void_entry(tenant_id, entry_id)
        
        assert second.success is False
        assert second.error_code == ErrorCode.INVALID_STATE
        assert await balance(db_session, cash) == Decimal("0.00")
        assert len(publisher.of_type(JOURNAL_ENTRY_VOIDED)) == 1
    
    @pytest.mark.asyncio
    async def test_draft_cannot_be_voided(self, journal_service, tenant_id, accounts):
        draft = await create_draft(journal_service, tenant_id, [
            (accounts["1000"], "10", "0"),
            (accounts["4000"], "0", "10"),
        ])
        entry_id = draft.id
        
        result = await journal_service.void_entry(tenant_id, entry_id)
        
        assert result.success is False
        assert result.error_code == ErrorCode.INVALID_STATE
        entry = await journal_service.get_entry(tenant_id, entry_id)
        assert entry.status == JournalEntryStatus.DRAFT
    
    @pytest.mark.asyncio
    async def test_voided_entry_cannot_be_posted_again(self, journal_service, tenant_id, accounts):
        posted = await create_and_post(journal_service, tenant_id, [
            (accounts["1000"], "10", "0"),
            (accounts["4000"], "0", "10"),
        ])
        entry_id = posted.id
        await journal_service.void_entry(tenant_id, entry_id)
        
        result = await journal_service.post_entry(tenant_id, entry_id)
        
        assert result.error_code == ErrorCode.INVALID_STATE
    
    @pytest.mark.asyncio
    async def test_void_unknown_entry(self, journal_service, tenant_id, accounts):
        result = await journal_service.void_entry(tenant_id, uuid.uuid4())
        
        assert result.error_code == ErrorCode.NOT_FOUND
    
    @pytest.mark.asyncio
    async def test_void_event_carries_reason(self, journal_service, publisher, tenant_id, accounts):
        posted = await create_and_post(journal_service, tenant_id, [
            (accounts["1000"], "80", "0"),
            (accounts["4000"], "0", "80"),
        ])
        
        await journal_service.void_entry(tenant_id, posted.id, reason="Customer cancelled")
        
        events = publisher.of_type(JOURNAL_ENTRY_VOIDED)
        assert len(events) == 1
        assert events[0]["entry_id"] == str(posted.id)
        assert events[0]["reason"] == "Customer cancelled"
