"""
Ledger Engine - Concurrent Posting Tests

Each task works through its own session, the way concurrent requests do.
"""

import asyncio
from decimal import Decimal
from types import SimpleNamespace

import pytest
from sqlalchemy import func, select

from ledger_engine.models.accounting import FiscalPeriodStatus, JournalEntryStatus, LedgerEntry
from ledger_engine.services import journal_service as journal_module
from ledger_engine.services.account_balances import AccountService
from ledger_engine.services.fiscal_period_service import FiscalPeriodService
from ledger_engine.services.journal_service import JournalService
from ledger_engine.utils.error_handling import ErrorCode
from tests.helpers import balance, create_draft


async def post_in_own_session(session_factory, publisher, tenant_id, entry_id):
    async with session_factory() as session:
        return await JournalService(session, publisher).post_entry(tenant_id, entry_id)


async def void_in_own_session(session_factory, publisher, tenant_id, entry_id):
    async with session_factory() as session:
        return await JournalService(session, publisher).void_entry(tenant_id, entry_id)


async def close_in_own_session(session_factory, publisher, tenant_id, period_id):
    async with session_factory() as session:
        return await FiscalPeriodService(session, publisher).close_period(tenant_id, period_id, force=True)


async def close_year_in_own_session(session_factory, publisher, tenant_id, fiscal_year_id):
    async with session_factory() as session:
        return await FiscalPeriodService(session, publisher).close_fiscal_year(tenant_id, fiscal_year_id)


class TestConcurrentPosting:
    
    @pytest.mark.asyncio
    async def test_same_account_postings_lose_no_update(
        self, db_session, session_factory, journal_service, publisher, tenant_id, accounts,
    ):
        cash = accounts["1000"]
        amounts = ["100", "250.25", "75.75", "40", "34"]
        drafts = []
        for amount in amounts:
            draft = await create_draft(journal_service, tenant_id, [(cash, amount, "0"), (accounts["4000"], "0", amount)])
            drafts.append(draft.id)
        
        results = await asyncio.gather(*[
            post_in_own_session(session_factory, publisher, tenant_id, entry_id) for entry_id in drafts
        ])
        
        assert all(result.success for result in results), [r.errors for r in results]
        expected = sum((Decimal(a) for a in amounts), Decimal("0"))
        assert await balance(db_session, cash) == expected
        assert await balance(db_session, accounts["4000"]) == -expected
    
    @pytest.mark.asyncio
    async def test_disjoint_postings_commit_independently(
        self, db_session, session_factory, journal_service, publisher, tenant_id, accounts,
    ):
        first = await create_draft(journal_service, tenant_id, [(accounts["1000"], "60", "0"), (accounts["4000"], "0", "60")])
        second = await create_draft(journal_service, tenant_id, [(accounts["5000"], "25", "0"), (accounts["2000"], "0", "25")])
        
        results = await asyncio.gather(
            post_in_own_session(session_factory, publisher, tenant_id, first.id),
            post_in_own_session(session_factory, publisher, tenant_id, second.id),
        )
        
        assert [result.success for result in results] == [True, True]
        assert await balance(db_session, accounts["1000"]) == Decimal("60.00")
        assert await balance(db_session, accounts["5000"]) == Decimal("25.00")
        assert await balance(db_session, accounts["2000"]) == Decimal("-25.00")
    
    @pytest.mark.asyncio
    async def test_same_entry_posts_exactly_once(
        self, db_session, session_factory, journal_service, publisher, tenant_id, accounts,
    ):
        draft = await create_draft(journal_service, tenant_id, [(accounts["1000"], "100", "0"), (accounts["4000"], "0", "100")])
        
        results = await asyncio.gather(*[
            post_in_own_session(session_factory, publisher, tenant_id, draft.id) for _ in range(3)
        ])
        
        assert sum(1 for result in results if result.success) == 1
        assert all(
            result.error_code == ErrorCode.INVALID_STATE for result in results if not result.success
        )
        assert await balance(db_session, accounts["1000"]) == Decimal("100.00")
    
    @pytest.mark.asyncio
    async def test_concurrent_post_and_void_keep_ledger_consistent(
        self, db_session, session_factory, journal_service, publisher, tenant_id, accounts,
    ):
        cash, sales = accounts["1000"], accounts["4000"]
        to_void = await create_draft(journal_service, tenant_id, [(cash, "300", "0"), (sales, "0", "300")])
        posted = await journal_service.post_entry(tenant_id, to_void.id)
        assert posted.success
        to_post = await create_draft(journal_service, tenant_id, [(cash, "45", "0"), (sales, "0", "45")])
        
        results = await asyncio.gather(
            void_in_own_session(session_factory, publisher, tenant_id, to_void.id),
            post_in_own_session(session_factory, publisher, tenant_id, to_post.id),
        )
        
        assert all(result.success for result in results)
        assert await balance(db_session, cash) == Decimal("45.00")
        reconciled = await AccountService(db_session).reconcile_balances(tenant_id)
        assert reconciled.data == []


class TestPostingAgainstClose:
    """Postings racing a period or year-end close never land in a closed period."""
    
    @pytest.mark.asyncio
    async def test_close_committed_between_read_and_claim_rejects_posting(
        self, monkeypatch, db_session, session_factory, journal_service, publisher,
        tenant_id, accounts, fiscal_year_2026,
    ):
        march = next(p for p in fiscal_year_2026.periods if p.name == "March 2026")
        march_id = march.id
        draft = await create_draft(journal_service, tenant_id, [(accounts["1000"], "100", "0"), (accounts["4000"], "0", "100")])
        draft_id = draft.id
        real_find = journal_module.find_period_for_date
        reads = []
        
        async def close_after_first_read(db, tenant, entry_date, for_update=False):
            reads.append(entry_date)
            if len(reads) > 1:
                return await real_find(db, tenant, entry_date, for_update=for_update)
            # Hand back the period as it was read, then let the close commit
            stale = SimpleNamespace(id=march_id, name="March 2026", status=FiscalPeriodStatus.OPEN)
            async with session_factory() as other:
                closed = await FiscalPeriodService(other, publisher).close_period(tenant, march_id, force=True)
            assert closed.success, closed.errors
            return stale
        
        monkeypatch.setattr(journal_module, "find_period_for_date", close_after_first_read)
        
        result = await journal_service.post_entry(tenant_id, draft_id)
        
        assert not result.success
        assert result.error_code == ErrorCode.PERIOD_CLOSED
        entry = await journal_service.get_entry(tenant_id, draft_id)
        assert entry.status == JournalEntryStatus.DRAFT
        assert entry.posted_at is None
        assert await balance(db_session, accounts["1000"]) == Decimal("0.00")
        ledger_rows = await db_session.execute(
            select(func.count(LedgerEntry.id)).where(LedgerEntry.journal_entry_id == draft_id)
        )
        assert ledger_rows.scalar_one() == 0
    
    @pytest.mark.asyncio
    async def test_post_racing_period_close(
        self, db_session, session_factory, journal_service, publisher,
        tenant_id, accounts, fiscal_year_2026,
    ):
        march_id = next(p.id for p in fiscal_year_2026.periods if p.name == "March 2026")
        draft = await create_draft(journal_service, tenant_id, [(accounts["1000"], "100", "0"), (accounts["4000"], "0", "100")])
        
        posted, closed = await asyncio.gather(
            post_in_own_session(session_factory, publisher, tenant_id, draft.id),
            close_in_own_session(session_factory, publisher, tenant_id, march_id),
        )
        
        assert closed.success, closed.errors
        ledger_rows = await db_session.execute(
            select(func.count(LedgerEntry.id)).where(LedgerEntry.journal_entry_id == draft.id)
        )
        if posted.success:
            assert ledger_rows.scalar_one() == 2
            assert await balance(db_session, accounts["1000"]) == Decimal("100.00")
        else:
            assert posted.error_code == ErrorCode.PERIOD_CLOSED
            assert ledger_rows.scalar_one() == 0
            assert await balance(db_session, accounts["1000"]) == Decimal("0.00")
    
    @pytest.mark.asyncio
    async def test_post_racing_year_end_close_leaves_revenue_zeroed(
        self, db_session, session_factory, journal_service, publisher,
        tenant_id, accounts, fiscal_year_2026,
    ):
        fiscal_year_id = fiscal_year_2026.id
        draft = await create_draft(journal_service, tenant_id, [(accounts["1000"], "100", "0"), (accounts["4000"], "0", "100")])
        
        posted, closed = await asyncio.gather(
            post_in_own_session(session_factory, publisher, tenant_id, draft.id),
            close_year_in_own_session(session_factory, publisher, tenant_id, fiscal_year_id),
        )
        
        assert closed.success, closed.errors
        if posted.success:
            assert closed.data.net_income == Decimal("100.00")
            assert await balance(db_session, accounts["1000"]) == Decimal("100.00")
            assert await balance(db_session, accounts["3200"]) == Decimal("100.00")
        else:
            assert posted.error_code == ErrorCode.PERIOD_CLOSED
            assert closed.data.net_income == Decimal("0.00")
            assert await balance(db_session, accounts["1000"]) == Decimal("0.00")
        assert await balance(db_session, accounts["4000"]) == Decimal("0.00")
