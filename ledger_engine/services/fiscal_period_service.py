"""
Ledger Engine - Fiscal Period Service

Fiscal years, their monthly periods, the open/closed posting gate and
the year-end close.

Year-end close:
1. Force-close every period of the year still open
2. Compute net income from ledger entries dated inside the year
3. Post a closing entry that zeroes revenue and expense accounts
   against retained earnings
4. Mark the fiscal year closed
"""

import logging
import uuid
from calendar import monthrange
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from dateutil.relativedelta import relativedelta
from sqlalchemy import and_, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ledger_engine.config import get_settings
from ledger_engine.models.accounting import (
    Account,
    AccountCategory,
    FiscalPeriod,
    FiscalPeriodStatus,
    FiscalYear,
    JournalEntry,
    JournalEntryStatus,
    JournalEntryType,
    JournalLine,
    LedgerEntry,
)
from ledger_engine.schemas.accounting import FiscalYearCreate, FiscalYearUpdate
from ledger_engine.services.account_balances import apply_balance_delta, lock_accounts, set_balance
from ledger_engine.services.balance_validator import sum_lines
from ledger_engine.services.event_publisher import (
    FISCAL_PERIOD_CLOSED,
    FISCAL_PERIOD_REOPENED,
    FISCAL_YEAR_CLOSED,
    FISCAL_YEAR_UPDATED,
    EventPublisher,
    emit_event,
    get_event_publisher,
)
from ledger_engine.utils.error_handling import (
    AlreadyClosedException,
    ConflictException,
    ErrorCode,
    InvalidStateException,
    NotFoundException,
    OperationResult,
    ValidationException,
)
from ledger_engine.utils.transactions import run_in_transaction

logger = logging.getLogger(__name__)
settings = get_settings()

CENT = Decimal("0.01")
ZERO = Decimal("0.00")
MAX_PERIODS = 13
CLOSING_SOURCE_TYPE = "fiscal_year_close"


async def find_period_for_date(
    db: AsyncSession,
    tenant_id: uuid.UUID,
    entry_date: date,
    for_update: bool = False,
) -> Optional[FiscalPeriod]:
    """
    Get the fiscal period containing a specific date, if any.

    With ``for_update`` the period row stays locked until the caller's
    transaction ends, so a concurrent close waits for it.
    """
    query = (
        select(FiscalPeriod)
        .where(
            and_(
                FiscalPeriod.tenant_id == tenant_id,
                FiscalPeriod.start_date <= entry_date,
                FiscalPeriod.end_date >= entry_date,
            )
        )
        .order_by(FiscalPeriod.start_date)
        .limit(1)
    )
    if for_update:
        query = query.with_for_update()

    result = await db.execute(query.execution_options(populate_existing=True))
    return result.scalar_one_or_none()


@dataclass
class YearEndCloseResult:
    fiscal_year_id: uuid.UUID
    net_income: Decimal
    closing_entry_id: uuid.UUID
    closing_entry_number: str
    periods_closed: int
    revenue_accounts_closed: int
    expense_accounts_closed: int


class FiscalPeriodService:
    """Service for fiscal years, periods and year-end closing."""

    def __init__(self, db: AsyncSession, publisher: Optional[EventPublisher] = None):
        self.db = db
        self.publisher = publisher or get_event_publisher()

    # =========================================================================
    # FISCAL YEARS
    # =========================================================================

    async def create_fiscal_year(
        self,
        tenant_id: uuid.UUID,
        data: FiscalYearCreate,
    ) -> OperationResult[FiscalYear]:
        """Create a fiscal year with one open period per calendar month."""

        async def work() -> FiscalYear:
            if data.end_date <= data.start_date:
                raise ValidationException(
                    "Fiscal year end date must be after start date",
                    errors=["end_date must be after start_date"],
                    field="end_date",
                )

            overlapping = await self.db.execute(
                select(FiscalYear.name).where(
                    and_(
                        FiscalYear.tenant_id == tenant_id,
                        FiscalYear.start_date <= data.end_date,
                        FiscalYear.end_date >= data.start_date,
                    )
                )
            )
            clash = overlapping.scalars().first()
            if clash is not None:
                raise ConflictException(f"Fiscal year overlaps with existing year '{clash}'")

            duplicate = await self.db.execute(
                select(FiscalYear.id).where(
                    FiscalYear.tenant_id == tenant_id,
                    FiscalYear.name == data.name,
                )
            )
            if duplicate.scalar_one_or_none() is not None:
                raise ConflictException(
                    f"Fiscal year '{data.name}' already exists",
                    code=ErrorCode.DUPLICATE_ENTRY,
                )

            fiscal_year = FiscalYear(
                tenant_id=tenant_id,
                name=data.name,
                start_date=data.start_date,
                end_date=data.end_date,
                is_active=True,
                is_closed=False,
            )
            fiscal_year.periods = self._build_monthly_periods(tenant_id, data.start_date, data.end_date)

            self.db.add(fiscal_year)
            await self.db.flush()
            logger.info(
                f"Created fiscal year {fiscal_year.name} with {len(fiscal_year.periods)} periods "
                f"for tenant {tenant_id}"
            )
            return fiscal_year

        return await run_in_transaction(self.db, "create_fiscal_year", work)

    def _build_monthly_periods(
        self,
        tenant_id: uuid.UUID,
        start_date: date,
        end_date: date,
    ) -> List[FiscalPeriod]:
        """One period per calendar month, the last cut off at the year end."""
        periods = []
        current_date = start_date
        period_number = 0

        while current_date <= end_date:
            period_number += 1
            if period_number > MAX_PERIODS:
                raise ValidationException(
                    f"A fiscal year can span at most {MAX_PERIODS} months",
                    errors=[f"{start_date} to {end_date} needs more than {MAX_PERIODS} periods"],
                    field="end_date",
                )

            _, last_day = monthrange(current_date.year, current_date.month)
            period_end = min(date(current_date.year, current_date.month, last_day), end_date)

            periods.append(FiscalPeriod(
                tenant_id=tenant_id,
                name=current_date.strftime("%B %Y"),
                period_number=period_number,
                start_date=current_date,
                end_date=period_end,
                status=FiscalPeriodStatus.OPEN,
            ))
            current_date = period_end + relativedelta(days=1)

        return periods

    async def get_fiscal_year(
        self,
        tenant_id: uuid.UUID,
        fiscal_year_id: uuid.UUID,
    ) -> Optional[FiscalYear]:
        result = await self.db.execute(
            select(FiscalYear)
            .options(selectinload(FiscalYear.periods))
            .where(FiscalYear.tenant_id == tenant_id, FiscalYear.id == fiscal_year_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_fiscal_years(self, tenant_id: uuid.UUID) -> List[FiscalYear]:
        result = await self.db.execute(
            select(FiscalYear)
            .options(selectinload(FiscalYear.periods))
            .where(FiscalYear.tenant_id == tenant_id)
            .order_by(FiscalYear.start_date.desc())
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def get_current_fiscal_year(
        self,
        tenant_id: uuid.UUID,
        on_date: Optional[date] = None,
    ) -> Optional[FiscalYear]:
        """The active, unclosed fiscal year containing ``on_date`` (default today)."""
        on_date = on_date or date.today()
        result = await self.db.execute(
            select(FiscalYear)
            .options(selectinload(FiscalYear.periods))
            .where(
                FiscalYear.tenant_id == tenant_id,
                FiscalYear.is_active == True,  # noqa: E712
                FiscalYear.is_closed == False,  # noqa: E712
                FiscalYear.start_date <= on_date,
                FiscalYear.end_date >= on_date,
            )
            .limit(1)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def update_fiscal_year(
        self,
        tenant_id: uuid.UUID,
        fiscal_year_id: uuid.UUID,
        data: FiscalYearUpdate,
    ) -> OperationResult[FiscalYear]:
        """Rename or (de)activate a fiscal year. Closed years are frozen."""

        async def work() -> FiscalYear:
            changes = data.model_dump(exclude_unset=True, exclude_none=True)
            if not changes:
                raise ValidationException("No fields to update", errors=["no fields to update"])

            result = await self.db.execute(
                select(FiscalYear)
                .where(FiscalYear.tenant_id == tenant_id, FiscalYear.id == fiscal_year_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
            fiscal_year = result.scalar_one_or_none()
            if fiscal_year is None:
                raise NotFoundException("Fiscal year", fiscal_year_id)
            if fiscal_year.is_closed:
                raise AlreadyClosedException("Fiscal year", fiscal_year.name)

            if "name" in changes and changes["name"] != fiscal_year.name:
                duplicate = await self.db.execute(
                    select(FiscalYear.id).where(
                        FiscalYear.tenant_id == tenant_id,
                        FiscalYear.name == changes["name"],
                    )
                )
                if duplicate.scalar_one_or_none() is not None:
                    raise ConflictException(
                        f"Fiscal year '{changes['name']}' already exists",
                        code=ErrorCode.DUPLICATE_ENTRY,
                    )

            updated = await self.db.execute(
                update(FiscalYear)
                .where(FiscalYear.id == fiscal_year.id, FiscalYear.is_closed == False)  # noqa: E712
                .values(**changes)
            )
            if updated.rowcount != 1:
                raise AlreadyClosedException("Fiscal year", fiscal_year.name)

            logger.info(f"Updated fiscal year {fiscal_year.name} for tenant {tenant_id}: {sorted(changes)}")
            return await self.get_fiscal_year(tenant_id, fiscal_year.id)

        result = await run_in_transaction(self.db, "update_fiscal_year", work)
        if result.success:
            await emit_event(self.publisher, FISCAL_YEAR_UPDATED, tenant_id, {
                "fiscal_year_id": str(result.data.id),
                "name": result.data.name,
                "is_active": result.data.is_active,
            })
        return result

    # =========================================================================
    # FISCAL PERIODS
    # =========================================================================

    async def get_period(self, tenant_id: uuid.UUID, period_id: uuid.UUID) -> Optional[FiscalPeriod]:
        result = await self.db.execute(
            select(FiscalPeriod)
            .where(FiscalPeriod.tenant_id == tenant_id, FiscalPeriod.id == period_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_period_for_date(self, tenant_id: uuid.UUID, entry_date: date) -> Optional[FiscalPeriod]:
        return await find_period_for_date(self.db, tenant_id, entry_date)

    async def get_current_period(
        self,
        tenant_id: uuid.UUID,
        on_date: Optional[date] = None,
    ) -> Optional[FiscalPeriod]:
        """The open period containing ``on_date`` (default today)."""
        period = await find_period_for_date(self.db, tenant_id, on_date or date.today())
        if period is None or period.status != FiscalPeriodStatus.OPEN:
            return None
        return period

    async def list_periods(
        self,
        tenant_id: uuid.UUID,
        fiscal_year_id: Optional[uuid.UUID] = None,
        status: Optional[FiscalPeriodStatus] = None,
    ) -> List[FiscalPeriod]:
        query = select(FiscalPeriod).where(FiscalPeriod.tenant_id == tenant_id)
        if fiscal_year_id is not None:
            query = query.where(FiscalPeriod.fiscal_year_id == fiscal_year_id)
        if status is not None:
            query = query.where(FiscalPeriod.status == status)

        result = await self.db.execute(
            query.order_by(FiscalPeriod.start_date).execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def _get_period_for_update(self, tenant_id: uuid.UUID, period_id: uuid.UUID) -> FiscalPeriod:
        result = await self.db.execute(
            select(FiscalPeriod)
            .where(FiscalPeriod.tenant_id == tenant_id, FiscalPeriod.id == period_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        period = result.scalar_one_or_none()
        if period is None:
            raise NotFoundException("Fiscal period", period_id)
        return period

    async def close_period(
        self,
        tenant_id: uuid.UUID,
        period_id: uuid.UUID,
        force: bool = False,
    ) -> OperationResult[FiscalPeriod]:
        """
        Close a fiscal period to postings.

        Draft entries dated inside the period block the close unless
        ``force`` is set; they stay drafts either way.
        """

        async def work() -> FiscalPeriod:
            period = await self._get_period_for_update(tenant_id, period_id)
            if period.status == FiscalPeriodStatus.CLOSED:
                raise AlreadyClosedException("Fiscal period", period.name)

            drafts = await self.db.execute(
                select(func.count(JournalEntry.id)).where(
                    JournalEntry.tenant_id == tenant_id,
                    JournalEntry.status == JournalEntryStatus.DRAFT,
                    JournalEntry.entry_date >= period.start_date,
                    JournalEntry.entry_date <= period.end_date,
                )
            )
            draft_count = drafts.scalar_one()
            if draft_count and not force:
                raise ConflictException(
                    f"Period '{period.name}' has {draft_count} unposted draft entries",
                    details={"draft_entries": draft_count},
                    code=ErrorCode.UNPOSTED_ENTRIES,
                )
            if draft_count:
                logger.warning(f"Force-closing period {period.name} with {draft_count} draft entries")

            result = await self.db.execute(
                update(FiscalPeriod)
                .where(
                    FiscalPeriod.id == period.id,
                    FiscalPeriod.status == FiscalPeriodStatus.OPEN,
                )
                .values(status=FiscalPeriodStatus.CLOSED, closed_at=datetime.now(timezone.utc))
            )
            if result.rowcount != 1:
                raise AlreadyClosedException("Fiscal period", period.name)

            logger.info(f"Closed fiscal period {period.name} for tenant {tenant_id}")
            return period

        result = await run_in_transaction(self.db, "close_period", work)
        if result.success:
            await emit_event(self.publisher, FISCAL_PERIOD_CLOSED, tenant_id, {
                "period_id": str(result.data.id),
                "name": result.data.name,
                "fiscal_year_id": str(result.data.fiscal_year_id),
            })
        return result

    async def reopen_period(
        self,
        tenant_id: uuid.UUID,
        period_id: uuid.UUID,
    ) -> OperationResult[FiscalPeriod]:
        """Reopen a closed period. Not possible once its fiscal year is closed."""

        async def work() -> FiscalPeriod:
            period = await self._get_period_for_update(tenant_id, period_id)
            if period.status != FiscalPeriodStatus.CLOSED:
                raise InvalidStateException(
                    f"Fiscal period '{period.name}' is not closed",
                    current_status=period.status.value,
                )

            fiscal_year = await self.db.get(FiscalYear, period.fiscal_year_id, populate_existing=True)
            if fiscal_year is not None and fiscal_year.is_closed:
                raise InvalidStateException(
                    f"Fiscal year '{fiscal_year.name}' is closed; its periods cannot be reopened",
                    current_status="closed",
                )

            result = await self.db.execute(
                update(FiscalPeriod)
                .where(
                    FiscalPeriod.id == period.id,
                    FiscalPeriod.status == FiscalPeriodStatus.CLOSED,
                )
                .values(status=FiscalPeriodStatus.OPEN, closed_at=None)
            )
            if result.rowcount != 1:
                raise InvalidStateException(f"Fiscal period '{period.name}' is not closed")

            logger.info(f"Reopened fiscal period {period.name} for tenant {tenant_id}")
            return period

        result = await run_in_transaction(self.db, "reopen_period", work)
        if result.success:
            await emit_event(self.publisher, FISCAL_PERIOD_REOPENED, tenant_id, {
                "period_id": str(result.data.id),
                "name": result.data.name,
                "fiscal_year_id": str(result.data.fiscal_year_id),
            })
        return result

    # =========================================================================
    # YEAR-END CLOSE
    # =========================================================================

    async def close_fiscal_year(
        self,
        tenant_id: uuid.UUID,
        fiscal_year_id: uuid.UUID,
        retained_earnings_account_id: Optional[uuid.UUID] = None,
    ) -> OperationResult[YearEndCloseResult]:
        """
        Close a fiscal year in one transaction.

        The closing entry is written already posted: its ledger rows are
        inserted directly and revenue/expense balances are set to zero
        while retained earnings absorbs the net income.
        """

        async def work() -> YearEndCloseResult:
            result = await self.db.execute(
                select(FiscalYear)
                .where(FiscalYear.tenant_id == tenant_id, FiscalYear.id == fiscal_year_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
            fiscal_year = result.scalar_one_or_none()
            if fiscal_year is None:
                raise NotFoundException("Fiscal year", fiscal_year_id)
            if fiscal_year.is_closed:
                raise AlreadyClosedException("Fiscal year", fiscal_year.name)

            periods_closed = await self._force_close_periods(fiscal_year)

            revenue, expenses = await self._income_statement_totals(tenant_id, fiscal_year)
            net_income = (sum(revenue.values(), ZERO) - sum(expenses.values(), ZERO)).quantize(CENT)

            retained_earnings = await self._resolve_retained_earnings(
                tenant_id, retained_earnings_account_id,
            )
            if retained_earnings is None and net_income != 0:
                raise ConflictException(
                    "No retained earnings account configured; the closing entry would be "
                    f"unbalanced by {net_income}",
                    details={
                        "net_income": str(net_income),
                        "account_codes": settings.retained_earnings_codes_list,
                    },
                )

            entry = await self._post_closing_entry(
                tenant_id, fiscal_year, revenue, expenses, net_income, retained_earnings,
            )

            closed = await self.db.execute(
                update(FiscalYear)
                .where(FiscalYear.id == fiscal_year.id, FiscalYear.is_closed == False)  # noqa: E712
                .values(
                    is_closed=True,
                    is_active=False,
                    closed_at=datetime.now(timezone.utc),
                    closing_entry_id=entry.id,
                )
            )
            if closed.rowcount != 1:
                raise AlreadyClosedException("Fiscal year", fiscal_year.name)

            logger.info(
                f"Closed fiscal year {fiscal_year.name} for tenant {tenant_id}: "
                f"net income {net_income}, closing entry {entry.entry_number}"
            )
            return YearEndCloseResult(
                fiscal_year_id=fiscal_year.id,
                net_income=net_income,
                closing_entry_id=entry.id,
                closing_entry_number=entry.entry_number,
                periods_closed=periods_closed,
                revenue_accounts_closed=len([a for a in revenue.values() if a != 0]),
                expense_accounts_closed=len([a for a in expenses.values() if a != 0]),
            )

        result = await run_in_transaction(self.db, "close_fiscal_year", work)
        if result.success:
            await emit_event(self.publisher, FISCAL_YEAR_CLOSED, tenant_id, {
                "fiscal_year_id": str(result.data.fiscal_year_id),
                "net_income": str(result.data.net_income),
                "closing_entry_id": str(result.data.closing_entry_id),
                "closing_entry_number": result.data.closing_entry_number,
            })
        return result

    async def _force_close_periods(self, fiscal_year: FiscalYear) -> int:
        result = await self.db.execute(
            update(FiscalPeriod)
            .where(
                FiscalPeriod.fiscal_year_id == fiscal_year.id,
                FiscalPeriod.status == FiscalPeriodStatus.OPEN,
            )
            .values(status=FiscalPeriodStatus.CLOSED, closed_at=datetime.now(timezone.utc))
        )
        return result.rowcount

    async def _income_statement_totals(
        self,
        tenant_id: uuid.UUID,
        fiscal_year: FiscalYear,
    ) -> Tuple[Dict[uuid.UUID, Decimal], Dict[uuid.UUID, Decimal]]:
        """
        Net activity per revenue and expense account over the year.

        Revenue is measured credit - debit, expenses debit - credit, so a
        normal year yields positive amounts on both sides.
        """
        result = await self.db.execute(
            select(
                LedgerEntry.account_id,
                Account.category,
                func.sum(LedgerEntry.debit_amount),
                func.sum(LedgerEntry.credit_amount),
            )
            .join(Account, Account.id == LedgerEntry.account_id)
            .where(
                LedgerEntry.tenant_id == tenant_id,
                LedgerEntry.entry_date >= fiscal_year.start_date,
                LedgerEntry.entry_date <= fiscal_year.end_date,
                Account.category.in_([AccountCategory.REVENUE, AccountCategory.EXPENSE]),
            )
            .group_by(LedgerEntry.account_id, Account.category)
        )

        revenue: Dict[uuid.UUID, Decimal] = {}
        expenses: Dict[uuid.UUID, Decimal] = {}
        for account_id, category, debits, credits in result.all():
            debits = Decimal(str(debits or 0)).quantize(CENT)
            credits = Decimal(str(credits or 0)).quantize(CENT)
            if category == AccountCategory.REVENUE:
                revenue[account_id] = credits - debits
            else:
                expenses[account_id] = debits - credits
        return revenue, expenses

    async def _resolve_retained_earnings(
        self,
        tenant_id: uuid.UUID,
        account_id: Optional[uuid.UUID],
    ) -> Optional[Account]:
        if account_id is not None:
            account = await self.db.get(Account, account_id, populate_existing=True)
            if account is None or account.tenant_id != tenant_id:
                raise NotFoundException("Account", account_id, "Retained earnings account not found")
            if account.category != AccountCategory.EQUITY:
                raise ConflictException(
                    f"Account {account.code} is not an equity account",
                    details={"category": account.category.value},
                )
            return account

        codes = settings.retained_earnings_codes_list
        if not codes:
            return None
        result = await self.db.execute(
            select(Account).where(
                Account.tenant_id == tenant_id,
                Account.category == AccountCategory.EQUITY,
                Account.is_active == True,  # noqa: E712
                Account.code.in_(codes),
            )
        )
        candidates = {account.code: account for account in result.scalars().all()}
        for code in codes:
            if code in candidates:
                return candidates[code]
        return None

    async def _post_closing_entry(
        self,
        tenant_id: uuid.UUID,
        fiscal_year: FiscalYear,
        revenue: Dict[uuid.UUID, Decimal],
        expenses: Dict[uuid.UUID, Decimal],
        net_income: Decimal,
        retained_earnings: Optional[Account],
    ) -> JournalEntry:
        lines: List[JournalLine] = []

        def add_line(account_id: uuid.UUID, debit: Decimal, credit: Decimal, description: str) -> None:
            lines.append(JournalLine(
                line_number=len(lines) + 1,
                account_id=account_id,
                debit_amount=debit,
                credit_amount=credit,
                description=description,
            ))

        # Revenue carries a credit balance and is zeroed with a debit,
        # expenses the other way round. Negative activity flips the side.
        for account_id, amount in sorted(revenue.items()):
            if amount > 0:
                add_line(account_id, amount, ZERO, "Close revenue to retained earnings")
            elif amount < 0:
                add_line(account_id, ZERO, -amount, "Close revenue to retained earnings")
        for account_id, amount in sorted(expenses.items()):
            if amount > 0:
                add_line(account_id, ZERO, amount, "Close expense to retained earnings")
            elif amount < 0:
                add_line(account_id, -amount, ZERO, "Close expense to retained earnings")
        if retained_earnings is not None and net_income != 0:
            if net_income > 0:
                add_line(retained_earnings.id, ZERO, net_income, "Net income for the year")
            else:
                add_line(retained_earnings.id, -net_income, ZERO, "Net loss for the year")

        total_debit, total_credit = sum_lines(lines)
        period = await find_period_for_date(self.db, tenant_id, fiscal_year.end_date)
        now = datetime.now(timezone.utc)

        entry = JournalEntry(
            tenant_id=tenant_id,
            entry_number=f"JE-CLOSE-{fiscal_year.name}",
            entry_date=fiscal_year.end_date,
            description=f"Year-end closing entry for {fiscal_year.name}",
            entry_type=JournalEntryType.CLOSING,
            source_type=CLOSING_SOURCE_TYPE,
            source_id=fiscal_year.id,
            source_number=fiscal_year.name,
            total_debit=total_debit,
            total_credit=total_credit,
            currency=settings.default_currency,
            status=JournalEntryStatus.POSTED,
            fiscal_period_id=period.id if period else None,
            posted_at=now,
        )
        entry.lines = lines
        self.db.add(entry)
        await self.db.flush()

        touched = {line.account_id for line in lines}
        await lock_accounts(self.db, tenant_id, touched)

        for line in lines:
            self.db.add(LedgerEntry(
                tenant_id=tenant_id,
                account_id=line.account_id,
                journal_entry_id=entry.id,
                journal_line_id=line.id,
                fiscal_period_id=entry.fiscal_period_id,
                entry_date=entry.entry_date,
                description=line.description,
                reference=entry.entry_number,
                debit_amount=line.debit_amount,
                credit_amount=line.credit_amount,
            ))

        # Closed accounts are set to exactly zero; retained earnings takes the net income
        for account_id in touched:
            if retained_earnings is not None and account_id == retained_earnings.id:
                continue
            await set_balance(self.db, account_id, ZERO)
        if retained_earnings is not None and net_income != 0:
            await apply_balance_delta(self.db, retained_earnings.id, net_income)

        await self.db.flush()
        return entry
