"""
Ledger Engine - Journal Entry Service

Draft management, posting and voiding of journal entries.

Posting and voiding each run as one transaction:
- the entry row is locked and its status moved with a compare-and-set
- posting locks the covering period and reads it again after the claim
- touched accounts are row-locked in id order before their balances move
- ledger rows are written (post) or removed (void) alongside

Events go out only after the transaction has committed.
"""

import logging
import secrets
import uuid
from collections import defaultdict
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ledger_engine.config import get_settings
from ledger_engine.models.accounting import (
    FiscalPeriodStatus,
    JournalEntry,
    JournalEntryStatus,
    JournalEntryType,
    JournalLine,
    LedgerEntry,
)
from ledger_engine.schemas.accounting import (
    JournalEntryCreate,
    JournalEntryFromSource,
    JournalEntryUpdate,
    JournalLineCreate,
)
from ledger_engine.services.account_balances import apply_balance_delta, line_delta, lock_accounts
from ledger_engine.services.balance_validator import ValidationReport, validate_entry
from ledger_engine.services.event_publisher import (
    JOURNAL_ENTRY_CREATED,
    JOURNAL_ENTRY_POSTED,
    JOURNAL_ENTRY_VOIDED,
    EventPublisher,
    emit_event,
    get_event_publisher,
)
from ledger_engine.services.fiscal_period_service import find_period_for_date
from ledger_engine.utils.error_handling import (
    InvalidStateException,
    NotFoundException,
    OperationResult,
    PeriodClosedException,
    UnbalancedEntryException,
    ValidationException,
)
from ledger_engine.utils.transactions import run_in_transaction

logger = logging.getLogger(__name__)
settings = get_settings()


def generate_entry_number(entry_date: date) -> str:
    """Entry numbers look like JE-202601-3FA9C2."""
    return f"JE-{entry_date.strftime('%Y%m')}-{secrets.token_hex(3).upper()}"


class JournalService:
    """Service for the journal entry lifecycle: draft -> posted -> voided."""

    def __init__(self, db: AsyncSession, publisher: Optional[EventPublisher] = None):
        self.db = db
        self.publisher = publisher or get_event_publisher()

    # =========================================================================
    # QUERIES
    # =========================================================================

    async def get_entry(self, tenant_id: uuid.UUID, entry_id: uuid.UUID) -> Optional[JournalEntry]:
        result = await self.db.execute(
            select(JournalEntry)
            .options(selectinload(JournalEntry.lines))
            .where(JournalEntry.tenant_id == tenant_id, JournalEntry.id == entry_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_entries(
        self,
        tenant_id: uuid.UUID,
        status: Optional[JournalEntryStatus] = None,
        entry_type: Optional[JournalEntryType] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        source_type: Optional[str] = None,
        source_id: Optional[uuid.UUID] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> List[JournalEntry]:
        query = select(JournalEntry).where(JournalEntry.tenant_id == tenant_id)

        if status is not None:
            query = query.where(JournalEntry.status == status)
        if entry_type is not None:
            query = query.where(JournalEntry.entry_type == entry_type)
        if start_date is not None:
            query = query.where(JournalEntry.entry_date >= start_date)
        if end_date is not None:
            query = query.where(JournalEntry.entry_date <= end_date)
        if source_type is not None:
            query = query.where(JournalEntry.source_type == source_type)
        if source_id is not None:
            query = query.where(JournalEntry.source_id == source_id)

        query = (
            query.order_by(JournalEntry.entry_date.desc(), JournalEntry.entry_number.desc())
            .offset(skip)
            .limit(limit)
        )
        result = await self.db.execute(query.execution_options(populate_existing=True))
        return list(result.scalars().all())

    async def validate(
        self,
        tenant_id: uuid.UUID,
        lines: Sequence[Any],
        entry_date: Optional[date] = None,
    ) -> ValidationReport:
        """Dry-run validation of a set of lines; writes nothing."""
        return await validate_entry(self.db, tenant_id, lines, entry_date)

    async def _load_for_update(self, tenant_id: uuid.UUID, entry_id: uuid.UUID) -> JournalEntry:
        result = await self.db.execute(
            select(JournalEntry)
            .options(selectinload(JournalEntry.lines))
            .where(JournalEntry.tenant_id == tenant_id, JournalEntry.id == entry_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        entry = result.scalar_one_or_none()
        if entry is None:
            raise NotFoundException("Journal entry", entry_id)
        return entry

    async def _transition(
        self,
        entry: JournalEntry,
        expected: JournalEntryStatus,
        **values: Any,
    ) -> None:
        """Move the entry's status only if nobody else moved it first."""
        result = await self.db.execute(
            update(JournalEntry)
            .where(JournalEntry.id == entry.id, JournalEntry.status == expected)
            .values(**values)
        )
        if result.rowcount != 1:
            raise InvalidStateException(
                f"Journal entry {entry.entry_number} is no longer {expected.value}",
            )

    # =========================================================================
    # DRAFTS
    # =========================================================================

    async def create_entry(
        self,
        tenant_id: uuid.UUID,
        data: JournalEntryCreate,
        entry_type: JournalEntryType = JournalEntryType.MANUAL,
    ) -> OperationResult[JournalEntry]:
        """
        Create a draft entry.

        Lines are validated as a whole; every violation comes back in one
        ValidationException. Warnings (for example a closed covering
        period) are returned with the created entry.
        """

        async def work():
            report = await validate_entry(self.db, tenant_id, data.lines, data.entry_date)
            if not report.valid:
                raise ValidationException(
                    "Journal entry validation failed",
                    errors=report.errors,
                    warnings=report.warnings,
                )

            entry = JournalEntry(
                tenant_id=tenant_id,
                entry_number=generate_entry_number(data.entry_date),
                entry_date=data.entry_date,
                description=data.description,
                reference=data.reference,
                entry_type=entry_type,
                currency=(data.currency or settings.default_currency).upper(),
                total_debit=report.total_debit,
                total_credit=report.total_credit,
                status=JournalEntryStatus.DRAFT,
                created_by=data.created_by,
            )
            if isinstance(data, JournalEntryFromSource):
                entry.source_type = data.source_type
                entry.source_id = data.source_id
                entry.source_number = data.source_number
            entry.lines = self._build_lines(data.lines)

            self.db.add(entry)
            await self.db.flush()
            logger.info(
                f"Created {entry_type.value} journal entry {entry.entry_number} "
                f"for tenant {tenant_id}"
            )
            return entry, report.warnings

        result = await run_in_transaction(self.db, "create_journal_entry", work, with_warnings=True)
        if result.success:
            await emit_event(self.publisher, JOURNAL_ENTRY_CREATED, tenant_id, self._event_data(result.data))
        return result

    async def create_from_source(
        self,
        tenant_id: uuid.UUID,
        data: JournalEntryFromSource,
    ) -> OperationResult[JournalEntry]:
        """Create a draft entry generated from a source document."""
        return await self.create_entry(tenant_id, data, entry_type=JournalEntryType.AUTO)

    def _build_lines(self, lines: Sequence[JournalLineCreate]) -> List[JournalLine]:
        return [
            JournalLine(
                line_number=index,
                account_id=line.account_id,
                debit_amount=line.debit_amount,
                credit_amount=line.credit_amount,
                description=line.description,
                memo=line.memo,
            )
            for index, line in enumerate(lines, start=1)
        ]

    async def update_entry(
        self,
        tenant_id: uuid.UUID,
        entry_id: uuid.UUID,
        data: JournalEntryUpdate,
    ) -> OperationResult[JournalEntry]:
        """Update a draft. Supplied lines replace the existing ones wholesale."""

        async def work():
            entry = await self._load_for_update(tenant_id, entry_id)
            if entry.status != JournalEntryStatus.DRAFT:
                raise InvalidStateException(
                    f"Only draft entries can be modified; {entry.entry_number} is {entry.status.value}",
                    current_status=entry.status.value,
                )

            new_date = data.entry_date or entry.entry_date
            lines = data.lines if data.lines is not None else entry.lines
            report = await validate_entry(self.db, tenant_id, lines, new_date)
            if not report.valid:
                raise ValidationException(
                    "Journal entry validation failed",
                    errors=report.errors,
                    warnings=report.warnings,
                )

            if data.entry_date is not None:
                entry.entry_date = data.entry_date
            if data.description is not None:
                entry.description = data.description
            if data.reference is not None:
                entry.reference = data.reference

            if data.lines is not None:
                # Old lines go first so the new ones can reuse line numbers
                entry.lines.clear()
                await self.db.flush()
                entry.lines.extend(self._build_lines(data.lines))

            entry.total_debit = report.total_debit
            entry.total_credit = report.total_credit
            await self.db.flush()
            logger.info(f"Updated draft journal entry {entry.entry_number}")
            return entry, report.warnings

        return await run_in_transaction(self.db, "update_journal_entry", work, with_warnings=True)

    async def delete_entry(self, tenant_id: uuid.UUID, entry_id: uuid.UUID) -> OperationResult[None]:
        """Delete a draft entry. Posted and voided entries are kept."""

        async def work() -> None:
            entry = await self._load_for_update(tenant_id, entry_id)
            if entry.status != JournalEntryStatus.DRAFT:
                raise InvalidStateException(
                    f"Only draft entries can be deleted; {entry.entry_number} is {entry.status.value}",
                    current_status=entry.status.value,
                )
            await self.db.delete(entry)
            await self.db.flush()
            logger.info(f"Deleted draft journal entry {entry.entry_number}")

        return await run_in_transaction(self.db, "delete_journal_entry", work)

    # =========================================================================
    # POSTING
    # =========================================================================

    async def post_entry(self, tenant_id: uuid.UUID, entry_id: uuid.UUID) -> OperationResult[JournalEntry]:
        """
        Post a draft entry to the general ledger.

        Writes one ledger row per line and applies each line's
        debit - credit to its account. Entries dated outside every fiscal
        period post with no period; a closed covering period rejects the
        posting before anything is written.
        """

        async def work() -> JournalEntry:
            entry = await self._load_for_update(tenant_id, entry_id)
            if entry.status != JournalEntryStatus.DRAFT:
                raise InvalidStateException(
                    f"Journal entry {entry.entry_number} is {entry.status.value}; only drafts can be posted",
                    current_status=entry.status.value,
                )

            # Stored totals are not trusted; the lines are checked again
            report = await validate_entry(self.db, tenant_id, entry.lines)
            if not report.is_balanced:
                raise UnbalancedEntryException(report.total_debit, report.total_credit, errors=report.errors)
            if not report.valid:
                raise ValidationException(
                    f"Journal entry {entry.entry_number} cannot be posted",
                    errors=report.errors,
                )

            period = await find_period_for_date(self.db, tenant_id, entry.entry_date, for_update=True)
            if period is not None and period.status == FiscalPeriodStatus.CLOSED:
                raise PeriodClosedException(period.name)
            if period is None:
                logger.info(
                    f"No fiscal period covers {entry.entry_date}; posting {entry.entry_number} without one"
                )
            fiscal_period_id = period.id if period else None

            # Claim the entry first; a concurrent post of the same entry
            # then fails here before writing anything
            await self._transition(
                entry,
                JournalEntryStatus.DRAFT,
                status=JournalEntryStatus.POSTED,
                posted_at=datetime.now(timezone.utc),
                fiscal_period_id=fiscal_period_id,
                total_debit=report.total_debit,
                total_credit=report.total_credit,
            )
            await self._check_period_still_open(tenant_id, entry)

            deltas = self._account_deltas(entry.lines)
            await lock_accounts(self.db, tenant_id, deltas.keys())

            for line in entry.lines:
                self.db.add(LedgerEntry(
                    tenant_id=tenant_id,
                    account_id=line.account_id,
                    journal_entry_id=entry.id,
                    journal_line_id=line.id,
                    fiscal_period_id=fiscal_period_id,
                    entry_date=entry.entry_date,
                    description=line.description or entry.description,
                    reference=entry.entry_number,
                    debit_amount=line.debit_amount,
                    credit_amount=line.credit_amount,
                ))
            await self.db.flush()

            for account_id in sorted(deltas):
                await apply_balance_delta(self.db, account_id, deltas[account_id])

            logger.info(f"Posted journal entry {entry.entry_number} for tenant {tenant_id}")
            return entry

        result = await run_in_transaction(self.db, "post_journal_entry", work)
        if result.success:
            await emit_event(self.publisher, JOURNAL_ENTRY_POSTED, tenant_id, self._event_data(result.data))
        return result

    async def _check_period_still_open(self, tenant_id: uuid.UUID, entry: JournalEntry) -> None:
        """
        Read the covering period again once the entry is claimed.

        The claim holds the write lock, so a period or year-end close that
        committed after the first read shows up here and the posting rolls
        back. A close that has not committed yet waits for this posting.
        """
        period = await find_period_for_date(self.db, tenant_id, entry.entry_date, for_update=True)
        if period is not None and period.status == FiscalPeriodStatus.CLOSED:
            logger.warning(f"Period {period.name} closed while posting {entry.entry_number}")
            raise PeriodClosedException(period.name)

    def _account_deltas(self, lines: Sequence[JournalLine], inverse: bool = False) -> Dict[uuid.UUID, Decimal]:
        deltas: Dict[uuid.UUID, Decimal] = defaultdict(lambda: Decimal("0.00"))
        for line in lines:
            delta = line_delta(line.debit_amount, line.credit_amount)
            deltas[line.account_id] += -delta if inverse else delta
        return dict(deltas)

    # =========================================================================
    # VOIDING
    # =========================================================================

    async def void_entry(
        self,
        tenant_id: uuid.UUID,
        entry_id: uuid.UUID,
        reason: Optional[str] = None,
    ) -> OperationResult[JournalEntry]:
        """
        Void a posted entry.

        Applies the exact inverse of every line's delta, removes the
        entry's ledger rows and records the reason. The description is
        left untouched. Voided is terminal.
        """

        async def work() -> JournalEntry:
            entry = await self._load_for_update(tenant_id, entry_id)
            if entry.status != JournalEntryStatus.POSTED:
                raise InvalidStateException(
                    f"Journal entry {entry.entry_number} is {entry.status.value}; only posted entries can be voided",
                    current_status=entry.status.value,
                )
            if entry.entry_type == JournalEntryType.CLOSING:
                raise InvalidStateException(
                    f"Closing entry {entry.entry_number} cannot be voided",
                    current_status=entry.status.value,
                )

            await self._transition(
                entry,
                JournalEntryStatus.POSTED,
                status=JournalEntryStatus.VOIDED,
                voided_at=datetime.now(timezone.utc),
                voided_reason=reason,
            )

            deltas = self._account_deltas(entry.lines, inverse=True)
            await lock_accounts(self.db, tenant_id, deltas.keys())
            for account_id in sorted(deltas):
                await apply_balance_delta(self.db, account_id, deltas[account_id])

            await self.db.execute(
                delete(LedgerEntry)
                .where(LedgerEntry.journal_line_id.in_([line.id for line in entry.lines]))
                .execution_options(synchronize_session=False)
            )

            logger.info(f"Voided journal entry {entry.entry_number} for tenant {tenant_id}")
            return entry

        result = await run_in_transaction(self.db, "void_journal_entry", work)
        if result.success:
            data = self._event_data(result.data)
            data["reason"] = reason
            await emit_event(self.publisher, JOURNAL_ENTRY_VOIDED, tenant_id, data)
        return result

    def _event_data(self, entry: JournalEntry) -> Dict[str, Any]:
        return {
            "entry_id": str(entry.id),
            "entry_number": entry.entry_number,
            "entry_date": entry.entry_date.isoformat(),
            "amount": str(entry.total_debit),
            "currency": entry.currency,
        }
