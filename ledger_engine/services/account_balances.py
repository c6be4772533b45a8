"""
Ledger Engine - Account Balance Service

Chart of accounts management and the primitives that move
Account.current_balance. Every balance change goes through
``lock_accounts`` followed by ``apply_balance_delta`` or ``set_balance``
inside the caller's transaction.
"""

import logging
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ledger_engine.models.accounting import Account, AccountCategory, LedgerEntry
from ledger_engine.schemas.accounting import AccountCreate, AccountUpdate
from ledger_engine.utils.error_handling import (
    ConflictException,
    ErrorCode,
    NotFoundException,
    OperationResult,
    ValidationException,
)
from ledger_engine.utils.transactions import run_in_transaction

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


# =============================================================================
# BALANCE PRIMITIVES
# =============================================================================

def line_delta(debit_amount: Decimal, credit_amount: Decimal) -> Decimal:
    """Balance movement caused by one line: debit - credit."""
    return (debit_amount or Decimal("0")) - (credit_amount or Decimal("0"))


async def lock_accounts(
    db: AsyncSession,
    tenant_id: uuid.UUID,
    account_ids: Iterable[uuid.UUID],
) -> Dict[uuid.UUID, Account]:
    """
    Take row locks on the given accounts until the transaction ends.

    Rows are locked in id order so two postings touching overlapping
    accounts always queue in the same order instead of deadlocking.
    """
    ids = sorted(set(account_ids))
    if not ids:
        return {}
    
    result = await db.execute(
        select(Account)
        .where(Account.tenant_id == tenant_id, Account.id.in_(ids))
        .order_by(Account.id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return {account.id: account for account in result.scalars().all()}


async def apply_balance_delta(db: AsyncSession, account_id: uuid.UUID, delta: Decimal) -> None:
    """Atomically add ``delta`` to an account's current balance."""
    if delta == 0:
        return
    await db.execute(
        update(Account)
        .where(Account.id == account_id)
        .values(current_balance=Account.current_balance + delta)
        .execution_options(synchronize_session=False)
    )


async def set_balance(db: AsyncSession, account_id: uuid.UUID, value: Decimal) -> None:
    """Overwrite an account's current balance with an exact value."""
    await db.execute(
        update(Account)
        .where(Account.id == account_id)
        .values(current_balance=value)
        .execution_options(synchronize_session=False)
    )


async def get_balance(db: AsyncSession, account_id: uuid.UUID) -> Decimal:
    """Read the stored balance straight from the database."""
    result = await db.execute(
        select(Account.current_balance).where(Account.id == account_id)
    )
    return result.scalar_one()


# =============================================================================
# CHART OF ACCOUNTS
# =============================================================================

@dataclass
class BalanceDiscrepancy:
    account_id: uuid.UUID
    code: str
    recorded_balance: Decimal
    ledger_balance: Decimal
    
    @property
    def difference(self) -> Decimal:
        return self.recorded_balance - self.ledger_balance


class AccountService:
    """Service for chart of accounts operations."""
    
    def __init__(self, db: AsyncSession):
        self.db = db
    
    async def create_account(self, tenant_id: uuid.UUID, data: AccountCreate) -> OperationResult[Account]:
        """Create an account with a zero balance."""
        
        async def work() -> Account:
            existing = await self.db.execute(
                select(Account.id).where(
                    Account.tenant_id == tenant_id,
                    Account.code == data.code,
                )
            )
            if existing.scalar_one_or_none() is not None:
                raise ConflictException(
                    f"Account code '{data.code}' already exists",
                    code=ErrorCode.DUPLICATE_ENTRY,
                )
            
            if data.parent_id is not None:
                parent = await self.get_account(tenant_id, data.parent_id)
                if parent is None:
                    raise NotFoundException("Account", data.parent_id, "Parent account not found")
            
            account = Account(
                tenant_id=tenant_id,
                code=data.code,
                name=data.name,
                description=data.description,
                category=data.category,
                normal_balance=data.category.normal_balance,
                parent_id=data.parent_id,
                is_header=data.is_header,
                is_active=data.is_active,
                current_balance=Decimal("0.00"),
            )
            self.db.add(account)
            await self.db.flush()
            logger.info(f"Created account {account.code} ({account.category.value}) for tenant {tenant_id}")
            return account
        
        return await run_in_transaction(self.db, "create_account", work)
    
    async def get_account(self, tenant_id: uuid.UUID, account_id: uuid.UUID) -> Optional[Account]:
        result = await self.db.execute(
            select(Account)
            .where(Account.tenant_id == tenant_id, Account.id == account_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_account_by_code(self, tenant_id: uuid.UUID, code: str) -> Optional[Account]:
        result = await self.db.execute(
            select(Account)
            .where(Account.tenant_id == tenant_id, Account.code == code)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def update_account(
        self,
        tenant_id: uuid.UUID,
        account_id: uuid.UUID,
        data: AccountUpdate,
    ) -> OperationResult[Account]:
        """
        Rename, describe, activate or deactivate an account.

        An account still carrying a balance cannot be deactivated.
        """

        async def work() -> Account:
            changes = data.model_dump(exclude_unset=True, exclude_none=True)
            if not changes:
                raise ValidationException("No fields to update", errors=["no fields to update"])

            locked = await lock_accounts(self.db, tenant_id, [account_id])
            account = locked.get(account_id)
            if account is None:
                raise NotFoundException("Account", account_id)

            deactivating = changes.get("is_active") is False and account.is_active
            if deactivating and account.current_balance != 0:
                raise self._nonzero_balance(account.code, account.current_balance)

            query = update(Account).where(Account.id == account.id)
            if deactivating:
                # A posting may have moved the balance since it was read
                query = query.where(Account.current_balance == 0)
            result = await self.db.execute(query.values(**changes))
            if result.rowcount != 1:
                raise self._nonzero_balance(account.code, await get_balance(self.db, account.id))
            logger.info(f"Updated account {account.code} for tenant {tenant_id}: {sorted(changes)}")
            return account

        return await run_in_transaction(self.db, "update_account", work)

    @staticmethod
    def _nonzero_balance(code: str, current_balance: Decimal) -> ConflictException:
        return ConflictException(
            f"Account {code} has a balance of {current_balance} and cannot be deactivated",
            details={"current_balance": str(current_balance)},
        )

    async def list_accounts(
        self,
        tenant_id: uuid.UUID,
        category: Optional[AccountCategory] = None,
        active_only: bool = False,
    ) -> List[Account]:
        query = select(Account).where(Account.tenant_id == tenant_id)
        if category is not None:
            query = query.where(Account.category == category)
        if active_only:
            query = query.where(Account.is_active == True)  # noqa: E712
        
        result = await self.db.execute(
            query.order_by(Account.code).execution_options(populate_existing=True)
        )
        return list(result.scalars().all())
    
    async def reconcile_balances(
        self,
        tenant_id: uuid.UUID,
        apply: bool = False,
    ) -> OperationResult[List[BalanceDiscrepancy]]:
        """
        Compare every stored balance with the fold of its ledger entries.

        With ``apply`` the stored balances of mismatching accounts are
        rewritten to the ledger value, under row locks.
        """
        
        async def work() -> List[BalanceDiscrepancy]:
            folded = await self.db.execute(
                select(
                    LedgerEntry.account_id,
                    func.sum(LedgerEntry.debit_amount - LedgerEntry.credit_amount),
                )
                .where(LedgerEntry.tenant_id == tenant_id)
                .group_by(LedgerEntry.account_id)
            )
            ledger_balances = {
                account_id: Decimal(str(total or 0)).quantize(CENT)
                for account_id, total in folded.all()
            }
            
            query = (
                select(Account)
                .where(Account.tenant_id == tenant_id)
                .order_by(Account.id)
                .execution_options(populate_existing=True)
            )
            if apply:
                query = query.with_for_update()
            accounts = (await self.db.execute(query)).scalars().all()
            
            discrepancies = []
            for account in accounts:
                ledger_balance = ledger_balances.get(account.id, Decimal("0.00"))
                if account.current_balance != ledger_balance:
                    discrepancies.append(BalanceDiscrepancy(
                        account_id=account.id,
                        code=account.code,
                        recorded_balance=account.current_balance,
                        ledger_balance=ledger_balance,
                    ))
            
            if discrepancies:
                logger.warning(
                    f"Balance reconciliation for tenant {tenant_id}: "
                    f"{len(discrepancies)} account(s) differ from ledger history"
                )
            if apply:
                for item in discrepancies:
                    await set_balance(self.db, item.account_id, item.ledger_balance)
                    logger.info(
                        f"Account {item.code} balance reset from {item.recorded_balance} "
                        f"to {item.ledger_balance}"
                    )
            return discrepancies
        
        return await run_in_transaction(self.db, "reconcile_balances", work)
