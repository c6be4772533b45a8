"""
Ledger Engine - Balance Validator

Arithmetic and account checks applied to journal lines before they are
stored and again before they are posted.
"""

import uuid
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ledger_engine.models.accounting import Account, FiscalPeriodStatus

# Debits and credits closer than this are treated as equal
BALANCE_TOLERANCE = Decimal("0.01")

ZERO = Decimal("0.00")


def _amount(value: Any) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def sum_lines(lines: Iterable[Any]) -> Tuple[Decimal, Decimal]:
    """Return (total_debit, total_credit) of the given lines."""
    total_debit = ZERO
    total_credit = ZERO
    for line in lines:
        total_debit += _amount(line.debit_amount)
        total_credit += _amount(line.credit_amount)
    return total_debit, total_credit


def validate_balanced(lines: Iterable[Any]) -> bool:
    """True when total debits and credits differ by less than the tolerance."""
    total_debit, total_credit = sum_lines(lines)
    return abs(total_debit - total_credit) < BALANCE_TOLERANCE


def validate_line_shape(line: Any, line_number: Optional[int] = None) -> Optional[str]:
    """
    Check that exactly one side of a line carries an amount.

    Returns None for a well-formed line, otherwise the error message.
    """
    label = f"Line {line_number}" if line_number is not None else "Line"
    debit = _amount(line.debit_amount)
    credit = _amount(line.credit_amount)
    
    if debit < 0 or credit < 0:
        return f"{label}: amounts cannot be negative"
    if debit > 0 and credit > 0:
        return f"{label}: cannot have both debit and credit amounts"
    if debit == 0 and credit == 0:
        return f"{label}: must have either a debit or a credit amount"
    return None


@dataclass
class ValidationReport:
    """Every rule an entry breaks, plus non-blocking warnings."""
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    is_balanced: bool = True
    total_debit: Decimal = ZERO
    total_credit: Decimal = ZERO
    
    @property
    def valid(self) -> bool:
        return not self.errors


async def validate_entry(
    db: AsyncSession,
    tenant_id: uuid.UUID,
    lines: Sequence[Any],
    entry_date: Optional[date] = None,
) -> ValidationReport:
    """
    Validate a full set of journal lines.

    Collects all violations instead of stopping at the first: line count,
    line shape, balance, and for every referenced account that it exists
    in the tenant, is active and is not a header account. When an entry
    date is given, a missing or closed covering period is reported as a
    warning; posting enforces the period gate itself.
    """
    report = ValidationReport()
    
    if len(lines) < 2:
        report.errors.append("A journal entry requires at least 2 lines")
    
    for index, line in enumerate(lines, start=1):
        line_number = getattr(line, "line_number", None) or index
        error = validate_line_shape(line, line_number)
        if error:
            report.errors.append(error)
    
    report.total_debit, report.total_credit = sum_lines(lines)
    if abs(report.total_debit - report.total_credit) >= BALANCE_TOLERANCE:
        report.is_balanced = False
        report.errors.append(
            f"Entry is not balanced: debits {report.total_debit} != credits "
            f"{report.total_credit} (difference {report.total_debit - report.total_credit})"
        )
    
    account_ids = {line.account_id for line in lines if line.account_id is not None}
    accounts = {}
    if account_ids:
        result = await db.execute(
            select(Account).where(
                Account.tenant_id == tenant_id,
                Account.id.in_(account_ids),
            )
        )
        accounts = {account.id: account for account in result.scalars().all()}
    
    for index, line in enumerate(lines, start=1):
        line_number = getattr(line, "line_number", None) or index
        account = accounts.get(line.account_id)
        if account is None:
            report.errors.append(f"Line {line_number}: account {line.account_id} not found")
        elif account.is_header:
            report.errors.append(
                f"Line {line_number}: account {account.code} is a header account and cannot take postings"
            )
        elif not account.is_active:
            report.errors.append(f"Line {line_number}: account {account.code} is inactive")
    
    if entry_date is not None:
        # Imported here; the period service depends on this module's totals
        from ledger_engine.services.fiscal_period_service import find_period_for_date
        
        period = await find_period_for_date(db, tenant_id, entry_date)
        if period is None:
            report.warnings.append(
                f"No fiscal period covers {entry_date.isoformat()}; the entry will post without a period"
            )
        elif period.status == FiscalPeriodStatus.CLOSED:
            report.warnings.append(
                f"Fiscal period '{period.name}' is closed; the entry cannot be posted until it is reopened"
            )
    
    return report
