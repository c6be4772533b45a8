"""
Ledger Engine - Database Models
"""

from ledger_engine.models.base import BaseModel, TimestampMixin, TenantMixin
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
    NormalBalance,
)

__all__ = [
    "BaseModel",
    "TimestampMixin",
    "TenantMixin",
    "Account",
    "AccountCategory",
    "FiscalPeriod",
    "FiscalPeriodStatus",
    "FiscalYear",
    "JournalEntry",
    "JournalEntryStatus",
    "JournalEntryType",
    "JournalLine",
    "LedgerEntry",
    "NormalBalance",
]
