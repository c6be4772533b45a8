"""
Ledger Engine - Chart of Accounts & General Ledger Models

Double-entry accounting core:
- Chart of Accounts with incrementally maintained balances
- Journal Entries and their lines (draft -> posted -> voided)
- Ledger Entries mirroring the lines of posted entries
- Fiscal Years and their monthly Fiscal Periods
"""

import uuid
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from sqlalchemy import (
    Boolean, Date, DateTime, ForeignKey, Integer, Numeric, String, Text, Uuid,
    Enum as SQLEnum, UniqueConstraint, Index, CheckConstraint
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ledger_engine.models.base import BaseModel, TenantMixin


# =============================================================================
# ENUMS
# =============================================================================

class AccountCategory(str, Enum):
    """Main account categories."""
    ASSET = "asset"
    LIABILITY = "liability"
    EQUITY = "equity"
    REVENUE = "revenue"
    EXPENSE = "expense"

    @property
    def normal_balance(self) -> "NormalBalance":
        if self in (AccountCategory.ASSET, AccountCategory.EXPENSE):
            return NormalBalance.DEBIT
        return NormalBalance.CREDIT


class NormalBalance(str, Enum):
    """Normal balance direction."""
    DEBIT = "debit"
    CREDIT = "credit"


class JournalEntryStatus(str, Enum):
    """Status of a journal entry. Voided is terminal."""
    DRAFT = "draft"
    POSTED = "posted"
    VOIDED = "voided"


class JournalEntryType(str, Enum):
    """How the entry came to exist."""
    MANUAL = "manual"
    AUTO = "auto"
    CLOSING = "closing"


class FiscalPeriodStatus(str, Enum):
    """Posting gate of a fiscal period."""
    OPEN = "open"
    CLOSED = "closed"


# =============================================================================
# CHART OF ACCOUNTS
# =============================================================================

class Account(BaseModel, TenantMixin):
    """
    Chart of Accounts entry.

    current_balance is a derived counter, moved by debit - credit deltas
    as entries are posted and voided. The ledger_entries table is the
    history it can be reconciled against.
    """
    
    __tablename__ = "accounts"
    
    code: Mapped[str] = mapped_column(String(20), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    
    category: Mapped[AccountCategory] = mapped_column(
        SQLEnum(AccountCategory),
        nullable=False,
    )
    normal_balance: Mapped[NormalBalance] = mapped_column(
        SQLEnum(NormalBalance),
        nullable=False,
    )
    
    parent_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("accounts.id", ondelete="SET NULL"),
        nullable=True,
    )
    
    # Header accounts only aggregate children and never take postings
    is_header: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    
    current_balance: Mapped[Decimal] = mapped_column(
        Numeric(precision=18, scale=2),
        default=Decimal("0.00"),
        nullable=False,
    )
    
    parent: Mapped[Optional["Account"]] = relationship(
        "Account",
        remote_side="Account.id",
    )
    
    __table_args__ = (
        UniqueConstraint('tenant_id', 'code', name='uq_account_tenant_code'),
        Index('ix_account_tenant_category', 'tenant_id', 'category'),
    )
    
    def __repr__(self) -> str:
        return f"<Account({self.code}: {self.name})>"


# =============================================================================
# FISCAL YEARS & PERIODS
# =============================================================================

class FiscalYear(BaseModel, TenantMixin):
    """Fiscal year. Open until year-end close, then closed for good."""
    
    __tablename__ = "fiscal_years"
    
    name: Mapped[str] = mapped_column(String(50), nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_closed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    closed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    closing_entry_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    
    periods: Mapped[List["FiscalPeriod"]] = relationship(
        "FiscalPeriod",
        back_populates="fiscal_year",
        cascade="all, delete-orphan",
        order_by="FiscalPeriod.period_number",
    )
    
    __table_args__ = (
        UniqueConstraint('tenant_id', 'name', name='uq_fiscal_year_tenant_name'),
        CheckConstraint('end_date > start_date', name='ck_fiscal_year_dates'),
    )
    
    def __repr__(self) -> str:
        return f"<FiscalYear({self.name})>"


class FiscalPeriod(BaseModel, TenantMixin):
    """Monthly accounting period gating postings by entry date."""
    
    __tablename__ = "fiscal_periods"
    
    fiscal_year_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("fiscal_years.id", ondelete="CASCADE"),
        nullable=False,
    )
    
    name: Mapped[str] = mapped_column(String(50), nullable=False)
    period_number: Mapped[int] = mapped_column(Integer, nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    
    status: Mapped[FiscalPeriodStatus] = mapped_column(
        SQLEnum(FiscalPeriodStatus),
        default=FiscalPeriodStatus.OPEN,
        nullable=False,
    )
    closed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    
    fiscal_year: Mapped["FiscalYear"] = relationship("FiscalYear", back_populates="periods")
    
    __table_args__ = (
        UniqueConstraint('fiscal_year_id', 'period_number', name='uq_fiscal_period_number'),
        Index('ix_fiscal_period_tenant_dates', 'tenant_id', 'start_date', 'end_date'),
        CheckConstraint('period_number >= 1 AND period_number <= 13', name='ck_period_number'),
    )
    
    def __repr__(self) -> str:
        return f"<FiscalPeriod({self.name}: {self.status.value})>"


# =============================================================================
# JOURNAL ENTRIES
# =============================================================================

class JournalEntry(BaseModel, TenantMixin):
    """
    Journal Entry - a balanced set of debit and credit lines.

    Mutable only while draft. Posting writes ledger rows and moves
    account balances; voiding undoes both.
    """
    
    __tablename__ = "journal_entries"
    
    entry_number: Mapped[str] = mapped_column(String(50), nullable=False)
    entry_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    description: Mapped[str] = mapped_column(String(500), nullable=False)
    reference: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    
    entry_type: Mapped[JournalEntryType] = mapped_column(
        SQLEnum(JournalEntryType),
        default=JournalEntryType.MANUAL,
        nullable=False,
    )
    source_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    source_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    source_number: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    
    # Cached from the lines; recomputed before anything relies on them
    total_debit: Mapped[Decimal] = mapped_column(
        Numeric(precision=18, scale=2),
        default=Decimal("0.00"),
        nullable=False,
    )
    total_credit: Mapped[Decimal] = mapped_column(
        Numeric(precision=18, scale=2),
        default=Decimal("0.00"),
        nullable=False,
    )
    currency: Mapped[str] = mapped_column(String(3), default="INR", nullable=False)
    
    status: Mapped[JournalEntryStatus] = mapped_column(
        SQLEnum(JournalEntryStatus),
        default=JournalEntryStatus.DRAFT,
        nullable=False,
    )
    fiscal_period_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("fiscal_periods.id", ondelete="SET NULL"),
        nullable=True,
    )
    posted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    voided_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    voided_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    
    lines: Mapped[List["JournalLine"]] = relationship(
        "JournalLine",
        back_populates="journal_entry",
        cascade="all, delete-orphan",
        order_by="JournalLine.line_number",
    )
    
    __table_args__ = (
        UniqueConstraint('tenant_id', 'entry_number', name='uq_journal_entry_number'),
        Index('ix_je_tenant_status', 'tenant_id', 'status'),
        Index('ix_je_source', 'source_type', 'source_id'),
    )
    
    def __repr__(self) -> str:
        return f"<JournalEntry({self.entry_number}: {self.status.value})>"


class JournalLine(BaseModel):
    """One side of a journal entry. Exactly one of debit/credit is positive."""
    
    __tablename__ = "journal_lines"
    
    journal_entry_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("journal_entries.id", ondelete="CASCADE"),
        nullable=False,
    )
    line_number: Mapped[int] = mapped_column(Integer, nullable=False)
    account_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("accounts.id", ondelete="RESTRICT"),
        nullable=False,
    )
    description: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    memo: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    
    debit_amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=18, scale=2),
        default=Decimal("0.00"),
        nullable=False,
    )
    credit_amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=18, scale=2),
        default=Decimal("0.00"),
        nullable=False,
    )
    
    journal_entry: Mapped["JournalEntry"] = relationship("JournalEntry", back_populates="lines")
    account: Mapped["Account"] = relationship("Account")
    
    __table_args__ = (
        UniqueConstraint('journal_entry_id', 'line_number', name='uq_jl_line_number'),
        Index('ix_jl_account', 'account_id'),
        CheckConstraint(
            '(debit_amount > 0 AND credit_amount = 0) OR (credit_amount > 0 AND debit_amount = 0)',
            name='ck_line_one_side',
        ),
    )
    
    def __repr__(self) -> str:
        return f"<JournalLine({self.line_number}: Dr {self.debit_amount} / Cr {self.credit_amount})>"


# =============================================================================
# GENERAL LEDGER
# =============================================================================

class LedgerEntry(BaseModel, TenantMixin):
    """
    Durable general-ledger record of one posted journal line.

    Rows exist exactly while their entry is posted and are deleted on void.
    """
    
    __tablename__ = "ledger_entries"
    
    account_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("accounts.id", ondelete="RESTRICT"),
        nullable=False,
    )
    journal_entry_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("journal_entries.id", ondelete="CASCADE"),
        nullable=False,
    )
    journal_line_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("journal_lines.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    fiscal_period_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("fiscal_periods.id", ondelete="SET NULL"),
        nullable=True,
    )
    entry_date: Mapped[date] = mapped_column(Date, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    reference: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    
    debit_amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=18, scale=2),
        default=Decimal("0.00"),
        nullable=False,
    )
    credit_amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=18, scale=2),
        default=Decimal("0.00"),
        nullable=False,
    )
    
    __table_args__ = (
        Index('ix_ledger_account_date', 'account_id', 'entry_date'),
        Index('ix_ledger_tenant_date', 'tenant_id', 'entry_date'),
    )
