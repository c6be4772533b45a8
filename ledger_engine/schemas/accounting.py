"""
Ledger Engine - Accounting Schemas

Pydantic schemas for accounts, journal entries and fiscal periods.
Shape checks only; balance and line rules are enforced by the services.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, ConfigDict, model_validator

from ledger_engine.models.accounting import (
    AccountCategory,
    FiscalPeriodStatus,
    JournalEntryStatus,
    JournalEntryType,
    NormalBalance,
)


# =============================================================================
# CHART OF ACCOUNTS
# =============================================================================

class AccountCreate(BaseModel):
    """Schema for creating an account."""
    code: str = Field(..., min_length=1, max_length=20)
    name: str = Field(..., min_length=1, max_length=255)
    category: AccountCategory
    description: Optional[str] = None
    parent_id: Optional[UUID] = None
    is_header: bool = False
    is_active: bool = True


class AccountUpdate(BaseModel):
    """Partial update; code and category are fixed once created."""
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    is_active: Optional[bool] = None


class AccountResponse(BaseModel):
    """Schema for account response."""
    model_config = ConfigDict(from_attributes=True)
    
    id: UUID
    tenant_id: UUID
    code: str
    name: str
    category: AccountCategory
    normal_balance: NormalBalance
    parent_id: Optional[UUID] = None
    is_header: bool
    is_active: bool
    current_balance: Decimal


class BalanceDiscrepancyResponse(BaseModel):
    """Account whose stored balance disagrees with its ledger history."""
    model_config = ConfigDict(from_attributes=True)
    
    account_id: UUID
    code: str
    recorded_balance: Decimal
    ledger_balance: Decimal
    difference: Decimal


class ReconciliationResponse(BaseModel):
    applied: bool
    discrepancies: List[BalanceDiscrepancyResponse]


# =============================================================================
# JOURNAL ENTRIES
# =============================================================================

class JournalLineCreate(BaseModel):
    """Schema for one journal line."""
    account_id: UUID
    debit_amount: Decimal = Field(Decimal("0.00"), ge=0, decimal_places=2)
    credit_amount: Decimal = Field(Decimal("0.00"), ge=0, decimal_places=2)
    description: Optional[str] = Field(None, max_length=500)
    memo: Optional[str] = None


class JournalLineResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    
    id: UUID
    line_number: int
    account_id: UUID
    debit_amount: Decimal
    credit_amount: Decimal
    description: Optional[str] = None
    memo: Optional[str] = None


class JournalEntryCreate(BaseModel):
    """Schema for creating a draft journal entry."""
    entry_date: date
    description: str = Field(..., min_length=1, max_length=500)
    reference: Optional[str] = Field(None, max_length=100)
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    created_by: Optional[str] = Field(None, max_length=100)
    lines: List[JournalLineCreate] = Field(..., min_length=2)


class JournalEntryFromSource(JournalEntryCreate):
    """Schema for an entry generated from a source document (invoice, payment, ...)."""
    source_type: str = Field(..., min_length=1, max_length=50)
    source_id: UUID
    source_number: Optional[str] = Field(None, max_length=100)


class JournalEntryUpdate(BaseModel):
    """Schema for updating a draft entry. Supplied lines replace all existing lines."""
    entry_date: Optional[date] = None
    description: Optional[str] = Field(None, min_length=1, max_length=500)
    reference: Optional[str] = Field(None, max_length=100)
    lines: Optional[List[JournalLineCreate]] = Field(None, min_length=2)


class JournalEntryVoid(BaseModel):
    reason: Optional[str] = Field(None, max_length=1000)


class JournalEntryValidate(BaseModel):
    """Dry-run validation request."""
    entry_date: Optional[date] = None
    lines: List[JournalLineCreate]


class ValidationReportResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    
    valid: bool
    errors: List[str]
    warnings: List[str]
    total_debit: Decimal
    total_credit: Decimal


class JournalEntryResponse(BaseModel):
    """Schema for journal entry response."""
    model_config = ConfigDict(from_attributes=True)
    
    id: UUID
    tenant_id: UUID
    entry_number: str
    entry_date: date
    description: str
    reference: Optional[str] = None
    entry_type: JournalEntryType
    status: JournalEntryStatus
    source_type: Optional[str] = None
    source_id: Optional[UUID] = None
    source_number: Optional[str] = None
    total_debit: Decimal
    total_credit: Decimal
    currency: str
    fiscal_period_id: Optional[UUID] = None
    posted_at: Optional[datetime] = None
    voided_at: Optional[datetime] = None
    voided_reason: Optional[str] = None
    lines: List[JournalLineResponse] = []
    warnings: List[str] = []


class JournalEntrySummary(BaseModel):
    """List view without lines."""
    model_config = ConfigDict(from_attributes=True)
    
    id: UUID
    entry_number: str
    entry_date: date
    description: str
    entry_type: JournalEntryType
    status: JournalEntryStatus
    total_debit: Decimal
    total_credit: Decimal


# =============================================================================
# FISCAL YEARS & PERIODS
# =============================================================================

class FiscalYearCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=50)
    start_date: date
    end_date: date
    
    @model_validator(mode="after")
    def check_dates(self):
        if self.end_date <= self.start_date:
            raise ValueError("end_date must be after start_date")
        return self


class FiscalYearUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=50)
    is_active: Optional[bool] = None


class FiscalPeriodResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    
    id: UUID
    fiscal_year_id: UUID
    name: str
    period_number: int
    start_date: date
    end_date: date
    status: FiscalPeriodStatus
    closed_at: Optional[datetime] = None


class FiscalYearResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    
    id: UUID
    tenant_id: UUID
    name: str
    start_date: date
    end_date: date
    is_active: bool
    is_closed: bool
    closed_at: Optional[datetime] = None
    closing_entry_id: Optional[UUID] = None
    periods: List[FiscalPeriodResponse] = []


class PeriodCloseRequest(BaseModel):
    force: bool = False


class YearEndCloseRequest(BaseModel):
    retained_earnings_account_id: Optional[UUID] = None


class YearEndCloseResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    
    fiscal_year_id: UUID
    net_income: Decimal
    closing_entry_id: UUID
    closing_entry_number: str
    periods_closed: int
    revenue_accounts_closed: int
    expense_accounts_closed: int
