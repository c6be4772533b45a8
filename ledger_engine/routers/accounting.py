"""
Ledger Engine - Accounting Router

API endpoints for accounts, journal entries, fiscal years and periods.
The services enforce every ledger rule; handlers translate results.
"""

import uuid
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Path, Query, status

from ledger_engine.config import settings
from ledger_engine.dependencies import (
    get_account_service,
    get_current_tenant_id,
    get_fiscal_period_service,
    get_journal_service,
)
from ledger_engine.models.accounting import (
    AccountCategory,
    FiscalPeriodStatus,
    JournalEntryStatus,
    JournalEntryType,
)
from ledger_engine.schemas.accounting import (
    AccountCreate,
    AccountResponse,
    AccountUpdate,
    BalanceDiscrepancyResponse,
    FiscalPeriodResponse,
    FiscalYearCreate,
    FiscalYearResponse,
    FiscalYearUpdate,
    JournalEntryCreate,
    JournalEntryFromSource,
    JournalEntryResponse,
    JournalEntrySummary,
    JournalEntryUpdate,
    JournalEntryValidate,
    JournalEntryVoid,
    PeriodCloseRequest,
    ReconciliationResponse,
    ValidationReportResponse,
    YearEndCloseRequest,
    YearEndCloseResponse,
)
from ledger_engine.services.account_balances import AccountService
from ledger_engine.services.fiscal_period_service import FiscalPeriodService
from ledger_engine.services.journal_service import JournalService
from ledger_engine.utils.error_handling import OperationResult


router = APIRouter(prefix=f"/api/{settings.api_version}/accounting", tags=["Accounting"])


def _entry_response(result: OperationResult) -> JournalEntryResponse:
    entry = result.raise_for_error()
    response = JournalEntryResponse.model_validate(entry)
    if result.warnings:
        response = response.model_copy(update={"warnings": result.warnings})
    return response


# ============================================================================
# CHART OF ACCOUNTS ENDPOINTS
# ============================================================================

@router.post("/accounts", response_model=AccountResponse, status_code=status.HTTP_201_CREATED)
async def create_account(
    data: AccountCreate,
    tenant_id: uuid.UUID = Depends(get_current_tenant_id),
    service: AccountService = Depends(get_account_service),
):
    """Create an account in the chart of accounts."""
    result = await service.create_account(tenant_id, data)
    return result.raise_for_error()


@router.get("/accounts", response_model=List[AccountResponse])
async def list_accounts(
    category: Optional[AccountCategory] = Query(None, description="Filter by category"),
    active_only: bool = Query(False, description="Only active accounts"),
    tenant_id: uuid.UUID = Depends(get_current_tenant_id),
    service: AccountService = Depends(get_account_service),
):
    return await service.list_accounts(tenant_id, category=category, active_only=active_only)


@router.post("/accounts/reconcile", response_model=ReconciliationResponse)
async def reconcile_account_balances(
    apply: bool = Query(False, description="Rewrite mismatching balances from the ledger"),
    tenant_id: uuid.UUID = Depends(get_current_tenant_id),
    service: AccountService = Depends(get_account_service),
):
    """Compare stored balances with ledger history."""
    result = await service.reconcile_balances(tenant_id, apply=apply)
    discrepancies = result.raise_for_error()
    return ReconciliationResponse(
        applied=apply,
        discrepancies=[
            BalanceDiscrepancyResponse(
                account_id=item.account_id,
                code=item.code,
                recorded_balance=item.recorded_balance,
                ledger_balance=item.ledger_balance,
                difference=item.difference,
            )
            for item in discrepancies
        ],
    )


@router.get("/accounts/by-code/{code}", response_model=AccountResponse)
async def get_account_by_code(
    code: str = Path(..., description="Account code"),
    tenant_id: uuid.UUID = Depends(get_current_tenant_id),
    service: AccountService = Depends(get_account_service),
):
    account = await service.get_account_by_code(tenant_id, code)
    if not account:
        raise HTTPException(status_code=404, detail="Account not found")
    return account


@router.get("/accounts/{account_id}", response_model=AccountResponse)
async def get_account(
    account_id: uuid.UUID = Path(..., description="Account ID"),
    tenant_id: uuid.UUID = Depends(get_current_tenant_id),
    service: AccountService = Depends(get_account_service),
):
    account = await service.get_account(tenant_id, account_id)
    if not account:
        raise HTTPException(status_code=404, detail="Account not found")
    return account


@router.put("/accounts/{account_id}", response_model=AccountResponse)
async def update_account(
    data: AccountUpdate,
    account_id: uuid.UUID = Path(..., description="Account ID"),
    tenant_id: uuid.UUID = Depends(get_current_tenant_id),
    service: AccountService = Depends(get_account_service),
):
    """Rename or (de)activate an account. Accounts with a balance stay active."""
    result = await service.update_account(tenant_id, account_id, data)
    return result.raise_for_error()


# ============================================================================
# JOURNAL ENTRY ENDPOINTS
# ============================================================================

@router.post("/journal-entries", response_model=JournalEntryResponse, status_code=status.HTTP_201_CREATED)
async def create_journal_entry(
    data: JournalEntryCreate,
    tenant_id: uuid.UUID = Depends(get_current_tenant_id),
    service: JournalService = Depends(get_journal_service),
):
    """Create a draft journal entry."""
    return _entry_response(await service.create_entry(tenant_id, data))


@router.post(
    "/journal-entries/from-source",
    response_model=JournalEntryResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_journal_entry_from_source(
    data: JournalEntryFromSource,
    tenant_id: uuid.UUID = Depends(get_current_tenant_id),
    service: JournalService = Depends(get_journal_service),
):
    """Create a draft entry generated from a source document."""
    return _entry_response(await service.create_from_source(tenant_id, data))


@router.post("/journal-entries/validate", response_model=ValidationReportResponse)
async def validate_journal_entry(
    data: JournalEntryValidate,
    tenant_id: uuid.UUID = Depends(get_current_tenant_id),
    service: JournalService = Depends(get_journal_service),
):
    """Check lines without saving anything."""
    report = await service.validate(tenant_id, data.lines, data.entry_date)
    return ValidationReportResponse(
        valid=report.valid,
        errors=report.errors,
        warnings=report.warnings,
        total_debit=report.total_debit,
        total_credit=report.total_credit,
    )


@router.get("/journal-entries", response_model=List[JournalEntrySummary])
async def list_journal_entries(
    status_filter: Optional[JournalEntryStatus] = Query(None, alias="status"),
    entry_type: Optional[JournalEntryType] = Query(None),
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    source_type: Optional[str] = Query(None),
    source_id: Optional[uuid.UUID] = Query(None),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    tenant_id: uuid.UUID = Depends(get_current_tenant_id),
    service: JournalService = Depends(get_journal_service),
):
    return await service.list_entries(
        tenant_id,
        status=status_filter,
        entry_type=entry_type,
        start_date=start_date,
        end_date=end_date,
        source_type=source_type,
        source_id=source_id,
        skip=skip,
        limit=limit,
    )


@router.get("/journal-entries/{entry_id}", response_model=JournalEntryResponse)
async def get_journal_entry(
    entry_id: uuid.UUID = Path(..., description="Journal entry ID"),
    tenant_id: uuid.UUID = Depends(get_current_tenant_id),
    service: JournalService = Depends(get_journal_service),
):
    entry = await service.get_entry(tenant_id, entry_id)
    if not entry:
        raise HTTPException(status_code=404, detail="Journal entry not found")
    return entry


@router.put("/journal-entries/{entry_id}", response_model=JournalEntryResponse)
async def update_journal_entry(
    data: JournalEntryUpdate,
    entry_id: uuid.UUID = Path(..., description="Journal entry ID"),
    tenant_id: uuid.UUID = Depends(get_current_tenant_id),
    service: JournalService = Depends(get_journal_service),
):
    """Update a draft entry."""
    return _entry_response(await service.update_entry(tenant_id, entry_id, data))


@router.delete("/journal-entries/{entry_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_journal_entry(
    entry_id: uuid.UUID = Path(..., description="Journal entry ID"),
    tenant_id: uuid.UUID = Depends(get_current_tenant_id),
    service: JournalService = Depends(get_journal_service),
):
    """Delete a draft entry."""
    result = await service.delete_entry(tenant_id, entry_id)
    result.raise_for_error()


@router.post("/journal-entries/{entry_id}/post", response_model=JournalEntryResponse)
async def post_journal_entry(
    entry_id: uuid.UUID = Path(..., description="Journal entry ID"),
    tenant_id: uuid.UUID = Depends(get_current_tenant_id),
    service: JournalService = Depends(get_journal_service),
):
    """Post a draft entry to the general ledger."""
    return _entry_response(await service.post_entry(tenant_id, entry_id))


@router.post("/journal-entries/{entry_id}/void", response_model=JournalEntryResponse)
async def void_journal_entry(
    data: Optional[JournalEntryVoid] = None,
    entry_id: uuid.UUID = Path(..., description="Journal entry ID"),
    tenant_id: uuid.UUID = Depends(get_current_tenant_id),
    service: JournalService = Depends(get_journal_service),
):
    """Void a posted entry."""
    reason = data.reason if data else None
    return _entry_response(await service.void_entry(tenant_id, entry_id, reason))


# ============================================================================
# FISCAL YEAR ENDPOINTS
# ============================================================================

@router.post("/fiscal-years", response_model=FiscalYearResponse, status_code=status.HTTP_201_CREATED)
async def create_fiscal_year(
    data: FiscalYearCreate,
    tenant_id: uuid.UUID = Depends(get_current_tenant_id),
    service: FiscalPeriodService = Depends(get_fiscal_period_service),
):
    """Create a fiscal year with monthly periods."""
    result = await service.create_fiscal_year(tenant_id, data)
    return result.raise_for_error()


@router.get("/fiscal-years", response_model=List[FiscalYearResponse])
async def list_fiscal_years(
    tenant_id: uuid.UUID = Depends(get_current_tenant_id),
    service: FiscalPeriodService = Depends(get_fiscal_period_service),
):
    return await service.list_fiscal_years(tenant_id)


@router.get("/fiscal-years/current", response_model=FiscalYearResponse)
async def get_current_fiscal_year(
    on_date: Optional[date] = Query(None, description="Defaults to today"),
    tenant_id: uuid.UUID = Depends(get_current_tenant_id),
    service: FiscalPeriodService = Depends(get_fiscal_period_service),
):
    fiscal_year = await service.get_current_fiscal_year(tenant_id, on_date)
    if not fiscal_year:
        raise HTTPException(status_code=404, detail="No active fiscal year")
    return fiscal_year


@router.get("/fiscal-years/{fiscal_year_id}", response_model=FiscalYearResponse)
async def get_fiscal_year(
    fiscal_year_id: uuid.UUID = Path(..., description="Fiscal year ID"),
    tenant_id: uuid.UUID = Depends(get_current_tenant_id),
    service: FiscalPeriodService = Depends(get_fiscal_period_service),
):
    fiscal_year = await service.get_fiscal_year(tenant_id, fiscal_year_id)
    if not fiscal_year:
        raise HTTPException(status_code=404, detail="Fiscal year not found")
    return fiscal_year


@router.put("/fiscal-years/{fiscal_year_id}", response_model=FiscalYearResponse)
async def update_fiscal_year(
    data: FiscalYearUpdate,
    fiscal_year_id: uuid.UUID = Path(..., description="Fiscal year ID"),
    tenant_id: uuid.UUID = Depends(get_current_tenant_id),
    service: FiscalPeriodService = Depends(get_fiscal_period_service),
):
    result = await service.update_fiscal_year(tenant_id, fiscal_year_id, data)
    return result.raise_for_error()


@router.post("/fiscal-years/{fiscal_year_id}/close", response_model=YearEndCloseResponse)
async def close_fiscal_year(
    data: Optional[YearEndCloseRequest] = None,
    fiscal_year_id: uuid.UUID = Path(..., description="Fiscal year ID"),
    tenant_id: uuid.UUID = Depends(get_current_tenant_id),
    service: FiscalPeriodService = Depends(get_fiscal_period_service),
):
    """Run the year-end close."""
    retained_earnings_account_id = data.retained_earnings_account_id if data else None
    result = await service.close_fiscal_year(tenant_id, fiscal_year_id, retained_earnings_account_id)
    return YearEndCloseResponse.model_validate(result.raise_for_error())


# ============================================================================
# FISCAL PERIOD ENDPOINTS
# ============================================================================

@router.get("/fiscal-periods", response_model=List[FiscalPeriodResponse])
async def list_fiscal_periods(
    fiscal_year_id: Optional[uuid.UUID] = Query(None),
    status_filter: Optional[FiscalPeriodStatus] = Query(None, alias="status"),
    tenant_id: uuid.UUID = Depends(get_current_tenant_id),
    service: FiscalPeriodService = Depends(get_fiscal_period_service),
):
    return await service.list_periods(tenant_id, fiscal_year_id=fiscal_year_id, status=status_filter)


@router.get("/fiscal-periods/current", response_model=FiscalPeriodResponse)
async def get_current_fiscal_period(
    on_date: Optional[date] = Query(None, description="Defaults to today"),
    tenant_id: uuid.UUID = Depends(get_current_tenant_id),
    service: FiscalPeriodService = Depends(get_fiscal_period_service),
):
    period = await service.get_current_period(tenant_id, on_date)
    if not period:
        raise HTTPException(status_code=404, detail="No open fiscal period")
    return period


@router.post("/fiscal-periods/{period_id}/close", response_model=FiscalPeriodResponse)
async def close_fiscal_period(
    data: Optional[PeriodCloseRequest] = None,
    period_id: uuid.UUID = Path(..., description="Fiscal period ID"),
    tenant_id: uuid.UUID = Depends(get_current_tenant_id),
    service: FiscalPeriodService = Depends(get_fiscal_period_service),
):
    """Close a period to postings."""
    force = data.force if data else False
    result = await service.close_period(tenant_id, period_id, force=force)
    return result.raise_for_error()


@router.post("/fiscal-periods/{period_id}/reopen", response_model=FiscalPeriodResponse)
async def reopen_fiscal_period(
    period_id: uuid.UUID = Path(..., description="Fiscal period ID"),
    tenant_id: uuid.UUID = Depends(get_current_tenant_id),
    service: FiscalPeriodService = Depends(get_fiscal_period_service),
):
    result = await service.reopen_period(tenant_id, period_id)
    return result.raise_for_error()
