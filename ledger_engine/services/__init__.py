"""
Ledger Engine - Services
"""

from ledger_engine.services.account_balances import AccountService
from ledger_engine.services.fiscal_period_service import FiscalPeriodService
from ledger_engine.services.journal_service import JournalService

__all__ = [
    "AccountService",
    "FiscalPeriodService",
    "JournalService",
]
