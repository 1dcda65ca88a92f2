"""
Ledger Package

Chart of accounts, double-entry journal, balance replay and reports.
"""

from statement_ledger.ledger.errors import (
    AccountInUseError,
    AccountNotFoundError,
    EntryNotFoundError,
    InactiveAccountError,
    InvalidAccountError,
    LedgerError,
    UnbalancedEntryError,
)
from statement_ledger.ledger import reports
from statement_ledger.ledger.chart import ChartOfAccounts, default_chart
from statement_ledger.ledger.journal import AccountLocks, Ledger

__all__ = [
    # Errors
    "AccountInUseError",
    "AccountNotFoundError",
    "EntryNotFoundError",
    "InactiveAccountError",
    "InvalidAccountError",
    "LedgerError",
    "UnbalancedEntryError",
    # Services
    "AccountLocks",
    "ChartOfAccounts",
    "Ledger",
    "default_chart",
    "reports",
]
