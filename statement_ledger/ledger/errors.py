"""Ledger exceptions."""

from decimal import Decimal


class LedgerError(Exception):
    """Base exception for ledger operations."""
    pass


class UnbalancedEntryError(LedgerError):
    """Debits and credits of a journal entry differ."""

    def __init__(self, total_debits: Decimal, total_credits: Decimal, currency_code: str):
        self.total_debits = total_debits
        self.total_credits = total_credits
        self.currency_code = currency_code
        super().__init__(
            f"Journal entry is unbalanced: debits {total_debits} != credits "
            f"{total_credits} ({currency_code})"
        )


class AccountNotFoundError(LedgerError):
    """A referenced chart or bank account does not exist."""
    pass


class InactiveAccountError(LedgerError):
    """Lines cannot be posted to a deactivated account."""
    pass


class AccountInUseError(LedgerError):
    """The account still has children or references and cannot be removed."""
    pass


class InvalidAccountError(LedgerError):
    """The account definition breaks a chart-of-accounts rule."""
    pass


class EntryNotFoundError(LedgerError):
    """A referenced journal entry or transaction does not exist."""
    pass
