"""
Statement Data Models

These models describe what the statement parser produces: the account a
statement belongs to, its balance snapshot and the transactions it lists.

DESIGN DECISION: A RawTransaction is frozen. It is produced once by the
parser and never edited; everything downstream (classification, review,
commit) works on wrappers around it.

All money is carried as Decimal. Pydantic serializes Decimal as a string in
JSON mode, so amounts stay exact from parser to ledger to storage.
"""

import hashlib
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


# =============================================================================
# ENUMS
# =============================================================================

class StatementDialect(str, Enum):
    """The two OFX encodings found in the wild."""
    TAG_SOUP = "tag_soup"      # OFX 1.x SGML, no closing tags
    WELL_FORMED = "well_formed"  # OFX 2.x XML


class AccountKind(str, Enum):
    """Kind of account a statement was exported for."""
    CHECKING = "checking"
    SAVINGS = "savings"
    CREDIT_LINE = "credit_line"
    MONEY_MARKET = "money_market"
    CREDIT_CARD = "credit_card"

    @property
    def is_liability(self) -> bool:
        """Credit cards and credit lines are owed money, not held money."""
        return self in (AccountKind.CREDIT_CARD, AccountKind.CREDIT_LINE)


class TransactionType(str, Enum):
    """Normalized OFX TRNTYPE values. Anything unknown maps to OTHER."""
    CREDIT = "CREDIT"
    DEBIT = "DEBIT"
    INT = "INT"
    DIV = "DIV"
    FEE = "FEE"
    SRVCHG = "SRVCHG"
    DEP = "DEP"
    ATM = "ATM"
    POS = "POS"
    XFER = "XFER"
    CHECK = "CHECK"
    PAYMENT = "PAYMENT"
    CASH = "CASH"
    DIRECTDEP = "DIRECTDEP"
    DIRECTDEBIT = "DIRECTDEBIT"
    REPEATPMT = "REPEATPMT"
    OTHER = "OTHER"

    @classmethod
    def normalize(cls, value: Optional[str]) -> "TransactionType":
        if not value:
            return cls.OTHER
        try:
            return cls(value.strip().upper())
        except ValueError:
            return cls.OTHER


# =============================================================================
# ACCOUNT IDENTITY
# =============================================================================

def hash_account(bank_id: str, account_number: str) -> str:
    """
    One-way hash of (bank_id, account_number).

    This is the key used to match a parsed statement to a stored bank
    account, so the raw account number never has to be persisted.
    """
    payload = f"{bank_id.strip()}:{account_number.strip()}".encode("utf-8")
    return hashlib.sha256(payload).hexdigest()


def mask_account_number(account_number: str) -> str:
    """Mask an account number for display (show last 4 digits)."""
    if len(account_number) <= 4:
        return account_number
    return "****" + account_number[-4:]


class AccountIdentity(BaseModel):
    """Account identification block of a statement."""
    model_config = ConfigDict(str_strip_whitespace=True)

    bank_id: str = Field(
        default="",
        description="Routing / bank identifier (empty for credit cards)"
    )
    account_number: str = Field(
        default="",
        description="Raw account number as exported by the bank"
    )
    account_kind: AccountKind = Field(
        default=AccountKind.CHECKING,
        description="Kind of account"
    )
    currency_code: str = Field(
        default="USD",
        description="ISO 4217 currency of the statement"
    )

    @field_validator('currency_code')
    @classmethod
    def uppercase_currency(cls, v: str) -> str:
        return v.upper()

    @property
    def account_hash(self) -> str:
        return hash_account(self.bank_id, self.account_number)

    @property
    def masked_number(self) -> str:
        return mask_account_number(self.account_number)


# =============================================================================
# TRANSACTIONS AND STATEMENT
# =============================================================================

class RawTransaction(BaseModel):
    """
    A single transaction exactly as the statement reported it.

    The amount sign follows the statement: for bank accounts positive is
    money in; for credit cards positive is a charge.
    """
    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    external_id: str = Field(
        ...,
        min_length=1,
        description="Bank-assigned transaction id (FITID), unique per account"
    )
    type: TransactionType = Field(
        default=TransactionType.OTHER,
        description="Normalized transaction type"
    )
    amount: Decimal = Field(
        ...,
        description="Signed amount, exact decimal"
    )
    posted_date: date = Field(
        ...,
        description="Local banking date the transaction posted"
    )
    payee_name: str = Field(
        default="Unknown",
        description="Payee / description line"
    )
    memo: Optional[str] = None
    check_number: Optional[str] = None
    reference_number: Optional[str] = None

    @field_validator('amount')
    @classmethod
    def require_finite(cls, v: Decimal) -> Decimal:
        if not v.is_finite():
            raise ValueError("Transaction amount must be a finite decimal")
        return v


class BalanceSnapshot(BaseModel):
    """A balance reported by the statement as of a date."""

    amount: Decimal
    as_of: Optional[date] = None


class DateRange(BaseModel):
    """Inclusive calendar date range."""

    start: date
    end: date

    @model_validator(mode='after')
    def validate_order(self) -> 'DateRange':
        if self.end < self.start:
            raise ValueError("Date range end cannot be before start")
        return self

    def contains(self, value: date) -> bool:
        return self.start <= value <= self.end


class ParsedStatement(BaseModel):
    """
    Structured result of parsing one statement file.

    This is always produced, even for partially broken files. Problems are
    collected in `errors` and `dropped_transactions`; deciding whether the
    file is importable is the validator's job.
    """

    dialect: StatementDialect
    account: AccountIdentity
    is_credit_card_statement: bool = False
    balance: Optional[BalanceSnapshot] = Field(
        default=None,
        description="Ledger balance (LEDGERBAL)"
    )
    available_balance: Optional[BalanceSnapshot] = Field(
        default=None,
        description="Available balance (AVAILBAL)"
    )
    date_range: Optional[DateRange] = None
    transactions: list[RawTransaction] = Field(default_factory=list)

    # Diagnostics
    dropped_transactions: int = Field(
        default=0,
        ge=0,
        description="Transaction blocks dropped for missing or invalid required fields"
    )
    errors: list[str] = Field(default_factory=list)

    @property
    def account_hash(self) -> str:
        return self.account.account_hash

    @property
    def currency_code(self) -> str:
        return self.account.currency_code

    @property
    def total_blocks(self) -> int:
        """Number of transaction blocks seen, kept or dropped."""
        return len(self.transactions) + self.dropped_transactions
