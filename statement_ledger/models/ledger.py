"""
Ledger Data Models

Chart of accounts, journal entries, stored transactions and bank accounts,
plus the read-only report shapes the ledger returns.

CRITICAL: A JournalEntry is only ever created by Ledger.post_journal_entry,
which checks that it balances. The models here describe the shape; the
ledger enforces the accounting invariant.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from statement_ledger.models.money import ZERO, to_minor_units
from statement_ledger.models.rules import CategoryState
from statement_ledger.models.statement import AccountKind, DateRange, TransactionType


# =============================================================================
# ENUMS
# =============================================================================

class AccountType(str, Enum):
    """The five account types of double-entry bookkeeping."""
    ASSET = "asset"
    LIABILITY = "liability"
    EQUITY = "equity"
    REVENUE = "revenue"
    EXPENSE = "expense"

    @property
    def code_prefix(self) -> str:
        return _CODE_PREFIX[self]

    @property
    def normal_balance_side(self) -> "EntrySide":
        """Side on which this account type increases."""
        if self in (AccountType.ASSET, AccountType.EXPENSE):
            return EntrySide.DEBIT
        return EntrySide.CREDIT

    @classmethod
    def from_code(cls, code: str) -> Optional["AccountType"]:
        for account_type, prefix in _CODE_PREFIX.items():
            if code.startswith(prefix):
                return account_type
        return None


class EntrySide(str, Enum):
    DEBIT = "debit"
    CREDIT = "credit"

    @property
    def opposite(self) -> "EntrySide":
        return EntrySide.CREDIT if self == EntrySide.DEBIT else EntrySide.DEBIT


_CODE_PREFIX = {
    AccountType.ASSET: "1",
    AccountType.LIABILITY: "2",
    AccountType.EQUITY: "3",
    AccountType.REVENUE: "4",
    AccountType.EXPENSE: "5",
}


# =============================================================================
# CHART OF ACCOUNTS
# =============================================================================

class ChartAccount(BaseModel):
    """
    A node in the chart of accounts.

    The code is a hierarchical numeric string whose first digit encodes the
    type (1 asset, 2 liability, 3 equity, 4 revenue, 5 expense). When no id
    is given the code doubles as the id, so seeded accounts can be referred
    to as "5200" everywhere.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(default="", description="Account id (defaults to the code)")
    code: str = Field(
        ...,
        pattern=r"^\d{4,8}$",
        description="Hierarchical numeric code, e.g. 5110"
    )
    name: str = Field(..., min_length=1, max_length=200)
    type: AccountType
    parent_ref: Optional[str] = None
    subtype: Optional[str] = Field(
        default=None,
        max_length=50,
        description="Free-form grouping such as 'Cash' or 'Credit Card'"
    )
    bank_account_ref: Optional[str] = Field(
        default=None,
        description="Bank account this ledger account mirrors"
    )
    is_system: bool = False
    is_active: bool = True
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @model_validator(mode='after')
    def validate_code(self) -> 'ChartAccount':
        if not self.id:
            self.id = self.code
        if not self.code.startswith(self.type.code_prefix):
            raise ValueError(
                f"Account code {self.code} does not match type {self.type.value} "
                f"(expected prefix {self.type.code_prefix})"
            )
        return self

    @property
    def normal_balance_side(self) -> EntrySide:
        return self.type.normal_balance_side

    @property
    def is_cash(self) -> bool:
        """Asset account backed by a bank account."""
        return self.type == AccountType.ASSET and self.bank_account_ref is not None


class BankAccount(BaseModel):
    """
    A real-world account statements are imported into.

    Only the hash and the masked number of the account are stored.
    """

    id: str = Field(default_factory=lambda: str(uuid4()))
    name: str = Field(..., min_length=1, max_length=200)
    bank_id: str = ""
    masked_account_number: str = ""
    account_hash: str = Field(..., min_length=64, max_length=64)
    account_kind: AccountKind
    currency_code: str = "USD"
    chart_account_ref: Optional[str] = Field(
        default=None,
        description="Ledger account mirroring this bank account"
    )
    last_import_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def is_liability(self) -> bool:
        return self.account_kind.is_liability


# =============================================================================
# JOURNAL
# =============================================================================

class JournalLine(BaseModel):
    """One side of a journal entry against one account."""
    model_config = ConfigDict(frozen=True)

    account_ref: str = Field(..., min_length=1)
    amount: Decimal = Field(..., ge=0)
    side: EntrySide

    @field_validator('amount')
    @classmethod
    def require_finite(cls, v: Decimal) -> Decimal:
        if not v.is_finite():
            raise ValueError("Journal line amount must be finite")
        return v

    @classmethod
    def debit(cls, account_ref: str, amount: Decimal) -> "JournalLine":
        return cls(account_ref=account_ref, amount=amount, side=EntrySide.DEBIT)

    @classmethod
    def credit(cls, account_ref: str, amount: Decimal) -> "JournalLine":
        return cls(account_ref=account_ref, amount=amount, side=EntrySide.CREDIT)

    def signed_for(self, side: EntrySide) -> Decimal:
        """Amount as seen from an account whose normal balance is `side`."""
        return self.amount if self.side == side else -self.amount


class JournalEntry(BaseModel):
    """An atomic, balanced set of journal lines."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    entry_date: date
    description: str = Field(default="", max_length=500)
    currency_code: str = "USD"
    lines: list[JournalLine] = Field(..., min_length=2)
    source_transaction_ref: Optional[str] = None
    sequence: int = Field(
        default=0,
        ge=0,
        description="Write order, assigned by storage"
    )
    created_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def total_debits(self) -> Decimal:
        return sum((l.amount for l in self.lines if l.side == EntrySide.DEBIT), ZERO)

    @property
    def total_credits(self) -> Decimal:
        return sum((l.amount for l in self.lines if l.side == EntrySide.CREDIT), ZERO)

    @property
    def is_balanced(self) -> bool:
        return (
            to_minor_units(self.total_debits, self.currency_code)
            == to_minor_units(self.total_credits, self.currency_code)
        )

    @property
    def account_refs(self) -> set[str]:
        return {line.account_ref for line in self.lines}

    def touches(self, account_ref: str) -> bool:
        return any(line.account_ref == account_ref for line in self.lines)


# =============================================================================
# STORED TRANSACTIONS
# =============================================================================

class Transaction(BaseModel):
    """
    A transaction persisted by the import orchestrator.

    `(account_ref, external_id)` is unique; it is the dedup key that makes
    re-importing a statement a no-op.
    """

    id: str = Field(default_factory=lambda: str(uuid4()))
    account_ref: str = Field(..., description="Bank account id")
    external_id: str = Field(..., min_length=1)
    type: TransactionType = TransactionType.OTHER
    amount: Decimal
    posted_date: date
    payee_name: str = "Unknown"
    memo: Optional[str] = None
    check_number: Optional[str] = None
    reference_number: Optional[str] = None
    category_state: CategoryState = Field(default_factory=CategoryState.uncategorized)
    linked_journal_entry_ref: Optional[str] = None
    rule_ref: Optional[str] = Field(
        default=None,
        description="Rule that categorized this transaction, if any"
    )
    import_batch_id: Optional[str] = None
    imported_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


# =============================================================================
# REPORTS
# =============================================================================

class ProfitAndLossReport(BaseModel):
    """Revenue and expense activity over a period."""

    period: DateRange
    revenue: Decimal
    expenses: Decimal
    net_income: Decimal
    by_account: dict[str, Decimal] = Field(default_factory=dict)


class BalanceSheetReport(BaseModel):
    """
    Position as of a date.

    Equity includes the net income accumulated in revenue and expense
    accounts, so assets == liabilities + equity always holds.
    """

    as_of: Optional[date] = None
    assets: Decimal
    liabilities: Decimal
    equity: Decimal
    retained_earnings: Decimal = ZERO
    by_account: dict[str, Decimal] = Field(default_factory=dict)

    @property
    def net_worth(self) -> Decimal:
        return self.assets - self.liabilities


class CashFlowReport(BaseModel):
    """Money moving through cash (bank-backed asset) accounts over a period."""

    period: DateRange
    inflows: Decimal
    outflows: Decimal
    net: Decimal


class TrialBalanceLine(BaseModel):
    account_ref: str
    debits: Decimal
    credits: Decimal


class TrialBalance(BaseModel):
    as_of: Optional[date] = None
    lines: list[TrialBalanceLine] = Field(default_factory=list)
    total_debits: Decimal
    total_credits: Decimal

    @property
    def is_balanced(self) -> bool:
        return self.total_debits == self.total_credits


class ReconciliationResult(BaseModel):
    """Comparison of a replayed ledger balance with a bank-reported balance."""

    account_ref: str
    as_of: date
    expected_balance: Decimal = Field(..., description="Balance replayed from the journal")
    actual_balance: Decimal = Field(..., description="Balance reported by the bank")
    discrepancy: Decimal = Field(..., description="actual - expected")
    adjustment_entry_ref: Optional[str] = None

    @property
    def is_reconciled(self) -> bool:
        return self.discrepancy == 0
