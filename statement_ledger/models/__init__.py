"""
Data Models Package

This package contains all Pydantic models used in the Statement Ledger system.
All data flowing through the system must conform to these schemas.
"""

from statement_ledger.models.statement import (
    AccountIdentity,
    AccountKind,
    BalanceSnapshot,
    DateRange,
    ParsedStatement,
    RawTransaction,
    StatementDialect,
    TransactionType,
    hash_account,
    mask_account_number,
)
from statement_ledger.models.rules import (
    CategorizationRule,
    CategoryState,
    CategoryStateKind,
    Classification,
    ClassificationOutcome,
    MatchField,
    PatternKind,
    RuleCategory,
)
from statement_ledger.models.ledger import (
    AccountType,
    BalanceSheetReport,
    BankAccount,
    CashFlowReport,
    ChartAccount,
    EntrySide,
    JournalEntry,
    JournalLine,
    ProfitAndLossReport,
    ReconciliationResult,
    Transaction,
    TrialBalance,
    TrialBalanceLine,
)
from statement_ledger.models.transfer import (
    DetectedTransfer,
    TransferConfidence,
    TransferLeg,
)
from statement_ledger.models.imports import (
    CommitResult,
    FileCommitResult,
    ImportSession,
    ImportState,
    ProposedTransaction,
    ReviewEdit,
    StatementImport,
    TransactionFailure,
    ValidationIssue,
    ValidationResult,
)
from statement_ledger.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Statement models
    "AccountIdentity",
    "AccountKind",
    "BalanceSnapshot",
    "DateRange",
    "ParsedStatement",
    "RawTransaction",
    "StatementDialect",
    "TransactionType",
    "hash_account",
    "mask_account_number",
    # Rule models
    "CategorizationRule",
    "CategoryState",
    "CategoryStateKind",
    "Classification",
    "ClassificationOutcome",
    "MatchField",
    "PatternKind",
    "RuleCategory",
    # Ledger models
    "AccountType",
    "BalanceSheetReport",
    "BankAccount",
    "CashFlowReport",
    "ChartAccount",
    "EntrySide",
    "JournalEntry",
    "JournalLine",
    "ProfitAndLossReport",
    "ReconciliationResult",
    "Transaction",
    "TrialBalance",
    "TrialBalanceLine",
    # Transfer models
    "DetectedTransfer",
    "TransferConfidence",
    "TransferLeg",
    # Import models
    "CommitResult",
    "FileCommitResult",
    "ImportSession",
    "ImportState",
    "ProposedTransaction",
    "ReviewEdit",
    "StatementImport",
    "TransactionFailure",
    "ValidationIssue",
    "ValidationResult",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
