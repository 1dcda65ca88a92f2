"""
Import Session Models

An import session carries one batch of statement files through the state
machine:

    uploaded -> (validated | rejected) -> classified -> reviewed -> committed

CRITICAL: Nothing in a session is persisted before commit. Everything up to
REVIEWED is a proposal the user (or an automated policy) may still edit.
"""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from statement_ledger.models.ledger import ChartAccount
from statement_ledger.models.rules import (
    CategorizationRule,
    Classification,
    ClassificationOutcome,
)
from statement_ledger.models.statement import ParsedStatement, RawTransaction
from statement_ledger.models.transfer import DetectedTransfer


class ImportState(str, Enum):
    """Import state machine states."""
    UPLOADED = "uploaded"
    VALIDATED = "validated"
    REJECTED = "rejected"
    CLASSIFIED = "classified"
    REVIEWED = "reviewed"
    COMMITTED = "committed"


# =============================================================================
# VALIDATION MODELS
# =============================================================================

class ValidationIssue(BaseModel):
    """A single validation issue found."""

    field: str = Field(
        ...,
        description="Field with the issue"
    )
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'missing', 'empty', 'dropped_transactions')"
    )
    message: str = Field(
        ...,
        description="Human-readable description of the issue"
    )
    severity: str = Field(
        ...,
        pattern="^(error|warning|info)$",
        description="Issue severity"
    )
    suggested_fix: Optional[str] = Field(
        default=None,
        description="Suggested fix if available"
    )


class ValidationResult(BaseModel):
    """File-level validation of a parsed statement."""

    validated_at: datetime = Field(
        default_factory=datetime.utcnow
    )
    is_valid: bool = Field(
        ...,
        description="Can this statement be imported?"
    )
    issues: list[ValidationIssue] = Field(
        default_factory=list,
        description="All validation issues found"
    )
    warnings: list[str] = Field(
        default_factory=list,
        description="Non-blocking warnings"
    )

    @property
    def has_errors(self) -> bool:
        """Check if there are any error-level issues."""
        return any(issue.severity == "error" for issue in self.issues)

    @property
    def error_count(self) -> int:
        """Count error-level issues."""
        return sum(1 for issue in self.issues if issue.severity == "error")

    @property
    def errors(self) -> list[str]:
        return [issue.message for issue in self.issues if issue.severity == "error"]


# =============================================================================
# SESSION
# =============================================================================

class ProposedTransaction(BaseModel):
    """A parsed transaction together with its proposed categorization."""

    proposal_id: UUID = Field(default_factory=uuid4)
    raw: RawTransaction
    classification: Classification = Field(default_factory=Classification.no_match)
    counter_account_hash: Optional[str] = Field(
        default=None,
        description="Other side of a detected transfer, resolved to a bank account at commit"
    )
    edited: bool = Field(
        default=False,
        description="Classification was set during review"
    )
    excluded: bool = Field(
        default=False,
        description="User chose not to import this transaction"
    )


class StatementImport(BaseModel):
    """One file inside an import session."""

    file_id: UUID = Field(default_factory=uuid4)
    filename: str
    state: ImportState = ImportState.UPLOADED
    statement: Optional[ParsedStatement] = None
    validation: Optional[ValidationResult] = None
    bank_account_ref: Optional[str] = Field(
        default=None,
        description="Existing bank account this statement matched, if any"
    )
    proposals: list[ProposedTransaction] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)

    @property
    def is_importable(self) -> bool:
        return self.state not in (ImportState.UPLOADED, ImportState.REJECTED)


class ImportSession(BaseModel):
    """A batch of statement files moving through the import state machine."""

    session_id: UUID = Field(
        default_factory=uuid4,
        description="Also used as the audit correlation id"
    )
    created_at: datetime = Field(default_factory=datetime.utcnow)
    state: ImportState = ImportState.UPLOADED
    files: list[StatementImport] = Field(default_factory=list)
    transfers: list[DetectedTransfer] = Field(default_factory=list)

    # Proposed during review, persisted at commit
    new_rules: list[CategorizationRule] = Field(default_factory=list)
    new_accounts: list[ChartAccount] = Field(default_factory=list)

    @property
    def importable_files(self) -> list[StatementImport]:
        return [f for f in self.files if f.is_importable]

    @property
    def rejected_files(self) -> list[StatementImport]:
        return [f for f in self.files if f.state == ImportState.REJECTED]

    def _count(self, outcome: ClassificationOutcome) -> int:
        return sum(
            1
            for f in self.importable_files
            for p in f.proposals
            if p.classification.outcome == outcome and not p.excluded
        )

    @property
    def unmatched_count(self) -> int:
        return self._count(ClassificationOutcome.UNMATCHED)

    @property
    def matched_count(self) -> int:
        return self._count(ClassificationOutcome.CATEGORY) + self._count(ClassificationOutcome.TRANSFER)

    @property
    def ignored_count(self) -> int:
        return self._count(ClassificationOutcome.IGNORED)

    def find_proposal(self, proposal_id: UUID) -> Optional[ProposedTransaction]:
        for f in self.files:
            for p in f.proposals:
                if p.proposal_id == proposal_id:
                    return p
        return None


class ReviewEdit(BaseModel):
    """A user (or policy) change to one proposed transaction."""

    proposal_id: UUID
    classification: Optional[Classification] = None
    exclude: bool = False


# =============================================================================
# COMMIT RESULTS
# =============================================================================

class TransactionFailure(BaseModel):
    """A transaction that could not be committed, with the reason."""

    file_id: UUID
    proposal_id: UUID
    external_id: str
    reason: str


class FileCommitResult(BaseModel):
    """Per-file outcome of a commit."""

    file_id: UUID
    filename: str
    bank_account_ref: Optional[str] = None
    new_transactions: int = 0
    duplicates_skipped: int = 0
    journal_entries_created: int = 0
    not_processed: int = 0
    failures: list[TransactionFailure] = Field(default_factory=list)


class CommitResult(BaseModel):
    """Batch-level outcome of a commit: counts plus reasons, never one opaque failure."""

    session_id: UUID
    files: list[FileCommitResult] = Field(default_factory=list)
    rejected_files: list[str] = Field(default_factory=list)
    cancelled: bool = False

    @property
    def new_transactions(self) -> int:
        return sum(f.new_transactions for f in self.files)

    @property
    def duplicates_skipped(self) -> int:
        return sum(f.duplicates_skipped for f in self.files)

    @property
    def journal_entries_created(self) -> int:
        return sum(f.journal_entries_created for f in self.files)

    @property
    def failures(self) -> list[TransactionFailure]:
        return [failure for f in self.files for failure in f.failures]

    @property
    def success(self) -> bool:
        return not self.failures and not self.cancelled
