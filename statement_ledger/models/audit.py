"""
Audit Models for Statement Ledger

Every significant action in the system is logged for audit purposes:
statement uploads, validation outcomes, classification runs, every
transaction written or skipped, every journal entry posted or retracted,
and every change to the chart of accounts.

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """
    Types of events we audit.

    Every step of the import pipeline and every ledger mutation has its
    own event type.
    """
    # Statement intake
    STATEMENT_UPLOADED = "statement_uploaded"
    STATEMENT_PARSED = "statement_parsed"
    STATEMENT_VALIDATED = "statement_validated"
    STATEMENT_REJECTED = "statement_rejected"

    # Classification
    CLASSIFICATION_COMPLETED = "classification_completed"
    TRANSFERS_DETECTED = "transfers_detected"
    REVIEW_APPLIED = "review_applied"

    # Commit
    TRANSACTION_IMPORTED = "transaction_imported"
    DUPLICATE_SKIPPED = "duplicate_skipped"
    TRANSACTION_FAILED = "transaction_failed"
    IMPORT_COMMITTED = "import_committed"
    IMPORT_CANCELLED = "import_cancelled"

    # Ledger
    JOURNAL_ENTRY_POSTED = "journal_entry_posted"
    JOURNAL_ENTRY_REJECTED = "journal_entry_rejected"
    JOURNAL_ENTRY_RETRACTED = "journal_entry_retracted"
    TRANSACTION_RECATEGORIZED = "transaction_recategorized"

    # Chart of accounts and rules
    ACCOUNT_CREATED = "account_created"
    ACCOUNT_DEACTIVATED = "account_deactivated"
    ACCOUNT_MERGED = "account_merged"
    RULE_CREATED = "rule_created"

    # System events
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    Every significant action creates one of these.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=datetime.utcnow,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'statement', 'transaction', 'journal_entry')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., all events in one import session)"
    )

    # Event details
    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    # Error information (if applicable)
    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a user action?"
    )

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.statement_uploaded(file_id, filename, size, session_id)
        event = AuditEventBuilder.journal_entry_posted(entry_id, total, correlation_id)
    """

    @staticmethod
    def statement_uploaded(
        file_id: UUID,
        filename: str,
        size: int,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.STATEMENT_UPLOADED,
            entity_type="statement",
            entity_id=str(file_id),
            correlation_id=correlation_id,
            description=f"Statement uploaded: {filename}",
            details={
                "filename": filename,
                "size": size,
            },
            is_user_action=True,
        )

    @staticmethod
    def statement_parsed(
        file_id: UUID,
        dialect: str,
        transaction_count: int,
        dropped_count: int,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.STATEMENT_PARSED,
            severity=AuditSeverity.WARNING if dropped_count else AuditSeverity.INFO,
            entity_type="statement",
            entity_id=str(file_id),
            correlation_id=correlation_id,
            description=f"Parsed {transaction_count} transactions ({dropped_count} dropped)",
            details={
                "dialect": dialect,
                "transaction_count": transaction_count,
                "dropped_count": dropped_count,
            },
        )

    @staticmethod
    def statement_validated(
        file_id: UUID,
        warnings: list[str],
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.STATEMENT_VALIDATED,
            entity_type="statement",
            entity_id=str(file_id),
            correlation_id=correlation_id,
            description=f"Statement validated with {len(warnings)} warnings",
            details={"warnings": warnings},
        )

    @staticmethod
    def statement_rejected(
        file_id: UUID,
        reasons: list[str],
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.STATEMENT_REJECTED,
            severity=AuditSeverity.WARNING,
            entity_type="statement",
            entity_id=str(file_id),
            correlation_id=correlation_id,
            description=f"Statement rejected: {'; '.join(reasons)}"[:500],
            details={"reasons": reasons},
        )

    @staticmethod
    def classification_completed(
        matched: int,
        unmatched: int,
        ignored: int,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CLASSIFICATION_COMPLETED,
            entity_type="import_session",
            entity_id=str(correlation_id),
            correlation_id=correlation_id,
            description=f"Classified transactions: {matched} matched, {unmatched} unmatched",
            details={
                "matched": matched,
                "unmatched": unmatched,
                "ignored": ignored,
            },
        )

    @staticmethod
    def transfers_detected(
        summary: dict[str, int],
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSFERS_DETECTED,
            entity_type="import_session",
            entity_id=str(correlation_id),
            correlation_id=correlation_id,
            description=f"Detected {summary.get('total', 0)} inter-account transfers",
            details=summary,
        )

    @staticmethod
    def review_applied(
        edit_count: int,
        new_rule_count: int,
        new_account_count: int,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.REVIEW_APPLIED,
            entity_type="import_session",
            entity_id=str(correlation_id),
            correlation_id=correlation_id,
            description=f"Review applied with {edit_count} edits",
            details={
                "edits": edit_count,
                "new_rules": new_rule_count,
                "new_accounts": new_account_count,
            },
            is_user_action=True,
        )

    @staticmethod
    def transaction_imported(
        transaction_id: str,
        external_id: str,
        category_state: str,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_IMPORTED,
            severity=AuditSeverity.DEBUG,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description=f"Transaction {external_id} imported as {category_state}",
            details={
                "external_id": external_id,
                "category_state": category_state,
            },
        )

    @staticmethod
    def duplicate_skipped(
        account_ref: str,
        external_id: str,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DUPLICATE_SKIPPED,
            severity=AuditSeverity.DEBUG,
            entity_type="transaction",
            correlation_id=correlation_id,
            description=f"Duplicate transaction {external_id} skipped",
            details={
                "account_ref": account_ref,
                "external_id": external_id,
            },
        )

    @staticmethod
    def transaction_failed(
        external_id: str,
        reason: str,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type="transaction",
            correlation_id=correlation_id,
            description=f"Transaction {external_id} failed to import",
            error_message=reason,
            details={"external_id": external_id},
        )

    @staticmethod
    def import_committed(
        new_transactions: int,
        duplicates: int,
        failures: int,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.IMPORT_COMMITTED,
            severity=AuditSeverity.WARNING if failures else AuditSeverity.INFO,
            entity_type="import_session",
            entity_id=str(correlation_id),
            correlation_id=correlation_id,
            description=(
                f"Import committed: {new_transactions} new, "
                f"{duplicates} duplicates, {failures} failed"
            ),
            details={
                "new_transactions": new_transactions,
                "duplicates": duplicates,
                "failures": failures,
            },
            is_user_action=True,
        )

    @staticmethod
    def import_cancelled(
        remaining: int,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.IMPORT_CANCELLED,
            severity=AuditSeverity.WARNING,
            entity_type="import_session",
            entity_id=str(correlation_id),
            correlation_id=correlation_id,
            description=f"Import cancelled with {remaining} transactions not processed",
            details={"remaining": remaining},
            is_user_action=True,
        )

    @staticmethod
    def journal_entry_posted(
        entry_id: str,
        amount: str,
        account_refs: list[str],
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.JOURNAL_ENTRY_POSTED,
            entity_type="journal_entry",
            entity_id=entry_id,
            correlation_id=correlation_id,
            description=f"Journal entry posted for {amount}",
            details={
                "amount": amount,
                "accounts": account_refs,
            },
        )

    @staticmethod
    def journal_entry_rejected(
        reason: str,
        debits: str,
        credits: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.JOURNAL_ENTRY_REJECTED,
            severity=AuditSeverity.ERROR,
            entity_type="journal_entry",
            correlation_id=correlation_id,
            description="Journal entry rejected",
            error_message=reason,
            details={
                "debits": debits,
                "credits": credits,
            },
        )

    @staticmethod
    def journal_entry_retracted(
        entry_id: str,
        reason: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.JOURNAL_ENTRY_RETRACTED,
            entity_type="journal_entry",
            entity_id=entry_id,
            correlation_id=correlation_id,
            description=f"Journal entry retracted: {reason}",
            details={"reason": reason},
        )

    @staticmethod
    def transaction_recategorized(
        transaction_id: str,
        old_state: str,
        new_state: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_RECATEGORIZED,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description=f"Transaction recategorized from {old_state} to {new_state}",
            details={
                "old_state": old_state,
                "new_state": new_state,
            },
            is_user_action=True,
        )

    @staticmethod
    def account_created(
        account_id: str,
        code: str,
        name: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ACCOUNT_CREATED,
            entity_type="chart_account",
            entity_id=account_id,
            correlation_id=correlation_id,
            description=f"Account created: {code} {name}",
            details={"code": code, "name": name},
        )

    @staticmethod
    def account_deactivated(
        account_id: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ACCOUNT_DEACTIVATED,
            entity_type="chart_account",
            entity_id=account_id,
            correlation_id=correlation_id,
            description=f"Account deactivated: {account_id}",
            is_user_action=True,
        )

    @staticmethod
    def account_merged(
        removed_id: str,
        surviving_id: str,
        repointed: dict[str, int],
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ACCOUNT_MERGED,
            entity_type="chart_account",
            entity_id=removed_id,
            correlation_id=correlation_id,
            description=f"Account {removed_id} merged into {surviving_id}",
            details={"surviving_id": surviving_id, **repointed},
            is_user_action=True,
        )

    @staticmethod
    def rule_created(
        rule_id: str,
        pattern: str,
        priority: int,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RULE_CREATED,
            entity_type="rule",
            entity_id=rule_id,
            correlation_id=correlation_id,
            description=f"Rule created for pattern '{pattern}'"[:500],
            details={"pattern": pattern, "priority": priority},
            is_user_action=True,
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )
