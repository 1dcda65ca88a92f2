"""
Audit Logger

DESIGN DECISION: Every significant action in the system is logged.
This provides:
1. Complete traceability of every import and ledger mutation
2. Debugging capability
3. User can see the history of an import session
4. Compliance readiness

The audit logger:
- Is async to not block main flow
- Handles storage failures by logging them locally (an audit write
  failing never fails the import that produced it)
- Supports correlation IDs to trace related events
"""

from typing import Optional
from uuid import UUID, uuid4

import structlog

from statement_ledger.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity
from statement_ledger.services.storage import AuditStorageInterface, StorageError


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. The audit store (for persistence and user visibility)
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger()

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
            self._logger.error("audit_event", **log_dict)
        elif event.severity == AuditSeverity.WARNING:
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except StorageError as e:
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    # =========================================================================
    # STATEMENT INTAKE
    # =========================================================================

    async def log_statement_uploaded(
        self,
        file_id: UUID,
        filename: str,
        size: int,
        correlation_id: UUID,
    ) -> None:
        """Log statement upload event."""
        await self.log(AuditEventBuilder.statement_uploaded(
            file_id=file_id,
            filename=filename,
            size=size,
            correlation_id=correlation_id,
        ))

    async def log_statement_parsed(
        self,
        file_id: UUID,
        dialect: str,
        transaction_count: int,
        dropped_count: int,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.statement_parsed(
            file_id=file_id,
            dialect=dialect,
            transaction_count=transaction_count,
            dropped_count=dropped_count,
            correlation_id=correlation_id,
        ))

    async def log_statement_validated(
        self,
        file_id: UUID,
        warnings: list[str],
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.statement_validated(
            file_id=file_id,
            warnings=warnings,
            correlation_id=correlation_id,
        ))

    async def log_statement_rejected(
        self,
        file_id: UUID,
        reasons: list[str],
        correlation_id: UUID,
    ) -> None:
        """Log a statement that failed file-level validation."""
        await self.log(AuditEventBuilder.statement_rejected(
            file_id=file_id,
            reasons=reasons,
            correlation_id=correlation_id,
        ))

    # =========================================================================
    # CLASSIFICATION AND REVIEW
    # =========================================================================

    async def log_classification_completed(
        self,
        matched: int,
        unmatched: int,
        ignored: int,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.classification_completed(
            matched=matched,
            unmatched=unmatched,
            ignored=ignored,
            correlation_id=correlation_id,
        ))

    async def log_transfers_detected(
        self,
        summary: dict[str, int],
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.transfers_detected(
            summary=summary,
            correlation_id=correlation_id,
        ))

    async def log_review_applied(
        self,
        edit_count: int,
        new_rule_count: int,
        new_account_count: int,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.review_applied(
            edit_count=edit_count,
            new_rule_count=new_rule_count,
            new_account_count=new_account_count,
            correlation_id=correlation_id,
        ))

    # =========================================================================
    # COMMIT
    # =========================================================================

    async def log_transaction_imported(
        self,
        transaction_id: str,
        external_id: str,
        category_state: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.transaction_imported(
            transaction_id=transaction_id,
            external_id=external_id,
            category_state=category_state,
            correlation_id=correlation_id,
        ))

    async def log_duplicate_skipped(
        self,
        account_ref: str,
        external_id: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.duplicate_skipped(
            account_ref=account_ref,
            external_id=external_id,
            correlation_id=correlation_id,
        ))

    async def log_transaction_failed(
        self,
        external_id: str,
        reason: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.transaction_failed(
            external_id=external_id,
            reason=reason,
            correlation_id=correlation_id,
        ))

    async def log_import_committed(
        self,
        new_transactions: int,
        duplicates: int,
        failures: int,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.import_committed(
            new_transactions=new_transactions,
            duplicates=duplicates,
            failures=failures,
            correlation_id=correlation_id,
        ))

    async def log_import_cancelled(
        self,
        remaining: int,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.import_cancelled(
            remaining=remaining,
            correlation_id=correlation_id,
        ))

    # =========================================================================
    # LEDGER
    # =========================================================================

    async def log_journal_entry_posted(
        self,
        entry_id: str,
        amount: str,
        account_refs: list[str],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.journal_entry_posted(
            entry_id=entry_id,
            amount=amount,
            account_refs=account_refs,
            correlation_id=correlation_id,
        ))

    async def log_journal_entry_rejected(
        self,
        reason: str,
        debits: str,
        credits: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an entry refused at the ledger boundary."""
        await self.log(AuditEventBuilder.journal_entry_rejected(
            reason=reason,
            debits=debits,
            credits=credits,
            correlation_id=correlation_id,
        ))

    async def log_journal_entry_retracted(
        self,
        entry_id: str,
        reason: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.journal_entry_retracted(
            entry_id=entry_id,
            reason=reason,
            correlation_id=correlation_id,
        ))

    async def log_transaction_recategorized(
        self,
        transaction_id: str,
        old_state: str,
        new_state: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.transaction_recategorized(
            transaction_id=transaction_id,
            old_state=old_state,
            new_state=new_state,
            correlation_id=correlation_id,
        ))

    # =========================================================================
    # ACCOUNTS AND RULES
    # =========================================================================

    async def log_account_created(
        self,
        account_id: str,
        code: str,
        name: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.account_created(
            account_id=account_id,
            code=code,
            name=name,
            correlation_id=correlation_id,
        ))

    async def log_account_deactivated(
        self,
        account_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.account_deactivated(
            account_id=account_id,
            correlation_id=correlation_id,
        ))

    async def log_account_merged(
        self,
        removed_id: str,
        surviving_id: str,
        repointed: dict[str, int],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.account_merged(
            removed_id=removed_id,
            surviving_id=surviving_id,
            repointed=repointed,
            correlation_id=correlation_id,
        ))

    async def log_rule_created(
        self,
        rule_id: str,
        pattern: str,
        priority: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.rule_created(
            rule_id=rule_id,
            pattern=pattern,
            priority=priority,
            correlation_id=correlation_id,
        ))

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        await self.log(AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        ))


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a new user action (e.g., a statement import).
    Pass it through all subsequent operations.
    """
    return uuid4()
