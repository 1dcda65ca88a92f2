"""
Tests for the audit logger.
"""

from uuid import uuid4

from statement_ledger.audit import AuditLogger
from statement_ledger.models.audit import AuditEventBuilder, AuditEventType
from statement_ledger.services.storage import InMemoryStorage, StorageError


class FailingAuditStorage(InMemoryStorage):
    async def append_event(self, event):
        raise StorageError("audit store unavailable")


class TestAuditLogger:
    """Tests for local logging and persistence of audit events."""

    async def test_events_are_persisted_with_correlation(self, storage, audit_logger):
        session_id = uuid4()
        await audit_logger.log_statement_uploaded(
            file_id=uuid4(), filename="checking.ofx", size=512, correlation_id=session_id,
        )
        await audit_logger.log_import_committed(
            new_transactions=3, duplicates=0, failures=0, correlation_id=session_id,
        )
        await audit_logger.log_rule_created(rule_id="r1", pattern="coffee", priority=1)

        events = await storage.get_events_by_correlation_id(session_id)
        assert [e.event_type for e in events] == [
            AuditEventType.STATEMENT_UPLOADED,
            AuditEventType.IMPORT_COMMITTED,
        ]

    async def test_storage_failure_is_not_raised(self):
        logger = AuditLogger(FailingAuditStorage())
        event = AuditEventBuilder.system_error(error_type="ValueError", error_message="boom")
        assert await logger.log(event) is False
        await logger.log_error(error_type="ValueError", error_message="boom")

    async def test_without_storage_only_logs_locally(self):
        event = AuditEventBuilder.account_deactivated(account_id="5900")
        assert await AuditLogger().log(event) is True
