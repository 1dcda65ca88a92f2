"""
Tests for Statement Ledger models

Test strategy:
1. Unit tests for individual components (models, validators)
2. Integration tests for flows (against in-memory storage)
3. No network and no real files outside tmp_path
"""

import pytest
from datetime import date
from decimal import Decimal
from uuid import uuid4

from pydantic import ValidationError

from statement_ledger.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)
from statement_ledger.models.imports import (
    CommitResult,
    FileCommitResult,
    TransactionFailure,
    ValidationIssue,
    ValidationResult,
)
from statement_ledger.models.ledger import (
    AccountType,
    ChartAccount,
    EntrySide,
    JournalEntry,
    JournalLine,
)
from statement_ledger.models.money import parse_decimal, round_money, to_minor_units
from statement_ledger.models.rules import CategoryState, CategoryStateKind, Classification
from statement_ledger.models.statement import (
    AccountIdentity,
    AccountKind,
    DateRange,
    RawTransaction,
    TransactionType,
    hash_account,
    mask_account_number,
)


class TestStatementModels:
    """Tests for the parser's output models."""

    def test_raw_transaction_is_frozen(self):
        """Test that a parsed transaction cannot be edited."""
        tx = RawTransaction(external_id="T1", amount=Decimal("-4.50"), posted_date=date(2024, 1, 10))
        with pytest.raises(ValidationError):
            tx.amount = Decimal("5")
        assert tx.payee_name == "Unknown"

    def test_raw_transaction_rejects_non_finite_amount(self):
        with pytest.raises(ValidationError):
            RawTransaction(external_id="T1", amount=Decimal("NaN"), posted_date=date(2024, 1, 10))

    def test_transaction_type_normalization(self):
        """Test that unknown TRNTYPE values map to OTHER."""
        assert TransactionType.normalize(" pos ") == TransactionType.POS
        assert TransactionType.normalize("HOLD") == TransactionType.OTHER
        assert TransactionType.normalize(None) == TransactionType.OTHER

    def test_account_hash_is_stable_and_one_way(self):
        identity = AccountIdentity(bank_id="021000021", account_number=" 123456789 ")
        assert identity.account_hash == hash_account("021000021", "123456789")
        assert "123456789" not in identity.account_hash
        assert hash_account("0210", "00021123") != hash_account("021000021", "123")

    def test_masking(self):
        """Test that only the last four digits are shown."""
        assert mask_account_number("4111111111111111") == "****1111"
        assert mask_account_number("1234") == "1234"

    def test_liability_kinds(self):
        assert AccountKind.CREDIT_CARD.is_liability
        assert AccountKind.CREDIT_LINE.is_liability
        assert not AccountKind.SAVINGS.is_liability

    def test_date_range_order(self):
        with pytest.raises(ValidationError):
            DateRange(start=date(2024, 2, 1), end=date(2024, 1, 1))
        assert DateRange(start=date(2024, 1, 1), end=date(2024, 1, 31)).contains(date(2024, 1, 31))


class TestMoney:
    """Tests for exact money helpers."""

    def test_minor_units(self):
        assert to_minor_units(Decimal("50.00"), "USD") == 5000
        assert to_minor_units(Decimal("1200"), "JPY") == 1200
        assert to_minor_units(Decimal("1.234"), "KWD") == 1234

    def test_bankers_rounding(self):
        assert round_money(Decimal("0.125"), "USD") == Decimal("0.12")
        assert round_money(Decimal("0.135"), "USD") == Decimal("0.14")

    def test_parse_decimal(self):
        """Test tolerant parsing of statement amounts."""
        assert parse_decimal("+12.50") == Decimal("12.50")
        assert parse_decimal("-12,50") == Decimal("-12.50")
        assert parse_decimal(" 1 000.00 ") == Decimal("1000.00")
        assert parse_decimal("abc") is None
        assert parse_decimal("Infinity") is None
        assert parse_decimal(12.5) is None


class TestLedgerModels:
    """Tests for chart accounts and journal entries."""

    def test_code_defaults_to_id(self):
        account = ChartAccount(code="5200", name="Food", type=AccountType.EXPENSE)
        assert account.id == "5200"
        assert account.normal_balance_side == EntrySide.DEBIT

    def test_code_prefix_must_match_type(self):
        """Test that a 5xxx code cannot be an asset."""
        with pytest.raises(ValidationError):
            ChartAccount(code="5200", name="Food", type=AccountType.ASSET)
        with pytest.raises(ValidationError):
            ChartAccount(code="52", name="Food", type=AccountType.EXPENSE)

    def test_normal_balance_sides(self):
        assert AccountType.ASSET.normal_balance_side == EntrySide.DEBIT
        assert AccountType.LIABILITY.normal_balance_side == EntrySide.CREDIT
        assert AccountType.REVENUE.normal_balance_side == EntrySide.CREDIT
        assert AccountType.from_code("3100") == AccountType.EQUITY
        assert AccountType.from_code("9100") is None

    def test_journal_line_amount_is_non_negative(self):
        with pytest.raises(ValidationError):
            JournalLine.debit("5200", Decimal("-1"))

    def test_entry_balance_in_minor_units(self):
        """Test that sub-cent noise does not unbalance an entry."""
        entry = JournalEntry(
            entry_date=date(2024, 1, 10),
            lines=[
                JournalLine.debit("5200", Decimal("10.001")),
                JournalLine.credit("1110", Decimal("10.00")),
            ],
        )
        assert entry.is_balanced
        assert entry.account_refs == {"5200", "1110"}
        assert entry.touches("1110")

    def test_entry_needs_two_lines(self):
        with pytest.raises(ValidationError):
            JournalEntry(entry_date=date(2024, 1, 10), lines=[JournalLine.debit("5200", Decimal("1"))])


class TestCategoryModels:
    """Tests for classification and category state invariants."""

    def test_category_needs_account(self):
        with pytest.raises(ValidationError):
            Classification(outcome="category")
        with pytest.raises(ValidationError):
            CategoryState(kind=CategoryStateKind.TRANSFER)

    def test_uncategorized_takes_no_reference(self):
        with pytest.raises(ValidationError):
            CategoryState(kind=CategoryStateKind.IGNORED, ref="5200")

    def test_states_compare_by_value(self):
        assert CategoryState.category("5200") == CategoryState.category("5200")
        assert CategoryState.category("5200") != CategoryState.category("5900")


class TestAuditModels:
    """Tests for audit-related models."""

    def test_audit_event_creation(self):
        """Test AuditEvent model creation."""
        event = AuditEvent(
            event_type=AuditEventType.STATEMENT_UPLOADED,
            description="Test statement uploaded",
        )
        assert event.event_type == AuditEventType.STATEMENT_UPLOADED
        assert event.severity == AuditSeverity.INFO

    def test_audit_event_to_log_dict(self):
        """Test conversion to log dictionary."""
        event = AuditEvent(
            event_type=AuditEventType.RULE_CREATED,
            description="Rule created",
            details={"pattern": "coffee", "priority": 10},
        )
        log_dict = event.to_log_dict()
        assert "event_id" in log_dict
        assert log_dict["event_type"] == "rule_created"
        assert log_dict["details"]["pattern"] == "coffee"

    def test_audit_event_builder_statement_uploaded(self):
        """Test AuditEventBuilder.statement_uploaded."""
        correlation_id = uuid4()
        file_id = uuid4()

        event = AuditEventBuilder.statement_uploaded(
            file_id=file_id,
            filename="checking.ofx",
            size=1024,
            correlation_id=correlation_id,
        )

        assert event.event_type == AuditEventType.STATEMENT_UPLOADED
        assert event.entity_id == str(file_id)
        assert event.correlation_id == correlation_id
        assert event.is_user_action is True

    def test_dropped_transactions_raise_severity(self):
        event = AuditEventBuilder.statement_parsed(
            file_id=uuid4(),
            dialect="tag_soup",
            transaction_count=9,
            dropped_count=1,
            correlation_id=uuid4(),
        )
        assert event.severity == AuditSeverity.WARNING

    def test_long_rejection_reasons_are_truncated(self):
        event = AuditEventBuilder.statement_rejected(
            file_id=uuid4(),
            reasons=["x" * 400, "y" * 400],
            correlation_id=uuid4(),
        )
        assert len(event.description) == 500
        assert len(event.details["reasons"]) == 2


class TestValidationResult:
    """Tests for ValidationResult model."""

    def test_validation_result_has_errors(self):
        """Test has_errors property."""
        result = ValidationResult(
            is_valid=False,
            issues=[
                ValidationIssue(
                    field="account",
                    issue_type="missing",
                    message="No ACCTID",
                    severity="error",
                ),
            ],
        )
        assert result.has_errors is True
        assert result.error_count == 1
        assert result.errors == ["No ACCTID"]

    def test_validation_result_warnings_only(self):
        """Test that warnings don't count as errors."""
        result = ValidationResult(
            is_valid=True,
            issues=[
                ValidationIssue(
                    field="transactions",
                    issue_type="future_date",
                    message="Date in future",
                    severity="warning",
                ),
            ],
        )
        assert result.has_errors is False
        assert result.error_count == 0

    def test_severity_is_restricted(self):
        with pytest.raises(ValidationError):
            ValidationIssue(field="x", issue_type="y", message="z", severity="fatal")


class TestCommitResult:
    """Tests for batch-level commit counts."""

    def test_totals_across_files(self):
        session_id = uuid4()
        failure = TransactionFailure(
            file_id=uuid4(), proposal_id=uuid4(), external_id="C2", reason="Chart account not found: 5999",
        )
        result = CommitResult(
            session_id=session_id,
            files=[
                FileCommitResult(file_id=uuid4(), filename="a.ofx", new_transactions=2, duplicates_skipped=1),
                FileCommitResult(file_id=uuid4(), filename="b.ofx", new_transactions=1, failures=[failure]),
            ],
        )
        assert result.new_transactions == 3
        assert result.duplicates_skipped == 1
        assert result.failures == [failure]
        assert not result.success

    def test_empty_result_succeeds(self):
        assert CommitResult(session_id=uuid4()).success


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
