"""
Tests for file-level statement validation.
"""

from datetime import date, timedelta

from conftest import raw_transaction
from statement_ledger.models.statement import (
    AccountIdentity,
    DateRange,
    ParsedStatement,
    StatementDialect,
)
from statement_ledger.validation import StatementValidator, validate_statement


def make_statement(transactions=(), dropped=0, account_number="123456789", date_range=None):
    return ParsedStatement(
        dialect=StatementDialect.TAG_SOUP,
        account=AccountIdentity(bank_id="021000021", account_number=account_number),
        transactions=list(transactions),
        dropped_transactions=dropped,
        date_range=date_range,
    )


class TestStructuralValidation:
    """Tests for stage 1."""

    def test_clean_statement_is_valid(self):
        result = validate_statement(make_statement([raw_transaction()]))
        assert result.is_valid
        assert result.issues == []

    def test_missing_account_rejects(self):
        result = validate_statement(make_statement([raw_transaction()], account_number=""))
        assert not result.is_valid
        assert result.error_count == 1
        assert result.issues[0].field == "account"

    def test_no_transactions_rejects(self):
        result = validate_statement(make_statement())
        assert not result.is_valid
        assert "no transactions" in result.errors[0]

    def test_all_transactions_dropped_rejects(self):
        result = validate_statement(make_statement(dropped=3))
        assert not result.is_valid
        assert "None of the 3" in result.errors[0]

    def test_content_checks_skipped_after_structural_failure(self):
        result = validate_statement(make_statement(dropped=3, account_number=""))
        assert all(issue.issue_type != "dropped_transactions" for issue in result.issues)


class TestContentValidation:
    """Tests for stage 2."""

    def test_dropped_ratio_above_limit_rejects(self):
        """Test that 1 dropped out of 4 (25%) fails a 10% limit."""
        statement = make_statement(
            [raw_transaction(fitid=f"T{i}") for i in range(3)], dropped=1
        )
        result = StatementValidator(max_invalid_ratio=0.1).validate(statement)
        assert not result.is_valid
        assert "25%" in result.errors[0]

    def test_dropped_ratio_within_limit_warns(self):
        statement = make_statement(
            [raw_transaction(fitid=f"T{i}") for i in range(19)], dropped=1
        )
        result = StatementValidator(max_invalid_ratio=0.1).validate(statement)
        assert result.is_valid
        assert len(result.warnings) == 1

    def test_ratio_exactly_at_limit_is_accepted(self):
        statement = make_statement(
            [raw_transaction(fitid=f"T{i}") for i in range(9)], dropped=1
        )
        assert StatementValidator(max_invalid_ratio=0.1).validate(statement).is_valid

    def test_transactions_outside_period_warn(self):
        statement = make_statement(
            [raw_transaction(posted=date(2024, 2, 3))],
            date_range=DateRange(start=date(2024, 1, 1), end=date(2024, 1, 31)),
        )
        result = validate_statement(statement)
        assert result.is_valid
        assert "outside the statement period" in result.warnings[0]

    def test_repeated_fitids_warn(self):
        statement = make_statement([raw_transaction(fitid="A"), raw_transaction(fitid="A")])
        result = validate_statement(statement)
        assert result.is_valid
        assert "A" in result.warnings[0]

    def test_future_dates_warn(self):
        statement = make_statement([raw_transaction(posted=date.today() + timedelta(days=30))])
        result = validate_statement(statement)
        assert result.is_valid
        assert "future" in result.warnings[0]


class TestUserFriendlySummary:
    """Tests for the summary shown to users."""

    def test_valid_summary(self):
        validator = StatementValidator()
        summary = validator.get_user_friendly_summary(
            validator.validate(make_statement([raw_transaction(amount="12.00")]))
        )
        assert "ready to import" in summary

    def test_error_summary_lists_fix(self):
        validator = StatementValidator()
        summary = validator.get_user_friendly_summary(validator.validate(make_statement()))
        assert "cannot be imported" in summary
        assert "💡" in summary

    def test_warning_summary_still_importable(self):
        validator = StatementValidator()
        statement = make_statement([raw_transaction(fitid="A"), raw_transaction(fitid="A")])
        summary = validator.get_user_friendly_summary(validator.validate(statement))
        assert "You can still import this statement." in summary
