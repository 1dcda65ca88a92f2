"""File-level validation of parsed statements."""

from statement_ledger.validation.validator import StatementValidator, validate_statement

__all__ = ["StatementValidator", "validate_statement"]
