"""
Two-Stage Statement Validation

DESIGN DECISION: Validation happens in two distinct stages:

STAGE 1 - STRUCTURAL VALIDATION:
- Account identity present
- At least one usable transaction
- This catches files that are not statements of an account at all

STAGE 2 - CONTENT VALIDATION:
- Fraction of transaction blocks dropped by the parser
- Declared period vs. posted dates
- Duplicate transaction ids inside one file
- Future-dated transactions
- This catches files that parsed but are too damaged to trust

Only errors reject a file. Warnings travel with the import session so the
review step can show them.

IMPORTANT: Validation NEVER silently fixes issues.
It reports them for human review.
"""

from collections import Counter
from datetime import date, timedelta
from typing import Optional

from statement_ledger.config import get_settings
from statement_ledger.models.imports import ValidationIssue, ValidationResult
from statement_ledger.models.statement import ParsedStatement

# Posting dates more than this far ahead of today are suspicious
_FUTURE_DATE_TOLERANCE = timedelta(days=7)


class StatementValidator:
    """
    Validates a parsed statement before it may enter an import.

    Stage 1: Structural validation
    Stage 2: Content validation (skipped when stage 1 fails)
    """

    def __init__(self, max_invalid_ratio: Optional[float] = None):
        """
        Initialize validator.

        Args:
            max_invalid_ratio: Largest tolerated fraction of dropped
                               transactions. Defaults to the configured value.
        """
        if max_invalid_ratio is None:
            max_invalid_ratio = get_settings().imports.max_invalid_transaction_ratio
        self._max_invalid_ratio = max_invalid_ratio

    def _validate_structure(
        self,
        statement: ParsedStatement,
    ) -> tuple[bool, list[ValidationIssue]]:
        """
        Stage 1: Structural validation.

        Returns: (is_valid, list_of_issues)
        """
        issues = []

        if not statement.account.account_number:
            issues.append(ValidationIssue(
                field="account",
                issue_type="missing",
                message="The statement does not identify an account (no ACCTID)",
                severity="error",
                suggested_fix="Export the statement again from your bank's website",
            ))

        if not statement.transactions:
            if statement.dropped_transactions:
                message = (
                    f"None of the {statement.dropped_transactions} transactions "
                    "in the statement could be read"
                )
            else:
                message = "The statement contains no transactions"
            issues.append(ValidationIssue(
                field="transactions",
                issue_type="empty",
                message=message,
                severity="error",
                suggested_fix="Check that the export covers a period with activity",
            ))

        is_valid = not any(issue.severity == "error" for issue in issues)
        return is_valid, issues

    def _validate_content(
        self,
        statement: ParsedStatement,
    ) -> tuple[bool, list[ValidationIssue]]:
        """
        Stage 2: Content validation.

        Returns: (is_valid, list_of_issues)
        """
        issues = []

        # Dropped transaction ratio
        if statement.dropped_transactions:
            ratio = statement.dropped_transactions / statement.total_blocks
            if ratio > self._max_invalid_ratio:
                issues.append(ValidationIssue(
                    field="transactions",
                    issue_type="dropped_transactions",
                    message=(
                        f"{statement.dropped_transactions} of {statement.total_blocks} "
                        f"transactions ({ratio:.0%}) are missing required fields"
                    ),
                    severity="error",
                    suggested_fix="The file looks damaged; export it again",
                ))
            else:
                issues.append(ValidationIssue(
                    field="transactions",
                    issue_type="dropped_transactions",
                    message=(
                        f"{statement.dropped_transactions} transaction(s) could not be "
                        "read and will be skipped"
                    ),
                    severity="warning",
                ))

        # Transactions outside the declared period
        if statement.date_range is not None:
            outside = [
                tx for tx in statement.transactions
                if not statement.date_range.contains(tx.posted_date)
            ]
            if outside:
                issues.append(ValidationIssue(
                    field="date_range",
                    issue_type="inconsistent",
                    message=(
                        f"{len(outside)} transaction(s) fall outside the statement period "
                        f"{statement.date_range.start} to {statement.date_range.end}"
                    ),
                    severity="warning",
                ))

        # Same FITID twice in one file; only the first one will be imported
        counts = Counter(tx.external_id for tx in statement.transactions)
        repeated = sorted(fitid for fitid, n in counts.items() if n > 1)
        if repeated:
            issues.append(ValidationIssue(
                field="external_id",
                issue_type="duplicate",
                message=f"Transaction ids repeated within the file: {', '.join(repeated)}",
                severity="warning",
                suggested_fix="Repeated transactions are imported once",
            ))

        latest_allowed = date.today() + _FUTURE_DATE_TOLERANCE
        future = [tx for tx in statement.transactions if tx.posted_date > latest_allowed]
        if future:
            issues.append(ValidationIssue(
                field="posted_date",
                issue_type="future_date",
                message=f"{len(future)} transaction(s) are dated in the future",
                severity="warning",
                suggested_fix="Please verify the statement dates",
            ))

        is_valid = not any(issue.severity == "error" for issue in issues)
        return is_valid, issues

    def validate(self, statement: ParsedStatement) -> ValidationResult:
        """
        Run the full two-stage validation pipeline.

        Args:
            statement: Parser output to validate

        Returns:
            ValidationResult with all issues found
        """
        all_issues = []

        structure_valid, structure_issues = self._validate_structure(statement)
        all_issues.extend(structure_issues)

        content_valid = False
        if structure_valid:
            content_valid, content_issues = self._validate_content(statement)
            all_issues.extend(content_issues)

        warnings = [issue.message for issue in all_issues if issue.severity == "warning"]

        return ValidationResult(
            is_valid=structure_valid and content_valid,
            issues=all_issues,
            warnings=warnings,
        )

    def get_user_friendly_summary(
        self,
        result: ValidationResult,
    ) -> str:
        """
        Generate a user-friendly summary of validation results.

        This is what we show to non-technical users.
        """
        if result.is_valid and not result.warnings:
            return "✅ Statement looks good and is ready to import."

        lines = []

        if result.has_errors:
            lines.append("❌ This statement cannot be imported:")
            for issue in result.issues:
                if issue.severity == "error":
                    lines.append(f"   • {issue.message}")
                    if issue.suggested_fix:
                        lines.append(f"     💡 {issue.suggested_fix}")

        if result.warnings:
            lines.append("")
            lines.append("⚠️ Please note:")
            for warning in result.warnings:
                lines.append(f"   • {warning}")

        if result.is_valid:
            lines.append("")
            lines.append("You can still import this statement.")

        return "\n".join(lines).strip()


def validate_statement(
    statement: ParsedStatement,
    max_invalid_ratio: Optional[float] = None,
) -> ValidationResult:
    """Validate a parsed statement with a one-off validator."""
    return StatementValidator(max_invalid_ratio=max_invalid_ratio).validate(statement)
