"""
Categorization Models

Rules, the classification a rule produces, and the category state stored on
a transaction.

DESIGN DECISION: Classification and CategoryState are tagged values (an
outcome/kind enum plus the reference it carries) rather than a handful of
loosely related optional fields. Their validators make the impossible
combinations unrepresentable, e.g. a category state without an account.
"""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, model_validator


# =============================================================================
# ENUMS
# =============================================================================

class PatternKind(str, Enum):
    """How a rule's pattern is compared with transaction text."""
    EXACT = "exact"
    CONTAINS = "contains"
    REGEX = "regex"


class MatchField(str, Enum):
    """Which transaction text a rule looks at."""
    NAME = "name"
    MEMO = "memo"
    BOTH = "both"


class RuleCategory(str, Enum):
    """What a matching rule does with a transaction."""
    REVENUE = "revenue"
    EXPENSE = "expense"
    TRANSFER = "transfer"
    IGNORE = "ignore"


class ClassificationOutcome(str, Enum):
    UNMATCHED = "unmatched"
    CATEGORY = "category"
    TRANSFER = "transfer"
    IGNORED = "ignored"


class CategoryStateKind(str, Enum):
    UNCATEGORIZED = "uncategorized"
    CATEGORY = "category"
    TRANSFER = "transfer"
    IGNORED = "ignored"


# =============================================================================
# RULES
# =============================================================================

class CategorizationRule(BaseModel):
    """
    A user-managed pattern that categorizes transactions.

    Rules are evaluated in descending priority. Ties are broken by
    `sequence` (insertion order assigned by storage), then by list order.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(default_factory=lambda: str(uuid4()))
    pattern: str = Field(
        ...,
        min_length=1,
        max_length=500,
        description="Text or regular expression to look for"
    )
    pattern_kind: PatternKind = PatternKind.CONTAINS
    match_field: MatchField = MatchField.NAME
    target_category: RuleCategory
    target_account_ref: Optional[str] = Field(
        default=None,
        description="Chart account that receives revenue/expense matches"
    )
    transfer_account_ref: Optional[str] = Field(
        default=None,
        description="Bank account on the other side of a transfer match"
    )
    account_ref: Optional[str] = Field(
        default=None,
        description="Restrict the rule to one bank account"
    )
    is_active: bool = True
    priority: int = 0
    sequence: int = Field(
        default=0,
        ge=0,
        description="Insertion order, assigned when the rule is stored"
    )
    created_at: datetime = Field(default_factory=datetime.utcnow)

    @model_validator(mode='after')
    def validate_targets(self) -> 'CategorizationRule':
        if self.target_category in (RuleCategory.REVENUE, RuleCategory.EXPENSE):
            if not self.target_account_ref:
                raise ValueError(
                    f"A {self.target_category.value} rule needs a target account"
                )
        if self.target_category == RuleCategory.TRANSFER and not self.transfer_account_ref:
            raise ValueError("A transfer rule needs a transfer account")
        return self


# =============================================================================
# CLASSIFICATION
# =============================================================================

class Classification(BaseModel):
    """
    Result of running the rule engine (or the transfer detector) over one
    transaction.
    """
    model_config = ConfigDict(frozen=True)

    outcome: ClassificationOutcome
    account_ref: Optional[str] = Field(
        default=None,
        description="Chart account (CATEGORY) or counter bank account (TRANSFER)"
    )
    rule_id: Optional[str] = Field(
        default=None,
        description="Rule that produced this classification"
    )
    transfer_id: Optional[str] = Field(
        default=None,
        description="Detected transfer that produced this classification"
    )

    @model_validator(mode='after')
    def validate_reference(self) -> 'Classification':
        if self.outcome == ClassificationOutcome.CATEGORY and not self.account_ref:
            raise ValueError("A category classification needs an account")
        if (
            self.outcome == ClassificationOutcome.TRANSFER
            and not self.account_ref
            and not self.transfer_id
        ):
            raise ValueError("A transfer classification needs a counter account or a transfer")
        return self

    @property
    def unmatched(self) -> bool:
        return self.outcome == ClassificationOutcome.UNMATCHED

    @classmethod
    def no_match(cls) -> "Classification":
        return cls(outcome=ClassificationOutcome.UNMATCHED)

    @classmethod
    def category(cls, account_ref: str, rule_id: Optional[str] = None) -> "Classification":
        return cls(outcome=ClassificationOutcome.CATEGORY, account_ref=account_ref, rule_id=rule_id)

    @classmethod
    def transfer(
        cls,
        account_ref: Optional[str] = None,
        rule_id: Optional[str] = None,
        transfer_id: Optional[str] = None,
    ) -> "Classification":
        return cls(
            outcome=ClassificationOutcome.TRANSFER,
            account_ref=account_ref,
            rule_id=rule_id,
            transfer_id=transfer_id,
        )

    @classmethod
    def ignored(cls, rule_id: Optional[str] = None) -> "Classification":
        return cls(outcome=ClassificationOutcome.IGNORED, rule_id=rule_id)


class CategoryState(BaseModel):
    """Category state of a stored transaction."""
    model_config = ConfigDict(frozen=True)

    kind: CategoryStateKind = CategoryStateKind.UNCATEGORIZED
    ref: Optional[str] = Field(
        default=None,
        description="Chart account (CATEGORY) or counter bank account (TRANSFER)"
    )

    @model_validator(mode='after')
    def validate_reference(self) -> 'CategoryState':
        needs_ref = self.kind in (CategoryStateKind.CATEGORY, CategoryStateKind.TRANSFER)
        if needs_ref and not self.ref:
            raise ValueError(f"Category state '{self.kind.value}' needs a reference")
        if not needs_ref and self.ref:
            raise ValueError(f"Category state '{self.kind.value}' takes no reference")
        return self

    @property
    def produces_journal_entry(self) -> bool:
        """Only real categorizations reach the ledger."""
        return self.kind == CategoryStateKind.CATEGORY

    @classmethod
    def uncategorized(cls) -> "CategoryState":
        return cls()

    @classmethod
    def category(cls, account_ref: str) -> "CategoryState":
        return cls(kind=CategoryStateKind.CATEGORY, ref=account_ref)

    @classmethod
    def transfer(cls, counter_account_ref: str) -> "CategoryState":
        return cls(kind=CategoryStateKind.TRANSFER, ref=counter_account_ref)

    @classmethod
    def ignored(cls) -> "CategoryState":
        return cls(kind=CategoryStateKind.IGNORED)
