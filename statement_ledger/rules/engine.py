"""
Rule Engine

Classifies a transaction against an ordered list of categorization rules.

DESIGN DECISION: `classify` is a pure function. It reads a transaction and a
rule list and returns a Classification; it never touches storage. Writing
the result anywhere is the import flow's job.

Evaluation order:
1. Inactive rules and rules scoped to another bank account are skipped.
2. Remaining rules are ordered by descending priority. Equal priorities keep
   insertion order (`sequence`, then list position). The sort is stable and
   never looks at how specific a pattern is.
3. The first matching rule wins. No further rules are evaluated.

A regex that does not compile is matched as a case-insensitive substring
instead. Saved rules may depend on this, so it is kept as documented
behavior; `pattern_error` lets a caller warn about such rules.
"""

import re
from typing import Callable, Iterable, Optional

import structlog

from statement_ledger.models.rules import (
    CategorizationRule,
    CategoryState,
    Classification,
    ClassificationOutcome,
    MatchField,
    PatternKind,
    RuleCategory,
)
from statement_ledger.models.statement import RawTransaction

logger = structlog.get_logger(__name__)

Matcher = Callable[[str], bool]


# =============================================================================
# MATCHERS
# =============================================================================

def _exact_matcher(pattern: str) -> Matcher:
    expected = pattern.strip().casefold()
    return lambda text: text.strip().casefold() == expected


def _contains_matcher(pattern: str) -> Matcher:
    needle = pattern.casefold()
    return lambda text: needle in text.casefold()


def _regex_matcher(pattern: str) -> Matcher:
    try:
        compiled = re.compile(pattern, re.IGNORECASE)
    except re.error as e:
        logger.debug("rule_regex_fallback", pattern=pattern, error=str(e))
        return _contains_matcher(pattern)
    return lambda text: compiled.search(text) is not None


_MATCHER_FACTORIES = {
    PatternKind.EXACT: _exact_matcher,
    PatternKind.CONTAINS: _contains_matcher,
    PatternKind.REGEX: _regex_matcher,
}


def pattern_error(pattern: str, pattern_kind: PatternKind) -> Optional[str]:
    """
    Describe why a regex pattern will not compile.

    Returns None for valid patterns and for non-regex kinds. Such rules are
    still accepted and fall back to substring matching.
    """
    if pattern_kind != PatternKind.REGEX:
        return None
    try:
        re.compile(pattern, re.IGNORECASE)
    except re.error as e:
        return str(e)
    return None


def match_text(transaction: RawTransaction, match_field: MatchField) -> str:
    """Select the transaction text a rule looks at."""
    name = transaction.payee_name or ""
    memo = transaction.memo or ""
    if match_field == MatchField.NAME:
        return name
    if match_field == MatchField.MEMO:
        return memo
    return f"{name} {memo}"


# =============================================================================
# COMPILED RULES
# =============================================================================

class CompiledRule:
    """A rule with its matcher built once."""

    def __init__(self, rule: CategorizationRule):
        self.rule = rule
        self._matcher = _MATCHER_FACTORIES[rule.pattern_kind](rule.pattern)

    def applies_to(self, account_ref: Optional[str]) -> bool:
        """Unscoped rules apply everywhere; scoped rules only to their account."""
        return self.rule.account_ref is None or self.rule.account_ref == account_ref

    def matches(self, transaction: RawTransaction) -> bool:
        return self._matcher(match_text(transaction, self.rule.match_field))

    def to_classification(self) -> Classification:
        rule = self.rule
        if rule.target_category == RuleCategory.IGNORE:
            return Classification.ignored(rule_id=rule.id)
        if rule.target_category == RuleCategory.TRANSFER:
            return Classification.transfer(account_ref=rule.transfer_account_ref, rule_id=rule.id)
        return Classification.category(rule.target_account_ref, rule_id=rule.id)


class CompiledRuleSet:
    """
    Active rules in evaluation order, with matchers compiled.

    Build one per batch and pass it to `classify` so patterns are compiled
    once rather than once per transaction.
    """

    def __init__(self, rules: Iterable[CategorizationRule]):
        active = [rule for rule in rules if rule.is_active]
        # sorted() is stable, so list position breaks remaining ties
        ordered = sorted(active, key=lambda rule: (-rule.priority, rule.sequence))
        self._rules = [CompiledRule(rule) for rule in ordered]

    def __len__(self) -> int:
        return len(self._rules)

    @property
    def rules(self) -> list[CategorizationRule]:
        return [compiled.rule for compiled in self._rules]

    def first_match(
        self,
        transaction: RawTransaction,
        account_ref: Optional[str] = None,
    ) -> Optional[CompiledRule]:
        for compiled in self._rules:
            if compiled.applies_to(account_ref) and compiled.matches(transaction):
                return compiled
        return None

    def classify(
        self,
        transaction: RawTransaction,
        account_ref: Optional[str] = None,
    ) -> Classification:
        winner = self.first_match(transaction, account_ref=account_ref)
        if winner is None:
            return Classification.no_match()
        return winner.to_classification()


def compile_rules(rules: Iterable[CategorizationRule]) -> CompiledRuleSet:
    return CompiledRuleSet(rules)


# =============================================================================
# PUBLIC API
# =============================================================================

def classify(
    transaction: RawTransaction,
    rules: Iterable[CategorizationRule] = (),
    compiled: Optional[CompiledRuleSet] = None,
    account_ref: Optional[str] = None,
) -> Classification:
    """
    Classify one transaction.

    Args:
        transaction: Transaction to classify
        rules: Rule list, in insertion order
        compiled: Rule set already compiled for this batch. When given,
                  `rules` is ignored.
        account_ref: Bank account the transaction belongs to, for
                     account-scoped rules. None matches only unscoped rules.

    Returns:
        The winning rule's Classification, or an unmatched one
    """
    if compiled is None:
        compiled = CompiledRuleSet(rules)
    return compiled.classify(transaction, account_ref=account_ref)


def category_state_for(
    classification: Classification,
    counter_account_ref: Optional[str] = None,
) -> CategoryState:
    """
    Map a classification to the category state stored on a transaction.

    Detected transfers carry the counter statement rather than a stored
    account, so the caller resolves and passes `counter_account_ref`.
    """
    outcome = classification.outcome
    if outcome == ClassificationOutcome.CATEGORY:
        return CategoryState.category(classification.account_ref)
    if outcome == ClassificationOutcome.TRANSFER:
        ref = counter_account_ref or classification.account_ref
        if not ref:
            raise ValueError("Transfer classification has no resolved counter account")
        return CategoryState.transfer(ref)
    if outcome == ClassificationOutcome.IGNORED:
        return CategoryState.ignored()
    return CategoryState.uncategorized()
