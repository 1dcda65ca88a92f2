"""
Tests for the categorization rule engine.
"""

import pytest

from conftest import raw_transaction
from statement_ledger.models.rules import (
    CategorizationRule,
    CategoryState,
    CategoryStateKind,
    Classification,
    ClassificationOutcome,
    MatchField,
    PatternKind,
    RuleCategory,
)
from statement_ledger.rules import (
    category_state_for,
    classify,
    compile_rules,
    match_text,
    pattern_error,
)


def expense_rule(pattern, account="5200", **kwargs) -> CategorizationRule:
    return CategorizationRule(
        pattern=pattern,
        target_category=RuleCategory.EXPENSE,
        target_account_ref=account,
        **kwargs,
    )


class TestMatching:
    """Tests for the three pattern kinds."""

    def test_contains_is_case_insensitive(self):
        rule = expense_rule("coffee")
        result = classify(raw_transaction(name="BLUE BOTTLE COFFEE"), [rule])
        assert result == Classification.category("5200", rule_id=rule.id)

    def test_exact_ignores_case_and_surrounding_space(self):
        rule = expense_rule("Netflix", pattern_kind=PatternKind.EXACT)
        assert classify(raw_transaction(name="NETFLIX.COM"), [rule]).unmatched
        assert classify(raw_transaction(name="  netflix "), [rule]).outcome == ClassificationOutcome.CATEGORY

    def test_regex_searches_anywhere(self):
        rule = expense_rule(r"uber\s*(eats)?", pattern_kind=PatternKind.REGEX)
        assert not classify(raw_transaction(name="UBER   EATS SF"), [rule]).unmatched
        assert classify(raw_transaction(name="LYFT"), [rule]).unmatched

    def test_invalid_regex_falls_back_to_substring(self):
        """Test that a broken regex still matches as plain text."""
        rule = expense_rule("AMZN*(", pattern_kind=PatternKind.REGEX)
        assert not classify(raw_transaction(name="amzn*( marketplace"), [rule]).unmatched
        assert classify(raw_transaction(name="AMZN MKTP"), [rule]).unmatched

    def test_pattern_error_reports_broken_regex_only(self):
        assert pattern_error("AMZN*(", PatternKind.REGEX) is not None
        assert pattern_error("AMZN*(", PatternKind.CONTAINS) is None
        assert pattern_error("^AMZN", PatternKind.REGEX) is None

    def test_match_fields(self):
        tx = raw_transaction(name="CHECK 1042", memo="Landlord")
        assert match_text(tx, MatchField.NAME) == "CHECK 1042"
        assert match_text(tx, MatchField.MEMO) == "Landlord"
        assert match_text(tx, MatchField.BOTH) == "CHECK 1042 Landlord"

    def test_memo_rule_ignores_name(self):
        rule = expense_rule("landlord", account="5100", match_field=MatchField.MEMO)
        assert not classify(raw_transaction(name="CHECK", memo="Landlord Jan"), [rule]).unmatched
        assert classify(raw_transaction(name="LANDLORD"), [rule]).unmatched


class TestPriority:
    """Tests for evaluation order."""

    def test_higher_priority_wins(self):
        general = expense_rule("amazon", account="5900", priority=1)
        specific = expense_rule("amazon prime", account="5400", priority=5)
        result = classify(raw_transaction(name="AMAZON PRIME VIDEO"), [general, specific])
        assert result.account_ref == "5400"

    def test_ties_keep_insertion_order(self):
        """Test that equal priority never reorders by pattern length."""
        first = expense_rule("shop", account="5900", sequence=1)
        second = expense_rule("coffee shop", account="5200", sequence=2)
        result = classify(raw_transaction(name="COFFEE SHOP"), [second, first])
        assert result.rule_id == first.id

    def test_ties_without_sequence_keep_list_order(self):
        first = expense_rule("shop", account="5900")
        second = expense_rule("coffee", account="5200")
        assert classify(raw_transaction(name="COFFEE SHOP"), [first, second]).rule_id == first.id
        assert classify(raw_transaction(name="COFFEE SHOP"), [second, first]).rule_id == second.id

    def test_inactive_rules_are_skipped(self):
        rule = expense_rule("coffee", is_active=False)
        assert classify(raw_transaction(), [rule]).unmatched
        assert len(compile_rules([rule])) == 0

    def test_compiled_set_is_reused(self):
        rule = expense_rule("coffee")
        compiled = compile_rules([rule])
        assert classify(raw_transaction(), compiled=compiled).rule_id == rule.id
        assert compiled.first_match(raw_transaction(name="TEA")) is None
        assert compiled.first_match(raw_transaction()).rule.id == rule.id


class TestScopeAndTargets:
    """Tests for account scope and rule targets."""

    def test_scoped_rule_applies_only_to_its_account(self):
        rule = expense_rule("coffee", account_ref="bank-1")
        assert not classify(raw_transaction(), [rule], account_ref="bank-1").unmatched
        assert classify(raw_transaction(), [rule], account_ref="bank-2").unmatched
        assert classify(raw_transaction(), [rule]).unmatched

    def test_ignore_rule(self):
        rule = CategorizationRule(pattern="pending", target_category=RuleCategory.IGNORE)
        result = classify(raw_transaction(name="PENDING AUTH"), [rule])
        assert result.outcome == ClassificationOutcome.IGNORED

    def test_transfer_rule(self):
        rule = CategorizationRule(
            pattern="online transfer",
            target_category=RuleCategory.TRANSFER,
            transfer_account_ref="savings-1",
        )
        result = classify(raw_transaction(name="ONLINE TRANSFER TO SAV"), [rule])
        assert result.outcome == ClassificationOutcome.TRANSFER
        assert result.account_ref == "savings-1"

    def test_rule_targets_are_required(self):
        with pytest.raises(ValueError):
            CategorizationRule(pattern="x", target_category=RuleCategory.EXPENSE)
        with pytest.raises(ValueError):
            CategorizationRule(pattern="x", target_category=RuleCategory.TRANSFER)


class TestCategoryState:
    """Tests for mapping classifications to stored category states."""

    def test_category(self):
        assert category_state_for(Classification.category("5200")) == CategoryState.category("5200")

    def test_unmatched_is_uncategorized(self):
        state = category_state_for(Classification.no_match())
        assert state.kind == CategoryStateKind.UNCATEGORIZED
        assert not state.produces_journal_entry

    def test_detected_transfer_needs_resolved_counter(self):
        classification = Classification.transfer(transfer_id="transfer-0-1")
        with pytest.raises(ValueError):
            category_state_for(classification)
        assert category_state_for(classification, counter_account_ref="bank-2").ref == "bank-2"

    def test_only_category_produces_entries(self):
        assert CategoryState.category("5200").produces_journal_entry
        assert not CategoryState.transfer("bank-2").produces_journal_entry
        assert not CategoryState.ignored().produces_journal_entry
