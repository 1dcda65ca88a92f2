"""Rule engine package."""

from statement_ledger.rules.engine import (
    CompiledRule,
    CompiledRuleSet,
    category_state_for,
    classify,
    compile_rules,
    match_text,
    pattern_error,
)

__all__ = [
    "CompiledRule",
    "CompiledRuleSet",
    "category_state_for",
    "classify",
    "compile_rules",
    "match_text",
    "pattern_error",
]
