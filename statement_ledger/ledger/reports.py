"""
Financial Reports

Pure aggregations over journal entries. The ledger fetches accounts and
entries from storage and hands them here; nothing in this module holds
state, so reports cannot drift from the journal.

Sign conventions:
- Every account balance is measured from its normal side (debit for
  assets and expenses, credit for liabilities, equity and revenue), so a
  normal balance is positive.
- Retained earnings are cumulative revenue minus expenses up to the
  balance sheet date, so assets == liabilities + equity always holds.
"""

from datetime import date
from decimal import Decimal
from typing import Iterable, Optional

from statement_ledger.models.ledger import (
    AccountType,
    BalanceSheetReport,
    CashFlowReport,
    ChartAccount,
    EntrySide,
    JournalEntry,
    ProfitAndLossReport,
    TrialBalance,
    TrialBalanceLine,
)
from statement_ledger.models.money import ZERO
from statement_ledger.models.statement import DateRange


def replay_balance(account: ChartAccount, entries: Iterable[JournalEntry]) -> Decimal:
    """Fold every line on `account` into a balance relative to its normal side."""
    side = account.normal_balance_side
    return sum(
        (
            line.signed_for(side)
            for entry in entries
            for line in entry.lines
            if line.account_ref == account.id
        ),
        ZERO,
    )


def _balances_by_account(
    accounts: Iterable[ChartAccount],
    entries: Iterable[JournalEntry],
) -> dict[str, tuple[ChartAccount, Decimal]]:
    by_id = {account.id: account for account in accounts}
    balances: dict[str, Decimal] = {}
    for entry in entries:
        for line in entry.lines:
            account = by_id.get(line.account_ref)
            if account is None:
                continue
            balances[account.id] = (
                balances.get(account.id, ZERO) + line.signed_for(account.normal_balance_side)
            )
    return {ref: (by_id[ref], amount) for ref, amount in balances.items()}


def build_profit_and_loss(
    accounts: Iterable[ChartAccount],
    entries: Iterable[JournalEntry],
    period: DateRange,
) -> ProfitAndLossReport:
    """Revenue and expenses of the entries dated inside `period`."""
    revenue = ZERO
    expenses = ZERO
    by_account: dict[str, Decimal] = {}

    in_period = [e for e in entries if period.contains(e.entry_date)]
    for ref, (account, amount) in _balances_by_account(accounts, in_period).items():
        if account.type == AccountType.REVENUE:
            revenue += amount
        elif account.type == AccountType.EXPENSE:
            expenses += amount
        else:
            continue
        by_account[ref] = amount

    return ProfitAndLossReport(
        period=period,
        revenue=revenue,
        expenses=expenses,
        net_income=revenue - expenses,
        by_account=by_account,
    )


def build_balance_sheet(
    accounts: Iterable[ChartAccount],
    entries: Iterable[JournalEntry],
    as_of: Optional[date] = None,
) -> BalanceSheetReport:
    """Balances of every account as of a date (all history when None)."""
    if as_of is not None:
        entries = [e for e in entries if e.entry_date <= as_of]

    totals = {account_type: ZERO for account_type in AccountType}
    by_account: dict[str, Decimal] = {}
    for ref, (account, amount) in _balances_by_account(accounts, entries).items():
        totals[account.type] += amount
        if account.type in (AccountType.ASSET, AccountType.LIABILITY, AccountType.EQUITY):
            by_account[ref] = amount

    retained = totals[AccountType.REVENUE] - totals[AccountType.EXPENSE]
    return BalanceSheetReport(
        as_of=as_of,
        assets=totals[AccountType.ASSET],
        liabilities=totals[AccountType.LIABILITY],
        equity=totals[AccountType.EQUITY] + retained,
        retained_earnings=retained,
        by_account=by_account,
    )


def build_cash_flow(
    accounts: Iterable[ChartAccount],
    entries: Iterable[JournalEntry],
    period: DateRange,
) -> CashFlowReport:
    """
    Money in and out of cash accounts (ledger accounts backed by a bank
    account) during `period`.

    Entries that only move money between cash accounts are internal and
    left out.
    """
    cash = {account.id for account in accounts if account.is_cash}
    inflows = ZERO
    outflows = ZERO
    for entry in entries:
        if not period.contains(entry.entry_date):
            continue
        if entry.account_refs <= cash:
            continue
        for line in entry.lines:
            if line.account_ref not in cash:
                continue
            if line.side == EntrySide.DEBIT:
                inflows += line.amount
            else:
                outflows += line.amount
    return CashFlowReport(
        period=period,
        inflows=inflows,
        outflows=outflows,
        net=inflows - outflows,
    )


def build_trial_balance(
    entries: Iterable[JournalEntry],
    as_of: Optional[date] = None,
) -> TrialBalance:
    """Debit and credit totals per account; the grand totals must agree."""
    debits: dict[str, Decimal] = {}
    credits: dict[str, Decimal] = {}
    for entry in entries:
        if as_of is not None and entry.entry_date > as_of:
            continue
        for line in entry.lines:
            target = debits if line.side == EntrySide.DEBIT else credits
            target[line.account_ref] = target.get(line.account_ref, ZERO) + line.amount

    refs = sorted(set(debits) | set(credits))
    lines = [
        TrialBalanceLine(
            account_ref=ref,
            debits=debits.get(ref, ZERO),
            credits=credits.get(ref, ZERO),
        )
        for ref in refs
    ]
    return TrialBalance(
        as_of=as_of,
        lines=lines,
        total_debits=sum(debits.values(), ZERO),
        total_credits=sum(credits.values(), ZERO),
    )
