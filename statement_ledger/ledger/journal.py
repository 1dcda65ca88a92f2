"""
Double-Entry Ledger

The ledger is the only component that writes journal lines.

CRITICAL INVARIANT: for every journal entry ever accepted,
sum(debit lines) == sum(credit lines) exactly. Line amounts are rounded to
the minor unit of the entry's currency before they are summed and stored.
An unbalanced entry is rejected whole; nothing is ever partially written
or nudged into balance.

DESIGN DECISION: Balances are never stored. `balance_of` replays every
journal line touching the account, so balances and reports always agree
with the journal. Replay is linear in the number of entries per account,
which is fine for personal-finance volumes; a per-account checkpoint
(cached balance as of an entry sequence, invalidated by any change at or
before it) is the upgrade path if that stops being true.

Concurrency: writes touching the same accounts are serialized with
per-account asyncio locks, acquired in sorted order.
"""

import asyncio
from contextlib import asynccontextmanager
from datetime import date
from decimal import Decimal
from typing import AsyncIterator, Iterable, Optional
from uuid import UUID

import structlog

from statement_ledger.audit import AuditLogger
from statement_ledger.config import LedgerSettings, get_settings
from statement_ledger.ledger.chart import ChartOfAccounts
from statement_ledger.ledger.errors import (
    AccountInUseError,
    AccountNotFoundError,
    EntryNotFoundError,
    InactiveAccountError,
    InvalidAccountError,
    LedgerError,
    UnbalancedEntryError,
)
from statement_ledger.ledger import reports
from statement_ledger.models.ledger import (
    AccountType,
    BalanceSheetReport,
    CashFlowReport,
    ChartAccount,
    EntrySide,
    JournalEntry,
    JournalLine,
    ProfitAndLossReport,
    ReconciliationResult,
    Transaction,
    TrialBalance,
)
from statement_ledger.models.money import ZERO, round_money, to_minor_units
from statement_ledger.models.rules import CategoryState, CategoryStateKind
from statement_ledger.models.statement import DateRange
from statement_ledger.services.storage import (
    AccountStorageInterface,
    JournalStorageInterface,
    RuleStorageInterface,
    TransactionStorageInterface,
)

logger = structlog.get_logger(__name__)


class AccountLocks:
    """Per-key asyncio locks, always taken in sorted key order."""

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock(self, key: str) -> asyncio.Lock:
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
        return self._locks[key]

    @asynccontextmanager
    async def hold(self, keys: Iterable[str]) -> AsyncIterator[None]:
        locks = [self._lock(key) for key in sorted(set(keys))]
        acquired: list[asyncio.Lock] = []
        try:
            for lock in locks:
                await lock.acquire()
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()


class Ledger:
    """
    Journal posting, balance replay and account maintenance.
    """

    def __init__(
        self,
        accounts: AccountStorageInterface,
        journal: JournalStorageInterface,
        transactions: TransactionStorageInterface,
        rules: RuleStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[LedgerSettings] = None,
    ):
        self._accounts = accounts
        self._journal = journal
        self._transactions = transactions
        self._rules = rules
        self._audit = audit_logger or AuditLogger()
        self._settings = settings or get_settings().ledger
        self.chart = ChartOfAccounts(accounts, audit_logger=self._audit)
        self.locks = AccountLocks()

    # =========================================================================
    # POSTING
    # =========================================================================

    async def _require_postable(self, account_refs: Iterable[str]) -> dict[str, ChartAccount]:
        found = {}
        for ref in sorted(set(account_refs)):
            account = await self._accounts.get_chart_account(ref)
            if account is None:
                raise AccountNotFoundError(f"Chart account not found: {ref}")
            if not account.is_active:
                raise InactiveAccountError(f"Chart account is inactive: {ref}")
            found[ref] = account
        return found

    async def post_journal_entry(
        self,
        lines: list[JournalLine],
        entry_date: date,
        description: str = "",
        source_transaction_ref: Optional[str] = None,
        currency_code: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> JournalEntry:
        """
        Validate and write one journal entry.

        Raises:
            UnbalancedEntryError: Debits and credits differ once every line is
                rounded to the currency's minor unit
            AccountNotFoundError: A line references an unknown account
            InactiveAccountError: A line references a deactivated account
            LedgerError: Fewer than two lines, or nothing but zero amounts
        """
        currency = (currency_code or self._settings.base_currency).upper()
        if len(lines) < 2:
            raise LedgerError("A journal entry needs at least two lines")

        lines = [
            line.model_copy(update={"amount": round_money(line.amount, currency)})
            for line in lines
        ]
        debits = sum((l.amount for l in lines if l.side == EntrySide.DEBIT), ZERO)
        credits = sum((l.amount for l in lines if l.side == EntrySide.CREDIT), ZERO)
        if debits != credits:
            await self._audit.log_journal_entry_rejected(
                reason="unbalanced",
                debits=str(debits),
                credits=str(credits),
                correlation_id=correlation_id,
            )
            raise UnbalancedEntryError(debits, credits, currency)
        if to_minor_units(debits, currency) == 0:
            raise LedgerError("A journal entry must move a non-zero amount")

        await self._require_postable(line.account_ref for line in lines)

        entry = JournalEntry(
            entry_date=entry_date,
            description=description[:500],
            currency_code=currency,
            lines=lines,
            source_transaction_ref=source_transaction_ref,
        )
        async with self.locks.hold(entry.account_refs):
            saved = await self._journal.save_journal_entry(entry)

        await self._audit.log_journal_entry_posted(
            entry_id=saved.id,
            amount=str(debits),
            account_refs=sorted(saved.account_refs),
            correlation_id=correlation_id,
        )
        return saved

    async def bank_side_account(self, bank_account_ref: str) -> ChartAccount:
        """Ledger account that mirrors a bank account."""
        bank = await self._accounts.get_bank_account(bank_account_ref)
        if bank is None:
            raise AccountNotFoundError(f"Bank account not found: {bank_account_ref}")
        if not bank.chart_account_ref:
            raise AccountNotFoundError(f"Bank account {bank_account_ref} has no ledger account")
        return await self.chart.get(bank.chart_account_ref)

    async def create_entry_from_transaction(
        self,
        transaction: Transaction,
        category_account_ref: str,
        bank_account_ref: str,
        correlation_id: Optional[UUID] = None,
    ) -> JournalEntry:
        """
        Two-line entry for a categorized bank transaction.

        Direction depends on the bank side's type and the amount sign:

            asset,     money in  (+)  ->  debit bank,  credit category
            asset,     money out (-)  ->  credit bank, debit category
            liability, charge    (+)  ->  credit bank, debit category
            liability, payment   (-)  ->  debit bank,  credit category
        """
        bank_side = await self.bank_side_account(bank_account_ref)
        bank = await self._accounts.get_bank_account(bank_account_ref)

        is_liability = bank_side.type == AccountType.LIABILITY
        money_in = transaction.amount > 0
        bank_line_side = EntrySide.DEBIT if money_in != is_liability else EntrySide.CREDIT

        amount = abs(transaction.amount)
        lines = [
            JournalLine(account_ref=bank_side.id, amount=amount, side=bank_line_side),
            JournalLine(account_ref=category_account_ref, amount=amount, side=bank_line_side.opposite),
        ]
        return await self.post_journal_entry(
            lines=lines,
            entry_date=transaction.posted_date,
            description=transaction.payee_name,
            source_transaction_ref=transaction.id,
            currency_code=bank.currency_code,
            correlation_id=correlation_id,
        )

    async def retract_entry(
        self,
        entry_id: str,
        reason: str,
        correlation_id: Optional[UUID] = None,
    ) -> JournalEntry:
        """Remove an entry whose source categorization changed."""
        entry = await self._journal.get_journal_entry(entry_id)
        if entry is None:
            raise EntryNotFoundError(f"Journal entry not found: {entry_id}")
        async with self.locks.hold(entry.account_refs):
            await self._journal.delete_journal_entry(entry_id)
        await self._audit.log_journal_entry_retracted(
            entry_id=entry_id,
            reason=reason,
            correlation_id=correlation_id,
        )
        return entry

    async def entries_for_transaction(self, transaction_id: str) -> list[JournalEntry]:
        return [
            entry for entry in await self._journal.list_journal_entries()
            if entry.source_transaction_ref == transaction_id
        ]

    def _balancing_lines(
        self,
        account: ChartAccount,
        amount: Decimal,
        offset_ref: str,
    ) -> list[JournalLine]:
        """Lines that move `account`'s balance by `amount` against `offset_ref`."""
        side = account.normal_balance_side if amount > 0 else account.normal_balance_side.opposite
        magnitude = abs(amount)
        return [
            JournalLine(account_ref=account.id, amount=magnitude, side=side),
            JournalLine(account_ref=offset_ref, amount=magnitude, side=side.opposite),
        ]

    async def record_opening_balance(
        self,
        account_ref: str,
        amount: Decimal,
        as_of: date,
        correlation_id: Optional[UUID] = None,
    ) -> JournalEntry:
        """
        Post an opening balance against opening balance equity.

        `amount` is in the account's own terms: positive means money held
        for an asset and money owed for a liability.
        """
        account = await self.chart.get(account_ref)
        return await self.post_journal_entry(
            lines=self._balancing_lines(
                account, amount, self._settings.opening_balance_account_ref
            ),
            entry_date=as_of,
            description=f"Opening balance: {account.name}",
            correlation_id=correlation_id,
        )

    # =========================================================================
    # BALANCES
    # =========================================================================

    async def balance_of(self, account_ref: str, as_of: Optional[date] = None) -> Decimal:
        """
        Balance of an account relative to its normal side, replayed from the
        journal, optionally up to and including `as_of`.
        """
        account = await self.chart.get(account_ref)
        entries = await self._journal.list_journal_entries(account_ref=account_ref, date_to=as_of)
        return reports.replay_balance(account, entries)

    async def running_balances(self, account_ref: str) -> list[tuple[str, date, Decimal]]:
        """(entry id, date, balance after the entry) for each entry on the account."""
        account = await self.chart.get(account_ref)
        entries = await self._journal.list_journal_entries(account_ref=account_ref)
        balance = ZERO
        history = []
        for entry in entries:
            for line in entry.lines:
                if line.account_ref == account.id:
                    balance += line.signed_for(account.normal_balance_side)
            history.append((entry.id, entry.entry_date, balance))
        return history

    async def reconcile(
        self,
        bank_account_ref: str,
        statement_balance: Decimal,
        as_of: date,
        post_adjustment: bool = False,
        correlation_id: Optional[UUID] = None,
    ) -> ReconciliationResult:
        """
        Compare the replayed balance of a bank account's ledger account with
        the balance its statement reports.

        Card issuers report an amount owed as a negative balance, so the
        statement balance of a liability is negated before comparing.
        With `post_adjustment`, a non-zero discrepancy is booked against the
        adjustment equity account.
        """
        account = await self.bank_side_account(bank_account_ref)
        bank = await self._accounts.get_bank_account(bank_account_ref)

        actual = -statement_balance if account.type == AccountType.LIABILITY else statement_balance
        expected = await self.balance_of(account.id, as_of=as_of)
        discrepancy = round_money(actual - expected, bank.currency_code)

        adjustment_ref = None
        if post_adjustment and discrepancy != ZERO:
            entry = await self.post_journal_entry(
                lines=self._balancing_lines(
                    account, discrepancy, self._settings.adjustment_account_ref
                ),
                entry_date=as_of,
                description=f"Reconciliation adjustment: {account.name}",
                currency_code=bank.currency_code,
                correlation_id=correlation_id,
            )
            adjustment_ref = entry.id

        return ReconciliationResult(
            account_ref=account.id,
            as_of=as_of,
            expected_balance=expected,
            actual_balance=actual,
            discrepancy=discrepancy,
            adjustment_entry_ref=adjustment_ref,
        )

    # =========================================================================
    # REPORTS
    # =========================================================================

    async def profit_and_loss(self, period: DateRange) -> ProfitAndLossReport:
        accounts = await self._accounts.list_chart_accounts()
        entries = await self._journal.list_journal_entries(
            date_from=period.start, date_to=period.end
        )
        return reports.build_profit_and_loss(accounts, entries, period)

    async def balance_sheet(self, as_of: Optional[date] = None) -> BalanceSheetReport:
        accounts = await self._accounts.list_chart_accounts()
        entries = await self._journal.list_journal_entries(date_to=as_of)
        return reports.build_balance_sheet(accounts, entries, as_of)

    async def cash_flow(self, period: DateRange) -> CashFlowReport:
        accounts = await self._accounts.list_chart_accounts()
        entries = await self._journal.list_journal_entries(
            date_from=period.start, date_to=period.end
        )
        return reports.build_cash_flow(accounts, entries, period)

    async def trial_balance(self, as_of: Optional[date] = None) -> TrialBalance:
        entries = await self._journal.list_journal_entries(date_to=as_of)
        return reports.build_trial_balance(entries, as_of)

    # =========================================================================
    # ACCOUNT MAINTENANCE
    # =========================================================================

    async def account_references(self, account_ref: str) -> dict[str, int]:
        """Count what still points at a chart account."""
        entries = await self._journal.list_journal_entries(account_ref=account_ref)
        transactions = await self._transactions.list_transactions(
            category_kind=CategoryStateKind.CATEGORY
        )
        rules = await self._rules.list_rules()
        return {
            "journal_entries": len(entries),
            "transactions": sum(1 for tx in transactions if tx.category_state.ref == account_ref),
            "rules": sum(1 for rule in rules if rule.target_account_ref == account_ref),
            "children": len(await self.chart.children_of(account_ref)),
        }

    async def deactivate_account(
        self,
        account_ref: str,
        correlation_id: Optional[UUID] = None,
    ) -> ChartAccount:
        """
        Delete an account from use. Accounts are deactivated, never removed.

        Raises:
            AccountInUseError: System account, active children, or any journal
                               line, transaction or rule still references it
        """
        account = await self.chart.get(account_ref)
        if account.is_system:
            raise AccountInUseError(f"System account {account.code} cannot be removed")

        references = await self.account_references(account_ref)
        in_use = {name: count for name, count in references.items() if count}
        if in_use:
            summary = ", ".join(f"{count} {name}" for name, count in sorted(in_use.items()))
            raise AccountInUseError(f"Account {account.code} is still referenced by {summary}")

        account.is_active = False
        await self._accounts.save_chart_account(account)
        await self._audit.log_account_deactivated(account_id=account.id, correlation_id=correlation_id)
        return account

    async def merge_accounts(
        self,
        removed_ref: str,
        surviving_ref: str,
        correlation_id: Optional[UUID] = None,
    ) -> dict[str, int]:
        """
        Re-point everything referencing `removed_ref` to `surviving_ref`,
        then deactivate `removed_ref`.

        Returns:
            Counts of re-pointed journal entries, transactions, rules,
            children and bank accounts
        """
        if removed_ref == surviving_ref:
            raise InvalidAccountError("An account cannot be merged into itself")
        removed = await self.chart.get(removed_ref)
        surviving = await self.chart.get(surviving_ref)
        if removed.is_system:
            raise AccountInUseError(f"System account {removed.code} cannot be merged away")
        if not surviving.is_active:
            raise InactiveAccountError(f"Surviving account is inactive: {surviving_ref}")
        if removed.type != surviving.type:
            raise InvalidAccountError(
                f"Cannot merge {removed.type.value} account {removed.code} into "
                f"{surviving.type.value} account {surviving.code}"
            )

        entries = await self._journal.list_journal_entries(account_ref=removed_ref)
        lock_keys = {removed_ref, surviving_ref}
        for entry in entries:
            lock_keys |= entry.account_refs

        counts = {"journal_entries": 0, "transactions": 0, "rules": 0, "children": 0, "bank_accounts": 0}

        async with self.locks.hold(lock_keys):
            for entry in entries:
                entry.lines = [
                    JournalLine(account_ref=surviving_ref, amount=line.amount, side=line.side)
                    if line.account_ref == removed_ref else line
                    for line in entry.lines
                ]
                await self._journal.save_journal_entry(entry)
                counts["journal_entries"] += 1

            for tx in await self._transactions.list_transactions(
                category_kind=CategoryStateKind.CATEGORY
            ):
                if tx.category_state.ref == removed_ref:
                    tx.category_state = CategoryState.category(surviving_ref)
                    await self._transactions.save_transaction(tx)
                    counts["transactions"] += 1

        for rule in await self._rules.list_rules():
            if rule.target_account_ref == removed_ref:
                rule.target_account_ref = surviving_ref
                await self._rules.save_rule(rule)
                counts["rules"] += 1

        for child in await self.chart.children_of(removed_ref, include_inactive=True):
            child.parent_ref = surviving_ref
            await self._accounts.save_chart_account(child)
            counts["children"] += 1

        for bank in await self._accounts.list_bank_accounts():
            if bank.chart_account_ref == removed_ref:
                bank.chart_account_ref = surviving_ref
                await self._accounts.save_bank_account(bank)
                counts["bank_accounts"] += 1

        removed.is_active = False
        await self._accounts.save_chart_account(removed)

        await self._audit.log_account_merged(
            removed_id=removed_ref,
            surviving_id=surviving_ref,
            repointed=counts,
            correlation_id=correlation_id,
        )
        logger.info("accounts_merged", removed=removed_ref, surviving=surviving_ref, **counts)
        return counts
