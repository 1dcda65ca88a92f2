"""
In-Memory Storage Implementation

Keeps every collection in dictionaries. Used by the test suite and as the
default backend; JsonFileStorage builds on it by persisting the same
dictionaries to disk after each write.

Models are copied on the way in and on the way out, so a caller mutating
an object it got back never changes what is stored.
"""

from datetime import date
from typing import Optional, TypeVar
from uuid import UUID

from pydantic import BaseModel

from statement_ledger.models.audit import AuditEvent
from statement_ledger.models.ledger import (
    BankAccount,
    ChartAccount,
    JournalEntry,
    Transaction,
)
from statement_ledger.models.rules import CategorizationRule, CategoryStateKind
from statement_ledger.services.storage.interface import (
    AccountStorageInterface,
    AuditStorageInterface,
    DuplicateError,
    JournalStorageInterface,
    RuleStorageInterface,
    TransactionStorageInterface,
)

ModelT = TypeVar("ModelT", bound=BaseModel)


def _copy(model: ModelT) -> ModelT:
    return model.model_copy(deep=True)


class InMemoryStorage(
    AccountStorageInterface,
    TransactionStorageInterface,
    JournalStorageInterface,
    RuleStorageInterface,
    AuditStorageInterface,
):
    """All storage interfaces backed by process memory."""

    def __init__(self):
        self._chart_accounts: dict[str, ChartAccount] = {}
        self._bank_accounts: dict[str, BankAccount] = {}
        self._transactions: dict[str, Transaction] = {}
        self._journal_entries: dict[str, JournalEntry] = {}
        self._rules: dict[str, CategorizationRule] = {}
        self._audit_events: list[AuditEvent] = []

        # Secondary indexes
        self._transaction_keys: dict[tuple[str, str], str] = {}
        self._bank_hashes: dict[str, str] = {}

        self._journal_sequence = 0
        self._rule_sequence = 0

    def _changed(self) -> None:
        """Hook called after every mutation."""

    # =========================================================================
    # ACCOUNTS
    # =========================================================================

    async def save_chart_account(self, account: ChartAccount) -> ChartAccount:
        for existing in self._chart_accounts.values():
            if existing.code == account.code and existing.id != account.id:
                raise DuplicateError(f"Account code already in use: {account.code}")
        self._chart_accounts[account.id] = _copy(account)
        self._changed()
        return _copy(account)

    async def get_chart_account(self, account_id: str) -> Optional[ChartAccount]:
        account = self._chart_accounts.get(account_id)
        return _copy(account) if account else None

    async def list_chart_accounts(self, include_inactive: bool = True) -> list[ChartAccount]:
        accounts = [
            _copy(a) for a in self._chart_accounts.values()
            if include_inactive or a.is_active
        ]
        accounts.sort(key=lambda a: a.code)
        return accounts

    async def save_bank_account(self, account: BankAccount) -> BankAccount:
        owner = self._bank_hashes.get(account.account_hash)
        if owner is not None and owner != account.id:
            raise DuplicateError(f"Bank account already exists: {account.masked_account_number}")
        previous = self._bank_accounts.get(account.id)
        if previous is not None and previous.account_hash != account.account_hash:
            del self._bank_hashes[previous.account_hash]
        self._bank_accounts[account.id] = _copy(account)
        self._bank_hashes[account.account_hash] = account.id
        self._changed()
        return _copy(account)

    async def get_bank_account(self, account_id: str) -> Optional[BankAccount]:
        account = self._bank_accounts.get(account_id)
        return _copy(account) if account else None

    async def get_bank_account_by_hash(self, account_hash: str) -> Optional[BankAccount]:
        account_id = self._bank_hashes.get(account_hash)
        if account_id is None:
            return None
        return _copy(self._bank_accounts[account_id])

    async def list_bank_accounts(self) -> list[BankAccount]:
        return [_copy(a) for a in self._bank_accounts.values()]

    # =========================================================================
    # TRANSACTIONS
    # =========================================================================

    async def save_transaction(self, transaction: Transaction) -> Transaction:
        key = (transaction.account_ref, transaction.external_id)
        owner = self._transaction_keys.get(key)
        if owner is not None and owner != transaction.id:
            raise DuplicateError(
                f"Transaction {transaction.external_id} already exists "
                f"for account {transaction.account_ref}"
            )
        previous = self._transactions.get(transaction.id)
        if previous is not None:
            self._transaction_keys.pop((previous.account_ref, previous.external_id), None)
        self._transactions[transaction.id] = _copy(transaction)
        self._transaction_keys[key] = transaction.id
        self._changed()
        return _copy(transaction)

    async def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        transaction = self._transactions.get(transaction_id)
        return _copy(transaction) if transaction else None

    async def find_transaction(
        self,
        account_ref: str,
        external_id: str,
    ) -> Optional[Transaction]:
        transaction_id = self._transaction_keys.get((account_ref, external_id))
        if transaction_id is None:
            return None
        return _copy(self._transactions[transaction_id])

    async def delete_transaction(self, transaction_id: str) -> bool:
        transaction = self._transactions.pop(transaction_id, None)
        if transaction is None:
            return False
        self._transaction_keys.pop((transaction.account_ref, transaction.external_id), None)
        self._changed()
        return True

    async def list_transactions(
        self,
        account_ref: Optional[str] = None,
        category_kind: Optional[CategoryStateKind] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> list[Transaction]:
        results = []
        for tx in self._transactions.values():
            if account_ref and tx.account_ref != account_ref:
                continue
            if category_kind and tx.category_state.kind != category_kind:
                continue
            if date_from and tx.posted_date < date_from:
                continue
            if date_to and tx.posted_date > date_to:
                continue
            results.append(_copy(tx))
        results.sort(key=lambda tx: (tx.posted_date, tx.imported_at))
        return results

    # =========================================================================
    # JOURNAL
    # =========================================================================

    async def save_journal_entry(self, entry: JournalEntry) -> JournalEntry:
        stored = _copy(entry)
        previous = self._journal_entries.get(entry.id)
        if previous is not None:
            stored.sequence = previous.sequence
        else:
            self._journal_sequence += 1
            stored.sequence = self._journal_sequence
        self._journal_entries[stored.id] = stored
        self._changed()
        return _copy(stored)

    async def get_journal_entry(self, entry_id: str) -> Optional[JournalEntry]:
        entry = self._journal_entries.get(entry_id)
        return _copy(entry) if entry else None

    async def delete_journal_entry(self, entry_id: str) -> bool:
        if self._journal_entries.pop(entry_id, None) is None:
            return False
        self._changed()
        return True

    async def list_journal_entries(
        self,
        account_ref: Optional[str] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> list[JournalEntry]:
        results = []
        for entry in self._journal_entries.values():
            if account_ref and not entry.touches(account_ref):
                continue
            if date_from and entry.entry_date < date_from:
                continue
            if date_to and entry.entry_date > date_to:
                continue
            results.append(_copy(entry))
        results.sort(key=lambda e: (e.entry_date, e.sequence))
        return results

    # =========================================================================
    # RULES
    # =========================================================================

    async def save_rule(self, rule: CategorizationRule) -> CategorizationRule:
        stored = _copy(rule)
        previous = self._rules.get(rule.id)
        if previous is not None:
            stored.sequence = previous.sequence
        else:
            self._rule_sequence += 1
            stored.sequence = self._rule_sequence
        self._rules[stored.id] = stored
        self._changed()
        return _copy(stored)

    async def get_rule(self, rule_id: str) -> Optional[CategorizationRule]:
        rule = self._rules.get(rule_id)
        return _copy(rule) if rule else None

    async def delete_rule(self, rule_id: str) -> bool:
        if self._rules.pop(rule_id, None) is None:
            return False
        self._changed()
        return True

    async def list_rules(self, include_inactive: bool = True) -> list[CategorizationRule]:
        rules = [
            _copy(r) for r in self._rules.values()
            if include_inactive or r.is_active
        ]
        rules.sort(key=lambda r: r.sequence)
        return rules

    # =========================================================================
    # AUDIT
    # =========================================================================

    async def append_event(self, event: AuditEvent) -> bool:
        self._audit_events.append(_copy(event))
        self._changed()
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        events = [_copy(e) for e in self._audit_events if e.correlation_id == correlation_id]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: str,
    ) -> list[AuditEvent]:
        events = [
            _copy(e) for e in self._audit_events
            if e.entity_type == entity_type and e.entity_id == str(entity_id)
        ]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        events = [_copy(e) for e in self._audit_events]
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
