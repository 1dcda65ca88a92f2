"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Use in-memory storage for testing
2. Keep a simple JSON document store for personal use
3. Swap in a real database later
4. Keep ledger and import logic decoupled from storage implementation

The interface is intentionally simple - we're not building a full ORM.
Just get/put/delete by primary key plus the secondary lookups the core
needs: (account, external id) for dedup and by-account for balance replay.
"""

from abc import ABC, abstractmethod
from datetime import date
from typing import Optional
from uuid import UUID

from statement_ledger.models.audit import AuditEvent
from statement_ledger.models.ledger import (
    BankAccount,
    ChartAccount,
    JournalEntry,
    Transaction,
)
from statement_ledger.models.rules import CategorizationRule, CategoryStateKind


class AccountStorageInterface(ABC):
    """
    Chart accounts and the bank accounts statements are imported into.

    Accounts are never physically deleted; they are deactivated.
    """

    @abstractmethod
    async def save_chart_account(self, account: ChartAccount) -> ChartAccount:
        """
        Insert or replace a chart account.

        Raises:
            DuplicateError: If another account already uses the code
        """
        pass

    @abstractmethod
    async def get_chart_account(self, account_id: str) -> Optional[ChartAccount]:
        pass

    @abstractmethod
    async def list_chart_accounts(self, include_inactive: bool = True) -> list[ChartAccount]:
        """All chart accounts ordered by code."""
        pass

    @abstractmethod
    async def save_bank_account(self, account: BankAccount) -> BankAccount:
        """
        Insert or replace a bank account.

        Raises:
            DuplicateError: If another bank account has the same account hash
        """
        pass

    @abstractmethod
    async def get_bank_account(self, account_id: str) -> Optional[BankAccount]:
        pass

    @abstractmethod
    async def get_bank_account_by_hash(self, account_hash: str) -> Optional[BankAccount]:
        """Find the bank account a parsed statement belongs to."""
        pass

    @abstractmethod
    async def list_bank_accounts(self) -> list[BankAccount]:
        pass


class TransactionStorageInterface(ABC):
    """Stored (imported) transactions."""

    @abstractmethod
    async def save_transaction(self, transaction: Transaction) -> Transaction:
        """
        Insert or replace a transaction.

        Raises:
            DuplicateError: If a different transaction already has the same
                            (account_ref, external_id)
        """
        pass

    @abstractmethod
    async def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        pass

    @abstractmethod
    async def find_transaction(
        self,
        account_ref: str,
        external_id: str,
    ) -> Optional[Transaction]:
        """Dedup lookup by (bank account, bank-assigned id)."""
        pass

    @abstractmethod
    async def delete_transaction(self, transaction_id: str) -> bool:
        """
        Delete a transaction by ID.

        Returns:
            True if something was deleted
        """
        pass

    @abstractmethod
    async def list_transactions(
        self,
        account_ref: Optional[str] = None,
        category_kind: Optional[CategoryStateKind] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> list[Transaction]:
        """
        List transactions with optional filters, ordered by posted date.
        """
        pass


class JournalStorageInterface(ABC):
    """
    Journal entries.

    An entry is always written whole. Storage never holds half an entry.
    """

    @abstractmethod
    async def save_journal_entry(self, entry: JournalEntry) -> JournalEntry:
        """
        Insert or replace a journal entry.

        New entries are assigned the next write `sequence`; replacing an
        entry keeps its sequence.
        """
        pass

    @abstractmethod
    async def get_journal_entry(self, entry_id: str) -> Optional[JournalEntry]:
        pass

    @abstractmethod
    async def delete_journal_entry(self, entry_id: str) -> bool:
        pass

    @abstractmethod
    async def list_journal_entries(
        self,
        account_ref: Optional[str] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> list[JournalEntry]:
        """
        Entries touching `account_ref` (all entries when None), ordered by
        (entry_date, sequence).
        """
        pass


class RuleStorageInterface(ABC):
    """Categorization rules."""

    @abstractmethod
    async def save_rule(self, rule: CategorizationRule) -> CategorizationRule:
        """
        Insert or replace a rule.

        New rules are assigned the next insertion `sequence`.
        """
        pass

    @abstractmethod
    async def get_rule(self, rule_id: str) -> Optional[CategorizationRule]:
        pass

    @abstractmethod
    async def delete_rule(self, rule_id: str) -> bool:
        pass

    @abstractmethod
    async def list_rules(self, include_inactive: bool = True) -> list[CategorizationRule]:
        """Rules in insertion order."""
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """
        Get all events for a correlation ID (e.g., one import session).

        Returns:
            List of related events in chronological order
        """
        pass

    @abstractmethod
    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: str,
    ) -> list[AuditEvent]:
        """
        Get all events for a specific entity.

        Args:
            entity_type: Type of entity (e.g., 'transaction', 'journal_entry')
            entity_id: The entity's ID
        """
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """
        Get the most recent audit events (newest first).
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class ConnectionError(StorageError):
    """Could not reach the storage backend."""
    pass
