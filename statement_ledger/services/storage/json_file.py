"""
JSON Document Storage Implementation

DESIGN DECISION: A single JSON document on disk is the persistent backend
because:
1. Personal finance data is small (thousands of rows, not millions)
2. No database setup required
3. The file is human-readable and trivially backed up

TRADEOFFS:
- Every write rewrites the whole document (we're fine for personal use)
- Single process only; there is no file locking

Writes go to a temporary file in the same directory which then replaces
the document, so a crash mid-write leaves the previous document intact.
Transient OS errors are retried with tenacity.
"""

import json
import os
import tempfile
from pathlib import Path
from typing import Optional

import structlog
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from statement_ledger.config import get_settings
from statement_ledger.models.audit import AuditEvent
from statement_ledger.models.ledger import (
    BankAccount,
    ChartAccount,
    JournalEntry,
    Transaction,
)
from statement_ledger.models.rules import CategorizationRule
from statement_ledger.services.storage.interface import ConnectionError, StorageError
from statement_ledger.services.storage.memory import InMemoryStorage

logger = structlog.get_logger(__name__)

DOCUMENT_VERSION = 1


class JsonFileStorage(InMemoryStorage):
    """
    InMemoryStorage that loads from and persists to one JSON document.
    """

    def __init__(
        self,
        path: Optional[str] = None,
        write_retry_attempts: Optional[int] = None,
    ):
        super().__init__()
        settings = get_settings().storage
        self._path = Path(path or settings.json_path).expanduser()
        self._attempts = write_retry_attempts or settings.write_retry_attempts
        self._persisted: dict = self._document()
        self._load()

    @property
    def path(self) -> Path:
        return self._path

    # =========================================================================
    # LOAD
    # =========================================================================

    def _load(self) -> None:
        if not self._path.exists():
            return
        try:
            with self._path.open("r", encoding="utf-8") as fh:
                document = json.load(fh)
        except OSError as e:
            raise ConnectionError(f"Cannot read storage file {self._path}: {e}")
        except json.JSONDecodeError as e:
            raise StorageError(f"Storage file {self._path} is not valid JSON: {e}")

        self._restore(document)
        self._persisted = document

        logger.info(
            "storage_loaded",
            path=str(self._path),
            transactions=len(self._transactions),
            journal_entries=len(self._journal_entries),
        )

    def _restore(self, document: dict) -> None:
        """Replace every collection with the contents of `document`."""
        for collection in (
            self._chart_accounts, self._bank_accounts, self._transactions,
            self._journal_entries, self._rules, self._transaction_keys, self._bank_hashes,
        ):
            collection.clear()
        self._audit_events.clear()

        for raw in document.get("chart_accounts", []):
            account = ChartAccount.model_validate(raw)
            self._chart_accounts[account.id] = account
        for raw in document.get("bank_accounts", []):
            account = BankAccount.model_validate(raw)
            self._bank_accounts[account.id] = account
            self._bank_hashes[account.account_hash] = account.id
        for raw in document.get("transactions", []):
            tx = Transaction.model_validate(raw)
            self._transactions[tx.id] = tx
            self._transaction_keys[(tx.account_ref, tx.external_id)] = tx.id
        for raw in document.get("journal_entries", []):
            entry = JournalEntry.model_validate(raw)
            self._journal_entries[entry.id] = entry
        for raw in document.get("rules", []):
            rule = CategorizationRule.model_validate(raw)
            self._rules[rule.id] = rule
        for raw in document.get("audit_events", []):
            self._audit_events.append(AuditEvent.model_validate(raw))

        self._journal_sequence = max(
            (e.sequence for e in self._journal_entries.values()), default=0
        )
        self._rule_sequence = max((r.sequence for r in self._rules.values()), default=0)

    # =========================================================================
    # PERSIST
    # =========================================================================

    def _document(self) -> dict:
        return {
            "version": DOCUMENT_VERSION,
            "chart_accounts": [a.model_dump(mode="json") for a in self._chart_accounts.values()],
            "bank_accounts": [a.model_dump(mode="json") for a in self._bank_accounts.values()],
            "transactions": [t.model_dump(mode="json") for t in self._transactions.values()],
            "journal_entries": [e.model_dump(mode="json") for e in self._journal_entries.values()],
            "rules": [r.model_dump(mode="json") for r in self._rules.values()],
            "audit_events": [e.model_dump(mode="json") for e in self._audit_events],
        }

    def _write_document(self, payload: str) -> None:
        """Write to a temp file beside the document, then atomically replace it."""
        directory = self._path.parent
        directory.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=".statement_ledger.", dir=directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(payload)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_name, self._path)
        except OSError:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    def _changed(self) -> None:
        """
        Persist the collections after a mutation.

        If the document cannot be written the collections are rolled back to
        the last document that was, so memory never runs ahead of disk.
        """
        document = self._document()
        payload = json.dumps(document, indent=2, sort_keys=True)
        try:
            for attempt in Retrying(
                stop=stop_after_attempt(self._attempts),
                wait=wait_exponential(multiplier=0.1, max=2),
                retry=retry_if_exception_type(OSError),
                reraise=True,
            ):
                with attempt:
                    self._write_document(payload)
        except OSError as e:
            logger.error("storage_write_failed", path=str(self._path), error=str(e))
            self._restore(self._persisted)
            raise StorageError(f"Failed to write storage file {self._path}: {e}")
        self._persisted = document
