"""
Storage Services Package

Provides abstract interfaces and concrete implementations for data storage.
Implements an in-memory backend and a JSON document backend, chosen by
configuration.
"""

from typing import Optional

from statement_ledger.config import StorageSettings, get_settings
from statement_ledger.services.storage.interface import (
    AccountStorageInterface,
    AuditStorageInterface,
    ConnectionError,
    DuplicateError,
    JournalStorageInterface,
    NotFoundError,
    RuleStorageInterface,
    StorageError,
    TransactionStorageInterface,
)
from statement_ledger.services.storage.memory import InMemoryStorage
from statement_ledger.services.storage.json_file import JsonFileStorage


def create_storage(settings: Optional[StorageSettings] = None) -> InMemoryStorage:
    """Build the configured storage backend."""
    settings = settings or get_settings().storage
    if settings.backend == "json":
        return JsonFileStorage(
            path=settings.json_path,
            write_retry_attempts=settings.write_retry_attempts,
        )
    return InMemoryStorage()


__all__ = [
    # Interfaces
    "AccountStorageInterface",
    "AuditStorageInterface",
    "JournalStorageInterface",
    "RuleStorageInterface",
    "TransactionStorageInterface",
    # Exceptions
    "ConnectionError",
    "DuplicateError",
    "NotFoundError",
    "StorageError",
    # Implementations
    "InMemoryStorage",
    "JsonFileStorage",
    "create_storage",
]
