"""Services package."""

from statement_ledger.services.storage import (
    AccountStorageInterface,
    AuditStorageInterface,
    ConnectionError,
    DuplicateError,
    InMemoryStorage,
    JournalStorageInterface,
    JsonFileStorage,
    NotFoundError,
    RuleStorageInterface,
    StorageError,
    TransactionStorageInterface,
    create_storage,
)

__all__ = [
    # Storage services
    "AccountStorageInterface",
    "AuditStorageInterface",
    "ConnectionError",
    "DuplicateError",
    "InMemoryStorage",
    "JournalStorageInterface",
    "JsonFileStorage",
    "NotFoundError",
    "RuleStorageInterface",
    "StorageError",
    "TransactionStorageInterface",
    "create_storage",
]
