"""Configuration package."""

from statement_ledger.config.settings import (
    AppSettings,
    ImportSettings,
    LedgerSettings,
    Settings,
    StorageSettings,
    TransferSettings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "ImportSettings",
    "LedgerSettings",
    "Settings",
    "StorageSettings",
    "TransferSettings",
    "get_settings",
    "validate_all_settings",
]
