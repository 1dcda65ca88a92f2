"""
Configuration Management for Statement Ledger

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
Each concern (import limits, transfer matching, ledger accounts, storage)
has its own settings class with its own environment prefix, and the root
Settings object builds them on demand.
"""

from decimal import Decimal
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ImportSettings(BaseSettings):
    """Statement import and file-level validation configuration."""

    model_config = SettingsConfigDict(
        env_prefix="IMPORT_",
        extra="ignore"
    )

    max_invalid_transaction_ratio: float = Field(
        default=0.1,
        ge=0.0,
        le=1.0,
        description="Largest fraction of dropped transactions a file may have before it is rejected"
    )
    default_currency: str = Field(
        default="USD",
        min_length=3,
        max_length=3,
        description="Currency assumed when a statement omits CURDEF"
    )
    max_file_size_mb: int = Field(
        default=10,
        ge=1,
        le=100,
        description="Maximum statement file size in MB"
    )

    @field_validator('default_currency')
    @classmethod
    def uppercase_currency(cls, v: str) -> str:
        return v.upper()

    @property
    def max_file_size_bytes(self) -> int:
        """Get max file size in bytes."""
        return self.max_file_size_mb * 1024 * 1024


class TransferSettings(BaseSettings):
    """Inter-account transfer detection configuration."""

    model_config = SettingsConfigDict(
        env_prefix="TRANSFER_",
        extra="ignore"
    )

    max_days_difference: int = Field(
        default=3,
        ge=0,
        le=31,
        description="Maximum posting lag (days) between the two sides of a transfer"
    )
    amount_tolerance_ratio: Decimal = Field(
        default=Decimal("0.001"),
        ge=0,
        le=1,
        description="Relative tolerance for same-currency amount matching"
    )
    cross_currency_tolerance: Decimal = Field(
        default=Decimal("0.10"),
        ge=0,
        le=1,
        description="Relative tolerance for cross-currency amount matching"
    )
    min_amount: Decimal = Field(
        default=Decimal("1"),
        ge=0,
        description="Transactions smaller than this are never transfer candidates"
    )


class LedgerSettings(BaseSettings):
    """Double-entry ledger configuration."""

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_",
        extra="ignore"
    )

    base_currency: str = Field(
        default="USD",
        min_length=3,
        max_length=3,
        description="Currency of journal entries that do not name one"
    )
    opening_balance_account_ref: str = Field(
        default="3100",
        description="Equity account that offsets opening balances"
    )
    adjustment_account_ref: str = Field(
        default="3900",
        description="Equity account that offsets reconciliation adjustments"
    )
    seed_default_chart: bool = Field(
        default=True,
        description="Create the default chart of accounts on first use"
    )

    @field_validator('base_currency')
    @classmethod
    def uppercase_currency(cls, v: str) -> str:
        return v.upper()


class StorageSettings(BaseSettings):
    """Persistence backend configuration."""

    model_config = SettingsConfigDict(
        env_prefix="STORAGE_",
        extra="ignore"
    )

    backend: Literal["memory", "json"] = Field(
        default="memory",
        description="Storage backend to use"
    )
    json_path: str = Field(
        default="statement_ledger.json",
        description="Path of the JSON document store (json backend only)"
    )
    write_retry_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts for a failed document write before giving up"
    )

    @field_validator('json_path')
    @classmethod
    def validate_json_path(cls, v: str) -> str:
        """Warn if the parent directory doesn't exist (but don't fail - might be mounted later)."""
        parent = Path(v).expanduser().parent
        if not parent.exists():
            import warnings
            warnings.warn(
                f"Storage directory not found at {parent}. "
                "Make sure it exists before the first write."
            )
        return v


class AppSettings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables and .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    app_environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
    )


class Settings(BaseSettings):
    """
    Root settings container.

    Aggregates all sub-settings for easy access.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Sub-settings are built lazily so a broken section only fails its users

    @property
    def imports(self) -> ImportSettings:
        return ImportSettings()

    @property
    def transfers(self) -> TransferSettings:
        return TransferSettings()

    @property
    def ledger(self) -> LedgerSettings:
        return LedgerSettings()

    @property
    def storage(self) -> StorageSettings:
        return StorageSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Uses LRU cache to ensure settings are only loaded once.
    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}, plus
    {setting_name}_error entries for the sections that failed.
    Useful for startup checks.
    """
    results = {}

    settings = get_settings()

    for name in ("imports", "transfers", "ledger", "storage", "app"):
        try:
            getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
