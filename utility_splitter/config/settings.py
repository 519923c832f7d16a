"""
Configuration Management for Utility Splitter

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
Every backing store and crypto parameter is visible in one place and is
validated before the ledger touches any data.
"""

import re
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


TENANT_ID_PATTERN = re.compile(r"^[a-zA-Z0-9-]+$")


class CryptoSettings(BaseSettings):
    """Password-based encryption parameters."""

    model_config = SettingsConfigDict(
        env_prefix="CRYPTO_",
        extra="ignore"
    )

    pbkdf2_iterations: int = Field(
        default=100_000,
        ge=100_000,
        description="PBKDF2-HMAC-SHA256 iteration count"
    )
    salt_length: int = Field(
        default=16,
        ge=16,
        description="Random salt length in bytes"
    )
    nonce_length: int = Field(
        default=12,
        ge=12,
        description="AES-GCM nonce length in bytes"
    )


class LocalStorageSettings(BaseSettings):
    """Local persistent storage (one JSON file per key)."""

    model_config = SettingsConfigDict(
        env_prefix="LOCAL_STORAGE_",
        extra="ignore"
    )

    data_dir: Path = Field(
        default=Path(".utility-splitter"),
        description="Directory holding one JSON document per persistence key"
    )


class RemoteStoreSettings(BaseSettings):
    """Remote tenant-scoped key-value store configuration."""

    model_config = SettingsConfigDict(
        env_prefix="REMOTE_STORE_",
        extra="ignore"
    )

    base_url: Optional[str] = Field(
        default=None,
        description="Base URL of the key-value API (e.g. https://splitter.example)"
    )
    api_user: Optional[str] = Field(
        default=None,
        description="HTTP basic auth user"
    )
    api_pass: Optional[str] = Field(
        default=None,
        description="HTTP basic auth password"
    )
    timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        le=120,
        description="Per-request timeout"
    )

    # Transient failure retries (exponential backoff)
    retry_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts per request on transient failures"
    )
    retry_min_wait: float = Field(
        default=2.0,
        ge=0,
        description="Minimum backoff between attempts, seconds"
    )
    retry_max_wait: float = Field(
        default=10.0,
        ge=0,
        description="Maximum backoff between attempts, seconds"
    )

    @property
    def is_configured(self) -> bool:
        """Remote writes only happen when URL and credentials are all present."""
        return bool(self.base_url and self.api_user and self.api_pass)


class GoogleSheetsSettings(BaseSettings):
    """Google Sheets storage configuration."""

    model_config = SettingsConfigDict(
        env_prefix="GOOGLE_SHEETS_",
        extra="ignore"
    )

    credentials_path: str = Field(
        ...,
        description="Path to Google service account credentials JSON"
    )
    spreadsheet_id: str = Field(
        ...,
        description="ID of the Google Sheets spreadsheet to use"
    )

    # Sheet names within the spreadsheet
    metadata_sheet_name: str = Field(
        default="Metadata",
        description="Key/JSON rows for housemates, categories, balances, years"
    )
    bills_sheet_name: str = Field(
        default="ManualBills",
        description="One bill per row"
    )
    history_sheet_name: str = Field(
        default="BillHistories",
        description="Imported bill history rows (read only)"
    )
    audit_sheet_name: str = Field(
        default="AuditLog",
        description="Append-only audit events"
    )

    @field_validator('credentials_path')
    @classmethod
    def validate_credentials_path(cls, v: str) -> str:
        """Warn if credentials file doesn't exist (but don't fail - might be mounted later)."""
        if not Path(v).exists():
            import warnings
            warnings.warn(
                f"Google credentials file not found at {v}. "
                "Make sure it exists before syncing with Sheets."
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

    # Environment
    app_environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
    )

    tenant_id: Optional[str] = Field(
        default=None,
        description="Tenant isolation boundary for the remote store"
    )

    # Ledger tolerances
    split_tolerance: float = Field(
        default=0.01,
        gt=0,
        le=1,
        description="Allowed gap between a bill amount and the sum of its splits"
    )
    settle_threshold: float = Field(
        default=0.01,
        gt=0,
        le=1,
        description="Balances closer to zero than this are considered settled"
    )

    @field_validator('tenant_id')
    @classmethod
    def validate_tenant_id(cls, v: Optional[str]) -> Optional[str]:
        """Tenant ids are alphanumeric plus dashes."""
        if v is not None and not TENANT_ID_PATTERN.match(v):
            raise ValueError(f"Invalid tenant id: {v!r}")
        return v


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

    # Note: These are loaded lazily to allow partial configuration

    @property
    def crypto(self) -> CryptoSettings:
        return CryptoSettings()

    @property
    def local_storage(self) -> LocalStorageSettings:
        return LocalStorageSettings()

    @property
    def remote_store(self) -> RemoteStoreSettings:
        return RemoteStoreSettings()

    @property
    def google_sheets(self) -> GoogleSheetsSettings:
        return GoogleSheetsSettings()

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

    Returns a dict of {setting_name: is_valid}.
    Useful for startup checks.
    """
    results = {}

    settings = get_settings()

    for name in ("crypto", "local_storage", "remote_store", "google_sheets", "app"):
        try:
            _ = getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
