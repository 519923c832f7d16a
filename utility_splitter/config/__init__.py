"""Configuration package."""

from utility_splitter.config.settings import (
    TENANT_ID_PATTERN,
    AppSettings,
    CryptoSettings,
    GoogleSheetsSettings,
    LocalStorageSettings,
    RemoteStoreSettings,
    Settings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "TENANT_ID_PATTERN",
    "AppSettings",
    "CryptoSettings",
    "GoogleSheetsSettings",
    "LocalStorageSettings",
    "RemoteStoreSettings",
    "Settings",
    "get_settings",
    "validate_all_settings",
]
