"""
ledger_config: externally supplied settings for the ledger core.

Settings are parsed from YAML into frozen dataclasses and handed to services
through a provider callable, so every read happens at call time.
"""

from ledger_config.loader import load_settings, parse_settings
from ledger_config.provider import FileSettings, SettingsProvider, StaticSettings
from ledger_config.schema import (
    AccountingSettings,
    CurrencySettings,
    LedgerSettings,
    PermissionSettings,
    RetrySettings,
    TaxRuleDef,
    TaxSettings,
    TaxType,
)

__all__ = [
    "AccountingSettings",
    "CurrencySettings",
    "FileSettings",
    "LedgerSettings",
    "PermissionSettings",
    "RetrySettings",
    "SettingsProvider",
    "StaticSettings",
    "TaxRuleDef",
    "TaxSettings",
    "TaxType",
    "load_settings",
    "parse_settings",
]
