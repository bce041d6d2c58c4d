"""
Settings loader (``ledger_config.loader``).

Responsibility
--------------
Loads a YAML settings document and parses it into the frozen dataclasses
of ``ledger_config.schema``.  Keys that are absent fall back to the schema
defaults; keys that are present but malformed raise.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys in a tax rule  -> ``KeyError`` propagates.
* Bad numbers, dates or enum values  -> ``ValueError``.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

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

DEFAULTS_PATH = Path(__file__).with_name("defaults.yaml")


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def parse_date(value: Any) -> date:
    """Parse a date from YAML (string or date object)."""
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        return date.fromisoformat(value)
    raise ValueError(f"Cannot parse date from {value!r}")


def parse_decimal(value: Any) -> Decimal:
    """Parse a Decimal from YAML without passing through binary float."""
    if isinstance(value, bool):
        raise ValueError(f"Cannot parse decimal from {value!r}")
    try:
        return Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"Cannot parse decimal from {value!r}") from exc


def parse_currency(data: dict[str, Any]) -> CurrencySettings:
    d = CurrencySettings()
    precision = int(data.get("exchange_rate_precision", d.exchange_rate_precision))
    amount_precision = int(data.get("amount_precision", d.amount_precision))
    if precision < 0 or amount_precision < 0:
        raise ValueError("currency precisions must be non-negative")
    return CurrencySettings(
        exchange_rate_precision=precision,
        amount_precision=amount_precision,
        default_exchange_rate_source=str(
            data.get("default_exchange_rate_source", d.default_exchange_rate_source)
        ).upper(),
        exchange_gain_account=str(data.get("exchange_gain_account", d.exchange_gain_account)),
        exchange_loss_account=str(data.get("exchange_loss_account", d.exchange_loss_account)),
        unrealized_gain_account=str(
            data.get("unrealized_gain_account", d.unrealized_gain_account)
        ),
        unrealized_loss_account=str(
            data.get("unrealized_loss_account", d.unrealized_loss_account)
        ),
        auto_record_rates=bool(data.get("auto_record_rates", d.auto_record_rates)),
        require_exchange_rate=bool(data.get("require_exchange_rate", d.require_exchange_rate)),
    )


def parse_accounting(data: dict[str, Any]) -> AccountingSettings:
    d = AccountingSettings()
    return AccountingSettings(
        prevent_posting_to_parent_accounts=bool(
            data.get(
                "prevent_posting_to_parent_accounts", d.prevent_posting_to_parent_accounts
            )
        ),
        vat_rate=parse_decimal(data.get("vat_rate", d.vat_rate)),
        voucher_prefix=str(data.get("voucher_prefix", d.voucher_prefix)),
        voucher_padding=int(data.get("voucher_padding", d.voucher_padding)),
        balance_tolerance=parse_decimal(data.get("balance_tolerance", d.balance_tolerance)),
        default_currency=str(data.get("default_currency", d.default_currency)).upper(),
        currency=parse_currency(data.get("currency") or {}),
    )


def parse_tax_rule(data: dict[str, Any]) -> TaxRuleDef:
    """
    Parse a ``TaxRuleDef`` from a dict.

    Raises:
        KeyError: if code, name, type, rate, account or effective_from is missing.
    """
    return TaxRuleDef(
        code=data["code"],
        name=data["name"],
        tax_type=TaxType(str(data["type"]).lower()),
        rate=parse_decimal(data["rate"]),
        account_code=str(data["account"]),
        effective_from=parse_date(data["effective_from"]),
        effective_to=parse_date(data["effective_to"]) if data.get("effective_to") else None,
    )


def parse_tax(data: dict[str, Any]) -> TaxSettings:
    d = TaxSettings()
    return TaxSettings(
        use_tax_engine=bool(data.get("use_tax_engine", d.use_tax_engine)),
        output_vat_account=str(data.get("output_vat_account", d.output_vat_account)),
        rules=tuple(parse_tax_rule(r) for r in data.get("rules") or ()),
    )


def parse_permissions(data: dict[str, Any]) -> PermissionSettings:
    d = PermissionSettings()
    module_actions = data.get("module_actions")
    aliases = data.get("action_aliases")
    return PermissionSettings(
        module_actions=(
            tuple((str(m), tuple(str(v) for v in verbs)) for m, verbs in module_actions.items())
            if module_actions
            else d.module_actions
        ),
        action_aliases=(
            tuple((str(a), str(v)) for a, v in aliases.items()) if aliases else d.action_aliases
        ),
        admin_roles=tuple(data.get("admin_roles", d.admin_roles)),
    )


def parse_retry(data: dict[str, Any]) -> RetrySettings:
    d = RetrySettings()
    max_attempts = int(data.get("max_attempts", d.max_attempts))
    if max_attempts < 1:
        raise ValueError("retry.max_attempts must be at least 1")
    return RetrySettings(
        max_attempts=max_attempts,
        backoff_seconds=float(data.get("backoff_seconds", d.backoff_seconds)),
    )


def parse_settings(data: dict[str, Any]) -> LedgerSettings:
    """Parse the root settings document."""
    return LedgerSettings(
        accounting=parse_accounting(data.get("accounting") or {}),
        tax=parse_tax(data.get("tax") or {}),
        permissions=parse_permissions(data.get("permissions") or {}),
        retry=parse_retry(data.get("retry") or {}),
    )


def load_settings(path: Path | str | None = None) -> LedgerSettings:
    """Load settings from ``path``, or the shipped defaults when omitted."""
    return parse_settings(load_yaml_file(Path(path) if path else DEFAULTS_PATH))
