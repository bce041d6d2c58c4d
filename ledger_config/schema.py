"""
Ledger settings schema.

Frozen dataclasses for every externally supplied setting the ledger core
reads at call time.  YAML documents are parsed into these types by
``ledger_config.loader``; services obtain them through a settings provider
(``ledger_config.provider``) on every call, never at import time.

Defaults mirror the shipped ``defaults.yaml``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum


# ---------------------------------------------------------------------------
# Accounting / currency
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CurrencySettings:
    """``accounting.currency.*``"""

    exchange_rate_precision: int = 8
    amount_precision: int = 4
    default_exchange_rate_source: str = "MANUAL"
    exchange_gain_account: str = "4500"
    exchange_loss_account: str = "5500"
    unrealized_gain_account: str = "4501"
    unrealized_loss_account: str = "5501"
    auto_record_rates: bool = True
    require_exchange_rate: bool = True


@dataclass(frozen=True)
class AccountingSettings:
    """``accounting.*``"""

    prevent_posting_to_parent_accounts: bool = True
    vat_rate: Decimal = Decimal("0.15")
    voucher_prefix: str = "JV"
    voucher_padding: int = 6
    balance_tolerance: Decimal = Decimal("0.001")
    default_currency: str = "SAR"
    currency: CurrencySettings = field(default_factory=CurrencySettings)


# ---------------------------------------------------------------------------
# Tax
# ---------------------------------------------------------------------------


class TaxType(str, Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


@dataclass(frozen=True)
class TaxRuleDef:
    """One tax applied by the tax engine while effective."""

    code: str
    name: str
    tax_type: TaxType
    rate: Decimal
    account_code: str
    effective_from: date
    effective_to: date | None = None

    def is_effective(self, on_date: date) -> bool:
        if on_date < self.effective_from:
            return False
        return self.effective_to is None or on_date <= self.effective_to


@dataclass(frozen=True)
class TaxSettings:
    """``tax.*``"""

    use_tax_engine: bool = False
    output_vat_account: str = "2210"
    rules: tuple[TaxRuleDef, ...] = ()


# ---------------------------------------------------------------------------
# Permissions
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PermissionSettings:
    """
    Module/action mapping table used by the authorization policy.

    ``module_actions`` maps a module to the verbs that exist for it; a
    permission name is ``<module>.<verb>``.  ``action_aliases`` maps request
    actions onto verbs (e.g. "void" -> "reverse").  Actors with any role in
    ``admin_roles`` receive the ``bypass_all`` capability.
    """

    module_actions: tuple[tuple[str, tuple[str, ...]], ...] = (
        ("accounting", ("view", "create", "edit", "delete", "reverse")),
        ("sales", ("view", "create", "edit", "delete", "reverse")),
        ("purchases", ("view", "create", "edit", "delete", "reverse")),
    )
    action_aliases: tuple[tuple[str, str], ...] = (
        ("void", "reverse"),
        ("update", "edit"),
        ("store", "create"),
        ("index", "view"),
        ("show", "view"),
        ("destroy", "delete"),
    )
    admin_roles: tuple[str, ...] = ("admin",)

    def verbs_for(self, module: str) -> tuple[str, ...]:
        return dict(self.module_actions).get(module, ())

    def verb_for(self, action: str) -> str:
        return dict(self.action_aliases).get(action, action)


# ---------------------------------------------------------------------------
# Retry
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RetrySettings:
    """Bounded retry of the posting transaction on transient DB faults."""

    max_attempts: int = 3
    backoff_seconds: float = 0.05


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LedgerSettings:
    """Everything the ledger core reads from configuration."""

    accounting: AccountingSettings = field(default_factory=AccountingSettings)
    tax: TaxSettings = field(default_factory=TaxSettings)
    permissions: PermissionSettings = field(default_factory=PermissionSettings)
    retry: RetrySettings = field(default_factory=RetrySettings)
