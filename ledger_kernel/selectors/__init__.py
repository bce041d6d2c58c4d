"""Selectors for the ledger kernel (read side)."""

from ledger_kernel.selectors.ledger_selector import (
    AccountBalance,
    CurrencyBalance,
    EntryLineView,
    EntryView,
    LedgerSelector,
    TrialBalance,
    TrialBalanceRow,
)

__all__ = [
    "AccountBalance",
    "CurrencyBalance",
    "EntryLineView",
    "EntryView",
    "LedgerSelector",
    "TrialBalance",
    "TrialBalanceRow",
]
