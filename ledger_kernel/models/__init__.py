"""ORM models for the ledger kernel."""

from ledger_kernel.models.account import Account, AccountType, NormalBalance
from ledger_kernel.models.audit_log import GUEST_ACTOR, AuditLogEntry
from ledger_kernel.models.currency import CurrencyPolicy, ExchangeRateHistory
from ledger_kernel.models.document import DOCUMENT_MODULES, Document, DocumentType
from ledger_kernel.models.fiscal_period import FiscalPeriod, PeriodStatus
from ledger_kernel.models.journal import JournalEntry, JournalEntryLine
from ledger_kernel.models.sequence import SequenceCounter

__all__ = [
    "Account",
    "AccountType",
    "AuditLogEntry",
    "CurrencyPolicy",
    "DOCUMENT_MODULES",
    "Document",
    "DocumentType",
    "ExchangeRateHistory",
    "FiscalPeriod",
    "GUEST_ACTOR",
    "JournalEntry",
    "JournalEntryLine",
    "NormalBalance",
    "PeriodStatus",
    "SequenceCounter",
]
