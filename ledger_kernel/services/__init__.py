"""Services for the ledger kernel (write side)."""

from ledger_kernel.services.account_registry import AccountRegistry
from ledger_kernel.services.audit_trail import AuditTrailRecorder
from ledger_kernel.services.currency_converter import CurrencyConverter
from ledger_kernel.services.currency_policy_service import CurrencyPolicyService
from ledger_kernel.services.document_workflow import DocumentWorkflow
from ledger_kernel.services.exchange_rate_store import ExchangeRateStore
from ledger_kernel.services.fiscal_period_guard import FiscalPeriodGuard
from ledger_kernel.services.journal_poster import JournalPoster
from ledger_kernel.services.ledger_service import LedgerService
from ledger_kernel.services.revaluation import RevaluationResult, RevaluationService
from ledger_kernel.services.sequence_service import SequenceService

__all__ = [
    "AccountRegistry",
    "AuditTrailRecorder",
    "CurrencyConverter",
    "CurrencyPolicyService",
    "DocumentWorkflow",
    "ExchangeRateStore",
    "FiscalPeriodGuard",
    "JournalPoster",
    "LedgerService",
    "RevaluationResult",
    "RevaluationService",
    "SequenceService",
]
