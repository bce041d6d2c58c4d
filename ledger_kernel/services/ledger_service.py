"""
LedgerService -- transaction owner for every ledger operation.

Responsibility:
    Opens the transaction for each request, runs the flush-only services
    inside it, commits, and only then appends to the audit trail.  This is
    the one place that decides retry and isolation policy.

Architecture position:
    Kernel > Services -- outermost shell.  Called by the API handlers (and
    by tests and scripts).  Holds the Database handle, never a Session.

Invariants enforced:
    - Posting transactions are re-run on transient database faults only,
      bounded by ``retry.max_attempts`` with linear backoff.
    - Period close/lock/reopen run under SERIALIZABLE on PostgreSQL, with
      SELECT ... FOR UPDATE on the period row.
    - Audit records are written after commit in their own session; an audit
      failure never undoes or fails the business operation.
    - Settings are read through the provider on every call.

Failure modes:
    - Every LedgerError raised by a service propagates unchanged after
      rollback.
    - TransientDatabaseError when retries are exhausted.
"""

from collections.abc import Callable, Sequence
from datetime import date
from decimal import Decimal
from typing import Any, TypeVar
from uuid import UUID

from sqlalchemy.orm import Session

from ledger_config.provider import SettingsProvider, StaticSettings
from ledger_config.schema import LedgerSettings
from ledger_kernel.db.engine import Database
from ledger_kernel.db.types import round_amount, to_decimal
from ledger_kernel.domain.authorization import Actor, Authorizer, PermissionTableAuthorizer
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.currency_policy import LifecycleStage, PolicySnapshot, RateSource
from ledger_kernel.domain.dtos import ConversionResult, DocumentView, LineInput, PostedEntry
from ledger_kernel.domain.tax import TaxCalculator, sale_lines
from ledger_kernel.logging_config import LogContext
from ledger_kernel.models.account import AccountType
from ledger_kernel.models.document import DOCUMENT_MODULES, DocumentType
from ledger_kernel.models.journal import JournalEntry
from ledger_kernel.selectors.ledger_selector import (
    AccountBalance,
    CurrencyBalance,
    EntryView,
    LedgerSelector,
    TrialBalance,
)
from ledger_kernel.services.account_registry import AccountRegistry
from ledger_kernel.services.audit_trail import AuditTrailRecorder
from ledger_kernel.services.currency_converter import CurrencyConverter
from ledger_kernel.services.currency_policy_service import CurrencyPolicyService, to_snapshot
from ledger_kernel.services.document_workflow import DocumentWorkflow
from ledger_kernel.services.exchange_rate_store import ExchangeRateStore
from ledger_kernel.services.fiscal_period_guard import FiscalPeriodGuard
from ledger_kernel.services.journal_poster import JournalPoster
from ledger_kernel.services.revaluation import RevaluationResult, RevaluationService

T = TypeVar("T")

ACCOUNTING_MODULE = "accounting"


def _posted(entry: JournalEntry) -> PostedEntry:
    return PostedEntry(
        entry_id=entry.id,
        voucher_number=entry.voucher_number,
        entry_date=entry.entry_date,
        fiscal_period_id=entry.fiscal_period_id,
        total_debits=entry.total_debits,
        total_credits=entry.total_credits,
        currency=entry.currency,
        reversal_of_id=entry.reversal_of_id,
        conversion=(entry.entry_metadata or {}).get("conversion"),
    )


class LedgerService:
    """
    Contract:
        Each public method is one committed unit of work.  Return values are
        DTOs detached from the session.

    Non-goals:
        - Does NOT evaluate permissions for the request as a whole; the API
          layer does.  Ownership checks for documents live in
          DocumentWorkflow.
    """

    def __init__(
        self,
        database: Database,
        settings_provider: SettingsProvider | None = None,
        clock: Clock | None = None,
        audit: AuditTrailRecorder | None = None,
        authorizer: Authorizer | None = None,
    ):
        self.database = database
        self._settings_provider = settings_provider or StaticSettings()
        self._clock = clock or SystemClock()
        self.audit = audit or AuditTrailRecorder(database, self._clock)
        self._authorizer = authorizer

    @property
    def settings(self) -> LedgerSettings:
        return self._settings_provider()

    @property
    def authorizer(self) -> Authorizer:
        return self._authorizer or PermissionTableAuthorizer(self.settings.permissions)

    # ------------------------------------------------------------------
    # Transaction helpers
    # ------------------------------------------------------------------

    def _retrying(self, fn: Callable[[Session], T], operation: str) -> T:
        retry = self.settings.retry
        return self.database.run_in_transaction(
            fn,
            operation=operation,
            max_attempts=retry.max_attempts,
            backoff_seconds=retry.backoff_seconds,
        )

    def _once(self, fn: Callable[[Session], T], isolation_level: str | None = None) -> T:
        with self.database.session_scope(isolation_level=isolation_level) as session:
            return fn(session)

    def _serializable(self) -> str | None:
        return "SERIALIZABLE" if self.database.dialect_name == "postgresql" else None

    def _record(
        self,
        actor: Actor | None,
        action: str,
        module: str,
        description: str,
        metadata: dict[str, Any] | None = None,
        ip_address: str | None = None,
    ) -> None:
        self.audit.record(
            actor.id if actor else None, action, module, description, metadata, ip_address
        )

    def _poster(self, session: Session) -> JournalPoster:
        return JournalPoster(session, self._settings_provider, self._clock)

    # ------------------------------------------------------------------
    # Journal entries
    # ------------------------------------------------------------------

    def post_entry(
        self,
        description: str,
        entry_date: date,
        lines: Sequence[LineInput],
        *,
        actor: Actor,
        reference_type: str | None = None,
        reference_id: str | None = None,
        currency: str | None = None,
        metadata: dict[str, Any] | None = None,
        ip_address: str | None = None,
    ) -> PostedEntry:
        def unit(session: Session) -> PostedEntry:
            poster = self._poster(session)
            entry_id = poster.post(
                description,
                entry_date,
                lines,
                actor_id=actor.display_id,
                reference_type=reference_type,
                reference_id=reference_id,
                currency=currency,
                metadata=metadata,
            )
            return _posted(session.get(JournalEntry, entry_id))

        with LogContext.bind(actor_id=actor.display_id, module=ACCOUNTING_MODULE):
            posted = self._retrying(unit, "post_entry")
        self._record(
            actor,
            "create",
            ACCOUNTING_MODULE,
            f"Posted journal entry {posted.voucher_number}",
            {
                "entry_id": posted.entry_id,
                "description": description,
                "entry_date": entry_date,
                "total": posted.total_debits,
                "metadata": metadata,
            },
            ip_address,
        )
        return posted

    def post_foreign_entry(
        self,
        description: str,
        entry_date: date,
        lines: Sequence[LineInput],
        *,
        actor: Actor,
        transaction_currency: str,
        reference_type: str | None = None,
        reference_id: str | None = None,
        metadata: dict[str, Any] | None = None,
        user_requested: bool = False,
        exempt: bool = False,
        ip_address: str | None = None,
    ) -> PostedEntry:
        def unit(session: Session) -> PostedEntry:
            entry_id = self._poster(session).post_foreign(
                description,
                entry_date,
                lines,
                transaction_currency=transaction_currency,
                actor_id=actor.display_id,
                reference_type=reference_type,
                reference_id=reference_id,
                metadata=metadata,
                user_requested=user_requested,
                exempt=exempt,
            )
            return _posted(session.get(JournalEntry, entry_id))

        with LogContext.bind(actor_id=actor.display_id, module=ACCOUNTING_MODULE):
            posted = self._retrying(unit, "post_foreign_entry")
        self._record(
            actor,
            "create",
            ACCOUNTING_MODULE,
            f"Posted {transaction_currency} journal entry {posted.voucher_number}",
            {"entry_id": posted.entry_id, "conversion": posted.conversion},
            ip_address,
        )
        return posted

    def reverse_entry(
        self,
        entry_id: UUID,
        *,
        actor: Actor,
        reason: str,
        reversal_date: date | None = None,
        ip_address: str | None = None,
    ) -> PostedEntry:
        def unit(session: Session) -> PostedEntry:
            reversal_id = self._poster(session).reverse(
                entry_id, actor_id=actor.display_id, reason=reason, reversal_date=reversal_date
            )
            return _posted(session.get(JournalEntry, reversal_id))

        with LogContext.bind(actor_id=actor.display_id, module=ACCOUNTING_MODULE):
            posted = self._retrying(unit, "reverse_entry")
        self._record(
            actor,
            "reverse",
            ACCOUNTING_MODULE,
            f"Reversed journal entry {entry_id} with {posted.voucher_number}",
            {"entry_id": entry_id, "reversal_entry_id": posted.entry_id, "reason": reason},
            ip_address,
        )
        return posted

    def get_entry(self, entry_id: UUID) -> EntryView:
        return self._once(lambda session: LedgerSelector(session).get_entry(entry_id))

    # ------------------------------------------------------------------
    # Fiscal periods
    # ------------------------------------------------------------------

    def create_period(self, name: str, start_date: date, end_date: date, *, actor: Actor) -> UUID:
        period_id = self._once(
            lambda session: FiscalPeriodGuard(session, self._settings_provider, self._clock)
            .create_period(name, start_date, end_date)
            .id
        )
        self._record(
            actor, "create", ACCOUNTING_MODULE, f"Created fiscal period {name}",
            {"period_id": period_id, "start_date": start_date, "end_date": end_date},
        )
        return period_id

    def _transition_period(self, period_id: UUID, actor: Actor, action: str) -> str:
        def unit(session: Session) -> str:
            guard = FiscalPeriodGuard(session, self._settings_provider, self._clock)
            transition = {
                "close": guard.close_period,
                "lock": guard.lock_period,
                "reopen": guard.reopen_period,
            }[action]
            return transition(period_id, actor.display_id).status.value

        status = self._once(unit, isolation_level=self._serializable())
        self._record(
            actor, action, ACCOUNTING_MODULE, f"Fiscal period {period_id} {status}",
            {"period_id": period_id, "status": status},
        )
        return status

    def close_period(self, period_id: UUID, *, actor: Actor) -> str:
        return self._transition_period(period_id, actor, "close")

    def lock_period(self, period_id: UUID, *, actor: Actor) -> str:
        return self._transition_period(period_id, actor, "lock")

    def reopen_period(self, period_id: UUID, *, actor: Actor) -> str:
        return self._transition_period(period_id, actor, "reopen")

    # ------------------------------------------------------------------
    # Chart of accounts
    # ------------------------------------------------------------------

    def create_account(
        self,
        code: str,
        name: str,
        account_type: AccountType | str,
        parent_code: str | None = None,
        *,
        actor: Actor,
    ) -> UUID:
        account_id = self._once(
            lambda session: AccountRegistry(session, self._settings_provider, self._clock)
            .create_account(code, name, account_type, parent_code)
            .id
        )
        self._record(
            actor, "create", ACCOUNTING_MODULE, f"Created account {code}",
            {"code": code, "account_type": account_type, "parent_code": parent_code},
        )
        return account_id

    def deactivate_account(self, code: str, *, actor: Actor) -> None:
        self._once(
            lambda session: AccountRegistry(session, self._settings_provider, self._clock)
            .deactivate(code)
        )
        self._record(actor, "edit", ACCOUNTING_MODULE, f"Deactivated account {code}", {"code": code})

    def account_balance(
        self, code: str, as_of: date | None = None, currency: str | None = None
    ) -> AccountBalance:
        return self._once(lambda session: LedgerSelector(session).account_balance(code, as_of, currency))

    def currency_balances(self, code: str, as_of: date | None = None) -> list[CurrencyBalance]:
        return self._once(lambda session: LedgerSelector(session).currency_balances(code, as_of))

    def trial_balance(self, as_of: date | None = None, currency: str | None = None) -> TrialBalance:
        return self._once(lambda session: LedgerSelector(session).trial_balance(as_of, currency))

    # ------------------------------------------------------------------
    # Currency
    # ------------------------------------------------------------------

    def create_policy(self, *, actor: Actor, **fields: Any) -> PolicySnapshot:
        def unit(session: Session) -> PolicySnapshot:
            service = CurrencyPolicyService(session, self._settings_provider, self._clock)
            return to_snapshot(service.create_policy(**fields))

        snapshot = self._once(unit)
        self._record(actor, "create", ACCOUNTING_MODULE, f"Created currency policy {fields.get('code')}", fields)
        return snapshot

    def activate_policy(self, code: str, *, actor: Actor) -> PolicySnapshot:
        snapshot = self._once(
            lambda session: CurrencyPolicyService(session, self._settings_provider, self._clock)
            .activate(code),
            isolation_level=self._serializable(),
        )
        self._record(actor, "edit", ACCOUNTING_MODULE, f"Activated currency policy {code}", {"code": code})
        return snapshot

    def record_rate(
        self,
        from_currency: str,
        to_currency: str,
        rate: Decimal,
        effective_date: date,
        *,
        actor: Actor,
        source: RateSource | str | None = None,
        source_reference: str | None = None,
    ) -> None:
        self._once(
            lambda session: ExchangeRateStore(session, self._settings_provider, self._clock)
            .record_rate(
                from_currency,
                to_currency,
                rate,
                effective_date,
                source=source,
                source_reference=source_reference,
                actor_id=actor.display_id,
            )
        )
        self._record(
            actor, "create", ACCOUNTING_MODULE, f"Recorded {from_currency}/{to_currency} rate",
            {"rate": rate, "effective_date": effective_date, "source": source},
        )

    def convert(
        self,
        amount: Decimal,
        currency: str,
        on_date: date,
        *,
        stage: LifecycleStage = LifecycleStage.POSTING,
        user_requested: bool = False,
        actor: Actor | None = None,
    ) -> ConversionResult:
        return self._once(
            lambda session: CurrencyConverter(session, self._settings_provider, self._clock).convert(
                amount,
                currency,
                on_date,
                stage=stage,
                user_requested=user_requested,
                actor_id=actor.display_id if actor else None,
            )
        )

    def revalue(
        self,
        account_code: str,
        currency: str,
        as_of: date,
        *,
        actor: Actor,
        rate: Decimal | None = None,
    ) -> RevaluationResult:
        result = self._retrying(
            lambda session: RevaluationService(session, self._settings_provider, self._clock)
            .revalue(account_code, currency, as_of, actor_id=actor.display_id, rate=rate),
            "revalue",
        )
        if result.entry_id is not None:
            self._record(
                actor, "create", ACCOUNTING_MODULE,
                f"Revalued {currency} balance of {account_code}",
                {"entry_id": result.entry_id, "rate": result.rate, "adjustment": result.adjustment},
            )
        return result

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    def _workflow(self, session: Session) -> DocumentWorkflow:
        return DocumentWorkflow(session, self.authorizer, self._settings_provider, self._clock)

    def get_document(self, document_id: UUID) -> DocumentView:
        def unit(session: Session) -> DocumentView:
            document = self._workflow(session).get(document_id)
            return DocumentView(
                document_id=document.id,
                document_type=document.document_type,
                document_number=document.document_number,
                module=document.module,
                owner_id=document.owner_id,
                state=document.state,
                document_date=document.document_date,
                currency=document.currency,
                total_amount=document.total_amount,
                amount_paid=document.amount_paid,
            )

        return self._once(unit)

    def create_document(
        self,
        document_type: DocumentType | str,
        document_number: str,
        document_date: date,
        total_amount: Decimal,
        currency: str,
        *,
        actor: Actor,
    ) -> UUID:
        document_id = self._once(
            lambda session: self._workflow(session)
            .create_document(
                document_type, document_number, actor.display_id, document_date, total_amount, currency
            )
            .id
        )
        self._record(
            actor, "create", DOCUMENT_MODULES[DocumentType(document_type)],
            f"Created {DocumentType(document_type).value} {document_number}",
            {"document_id": document_id, "total_amount": total_amount},
        )
        return document_id

    def post_document(
        self,
        document_id: UUID,
        description: str,
        lines: Sequence[LineInput],
        *,
        actor: Actor,
    ) -> PostedEntry:
        """Post the ledger entry for a draft document and mark it posted."""

        def unit(session: Session) -> PostedEntry:
            workflow = self._workflow(session)
            document = workflow.get(document_id, lock=True)
            entry_id = workflow.poster.post(
                description,
                document.document_date,
                lines,
                actor_id=actor.display_id,
                reference_type=document.reference_type,
                reference_id=str(document.id),
            )
            workflow.mark_posted(document.id)
            return _posted(session.get(JournalEntry, entry_id))

        posted = self._retrying(unit, "post_document")
        self._record(
            actor, "create", ACCOUNTING_MODULE, f"Posted document {document_id}",
            {"document_id": document_id, "entry_id": posted.entry_id},
        )
        return posted

    def post_sale_invoice(
        self,
        document_number: str,
        invoice_date: date,
        net_amount: Decimal,
        *,
        actor: Actor,
        receivable_account: str = "1200",
        revenue_account: str = "4100",
    ) -> tuple[UUID, PostedEntry]:
        """
        Create and post a taxed sales invoice in one transaction.

        Tax comes from the rule engine when ``tax.use_tax_engine`` is on and
        a rule is effective on ``invoice_date``; otherwise from the single
        ``accounting.vat_rate``.
        """
        settings = self.settings
        net = round_amount(to_decimal(net_amount))
        tax = TaxCalculator(settings).calculate(net, invoice_date)
        lines = sale_lines(receivable_account, revenue_account, net, tax)

        def unit(session: Session) -> tuple[UUID, PostedEntry]:
            workflow = self._workflow(session)
            document = workflow.create_document(
                DocumentType.INVOICE,
                document_number,
                actor.display_id,
                invoice_date,
                net + tax.total_tax,
                workflow.poster.converter.policies.reference_currency(),
            )
            entry_id = workflow.poster.post(
                f"Invoice {document_number}",
                invoice_date,
                lines,
                actor_id=actor.display_id,
                reference_type=document.reference_type,
                reference_id=str(document.id),
                metadata={"tax_engine": tax.used_engine},
            )
            workflow.mark_posted(document.id)
            return document.id, _posted(session.get(JournalEntry, entry_id))

        with LogContext.bind(actor_id=actor.display_id):
            document_id, posted = self._retrying(unit, "post_sale_invoice")
        self._record(
            actor, "create", DOCUMENT_MODULES[DocumentType.INVOICE],
            f"Posted invoice {document_number}",
            {
                "document_id": document_id,
                "entry_id": posted.entry_id,
                "tax": tax.total_tax,
                "tax_engine": tax.used_engine,
            },
        )
        return document_id, posted

    def apply_payment(self, document_id: UUID, amount: Decimal, *, actor: Actor) -> None:
        self._once(lambda session: self._workflow(session).apply_payment(document_id, amount))
        self._record(
            actor, "edit", ACCOUNTING_MODULE, f"Applied payment to document {document_id}",
            {"document_id": document_id, "amount": amount},
        )

    def delete_document(self, document_id: UUID, *, actor: Actor, ip_address: str | None = None) -> str:
        return self._finish_document(document_id, actor, "delete", ip_address)

    def reverse_document(self, document_id: UUID, *, actor: Actor, ip_address: str | None = None) -> str:
        return self._finish_document(document_id, actor, "reverse", ip_address)

    def _finish_document(
        self, document_id: UUID, actor: Actor, action: str, ip_address: str | None
    ) -> str:
        def unit(session: Session) -> tuple[str, str, str]:
            workflow = self._workflow(session)
            method = workflow.delete if action == "delete" else workflow.reverse
            document = method(document_id, actor)
            return document.state, document.module, document.document_number

        with LogContext.bind(actor_id=actor.display_id):
            state, module, number = self._retrying(unit, f"{action}_document")
        self._record(
            actor, action, module, f"{action.capitalize()} document {number}",
            {"document_id": document_id, "state": state},
            ip_address,
        )
        return state
